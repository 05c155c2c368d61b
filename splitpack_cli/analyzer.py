"""Classify raw import statements and merge them per module specifier."""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Union

from .errors import MalformedImportError
from .models import IgnoredImport, ImportDefinition, NamedImport, RawStatement
from .tokenizer import IMPORT_RE, REQUIRE_RE

_IDENT = r"[A-Za-z_$][\w$]*"
_IDENT_RE = re.compile(rf"^{_IDENT}$")
_CLAUSE_RE = re.compile(
    rf"^(?:(?P<default>{_IDENT})\s*(?:,\s*|$))?"
    rf"(?:\*\s*as\s+(?P<namespace>{_IDENT})|\{{(?P<named>[^{{}}]*)\}})?$"
)
_TYPE_ONLY_RE = re.compile(r"^type\s+(?=[\w${*])")


def _parse_named(body: str, statement: str, separator: str) -> List[NamedImport]:
    """Parse ``a, b as c`` (or ``a, b: c`` for destructured requires).

    ``type``-prefixed members are dropped.
    """
    named: List[NamedImport] = []
    for part in body.split(","):
        part = " ".join(part.split())
        if not part:
            continue
        if _TYPE_ONLY_RE.match(part):
            continue
        pieces = [p.strip() for p in part.split(separator)]
        if len(pieces) > 2 or not all(_IDENT_RE.match(p) for p in pieces):
            raise MalformedImportError(statement, f"invalid binding '{part}'")
        alias = pieces[1] if len(pieces) == 2 and pieces[1] != pieces[0] else None
        named.append(NamedImport(pieces[0], alias))
    return named


def _analyze_import(match: re.Match, text: str) -> Union[ImportDefinition, IgnoredImport]:
    module = match.group("module")
    clause = match.group("clause")
    if clause is None:
        return ImportDefinition(module=module)

    clause = " ".join(clause.split())
    if _TYPE_ONLY_RE.match(clause):
        return IgnoredImport(text)

    parsed = _CLAUSE_RE.match(clause)
    if not parsed or not any(parsed.groupdict().values()):
        raise MalformedImportError(text, "unrecognized import clause")

    definition = ImportDefinition(
        module=module,
        default=parsed.group("default"),
        namespace=parsed.group("namespace"),
    )
    named_body = parsed.group("named")
    if named_body is not None:
        definition.named = _parse_named(named_body, text, " as ")
        if definition.side_effect_only and named_body.strip():
            # every member was a type
            return IgnoredImport(text)
    return definition


def _analyze_require(match: re.Match, text: str) -> ImportDefinition:
    module = match.group("module")
    binding = match.group("binding")
    if binding.startswith("{"):
        return ImportDefinition(
            module=module,
            named=_parse_named(binding[1:-1], text, ":"),
        )
    return ImportDefinition(module=module, namespace=binding)


def analyze_raw_import_statement(
    statement: Union[RawStatement, str],
) -> Union[ImportDefinition, IgnoredImport]:
    """Turn one raw statement into an :class:`ImportDefinition`.

    Type-only statements come back as :class:`IgnoredImport`.  Raises
    :class:`MalformedImportError` when the statement cannot be understood.
    """
    text = statement.text if isinstance(statement, RawStatement) else statement
    text = text.strip()

    match = IMPORT_RE.fullmatch(text)
    if match:
        return _analyze_import(match, text)
    match = REQUIRE_RE.fullmatch(text)
    if match:
        return _analyze_require(match, text)
    raise MalformedImportError(text, "not an import or require statement")


def merge_import_definitions(
    definitions: Iterable[ImportDefinition],
) -> Dict[str, ImportDefinition]:
    """Fold definitions targeting the same specifier into one.

    Keys keep the order in which each specifier was first seen.  Inputs are
    not mutated.
    """
    merged: Dict[str, ImportDefinition] = {}
    for definition in definitions:
        existing = merged.get(definition.module)
        if existing is None:
            merged[definition.module] = ImportDefinition(
                module=definition.module,
                default=definition.default,
                namespace=definition.namespace,
                named=list(definition.named),
            )
        else:
            existing.merge(definition)
    return merged
