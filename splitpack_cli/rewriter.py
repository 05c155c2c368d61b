"""Render deferred loads and splice them over a module's import statements."""

from __future__ import annotations

import json
import posixpath
from typing import List, Optional

from .config import CODE_EXTENSIONS
from .models import (
    BinaryAsset,
    CssAsset,
    DependencyRef,
    ExternalPackage,
    ImportBlock,
    ImportDefinition,
    ModulePath,
    RelativeModule,
)


def output_path_for(module_path: ModulePath) -> str:
    """Compiled output location of a module, relative to the output root."""
    root, ext = posixpath.splitext(module_path)
    if ext in CODE_EXTENSIONS:
        return root + ".js"
    return module_path


def relative_specifier(from_file: str, to_file: str) -> str:
    rel = posixpath.relpath(to_file, posixpath.dirname(from_file) or ".")
    if not rel.startswith("../"):
        rel = "./" + rel
    return rel


def load_expression(
    ref: DependencyRef,
    *,
    importer: ModulePath,
    wrapper: Optional[str] = None,
    externals_url: Optional[str] = None,
    asset_out: Optional[str] = None,
) -> str:
    """Expression evaluating to the loaded dependency at runtime."""
    if isinstance(ref, ExternalPackage):
        return f"await import({json.dumps(externals_url)})"
    if wrapper:
        return f"await {wrapper}({json.dumps(ref.path)})"
    importer_out = output_path_for(importer)
    if isinstance(ref, BinaryAsset):
        target = relative_specifier(importer_out, asset_out or ref.unique_name)
        return f"new URL({json.dumps(target)}, import.meta.url).href"
    if isinstance(ref, RelativeModule):
        target = relative_specifier(importer_out, output_path_for(ref.path))
        return f"await import({json.dumps(target)})"
    raise ValueError(f"No deferred load for {ref!r}")


def _bind(definition: ImportDefinition, source: str) -> List[str]:
    """Statements binding the definition's local names off *source*."""
    lines: List[str] = []
    if definition.default:
        lines.append(f"const {definition.default} = {source}.default;")
    if definition.namespace:
        lines.append(f"const {definition.namespace} = {source};")
    members = []
    for named in definition.named:
        if named.name == "*":
            lines.append(f"const {named.local} = {source};")
        elif named.alias:
            members.append(f"{named.name}: {named.alias}")
        else:
            members.append(named.name)
    if members:
        lines.append(f"const {{ {', '.join(members)} }} = {source};")
    return lines


def render_deferred_load(
    ref: DependencyRef,
    definition: ImportDefinition,
    *,
    importer: ModulePath,
    identifier: Optional[str] = None,
    wrapper: Optional[str] = None,
    externals_url: Optional[str] = None,
    asset_out: Optional[str] = None,
) -> List[str]:
    """Statements replacing the static import of *ref* by *importer*.

    Relative modules and externals are bound to *identifier* first and the
    requested names are destructured from it.  Assets bind their URL.
    CSS produces nothing: stylesheets are bundled separately.
    """
    if isinstance(ref, CssAsset):
        return []

    expression = load_expression(
        ref,
        importer=importer,
        wrapper=wrapper,
        externals_url=externals_url,
        asset_out=asset_out,
    )

    if isinstance(ref, BinaryAsset):
        if definition.side_effect_only:
            return []
        lines = []
        url_names = [definition.default] if definition.default else []
        url_names += [n.local for n in definition.named if n.name == "default"]
        for local in url_names:
            lines.append(f"const {local} = {expression};")
        if definition.namespace:
            lines.append(f"const {definition.namespace} = {{ default: {expression} }};")
        return lines

    if identifier is None:
        raise ValueError(f"An identifier is required to load {ref!r}")

    if isinstance(ref, ExternalPackage):
        lines = [f"const {{ {identifier} }} = {expression};"]
    elif definition.side_effect_only:
        return [f"{expression};"]
    else:
        lines = [f"const {identifier} = {expression};"]
    return lines + _bind(definition, identifier)


def replace_import_block(source: str, block: Optional[ImportBlock], replacement: List[str]) -> str:
    """Remove every statement of *block* and insert *replacement* where the
    first one stood.  All other bytes of *source* are kept as they are."""
    if block is None:
        if not replacement:
            return source
        return "\n".join(replacement) + "\n" + source

    pieces: List[str] = []
    cursor = 0
    for index, statement in enumerate(block.statements):
        pieces.append(source[cursor:statement.start])
        if index == 0:
            pieces.append("\n".join(replacement))
        cursor = statement.end
    pieces.append(source[cursor:])
    return "".join(pieces)
