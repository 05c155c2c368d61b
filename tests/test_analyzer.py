"""Tests for import classification and merging."""

import pytest

from splitpack_cli.analyzer import analyze_raw_import_statement, merge_import_definitions
from splitpack_cli.errors import MalformedImportError
from splitpack_cli.models import IgnoredImport, ImportDefinition, NamedImport, RawStatement


class TestAnalyzeRawImportStatement:
    """Tests for analyze_raw_import_statement."""

    def test_default_import(self):
        """Test a default binding."""
        definition = analyze_raw_import_statement('import React from "react";')

        assert definition == ImportDefinition(module="react", default="React")

    def test_namespace_import(self):
        """Test a namespace binding."""
        definition = analyze_raw_import_statement("import * as path from 'path'")

        assert definition.namespace == "path"
        assert definition.default is None

    def test_named_with_alias(self):
        """Test named bindings with an alias."""
        definition = analyze_raw_import_statement('import { a, b as c } from "./mod";')

        assert definition.named == [NamedImport("a"), NamedImport("b", "c")]

    def test_default_and_named(self):
        """Test a default binding followed by named ones."""
        definition = analyze_raw_import_statement('import React, { useState } from "react";')

        assert definition.default == "React"
        assert definition.named == [NamedImport("useState")]

    def test_default_and_namespace(self):
        """Test a default binding followed by a namespace."""
        definition = analyze_raw_import_statement('import def, * as all from "./x";')

        assert definition.default == "def"
        assert definition.namespace == "all"

    def test_side_effect_import(self):
        """Test an import without bindings."""
        definition = analyze_raw_import_statement('import "./styles.css";')

        assert definition.module == "./styles.css"
        assert definition.side_effect_only

    def test_multiline_clause(self):
        """Test a binding clause spread over several lines."""
        definition = analyze_raw_import_statement('import {\n  one,\n  two as deux,\n} from "./n";')

        assert definition.named == [NamedImport("one"), NamedImport("two", "deux")]

    def test_accepts_raw_statement(self):
        """Test passing a RawStatement instead of text."""
        statement = RawStatement(text='import x from "./x";', start=0, end=20, line=1, end_line=1)

        assert analyze_raw_import_statement(statement).default == "x"

    def test_require_namespace(self):
        """Test require() assigned to one name."""
        definition = analyze_raw_import_statement('const fs = require("fs");')

        assert definition == ImportDefinition(module="fs", namespace="fs")

    def test_require_destructured(self):
        """Test destructured require()."""
        definition = analyze_raw_import_statement("const { join, resolve: res } = require('path')")

        assert definition.module == "path"
        assert definition.named == [NamedImport("join"), NamedImport("resolve", "res")]

    def test_type_only_statement_is_ignored(self):
        """Test that 'import type' yields nothing."""
        result = analyze_raw_import_statement('import type { Props } from "./types";')

        assert isinstance(result, IgnoredImport)

    def test_type_only_members_are_ignored(self):
        """Test that inline type members are dropped."""
        result = analyze_raw_import_statement('import { type A, type B } from "./types";')

        assert isinstance(result, IgnoredImport)

    def test_mixed_type_members_keep_values(self):
        """Test that value members survive next to type members."""
        definition = analyze_raw_import_statement('import { type A, value } from "./types";')

        assert definition.named == [NamedImport("value")]

    def test_not_an_import(self):
        """Test text that is not an import statement."""
        with pytest.raises(MalformedImportError):
            analyze_raw_import_statement("export const x = 1;")

    def test_invalid_binding(self):
        """Test a binding that is not an identifier."""
        with pytest.raises(MalformedImportError):
            analyze_raw_import_statement('import { a as b as c } from "./x";')


class TestMergeImportDefinitions:
    """Tests for merge_import_definitions."""

    def test_merges_same_specifier(self):
        """Test merging two imports of one specifier."""
        merged = merge_import_definitions([
            ImportDefinition(module="./a", default="A"),
            ImportDefinition(module="./b", named=[NamedImport("b")]),
            ImportDefinition(module="./a", named=[NamedImport("x"), NamedImport("y", "z")]),
        ])

        assert list(merged) == ["./a", "./b"]
        assert merged["./a"].default == "A"
        assert merged["./a"].named == [NamedImport("x"), NamedImport("y", "z")]

    def test_conflicting_default_becomes_named(self):
        """Test a second default binding turning into a named one."""
        merged = merge_import_definitions([
            ImportDefinition(module="./a", default="First"),
            ImportDefinition(module="./a", default="Second"),
        ])

        assert merged["./a"].default == "First"
        assert merged["./a"].named == [NamedImport("default", "Second")]

    def test_conflicting_namespace_becomes_star_binding(self):
        """Test a second namespace binding."""
        merged = merge_import_definitions([
            ImportDefinition(module="m", namespace="one"),
            ImportDefinition(module="m", namespace="two"),
        ])

        assert merged["m"].namespace == "one"
        assert merged["m"].named == [NamedImport("*", "two")]

    def test_duplicate_bindings_collapse(self):
        """Test identical bindings collapsing into one."""
        merged = merge_import_definitions([
            ImportDefinition(module="./a", named=[NamedImport("x")]),
            ImportDefinition(module="./a", named=[NamedImport("x")]),
        ])

        assert merged["./a"].named == [NamedImport("x")]

    def test_inputs_are_not_mutated(self):
        """Test that merging leaves the inputs untouched."""
        first = ImportDefinition(module="./a", named=[NamedImport("x")])
        second = ImportDefinition(module="./a", named=[NamedImport("y")])

        merge_import_definitions([first, second])

        assert first.named == [NamedImport("x")]

    def test_empty(self):
        """Test merging nothing."""
        assert merge_import_definitions([]) == {}
