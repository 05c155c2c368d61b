"""Core data models shared by the tokenizer, graph builder and bundler."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Union

# Project-relative POSIX path of a resolved module file, extension included.
ModulePath = str


# ---------------------------------------------------------------------------
# Import statements
# ---------------------------------------------------------------------------

@dataclass
class RawStatement:
    """One import/require statement as it appears in the source."""

    text: str
    start: int
    end: int
    line: int
    end_line: int


@dataclass
class ImportBlock:
    statements: List[RawStatement]

    @property
    def lines(self) -> Tuple[int, int]:
        """First and last (1-based) line covered by the statements."""
        return self.statements[0].line, self.statements[-1].end_line


@dataclass(frozen=True)
class NamedImport:
    """``name as alias``; the name ``*`` binds the whole module namespace."""

    name: str
    alias: Optional[str] = None

    @property
    def local(self) -> str:
        return self.alias or self.name


@dataclass
class ImportDefinition:
    module: str
    default: Optional[str] = None
    namespace: Optional[str] = None
    named: List[NamedImport] = field(default_factory=list)

    @property
    def side_effect_only(self) -> bool:
        return self.default is None and self.namespace is None and not self.named

    def add_named(self, named: NamedImport) -> None:
        if named not in self.named:
            self.named.append(named)

    def merge(self, other: "ImportDefinition") -> None:
        """Union the bindings of *other* into this definition."""
        if other.default:
            if self.default is None:
                self.default = other.default
            elif other.default != self.default:
                self.add_named(NamedImport("default", other.default))
        if other.namespace:
            if self.namespace is None:
                self.namespace = other.namespace
            elif other.namespace != self.namespace:
                self.add_named(NamedImport("*", other.namespace))
        for named in other.named:
            self.add_named(named)


@dataclass(frozen=True)
class IgnoredImport:
    """A statement with no runtime artifact (type-only imports)."""

    statement: str
    reason: str = "type-only"


# ---------------------------------------------------------------------------
# Dependency references
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RelativeModule:
    path: ModulePath

    @property
    def key(self) -> str:
        return self.path


@dataclass(frozen=True)
class ExternalPackage:
    name: str

    @property
    def key(self) -> str:
        return self.name


@dataclass(frozen=True)
class CssAsset:
    path: ModulePath

    @property
    def key(self) -> str:
        return self.path


@dataclass(frozen=True)
class BinaryAsset:
    path: ModulePath
    unique_name: str

    @property
    def key(self) -> str:
        return self.path


DependencyRef = Union[RelativeModule, ExternalPackage, CssAsset, BinaryAsset]


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------

@dataclass
class ModuleNode:
    imports: Set[DependencyRef] = field(default_factory=set)
    parents: List[ModulePath] = field(default_factory=list)
    asset_name: Optional[str] = None
    out: Optional[str] = None

    def add_parent(self, parent: ModulePath) -> None:
        if parent not in self.parents:
            self.parents.append(parent)

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "imports": sorted(ref.key for ref in self.imports),
            "parents": list(self.parents),
        }
        if self.asset_name:
            payload["assetName"] = self.asset_name
        if self.out:
            payload["out"] = self.out
        return payload


ModulesFlatTree = Dict[ModulePath, ModuleNode]


@dataclass(frozen=True)
class AssetFile:
    asset_path: ModulePath
    unique_name: str


@dataclass
class CompileResult:
    outfile: str
    warnings: List[str] = field(default_factory=list)


@dataclass
class BuildResult:
    """Everything a top-level build produced."""

    graph: ModulesFlatTree
    external_modules: List[str]
    css_files: List[ModulePath]
    asset_files: List[AssetFile]
    outdir: Path
    entrypoint: ModulePath = ""

    def manifest(self) -> Dict[str, Dict[str, object]]:
        return {path: node.to_dict() for path, node in self.graph.items()}


# ---------------------------------------------------------------------------
# Builder options
# ---------------------------------------------------------------------------

@dataclass
class ExternalModulesOptions:
    convert: bool = False
    bundle: bool = False
    bundle_out_name: str = "externals.js"


@dataclass
class BuilderOptions:
    entrypoint: str
    outdir: str = "dist"
    recurse: bool = False
    asset_dir: str = ""
    public_path: str = "/"
    external_modules: ExternalModulesOptions = field(default_factory=ExternalModulesOptions)
    module_resolver_wrapper_function: Optional[str] = None
    project_root: Path = field(default_factory=Path.cwd)
    package_dirs: List[str] = field(default_factory=lambda: ["node_modules"])
    css_out_name: str = "index.css"
    asset_salt: str = ""
    manifest: bool = False
    define: Dict[str, str] = field(default_factory=dict)

    @property
    def externals_url(self) -> str:
        return self.public_path + self.external_modules.bundle_out_name
