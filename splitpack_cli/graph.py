"""Recursive module-dependency graph builder.

Walks ES modules from an entrypoint, resolves relative imports against the
filesystem, sorts each dependency into sub-module / CSS / binary asset /
external package, rewrites static imports into deferred loads and compiles
every visited module through a :class:`~splitpack_cli.compiler.Compiler`.

Child modules of one module are visited concurrently on the event loop.  The
shared accumulators need no locking because a module path is always claimed
(placeholder node + visited mark) before the first ``await`` that could let
another visit run: a module imported by two parents is visited once.
"""

from __future__ import annotations

import asyncio
import logging
import os
import posixpath
from pathlib import Path
from typing import Awaitable, Dict, List, Optional, Set

from .analyzer import analyze_raw_import_statement, merge_import_definitions
from .compiler import Compiler, loader_for
from .config import CODE_EXTENSIONS, POSSIBLE_EXTENSIONS
from .errors import MalformedImportError, ModuleReadError, ResolutionError
from .models import (
    AssetFile,
    BinaryAsset,
    BuilderOptions,
    BuildResult,
    CssAsset,
    DependencyRef,
    ExternalPackage,
    IgnoredImport,
    ImportDefinition,
    ModuleNode,
    ModulePath,
    ModulesFlatTree,
    RelativeModule,
)
from .naming import NameAllocator
from .rewriter import output_path_for, render_deferred_load, replace_import_block
from .tokenizer import tokenize_imports

logger = logging.getLogger(__name__)


def get_module_path_extension(base: Path) -> Optional[str]:
    """First candidate extension under which *base* is a regular file."""
    for ext in POSSIBLE_EXTENSIONS:
        if Path(str(base) + ext).is_file():
            return ext
    return None


def is_relative_specifier(specifier: str) -> bool:
    return specifier.startswith(".")


async def gather_or_cancel(awaitables: List[Awaitable]) -> None:
    """Await all *awaitables*; on the first failure cancel the rest and re-raise."""
    tasks = [asyncio.ensure_future(aw) for aw in awaitables]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class GraphBuilder:
    """One graph walk.  Create a fresh instance per top-level build."""

    def __init__(self, options: BuilderOptions, compiler: Compiler) -> None:
        self.options = options
        self.compiler = compiler
        self.root = Path(options.project_root).resolve()
        self.outdir = self.root / options.outdir

        self.graph: ModulesFlatTree = {}
        self.external_modules: List[str] = []
        self.css_files: List[ModulePath] = []
        self.asset_files: List[AssetFile] = []
        self.names = NameAllocator(self.root, salt=options.asset_salt)

        self._visited: Set[ModulePath] = set()
        self.entrypoint: ModulePath = ""

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def to_module_path(self, path: str) -> str:
        """Normalise *path* (absolute or root-relative) to a project key."""
        if os.path.isabs(path):
            path = os.path.relpath(path, self.root)
        return posixpath.normpath(path.replace(os.sep, "/"))

    def resolve(self, candidate: str, specifier: str, importer: Optional[ModulePath]) -> ModulePath:
        extension = get_module_path_extension(self.root / candidate)
        if extension is None:
            raise ResolutionError(specifier, importer)
        return posixpath.normpath(candidate + extension)

    def resolve_package_css(self, specifier: str) -> Optional[ModulePath]:
        for package_dir in self.options.package_dirs:
            candidate = self.root / package_dir / specifier
            if candidate.is_file():
                return self.to_module_path(str(candidate))
        return None

    @property
    def entry_outdir(self) -> str:
        return posixpath.dirname(self.entrypoint)

    def asset_out(self, asset: AssetFile) -> str:
        return posixpath.normpath(
            posixpath.join(self.entry_outdir, self.options.asset_dir, asset.unique_name)
        )

    # ------------------------------------------------------------------
    # Graph bookkeeping (never awaits)
    # ------------------------------------------------------------------

    def claim(self, module_path: ModulePath) -> ModuleNode:
        node = self.graph.get(module_path)
        if node is None:
            node = self.graph[module_path] = ModuleNode()
        return node

    def link(self, parent: ModulePath, ref: DependencyRef) -> ModuleNode:
        self.claim(parent).imports.add(ref)
        child = self.claim(ref.key)
        child.add_parent(parent)
        return child

    def add_css(self, parent: ModulePath, css_path: ModulePath) -> None:
        self.link(parent, CssAsset(css_path))
        if css_path not in self.css_files:
            self.css_files.append(css_path)

    def claim_visit(self, module_path: ModulePath) -> bool:
        """Mark *module_path* as visited; False if someone already did."""
        if module_path in self._visited:
            return False
        self._visited.add(module_path)
        self.claim(module_path)
        return True

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------

    async def build(self) -> BuildResult:
        entry = self.to_module_path(self.options.entrypoint)
        self.entrypoint = self.resolve(entry, self.options.entrypoint, None)
        if self.claim_visit(self.entrypoint):
            await self.process(self.entrypoint)
        logger.debug(
            "Graph for %s: %d nodes, %d externals, %d css, %d assets",
            self.entrypoint,
            len(self.graph),
            len(self.external_modules),
            len(self.css_files),
            len(self.asset_files),
        )
        return BuildResult(
            graph=self.graph,
            external_modules=self.external_modules,
            css_files=self.css_files,
            asset_files=self.asset_files,
            outdir=self.outdir,
            entrypoint=self.entrypoint,
        )

    async def process(self, module_path: ModulePath) -> None:
        logger.debug("Visiting %s", module_path)
        try:
            source = await asyncio.to_thread((self.root / module_path).read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ModuleReadError(module_path, str(exc)) from exc

        block = tokenize_imports(source)
        passthrough: List[str] = []
        definitions: List[ImportDefinition] = []
        statements_by_module: Dict[str, List[str]] = {}

        for statement in block.statements if block else []:
            try:
                analyzed = analyze_raw_import_statement(statement)
            except MalformedImportError as exc:
                logger.warning("Leaving import untouched in %s: %s", module_path, exc)
                passthrough.append(statement.text)
                continue
            if isinstance(analyzed, IgnoredImport):
                continue
            definitions.append(analyzed)
            statements_by_module.setdefault(analyzed.module, []).append(statement.text)

        rendered: List[str] = []
        to_visit: List[ModulePath] = []
        importer_dir = posixpath.dirname(module_path)
        externals = self.options.external_modules
        wrapper = self.options.module_resolver_wrapper_function

        for index, (specifier, definition) in enumerate(merge_import_definitions(definitions).items()):
            if not is_relative_specifier(specifier):
                if specifier.endswith(".css"):
                    css_path = self.resolve_package_css(specifier)
                    if css_path is not None:
                        self.add_css(module_path, css_path)
                        continue

                ref = ExternalPackage(specifier)
                self.claim(module_path).imports.add(ref)
                if specifier not in self.external_modules:
                    self.external_modules.append(specifier)

                if externals.convert:
                    slot = self.external_modules.index(specifier)
                    rendered.extend(render_deferred_load(
                        ref,
                        definition,
                        importer=module_path,
                        identifier=f"externalModule{slot}",
                        externals_url=self.options.externals_url,
                    ))
                else:
                    passthrough.extend(statements_by_module[specifier])
                continue

            candidate = posixpath.normpath(posixpath.join(importer_dir, specifier))
            target = self.resolve(candidate, specifier, module_path)
            extension = posixpath.splitext(target)[1]

            if extension not in CODE_EXTENSIONS:
                if extension == ".css":
                    self.add_css(module_path, target)
                    continue

                try:
                    asset = self.names.allocate(target)
                except OSError as exc:
                    raise ModuleReadError(target, str(exc)) from exc
                ref = BinaryAsset(target, asset.unique_name)
                node = self.link(module_path, ref)
                node.asset_name = asset.unique_name
                if asset not in self.asset_files:
                    self.asset_files.append(asset)
                rendered.extend(render_deferred_load(
                    ref,
                    definition,
                    importer=module_path,
                    wrapper=wrapper,
                    asset_out=self.asset_out(asset),
                ))
                continue

            ref = RelativeModule(target)
            self.link(module_path, ref)
            if self.options.recurse and self.claim_visit(target):
                to_visit.append(target)
            rendered.extend(render_deferred_load(
                ref,
                definition,
                importer=module_path,
                identifier=f"module{index}",
                wrapper=wrapper,
            ))

        contents = replace_import_block(source, block, passthrough + rendered)
        children = [self.process(target) for target in to_visit]
        await gather_or_cancel([self.compile(module_path, contents), *children])

    async def compile(self, module_path: ModulePath, contents: str) -> None:
        outfile = self.outdir / output_path_for(module_path)
        await self.compiler.compile_module(
            contents,
            loader=loader_for(module_path),
            outfile=outfile,
            sourcefile=module_path,
            define=self.options.define or None,
        )
        self.graph[module_path].out = outfile.as_posix()
