"""Post-walk artifact passes: externals bundle, CSS bundle, asset copies."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import posixpath
import shutil
import tempfile
from pathlib import Path
from typing import List, Sequence

from .compiler import Compiler
from .models import BuildResult, ModulePath

logger = logging.getLogger(__name__)


def _intermediate_file(workdir: Path, contents: str) -> Path:
    """Write an aggregator module next to the project's package dirs."""
    fd, name = tempfile.mkstemp(prefix=".splitpack-", suffix=".js", dir=workdir)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(contents)
    return Path(name)


def _remove(*paths: Path) -> None:
    for path in paths:
        path.unlink(missing_ok=True)


def externals_aggregator(modules: Sequence[str]) -> str:
    return "\n".join(
        f"export * as externalModule{index} from {json.dumps(name)};"
        for index, name in enumerate(modules)
    ) + "\n"


def css_aggregator(css_files: Sequence[ModulePath]) -> str:
    lines = []
    for css_file in css_files:
        specifier = css_file if css_file.startswith("../") else "./" + css_file
        lines.append(f"import {json.dumps(specifier)};")
    return "\n".join(lines) + "\n"


async def bundle_external_modules(
    modules: Sequence[str],
    outdir: Path,
    bundle_name: str,
    compiler: Compiler,
    *,
    workdir: Path,
    extra_args: Sequence[str] = (),
) -> Path:
    """Bundle every external package into ``outdir/bundle_name``.

    Package ``i`` is exposed as the namespace export ``externalModule<i>``.
    The aggregator source is removed whether or not the bundle succeeds.
    """
    outdir.mkdir(parents=True, exist_ok=True)
    outfile = outdir / bundle_name
    intermediate = _intermediate_file(workdir, externals_aggregator(modules))
    try:
        await compiler.bundle(intermediate, outfile, extra_args=extra_args)
    finally:
        _remove(intermediate)
    logger.info("Bundled %d external module(s) into %s", len(modules), outfile)
    return outfile


async def bundle_css_files(
    css_files: Sequence[ModulePath],
    outdir: Path,
    bundle_name: str,
    compiler: Compiler,
    *,
    workdir: Path,
) -> Path:
    """Concatenate stylesheets, in discovery order, into ``outdir/bundle_name``."""
    outdir.mkdir(parents=True, exist_ok=True)
    outfile = outdir / bundle_name
    intermediate = _intermediate_file(workdir, css_aggregator(css_files))
    intermediate_out = outdir / intermediate.name
    emitted_css = intermediate_out.with_suffix(".css")
    try:
        await compiler.bundle(intermediate, intermediate_out)
        if emitted_css.exists():
            emitted_css.replace(outfile)
        else:
            outfile.write_text("", encoding="utf-8")
    finally:
        _remove(intermediate, intermediate_out, emitted_css)
    logger.info("Bundled %d stylesheet(s) into %s", len(css_files), outfile)
    return outfile


async def copy_assets(result: BuildResult, asset_dir: str, *, root: Path) -> List[Path]:
    """Copy binary assets under their unique names; record ``out`` on each node."""
    entry_outdir = result.outdir / posixpath.dirname(result.entrypoint)
    directory = entry_outdir / asset_dir
    directory.mkdir(parents=True, exist_ok=True)

    copied: List[Path] = []
    for asset in result.asset_files:
        destination = directory / asset.unique_name
        await asyncio.to_thread(shutil.copyfile, root / asset.asset_path, destination)
        result.graph[asset.asset_path].out = destination.as_posix()
        copied.append(destination)
    return copied
