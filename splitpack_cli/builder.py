"""Top-level build: graph walk followed by the artifact passes."""

from __future__ import annotations

import json
import logging
import posixpath
import shutil
from pathlib import Path
from typing import Optional

from . import config
from .bundler import bundle_css_files, bundle_external_modules, copy_assets
from .compiler import Compiler, EsbuildCompiler, define_args
from .graph import GraphBuilder
from .models import BuilderOptions, BuildResult

logger = logging.getLogger(__name__)


def clean_out_dir(path: Path) -> None:
    """Remove and recreate an output directory."""
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


def write_manifest(result: BuildResult, directory: Path) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / config.MANIFEST_FILE
    target.write_text(json.dumps(result.manifest(), indent=2, sort_keys=True), encoding="utf-8")
    return target


async def build(options: BuilderOptions, compiler: Optional[Compiler] = None) -> BuildResult:
    """Build *options.entrypoint* and return the resulting graph.

    The graph walk compiles every visited module; afterwards externals and
    stylesheets are bundled and assets copied next to the entrypoint's
    output.  Errors from any stage propagate.
    """
    root = Path(options.project_root).resolve()
    compiler = compiler or EsbuildCompiler(cwd=root)

    result = await GraphBuilder(options, compiler).build()
    main_outdir = result.outdir / posixpath.dirname(result.entrypoint)

    if options.external_modules.bundle and result.external_modules:
        await bundle_external_modules(
            result.external_modules,
            main_outdir,
            options.external_modules.bundle_out_name,
            compiler,
            workdir=root,
            extra_args=define_args(options.define),
        )

    if result.css_files:
        await bundle_css_files(
            result.css_files,
            main_outdir,
            options.css_out_name,
            compiler,
            workdir=root,
        )

    if result.asset_files:
        await copy_assets(result, options.asset_dir, root=root)

    if options.manifest:
        write_manifest(result, main_outdir)

    logger.info(
        "Built %s: %d module(s), %d stylesheet(s), %d asset(s)",
        result.entrypoint,
        len(result.graph),
        len(result.css_files),
        len(result.asset_files),
    )
    return result
