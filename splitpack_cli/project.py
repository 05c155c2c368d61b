"""Full-stack project build: server bundle plus code-split web app.

Expected layout under the project's ``src`` directory::

    .env                 optional, exposed to both builds as process.env.*
    prebuild.ts          optional, run with node before each build
    postbuild.ts         optional, run with node after each build
    server/index.ts      bundled to <out>/index.mjs for node
    webapp/index.ts      graph-built into <out>/public
    webapp/index.html    optional page template
    webapp/index.css     optional root stylesheet
    webapp/favicon.png   optional
    webapp/app-icons/    optional
    webapp/manifest.json optional

The web app is built into a staging directory and only moved over
``<out>/public`` once the build and ``index.html`` generation succeeded, so
a failed rebuild leaves the previously served files in place.
"""

from __future__ import annotations

import asyncio
import hashlib
import html
import json
import logging
import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import dotenv_values

from . import config
from .builder import build, clean_out_dir
from .compiler import Compiler, define_args
from .config_manager import ProjectConfig
from .errors import HookError
from .graph import get_module_path_extension
from .models import BuilderOptions, BuildResult, ExternalModulesOptions

logger = logging.getLogger(__name__)

SERVER_BANNER = (
    "--banner:js=import { createRequire } from 'module';"
    "const require = createRequire(import.meta.url);"
)
PLACEHOLDER_HTML = "Nothing to see here..."

_ENV_KEY_RE = re.compile(r"^[A-Za-z_$][\w$]*$")


@dataclass
class ProjectBuild:
    server: Optional[Path]
    webapp: Optional[BuildResult]


def find_entrypoint(directory: Path, name: str = "index") -> Optional[Path]:
    extension = get_module_path_extension(directory / name)
    if extension is None:
        return None
    return directory / (name + extension)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

def load_env_file(project: ProjectConfig) -> Dict[str, str]:
    """Variables of ``<src>/.env``; empty when the file does not exist."""
    env_file = project.src / config.ENV_FILE
    if not env_file.is_file():
        return {}
    return {key: value for key, value in dotenv_values(env_file).items() if value is not None}


def process_env_defines(project: ProjectConfig, env: Dict[str, str]) -> Dict[str, str]:
    """``--define`` replacements for ``process.env.*`` in compiled code.

    Only *env* is inlined, never the whole process environment, so that
    nothing but the project's own ``.env`` ends up in browser bundles.
    """
    defines = {
        f"process.env.{key}": json.dumps(value.strip())
        for key, value in env.items()
        if _ENV_KEY_RE.match(key)
    }
    defines["process.env.NODE_ENV"] = json.dumps("production" if project.production else "development")
    defines["process.env.VERSION"] = json.dumps(project.version)
    return defines


# ---------------------------------------------------------------------------
# Build scripts
# ---------------------------------------------------------------------------

async def run_hook(
    project: ProjectConfig,
    compiler: Compiler,
    script_name: str,
    *,
    is_webapp: bool,
    public: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
) -> bool:
    """Bundle ``<src>/<script_name>`` for node and run it; False when absent.

    The script learns which build it belongs to through ``SPLITPACK_WEBAPP``
    ("true"/"false") and finds the project through ``SPLITPACK_SRC``,
    ``SPLITPACK_OUT``, ``SPLITPACK_PUBLIC`` and ``SPLITPACK_VERSION``.
    """
    script = project.src / script_name
    if not script.is_file():
        return False

    domain = "webapp" if is_webapp else "server"
    bundled = project.out / f".{script.stem}-{domain}.mjs"
    child_env = {
        **os.environ,
        **(env or {}),
        "SPLITPACK_WEBAPP": "true" if is_webapp else "false",
        "SPLITPACK_SRC": str(project.src),
        "SPLITPACK_OUT": str(project.out),
        "SPLITPACK_PUBLIC": str(public or project.public),
        "SPLITPACK_VERSION": project.version,
    }
    try:
        await compiler.bundle(script, bundled, platform="node", external_packages=True)
        logger.info("Running %s for %s", script_name, domain)
        try:
            process = await asyncio.create_subprocess_exec(
                config.NODE_BIN, str(bundled), env=child_env, cwd=str(project.src)
            )
        except FileNotFoundError as exc:
            logger.error("Cannot run %s: %s not found", script_name, config.NODE_BIN)
            raise HookError(script_name, 127) from exc
        returncode = await process.wait()
    finally:
        if bundled.exists():
            bundled.unlink()

    if returncode != 0:
        raise HookError(script_name, returncode)
    return True


# ---------------------------------------------------------------------------
# Builds
# ---------------------------------------------------------------------------

async def build_server(
    project: ProjectConfig,
    compiler: Compiler,
    env: Optional[Dict[str, str]] = None,
) -> Optional[Path]:
    """Bundle ``server/index.*`` for node; None when the project has no server."""
    entrypoint = find_entrypoint(project.src / "server")
    if entrypoint is None:
        logger.info("No server entrypoint under %s", project.src / "server")
        return None
    if env is None:
        env = load_env_file(project)

    await run_hook(project, compiler, config.PREBUILD_SCRIPT, is_webapp=False, env=env)
    outfile = project.out / "index.mjs"
    await compiler.bundle(
        entrypoint,
        outfile,
        platform="node",
        external_packages=True,
        minify=project.production,
        sourcemap=not project.production,
        extra_args=[SERVER_BANNER, *define_args(process_env_defines(project, env))],
    )
    await run_hook(project, compiler, config.POSTBUILD_SCRIPT, is_webapp=False, env=env)
    logger.info("Server built: %s", outfile)
    return outfile


def webapp_options(
    project: ProjectConfig,
    entrypoint: Path,
    outdir: Optional[Path] = None,
    define: Optional[Dict[str, str]] = None,
) -> BuilderOptions:
    webapp_dir = entrypoint.parent
    return BuilderOptions(
        entrypoint=entrypoint.name,
        project_root=webapp_dir,
        outdir=str(outdir or project.public),
        recurse=True,
        asset_dir="assets",
        external_modules=ExternalModulesOptions(convert=True, bundle=True),
        package_dirs=[
            os.path.relpath(project.src / "node_modules", webapp_dir),
            os.path.relpath(project.src.parent / "node_modules", webapp_dir),
        ],
        define=dict(define or {}),
    )


def _replace_dir(staging: Path, target: Path) -> None:
    previous = target.parent / f".{target.name}-old"
    if previous.exists():
        shutil.rmtree(previous)
    if target.exists():
        target.rename(previous)
    staging.rename(target)
    if previous.exists():
        shutil.rmtree(previous)


def _relocate(result: BuildResult, staging: Path, target: Path) -> None:
    prefix = staging.as_posix()
    for node in result.graph.values():
        if node.out and (node.out == prefix or node.out.startswith(prefix + "/")):
            node.out = target.as_posix() + node.out[len(prefix):]
    result.outdir = target


async def build_webapp(
    project: ProjectConfig,
    compiler: Compiler,
    env: Optional[Dict[str, str]] = None,
) -> Optional[BuildResult]:
    """Graph-build ``webapp/index.*`` and swap it in as the public dir."""
    public = project.public
    entrypoint = find_entrypoint(project.src / "webapp")
    if entrypoint is None:
        public.mkdir(parents=True, exist_ok=True)
        (public / "index.html").write_text(PLACEHOLDER_HTML, encoding="utf-8")
        return None
    if env is None:
        env = load_env_file(project)

    staging = project.out / config.PUBLIC_STAGING_DIR
    clean_out_dir(staging)
    try:
        await run_hook(project, compiler, config.PREBUILD_SCRIPT, is_webapp=True, public=staging, env=env)
        options = webapp_options(project, entrypoint, staging, process_env_defines(project, env))
        result = await build(options, compiler)
        webapp_post_build(project, staging)
        _replace_dir(staging, public)
        _relocate(result, staging, public)
    finally:
        if staging.exists():
            shutil.rmtree(staging)

    await run_hook(project, compiler, config.POSTBUILD_SCRIPT, is_webapp=True, env=env)
    logger.info("WebApp built: %s", public)
    return result


async def build_project(project: ProjectConfig, compiler: Compiler) -> ProjectBuild:
    """Clean the output directory and build server and web app concurrently."""
    env = load_env_file(project)
    clean_out_dir(project.out)
    server, webapp = await asyncio.gather(
        build_server(project, compiler, env),
        build_webapp(project, compiler, env),
    )
    return ProjectBuild(server=server, webapp=webapp)


# ---------------------------------------------------------------------------
# index.html
# ---------------------------------------------------------------------------

def _ensure_document(doc: str) -> str:
    lowered = doc.lower()
    if "<html" not in lowered:
        return f"<!DOCTYPE html>\n<html>\n<head>\n</head>\n<body>\n{doc}\n</body>\n</html>\n"
    if "</head>" not in lowered:
        start = lowered.find("<html")
        close = doc.find(">", start) + 1
        doc = doc[:close] + "\n<head>\n</head>" + doc[close:]
        lowered = doc.lower()
    if "</body>" not in lowered:
        end = lowered.rfind("</html>")
        if end == -1:
            end = len(doc)
        doc = doc[:end] + "<body>\n</body>\n" + doc[end:]
    return doc


def _insert_before(doc: str, closing_tag: str, fragment: str) -> str:
    index = doc.lower().rfind(closing_tag)
    return doc[:index] + fragment + "\n" + doc[index:]


def cache_key(project: ProjectConfig, public: Optional[Path] = None) -> str:
    """Version query appended to emitted asset URLs."""
    index_js = (public or project.public) / "index.js"
    digest = hashlib.sha256(index_js.read_bytes() if index_js.exists() else b"").hexdigest()[:8]
    return f"{project.version}-{digest}"


def webapp_post_build(project: ProjectConfig, public: Optional[Path] = None) -> Path:
    """Write ``index.html`` into *public* (the public dir by default)."""
    webapp_dir = project.src / "webapp"
    public = public or project.public
    public.mkdir(parents=True, exist_ok=True)

    template = webapp_dir / "index.html"
    doc = _ensure_document(template.read_text(encoding="utf-8") if template.exists() else "")
    head: List[str] = []
    body: List[str] = []
    version = cache_key(project, public)

    if "<title" not in doc.lower():
        title = project.title or project.name or "Splitpack WebApp"
        head.append(f"<title>{html.escape(title)}</title>")

    body.append(f'<script type="module" src="/index.js?v={version}"></script>')

    for css_file in sorted(public.glob("*.css")):
        head.append(f'<link rel="stylesheet" href="/{css_file.name}?v={version}">')

    favicon = webapp_dir / "favicon.png"
    if favicon.exists():
        shutil.copyfile(favicon, public / "favicon.png")
        head.append('<link rel="icon" href="/favicon.png">')

    app_icons = webapp_dir / "app-icons"
    if app_icons.is_dir():
        shutil.copytree(app_icons, public / "app-icons", dirs_exist_ok=True)

    root_css = webapp_dir / "index.css"
    if root_css.exists():
        css_name = "index.css"
        count = 0
        while (public / css_name).exists():
            count += 1
            css_name = f"index-{count}.css"
        shutil.copyfile(root_css, public / css_name)
        head.append(f'<link rel="stylesheet" href="/{css_name}?v={version}">')

    manifest = webapp_dir / "manifest.json"
    if manifest.exists():
        shutil.copyfile(manifest, public / "manifest.json")
        head.append('<link rel="manifest" href="/manifest.json" />')

    if head:
        doc = _insert_before(doc, "</head>", "\n".join(head))
    doc = _insert_before(doc, "</body>", "\n".join(body))

    target = public / "index.html"
    target.write_text(doc, encoding="utf-8")
    return target
