"""Pytest configuration and fixtures for splitpack tests."""

import json
import re
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, List

import pytest

from splitpack_cli.compiler import Compiler
from splitpack_cli.errors import CompilationError
from splitpack_cli.models import CompileResult

_CSS_IMPORT_RE = re.compile(r'^import\s+("[^"]+");$', re.MULTILINE)


class FakeCompiler(Compiler):
    """Records every request and writes the source through unchanged.

    ``bundle`` emits a ``.css`` file next to its output holding the
    concatenation of the stylesheets the entrypoint imports, the way
    esbuild does for a JS entry importing CSS.
    """

    def __init__(self, fail_on: str = "") -> None:
        self.sources: Dict[str, str] = {}
        self.bundles: List[Dict[str, object]] = []
        self.defines: Dict[str, Dict[str, str]] = {}
        self.fail_on = fail_on

    async def compile_module(self, source, *, loader, outfile, sourcefile, define=None) -> CompileResult:
        if self.fail_on and sourcefile == self.fail_on:
            raise CompilationError(sourcefile, ["Expected ';' but found 'oops'"])
        self.sources[sourcefile] = source
        self.defines[sourcefile] = dict(define or {})
        outfile.parent.mkdir(parents=True, exist_ok=True)
        outfile.write_text(source, encoding="utf-8")
        return CompileResult(outfile=str(outfile))

    async def bundle(
        self,
        entrypoint,
        outfile,
        *,
        platform="browser",
        external_packages=False,
        minify=False,
        sourcemap=False,
        extra_args=(),
    ) -> CompileResult:
        aggregator = Path(entrypoint).read_text(encoding="utf-8")
        self.bundles.append({
            "entrypoint": Path(entrypoint),
            "outfile": Path(outfile),
            "platform": platform,
            "source": aggregator,
            "minify": minify,
            "extra_args": list(extra_args),
        })
        if self.fail_on == "bundle":
            raise CompilationError(str(entrypoint), ["Could not resolve"])

        outfile = Path(outfile)
        outfile.parent.mkdir(parents=True, exist_ok=True)
        outfile.write_text(aggregator, encoding="utf-8")

        stylesheets = [json.loads(spec) for spec in _CSS_IMPORT_RE.findall(aggregator)]
        if stylesheets:
            base = Path(entrypoint).parent
            css = "".join((base / sheet).read_text(encoding="utf-8") for sheet in stylesheets)
            outfile.with_suffix(".css").write_text(css, encoding="utf-8")
        return CompileResult(outfile=str(outfile))


def write_tree(root: Path, files: Dict[str, str]) -> Path:
    """Create *files* (relative path -> contents) under *root*."""
    for relative, contents in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(contents, encoding="utf-8")
    return root


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def fake_compiler() -> FakeCompiler:
    return FakeCompiler()


@pytest.fixture
def sample_app(temp_dir: Path) -> Path:
    """Small web app: entry, a shared module, a stylesheet, an image, a package."""
    return write_tree(temp_dir, {
        "index.ts": (
            'import React from "react";\n'
            'import { render } from "react-dom";\n'
            'import "./index.css";\n'
            'import { App } from "./app";\n'
            'import { helper } from "./lib/helper";\n'
            "\n"
            "render(App(helper()), document.body);\n"
        ),
        "app.tsx": (
            'import { helper } from "./lib/helper";\n'
            'import logo from "./logo.png";\n'
            'import "./app.css";\n'
            "\n"
            "export const App = (x) => `<img src=${logo}>` + x + helper();\n"
        ),
        "lib/helper.ts": 'export const helper = () => "help";\n',
        "index.css": "body { margin: 0; }\n",
        "app.css": ".app { color: red; }\n",
        "logo.png": "\x89PNG-bytes",
        "node_modules/react/index.js": "export default {};\n",
        "node_modules/react-dom/index.js": "export const render = () => {};\n",
    })


@pytest.fixture
def fullstack_project(temp_dir: Path) -> Path:
    """Project with server/ and webapp/ sources under src/."""
    return write_tree(temp_dir, {
        "splitpack.toml": (
            "[project]\n"
            'src = "src"\n'
            'out = "out"\n'
            'title = "Demo & Co"\n'
            'version = "1.2.3"\n'
        ),
        "src/server/index.ts": 'import http from "http";\nhttp.createServer().listen(8000);\n',
        "src/webapp/index.ts": 'import { greet } from "./greet";\ngreet();\n',
        "src/webapp/greet.ts": 'import "./greet.css";\nexport const greet = () => 1;\n',
        "src/webapp/greet.css": "h1 { font-size: 2em; }\n",
        "src/webapp/index.css": ":root { --c: blue; }\n",
        "src/webapp/manifest.json": "{}\n",
    })
