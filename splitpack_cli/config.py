"""Static build configuration: extension tables, defaults and env overrides."""

from __future__ import annotations

import os
from typing import Dict, List, Set

ESBUILD_BIN = os.environ.get("SPLITPACK_ESBUILD", "esbuild")
CONFIG_FILE_NAME = os.environ.get("SPLITPACK_CONFIG", "splitpack.toml")

# Extensions compiled as modules; anything else reached through a relative
# import is treated as CSS or a binary asset.
CODE_EXTENSIONS: Set[str] = {".js", ".jsx", ".mjs", ".ts", ".tsx"}

# Tried in order when resolving a specifier to a file.
POSSIBLE_EXTENSIONS: List[str] = [
    "",
    ".ts",
    ".tsx",
    ".js",
    ".jsx",
    ".mjs",
    "/index.ts",
    "/index.tsx",
    "/index.js",
    "/index.jsx",
    "/index.mjs",
]

LOADERS: Dict[str, str] = {
    ".ts": "ts",
    ".tsx": "tsx",
    ".jsx": "jsx",
    ".js": "js",
    ".mjs": "js",
}

DEFAULT_OUTDIR = "dist"
DEFAULT_PUBLIC_PATH = "/"
DEFAULT_EXTERNALS_BUNDLE = "externals.js"
DEFAULT_CSS_BUNDLE = "index.css"
DEFAULT_PACKAGE_DIRS: List[str] = ["node_modules"]
MANIFEST_FILE = "modules.json"

NODE_BIN = os.environ.get("SPLITPACK_NODE", "node")

# Full-stack project layout
ENV_FILE = ".env"
PREBUILD_SCRIPT = "prebuild.ts"
POSTBUILD_SCRIPT = "postbuild.ts"
PUBLIC_STAGING_DIR = ".public-tmp"

# Watch mode
DEFAULT_DEBOUNCE_SECONDS = 0.3
SERVER_STOP_TIMEOUT = 5.0

SKIP_DIRS: Set[str] = {
    "node_modules", ".git", "dist", "build", ".cache", "__pycache__",
}
