"""Project configuration loaded from ``splitpack.toml``.

Layout of the file (every section and key is optional)::

    [project]
    src = "."
    out = "dist"
    title = "My App"
    version = "1.0.0"
    production = false

    [build]
    outdir = "dist"
    recurse = true
    asset_dir = "assets"
    public_path = "/"
    package_dirs = ["node_modules"]

    [build.external_modules]
    convert = true
    bundle = true
    bundle_out_name = "externals.js"

    [build.define]
    "process.env.API" = '"/api"'

    [watch]
    debounce = 0.3
    port = 8000
    server_command = ["node", "{out}/index.mjs", "--development"]
    files = ["content/pages.json"]
    dirs = ["content/posts"]
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml

from . import config
from .errors import ConfigError
from .models import BuilderOptions, ExternalModulesOptions

DEFAULT_SERVER_COMMAND = ["node", "{out}/index.mjs", "--development"]


@dataclass
class WatchSettings:
    debounce: float = config.DEFAULT_DEBOUNCE_SECONDS
    port: int = 8000
    server_command: List[str] = field(default_factory=lambda: list(DEFAULT_SERVER_COMMAND))
    files: List[str] = field(default_factory=list)
    dirs: List[str] = field(default_factory=list)


@dataclass
class ProjectConfig:
    src: Path
    out: Path
    title: Optional[str] = None
    name: Optional[str] = None
    version: str = "0.0.0"
    production: bool = False
    watch: WatchSettings = field(default_factory=WatchSettings)

    @property
    def public(self) -> Path:
        return self.out / "public"

    def server_command(self) -> List[str]:
        return [part.format(out=self.out, src=self.src) for part in self.watch.server_command]

    def extra_watch_files(self) -> List[Path]:
        return [(self.src / name).resolve() for name in self.watch.files]

    def extra_watch_dirs(self) -> List[Path]:
        return [(self.src / name).resolve() for name in self.watch.dirs]


def load_full_config(config_file: Path) -> Dict[str, Any]:
    """Load the whole TOML file; a missing file is an empty config."""
    if not config_file.exists():
        return {}
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            return toml.load(f)
    except toml.TomlDecodeError as exc:
        raise ConfigError(f"Invalid {config_file.name}: {exc}") from exc


def _check_keys(section: str, values: Dict[str, Any], allowed: set) -> None:
    unknown = sorted(set(values) - allowed)
    if unknown:
        raise ConfigError(f"Unknown key(s) in [{section}]: {', '.join(unknown)}")


def _field_names(cls) -> set:
    return {f.name for f in fields(cls)}


def load_builder_options(
    entrypoint: str,
    project_root: Path,
    config_file: Optional[Path] = None,
    **overrides: Any,
) -> BuilderOptions:
    """Builder options from ``[build]`` with CLI *overrides* applied on top.

    Overrides whose value is ``None`` are ignored.
    """
    config_file = config_file or project_root / config.CONFIG_FILE_NAME
    section = dict(load_full_config(config_file).get("build", {}))
    externals = dict(section.pop("external_modules", {}))

    allowed = _field_names(BuilderOptions) - {"entrypoint", "project_root", "external_modules"}
    _check_keys("build", section, allowed)
    _check_keys("build.external_modules", externals, _field_names(ExternalModulesOptions))

    for key, value in overrides.items():
        if value is None:
            continue
        if key in _field_names(ExternalModulesOptions):
            externals[key] = value
        elif key in allowed:
            section[key] = value
        else:
            raise ConfigError(f"Unknown build option '{key}'")

    return BuilderOptions(
        entrypoint=entrypoint,
        project_root=project_root,
        external_modules=ExternalModulesOptions(**externals),
        **section,
    )


def load_project_config(
    project_root: Path,
    config_file: Optional[Path] = None,
    **overrides: Any,
) -> ProjectConfig:
    """Project layout and watch settings, CLI *overrides* win over the file."""
    config_file = config_file or project_root / config.CONFIG_FILE_NAME
    full = load_full_config(config_file)
    project = dict(full.get("project", {}))
    watch = dict(full.get("watch", {}))

    _check_keys("project", project, _field_names(ProjectConfig) - {"watch"})
    _check_keys("watch", watch, _field_names(WatchSettings))
    for key in ("files", "dirs"):
        if isinstance(watch.get(key), str):
            watch[key] = [watch[key]]

    for key, value in overrides.items():
        if value is None:
            continue
        if key in _field_names(WatchSettings):
            watch[key] = value
        else:
            project[key] = value

    src = project_root / project.pop("src", ".")
    out = project_root / project.pop("out", config.DEFAULT_OUTDIR)
    return ProjectConfig(
        src=src.resolve(),
        out=out.resolve(),
        watch=WatchSettings(**watch),
        **project,
    )
