"""Typer-based CLI for the splitpack module builder."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.tree import Tree

from . import __version__
from .builder import build
from .cli_watch import watch_app
from .compiler import DryRunCompiler, EsbuildCompiler
from .config_manager import load_builder_options, load_project_config
from .errors import SplitpackError
from .graph import GraphBuilder
from .graph_export import export_dot, export_json
from .models import BuilderOptions, ModulesFlatTree
from .project import build_project

console = Console()

app = typer.Typer(
    help="📦 splitpack: code-splitting ES module builder with watch mode.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.add_typer(watch_app, name="watch")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"splitpack v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every visited module."),
):
    """splitpack: build ES modules into independently loadable chunks."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _fail(exc: Exception) -> None:
    console.print(f"[red]✗[/red] {exc}")
    raise typer.Exit(code=1)


def _options(
    entrypoint: str,
    root: Path,
    config_file: Optional[Path],
    **overrides,
) -> BuilderOptions:
    try:
        return load_builder_options(entrypoint, root.resolve(), config_file, **overrides)
    except SplitpackError as exc:
        _fail(exc)


@app.command("build")
def build_command(
    entrypoint: str = typer.Argument(..., help="Module to start from, extension optional."),
    outdir: Optional[str] = typer.Option(None, "--outdir", "-o", help="Output directory."),
    recurse: Optional[bool] = typer.Option(None, "--recurse/--no-recurse", help="Follow relative imports."),
    asset_dir: Optional[str] = typer.Option(None, "--asset-dir", help="Asset subdirectory of the output."),
    public_path: Optional[str] = typer.Option(None, "--public-path", help="URL prefix of the externals bundle."),
    convert: Optional[bool] = typer.Option(
        None, "--convert-externals/--keep-externals", help="Rewrite package imports into deferred loads."
    ),
    bundle: Optional[bool] = typer.Option(
        None, "--bundle-externals/--no-bundle-externals", help="Bundle packages into one file."
    ),
    bundle_out_name: Optional[str] = typer.Option(None, "--externals-name", help="Externals bundle file name."),
    wrapper: Optional[str] = typer.Option(None, "--wrapper", help="Runtime function resolving deferred loads."),
    manifest: Optional[bool] = typer.Option(None, "--manifest/--no-manifest", help="Write modules.json."),
    root: Path = typer.Option(Path("."), "--root", exists=True, file_okay=False, help="Project root."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file (splitpack.toml)."),
):
    """Build an entrypoint, splitting every relative import into its own chunk."""
    options = _options(
        entrypoint,
        root,
        config_file,
        outdir=outdir,
        recurse=recurse,
        asset_dir=asset_dir,
        public_path=public_path,
        convert=convert,
        bundle=bundle,
        bundle_out_name=bundle_out_name,
        module_resolver_wrapper_function=wrapper,
        manifest=manifest,
    )
    try:
        result = asyncio.run(build(options))
    except SplitpackError as exc:
        _fail(exc)

    console.print(f"[green]✓[/green] Built [cyan]{result.entrypoint}[/cyan] into {result.outdir}")
    console.print(
        f"Modules: {len(result.graph)} | Externals: {len(result.external_modules)} | "
        f"Stylesheets: {len(result.css_files)} | Assets: {len(result.asset_files)}"
    )


def _render_tree(graph: ModulesFlatTree, entrypoint: str) -> Tree:
    tree = Tree(f"[bold]{entrypoint}[/bold]")
    expanded = {entrypoint}

    def walk(branch: Tree, path: str) -> None:
        for ref in sorted(graph[path].imports, key=lambda r: r.key):
            label = ref.key
            node = graph.get(ref.key)
            if node is not None and node.asset_name:
                label += f" [dim]→ {node.asset_name}[/dim]"
            if ref.key not in graph:
                label = f"[magenta]{label}[/magenta]"
            child = branch.add(label)
            if ref.key in graph and ref.key not in expanded:
                expanded.add(ref.key)
                walk(child, ref.key)

    walk(tree, entrypoint)
    return tree


@app.command("graph")
def graph_command(
    entrypoint: str = typer.Argument(..., help="Module to start from."),
    fmt: str = typer.Option("tree", "--format", "-f", help="tree, json or dot."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file for json/dot."),
    focus: str = typer.Option("", help="Only export modules reachable from this one (dot)."),
    root: Path = typer.Option(Path("."), "--root", exists=True, file_okay=False, help="Project root."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file (splitpack.toml)."),
):
    """Walk the dependency graph without writing any build output."""
    fmt = fmt.lower()
    if fmt not in {"tree", "json", "dot"}:
        raise typer.BadParameter("Format must be one of: tree, json, dot")

    options = _options(entrypoint, root, config_file, recurse=True)
    try:
        result = asyncio.run(GraphBuilder(options, DryRunCompiler()).build())
    except SplitpackError as exc:
        _fail(exc)

    if fmt == "tree":
        console.print(_render_tree(result.graph, result.entrypoint))
        return

    if output is None:
        output = Path.cwd() / f"modules.{fmt}"
    if fmt == "json":
        export_json(result.graph, output)
    else:
        export_dot(result.graph, output, focus=focus)
    typer.echo(f"Exported graph to {output}")


@app.command("project-build")
def project_build_command(
    root: Path = typer.Option(Path("."), "--root", exists=True, file_okay=False, help="Project root."),
    src: Optional[str] = typer.Option(None, "--src", help="Source directory (server/ and webapp/)."),
    out: Optional[str] = typer.Option(None, "--out", help="Output directory."),
    production: Optional[bool] = typer.Option(None, "--production/--development", help="Minify, no sourcemaps."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file (splitpack.toml)."),
):
    """Build the server bundle and the code-split web app of a project."""
    try:
        project = load_project_config(root.resolve(), config_file, src=src, out=out, production=production)
        built = asyncio.run(build_project(project, EsbuildCompiler(cwd=project.src)))
    except SplitpackError as exc:
        _fail(exc)

    if built.server is not None:
        console.print(f"[green]✓[/green] Server Built: {built.server}")
    if built.webapp is not None:
        console.print(f"[green]✓[/green] WebApp Built: {len(built.webapp.graph)} module(s)")
    else:
        console.print("[yellow]![/yellow] No web app entrypoint, wrote placeholder index.html")


if __name__ == "__main__":
    app()
