"""Watch mode: rebuild on file changes and restart the dev server."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import typer
from rich.console import Console
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .compiler import EsbuildCompiler
from .config_manager import ProjectConfig, load_project_config
from .errors import SplitpackError
from .project import load_env_file
from .watch import ServerProcess, WatchController

console = Console()

watch_app = typer.Typer(help="👀 Watch mode: rebuild on change, restart the server")


class ChangeHandler(FileSystemEventHandler):
    """Forward file-system events from the observer thread into the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: "asyncio.Queue[Path]"):
        super().__init__()
        self.loop = loop
        self.queue = queue

    def on_modified(self, event):
        self._handle_event(event)

    def on_created(self, event):
        self._handle_event(event)

    def on_deleted(self, event):
        self._handle_event(event)

    def on_moved(self, event):
        self._handle_event(event)

    def _handle_event(self, event) -> None:
        if event.is_directory:
            return
        for attr in ("src_path", "dest_path"):
            path = getattr(event, attr, None)
            if path:
                self._handle_change(path)

    def _handle_change(self, src_path) -> None:
        file_path = Path(str(src_path))
        # Skip hidden/temp files
        if any(part.startswith(".") for part in file_path.parts):
            return
        self.loop.call_soon_threadsafe(self.queue.put_nowait, file_path)


def _extra_watches(project: ProjectConfig) -> List[Tuple[Path, bool]]:
    """Watched paths outside ``src``: extra dirs, and the parents of extra files."""
    watches: Dict[Path, bool] = {}
    for directory in project.extra_watch_dirs():
        watches[directory] = True
    for file_path in project.extra_watch_files():
        watches.setdefault(file_path.parent, False)
    return [
        (path, recursive)
        for path, recursive in sorted(watches.items())
        if path.is_dir() and not path.is_relative_to(project.src)
    ]


async def _watch(project: ProjectConfig, run_server: bool) -> None:
    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[Path]" = asyncio.Queue()

    server: Optional[ServerProcess] = None
    if run_server:
        env = {**load_env_file(project), "PORT": str(project.watch.port)}
        server = ServerProcess(project.server_command(), env=env)

    def on_rebuild(is_webapp: bool) -> None:
        label = "WebApp Rebuilt" if is_webapp else "Server Rebuilt"
        console.print(f"  [green]✓[/green] {label}")

    controller = WatchController(project, EsbuildCompiler(cwd=project.src), on_rebuild, server)
    await controller.start()

    handler = ChangeHandler(loop, queue)
    observer = Observer()
    observer.schedule(handler, str(project.src), recursive=True)
    for directory, recursive in _extra_watches(project):
        observer.schedule(handler, str(directory), recursive=recursive)
    observer.start()
    try:
        await controller.run(queue, project.watch.debounce)
    finally:
        observer.stop()
        observer.join()
        await controller.stop()


@watch_app.command("start")
def watch(
    root: Path = typer.Option(Path("."), "--root", exists=True, file_okay=False, help="Project root."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file (splitpack.toml)."),
    debounce: Optional[float] = typer.Option(None, "--debounce", "-d", help="Seconds to batch change bursts."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="PORT passed to the server."),
    run_server: bool = typer.Option(True, "--server/--no-server", help="Run the built server."),
):
    """👀 Build the project, start the server and rebuild on every change.

    Example:
      splitpack watch start
      splitpack watch start --port 3000 --debounce 1
      splitpack watch start --no-server
    """
    try:
        project = load_project_config(root.resolve(), config_file, debounce=debounce, port=port)
    except SplitpackError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)

    console.print(f"\n[bold green]👀 Watching[/bold green] [cyan]{project.src}[/cyan] for changes...")
    console.print(f"[dim]  Debounce:  {project.watch.debounce}s")
    console.print(f"  Output:    {project.out}")
    if run_server:
        console.print(f"  Server:    {' '.join(project.server_command())} (PORT={project.watch.port})")
    console.print("  Press Ctrl+C to stop[/dim]\n")

    try:
        asyncio.run(_watch(project, run_server))
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped watching.[/yellow]")
