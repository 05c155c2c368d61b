"""Watch/rebuild controller for the server and web-app build domains.

Each domain has its own lock: a rebuild request that arrives while the same
domain is building only marks it dirty, and the running build loops once
more when it finishes.  Builds of one domain therefore never interleave on
the output directory, while the two domains may build concurrently.

A failed rebuild is logged and leaves the previous output and server
process untouched.  A successful server rebuild stops the running server
(waiting for it to exit) before the new one is spawned.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from . import config
from .compiler import Compiler
from .config_manager import ProjectConfig
from .errors import SplitpackError
from .models import BuildResult
from .project import build_server, build_webapp

logger = logging.getLogger(__name__)

SERVER = "server"
WEBAPP = "webapp"

RebuildCallback = Callable[[bool], Any]


class ServerProcess:
    """The built server running as a child process with inherited stdio."""

    def __init__(
        self,
        command: List[str],
        env: Optional[Dict[str, str]] = None,
        stop_timeout: float = config.SERVER_STOP_TIMEOUT,
    ) -> None:
        self.command = command
        self.env = env
        self.stop_timeout = stop_timeout
        self.process: Optional[asyncio.subprocess.Process] = None

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    async def start(self) -> None:
        env = {**os.environ, **(self.env or {})}
        self.process = await asyncio.create_subprocess_exec(*self.command, env=env)
        logger.info("Server started (pid %s): %s", self.process.pid, " ".join(self.command))

    async def stop(self) -> None:
        """Terminate the server and wait until it has exited."""
        process = self.process
        if process is None or process.returncode is not None:
            self.process = None
            return
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("Server pid %s ignored SIGTERM, killing it", process.pid)
            process.kill()
            await process.wait()
        self.process = None

    async def restart(self) -> None:
        await self.stop()
        await self.start()


@dataclass
class BuildDomain:
    name: str
    build: Callable[[], Awaitable[Any]]
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    dirty: bool = False
    builds: int = 0
    result: Any = None


async def _notify(callback: Optional[RebuildCallback], is_webapp: bool) -> None:
    if callback is None:
        return
    outcome = callback(is_webapp)
    if inspect.isawaitable(outcome):
        await outcome


def _log_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Rebuild crashed: %s", exc, exc_info=exc)


class WatchController:
    """Rebuild the domains touched by file changes and react to the result."""

    def __init__(
        self,
        project: ProjectConfig,
        compiler: Compiler,
        on_rebuild: Optional[RebuildCallback] = None,
        server: Optional[ServerProcess] = None,
    ) -> None:
        self.project = project
        self.compiler = compiler
        self.on_rebuild = on_rebuild
        self.server = server
        self.outdir = project.out
        self.webapp_files: Set[Path] = set()
        self.extra_files: Set[Path] = set(project.extra_watch_files())
        self.extra_dirs: List[Path] = project.extra_watch_dirs()
        self.domains: Dict[str, BuildDomain] = {
            SERVER: BuildDomain(SERVER, self._build_server),
            WEBAPP: BuildDomain(WEBAPP, self._build_webapp),
        }

    # ------------------------------------------------------------------
    # Domain builds
    # ------------------------------------------------------------------

    async def _build_server(self) -> Optional[Path]:
        return await build_server(self.project, self.compiler)

    async def _build_webapp(self) -> Optional[BuildResult]:
        result = await build_webapp(self.project, self.compiler)
        if result is None:
            self.webapp_files = set()
        else:
            root = self.project.src / "webapp"
            self.webapp_files = {(root / path).resolve() for path in result.graph}
        return result

    async def start(self) -> None:
        """Initial build of both domains, then launch the server."""
        self.outdir.mkdir(parents=True, exist_ok=True)
        results = await asyncio.gather(
            self.rebuild(SERVER, notify=False),
            self.rebuild(WEBAPP, notify=False),
        )
        if results[0] and self.server is not None and self.domains[SERVER].result is not None:
            await self.server.start()

    async def stop(self) -> None:
        if self.server is not None:
            await self.server.stop()

    async def rebuild(self, domain_name: str, notify: bool = True) -> bool:
        """Build one domain; True if this call ran a build that succeeded.

        Calls arriving while the domain is already building, or while the
        server restarts after a build, return False at once and the
        in-flight call runs one more pass for them.
        """
        domain = self.domains[domain_name]
        if domain.lock.locked():
            domain.dirty = True
            return False

        async with domain.lock:
            while True:
                domain.dirty = False
                try:
                    domain.result = await domain.build()
                    ok = True
                except SplitpackError as exc:
                    logger.warning("%s rebuild failed, keeping previous output: %s", domain_name, exc)
                    ok = False
                domain.builds += 1
                if ok and notify and not domain.dirty:
                    await self._after_rebuild(domain_name)
                if not domain.dirty:
                    break
        return ok

    async def _after_rebuild(self, domain_name: str) -> None:
        if domain_name == SERVER:
            if self.server is not None and self.domains[SERVER].result is not None:
                await self.server.restart()
            await _notify(self.on_rebuild, False)
        else:
            await _notify(self.on_rebuild, True)

    # ------------------------------------------------------------------
    # Change routing
    # ------------------------------------------------------------------

    def affected_domains(self, path: Path) -> Set[str]:
        path = path.resolve()
        if path.is_relative_to(self.outdir) or path.name.startswith("."):
            return set()
        if any(part in config.SKIP_DIRS for part in path.parts):
            return set()

        if path in self.extra_files or any(path.is_relative_to(d) for d in self.extra_dirs):
            return {WEBAPP}

        webapp_dir = self.project.src / "webapp"
        server_dir = self.project.src / "server"
        in_webapp_dir = path.is_relative_to(webapp_dir)

        domains: Set[str] = set()
        if in_webapp_dir or path in self.webapp_files:
            domains.add(WEBAPP)
        if path.is_relative_to(server_dir) or not in_webapp_dir:
            domains.add(SERVER)
        return domains

    async def handle_changes(self, paths: Iterable[Path]) -> Set[str]:
        """Rebuild, concurrently, every domain touched by *paths*."""
        domains: Set[str] = set()
        for path in paths:
            domains |= self.affected_domains(Path(path))
        if domains:
            logger.debug("Changes affect: %s", ", ".join(sorted(domains)))
            await asyncio.gather(*(self.rebuild(name) for name in sorted(domains)))
        return domains

    async def run(self, changes: "asyncio.Queue[Path]", debounce: float) -> None:
        """Consume change events forever, batching bursts within *debounce*."""
        pending: Set[asyncio.Task] = set()
        while True:
            batch = {await changes.get()}
            while True:
                try:
                    batch.add(await asyncio.wait_for(changes.get(), timeout=debounce))
                except asyncio.TimeoutError:
                    break
            task = asyncio.create_task(self.handle_changes(batch))
            pending.add(task)
            task.add_done_callback(pending.discard)
            task.add_done_callback(_log_failure)
