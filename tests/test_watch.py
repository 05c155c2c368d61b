"""Tests for the watch/rebuild controller."""

import asyncio
import logging
import sys
from pathlib import Path

import pytest

from conftest import FakeCompiler, write_tree
from splitpack_cli import config
from splitpack_cli.config_manager import load_project_config
from splitpack_cli.errors import CompilationError
from splitpack_cli.watch import SERVER, WEBAPP, ServerProcess, WatchController


class FakeServer:
    """Counts live instances instead of spawning processes."""

    def __init__(self):
        self.alive = 0
        self.starts = 0
        self.max_alive = 0

    async def start(self):
        self.alive += 1
        self.starts += 1
        self.max_alive = max(self.max_alive, self.alive)

    async def stop(self):
        await asyncio.sleep(0)
        self.alive = 0

    async def restart(self):
        await self.stop()
        await self.start()


def _stub_builds(controller, calls, fail=()):
    for name in (SERVER, WEBAPP):
        async def fake_build(name=name):
            await asyncio.sleep(0)
            calls.append(name)
            if name in fail:
                raise CompilationError(name, ["broken"])
            return name
        controller.domains[name].build = fake_build


class TestRebuild:
    """Tests for WatchController.rebuild."""

    def test_server_rebuild_restarts_single_instance(self, fullstack_project: Path):
        """Test that restarts never leave two servers."""
        project = load_project_config(fullstack_project)
        server = FakeServer()
        notified = []

        async def scenario():
            controller = WatchController(project, FakeCompiler(), notified.append, server)
            _stub_builds(controller, [])
            await controller.start()
            await controller.rebuild(SERVER)
            await controller.rebuild(SERVER)

        asyncio.run(scenario())

        assert server.starts == 3
        assert server.alive == 1
        assert server.max_alive == 1
        assert notified == [False, False]

    def test_webapp_rebuild_notifies_without_restart(self, fullstack_project: Path):
        """Test a web app rebuild."""
        project = load_project_config(fullstack_project)
        server = FakeServer()
        notified = []

        async def scenario():
            controller = WatchController(project, FakeCompiler(), notified.append, server)
            _stub_builds(controller, [])
            await controller.start()
            await controller.rebuild(WEBAPP)

        asyncio.run(scenario())

        assert server.starts == 1
        assert notified == [True]

    def test_failed_build_keeps_server(self, fullstack_project: Path):
        """Test that a failed build keeps the server running."""
        project = load_project_config(fullstack_project)
        server = FakeServer()
        notified = []

        async def scenario():
            controller = WatchController(project, FakeCompiler(), notified.append, server)
            calls = []
            _stub_builds(controller, calls)
            await controller.start()
            _stub_builds(controller, calls, fail={SERVER})
            return await controller.rebuild(SERVER)

        ok = asyncio.run(scenario())

        assert ok is False
        assert server.starts == 1
        assert server.alive == 1
        assert notified == []

    def test_failed_initial_server_build_does_not_start_server(self, fullstack_project: Path):
        """Test a failing first server build."""
        project = load_project_config(fullstack_project)
        server = FakeServer()

        async def scenario():
            controller = WatchController(project, FakeCompiler(), None, server)
            _stub_builds(controller, [], fail={SERVER})
            await controller.start()

        asyncio.run(scenario())

        assert server.starts == 0

    def test_requests_during_build_coalesce(self, fullstack_project: Path):
        """Test coalescing requests during a build."""
        project = load_project_config(fullstack_project)
        calls = []

        async def scenario():
            controller = WatchController(project, FakeCompiler())
            release = asyncio.Event()

            async def slow_build():
                calls.append(1)
                await release.wait()

            controller.domains[WEBAPP].build = slow_build
            first = asyncio.create_task(controller.rebuild(WEBAPP))
            await asyncio.sleep(0)
            second = await controller.rebuild(WEBAPP)
            third = await controller.rebuild(WEBAPP)
            release.set()
            return await first, second, third, controller.domains[WEBAPP].builds

        first, second, third, builds = asyncio.run(scenario())

        assert (first, second, third) == (True, False, False)
        assert len(calls) == 2
        assert builds == 2


    def test_request_during_server_restart_runs_again(self, fullstack_project: Path):
        """Test a request arriving while the server restarts."""
        project = load_project_config(fullstack_project)
        notified = []

        class SlowServer(FakeServer):
            def __init__(self):
                super().__init__()
                self.restarting = asyncio.Event()
                self.release = asyncio.Event()

            async def restart(self):
                self.restarting.set()
                await self.release.wait()
                await super().restart()

        async def scenario():
            server = SlowServer()
            controller = WatchController(project, FakeCompiler(), notified.append, server)
            calls = []
            _stub_builds(controller, calls)
            await controller.start()
            first = asyncio.create_task(controller.rebuild(SERVER))
            await server.restarting.wait()
            second = await controller.rebuild(SERVER)
            server.release.set()
            return await first, second, calls.count(SERVER), server

        first, second, server_builds, server = asyncio.run(scenario())

        assert (first, second) == (True, False)
        assert server_builds == 3
        assert server.starts == 3
        assert server.max_alive == 1
        assert notified == [False, False]

    def test_failed_webapp_rebuild_keeps_public(self, fullstack_project: Path):
        """Test that a failed web app rebuild keeps the served files."""
        project = load_project_config(fullstack_project)

        async def scenario():
            controller = WatchController(project, FakeCompiler())
            await controller.start()
            write_tree(project.src, {"webapp/index.ts": 'import "./missing";\n'})
            return await controller.rebuild(WEBAPP)

        ok = asyncio.run(scenario())

        assert ok is False
        assert (project.public / "index.html").exists()
        assert (project.public / "index.js").exists()
        assert not (project.out / config.PUBLIC_STAGING_DIR).exists()

    def test_unreadable_module_fails_rebuild(self, fullstack_project: Path):
        """Test a rebuild over a file that cannot be decoded."""
        project = load_project_config(fullstack_project)

        async def scenario():
            controller = WatchController(project, FakeCompiler())
            await controller.start()
            (project.src / "webapp" / "greet.ts").write_bytes(b"export const s = '\xe9';\n")
            return await controller.rebuild(WEBAPP)

        assert asyncio.run(scenario()) is False
        assert (project.public / "greet.js").exists()

    def test_no_server_entry_does_not_start_server(self, temp_dir: Path):
        """Test a project without a server entrypoint."""
        write_tree(temp_dir, {"webapp/index.ts": "export {};\n"})
        project = load_project_config(temp_dir)
        server = FakeServer()

        async def scenario():
            controller = WatchController(project, FakeCompiler(), None, server)
            await controller.start()
            await controller.rebuild(SERVER)

        asyncio.run(scenario())

        assert server.starts == 0


class TestChangeRouting:
    """Tests for mapping changed files to build domains."""

    def test_affected_domains(self, fullstack_project: Path):
        """Test routing paths to build domains."""
        project = load_project_config(fullstack_project)
        controller = WatchController(project, FakeCompiler())
        src = project.src

        assert controller.affected_domains(src / "webapp" / "greet.ts") == {WEBAPP}
        assert controller.affected_domains(src / "server" / "index.ts") == {SERVER}
        assert controller.affected_domains(src / "shared" / "util.ts") == {SERVER}
        assert controller.affected_domains(project.out / "public" / "index.js") == set()
        assert controller.affected_domains(src / "node_modules" / "x" / "index.js") == set()
        assert controller.affected_domains(src / "webapp" / ".greet.ts.swp") == set()

    def test_shared_file_in_webapp_graph(self, fullstack_project: Path):
        """Test a shared file used by the web app."""
        project = load_project_config(fullstack_project)
        controller = WatchController(project, FakeCompiler())
        shared = (project.src / "shared" / "util.ts").resolve()
        controller.webapp_files = {shared}

        assert controller.affected_domains(shared) == {SERVER, WEBAPP}

    def test_handle_changes_rebuilds_each_domain_once(self, fullstack_project: Path):
        """Test one rebuild per domain for a batch."""
        project = load_project_config(fullstack_project)
        calls = []

        async def scenario():
            controller = WatchController(project, FakeCompiler())
            _stub_builds(controller, calls)
            return await controller.handle_changes([
                project.src / "webapp" / "greet.ts",
                project.src / "webapp" / "index.ts",
                project.src / "server" / "index.ts",
            ])

        domains = asyncio.run(scenario())

        assert domains == {SERVER, WEBAPP}
        assert sorted(calls) == [SERVER, WEBAPP]

    def test_run_debounces_bursts(self, fullstack_project: Path):
        """Test batching a burst of changes."""
        project = load_project_config(fullstack_project)
        calls = []

        async def scenario():
            controller = WatchController(project, FakeCompiler())
            _stub_builds(controller, calls)
            queue = asyncio.Queue()
            for name in ("index.ts", "greet.ts", "greet.css"):
                queue.put_nowait(project.src / "webapp" / name)
            runner = asyncio.create_task(controller.run(queue, debounce=0.05))
            await asyncio.sleep(0.3)
            runner.cancel()
            with pytest.raises(asyncio.CancelledError):
                await runner

        asyncio.run(scenario())

        assert calls == [WEBAPP]


    def test_extra_watch_paths(self, temp_dir: Path):
        """Test routing extra watched paths to the web app."""
        write_tree(temp_dir, {
            "splitpack.toml": '[project]\nsrc = "src"\n\n[watch]\nfiles = "content.json"\ndirs = ["../locales"]\n',
            "src/content.json": "{}",
            "locales/en.json": "{}",
        })
        project = load_project_config(temp_dir)
        controller = WatchController(project, FakeCompiler())

        assert controller.affected_domains(project.src / "content.json") == {WEBAPP}
        assert controller.affected_domains(temp_dir / "locales" / "en.json") == {WEBAPP}
        assert controller.affected_domains(temp_dir / "locales" / "fr" / "x.json") == {WEBAPP}
        assert controller.affected_domains(project.src / "other.json") == {SERVER}

    def test_run_logs_crashed_rebuild(self, fullstack_project: Path, caplog):
        """Test logging a rebuild that raised."""
        project = load_project_config(fullstack_project)

        async def scenario():
            controller = WatchController(project, FakeCompiler())

            async def crash():
                raise RuntimeError("disk on fire")

            controller.domains[WEBAPP].build = crash
            queue = asyncio.Queue()
            queue.put_nowait(project.src / "webapp" / "index.ts")
            runner = asyncio.create_task(controller.run(queue, debounce=0.01))
            await asyncio.sleep(0.2)
            runner.cancel()
            with pytest.raises(asyncio.CancelledError):
                await runner
            return controller

        with caplog.at_level(logging.ERROR, logger="splitpack_cli.watch"):
            controller = asyncio.run(scenario())

        assert "disk on fire" in caplog.text
        assert not controller.domains[WEBAPP].lock.locked()



def test_initial_build_writes_both_domains(fullstack_project: Path):
    """Test the first build on start."""
    project = load_project_config(fullstack_project)
    compiler = FakeCompiler()

    async def scenario():
        controller = WatchController(project, compiler)
        await controller.start()
        return controller

    controller = asyncio.run(scenario())

    assert (project.out / "index.mjs").exists()
    assert (project.public / "index.html").exists()
    assert (project.src / "webapp" / "greet.ts").resolve() in controller.webapp_files


def test_server_process_restart_leaves_one_process():
    """Test restarting a real child process."""
    command = [sys.executable, "-c", "import time; time.sleep(30)"]

    async def scenario():
        server = ServerProcess(command, stop_timeout=5.0)
        await server.start()
        first = server.process
        await server.restart()
        second = server.process
        assert first.returncode is not None
        assert server.running
        await server.stop()
        assert second.returncode is not None
        assert not server.running

    asyncio.run(scenario())
