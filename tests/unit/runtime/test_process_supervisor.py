"""
Unit Tests for the Process Supervisor

Dev servers are small Python scripts spawned through FakeToolchain, so
these tests exercise real subprocesses, real ports and real HTTP probes.
"""
import asyncio
import json
import shutil
import socket
import sys

import pytest

from fakes import CRASHING_DEV_SERVER, SILENT_DEV_SERVER, FakeToolchain
from forgeloop.core.exceptions import ServerStartTimeoutError
from forgeloop.modules.runtime.port_allocator import is_port_in_use
from forgeloop.modules.runtime.process_supervisor import (
    ProcessEventKind,
    ProcessSupervisor,
    classify_output_line,
)
from forgeloop.modules.runtime.state_store import ProjectRecord, ProjectStateStore


def _base_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


def _supervisor(tmp_path, toolchain, **kwargs):
    store = ProjectStateStore(state_file=tmp_path / "state.json")
    options = {
        "ready_poll_interval": 0.1,
        "ready_max_attempts": 100,
        "stop_grace_seconds": 2.0,
        "base_port": _base_port(),
    }
    options.update(kwargs)
    return ProcessSupervisor(store, toolchain=toolchain, **options), store


class TestClassifyOutputLine:
    """Tests for dev-server output tagging"""

    def test_ready_markers(self):
        assert classify_output_line(" ✓ Ready in 1.2s") == "ready"
        assert classify_output_line("started server on 0.0.0.0:3000") == "ready"

    def test_compiling_and_warning(self):
        assert classify_output_line(" ○ Compiling /page ...") == "compiling"
        assert classify_output_line("Warning: Extra attributes") == "warning"

    def test_other_lines_are_info(self):
        assert classify_output_line("  - Local: http://localhost:3000") == "info"


class TestStart:
    """Tests for starting dev servers"""

    @pytest.mark.asyncio
    async def test_start_serves_http_and_records_state(self, tmp_path, project_dir):
        """Test a healthy server is started, probed and persisted"""
        toolchain = FakeToolchain()
        supervisor, store = _supervisor(tmp_path, toolchain)

        try:
            result = await supervisor.start(project_dir, "demo")

            assert result["success"] is True
            assert result["already_running"] is False
            assert result["url"] == f"http://localhost:{result['port']}"
            assert toolchain.dev_calls[0]["port"] == result["port"]
            assert store.get("demo").port == result["port"]
            assert supervisor.is_running("demo")
            assert await is_port_in_use(result["port"])
        finally:
            await supervisor.stop_all()

    @pytest.mark.asyncio
    async def test_second_start_returns_existing_port(self, tmp_path, project_dir):
        """Test starting a running project is a no-op"""
        toolchain = FakeToolchain()
        supervisor, _ = _supervisor(tmp_path, toolchain)

        try:
            first = await supervisor.start(project_dir, "demo")
            second = await supervisor.start(project_dir, "demo")

            assert second["success"] is True
            assert second["already_running"] is True
            assert second["port"] == first["port"]
            assert len(toolchain.dev_calls) == 1
        finally:
            await supervisor.stop_all()

    @pytest.mark.asyncio
    async def test_restored_record_counts_as_running(self, tmp_path, project_dir):
        toolchain = FakeToolchain()
        supervisor, store = _supervisor(tmp_path, toolchain)
        await store.add(ProjectRecord("demo", 4123, "http://localhost:4123", str(project_dir), "2024-01-01T00:00:00"))

        result = await supervisor.start(project_dir, "demo")

        assert result["already_running"] is True
        assert result["port"] == 4123
        assert toolchain.dev_calls == []

    @pytest.mark.asyncio
    async def test_name_defaults_to_directory(self, tmp_path, project_dir):
        supervisor, store = _supervisor(tmp_path, FakeToolchain())
        try:
            await supervisor.start(project_dir)
            assert "demo-app" in store
        finally:
            await supervisor.stop_all()

    @pytest.mark.asyncio
    async def test_outdated_dependencies_are_installed(self, tmp_path, project_dir):
        """Test a manifest newer than node_modules triggers an install"""
        (project_dir / "node_modules").rmdir()
        toolchain = FakeToolchain()
        supervisor, _ = _supervisor(tmp_path, toolchain)

        try:
            await supervisor.start(project_dir, "demo")
            assert len(toolchain.install_calls) == 1
        finally:
            await supervisor.stop_all()

    @pytest.mark.asyncio
    async def test_build_cache_removed_before_start(self, tmp_path, project_dir):
        (project_dir / ".next").mkdir()
        supervisor, _ = _supervisor(tmp_path, FakeToolchain())

        try:
            await supervisor.start(project_dir, "demo")
            assert not (project_dir / ".next").exists()
        finally:
            await supervisor.stop_all()

    @pytest.mark.asyncio
    async def test_crashing_server_reports_failure(self, tmp_path, project_dir):
        """Test a server that exits early yields success False"""
        supervisor, store = _supervisor(tmp_path, FakeToolchain(dev_script=CRASHING_DEV_SERVER))

        result = await supervisor.start(project_dir, "demo")

        assert result["success"] is False
        assert "exited with code 1" in result["error"]
        assert not supervisor.is_running("demo")

    @pytest.mark.asyncio
    @pytest.mark.skipif(shutil.which("lsof") is None, reason="needs lsof to find the listening process")
    async def test_stop_restored_project_kills_port_owner(self, tmp_path, project_dir):
        """Test a project known only from the state file is stopped by its port"""
        port = _base_port()
        server = await asyncio.create_subprocess_exec(
            sys.executable, "-m", "http.server", str(port), "--bind", "127.0.0.1",
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL
        )
        try:
            for _ in range(100):
                if await is_port_in_use(port):
                    break
                await asyncio.sleep(0.05)

            state_file = tmp_path / "state.json"
            state_file.write_text(json.dumps({"demo": ProjectRecord(
                name="demo",
                port=port,
                url=f"http://localhost:{port}",
                project_path=str(project_dir),
                start_time="2024-01-01T00:00:00"
            ).to_dict()}))
            store = ProjectStateStore(state_file=state_file)
            assert await store.initialize() == 1

            result = await ProcessSupervisor(store, toolchain=FakeToolchain()).stop("demo")

            assert result == {"success": True, "message": "Server stopped (by port)", "port": port}
            assert "demo" not in store
            assert await asyncio.wait_for(server.wait(), timeout=5) is not None
            assert "demo" not in json.loads(state_file.read_text())
        finally:
            if server.returncode is None:
                server.kill()
                await server.wait()
        assert "demo" not in store

    @pytest.mark.asyncio
    async def test_silent_server_times_out(self, tmp_path, project_dir):
        """Test a server that never answers raises and is stopped"""
        toolchain = FakeToolchain(dev_script=SILENT_DEV_SERVER)
        supervisor, store = _supervisor(
            tmp_path, toolchain, ready_max_attempts=3, ready_poll_interval=0.05
        )

        with pytest.raises(ServerStartTimeoutError) as exc_info:
            await supervisor.start(project_dir, "demo")

        assert exc_info.value.code == "SERVER_START_TIMEOUT"
        assert "3 attempts" in exc_info.value.message
        assert not supervisor.is_running("demo")
        assert toolchain.processes[0].returncode is not None


class TestStop:
    """Tests for stopping dev servers"""

    @pytest.mark.asyncio
    async def test_stop_forgets_project(self, tmp_path, project_dir):
        """Test the record and live entry are gone after stop"""
        supervisor, store = _supervisor(tmp_path, FakeToolchain())
        started = await supervisor.start(project_dir, "demo")

        result = await supervisor.stop("demo")

        assert result == {"success": True, "message": "Server stopped", "port": started["port"]}
        assert "demo" not in store
        assert not supervisor.is_running("demo")

    @pytest.mark.asyncio
    async def test_stop_then_start_gets_a_free_port(self, tmp_path, project_dir):
        toolchain = FakeToolchain()
        supervisor, _ = _supervisor(tmp_path, toolchain)

        try:
            await supervisor.start(project_dir, "demo")
            await supervisor.stop("demo")
            result = await supervisor.start(project_dir, "demo")

            assert result["success"] is True
            assert result["already_running"] is False
            assert len(toolchain.dev_calls) == 2
        finally:
            await supervisor.stop_all()

    @pytest.mark.asyncio
    async def test_stop_unknown_project(self, tmp_path):
        supervisor, _ = _supervisor(tmp_path, FakeToolchain())
        assert await supervisor.stop("ghost") == {"success": False, "error": "Server not running"}

    @pytest.mark.asyncio
    async def test_stop_all_counts_projects(self, tmp_path, project_dir):
        supervisor, _ = _supervisor(tmp_path, FakeToolchain())
        await supervisor.start(project_dir, "one")
        await supervisor.start(project_dir, "two")

        assert await supervisor.stop_all() == 2
        assert supervisor.get_running_projects() == []

    @pytest.mark.asyncio
    async def test_restart_unknown_project(self, tmp_path):
        supervisor, _ = _supervisor(tmp_path, FakeToolchain())
        result = await supervisor.restart("ghost")
        assert result["success"] is False


class TestEvents:
    """Tests for the lifecycle event stream"""

    @pytest.mark.asyncio
    async def test_events_cover_full_lifecycle(self, tmp_path, project_dir):
        """Test STARTING, OUTPUT, READY and EXITED arrive in order"""
        supervisor, _ = _supervisor(tmp_path, FakeToolchain())
        await supervisor.start(project_dir, "demo")
        await supervisor.stop("demo")

        events = []

        async def collect():
            async for event in supervisor.events("demo"):
                events.append(event)

        await asyncio.wait_for(collect(), timeout=5)

        kinds = [event.kind for event in events]
        assert kinds[0] == ProcessEventKind.STARTING
        assert ProcessEventKind.READY in kinds
        assert kinds[-1] == ProcessEventKind.EXITED
        lines = [event.line for event in events if event.kind == ProcessEventKind.OUTPUT]
        assert any("Ready in" in line for line in lines)
        ready = next(event for event in events if event.kind == ProcessEventKind.READY)
        assert ready.url.startswith("http://localhost:")

    @pytest.mark.asyncio
    async def test_events_for_unknown_project_end_immediately(self, tmp_path):
        supervisor, _ = _supervisor(tmp_path, FakeToolchain())
        assert [event async for event in supervisor.events("ghost")] == []

    @pytest.mark.asyncio
    async def test_get_running_projects_summary(self, tmp_path, project_dir):
        supervisor, _ = _supervisor(tmp_path, FakeToolchain())
        try:
            started = await supervisor.start(project_dir, "demo")
            projects = supervisor.get_running_projects()

            assert len(projects) == 1
            assert projects[0]["name"] == "demo"
            assert projects[0]["port"] == started["port"]
            assert projects[0]["projectPath"] == str(project_dir)
        finally:
            await supervisor.stop_all()
