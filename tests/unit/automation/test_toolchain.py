"""
Unit Tests for the Node toolchain wrapper
"""
import asyncio
import sys
from unittest.mock import AsyncMock

import pytest

from forgeloop.modules.automation.toolchain import (
    CommandResult,
    NodeToolchain,
    PackageManagerType,
    is_installable_package,
    terminate_process,
)


class TestCommandResult:
    """Tests for CommandResult"""

    def test_success_requires_zero_exit_and_no_timeout(self):
        assert CommandResult("x", 0).success is True
        assert CommandResult("x", 1).success is False
        assert CommandResult("x", 0, timed_out=True).success is False

    def test_output_combines_streams(self):
        assert CommandResult("x", 0, stdout="out", stderr="err").output == "out\nerr"
        assert CommandResult("x", 0, stderr="err").output == "err"


class TestPackageManager:
    """Tests for package manager detection and install commands"""

    def test_detect_from_lock_files(self, tmp_path):
        toolchain = NodeToolchain()
        assert toolchain.detect_package_manager(tmp_path) == PackageManagerType.NPM

        (tmp_path / "yarn.lock").touch()
        assert toolchain.detect_package_manager(tmp_path) == PackageManagerType.YARN

        (tmp_path / "pnpm-lock.yaml").touch()
        assert toolchain.detect_package_manager(tmp_path) == PackageManagerType.PNPM

    def test_install_commands(self):
        toolchain = NodeToolchain()
        assert toolchain._install_command(PackageManagerType.NPM, None, False) == "npm install"
        assert toolchain._install_command(PackageManagerType.NPM, ["zod"], True) == "npm install --save-dev zod"
        assert toolchain._install_command(PackageManagerType.YARN, ["zod", "clsx"], False) == "yarn add zod clsx"
        assert toolchain._install_command(PackageManagerType.PNPM, ["vitest"], True) == "pnpm add -D vitest"

    def test_installable_package_names(self):
        assert is_installable_package("lucide-react")
        assert is_installable_package("@radix-ui/react-dialog")
        assert not is_installable_package("./components/Button")
        assert not is_installable_package("@/lib/utils")
        assert not is_installable_package("")


class TestCommands:
    """Tests for running toolchain commands"""

    @pytest.mark.asyncio
    async def test_run_captures_output(self, tmp_path):
        result = await NodeToolchain()._run("echo hello", tmp_path, timeout=10)

        assert result.success is True
        assert result.stdout.strip() == "hello"

    @pytest.mark.asyncio
    async def test_run_times_out(self, tmp_path):
        result = await NodeToolchain()._run("exec sleep 5", tmp_path, timeout=0.2)

        assert result.timed_out is True
        assert result.exit_code == -1
        assert result.success is False

    @pytest.mark.asyncio
    async def test_install_skips_local_imports(self, tmp_path):
        """Test an install of only relative/alias imports never spawns"""
        toolchain = NodeToolchain()
        toolchain._run = AsyncMock()

        result = await toolchain.install(tmp_path, packages=["./Button", "@/lib/utils"])

        assert result.success is True
        toolchain._run.assert_not_called()

    @pytest.mark.asyncio
    async def test_build_runs_non_interactively(self, tmp_path):
        (tmp_path / "yarn.lock").touch()
        toolchain = NodeToolchain(build_timeout=30)
        toolchain._run = AsyncMock(return_value=CommandResult("yarn run build", 0))

        await toolchain.build(tmp_path)

        args, kwargs = toolchain._run.call_args
        assert args[0] == "yarn run build"
        assert args[2] == 30
        assert kwargs["extra_env"]["CI"] == "true"


class TestTerminateProcess:
    """Tests for escalating termination"""

    @pytest.mark.asyncio
    async def test_terminates_running_process(self):
        process = await asyncio.create_subprocess_exec(
            sys.executable, "-c", "import time; time.sleep(30)",
            start_new_session=True
        )
        code = await terminate_process(process, grace_seconds=2)

        assert code is not None
        assert process.returncode is not None

    @pytest.mark.asyncio
    async def test_already_exited_process(self):
        process = await asyncio.create_subprocess_exec(sys.executable, "-c", "pass")
        await process.wait()

        assert await terminate_process(process, grace_seconds=1) == 0
