"""Tests for the subprocess supervisor (spawns real Python processes)."""

import asyncio
import sys
from pathlib import Path

import pytest

from taskwarden.process.errors import ProcessExecutionError, ProcessTimeoutError
from taskwarden.process.supervisor import SubprocessSupervisor, build_command


def _script(tmp_path: Path, body: str, name: str = "script.py") -> Path:
    path = tmp_path / name
    path.write_text(body)
    return path


@pytest.fixture
def supervisor(tmp_path: Path) -> SubprocessSupervisor:
    return SubprocessSupervisor(cwd=tmp_path, environment={"GREETING": "hello"})


class TestBuildCommand:
    def test_python_uses_current_interpreter(self):
        command = build_command(Path("/x/job.py"), ["--a"])
        assert command == [sys.executable, "/x/job.py", "--a"]

    def test_shell_script(self):
        command = build_command(Path("/x/job.sh"), [])
        assert command[0].endswith("bash")
        assert command[1:] == ["/x/job.sh"]

    def test_unknown_suffix_runs_directly(self):
        assert build_command(Path("/x/job"), ["1"]) == ["/x/job", "1"]


class TestSubprocessSupervisor:
    @pytest.mark.asyncio
    async def test_success(self, supervisor, tmp_path: Path):
        script = _script(
            tmp_path,
            "import os, sys\n"
            "print(os.environ['TASKWARDEN_TASK_ID'], os.environ['GREETING'], *sys.argv[1:])\n"
            "print(os.getcwd())\n",
        )
        process = await supervisor.start_script(
            script_path=script, args=["a", "b"], timeout_ms=10_000, task_id="t1"
        )
        assert process.pid is not None
        assert process.process_id.startswith("t1-")

        result = await process.result
        lines = result.stdout.splitlines()
        assert result.exit_code == 0
        assert lines[0] == "t1 hello a b"
        assert Path(lines[1]).resolve() == tmp_path.resolve()
        assert supervisor.running == []

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, supervisor, tmp_path: Path):
        script = _script(
            tmp_path, "import sys\nprint('partial')\nsys.stderr.write('broken')\nsys.exit(3)\n"
        )
        process = await supervisor.start_script(
            script_path=script, args=[], timeout_ms=10_000, task_id="t1"
        )
        with pytest.raises(ProcessExecutionError) as exc_info:
            await process.result
        assert exc_info.value.exit_code == 3
        assert exc_info.value.stdout.strip() == "partial"
        assert exc_info.value.stderr == "broken"

    @pytest.mark.asyncio
    async def test_timeout_kills(self, supervisor, tmp_path: Path):
        script = _script(tmp_path, "import time\ntime.sleep(30)\n")
        process = await supervisor.start_script(
            script_path=script, args=[], timeout_ms=300, task_id="slow"
        )
        with pytest.raises(ProcessTimeoutError, match="timed out after 300ms"):
            await asyncio.wait_for(process.result, timeout=10)
        assert supervisor.running == []

    @pytest.mark.asyncio
    async def test_terminate(self, supervisor, tmp_path: Path):
        script = _script(tmp_path, "import time\ntime.sleep(30)\n")
        process = await supervisor.start_script(
            script_path=script, args=[], timeout_ms=None, task_id="t1"
        )
        assert supervisor.running == [process.process_id]

        assert supervisor.terminate(process.process_id) is True
        with pytest.raises(ProcessExecutionError) as exc_info:
            await asyncio.wait_for(process.result, timeout=10)
        assert exc_info.value.exit_code != 0
        assert supervisor.terminate(process.process_id) is False

    def test_terminate_unknown(self, supervisor):
        assert supervisor.terminate("nothing-here") is False

    @pytest.mark.asyncio
    async def test_unstartable_program(self, supervisor, tmp_path: Path):
        script = _script(tmp_path, "not executable", name="job")
        with pytest.raises(ProcessExecutionError, match="cannot start"):
            await supervisor.start_script(
                script_path=script, args=[], timeout_ms=None, task_id="t1"
            )
