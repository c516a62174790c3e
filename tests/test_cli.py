"""Tests for CLI commands."""

from pathlib import Path

import pytest

from taskwarden.cli.app import app
from tests.conftest import make_document, make_task, read_document, write_document


@pytest.fixture
def settings_file(tmp_path: Path, work_dir: Path) -> Path:
    path = tmp_path / "settings.toml"
    path.write_text(f'work_dir = "{work_dir}"\nwatch_config = false\n')
    return path


def _invoke(cli_runner, settings_file: Path, *args: str):
    return cli_runner.invoke(app, [*args, "--settings", str(settings_file)])


class TestValidateCommand:
    """Tests for 'taskwarden validate'."""

    def test_valid_document(self, cli_runner, settings_file, config_path):
        write_document(config_path, make_document({"a": make_task()}))
        result = _invoke(cli_runner, settings_file, "validate")
        assert result.exit_code == 0
        assert "Valid: 1 tasks, 0 archived, 0 warnings" in result.stdout

    def test_missing_document(self, cli_runner, settings_file):
        result = _invoke(cli_runner, settings_file, "validate")
        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_invalid_document(self, cli_runner, settings_file, config_path):
        write_document(config_path, make_document({"bad": make_task(schedule="x")}))
        result = _invoke(cli_runner, settings_file, "validate")
        assert result.exit_code == 1
        assert "invalid cron expression" in result.stdout

    def test_missing_script_is_warning(self, cli_runner, settings_file, config_path):
        write_document(
            config_path, make_document({"a": make_task(script="scripts/gone.py")})
        )
        result = _invoke(cli_runner, settings_file, "validate")
        assert result.exit_code == 0
        assert "1 warnings" in result.stdout

    def test_strict_rejects_missing_script(
        self, cli_runner, settings_file, config_path
    ):
        write_document(
            config_path, make_document({"a": make_task(script="scripts/gone.py")})
        )
        result = _invoke(cli_runner, settings_file, "validate", "--strict")
        assert result.exit_code == 1
        assert "script file not found" in result.stdout

    def test_missing_settings_file(self, cli_runner, tmp_path):
        result = cli_runner.invoke(
            app, ["validate", "--settings", str(tmp_path / "missing.toml")]
        )
        assert result.exit_code == 1
        assert "not found" in result.stdout


class TestTaskCommand:
    """Tests for 'taskwarden task'."""

    @pytest.fixture(autouse=True)
    def document(self, config_path: Path) -> Path:
        return write_document(
            config_path,
            make_document(
                {
                    "backup": make_task(name="Backup"),
                    "report": make_task(
                        type="once", name="Report", schedule="2099-01-01T00:00:00Z"
                    ),
                }
            ),
        )

    def test_no_action_shows_help(self, cli_runner):
        result = cli_runner.invoke(app, ["task"])
        assert result.exit_code == 0
        assert "Manage scheduled tasks" in result.stdout

    def test_unknown_action(self, cli_runner, settings_file):
        result = _invoke(cli_runner, settings_file, "task", "explode", "backup")
        assert result.exit_code == 1
        assert "Unknown action" in result.stdout

    def test_id_required(self, cli_runner, settings_file):
        result = _invoke(cli_runner, settings_file, "task", "show")
        assert result.exit_code == 1
        assert "Task ID is required" in result.stdout

    def test_list(self, cli_runner, settings_file):
        result = _invoke(cli_runner, settings_file, "task", "list")
        assert result.exit_code == 0
        assert "backup" in result.stdout
        assert "report" in result.stdout
        assert "Total: 2 task(s)" in result.stdout

    def test_show(self, cli_runner, settings_file):
        result = _invoke(cli_runner, settings_file, "task", "show", "backup")
        assert result.exit_code == 0
        assert "Backup" in result.stdout
        assert "*/5 * * * *" in result.stdout

    def test_show_unknown(self, cli_runner, settings_file):
        result = _invoke(cli_runner, settings_file, "task", "show", "zzz")
        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_add(self, cli_runner, settings_file, config_path):
        result = _invoke(
            cli_runner,
            settings_file,
            "task",
            "add",
            "nightly",
            "--name",
            "Nightly",
            "--schedule",
            "0 3 * * *",
            "--script",
            "scripts/other.py",
            "--arg",
            "full",
            "--tag",
            "ops",
        )
        assert result.exit_code == 0, result.stdout
        assert "Added task nightly" in result.stdout

        task = read_document(config_path)["tasks"]["nightly"]
        assert task["schedule"] == "0 3 * * *"
        assert task["args"] == ["full"]
        assert task["tags"] == ["ops"]
        assert task["timeout"] == 28_800_000

    def test_add_invalid(self, cli_runner, settings_file, config_path):
        result = _invoke(
            cli_runner,
            settings_file,
            "task",
            "add",
            "broken",
            "--name",
            "Broken",
            "--schedule",
            "whenever",
            "--script",
            "scripts/job.py",
        )
        assert result.exit_code == 1
        assert "broken" not in read_document(config_path)["tasks"]

    def test_add_duplicate(self, cli_runner, settings_file):
        result = _invoke(
            cli_runner,
            settings_file,
            "task",
            "add",
            "backup",
            "--name",
            "Again",
            "--schedule",
            "* * * * *",
            "--script",
            "scripts/job.py",
        )
        assert result.exit_code == 1
        assert "already exists" in result.stdout

    def test_disable_and_enable(self, cli_runner, settings_file, config_path):
        result = _invoke(cli_runner, settings_file, "task", "disable", "backup")
        assert result.exit_code == 0
        assert read_document(config_path)["tasks"]["backup"]["enabled"] is False

        result = _invoke(cli_runner, settings_file, "task", "enable", "backup")
        assert result.exit_code == 0
        assert read_document(config_path)["tasks"]["backup"]["enabled"] is True

    def test_delete_with_force(self, cli_runner, settings_file, config_path):
        result = _invoke(cli_runner, settings_file, "task", "delete", "backup", "-f")
        assert result.exit_code == 0
        assert "backup" not in read_document(config_path)["tasks"]

    def test_delete_cancelled(self, cli_runner, settings_file, config_path):
        result = cli_runner.invoke(
            app,
            ["task", "delete", "backup", "--settings", str(settings_file)],
            input="n\n",
        )
        assert result.exit_code == 0
        assert "Cancelled" in result.stdout
        assert "backup" in read_document(config_path)["tasks"]

    def test_archive(self, cli_runner, settings_file, config_path):
        result = _invoke(cli_runner, settings_file, "task", "archive", "report")
        assert result.exit_code == 0
        document = read_document(config_path)
        assert "report" in document["completed_tasks"]

        result = _invoke(cli_runner, settings_file, "archived")
        assert result.exit_code == 0
        assert "report" in result.stdout

    def test_archive_cron_task(self, cli_runner, settings_file):
        result = _invoke(cli_runner, settings_file, "task", "archive", "backup")
        assert result.exit_code == 1
        assert "only once tasks" in result.stdout

    def test_archived_empty(self, cli_runner, settings_file):
        result = _invoke(cli_runner, settings_file, "archived")
        assert result.exit_code == 0
        assert "No archived tasks" in result.stdout

    def test_run(self, cli_runner, settings_file):
        result = _invoke(cli_runner, settings_file, "task", "run", "backup")
        assert result.exit_code == 0, result.stdout
        assert "job ran" in result.stdout
        assert "completed" in result.stdout

    def test_run_once_task_archives_it(self, cli_runner, settings_file, config_path):
        result = _invoke(cli_runner, settings_file, "task", "run", "report")
        assert result.exit_code == 0, result.stdout
        document = read_document(config_path)
        assert "report" not in document["tasks"]
        assert "report" in document["completed_tasks"]

    def test_run_failure(self, cli_runner, settings_file, work_dir: Path):
        (work_dir / "scripts" / "job.py").write_text("import sys\nsys.exit(4)\n")
        result = _invoke(cli_runner, settings_file, "task", "run", "backup")
        assert result.exit_code == 1
        assert "exit code 4" in result.stdout

    def test_run_missing_script(self, cli_runner, settings_file, work_dir: Path):
        (work_dir / "scripts" / "job.py").unlink()
        result = _invoke(cli_runner, settings_file, "task", "run", "backup")
        assert result.exit_code == 1
        assert "skipped" in result.stdout
