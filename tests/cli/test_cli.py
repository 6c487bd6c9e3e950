"""Tests for the bootgate CLI exit codes and reports."""

import orjson
import pytest
from typer.testing import CliRunner

from bootgate.cli.main import app

runner = CliRunner()

FAST = {"base": 0.01, "cap": 0.05, "jitter": 0}


@pytest.fixture
def project(tmp_path):
    """A coordinator file with one sqlite dependency and two SQL migrations."""
    upstream = tmp_path / "upstream.db"
    upstream.write_bytes(b"")
    migrations = tmp_path / "migrations"
    migrations.mkdir()
    (migrations / "0001_init.sql").write_text("CREATE TABLE settings (k TEXT PRIMARY KEY, v TEXT);")
    (migrations / "0002_add_users.sql").write_text("CREATE TABLE users (id INTEGER PRIMARY KEY);")

    def write(**overrides):
        data = {
            "dependencies": [{
                "name": "upstream", "probeKind": "sqlite", "connectionTarget": str(upstream),
                "timeout": 2, "backoff": FAST,
            }],
            "migrationsDir": "migrations",
            "ledgerLocation": str(tmp_path / "app.db"),
        }
        data.update(overrides)
        path = tmp_path / "bootgate.json"
        path.write_bytes(orjson.dumps(data))
        return path

    return write


def test_run_ready_exits_zero(project, tmp_path):
    result = runner.invoke(app, ["run", "--config", str(project())])
    assert result.exit_code == 0, result.output
    assert (tmp_path / "app.db").exists()


def test_run_twice_is_still_ready(project):
    path = project()
    assert runner.invoke(app, ["run", "-c", str(path)]).exit_code == 0
    assert runner.invoke(app, ["run", "-c", str(path)]).exit_code == 0


def test_run_missing_config_exits_config_invalid(tmp_path):
    result = runner.invoke(app, ["run", "--config", str(tmp_path / "absent.json")])
    assert result.exit_code == 2


def test_run_unready_dependency_exits_three(project, tmp_path):
    path = project(dependencies=[{
        "name": "db", "probeKind": "sqlite", "connectionTarget": str(tmp_path / "never.db"),
        "timeout": 0.2, "backoff": FAST,
    }])
    result = runner.invoke(app, ["run", "--config", str(path)])
    assert result.exit_code == 3
    assert not (tmp_path / "never.db").exists()


def test_run_broken_migration_exits_four(project, tmp_path):
    (tmp_path / "migrations" / "0003_broken.sql").write_text("CREATE TABLE users (id);")
    result = runner.invoke(app, ["run", "--config", str(project())])
    assert result.exit_code == 4


def test_run_step_module_with_syntax_error_exits_config_invalid(project, tmp_path, monkeypatch):
    (tmp_path / "cli_broken_step.py").write_text("def upgrade(db:\n")
    monkeypatch.syspath_prepend(str(tmp_path))
    path = project(migrationSteps=[{"id": "0003_py", "sourceRef": "cli_broken_step:upgrade"}])
    result = runner.invoke(app, ["run", "--config", str(path)])
    assert result.exit_code == 2
    assert not (tmp_path / "app.db").exists()


def test_check_valid(project):
    result = runner.invoke(app, ["check", "--config", str(project())])
    assert result.exit_code == 0
    assert "configuration ok" in result.stdout
    assert "0002_add_users" in result.stdout


def test_check_unknown_probe_kind(project):
    path = project(dependencies=[{"name": "db", "probeKind": "carrier-pigeon", "connectionTarget": "x"}])
    result = runner.invoke(app, ["check", "--config", str(path)])
    assert result.exit_code == 2


def test_ledger_before_and_after_run(project, tmp_path):
    path = project()
    before = runner.invoke(app, ["ledger", "--config", str(path)])
    assert before.exit_code == 0
    assert "No ledger" in before.stdout

    runner.invoke(app, ["run", "--config", str(path)])
    after = runner.invoke(app, ["ledger", "--location", str(tmp_path / "app.db")])
    assert after.exit_code == 0
    assert "0001_init" in after.stdout
    assert "0002_add_users" in after.stdout


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "bootgate v" in result.stdout
