"""Tests for migration step loading and validation."""

from __future__ import annotations

import sys
import types

import aiosqlite
import pytest

from bootgate.exceptions import ConfigInvalidError
from bootgate.migrations.step import (
    compute_checksum,
    discover_steps,
    load_step,
    python_step,
    split_sql,
    sql_step,
    validate_steps,
)


# ── split_sql ───────────────────────────────────────────────────


def test_split_sql_multiple_statements():
    script = """
    -- users
    CREATE TABLE users (id INTEGER PRIMARY KEY);
    CREATE INDEX idx_users ON users (id);
    """
    statements = split_sql(script)
    assert len(statements) == 2
    assert statements[0].endswith("CREATE TABLE users (id INTEGER PRIMARY KEY);")


def test_split_sql_keeps_trigger_body_whole():
    script = (
        "CREATE TABLE a (x);\n"
        "CREATE TRIGGER trg AFTER INSERT ON a BEGIN\n"
        "  UPDATE a SET x = 1;\n"
        "  UPDATE a SET x = 2;\n"
        "END;\n"
    )
    statements = split_sql(script)
    assert len(statements) == 2
    assert "UPDATE a SET x = 2;" in statements[1]


def test_split_sql_trailing_statement_without_semicolon():
    assert split_sql("CREATE TABLE a (x);\nCREATE TABLE b (y)") == [
        "CREATE TABLE a (x);",
        "CREATE TABLE b (y)",
    ]


def test_split_sql_ignores_trailing_comment():
    assert split_sql("CREATE TABLE a (x);\n-- done\n") == ["CREATE TABLE a (x);"]


# ── validate_steps ──────────────────────────────────────────────


def test_validate_steps_accepts_increasing_ids():
    validate_steps(["0001_init", "0002_add_users", "0010_more"])


def test_validate_steps_rejects_out_of_order():
    with pytest.raises(ConfigInvalidError, match="strictly increasing"):
        validate_steps(["0002_add_users", "0001_init"])


def test_validate_steps_rejects_duplicates():
    with pytest.raises(ConfigInvalidError):
        validate_steps(["0001_init", "0001_init"])


def test_validate_steps_rejects_empty_id():
    with pytest.raises(ConfigInvalidError, match="empty"):
        validate_steps(["0001_init", " "])


# ── sql / python steps ──────────────────────────────────────────


async def test_sql_step_applies_statements(db_path):
    step = sql_step("0001_init", "CREATE TABLE a (x);\nINSERT INTO a VALUES (1);")
    async with aiosqlite.connect(db_path) as db:
        await step.apply(db)
        cursor = await db.execute("SELECT x FROM a")
        assert (await cursor.fetchone())[0] == 1


def test_checksum_tracks_content():
    a = sql_step("0001", "CREATE TABLE a (x);")
    b = sql_step("0001", "CREATE TABLE a (x);")
    c = sql_step("0001", "CREATE TABLE a (x, y);")
    assert a.checksum == b.checksum == compute_checksum("CREATE TABLE a (x);")
    assert a.checksum != c.checksum


def test_explicit_checksum_wins():
    step = sql_step("0001", "CREATE TABLE a (x);", checksum="pinned")
    assert step.checksum == "pinned"


def test_load_sql_step_from_file(tmp_path):
    path = tmp_path / "0001_init.sql"
    path.write_text("CREATE TABLE a (x);")
    step = load_step("0001_init", str(path))
    assert step.source_ref == str(path)
    assert step.checksum == compute_checksum("CREATE TABLE a (x);")


def test_load_sql_step_missing_file(tmp_path):
    with pytest.raises(ConfigInvalidError, match="cannot read"):
        load_step("0001_init", str(tmp_path / "nope.sql"))


def test_load_python_step_from_module(monkeypatch):
    module = types.ModuleType("fake_migrations")

    async def upgrade(db):
        pass

    module.upgrade = upgrade
    monkeypatch.setitem(sys.modules, "fake_migrations", module)

    step = load_step("0002_users", "fake_migrations", checksum="abc")
    assert step.apply is upgrade
    assert step.checksum == "abc"


def test_python_step_requires_callable():
    with pytest.raises(ConfigInvalidError):
        python_step("0001", "not callable", checksum="x")


def test_load_python_step_bad_module():
    with pytest.raises(ConfigInvalidError, match="cannot import"):
        load_step("0001", "definitely_not_a_module:upgrade")


def test_load_python_step_module_with_syntax_error(tmp_path, monkeypatch):
    (tmp_path / "broken_step_mod.py").write_text("async def upgrade(db:\n    pass\n")
    monkeypatch.syspath_prepend(str(tmp_path))
    with pytest.raises(ConfigInvalidError, match="failed to import"):
        load_step("0001", "broken_step_mod:upgrade")


def test_load_python_step_module_raising_on_import(tmp_path, monkeypatch):
    (tmp_path / "exploding_step_mod.py").write_text("raise RuntimeError('no env')\n")
    monkeypatch.syspath_prepend(str(tmp_path))
    with pytest.raises(ConfigInvalidError, match="RuntimeError"):
        load_step("0001", "exploding_step_mod:upgrade")


# ── discover_steps ──────────────────────────────────────────────


def test_discover_steps(tmp_path):
    (tmp_path / "0001_init.sql").write_text("CREATE TABLE a (x);")
    (tmp_path / "0002_more.sql").write_text("CREATE TABLE b (y);")
    (tmp_path / "README.md").write_text("not a migration")
    (tmp_path / "helpers.py").write_text("X = 1\n")

    steps = discover_steps(tmp_path)
    assert [s.id for s in steps] == ["0001_init", "0002_more"]


def test_discover_python_steps(tmp_path):
    (tmp_path / "m_001_initial.py").write_text(
        "async def upgrade(db):\n    await db.execute('CREATE TABLE a (x)')\n"
    )
    steps = discover_steps(tmp_path)
    assert [s.id for s in steps] == ["m_001_initial"]
    assert steps[0].checksum == compute_checksum((tmp_path / "m_001_initial.py").read_bytes())


def test_discover_python_step_without_upgrade(tmp_path):
    (tmp_path / "m_001_initial.py").write_text("X = 1\n")
    with pytest.raises(ConfigInvalidError, match="upgrade"):
        discover_steps(tmp_path)


def test_discover_missing_directory(tmp_path):
    with pytest.raises(ConfigInvalidError):
        discover_steps(tmp_path / "absent")
