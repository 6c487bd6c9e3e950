"""Migration steps — ordered one-shot changes, plus the ways to load them.

A step is an id, an async ``apply(db)`` and a checksum of its definition.
``apply`` receives the ledger's connection with a transaction already open;
it must not commit or roll back itself, so its effect and the ledger row
land (or vanish) together.

Steps come from three places:
  - ``path/to/NNNN_name.sql`` — statements run one at a time
  - ``package.module[:attr]``  — an ``async def upgrade(db)`` (attr defaults to upgrade)
  - a directory scanned by ``discover_steps`` for ``m_NNN_*.py`` and ``NNNN_*.sql``
"""

from __future__ import annotations

import hashlib
import importlib.util
import inspect
import sqlite3
from pathlib import Path
from typing import Awaitable, Callable, Sequence

import aiosqlite
from pydantic import BaseModel, ConfigDict

from bootgate.exceptions import ConfigInvalidError
from bootgate.refs import import_ref

ApplyFn = Callable[[aiosqlite.Connection], Awaitable[None]]

PY_STEP_PREFIX = "m_"
DEFAULT_ENTRYPOINT = "upgrade"


class MigrationStep(BaseModel):
    """One ordered, tracked change."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str
    apply: ApplyFn
    checksum: str
    source_ref: str = ""


def compute_checksum(source: str | bytes) -> str:
    if isinstance(source, str):
        source = source.encode("utf-8")
    return hashlib.sha256(source).hexdigest()


def validate_steps(steps: Sequence[MigrationStep] | Sequence[str]) -> None:
    """Ids must be non-empty and strictly increasing (which also rules out duplicates)."""
    ids = [s if isinstance(s, str) else s.id for s in steps]
    previous: str | None = None
    for step_id in ids:
        if not step_id or not step_id.strip():
            raise ConfigInvalidError("migration step id must not be empty")
        if previous is not None and step_id <= previous:
            raise ConfigInvalidError(
                f"migration step ids must be strictly increasing: '{step_id}' follows '{previous}'"
            )
        previous = step_id


# ── SQL steps ────────────────────────────────────────────────────────────────


def split_sql(script: str) -> list[str]:
    """Split a script into complete statements (trigger bodies stay whole)."""
    statements: list[str] = []
    buffer = ""
    for line in script.splitlines(keepends=True):
        buffer += line
        if sqlite3.complete_statement(buffer):
            stmt = buffer.strip()
            if stmt and stmt != ";":
                statements.append(stmt)
            buffer = ""
    leftover = buffer.strip()
    if any(line.strip() and not line.strip().startswith("--") for line in leftover.splitlines()):
        statements.append(leftover)
    return statements


def sql_step(step_id: str, script: str, checksum: str | None = None, source_ref: str = "") -> MigrationStep:
    statements = split_sql(script)

    async def apply(db: aiosqlite.Connection) -> None:
        for stmt in statements:
            await db.execute(stmt)

    return MigrationStep(
        id=step_id,
        apply=apply,
        checksum=checksum or compute_checksum(script),
        source_ref=source_ref,
    )


# ── Python steps ─────────────────────────────────────────────────────────────


def python_step(step_id: str, fn: ApplyFn, checksum: str | None = None, source_ref: str = "") -> MigrationStep:
    if not callable(fn):
        raise ConfigInvalidError(f"step '{step_id}': '{source_ref}' is not callable")
    if checksum is None:
        module = inspect.getmodule(fn)
        try:
            checksum = compute_checksum(inspect.getsource(module or fn))
        except (OSError, TypeError) as e:
            raise ConfigInvalidError(
                f"step '{step_id}': source unavailable, give an explicit checksum"
            ) from e
    return MigrationStep(id=step_id, apply=fn, checksum=checksum, source_ref=source_ref)


def load_step(step_id: str, source_ref: str, checksum: str | None = None) -> MigrationStep:
    """Build a step from its configured source reference."""
    if source_ref.endswith(".sql"):
        path = Path(source_ref)
        try:
            script = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigInvalidError(f"step '{step_id}': cannot read {path}: {e}") from e
        return sql_step(step_id, script, checksum=checksum, source_ref=source_ref)

    fn = import_ref(source_ref, default_attr=DEFAULT_ENTRYPOINT)
    return python_step(step_id, fn, checksum=checksum, source_ref=source_ref)


def discover_steps(directory: Path | str) -> list[MigrationStep]:
    """Find migration files in ``directory``. The id is the file stem."""
    directory = Path(directory)
    if not directory.is_dir():
        raise ConfigInvalidError(f"migrations directory {directory} does not exist")

    steps: list[MigrationStep] = []
    for path in sorted(directory.iterdir()):
        if path.suffix == ".sql" and path.stem[:1].isdigit():
            steps.append(load_step(path.stem, str(path)))
        elif path.suffix == ".py" and path.stem.startswith(PY_STEP_PREFIX):
            steps.append(_load_step_file(path))

    steps.sort(key=lambda s: s.id)
    return steps


def _load_step_file(path: Path) -> MigrationStep:
    source = path.read_bytes()
    module_name = f"bootgate_migrations_{path.parent.name}.{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ConfigInvalidError(f"cannot load migration file {path}")
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise ConfigInvalidError(f"migration file {path} failed to import: {e}") from e

    fn = getattr(module, DEFAULT_ENTRYPOINT, None)
    if fn is None:
        raise ConfigInvalidError(f"migration file {path} defines no {DEFAULT_ENTRYPOINT}()")
    return python_step(path.stem, fn, checksum=compute_checksum(source), source_ref=str(path))
