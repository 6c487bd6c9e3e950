"""Configuration — environment settings plus the declarative coordinator file.

Environment variables (prefix ``BOOTGATE_``) tune process-wide knobs.
The coordinator file (JSON) declares what to wait for and what to migrate:

    {
      "dependencies": [
        {"name": "db", "probe_kind": "tcp", "target": "db:5432", "timeout": 30}
      ],
      "migration_steps": [
        {"id": "0001_init", "source_ref": "migrations/0001_init.sql"}
      ],
      "ledger_location": "/var/lib/app/app.db"
    }
"""

from __future__ import annotations

from pathlib import Path

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings

from bootgate.exceptions import ConfigInvalidError
from bootgate.readiness.backoff import BackoffPolicy


class BootgateSettings(BaseSettings):
    config_path: Path = Path("bootgate.json")
    log_level: str = "INFO"

    # Ledger lock
    lock_timeout: float = 120.0
    lock_lease: float = 300.0  # a lock older than this is considered abandoned
    lock_poll_interval: float = 0.25

    # Default per-attempt probe timeout when a dependency does not set one
    probe_timeout: float = 5.0

    # Health endpoint (embedded mode)
    health_host: str = "127.0.0.1"
    health_port: int = 8480

    model_config = {"env_prefix": "BOOTGATE_"}


settings = BootgateSettings()


class DependencyConfig(BaseModel):
    """One dependency entry in the coordinator file."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    probe_kind: str = Field(alias="probeKind")
    target: str = Field(default="", alias="connectionTarget")
    timeout: float = 30.0
    probe_timeout: float | None = Field(default=None, alias="probeTimeout")
    required: bool = True
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)


class StepConfig(BaseModel):
    """One migration step entry in the coordinator file."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    source_ref: str = Field(alias="sourceRef")
    checksum: str | None = None


class CoordinatorConfig(BaseModel):
    """Everything a coordinator instance needs, as declared by the operator."""

    model_config = ConfigDict(populate_by_name=True)

    dependencies: list[DependencyConfig] = Field(default_factory=list)
    migration_steps: list[StepConfig] = Field(default_factory=list, alias="migrationSteps")
    migrations_dir: Path | None = Field(default=None, alias="migrationsDir")
    ledger_location: str | None = Field(default=None, alias="ledgerLocation")


def load_config(path: Path | str) -> CoordinatorConfig:
    """Load and parse a coordinator file. Relative paths inside it resolve against its directory."""
    path = Path(path)
    try:
        data = orjson.loads(path.read_bytes())
    except FileNotFoundError as e:
        raise ConfigInvalidError(f"config file not found: {path}") from e
    except orjson.JSONDecodeError as e:
        raise ConfigInvalidError(f"config file {path} is not valid JSON: {e}") from e

    try:
        config = CoordinatorConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigInvalidError(f"config file {path} is invalid: {e}") from e

    base = path.parent
    if config.migrations_dir is not None and not config.migrations_dir.is_absolute():
        config.migrations_dir = base / config.migrations_dir
    if config.ledger_location and config.ledger_location != ":memory:":
        if not Path(config.ledger_location).is_absolute():
            config.ledger_location = str(base / config.ledger_location)
    config.migration_steps = [
        s.model_copy(update={"source_ref": str(base / s.source_ref)})
        if s.source_ref.endswith(".sql") and not Path(s.source_ref).is_absolute()
        else s
        for s in config.migration_steps
    ]
    return config
