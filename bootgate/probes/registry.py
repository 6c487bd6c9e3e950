"""Probe registry — maps a configured ``probe_kind`` to a probe factory."""

from __future__ import annotations

from typing import Callable

from bootgate.exceptions import ConfigInvalidError
from bootgate.probes.base import BaseProbe, FunctionProbe, DEFAULT_PROBE_TIMEOUT
from bootgate.probes.http import HTTPProbe
from bootgate.probes.sqlite import SQLiteProbe
from bootgate.probes.tcp import TCPProbe
from bootgate.refs import import_ref

ProbeFactory = Callable[[str, float], BaseProbe]


def _callable_probe(target: str, timeout: float) -> BaseProbe:
    fn = import_ref(target)
    if not callable(fn):
        raise ConfigInvalidError(f"callable probe target '{target}' is not callable")
    return FunctionProbe(fn, target=target, timeout=timeout)


_FACTORIES: dict[str, ProbeFactory] = {
    "tcp": TCPProbe,
    "sqlite": SQLiteProbe,
    "http": HTTPProbe,
    "callable": _callable_probe,
}


def register_probe_kind(kind: str, factory: ProbeFactory) -> None:
    """Make a custom probe kind available to configuration files."""
    _FACTORIES[kind] = factory


def probe_kinds() -> list[str]:
    return sorted(_FACTORIES)


def build_probe(kind: str, target: str, timeout: float = DEFAULT_PROBE_TIMEOUT) -> BaseProbe:
    factory = _FACTORIES.get(kind)
    if factory is None:
        raise ConfigInvalidError(
            f"unknown probe kind '{kind}' (available: {', '.join(probe_kinds())})"
        )
    return factory(target, timeout)
