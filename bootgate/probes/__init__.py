"""Probes — bounded, side-effect-free checks of whether a dependency is usable."""

from bootgate.probes.base import BaseProbe, FunctionProbe
from bootgate.probes.registry import build_probe, register_probe_kind, probe_kinds

__all__ = [
    "BaseProbe",
    "FunctionProbe",
    "build_probe",
    "register_probe_kind",
    "probe_kinds",
]
