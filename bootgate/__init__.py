"""bootgate — readiness gating and exactly-once migrations for service startup."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("bootgate")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development
