"""Health endpoint — exposes coordinator state to process managers and load balancers.

  GET /healthz   liveness: 200 while the process is up, whatever the phase
  GET /readyz    readiness: 200 only once the coordinator is READY, else 503
  GET /status    full snapshot (phase, reason, gates, applied steps)
  GET /events    recent startup events

Reading state never re-runs gates or migrations.
"""

from __future__ import annotations

import time

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from bootgate import __version__

health_app = FastAPI(title="bootgate health", version=__version__)

_coordinator = None
_event_bus = None
_start_time = time.time()


def configure(coordinator=None, event_bus=None) -> None:
    global _coordinator, _event_bus
    _coordinator = coordinator
    _event_bus = event_bus


@health_app.get("/healthz")
async def healthz() -> dict:
    phase = _coordinator.state.phase.value if _coordinator is not None else "unconfigured"
    return {
        "alive": True,
        "phase": phase,
        "uptime_s": round(time.time() - _start_time, 1),
    }


@health_app.get("/readyz")
async def readyz() -> JSONResponse:
    if _coordinator is None:
        return JSONResponse({"ready": False, "phase": "unconfigured"}, status_code=503)
    state = _coordinator.state
    ready = state.phase.value == "ready"
    body = {
        "ready": ready,
        "phase": state.phase.value,
        "reason": state.reason.value if state.reason else None,
    }
    return JSONResponse(body, status_code=200 if ready else 503)


@health_app.get("/status")
async def status() -> dict:
    if _coordinator is None:
        return {"phase": "unconfigured"}
    return _coordinator.status()


@health_app.get("/events")
async def events(topic: str = "*", limit: int = 50) -> list[dict]:
    if _event_bus is None:
        return []
    return [e.model_dump(mode="json") for e in _event_bus.history(topic, limit)]
