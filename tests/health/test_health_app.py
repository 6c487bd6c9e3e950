"""Tests for the health endpoints."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from bootgate.events.bus import EventBus
from bootgate.health.app import configure, health_app
from bootgate.kernel.coordinator import ServiceCoordinator

from tests.conftest import make_dependency


@pytest.fixture
def client():
    with TestClient(health_app) as c:
        yield c
    configure(None, None)


def test_unconfigured_is_alive_but_not_ready(client):
    configure(None, None)
    assert client.get("/healthz").json()["alive"] is True
    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert resp.json()["phase"] == "unconfigured"


def test_not_ready_before_run(client):
    coordinator = ServiceCoordinator([make_dependency("db")])
    configure(coordinator)

    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert resp.json() == {"ready": False, "phase": "initializing", "reason": None}
    assert client.get("/healthz").json()["phase"] == "initializing"


def test_ready_after_run(client):
    bus = EventBus()
    coordinator = ServiceCoordinator([make_dependency("db", failures=1)], event_bus=bus)
    asyncio.run(coordinator.run())
    configure(coordinator, bus)

    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json()["ready"] is True

    status = client.get("/status").json()
    assert status["phase"] == "ready"
    assert status["dependencies"]["db"]["attempts"] == 2


def test_failed_reports_reason(client):
    coordinator = ServiceCoordinator([make_dependency("db"), make_dependency("db")])
    asyncio.run(coordinator.run())
    configure(coordinator)

    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert resp.json()["reason"] == "config_invalid"
    # Liveness is independent of the outcome
    assert client.get("/healthz").status_code == 200


def test_status_is_read_only(client):
    probe_dep = make_dependency("db")
    coordinator = ServiceCoordinator([probe_dep])
    configure(coordinator)

    for _ in range(3):
        client.get("/status")
        client.get("/readyz")
    assert probe_dep.probe.calls == 0


def test_events_endpoint_filters_by_topic(client):
    bus = EventBus()
    coordinator = ServiceCoordinator([make_dependency("db")], event_bus=bus)
    asyncio.run(coordinator.run())
    configure(coordinator, bus)

    events = client.get("/events", params={"topic": "coordinator.*"}).json()
    assert [e["data"]["to"] for e in events] == ["ready", "migrating", "waiting_on_dependencies"]
    assert client.get("/events", params={"limit": 1}).json()[0]["topic"] == "coordinator.transition"
