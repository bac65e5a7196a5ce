"""Tests de la API de consulta (FastAPI TestClient)."""

import pytest
from fastapi.testclient import TestClient

from consumer_runtime.models import PinState
from consumer_runtime.runtime_aggregator import RuntimeAggregator
from runtime_api.main import create_app

from conftest import utc_ms


@pytest.fixture
def client(repository, utc_calendar):
    app = create_app(repository, RuntimeAggregator(repository, calendar=utc_calendar))
    return TestClient(app)


@pytest.fixture
def with_runtime(tracker):
    tracker.record_observed_state("burner", PinState.HIGH, observed_at=utc_ms(2024, 1, 15, 10))
    tracker.record_observed_state("burner", PinState.LOW, observed_at=utc_ms(2024, 1, 15, 10, 2, 5))


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_ready(client):
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.json()["status"] == "ready"


def test_metrics_exposition(client):
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "consumer_aggregation_passes_total" in response.text


def test_states_and_runtimes(client, with_runtime):
    states = client.get("/channels/burner/states").json()
    assert [s["state"] for s in states] == ["HIGH", "LOW"]

    runtimes = client.get("/channels/burner/runtimes").json()
    assert runtimes == [{
        "channel_id": "burner",
        "started_at": utc_ms(2024, 1, 15, 10),
        "stopped_at": utc_ms(2024, 1, 15, 10, 2, 5),
        "duration_seconds": 125,
        "is_aggregated": False,
    }]


def test_states_time_range(client, with_runtime):
    states = client.get(
        "/channels/burner/states",
        params={"from": utc_ms(2024, 1, 15, 10, 1), "to": utc_ms(2024, 1, 15, 11)},
    ).json()
    assert [s["state"] for s in states] == ["LOW"]


def test_aggregate_on_demand(client, with_runtime):
    response = client.post("/channels/burner/aggregate")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["runtimes_aggregated"] == 1

    aggregates = client.get("/channels/burner/aggregates", params={"interval": "hourly"}).json()
    assert aggregates == [{
        "channel_id": "burner",
        "bucket_start": utc_ms(2024, 1, 15, 10),
        "interval": "HOURLY",
        "duration_seconds": 125,
    }]
    assert client.post("/channels/burner/aggregate").json()["status"] == "empty"


def test_unknown_interval_is_422(client):
    response = client.get("/channels/burner/aggregates", params={"interval": "FORTNIGHTLY"})
    assert response.status_code == 422
