"""Test de punta a punta del servicio de monitoreo."""

import asyncio

import pytest

from common.config import parse_config
from monitor.cli import main as monitor_main
from monitor.service import ConsumerMonitorService


@pytest.fixture
def service_config(tmp_path):
    pin = tmp_path / "gpio" / "gpio17"
    pin.mkdir(parents=True)
    (pin / "value").write_text("1")
    return parse_config({
        "consumers": {"burner": {"gpio": 17}},
        "database": {"file_path": ":memory:"},
        "gpio_base_path": str(tmp_path),
        "poll_interval_seconds": 0.01,
        "aggregation": {"interval_seconds": 3600, "intervals": ["HOURLY", "DAILY"]},
        "export": {"enabled": True, "directory": str(tmp_path / "exports"), "check_seconds": 3600},
    })


@pytest.mark.asyncio
async def test_service_records_state_and_stops(service_config, tmp_path):
    service = ConsumerMonitorService(service_config)
    assert service.scheduler.channels == ["burner"]
    assert service.checkpoint is not None
    assert service.export_loop is not None

    task = asyncio.create_task(service.run())
    for _ in range(200):
        if service.repository.list_states("burner"):
            break
        await asyncio.sleep(0.01)

    states = service.repository.list_states("burner")
    service.request_stop()
    await asyncio.wait_for(task, timeout=5)

    assert [s.state.name for s in states] == ["HIGH"]
    assert not service.scheduler.running
    assert not service.watcher.running


def test_cli_rejects_invalid_config(tmp_path):
    path = tmp_path / "config.json"
    path.write_text('{"consumers": {"burner": {"gpio": "seventeen"}}}')
    assert monitor_main(["--config", str(path)]) == 2


def test_cli_missing_config_file(tmp_path):
    assert monitor_main(["--config", str(tmp_path / "nope.json")]) == 2
