import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from watermeter.app.services.settings_service import SettingsService
from watermeter.main import app
from watermeter.serial_meter_service import SerialMeterService
from watermeter.services.storage import StateStore
from tests.helpers import build_payload


@pytest.fixture()
def meter(tmp_path: Path, monkeypatch):
    service = SerialMeterService(
        "/dev/null-meter",
        storage=StateStore(tmp_path / "watermeter.txt", save_delay=0),
        command_delay=0,
    )
    sent = []
    monkeypatch.setattr(service, "_write", sent.append)
    service.load_durable_state()
    monkeypatch.setattr("watermeter.main.meter_service", service)
    return service, sent


@pytest.fixture()
def config_path(tmp_path: Path, monkeypatch) -> Path:
    path = tmp_path / "config.json"
    monkeypatch.setattr("watermeter.main._settings_service", SettingsService(path))
    return path


@pytest.fixture()
def api_client(monkeypatch, config_path):
    async def _noop(*_args, **_kwargs):
        return None

    monkeypatch.setattr("watermeter.main.init_meter", _noop)
    monkeypatch.setattr("watermeter.main.close_meter", _noop)

    with TestClient(app) as client:
        yield client


def test_water_without_service(api_client, monkeypatch):
    monkeypatch.setattr("watermeter.main.meter_service", None)

    response = api_client.get("/water")

    assert response.status_code == 200
    assert response.json() == {"valid": False}


def test_water_returns_published_view(api_client, meter):
    service, _ = meter
    service.handle_frame(build_payload(1500))

    body = api_client.get("/water").json()

    assert body["valid"] is True
    assert body["total"] == 1500.0
    assert body["p0"] == 5226
    assert body["p1"] == 4774


def test_total_command(api_client, meter):
    service, sent = meter

    assert api_client.get("/total/2000").text == ""

    service.handle_frame(build_payload(1500))
    response = api_client.get("/total/2000")

    assert response.status_code == 200
    assert response.text == "2000 written"
    assert api_client.get("/total/abc").text == ""
    assert sent == ["T:2000"]


def test_split_and_calibration_commands(api_client, meter):
    service, sent = meter
    service.handle_frame(build_payload(1500))

    assert api_client.get("/p0/6000").text == "6000 written"
    assert api_client.get("/calibrate").text == "calibration started"
    assert api_client.get("/calibration").text == "calibration requested"

    assert sent == ["P0:6000", "CALIBRATE", "CALIBRATION"]


def test_meter_status(api_client, meter):
    body = api_client.get("/api/meter/status").json()

    assert body["ok"] is False
    assert body["device"] == "/dev/null-meter"
    assert body["reconciliation"]["phase"] == "Idle"


def test_health(api_client, meter):
    body = api_client.get("/health").json()

    assert body["status"] == "ok"
    assert body["meter_connected"] is False
    assert body["valid"] is False


def test_settings_round_trip(api_client, config_path):
    body = api_client.get("/api/settings").json()
    assert body["serial"]["device"] == "/dev/ttyUSB_WATER"
    assert body["http"]["port"] == 3002

    response = api_client.post("/api/settings", json={"serial": {"baud": 19200}})

    assert response.status_code == 200
    result = response.json()
    assert result["ok"] is True
    assert result["changed"] == ["serial"]
    assert result["restart_required"] is True
    assert result["settings"]["serial"]["baud"] == 19200

    stored = json.loads(config_path.read_text(encoding="utf-8"))
    assert stored["serial"]["baud"] == 19200
    assert api_client.get("/api/settings").json()["serial"]["baud"] == 19200


def test_settings_rejects_invalid_payload(api_client, config_path):
    response = api_client.post("/api/settings", json={"http": {"port": "not-a-port"}})

    assert response.status_code == 400
    assert not config_path.exists()
