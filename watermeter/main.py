"""
Water meter backend - FastAPI server
Serves the published meter view and the manual correction commands.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from watermeter import __version__
from watermeter.app.services.settings_service import SettingsSchema, get_settings_service
from watermeter.core.state import ReconcileSettings
from watermeter.serial_meter_service import SerialMeterService
from watermeter.services.remote import OpenHABClient
from watermeter.services.storage import StateStore

LOG_API = logging.getLogger("watermeter.api")

_settings_service = get_settings_service()

# Global state
meter_service: Optional[SerialMeterService] = None


def _parse_parameter(value: str) -> int:
    try:
        return int(value.strip())
    except (TypeError, ValueError):
        return -1


def _create_meter_service(settings: SettingsSchema) -> SerialMeterService:
    storage: Optional[StateStore] = None
    if settings.storage.enabled:
        storage = StateStore(Path(settings.storage.path), save_delay=settings.storage.save_delay)

    remote: Optional[OpenHABClient] = None
    if settings.remote_active:
        remote = OpenHABClient(
            settings.remote.base_url,
            settings.remote.item,
            timeout=settings.remote.timeout,
        )

    reconcile = ReconcileSettings(
        auto_calibrate=settings.calibration.auto_init,
        default_p0=settings.calibration.default_p0,
        default_p1=settings.calibration.default_p1,
        recent_usage_limit=settings.reconciliation.recent_usage_limit,
        manual_tolerance=settings.reconciliation.manual_tolerance,
    )

    LOG_API.info(
        "Initializing water meter (device=%s, baud=%s, disk=%s, openHAB=%s)",
        settings.serial.device,
        settings.serial.baud,
        storage.path if storage else "off",
        settings.remote.base_url if remote else "off",
    )

    return SerialMeterService(
        settings.serial.device,
        settings.serial.baud,
        settings=reconcile,
        storage=storage,
        remote=remote,
        reconnect_delay=settings.serial.reconnect_delay,
        read_timeout=settings.serial.read_timeout,
        command_delay=settings.reconciliation.command_delay,
        debug=settings.debug,
    )

# ============= SERIAL/METER =============

async def init_meter() -> None:
    """Initialize the meter service."""
    global meter_service
    if meter_service is not None:
        return
    try:
        service = _create_meter_service(_settings_service.load())
        service.load_durable_state()
        service.start()
    except Exception as exc:
        LOG_API.error("Failed to start meter service: %s", exc)
        return
    meter_service = service


async def close_meter() -> None:
    """Stop the meter service."""
    global meter_service
    if meter_service is None:
        return
    try:
        meter_service.stop()
    except Exception as exc:
        LOG_API.error("Failed to stop meter service: %s", exc)
    finally:
        meter_service = None
        LOG_API.info("Water meter service stopped")

# ============= APP LIFECYCLE =============

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    await init_meter()
    yield
    await close_meter()

app = FastAPI(title="Water Meter API", version=__version__, lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# ============= METER ENDPOINTS =============

@app.get("/water")
async def water():
    """Current meter readout; total/p0/p1 only when consistent."""
    service = meter_service
    if service is None:
        return {"valid": False}
    return service.get_view()


def _command_response(result: Dict[str, Any]) -> PlainTextResponse:
    if not result.get("ok"):
        LOG_API.debug("Meter command ignored: %s", result.get("reason"))
        return PlainTextResponse("")
    return PlainTextResponse(str(result.get("message", "")))


@app.get("/total/{value}")
async def set_total(value: str):
    service = meter_service
    if service is None:
        return PlainTextResponse("")
    return _command_response(service.set_total(_parse_parameter(value)))


@app.get("/p0/{value}")
async def set_p0(value: str):
    service = meter_service
    if service is None:
        return PlainTextResponse("")
    return _command_response(service.set_p0(_parse_parameter(value)))


@app.get("/p1/{value}")
async def set_p1(value: str):
    service = meter_service
    if service is None:
        return PlainTextResponse("")
    return _command_response(service.set_p1(_parse_parameter(value)))


@app.get("/calibrate")
async def start_calibration():
    service = meter_service
    if service is None:
        return PlainTextResponse("")
    return _command_response(service.start_calibration())


@app.get("/calibration")
async def request_calibration():
    service = meter_service
    if service is None:
        return PlainTextResponse("")
    return _command_response(service.request_calibration())


@app.get("/api/meter/status")
async def meter_status():
    service = meter_service
    if service is None:
        return {"ok": False, "reason": "service_not_initialized"}
    return service.get_status()

# ============= SETTINGS =============

@app.get("/api/settings")
async def get_settings():
    return _settings_service.load().model_dump()


@app.post("/api/settings")
async def update_settings(payload: Dict[str, Any]):
    try:
        settings, changed = _settings_service.save(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if changed:
        LOG_API.info("Settings changed: %s (applied on restart)", ", ".join(sorted(changed)))
    return {
        "ok": True,
        "changed": sorted(changed),
        "restart_required": bool(changed),
        "settings": settings.model_dump(),
    }

# ============= HEALTH CHECK =============

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    service = meter_service
    return {
        "status": "ok",
        "meter_connected": service is not None and bool(service.get_status().get("ok", False)),
        "valid": service is not None and service.is_valid(),
        "timestamp": datetime.now().isoformat(),
    }

@app.get("/")
async def root():
    """Root endpoint"""
    return {"message": "Water Meter API", "version": __version__}


def run() -> None:
    import uvicorn

    settings = _settings_service.load()
    uvicorn.run(app, host=settings.http.host, port=settings.http.port)


if __name__ == "__main__":
    run()
