"""Default values for the water meter bridge.

Numeric defaults can be overridden through ``WATERMETER_*`` environment
variables; the JSON settings file takes precedence over both.
"""
from __future__ import annotations

import os


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip()


SERIAL_DEVICE = _env_str("WATERMETER_SERIAL_DEVICE", "/dev/ttyUSB_WATER")
SERIAL_BAUD = _env_int("WATERMETER_SERIAL_BAUD", 9600)
RECONNECT_DELAY = _env_float("WATERMETER_RECONNECT_DELAY", 1.0)
READ_TIMEOUT = _env_float("WATERMETER_READ_TIMEOUT", 0.1)

HTTP_HOST = _env_str("WATERMETER_HTTP_HOST", "0.0.0.0")
HTTP_PORT = _env_int("WATERMETER_HTTP_PORT", 3002)

STATE_FILE = _env_str("WATERMETER_STATE_FILE", "watermeter.txt")
SAVE_DELAY = _env_float("WATERMETER_SAVE_DELAY", 3.0)

# Empty base URL disables remote tracking.
OPENHAB_URL = _env_str("WATERMETER_OPENHAB_URL", "http://hal9000:8080")
OPENHAB_ITEM = _env_str("WATERMETER_OPENHAB_ITEM", "water_meter_total")
OPENHAB_TIMEOUT = _env_float("WATERMETER_OPENHAB_TIMEOUT", 5.0)

# Split pushed on boot when the device reports itself uncalibrated and no
# pair was found on disk.
DEFAULT_P0 = _env_int("WATERMETER_DEFAULT_P0", 5226)
DEFAULT_P1 = _env_int("WATERMETER_DEFAULT_P1", 4774)
SPLIT_SUM = 10000

COMMAND_DELAY = _env_float("WATERMETER_COMMAND_DELAY", 3.0)
# Usage below this many litres since a reset is added back on top of the
# durable total when correcting the device.
RECENT_USAGE_LIMIT = _env_float("WATERMETER_RECENT_USAGE_LIMIT", 1000.0)
MANUAL_TOLERANCE = _env_float("WATERMETER_MANUAL_TOLERANCE", 20.0)

__all__ = [
    "SERIAL_DEVICE",
    "SERIAL_BAUD",
    "RECONNECT_DELAY",
    "READ_TIMEOUT",
    "HTTP_HOST",
    "HTTP_PORT",
    "STATE_FILE",
    "SAVE_DELAY",
    "OPENHAB_URL",
    "OPENHAB_ITEM",
    "OPENHAB_TIMEOUT",
    "DEFAULT_P0",
    "DEFAULT_P1",
    "SPLIT_SUM",
    "COMMAND_DELAY",
    "RECENT_USAGE_LIMIT",
    "MANUAL_TOLERANCE",
]
