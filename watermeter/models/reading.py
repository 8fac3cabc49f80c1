"""Device readings and the frame payload parser."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

FIELD_COUNT = 12
THOUSANDS_SEPARATOR = "."


class MeterError(Exception):
    """Base exception for water meter errors."""


class FrameError(MeterError):
    """Raised when a frame payload cannot be decoded into a reading."""


class CalibrationState(str, Enum):
    UNCALIBRATED = "uncalibrated"
    CALIBRATING = "calibrating"
    CALIBRATED = "calibrated"


@dataclass(frozen=True, slots=True)
class Reading:
    """One decoded observation reported by the device.

    ``p0``/``p1`` are only set when the device is not calibrating; while
    calibrating the same frame positions carry the ``t0``/``t1`` timings.
    """

    loop_cycles: int
    cpu_load_percent: float
    total: float
    last_period_flow: float
    flow_rate: int
    min_total: float
    last_total: float
    pulse_count: int
    last_total_time: float
    calibration_state: CalibrationState
    calibration_sample_count: int
    p0: Optional[int] = None
    p1: Optional[int] = None
    t0: Optional[int] = None
    t1: Optional[int] = None

    @property
    def calibrating(self) -> bool:
        return self.calibration_state is CalibrationState.CALIBRATING

    @property
    def split_p0(self) -> int:
        return self.p0 or 0

    @property
    def split_p1(self) -> int:
        return self.p1 or 0


def _to_int(value: str, label: str) -> int:
    """Parse an integer field, dropping every ``.`` thousands separator.

    All integer fields go through here, including pulse count and p0/p1,
    which the device never formats with separators.
    """

    cleaned = value.strip().replace(THOUSANDS_SEPARATOR, "")
    try:
        return int(cleaned)
    except ValueError as exc:
        raise FrameError(f"invalid {label}: {value!r}") from exc


def _to_float(value: str, label: str) -> float:
    try:
        return float(value.strip())
    except ValueError as exc:
        raise FrameError(f"invalid {label}: {value!r}") from exc


def _to_state(value: str) -> CalibrationState:
    try:
        return CalibrationState(value.strip().lower())
    except ValueError as exc:
        raise FrameError(f"invalid calibration state: {value!r}") from exc


def parse_reading(payload: str) -> Reading:
    """Decode a comma separated frame payload into a :class:`Reading`.

    Field order: loop cycles, total, last period flow, flow rate, minimum
    total, last total, pulse count, last total time, calibration state,
    p0/t0, p1/t1, calibration sample count. Extra trailing fields are ignored.
    """

    fields: List[str] = payload.split(",")
    if len(fields) < FIELD_COUNT:
        raise FrameError(f"expected {FIELD_COUNT} fields, got {len(fields)}")

    loop_cycles = _to_int(fields[0], "loop cycles")
    cpu = min(100.0, max(0.0, loop_cycles / 100))
    state = _to_state(fields[8])
    first = _to_int(fields[9], "p0/t0")
    second = _to_int(fields[10], "p1/t1")

    split = {"t0": first, "t1": second} if state is CalibrationState.CALIBRATING else {"p0": first, "p1": second}

    return Reading(
        loop_cycles=loop_cycles,
        cpu_load_percent=cpu,
        total=_to_float(fields[1], "total"),
        last_period_flow=_to_float(fields[2], "last period"),
        flow_rate=_to_int(fields[3], "flow"),
        min_total=_to_float(fields[4], "minimum total"),
        last_total=_to_float(fields[5], "last total"),
        pulse_count=_to_int(fields[6], "pulse count"),
        last_total_time=_to_float(fields[7], "last total time"),
        calibration_state=state,
        calibration_sample_count=_to_int(fields[11], "calibration count"),
        **split,
    )


__all__ = [
    "FIELD_COUNT",
    "MeterError",
    "FrameError",
    "CalibrationState",
    "Reading",
    "parse_reading",
]
