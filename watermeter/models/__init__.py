"""Data models shared by the water meter bridge."""

from .reading import CalibrationState, FrameError, MeterError, Reading, parse_reading

__all__ = [
    "CalibrationState",
    "FrameError",
    "MeterError",
    "Reading",
    "parse_reading",
]
