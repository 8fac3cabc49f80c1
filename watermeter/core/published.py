"""Double-buffered snapshot of the latest reading for HTTP readers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from watermeter.models.reading import Reading


@dataclass(frozen=True, slots=True)
class PublishedView:
    reading: Optional[Reading] = None
    valid: bool = False

    def to_dict(self) -> Dict[str, object]:
        """Wire format served on ``/water``.

        ``total``, ``p0`` and ``p1`` are left out while the view is invalid so
        consumers never store an unconfirmed counter.
        """

        payload: Dict[str, object] = {"valid": self.valid}
        reading = self.reading
        if reading is None:
            return payload

        payload["loop"] = reading.loop_cycles
        payload["cpu"] = reading.cpu_load_percent
        if self.valid:
            payload["total"] = reading.total
        payload["lastPeriod"] = reading.last_period_flow
        payload["flow"] = reading.flow_rate
        payload["minTotal"] = reading.min_total
        payload["lastTotal"] = reading.last_total
        payload["pulse"] = reading.pulse_count
        payload["lastTotalTime"] = reading.last_total_time
        payload["calibration"] = reading.calibration_state.value
        if reading.calibrating:
            payload["t0"] = reading.t0
            payload["t1"] = reading.t1
        elif self.valid:
            payload["p0"] = reading.p0
            payload["p1"] = reading.p1
        payload["calCount"] = reading.calibration_sample_count
        return payload


class PublishedViewBuffer:
    """Two preallocated slots; writers fill the idle slot, then flip.

    There is a single writer (the frame processing thread). Slot and index
    assignments are atomic, and views are immutable, so readers never lock.
    """

    def __init__(self) -> None:
        self._slots: List[PublishedView] = [PublishedView(), PublishedView()]
        self._active = 0

    def publish(self, view: PublishedView) -> None:
        inactive = 1 - self._active
        self._slots[inactive] = view
        self._active = inactive

    def current(self) -> PublishedView:
        return self._slots[self._active]


__all__ = ["PublishedView", "PublishedViewBuffer"]
