"""Durable ``total,p0,p1`` record kept next to the service."""
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

from watermeter.config import defaults

LOGGER = logging.getLogger("watermeter.storage")


@dataclass(frozen=True)
class PersistedState:
    total: float
    p0: int = 0
    p1: int = 0


def _parse_int(value: str) -> int:
    return int(value.strip().replace(".", ""))


class StateStore:
    """Load once at startup, save debounced.

    A burst of ``save`` calls within ``save_delay`` seconds results in a
    single write of the most recent values. Failed writes are logged and
    dropped.
    """

    def __init__(self, path: Union[str, Path], *, save_delay: float = defaults.SAVE_DELAY) -> None:
        self._path = Path(path)
        self._save_delay = max(0.0, float(save_delay))
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._pending: Optional[Tuple[float, int, int]] = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[PersistedState]:
        if not self._path.exists():
            LOGGER.info("No state file at %s", self._path)
            return None
        try:
            raw_text = self._path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            LOGGER.warning("Failed reading state file %s: %s", self._path, exc)
            return None

        parts = raw_text.split(",")
        try:
            total = _parse_int(parts[0])
            if len(parts) > 2:
                return PersistedState(total=float(total), p0=_parse_int(parts[1]), p1=_parse_int(parts[2]))
        except ValueError:
            LOGGER.warning("Invalid state file content: %r", raw_text)
            return None
        return PersistedState(total=float(total))

    def save(self, total: float, p0: int, p1: int) -> None:
        if total <= 0 or p0 <= 0 or p1 <= 0:
            return
        with self._lock:
            self._pending = (float(total), int(p0), int(p1))
            if self._timer is not None:
                self._timer.cancel()
            if self._save_delay <= 0:
                self._timer = None
            else:
                self._timer = threading.Timer(self._save_delay, self.flush)
                self._timer.daemon = True
                self._timer.start()
                return
        self.flush()

    def flush(self) -> None:
        with self._lock:
            pending = self._pending
            self._pending = None
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if pending is None:
            return
        total, p0, p1 = pending
        self._write(total, p0, p1)

    def cancel(self) -> None:
        with self._lock:
            self._pending = None
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _write(self, total: float, p0: int, p1: int) -> None:
        record = f"{int(total)},{p0},{p1}"
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(record, encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            LOGGER.error("Failed writing state to %s: %s", self._path, exc)
            return
        LOGGER.info("Saved state {total:%s,p0:%s,p1:%s} to disk", int(total), p0, p1)


__all__ = ["PersistedState", "StateStore"]
