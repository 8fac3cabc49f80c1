"""Serial-based water meter service communicating with the meter over USB."""
from __future__ import annotations

import logging
import sys
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

import serial
from serial import SerialException

from watermeter.config import defaults
from watermeter.core.frames import FrameDecoder
from watermeter.core.published import PublishedViewBuffer
from watermeter.core.reconcile import ReconciliationMachine
from watermeter.core.state import DurableViews, ReconcileSettings
from watermeter.models.reading import FrameError, parse_reading
from watermeter.services.remote import OpenHABClient
from watermeter.services.storage import StateStore

_LOGGER: Optional[logging.Logger] = None


def get_logger(debug: bool = False) -> logging.Logger:
    """Return a lazily configured ``watermeter`` logger."""

    global _LOGGER
    if _LOGGER:
        if debug:
            _LOGGER.setLevel(logging.DEBUG)
        return _LOGGER

    logger = logging.getLogger("watermeter")
    if not logger.handlers:
        logger.setLevel(logging.DEBUG if debug else logging.INFO)
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")

        try:
            log_dir = Path("/var/log/watermeter")
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_dir / "app.log")
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError:
            try:
                home_dir = Path.home() / ".watermeter" / "logs"
                home_dir.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(home_dir / "app.log")
                file_handler.setFormatter(formatter)
                logger.addHandler(file_handler)
            except OSError:
                stream_handler = logging.StreamHandler(sys.stderr)
                stream_handler.setFormatter(formatter)
                logger.addHandler(stream_handler)

    _LOGGER = logger
    return logger


class SerialMeterService:
    """Service that reads meter frames over UART and keeps the totals in sync."""

    def __init__(
        self,
        device: str = defaults.SERIAL_DEVICE,
        baud: int = defaults.SERIAL_BAUD,
        *,
        settings: Optional[ReconcileSettings] = None,
        storage: Optional[StateStore] = None,
        remote: Optional[OpenHABClient] = None,
        reconnect_delay: float = defaults.RECONNECT_DELAY,
        read_timeout: float = defaults.READ_TIMEOUT,
        command_delay: float = defaults.COMMAND_DELAY,
        debug: bool = False,
    ) -> None:
        self._log = get_logger(debug)
        self._device = device
        self._baud = int(baud)
        self._reconnect_delay = max(0.2, reconnect_delay)
        self._read_timeout = max(0.05, read_timeout)
        self._command_delay = max(0.0, command_delay)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._serial: Optional[serial.Serial] = None
        self._serial_lock = threading.Lock()
        self._timers: List[threading.Timer] = []
        self._timers_lock = threading.Lock()
        self._connected = False
        self._status_reason: str = ""
        self._last_error_log: float = 0.0
        self._last_frame_at: Optional[float] = None

        self._storage = storage
        self._remote = remote
        self._decoder = FrameDecoder()
        self._views = PublishedViewBuffer()
        self._machine = ReconciliationMachine(
            self,
            settings=settings,
            views=DurableViews(persisted_enabled=storage is not None, remote_enabled=remote is not None),
            storage=storage,
            remote=remote,
        )
        self._log.info("SerialMeterService init for device %s @ %d baud", self._device, self._baud)

    @property
    def machine(self) -> ReconciliationMachine:
        return self._machine

    # ------------------------------------------------------------------
    # Lifecycle
    def load_durable_state(self) -> None:
        """Seed the persisted and remote totals; the remote fetch runs in the background."""

        if self._storage is not None:
            persisted = self._storage.load()
            if persisted is None:
                self._machine.persisted_missing()
            else:
                self._machine.load_persisted(persisted.total, persisted.p0, persisted.p1)
        if self._remote is not None:
            self._remote.fetch_total_async(self._machine.set_remote_total)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._reader_loop, name="SerialMeterService", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2.0)
        self._thread = None
        with self._timers_lock:
            timers, self._timers = self._timers, []
        for timer in timers:
            timer.cancel()
        if self._storage is not None:
            self._storage.flush()
        self._close_serial()

    # ------------------------------------------------------------------
    # Public API
    def get_view(self) -> Dict[str, object]:
        return self._views.current().to_dict()

    def is_valid(self) -> bool:
        return self._views.current().valid

    def get_status(self) -> Dict[str, object]:
        status: Dict[str, object] = {
            "ok": self._connected,
            "device": self._device,
            "baud": self._baud,
        }
        if not self._connected and self._status_reason:
            status["reason"] = self._status_reason
        if self._last_frame_at is not None:
            status["last_frame_age"] = round(time.time() - self._last_frame_at, 3)
        status["reconciliation"] = self._machine.status()
        return status

    def set_total(self, total: int) -> Dict[str, object]:
        if total <= 0:
            return {"ok": False, "reason": "out_of_range"}
        if not self._machine.manual_total(total):
            return {"ok": False, "reason": "invalid_view"}
        return {"ok": True, "message": f"{total} written"}

    def set_p0(self, p0: int) -> Dict[str, object]:
        return self._set_split(p0, p0)

    def set_p1(self, p1: int) -> Dict[str, object]:
        return self._set_split(defaults.SPLIT_SUM - p1, p1)

    def _set_split(self, p0: int, requested: int) -> Dict[str, object]:
        if not 0 < requested < defaults.SPLIT_SUM:
            return {"ok": False, "reason": "out_of_range"}
        if not self._machine.manual_split(p0):
            return {"ok": False, "reason": "invalid_view"}
        return {"ok": True, "message": f"{requested} written"}

    def start_calibration(self) -> Dict[str, object]:
        self._machine.start_calibration()
        return {"ok": True, "message": "calibration started"}

    def request_calibration(self) -> Dict[str, object]:
        self._machine.request_calibration()
        return {"ok": True, "message": "calibration requested"}

    # ------------------------------------------------------------------
    # Command sink used by the reconciliation machine
    def send(self, command: str) -> None:
        """Write ``command`` after the command delay; never blocks the caller."""

        if self._command_delay <= 0:
            self._write(command)
            return

        timer = threading.Timer(self._command_delay, self._run_command, args=(command,))
        timer.daemon = True
        with self._timers_lock:
            self._timers.append(timer)
        timer.start()

    def _run_command(self, command: str) -> None:
        with self._timers_lock:
            self._timers = [timer for timer in self._timers if timer is not threading.current_thread()]
        self._write(command)

    def _write(self, command: str) -> None:
        with self._serial_lock:
            serial_conn = self._serial
            if serial_conn is None or not serial_conn.is_open:
                self._log.warning("Dropping meter command %s: serial disconnected", command)
                return
            try:
                serial_conn.write(command.encode("utf-8"))
                serial_conn.flush()
            except (SerialException, OSError) as exc:
                self._log.warning("Failed writing meter command %s: %s", command, exc)
                return
        self._log.debug("Sent meter command %s", command)

    # ------------------------------------------------------------------
    # Frame handling
    def handle_frame(self, payload: str) -> None:
        try:
            reading = parse_reading(payload)
        except FrameError as exc:
            self._log.warning("Dropping malformed meter frame %r: %s", payload, exc)
            return

        view = self._machine.process(reading)
        self._views.publish(view)
        self._last_frame_at = time.time()

    # ------------------------------------------------------------------
    # Internal helpers
    def _reader_loop(self) -> None:
        while not self._stop_event.is_set():
            if self._serial is None or not self._serial.is_open:
                self._attempt_connect()
                if self._serial is None:
                    self._wait(self._reconnect_delay)
                    continue

            try:
                to_read = max(1, self._serial.in_waiting) if self._serial.in_waiting else 1
                data = self._serial.read(to_read)
            except SerialException as exc:
                self._handle_serial_error(exc)
                continue
            except OSError as exc:  # pragma: no cover - hardware specific
                self._handle_serial_error(exc)
                continue

            if not data:
                self._wait(0.01)
                continue

            for payload in self._decoder.feed(data):
                self.handle_frame(payload)

    def _wait(self, seconds: float) -> None:
        self._stop_event.wait(seconds)

    def _attempt_connect(self) -> None:
        try:
            serial_conn = serial.Serial(
                self._device,
                self._baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self._read_timeout,
            )
            serial_conn.reset_input_buffer()
            with self._serial_lock:
                self._serial = serial_conn
            self._decoder.reset()
            self._set_connected(True, "")
            self._log.info("Opened meter serial port %s @ %d baud", self._device, self._baud)
        except (SerialException, OSError, ValueError) as exc:  # pragma: no cover - hardware specific
            self._set_connected(False, str(exc))
            now = time.time()
            if now - self._last_error_log > 5.0:
                self._log.warning("Meter serial connection failed (%s): %s", self._device, exc)
                self._last_error_log = now
            self._close_serial()

    def _handle_serial_error(self, exc: Exception) -> None:
        self._set_connected(False, str(exc))
        now = time.time()
        if now - self._last_error_log > 5.0:
            self._log.warning("Error reading meter serial port: %s", exc)
            self._last_error_log = now
        self._close_serial()
        self._wait(0.5)

    def _set_connected(self, state: bool, reason: str) -> None:
        previous_state = self._connected
        self._connected = state
        self._status_reason = reason
        if not state and previous_state:
            self._log.info("Meter serial disconnected: %s", reason or "unknown reason")

    def _close_serial(self) -> None:
        with self._serial_lock:
            if self._serial is not None:
                try:
                    self._serial.close()
                except (SerialException, OSError):  # pragma: no cover - best effort
                    pass
                self._serial = None


__all__ = ["SerialMeterService", "get_logger"]
