"""Reconciliation of the device counter with the durable totals.

Every reading goes through :meth:`ReconciliationMachine.process` in arrival
order. The machine decides whether the reading can be published as valid and,
when the device, disk and remote totals disagree, pushes a correction to the
device and waits for the device to echo it back. Calibration splits follow the
same push/acknowledge cycle.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Dict, Optional, Protocol

from watermeter.core.published import PublishedView
from watermeter.core.state import DurableViews, Phase, ReconcileSettings, ReconciliationState
from watermeter.core.validator import accept, is_consistent
from watermeter.models.reading import CalibrationState, Reading

LOGGER = logging.getLogger("watermeter.reconcile")

CALIBRATE_COMMAND = "CALIBRATE"
CALIBRATION_COMMAND = "CALIBRATION"


class CommandSink(Protocol):
    def send(self, command: str) -> None:
        ...


class TotalStore(Protocol):
    def save(self, total: float, p0: int, p1: int) -> None:
        ...


class RemoteTotal(Protocol):
    def push_total_async(self, total: float) -> None:
        ...


def format_total(total: float) -> str:
    value = float(total)
    if value.is_integer():
        return str(int(value))
    return repr(value)


class ReconciliationMachine:
    """Single writer of :class:`ReconciliationState`.

    Frame processing and manual overrides share one lock so two corrections
    are never pushed at the same time.
    """

    def __init__(
        self,
        commands: CommandSink,
        *,
        settings: Optional[ReconcileSettings] = None,
        views: Optional[DurableViews] = None,
        storage: Optional[TotalStore] = None,
        remote: Optional[RemoteTotal] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._commands = commands
        self._settings = settings or ReconcileSettings()
        self._views = views or DurableViews(
            persisted_enabled=storage is not None,
            remote_enabled=remote is not None,
        )
        self._storage = storage
        self._remote = remote
        self._state = ReconciliationState()
        if self._settings.default_p0 > 0 and self._settings.default_p1 > 0:
            self._state.current_p0 = self._settings.default_p0
            self._state.current_p1 = self._settings.default_p1

    # ------------------------------------------------------------------
    # Durable view refresh
    def load_persisted(self, total: float, p0: int, p1: int) -> None:
        with self._lock:
            self._views.persisted_total = max(0.0, float(total))
            if p0 > 0 and p1 > 0:
                self._state.current_p0 = int(p0)
                self._state.current_p1 = int(p1)
            LOGGER.info(
                "Loaded persisted state total=%s p0=%s p1=%s",
                self._views.persisted_total,
                self._state.current_p0,
                self._state.current_p1,
            )

    def persisted_missing(self) -> None:
        with self._lock:
            self._views.persisted_total = 0.0
        LOGGER.info("No persisted state found, starting from zero")

    def set_remote_total(self, total: float) -> None:
        with self._lock:
            self._views.remote_total = float(total)
        LOGGER.info("Remote total is %s", total)

    # ------------------------------------------------------------------
    # Introspection
    def snapshot(self) -> ReconciliationState:
        with self._lock:
            return replace(self._state)

    def views(self) -> DurableViews:
        with self._lock:
            return replace(self._views)

    def status(self) -> Dict[str, object]:
        with self._lock:
            state = self._state
            views = self._views
            return {
                "phase": state.phase.value,
                "valid": state.last_valid,
                "last_accepted_total": state.last_accepted_total,
                "pending_total": state.pending_total,
                "p0": state.current_p0,
                "p1": state.current_p1,
                "persisted_total": views.persisted_total if views.persisted_enabled else None,
                "remote_total": views.remote_total if views.remote_enabled else None,
            }

    # ------------------------------------------------------------------
    # Frame driven transitions
    def process(self, reading: Reading) -> PublishedView:
        with self._lock:
            raw_total = reading.total
            self._check_calibration_ack(reading)
            self._check_total_ack(reading)

            valid = is_consistent(raw_total, self._state, self._views)
            if valid:
                accept(raw_total, self._state)
            self._state.last_valid = valid

            self._check_calibration(reading, valid)
            if not valid:
                self._check_counters(raw_total)

            return PublishedView(reading=reading, valid=valid)

    def _check_calibration_ack(self, reading: Reading) -> None:
        state = self._state
        if state.phase is not Phase.AWAITING_CALIBRATION_ACK:
            return
        if reading.split_p0 != state.pending_p0:
            return

        if (state.pending_p0, state.pending_p1) != (state.current_p0, state.current_p1):
            state.current_p0 = state.pending_p0
            state.current_p1 = state.pending_p1
            self._persist(max(reading.total, state.last_accepted_total), state.current_p0, state.current_p1)
        state.phase = Phase.IDLE
        LOGGER.debug("P0/P1 calibration processed (%s, %s)", state.pending_p0, state.pending_p1)

    def _check_total_ack(self, reading: Reading) -> None:
        state = self._state
        if not state.pending_total_sent:
            return
        if state.phase not in (Phase.AWAITING_AUTO_TOTAL_ACK, Phase.AWAITING_MANUAL_TOTAL_ACK):
            return

        target = state.pending_total
        raw_total = reading.total
        if raw_total < target:
            return
        # A manual total may be below the old device total, so only an echo
        # close to the requested value counts.
        if state.phase is Phase.AWAITING_MANUAL_TOTAL_ACK and raw_total - target >= self._settings.manual_tolerance:
            return

        views = self._views
        p0 = reading.split_p0 or state.current_p0
        p1 = reading.split_p1 or state.current_p1
        self._persist(target, p0, p1)
        if views.remote_enabled:
            views.remote_total = target
            if self._remote is not None:
                self._remote.push_total_async(target)

        state.last_accepted_total = raw_total
        state.clear_pending_total()
        state.phase = Phase.IDLE
        LOGGER.info("Meter correction to %s processed, values consistent", format_total(target))

    def _check_calibration(self, reading: Reading, valid: bool) -> None:
        state = self._state
        if state.phase is not Phase.IDLE:
            return

        p0 = reading.split_p0
        p1 = reading.split_p1
        if (
            valid
            and reading.total > 0
            and reading.calibration_state is CalibrationState.CALIBRATED
            and p0 > 0
            and p1 > 0
            and (p0, p1) != (state.current_p0, state.current_p1)
        ):
            LOGGER.info(
                "Calibration changed from (%s, %s) to (%s, %s), updating",
                state.current_p0,
                state.current_p1,
                p0,
                p1,
            )
            state.current_p0 = p0
            state.current_p1 = p1
            self._persist(reading.total, p0, p1)
            self._send_calibration(p0, p1)
            return

        if (
            self._settings.auto_calibrate
            and state.current_p0 > 0
            and state.current_p1 > 0
            and not reading.calibrating
            and (reading.calibration_state is CalibrationState.UNCALIBRATED or p0 == 0 or p1 == 0)
        ):
            LOGGER.info("Device is not calibrated, pushing (%s, %s)", state.current_p0, state.current_p1)
            self._send_calibration(state.current_p0, state.current_p1)

    def _check_counters(self, raw_total: float) -> None:
        state = self._state
        views = self._views
        if state.phase is not Phase.IDLE or state.pending_total_sent:
            return
        if raw_total < 0 or not views.ready:
            return

        LOGGER.debug(
            "Checking totals device=%s memory=%s disk=%s remote=%s",
            raw_total,
            state.last_accepted_total,
            views.persisted_total,
            views.remote_total,
        )
        limit = self._settings.recent_usage_limit
        high_memory = max(raw_total, state.last_accepted_total)
        high_durable = views.highest()
        # A small device total is usage counted since its reset, not yet saved anywhere.
        recent = raw_total if raw_total < limit else 0.0

        target = 0.0
        if high_durable > high_memory:
            target = high_durable + recent
        elif state.last_accepted_total > raw_total:
            target = state.last_accepted_total + recent

        if target > 0:
            LOGGER.info("Meter reset detected (device total %s)", format_total(raw_total))
            self._send_total(target, Phase.AWAITING_AUTO_TOTAL_ACK)

    # ------------------------------------------------------------------
    # Manual overrides
    def manual_total(self, total: float) -> bool:
        with self._lock:
            if total <= 0:
                LOGGER.warning("Ignoring manual total %s", total)
                return False
            if not self._state.last_valid:
                LOGGER.info("Ignoring manual total %s while the meter view is invalid", total)
                return False
            self._send_total(float(total), Phase.AWAITING_MANUAL_TOTAL_ACK)
            return True

    def manual_split(self, p0: int) -> bool:
        split_sum = self._settings.split_sum
        with self._lock:
            if not 0 < p0 < split_sum:
                LOGGER.warning("Ignoring manual split P0=%s", p0)
                return False
            if not self._state.last_valid:
                LOGGER.info("Ignoring manual split P0=%s while the meter view is invalid", p0)
                return False
            self._send_calibration(int(p0), split_sum - int(p0))
            return True

    def start_calibration(self) -> None:
        LOGGER.info("Starting device calibration")
        self._commands.send(CALIBRATE_COMMAND)

    def request_calibration(self) -> None:
        self._commands.send(CALIBRATION_COMMAND)

    # ------------------------------------------------------------------
    # Outbound helpers, called with the lock held
    def _send_calibration(self, p0: int, p1: int) -> None:
        if p0 <= 0 or p1 <= 0:
            return
        LOGGER.info("Updating device calibration %s, %s", p0, p1)
        state = self._state
        state.pending_p0 = p0
        state.pending_p1 = p1
        state.phase = Phase.AWAITING_CALIBRATION_ACK
        # The device derives P1 from P0.
        self._commands.send(f"P0:{p0}")

    def _send_total(self, total: float, phase: Phase) -> None:
        if total <= 0:
            return
        LOGGER.info("Updating device total %s", format_total(total))
        state = self._state
        state.pending_total = total
        state.pending_total_sent = True
        state.phase = phase
        self._commands.send(f"T:{format_total(total)}")

    def _persist(self, total: float, p0: int, p1: int) -> None:
        views = self._views
        if not views.persisted_enabled or total <= 0:
            return
        views.persisted_total = total
        if self._storage is not None and p0 > 0 and p1 > 0:
            self._storage.save(total, p0, p1)


__all__ = [
    "CALIBRATE_COMMAND",
    "CALIBRATION_COMMAND",
    "CommandSink",
    "ReconciliationMachine",
    "format_total",
]
