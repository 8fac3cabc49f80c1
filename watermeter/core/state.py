"""Reconciliation state shared by the validator and the state machine."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from watermeter.config import defaults

UNKNOWN = -1.0


class Phase(str, Enum):
    IDLE = "Idle"
    AWAITING_CALIBRATION_ACK = "AwaitingCalibrationAck"
    AWAITING_AUTO_TOTAL_ACK = "AwaitingAutoTotalAck"
    AWAITING_MANUAL_TOTAL_ACK = "AwaitingManualTotalAck"


@dataclass
class ReconciliationState:
    """Mutable reconciliation bookkeeping.

    Only :class:`~watermeter.core.reconcile.ReconciliationMachine` writes to
    this object; everything else gets a copy through ``snapshot()``.
    """

    phase: Phase = Phase.IDLE
    last_accepted_total: float = 0.0
    pending_total: float = 0.0
    pending_total_sent: bool = False
    pending_p0: int = 0
    pending_p1: int = 0
    current_p0: int = 0
    current_p1: int = 0
    last_valid: bool = False

    @property
    def correction_pending(self) -> bool:
        return self.pending_total > 0 or self.phase is not Phase.IDLE

    def clear_pending_total(self) -> None:
        self.pending_total = 0.0
        self.pending_total_sent = False


@dataclass
class DurableViews:
    """Last known totals outside the device; negative means not known yet."""

    persisted_total: float = UNKNOWN
    remote_total: float = UNKNOWN
    persisted_enabled: bool = True
    remote_enabled: bool = True

    @property
    def persisted_known(self) -> bool:
        return self.persisted_total >= 0

    @property
    def remote_known(self) -> bool:
        return self.remote_total >= 0

    @property
    def ready(self) -> bool:
        """True once every enabled durable view has been loaded."""

        return (not self.persisted_enabled or self.persisted_known) and (
            not self.remote_enabled or self.remote_known
        )

    def highest(self) -> float:
        values = []
        if self.persisted_enabled:
            values.append(self.persisted_total)
        if self.remote_enabled:
            values.append(self.remote_total)
        return max([0.0, *values])


@dataclass(frozen=True)
class ReconcileSettings:
    auto_calibrate: bool = True
    default_p0: int = defaults.DEFAULT_P0
    default_p1: int = defaults.DEFAULT_P1
    split_sum: int = defaults.SPLIT_SUM
    recent_usage_limit: float = defaults.RECENT_USAGE_LIMIT
    manual_tolerance: float = defaults.MANUAL_TOLERANCE


__all__ = [
    "UNKNOWN",
    "Phase",
    "ReconciliationState",
    "DurableViews",
    "ReconcileSettings",
]
