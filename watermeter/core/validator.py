"""Consistency checks between the device total and the durable views."""
from __future__ import annotations

import logging

from .state import DurableViews, ReconciliationState

LOGGER = logging.getLogger("watermeter.reconcile")


def is_consistent(raw_total: float, state: ReconciliationState, views: DurableViews) -> bool:
    """Return whether ``raw_total`` may be published as a trustworthy total.

    Nothing is mutated here; see :func:`accept` for the watermark update.
    """

    if state.correction_pending:
        return False
    if raw_total < state.last_accepted_total:
        LOGGER.debug("Inconsistent meter values detected (memory): %s < %s", raw_total, state.last_accepted_total)
        return False
    if views.remote_enabled and (not views.remote_known or raw_total < views.remote_total):
        LOGGER.debug("Inconsistent meter values detected (remote): %s < %s", raw_total, views.remote_total)
        return False
    if views.persisted_enabled and (not views.persisted_known or raw_total < views.persisted_total):
        LOGGER.debug("Inconsistent meter values detected (disk): %s < %s", raw_total, views.persisted_total)
        return False
    return True


def accept(raw_total: float, state: ReconciliationState) -> None:
    if raw_total > state.last_accepted_total:
        state.last_accepted_total = raw_total


__all__ = ["is_consistent", "accept"]
