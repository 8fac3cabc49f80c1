"""Frame decoding and counter reconciliation."""

from .frames import FrameDecoder
from .published import PublishedView, PublishedViewBuffer
from .reconcile import ReconciliationMachine
from .state import DurableViews, Phase, ReconcileSettings, ReconciliationState

__all__ = [
    "FrameDecoder",
    "PublishedView",
    "PublishedViewBuffer",
    "ReconciliationMachine",
    "DurableViews",
    "Phase",
    "ReconcileSettings",
    "ReconciliationState",
]
