"""Collaborators for durable storage and the remote home-automation service."""

from .remote import OpenHABClient
from .storage import PersistedState, StateStore

__all__ = ["OpenHABClient", "PersistedState", "StateStore"]
