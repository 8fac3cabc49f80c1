"""Configuration helpers for the water meter bridge defaults."""

from . import defaults  # noqa: F401

__all__ = ["defaults"]
