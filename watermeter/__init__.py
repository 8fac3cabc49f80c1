"""Water meter bridge: serial meter frames, counter reconciliation and HTTP view."""

__version__ = "1.0.0"

__all__ = ["__version__"]
