"""ASGI application entrypoint for the water meter backend."""
from __future__ import annotations

from watermeter.main import app as _app

# Re-export the FastAPI application created in watermeter.main so uvicorn can
# locate it via the dotted path ``watermeter.asgi:app``.
app = _app

__all__ = ["app"]
