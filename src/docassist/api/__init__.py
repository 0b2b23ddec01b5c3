"""HTTP binding of the document assistant."""
from __future__ import annotations

from .errors import error_status, install_error_handlers
from .routes import router

__all__ = ["error_status", "install_error_handlers", "router"]
