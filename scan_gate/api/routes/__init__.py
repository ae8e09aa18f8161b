from __future__ import annotations

from scan_gate.api.routes.admin import router as admin_router
from scan_gate.api.routes.health import router as health_router
from scan_gate.api.routes.scans import router as scans_router

__all__ = ["admin_router", "health_router", "scans_router"]
