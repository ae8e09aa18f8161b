from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and the
admission gate) to improve testability: tests pass their own gate built with a
fake clock or failing stores.
"""

from fastapi import FastAPI

from scan_gate.api.routes import admin_router, health_router, scans_router
from scan_gate.core.config import settings
from scan_gate.core.exception_handlers import setup_exception_handlers
from scan_gate.core.gate import build_gate
from scan_gate.core.logging import configure_logging
from scan_gate.core.middleware import request_id_middleware
from scan_gate.core.openapi import apply_openapi_customizations
from scan_gate.services.admission import AdmissionGate


def create_app(gate: AdmissionGate | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        gate: Pre-built admission gate; built from settings when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Scan Gate API",
        description=(
            "Admission control for scan analysis requests: resolves who is asking "
            "(account, device fingerprint or IP), applies the subscription tier's "
            "rate limit and lifetime scan allowance, and screens out automated "
            "abuse before any expensive analysis runs."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    # Process-scoped gate: one per app, discarded with it
    app.state.gate = gate or build_gate(settings)

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(scans_router, prefix="/v1")
    app.include_router(admin_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, exemptions)
    apply_openapi_customizations(app)

    return app
