"""OpenAPI metadata and customization utilities.

Provides a helper to enrich the generated OpenAPI schema with:
- Tags metadata
- API Key security scheme (``X-API-Key``) for operator endpoints and for
  the service-side scan consume call
- Optional bearer and device fingerprint schemes for scan endpoints
  (anonymous access is allowed; identity falls back to the client IP)

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and security.

    - Injects components.securitySchemes for API Key auth (header ``X-API-Key``)
      bearer auth and the device fingerprint header
    - Marks all operations as requiring API Key by default, then relaxes scan
      endpoints to optional bearer or fingerprint and exempts health with ``security: []``
    - Adds tags metadata if not present
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        # Components / security schemes
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Operator API key via the X-API-Key header.",
            },
        )
        security_schemes.setdefault(
            "BearerAuth",
            {
                "type": "http",
                "scheme": "bearer",
                "description": "Optional end-user session token; omit for anonymous access.",
            },
        )
        security_schemes.setdefault(
            "DeviceFingerprint",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-Device-Fingerprint",
                "description": "Stable client device identifier (8-128 chars of [A-Za-z0-9_.:-]).",
            },
        )

        # Global security requirement (applies to all operations)
        schema.setdefault("security", [{"ApiKeyAuth": []}])

        # Tags metadata
        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Scans",
                "description": "Admission decisions, quota reads and scan consumption.",
            },
            {
                "name": "Admin",
                "description": "Operator endpoints for devices and user ledgers.",
            },
            {
                "name": "Health",
                "description": "Liveness probe.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        paths = schema.get("paths", {})
        for path, methods in paths.items():
            if path.endswith("/health"):
                security = []
            elif path.endswith("/scans/consume"):
                # service key required; end-user identity still optional
                security = [
                    {"ApiKeyAuth": [], "BearerAuth": []},
                    {"ApiKeyAuth": [], "DeviceFingerprint": []},
                    {"ApiKeyAuth": []},
                ]
            elif "/scans/" in path:
                # {} = anonymous allowed
                security = [{"BearerAuth": []}, {"DeviceFingerprint": []}, {}]
            else:
                continue
            for method_obj in methods.values():
                if isinstance(method_obj, dict):
                    method_obj["security"] = security

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
