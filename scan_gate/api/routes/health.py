from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness probe for load balancers.

    Does not touch the stores: a Redis outage degrades admission, it does not
    make the gate unhealthy.
    """
    return {"status": "ok"}
