"""
cluster_provisioner.api.routers.health

Health and readiness endpoints.

Responsibilities:
- Provide liveness probe (`/healthz`).
- Provide readiness probe (`/readyz`): the controller has recovered and is serving.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from cluster_provisioner.api.deps import controller_from_app
from cluster_provisioner.services.lifecycle import LifecycleController

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    # Liveness: process is up and serving HTTP.
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(controller: LifecycleController = Depends(controller_from_app)) -> dict[str, Any]:
    # Readiness: the registry has been restored and requests can be tracked.
    return {"status": "ready", "tracked_requests": len(controller.registry)}


# --- Module Notes -----------------------------------------------------------
# Provider reachability is deliberately not part of readiness: polling tolerates outages.
