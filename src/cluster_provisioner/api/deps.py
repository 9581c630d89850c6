"""
cluster_provisioner.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide the dependency function for the lifecycle controller.
- Encapsulate app.state access patterns.
"""

from __future__ import annotations

from fastapi import Request

from cluster_provisioner.services.lifecycle import LifecycleController


def controller_from_app(request: Request) -> LifecycleController:
    # The controller is created in the lifespan of `cluster_provisioner.api.app.create_app`.
    return request.app.state.controller  # type: ignore[attr-defined]


# --- Module Notes -----------------------------------------------------------
# The controller is process-wide: every request shares one registry and timer set.
