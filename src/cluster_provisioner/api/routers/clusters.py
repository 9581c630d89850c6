"""
cluster_provisioner.api.routers.clusters

Consumer endpoints: create, status, cancel (plus list and an admin clear).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from starlette.status import HTTP_400_BAD_REQUEST, HTTP_404_NOT_FOUND

from cluster_provisioner.api.deps import controller_from_app
from cluster_provisioner.orchestrator.errors import ConflictError, RequestNotFound, ValidationError
from cluster_provisioner.orchestrator.models import ProvisioningRequest
from cluster_provisioner.services.lifecycle import LifecycleController

router = APIRouter(prefix="/v1/clusters", tags=["clusters"])
admin_router = APIRouter(prefix="/v1/clusters", tags=["admin"])


class CreateClusterRequest(BaseModel):
    name: str
    tier: str


class CancelRequest(BaseModel):
    comment: str | None = None


class ClusterStatus(BaseModel):
    request_id: str
    name: str
    tier: str
    state: str
    progress_percent: int
    status_message: str
    canonical_name: str | None = None
    connection_descriptor: str | None = None
    provider_state: str | None = None
    started_at: datetime
    updated_at: datetime
    finished_at: datetime | None = None
    cancelled: bool = False
    deletion_timed_out: bool = False
    post_ready: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: ProvisioningRequest) -> ClusterStatus:
        return cls(
            request_id=record.id,
            name=record.desired_name,
            tier=record.tier,
            state=record.state.value,
            progress_percent=record.progress_percent,
            status_message=record.last_status_message,
            canonical_name=record.canonical_name,
            connection_descriptor=record.connection_descriptor,
            provider_state=record.provider_state,
            started_at=record.started_at,
            updated_at=record.updated_at,
            finished_at=record.finished_at,
            cancelled=record.cancelled,
            deletion_timed_out=record.deletion_timed_out,
            post_ready=record.post_ready.model_dump(mode="json"),
        )


@router.post("")
async def create_cluster(
    body: CreateClusterRequest,
    controller: LifecycleController = Depends(controller_from_app),
) -> dict[str, str]:
    try:
        record = await controller.create(name=body.name, tier=body.tier)
    except (ValidationError, ConflictError) as e:
        raise HTTPException(status_code=HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return {"request_id": record.id}


@router.get("")
async def list_clusters(
    controller: LifecycleController = Depends(controller_from_app),
) -> list[ClusterStatus]:
    return [ClusterStatus.from_record(r) for r in controller.list_requests()]


@router.get("/{request_id}")
async def get_cluster(
    request_id: str,
    controller: LifecycleController = Depends(controller_from_app),
) -> ClusterStatus:
    try:
        record = controller.status(request_id)
    except RequestNotFound as e:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail=str(e)) from e
    return ClusterStatus.from_record(record)


@router.post("/{request_id}/cancel")
async def cancel_cluster(
    request_id: str,
    body: CancelRequest | None = None,
    controller: LifecycleController = Depends(controller_from_app),
) -> dict[str, Any]:
    try:
        await controller.cancel(request_id, reason=body.comment if body else None)
    except RequestNotFound as e:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail=str(e)) from e
    return {"accepted": True}


@admin_router.delete("")
async def clear_clusters(
    controller: LifecycleController = Depends(controller_from_app),
) -> dict[str, int]:
    return {"cleared": controller.clear()}


# --- Module Notes -----------------------------------------------------------
# Cancelling a terminal request is accepted and does nothing; callers poll
# status to observe the outcome either way.
