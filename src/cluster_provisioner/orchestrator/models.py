"""
cluster_provisioner.orchestrator.models

Core request schema for the provisioning engine.

Responsibilities:
- Define the provisioning state enum and its terminal subset.
- Define `ProvisioningRequest`, the single persisted record per request.
- Keep the JSON shape stable (it is the on-disk snapshot format).
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    # Timestamps are tz-aware UTC so snapshot round-trips compare correctly.
    return datetime.now(tz=UTC)


class RequestState(enum.StrEnum):
    # Enum values are written to the snapshot; treat as stable API contract.
    initializing = "INITIALIZING"
    creating = "CREATING"
    ready = "READY"
    failed = "FAILED"
    deleting = "DELETING"
    deleted = "DELETED"
    cancelled = "CANCELLED"


TERMINAL_STATES: frozenset[RequestState] = frozenset(
    {RequestState.ready, RequestState.failed, RequestState.deleted}
)

# States in which the poller and progress ticker are expected to run.
PROVISIONING_STATES: frozenset[RequestState] = frozenset(
    {RequestState.initializing, RequestState.creating}
)


class PostReadyStatus(BaseModel):
    """Outcome of the one-time post-ready feature; never feeds the primary state machine."""

    triggered: bool = False
    enabled: bool = False
    failed: bool = False
    message: str | None = None
    completed_at: datetime | None = None


class ProvisioningRequest(BaseModel):
    id: str
    desired_name: str
    canonical_name: str | None = None
    tier: str

    state: RequestState = RequestState.initializing
    progress_percent: int = Field(default=0, ge=0, le=100)
    # Server-cap ratchet: provider milestones raise this; estimates never drop below it.
    progress_floor: int = Field(default=0, ge=0, le=100)

    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None

    last_status_message: str = "Initializing cluster creation..."
    provider_state: str | None = None
    provider_resource_id: str | None = None
    name_hints: list[str] = Field(default_factory=list)
    # None until the provider accepted the create call.
    create_acknowledged_at: datetime | None = None

    cancelled: bool = False
    cancel_reason: str | None = None
    deletion_started_at: datetime | None = None
    deletion_timed_out: bool = False

    post_ready: PostReadyStatus = Field(default_factory=PostReadyStatus)
    connection_descriptor: str | None = None

    @model_validator(mode="after")
    def _absorb_cancelled(self) -> ProvisioningRequest:
        # CANCELLED is folded into DELETING; older snapshots may still carry it.
        if self.state == RequestState.cancelled:
            self.state = RequestState.deleting
            self.cancelled = True
        return self

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def query_name(self) -> str:
        return self.canonical_name or self.desired_name

    def elapsed_seconds(self, now: datetime) -> float:
        return max(0.0, (now - self.started_at).total_seconds())


def new_request_id() -> str:
    # Request ids are distinct from any provider identity.
    return f"req-{uuid.uuid4().hex[:12]}"


# --- Module Notes -----------------------------------------------------------
# Records are replaced (model_copy) rather than mutated in place by the registry,
# so a reference held across an `await` is a consistent snapshot of that moment.
