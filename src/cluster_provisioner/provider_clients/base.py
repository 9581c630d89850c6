"""
cluster_provisioner.provider_clients.base

Provider-neutral contract used by the orchestrator.

Responsibilities:
- Typed results for create/get/delete calls.
- Classify every status query as confirmed / not-found / hard-error / unreachable.
- Define the `ClusterProvider` protocol implemented by HTTP clients and test fakes.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Protocol


class ObservationKind(enum.StrEnum):
    confirmed = "confirmed"
    not_found = "not_found"
    hard_error = "hard_error"
    # Transport failure: says nothing about the resource, never changes state.
    unreachable = "unreachable"


@dataclass(frozen=True, slots=True)
class CreateAck:
    resource_id: str | None
    state: str | None = None
    name: str | None = None
    cluster_name: str | None = None


@dataclass(frozen=True, slots=True)
class Observation:
    kind: ObservationKind
    queried_name: str
    state: str | None = None
    resource_id: str | None = None
    connection_descriptor: str | None = None
    progress_hint: int | None = None
    message: str | None = None

    @property
    def is_confirmed(self) -> bool:
        return self.kind == ObservationKind.confirmed


@dataclass(frozen=True, slots=True)
class DeleteResult:
    name: str
    acknowledged: bool
    not_found: bool = False


class ClusterProvider(Protocol):
    async def create(self, *, name: str, tier: str, region: str) -> CreateAck:
        """Raise `ProviderAckError` when the provider rejects or garbles the request."""

    async def get(self, *, name: str) -> Observation:
        """Never raise for provider-side outcomes; classify them instead."""

    async def delete(self, *, name: str) -> DeleteResult:
        """Raise `ProviderHardError` / `ProviderTransportError` on failure."""

    async def enable_auditing(self) -> dict[str, Any]:
        """Project-wide database auditing (the post-ready feature)."""


# --- Module Notes -----------------------------------------------------------
# `get` returning a classified value (instead of raising) keeps the poller's
# decision table in one place: the controller never inspects HTTP details.
