"""
cluster_provisioner.features.auditing

Post-ready auxiliary feature: enable database auditing once a cluster is READY.

Responsibilities:
- Define the `PostReadyFeature` capability the controller invokes exactly once.
- Provide the auditing implementation on top of the provider client.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from cluster_provisioner.observability.logging import get_logger
from cluster_provisioner.orchestrator.models import ProvisioningRequest
from cluster_provisioner.provider_clients.base import ClusterProvider

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class FeatureOutcome:
    enabled: bool
    message: str


class PostReadyFeature(Protocol):
    name: str

    async def enable(self, request: ProvisioningRequest) -> FeatureOutcome: ...


class DatabaseAuditingFeature:
    name = "database_auditing"

    def __init__(self, *, provider: ClusterProvider) -> None:
        self._provider = provider

    async def enable(self, request: ProvisioningRequest) -> FeatureOutcome:
        log.info("auditing_enable_started", request_id=request.id, cluster=request.query_name)
        result = await self._provider.enable_auditing()
        if result.get("enabled") is False:
            return FeatureOutcome(enabled=False, message="Provider did not confirm auditing is enabled")
        return FeatureOutcome(enabled=True, message="Database auditing enabled")


# --- Module Notes -----------------------------------------------------------
# Auditing is project-scoped at the provider, so enabling it twice is harmless;
# the controller still guards it with `post_ready.triggered`.
