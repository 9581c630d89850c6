"""
tests.conftest

Shared fixtures: a controllable clock, in-memory provider/feature fakes and a
controller wired against them.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from cluster_provisioner.features.auditing import FeatureOutcome
from cluster_provisioner.orchestrator.errors import ProviderAckError
from cluster_provisioner.orchestrator.models import ProvisioningRequest
from cluster_provisioner.orchestrator.timers import TimerKind
from cluster_provisioner.provider_clients.base import (
    CreateAck,
    DeleteResult,
    Observation,
    ObservationKind,
)
from cluster_provisioner.services.lifecycle import LifecycleController
from cluster_provisioner.settings import Settings
from cluster_provisioner.store.registry import RequestRegistry

OBJECT_ID = "65a1f0c2e4b0d1a2b3c4d5e6"


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeProvider:
    """
    Scripted provider. `observations[name]` is consumed front to back; the last
    entry sticks. Unknown names are reported as not found.
    """

    def __init__(self) -> None:
        self.create_results: list[CreateAck | Exception] = []
        self.create_gate: asyncio.Event | None = None
        self.observations: dict[str, list[Observation]] = {}
        self.delete_results: dict[str, DeleteResult | Exception] = {}
        self.calls: list[tuple[str, str]] = []

    def script(self, name: str, *states: str | ObservationKind, **fields: Any) -> None:
        queue = self.observations.setdefault(name, [])
        for state in states:
            if isinstance(state, ObservationKind):
                queue.append(Observation(kind=state, queried_name=name, message=fields.get("message")))
            else:
                queue.append(
                    Observation(
                        kind=ObservationKind.confirmed,
                        queried_name=name,
                        state=state,
                        resource_id=OBJECT_ID,
                        connection_descriptor=fields.get("connection_descriptor"),
                        progress_hint=fields.get("progress_hint"),
                    )
                )

    def calls_to(self, method: str) -> list[str]:
        return [name for m, name in self.calls if m == method]

    async def create(self, *, name: str, tier: str, region: str) -> CreateAck:
        self.calls.append(("create", name))
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.create_results:
            result = self.create_results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return CreateAck(resource_id=OBJECT_ID, state="CREATING", name=name)

    async def get(self, *, name: str) -> Observation:
        self.calls.append(("get", name))
        queue = self.observations.get(name)
        if not queue:
            return Observation(kind=ObservationKind.not_found, queried_name=name)
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    async def delete(self, *, name: str) -> DeleteResult:
        self.calls.append(("delete", name))
        result = self.delete_results.get(name, DeleteResult(name=name, acknowledged=True))
        if isinstance(result, Exception):
            raise result
        return result

    async def enable_auditing(self) -> dict[str, Any]:
        self.calls.append(("enable_auditing", ""))
        return {"enabled": True}


class FakeFeature:
    name = "fake_feature"

    def __init__(self, *, error: Exception | None = None) -> None:
        self.error = error
        self.enabled_for: list[str] = []

    async def enable(self, request: ProvisioningRequest) -> FeatureOutcome:
        self.enabled_for.append(request.id)
        if self.error is not None:
            raise self.error
        return FeatureOutcome(enabled=True, message="fake feature enabled")


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    # Intervals are long so background loops stay parked; tests drive ticks directly.
    values: dict[str, Any] = {
        "env": "test",
        "snapshot_path": tmp_path / "cluster-requests.json",
        "poll_grace_seconds": 3600,
        "poll_interval_seconds": 3600,
        "progress_tick_seconds": 3600,
        "deletion_poll_interval_seconds": 3600,
        "sweep_interval_seconds": 3600,
    }
    values.update(overrides)
    return Settings(**values)


async def settle(controller: LifecycleController, request_id: str, kind: TimerKind) -> None:
    await controller.registry.timers(request_id).join(kind)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def feature() -> FakeFeature:
    return FakeFeature()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def registry(settings: Settings) -> RequestRegistry:
    return RequestRegistry(snapshot_path=settings.snapshot_path)


@pytest_asyncio.fixture
async def controller(
    settings: Settings,
    registry: RequestRegistry,
    provider: FakeProvider,
    feature: FakeFeature,
    clock: FakeClock,
) -> AsyncIterator[LifecycleController]:
    ctl = LifecycleController(
        settings=settings,
        registry=registry,
        provider=provider,
        feature=feature,
        clock=clock,
    )
    try:
        yield ctl
    finally:
        await ctl.shutdown()


@pytest.fixture
def ack_error() -> ProviderAckError:
    return ProviderAckError("Provider API Error: Cluster name is invalid")


# --- Module Notes -----------------------------------------------------------
# The fake provider records every call as (method, name) so tests can assert ordering.
