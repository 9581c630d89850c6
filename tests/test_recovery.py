"""
tests.test_recovery

Restart recovery from the persisted snapshot.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from conftest import FakeClock, FakeProvider

from cluster_provisioner.orchestrator.models import PostReadyStatus, ProvisioningRequest, RequestState
from cluster_provisioner.orchestrator.timers import TimerKind
from cluster_provisioner.services.lifecycle import LifecycleController
from cluster_provisioner.settings import Settings
from cluster_provisioner.store.registry import RequestRegistry


def _seed(settings: Settings, clock: FakeClock) -> None:
    now = clock.now
    records = [
        ProvisioningRequest(
            id="req-creating", desired_name="fresh", canonical_name="fresh", tier="M10",
            state=RequestState.creating, started_at=now - timedelta(minutes=10), progress_percent=30,
        ),
        ProvisioningRequest(
            id="req-stale", desired_name="stale", tier="M10",
            state=RequestState.initializing, started_at=now - timedelta(hours=25),
        ),
        ProvisioningRequest(
            id="req-old-ready", desired_name="old", tier="M10", state=RequestState.ready,
            started_at=now - timedelta(days=2), finished_at=now - timedelta(days=2),
        ),
        ProvisioningRequest(
            id="req-failed", desired_name="broken", tier="M10", state=RequestState.failed,
            started_at=now - timedelta(minutes=20), finished_at=now - timedelta(minutes=10),
        ),
        ProvisioningRequest(
            id="req-deleting", desired_name="going", tier="M10", state=RequestState.deleting,
            cancelled=True, started_at=now - timedelta(minutes=5),
            deletion_started_at=now - timedelta(minutes=1),
        ),
        ProvisioningRequest(
            id="req-deleting-expired", desired_name="gone", tier="M10", state=RequestState.deleting,
            cancelled=True, started_at=now - timedelta(hours=1),
            deletion_started_at=now - timedelta(minutes=30),
        ),
        ProvisioningRequest(
            id="req-ready", desired_name="live", tier="M10", state=RequestState.ready,
            progress_percent=100, started_at=now - timedelta(hours=2),
            finished_at=now - timedelta(hours=1),
            post_ready=PostReadyStatus(triggered=True, message="fake_feature pending"),
        ),
    ]
    RequestRegistry(snapshot_path=settings.snapshot_path).restore(records)


async def _yield(times: int = 10) -> None:
    for _ in range(times):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_recovery_classifies_records_by_age(
    controller: LifecycleController, settings: Settings, provider: FakeProvider, clock: FakeClock
) -> None:
    _seed(settings, clock)

    summary = controller.recover()
    await _yield()

    assert summary.resumed == ["req-creating"]
    assert summary.failed == ["req-stale"]
    assert sorted(summary.deleting) == ["req-deleting", "req-deleting-expired"]
    assert summary.purged == ["req-old-ready"]

    resumed = controller.status("req-creating")
    assert resumed.state == RequestState.creating
    assert resumed.progress_percent >= 30
    timers = controller.registry.timers("req-creating")
    assert timers.is_running(TimerKind.progress)
    assert timers.is_running(TimerKind.reconcile)
    # Resumed pollers query the provider straight away.
    assert "fresh" in provider.calls_to("get")

    stale = controller.status("req-stale")
    assert stale.state == RequestState.failed
    assert "timed out" in stale.last_status_message

    assert controller.status("req-failed").state == RequestState.failed
    assert "req-old-ready" not in controller.registry

    assert controller.registry.timers("req-deleting").is_running(TimerKind.deletion)
    assert "going" in provider.calls_to("delete")

    expired = controller.status("req-deleting-expired")
    assert expired.deletion_timed_out is True
    assert "gone" not in provider.calls_to("delete")

    ready = controller.status("req-ready")
    assert ready.state == RequestState.ready
    assert ready.post_ready.failed is True
    assert ready.post_ready.message == "Interrupted by restart"


@pytest.mark.asyncio
async def test_shutdown_persists_latest_state(
    controller: LifecycleController, settings: Settings
) -> None:
    await controller.create(name="app-1", tier="M10")
    await controller.shutdown()

    records = RequestRegistry(snapshot_path=settings.snapshot_path).load()
    assert [r.desired_name for r in records] == ["app-1"]


@pytest.mark.asyncio
async def test_recovery_with_no_snapshot_starts_clean(controller: LifecycleController) -> None:
    summary = controller.recover()
    assert summary.resumed == summary.failed == summary.deleting == []
    assert controller.list_requests() == []


@pytest.mark.asyncio
async def test_unacknowledged_create_fails_after_restart(
    controller: LifecycleController, settings: Settings, provider: FakeProvider, clock: FakeClock
) -> None:
    now = clock.now
    RequestRegistry(snapshot_path=settings.snapshot_path).restore(
        [
            ProvisioningRequest(
                id="req-lost", desired_name="lost", tier="M10",
                state=RequestState.initializing, started_at=now - timedelta(minutes=10),
            ),
            ProvisioningRequest(
                id="req-recent", desired_name="recent", tier="M10",
                state=RequestState.initializing, started_at=now - timedelta(minutes=1),
            ),
        ]
    )

    summary = controller.recover()
    await _yield(20)

    assert sorted(summary.resumed) == ["req-lost", "req-recent"]
    assert {"lost", "recent"} <= set(provider.calls_to("get"))

    lost = controller.status("req-lost")
    assert lost.state == RequestState.failed
    assert "before the provider acknowledged it" in lost.last_status_message
    assert not controller.registry.timers("req-lost").is_running(TimerKind.reconcile)

    # Still inside the bound: keeps polling in case the create did land.
    recent = controller.status("req-recent")
    assert recent.state == RequestState.creating
    assert recent.create_acknowledged_at is None

    provider.script("recent", "CREATING")
    clock.advance(10 * 60)
    await controller.poller.tick("req-recent")
    assert controller.status("req-recent").create_acknowledged_at == clock.now


# --- Module Notes -----------------------------------------------------------
# Snapshots are seeded through a second registry on the same path, the way a
# previous process would have left them.
