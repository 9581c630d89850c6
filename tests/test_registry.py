"""
tests.test_registry

Registry persistence, retention and timer ownership.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from cluster_provisioner.orchestrator.errors import RequestNotFound
from cluster_provisioner.orchestrator.models import ProvisioningRequest, RequestState
from cluster_provisioner.orchestrator.timers import TimerKind
from cluster_provisioner.store.registry import RequestRegistry

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _record(request_id: str, name: str, **fields) -> ProvisioningRequest:
    fields.setdefault("started_at", NOW)
    return ProvisioningRequest(id=request_id, desired_name=name, tier="M10", **fields)


def test_mutations_are_written_through(tmp_path: Path) -> None:
    path = tmp_path / "cluster-requests.json"
    registry = RequestRegistry(snapshot_path=path)
    registry.insert(_record("req-1", "app-1"))
    registry.update("req-1", state=RequestState.creating, progress_percent=12)

    reloaded = RequestRegistry(snapshot_path=path).load()
    assert [r.id for r in reloaded] == ["req-1"]
    assert reloaded[0].state == RequestState.creating
    assert reloaded[0].progress_percent == 12
    assert reloaded[0].started_at == NOW


def test_update_replaces_the_record(registry: RequestRegistry) -> None:
    original = registry.insert(_record("req-1", "app-1"))
    updated = registry.update("req-1", last_status_message="hello")
    assert original.last_status_message != "hello"
    assert registry.require("req-1") is updated

    with pytest.raises(RequestNotFound):
        registry.require("req-missing")


def test_failed_requests_release_their_name(registry: RequestRegistry) -> None:
    registry.insert(_record("req-1", "app-1", state=RequestState.failed))
    assert registry.find_active_by_name("app-1") is None

    registry.insert(_record("req-2", "app-1", state=RequestState.ready))
    assert registry.find_active_by_name("app-1").id == "req-2"


def test_purge_uses_separate_retention_windows(registry: RequestRegistry) -> None:
    registry.insert(_record("req-old-ready", "a", state=RequestState.ready, finished_at=NOW - timedelta(hours=25)))
    registry.insert(_record("req-new-ready", "b", state=RequestState.ready, finished_at=NOW - timedelta(hours=2)))
    registry.insert(_record("req-old-failed", "c", state=RequestState.failed, finished_at=NOW - timedelta(hours=2)))
    registry.insert(_record("req-new-failed", "d", state=RequestState.failed, finished_at=NOW - timedelta(minutes=5)))
    registry.insert(_record("req-creating", "e", state=RequestState.creating, started_at=NOW - timedelta(days=3)))

    purged = registry.purge_expired(
        now=NOW,
        ready_retention=timedelta(hours=24),
        failed_retention=timedelta(hours=1),
    )

    assert sorted(purged) == ["req-old-failed", "req-old-ready"]
    assert sorted(r.id for r in registry.list()) == ["req-creating", "req-new-failed", "req-new-ready"]


def test_unreadable_snapshot_is_moved_aside(tmp_path: Path) -> None:
    path = tmp_path / "cluster-requests.json"
    path.write_text("{not json")

    assert RequestRegistry(snapshot_path=path).load() == []
    assert not path.exists()
    assert (tmp_path / "cluster-requests.json.corrupt").read_text() == "{not json"


def test_cancelled_state_is_folded_into_deleting() -> None:
    record = _record("req-1", "app-1", state=RequestState.cancelled)
    assert record.state == RequestState.deleting
    assert record.cancelled is True


def test_clear_removes_records_and_snapshot(registry: RequestRegistry, settings) -> None:
    registry.insert(_record("req-1", "app-1"))
    registry.insert(_record("req-2", "app-2"))
    assert settings.snapshot_path.exists()

    assert registry.clear() == 2
    assert len(registry) == 0
    assert not settings.snapshot_path.exists()


@pytest.mark.asyncio
async def test_remove_stops_the_request_timers(registry: RequestRegistry) -> None:
    registry.insert(_record("req-1", "app-1"))
    task = registry.timers("req-1").start(TimerKind.reconcile, asyncio.sleep(3600))

    registry.remove("req-1")
    await asyncio.gather(task, return_exceptions=True)

    assert task.cancelled()
    assert "req-1" not in registry


# --- Module Notes -----------------------------------------------------------
# The snapshot file is the only durable state; each test gets its own tmp_path.
