"""
cluster_provisioner.orchestrator.cancellation

Cancellation coordinator: delete a cluster and confirm its removal.

Responsibilities:
- Freeze progress and move the request to DELETING.
- Let an in-flight create call finish (its result is ignored) before deleting.
- Issue deletes against the canonical and the originally requested name.
- Poll independently (shorter interval, bounded duration) until the provider
  reports not-found, then remove the record.
- Leave unconfirmed deletions in place for operator follow-up.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta

from cluster_provisioner.observability.logging import get_logger
from cluster_provisioner.orchestrator.errors import ProviderHardError, ProviderTransportError
from cluster_provisioner.orchestrator.models import ProvisioningRequest, RequestState
from cluster_provisioner.orchestrator.naming import NameResolver
from cluster_provisioner.orchestrator.timers import TimerKind
from cluster_provisioner.provider_clients.base import ClusterProvider, ObservationKind
from cluster_provisioner.store.registry import RequestRegistry

log = get_logger(__name__)

_GONE_STATES = frozenset({"DELETING", "DELETED"})


class CancellationCoordinator:
    def __init__(
        self,
        *,
        registry: RequestRegistry,
        provider: ClusterProvider,
        resolver: NameResolver,
        clock: Callable[[], datetime],
        interval_seconds: float,
        timeout_seconds: float,
    ) -> None:
        self._registry = registry
        self._provider = provider
        self._resolver = resolver
        self._clock = clock
        self._interval_seconds = interval_seconds
        self._timeout = timedelta(seconds=timeout_seconds)

    def is_active(self, request_id: str) -> bool:
        return self._registry.timers(request_id).is_running(TimerKind.deletion)

    def begin(self, request_id: str, *, resume: bool = False) -> bool:
        """
        Hand a request over to deletion. Returns False if a deletion poller is
        already running for it (no duplicate delete calls).

        `resume=True` keeps the original deletion start time (restart recovery),
        so the confirmation bound is not silently extended.
        """

        if self.is_active(request_id):
            return False
        timers = self._registry.timers(request_id)
        timers.stop(TimerKind.progress)
        timers.stop(TimerKind.reconcile)

        record = self._registry.require(request_id)
        started = record.deletion_started_at if resume and record.deletion_started_at else self._clock()
        self._registry.update(
            request_id,
            state=RequestState.deleting,
            deletion_started_at=started,
            deletion_timed_out=False,
            last_status_message="Deletion requested; waiting for provider confirmation...",
        )
        timers.start(TimerKind.deletion, self._run(request_id))
        log.info("deletion_started", request_id=request_id, resume=resume)
        return True

    async def _run(self, request_id: str) -> None:
        timers = self._registry.timers(request_id)
        task = asyncio.current_task()
        # A create still in flight may yet produce a cluster (and its name), so
        # deletes wait for it. The provider timeout bounds the wait.
        if timers.is_running(TimerKind.create_call):
            log.info("deletion_waiting_for_create", request_id=request_id)
            await timers.join(TimerKind.create_call)
        record = self._registry.get(request_id)
        if record is None or not timers.owns(TimerKind.deletion, task):
            return

        if self._expired(record):
            self._give_up(request_id)
            return
        acknowledged = await self.issue_deletes(request_id)

        while timers.owns(TimerKind.deletion, task):
            await asyncio.sleep(self._interval_seconds)
            if not timers.owns(TimerKind.deletion, task):
                break
            try:
                if await self.check(request_id, acknowledged):
                    return
            except Exception:
                log.exception("deletion_check_failed", request_id=request_id)
            record = self._registry.get(request_id)
            if record is None:
                return
            if self._expired(record):
                self._give_up(request_id)
                return

    async def issue_deletes(self, request_id: str) -> set[str]:
        record = self._registry.get(request_id)
        if record is None:
            return set()
        acknowledged: set[str] = set()
        # The provider may never have confirmed a rename, so both names are targeted.
        for name in self._resolver.deletion_targets(record):
            if await self._delete(request_id, name):
                acknowledged.add(name)
        return acknowledged

    async def check(self, request_id: str, acknowledged: set[str]) -> bool:
        """One confirmation pass. Returns True once the record has been removed."""

        record = self._registry.get(request_id)
        if record is None:
            return True
        if self._registry.timers(request_id).is_running(TimerKind.create_call):
            # Not-found means nothing while the create call is still outstanding.
            return False
        targets = self._resolver.deletion_targets(record)
        observations = [await self._provider.get(name=name) for name in targets]

        if all(o.kind == ObservationKind.not_found for o in observations):
            self._confirm_deleted(request_id)
            return True

        for observation in observations:
            match observation.kind:
                case ObservationKind.confirmed if observation.state in _GONE_STATES:
                    self._note(request_id, "Cluster is deleting at provider...")
                case ObservationKind.confirmed:
                    # Still alive and our delete never landed (e.g. it raced the create).
                    if observation.queried_name not in acknowledged:
                        if await self._delete(request_id, observation.queried_name):
                            acknowledged.add(observation.queried_name)
                    self._note(
                        request_id,
                        f"Cluster is {(observation.state or 'unknown').lower()} at provider; "
                        "waiting for deletion...",
                    )
                case ObservationKind.hard_error:
                    self._note(request_id, observation.message or "Provider API error during deletion")
                case ObservationKind.unreachable:
                    log.warning("provider_unreachable", request_id=request_id, error=observation.message)
                case ObservationKind.not_found:
                    pass
        return False

    async def _delete(self, request_id: str, name: str) -> bool:
        try:
            result = await self._provider.delete(name=name)
        except ProviderHardError as e:
            log.warning("delete_rejected", request_id=request_id, name=name, error=str(e))
            self._note(request_id, f"Delete request failed: {e}")
            return False
        except ProviderTransportError as e:
            log.warning("delete_unreachable", request_id=request_id, name=name, error=str(e))
            return False
        log.info(
            "delete_issued",
            request_id=request_id,
            name=name,
            acknowledged=result.acknowledged,
            not_found=result.not_found,
        )
        # A not-found answer may have raced the create; only an acknowledgement counts.
        return result.acknowledged

    def _confirm_deleted(self, request_id: str) -> None:
        if request_id not in self._registry:
            return
        self._registry.update(request_id, state=RequestState.deleted, last_status_message="Cluster deleted")
        self._registry.remove(request_id)
        log.info("deletion_confirmed", request_id=request_id)

    def _give_up(self, request_id: str) -> None:
        if request_id not in self._registry:
            return
        minutes = int(self._timeout.total_seconds() // 60)
        self._registry.update(
            request_id,
            deletion_timed_out=True,
            last_status_message=(
                f"Deletion not confirmed within {minutes} minutes; manual cleanup required"
            ),
        )
        log.warning("deletion_unconfirmed", request_id=request_id, timeout_minutes=minutes)

    def _expired(self, record: ProvisioningRequest) -> bool:
        started = record.deletion_started_at or self._clock()
        return self._clock() - started >= self._timeout

    def _note(self, request_id: str, message: str) -> None:
        record = self._registry.get(request_id)
        if record is not None and record.last_status_message != message:
            self._registry.update(request_id, last_status_message=message)


# --- Module Notes -----------------------------------------------------------
# This poller is deliberately separate from the reconciliation poller: once a
# request is DELETING, the creation machinery is stopped and only this loop runs.
