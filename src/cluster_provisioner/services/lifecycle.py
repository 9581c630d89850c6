"""
cluster_provisioner.services.lifecycle

Request lifecycle controller (state-machine and timer owner).

Responsibilities:
- Validate and accept create requests; issue the provider create in the background.
- Apply reconciliation observations to the state machine.
- Route cancellation to the deletion coordinator.
- Trigger the post-ready feature exactly once per request.
- Recover persisted requests on startup; purge and audit on a sweep loop.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from cluster_provisioner.features.auditing import PostReadyFeature
from cluster_provisioner.observability.logging import get_logger
from cluster_provisioner.orchestrator.cancellation import CancellationCoordinator
from cluster_provisioner.orchestrator.errors import (
    ConflictError,
    ProviderAckError,
    ProvisioningTimeout,
)
from cluster_provisioner.orchestrator.models import (
    PROVISIONING_STATES,
    PostReadyStatus,
    ProvisioningRequest,
    RequestState,
    new_request_id,
    utcnow,
)
from cluster_provisioner.orchestrator.naming import NameResolver, validate_name, validate_tier
from cluster_provisioner.orchestrator.poller import ReconciliationPoller
from cluster_provisioner.orchestrator.progress import (
    PROGRESS_FAILED,
    PROGRESS_READY,
    Milestone,
    ProgressEstimator,
    describe,
)
from cluster_provisioner.orchestrator.timers import TimerKind
from cluster_provisioner.provider_clients.base import ClusterProvider, Observation
from cluster_provisioner.settings import Settings
from cluster_provisioner.store.registry import RequestRegistry

log = get_logger(__name__)

# Provider state vocabulary (upper-cased by the client).
READY_STATES = frozenset({"IDLE", "READY", "AVAILABLE"})
FAILED_STATES = frozenset({"FAILED", "ERROR"})
CREATING_STATES = frozenset({"CREATING", "PROVISIONING", "PENDING"})


@dataclass(slots=True)
class RecoverySummary:
    resumed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    deleting: list[str] = field(default_factory=list)
    purged: list[str] = field(default_factory=list)


class LifecycleController:
    def __init__(
        self,
        *,
        settings: Settings,
        registry: RequestRegistry,
        provider: ClusterProvider,
        feature: PostReadyFeature | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._provider = provider
        self._feature = feature
        self._clock = clock
        self._resolver = NameResolver()
        self._estimator = ProgressEstimator(
            nominal_duration_seconds=settings.nominal_duration_seconds,
            cap=settings.progress_cap,
        )
        self._poller = ReconciliationPoller(
            registry=registry,
            provider=provider,
            resolver=self._resolver,
            sink=self,
            clock=clock,
            grace_seconds=settings.poll_grace_seconds,
            interval_seconds=settings.poll_interval_seconds,
            max_provisioning_seconds=settings.max_provisioning_seconds,
        )
        self._cancellation = CancellationCoordinator(
            registry=registry,
            provider=provider,
            resolver=self._resolver,
            clock=clock,
            interval_seconds=settings.deletion_poll_interval_seconds,
            timeout_seconds=settings.deletion_timeout_seconds,
        )
        self._sweeper: asyncio.Task[Any] | None = None

    @property
    def registry(self) -> RequestRegistry:
        return self._registry

    @property
    def poller(self) -> ReconciliationPoller:
        return self._poller

    @property
    def cancellation(self) -> CancellationCoordinator:
        return self._cancellation

    # --- consumer operations -------------------------------------------------

    async def create(self, *, name: str, tier: str) -> ProvisioningRequest:
        validate_name(name)
        validate_tier(tier, self._settings.allowed_tiers)
        if self._registry.find_active_by_name(name) is not None:
            raise ConflictError(f'Cluster with name "{name}" already exists or is being created')

        now = self._clock()
        record = ProvisioningRequest(
            id=new_request_id(),
            desired_name=name,
            tier=tier,
            started_at=now,
            updated_at=now,
        )
        self._registry.insert(record)
        log.info("request_created", request_id=record.id, name=name, tier=tier)
        self._registry.timers(record.id).start(TimerKind.create_call, self._issue_create(record.id))
        return record

    def status(self, request_id: str) -> ProvisioningRequest:
        return self._registry.require(request_id)

    def list_requests(self) -> list[ProvisioningRequest]:
        return self._registry.list()

    async def cancel(self, request_id: str, *, reason: str | None = None) -> ProvisioningRequest:
        record = self._registry.require(request_id)
        if record.is_terminal:
            log.info("cancel_ignored", request_id=request_id, state=record.state.value)
            return record
        if self._cancellation.is_active(request_id):
            log.info("cancel_already_deleting", request_id=request_id)
            return record

        self._registry.update(
            request_id,
            cancelled=True,
            cancel_reason=reason or record.cancel_reason,
        )
        log.info("request_cancelled", request_id=request_id, reason=reason)
        self._cancellation.begin(request_id)
        return self._registry.require(request_id)

    async def wait_until_settled(
        self,
        request_id: str,
        *,
        timeout_seconds: float,
        poll_seconds: float = 0.5,
    ) -> ProvisioningRequest | None:
        """
        Block until the request is terminal, removed (deletion confirmed, returns None)
        or stuck in an unconfirmed deletion. Raises `ProvisioningTimeout` otherwise.
        """

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds
        while True:
            record = self._registry.get(request_id)
            if record is None:
                return None
            if record.is_terminal or record.deletion_timed_out:
                return record
            if loop.time() >= deadline:
                raise ProvisioningTimeout(
                    f"Request {request_id} still {record.state.value} after {timeout_seconds:.0f}s"
                )
            await asyncio.sleep(poll_seconds)

    def clear(self) -> int:
        return self._registry.clear()

    # --- create call ---------------------------------------------------------

    async def _issue_create(self, request_id: str) -> None:
        record = self._registry.get(request_id)
        if record is None:
            return
        try:
            ack = await self._provider.create(
                name=record.desired_name,
                tier=record.tier,
                region=self._settings.provider_region,
            )
        except ProviderAckError as e:
            log.warning("create_rejected", request_id=request_id, error=str(e))
            self._fail_if_provisioning(request_id, str(e))
            return
        except Exception as e:
            log.exception("create_call_failed", request_id=request_id)
            self._fail_if_provisioning(request_id, f"Cluster creation failed: {e}")
            return

        current = self._registry.get(request_id)
        if current is None:
            return
        hints = self._resolver.collect_hints(
            resource_id=ack.resource_id,
            name=ack.name,
            cluster_name=ack.cluster_name,
        )
        canonical = self._resolver.canonical_from_hints(current.desired_name, hints)

        if current.cancelled or current.state != RequestState.initializing:
            # Cancelled while the call was in flight: keep the names so the
            # deletion coordinator targets whatever the provider created.
            self._registry.update(
                request_id,
                provider_resource_id=ack.resource_id,
                name_hints=hints,
                canonical_name=canonical,
                create_acknowledged_at=self._clock(),
            )
            log.info("create_ack_discarded", request_id=request_id, canonical_name=canonical)
            return

        floor = self._estimator.ratchet(floor=current.progress_floor, milestone=Milestone.acknowledged)
        self._registry.update(
            request_id,
            state=RequestState.creating,
            provider_resource_id=ack.resource_id,
            provider_state=ack.state,
            name_hints=hints,
            canonical_name=canonical,
            create_acknowledged_at=self._clock(),
            progress_floor=floor,
            progress_percent=max(current.progress_percent, floor),
            last_status_message="Cluster creation in progress...",
        )
        log.info(
            "create_acknowledged",
            request_id=request_id,
            resource_id=ack.resource_id,
            canonical_name=canonical,
            hints=hints,
        )
        self._start_monitoring(request_id)

    def _start_monitoring(self, request_id: str, *, poll_delay_seconds: float | None = None) -> None:
        self._registry.timers(request_id).start(TimerKind.progress, self._progress_loop(request_id))
        self._poller.start(request_id, delay_seconds=poll_delay_seconds)

    def _stop_monitoring(self, request_id: str) -> None:
        self._registry.timers(request_id).stop(TimerKind.progress)
        self._poller.stop(request_id)

    # --- progress ------------------------------------------------------------

    async def _progress_loop(self, request_id: str) -> None:
        timers = self._registry.timers(request_id)
        task = asyncio.current_task()
        while timers.owns(TimerKind.progress, task):
            self.refresh_progress(request_id)
            await asyncio.sleep(self._settings.progress_tick_seconds)

    def refresh_progress(self, request_id: str) -> ProvisioningRequest | None:
        record = self._registry.get(request_id)
        if record is None or record.cancelled or record.state != RequestState.creating:
            return record
        value = self._estimator.on_tick(
            elapsed_seconds=record.elapsed_seconds(self._clock()),
            shown=record.progress_percent,
            floor=record.progress_floor,
        )
        message = record.last_status_message
        # Bands only while the provider has nothing more specific to say.
        if record.provider_state in (None, "CREATING"):
            message = describe(value)
        if value == record.progress_percent and message == record.last_status_message:
            return record
        return self._registry.update(request_id, progress_percent=value, last_status_message=message)

    # --- reconciliation sink -------------------------------------------------

    def on_reconcile(self, request_id: str, observation: Observation) -> None:
        record = self._live(request_id)
        if record is None:
            return
        state = observation.state or ""
        changes: dict[str, Any] = {"provider_state": state}
        if observation.resource_id:
            changes["provider_resource_id"] = observation.resource_id
        if observation.connection_descriptor:
            changes["connection_descriptor"] = observation.connection_descriptor
        if record.create_acknowledged_at is None:
            changes["create_acknowledged_at"] = self._clock()

        if state in READY_STATES:
            self._mark_ready(request_id, changes)
            return
        if state in FAILED_STATES:
            self._fail(request_id, "Cluster creation failed in provider", **changes)
            return

        if state not in CREATING_STATES:
            self._registry.update(
                request_id,
                last_status_message=f"Cluster is {state.lower()} in provider...",
                **changes,
            )
            return

        floor = self._estimator.ratchet(floor=record.progress_floor, milestone=Milestone.confirmed_creating)
        if observation.progress_hint is not None:
            floor = self._estimator.ratchet(floor=floor, milestone=observation.progress_hint)
        elapsed = record.elapsed_seconds(self._clock())
        progress = self._estimator.on_poll(
            elapsed_seconds=elapsed,
            shown=record.progress_percent,
            floor=floor,
        )
        self._registry.update(
            request_id,
            progress_floor=floor,
            progress_percent=progress,
            last_status_message=f"Cluster creation in progress ({_format_elapsed(elapsed)} elapsed)...",
            **changes,
        )

    def on_not_found(self, request_id: str) -> None:
        record = self._live(request_id)
        if record is None or record.state != RequestState.creating:
            return
        if (
            record.create_acknowledged_at is None
            and record.elapsed_seconds(self._clock()) > self._settings.unacknowledged_timeout_seconds
        ):
            # Restarted before the create call returned and the provider never saw it.
            log.warning("create_never_acknowledged", request_id=request_id)
            self._fail(request_id, "Cluster creation was interrupted before the provider acknowledged it")
            return
        progress = self._estimator.on_poll(
            elapsed_seconds=record.elapsed_seconds(self._clock()),
            shown=record.progress_percent,
            floor=record.progress_floor,
        )
        if progress != record.progress_percent:
            self._registry.update(request_id, progress_percent=progress)

    def on_provider_error(self, request_id: str, message: str) -> None:
        if self._live(request_id) is None:
            return
        log.warning("provider_error", request_id=request_id, error=message)
        self._fail(request_id, message)

    def on_timeout(self, request_id: str) -> None:
        if self._live(request_id) is None:
            return
        hours = self._settings.max_provisioning_seconds / 3600
        log.warning("provisioning_timed_out", request_id=request_id, max_hours=hours)
        self._fail(request_id, f"Cluster creation timed out (exceeded {hours:g} hours)")

    def adopt_canonical_name(self, request_id: str, name: str) -> None:
        record = self._registry.get(request_id)
        if record is None or record.canonical_name == name:
            return
        log.info(
            "canonical_name_adopted",
            request_id=request_id,
            previous=record.canonical_name,
            canonical_name=name,
        )
        self._registry.update(request_id, canonical_name=name)

    def _live(self, request_id: str) -> ProvisioningRequest | None:
        record = self._registry.get(request_id)
        if record is None or record.cancelled or record.state not in PROVISIONING_STATES:
            return None
        return record

    # --- terminal transitions ------------------------------------------------

    def _mark_ready(self, request_id: str, changes: dict[str, Any]) -> None:
        self._stop_monitoring(request_id)
        self._registry.update(
            request_id,
            state=RequestState.ready,
            progress_percent=PROGRESS_READY,
            finished_at=self._clock(),
            last_status_message="Cluster is ready!",
            **changes,
        )
        log.info("request_ready", request_id=request_id)
        self._trigger_post_ready(request_id)

    def _fail(self, request_id: str, message: str, **changes: Any) -> None:
        self._stop_monitoring(request_id)
        self._registry.update(
            request_id,
            state=RequestState.failed,
            progress_percent=PROGRESS_FAILED,
            finished_at=self._clock(),
            last_status_message=message,
            **changes,
        )
        log.info("request_failed", request_id=request_id, message=message)

    def _fail_if_provisioning(self, request_id: str, message: str) -> None:
        if self._live(request_id) is not None:
            self._fail(request_id, message)

    # --- post-ready feature --------------------------------------------------

    def _trigger_post_ready(self, request_id: str) -> None:
        record = self._registry.get(request_id)
        if record is None or record.post_ready.triggered or self._feature is None:
            return
        self._registry.update(
            request_id,
            post_ready=PostReadyStatus(triggered=True, message=f"{self._feature.name} pending"),
        )
        self._registry.timers(request_id).start(TimerKind.post_ready, self._run_post_ready(request_id))

    async def _run_post_ready(self, request_id: str) -> None:
        record = self._registry.get(request_id)
        if record is None or self._feature is None:
            return
        try:
            outcome = await self._feature.enable(record)
        except Exception as e:
            # Never feeds back into the primary state: READY stays READY.
            log.exception("post_ready_failed", request_id=request_id, feature=self._feature.name)
            status = PostReadyStatus(
                triggered=True,
                failed=True,
                message=f"{self._feature.name} failed: {e}",
                completed_at=self._clock(),
            )
        else:
            status = PostReadyStatus(
                triggered=True,
                enabled=outcome.enabled,
                failed=not outcome.enabled,
                message=outcome.message,
                completed_at=self._clock(),
            )
            log.info(
                "post_ready_completed",
                request_id=request_id,
                feature=self._feature.name,
                enabled=outcome.enabled,
            )
        if request_id in self._registry:
            self._registry.update(request_id, post_ready=status)

    # --- startup / housekeeping ----------------------------------------------

    def recover(self) -> RecoverySummary:
        """
        Reload the snapshot and classify each record by age:
        - provisioning within the deadline: resume as CREATING (ticker + poller);
          a create that was never acknowledged fails on a not-found past
          `unacknowledged_timeout_seconds`
        - provisioning past the deadline: FAILED
        - DELETING: resume the deletion poller from its original start time
        - READY with an interrupted post-ready feature: mark that feature failed
        """

        now = self._clock()
        summary = RecoverySummary()
        restored: list[ProvisioningRequest] = []
        for record in self._registry.load():
            if record.state in PROVISIONING_STATES and not record.cancelled:
                if record.elapsed_seconds(now) > self._settings.max_provisioning_seconds:
                    hours = self._settings.max_provisioning_seconds / 3600
                    record = record.model_copy(
                        update={
                            "state": RequestState.failed,
                            "progress_percent": PROGRESS_FAILED,
                            "finished_at": now,
                            "updated_at": now,
                            "last_status_message": (
                                f"Cluster creation timed out (exceeded {hours:g} hours)"
                            ),
                        }
                    )
                    summary.failed.append(record.id)
                else:
                    acknowledged_at = record.create_acknowledged_at
                    if acknowledged_at is None and record.state == RequestState.creating:
                        # CREATING is only reached through an acknowledged create.
                        acknowledged_at = record.started_at
                    record = record.model_copy(
                        update={
                            "state": RequestState.creating,
                            "create_acknowledged_at": acknowledged_at,
                            "updated_at": now,
                            "last_status_message": "Resumed monitoring after restart...",
                        }
                    )
                    summary.resumed.append(record.id)
            elif record.state in PROVISIONING_STATES or record.state == RequestState.deleting:
                if record.state != RequestState.deleting:
                    record = record.model_copy(update={"state": RequestState.deleting})
                if not record.deletion_timed_out:
                    summary.deleting.append(record.id)
            elif (
                record.state == RequestState.ready
                and record.post_ready.triggered
                and record.post_ready.completed_at is None
            ):
                record = record.model_copy(
                    update={
                        "post_ready": PostReadyStatus(
                            triggered=True,
                            failed=True,
                            message="Interrupted by restart",
                            completed_at=now,
                        )
                    }
                )
            restored.append(record)

        self._registry.restore(restored)
        summary.purged = self._purge(now)

        for request_id in summary.resumed:
            if request_id in self._registry:
                # Resumed records are already known to the provider: no grace needed.
                self._start_monitoring(request_id, poll_delay_seconds=0)
        for request_id in summary.deleting:
            if request_id in self._registry:
                self._cancellation.begin(request_id, resume=True)

        log.info(
            "recovery_completed",
            restored=len(restored),
            resumed=len(summary.resumed),
            failed=len(summary.failed),
            deleting=len(summary.deleting),
            purged=len(summary.purged),
        )
        return summary

    def sweep(self) -> list[str]:
        now = self._clock()
        purged = self._purge(now)
        # Deadline enforced here too, independent of poller output.
        for record in self._registry.list():
            if (
                record.state in PROVISIONING_STATES
                and not record.cancelled
                and record.elapsed_seconds(now) > self._settings.max_provisioning_seconds
            ):
                self.on_timeout(record.id)
        states = Counter(record.state.value for record in self._registry.list())
        log.info("registry_integrity", total=len(self._registry), states=dict(states), purged=len(purged))
        return purged

    def start_sweeper(self) -> None:
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(), name="registry-sweeper")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.sweep_interval_seconds)
            try:
                self.sweep()
            except Exception:
                log.exception("sweep_failed")

    async def shutdown(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None
        self._registry.shutdown()
        # Final save so the next process can resume from the latest state.
        self._registry.save()
        log.info("controller_shutdown", requests=len(self._registry))

    def _purge(self, now: datetime) -> list[str]:
        return self._registry.purge_expired(
            now=now,
            ready_retention=timedelta(seconds=self._settings.ready_retention_seconds),
            failed_retention=timedelta(seconds=self._settings.failed_retention_seconds),
        )


def _format_elapsed(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs:02d}s" if minutes else f"{secs}s"


# --- Module Notes -----------------------------------------------------------
# Every state transition goes through this controller; the poller and the
# deletion coordinator only report or act on DELETING records.
