"""
cluster_provisioner.orchestrator.poller

Reconciliation poller: periodic provider ground-truth queries for one request.

Responsibilities:
- Start after a grace delay, then tick at a fixed interval.
- Query by canonical name, falling back to the desired name on not-found.
- Classify each observation and hand it to the controller (the sink).
- Enforce the global provisioning deadline.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

from cluster_provisioner.observability.logging import get_logger
from cluster_provisioner.orchestrator.models import (
    PROVISIONING_STATES,
    ProvisioningRequest,
)
from cluster_provisioner.orchestrator.naming import NameResolver
from cluster_provisioner.orchestrator.timers import TimerKind
from cluster_provisioner.provider_clients.base import (
    ClusterProvider,
    Observation,
    ObservationKind,
)
from cluster_provisioner.store.registry import RequestRegistry

log = get_logger(__name__)


class ReconcileSink(Protocol):
    def on_reconcile(self, request_id: str, observation: Observation) -> None: ...

    def on_not_found(self, request_id: str) -> None: ...

    def on_provider_error(self, request_id: str, message: str) -> None: ...

    def on_timeout(self, request_id: str) -> None: ...

    def adopt_canonical_name(self, request_id: str, name: str) -> None: ...


class ReconciliationPoller:
    def __init__(
        self,
        *,
        registry: RequestRegistry,
        provider: ClusterProvider,
        resolver: NameResolver,
        sink: ReconcileSink,
        clock: Callable[[], datetime],
        grace_seconds: float,
        interval_seconds: float,
        max_provisioning_seconds: float,
    ) -> None:
        self._registry = registry
        self._provider = provider
        self._resolver = resolver
        self._sink = sink
        self._clock = clock
        self._grace_seconds = grace_seconds
        self._interval_seconds = interval_seconds
        self._max_provisioning_seconds = max_provisioning_seconds

    def start(self, request_id: str, *, delay_seconds: float | None = None) -> None:
        delay = self._grace_seconds if delay_seconds is None else delay_seconds
        self._registry.timers(request_id).start(TimerKind.reconcile, self._run(request_id, delay))
        log.info("poller_scheduled", request_id=request_id, delay_seconds=delay)

    def stop(self, request_id: str) -> None:
        self._registry.timers(request_id).stop(TimerKind.reconcile)
        log.debug("poller_stopped", request_id=request_id)

    async def _run(self, request_id: str, delay_seconds: float) -> None:
        # The resource is usually not queryable right after the create ack.
        await asyncio.sleep(delay_seconds)
        timers = self._registry.timers(request_id)
        task = asyncio.current_task()
        log.info("poller_started", request_id=request_id, interval_seconds=self._interval_seconds)
        while timers.owns(TimerKind.reconcile, task):
            try:
                await self.tick(request_id)
            except Exception:
                # One bad tick must not end reconciliation; the next tick retries.
                log.exception("poller_tick_failed", request_id=request_id)
            if not timers.owns(TimerKind.reconcile, task):
                break
            await asyncio.sleep(self._interval_seconds)
        log.info("poller_exited", request_id=request_id)

    async def tick(self, request_id: str) -> Observation | None:
        """
        One reconciliation pass. Returns the observation that was acted upon,
        or None when the request is no longer reconcilable.
        """

        record = self._reconcilable(request_id)
        if record is None:
            return None
        if record.elapsed_seconds(self._clock()) > self._max_provisioning_seconds:
            self._sink.on_timeout(request_id)
            return None

        observation = await self._provider.get(name=record.query_name)
        # Anything may have happened while the call was in flight (cancel, timeout).
        record = self._reconcilable(request_id)
        if record is None:
            log.info("observation_discarded", request_id=request_id, kind=observation.kind.value)
            return None

        if observation.kind == ObservationKind.not_found and self._resolver.needs_fallback_probe(record):
            observation = await self._probe_desired_name(record, observation)
            if self._reconcilable(request_id) is None:
                return None

        return self._dispatch(request_id, observation)

    async def _probe_desired_name(
        self, record: ProvisioningRequest, observation: Observation
    ) -> Observation:
        log.info(
            "fallback_probe",
            request_id=record.id,
            canonical_name=record.canonical_name,
            desired_name=record.desired_name,
        )
        fallback = await self._provider.get(name=record.desired_name)
        if not fallback.is_confirmed:
            return observation
        if self._reconcilable(record.id) is not None:
            self._sink.adopt_canonical_name(record.id, record.desired_name)
        return fallback

    def _dispatch(self, request_id: str, observation: Observation) -> Observation:
        match observation.kind:
            case ObservationKind.confirmed:
                self._sink.on_reconcile(request_id, observation)
            case ObservationKind.not_found:
                log.info("cluster_not_found_yet", request_id=request_id, name=observation.queried_name)
                self._sink.on_not_found(request_id)
            case ObservationKind.hard_error:
                self._sink.on_provider_error(request_id, observation.message or "Provider API error")
            case ObservationKind.unreachable:
                log.warning("provider_unreachable", request_id=request_id, error=observation.message)
        return observation

    def _reconcilable(self, request_id: str) -> ProvisioningRequest | None:
        record = self._registry.get(request_id)
        if record is None or record.cancelled or record.state not in PROVISIONING_STATES:
            return None
        return record


# --- Module Notes -----------------------------------------------------------
# The poller never changes state itself: every decision is a sink callback, and
# the controller stops this timer when a terminal state is reached.
