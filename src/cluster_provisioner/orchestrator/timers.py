"""
cluster_provisioner.orchestrator.timers

Per-request background task slots.

Responsibilities:
- Give every periodic or one-shot task a named slot tied to its request id.
- Guarantee at most one live task per slot (start stops the previous occupant).
- Surface crashed tasks in the logs instead of losing them.
"""

from __future__ import annotations

import asyncio
import contextvars
import enum
from collections.abc import Coroutine
from functools import partial
from typing import Any

from cluster_provisioner.observability.logging import get_logger

log = get_logger(__name__)


class TimerKind(enum.StrEnum):
    create_call = "create_call"
    progress = "progress"
    reconcile = "reconcile"
    deletion = "deletion"
    post_ready = "post_ready"


class RequestTimers:
    def __init__(self, request_id: str) -> None:
        self._request_id = request_id
        self._tasks: dict[TimerKind, asyncio.Task[Any]] = {}

    def start(self, kind: TimerKind, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        self.stop(kind)
        # Fresh context: background loops must not inherit HTTP request log fields.
        task = asyncio.create_task(
            coro,
            name=f"{kind.value}:{self._request_id}",
            context=contextvars.Context(),
        )
        self._tasks[kind] = task
        task.add_done_callback(partial(self._on_done, kind))
        log.debug("timer_started", request_id=self._request_id, timer=kind.value)
        return task

    def stop(self, kind: TimerKind) -> None:
        task = self._tasks.pop(kind, None)
        if task is None or task.done():
            return
        if task is _current_task():
            # A loop stopping its own slot is detached, not cancelled; it exits on
            # its next ownership check so the running handler can finish.
            log.debug("timer_detached", request_id=self._request_id, timer=kind.value)
            return
        task.cancel()
        log.debug("timer_stopped", request_id=self._request_id, timer=kind.value)

    def stop_all(self) -> None:
        for kind in list(self._tasks):
            self.stop(kind)

    def is_running(self, kind: TimerKind) -> bool:
        task = self._tasks.get(kind)
        return task is not None and not task.done()

    def owns(self, kind: TimerKind, task: asyncio.Task[Any] | None) -> bool:
        return task is not None and self._tasks.get(kind) is task

    async def join(self, kind: TimerKind) -> None:
        task = self._tasks.get(kind)
        if task is None or task is _current_task():
            return
        await asyncio.gather(task, return_exceptions=True)

    def _on_done(self, kind: TimerKind, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(kind) is task:
            del self._tasks[kind]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error(
                "timer_crashed",
                request_id=self._request_id,
                timer=kind.value,
                error=repr(exc),
                exc_info=exc,
            )


def _current_task() -> asyncio.Task[Any] | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


# --- Module Notes -----------------------------------------------------------
# The registry owns one `RequestTimers` per record; removing a record stops its
# timers, so no task can outlive the request it works for.
