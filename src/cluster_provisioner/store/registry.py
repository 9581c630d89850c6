"""
cluster_provisioner.store.registry

Durable keyed store of provisioning requests.

Responsibilities:
- Hold the in-memory records (the sole mutable source of truth).
- Write the whole set through to a JSON snapshot on every mutation.
- Load snapshots on startup (classification happens in the controller).
- Own the per-request timer slots so tasks never outlive their records.
- Purge terminal records past their retention windows.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from cluster_provisioner.observability.logging import get_logger
from cluster_provisioner.orchestrator.errors import RequestNotFound
from cluster_provisioner.orchestrator.models import ProvisioningRequest, RequestState, utcnow
from cluster_provisioner.orchestrator.timers import RequestTimers

log = get_logger(__name__)

_SNAPSHOT = TypeAdapter(list[ProvisioningRequest])


class RequestRegistry:
    def __init__(self, *, snapshot_path: Path | None) -> None:
        self._snapshot_path = snapshot_path
        self._records: dict[str, ProvisioningRequest] = {}
        self._timers: dict[str, RequestTimers] = {}

    # --- reads ---------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._records

    def get(self, request_id: str) -> ProvisioningRequest | None:
        return self._records.get(request_id)

    def require(self, request_id: str) -> ProvisioningRequest:
        record = self._records.get(request_id)
        if record is None:
            raise RequestNotFound(f"Cluster request {request_id} not found")
        return record

    def list(self) -> list[ProvisioningRequest]:
        return sorted(self._records.values(), key=lambda r: r.started_at)

    def find_active_by_name(self, name: str) -> ProvisioningRequest | None:
        # FAILED requests release their name; everything else still holds it.
        for record in self._records.values():
            if record.desired_name == name and record.state not in (
                RequestState.failed,
                RequestState.deleted,
            ):
                return record
        return None

    # --- writes (all write-through) ------------------------------------------

    def insert(self, record: ProvisioningRequest) -> ProvisioningRequest:
        if record.id in self._records:
            raise ValueError(f"duplicate request id {record.id}")
        self._records[record.id] = record
        self.save()
        return record

    def update(self, request_id: str, **changes: Any) -> ProvisioningRequest:
        current = self.require(request_id)
        changes.setdefault("updated_at", utcnow())
        updated = current.model_copy(update=changes)
        self._records[request_id] = updated
        self.save()
        return updated

    def remove(self, request_id: str) -> ProvisioningRequest | None:
        timers = self._timers.pop(request_id, None)
        if timers is not None:
            timers.stop_all()
        record = self._records.pop(request_id, None)
        if record is not None:
            self.save()
        return record

    def restore(self, records: list[ProvisioningRequest]) -> None:
        for record in records:
            self._records[record.id] = record
        self.save()

    def clear(self) -> int:
        count = len(self._records)
        self.shutdown()
        self._records.clear()
        if self._snapshot_path is not None and self._snapshot_path.exists():
            self._snapshot_path.unlink()
        log.info("registry_cleared", cleared=count)
        return count

    # --- timers --------------------------------------------------------------

    def timers(self, request_id: str) -> RequestTimers:
        timers = self._timers.get(request_id)
        if timers is None:
            timers = RequestTimers(request_id)
            self._timers[request_id] = timers
        return timers

    def shutdown(self) -> None:
        for timers in self._timers.values():
            timers.stop_all()
        self._timers.clear()

    # --- retention -----------------------------------------------------------

    def purge_expired(
        self,
        *,
        now: datetime,
        ready_retention: timedelta,
        failed_retention: timedelta,
    ) -> list[str]:
        expired: list[str] = []
        for record in self._records.values():
            finished = record.finished_at or record.started_at
            age = now - finished
            if record.state == RequestState.ready and age > ready_retention:
                expired.append(record.id)
            elif record.state == RequestState.failed and age > failed_retention:
                expired.append(record.id)
        if not expired:
            return expired
        for request_id in expired:
            timers = self._timers.pop(request_id, None)
            if timers is not None:
                timers.stop_all()
            del self._records[request_id]
        self.save()
        log.info("registry_purged", purged=len(expired), remaining=len(self._records))
        return expired

    # --- persistence ---------------------------------------------------------

    def save(self) -> None:
        if self._snapshot_path is None:
            return
        payload = _SNAPSHOT.dump_json(list(self._records.values()), indent=2)
        path = self._snapshot_path
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.tmp")
        tmp.write_bytes(payload)
        # Atomic replace: a crash mid-write leaves the previous snapshot intact.
        os.replace(tmp, path)

    def load(self) -> list[ProvisioningRequest]:
        """
        Read the snapshot without installing it.

        An unreadable snapshot is moved aside to `<name>.corrupt` and treated as empty,
        so a bad file never blocks startup and is still available for inspection.
        """

        path = self._snapshot_path
        if path is None or not path.exists():
            return []
        try:
            records = _SNAPSHOT.validate_json(path.read_bytes())
        except PydanticValidationError as e:
            aside = path.with_name(f"{path.name}.corrupt")
            os.replace(path, aside)
            log.error("snapshot_unreadable", path=str(path), moved_to=str(aside), error=str(e))
            return []
        log.info("snapshot_loaded", path=str(path), count=len(records))
        return records


# --- Module Notes -----------------------------------------------------------
# Mutation of a single record is single-writer (the controller's handlers run on
# one event loop and never interleave inside a synchronous `update`), so no
# per-record locking is needed.
