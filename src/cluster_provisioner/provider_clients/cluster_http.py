"""
cluster_provisioner.provider_clients.cluster_http

HTTP client boundary used by the orchestrator to call the cluster provider.

Responsibilities:
- Build the authenticated `httpx.AsyncClient` (digest auth, base url).
- Issue create/get/delete cluster calls with an explicit per-call timeout.
- Decode provider payloads into typed results; keep transport failures apart
  from provider-reported errors.
"""

from __future__ import annotations

from typing import Any

import httpx

from cluster_provisioner.observability.logging import get_logger
from cluster_provisioner.orchestrator.errors import (
    ProviderAckError,
    ProviderHardError,
    ProviderTransportError,
)
from cluster_provisioner.provider_clients.base import (
    CreateAck,
    DeleteResult,
    Observation,
    ObservationKind,
)
from cluster_provisioner.settings import Settings

log = get_logger(__name__)

_NOT_FOUND_CODES = frozenset({"CLUSTER_NOT_FOUND"})
_NOT_FOUND_DETAIL = "No cluster named"


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    # One pooled client per process; per-call timeouts are still passed explicitly.
    return httpx.AsyncClient(
        base_url=settings.provider_base_url.rstrip("/"),
        auth=httpx.DigestAuth(settings.provider_public_key, settings.provider_private_key),
        headers={"Accept": "application/json"},
        timeout=settings.provider_timeout_seconds,
    )


class ClusterApiClient:
    """
    Provider boundary:
    - The orchestrator talks to the provider only through this interface
      (see `provider_clients.base.ClusterProvider`).
    - Payload shapes follow the Atlas v1.0 clusters API.
    """

    def __init__(self, *, settings: Settings, http: httpx.AsyncClient) -> None:
        self._settings = settings
        self._http = http
        self._timeout = httpx.Timeout(settings.provider_timeout_seconds)

    def _clusters_path(self, name: str | None = None) -> str:
        base = f"/groups/{self._settings.provider_project_id}/clusters"
        return f"{base}/{name}" if name else base

    async def create(self, *, name: str, tier: str, region: str) -> CreateAck:
        body = {
            "name": name,
            "clusterType": "REPLICASET",
            "replicationSpecs": [
                {
                    "numShards": 1,
                    "regionsConfig": {
                        region: {"electableNodes": 3, "priority": 7, "readOnlyNodes": 0}
                    },
                }
            ],
            "providerSettings": {
                "providerName": self._settings.provider_cloud,
                "instanceSizeName": tier,
                "regionName": region,
            },
            "mongoDBMajorVersion": self._settings.provider_db_version,
        }
        try:
            r = await self._http.post(self._clusters_path(), json=body, timeout=self._timeout)
        except httpx.HTTPError as e:
            raise ProviderAckError(f"Cluster creation failed: {_describe_transport(e)}") from e

        payload = _decode_json(r)
        if payload is None:
            if _looks_like_html(r.text):
                raise ProviderAckError("Provider API returned HTML error page - server issue")
            raise ProviderAckError("Invalid response from provider API")
        if not isinstance(payload, dict):
            raise ProviderAckError("Unexpected response from provider API")

        detail = _error_detail(payload)
        if detail is not None:
            raise ProviderAckError(f"Provider API Error: {detail}")
        if r.is_error:
            raise ProviderAckError(f"Provider API Error: HTTP {r.status_code}")
        if not payload.get("id"):
            raise ProviderAckError("Unexpected response from provider API")

        log.info("provider_create_ack", name=name, resource_id=payload.get("id"), state=payload.get("stateName"))
        return CreateAck(
            resource_id=str(payload["id"]),
            state=_str_or_none(payload.get("stateName")),
            name=_str_or_none(payload.get("name")),
            cluster_name=_str_or_none(payload.get("clusterName")),
        )

    async def get(self, *, name: str) -> Observation:
        try:
            r = await self._http.get(self._clusters_path(name), timeout=self._timeout)
        except httpx.HTTPError as e:
            return Observation(
                kind=ObservationKind.unreachable,
                queried_name=name,
                message=_describe_transport(e),
            )

        if r.status_code >= 500 or r.status_code == 429:
            # Provider-side outage or throttling: no statement about the cluster itself.
            return Observation(
                kind=ObservationKind.unreachable,
                queried_name=name,
                message=f"Provider API unavailable: HTTP {r.status_code}",
            )

        payload = _decode_json(r)
        if not isinstance(payload, dict):
            return Observation(
                kind=ObservationKind.hard_error,
                queried_name=name,
                message="Failed to parse provider API response",
            )

        if _is_not_found(r, payload):
            return Observation(kind=ObservationKind.not_found, queried_name=name)

        detail = _error_detail(payload)
        if detail is not None:
            return Observation(
                kind=ObservationKind.hard_error,
                queried_name=name,
                message=f"Provider API Error: {detail}",
            )
        if r.is_error:
            return Observation(
                kind=ObservationKind.hard_error,
                queried_name=name,
                message=f"Provider API Error: HTTP {r.status_code}",
            )

        state = payload.get("stateName")
        if not isinstance(state, str) or not state:
            return Observation(
                kind=ObservationKind.hard_error,
                queried_name=name,
                message="Unexpected response format from provider API",
            )

        return Observation(
            kind=ObservationKind.confirmed,
            queried_name=name,
            state=state.upper(),
            resource_id=_str_or_none(payload.get("id")),
            connection_descriptor=_connection_descriptor(payload),
            progress_hint=_progress_hint(payload),
        )

    async def delete(self, *, name: str) -> DeleteResult:
        try:
            r = await self._http.delete(self._clusters_path(name), timeout=self._timeout)
        except httpx.HTTPError as e:
            raise ProviderTransportError(f"Cluster deletion failed: {_describe_transport(e)}") from e

        if r.status_code in (200, 202, 204):
            log.info("provider_delete_ack", name=name, status=r.status_code)
            return DeleteResult(name=name, acknowledged=True)
        if r.status_code >= 500 or r.status_code == 429:
            raise ProviderTransportError(f"Provider API unavailable: HTTP {r.status_code}")

        payload = _decode_json(r)
        payload = payload if isinstance(payload, dict) else {}
        if _is_not_found(r, payload):
            return DeleteResult(name=name, acknowledged=False, not_found=True)
        detail = _error_detail(payload) or f"HTTP {r.status_code}"
        raise ProviderHardError(f"Provider API Error: {detail}")

    async def enable_auditing(self) -> dict[str, Any]:
        # Audit everything (empty filter), including successful authorizations.
        r = await self._http.patch(
            f"/groups/{self._settings.provider_project_id}/auditLog",
            json={"enabled": True, "auditFilter": "{}", "auditAuthorizationSuccess": True},
            timeout=self._timeout,
        )
        r.raise_for_status()
        return r.json()


def _decode_json(r: httpx.Response) -> Any | None:
    if not r.content:
        return None
    try:
        return r.json()
    except ValueError:
        return None


def _error_detail(payload: dict[str, Any]) -> str | None:
    if not any(key in payload for key in ("error", "errorCode", "detail")):
        return None
    for key in ("detail", "reason", "error"):
        value = payload.get(key)
        if value not in (None, ""):
            return str(value)
    return "Unknown error"


def _is_not_found(r: httpx.Response, payload: dict[str, Any]) -> bool:
    code = payload.get("errorCode")
    if code in _NOT_FOUND_CODES:
        return True
    detail = payload.get("detail")
    if isinstance(detail, str) and _NOT_FOUND_DETAIL in detail:
        return True
    # A bare 404 (no error code) is a missing cluster; a coded 404 such as
    # GROUP_NOT_FOUND is a configuration error and stays a hard error.
    return r.status_code == 404 and not code


def _connection_descriptor(payload: dict[str, Any]) -> str | None:
    strings = payload.get("connectionStrings")
    if isinstance(strings, dict):
        for key in ("standardSrv", "standard"):
            value = strings.get(key)
            if isinstance(value, str) and value:
                return value
    for key in ("srvAddress", "mongoURI"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _progress_hint(payload: dict[str, Any]) -> int | None:
    for key in ("progress", "percentComplete"):
        value = payload.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and 0 <= value <= 100:
            return int(value)
    return None


def _looks_like_html(text: str) -> bool:
    head = text.lstrip()[:200].lower()
    return head.startswith("<!doctype") or "<html" in head


def _str_or_none(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


def _describe_transport(e: httpx.HTTPError) -> str:
    if isinstance(e, httpx.TimeoutException):
        return f"request timed out ({type(e).__name__})"
    return str(e) or type(e).__name__


# --- Module Notes -----------------------------------------------------------
# mTLS or OAuth service accounts would replace digest auth in `build_http_client`;
# nothing else in the service depends on how requests are authenticated.
