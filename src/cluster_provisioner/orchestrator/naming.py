"""
cluster_provisioner.orchestrator.naming

Cluster name validation and canonical-name resolution.

Responsibilities:
- Validate user-supplied names and tiers before any record exists.
- Derive a canonical name from a create acknowledgement without trusting any
  single heuristic field.
- Decide query and delete targets for a request.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from cluster_provisioner.orchestrator.errors import ValidationError
from cluster_provisioner.orchestrator.models import ProvisioningRequest

NAME_RE = re.compile(r"^[A-Za-z0-9-]+$")
MAX_NAME_LEN = 64

_LETTER_RE = re.compile(r"[A-Za-z]")


def validate_name(name: str) -> str:
    if not isinstance(name, str) or not name:
        raise ValidationError("Cluster name is required")
    if len(name) > MAX_NAME_LEN or not NAME_RE.fullmatch(name):
        raise ValidationError(
            f"Cluster name must be 1-{MAX_NAME_LEN} characters, letters, numbers, and hyphens only"
        )
    return name


def validate_tier(tier: str, allowed: Iterable[str]) -> str:
    allowed = tuple(allowed)
    if not tier:
        raise ValidationError("Tier is required")
    if tier not in allowed:
        raise ValidationError(f"Invalid tier. Must be one of: {', '.join(allowed)}")
    return tier


class NameResolver:
    """
    The provider may report a name that differs from the one requested, through
    several loosely-defined fields. Those fields are hints only: the canonical
    name moves away from the desired name solely when every hint agrees, and the
    poller's fallback probe (ground truth) overrides it afterwards.
    """

    @staticmethod
    def collect_hints(
        *,
        resource_id: str | None,
        name: str | None,
        cluster_name: str | None,
    ) -> list[str]:
        hints: list[str] = []
        for candidate in (name, cluster_name):
            if candidate and candidate not in hints:
                hints.append(candidate)
        # Opaque hex ids are identities, not names; only letter-bearing ids count.
        if resource_id and _LETTER_RE.search(resource_id) and not _looks_like_object_id(resource_id):
            if resource_id not in hints:
                hints.append(resource_id)
        return hints

    @staticmethod
    def canonical_from_hints(desired_name: str, hints: list[str]) -> str:
        if not hints or desired_name in hints:
            return desired_name
        if len(set(hints)) == 1:
            return hints[0]
        return desired_name

    @staticmethod
    def needs_fallback_probe(request: ProvisioningRequest) -> bool:
        return request.canonical_name is not None and request.canonical_name != request.desired_name

    @staticmethod
    def deletion_targets(request: ProvisioningRequest) -> list[str]:
        targets = [request.query_name]
        if request.desired_name not in targets:
            targets.append(request.desired_name)
        return targets


def _looks_like_object_id(value: str) -> bool:
    return len(value) == 24 and all(c in "0123456789abcdefABCDEF" for c in value)


# --- Module Notes -----------------------------------------------------------
# Hints are kept on the record (`name_hints`) for operators; they never decide
# anything once a fallback probe has succeeded.
