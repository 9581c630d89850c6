"""
tests.test_naming

Name/tier validation and canonical-name resolution.
"""

from __future__ import annotations

import pytest

from cluster_provisioner.orchestrator.errors import ValidationError
from cluster_provisioner.orchestrator.models import ProvisioningRequest
from cluster_provisioner.orchestrator.naming import NameResolver, validate_name, validate_tier


@pytest.mark.parametrize("name", ["app-1", "A", "x" * 64, "Cluster-2024"])
def test_valid_names(name: str) -> None:
    assert validate_name(name) == name


@pytest.mark.parametrize("name", ["", "bad_name", "has space", "x" * 65, "dot.name"])
def test_invalid_names(name: str) -> None:
    with pytest.raises(ValidationError):
        validate_name(name)


def test_invalid_tier_lists_allowed_values() -> None:
    with pytest.raises(ValidationError, match="M10, M20, M30"):
        validate_tier("small", ("M10", "M20", "M30"))
    assert validate_tier("M20", ("M10", "M20", "M30")) == "M20"


def test_object_ids_are_not_name_hints() -> None:
    hints = NameResolver.collect_hints(
        resource_id="65a1f0c2e4b0d1a2b3c4d5e6", name=None, cluster_name=None
    )
    assert hints == []


def test_letter_bearing_id_is_a_hint() -> None:
    hints = NameResolver.collect_hints(resource_id="app-1-shard", name="app-1-shard", cluster_name=None)
    assert hints == ["app-1-shard"]


def test_canonical_name_requires_consensus() -> None:
    assert NameResolver.canonical_from_hints("app-1", []) == "app-1"
    assert NameResolver.canonical_from_hints("app-1", ["app-1", "other"]) == "app-1"
    assert NameResolver.canonical_from_hints("app-1", ["renamed", "other"]) == "app-1"
    assert NameResolver.canonical_from_hints("app-1", ["renamed"]) == "renamed"


def test_deletion_targets_cover_both_names() -> None:
    request = ProvisioningRequest(id="req-1", desired_name="app-1", canonical_name="renamed", tier="M10")
    assert NameResolver.deletion_targets(request) == ["renamed", "app-1"]
    assert NameResolver.needs_fallback_probe(request)

    same = request.model_copy(update={"canonical_name": "app-1"})
    assert NameResolver.deletion_targets(same) == ["app-1"]
    assert not NameResolver.needs_fallback_probe(same)


# --- Module Notes -----------------------------------------------------------
# Pure functions: no event loop needed.
