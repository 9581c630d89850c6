"""
cluster_provisioner.orchestrator.errors

Domain-specific exceptions used by the provisioning engine.

Responsibilities:
- Separate synchronous caller errors (validation, conflict) from asynchronous
  provider failures that only surface through request status.
"""

from __future__ import annotations


class ProvisioningError(Exception):
    """Base class for every error raised by the orchestrator."""


class ValidationError(ProvisioningError):
    """Malformed cluster name or unsupported tier; no record is created."""


class ConflictError(ProvisioningError):
    """An active (non-FAILED) request already holds the desired name."""


class RequestNotFound(ProvisioningError):
    """Unknown request id (never existed, removed after deletion, or purged)."""


class ProviderAckError(ProvisioningError):
    """
    The initial create call failed.
    The record exists and is moved straight to FAILED with this message.
    """


class ProviderHardError(ProvisioningError):
    """
    Explicit error fields in a provider response, or a malformed payload.
    The message is preserved verbatim for operator visibility.
    """


class ProviderTransportError(ProvisioningError):
    """Network-level failure (connect error, per-call timeout). Never changes state by itself."""


class ProvisioningTimeout(ProvisioningError):
    """Max provisioning duration or deletion-confirmation bound exceeded."""


# --- Module Notes -----------------------------------------------------------
# "Not found yet" is intentionally NOT an exception: during early CREATING it is an
# expected observation (`ObservationKind.not_found`) and polling simply continues.
