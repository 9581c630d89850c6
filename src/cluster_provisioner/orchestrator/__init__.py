"""
cluster_provisioner.orchestrator

Provisioning engine building blocks.

Responsibilities:
- Request model and state enum.
- Progress estimation, name resolution, timer slots.
- Reconciliation and deletion-confirmation polling.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Nothing in this package talks HTTP directly; provider access goes through
# the `ClusterProvider` protocol in `provider_clients.base`.
