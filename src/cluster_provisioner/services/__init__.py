"""
cluster_provisioner.services

Service-layer package.

Responsibilities:
- Own the provisioning state machine and its persistence decisions.
- Orchestrate calls across the registry, timers, and provider clients.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Services should be pure Python and easily testable with fake providers and clocks.
