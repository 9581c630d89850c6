"""
cluster_provisioner.provider_clients

Client boundary for the external cluster provider.

Responsibilities:
- Define the provider protocol the orchestrator depends on.
- Provide an HTTP implementation with structured error decoding.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Swap implementations here (another cloud, a local emulator) without touching
# the controller or pollers.
