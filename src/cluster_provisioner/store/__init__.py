"""
cluster_provisioner.store

Persistence package.

Responsibilities:
- In-memory request registry with a write-through JSON snapshot.
"""

# Package marker.
