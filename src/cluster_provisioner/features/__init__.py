"""
cluster_provisioner.features

Post-ready auxiliary features (run once after a cluster becomes usable).
"""

# Package marker.
