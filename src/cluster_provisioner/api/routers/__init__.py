"""
cluster_provisioner.api.routers

HTTP route modules.
"""

# Package marker.
