"""
cluster_provisioner.api.__main__

Process entrypoint: `python -m cluster_provisioner.api` (or the `cluster-provisioner` script).
"""

from __future__ import annotations

import uvicorn

from cluster_provisioner.api.app import create_app
from cluster_provisioner.observability.logging import get_logger
from cluster_provisioner.settings import get_settings

log = get_logger(__name__)


def main() -> None:
    settings = get_settings()
    app = create_app(settings=settings)
    log.info(
        "service_starting",
        host=settings.api_host,
        port=settings.api_port,
        snapshot_path=str(settings.snapshot_path),
        provider_base_url=settings.provider_base_url,
    )

    # SIGINT/SIGTERM run the lifespan shutdown, which stops every timer and saves
    # the snapshot; the grace period bounds how long in-flight provider calls may take.
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,  # structlog
        timeout_graceful_shutdown=int(settings.provider_timeout_seconds),
    )


if __name__ == "__main__":
    main()


# --- Module Notes -----------------------------------------------------------
# Run exactly one process: the registry and its timers are process-local, so
# multiple workers would each poll and persist the same requests.
