"""
cluster_provisioner.api.app

FastAPI app factory for the Cluster Provisioning Orchestrator service.

Responsibilities:
- Build the FastAPI application and register routers/middleware.
- Initialize and dispose shared infrastructure (HTTP client, registry, controller).
- Provide a single composition root where cross-cutting concerns live.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from cluster_provisioner.api.routers.clusters import admin_router
from cluster_provisioner.api.routers.clusters import router as clusters_router
from cluster_provisioner.api.routers.health import router as health_router
from cluster_provisioner.features.auditing import DatabaseAuditingFeature, PostReadyFeature
from cluster_provisioner.observability.logging import configure_logging, get_logger
from cluster_provisioner.observability.middleware import RequestContextMiddleware
from cluster_provisioner.provider_clients.base import ClusterProvider
from cluster_provisioner.provider_clients.cluster_http import ClusterApiClient, build_http_client
from cluster_provisioner.services.lifecycle import LifecycleController
from cluster_provisioner.settings import Settings
from cluster_provisioner.store.registry import RequestRegistry

log = get_logger(__name__)


def create_app(
    *,
    settings: Settings,
    provider: ClusterProvider | None = None,
    feature: PostReadyFeature | None = None,
) -> FastAPI:
    """
    `provider` / `feature` are injection points for tests; by default the HTTP
    provider client and the auditing feature are built from settings.
    """

    # Configure structured logging once at process startup (before app serves requests).
    configure_logging(
        service_name=settings.service_name,
        level=settings.log_level,
        env=settings.env,
        fmt=settings.log_format,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("startup", env=settings.env)
        http: httpx.AsyncClient | None = None
        active_provider = provider
        if active_provider is None:
            http = build_http_client(settings)
            active_provider = ClusterApiClient(settings=settings, http=http)

        active_feature = feature
        if active_feature is None and settings.enable_post_ready_feature:
            active_feature = DatabaseAuditingFeature(provider=active_provider)

        registry = RequestRegistry(snapshot_path=settings.snapshot_path)
        controller = LifecycleController(
            settings=settings,
            registry=registry,
            provider=active_provider,
            feature=active_feature,
        )
        app.state.controller = controller

        controller.recover()
        controller.start_sweeper()
        try:
            yield
        finally:
            await controller.shutdown()
            if http is not None:
                await http.aclose()
            log.info("shutdown")

    app = FastAPI(
        title="Cluster Provisioning Orchestrator",
        version="0.1.0",
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(clusters_router)
    if settings.env != "prod":
        # Clearing every request (and the snapshot) is an operator convenience only.
        app.include_router(admin_router)

    return app


# --- Module Notes -----------------------------------------------------------
# This file is intentionally small: app composition stays here; lifecycle logic stays
# in the controller and orchestrator layers.
