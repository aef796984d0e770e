"""
FastAPI dependency injection.

Dependencies provide the handler, its clients, and configuration to route
functions. Tests replace any of them through app.dependency_overrides.
"""

import logging
from typing import Annotated

from fastapi import Depends

from ..config.settings import Settings, get_settings
from ..core.options import RouterOptions
from ..infrastructure.storage.client import StorageClient, create_storage_client
from ..infrastructure.upstream.client import UpstreamApiClient
from .handler import UploadProxyHandler

logger = logging.getLogger(__name__)

# Global mock instance (shared across requests so uploads survive between calls)
_mock_storage_client = None


def get_router_options(
    settings: Annotated[Settings, Depends(get_settings)],
) -> RouterOptions:
    """Provide routing options built from settings."""
    return settings.router_options()


def get_storage_client(
    settings: Annotated[Settings, Depends(get_settings)],
) -> StorageClient:
    """
    Provide storage client for the direct multipart actions.

    Returns either R2 client or mock client based on settings.

    In mock mode, we reuse the same client across requests
    so that uploads persist during the development session.
    """
    global _mock_storage_client

    if settings.r2_mock_mode:
        if _mock_storage_client is None:
            _mock_storage_client = create_storage_client(mock_mode=True)
            logger.info("Created shared mock storage client for session")
        logger.debug("Using shared mock storage client")
        return _mock_storage_client

    client = create_storage_client(config=settings.storage_config())
    logger.debug("Created R2 storage client")
    return client


def get_upstream_client(
    settings: Annotated[Settings, Depends(get_settings)],
) -> UpstreamApiClient:
    """Provide the upstream REST API client."""
    return UpstreamApiClient(settings.upstream_config())


def get_upload_handler(
    options: Annotated[RouterOptions, Depends(get_router_options)],
    storage: Annotated[StorageClient, Depends(get_storage_client)],
    upstream: Annotated[UpstreamApiClient, Depends(get_upstream_client)],
) -> UploadProxyHandler:
    """
    Provide the upload handler.

    The handler is stateless, so a new instance per request is fine.
    """
    return UploadProxyHandler(options=options, storage=storage, upstream=upstream)


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

SettingsDep = Annotated[Settings, Depends(get_settings)]
UploadHandlerDep = Annotated[UploadProxyHandler, Depends(get_upload_handler)]
