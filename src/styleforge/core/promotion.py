"""Best-effort promotion of generated artifacts into durable storage.

The provider only keeps generated images for a limited time.  When an
Artifact Store is configured, successful artifacts are copied into it and the
durable URL replaces the provider URL.  Promotion is a single attempt: if it
fails the original URL is kept and a warning is logged.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class ArtifactStore(Protocol):
    """Durable object storage for generated images."""

    async def put(self, url: str) -> str:
        """Copy the artifact at *url* and return its persisted URL."""
        ...

    def is_durable(self, url: str) -> bool:
        """Return ``True`` if *url* already points into this store."""
        ...


async def promote_artifact(store: ArtifactStore | None, url: str) -> str:
    """Copy *url* into *store*, falling back to *url* on any failure.

    Args:
        store: The artifact store, or ``None`` when none is configured.
        url: Provider URL of the generated artifact.

    Returns:
        The persisted URL, or *url* unchanged when there is no store, the URL
        is already durable, or the upload failed.
    """
    if store is None or store.is_durable(url):
        return url

    try:
        durable_url = await store.put(url)
    except Exception as exc:
        logger.warning("Artifact promotion failed, using original URL %s: %s", url, exc)
        return url

    logger.info("Promoted artifact %s -> %s", url, durable_url)
    return durable_url
