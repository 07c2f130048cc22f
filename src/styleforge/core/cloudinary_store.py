"""Cloudinary-backed artifact store.

Generated images are copied from the provider's short-lived URLs into a
Cloudinary folder.  The Cloudinary SDK is synchronous, so every call is run
in the threadpool to keep the event loop free while the upload is in flight.
"""

from __future__ import annotations

import logging
from typing import Any

import cloudinary.uploader
from starlette.concurrency import run_in_threadpool

from styleforge.core.config import StyleforgeConfig
from styleforge.core.errors import ArtifactPromotionError

logger = logging.getLogger(__name__)

CLOUDINARY_HOST = "res.cloudinary.com"


class CloudinaryArtifactStore:
    """Artifact store uploading remote images into a Cloudinary folder.

    Credentials are passed per call rather than through the SDK's global
    ``cloudinary.config()`` so several stores can coexist (tests, tenants).

    Args:
        cloud_name: Cloudinary cloud name.
        api_key: Cloudinary API key.
        api_secret: Cloudinary API secret.
        folder: Destination folder for uploads.
    """

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder: str = "everart-generations",
    ) -> None:
        self.folder = folder
        self._credentials = {
            "cloud_name": cloud_name,
            "api_key": api_key,
            "api_secret": api_secret,
        }

    @classmethod
    def from_config(cls, cfg: StyleforgeConfig) -> CloudinaryArtifactStore | None:
        """Build a store from configuration, or ``None`` if not configured."""
        if not cfg.cloudinary_configured:
            logger.info("Cloudinary not configured; provider URLs will be kept as-is.")
            return None
        return cls(
            cloud_name=cfg.cloudinary_cloud_name,
            api_key=cfg.cloudinary_api_key,
            api_secret=cfg.cloudinary_api_secret,
            folder=cfg.cloudinary_folder,
        )

    def is_durable(self, url: str) -> bool:
        return CLOUDINARY_HOST in url

    async def put(self, url: str) -> str:
        """Upload the image at *url* and return its ``secure_url``.

        Raises:
            ArtifactPromotionError: The upload failed or returned no URL.
        """
        try:
            result: dict[str, Any] = await run_in_threadpool(
                cloudinary.uploader.upload,
                url,
                folder=self.folder,
                resource_type="image",
                **self._credentials,
            )
        except Exception as exc:
            logger.error("Cloudinary upload of %s failed: %s", url, exc)
            raise ArtifactPromotionError(url, exc) from exc

        secure_url = result.get("secure_url")
        if not secure_url:
            raise ArtifactPromotionError(url, ValueError("no secure_url in upload result"))
        return secure_url

    async def delete(self, public_id: str) -> bool:
        """Delete an uploaded image.

        Returns:
            ``True`` if Cloudinary reports the image as deleted, ``False``
            when it was not found or the call failed.
        """
        try:
            result: dict[str, Any] = await run_in_threadpool(
                cloudinary.uploader.destroy, public_id, **self._credentials
            )
        except Exception as exc:
            logger.error("Cloudinary delete of %s failed: %s", public_id, exc)
            return False
        return result.get("result") == "ok"
