"""FastAPI dependencies for the Styleforge routes.

Long-lived collaborators (EverArt client, record store, artifact store) are
created once in the application lifespan and kept on ``app.state``.  Routes
never touch ``app.state`` directly; they depend on the functions below, which
tests replace through ``app.dependency_overrides``.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from styleforge.core.cloudinary_store import CloudinaryArtifactStore
from styleforge.core.config import StyleforgeConfig, config
from styleforge.core.everart import EverArtClient
from styleforge.core.storage import RecordStore
from styleforge.core.tracker import BatchGenerationTracker


def get_config() -> StyleforgeConfig:
    return config


def get_provider(request: Request) -> EverArtClient:
    """Return the EverArt client, or answer 400 when no API key is set."""
    provider = getattr(request.app.state, "provider", None)
    if provider is None:
        raise HTTPException(status_code=400, detail="EverArt API key is not configured")
    return provider


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_artifact_store(request: Request) -> CloudinaryArtifactStore | None:
    return getattr(request.app.state, "artifact_store", None)


def get_tracker(
    provider: EverArtClient = Depends(get_provider),
    artifact_store: CloudinaryArtifactStore | None = Depends(get_artifact_store),
    cfg: StyleforgeConfig = Depends(get_config),
) -> BatchGenerationTracker:
    """Build a tracker for one request from the configured polling budget."""
    return BatchGenerationTracker(
        provider,
        artifact_store=artifact_store,
        max_attempts=cfg.poll_max_attempts,
        poll_interval=cfg.poll_interval_seconds,
        promote_all=cfg.promote_all_artifacts,
    )
