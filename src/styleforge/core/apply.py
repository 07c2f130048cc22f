"""Applying trained models to an uploaded image.

This module holds the orchestration shared by the multi-model routes:
submit a batch for one model, wait for it with the tracker, and record one
generation per produced job.  Route handlers only deal with HTTP concerns.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from styleforge.core.errors import ProviderError
from styleforge.core.everart import EverArtClient, UploadedImage
from styleforge.core.promotion import ArtifactStore
from styleforge.core.storage import RecordStore
from styleforge.core.tracker import BatchGenerationTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyParams:
    """Generation parameters shared by every model in one request."""

    style_strength: float = 0.6
    width: int = 512
    height: int = 512
    num_images: int = 1

    def record_fields(self) -> dict[str, Any]:
        return {
            "style_strength": self.style_strength,
            "width": self.width,
            "height": self.height,
        }


def _durable_url(artifact_store: ArtifactStore | None, url: str) -> str | None:
    if artifact_store is not None and artifact_store.is_durable(url):
        return url
    return None


async def run_model_batch(
    provider: EverArtClient,
    tracker: BatchGenerationTracker,
    store: RecordStore,
    *,
    model_id: str,
    image: UploadedImage,
    params: ApplyParams,
    artifact_store: ArtifactStore | None = None,
) -> dict[str, Any]:
    """Generate ``params.num_images`` images with one model.

    Every submitted job ends up as one stored generation record:
    ``COMPLETED`` with its output URL, or ``FAILED`` with an error message.
    Submission errors are recorded as a single failed generation and never
    raised, so one broken model does not sink a multi-model request.

    Returns:
        Per-model result with ``model_id``, ``model_name``, ``success``,
        ``images`` (stored records), ``failed`` (job IDs), ``timed_out`` and
        ``error`` (``None`` on success).
    """
    model = store.get_model(model_id)
    model_name = model["name"] if model else "Unknown Model"
    base = {"model_id": model_id, "model_name": model_name, "input_image_url": image.file_url}

    def failure(message: str) -> dict[str, Any]:
        store.create_generation(
            **base, **params.record_fields(), status="FAILED", error_message=message
        )
        return {
            "model_id": model_id,
            "model_name": model_name,
            "success": False,
            "images": [],
            "failed": [],
            "timed_out": False,
            "error": message,
        }

    try:
        job_ids = await provider.submit_generations(
            model_id,
            image.file_url,
            count=params.num_images,
            width=params.width,
            height=params.height,
            style_strength=params.style_strength,
        )
    except ProviderError as exc:
        logger.error("Submitting generations for model %s failed: %s", model_id, exc)
        return failure(str(exc))

    if not job_ids:
        return failure("No generations returned")

    result = await tracker.await_completion(job_ids)

    images = []
    for job_id, url in result.succeeded:
        images.append(
            store.create_generation(
                **base,
                **params.record_fields(),
                provider_generation_id=job_id,
                output_image_url=url,
                cloudinary_url=_durable_url(artifact_store, url),
                status="COMPLETED",
            )
        )
    for job_id in result.failed:
        store.create_generation(
            **base,
            **params.record_fields(),
            provider_generation_id=job_id,
            status="FAILED",
            error_message="Generation failed",
        )
    for job_id in result.pending:
        store.create_generation(
            **base,
            **params.record_fields(),
            provider_generation_id=job_id,
            status="FAILED",
            error_message=f"Generation timed out after {result.attempts} polling rounds",
        )

    error = None
    if not result.succeeded:
        error = "Generation is taking too long" if result.timed_out else "Generation failed"

    return {
        "model_id": model_id,
        "model_name": model_name,
        "success": bool(result.succeeded),
        "images": images,
        "failed": result.failed,
        "timed_out": result.timed_out,
        "error": error,
    }


async def run_models(
    provider: EverArtClient,
    tracker: BatchGenerationTracker,
    store: RecordStore,
    *,
    model_ids: list[str],
    image: UploadedImage,
    params: ApplyParams,
    artifact_store: ArtifactStore | None = None,
) -> list[dict[str, Any]]:
    """Run :func:`run_model_batch` for every model concurrently.

    Results are returned in the order of *model_ids*.
    """
    return list(
        await asyncio.gather(
            *(
                run_model_batch(
                    provider,
                    tracker,
                    store,
                    model_id=model_id,
                    image=image,
                    params=params,
                    artifact_store=artifact_store,
                )
                for model_id in model_ids
            )
        )
    )
