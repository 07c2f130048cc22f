"""Styleforge - FastAPI Application.

This module is the single entry point for the web service.  It defines the
FastAPI ``app`` instance, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
- **EverArt** trains models and runs img2img generations.  All calls go
  through :class:`~styleforge.core.everart.EverArtClient`.
- **Generation batches** are submitted and then polled to completion within
  the request by :class:`~styleforge.core.tracker.BatchGenerationTracker`.
- **Cloudinary** (optional) receives copies of generated images so they
  outlive the provider's retention.
- **Local records** of models and generations live in JSON documents
  managed by :class:`~styleforge.core.storage.RecordStore`.

Endpoints
---------
========  ==================================  ====================================
Method    Path                                Purpose
========  ==================================  ====================================
GET       ``/api/info``                       Integration configuration flags
GET       ``/api/models``                     Models from the provider
POST      ``/api/models``                     Train a model from uploaded images
GET       ``/api/models/{id}/status``         Refresh one model's status
DELETE    ``/api/models/{id}``                Remove a model locally
POST      ``/api/models/{id}/apply``          Apply one model to an image
POST      ``/api/models/multi-apply``         Apply several models, one image each
POST      ``/api/generations``                Apply several models, N images each
GET       ``/api/generations``                Paginated stored generations
GET       ``/api/generations/{id}/status``    Provider status of one job
DELETE    ``/api/generations/{id}``           Delete a stored generation
POST      ``/api/generations/save``           Merge client-local records
POST      ``/api/generations/sync``           Promote outputs to Cloudinary
========  ==================================  ====================================

Usage
-----
CLI (installed entry point)::

    styleforge

Direct invocation::

    python -m styleforge.api.main
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from styleforge import __version__
from styleforge.api.dependencies import (
    get_artifact_store,
    get_config,
    get_provider,
    get_store,
    get_tracker,
)
from styleforge.api.models import ModelSubject, SaveGenerationsRequest, SyncRequest
from styleforge.core.apply import ApplyParams, run_models
from styleforge.core.cloudinary_store import CloudinaryArtifactStore
from styleforge.core.config import StyleforgeConfig, config
from styleforge.core.errors import (
    AllGenerationsFailedError,
    BatchTimeoutError,
    InvalidImageError,
    ProviderError,
)
from styleforge.core.everart import EverArtClient, parse_generation_status
from styleforge.core.images import validate_image_upload
from styleforge.core.storage import RecordStore, paginate_entries
from styleforge.core.sync import sync_generations
from styleforge.core.tracker import BatchGenerationTracker

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Application lifecycle.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the long-lived collaborators and close them on shutdown.

    On startup:
        Opens the record store, builds the Cloudinary store when credentials
        are present, and opens the EverArt client when an API key is set.

    On shutdown:
        Closes the EverArt client's connection pools.
    """
    app.state.store = RecordStore(config.data_dir)
    app.state.artifact_store = CloudinaryArtifactStore.from_config(config)

    if config.everart_configured:
        app.state.provider = EverArtClient(
            config.everart_api_key,
            config.everart_base_url,
            timeout=config.everart_timeout,
        )
        logger.info("EverArt client ready (%s).", config.everart_base_url)
    else:
        app.state.provider = None
        logger.warning("EverArt API key is not set; model and generation routes will answer 400.")

    yield

    if app.state.provider is not None:
        await app.state.provider.aclose()
        logger.info("EverArt client closed on shutdown.")


app = FastAPI(
    title="Styleforge",
    description="Train EverArt image models and apply them to photos.",
    version=__version__,
    lifespan=lifespan,
)

# The browser client may be served from another origin during development.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request helpers.
# ---------------------------------------------------------------------------


async def _read_image(upload: UploadFile, cfg: StyleforgeConfig) -> tuple[bytes, str, str]:
    """Read and validate an uploaded image.

    Returns:
        Tuple of ``(data, filename, content_type)``.

    Raises:
        HTTPException: 400 if the upload is not an acceptable image.
    """
    data = await upload.read()
    filename = upload.filename or "upload"
    try:
        content_type = validate_image_upload(data, filename, max_bytes=cfg.max_upload_bytes)
    except InvalidImageError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return data, filename, content_type


def _provider_failure(message: str, exc: ProviderError) -> HTTPException:
    return HTTPException(status_code=502, detail=f"{message}: {exc}")


def _parse_model_ids(raw: str) -> list[str]:
    """Accept a JSON list of model IDs or a single bare ID."""
    try:
        parsed = json.loads(raw)
    except ValueError:
        parsed = raw

    if isinstance(parsed, str):
        parsed = [parsed]
    elif isinstance(parsed, (int, float)) and not isinstance(parsed, bool):
        # Numeric IDs are kept as sent, not as the decoded number.
        parsed = [raw.strip()]
    if not isinstance(parsed, list):
        raise HTTPException(status_code=400, detail="model_ids must be a JSON list of IDs")

    model_ids = [str(item).strip() for item in parsed if str(item).strip()]
    if not model_ids:
        raise HTTPException(status_code=400, detail="At least one model ID is required")
    return list(dict.fromkeys(model_ids))


# ---------------------------------------------------------------------------
# Routes: info and models.
# ---------------------------------------------------------------------------


@app.get("/api/info")
async def get_info(cfg: StyleforgeConfig = Depends(get_config)) -> dict:
    """Report which integrations are configured, without exposing secrets."""

    def flag(value: str | None) -> str:
        return "Set" if value else "Not set"

    return {
        "version": __version__,
        "cloudinary": {
            "configured": cfg.cloudinary_configured,
            "cloud_name": flag(cfg.cloudinary_cloud_name),
            "api_key": flag(cfg.cloudinary_api_key),
            "api_secret": flag(cfg.cloudinary_api_secret),
        },
        "everart": {
            "configured": cfg.everart_configured,
            "key": flag(cfg.everart_api_key),
        },
        "polling": {
            "max_attempts": cfg.poll_max_attempts,
            "interval_seconds": cfg.poll_interval_seconds,
        },
    }


@app.get("/api/models")
async def list_models(provider: EverArtClient = Depends(get_provider)) -> dict:
    """Return the models visible to the configured EverArt key."""
    try:
        models = await provider.list_models()
    except ProviderError as exc:
        raise _provider_failure("Failed to load models", exc) from exc
    return {"models": models, "source": "everart", "count": len(models)}


@app.post("/api/models")
async def create_model(
    name: str = Form(..., min_length=1),
    subject: ModelSubject = Form(...),
    images: list[UploadFile] = File(...),
    provider: EverArtClient = Depends(get_provider),
    store: RecordStore = Depends(get_store),
    cfg: StyleforgeConfig = Depends(get_config),
) -> dict:
    """Train a new model from the uploaded images.

    The model is created on EverArt and recorded locally with the status the
    provider reports (normally ``TRAINING``).

    Raises:
        HTTPException: 400 for no/too many/invalid images, 502 if EverArt
            rejects the upload or the model.
    """
    if not images:
        raise HTTPException(status_code=400, detail="No images were uploaded")
    if len(images) > cfg.max_training_images:
        raise HTTPException(
            status_code=400,
            detail=f"At most {cfg.max_training_images} training images are allowed",
        )

    files = [await _read_image(upload, cfg) for upload in images]

    try:
        model = await provider.create_model(name, subject, files)
    except ProviderError as exc:
        raise _provider_failure("Failed to create model", exc) from exc

    record = store.upsert_model(
        {
            "everart_id": str(model["id"]),
            "name": model.get("name") or name,
            "subject": model.get("subject") or subject,
            "status": model.get("status") or "TRAINING",
            "thumbnail_url": model.get("thumbnail_url"),
        }
    )
    return {"model": record}


@app.get("/api/models/{model_id}/status")
async def get_model_status(
    model_id: str,
    provider: EverArtClient = Depends(get_provider),
    store: RecordStore = Depends(get_store),
) -> dict:
    """Fetch a model's training status and mirror it into the local record."""
    try:
        model = await provider.get_model(model_id)
    except ProviderError as exc:
        raise _provider_failure("Failed to load model status", exc) from exc

    status = model.get("status")
    thumbnail_url = model.get("thumbnail_url")
    store.update_model_status(model_id, status, thumbnail_url)
    return {"status": status, "thumbnail_url": thumbnail_url}


@app.delete("/api/models/{model_id}")
async def delete_model(model_id: str, store: RecordStore = Depends(get_store)) -> dict:
    """Remove a model from the local records.  EverArt is never touched."""
    if not store.delete_model(model_id):
        raise HTTPException(status_code=404, detail="Model not found")
    logger.info("Model %s removed from local records.", model_id)
    return {"success": True, "deleted": model_id}


# ---------------------------------------------------------------------------
# Routes: applying models.
# ---------------------------------------------------------------------------


@app.post("/api/models/multi-apply")
async def multi_apply(
    image: UploadFile = File(...),
    model_ids: str = Form(...),
    style_strength: float = Form(0.6, ge=0.0, le=1.0),
    width: int = Form(512, ge=256, le=2048),
    height: int = Form(512, ge=256, le=2048),
    provider: EverArtClient = Depends(get_provider),
    tracker: BatchGenerationTracker = Depends(get_tracker),
    store: RecordStore = Depends(get_store),
    artifact_store: CloudinaryArtifactStore | None = Depends(get_artifact_store),
    cfg: StyleforgeConfig = Depends(get_config),
):
    """Apply several models to the same image, one image per model."""
    params = ApplyParams(style_strength=style_strength, width=width, height=height, num_images=1)
    return await _apply_models(
        image, model_ids, params, provider, tracker, store, artifact_store, cfg
    )


@app.post("/api/models/{model_id}/apply")
async def apply_model(
    model_id: str,
    image: UploadFile = File(...),
    style_strength: float = Form(0.6, ge=0.0, le=1.0),
    width: int = Form(512, ge=256, le=2048),
    height: int = Form(512, ge=256, le=2048),
    num_images: int = Form(1, ge=1, le=4),
    provider: EverArtClient = Depends(get_provider),
    tracker: BatchGenerationTracker = Depends(get_tracker),
    store: RecordStore = Depends(get_store),
    artifact_store: CloudinaryArtifactStore | None = Depends(get_artifact_store),
    cfg: StyleforgeConfig = Depends(get_config),
) -> dict:
    """Apply one model to an uploaded image and wait for the results.

    This endpoint:

    1. Validates and uploads the image to EverArt.
    2. Records a ``PROCESSING`` generation.
    3. Submits ``num_images`` img2img jobs.
    4. Polls them to completion with the batch tracker.
    5. Promotes the first successful image (or all, when configured) to
       Cloudinary and marks the generation ``COMPLETED``.

    Partial success is still a success: the response lists failed job IDs
    and whether some jobs were still pending when polling stopped.

    Returns:
        Dictionary with ``generations`` (``id``/``image_url`` pairs),
        ``failed``, ``timed_out``, ``generation`` (the stored record) and
        ``result_url``.

    Raises:
        HTTPException: 400 for an invalid image, 502 if EverArt fails or
            every generation failed, 504 if the batch timed out.
    """
    data, filename, content_type = await _read_image(image, cfg)

    try:
        uploaded = await provider.upload_image(data, filename, content_type)
    except ProviderError as exc:
        raise _provider_failure("Failed to upload image", exc) from exc

    model = store.get_model(model_id)
    record = store.create_generation(
        model_id=model_id,
        model_name=model["name"] if model else "Unknown Model",
        input_image_url=uploaded.file_url,
        status="PROCESSING",
        style_strength=style_strength,
        width=width,
        height=height,
    )
    logger.info(
        "Applying model %s (strength=%s, %dx%d, images=%d).",
        model_id,
        style_strength,
        width,
        height,
        num_images,
    )

    try:
        job_ids = await provider.submit_generations(
            model_id,
            uploaded.file_url,
            count=num_images,
            width=width,
            height=height,
            style_strength=style_strength,
        )
    except ProviderError as exc:
        store.update_generation(record["id"], status="FAILED", error_message=str(exc))
        raise _provider_failure("Failed to apply model", exc) from exc

    if not job_ids:
        store.update_generation(
            record["id"], status="FAILED", error_message="No generations returned"
        )
        raise HTTPException(status_code=502, detail="Generation did not start")

    result = await tracker.await_completion(job_ids)

    try:
        result.raise_for_outcome()
    except AllGenerationsFailedError as exc:
        store.update_generation(record["id"], status="FAILED", error_message=str(exc))
        raise HTTPException(status_code=502, detail="All generations failed") from exc
    except BatchTimeoutError as exc:
        store.update_generation(record["id"], status="FAILED", error_message=str(exc))
        raise HTTPException(status_code=504, detail="Generation is taking too long") from exc

    first_job_id, result_url = result.succeeded[0]
    durable = artifact_store is not None and artifact_store.is_durable(result_url)
    updated = store.update_generation(
        record["id"],
        status="COMPLETED",
        provider_generation_id=first_job_id,
        output_image_url=result_url,
        cloudinary_url=result_url if durable else None,
    )

    return {
        "generations": [{"id": job_id, "image_url": url} for job_id, url in result.succeeded],
        "failed": result.failed,
        "timed_out": result.timed_out,
        "generation": updated,
        "result_url": result_url,
    }


@app.post("/api/generations")
async def create_generations(
    image: UploadFile = File(...),
    model_ids: str = Form(...),
    style_strength: float = Form(0.8, ge=0.0, le=1.0),
    width: int = Form(512, ge=256, le=2048),
    height: int = Form(512, ge=256, le=2048),
    num_images: int = Form(1, ge=1, le=4),
    provider: EverArtClient = Depends(get_provider),
    tracker: BatchGenerationTracker = Depends(get_tracker),
    store: RecordStore = Depends(get_store),
    artifact_store: CloudinaryArtifactStore | None = Depends(get_artifact_store),
    cfg: StyleforgeConfig = Depends(get_config),
):
    """Apply several models to the same image, ``num_images`` per model.

    ``model_ids`` is a JSON list (``["m1", "m2"]``) or a single bare ID.
    One generation record is stored per produced job.
    """
    params = ApplyParams(
        style_strength=style_strength, width=width, height=height, num_images=num_images
    )
    return await _apply_models(
        image, model_ids, params, provider, tracker, store, artifact_store, cfg
    )


async def _apply_models(
    image: UploadFile,
    raw_model_ids: str,
    params: ApplyParams,
    provider: EverArtClient,
    tracker: BatchGenerationTracker,
    store: RecordStore,
    artifact_store: CloudinaryArtifactStore | None,
    cfg: StyleforgeConfig,
):
    """Shared body of the multi-model routes.

    The image is uploaded once and every model runs concurrently.  Answers
    200 when at least one model produced an image, otherwise 502 with the
    same body so the client can show per-model errors.
    """
    model_ids = _parse_model_ids(raw_model_ids)
    data, filename, content_type = await _read_image(image, cfg)

    try:
        uploaded = await provider.upload_image(data, filename, content_type)
    except ProviderError as exc:
        raise _provider_failure("Failed to upload image", exc) from exc

    logger.info("Generating with %d model(s): %s", len(model_ids), ", ".join(model_ids))
    results = await run_models(
        provider,
        tracker,
        store,
        model_ids=model_ids,
        image=uploaded,
        params=params,
        artifact_store=artifact_store,
    )

    succeeded = sum(1 for r in results if r["success"])
    body = {
        "success": succeeded > 0,
        "results": results,
        "message": f"Generated images for {succeeded}/{len(results)} model(s)",
    }
    if succeeded == 0:
        return JSONResponse(status_code=502, content=body)
    return body


# ---------------------------------------------------------------------------
# Routes: stored generations.
# ---------------------------------------------------------------------------


@app.get("/api/generations")
async def list_generations(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    model_id: str | None = None,
    store: RecordStore = Depends(get_store),
) -> dict:
    """Return a page of stored generations, newest first.

    Returns:
        Dictionary with ``total``, ``page``, ``per_page``, ``pages`` and
        ``generations``.
    """
    page_data = paginate_entries(store.list_generations(model_id=model_id), page, per_page)
    page_data["generations"] = page_data.pop("items")
    return page_data


@app.get("/api/generations/{job_id}/status")
async def get_generation_status(
    job_id: str, provider: EverArtClient = Depends(get_provider)
) -> dict:
    """Return the provider's current status for one generation job."""
    try:
        generation = await provider.get_generation_raw(job_id)
    except ProviderError as exc:
        raise _provider_failure("Failed to load generation status", exc) from exc

    status = parse_generation_status(job_id, generation)
    return {
        "id": status.job_id,
        "status": generation.get("status"),
        "state": status.state.value,
        "image_url": status.artifact_url,
        "progress": status.progress,
        "created_at": generation.get("created_at"),
    }


@app.delete("/api/generations/{generation_id}")
async def delete_generation(generation_id: str, store: RecordStore = Depends(get_store)) -> dict:
    """Delete a stored generation record.  EverArt is never touched."""
    if not store.delete_generation(generation_id):
        raise HTTPException(status_code=404, detail="Generation not found")
    return {"success": True, "deleted": generation_id}


@app.post("/api/generations/save")
async def save_generations(
    req: SaveGenerationsRequest, store: RecordStore = Depends(get_store)
) -> dict:
    """Merge records from a client's local history into the store.

    Records are deduplicated by ``id``; see
    :meth:`~styleforge.core.storage.RecordStore.merge_generations`.
    """
    if not req.generations:
        raise HTTPException(status_code=400, detail="No generations to save")

    total = store.merge_generations(g.model_dump() for g in req.generations)
    logger.info("Saved %d generation(s), %d stored in total.", len(req.generations), total)
    return {"success": True, "saved": len(req.generations), "total": total}


@app.post("/api/generations/sync")
async def sync_to_artifact_store(
    req: SyncRequest | None = None,
    store: RecordStore = Depends(get_store),
    artifact_store: CloudinaryArtifactStore | None = Depends(get_artifact_store),
) -> dict:
    """Copy every non-durable generation output into Cloudinary.

    Raises:
        HTTPException: 503 when Cloudinary is not configured.
    """
    if artifact_store is None:
        raise HTTPException(status_code=503, detail="Cloudinary is not configured")

    local_records = [r.model_dump() for r in req.local_records] if req else []
    report = await sync_generations(store, artifact_store, local_records)
    return {
        "success": True,
        "synced": report.synced,
        "errors": report.errors,
        "total_processed": report.total_processed,
        "log": report.log,
        "message": (
            f"{report.synced} image(s) uploaded, {report.errors} error(s), "
            f"{report.total_processed} unique URL(s)"
        ),
    }


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Host, port and log level come from :data:`~styleforge.core.config.config`
    (``STYLEFORGE_SERVER_HOST``, ``STYLEFORGE_SERVER_PORT``,
    ``STYLEFORGE_LOG_LEVEL``).

    This function is registered as the ``styleforge`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "styleforge.api.main:app",
        host=config.server_host,
        port=config.server_port,
        log_level=config.log_level,
        reload=False,
    )


if __name__ == "__main__":
    main()
