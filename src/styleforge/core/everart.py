"""Async client for the EverArt generative-image API.

The client covers the subset of the API the service needs:

- image uploads (signed upload slot + ``PUT`` of the raw bytes),
- model training, listing and status,
- img2img generation submission,
- generation status, which makes :class:`EverArtClient` the
  :class:`~styleforge.core.tracker.JobStatusProvider` used in production.

All failures are raised as :class:`~styleforge.core.errors.ProviderError`
with the provider's status code and decoded error body attached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from styleforge.core.errors import ProviderError
from styleforge.core.tracker import JobState, JobStatus

logger = logging.getLogger(__name__)

# Provider statuses that end a job.  Everything else (STARTING, QUEUED,
# PROCESSING, ...) is treated as still pending.
_SUCCEEDED_STATUSES = frozenset({"SUCCEEDED"})
_FAILED_STATUSES = frozenset({"FAILED", "CANCELED", "CANCELLED"})


@dataclass(frozen=True)
class UploadedImage:
    """Result of uploading one image to the provider.

    Attributes:
        upload_token: Token referencing the image in model-training calls.
        upload_url: Signed URL the bytes were written to.
        file_url: Public URL usable as generation input.
    """

    upload_token: str
    upload_url: str
    file_url: str


def parse_generation_status(job_id: str, generation: dict[str, Any]) -> JobStatus:
    """Normalise a provider ``generation`` object into a :class:`JobStatus`.

    ``SUCCEEDED`` without an ``image_url`` stays pending; the provider fills
    the URL in on a later poll.
    """
    status = str(generation.get("status") or "").upper()
    image_url = generation.get("image_url")
    progress = generation.get("progress")

    if status in _SUCCEEDED_STATUSES and image_url:
        state = JobState.SUCCEEDED
    elif status in _FAILED_STATUSES:
        state = JobState.FAILED
        image_url = None
    else:
        state = JobState.PENDING
        image_url = None

    return JobStatus(
        job_id=str(generation.get("id") or job_id),
        state=state,
        artifact_url=image_url,
        progress=float(progress) if isinstance(progress, (int, float)) else None,
    )


def _error_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class EverArtClient:
    """Thin async wrapper around the EverArt REST API.

    Args:
        api_key: Bearer token.
        base_url: API root, e.g. ``https://api.everart.ai/v1``.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.everart.ai/v1",
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )
        # Signed upload URLs point at third-party storage and must not
        # receive the bearer token.
        self._upload_client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()
        await self._upload_client.aclose()

    async def __aenter__(self) -> EverArtClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # -- Internal helpers ---------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            payload = _error_payload(exc.response)
            logger.error(
                "EverArt %s %s returned %d: %s",
                method,
                path,
                exc.response.status_code,
                payload,
            )
            raise ProviderError(
                f"EverArt {method} {path} failed with status {exc.response.status_code}",
                status_code=exc.response.status_code,
                payload=payload,
            ) from exc
        except httpx.RequestError as exc:
            logger.error("EverArt %s %s could not be reached: %s", method, path, exc)
            raise ProviderError(f"EverArt {method} {path} failed: {exc}") from exc

        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(
                f"EverArt {method} {path} returned invalid JSON",
                status_code=response.status_code,
                payload=response.text,
            ) from exc

    # -- Models -------------------------------------------------------------

    async def list_models(self) -> list[dict[str, Any]]:
        """Return every model visible to the API key."""
        data = await self._request("GET", "/models")
        models = data.get("data") or data.get("models") or []
        logger.info("Fetched %d model(s) from EverArt", len(models))
        return models

    async def get_model(self, model_id: str) -> dict[str, Any]:
        data = await self._request("GET", f"/models/{model_id}")
        model = data.get("model")
        if not isinstance(model, dict):
            raise ProviderError(f"EverArt returned no model for {model_id}", payload=data)
        return model

    async def create_model(
        self,
        name: str,
        subject: str,
        images: list[tuple[bytes, str, str]],
    ) -> dict[str, Any]:
        """Upload training images and start training a new model.

        Args:
            name: Display name of the model.
            subject: ``STYLE``, ``PERSON`` or ``OBJECT``.
            images: ``(data, filename, content_type)`` triples.

        Returns:
            The provider's ``model`` object (``id``, ``name``, ``status``, ...).
        """
        tokens = []
        for data, filename, content_type in images:
            uploaded = await self.upload_image(data, filename, content_type)
            tokens.append(uploaded.upload_token)

        payload = {"name": name, "subject": subject, "image_upload_tokens": tokens}
        response = await self._request("POST", "/models", json=payload)
        model = response.get("model")
        if not isinstance(model, dict):
            raise ProviderError("EverArt returned no model after creation", payload=response)
        logger.info("Created model %s (%s) from %d image(s)", model.get("id"), name, len(tokens))
        return model

    # -- Uploads ------------------------------------------------------------

    async def upload_image(self, data: bytes, filename: str, content_type: str) -> UploadedImage:
        """Upload one image and return the references the API needs."""
        response = await self._request(
            "POST",
            "/images/uploads",
            json={"images": [{"filename": filename, "content_type": content_type}]},
        )
        try:
            slot = response["image_uploads"][0]
            uploaded = UploadedImage(
                upload_token=slot["upload_token"],
                upload_url=slot["upload_url"],
                file_url=slot["file_url"],
            )
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("EverArt returned no upload slot", payload=response) from exc

        try:
            put = await self._upload_client.put(
                uploaded.upload_url, content=data, headers={"Content-Type": content_type}
            )
            put.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"Uploading {filename} failed with status {exc.response.status_code}",
                status_code=exc.response.status_code,
                payload=_error_payload(exc.response),
            ) from exc
        except httpx.RequestError as exc:
            raise ProviderError(f"Uploading {filename} failed: {exc}") from exc

        logger.info("Uploaded %s (%d bytes)", filename, len(data))
        return uploaded

    # -- Generations --------------------------------------------------------

    async def submit_generations(
        self,
        model_id: str,
        image_url: str,
        *,
        count: int = 1,
        width: int = 512,
        height: int = 512,
        style_strength: float = 0.6,
    ) -> list[str]:
        """Submit an img2img batch and return the generation job IDs."""
        payload = {
            "prompt": " ",
            "type": "img2img",
            "image": image_url,
            "image_count": count,
            "width": width,
            "height": height,
            "style_strength": style_strength,
        }
        data = await self._request("POST", f"/models/{model_id}/generations", json=payload)
        job_ids = [str(gen["id"]) for gen in data.get("generations") or [] if gen.get("id")]
        logger.info("Submitted %d generation(s) for model %s", len(job_ids), model_id)
        return job_ids

    async def get_generation_raw(self, job_id: str) -> dict[str, Any]:
        """Return the provider's raw ``generation`` object."""
        data = await self._request("GET", f"/generations/{job_id}")
        generation = data.get("generation")
        if not isinstance(generation, dict):
            raise ProviderError(f"EverArt returned no generation for {job_id}", payload=data)
        return generation

    async def get_generation(self, job_id: str) -> JobStatus:
        return parse_generation_status(job_id, await self.get_generation_raw(job_id))
