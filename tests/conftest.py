"""Shared pytest fixtures for Styleforge tests."""

from __future__ import annotations

import io
import shutil
import tempfile
from pathlib import Path
from types import SimpleNamespace
from typing import Generator

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from PIL import Image

from styleforge.api.dependencies import (
    get_artifact_store,
    get_config,
    get_provider,
    get_store,
)
from styleforge.api.main import app
from styleforge.core.config import StyleforgeConfig
from styleforge.core.errors import ArtifactPromotionError
from styleforge.core.everart import UploadedImage
from styleforge.core.storage import RecordStore
from styleforge.core.tracker import JobState, JobStatus

# ---------------------------------------------------------------------------
# Fakes for the external collaborators.
# ---------------------------------------------------------------------------


class FakeProvider:
    """Scripted stand-in for the EverArt client.

    ``script`` maps a job ID to the sequence of responses returned by
    successive status queries.  Exceptions in the sequence are raised.  The
    last entry repeats once the sequence is exhausted.  Unknown job IDs
    raise ``ConnectionError`` on every query.
    """

    def __init__(self, script=None, job_ids=None):
        self.script = {job_id: list(steps) for job_id, steps in (script or {}).items()}
        self.job_ids = dict(job_ids or {})
        self.queries: list[str] = []
        self.uploads: list[tuple[str, str, int]] = []
        self.submissions: list[dict] = []
        self.created_models: list[dict] = []
        self.models: list[dict] = []

    async def get_generation(self, job_id: str) -> JobStatus:
        self.queries.append(job_id)
        steps = self.script.get(job_id)
        if not steps:
            raise ConnectionError(f"no route to job {job_id}")
        step = steps.pop(0) if len(steps) > 1 else steps[0]
        if isinstance(step, BaseException):
            raise step
        return step

    async def get_generation_raw(self, job_id: str) -> dict:
        status = await self.get_generation(job_id)
        provider_status = {
            JobState.SUCCEEDED: "SUCCEEDED",
            JobState.FAILED: "FAILED",
            JobState.PENDING: "PROCESSING",
        }[status.state]
        return {
            "id": job_id,
            "status": provider_status,
            "image_url": status.artifact_url,
            "progress": status.progress,
            "created_at": "2026-01-01T00:00:00Z",
        }

    async def upload_image(self, data: bytes, filename: str, content_type: str) -> UploadedImage:
        self.uploads.append((filename, content_type, len(data)))
        index = len(self.uploads)
        return UploadedImage(
            upload_token=f"token-{index}",
            upload_url=f"https://uploads.example/{index}",
            file_url=f"https://files.example/{index}/{filename}",
        )

    async def submit_generations(
        self, model_id, image_url, *, count=1, width=512, height=512, style_strength=0.6
    ) -> list[str]:
        self.submissions.append(
            {
                "model_id": model_id,
                "image_url": image_url,
                "count": count,
                "width": width,
                "height": height,
                "style_strength": style_strength,
            }
        )
        value = self.job_ids.get(model_id, [])
        if isinstance(value, BaseException):
            raise value
        return list(value)

    async def list_models(self) -> list[dict]:
        return self.models

    async def get_model(self, model_id: str) -> dict:
        return next(m for m in self.models if m["id"] == model_id)

    async def create_model(self, name, subject, images) -> dict:
        self.created_models.append({"name": name, "subject": subject, "images": images})
        return {
            "id": "model-new",
            "name": name,
            "subject": subject,
            "status": "TRAINING",
            "thumbnail_url": None,
        }


class FakeArtifactStore:
    """In-memory artifact store.

    Args:
        fail: ``True`` to fail every upload, or a set of URLs to fail.
    """

    PREFIX = "https://durable.example/"

    def __init__(self, fail: bool | set[str] = False):
        self.fail = fail
        self.puts: list[str] = []

    def is_durable(self, url: str) -> bool:
        return url.startswith(self.PREFIX)

    async def put(self, url: str) -> str:
        self.puts.append(url)
        if self.fail is True or (isinstance(self.fail, set) and url in self.fail):
            raise ArtifactPromotionError(url, RuntimeError("upload refused"))
        return self.PREFIX + url.rsplit("/", 1)[-1]


def succeeded(job_id: str, url: str | None = None) -> JobStatus:
    return JobStatus(job_id, JobState.SUCCEEDED, url or f"https://cdn.everart.example/{job_id}.png")


def failed(job_id: str) -> JobStatus:
    return JobStatus(job_id, JobState.FAILED)


def pending(job_id: str) -> JobStatus:
    return JobStatus(job_id, JobState.PENDING, progress=50.0)


# ---------------------------------------------------------------------------
# Fixtures.
# ---------------------------------------------------------------------------


@pytest.fixture
def anyio_backend() -> str:
    """Run ``@pytest.mark.anyio`` tests on asyncio, which the code is built on."""
    return "asyncio"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> StyleforgeConfig:
    """Configuration with a temporary data dir and a fast polling budget."""
    return StyleforgeConfig(
        everart_api_key="everart-test",
        data_dir=str(temp_dir / "data"),
        poll_max_attempts=3,
        poll_interval_seconds=0,
        max_upload_bytes=1024 * 1024,
        max_training_images=3,
        _env_file=None,
    )


@pytest.fixture
def record_store(test_config: StyleforgeConfig) -> RecordStore:
    return RecordStore(test_config.data_dir)


@pytest.fixture
def fakes() -> SimpleNamespace:
    """Fake classes and status builders, for tests that build their own."""
    return SimpleNamespace(
        Provider=FakeProvider,
        ArtifactStore=FakeArtifactStore,
        succeeded=succeeded,
        failed=failed,
        pending=pending,
    )


@pytest.fixture
def png_bytes() -> bytes:
    """A small valid PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (32, 32), color=(10, 120, 200)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def api(test_config: StyleforgeConfig, record_store: RecordStore) -> Generator[SimpleNamespace, None, None]:
    """TestClient wired to fakes through ``app.dependency_overrides``.

    The returned namespace exposes ``client``, ``provider``, ``store`` and
    ``artifact_store``.  Tests may replace ``provider`` (``None`` simulates a
    missing API key) or ``artifact_store`` before making requests.
    """
    ctx = SimpleNamespace(
        provider=FakeProvider(),
        store=record_store,
        artifact_store=None,
        config=test_config,
    )

    def provider_override():
        if ctx.provider is None:
            raise HTTPException(status_code=400, detail="EverArt API key is not configured")
        return ctx.provider

    app.dependency_overrides[get_config] = lambda: ctx.config
    app.dependency_overrides[get_provider] = provider_override
    app.dependency_overrides[get_store] = lambda: ctx.store
    app.dependency_overrides[get_artifact_store] = lambda: ctx.artifact_store

    ctx.client = TestClient(app)
    try:
        yield ctx
    finally:
        app.dependency_overrides.clear()
