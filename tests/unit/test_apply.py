"""Tests for styleforge.core.apply: per-model batch orchestration.

Tests cover:
- One stored record per submitted job, by outcome.
- Submission failures recorded without raising.
- Concurrent runs over several models preserving order.
"""

from __future__ import annotations

import pytest

from styleforge.core.apply import ApplyParams, run_model_batch, run_models
from styleforge.core.errors import ProviderError
from styleforge.core.everart import UploadedImage
from styleforge.core.storage import RecordStore
from styleforge.core.tracker import BatchGenerationTracker

IMAGE = UploadedImage(
    upload_token="tok", upload_url="https://uploads/1", file_url="https://files/1/photo.png"
)


async def _no_sleep(_delay: float) -> None:
    return None


def _tracker(provider, artifact_store=None, max_attempts=2):
    return BatchGenerationTracker(
        provider, artifact_store=artifact_store, max_attempts=max_attempts, sleep=_no_sleep
    )


class TestRunModelBatch:
    """Test run_model_batch."""

    @pytest.mark.anyio
    async def test_records_one_generation_per_job(self, record_store: RecordStore, fakes):
        record_store.upsert_model({"everart_id": "m1", "name": "Ink", "status": "READY"})
        provider = fakes.Provider(
            {
                "a": [fakes.succeeded("a")],
                "b": [fakes.failed("b")],
                "c": [fakes.pending("c")],
            },
            job_ids={"m1": ["a", "b", "c"]},
        )

        result = await run_model_batch(
            provider,
            _tracker(provider),
            record_store,
            model_id="m1",
            image=IMAGE,
            params=ApplyParams(style_strength=0.3, num_images=3),
        )

        assert result["success"] is True
        assert result["model_name"] == "Ink"
        assert result["failed"] == ["b"]
        assert result["timed_out"] is True
        assert result["error"] is None
        assert [img["provider_generation_id"] for img in result["images"]] == ["a"]

        by_job = {g["provider_generation_id"]: g for g in record_store.list_generations()}
        assert by_job["a"]["status"] == "COMPLETED"
        assert by_job["a"]["output_image_url"] == "https://cdn.everart.example/a.png"
        assert by_job["a"]["input_image_url"] == IMAGE.file_url
        assert by_job["a"]["style_strength"] == 0.3
        assert by_job["b"]["error_message"] == "Generation failed"
        assert "timed out" in by_job["c"]["error_message"]
        assert provider.submissions[0]["count"] == 3

    @pytest.mark.anyio
    async def test_durable_url_recorded(self, record_store: RecordStore, fakes):
        provider = fakes.Provider({"a": [fakes.succeeded("a")]}, job_ids={"m1": ["a"]})
        store = fakes.ArtifactStore()

        result = await run_model_batch(
            provider,
            _tracker(provider, artifact_store=store),
            record_store,
            model_id="m1",
            image=IMAGE,
            params=ApplyParams(),
            artifact_store=store,
        )

        [image] = result["images"]
        assert image["output_image_url"] == "https://durable.example/a.png"
        assert image["cloudinary_url"] == "https://durable.example/a.png"
        assert result["model_name"] == "Unknown Model"

    @pytest.mark.anyio
    async def test_submission_error_recorded(self, record_store: RecordStore, fakes):
        provider = fakes.Provider(job_ids={"m1": ProviderError("model not ready", status_code=400)})

        result = await run_model_batch(
            provider, _tracker(provider), record_store, model_id="m1", image=IMAGE, params=ApplyParams()
        )

        assert result["success"] is False
        assert result["error"] == "model not ready"
        [record] = record_store.list_generations()
        assert record["status"] == "FAILED"
        assert provider.queries == []

    @pytest.mark.anyio
    async def test_no_job_ids(self, record_store: RecordStore, fakes):
        provider = fakes.Provider(job_ids={"m1": []})

        result = await run_model_batch(
            provider, _tracker(provider), record_store, model_id="m1", image=IMAGE, params=ApplyParams()
        )

        assert result["error"] == "No generations returned"
        assert record_store.list_generations()[0]["status"] == "FAILED"

    @pytest.mark.anyio
    async def test_timeout_error_message(self, record_store: RecordStore, fakes):
        provider = fakes.Provider({"a": [fakes.pending("a")]}, job_ids={"m1": ["a"]})

        result = await run_model_batch(
            provider, _tracker(provider), record_store, model_id="m1", image=IMAGE, params=ApplyParams()
        )

        assert result["success"] is False
        assert result["error"] == "Generation is taking too long"


class TestRunModels:
    """Test run_models."""

    @pytest.mark.anyio
    async def test_results_in_model_order(self, record_store: RecordStore, fakes):
        provider = fakes.Provider(
            {"a": [fakes.pending("a"), fakes.succeeded("a")], "b": [fakes.failed("b")]},
            job_ids={"m1": ["a"], "m2": ["b"], "m3": ProviderError("boom")},
        )

        results = await run_models(
            provider,
            _tracker(provider),
            record_store,
            model_ids=["m1", "m2", "m3"],
            image=IMAGE,
            params=ApplyParams(),
        )

        assert [r["model_id"] for r in results] == ["m1", "m2", "m3"]
        assert [r["success"] for r in results] == [True, False, False]
        assert results[1]["error"] == "Generation failed"
        assert len(record_store.list_generations()) == 3
