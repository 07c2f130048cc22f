"""Tests for styleforge.core.sync: promoting stored generations."""

from __future__ import annotations

import pytest

from styleforge.core.storage import RecordStore
from styleforge.core.sync import sync_generations


class TestSyncGenerations:
    """Test sync_generations."""

    @pytest.mark.anyio
    async def test_stored_records_updated_in_place(self, record_store: RecordStore, fakes):
        record = record_store.create_generation(
            model_id="m1", output_image_url="https://cdn/a.png", status="COMPLETED"
        )
        store = fakes.ArtifactStore()

        report = await sync_generations(record_store, store)

        assert (report.synced, report.errors, report.total_processed) == (1, 0, 1)
        updated = record_store.get_generation(record["id"])
        assert updated["output_image_url"] == "https://durable.example/a.png"
        assert updated["cloudinary_url"] == "https://durable.example/a.png"

    @pytest.mark.anyio
    async def test_durable_and_empty_urls_skipped(self, record_store: RecordStore, fakes):
        record_store.create_generation(output_image_url="https://durable.example/a.png")
        record_store.create_generation(output_image_url=None, status="FAILED")
        store = fakes.ArtifactStore()

        report = await sync_generations(record_store, store)

        assert report.total_processed == 0
        assert store.puts == []

    @pytest.mark.anyio
    async def test_local_records_become_new_generations(self, record_store: RecordStore, fakes):
        report = await sync_generations(
            record_store,
            fakes.ArtifactStore(),
            [{"output_image_url": "https://cdn/local.png", "model_id": "m7", "model_name": "Ink"}],
        )

        assert report.synced == 1
        [created] = record_store.list_generations()
        assert created["status"] == "COMPLETED"
        assert created["model_id"] == "m7"
        assert created["cloudinary_url"] == "https://durable.example/local.png"
        assert (created["style_strength"], created["width"], created["height"]) == (0.7, 1024, 1024)

    @pytest.mark.anyio
    async def test_each_url_attempted_once(self, record_store: RecordStore, fakes):
        record_store.create_generation(output_image_url="https://cdn/same.png")
        store = fakes.ArtifactStore()

        report = await sync_generations(
            record_store,
            store,
            [{"output_image_url": "https://cdn/same.png"}, {"output_image_url": "https://cdn/same.png"}],
        )

        assert store.puts == ["https://cdn/same.png"]
        assert report.total_processed == 1
        assert len(record_store.list_generations()) == 1

    @pytest.mark.anyio
    async def test_failures_are_counted_and_logged(self, record_store: RecordStore, fakes):
        record = record_store.create_generation(output_image_url="https://cdn/bad.png")
        record_store.create_generation(output_image_url="https://cdn/good.png")
        store = fakes.ArtifactStore(fail={"https://cdn/bad.png"})

        report = await sync_generations(record_store, store)

        assert (report.synced, report.errors, report.total_processed) == (1, 1, 2)
        assert any(line.startswith("error") for line in report.log)
        assert record_store.get_generation(record["id"])["output_image_url"] == "https://cdn/bad.png"

    @pytest.mark.anyio
    async def test_local_zero_values_preserved(self, record_store: RecordStore, fakes):
        """Zero is a real style strength, not a missing value."""
        await sync_generations(
            record_store,
            fakes.ArtifactStore(),
            [{"output_image_url": "https://cdn/zero.png", "style_strength": 0.0, "width": None}],
        )

        [created] = record_store.list_generations()
        assert created["style_strength"] == 0.0
        assert created["width"] == 1024
