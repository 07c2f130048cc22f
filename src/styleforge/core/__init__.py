"""Core functionality for Styleforge.

- **tracker**: :class:`BatchGenerationTracker`, which polls submitted
  generation jobs until they finish or time out
- **promotion**: best-effort copy of generated images into durable storage
- **everart**: async client for the EverArt API
- **cloudinary_store**: Cloudinary implementation of the artifact store
- **storage**: JSON-document store for model and generation records
- **sync**: promotion of previously stored, non-durable generations
- **apply**: per-model orchestration used by the multi-model routes
- **images**: validation of uploaded images
- **config**: :class:`StyleforgeConfig` and the global ``config`` instance
- **errors**: the exception hierarchy

Usage Example
-------------
    from styleforge.core.everart import EverArtClient
    from styleforge.core.tracker import BatchGenerationTracker

    async with EverArtClient(api_key) as client:
        job_ids = await client.submit_generations(model_id, image_url, count=2)
        tracker = BatchGenerationTracker(client, max_attempts=60, poll_interval=5)
        result = await tracker.await_completion(job_ids)
        result.raise_for_outcome()
"""

from styleforge.core.config import StyleforgeConfig, config
from styleforge.core.tracker import BatchGenerationTracker, BatchResult, JobState, JobStatus

__all__ = [
    "BatchGenerationTracker",
    "BatchResult",
    "JobState",
    "JobStatus",
    "StyleforgeConfig",
    "config",
]
