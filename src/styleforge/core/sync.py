"""Promotion of previously stored generations into the artifact store.

Generations created while no artifact store was configured, or whose
promotion failed, still point at the provider's ephemeral URLs.  Clients may
also hold records the server never saw (local history).  The sync pass walks
both sources and copies every non-durable output into the artifact store.

Unlike promotion inside the tracker, a failure here is reported: it is
counted in :attr:`SyncReport.errors` and logged, and the pass moves on.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from styleforge.core.errors import ArtifactPromotionError
from styleforge.core.promotion import ArtifactStore
from styleforge.core.storage import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome of :func:`sync_generations`.

    Attributes:
        synced: Number of images copied into the artifact store.
        errors: Number of images whose upload failed.
        total_processed: Number of distinct URLs attempted.
        log: One line per attempted URL, prefixed ``ok`` or ``error``.
    """

    synced: int = 0
    errors: int = 0
    total_processed: int = 0
    log: list[str] = field(default_factory=list)


def _value_or(record: dict, key: str, default: Any) -> Any:
    value = record.get(key)
    return default if value is None else value


async def sync_generations(
    store: RecordStore,
    artifact_store: ArtifactStore,
    local_records: Iterable[dict] = (),
) -> SyncReport:
    """Copy every non-durable generation output into *artifact_store*.

    Stored records are updated in place.  Client-local records that get
    promoted are added to the store as new ``COMPLETED`` generations.
    Each distinct URL is attempted at most once per call.

    Args:
        store: Local record store.
        artifact_store: Destination store.
        local_records: Records from a client's local history; only
            ``output_image_url``, ``input_image_url``, ``model_id``,
            ``model_name``, ``style_strength``, ``width`` and ``height`` are read.

    Returns:
        A :class:`SyncReport`.
    """
    report = SyncReport()
    processed: set[str] = set()

    def needs_sync(url: str | None) -> bool:
        return bool(url) and url not in processed and not artifact_store.is_durable(url)

    for generation in store.list_generations():
        url = generation.get("output_image_url")
        if not needs_sync(url):
            continue
        processed.add(url)

        try:
            durable_url = await artifact_store.put(url)
        except ArtifactPromotionError as exc:
            report.errors += 1
            report.log.append(f"error generation {generation['id']}: {exc}")
            logger.error("Sync of generation %s failed: %s", generation["id"], exc)
            continue

        store.update_generation(
            generation["id"], output_image_url=durable_url, cloudinary_url=durable_url
        )
        report.synced += 1
        report.log.append(f"ok generation {generation['id']}: {durable_url}")

    for local in local_records:
        url = local.get("output_image_url")
        if not needs_sync(url):
            continue
        processed.add(url)

        try:
            durable_url = await artifact_store.put(url)
        except ArtifactPromotionError as exc:
            report.errors += 1
            report.log.append(f"error local {url}: {exc}")
            logger.error("Sync of local record %s failed: %s", url, exc)
            continue

        created = store.create_generation(
            model_id=local.get("model_id") or "",
            model_name=local.get("model_name"),
            input_image_url=local.get("input_image_url") or "",
            output_image_url=durable_url,
            cloudinary_url=durable_url,
            status="COMPLETED",
            style_strength=_value_or(local, "style_strength", 0.7),
            width=_value_or(local, "width", 1024),
            height=_value_or(local, "height", 1024),
        )
        report.synced += 1
        report.log.append(f"ok local {url}: stored as {created['id']}")

    report.total_processed = len(processed)
    logger.info(
        "Sync finished: %d synced, %d error(s), %d URL(s) processed",
        report.synced,
        report.errors,
        report.total_processed,
    )
    return report
