"""File-backed record storage for models and generations.

The store is intentionally simple:

- model records live in ``models.json``
- generation records live in ``generations.json``
- both are plain JSON lists of objects, rewritten in full on every change

Loading is forgiving: a missing, empty or malformed document reads as an
empty list, and entries that are not objects are dropped.  This makes the
store self-bootstrapping; the first write creates the documents.

Generation records are kept newest first.  Records pushed by clients through
:meth:`RecordStore.merge_generations` are deduplicated by ``id`` and the
whole list is re-sorted by ``created_at``.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterable
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

GENERATION_DEFAULTS: dict[str, Any] = {
    "model_id": "",
    "model_name": None,
    "input_image_url": "",
    "output_image_url": None,
    "cloudinary_url": None,
    "provider_generation_id": None,
    "status": "PENDING",
    "error_message": None,
    "style_strength": 0.6,
    "width": 512,
    "height": 512,
}


def _load_entries(path: Path) -> list[dict]:
    """Load a JSON list of objects, returning ``[]`` on any failure."""
    if not path.exists():
        return []
    try:
        with open(path, encoding="utf-8") as handle:
            raw_entries = json.load(handle)
    except (OSError, ValueError) as exc:
        logger.warning("Could not read %s, treating it as empty: %s", path, exc)
        return []

    if not isinstance(raw_entries, list):
        return []
    return [entry for entry in raw_entries if isinstance(entry, dict)]


def _save_entries(path: Path, entries: list[dict]) -> None:
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(entries, handle, indent=2)


def paginate_entries(entries: list[dict], page: int, per_page: int) -> dict:
    """Paginate entries and clamp the requested page to valid bounds.

    Args:
        entries: Entries to paginate, already filtered.
        page: Requested one-based page number.
        per_page: Requested items per page.

    Returns:
        Dictionary containing ``total``, ``page``, ``per_page``, ``pages`` and
        ``items`` for the resolved page.
    """
    total = len(entries)
    pages = (total + per_page - 1) // per_page if total > 0 else 1
    resolved_page = min(max(page, 1), pages)

    start = (resolved_page - 1) * per_page
    return {
        "total": total,
        "page": resolved_page,
        "per_page": per_page,
        "pages": pages,
        "items": entries[start : start + per_page],
    }


class RecordStore:
    """JSON-document store for local model and generation records.

    Args:
        data_dir: Directory holding ``models.json`` and ``generations.json``.
            Created if missing.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.models_path = self.data_dir / "models.json"
        self.generations_path = self.data_dir / "generations.json"

    # -- Models -------------------------------------------------------------

    def list_models(self) -> list[dict]:
        return _load_entries(self.models_path)

    def get_model(self, everart_id: str) -> dict | None:
        return next((m for m in self.list_models() if m.get("everart_id") == everart_id), None)

    def upsert_model(self, model: dict) -> dict:
        """Insert or replace a model record keyed by ``everart_id``."""
        models = self.list_models()
        existing = next((m for m in models if m.get("everart_id") == model["everart_id"]), None)
        if existing is None:
            record = {"created_at": time.time(), "thumbnail_url": None, **model}
            models.insert(0, record)
        else:
            existing.update(model)
            record = existing
        _save_entries(self.models_path, models)
        return record

    def update_model_status(
        self, everart_id: str, status: str, thumbnail_url: str | None = None
    ) -> dict | None:
        """Update status (and thumbnail, when given).  ``None`` if unknown."""
        models = self.list_models()
        model = next((m for m in models if m.get("everart_id") == everart_id), None)
        if model is None:
            return None
        model["status"] = status
        if thumbnail_url:
            model["thumbnail_url"] = thumbnail_url
        _save_entries(self.models_path, models)
        return model

    def delete_model(self, everart_id: str) -> bool:
        models = self.list_models()
        remaining = [m for m in models if m.get("everart_id") != everart_id]
        if len(remaining) == len(models):
            return False
        _save_entries(self.models_path, remaining)
        return True

    # -- Generations --------------------------------------------------------

    def list_generations(self, *, model_id: str | None = None) -> list[dict]:
        """Return generation records newest first, optionally for one model."""
        generations = _load_entries(self.generations_path)
        if model_id:
            generations = [g for g in generations if g.get("model_id") == model_id]
        return generations

    def get_generation(self, generation_id: str) -> dict | None:
        return next(
            (g for g in self.list_generations() if g.get("id") == generation_id), None
        )

    def create_generation(self, **fields: Any) -> dict:
        """Create a generation record with a fresh UUID and timestamp."""
        record = {
            **GENERATION_DEFAULTS,
            **fields,
            "id": str(uuid.uuid4()),
            "created_at": time.time(),
        }
        generations = self.list_generations()
        generations.insert(0, record)
        _save_entries(self.generations_path, generations)
        return record

    def update_generation(self, generation_id: str, **updates: Any) -> dict | None:
        generations = self.list_generations()
        record = next((g for g in generations if g.get("id") == generation_id), None)
        if record is None:
            return None
        record.update(updates)
        _save_entries(self.generations_path, generations)
        return record

    def delete_generation(self, generation_id: str) -> bool:
        generations = self.list_generations()
        remaining = [g for g in generations if g.get("id") != generation_id]
        if len(remaining) == len(generations):
            return False
        _save_entries(self.generations_path, remaining)
        return True

    def merge_generations(self, incoming: Iterable[dict]) -> int:
        """Merge client-supplied records into the store.

        Records are unique by ``id``; an incoming record replaces a stored
        record with the same ID.  Records without an ``id``, stored or
        incoming, get a new one.
        The merged list is sorted newest first by ``created_at``.

        Args:
            incoming: Generation records, typically from a client's local
                history.

        Returns:
            Total number of stored records after the merge.
        """
        merged: dict[str, dict] = {}
        for record in self.list_generations():
            if not record.get("id"):
                record["id"] = str(uuid.uuid4())
                logger.warning("Stored generation had no id; assigned %s", record["id"])
            merged[str(record["id"])] = record
        for record in incoming:
            record = {**GENERATION_DEFAULTS, **record}
            record["id"] = str(record.get("id") or uuid.uuid4())
            if not record.get("created_at"):
                record["created_at"] = time.time()
            merged[record["id"]] = record

        ordered = sorted(
            merged.values(), key=lambda g: float(g.get("created_at") or 0), reverse=True
        )
        _save_entries(self.generations_path, ordered)
        return len(ordered)
