"""Pydantic request models for the Styleforge API.

Multipart routes (model creation, apply) take their fields as ``Form``
parameters declared on the route itself; the models here cover the JSON
bodies.

Models
------
GenerationRecordIn
    One generation record pushed by a client from its local history.
SaveGenerationsRequest
    Payload for ``POST /api/generations/save``.
LocalRecord
    A client-local record considered by the sync pass.
SyncRequest
    Payload for ``POST /api/generations/sync``.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ModelSubject = Literal["STYLE", "PERSON", "OBJECT"]
GenerationStatus = Literal["PENDING", "PROCESSING", "COMPLETED", "FAILED"]


class GenerationRecordIn(BaseModel):
    """A generation record supplied by a client.

    Unknown keys are ignored so older clients can push their records as-is.

    Attributes:
        id: Record identifier.  A new one is assigned when omitted.
        model_id: EverArt model that produced the image.
        model_name: Display name of the model.
        input_image_url: URL of the source photo.
        output_image_url: URL of the generated image.
        cloudinary_url: Durable URL, when the image was already promoted.
        status: Record status.
        error_message: Failure description for failed records.
        style_strength: Style strength used (0-1).
        width: Output width in pixels.
        height: Output height in pixels.
        created_at: Creation time as epoch seconds.
    """

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    model_id: str = ""
    model_name: str | None = None
    input_image_url: str = ""
    output_image_url: str | None = None
    cloudinary_url: str | None = None
    status: GenerationStatus = "COMPLETED"
    error_message: str | None = None
    style_strength: float | None = Field(default=0.6, ge=0.0, le=1.0)
    width: int | None = Field(default=512, ge=1)
    height: int | None = Field(default=512, ge=1)
    created_at: float | None = None


class SaveGenerationsRequest(BaseModel):
    """Request body for ``POST /api/generations/save``."""

    generations: list[GenerationRecordIn] = Field(
        default_factory=list,
        description="Records to merge into the store (at least one).",
    )


class LocalRecord(BaseModel):
    """A record from a client's local history, as read by the sync pass."""

    model_config = ConfigDict(extra="ignore")

    output_image_url: str | None = None
    input_image_url: str | None = None
    model_id: str | None = None
    model_name: str | None = None
    style_strength: float | None = None
    width: int | None = None
    height: int | None = None


class SyncRequest(BaseModel):
    """Request body for ``POST /api/generations/sync``."""

    local_records: list[LocalRecord] = Field(
        default_factory=list,
        description="Client-local records to promote alongside stored ones.",
    )
