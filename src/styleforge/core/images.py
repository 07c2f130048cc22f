"""Validation of user-uploaded images before they are sent to the provider."""

from __future__ import annotations

import io

from PIL import Image, UnidentifiedImageError

from styleforge.core.errors import InvalidImageError

# Pillow format name -> MIME type accepted by the provider.
_CONTENT_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
}


def validate_image_upload(data: bytes, filename: str, *, max_bytes: int) -> str:
    """Check an uploaded file and return its content type.

    The declared content type of the upload is ignored; the type sent to the
    provider is derived from what Pillow actually decodes.

    Args:
        data: Raw file contents.
        filename: Original filename, used in error messages.
        max_bytes: Upper bound on the file size.

    Returns:
        MIME type of the image, e.g. ``"image/png"``.

    Raises:
        InvalidImageError: Empty, too large, undecodable, or an unsupported
            image format.
    """
    if not data:
        raise InvalidImageError(f"{filename} is empty")
    if len(data) > max_bytes:
        raise InvalidImageError(
            f"{filename} is {len(data)} bytes; the limit is {max_bytes} bytes"
        )

    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise InvalidImageError(f"{filename} is not a valid image") from exc

    content_type = _CONTENT_TYPES.get(image_format or "")
    if content_type is None:
        raise InvalidImageError(f"{filename} has unsupported image format {image_format}")
    return content_type
