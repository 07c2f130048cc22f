"""Exception hierarchy for the Styleforge service.

Every error raised by the core layer derives from :class:`StyleforgeError`
so the API layer can translate them into HTTP responses in one place.

Only two of these ever reach a user as the outcome of a generation batch:
:class:`BatchTimeoutError` and :class:`AllGenerationsFailedError`.  The
others are either absorbed internally (:class:`TransientQueryError`,
:class:`ArtifactPromotionError` inside the tracker) or describe problems
outside the polling loop (provider failures and bad uploads).
"""

from __future__ import annotations

from typing import Any


class StyleforgeError(Exception):
    """Base class for all Styleforge errors."""


class ProviderError(StyleforgeError):
    """The EverArt API returned an error or could not be reached.

    Attributes:
        status_code: HTTP status returned by the provider, or ``None`` when
            the request never produced a response (DNS, timeout, ...).
        payload: Decoded error body returned by the provider, if any.
    """

    def __init__(self, message: str, *, status_code: int | None = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class TransientQueryError(StyleforgeError):
    """A single status query failed and will be retried next round."""

    def __init__(self, job_id: str, cause: BaseException | None = None):
        super().__init__(f"Status query for job {job_id} failed: {cause}")
        self.job_id = job_id
        self.cause = cause


class BatchTimeoutError(StyleforgeError):
    """Polling ran out of attempts before any job in the batch succeeded."""

    def __init__(self, pending: list[str], attempts: int):
        super().__init__(
            f"Generation is taking too long: {len(pending)} job(s) still pending "
            f"after {attempts} polling round(s)"
        )
        self.pending = pending
        self.attempts = attempts


class AllGenerationsFailedError(StyleforgeError):
    """Every job in the batch was reported as failed by the provider."""

    def __init__(self, failed: list[str]):
        super().__init__(f"All generations failed ({len(failed)} job(s))")
        self.failed = failed


class ArtifactPromotionError(StyleforgeError):
    """Copying an artifact into the durable store failed."""

    def __init__(self, url: str, cause: BaseException | None = None):
        super().__init__(f"Failed to promote artifact {url}: {cause}")
        self.url = url
        self.cause = cause


class InvalidImageError(StyleforgeError):
    """An uploaded file is empty, too large, or not a decodable image."""
