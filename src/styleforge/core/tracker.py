"""Polling-based completion tracking for batches of generation jobs.

A single user action (apply a model to a photo) submits a small batch of
generation jobs to the provider.  :class:`BatchGenerationTracker` then polls
the provider until every job reaches a terminal state or the attempt budget
runs out, and returns a :class:`BatchResult`.

State Machine
-------------
Each job is an explicit finite state machine::

    PENDING --> SUCCEEDED   (artifact URL recorded)
           \\-> FAILED

Both terminal states are final.  A terminal job is never queried again and
later responses for it are ignored.

Round Structure
---------------
1. Query every still-pending job concurrently (``asyncio.gather``).
2. Fold the responses into the job map with :func:`advance`, a pure function
   so the loop can be driven by canned response sequences in tests.
3. Stop when all jobs are terminal or ``max_attempts`` rounds have run,
   otherwise sleep ``poll_interval`` seconds and start the next round.

A failed status query is a :class:`TransientQueryError`: it is logged and the
job simply stays pending for the next round.  It never aborts the batch.

After polling, successful artifacts are promoted into the optional artifact
store (see :mod:`styleforge.core.promotion`).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Protocol

from styleforge.core.errors import (
    AllGenerationsFailedError,
    BatchTimeoutError,
    TransientQueryError,
)
from styleforge.core.promotion import ArtifactStore, promote_artifact

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 60
DEFAULT_POLL_INTERVAL = 5.0


class JobState(str, Enum):
    """Lifecycle state of a single generation job."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobState.PENDING


@dataclass(frozen=True)
class GenerationJob:
    """One submitted job as tracked by the poller."""

    id: str
    state: JobState = JobState.PENDING
    artifact_url: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


@dataclass(frozen=True)
class JobStatus:
    """One status-query response from the provider.

    Attributes:
        job_id: Identifier of the queried job.
        state: Normalised state.  Provider statuses that are neither success
            nor failure map to ``PENDING``.
        artifact_url: Output image URL, set only on success.
        progress: Provider-reported progress (0-100), when available.
    """

    job_id: str
    state: JobState
    artifact_url: str | None = None
    progress: float | None = None


class JobStatusProvider(Protocol):
    """Anything that can report the status of a generation job."""

    async def get_generation(self, job_id: str) -> JobStatus: ...


@dataclass(frozen=True)
class RoundProgress:
    """Snapshot passed to the ``on_round`` callback after every round."""

    attempt: int
    max_attempts: int
    pending: int
    succeeded: int
    failed: int


@dataclass
class BatchResult:
    """Outcome of :meth:`BatchGenerationTracker.await_completion`.

    All lists preserve submission order.

    Attributes:
        succeeded: ``(job_id, artifact_url)`` pairs.  After promotion the URL
            is the durable one where promotion succeeded.
        failed: IDs of jobs the provider reported as failed.
        pending: IDs of jobs still pending when polling stopped.
        timed_out: ``True`` iff polling stopped on the attempt budget with at
            least one job still pending.
        attempts: Number of polling rounds executed.
    """

    succeeded: list[tuple[str, str]] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    timed_out: bool = False
    attempts: int = 0

    @property
    def artifact_urls(self) -> list[str]:
        return [url for _, url in self.succeeded]

    @property
    def all_failed(self) -> bool:
        """Every job ended ``FAILED``."""
        return bool(self.failed) and not self.succeeded and not self.pending

    def raise_for_outcome(self) -> None:
        """Raise if the batch produced nothing usable.

        Partial successes never raise; callers report them alongside the
        failed IDs.

        Raises:
            AllGenerationsFailedError: Every job failed.
            BatchTimeoutError: Nothing succeeded and polling timed out.
        """
        if self.succeeded:
            return
        if self.all_failed:
            raise AllGenerationsFailedError(list(self.failed))
        if self.timed_out:
            raise BatchTimeoutError(list(self.pending), self.attempts)


def advance(
    jobs: Mapping[str, GenerationJob],
    responses: Mapping[str, JobStatus | BaseException],
) -> dict[str, GenerationJob]:
    """Apply one round of status responses to the job map.

    Pure function: *jobs* is not modified.

    Args:
        jobs: Current job map keyed by job ID, in submission order.
        responses: Responses for this round keyed by job ID.  Exceptions
            (transient query failures) leave the job pending.

    Returns:
        A new job map with the same key order.
    """
    updated = dict(jobs)
    for job_id, response in responses.items():
        current = updated.get(job_id)
        # Unknown IDs and duplicate updates for terminal jobs are ignored.
        if current is None or current.is_terminal:
            continue
        if isinstance(response, BaseException):
            continue

        if response.state is JobState.SUCCEEDED and response.artifact_url:
            updated[job_id] = replace(
                current, state=JobState.SUCCEEDED, artifact_url=response.artifact_url
            )
        elif response.state is JobState.FAILED:
            updated[job_id] = replace(current, state=JobState.FAILED)
    return updated


def summarize(jobs: Mapping[str, GenerationJob], attempts: int) -> BatchResult:
    """Build a :class:`BatchResult` from a final job map."""
    result = BatchResult(attempts=attempts)
    for job in jobs.values():
        if job.state is JobState.SUCCEEDED:
            result.succeeded.append((job.id, job.artifact_url or ""))
        elif job.state is JobState.FAILED:
            result.failed.append(job.id)
        else:
            result.pending.append(job.id)
    result.timed_out = bool(result.pending)
    return result


class BatchGenerationTracker:
    """Drive a batch of submitted jobs to completion or timeout.

    Args:
        provider: Source of job statuses (normally the EverArt client).
        artifact_store: Optional durable store for successful artifacts.
        max_attempts: Default polling round budget.
        poll_interval: Default wait between rounds, in seconds.
        promote_all: Promote every successful artifact instead of only the
            first one.
        sleep: Awaitable used for the inter-round wait.  Tests inject a fake.
    """

    def __init__(
        self,
        provider: JobStatusProvider,
        *,
        artifact_store: ArtifactStore | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        promote_all: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._artifact_store = artifact_store
        self._max_attempts = max_attempts
        self._poll_interval = poll_interval
        self._promote_all = promote_all
        self._sleep = sleep

    async def await_completion(
        self,
        job_ids: Iterable[str],
        *,
        max_attempts: int | None = None,
        poll_interval: float | None = None,
        on_round: Callable[[RoundProgress], None] | None = None,
    ) -> BatchResult:
        """Poll *job_ids* until all are terminal or the budget is exhausted.

        Total waiting is bounded by ``(max_attempts - 1) * poll_interval``
        plus the time spent in the status queries themselves.

        Args:
            job_ids: IDs returned by a prior submission call.  Duplicates are
                collapsed, keeping the first position.
            max_attempts: Override of the round budget for this batch.
            poll_interval: Override of the inter-round wait for this batch.
            on_round: Called once after every round with a progress snapshot.

        Returns:
            The :class:`BatchResult`, with promoted URLs where applicable.

        Raises:
            ValueError: If *job_ids* is empty or ``max_attempts < 1``.
        """
        ordered = list(dict.fromkeys(job_ids))
        if not ordered:
            raise ValueError("await_completion requires at least one job ID")

        limit = self._max_attempts if max_attempts is None else max_attempts
        interval = self._poll_interval if poll_interval is None else poll_interval
        if limit < 1:
            raise ValueError("max_attempts must be at least 1")

        jobs = {job_id: GenerationJob(job_id) for job_id in ordered}
        attempts = 0

        while attempts < limit:
            pending_ids = [job.id for job in jobs.values() if not job.is_terminal]
            responses = await self._poll_round(pending_ids)
            jobs = advance(jobs, responses)
            attempts += 1

            progress = _progress(jobs, attempts, limit)
            logger.debug(
                "Polling round %d/%d: %d pending, %d succeeded, %d failed",
                attempts,
                limit,
                progress.pending,
                progress.succeeded,
                progress.failed,
            )
            self._notify(on_round, progress)

            if progress.pending == 0:
                break
            if attempts < limit:
                await self._sleep(interval)

        result = summarize(jobs, attempts)
        if result.timed_out:
            logger.warning(
                "Batch timed out after %d round(s) with %d job(s) pending: %s",
                attempts,
                len(result.pending),
                ", ".join(result.pending),
            )
        return await self._promote(result)

    async def _poll_round(self, job_ids: list[str]) -> dict[str, JobStatus | BaseException]:
        statuses = await asyncio.gather(*(self._query(job_id) for job_id in job_ids))
        return dict(zip(job_ids, statuses))

    async def _query(self, job_id: str) -> JobStatus | TransientQueryError:
        try:
            return await self._provider.get_generation(job_id)
        except Exception as exc:
            logger.warning("Status query for job %s failed, retrying next round: %s", job_id, exc)
            return TransientQueryError(job_id, exc)

    async def _promote(self, result: BatchResult) -> BatchResult:
        if self._artifact_store is None or not result.succeeded:
            return result

        # Only the first artifact is promoted unless promote_all is set.
        limit = len(result.succeeded) if self._promote_all else 1
        promoted: list[tuple[str, str]] = []
        for index, (job_id, url) in enumerate(result.succeeded):
            if index < limit:
                url = await promote_artifact(self._artifact_store, url)
            promoted.append((job_id, url))
        return replace(result, succeeded=promoted)

    @staticmethod
    def _notify(
        on_round: Callable[[RoundProgress], None] | None, progress: RoundProgress
    ) -> None:
        if on_round is None:
            return
        try:
            on_round(progress)
        except Exception:
            logger.exception("Progress callback raised; ignoring")


def _progress(jobs: Mapping[str, GenerationJob], attempt: int, limit: int) -> RoundProgress:
    states = [job.state for job in jobs.values()]
    return RoundProgress(
        attempt=attempt,
        max_attempts=limit,
        pending=states.count(JobState.PENDING),
        succeeded=states.count(JobState.SUCCEEDED),
        failed=states.count(JobState.FAILED),
    )
