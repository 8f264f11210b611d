"""Data models for generation requests, job status and durable records.

Wire and storage shapes keep the backend's camelCase field names through
pydantic aliases; Python code uses the snake_case attribute names. Always
serialize with ``model_dump(by_alias=True, mode="json")``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from quippix.core.constants import MAX_BATCH_IMAGES
from quippix.utils.time import seconds_since, utc_now


class JobState(str, Enum):
    """Lifecycle state of a single-image job."""

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class BatchState(str, Enum):
    """Lifecycle state of a batch."""

    PROCESSING = "processing"
    DONE = "done"
    PARTIAL_FAILURE = "partial_failure"


TERMINAL_JOB_STATES = frozenset({JobState.DONE, JobState.FAILED})
TERMINAL_BATCH_STATES = frozenset({BatchState.DONE, BatchState.PARTIAL_FAILURE})


class _WireModel(BaseModel):
    """Base for backend payloads: accepts aliases or names, ignores extras."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class GenerationParams(BaseModel):
    """Style parameters sent alongside the image.

    Only ``styleId`` is interpreted here; sliders, toggles, prompts and any
    other style options are carried through to the backend untouched.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    style_id: str = Field(alias="styleId", min_length=1)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class GenerationRequest(BaseModel):
    """One photo to stylize. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    image_ref: str = Field(min_length=1, description="Local path or file:// URI")
    params: GenerationParams


class BatchGenerationRequest(BaseModel):
    """Several photos sharing one set of style parameters."""

    model_config = ConfigDict(frozen=True)

    image_refs: tuple[str, ...] = Field(min_length=1, max_length=MAX_BATCH_IMAGES)
    params: GenerationParams


class SubmitResult(_WireModel):
    """Backend acknowledgment for ``POST /generate``."""

    job_id: str = Field(alias="jobId", min_length=1)


class BatchSubmitResult(_WireModel):
    """Backend acknowledgment for ``POST /batch-generate``."""

    batch_id: str = Field(alias="batchId", min_length=1)
    job_ids: list[str] = Field(alias="jobIds", default_factory=list)


class JobStatus(_WireModel):
    """Status of a single-image job as reported by ``GET /status/:jobId``.

    Progress is whatever the backend reports; no clamping or smoothing.
    """

    job_id: str = Field(alias="jobId")
    state: JobState = Field(alias="status")
    progress: float = 0
    result_url: str | None = Field(default=None, alias="resultUrl")
    error: str | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_JOB_STATES


class BatchJobStatus(_WireModel):
    """Status of one sub-job inside a batch."""

    job_id: str = Field(alias="jobId")
    state: JobState = Field(alias="status")
    progress: float = 0
    result_url: str | None = Field(default=None, alias="resultUrl")
    error: str | None = None


class BatchStatus(_WireModel):
    """Status of a batch as reported by ``GET /batch-status/:batchId``."""

    batch_id: str = Field(alias="batchId")
    state: BatchState = Field(alias="status")
    total_jobs: int = Field(default=0, alias="totalJobs")
    completed_jobs: int = Field(default=0, alias="completedJobs")
    failed_jobs: int = Field(default=0, alias="failedJobs")
    overall_progress: float = Field(default=0, alias="overallProgress")
    jobs: list[BatchJobStatus] = Field(default_factory=list)
    created_at: datetime | None = Field(default=None, alias="createdAt")

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_BATCH_STATES

    def successful_results(self) -> list[BatchJobStatus]:
        """Sub-jobs that finished with a result URL."""
        return [j for j in self.jobs if j.state == JobState.DONE and j.result_url]


class QueueItem(_WireModel):
    """A generation request captured while offline, awaiting submission."""

    id: str
    image_ref: str = Field(alias="imageUri")
    params: GenerationParams
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")

    def to_request(self) -> GenerationRequest:
        return GenerationRequest(image_ref=self.image_ref, params=self.params)


class PendingGeneration(_WireModel):
    """The single in-flight job mirrored to durable storage for crash recovery."""

    job_id: str = Field(alias="jobId")
    image_ref: str = Field(alias="imageUri")
    params: GenerationParams
    challenge_id: str | None = Field(default=None, alias="challengeId")
    started_at: datetime = Field(default_factory=utc_now, alias="startedAt")

    def age(self, now: datetime | None = None) -> float:
        """Seconds elapsed since the job was started."""
        return seconds_since(self.started_at, now)
