"""Stage routing and job lifecycle rules.

``next_stage`` is the stage graph: a pure lookup over the ordered stage list
and the per-type skip table in :mod:`printflow.constants`. The remaining
functions take a job collection snapshot and return a new one; they never
modify the jobs they are given and never touch storage.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from . import log
from .constants import STAGE_ORDER, STAGE_SKIPS, JobStage, JobType, Priority
from .data_manager import HistoryEntry, Job
from .exceptions import (
    AlreadyTerminalError,
    DuplicateRecordError,
    InvariantViolation,
    MissingReferenceError,
)


@dataclass(frozen=True)
class JobDraft:
    """Counter-form input for a new job."""

    customer_name: str
    description: str
    type: JobType
    priority: Priority = Priority.NORMAL
    assigned_to: str = ""
    price: int = 0
    customer_contact: str = ""
    customer_email: str = ""


def stage_path(job_type: JobType) -> Tuple[JobStage, ...]:
    """Return the ordered stages a job of ``job_type`` passes through."""

    skipped = STAGE_SKIPS.get(JobType(job_type), frozenset())
    return tuple(stage for stage in STAGE_ORDER if stage not in skipped)


def next_stage(current: JobStage, job_type: JobType) -> Optional[JobStage]:
    """Return the stage following ``current`` for ``job_type``.

    ``None`` means ``current`` is terminal. A job parked in a stage its type
    normally skips continues with the first on-path stage after it.
    """

    current = JobStage(current)
    if current is JobStage.COMPLETED:
        return None
    position = STAGE_ORDER.index(current)
    path = stage_path(job_type)
    for stage in STAGE_ORDER[position + 1:]:
        if stage in path:
            return stage
    return None


def generate_job_id(*, prefix: str = "JOB-", when: datetime) -> str:
    """Generate a sortable job identifier such as ``JOB-20250101093000123456``."""

    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def check_job_invariants(job: Job) -> None:
    """Fail fast if ``job`` breaks any ledger invariant.

    History may be empty for records restored from old exports; every other
    rule always applies.

    Raises:
        InvariantViolation: On the first broken rule.
    """

    if job.price < 0:
        raise InvariantViolation(f"Job '{job.id}' has a negative price")
    is_completed = job.current_stage is JobStage.COMPLETED
    if is_completed != (job.completed_at is not None):
        raise InvariantViolation(
            f"Job '{job.id}' completedAt does not match stage {job.current_stage.value}"
        )
    timestamps = [entry.timestamp for entry in job.history]
    if timestamps != sorted(timestamps):
        raise InvariantViolation(f"Job '{job.id}' history is not in chronological order")
    if job.history and job.history[-1].stage is not job.current_stage:
        raise InvariantViolation(
            f"Job '{job.id}' history ends in {job.history[-1].stage.value} "
            f"but current stage is {job.current_stage.value}"
        )


def find_job(jobs: Sequence[Job], job_id: str) -> Job:
    """Return the job with ``job_id``.

    Raises:
        MissingReferenceError: If no job carries that id.
    """

    for job in jobs:
        if job.id == job_id:
            return job
    log.warning("Job lookup failed for id '%s'", job_id)
    raise MissingReferenceError(f"Unknown job id: {job_id}")


def create_job(
    jobs: Sequence[Job],
    draft: JobDraft,
    *,
    now: int,
    job_id: Optional[str] = None,
) -> Tuple[List[Job], Job]:
    """Append a new job sitting at the counter.

    Args:
        jobs (Sequence[Job]): Current snapshot.
        draft (JobDraft): Counter-form values.
        now (int): Creation time in milliseconds since the epoch.
        job_id (str | None): Explicit id; generated from ``now`` when omitted.

    Returns:
        tuple[list[Job], Job]: The new snapshot and the created job.

    Raises:
        ValueError: If the customer name is blank or the price is negative.
        DuplicateRecordError: If ``job_id`` is already taken.
    """

    if not draft.customer_name.strip():
        raise ValueError("Customer name is required")
    if draft.price < 0:
        log.error("Price validation failed: %s", draft.price)
        raise ValueError("Price must be zero or positive")
    if job_id is None:
        job_id = generate_job_id(when=datetime.fromtimestamp(now / 1000))
    if any(job.id == job_id for job in jobs):
        raise DuplicateRecordError(f"Job id already exists: {job_id}")

    job = Job(
        id=job_id,
        customer_name=draft.customer_name.strip(),
        customer_contact=draft.customer_contact,
        customer_email=draft.customer_email,
        description=draft.description,
        type=JobType(draft.type),
        priority=Priority(draft.priority),
        assigned_to=draft.assigned_to,
        price=draft.price,
        current_stage=JobStage.COUNTER,
        created_at=now,
        updated_at=now,
        completed_at=None,
        history=(HistoryEntry(stage=JobStage.COUNTER, timestamp=now),),
    )
    return [*jobs, job], job


def advance(jobs: Sequence[Job], job_id: str, *, now: int) -> List[Job]:
    """Move one job to its next stage and append the move to its history.

    The appended timestamp never precedes the last recorded one, so a clock
    that runs behind cannot reorder the ledger.

    Raises:
        MissingReferenceError: If ``job_id`` is unknown.
        AlreadyTerminalError: If the job is already Completed.
        InvariantViolation: If the stored job is inconsistent.
    """

    job = find_job(jobs, job_id)
    check_job_invariants(job)
    target = next_stage(job.current_stage, job.type)
    if target is None:
        log.warning("Attempted to advance completed job '%s'", job_id)
        raise AlreadyTerminalError(job_id)

    timestamp = max(now, job.history[-1].timestamp) if job.history else now
    updated = replace(
        job,
        current_stage=target,
        history=(*job.history, HistoryEntry(stage=target, timestamp=timestamp)),
        updated_at=timestamp,
        completed_at=timestamp if target is JobStage.COMPLETED else None,
    )
    log.debug("Job '%s' moved %s -> %s", job_id, job.current_stage.value, target.value)
    return [updated if candidate.id == job_id else candidate for candidate in jobs]


def remove(jobs: Sequence[Job], job_id: str) -> List[Job]:
    """Hard-delete ``job_id``; an unknown id leaves the snapshot unchanged."""

    return [job for job in jobs if job.id != job_id]
