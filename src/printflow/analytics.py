"""Dashboard metrics derived from job snapshots.

Every function is read-only over its input. Timestamps are milliseconds since
the epoch; calendar grouping uses the machine's local time zone, matching
what the counter staff see on the wall clock.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Sequence

from . import log
from .constants import DEFAULT_CASH_WINDOW_DAYS, REPORTED_TAT_STAGES, STAGE_ORDER, JobStage
from .data_manager import Job


MS_PER_MINUTE = 60_000
MINUTES_PER_DAY = 1440


@dataclass(frozen=True)
class StageTatStats:
    stage: JobStage
    avg_time_minutes: int
    avg_time_days: float


@dataclass(frozen=True)
class DailyCashSummary:
    date: date
    amount: int
    count: int


@dataclass(frozen=True)
class EmployeeWorkload:
    name: str
    active: int
    completed: int
    total: int


@dataclass(frozen=True)
class RevenueSplit:
    realized: int
    pending: int


@dataclass(frozen=True)
class DashboardSnapshot:
    """Everything the dashboard renders, computed from one job snapshot."""

    revenue: RevenueSplit
    completed_today: int
    active_jobs: int
    stage_counts: Dict[JobStage, int]
    stage_tat: List[StageTatStats]
    daily_cash: List[DailyCashSummary]
    workload: List[EmployeeWorkload]


def _round_half_up(value: float, places: int = 0) -> Decimal:
    quantum = Decimal(1).scaleb(-places)
    return Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)


def _is_completed(job: Job) -> bool:
    return job.current_stage is JobStage.COMPLETED


def local_date(timestamp_ms: int) -> date:
    return datetime.fromtimestamp(timestamp_ms / 1000).date()


def start_of_local_day(timestamp_ms: int) -> int:
    """Return midnight (local time) of the day containing ``timestamp_ms``."""

    midnight = datetime.combine(local_date(timestamp_ms), time.min)
    return int(midnight.timestamp() * 1000)


def compute_stage_tat(jobs: Sequence[Job]) -> List[StageTatStats]:
    """Average time spent in Design, Production and Finishing.

    Each consecutive pair of history entries contributes the gap between them
    to the stage being left. Histories are re-sorted by timestamp first. A
    stage without samples reports zero.
    """

    samples: Dict[JobStage, List[float]] = defaultdict(list)
    for job in jobs:
        ordered = sorted(job.history, key=lambda entry: entry.timestamp)
        for leaving, entering in zip(ordered, ordered[1:]):
            minutes = (entering.timestamp - leaving.timestamp) / MS_PER_MINUTE
            samples[leaving.stage].append(minutes)

    stats = []
    for stage in REPORTED_TAT_STAGES:
        durations = samples.get(stage, [])
        if not durations:
            stats.append(StageTatStats(stage=stage, avg_time_minutes=0, avg_time_days=0.0))
            continue
        mean = sum(durations) / len(durations)
        stats.append(
            StageTatStats(
                stage=stage,
                avg_time_minutes=int(_round_half_up(mean)),
                avg_time_days=float(_round_half_up(mean / MINUTES_PER_DAY, 2)),
            )
        )
    log.debug("Computed stage TAT over %d jobs", len(jobs))
    return stats


def compute_daily_cash(jobs: Sequence[Job], window_days: int = DEFAULT_CASH_WINDOW_DAYS) -> List[DailyCashSummary]:
    """Cash collected per local calendar day, most recent ``window_days`` days.

    Buckets are ordered by their actual date before the window is applied, so
    the result never depends on the order jobs were stored in.
    """

    if window_days <= 0:
        return []

    amounts: Dict[date, int] = defaultdict(int)
    counts: Dict[date, int] = defaultdict(int)
    for job in jobs:
        if not _is_completed(job) or job.completed_at is None:
            continue
        day = local_date(job.completed_at)
        amounts[day] += job.price
        counts[day] += 1

    recent_days = sorted(amounts)[-window_days:]
    return [DailyCashSummary(date=day, amount=amounts[day], count=counts[day]) for day in recent_days]


def compute_revenue(jobs: Sequence[Job]) -> RevenueSplit:
    """Split job value into realized (Completed) and pending (everything else)."""

    realized = sum(job.price for job in jobs if _is_completed(job))
    pending = sum(job.price for job in jobs if not _is_completed(job))
    return RevenueSplit(realized=realized, pending=pending)


def compute_completed_today(jobs: Sequence[Job], now: int) -> int:
    cutoff = start_of_local_day(now)
    return sum(
        1
        for job in jobs
        if _is_completed(job) and job.completed_at is not None and job.completed_at >= cutoff
    )


def employee_name(assigned_to: str) -> str:
    """Strip the cosmetic ``" (Role)"`` suffix from an assignee label."""

    return assigned_to.split(" (", 1)[0]


def compute_workload(jobs: Sequence[Job]) -> List[EmployeeWorkload]:
    """Active and completed job counts per employee, busiest first.

    Employees with equal totals keep the order in which they were first seen.
    """

    active: Dict[str, int] = {}
    completed: Dict[str, int] = {}
    for job in jobs:
        name = employee_name(job.assigned_to)
        active.setdefault(name, 0)
        completed.setdefault(name, 0)
        if _is_completed(job):
            completed[name] += 1
        else:
            active[name] += 1

    rows = [
        EmployeeWorkload(
            name=name,
            active=active[name],
            completed=completed[name],
            total=active[name] + completed[name],
        )
        for name in active
    ]
    return sorted(rows, key=lambda row: row.total, reverse=True)


def count_jobs_by_stage(jobs: Sequence[Job]) -> Dict[JobStage, int]:
    """Number of jobs currently in each stage, in pipeline order."""

    tally = Counter(job.current_stage for job in jobs)
    return {stage: tally.get(stage, 0) for stage in STAGE_ORDER}


def build_dashboard(jobs: Sequence[Job], *, now: int, window_days: int = DEFAULT_CASH_WINDOW_DAYS) -> DashboardSnapshot:
    stage_counts = count_jobs_by_stage(jobs)
    return DashboardSnapshot(
        revenue=compute_revenue(jobs),
        completed_today=compute_completed_today(jobs, now),
        active_jobs=len(jobs) - stage_counts[JobStage.COMPLETED],
        stage_counts=stage_counts,
        stage_tat=compute_stage_tat(jobs),
        daily_cash=compute_daily_cash(jobs, window_days),
        workload=compute_workload(jobs),
    )
