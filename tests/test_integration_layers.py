"""Integration tests describing the end-to-end PrintFlow workflows.

These scenarios run the business layer against a real master workbook created
by ``setup_workbook`` so every step goes through disk, the way the CLI does.
"""

from __future__ import annotations

from collections import defaultdict

from printflow import core_logic
from printflow.constants import Collection, JobStage, JobType, Priority, UserRole
from printflow.workflow import JobDraft, stage_path

from conftest import ADMIN_PASSWORD, HOUR, MINUTE, local_ms


T0 = local_ms(2025, 3, 10, 9, 0)


def _draft(customer: str, job_type: JobType, price: int, assigned_to: str = "") -> JobDraft:
    return JobDraft(
        customer_name=customer,
        description=f"{job_type.value} order",
        type=job_type,
        priority=Priority.NORMAL,
        assigned_to=assigned_to,
        price=price,
    )


def _advance_to_completion(context: core_logic.RuntimeContext, job_id: str, start: int, step: int) -> int:
    now = start
    while core_logic.get_job(context, job_id).current_stage is not JobStage.COMPLETED:
        now += step
        core_logic.advance_job(context, job_id, now=now)
    return now


def test_job_lifecycle_feeds_dashboard(runtime_context):
    """Walk two jobs through the floor and read the dashboard back."""

    context = runtime_context

    core_logic.register_job(context, _draft("Acme Corp", JobType.PRINT, 1500, "Bob (Designer)"), now=T0, job_id="JOB-1")
    core_logic.register_job(context, _draft("acme corp", JobType.BINDING, 400, "Eva (Finisher)"), now=T0 + MINUTE, job_id="JOB-2")
    core_logic.register_job(context, _draft("Globex", JobType.XEROX, 50), now=T0 + 2 * MINUTE, job_id="JOB-3")

    finished_at = _advance_to_completion(context, "JOB-2", T0 + MINUTE, 30 * MINUTE)
    core_logic.advance_job(context, "JOB-1", now=T0 + HOUR)

    job_two = core_logic.get_job(context, "JOB-2")
    assert [entry.stage for entry in job_two.history] == list(stage_path(JobType.BINDING))
    assert job_two.completed_at == finished_at

    snapshot = core_logic.build_dashboard(context, now=finished_at + MINUTE)
    assert snapshot.revenue.realized == 400
    assert snapshot.revenue.pending == 1550
    assert snapshot.active_jobs == 2
    assert snapshot.completed_today == 1
    assert snapshot.stage_counts[JobStage.DESIGN] == 1
    assert snapshot.stage_counts[JobStage.COUNTER] == 1
    assert snapshot.daily_cash[-1].amount == 400

    visits = {customer.name: customer.total_visits for customer in core_logic.list_customers(context)}
    assert visits == {"Acme Corp": 2, "Globex": 1}


def test_every_stored_job_keeps_ledger_consistent(runtime_context):
    """History stays sorted and ends on the current stage after many moves."""

    context = runtime_context
    for index, job_type in enumerate(JobType):
        core_logic.register_job(context, _draft(f"Customer {index}", job_type, 100), now=T0, job_id=f"JOB-{index}")
        _advance_to_completion(context, f"JOB-{index}", T0, 17 * MINUTE)

    per_stage = defaultdict(int)
    for job in core_logic.list_jobs(context):
        timestamps = [entry.timestamp for entry in job.history]
        assert timestamps == sorted(timestamps)
        assert job.history[-1].stage is job.current_stage
        assert job.completed_at == job.history[-1].timestamp
        for entry in job.history:
            per_stage[entry.stage] += 1

    assert per_stage[JobStage.COMPLETED] == len(JobType)
    assert per_stage[JobStage.DESIGN] == len(JobType) - 2


def test_backup_restore_cycle(runtime_context, tmp_path):
    """An export taken mid-day restores exactly the state it captured."""

    context = runtime_context
    core_logic.add_user(context, username="bob", password="pw", name="Bob (Designer)", role=UserRole.DESIGNER)
    core_logic.register_job(context, _draft("Acme Corp", JobType.DESIGN, 900), now=T0, job_id="JOB-1")
    core_logic.advance_job(context, "JOB-1", now=T0 + HOUR)

    before = {
        Collection.JOBS: core_logic.list_jobs(context),
        Collection.CUSTOMERS: core_logic.list_customers(context),
        Collection.USERS: core_logic.list_users(context, include_inactive=True),
    }
    backup = core_logic.export_database(context, directory_path=tmp_path / "backups")

    core_logic.delete_job(context, "JOB-1")
    core_logic.register_job(context, _draft("Initech", JobType.PRINT, 10), now=T0 + 2 * HOUR, job_id="JOB-2")

    core_logic.restore_from_file(context, backup)

    assert core_logic.list_jobs(context) == before[Collection.JOBS]
    assert core_logic.list_customers(context) == before[Collection.CUSTOMERS]
    assert core_logic.list_users(context, include_inactive=True) == before[Collection.USERS]
    assert core_logic.login(context, "admin", ADMIN_PASSWORD) is not None
    assert core_logic.login(context, "bob", "pw") is not None

    # The restored job continues from where the backup left it.
    moved = core_logic.advance_job(context, "JOB-1", now=T0 + 3 * HOUR)
    assert moved.current_stage is JobStage.PRODUCTION
