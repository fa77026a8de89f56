"""Business logic layer for PrintFlow.

This module wires the pure engines (:mod:`printflow.workflow`,
:mod:`printflow.directory`, :mod:`printflow.analytics`,
:mod:`printflow.restore`) to the workbook store. Every mutating service runs
the same read-modify-write cycle: load a collection together with its version
token, compute the new snapshot, and save it back conditioned on that token so
a concurrent writer is detected instead of silently overwritten.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import List, Optional

import requests

from . import analytics, configure_logging, data_manager, directory, log, restore, workflow
from .constants import EXPECTED_SCHEMA_VERSION, JOB_DEFAULTS, Collection, JobStage, UserRole
from .data_manager import Customer, Job, User
from .reporting import ShopReportClient


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the store used by the BLL."""

    settings: data_manager.ConfigSettings
    store: data_manager.WorkbookStore


def _now_ms() -> int:
    """Return the current UTC time in milliseconds since the epoch."""

    return int(datetime.now(UTC).timestamp() * 1000)


def _resolve_now(candidate: Optional[int]) -> int:
    return candidate if candidate is not None else _now_ms()


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and attach the master workbook store.

    The ``[Logging]`` settings are applied to the package logger on the way.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    configure_logging(settings.log_level, settings.log_dir)
    store = data_manager.WorkbookStore(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, store=store)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the configured schema version does not match
            ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def list_jobs(context: RuntimeContext, *, include_completed: bool = True) -> List[Job]:
    jobs = context.store.load(Collection.JOBS)
    if include_completed:
        return jobs
    return [job for job in jobs if job.current_stage is not JobStage.COMPLETED]


def list_customers(context: RuntimeContext) -> List[Customer]:
    return context.store.load(Collection.CUSTOMERS)


def list_users(context: RuntimeContext, *, include_inactive: bool = False) -> List[User]:
    users = context.store.load(Collection.USERS)
    if include_inactive:
        return users
    return [user for user in users if user.is_active]


def get_job(context: RuntimeContext, job_id: str) -> Job:
    """Resolve a job by id.

    Raises:
        MissingReferenceError: If ``job_id`` is unknown.
    """
    return workflow.find_job(list_jobs(context), job_id)


def register_job(
    context: RuntimeContext,
    draft: workflow.JobDraft,
    *,
    now: Optional[int] = None,
    job_id: Optional[str] = None,
) -> Job:
    """Create a job at the counter and record the customer's visit.

    Returns:
        Job: The newly stored job.

    Raises:
        ValueError: If the draft fails validation.
        DuplicateRecordError: If ``job_id`` is already used.
        StaleSnapshotError: If jobs or customers changed concurrently.
    """
    now = _resolve_now(now)
    jobs, version = context.store.load_versioned(Collection.JOBS)
    customers, customer_version = context.store.load_versioned(Collection.CUSTOMERS)
    updated_jobs, job = workflow.create_job(jobs, draft, now=now, job_id=job_id)
    updated_customers = directory.upsert_customer(
        customers,
        draft.customer_name,
        draft.customer_contact,
        draft.customer_email,
        now=now,
    )
    context.store.save_many(
        {
            Collection.JOBS: (updated_jobs, version),
            Collection.CUSTOMERS: (updated_customers, customer_version),
        }
    )
    log.info(
        "Registered job '%s' for '%s' (%s, price=%s)",
        job.id,
        job.customer_name,
        job.type.value,
        job.price,
    )
    return job


def advance_job(context: RuntimeContext, job_id: str, *, now: Optional[int] = None) -> Job:
    """Move a job to its next stage and persist the new snapshot.

    Raises:
        MissingReferenceError: If ``job_id`` is unknown.
        AlreadyTerminalError: If the job is already Completed.
        StaleSnapshotError: If jobs changed concurrently.
    """
    now = _resolve_now(now)
    jobs, version = context.store.load_versioned(Collection.JOBS)
    updated_jobs = workflow.advance(jobs, job_id, now=now)
    context.store.save(Collection.JOBS, updated_jobs, expected_version=version)
    job = workflow.find_job(updated_jobs, job_id)
    log.info("Advanced job '%s' to %s", job_id, job.current_stage.value)
    return job


def delete_job(context: RuntimeContext, job_id: str) -> bool:
    """Hard-delete a job. Returns ``False`` when the id was not present."""
    jobs, version = context.store.load_versioned(Collection.JOBS)
    remaining = workflow.remove(jobs, job_id)
    if len(remaining) == len(jobs):
        log.info("Delete requested for unknown job '%s'; nothing to do", job_id)
        return False
    context.store.save(Collection.JOBS, remaining, expected_version=version)
    log.info("Deleted job '%s'", job_id)
    return True


def add_user(
    context: RuntimeContext,
    *,
    username: str,
    password: str,
    name: str,
    role: UserRole,
    is_active: bool = True,
) -> User:
    users, version = context.store.load_versioned(Collection.USERS)
    updated = directory.add_user(
        users,
        username=username,
        password=password,
        name=name,
        role=role,
        is_active=is_active,
    )
    context.store.save(Collection.USERS, updated, expected_version=version)
    return updated[-1]


def set_user_active(context: RuntimeContext, user_id: str, is_active: bool) -> User:
    users, version = context.store.load_versioned(Collection.USERS)
    updated = directory.set_user_active(users, user_id, is_active)
    context.store.save(Collection.USERS, updated, expected_version=version)
    log.info("User '%s' is now %s", user_id, "active" if is_active else "inactive")
    return directory.find_user(updated, user_id)


def remove_user(context: RuntimeContext, user_id: str) -> None:
    """Delete an account.

    Raises:
        MissingReferenceError: If ``user_id`` is unknown.
    """
    users, version = context.store.load_versioned(Collection.USERS)
    directory.find_user(users, user_id)
    context.store.save(Collection.USERS, directory.remove_user(users, user_id), expected_version=version)
    log.info("Removed user '%s'", user_id)


def login(context: RuntimeContext, username: str, password: str) -> Optional[User]:
    return directory.authenticate(list_users(context, include_inactive=True), username, password)


def build_dashboard(context: RuntimeContext, *, now: Optional[int] = None) -> analytics.DashboardSnapshot:
    """Compute every dashboard metric from the current jobs snapshot."""
    return analytics.build_dashboard(
        list_jobs(context),
        now=_resolve_now(now),
        window_days=context.settings.cash_window_days,
    )


def export_database(context: RuntimeContext, *, directory_path: Optional[Path] = None) -> Path:
    """Write a dated backup of all three collections.

    Returns:
        Path: Location of the backup workbook.
    """
    today = datetime.now(UTC).date()
    return data_manager.export_backup(
        list_jobs(context),
        list_customers(context),
        list_users(context, include_inactive=True),
        directory=directory_path or context.settings.backup_dir,
        today=today,
    )


def restore_database(context: RuntimeContext, document: data_manager.BackupDocument) -> restore.RestoredDatabase:
    """Replace jobs, customers and users with the contents of a backup.

    Reconciliation runs to completion before anything is written; a failure
    leaves the live workbook untouched.

    Raises:
        RestoreError: If any imported row cannot be reconciled.
    """
    restored = restore.reconcile(
        document.jobs,
        document.customers,
        document.users,
        JOB_DEFAULTS,
    )
    context.store.replace_all(restored.jobs, restored.customers, restored.users)
    log.info("Restored database from backup")
    return restored


def restore_from_file(context: RuntimeContext, backup_path: Path) -> restore.RestoredDatabase:
    """Read a backup workbook from disk and restore it."""
    document = data_manager.read_backup(backup_path)
    return restore_database(context, document)


def generate_shop_report(
    context: RuntimeContext,
    *,
    now: Optional[int] = None,
    session: Optional[requests.Session] = None,
) -> str:
    """Ask the AI collaborator for a status report; never raises."""
    client = ShopReportClient(
        context.settings.ai_api_key,
        model=context.settings.ai_model,
        session=session,
    )
    return client.generate(list_jobs(context), now=_resolve_now(now))
