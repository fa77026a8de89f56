"""Reconciliation of imported backup tables into live records.

Imported rows may come from older exports that lack newer columns, so every
job row is laid over a defaults template before it is decoded. Reconciliation
either produces all three collections or raises a single
:class:`~printflow.exceptions.RestoreError`; nothing is written here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar

from . import log
from .constants import JOB_DEFAULTS
from .data_manager import (
    Customer,
    Job,
    User,
    deserialize_customer,
    deserialize_job,
    deserialize_user,
)
from .exceptions import InvariantViolation, RestoreError
from .workflow import check_job_invariants


RecordT = TypeVar("RecordT")

_DECODE_ERRORS = (KeyError, ValueError, TypeError, InvariantViolation)


@dataclass(frozen=True)
class RestoredDatabase:
    jobs: List[Job]
    customers: List[Customer]
    users: List[User]


def overlay_job_row(row: Mapping[str, Any], defaults: Mapping[str, object]) -> Dict[str, Any]:
    """Lay ``row`` over ``defaults``; blank cells keep the default value."""

    merged = dict(defaults)
    for key, value in row.items():
        if value is None or value == "":
            continue
        merged[key] = value
    return merged


def _decode_table(
    table: str,
    rows: Optional[Iterable[Mapping[str, Any]]],
    decode: Callable[[Mapping[str, Any]], RecordT],
) -> List[RecordT]:
    if rows is None:
        log.info("Backup has no %s table; restoring it empty", table)
        return []
    records = []
    for position, row in enumerate(rows, start=1):
        try:
            records.append(decode(row))
        except _DECODE_ERRORS as exc:
            log.error("Restore failed on %s row %d: %s", table, position, exc)
            raise RestoreError(f"Invalid {table} row {position}: {exc}") from exc
    return records


def _decode_job(row: Mapping[str, Any], defaults: Mapping[str, object]) -> Job:
    job = deserialize_job(overlay_job_row(row, defaults))
    check_job_invariants(job)
    return job


def _reject_duplicate_ids(jobs: List[Job]) -> None:
    seen = set()
    for position, job in enumerate(jobs, start=1):
        if job.id in seen:
            log.error("Restore failed on Jobs row %d: duplicate id '%s'", position, job.id)
            raise RestoreError(f"Invalid Jobs row {position}: duplicate job id '{job.id}'")
        seen.add(job.id)


def reconcile(
    imported_jobs: Optional[Iterable[Mapping[str, Any]]],
    imported_customers: Optional[Iterable[Mapping[str, Any]]],
    imported_users: Optional[Iterable[Mapping[str, Any]]],
    defaults: Mapping[str, object] = JOB_DEFAULTS,
) -> RestoredDatabase:
    """Turn raw backup tables into validated collections.

    Args:
        imported_jobs: Header-keyed ``Jobs`` rows, or ``None`` if the table is
            absent. The ``history`` column may be JSON text or a decoded list.
        imported_customers: ``Customers`` rows, or ``None``.
        imported_users: ``Users`` rows, or ``None``.
        defaults: Template supplying values for columns older exports lack.

    Returns:
        RestoredDatabase: The three collections ready to replace live data.

    Raises:
        RestoreError: If any row cannot be decoded, a job breaks its ledger
            invariants, or two jobs share an id.
    """

    jobs = _decode_table(
        "Jobs",
        imported_jobs,
        lambda row: _decode_job(row, defaults),
    )
    _reject_duplicate_ids(jobs)
    customers = _decode_table("Customers", imported_customers, deserialize_customer)
    users = _decode_table("Users", imported_users, deserialize_user)
    log.info(
        "Reconciled backup: %d jobs, %d customers, %d users",
        len(jobs),
        len(customers),
        len(users),
    )
    return RestoredDatabase(jobs=jobs, customers=customers, users=users)
