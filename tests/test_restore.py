"""Unit tests for reconciling imported backup tables."""

from __future__ import annotations

import json

import pytest

from printflow.constants import JobStage, JobType, Priority, UserRole
from printflow.data_manager import HistoryEntry
from printflow.exceptions import RestoreError
from printflow.restore import overlay_job_row, reconcile


def _job_row(**overrides):
    row = {
        "id": "JOB-1",
        "customerName": "Acme Corp",
        "customerContact": "9876543210",
        "customerEmail": "contact@acme.com",
        "description": "Flyers",
        "type": "Print",
        "priority": "Urgent",
        "assignedTo": "Bob (Designer)",
        "price": 1500,
        "currentStage": "Design",
        "createdAt": 1000,
        "updatedAt": 2000,
        "completedAt": None,
        "history": json.dumps(
            [
                {"stage": "Counter", "timestamp": 1000},
                {"stage": "Design", "timestamp": 2000},
            ]
        ),
    }
    row.update(overrides)
    return row


CUSTOMER_ROW = {
    "id": "CUST-1",
    "name": "Acme Corp",
    "phone": "9876543210",
    "email": "",
    "lastVisit": 2000,
    "totalVisits": 3,
}

USER_ROW = {
    "id": "U-1",
    "username": "admin",
    "password": "pbkdf2:sha256$x",
    "name": "System Admin",
    "role": "Admin",
    "isActive": True,
}


def test_reconcile_decodes_json_history():
    """History stored as JSON text should come back as typed entries."""

    restored = reconcile([_job_row()], [CUSTOMER_ROW], [USER_ROW])

    job = restored.jobs[0]
    assert job.history == (
        HistoryEntry(JobStage.COUNTER, 1000),
        HistoryEntry(JobStage.DESIGN, 2000),
    )
    assert job.priority is Priority.URGENT
    assert restored.customers[0].total_visits == 3
    assert restored.users[0].role is UserRole.ADMIN


def test_reconcile_accepts_already_decoded_history():
    row = _job_row(history=[{"stage": "Counter", "timestamp": 1000}], currentStage="Counter")
    job = reconcile([row], [], []).jobs[0]
    assert job.history == (HistoryEntry(JobStage.COUNTER, 1000),)


def test_old_export_rows_take_defaults_for_missing_columns():
    """Rows from exports that predate newer columns fall back to defaults."""

    legacy = {"id": "JOB-OLD", "customerName": "Globex", "description": "Poster"}

    job = reconcile([legacy], [], []).jobs[0]

    assert job.type is JobType.PRINT
    assert job.priority is Priority.NORMAL
    assert job.current_stage is JobStage.COUNTER
    assert job.price == 0
    assert job.history == ()
    assert job.completed_at is None


def test_blank_cells_keep_default_values():
    row = _job_row(priority="", customerEmail=None)
    job = reconcile([row], [], []).jobs[0]
    assert job.priority is Priority.NORMAL
    assert job.customer_email == ""


def test_absent_tables_restore_empty():
    restored = reconcile(None, None, None)
    assert restored.jobs == []
    assert restored.customers == []
    assert restored.users == []


@pytest.mark.parametrize(
    "history",
    [
        "not json",
        json.dumps({"stage": "Counter"}),
        json.dumps([{"stage": "Shipping", "timestamp": 1}]),
        json.dumps([{"stage": "Counter"}]),
    ],
)
def test_malformed_history_fails_whole_restore(history):
    """One bad row should reject the entire document."""

    rows = [_job_row(id="JOB-OK"), _job_row(id="JOB-BAD", history=history)]

    with pytest.raises(RestoreError) as excinfo:
        reconcile(rows, [CUSTOMER_ROW], [USER_ROW])

    assert "Jobs row 2" in str(excinfo.value)


def test_unknown_role_is_reported():
    with pytest.raises(RestoreError):
        reconcile([], [], [dict(USER_ROW, role="Janitor")])


def test_overlay_does_not_mutate_defaults():
    defaults = {"price": 0, "type": "Print"}
    merged = overlay_job_row({"price": 25, "type": None}, defaults)
    assert merged == {"price": 25, "type": "Print"}
    assert defaults == {"price": 0, "type": "Print"}


@pytest.mark.parametrize(
    "overrides",
    [
        {"price": -5},
        {"currentStage": "Completed", "history": json.dumps([{"stage": "Completed", "timestamp": 1000}])},
        {"completedAt": 2000},
        {"currentStage": "Production"},
        {
            "history": json.dumps(
                [
                    {"stage": "Counter", "timestamp": 2000},
                    {"stage": "Design", "timestamp": 1000},
                ]
            )
        },
    ],
    ids=["negative-price", "completed-without-time", "time-without-completed", "stage-off-history", "unsorted-history"],
)
def test_inconsistent_job_ledger_fails_whole_restore(overrides):
    """Rows that decode but break the job ledger rules are rejected too."""

    rows = [_job_row(id="JOB-OK"), _job_row(id="JOB-BAD", **overrides)]

    with pytest.raises(RestoreError) as excinfo:
        reconcile(rows, [CUSTOMER_ROW], [USER_ROW])

    assert "Jobs row 2" in str(excinfo.value)


def test_duplicate_job_ids_fail_restore():
    rows = [_job_row(), _job_row(description="Reprint")]

    with pytest.raises(RestoreError) as excinfo:
        reconcile(rows, [], [])

    assert "Jobs row 2" in str(excinfo.value)
    assert "JOB-1" in str(excinfo.value)


@pytest.mark.parametrize("price", ["Infinity", "NaN", "1.5", "12abc"])
def test_non_integral_price_is_reported(price):
    with pytest.raises(RestoreError) as excinfo:
        reconcile([_job_row(price=price)], [], [])

    assert "Jobs row 1" in str(excinfo.value)


def test_whole_float_price_is_accepted():
    job = reconcile([_job_row(price=250.0)], [], []).jobs[0]
    assert job.price == 250
