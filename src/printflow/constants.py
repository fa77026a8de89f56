"""Enumerations and schema tables shared across PrintFlow modules.

Centralises domain constants so that the data access layer (DAL), the
workflow and analytics engines, and the CLI rely on a single source of truth
for stage ordering, per-type routing, and workbook column layouts.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping, Sequence


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

PRODUCT_NAME = "PrintFlow"


class JobStage(str, Enum):
    """Stages of the production pipeline, declared in pipeline order."""

    COUNTER = "Counter"
    DESIGN = "Design"
    PRODUCTION = "Production"
    FINISHING = "Finishing"
    CASHIER = "Cashier"
    COMPLETED = "Completed"


class JobType(str, Enum):
    """Kinds of work accepted at the counter."""

    PRINT = "Print"
    XEROX = "Xerox"
    DESIGN = "Design"
    BINDING = "Binding"
    LARGE_FORMAT = "LargeFormat"


class Priority(str, Enum):
    LOW = "Low"
    NORMAL = "Normal"
    URGENT = "Urgent"


class UserRole(str, Enum):
    """Roles a shop account can hold."""

    ADMIN = "Admin"
    COUNTER = "Counter"
    DESIGNER = "Designer"
    PRODUCTION = "Production"
    FINISHER = "Finisher"
    CASHIER = "Cashier"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    JOBS = "Jobs"
    CUSTOMERS = "Customers"
    USERS = "Users"
    META = "Meta"


class Collection(str, Enum):
    """Logical collections exposed by the persistence adapter."""

    JOBS = "jobs"
    CUSTOMERS = "customers"
    USERS = "users"


STAGE_ORDER: tuple[JobStage, ...] = tuple(JobStage)

# Stages a job type never visits. Types not listed walk every stage.
STAGE_SKIPS: Mapping[JobType, frozenset[JobStage]] = {
    JobType.PRINT: frozenset(),
    JobType.XEROX: frozenset({JobStage.DESIGN}),
    JobType.DESIGN: frozenset(),
    JobType.BINDING: frozenset({JobStage.DESIGN}),
    JobType.LARGE_FORMAT: frozenset(),
}

# Stages whose dwell time is reported on the dashboard.
REPORTED_TAT_STAGES: tuple[JobStage, ...] = (
    JobStage.DESIGN,
    JobStage.PRODUCTION,
    JobStage.FINISHING,
)

COLLECTION_SHEETS: Mapping[Collection, SheetName] = {
    Collection.JOBS: SheetName.JOBS,
    Collection.CUSTOMERS: SheetName.CUSTOMERS,
    Collection.USERS: SheetName.USERS,
}

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.JOBS.value: [
        "id",
        "customerName",
        "customerContact",
        "customerEmail",
        "description",
        "type",
        "priority",
        "assignedTo",
        "price",
        "currentStage",
        "createdAt",
        "updatedAt",
        "completedAt",
        "history",
    ],
    SheetName.CUSTOMERS.value: [
        "id",
        "name",
        "phone",
        "email",
        "lastVisit",
        "totalVisits",
    ],
    SheetName.USERS.value: [
        "id",
        "username",
        "password",
        "name",
        "role",
        "isActive",
    ],
    SheetName.META.value: [
        "collection",
        "version",
    ],
}

# Template applied underneath every imported job row so that exports taken
# from older schema versions still produce complete records.
JOB_DEFAULTS: Mapping[str, object] = {
    "customerName": "",
    "customerContact": "",
    "customerEmail": "",
    "description": "",
    "type": JobType.PRINT.value,
    "priority": Priority.NORMAL.value,
    "assignedTo": "",
    "price": 0,
    "currentStage": JobStage.COUNTER.value,
    "createdAt": 0,
    "updatedAt": 0,
    "completedAt": None,
    "history": None,
}

DEFAULT_CASH_WINDOW_DAYS = 14


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "PRODUCT_NAME",
    "JobStage",
    "JobType",
    "Priority",
    "UserRole",
    "SheetName",
    "Collection",
    "STAGE_ORDER",
    "STAGE_SKIPS",
    "REPORTED_TAT_STAGES",
    "COLLECTION_SHEETS",
    "SHEET_COLUMNS",
    "JOB_DEFAULTS",
    "DEFAULT_CASH_WINDOW_DAYS",
]
