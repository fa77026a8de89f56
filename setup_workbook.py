"""Utility for initializing the PrintFlow master workbook.

The module doubles as a script (``python setup_workbook.py``) and as a library
used by tests or other tooling. Shared helpers keep the workbook bootstrap
logic consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Optional, Sequence, Tuple
import sys

from printflow.constants import SHEET_COLUMNS, Collection, JobType, Priority, UserRole
from printflow.data_manager import WorkbookStore, new_workbook, save_workbook, write_versions
from printflow.directory import add_user, upsert_customer
from printflow.workflow import JobDraft, advance, create_job

CONFIG_FILE = "config.ini"

DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_NAME = "System Admin"


HOUR_MS = 3_600_000
DAY_MS = 24 * HOUR_MS

# Demo accounts share the admin password so a fresh install can log in as any of them.
DEMO_USERS: Tuple[Tuple[str, str, UserRole], ...] = (
    ("alice", "Alice (Counter)", UserRole.COUNTER),
    ("bob", "Bob (Designer)", UserRole.DESIGNER),
    ("eva", "Eva (Cashier)", UserRole.CASHIER),
)


@dataclass(frozen=True)
class DemoJob:
    """A sample job: when it was taken in and when each later move happened.

    Offsets are milliseconds before the seeding moment; ``moves_ago`` holds one
    entry per stage advance, oldest first.
    """

    job_id: str
    draft: JobDraft
    created_ago: int
    moves_ago: Tuple[int, ...] = ()


DEMO_JOBS: Tuple[DemoJob, ...] = (
    DemoJob(
        job_id="JOB-1001",
        draft=JobDraft(
            customer_name="Acme Corp",
            description="500 Business Cards",
            type=JobType.PRINT,
            priority=Priority.URGENT,
            assigned_to="Bob (Designer)",
            price=1500,
            customer_contact="9876543210",
            customer_email="contact@acme.com",
        ),
        created_ago=4 * HOUR_MS,
        moves_ago=(2 * HOUR_MS,),
    ),
    DemoJob(
        job_id="JOB-1002",
        draft=JobDraft(
            customer_name="Amit Sharma",
            description="Thesis Binding",
            type=JobType.BINDING,
            assigned_to="David (Finisher)",
            price=300,
            customer_contact="9988776655",
            customer_email="amit.sharma@example.com",
        ),
        created_ago=5 * HOUR_MS,
        moves_ago=(3 * HOUR_MS, HOUR_MS),
    ),
    DemoJob(
        job_id="JOB-900",
        draft=JobDraft(
            customer_name="Local Gym",
            description="Flyers",
            type=JobType.PRINT,
            assigned_to="Eva (Cashier)",
            price=5000,
            customer_contact="8888888888",
        ),
        created_ago=2 * DAY_MS,
        moves_ago=(46 * HOUR_MS, 43 * HOUR_MS, 41 * HOUR_MS, 38 * HOUR_MS, 36 * HOUR_MS),
    ),
)


@dataclass(frozen=True)
class SetupSettings:
    """Type-safe representation of configuration values used during setup."""

    data_file: Path


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)

    try:
        data_file_raw = parser.get("System", "DataFile")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()

    return SetupSettings(data_file=data_file_path)


def create_master_workbook(
    destination: Path,
    *,
    admin_password: str,
    admin_username: str = DEFAULT_ADMIN_USERNAME,
    overwrite: bool = False,
) -> Path:
    """Create the PrintFlow master workbook at ``destination``.

    The workbook receives every sheet with its header row, a ``Meta`` sheet
    with all collection versions at zero, and a single active admin account.
    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing master workbook: {destination}"
        )

    workbook = new_workbook(SHEET_COLUMNS)
    write_versions(workbook, {})
    save_workbook(workbook, destination)

    admins = add_user(
        [],
        username=admin_username,
        password=admin_password,
        name=DEFAULT_ADMIN_NAME,
        role=UserRole.ADMIN,
    )
    WorkbookStore(destination).save(Collection.USERS, admins, expected_version=0)
    return destination


def seed_demo_data(destination: Path, *, password: str, now: Optional[int] = None) -> Path:
    """Add the sample accounts, jobs and customers to an existing workbook.

    Jobs are replayed through the normal create/advance rules so their
    histories are consistent, and all three collections are written together.
    """

    if now is None:
        now = int(datetime.now(UTC).timestamp() * 1000)

    store = WorkbookStore(destination)
    users, users_version = store.load_versioned(Collection.USERS)
    jobs, jobs_version = store.load_versioned(Collection.JOBS)
    customers, customers_version = store.load_versioned(Collection.CUSTOMERS)

    for username, name, role in DEMO_USERS:
        users = add_user(users, username=username, password=password, name=name, role=role)

    for demo in DEMO_JOBS:
        taken_in = now - demo.created_ago
        jobs, _ = create_job(jobs, demo.draft, now=taken_in, job_id=demo.job_id)
        for moved_ago in demo.moves_ago:
            jobs = advance(jobs, demo.job_id, now=now - moved_ago)
        customers = upsert_customer(
            customers,
            demo.draft.customer_name,
            demo.draft.customer_contact,
            demo.draft.customer_email,
            now=taken_in,
        )

    store.save_many(
        {
            Collection.USERS: (users, users_version),
            Collection.JOBS: (jobs, jobs_version),
            Collection.CUSTOMERS: (customers, customers_version),
        }
    )
    return Path(destination)


def run_from_config(
    config_path: Path,
    *,
    admin_password: str,
    overwrite: bool = False,
    with_demo_data: bool = False,
) -> Path:
    """Convenience helper mirroring the CLI behavior."""

    settings = load_settings(config_path)
    output_path = create_master_workbook(
        settings.data_file,
        admin_password=admin_password,
        overwrite=overwrite,
    )
    if with_demo_data:
        seed_demo_data(output_path, password=admin_password)
    return output_path


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the PrintFlow data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--admin-password",
        required=True,
        help="Password for the initial 'admin' account.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    parser.add_argument(
        "--with-demo-data",
        action="store_true",
        help="Also add sample staff accounts, jobs and customers.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- PrintFlow Setup Script ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(
            config_path,
            admin_password=args.admin_password,
            overwrite=args.force,
            with_demo_data=args.with_demo_data,
        )
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
