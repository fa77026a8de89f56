"""Shared pytest fixtures and utilities for PrintFlow tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, Sequence

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from printflow import cli, constants, core_logic, data_manager  # noqa: E402
from printflow.constants import JobStage, JobType, Priority  # noqa: E402
from printflow.data_manager import HistoryEntry, Job  # noqa: E402
from setup_workbook import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
ADMIN_PASSWORD = "s3cret"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n"
    "BackupDir = {backup_dir}\n\n"
    "[Analytics]\n"
    "CashWindowDays = 14\n\n"
    "[AI]\n"
    "Model = gemini-2.5-flash\n"
    "ApiKey =\n"
)

MINUTE = 60_000
HOUR = 60 * MINUTE
DAY = 24 * HOUR


def local_ms(*args: int) -> int:
    """Milliseconds since the epoch for a naive local ``datetime(*args)``."""

    return int(datetime(*args).timestamp() * 1000)


def make_job(
    job_id: str = "JOB-1",
    *,
    stages: Sequence[tuple[JobStage, int]] | None = None,
    price: int = 0,
    job_type: JobType = JobType.PRINT,
    assigned_to: str = "",
    priority: Priority = Priority.NORMAL,
    customer_name: str = "Acme Corp",
) -> Job:
    """Build a consistent job whose history is ``stages``."""

    if stages is None:
        stages = [(JobStage.COUNTER, local_ms(2025, 3, 10, 9, 0))]
    history = tuple(HistoryEntry(stage=stage, timestamp=ts) for stage, ts in stages)
    current, last_ts = stages[-1]
    return Job(
        id=job_id,
        customer_name=customer_name,
        customer_contact="9876543210",
        customer_email="contact@acme.com",
        description="500 Business Cards",
        type=job_type,
        priority=priority,
        assigned_to=assigned_to,
        price=price,
        current_stage=current,
        created_at=stages[0][1],
        updated_at=last_ts,
        completed_at=last_ts if current is JobStage.COMPLETED else None,
        history=history,
    )


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    shop_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "printflow_master.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, admin_password=ADMIN_PASSWORD, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Test Print Shop",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}")
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                backup_dir="backups",
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def store(tmp_path: Path) -> data_manager.WorkbookStore:
    """A store pointing at a workbook that does not exist yet."""

    return data_manager.WorkbookStore(tmp_path / "store.xlsx")


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="printflow-cli", description="PrintFlow CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
