"""Data access layer for PrintFlow.

This module provides low-level helpers that read from and write to the
master workbook. Business rules belong elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Record types: the immutable ``Job``, ``Customer`` and ``User`` values and
   their row codecs (the job ``history`` column is stored as JSON text).
3. Persistence: :class:`WorkbookStore`, which treats each sheet of the master
   workbook as one whole-collection key and tracks a version token per
   collection in the ``Meta`` sheet.
4. Backups: exporting the three tables to a dated workbook and reading such a
   workbook back as raw, header-keyed rows.
"""


from __future__ import annotations

import configparser
import json
import os
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from zipfile import BadZipFile

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook import Workbook

from . import DEFAULT_LOG_LEVEL, log, resolve_log_level
from .constants import (
    COLLECTION_SHEETS,
    DEFAULT_CASH_WINDOW_DAYS,
    PRODUCT_NAME,
    SHEET_COLUMNS,
    Collection,
    JobStage,
    JobType,
    Priority,
    SheetName,
    UserRole,
)
from .exceptions import RestoreError, StaleSnapshotError, StorageReadError


CONFIG_FILE_NAME = "config.ini"
API_KEY_ENV = "GEMINI_API_KEY"
DEFAULT_AI_MODEL = "gemini-2.5-flash"
JOBS_SHEET = SheetName.JOBS.value
CUSTOMERS_SHEET = SheetName.CUSTOMERS.value
USERS_SHEET = SheetName.USERS.value
META_SHEET = SheetName.META.value

_WORKBOOK_READ_ERRORS = (OSError, KeyError, BadZipFile, InvalidFileException)
_ROW_DECODE_ERRORS = (KeyError, ValueError, TypeError)


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    backup_dir: Path
    cash_window_days: int = DEFAULT_CASH_WINDOW_DAYS
    ai_model: str = DEFAULT_AI_MODEL
    ai_api_key: str = ""
    log_level: str = DEFAULT_LOG_LEVEL
    log_dir: Optional[Path] = None


@dataclass(frozen=True)
class HistoryEntry:
    """One stage a job entered, and when (milliseconds since the epoch)."""

    stage: JobStage
    timestamp: int


@dataclass(frozen=True)
class Job:
    """In-memory view of a row from the ``Jobs`` sheet."""

    id: str
    customer_name: str
    customer_contact: str
    customer_email: str
    description: str
    type: JobType
    priority: Priority
    assigned_to: str
    price: int
    current_stage: JobStage
    created_at: int
    updated_at: int
    completed_at: Optional[int]
    history: Tuple[HistoryEntry, ...]


@dataclass(frozen=True)
class Customer:
    """In-memory view of a row from the ``Customers`` sheet."""

    id: str
    name: str
    phone: str
    email: str
    last_visit: int
    total_visits: int


@dataclass(frozen=True)
class User:
    """In-memory view of a row from the ``Users`` sheet."""

    id: str
    username: str
    password: str
    name: str
    role: UserRole
    is_active: bool


@dataclass(frozen=True)
class BackupDocument:
    """Raw tables read from a backup workbook; ``None`` marks an absent sheet."""

    jobs: Optional[List[Dict[str, Any]]]
    customers: Optional[List[Dict[str, Any]]]
    users: Optional[List[Dict[str, Any]]]


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory contains ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def _resolve_path(raw: str, base_path: Optional[Path]) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        path = (base_path / path).resolve()
    return path


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` must define ``DataFile``, ``ShopName`` and ``SchemaVersion``.
    ``BackupDir`` and the ``[Analytics]``, ``[AI]`` and ``[Logging]`` sections
    are optional. Relative paths are anchored at ``base_path`` (or the current
    working directory). An empty ``ApiKey`` falls back to the
    ``GEMINI_API_KEY`` environment variable.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative paths.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``CashWindowDays`` is not a positive integer or
            ``[Logging] Level`` is not a logging level name.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    backup_dir_raw = parser.get("System", "BackupDir", fallback="backups")
    cash_window_days = parser.getint(
        "Analytics", "CashWindowDays", fallback=DEFAULT_CASH_WINDOW_DAYS)
    if cash_window_days <= 0:
        raise ValueError("CashWindowDays must be a positive integer")
    ai_model = parser.get("AI", "Model", fallback=DEFAULT_AI_MODEL)
    ai_api_key = parser.get("AI", "ApiKey", fallback="") or os.environ.get(API_KEY_ENV, "")
    log_level = parser.get("Logging", "Level", fallback=DEFAULT_LOG_LEVEL).strip().upper() or DEFAULT_LOG_LEVEL
    resolve_log_level(log_level)
    log_dir_raw = parser.get("Logging", "Directory", fallback="").strip()

    return ConfigSettings(
        data_file=_resolve_path(data_file_raw, base_path),
        shop_name=shop_name,
        schema_version=schema_version,
        backup_dir=_resolve_path(backup_dir_raw, base_path),
        cash_window_days=cash_window_days,
        ai_model=ai_model,
        ai_api_key=ai_api_key,
        log_level=log_level,
        log_dir=_resolve_path(log_dir_raw, base_path) if log_dir_raw else None,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open an Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    The workbook is first written to a sibling temporary file and then moved
    over ``destination`` so readers never observe a half-written file.
    Parent directories are created on demand.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    staging = dest.with_name(f".{dest.name}.tmp")
    try:
        workbook.save(staging)
        os.replace(staging, dest)
    finally:
        if staging.exists():
            staging.unlink()


def new_workbook(sheet_names: Iterable[str]) -> Workbook:
    """Create an empty workbook holding the given sheets with bold headers."""

    workbook = openpyxl.Workbook()
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)
    for sheet_name in sheet_names:
        write_records(workbook, sheet_name, [])
    return workbook


def iter_records(workbook: Workbook, sheet_name: str) -> Iterable[Dict[str, Any]]:
    """Iterate over a worksheet and yield header-keyed dictionaries.

    The first row supplies the keys. Fully empty rows are skipped and columns
    without a header are ignored.

    Args:
        workbook (Workbook): Workbook containing ``sheet_name``.
        sheet_name (str): Worksheet to read.

    Yields:
        dict[str, Any]: Raw cell values keyed by column header.
    """

    sheet = workbook[sheet_name]
    rows = sheet.iter_rows(values_only=True)
    header = next(rows, None)
    if header is None:
        return
    for raw in rows:
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield {
                str(key): value
                for key, value in zip(header, raw)
                if key is not None
            }


def write_records(workbook: Workbook, sheet_name: str, rows: Iterable[Sequence[object]]) -> None:
    """Replace the contents of ``sheet_name`` with a header row plus ``rows``.

    The sheet is recreated at its previous position (or appended when new) so
    stale rows from a longer previous snapshot never survive.
    """

    index = None
    if sheet_name in workbook.sheetnames:
        index = workbook.sheetnames.index(sheet_name)
        workbook.remove(workbook[sheet_name])
    sheet = workbook.create_sheet(title=sheet_name, index=index)

    bold_font = Font(bold=True)
    for column_index, column_name in enumerate(SHEET_COLUMNS[sheet_name], start=1):
        cell = sheet.cell(row=1, column=column_index)
        cell.value = column_name
        cell.font = bold_font
    for row in rows:
        sheet.append(list(row))


def encode_history(history: Sequence[HistoryEntry]) -> str:
    """Serialize a history ledger into the JSON text stored in one cell."""

    return json.dumps(
        [{"stage": entry.stage.value, "timestamp": entry.timestamp} for entry in history]
    )


def decode_history(blob: object) -> Tuple[HistoryEntry, ...]:
    """Parse a history cell back into an ordered tuple of entries.

    ``blob`` may be the JSON text written by :func:`encode_history`, an already
    decoded list of ``{"stage", "timestamp"}`` mappings, or empty.

    Raises:
        ValueError: If the text is not valid JSON or an entry is malformed.
    """

    if blob is None or blob == "":
        return ()
    if isinstance(blob, str):
        try:
            decoded = json.loads(blob)
        except json.JSONDecodeError as exc:
            raise ValueError(f"History is not valid JSON: {exc}") from exc
    else:
        decoded = blob
    if not isinstance(decoded, list):
        raise ValueError("History must be a list of entries")

    entries = []
    for item in decoded:
        if not isinstance(item, Mapping):
            raise ValueError(f"History entry must be an object, got {item!r}")
        entries.append(
            HistoryEntry(
                stage=JobStage(item["stage"]),
                timestamp=_as_int(item["timestamp"]),
            )
        )
    return tuple(entries)


def _as_text(value: object) -> str:
    return "" if value is None else str(value)


def _as_int(value: object) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}")
    if isinstance(value, int):
        return value
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Expected a number, got {value!r}") from exc
    if not number.is_finite() or number != number.to_integral_value():
        raise ValueError(f"Expected a whole number, got {value!r}")
    return int(number)


def _as_optional_int(value: object) -> Optional[int]:
    if value is None or value == "":
        return None
    return _as_int(value)


def _as_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return bool(value)


def serialize_job(record: Job) -> List[object]:
    """Convert a job into the ``Jobs`` sheet column ordering."""

    return [
        record.id,
        record.customer_name,
        record.customer_contact,
        record.customer_email,
        record.description,
        record.type.value,
        record.priority.value,
        record.assigned_to,
        record.price,
        record.current_stage.value,
        record.created_at,
        record.updated_at,
        record.completed_at,
        encode_history(record.history),
    ]


def serialize_customer(record: Customer) -> List[object]:
    return [
        record.id,
        record.name,
        record.phone,
        record.email,
        record.last_visit,
        record.total_visits,
    ]


def serialize_user(record: User) -> List[object]:
    return [
        record.id,
        record.username,
        record.password,
        record.name,
        record.role.value,
        record.is_active,
    ]


def deserialize_job(record: Mapping[str, Any]) -> Job:
    """Convert a header-keyed ``Jobs`` row into a :class:`Job`.

    Text columns default to empty strings, numeric columns are coerced to
    ``int`` (Excel may hand back floats or numeric strings) and the ``history``
    blob is decoded via :func:`decode_history`.

    Raises:
        KeyError: If a required column is missing.
        ValueError: If an enum value, number, or the history blob is invalid.
    """

    return Job(
        id=_as_text(record["id"]),
        customer_name=_as_text(record.get("customerName")),
        customer_contact=_as_text(record.get("customerContact")),
        customer_email=_as_text(record.get("customerEmail")),
        description=_as_text(record.get("description")),
        type=JobType(record["type"]),
        priority=Priority(record["priority"]),
        assigned_to=_as_text(record.get("assignedTo")),
        price=_as_int(record["price"]),
        current_stage=JobStage(record["currentStage"]),
        created_at=_as_int(record["createdAt"]),
        updated_at=_as_int(record["updatedAt"]),
        completed_at=_as_optional_int(record.get("completedAt")),
        history=decode_history(record.get("history")),
    )


def deserialize_customer(record: Mapping[str, Any]) -> Customer:
    return Customer(
        id=_as_text(record["id"]),
        name=_as_text(record["name"]),
        phone=_as_text(record.get("phone")),
        email=_as_text(record.get("email")),
        last_visit=_as_int(record["lastVisit"]),
        total_visits=_as_int(record["totalVisits"]),
    )


def deserialize_user(record: Mapping[str, Any]) -> User:
    return User(
        id=_as_text(record["id"]),
        username=_as_text(record["username"]),
        password=_as_text(record.get("password")),
        name=_as_text(record.get("name")),
        role=UserRole(record["role"]),
        is_active=_as_bool(record.get("isActive")),
    )


_SERIALIZERS = {
    Collection.JOBS: serialize_job,
    Collection.CUSTOMERS: serialize_customer,
    Collection.USERS: serialize_user,
}

_DESERIALIZERS = {
    Collection.JOBS: deserialize_job,
    Collection.CUSTOMERS: deserialize_customer,
    Collection.USERS: deserialize_user,
}


def read_versions(workbook: Workbook) -> Dict[str, int]:
    """Return the version token of every collection recorded in ``Meta``."""

    if META_SHEET not in workbook.sheetnames:
        return {}
    return {
        str(row["collection"]): _as_int(row["version"])
        for row in iter_records(workbook, META_SHEET)
    }


def write_versions(workbook: Workbook, versions: Mapping[str, int]) -> None:
    write_records(
        workbook,
        META_SHEET,
        [[collection.value, versions.get(collection.value, 0)] for collection in Collection],
    )


class WorkbookStore:
    """Whole-collection persistence backed by the master workbook.

    Every collection lives on its own sheet and is always read and written in
    full. Each successful :meth:`save` bumps that collection's version token,
    which callers can pass back as ``expected_version`` to detect a write that
    happened between their load and their save.
    """

    def __init__(self, data_file: Path):
        self.data_file = Path(data_file).expanduser().resolve()

    def _open_or_create(self) -> Workbook:
        if self.data_file.exists():
            return open_workbook(self.data_file)
        log.info("Creating master workbook '%s'", self.data_file)
        return new_workbook(SHEET_COLUMNS)

    def _read(self, collection: Collection) -> Tuple[list, int]:
        sheet_name = COLLECTION_SHEETS[collection].value
        try:
            workbook = open_workbook(self.data_file)
            if sheet_name not in workbook.sheetnames:
                raise StorageReadError(f"Sheet '{sheet_name}' missing from {self.data_file}")
            decode = _DESERIALIZERS[collection]
            items = [decode(row) for row in iter_records(workbook, sheet_name)]
            version = read_versions(workbook).get(collection.value, 0)
        except StorageReadError:
            raise
        except _WORKBOOK_READ_ERRORS + _ROW_DECODE_ERRORS as exc:
            raise StorageReadError(
                f"Unable to read {collection.value} from {self.data_file}: {exc}"
            ) from exc
        return items, version

    def load(self, collection: Collection) -> list:
        """Return every record of ``collection``; ``[]`` when unreadable."""

        items, _ = self.load_versioned(collection)
        return items

    def load_versioned(self, collection: Collection) -> Tuple[list, int]:
        """Return ``(items, version)``; unreadable data yields ``([], 0)``."""

        collection = Collection(collection)
        try:
            items, version = self._read(collection)
        except StorageReadError as exc:
            log.error("Failed to load %s: %s", collection.value, exc)
            return [], 0
        log.debug("Loaded %d %s (version %d)", len(items), collection.value, version)
        return items, version

    def save(self, collection: Collection, items: Sequence[object], *, expected_version: Optional[int] = None) -> int:
        """Overwrite ``collection`` with ``items`` and return the new version.

        Raises:
            StaleSnapshotError: If ``expected_version`` is given and the stored
                version differs from it.
        """

        collection = Collection(collection)
        return self.save_many({collection: (items, expected_version)})[collection]

    def save_many(
        self,
        updates: Mapping[Collection, Tuple[Sequence[object], Optional[int]]],
    ) -> Dict[Collection, int]:
        """Overwrite several collections in one workbook write.

        ``updates`` maps each collection to ``(items, expected_version)``.
        Every version is checked before anything is written, so either all
        collections change or none do.

        Returns:
            dict[Collection, int]: The new version of each written collection.

        Raises:
            StaleSnapshotError: If any expected version differs from the
                stored one.
        """

        workbook = self._open_or_create()
        versions = read_versions(workbook)
        for collection, (_, expected_version) in updates.items():
            collection = Collection(collection)
            current = versions.get(collection.value, 0)
            if expected_version is not None and expected_version != current:
                log.warning(
                    "Rejected stale write to %s: expected version %d, found %d",
                    collection.value,
                    expected_version,
                    current,
                )
                raise StaleSnapshotError(collection.value, expected_version, current)

        written: Dict[Collection, int] = {}
        for collection, (items, _) in updates.items():
            collection = Collection(collection)
            encode = _SERIALIZERS[collection]
            write_records(workbook, COLLECTION_SHEETS[collection].value, [encode(item) for item in items])
            versions[collection.value] = versions.get(collection.value, 0) + 1
            written[collection] = versions[collection.value]
        write_versions(workbook, versions)
        save_workbook(workbook, self.data_file)
        for collection, version in written.items():
            log.info("Saved %d %s (version %d)", len(updates[collection][0]), collection.value, version)
        return written

    def replace_all(self, jobs: Sequence[Job], customers: Sequence[Customer], users: Sequence[User]) -> None:
        """Replace all three collections with a single workbook write."""

        self.save_many(
            {
                Collection.JOBS: (jobs, None),
                Collection.CUSTOMERS: (customers, None),
                Collection.USERS: (users, None),
            }
        )
        log.info(
            "Replaced all collections (%d jobs, %d customers, %d users)",
            len(jobs),
            len(customers),
            len(users),
        )


def backup_filename(today: date) -> str:
    """Return the conventional backup file name for ``today``."""

    return f"{PRODUCT_NAME}_DB_{today.isoformat()}.xlsx"


def export_backup(
    jobs: Sequence[Job],
    customers: Sequence[Customer],
    users: Sequence[User],
    *,
    directory: Path,
    today: date,
) -> Path:
    """Write the three tables to ``<directory>/PrintFlow_DB_<date>.xlsx``.

    Returns:
        Path: Location of the written backup.
    """

    workbook = new_workbook([])
    write_records(workbook, JOBS_SHEET, [serialize_job(job) for job in jobs])
    write_records(workbook, CUSTOMERS_SHEET, [serialize_customer(c) for c in customers])
    write_records(workbook, USERS_SHEET, [serialize_user(u) for u in users])
    destination = Path(directory).expanduser().resolve() / backup_filename(today)
    save_workbook(workbook, destination)
    log.info("Exported backup to '%s'", destination)
    return destination


def read_backup(path: Path) -> BackupDocument:
    """Read a backup workbook into raw rows without interpreting them.

    Raises:
        RestoreError: If the file is missing or is not a readable workbook.
    """

    try:
        workbook = open_workbook(path)
    except _WORKBOOK_READ_ERRORS as exc:
        raise RestoreError(f"Unable to read backup '{path}': {exc}") from exc

    def _table(sheet_name: str) -> Optional[List[Dict[str, Any]]]:
        if sheet_name not in workbook.sheetnames:
            log.warning("Backup '%s' has no '%s' sheet", path, sheet_name)
            return None
        return list(iter_records(workbook, sheet_name))

    return BackupDocument(
        jobs=_table(JOBS_SHEET),
        customers=_table(CUSTOMERS_SHEET),
        users=_table(USERS_SHEET),
    )
