"""Data access layer for the AutoPrime shop.

This module provides the low-level helpers that locate configuration, open
and save the data workbook, and expose the workbook as a plain key-value
store. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Key-value access: reading and writing serialized collections through the
   :class:`KeyValueStore` interface, either in memory or on the workbook's
   ``Storage`` sheet.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, Optional

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import DEFAULT_INTERVAL_MONTHS, DEFAULT_WARNING_WINDOW_DAYS


CONFIG_FILE_NAME = "config.ini"
STORAGE_SHEET = "Storage"
STORAGE_HEADERS = ("Key", "Value")
# Excel refuses cells longer than 32 767 characters; stay safely below it.
CELL_CHUNK_SIZE = 32_000


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    default_interval_months: int = DEFAULT_INTERVAL_MONTHS
    warning_window_days: int = DEFAULT_WARNING_WINDOW_DAYS


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. When no explicit path is given the function walks
    up from the current working directory toward the filesystem root looking
    for a file named ``CONFIG_FILE_NAME``. The first match wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
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
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration data.
            Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The ``[System]`` section is mandatory. The ``[Maintenance]`` section is
    optional and falls back to the package defaults for the maintenance
    interval and the warning window. Relative ``DataFile`` entries are anchored
    to ``base_path`` (or the current working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor relative data files.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If a maintenance option is not a positive integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    interval_months = parser.getint(
        "Maintenance", "DefaultIntervalMonths", fallback=DEFAULT_INTERVAL_MONTHS)
    warning_days = parser.getint(
        "Maintenance", "WarningWindowDays", fallback=DEFAULT_WARNING_WINDOW_DAYS)
    if interval_months < 1 or warning_days < 0:
        raise ValueError("Maintenance settings must be positive integers")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        default_interval_months=interval_months,
        warning_window_days=warning_days,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the data workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def ensure_storage_sheet(workbook: Workbook) -> None:
    """Create the ``Storage`` sheet with its header row when it is missing."""

    if STORAGE_SHEET in workbook.sheetnames:
        return
    sheet = workbook.create_sheet(title=STORAGE_SHEET)
    sheet.append(list(STORAGE_HEADERS))
    log.debug("Created '%s' sheet", STORAGE_SHEET)


def locate_row(workbook: Workbook, sheet_name: str, key_value: str) -> Optional[int]:
    """Find the row whose first column equals ``key_value``.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based row index when a match is found, otherwise ``None``.
            The header row is never matched.
    """

    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, max_col=1, values_only=True), start=2):
        if row[0] == key_value:
            return row_idx
    return None


def split_value(value: str, chunk_size: int = CELL_CHUNK_SIZE) -> list[str]:
    """Split a serialized value into cell-sized chunks (at least one chunk)."""

    if not value:
        return [""]
    return [value[start:start + chunk_size] for start in range(0, len(value), chunk_size)]


def _write_text(cell, value: Optional[str]) -> None:
    """Store ``value`` verbatim; openpyxl would read a leading ``=`` as a formula."""

    cell.value = value
    if value is not None:
        cell.data_type = "s"


class KeyValueStore:
    """Interface of the persistent store the entity layer writes through.

    Implementations store opaque serialized strings. ``get`` returns ``None``
    for absent keys and never raises for a missing entry.
    """

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def keys(self) -> Iterator[str]:
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    """Dictionary-backed store used by tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def keys(self) -> Iterator[str]:
        return iter(list(self._data))


class WorkbookKeyValueStore(KeyValueStore):
    """Key-value store kept on the ``Storage`` sheet of the data workbook.

    Each key occupies one row: the key in column A and the value split across
    columns B onwards. With ``autosave`` enabled every :meth:`set` writes the
    workbook back to ``path`` so a mutation is durable as soon as it returns.
    """

    def __init__(self, workbook: Workbook, path: Path, *, autosave: bool = True) -> None:
        self.workbook = workbook
        self.path = Path(path)
        self.autosave = autosave
        ensure_storage_sheet(self.workbook)

    @classmethod
    def open(cls, data_file: Path, *, autosave: bool = True) -> "WorkbookKeyValueStore":
        """Open an existing workbook file as a key-value store."""

        workbook = open_workbook(data_file)
        return cls(workbook, Path(data_file).expanduser().resolve(), autosave=autosave)

    def get(self, key: str) -> Optional[str]:
        row_index = locate_row(self.workbook, STORAGE_SHEET, key)
        if row_index is None:
            return None
        sheet = self.workbook[STORAGE_SHEET]
        row = next(sheet.iter_rows(min_row=row_index, max_row=row_index, values_only=True))
        chunks = [str(cell) for cell in row[1:] if cell is not None]
        return "".join(chunks)

    def set(self, key: str, value: str) -> None:
        sheet = self.workbook[STORAGE_SHEET]
        chunks = split_value(value)
        row_index = locate_row(self.workbook, STORAGE_SHEET, key)
        if row_index is None:
            row_index = sheet.max_row + 1
            sheet.cell(row=row_index, column=1, value=key)
        width = max(sheet.max_column, len(chunks) + 1)
        for column in range(2, width + 1):
            chunk = chunks[column - 2] if column - 2 < len(chunks) else None
            _write_text(sheet.cell(row=row_index, column=column), chunk)
        if self.autosave:
            self.save()

    def keys(self) -> Iterator[str]:
        sheet = self.workbook[STORAGE_SHEET]
        for row in sheet.iter_rows(min_row=2, max_col=1, values_only=True):
            if row[0] is not None:
                yield str(row[0])

    def save(self) -> None:
        """Write the workbook to its path."""

        save_workbook(self.workbook, self.path)
        log.debug("Saved workbook store '%s'", self.path)
