"""Utility for initializing a fresh AutoPrime data workbook.

The module doubles as a script (``autoprime-setup``) and as a library used by
tests or other tooling. The workbook it produces holds an empty ``Storage``
sheet plus the default maintenance rules, ready for
:func:`autoprime.core_logic.load_runtime_context`.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log
from .constants import DEFAULT_VIEW
from .entity_store import EntityStore
from .records import MaintenanceRuleRow

# Time-based defaults seeded into every new data file
DEFAULT_MAINTENANCE_RULES: Sequence[MaintenanceRuleRow] = (
    MaintenanceRuleRow(rule_id="rule-1", service_name="Troca de Óleo", interval_months=6),
    MaintenanceRuleRow(rule_id="rule-2", service_name="Alinhamento", interval_months=12),
    MaintenanceRuleRow(rule_id="rule-3", service_name="Correia Dentada", interval_months=48),
)

CONFIG_FILE = data_manager.CONFIG_FILE_NAME


def load_settings(config_path: Path) -> data_manager.ConfigSettings:
    """Read ``config.ini`` and produce :class:`~autoprime.data_manager.ConfigSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory.
    """

    config_path = Path(config_path).expanduser().resolve()
    parser = data_manager.read_config(config_path)
    return data_manager.parse_settings(parser, base_path=config_path.parent)


def create_data_workbook(
    destination: Path,
    *,
    rules: Sequence[MaintenanceRuleRow] = DEFAULT_MAINTENANCE_RULES,
    overwrite: bool = False,
) -> Path:
    """Create the shop's data workbook at ``destination``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing data workbook: {destination}")

    workbook = openpyxl.Workbook()

    # Replace the default sheet openpyxl generates with the storage sheet.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    data_manager.ensure_storage_sheet(workbook)
    bold_font = Font(bold=True)
    sheet = workbook[data_manager.STORAGE_SHEET]
    for column_index in range(1, len(data_manager.STORAGE_HEADERS) + 1):
        sheet.cell(row=1, column=column_index).font = bold_font
    sheet.column_dimensions["A"].width = 32

    backend = data_manager.WorkbookKeyValueStore(workbook, destination, autosave=False)
    store = EntityStore(backend)
    for rule in rules:
        store.maintenance_rules.add(rule)
    store.set_current_view(DEFAULT_VIEW)

    backend.save()
    log.info("Created data workbook '%s' with %d maintenance rule(s)", destination, len(rules))
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the data workbook named by ``config.ini``."""

    settings = load_settings(config_path)
    return create_data_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the AutoPrime data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- AutoPrime Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created data workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
