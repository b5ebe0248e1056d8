"""Tests for bootstrapping a fresh data workbook."""

from __future__ import annotations

import openpyxl
import pytest

from autoprime import data_manager, setup_workbook
from autoprime.entity_store import EntityStore


def test_create_data_workbook_seeds_default_rules(tmp_path):
    """A new data file holds the storage sheet and the three default rules."""

    path = setup_workbook.create_data_workbook(tmp_path / "data.xlsx")

    workbook = openpyxl.load_workbook(path)
    assert workbook.sheetnames == [data_manager.STORAGE_SHEET]
    assert workbook[data_manager.STORAGE_SHEET]["A1"].font.bold

    store = EntityStore(data_manager.WorkbookKeyValueStore.open(path))
    rules = store.maintenance_rules.list()
    assert [(r.rule_id, r.service_name, r.interval_months) for r in rules] == [
        ("rule-1", "Troca de Óleo", 6),
        ("rule-2", "Alinhamento", 12),
        ("rule-3", "Correia Dentada", 48),
    ]
    assert store.clients.list() == []
    assert store.get_current_view() == "dashboard"


def test_create_data_workbook_refuses_to_overwrite(tmp_path):
    path = setup_workbook.create_data_workbook(tmp_path / "data.xlsx")

    with pytest.raises(FileExistsError):
        setup_workbook.create_data_workbook(path)
    setup_workbook.create_data_workbook(path, rules=(), overwrite=True)

    store = EntityStore(data_manager.WorkbookKeyValueStore.open(path))
    assert store.maintenance_rules.list() == []


def test_run_from_config_uses_data_file_entry(config_factory):
    """The setup script writes to the workbook named in config.ini."""

    bundle = config_factory(make_relative=True)
    bundle.workbook_path.unlink()

    output = setup_workbook.run_from_config(bundle.config_path)

    assert output == bundle.workbook_path.resolve()
    assert output.exists()


def test_main_reports_existing_file(config_factory, capsys):
    bundle = config_factory()

    exit_code = setup_workbook.main(["--config", str(bundle.config_path)])

    assert exit_code == 1
    assert "--force" in capsys.readouterr().out
    assert setup_workbook.main(["--config", str(bundle.config_path), "--force"]) == 0
