"""Tests for the master workbook bootstrap script."""

from __future__ import annotations

import openpyxl
import pytest

from shop_ledger import data_manager, setup_excel
from shop_ledger.constants import Collection


def _write_config(directory, *, data_file="ledger.xlsx", employee="E-OWNER"):
    config_path = directory / "config.ini"
    config_path.write_text(
        "[System]\n"
        f"DataFile = {data_file}\n\n"
        "[Defaults]\n"
        f"DefaultEmployee = {employee}\n"
    )
    return config_path


def test_build_master_workbook_creates_every_sheet():
    """Each collection gets a sheet whose header matches the column layout."""

    workbook = setup_excel.build_master_workbook(default_employee_id="E-OWNER")

    assert set(workbook.sheetnames) == set(data_manager.SHEET_COLUMNS)
    data_manager.validate_workbook_layout(workbook)
    products = workbook[Collection.PRODUCTS.value]
    assert [cell.value for cell in products[1]] == list(data_manager.SHEET_COLUMNS[Collection.PRODUCTS.value])
    assert products.cell(row=1, column=1).font.bold


def test_build_master_workbook_seeds_default_employee():
    workbook = setup_excel.build_master_workbook(default_employee_id="E-OWNER")

    employees = [record for _row, record in data_manager.iter_records(workbook, Collection.EMPLOYEES.value)]
    assert len(employees) == 1
    assert employees[0]["EmployeeID"] == "E-OWNER"
    assert employees[0]["IsActive"] is True


def test_create_master_workbook_refuses_to_overwrite(tmp_path):
    target = tmp_path / "ledger.xlsx"
    setup_excel.create_master_workbook(target, default_employee_id="E-OWNER")

    with pytest.raises(FileExistsError):
        setup_excel.create_master_workbook(target, default_employee_id="E-OWNER")

    setup_excel.create_master_workbook(target, default_employee_id="E-OTHER", overwrite=True)
    reopened = openpyxl.load_workbook(target)
    assert reopened[Collection.EMPLOYEES.value].cell(row=2, column=1).value == "E-OTHER"


def test_load_settings_resolves_relative_data_file(tmp_path):
    config_path = _write_config(tmp_path)

    settings = setup_excel.load_settings(config_path)

    assert settings.data_file == (tmp_path / "ledger.xlsx").resolve()
    assert settings.default_employee_id == "E-OWNER"


def test_load_settings_requires_defaults_section(tmp_path):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nDataFile = ledger.xlsx\n")

    with pytest.raises(KeyError):
        setup_excel.load_settings(config_path)


def test_main_creates_workbook_then_requires_force(tmp_path, capsys):
    """A second run fails unless --force is given."""

    config_path = _write_config(tmp_path)

    assert setup_excel.main(["--config", str(config_path)]) == 0
    assert (tmp_path / "ledger.xlsx").exists()
    assert setup_excel.main(["--config", str(config_path)]) == 1
    assert "--force" in capsys.readouterr().out
    assert setup_excel.main(["--config", str(config_path), "--force"]) == 0


def test_main_reports_missing_config(tmp_path):
    assert setup_excel.main(["--config", str(tmp_path / "absent.ini")]) == 1
