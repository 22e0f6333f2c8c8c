"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from shop_ledger import constants, data_manager

PRODUCTS = constants.Collection.PRODUCTS.value
EMPLOYEES = constants.Collection.EMPLOYEES.value


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_parent_directory(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=master_workbook.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    empty = tmp_path / "empty"
    empty.mkdir()
    monkeypatch.chdir(empty)
    monkeypatch.setattr(data_manager, "CONFIG_FILE_NAME", "shop-ledger-missing-config.ini")
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "BusinessName") == "Test Shop"
    assert parser.get("Defaults", "DefaultEmployee") == "E-DEFAULT"


def test_read_config_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    parser = configparser.ConfigParser()
    bundle = config_factory(make_relative=True)
    parser.read(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)
    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.default_employee_id == "E-DEFAULT"


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_applies_optional_defaults(tmp_path):
    """Inventory and Ledger sections are optional."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=book.xlsx\nBusinessName=Shop\nSchemaVersion=2.0.0\n"
        "[Defaults]\nDefaultEmployee=E1\n"
    )
    settings = data_manager.parse_settings(parser, base_path=tmp_path)
    assert settings.timezone == "UTC"
    assert settings.allow_negative_stock is False
    assert settings.commit_attempts == data_manager.DEFAULT_COMMIT_ATTEMPTS


def test_parse_settings_reads_inventory_and_ledger_options(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=book.xlsx\nBusinessName=Shop\nSchemaVersion=2.0.0\nTimezone=Europe/Lisbon\n"
        "[Defaults]\nDefaultEmployee=E1\n"
        "[Inventory]\nAllowNegativeStock=yes\n"
        "[Ledger]\nCommitAttempts=5\n"
    )
    settings = data_manager.parse_settings(parser, base_path=tmp_path)
    assert settings.timezone == "Europe/Lisbon"
    assert settings.allow_negative_stock is True
    assert settings.commit_attempts == 5


def test_parse_settings_rejects_zero_commit_attempts(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=book.xlsx\nBusinessName=Shop\nSchemaVersion=2.0.0\n"
        "[Defaults]\nDefaultEmployee=E1\n[Ledger]\nCommitAttempts=0\n"
    )
    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_open_workbook_returns_openpyxl_instance(master_workbook_path):
    """open_workbook should hand back a loaded Workbook object."""

    workbook = data_manager.open_workbook(master_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)


def test_open_workbook_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_save_workbook_with_destination_creates_copy(master_workbook_path, tmp_path):
    """Providing a destination should create a new file independent of the source."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_record(workbook, EMPLOYEES, {"EmployeeID": "E2", "EmployeeName": "Jordan", "IsActive": True})
    copy_path = tmp_path / "nested" / "copy.xlsx"
    data_manager.save_workbook(workbook, destination=copy_path)

    copy = openpyxl.load_workbook(copy_path)
    ids = [row[0] for row in copy[EMPLOYEES].iter_rows(min_row=2, values_only=True)]
    assert "E2" in ids


def test_refresh_workbook_returns_new_instance(master_workbook_path):
    """refresh_workbook should return a freshly loaded workbook from disk."""

    original = data_manager.open_workbook(master_workbook_path)
    data_manager.append_record(original, PRODUCTS, {"ProductID": "P200", "ProductName": "Bars"})
    data_manager.save_workbook(original, master_workbook_path)

    refreshed = data_manager.refresh_workbook(master_workbook_path)
    assert refreshed is not original
    assert data_manager.locate_row(refreshed, PRODUCTS, "ProductID", "P200") == 2


def test_validate_workbook_layout_accepts_fresh_workbook(workbook):
    data_manager.validate_workbook_layout(workbook)


def test_validate_workbook_layout_lists_missing_sheets_and_columns(workbook):
    """Every problem should be reported in one KeyError."""

    workbook.remove(workbook[constants.Collection.COUNTERS.value])
    workbook[PRODUCTS].cell(row=1, column=5).value = "Stok"

    with pytest.raises(KeyError) as excinfo:
        data_manager.validate_workbook_layout(workbook)

    message = str(excinfo.value)
    assert "Counters" in message
    assert "Stock" in message


def test_iter_records_skips_blank_rows(workbook):
    data_manager.append_record(workbook, PRODUCTS, {"ProductID": "P1", "ProductName": "A"})
    workbook[PRODUCTS].append([None] * 9)
    data_manager.append_record(workbook, PRODUCTS, {"ProductID": "P2", "ProductName": "B"})

    records = list(data_manager.iter_records(workbook, PRODUCTS))

    assert [(idx, record["ProductID"]) for idx, record in records] == [(2, "P1"), (4, "P2")]


def test_append_record_rejects_unknown_columns(workbook):
    with pytest.raises(KeyError):
        data_manager.append_record(workbook, PRODUCTS, {"ProductID": "P1", "Colour": "red"})


def test_update_cells_returns_previous_values(workbook):
    """update_cells should hand back what it overwrote so callers can undo."""

    row = data_manager.append_record(workbook, PRODUCTS, {"ProductID": "P1", "ProductName": "Old", "Stock": 3})

    previous = data_manager.update_cells(workbook, PRODUCTS, row, {"ProductName": "New", "Stock": 4})

    assert previous == {"ProductName": "Old", "Stock": 3}
    assert data_manager.read_record(workbook, PRODUCTS, row)["ProductName"] == "New"


def test_update_cells_unknown_column_raises(workbook):
    row = data_manager.append_record(workbook, PRODUCTS, {"ProductID": "P1"})
    with pytest.raises(KeyError):
        data_manager.update_cells(workbook, PRODUCTS, row, {"Nope": 1})


def test_locate_row_returns_row_index(workbook):
    data_manager.append_record(workbook, PRODUCTS, {"ProductID": "P600", "ProductName": "Snack"})
    assert data_manager.locate_row(workbook, PRODUCTS, "ProductID", "P600") == 2


def test_locate_row_returns_none_when_missing(workbook):
    assert data_manager.locate_row(workbook, PRODUCTS, "ProductID", "NOPE") is None


def test_locate_row_unknown_column_raises(workbook):
    with pytest.raises(KeyError):
        data_manager.locate_row(workbook, PRODUCTS, "Barcode", "123")


def test_delete_row_removes_record(workbook):
    row = data_manager.append_record(workbook, PRODUCTS, {"ProductID": "P1"})
    data_manager.delete_row(workbook, PRODUCTS, row)
    assert data_manager.locate_row(workbook, PRODUCTS, "ProductID", "P1") is None


def test_to_decimal_goes_through_text_for_floats():
    """Floats read back from Excel must not leak binary artefacts into money."""

    assert data_manager.to_decimal(0.1) == Decimal("0.1")
    assert data_manager.to_decimal(None) == Decimal("0.00")
    with pytest.raises(ValueError):
        data_manager.to_decimal("abc")


def test_to_date_accepts_strings_dates_and_datetimes():
    assert data_manager.to_date("2024-02-29") == date(2024, 2, 29)
    assert data_manager.to_date(date(2024, 3, 1)) == date(2024, 3, 1)
    assert data_manager.to_date(datetime(2024, 3, 2, 8, 0)) == date(2024, 3, 2)


def test_serialize_product_leaves_store_columns_out():
    """CreatedAt and Version belong to the store, not to callers."""

    row = data_manager.ProductRow("P1", "Name", Decimal("1.25"), Decimal("0.50"), 4, None, True)
    serialized = data_manager.serialize_product(row)
    assert "CreatedAt" not in serialized
    assert "Version" not in serialized
    assert serialized["Stock"] == 4


def test_deserialize_product_coerces_cell_values():
    record = data_manager.deserialize_product(
        {
            "ProductID": "P9",
            "ProductName": "Bar",
            "SalePrice": 2.75,
            "UnitCost": "1.10",
            "Stock": 7.0,
            "SupplierID": None,
            "IsActive": "TRUE",
            "CreatedAt": "2024-01-15T09:30:00+00:00",
            "Version": 2,
        }
    )
    assert record.sale_price == Decimal("2.75")
    assert record.stock == 7
    assert record.is_active is True
    assert record.version == 2


def test_deserialize_sale_keeps_missing_adjustments_as_none():
    """No discount must stay distinguishable from a 0% discount."""

    record = data_manager.deserialize_sale(
        {
            "SaleID": "S1",
            "ReceiptNumber": "R-240115-0001",
            "EmployeeID": "E1",
            "PaymentMethod": "cash",
            "PaymentStatus": "paid",
            "Subtotal": 10,
            "Total": 10,
            "OrderDiscountKind": None,
            "OrderDiscountValue": None,
            "TaxKind": "percentage",
            "TaxValue": 0,
        }
    )
    assert record.order_discount_kind is None
    assert record.order_discount_value is None
    assert record.tax_value == Decimal("0")
    assert record.customer_id is None


def test_deserialize_bill_parses_due_date_and_recurrence():
    record = data_manager.deserialize_bill(
        {
            "BillID": "B1",
            "Vendor": "Power Co",
            "Amount": "80.00",
            "DueDate": "2024-01-31",
            "Status": "unpaid",
            "Category": "Utilities",
            "RecurrenceFrequency": 1,
            "RecurrencePeriod": "months",
        }
    )
    assert record.due_date == date(2024, 1, 31)
    assert record.is_recurring is True


def test_serialize_bill_writes_iso_due_date():
    row = data_manager.BillRow(
        bill_id="B1",
        vendor="Landlord",
        description="Rent",
        amount=Decimal("900"),
        due_date=date(2024, 2, 1),
        status="unpaid",
        category="Rent",
        recurrence_frequency=None,
        recurrence_period=None,
        paid_at=None,
        previous_bill_id=None,
    )
    assert data_manager.serialize_bill(row)["DueDate"] == "2024-02-01"
    assert row.is_recurring is False
