"""Utility for initializing the Shop Ledger master workbook.

The module doubles as a script (``shop-setup``) and as a library used by tests
or other tooling. Shared helpers keep the workbook bootstrap logic consistent
regardless of the execution path.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, MutableMapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from .constants import Collection, EmployeeRole
from .data_manager import CONFIG_FILE_NAME, SHEET_COLUMNS


# Seeded so that sales can be recorded before any staff has been registered.
DEFAULT_EMPLOYEE: MutableMapping[str, object] = {
    "EmployeeID": "E0000",
    "EmployeeName": "Shop Counter",
    "Role": EmployeeRole.ADMIN.value,
    "IsActive": True,
    "CreatedAt": None,
    "Version": 1,
}


@dataclass(frozen=True)
class SetupSettings:
    """Type-safe representation of configuration values used during setup."""

    data_file: Path
    default_employee_id: str


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory, matching how the CLI resolves them.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)

    try:
        data_file_raw = parser.get("System", "DataFile")
        default_employee_id = parser.get("Defaults", "DefaultEmployee")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()

    return SetupSettings(data_file=data_file_path, default_employee_id=default_employee_id)


def build_master_workbook(
    *,
    default_employee_id: str,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    default_employee_template: Mapping[str, object] = DEFAULT_EMPLOYEE,
) -> openpyxl.Workbook:
    """Build an in-memory master workbook with headers and the default employee."""

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    employees = Collection.EMPLOYEES.value
    if employees in workbook.sheetnames:
        employee = dict(default_employee_template)
        employee["EmployeeID"] = default_employee_id
        workbook[employees].append([employee.get(column) for column in sheet_columns[employees]])
    return workbook


def create_master_workbook(
    destination: Path,
    *,
    default_employee_id: str,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    default_employee_template: Mapping[str, object] = DEFAULT_EMPLOYEE,
    overwrite: bool = False,
) -> Path:
    """Create the master workbook at ``destination``.

    Every collection gets a sheet with a bold header row, and the Employees
    sheet is seeded with the default employee named by ``default_employee_id``.
    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing master workbook: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)
    workbook = build_master_workbook(
        default_employee_id=default_employee_id,
        sheet_columns=sheet_columns,
        default_employee_template=default_employee_template,
    )
    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        default_employee_id=settings.default_employee_id,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(prog="shop-setup", description="Initialize the Shop Ledger data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE_NAME,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``shop-setup`` script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Shop Ledger Setup ---")
    print(f"Using configuration: {config_path}")
    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError) as exc:
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
