"""Data access layer for Shop Ledger.

This module provides low-level helpers that read from and write to the master
workbook. Business logic belongs elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: reading rows as column-keyed records and appending,
   updating, or deleting individual rows.
4. Row conversion: typed dataclasses for every collection together with the
   ``serialize_*``/``deserialize_*`` helpers that map them to records.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import Collection


CONFIG_FILE_NAME = "config.ini"

DEFAULT_TIMEZONE = "UTC"
DEFAULT_COMMIT_ATTEMPTS = 3

# Column layout of every sheet. The first column is always the primary key.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    Collection.PRODUCTS.value: [
        "ProductID",
        "ProductName",
        "SalePrice",
        "UnitCost",
        "Stock",
        "SupplierID",
        "IsActive",
        "CreatedAt",
        "Version",
    ],
    Collection.SUPPLIERS.value: [
        "SupplierID",
        "SupplierName",
        "ContactPerson",
        "Phone",
        "CreatedAt",
        "Version",
    ],
    Collection.CUSTOMERS.value: [
        "CustomerID",
        "CustomerName",
        "CustomerType",
        "Phone",
        "Email",
        "CreditBalance",
        "CreatedAt",
        "Version",
    ],
    Collection.EMPLOYEES.value: [
        "EmployeeID",
        "EmployeeName",
        "Role",
        "IsActive",
        "CreatedAt",
        "Version",
    ],
    Collection.SALES.value: [
        "SaleID",
        "ReceiptNumber",
        "EmployeeID",
        "CustomerID",
        "PaymentMethod",
        "PaymentStatus",
        "Subtotal",
        "ItemDiscountTotal",
        "OrderDiscountKind",
        "OrderDiscountValue",
        "PreTaxTotal",
        "TaxKind",
        "TaxValue",
        "TaxAmount",
        "Total",
        "TotalCost",
        "Profit",
        "InvoiceNumber",
        "CreatedAt",
        "Version",
    ],
    Collection.SALE_ITEMS.value: [
        "SaleItemID",
        "SaleID",
        "LineNumber",
        "ProductID",
        "Quantity",
        "SalePrice",
        "UnitCost",
        "DiscountKind",
        "DiscountValue",
        "CreatedAt",
    ],
    Collection.STOCK_UPDATES.value: [
        "StockUpdateID",
        "ProductID",
        "QuantityChange",
        "PreviousStock",
        "NewStock",
        "Reason",
        "ReferenceID",
        "EmployeeID",
        "CreatedAt",
    ],
    Collection.SUPPLIES.value: [
        "SupplyID",
        "SupplierID",
        "ProductID",
        "Quantity",
        "UnitCost",
        "EmployeeID",
        "CreatedAt",
    ],
    Collection.PAYMENTS.value: [
        "PaymentID",
        "Direction",
        "CustomerID",
        "SaleID",
        "BillID",
        "Amount",
        "EmployeeID",
        "BalanceAfterPayment",
        "CreatedAt",
    ],
    Collection.BILLS.value: [
        "BillID",
        "Vendor",
        "Description",
        "Amount",
        "DueDate",
        "Status",
        "Category",
        "RecurrenceFrequency",
        "RecurrencePeriod",
        "PaidAt",
        "PreviousBillID",
        "CreatedAt",
        "Version",
    ],
    Collection.COUNTERS.value: [
        "CounterID",
        "Value",
        "CreatedAt",
        "Version",
    ],
}

PRIMARY_KEYS: Mapping[str, str] = {name: columns[0] for name, columns in SHEET_COLUMNS.items()}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    business_name: str
    schema_version: str
    default_employee_id: str
    timezone: str = DEFAULT_TIMEZONE
    allow_negative_stock: bool = False
    commit_attempts: int = DEFAULT_COMMIT_ATTEMPTS


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    product_name: str
    sale_price: Decimal
    unit_cost: Decimal
    stock: int
    supplier_id: Optional[str]
    is_active: bool
    created_at: str = ""
    version: int = 0


@dataclass(frozen=True)
class SupplierRow:
    supplier_id: str
    supplier_name: str
    contact_person: Optional[str]
    phone: Optional[str]
    created_at: str = ""
    version: int = 0


@dataclass(frozen=True)
class CustomerRow:
    """In-memory view of a row from the ``Customers`` sheet."""

    customer_id: str
    customer_name: str
    customer_type: str
    phone: Optional[str]
    email: Optional[str]
    credit_balance: Decimal
    created_at: str = ""
    version: int = 0


@dataclass(frozen=True)
class EmployeeRow:
    employee_id: str
    employee_name: str
    role: str
    is_active: bool
    created_at: str = ""
    version: int = 0


@dataclass(frozen=True)
class SaleItemRow:
    """One cart line frozen at sale time."""

    sale_item_id: str
    sale_id: str
    line_number: int
    product_id: str
    quantity: int
    sale_price: Decimal
    unit_cost: Decimal
    discount_kind: Optional[str]
    discount_value: Optional[Decimal]
    created_at: str = ""


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet."""

    sale_id: str
    receipt_number: str
    employee_id: str
    customer_id: Optional[str]
    payment_method: str
    payment_status: str
    subtotal: Decimal
    item_discount_total: Decimal
    order_discount_kind: Optional[str]
    order_discount_value: Optional[Decimal]
    pre_tax_total: Decimal
    tax_kind: Optional[str]
    tax_value: Optional[Decimal]
    tax_amount: Decimal
    total: Decimal
    total_cost: Decimal
    profit: Decimal
    invoice_number: Optional[str]
    created_at: str = ""
    version: int = 0


@dataclass(frozen=True)
class StockUpdateRow:
    """Append-only audit entry describing one stock movement."""

    stock_update_id: str
    product_id: str
    quantity_change: int
    previous_stock: int
    new_stock: int
    reason: str
    reference_id: Optional[str]
    employee_id: Optional[str]
    created_at: str = ""


@dataclass(frozen=True)
class SupplyRow:
    supply_id: str
    supplier_id: Optional[str]
    product_id: str
    quantity: int
    unit_cost: Decimal
    employee_id: Optional[str]
    created_at: str = ""


@dataclass(frozen=True)
class PaymentRow:
    """Append-only record of money moving in or out of the business."""

    payment_id: str
    direction: str
    customer_id: Optional[str]
    sale_id: Optional[str]
    bill_id: Optional[str]
    amount: Decimal
    employee_id: Optional[str]
    balance_after_payment: Optional[Decimal]
    created_at: str = ""


@dataclass(frozen=True)
class BillRow:
    """In-memory view of a row from the ``Bills`` sheet."""

    bill_id: str
    vendor: str
    description: str
    amount: Decimal
    due_date: date
    status: str
    category: str
    recurrence_frequency: Optional[int]
    recurrence_period: Optional[str]
    paid_at: Optional[str]
    previous_bill_id: Optional[str]
    created_at: str = ""
    version: int = 0

    @property
    def is_recurring(self) -> bool:
        return bool(self.recurrence_frequency) and self.recurrence_period is not None


@dataclass(frozen=True)
class CounterRow:
    counter_id: str
    value: int
    created_at: str = ""
    version: int = 0


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for
    ``CONFIG_FILE_NAME``; the first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for candidate_dir in (current, *current.parents):
        candidate = candidate_dir / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

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


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` and ``[Defaults]`` entries are mandatory. The ``[Inventory]``
    and ``[Ledger]`` sections are optional and fall back to conservative
    defaults: negative stock is refused and version conflicts are retried
    ``DEFAULT_COMMIT_ATTEMPTS`` times. Relative ``DataFile`` entries are
    anchored at ``base_path`` (or the working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor relative data files.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If an optional entry holds an unusable value.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
        default_employee = parser.get("Defaults", "DefaultEmployee")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    timezone = parser.get("System", "Timezone", fallback=DEFAULT_TIMEZONE).strip() or DEFAULT_TIMEZONE
    allow_negative_stock = parser.getboolean("Inventory", "AllowNegativeStock", fallback=False)
    commit_attempts = parser.getint("Ledger", "CommitAttempts", fallback=DEFAULT_COMMIT_ATTEMPTS)
    if commit_attempts < 1:
        raise ValueError("Ledger.CommitAttempts must be at least 1")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        business_name=business_name,
        schema_version=schema_version,
        default_employee_id=default_employee,
        timezone=timezone,
        allow_negative_stock=allow_negative_stock,
        commit_attempts=commit_attempts,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook at ``destination``, creating parent folders on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding unsaved in-memory changes."""

    return open_workbook(data_file)


def validate_workbook_layout(workbook: Workbook) -> None:
    """Check that every managed sheet exists and starts with the expected headers.

    Extra trailing columns are tolerated so that users may annotate sheets by
    hand, but missing sheets or reordered key columns are not.

    Raises:
        KeyError: Listing every missing sheet or column.
    """

    problems = []
    for sheet_name, columns in SHEET_COLUMNS.items():
        if sheet_name not in workbook.sheetnames:
            problems.append(f"missing sheet '{sheet_name}'")
            continue
        headers = header_map(workbook, sheet_name)
        missing = [column for column in columns if column not in headers]
        if missing:
            problems.append(f"sheet '{sheet_name}' lacks columns {', '.join(missing)}")
        elif headers[columns[0]] != 1:
            problems.append(f"sheet '{sheet_name}' must start with '{columns[0]}'")
    if problems:
        log.error("Workbook layout invalid: %s", "; ".join(problems))
        raise KeyError("Workbook layout invalid: " + "; ".join(problems))


def header_map(workbook: Workbook, sheet_name: str) -> Dict[str, int]:
    """Map header titles of ``sheet_name`` to their 1-based column indices."""

    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


def iter_records(workbook: Workbook, sheet_name: str) -> Iterator[Tuple[int, Dict[str, Any]]]:
    """Yield ``(row_index, record)`` pairs for every populated data row.

    The header row and fully empty rows are skipped. Records are plain
    dictionaries keyed by header title.
    """

    sheet = workbook[sheet_name]
    headers = [cell.value for cell in sheet[1]]
    for row_idx, raw in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if any(cell is not None for cell in raw):
            yield row_idx, {title: value for title, value in zip(headers, raw) if title is not None}


def read_record(workbook: Workbook, sheet_name: str, row_index: int) -> Dict[str, Any]:
    """Return the record stored at ``row_index`` of ``sheet_name``."""

    sheet = workbook[sheet_name]
    headers = header_map(workbook, sheet_name)
    return {title: sheet.cell(row=row_index, column=col).value for title, col in headers.items()}


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    headers = header_map(workbook, sheet_name)
    if key_column not in headers:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = headers[key_column]
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row and row[key_col_index - 1] is not None and str(row[key_col_index - 1]) == str(key_value):
            return row_idx

    return None


def append_record(workbook: Workbook, sheet_name: str, record: Mapping[str, Any]) -> int:
    """Append ``record`` below the last row and return its row index.

    Raises:
        KeyError: If the record names a column the sheet does not have.
    """

    headers = header_map(workbook, sheet_name)
    unknown = [field for field in record if field not in headers]
    if unknown:
        raise KeyError(f"Unknown {sheet_name} field(s): {', '.join(unknown)}")

    sheet = workbook[sheet_name]
    width = max(headers.values())
    values: list[Any] = [None] * width
    for field, value in record.items():
        values[headers[field] - 1] = value
    sheet.append(values)
    return sheet.max_row


def update_cells(workbook: Workbook, sheet_name: str, row_index: int, field_values: Mapping[str, Any]) -> Dict[str, Any]:
    """Overwrite selected columns of one row and return their previous values.

    The returned mapping lets callers undo the write.

    Raises:
        KeyError: If any referenced column does not exist.
    """

    headers = header_map(workbook, sheet_name)
    unknown = [field for field in field_values if field not in headers]
    if unknown:
        raise KeyError(f"Unknown {sheet_name} field(s): {', '.join(unknown)}")

    sheet = workbook[sheet_name]
    previous: Dict[str, Any] = {}
    for field, value in field_values.items():
        cell = sheet.cell(row=row_index, column=headers[field])
        previous[field] = cell.value
        cell.value = value
    return previous


def delete_row(workbook: Workbook, sheet_name: str, row_index: int) -> None:
    workbook[sheet_name].delete_rows(row_index, 1)


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def to_decimal(value: object, default: str = "0.00") -> Decimal:
    """Normalize a cell value into :class:`~decimal.Decimal`.

    Excel hands back floats once the file has been saved, so the value is
    converted through ``str`` to avoid binary floating point artefacts.
    """

    if value is None or value == "":
        return Decimal(default)
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a monetary value: {value!r}") from exc


def to_optional_decimal(value: object) -> Optional[Decimal]:
    return None if value is None or value == "" else to_decimal(value)


def to_int(value: object, default: int = 0) -> int:
    if value is None or value == "":
        return default
    return int(Decimal(str(value)))


def to_optional_int(value: object) -> Optional[int]:
    return None if value is None or value == "" else to_int(value)


def to_text(value: object) -> str:
    return "" if value is None else str(value)


def to_optional_text(value: object) -> Optional[str]:
    return None if value is None or value == "" else str(value)


def to_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return bool(value)


def to_date(value: object) -> date:
    """Parse a ``DueDate`` cell which may hold an ISO string or a date/datetime."""

    if hasattr(value, "date") and callable(getattr(value, "date")):
        return value.date()  # type: ignore[union-attr]
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def deserialize_product(record: Mapping[str, Any]) -> ProductRow:
    """Convert a ``Products`` record into a strongly typed product row."""

    return ProductRow(
        product_id=str(record["ProductID"]),
        product_name=to_text(record.get("ProductName")),
        sale_price=to_decimal(record.get("SalePrice")),
        unit_cost=to_decimal(record.get("UnitCost")),
        stock=to_int(record.get("Stock")),
        supplier_id=to_optional_text(record.get("SupplierID")),
        is_active=to_bool(record.get("IsActive")),
        created_at=to_text(record.get("CreatedAt")),
        version=to_int(record.get("Version")),
    )


def serialize_product(row: ProductRow) -> Dict[str, Any]:
    return {
        "ProductID": row.product_id,
        "ProductName": row.product_name,
        "SalePrice": row.sale_price,
        "UnitCost": row.unit_cost,
        "Stock": row.stock,
        "SupplierID": row.supplier_id,
        "IsActive": row.is_active,
    }


def deserialize_supplier(record: Mapping[str, Any]) -> SupplierRow:
    return SupplierRow(
        supplier_id=str(record["SupplierID"]),
        supplier_name=to_text(record.get("SupplierName")),
        contact_person=to_optional_text(record.get("ContactPerson")),
        phone=to_optional_text(record.get("Phone")),
        created_at=to_text(record.get("CreatedAt")),
        version=to_int(record.get("Version")),
    )


def serialize_supplier(row: SupplierRow) -> Dict[str, Any]:
    return {
        "SupplierID": row.supplier_id,
        "SupplierName": row.supplier_name,
        "ContactPerson": row.contact_person,
        "Phone": row.phone,
    }


def deserialize_customer(record: Mapping[str, Any]) -> CustomerRow:
    """Convert a ``Customers`` record into a typed row; blank balances read as zero."""

    return CustomerRow(
        customer_id=str(record["CustomerID"]),
        customer_name=to_text(record.get("CustomerName")),
        customer_type=to_text(record.get("CustomerType")),
        phone=to_optional_text(record.get("Phone")),
        email=to_optional_text(record.get("Email")),
        credit_balance=to_decimal(record.get("CreditBalance")),
        created_at=to_text(record.get("CreatedAt")),
        version=to_int(record.get("Version")),
    )


def serialize_customer(row: CustomerRow) -> Dict[str, Any]:
    return {
        "CustomerID": row.customer_id,
        "CustomerName": row.customer_name,
        "CustomerType": row.customer_type,
        "Phone": row.phone,
        "Email": row.email,
        "CreditBalance": row.credit_balance,
    }


def deserialize_employee(record: Mapping[str, Any]) -> EmployeeRow:
    return EmployeeRow(
        employee_id=str(record["EmployeeID"]),
        employee_name=to_text(record.get("EmployeeName")),
        role=to_text(record.get("Role")),
        is_active=to_bool(record.get("IsActive")),
        created_at=to_text(record.get("CreatedAt")),
        version=to_int(record.get("Version")),
    )


def serialize_employee(row: EmployeeRow) -> Dict[str, Any]:
    return {
        "EmployeeID": row.employee_id,
        "EmployeeName": row.employee_name,
        "Role": row.role,
        "IsActive": row.is_active,
    }


def deserialize_sale(record: Mapping[str, Any]) -> SaleRow:
    """Convert a ``Sales`` record into a typed sale row.

    Optional discount and tax columns stay ``None`` when the sale carried no
    adjustment, which keeps "no discount" distinguishable from "0% discount".
    """

    return SaleRow(
        sale_id=str(record["SaleID"]),
        receipt_number=to_text(record.get("ReceiptNumber")),
        employee_id=to_text(record.get("EmployeeID")),
        customer_id=to_optional_text(record.get("CustomerID")),
        payment_method=to_text(record.get("PaymentMethod")),
        payment_status=to_text(record.get("PaymentStatus")),
        subtotal=to_decimal(record.get("Subtotal")),
        item_discount_total=to_decimal(record.get("ItemDiscountTotal")),
        order_discount_kind=to_optional_text(record.get("OrderDiscountKind")),
        order_discount_value=to_optional_decimal(record.get("OrderDiscountValue")),
        pre_tax_total=to_decimal(record.get("PreTaxTotal")),
        tax_kind=to_optional_text(record.get("TaxKind")),
        tax_value=to_optional_decimal(record.get("TaxValue")),
        tax_amount=to_decimal(record.get("TaxAmount")),
        total=to_decimal(record.get("Total")),
        total_cost=to_decimal(record.get("TotalCost")),
        profit=to_decimal(record.get("Profit")),
        invoice_number=to_optional_text(record.get("InvoiceNumber")),
        created_at=to_text(record.get("CreatedAt")),
        version=to_int(record.get("Version")),
    )


def serialize_sale(row: SaleRow) -> Dict[str, Any]:
    return {
        "SaleID": row.sale_id,
        "ReceiptNumber": row.receipt_number,
        "EmployeeID": row.employee_id,
        "CustomerID": row.customer_id,
        "PaymentMethod": row.payment_method,
        "PaymentStatus": row.payment_status,
        "Subtotal": row.subtotal,
        "ItemDiscountTotal": row.item_discount_total,
        "OrderDiscountKind": row.order_discount_kind,
        "OrderDiscountValue": row.order_discount_value,
        "PreTaxTotal": row.pre_tax_total,
        "TaxKind": row.tax_kind,
        "TaxValue": row.tax_value,
        "TaxAmount": row.tax_amount,
        "Total": row.total,
        "TotalCost": row.total_cost,
        "Profit": row.profit,
        "InvoiceNumber": row.invoice_number,
    }


def deserialize_sale_item(record: Mapping[str, Any]) -> SaleItemRow:
    return SaleItemRow(
        sale_item_id=str(record["SaleItemID"]),
        sale_id=to_text(record.get("SaleID")),
        line_number=to_int(record.get("LineNumber")),
        product_id=to_text(record.get("ProductID")),
        quantity=to_int(record.get("Quantity")),
        sale_price=to_decimal(record.get("SalePrice")),
        unit_cost=to_decimal(record.get("UnitCost")),
        discount_kind=to_optional_text(record.get("DiscountKind")),
        discount_value=to_optional_decimal(record.get("DiscountValue")),
        created_at=to_text(record.get("CreatedAt")),
    )


def serialize_sale_item(row: SaleItemRow) -> Dict[str, Any]:
    return {
        "SaleItemID": row.sale_item_id,
        "SaleID": row.sale_id,
        "LineNumber": row.line_number,
        "ProductID": row.product_id,
        "Quantity": row.quantity,
        "SalePrice": row.sale_price,
        "UnitCost": row.unit_cost,
        "DiscountKind": row.discount_kind,
        "DiscountValue": row.discount_value,
    }


def deserialize_stock_update(record: Mapping[str, Any]) -> StockUpdateRow:
    return StockUpdateRow(
        stock_update_id=str(record["StockUpdateID"]),
        product_id=to_text(record.get("ProductID")),
        quantity_change=to_int(record.get("QuantityChange")),
        previous_stock=to_int(record.get("PreviousStock")),
        new_stock=to_int(record.get("NewStock")),
        reason=to_text(record.get("Reason")),
        reference_id=to_optional_text(record.get("ReferenceID")),
        employee_id=to_optional_text(record.get("EmployeeID")),
        created_at=to_text(record.get("CreatedAt")),
    )


def serialize_stock_update(row: StockUpdateRow) -> Dict[str, Any]:
    return {
        "StockUpdateID": row.stock_update_id,
        "ProductID": row.product_id,
        "QuantityChange": row.quantity_change,
        "PreviousStock": row.previous_stock,
        "NewStock": row.new_stock,
        "Reason": row.reason,
        "ReferenceID": row.reference_id,
        "EmployeeID": row.employee_id,
    }


def deserialize_supply(record: Mapping[str, Any]) -> SupplyRow:
    return SupplyRow(
        supply_id=str(record["SupplyID"]),
        supplier_id=to_optional_text(record.get("SupplierID")),
        product_id=to_text(record.get("ProductID")),
        quantity=to_int(record.get("Quantity")),
        unit_cost=to_decimal(record.get("UnitCost")),
        employee_id=to_optional_text(record.get("EmployeeID")),
        created_at=to_text(record.get("CreatedAt")),
    )


def serialize_supply(row: SupplyRow) -> Dict[str, Any]:
    return {
        "SupplyID": row.supply_id,
        "SupplierID": row.supplier_id,
        "ProductID": row.product_id,
        "Quantity": row.quantity,
        "UnitCost": row.unit_cost,
        "EmployeeID": row.employee_id,
    }


def deserialize_payment(record: Mapping[str, Any]) -> PaymentRow:
    return PaymentRow(
        payment_id=str(record["PaymentID"]),
        direction=to_text(record.get("Direction")),
        customer_id=to_optional_text(record.get("CustomerID")),
        sale_id=to_optional_text(record.get("SaleID")),
        bill_id=to_optional_text(record.get("BillID")),
        amount=to_decimal(record.get("Amount")),
        employee_id=to_optional_text(record.get("EmployeeID")),
        balance_after_payment=to_optional_decimal(record.get("BalanceAfterPayment")),
        created_at=to_text(record.get("CreatedAt")),
    )


def serialize_payment(row: PaymentRow) -> Dict[str, Any]:
    return {
        "PaymentID": row.payment_id,
        "Direction": row.direction,
        "CustomerID": row.customer_id,
        "SaleID": row.sale_id,
        "BillID": row.bill_id,
        "Amount": row.amount,
        "EmployeeID": row.employee_id,
        "BalanceAfterPayment": row.balance_after_payment,
    }


def deserialize_bill(record: Mapping[str, Any]) -> BillRow:
    """Convert a ``Bills`` record into a typed row; ``DueDate`` becomes a :class:`date`."""

    return BillRow(
        bill_id=str(record["BillID"]),
        vendor=to_text(record.get("Vendor")),
        description=to_text(record.get("Description")),
        amount=to_decimal(record.get("Amount")),
        due_date=to_date(record.get("DueDate")),
        status=to_text(record.get("Status")),
        category=to_text(record.get("Category")),
        recurrence_frequency=to_optional_int(record.get("RecurrenceFrequency")),
        recurrence_period=to_optional_text(record.get("RecurrencePeriod")),
        paid_at=to_optional_text(record.get("PaidAt")),
        previous_bill_id=to_optional_text(record.get("PreviousBillID")),
        created_at=to_text(record.get("CreatedAt")),
        version=to_int(record.get("Version")),
    )


def serialize_bill(row: BillRow) -> Dict[str, Any]:
    # Due dates are stored as ISO text so Excel does not reinterpret them.
    return {
        "BillID": row.bill_id,
        "Vendor": row.vendor,
        "Description": row.description,
        "Amount": row.amount,
        "DueDate": row.due_date.isoformat(),
        "Status": row.status,
        "Category": row.category,
        "RecurrenceFrequency": row.recurrence_frequency,
        "RecurrencePeriod": row.recurrence_period,
        "PaidAt": row.paid_at,
        "PreviousBillID": row.previous_bill_id,
    }


def deserialize_counter(record: Mapping[str, Any]) -> CounterRow:
    return CounterRow(
        counter_id=str(record["CounterID"]),
        value=to_int(record.get("Value")),
        created_at=to_text(record.get("CreatedAt")),
        version=to_int(record.get("Version")),
    )
