"""Business logic layer for Shop Ledger.

This module holds the rule engine behind every ledger mutation: recording
sales, moving stock, applying customer, invoice and bill payments, and the
read-side reports. It consumes the data access layer for configuration and
workbook lifecycle, and the record store for every read and write of ledger
documents, so that each operation reaches the workbook as one atomic batch.
"""

from __future__ import annotations

import calendar
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from openpyxl.workbook import Workbook

from . import data_manager, log, pricing, receipts
from .constants import (
    DEFERRED_PAYMENT_STATUSES,
    EXPECTED_SCHEMA_VERSION,
    BillCategory,
    BillStatus,
    Collection,
    CustomerType,
    EmployeeRole,
    PaymentDirection,
    PaymentMethod,
    PaymentStatus,
    RecurrencePeriod,
    StockReason,
)
from .pricing import Adjustment
from .record_store import (
    ConcurrencyConflict,
    CreateOperation,
    Operation,
    PersistenceError,
    RecordNotFoundError,
    UpdateOperation,
    WorkbookRecordStore,
)


T = TypeVar("T")

ZERO = Decimal("0")


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, customer, employee, sale, or bill is unknown."""


class EmptyCartError(BusinessRuleViolation):
    """Raised when a sale is attempted without any cart lines."""


class MissingCustomerError(BusinessRuleViolation):
    """Raised when a credit or invoice sale names no customer."""


class MissingInvoiceNumberError(BusinessRuleViolation):
    """Raised when an invoice sale carries no invoice number."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a stock movement would leave a product below zero."""


class LedgerIntegrityError(Exception):
    """Raised when stored stock updates no longer reconstruct a product's stock."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, the workbook, and the record store used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    store: WorkbookRecordStore
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)
    _unsubscribers: List[Callable[[], None]] = field(default_factory=list, repr=False, compare=False)


@dataclass(frozen=True)
class SaleLine:
    """One requested cart line.

    ``sale_price`` overrides the product's current price (for example a
    negotiated price); when omitted the catalogue price is snapshotted.
    """

    product_id: str
    quantity: int
    discount: Optional[Adjustment] = None
    sale_price: Optional[Decimal] = None


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording a sale."""

    items: Sequence[SaleLine]
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    employee_id: str
    customer_id: Optional[str] = None
    invoice_number: Optional[str] = None
    discount: Optional[Adjustment] = None
    tax: Optional[Adjustment] = None


@dataclass(frozen=True)
class SaleRecord:
    """A committed sale together with its stored lines."""

    sale: data_manager.SaleRow
    items: Tuple[data_manager.SaleItemRow, ...]


@dataclass(frozen=True)
class SupplyCommand:
    """User intent for receiving stock from a supplier."""

    product_id: str
    quantity: int
    unit_cost: Decimal
    employee_id: str
    supplier_id: Optional[str] = None


@dataclass(frozen=True)
class StockCorrectionCommand:
    """User intent for a manual, signed stock adjustment (stocktake fixes)."""

    product_id: str
    quantity_change: int
    employee_id: str


@dataclass(frozen=True)
class ReturnCommand:
    """User intent for putting returned goods back on the shelf."""

    product_id: str
    quantity: int
    employee_id: str
    sale_id: Optional[str] = None


@dataclass(frozen=True)
class CustomerPaymentCommand:
    customer_id: str
    amount: Decimal
    employee_id: str


@dataclass(frozen=True)
class InvoicePaymentCommand:
    sale_id: str
    amount: Decimal
    employee_id: str


@dataclass(frozen=True)
class BillPaymentCommand:
    bill_id: str
    employee_id: str


@dataclass(frozen=True)
class NewBillCommand:
    """User intent for registering a vendor bill."""

    vendor: str
    description: str
    amount: Decimal
    due_date: date
    category: BillCategory = BillCategory.OTHER
    recurrence_frequency: Optional[int] = None
    recurrence_period: Optional[RecurrencePeriod] = None


@dataclass(frozen=True)
class BillPaymentOutcome:
    """Result of paying a bill: the payment, the paid bill, and any successor."""

    payment: data_manager.PaymentRow
    bill: data_manager.BillRow
    next_bill: Optional[data_manager.BillRow] = None


# ---------------------------------------------------------------------------
# Runtime context and caches
# ---------------------------------------------------------------------------

# Collections mirrored in memory for lookups: row converter and key attribute.
CACHED_COLLECTIONS: Dict[str, Tuple[Callable[[Dict[str, Any]], Any], str]] = {
    Collection.PRODUCTS.value: (data_manager.deserialize_product, "product_id"),
    Collection.CUSTOMERS.value: (data_manager.deserialize_customer, "customer_id"),
    Collection.EMPLOYEES.value: (data_manager.deserialize_employee, "employee_id"),
    Collection.SUPPLIERS.value: (data_manager.deserialize_supplier, "supplier_id"),
}


def build_runtime_context(
    settings: data_manager.ConfigSettings,
    workbook: Workbook,
    *,
    clock: Optional[Callable[[], datetime]] = None,
) -> RuntimeContext:
    """Wrap an open workbook in a record store and wire cache invalidation.

    Every cached collection is subscribed on the store, so a committed write
    evicts the matching bucket and the next lookup rebuilds it from the
    workbook.
    """

    store = WorkbookRecordStore(workbook, clock=clock)
    context = RuntimeContext(settings=settings, workbook=workbook, store=store)
    for name in CACHED_COLLECTIONS:
        unsubscribe = store.subscribe(name, lambda name=name: _invalidate_cache(context, name), with_records=False)
        context._unsubscribers.append(unsubscribe)
    return context


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    clock: Optional[Callable[[], datetime]] = None,
) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    The helper resolves ``config.ini``, parses settings, opens the workbook,
    checks that every managed sheet is present, and hands back a context whose
    record store is ready for ledger operations.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.
        clock (Callable[[], datetime] | None): Source of commit timestamps;
            defaults to the current UTC time.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options or sheets are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    data_manager.validate_workbook_layout(workbook)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return build_runtime_context(settings, workbook, clock=clock)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Save the in-memory workbook to the configured data file."""
    data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    The old context's subscriptions are cancelled and a new context with an
    empty cache is returned. The clock of the old store is carried over.
    """
    for unsubscribe in context._unsubscribers:
        unsubscribe()
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return build_runtime_context(context.settings, workbook, clock=context.store.now)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict cache buckets so the next read rebuilds them from the workbook."""

    if not names:
        return
    log.debug("Invalidating cache buckets: %s", ", ".join(names))
    for name in names:
        context._cache.pop(name, None)


def _ensure_cache(context: RuntimeContext, collection: Collection) -> Dict[str, Any]:
    """Populate the bucket for ``collection`` with ``all`` rows and a ``by_id`` map."""

    name = collection.value
    bucket = _get_cache_bucket(context, name)
    if "all" not in bucket:
        converter, key_attr = CACHED_COLLECTIONS[name]
        rows = [converter(record) for record in context.store.query(collection)]
        bucket["all"] = rows
        bucket["by_id"] = {getattr(row, key_attr): row for row in rows}
        log.debug("Populated %s cache with %d entries", name, len(rows))
    return bucket


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext, *, include_inactive: bool = False) -> List[data_manager.ProductRow]:
    """Return cached product rows, hiding inactive ones unless asked for."""
    rows = _ensure_cache(context, Collection.PRODUCTS)["all"]
    return list(rows) if include_inactive else [row for row in rows if row.is_active]


def list_customers(context: RuntimeContext) -> List[data_manager.CustomerRow]:
    return list(_ensure_cache(context, Collection.CUSTOMERS)["all"])


def list_suppliers(context: RuntimeContext) -> List[data_manager.SupplierRow]:
    return list(_ensure_cache(context, Collection.SUPPLIERS)["all"])


def list_employees(context: RuntimeContext, *, include_inactive: bool = False) -> List[data_manager.EmployeeRow]:
    rows = _ensure_cache(context, Collection.EMPLOYEES)["all"]
    return list(rows) if include_inactive else [row for row in rows if row.is_active]


def list_sales(context: RuntimeContext) -> List[data_manager.SaleRow]:
    """Return every stored sale in commit order."""
    return [data_manager.deserialize_sale(record) for record in context.store.query(Collection.SALES)]


def list_sale_items(context: RuntimeContext, sale_id: str) -> List[data_manager.SaleItemRow]:
    records = context.store.query(Collection.SALE_ITEMS, lambda record: str(record.get("SaleID")) == sale_id)
    return sorted((data_manager.deserialize_sale_item(record) for record in records), key=lambda row: row.line_number)


def list_payments(context: RuntimeContext) -> List[data_manager.PaymentRow]:
    return [data_manager.deserialize_payment(record) for record in context.store.query(Collection.PAYMENTS)]


def list_bills(context: RuntimeContext, *, status: Optional[BillStatus] = None) -> List[data_manager.BillRow]:
    """Return bills, optionally filtered by status, unpaid first then by due date."""
    bills = [data_manager.deserialize_bill(record) for record in context.store.query(Collection.BILLS)]
    if status is not None:
        bills = [bill for bill in bills if bill.status == status.value]
    return sorted(bills, key=lambda bill: (bill.status != BillStatus.UNPAID.value, bill.due_date))


def list_stock_updates(context: RuntimeContext, product_id: str) -> List[data_manager.StockUpdateRow]:
    """Return the stock movements of one product in the order they were committed."""
    records = context.store.query(Collection.STOCK_UPDATES, lambda record: str(record.get("ProductID")) == product_id)
    return [data_manager.deserialize_stock_update(record) for record in records]


def _cached_lookup(context: RuntimeContext, collection: Collection, record_id: str, label: str) -> Any:
    try:
        return _ensure_cache(context, collection)["by_id"][record_id]
    except KeyError as exc:
        log.warning("%s lookup failed for id '%s'", label, record_id)
        raise MissingReferenceError(f"Unknown {label.lower()} id: {record_id}") from exc


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the workbook.
    """
    return _cached_lookup(context, Collection.PRODUCTS, product_id, "Product")


def get_customer(context: RuntimeContext, customer_id: str) -> data_manager.CustomerRow:
    return _cached_lookup(context, Collection.CUSTOMERS, customer_id, "Customer")


def get_supplier(context: RuntimeContext, supplier_id: str) -> data_manager.SupplierRow:
    return _cached_lookup(context, Collection.SUPPLIERS, supplier_id, "Supplier")


def get_employee(context: RuntimeContext, employee_id: str) -> data_manager.EmployeeRow:
    return _cached_lookup(context, Collection.EMPLOYEES, employee_id, "Employee")


def _fetch(context: RuntimeContext, collection: Collection, record_id: str, converter: Callable[[Dict[str, Any]], T]) -> T:
    """Read one document straight from the store, bypassing caches."""

    try:
        return converter(context.store.get(collection, record_id))
    except RecordNotFoundError as exc:
        log.warning("%s lookup failed for id '%s'", collection.value, record_id)
        raise MissingReferenceError(f"Unknown {collection.value} id: {record_id}") from exc


def get_sale(context: RuntimeContext, sale_id: str) -> data_manager.SaleRow:
    """Fetch a sale fresh from the store.

    Raises:
        MissingReferenceError: If no sale has ``sale_id``.
    """
    return _fetch(context, Collection.SALES, sale_id, data_manager.deserialize_sale)


def get_bill(context: RuntimeContext, bill_id: str) -> data_manager.BillRow:
    return _fetch(context, Collection.BILLS, bill_id, data_manager.deserialize_bill)


def require_active_employee(context: RuntimeContext, employee_id: str) -> data_manager.EmployeeRow:
    """Return the acting employee, refusing unknown or deactivated ones."""
    employee = get_employee(context, employee_id)
    if not employee.is_active:
        log.warning("Rejected operation by inactive employee '%s'", employee_id)
        raise BusinessRuleViolation(f"Employee '{employee_id}' is inactive")
    return employee


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is a strictly positive integer.

    Raises:
        ValueError: If ``quantity`` is zero, negative, or not an integer.

    Stock decreases are signed later in the pipeline, so callers always submit
    positive magnitudes here.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be a whole number greater than zero")


def require_positive_money(amount: Decimal) -> None:
    """Validate that a payment amount is strictly positive.

    Raises:
        ValueError: If ``amount`` is zero or negative.
    """
    if amount <= ZERO:
        log.error("Payment amount validation failed: %s", amount)
        raise ValueError("Amount must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < ZERO:
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def run_with_retry(func: Callable[[], T], *, attempts: int = 3, backoff_base: float = 0.0) -> T:
    """Run ``func`` again when it loses an optimistic-concurrency race.

    Only :class:`ConcurrencyConflict` is retried; every other error propagates
    immediately. ``func`` must re-read whatever it writes on each call.
    """

    for attempt in range(attempts):
        try:
            return func()
        except ConcurrencyConflict as exc:
            if attempt >= attempts - 1:
                log.error("Giving up after %d conflicting attempt(s): %s", attempts, exc)
                raise
            log.warning("Retrying after concurrent change (attempt %d/%d): %s", attempt + 1, attempts, exc)
            if backoff_base:
                time.sleep(backoff_base * (2 ** attempt))
    raise ValueError("attempts must be at least 1")


def _business_timezone(context: RuntimeContext):
    return receipts.resolve_timezone(context.settings.timezone)


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------


def add_product(
    context: RuntimeContext,
    *,
    product_name: str,
    sale_price: Decimal,
    unit_cost: Decimal,
    stock: int = 0,
    supplier_id: Optional[str] = None,
    is_active: bool = True,
    product_id: Optional[str] = None,
    employee_id: Optional[str] = None,
) -> data_manager.ProductRow:
    """Register a product, recording any opening stock as a stock update.

    The opening quantity is written as a ``new_supply`` movement from zero so
    that replaying the product's stock updates always starts at zero.

    Raises:
        ValueError: For blank names, negative prices or costs, or negative
            opening stock.
        MissingReferenceError: If ``supplier_id`` is unknown.
    """
    if not product_name.strip():
        raise ValueError("Product name must not be blank")
    require_nonnegative_money(sale_price)
    require_nonnegative_money(unit_cost)
    if stock < 0:
        raise ValueError("Opening stock must be zero or positive")
    if supplier_id is not None:
        get_supplier(context, supplier_id)

    store = context.store
    product_id = product_id or store.new_id(Collection.PRODUCTS)
    row = data_manager.ProductRow(
        product_id=product_id,
        product_name=product_name.strip(),
        sale_price=sale_price,
        unit_cost=unit_cost,
        stock=stock,
        supplier_id=supplier_id,
        is_active=is_active,
    )
    operations: List[Operation] = [CreateOperation(Collection.PRODUCTS, data_manager.serialize_product(row), product_id)]
    if stock:
        opening = data_manager.StockUpdateRow(
            stock_update_id=store.new_id(Collection.STOCK_UPDATES),
            product_id=product_id,
            quantity_change=stock,
            previous_stock=0,
            new_stock=stock,
            reason=StockReason.NEW_SUPPLY.value,
            reference_id=None,
            employee_id=employee_id,
        )
        operations.append(
            CreateOperation(Collection.STOCK_UPDATES, data_manager.serialize_stock_update(opening), opening.stock_update_id)
        )
    store.batch_commit(operations)
    log.info("Added product '%s' (%s) with opening stock %d", product_id, row.product_name, stock)
    return get_product(context, product_id)


def add_customer(
    context: RuntimeContext,
    *,
    customer_name: str,
    customer_type: CustomerType,
    phone: Optional[str] = None,
    email: Optional[str] = None,
    customer_id: Optional[str] = None,
) -> data_manager.CustomerRow:
    """Register a customer with a zero balance."""
    if not customer_name.strip():
        raise ValueError("Customer name must not be blank")
    row = data_manager.CustomerRow(
        customer_id=customer_id or context.store.new_id(Collection.CUSTOMERS),
        customer_name=customer_name.strip(),
        customer_type=CustomerType(customer_type).value,
        phone=phone,
        email=email,
        credit_balance=ZERO,
    )
    context.store.create(Collection.CUSTOMERS, data_manager.serialize_customer(row), record_id=row.customer_id)
    log.info("Added %s customer '%s' (%s)", row.customer_type, row.customer_id, row.customer_name)
    return get_customer(context, row.customer_id)


def add_supplier(
    context: RuntimeContext,
    *,
    supplier_name: str,
    contact_person: Optional[str] = None,
    phone: Optional[str] = None,
    supplier_id: Optional[str] = None,
) -> data_manager.SupplierRow:
    if not supplier_name.strip():
        raise ValueError("Supplier name must not be blank")
    row = data_manager.SupplierRow(
        supplier_id=supplier_id or context.store.new_id(Collection.SUPPLIERS),
        supplier_name=supplier_name.strip(),
        contact_person=contact_person,
        phone=phone,
    )
    context.store.create(Collection.SUPPLIERS, data_manager.serialize_supplier(row), record_id=row.supplier_id)
    log.info("Added supplier '%s' (%s)", row.supplier_id, row.supplier_name)
    return get_supplier(context, row.supplier_id)


def add_employee(
    context: RuntimeContext,
    *,
    employee_name: str,
    role: EmployeeRole = EmployeeRole.EMPLOYEE,
    is_active: bool = True,
    employee_id: Optional[str] = None,
) -> data_manager.EmployeeRow:
    if not employee_name.strip():
        raise ValueError("Employee name must not be blank")
    row = data_manager.EmployeeRow(
        employee_id=employee_id or context.store.new_id(Collection.EMPLOYEES),
        employee_name=employee_name.strip(),
        role=EmployeeRole(role).value,
        is_active=is_active,
    )
    context.store.create(Collection.EMPLOYEES, data_manager.serialize_employee(row), record_id=row.employee_id)
    log.info("Added employee '%s' (%s, %s)", row.employee_id, row.employee_name, row.role)
    return get_employee(context, row.employee_id)


def deactivate_employee(context: RuntimeContext, employee_id: str) -> data_manager.EmployeeRow:
    """Soft-delete an employee; past sales keep pointing at the record."""
    employee = get_employee(context, employee_id)
    context.store.update(Collection.EMPLOYEES, employee_id, {"IsActive": False}, expected_version=employee.version)
    log.info("Deactivated employee '%s'", employee_id)
    return get_employee(context, employee_id)


def add_bill(context: RuntimeContext, command: NewBillCommand) -> data_manager.BillRow:
    """Register an unpaid vendor bill.

    Raises:
        ValueError: If the amount is not positive, the vendor is blank, or the
            recurrence rule is incomplete.
    """
    require_positive_money(command.amount)
    if not command.vendor.strip():
        raise ValueError("Vendor must not be blank")
    _validate_recurrence(command.recurrence_frequency, command.recurrence_period)

    row = data_manager.BillRow(
        bill_id=context.store.new_id(Collection.BILLS),
        vendor=command.vendor.strip(),
        description=command.description,
        amount=command.amount,
        due_date=command.due_date,
        status=BillStatus.UNPAID.value,
        category=BillCategory(command.category).value,
        recurrence_frequency=command.recurrence_frequency,
        recurrence_period=command.recurrence_period.value if command.recurrence_period else None,
        paid_at=None,
        previous_bill_id=None,
    )
    context.store.create(Collection.BILLS, data_manager.serialize_bill(row), record_id=row.bill_id)
    log.info("Added bill '%s' for %s due %s (amount=%s)", row.bill_id, row.vendor, row.due_date, row.amount)
    return get_bill(context, row.bill_id)


def _validate_recurrence(frequency: Optional[int], period: Optional[RecurrencePeriod]) -> None:
    if frequency is None and period is None:
        return
    if frequency is None or period is None:
        raise ValueError("Recurring bills need both a frequency and a period")
    if isinstance(frequency, bool) or not isinstance(frequency, int) or frequency <= 0:
        raise ValueError("Recurrence frequency must be a positive whole number")
    RecurrencePeriod(period)


# ---------------------------------------------------------------------------
# Sale ledger engine
# ---------------------------------------------------------------------------


def validate_sale_command(context: RuntimeContext, command: SaleCommand) -> None:
    """Check a sale request before anything is written.

    Raises:
        EmptyCartError: If the cart has no lines.
        MissingCustomerError: If a credit or invoice sale names no customer.
        MissingInvoiceNumberError: If an invoice sale has no invoice number.
        MissingReferenceError: If the employee, customer, or a product is
            unknown.
        BusinessRuleViolation: If the employee or a product is inactive, or
            the payment method or status is unsupported.
        ValueError: For invalid quantities, prices, discounts, or tax.
    """
    if not command.items:
        log.warning("Rejected sale with an empty cart")
        raise EmptyCartError("Cannot record a sale with an empty cart")
    if not isinstance(command.payment_method, PaymentMethod):
        raise BusinessRuleViolation(f"Unsupported payment method: {command.payment_method}")
    if not isinstance(command.payment_status, PaymentStatus):
        raise BusinessRuleViolation(f"Unsupported payment status: {command.payment_status}")
    if command.payment_status in DEFERRED_PAYMENT_STATUSES and not command.customer_id:
        log.warning("Rejected %s sale without a customer", command.payment_status.value)
        raise MissingCustomerError(f"A {command.payment_status.value} sale requires a customer")
    if command.payment_status is PaymentStatus.INVOICE and not (command.invoice_number or "").strip():
        log.warning("Rejected invoice sale without an invoice number")
        raise MissingInvoiceNumberError("An invoice sale requires an invoice number")

    require_active_employee(context, command.employee_id)
    if command.customer_id:
        get_customer(context, command.customer_id)

    for line in command.items:
        require_positive_quantity(line.quantity)
        product = get_product(context, line.product_id)
        if not product.is_active:
            log.warning("Attempted sale on inactive product '%s'", line.product_id)
            raise BusinessRuleViolation(f"Product '{line.product_id}' is inactive")
        if line.sale_price is not None:
            require_nonnegative_money(line.sale_price)
        pricing.validate_adjustment(line.discount, label="discount")
    pricing.validate_adjustment(command.discount, label="discount")
    pricing.validate_adjustment(command.tax, label="tax")


def record_sale(context: RuntimeContext, command: SaleCommand) -> SaleRecord:
    """Validate, price, number, and commit a sale with all of its side effects.

    The workflow validates the request without writing, prices the cart with
    :func:`pricing.compute_sale_totals`, reserves a receipt number, and then
    commits the sale, its lines, the receipt counter, the stock movements, and
    the customer balance change in one batch. Version conflicts (a concurrent
    sale touched the same product, customer, or counter) are retried up to
    ``settings.commit_attempts`` times with freshly read documents.

    Args:
        context (RuntimeContext): Runtime context providing the record store.
        command (SaleCommand): Structured intent describing the sale.

    Returns:
        SaleRecord: The stored sale, including the commit timestamp, and its
            lines.

    Raises:
        EmptyCartError: If the cart is empty.
        MissingCustomerError: If a credit or invoice sale names no customer.
        InsufficientStockError: If stock would go negative and the settings
            forbid it.
        PersistenceError: If the store rejected the batch; nothing is applied.
    """
    validate_sale_command(context, command)
    return run_with_retry(lambda: _commit_sale(context, command), attempts=context.settings.commit_attempts)


def _commit_sale(context: RuntimeContext, command: SaleCommand) -> SaleRecord:
    store = context.store
    tz = _business_timezone(context)
    committed_at = store.now()
    day = receipts.business_day(committed_at, tz)

    line_items = []
    for line in command.items:
        product = _fetch(context, Collection.PRODUCTS, line.product_id, data_manager.deserialize_product)
        item = pricing.LineItem(
            product_id=product.product_id,
            quantity=line.quantity,
            sale_price=line.sale_price if line.sale_price is not None else product.sale_price,
            unit_cost=product.unit_cost,
            discount=line.discount,
        )
        pricing.validate_line_item(item)
        line_items.append(item)
    totals = pricing.compute_sale_totals(line_items, command.discount, command.tax)
    receipt_number, counter_operation = receipts.plan_receipt_allocation(store, day=day, tz=tz)

    sale = build_sale_row(
        command,
        totals,
        sale_id=store.new_id(Collection.SALES),
        receipt_number=receipt_number,
    )
    items = tuple(
        build_sale_item_row(item, sale_id=sale.sale_id, line_number=index, sale_item_id=store.new_id(Collection.SALE_ITEMS))
        for index, item in enumerate(line_items, start=1)
    )
    apply_sale_side_effects(context, sale, items, extra_operations=[counter_operation], created_at=committed_at)

    stored_sale = get_sale(context, sale.sale_id)
    log.info(
        "Recorded sale '%s' receipt %s (%d line(s), total=%s, profit=%s, status=%s)",
        stored_sale.sale_id,
        stored_sale.receipt_number,
        len(items),
        stored_sale.total,
        stored_sale.profit,
        stored_sale.payment_status,
    )
    return SaleRecord(sale=stored_sale, items=tuple(list_sale_items(context, sale.sale_id)))


def build_sale_row(
    command: SaleCommand,
    totals: pricing.SaleTotals,
    *,
    sale_id: str,
    receipt_number: str,
) -> data_manager.SaleRow:
    """Materialize a priced :class:`SaleCommand` into a sale row ready for the store."""
    return data_manager.SaleRow(
        sale_id=sale_id,
        receipt_number=receipt_number,
        employee_id=command.employee_id,
        customer_id=command.customer_id,
        payment_method=command.payment_method.value,
        payment_status=command.payment_status.value,
        subtotal=totals.subtotal,
        item_discount_total=totals.item_discount_total,
        order_discount_kind=command.discount.kind.value if command.discount else None,
        order_discount_value=command.discount.value if command.discount else None,
        pre_tax_total=totals.pre_tax_total,
        tax_kind=command.tax.kind.value if command.tax else None,
        tax_value=command.tax.value if command.tax else None,
        tax_amount=totals.tax_amount,
        total=totals.total,
        total_cost=totals.total_cost,
        profit=totals.profit,
        invoice_number=command.invoice_number.strip() if command.invoice_number else None,
    )


def build_sale_item_row(
    item: pricing.LineItem,
    *,
    sale_id: str,
    line_number: int,
    sale_item_id: str,
) -> data_manager.SaleItemRow:
    return data_manager.SaleItemRow(
        sale_item_id=sale_item_id,
        sale_id=sale_id,
        line_number=line_number,
        product_id=item.product_id,
        quantity=item.quantity,
        sale_price=item.sale_price,
        unit_cost=item.unit_cost,
        discount_kind=item.discount.kind.value if item.discount else None,
        discount_value=item.discount.value if item.discount else None,
    )


def plan_sale_side_effects(
    context: RuntimeContext,
    sale: data_manager.SaleRow,
    items: Sequence[data_manager.SaleItemRow],
) -> List[Operation]:
    """Work out the stock and balance writes a sale implies.

    Each line produces a ``sale`` stock update; lines for the same product chain
    through the running stock so every update satisfies ``previous + change ==
    new``. Each product gets one stock write guarded by the version read here,
    and credit or invoice sales add the total to the customer's balance under
    the same guard. Nothing is written.

    Raises:
        InsufficientStockError: If a product would drop below zero while the
            settings forbid negative stock.
        MissingReferenceError: If a product or the customer disappeared.
    """
    operations: List[Operation] = []
    products: Dict[str, data_manager.ProductRow] = {}
    running: Dict[str, int] = {}

    for item in items:
        if item.product_id not in products:
            product = _fetch(context, Collection.PRODUCTS, item.product_id, data_manager.deserialize_product)
            products[item.product_id] = product
            running[item.product_id] = product.stock
        previous = running[item.product_id]
        new_stock = previous - item.quantity
        if new_stock < 0 and not context.settings.allow_negative_stock:
            log.warning(
                "Rejected sale '%s': product '%s' has %d in stock, %d requested",
                sale.sale_id,
                item.product_id,
                products[item.product_id].stock,
                products[item.product_id].stock - new_stock,
            )
            raise InsufficientStockError(
                f"Insufficient stock for product '{item.product_id}': "
                f"{products[item.product_id].stock} available"
            )
        running[item.product_id] = new_stock
        update = data_manager.StockUpdateRow(
            stock_update_id=context.store.new_id(Collection.STOCK_UPDATES),
            product_id=item.product_id,
            quantity_change=-item.quantity,
            previous_stock=previous,
            new_stock=new_stock,
            reason=StockReason.SALE.value,
            reference_id=sale.sale_id,
            employee_id=sale.employee_id,
        )
        operations.append(
            CreateOperation(Collection.STOCK_UPDATES, data_manager.serialize_stock_update(update), update.stock_update_id)
        )

    for product_id, product in products.items():
        operations.append(
            UpdateOperation(Collection.PRODUCTS, product_id, {"Stock": running[product_id]}, expected_version=product.version)
        )

    if PaymentStatus(sale.payment_status) in DEFERRED_PAYMENT_STATUSES and sale.customer_id:
        customer = _fetch(context, Collection.CUSTOMERS, sale.customer_id, data_manager.deserialize_customer)
        operations.append(
            UpdateOperation(
                Collection.CUSTOMERS,
                customer.customer_id,
                {"CreditBalance": customer.credit_balance + sale.total},
                expected_version=customer.version,
            )
        )
    return operations


def apply_sale_side_effects(
    context: RuntimeContext,
    sale: data_manager.SaleRow,
    items: Sequence[data_manager.SaleItemRow],
    *,
    extra_operations: Sequence[Operation] = (),
    created_at: Optional[datetime] = None,
) -> List[str]:
    """Commit the sale, its lines, and its stock/balance effects as one batch.

    ``extra_operations`` (the receipt counter write) lead the batch. Either
    everything lands or nothing does. ``created_at`` stamps the sale and its
    lines and must be the moment the receipt day was taken from; without it
    the store's commit time is used.

    Raises:
        PersistenceError: If the store rejects the batch.
    """
    stamp = {"CreatedAt": created_at.isoformat()} if created_at is not None else {}
    operations: List[Operation] = list(extra_operations)
    operations.append(CreateOperation(Collection.SALES, {**data_manager.serialize_sale(sale), **stamp}, sale.sale_id))
    operations.extend(
        CreateOperation(Collection.SALE_ITEMS, {**data_manager.serialize_sale_item(item), **stamp}, item.sale_item_id)
        for item in items
    )
    operations.extend(plan_sale_side_effects(context, sale, items))
    return context.store.batch_commit(operations)


# ---------------------------------------------------------------------------
# Stock movements outside sales
# ---------------------------------------------------------------------------


def _commit_stock_change(
    context: RuntimeContext,
    *,
    product_id: str,
    quantity_change: int,
    reason: StockReason,
    employee_id: Optional[str],
    reference_id: Optional[str] = None,
    extra_operations: Sequence[Operation] = (),
) -> data_manager.StockUpdateRow:
    """Apply one signed stock change and its audit entry atomically."""

    def attempt() -> data_manager.StockUpdateRow:
        product = _fetch(context, Collection.PRODUCTS, product_id, data_manager.deserialize_product)
        new_stock = product.stock + quantity_change
        if new_stock < 0 and not context.settings.allow_negative_stock:
            log.warning("Rejected %s on '%s': stock %d, change %d", reason.value, product_id, product.stock, quantity_change)
            raise InsufficientStockError(f"Stock for product '{product_id}' cannot drop below zero")
        update = data_manager.StockUpdateRow(
            stock_update_id=context.store.new_id(Collection.STOCK_UPDATES),
            product_id=product_id,
            quantity_change=quantity_change,
            previous_stock=product.stock,
            new_stock=new_stock,
            reason=reason.value,
            reference_id=reference_id,
            employee_id=employee_id,
        )
        context.store.batch_commit(
            [
                *extra_operations,
                UpdateOperation(Collection.PRODUCTS, product_id, {"Stock": new_stock}, expected_version=product.version),
                CreateOperation(Collection.STOCK_UPDATES, data_manager.serialize_stock_update(update), update.stock_update_id),
            ]
        )
        return data_manager.deserialize_stock_update(context.store.get(Collection.STOCK_UPDATES, update.stock_update_id))

    stored = run_with_retry(attempt, attempts=context.settings.commit_attempts)
    log.info(
        "Recorded %s for product '%s' (%+d: %d -> %d)",
        reason.value,
        product_id,
        quantity_change,
        stored.previous_stock,
        stored.new_stock,
    )
    return stored


def record_supply(context: RuntimeContext, command: SupplyCommand) -> data_manager.StockUpdateRow:
    """Receive goods: add stock, log the supply, and audit the movement.

    Raises:
        MissingReferenceError: If the product, supplier, or employee is
            unknown.
        ValueError: When the quantity or unit cost is invalid.
    """
    require_positive_quantity(command.quantity)
    require_nonnegative_money(command.unit_cost)
    require_active_employee(context, command.employee_id)
    product = get_product(context, command.product_id)
    supplier_id = command.supplier_id or product.supplier_id
    if supplier_id is not None:
        get_supplier(context, supplier_id)

    supply = data_manager.SupplyRow(
        supply_id=context.store.new_id(Collection.SUPPLIES),
        supplier_id=supplier_id,
        product_id=command.product_id,
        quantity=command.quantity,
        unit_cost=command.unit_cost,
        employee_id=command.employee_id,
    )
    return _commit_stock_change(
        context,
        product_id=command.product_id,
        quantity_change=command.quantity,
        reason=StockReason.NEW_SUPPLY,
        employee_id=command.employee_id,
        reference_id=supply.supply_id,
        extra_operations=[CreateOperation(Collection.SUPPLIES, data_manager.serialize_supply(supply), supply.supply_id)],
    )


def record_stock_correction(context: RuntimeContext, command: StockCorrectionCommand) -> data_manager.StockUpdateRow:
    """Apply a manual signed correction (for example after a stocktake)."""
    if isinstance(command.quantity_change, bool) or not isinstance(command.quantity_change, int) or command.quantity_change == 0:
        raise ValueError("A stock correction must change stock by a non-zero whole number")
    require_active_employee(context, command.employee_id)
    get_product(context, command.product_id)
    return _commit_stock_change(
        context,
        product_id=command.product_id,
        quantity_change=command.quantity_change,
        reason=StockReason.CORRECTION,
        employee_id=command.employee_id,
    )


def record_return(context: RuntimeContext, command: ReturnCommand) -> data_manager.StockUpdateRow:
    """Put returned goods back into stock.

    When ``sale_id`` is given the product must appear on that sale and the
    returned quantity may not exceed what was sold minus earlier returns.
    Refunds are not booked here.

    Raises:
        BusinessRuleViolation: If the return does not match the sale.
    """
    require_positive_quantity(command.quantity)
    require_active_employee(context, command.employee_id)
    get_product(context, command.product_id)
    if command.sale_id is not None:
        get_sale(context, command.sale_id)
        sold = sum(item.quantity for item in list_sale_items(context, command.sale_id) if item.product_id == command.product_id)
        returned = sum(
            update.quantity_change
            for update in list_stock_updates(context, command.product_id)
            if update.reason == StockReason.RETURN.value and update.reference_id == command.sale_id
        )
        if command.quantity > sold - returned:
            log.warning(
                "Rejected return of %d x '%s' on sale '%s' (sold %d, returned %d)",
                command.quantity,
                command.product_id,
                command.sale_id,
                sold,
                returned,
            )
            raise BusinessRuleViolation(
                f"Cannot return {command.quantity} of '{command.product_id}': only {sold - returned} left on sale"
            )
    return _commit_stock_change(
        context,
        product_id=command.product_id,
        quantity_change=command.quantity,
        reason=StockReason.RETURN,
        employee_id=command.employee_id,
        reference_id=command.sale_id,
    )


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


def apply_customer_payment(context: RuntimeContext, command: CustomerPaymentCommand) -> data_manager.PaymentRow:
    """Receive money against a customer's running balance.

    The new balance is ``max(0, balance - amount)``: overpayments clamp the
    balance at zero rather than turning it into store credit. The customer
    update and the inbound payment (which snapshots the new balance) are
    committed together.

    Raises:
        ValueError: If ``amount`` is not positive.
        MissingReferenceError: If the customer or employee is unknown.
    """
    require_positive_money(command.amount)
    require_active_employee(context, command.employee_id)
    get_customer(context, command.customer_id)

    def attempt() -> data_manager.PaymentRow:
        customer = _fetch(context, Collection.CUSTOMERS, command.customer_id, data_manager.deserialize_customer)
        new_balance = max(ZERO, customer.credit_balance - command.amount)
        payment = _build_inbound_payment(context, command.amount, command.employee_id, customer.customer_id, new_balance)
        context.store.batch_commit(
            [
                UpdateOperation(
                    Collection.CUSTOMERS,
                    customer.customer_id,
                    {"CreditBalance": new_balance},
                    expected_version=customer.version,
                ),
                CreateOperation(Collection.PAYMENTS, data_manager.serialize_payment(payment), payment.payment_id),
            ]
        )
        return data_manager.deserialize_payment(context.store.get(Collection.PAYMENTS, payment.payment_id))

    stored = run_with_retry(attempt, attempts=context.settings.commit_attempts)
    log.info(
        "Received payment '%s' from customer '%s' (amount=%s, balance now %s)",
        stored.payment_id,
        command.customer_id,
        stored.amount,
        stored.balance_after_payment,
    )
    return stored


def apply_invoice_payment(context: RuntimeContext, command: InvoicePaymentCommand) -> data_manager.PaymentRow:
    """Receive money against a specific credit or invoice sale.

    Besides reducing the customer's balance (clamped at zero), the payment
    closes the sale: once the amounts received for it reach its total, the
    sale's status flips to ``paid``. Paying more than is still owed on the sale
    is refused rather than clamped.

    Raises:
        ValueError: If ``amount`` is not positive.
        MissingReferenceError: If the sale, its customer, or the employee is
            unknown.
        BusinessRuleViolation: If the sale is already paid or the amount
            exceeds what is owed on it.
    """
    require_positive_money(command.amount)
    require_active_employee(context, command.employee_id)

    def attempt() -> data_manager.PaymentRow:
        sale = get_sale(context, command.sale_id)
        if sale.payment_status == PaymentStatus.PAID.value:
            log.warning("Rejected payment on already paid sale '%s'", sale.sale_id)
            raise BusinessRuleViolation(f"Sale '{sale.sale_id}' is already paid")
        if not sale.customer_id:
            raise MissingReferenceError(f"Sale '{sale.sale_id}' has no customer to settle")
        outstanding = sale.total - amount_paid_on_sale(context, sale.sale_id)
        if command.amount > outstanding:
            log.warning(
                "Rejected payment of %s on sale '%s' with %s outstanding",
                command.amount,
                sale.sale_id,
                outstanding,
            )
            raise BusinessRuleViolation(
                f"Payment of {command.amount} exceeds the {outstanding} owed on sale '{sale.sale_id}'"
            )

        customer = _fetch(context, Collection.CUSTOMERS, sale.customer_id, data_manager.deserialize_customer)
        new_balance = max(ZERO, customer.credit_balance - command.amount)
        payment = _build_inbound_payment(
            context, command.amount, command.employee_id, customer.customer_id, new_balance, sale_id=sale.sale_id
        )
        operations: List[Operation] = [
            UpdateOperation(
                Collection.CUSTOMERS,
                customer.customer_id,
                {"CreditBalance": new_balance},
                expected_version=customer.version,
            ),
            CreateOperation(Collection.PAYMENTS, data_manager.serialize_payment(payment), payment.payment_id),
        ]
        if command.amount >= outstanding:
            operations.append(
                UpdateOperation(
                    Collection.SALES,
                    sale.sale_id,
                    {"PaymentStatus": PaymentStatus.PAID.value},
                    expected_version=sale.version,
                )
            )
        context.store.batch_commit(operations)
        return data_manager.deserialize_payment(context.store.get(Collection.PAYMENTS, payment.payment_id))

    stored = run_with_retry(attempt, attempts=context.settings.commit_attempts)
    log.info("Received payment '%s' on sale '%s' (amount=%s)", stored.payment_id, command.sale_id, stored.amount)
    return stored


def amount_paid_on_sale(context: RuntimeContext, sale_id: str) -> Decimal:
    """Sum the inbound payments already booked against ``sale_id``."""
    records = context.store.query(
        Collection.PAYMENTS,
        lambda record: str(record.get("SaleID")) == sale_id and record.get("Direction") == PaymentDirection.INBOUND.value,
    )
    return sum((data_manager.to_decimal(record.get("Amount")) for record in records), ZERO)


def _build_inbound_payment(
    context: RuntimeContext,
    amount: Decimal,
    employee_id: str,
    customer_id: str,
    balance_after: Decimal,
    *,
    sale_id: Optional[str] = None,
) -> data_manager.PaymentRow:
    return data_manager.PaymentRow(
        payment_id=context.store.new_id(Collection.PAYMENTS),
        direction=PaymentDirection.INBOUND.value,
        customer_id=customer_id,
        sale_id=sale_id,
        bill_id=None,
        amount=amount,
        employee_id=employee_id,
        balance_after_payment=balance_after,
    )


def advance_due_date(due_date: date, frequency: int, period: RecurrencePeriod) -> date:
    """Move ``due_date`` forward by ``frequency`` units of ``period``.

    Month steps keep the day of month where possible and otherwise fall back to
    the month's last day (31 January + 1 month = 28/29 February).

    Raises:
        ValueError: If ``frequency`` is not a positive whole number.
    """
    if isinstance(frequency, bool) or not isinstance(frequency, int) or frequency <= 0:
        raise ValueError("Recurrence frequency must be a positive whole number")
    period = RecurrencePeriod(period)
    if period is RecurrencePeriod.DAYS:
        return due_date + timedelta(days=frequency)
    if period is RecurrencePeriod.WEEKS:
        return due_date + timedelta(weeks=frequency)

    month_index = due_date.month - 1 + frequency
    year = due_date.year + month_index // 12
    month = month_index % 12 + 1
    day = min(due_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def apply_bill_payment(context: RuntimeContext, command: BillPaymentCommand) -> BillPaymentOutcome:
    """Pay a vendor bill in full.

    The bill flips to ``paid`` with a ``PaidAt`` stamp and an outbound payment
    is written. Recurring bills spawn an unpaid successor due one recurrence
    step after the paid bill's due date; the paid bill keeps its own due date.
    All writes share one batch.

    Raises:
        MissingReferenceError: If the bill or employee is unknown.
        BusinessRuleViolation: If the bill is already paid.
    """
    require_active_employee(context, command.employee_id)

    def attempt() -> Tuple[str, str, Optional[str]]:
        bill = get_bill(context, command.bill_id)
        if bill.status == BillStatus.PAID.value:
            log.warning("Rejected payment of already paid bill '%s'", bill.bill_id)
            raise BusinessRuleViolation(f"Bill '{bill.bill_id}' is already paid")

        paid_at = context.store.now().isoformat()
        payment = data_manager.PaymentRow(
            payment_id=context.store.new_id(Collection.PAYMENTS),
            direction=PaymentDirection.OUTBOUND.value,
            customer_id=None,
            sale_id=None,
            bill_id=bill.bill_id,
            amount=bill.amount,
            employee_id=command.employee_id,
            balance_after_payment=None,
        )
        operations: List[Operation] = [
            UpdateOperation(
                Collection.BILLS,
                bill.bill_id,
                {"Status": BillStatus.PAID.value, "PaidAt": paid_at},
                expected_version=bill.version,
            ),
            CreateOperation(Collection.PAYMENTS, data_manager.serialize_payment(payment), payment.payment_id),
        ]

        successor_id: Optional[str] = None
        if bill.is_recurring:
            successor = data_manager.BillRow(
                bill_id=context.store.new_id(Collection.BILLS),
                vendor=bill.vendor,
                description=bill.description,
                amount=bill.amount,
                due_date=advance_due_date(
                    bill.due_date,
                    bill.recurrence_frequency,  # type: ignore[arg-type]
                    RecurrencePeriod(bill.recurrence_period),
                ),
                status=BillStatus.UNPAID.value,
                category=bill.category,
                recurrence_frequency=bill.recurrence_frequency,
                recurrence_period=bill.recurrence_period,
                paid_at=None,
                previous_bill_id=bill.bill_id,
            )
            successor_id = successor.bill_id
            operations.append(CreateOperation(Collection.BILLS, data_manager.serialize_bill(successor), successor.bill_id))

        context.store.batch_commit(operations)
        return bill.bill_id, payment.payment_id, successor_id

    bill_id, payment_id, successor_id = run_with_retry(attempt, attempts=context.settings.commit_attempts)
    outcome = BillPaymentOutcome(
        payment=data_manager.deserialize_payment(context.store.get(Collection.PAYMENTS, payment_id)),
        bill=get_bill(context, bill_id),
        next_bill=get_bill(context, successor_id) if successor_id else None,
    )
    log.info(
        "Paid bill '%s' to %s (amount=%s)%s",
        bill_id,
        outcome.bill.vendor,
        outcome.payment.amount,
        f"; next bill '{successor_id}' due {outcome.next_bill.due_date}" if outcome.next_bill else "",
    )
    return outcome


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def calculate_inventory(context: RuntimeContext) -> Dict[str, int]:
    """Return the current stock of every product keyed by ``ProductID``."""
    inventory = {product.product_id: product.stock for product in list_products(context, include_inactive=True)}
    log.debug("Calculated inventory balances for %d products", len(inventory))
    return inventory


def _within_days(created_at: str, tz, start: Optional[date], end: Optional[date]) -> bool:
    day = receipts.business_day(receipts.parse_timestamp(created_at), tz)
    return (start is None or day >= start) and (end is None or day <= end)


def _sales_between(
    context: RuntimeContext,
    start: Optional[date],
    end: Optional[date],
    employee_id: Optional[str] = None,
) -> List[data_manager.SaleRow]:
    tz = _business_timezone(context)
    return [
        sale
        for sale in list_sales(context)
        if _within_days(sale.created_at, tz, start, end) and employee_id in (None, sale.employee_id)
    ]


def calculate_sales_summary(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
    employee_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Aggregate revenue, cost, tax, and profit for sales in an inclusive day range.

    Days are business-local. ``margin`` is profit as a percentage of the
    pre-tax revenue and is zero when there was no revenue. The
    ``paid_total``/``credit_total``/``invoice_total`` entries split
    ``total`` by the sales' current payment status. ``employee_id`` narrows
    the summary to one employee's sales.
    """
    sales = _sales_between(context, start, end, employee_id)
    summary: Dict[str, Any] = {
        "sale_count": len(sales),
        "revenue": ZERO,
        "tax": ZERO,
        "total": ZERO,
        "total_cost": ZERO,
        "profit": ZERO,
        "paid_total": ZERO,
        "credit_total": ZERO,
        "invoice_total": ZERO,
    }
    for sale in sales:
        summary["revenue"] += sale.pre_tax_total
        summary["tax"] += sale.tax_amount
        summary["total"] += sale.total
        summary["total_cost"] += sale.total_cost
        summary["profit"] += sale.profit
        summary[f"{sale.payment_status}_total"] += sale.total
    revenue = summary["revenue"]
    summary["margin"] = (summary["profit"] / revenue * 100) if revenue else ZERO
    log.debug("Calculated sales summary over %d sale(s): %s", len(sales), summary)
    return summary


def calculate_daily_sales(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
    employee_id: Optional[str] = None,
) -> Dict[date, Decimal]:
    """Group sale totals by business-local day, in chronological order."""
    tz = _business_timezone(context)
    buckets: Dict[date, Decimal] = {}
    for sale in _sales_between(context, start, end, employee_id):
        day = receipts.business_day(receipts.parse_timestamp(sale.created_at), tz)
        buckets[day] = buckets.get(day, ZERO) + sale.total
    return dict(sorted(buckets.items()))


def calculate_payment_summary(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
    employee_id: Optional[str] = None,
) -> Dict[str, Decimal]:
    """Total the money that moved in and out over an inclusive day range.

    Inbound payments split into ``invoice_payments`` (settling a specific
    sale) and ``credit_payments`` (reducing a customer's running balance).
    Outbound bill payments split by whether the bill they settled recurs.
    ``employee_id`` keeps only payments taken by that employee.
    """
    tz = _business_timezone(context)
    bills = {bill.bill_id: bill for bill in list_bills(context)}
    summary = {
        "inbound_total": ZERO,
        "invoice_payments": ZERO,
        "credit_payments": ZERO,
        "bills_paid_total": ZERO,
        "recurring_bills": ZERO,
        "one_time_bills": ZERO,
    }
    for payment in list_payments(context):
        if employee_id not in (None, payment.employee_id):
            continue
        if not _within_days(payment.created_at, tz, start, end):
            continue
        if payment.direction == PaymentDirection.INBOUND.value:
            summary["inbound_total"] += payment.amount
            summary["invoice_payments" if payment.sale_id else "credit_payments"] += payment.amount
        elif payment.bill_id:
            bill = bills.get(payment.bill_id)
            summary["bills_paid_total"] += payment.amount
            summary["recurring_bills" if bill is not None and bill.is_recurring else "one_time_bills"] += payment.amount
    log.debug("Calculated payment summary: %s", summary)
    return summary



def calculate_outstanding_debts(context: RuntimeContext) -> Dict[str, Decimal]:
    """Return every customer with a positive balance, largest debt first."""
    debts = {
        customer.customer_id: customer.credit_balance
        for customer in list_customers(context)
        if customer.credit_balance > ZERO
    }
    return dict(sorted(debts.items(), key=lambda entry: entry[1], reverse=True))


def list_overdue_bills(context: RuntimeContext, *, today: Optional[date] = None) -> List[data_manager.BillRow]:
    """Unpaid bills whose due date is before ``today`` (business-local by default)."""
    if today is None:
        today = receipts.business_day(context.store.now(), _business_timezone(context))
    return [bill for bill in list_bills(context, status=BillStatus.UNPAID) if bill.due_date < today]


def replay_stock_history(context: RuntimeContext, product_id: str) -> int:
    """Rebuild a product's stock by replaying its stock updates in order.

    Replay starts at the first update's ``PreviousStock`` (zero for products
    created through :func:`add_product`). Products without any movement replay
    to their stored stock.

    Raises:
        MissingReferenceError: If the product is unknown.
        LedgerIntegrityError: If an update's arithmetic is wrong or an update
            does not start where the previous one ended.
    """
    product = _fetch(context, Collection.PRODUCTS, product_id, data_manager.deserialize_product)
    updates = list_stock_updates(context, product_id)
    if not updates:
        return product.stock

    stock = updates[0].previous_stock
    for update in updates:
        if update.previous_stock + update.quantity_change != update.new_stock:
            raise LedgerIntegrityError(
                f"Stock update '{update.stock_update_id}' does not add up: "
                f"{update.previous_stock} {update.quantity_change:+d} != {update.new_stock}"
            )
        if update.previous_stock != stock:
            raise LedgerIntegrityError(
                f"Stock update '{update.stock_update_id}' starts at {update.previous_stock}, expected {stock}"
            )
        stock = update.new_stock
    return stock


def verify_stock_history(context: RuntimeContext, product_id: Optional[str] = None) -> None:
    """Check that replayed stock matches stored stock for one or all products.

    Raises:
        LedgerIntegrityError: Naming the first product whose history disagrees.
    """
    product_ids = [product_id] if product_id else [row.product_id for row in list_products(context, include_inactive=True)]
    for current_id in product_ids:
        replayed = replay_stock_history(context, current_id)
        stored = _fetch(context, Collection.PRODUCTS, current_id, data_manager.deserialize_product).stock
        if replayed != stored:
            log.error("Stock history mismatch for '%s': replayed %d, stored %d", current_id, replayed, stored)
            raise LedgerIntegrityError(
                f"Product '{current_id}' stock is {stored} but its history replays to {replayed}"
            )
    log.debug("Verified stock history for %d product(s)", len(product_ids))


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "EmptyCartError",
    "MissingCustomerError",
    "MissingInvoiceNumberError",
    "InsufficientStockError",
    "LedgerIntegrityError",
    "PersistenceError",
    "ConcurrencyConflict",
    "RuntimeContext",
    "SaleLine",
    "SaleCommand",
    "SaleRecord",
    "SupplyCommand",
    "StockCorrectionCommand",
    "ReturnCommand",
    "CustomerPaymentCommand",
    "InvoicePaymentCommand",
    "BillPaymentCommand",
    "NewBillCommand",
    "BillPaymentOutcome",
    "Adjustment",
]
