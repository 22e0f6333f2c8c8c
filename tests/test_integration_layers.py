"""Integration tests describing the end-to-end Shop Ledger workflows.

These scenarios exercise the data access and business logic layers against a
real workbook on disk: every flow persists, reloads, and checks that what was
written survives the round trip through openpyxl. The CLI scenarios drive
``cli.main`` with a generated ``config.ini``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from shop_ledger import cli, core_logic, data_manager
from shop_ledger.constants import (
    AdjustmentKind,
    Collection,
    CustomerType,
    PaymentMethod,
    PaymentStatus,
    RecurrencePeriod,
)
from shop_ledger.pricing import Adjustment


def _reload(context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Save the workbook and reopen it, as a new process would."""

    core_logic.persist_context(context)
    return core_logic.refresh_context(context)


def _register_sample_catalog(context: core_logic.RuntimeContext) -> None:
    core_logic.add_product(
        context,
        product_id="P-TEA",
        product_name="Green Tea",
        sale_price=Decimal("3.00"),
        unit_cost=Decimal("1.10"),
        stock=6,
    )
    core_logic.add_customer(
        context,
        customer_id="C-BEA",
        customer_name="Bea",
        customer_type=CustomerType.CREDIT,
    )
    core_logic.add_customer(
        context,
        customer_id="C-CORP",
        customer_name="Corp Ltd",
        customer_type=CustomerType.INVOICE,
    )


def _sell(context, quantity, *, status=PaymentStatus.PAID, **kwargs) -> core_logic.SaleRecord:
    command = core_logic.SaleCommand(
        items=[core_logic.SaleLine("P-TEA", quantity)],
        payment_method=PaymentMethod.CASH,
        payment_status=status,
        employee_id=context.settings.default_employee_id,
        **kwargs,
    )
    return core_logic.record_sale(context, command)


def test_sale_lifecycle_flow(runtime_context):
    """Walk through a stock, sale, and reporting cycle using both layers."""

    context = runtime_context
    _register_sample_catalog(context)
    context = _reload(context)

    record = _sell(context, 2, tax=Adjustment(AdjustmentKind.PERCENTAGE, Decimal("10")))
    context = _reload(context)

    sale = core_logic.get_sale(context, record.sale.sale_id)
    assert sale.receipt_number == "R-240115-0001"
    assert sale.total == Decimal("6.60")
    assert sale.tax_amount == Decimal("0.60")
    assert sale.profit == Decimal("3.80")
    assert [item.quantity for item in core_logic.list_sale_items(context, sale.sale_id)] == [2]

    assert core_logic.calculate_inventory(context)["P-TEA"] == 4
    summary = core_logic.calculate_sales_summary(context)
    assert summary["revenue"] == Decimal("6.00")
    assert summary["total"] == Decimal("6.60")
    core_logic.verify_stock_history(context)


def test_receipt_counter_survives_reload(runtime_context):
    """Numbering continues from the persisted counter after a restart."""

    context = runtime_context
    _register_sample_catalog(context)
    _sell(context, 1)
    _sell(context, 1)
    context = _reload(context)

    third = _sell(context, 1)

    assert third.sale.receipt_number == "R-240115-0003"
    counters = context.store.query(Collection.COUNTERS)
    assert [(record["CounterID"], record["Value"]) for record in counters] == [("receipt-240115", 3)]


def test_credit_sale_and_customer_payment_flow(runtime_context):
    """A tab grows with credit sales and shrinks, clamped at zero, with payments."""

    context = runtime_context
    _register_sample_catalog(context)
    _sell(context, 1, status=PaymentStatus.CREDIT, customer_id="C-BEA")
    _sell(context, 2, status=PaymentStatus.CREDIT, customer_id="C-BEA")
    context = _reload(context)

    assert core_logic.calculate_outstanding_debts(context) == {"C-BEA": Decimal("9.00")}

    employee = context.settings.default_employee_id
    core_logic.apply_customer_payment(context, core_logic.CustomerPaymentCommand("C-BEA", Decimal("4"), employee))
    context = _reload(context)
    assert core_logic.get_customer(context, "C-BEA").credit_balance == Decimal("5")

    payment = core_logic.apply_customer_payment(
        context, core_logic.CustomerPaymentCommand("C-BEA", Decimal("20"), employee)
    )
    context = _reload(context)

    assert payment.balance_after_payment == Decimal("0")
    assert core_logic.calculate_outstanding_debts(context) == {}
    assert [p.amount for p in core_logic.list_payments(context)] == [Decimal("4"), Decimal("20")]


def test_invoice_settlement_flow(runtime_context):
    """Partial invoice payments across restarts close the sale when settled."""

    context = runtime_context
    _register_sample_catalog(context)
    record = _sell(context, 3, status=PaymentStatus.INVOICE, customer_id="C-CORP", invoice_number="INV-100")
    context = _reload(context)

    employee = context.settings.default_employee_id
    core_logic.apply_invoice_payment(
        context, core_logic.InvoicePaymentCommand(record.sale.sale_id, Decimal("4.00"), employee)
    )
    context = _reload(context)
    assert core_logic.get_sale(context, record.sale.sale_id).payment_status == "invoice"
    assert core_logic.amount_paid_on_sale(context, record.sale.sale_id) == Decimal("4")

    core_logic.apply_invoice_payment(
        context, core_logic.InvoicePaymentCommand(record.sale.sale_id, Decimal("5.00"), employee)
    )
    context = _reload(context)

    assert core_logic.get_sale(context, record.sale.sale_id).payment_status == "paid"
    assert core_logic.get_sale(context, record.sale.sale_id).invoice_number == "INV-100"
    assert core_logic.get_customer(context, "C-CORP").credit_balance == Decimal("0")


def test_recurring_bill_flow(runtime_context):
    """Paying a monthly bill stores the payment and a successor due next month."""

    context = runtime_context
    bill = core_logic.add_bill(
        context,
        core_logic.NewBillCommand(
            vendor="Landlord",
            description="Shop rent",
            amount=Decimal("900.00"),
            due_date=date(2024, 1, 10),
            recurrence_frequency=1,
            recurrence_period=RecurrencePeriod.MONTHS,
        ),
    )
    context = _reload(context)
    assert [b.bill_id for b in core_logic.list_overdue_bills(context)] == [bill.bill_id]

    outcome = core_logic.apply_bill_payment(
        context, core_logic.BillPaymentCommand(bill.bill_id, context.settings.default_employee_id)
    )
    context = _reload(context)

    bills = {b.bill_id: b for b in core_logic.list_bills(context)}
    assert bills[bill.bill_id].status == "paid"
    assert bills[bill.bill_id].paid_at is not None
    successor = bills[outcome.next_bill.bill_id]
    assert successor.due_date == date(2024, 2, 10)
    assert successor.previous_bill_id == bill.bill_id
    assert core_logic.list_overdue_bills(context) == []
    outbound = [p for p in core_logic.list_payments(context) if p.direction == "outbound"]
    assert [p.bill_id for p in outbound] == [bill.bill_id]


def test_rejected_sale_leaves_workbook_untouched(runtime_context):
    """A sale refused for stock writes nothing, not even a receipt counter."""

    context = runtime_context
    _register_sample_catalog(context)
    context = _reload(context)

    with pytest.raises(core_logic.InsufficientStockError):
        _sell(context, 7)
    context = _reload(context)

    assert core_logic.list_sales(context) == []
    assert context.store.query(Collection.COUNTERS) == []
    assert core_logic.calculate_inventory(context) == {"P-TEA": 6}


def test_stock_movements_replay_after_reload(runtime_context):
    """Supplies, corrections, returns, and sales all replay to the stored stock."""

    context = runtime_context
    _register_sample_catalog(context)
    employee = context.settings.default_employee_id
    supplier = core_logic.add_supplier(context, supplier_name="Tea Co")
    record = _sell(context, 4)
    core_logic.record_supply(
        context, core_logic.SupplyCommand("P-TEA", 10, Decimal("1.05"), employee, supplier_id=supplier.supplier_id)
    )
    core_logic.record_return(context, core_logic.ReturnCommand("P-TEA", 1, employee, sale_id=record.sale.sale_id))
    core_logic.record_stock_correction(context, core_logic.StockCorrectionCommand("P-TEA", -2, employee))
    context = _reload(context)

    assert core_logic.replay_stock_history(context, "P-TEA") == 11
    core_logic.verify_stock_history(context, "P-TEA")
    reasons = [update.reason for update in core_logic.list_stock_updates(context, "P-TEA")]
    assert reasons == ["new_supply", "sale", "new_supply", "return", "correction"]


def test_negative_stock_setting_from_config(config_factory, clock):
    """AllowNegativeStock in config.ini lets a sale oversell."""

    bundle = config_factory(allow_negative_stock=True)
    context = core_logic.load_runtime_context(bundle.config_path, clock=clock)
    assert context.settings.allow_negative_stock is True
    _register_sample_catalog(context)

    _sell(context, 8)

    assert core_logic.calculate_inventory(context)["P-TEA"] == -2


def test_business_timezone_from_config(config_factory, clock):
    """Receipt days follow the configured timezone, not UTC."""

    bundle = config_factory(timezone="America/New_York")
    context = core_logic.load_runtime_context(bundle.config_path, clock=clock)
    _register_sample_catalog(context)
    clock.moment = clock.moment.replace(hour=2)

    record = _sell(context, 1)

    assert record.sale.receipt_number == "R-240114-0001"


# ---------------------------------------------------------------------------
# CLI flows
# ---------------------------------------------------------------------------


def test_cli_catalog_sale_and_report_flow(config_factory, capsys):
    """Commands issued through cli.main persist between invocations."""

    bundle = config_factory()
    config = ["--config", str(bundle.config_path)]

    assert cli.main([*config, "add-product", "--product-id", "P-CLI", "--product-name", "Granola",
                     "--sale-price", "4.00", "--unit-cost", "1.50", "--stock", "5"]) == 0
    assert cli.main([*config, "add-customer", "--customer-id", "C-CLI", "--customer-name", "Dee"]) == 0
    assert cli.main([*config, "sale", "--item", "P-CLI:2", "--payment-status", "credit",
                     "--customer-id", "C-CLI"]) == 0
    assert "R-" in capsys.readouterr().out

    assert cli.main([*config, "stock"]) == 0
    assert "P-CLI\t3" in capsys.readouterr().out
    assert cli.main([*config, "debts"]) == 0
    assert "C-CLI\t8" in capsys.readouterr().out

    context = core_logic.load_runtime_context(bundle.config_path)
    assert core_logic.get_product(context, "P-CLI").stock == 3
    assert core_logic.get_customer(context, "C-CLI").credit_balance == Decimal("8")
    assert len(core_logic.list_sales(context)) == 1


def test_cli_rejected_sale_exits_with_business_error(config_factory):
    bundle = config_factory()
    config = ["--config", str(bundle.config_path)]
    assert cli.main([*config, "add-product", "--product-id", "P-CLI", "--product-name", "Granola",
                     "--sale-price", "4.00", "--unit-cost", "1.50", "--stock", "1"]) == 0

    assert cli.main([*config, "sale", "--item", "P-CLI:2"]) == 2
    assert cli.main([*config, "sale", "--item", "P-CLI:1", "--payment-status", "invoice",
                     "--customer-id", "C-NOBODY"]) == 2

    context = core_logic.load_runtime_context(bundle.config_path)
    assert core_logic.list_sales(context) == []


def test_cli_read_commands_do_not_save(config_factory, monkeypatch):
    """Reports never rewrite the workbook file."""

    bundle = config_factory()

    def refuse_save(*_args, **_kwargs):
        raise AssertionError("read-only command tried to save")

    monkeypatch.setattr(data_manager, "save_workbook", refuse_save)

    for command in (["stock"], ["sales", "--daily"], ["debts"], ["bills", "--overdue"]):
        assert cli.main(["--config", str(bundle.config_path), *command]) == 0


def test_cli_stock_history_reports_tampering(config_factory):
    """A stock cell edited by hand makes stock-history exit with code 4."""

    bundle = config_factory()
    config = ["--config", str(bundle.config_path)]
    assert cli.main([*config, "add-product", "--product-id", "P-CLI", "--product-name", "Granola",
                     "--sale-price", "4.00", "--unit-cost", "1.50", "--stock", "5"]) == 0
    assert cli.main([*config, "stock-history", "--product-id", "P-CLI"]) == 0

    workbook = data_manager.open_workbook(bundle.workbook_path)
    row = data_manager.locate_row(workbook, Collection.PRODUCTS.value, "ProductID", "P-CLI")
    data_manager.update_cells(workbook, Collection.PRODUCTS.value, row, {"Stock": 50})
    data_manager.save_workbook(workbook, destination=bundle.workbook_path)

    assert cli.main([*config, "stock-history", "--product-id", "P-CLI"]) == 4


def test_cli_recurring_bill_flow(config_factory, capsys):
    bundle = config_factory()
    config = ["--config", str(bundle.config_path)]
    assert cli.main([*config, "add-bill", "--vendor", "Power Co", "--amount", "75.20",
                     "--due-date", "2024-01-31", "--category", "Utilities", "--every", "1", "--period", "months"]) == 0
    bill_id = capsys.readouterr().out.split()[2]

    assert cli.main([*config, "pay-bill", "--bill-id", bill_id]) == 0
    assert "due 2024-02-29" in capsys.readouterr().out
    assert cli.main([*config, "pay-bill", "--bill-id", bill_id]) == 2


def test_cli_deactivated_employee_keeps_history_but_cannot_sell(config_factory, capsys):
    bundle = config_factory()
    config = ["--config", str(bundle.config_path)]
    assert cli.main([*config, "add-product", "--product-id", "P-CLI", "--product-name", "Granola",
                     "--sale-price", "4.00", "--unit-cost", "1.50", "--stock", "5"]) == 0
    assert cli.main([*config, "add-employee", "--employee-id", "E-TEMP", "--employee-name", "Temp"]) == 0
    assert cli.main([*config, "sale", "--item", "P-CLI:1", "--employee-id", "E-TEMP"]) == 0
    assert cli.main([*config, "sale", "--item", "P-CLI:2"]) == 0

    assert cli.main([*config, "deactivate-employee", "--employee-id", "E-TEMP"]) == 0
    assert cli.main([*config, "sale", "--item", "P-CLI:1", "--employee-id", "E-TEMP"]) == 2
    capsys.readouterr()

    assert cli.main([*config, "sales", "--employee-id", "E-TEMP"]) == 0
    report = capsys.readouterr().out.splitlines()
    assert "sale_count\t1" in report
    assert "inbound_total\t0" in report

    context = core_logic.load_runtime_context(bundle.config_path)
    assert core_logic.get_employee(context, "E-TEMP").is_active is False
    assert len(core_logic.list_sales(context)) == 2
