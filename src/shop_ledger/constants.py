"""Enumerations shared across the Shop Ledger layers.

Every categorical value stored in the workbook is declared here so the data
access layer, the record store, the business rules, and the CLI agree on the
exact spelling written to each sheet.
"""

from __future__ import annotations

from enum import Enum


# Workbook layout version expected by this release of the code.
EXPECTED_SCHEMA_VERSION = "2.0.0"

RECEIPT_PREFIX = "R"
RECEIPT_SEQUENCE_WIDTH = 4


class PaymentMethod(str, Enum):
    """How the customer hands over money at the till."""

    CASH = "cash"
    CARD = "card"
    MOBILE = "mobile"


class PaymentStatus(str, Enum):
    """Settlement state of a sale."""

    PAID = "paid"
    CREDIT = "credit"
    INVOICE = "invoice"


class AdjustmentKind(str, Enum):
    """Shape of a discount or tax: a percentage of a base or a literal amount."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class StockReason(str, Enum):
    """Why a product's stock level moved."""

    SALE = "sale"
    NEW_SUPPLY = "new_supply"
    CORRECTION = "correction"
    RETURN = "return"


class PaymentDirection(str, Enum):
    """Whether money came in from a customer or went out to a vendor."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class BillStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class RecurrencePeriod(str, Enum):
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"


class BillCategory(str, Enum):
    UTILITIES = "Utilities"
    RENT = "Rent"
    SUPPLIES = "Supplies"
    SALARIES = "Salaries"
    OTHER = "Other"


class CustomerType(str, Enum):
    """Customers either run a credit balance or are billed by invoice."""

    CREDIT = "credit"
    INVOICE = "invoice"


class EmployeeRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"


class Collection(str, Enum):
    """Enumerate the workbook sheets managed by the record store."""

    PRODUCTS = "Products"
    SUPPLIERS = "Suppliers"
    CUSTOMERS = "Customers"
    EMPLOYEES = "Employees"
    SALES = "Sales"
    SALE_ITEMS = "SaleItems"
    STOCK_UPDATES = "StockUpdates"
    SUPPLIES = "Supplies"
    PAYMENTS = "Payments"
    BILLS = "Bills"
    COUNTERS = "Counters"


# Statuses that leave money owed by the customer after the sale.
DEFERRED_PAYMENT_STATUSES = frozenset({PaymentStatus.CREDIT, PaymentStatus.INVOICE})


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "RECEIPT_PREFIX",
    "RECEIPT_SEQUENCE_WIDTH",
    "PaymentMethod",
    "PaymentStatus",
    "AdjustmentKind",
    "StockReason",
    "PaymentDirection",
    "BillStatus",
    "RecurrencePeriod",
    "BillCategory",
    "CustomerType",
    "EmployeeRole",
    "Collection",
    "DEFERRED_PAYMENT_STATUSES",
]
