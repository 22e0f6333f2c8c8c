"""Workbook-backed record store.

The store is the single writer of ledger data. It exposes collection-keyed
CRUD helpers, a real-time style ``subscribe`` hook, and :meth:`batch_commit`,
which applies a list of create/update operations as one all-or-nothing unit.

Mutable documents carry a ``Version`` column. Updates may pass the version the
caller read (``expected_version``); a mismatch aborts the whole batch with
:class:`ConcurrencyConflict` so the caller can re-read and retry instead of
silently overwriting a concurrent change.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import Collection


Record = Dict[str, Any]
Predicate = Callable[[Mapping[str, Any]], bool]
Listener = Callable[[List[Record]], None]
CollectionName = Union[Collection, str]

ID_PREFIXES: Mapping[str, str] = {
    Collection.PRODUCTS.value: "P",
    Collection.SUPPLIERS.value: "SUP",
    Collection.CUSTOMERS.value: "C",
    Collection.EMPLOYEES.value: "E",
    Collection.SALES.value: "S",
    Collection.SALE_ITEMS.value: "SI",
    Collection.STOCK_UPDATES.value: "SU",
    Collection.SUPPLIES.value: "SP",
    Collection.PAYMENTS.value: "PAY",
    Collection.BILLS.value: "B",
    Collection.COUNTERS.value: "CTR",
}

CREATED_AT_COLUMN = "CreatedAt"
VERSION_COLUMN = "Version"


class PersistenceError(Exception):
    """Raised when the store cannot apply a write; nothing is left half-applied."""


class ConcurrencyConflict(PersistenceError):
    """Raised when a document changed since the caller read it, or an id is taken."""


class RecordNotFoundError(PersistenceError):
    """Raised when an operation targets a record that does not exist."""


@dataclass(frozen=True)
class CreateOperation:
    """Insert ``data`` into ``collection``; ``record_id`` overrides the generated id."""

    collection: CollectionName
    data: Mapping[str, Any]
    record_id: Optional[str] = None


@dataclass(frozen=True)
class UpdateOperation:
    """Overwrite selected fields of one record, optionally guarded by its version."""

    collection: CollectionName
    record_id: str
    changes: Mapping[str, Any]
    expected_version: Optional[int] = None


Operation = Union[CreateOperation, UpdateOperation]


@dataclass
class _Subscription:
    collection: str
    callback: Callable[..., None]
    predicate: Optional[Predicate] = None
    with_records: bool = True
    token: str = field(default_factory=lambda: uuid.uuid4().hex)



def collection_name(collection: CollectionName) -> str:
    """Return the sheet title for an enum member or a raw string."""

    return collection.value if isinstance(collection, Collection) else str(collection)


def generate_record_id(collection: CollectionName, *, when: Optional[datetime] = None) -> str:
    """Build a sortable, collision-resistant identifier for ``collection``.

    The identifier concatenates the collection prefix, a UTC timestamp down to
    the microsecond, and a short random suffix so two ids minted in the same
    instant still differ: ``S20240101120000000000-3F9A1C``.
    """

    when = when or datetime.now(UTC)
    prefix = ID_PREFIXES.get(collection_name(collection), "X")
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:6].upper()}"


class WorkbookRecordStore:
    """Record store persisting collections as sheets of an ``openpyxl`` workbook.

    The workbook is only modified in memory; persisting it to disk remains the
    caller's decision (see ``core_logic.persist_context``).
    """

    def __init__(self, workbook: Workbook, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.workbook = workbook
        self._clock = clock or (lambda: datetime.now(UTC))
        self._subscriptions: Dict[str, List[_Subscription]] = {}

    # -- reads -------------------------------------------------------------

    def now(self) -> datetime:
        return self._clock()

    def new_id(self, collection: CollectionName) -> str:
        return generate_record_id(collection, when=self._clock())

    def query(self, collection: CollectionName, predicate: Optional[Predicate] = None) -> List[Record]:
        """Return every record of ``collection`` accepted by ``predicate`` in sheet order."""

        sheet = self._sheet(collection)
        records = [record for _, record in data_manager.iter_records(self.workbook, sheet)]
        if predicate is None:
            return records
        return [record for record in records if predicate(record)]

    def get(self, collection: CollectionName, record_id: str) -> Record:
        sheet = self._sheet(collection)
        row_index = self._locate(sheet, record_id)
        if row_index is None:
            raise RecordNotFoundError(f"{sheet} record not found: {record_id}")
        return data_manager.read_record(self.workbook, sheet, row_index)

    def exists(self, collection: CollectionName, record_id: str) -> bool:
        return self._locate(self._sheet(collection), record_id) is not None

    # -- single writes -------------------------------------------------------

    def create(self, collection: CollectionName, data: Mapping[str, Any], *, record_id: Optional[str] = None) -> str:
        """Insert one record and return its id."""

        return self.batch_commit([CreateOperation(collection, data, record_id)])[0]

    def update(
        self,
        collection: CollectionName,
        record_id: str,
        changes: Mapping[str, Any],
        *,
        expected_version: Optional[int] = None,
    ) -> None:
        self.batch_commit([UpdateOperation(collection, record_id, changes, expected_version)])

    def delete(self, collection: CollectionName, record_id: str) -> None:
        sheet = self._sheet(collection)
        row_index = self._locate(sheet, record_id)
        if row_index is None:
            raise RecordNotFoundError(f"{sheet} record not found: {record_id}")
        data_manager.delete_row(self.workbook, sheet, row_index)
        log.info("Deleted %s record '%s'", sheet, record_id)
        self._notify([sheet])

    # -- atomic batches ------------------------------------------------------

    def batch_commit(self, operations: Sequence[Operation]) -> List[str]:
        """Apply ``operations`` in order as a single all-or-nothing unit.

        Every create receives the same commit timestamp in ``CreatedAt`` (unless
        the caller supplied one) and ``Version`` 1. Every update bumps
        ``Version`` and, when ``expected_version`` is given, first checks it
        against the stored value. Updates see the effect of earlier operations
        in the same batch, so a document may be updated twice as long as the
        second update expects the bumped version.

        Returns:
            list[str]: Identifier of each operation's record, in input order.

        Raises:
            ConcurrencyConflict: A version check failed or an explicit id exists.
            RecordNotFoundError: An update targets a missing record.
            PersistenceError: Any other failure while writing.

        On failure every write already applied by this call is undone before the
        exception propagates, and subscribers are not notified.
        """

        if not operations:
            return []

        committed_at = self._clock()
        undo_log: List[Tuple[str, str, int, Optional[Dict[str, Any]]]] = []
        identifiers: List[str] = []
        touched: List[str] = []
        try:
            for operation in operations:
                if isinstance(operation, CreateOperation):
                    identifiers.append(self._apply_create(operation, committed_at, undo_log))
                elif isinstance(operation, UpdateOperation):
                    identifiers.append(self._apply_update(operation, undo_log))
                else:
                    raise PersistenceError(f"Unsupported operation: {operation!r}")
                sheet = collection_name(operation.collection)
                if sheet not in touched:
                    touched.append(sheet)
        except PersistenceError:
            self._rollback(undo_log)
            raise
        except (KeyError, ValueError, TypeError) as exc:
            self._rollback(undo_log)
            log.error("Batch commit rejected: %s", exc)
            raise PersistenceError(f"Batch commit rejected: {exc}") from exc

        log.debug("Committed batch of %d operation(s) across %s", len(operations), ", ".join(touched))
        self._notify(touched)
        return identifiers

    def _apply_create(
        self,
        operation: CreateOperation,
        committed_at: datetime,
        undo_log: List[Tuple[str, str, int, Optional[Dict[str, Any]]]],
    ) -> str:
        sheet = self._sheet(operation.collection)
        key_column = data_manager.PRIMARY_KEYS[sheet]
        headers = data_manager.header_map(self.workbook, sheet)

        record_id = operation.record_id or operation.data.get(key_column) or self.new_id(sheet)
        if self._locate(sheet, record_id) is not None:
            raise ConcurrencyConflict(f"{sheet} record already exists: {record_id}")

        record = dict(operation.data)
        record[key_column] = record_id
        if CREATED_AT_COLUMN in headers and not record.get(CREATED_AT_COLUMN):
            record[CREATED_AT_COLUMN] = committed_at.isoformat()
        if VERSION_COLUMN in headers:
            record[VERSION_COLUMN] = 1

        row_index = data_manager.append_record(self.workbook, sheet, record)
        undo_log.append(("create", sheet, row_index, None))
        return str(record_id)

    def _apply_update(
        self,
        operation: UpdateOperation,
        undo_log: List[Tuple[str, str, int, Optional[Dict[str, Any]]]],
    ) -> str:
        sheet = self._sheet(operation.collection)
        row_index = self._locate(sheet, operation.record_id)
        if row_index is None:
            raise RecordNotFoundError(f"{sheet} record not found: {operation.record_id}")

        headers = data_manager.header_map(self.workbook, sheet)
        changes = dict(operation.changes)
        if VERSION_COLUMN in headers:
            current = data_manager.to_int(
                self.workbook[sheet].cell(row=row_index, column=headers[VERSION_COLUMN]).value
            )
            if operation.expected_version is not None and operation.expected_version != current:
                log.warning(
                    "Version conflict on %s '%s': expected %s, found %s",
                    sheet,
                    operation.record_id,
                    operation.expected_version,
                    current,
                )
                raise ConcurrencyConflict(
                    f"{sheet} record '{operation.record_id}' changed concurrently "
                    f"(expected version {operation.expected_version}, found {current})"
                )
            changes[VERSION_COLUMN] = current + 1

        previous = data_manager.update_cells(self.workbook, sheet, row_index, changes)
        undo_log.append(("update", sheet, row_index, previous))
        return operation.record_id

    def _rollback(self, undo_log: List[Tuple[str, str, int, Optional[Dict[str, Any]]]]) -> None:
        if not undo_log:
            return
        log.warning("Rolling back %d applied write(s)", len(undo_log))
        for action, sheet, row_index, previous in reversed(undo_log):
            if action == "create":
                data_manager.delete_row(self.workbook, sheet, row_index)
            elif previous is not None:
                data_manager.update_cells(self.workbook, sheet, row_index, previous)

    # -- subscriptions -------------------------------------------------------

    def subscribe(
        self,
        collection: CollectionName,
        callback: Union[Listener, Callable[[], None]],
        *,
        predicate: Optional[Predicate] = None,
        emit_initial: bool = False,
        with_records: bool = True,
    ) -> Callable[[], None]:
        """Register ``callback`` for committed changes to ``collection``.

        The callback receives the full list of matching records after each
        commit touching the collection. With ``with_records=False`` it is
        called without arguments and the sheet is not read on its behalf.
        Returns a function that cancels the subscription; calling it twice is
        harmless.
        """

        sheet = self._sheet(collection)
        subscription = _Subscription(
            collection=sheet, callback=callback, predicate=predicate, with_records=with_records
        )
        self._subscriptions.setdefault(sheet, []).append(subscription)
        log.debug("Subscribed %s to %s", subscription.token, sheet)
        if emit_initial:
            if with_records:
                callback(self.query(sheet, predicate))
            else:
                callback()

        def unsubscribe() -> None:
            listeners = self._subscriptions.get(sheet, [])
            self._subscriptions[sheet] = [entry for entry in listeners if entry.token != subscription.token]

        return unsubscribe

    def _notify(self, sheets: Iterable[str]) -> None:
        for sheet in sheets:
            records: Optional[List[Record]] = None
            for subscription in list(self._subscriptions.get(sheet, [])):
                try:
                    if not subscription.with_records:
                        subscription.callback()
                        continue
                    if records is None:
                        records = self.query(sheet)
                    if subscription.predicate is None:
                        subscription.callback(list(records))
                    else:
                        subscription.callback([record for record in records if subscription.predicate(record)])
                except Exception:  # listener failures must not undo a committed batch
                    log.exception("Subscriber %s for %s failed", subscription.token, sheet)

    # -- helpers -------------------------------------------------------------

    def _sheet(self, collection: CollectionName) -> str:
        sheet = collection_name(collection)
        if sheet not in data_manager.PRIMARY_KEYS:
            raise KeyError(f"Unknown collection: {sheet}")
        if sheet not in self.workbook.sheetnames:
            raise KeyError(f"Workbook has no sheet for collection: {sheet}")
        return sheet

    def _locate(self, sheet: str, record_id: str) -> Optional[int]:
        return data_manager.locate_row(self.workbook, sheet, data_manager.PRIMARY_KEYS[sheet], record_id)
