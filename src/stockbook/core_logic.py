"""Business logic foundation for Stockbook.

This module owns the runtime context shared by every workflow, the domain
error taxonomy, the cached read helpers, and the journaled write helpers that
make multi-record operations all-or-nothing. Workflow modules (ledger,
catalog, purchases, sales, invoices) consume the Data Access Layer (DAL)
exclusively through the helpers defined here.
"""

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, SheetName


CENT = Decimal("0.01")


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class ValidationError(BusinessRuleViolation, ValueError):
    """Raised when a payload field is missing or out of range."""


class ConflictError(BusinessRuleViolation):
    """Raised when an operation collides with an existing unique value."""

    def __init__(self, message: str, *, existing: Any = None) -> None:
        super().__init__(message)
        self.existing = existing


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a sale asks for more units than the ledger holds."""

    def __init__(self, product_name: str, available: Decimal, required: Decimal) -> None:
        super().__init__(
            f'Insufficient stock for "{product_name}". Available: {available}, Required: {required}'
        )
        self.product_name = product_name
        self.available = available
        self.required = required


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, party, sale, or invoice is unknown."""


NotFoundError = MissingReferenceError


class IntegrityError(Exception):
    """Raised when a failed operation could not be fully compensated.

    The workbook may hold partially applied effects and must be reconciled by
    hand (see :func:`stockbook.catalog.audit_stock`) before it is persisted.
    """


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)
    _journal: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def now_iso() -> str:
    return _resolve_timestamp(None).isoformat()


def today_iso() -> str:
    return _resolve_timestamp(None).date().isoformat()


def generate_record_id(prefix: str) -> str:
    """Return an opaque record key such as ``P1A2B3C4D5E6F``."""

    return f"{prefix}{uuid.uuid4().hex[:12].upper()}"


def money(amount: Decimal) -> Decimal:
    """Round a currency amount to cents, half up."""

    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to operate on a workbook declared with another schema version.

    Raises:
        RuntimeError: If the configured schema version differs from
            ``EXPECTED_SCHEMA_VERSION``.
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
    """Save the in-memory workbook to the configured data file.

    Raises:
        RuntimeError: If called while a transaction is still open.
    """
    with context._lock:
        if context._journal.get("depth", 0):
            raise RuntimeError("Cannot persist the workbook while a transaction is open")
        data_manager.save_workbook(
            context.workbook,
            destination=context.settings.data_file,
        )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    A new :class:`RuntimeContext` is returned with an empty cache.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


# ---------------------------------------------------------------------------
# Cached reads
# ---------------------------------------------------------------------------


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    bucket = context._cache.get(name)
    if bucket is None:
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


def _ensure_sheet_cache(context: RuntimeContext, sheet: SheetName) -> Dict[str, Any]:
    """Populate the ``all``/``by_id`` bucket for one sheet on demand."""

    bucket = _get_cache_bucket(context, sheet.value)
    if "all" not in bucket:
        records = list(data_manager.iter_records(context.workbook, sheet))
        bucket["all"] = records
        bucket["by_id"] = {data_manager.serialize_record(record)[0]: record for record in records}
        log.debug("Populated %s cache with %d entries", sheet.value, len(records))
    return bucket


def list_records(context: RuntimeContext, sheet: SheetName) -> List[Any]:
    """Return a copy of every record of ``sheet`` in creation order."""

    return list(_ensure_sheet_cache(context, sheet)["all"])


def find_record(context: RuntimeContext, sheet: SheetName, record_id: Optional[str]) -> Optional[Any]:
    """Return the record keyed ``record_id`` or ``None``."""

    if not record_id:
        return None
    return _ensure_sheet_cache(context, sheet)["by_id"].get(record_id)


def get_record(context: RuntimeContext, sheet: SheetName, record_id: str, *, label: str) -> Any:
    """Return the record keyed ``record_id``.

    Raises:
        MissingReferenceError: If no such record exists.
    """

    record = find_record(context, sheet, record_id)
    if record is None:
        log.warning("%s lookup failed for id '%s'", label, record_id)
        raise MissingReferenceError(f"Unknown {label.lower()} id: {record_id}")
    return record


def filter_records(context: RuntimeContext, sheet: SheetName, predicate: Callable[[Any], bool]) -> List[Any]:
    return [record for record in _ensure_sheet_cache(context, sheet)["all"] if predicate(record)]


# ---------------------------------------------------------------------------
# Journaled writes
# ---------------------------------------------------------------------------


@contextmanager
def transaction(context: RuntimeContext, label: str) -> Iterator[None]:
    """Run a block of writes as one all-or-nothing unit.

    The context lock is held for the duration, serializing writers that share
    the context. Every journaled write inside the block registers an undo
    action. When the outermost block raises, the undo actions run in reverse
    order before the exception propagates. Nested blocks join the outer one.

    Raises:
        IntegrityError: If an undo action itself fails; the original error is
            chained as the cause.
    """

    with context._lock:
        state = context._journal
        depth = state.get("depth", 0)
        if depth == 0:
            state["entries"] = []
        state["depth"] = depth + 1
        try:
            yield
        except Exception as error:
            if depth == 0:
                _rollback(context, label, state["entries"], error)
            raise
        finally:
            state["depth"] = depth
            if depth == 0:
                state.pop("entries", None)


def _rollback(
    context: RuntimeContext,
    label: str,
    entries: List[Tuple[str, Callable[[], None]]],
    error: Exception,
) -> None:
    log.warning("Rolling back %d step(s) of '%s' after: %s", len(entries), label, error)
    try:
        for description, undo in reversed(entries):
            undo()
            log.debug("Compensated step: %s", description)
    except Exception as undo_error:
        log.critical(
            "Compensation of '%s' failed at a step (%s); workbook needs manual reconciliation",
            label,
            undo_error,
        )
        raise IntegrityError(f"Could not roll back '{label}': {undo_error}") from error
    finally:
        context._cache.clear()


def _journal(context: RuntimeContext, description: str, undo: Callable[[], None]) -> None:
    entries = context._journal.get("entries")
    if entries is None:
        raise RuntimeError(f"Write outside of a transaction: {description}")
    entries.append((description, undo))


def add_record(context: RuntimeContext, sheet: SheetName, record: Any) -> Any:
    """Append ``record`` to ``sheet`` and journal its removal."""

    record_id = data_manager.serialize_record(record)[0]
    data_manager.append_record(context.workbook, sheet, record)
    _invalidate_cache(context, sheet.value)
    _journal(
        context,
        f"append {sheet.value} {record_id}",
        lambda: data_manager.delete_record(context.workbook, sheet, record_id),
    )
    return record


def change_record(context: RuntimeContext, sheet: SheetName, record_id: str, **field_values: Any) -> Any:
    """Update selected columns of a record, journal the prior values, and
    return the refreshed record."""

    previous = data_manager.update_record(context.workbook, sheet, record_id, field_values=field_values)
    _invalidate_cache(context, sheet.value)
    _journal(
        context,
        f"update {sheet.value} {record_id}",
        lambda: data_manager.update_record(context.workbook, sheet, record_id, field_values=previous),
    )
    return find_record(context, sheet, record_id)


def remove_record(context: RuntimeContext, sheet: SheetName, record_id: str) -> None:
    """Delete a record and journal its re-insertion at the same position."""

    row_index, values = data_manager.delete_record(context.workbook, sheet, record_id)
    _invalidate_cache(context, sheet.value)
    _journal(
        context,
        f"delete {sheet.value} {record_id}",
        lambda: data_manager.insert_row_values(context.workbook, sheet, row_index, values),
    )


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def require_text(field_name: str, value: Optional[str]) -> str:
    """Return ``value`` stripped, rejecting blanks."""

    if value is None or not str(value).strip():
        log.error("Validation failed: %s is required", field_name)
        raise ValidationError(f"{field_name} is required")
    return str(value).strip()


def require_finite(value: Decimal, *, field_name: str = "Value") -> None:
    """Reject ``NaN`` and infinities, which compare badly and cannot be stored."""
    if not Decimal(value).is_finite():
        log.error("Numeric validation failed: %s is %s", field_name, value)
        raise ValidationError(f"{field_name} must be a finite number")


def require_positive_quantity(quantity: Decimal, *, field_name: str = "Quantity") -> None:
    """Validate that a quantity is a finite number strictly above zero."""
    require_finite(quantity, field_name=field_name)
    if quantity <= Decimal("0"):
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError(f"{field_name} must be greater than zero")


def require_nonnegative_quantity(quantity: Decimal, *, field_name: str = "Quantity") -> None:
    """Validate an opening or restated stock level."""
    require_finite(quantity, field_name=field_name)
    if quantity < Decimal("0"):
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError(f"{field_name} must be zero or positive")


def require_nonnegative_money(amount: Decimal, *, field_name: str = "Amount") -> None:
    """Validate that a monetary value is finite and nonnegative."""
    require_finite(amount, field_name=field_name)
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValidationError(f"{field_name} must be zero or positive")
