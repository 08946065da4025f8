"""
Core types for the pawn-loan ledger.

This module provides the foundational data structures shared by every other module:
1. Decimal context configuration and currency rounding
2. Enums: LoanStatus, PaymentMethod, PaymentKind, Operation, ErrorKind
3. Exceptions: LoanError and the typed failure kinds
4. Immutable records: Operator, Loan, PaymentRecord, AuditEntry, OperationResult
5. Protocols: LoanView for read-only book access, CustomerDirectory for intake lookups
6. Clocks: SystemClock and FixedClock

Nothing in this module mutates a loan. Every change produces a new Loan instance.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from enum import Enum
from typing import (
    Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple,
    runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Monetary arithmetic must be deterministic and free of binary float drift.
#
# PRECONDITION: No other code should modify the global Decimal context.
# If thread-local contexts are needed, use decimal.localcontext().
#
# Context parameters:
#   - prec=50: Precision sufficient for intermediate products
#   - rounding=ROUND_HALF_UP: Matches the cash-register rounding customers see
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_UP


# ============================================================================
# CONSTANTS
# ============================================================================

CURRENCY_PLACES = 2
CURRENCY_QUANTUM = Decimal(10) ** -CURRENCY_PLACES
CURRENCY_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

# Days added to the due date when an extension does not name a period.
DEFAULT_EXTENSION_DAYS = 30


# ============================================================================
# ENUMS
# ============================================================================

class LoanStatus(str, Enum):
    """Lifecycle status of a pawn loan."""
    ACTIVE = "active"           # Issued, collecting payments
    REDEEMED = "redeemed"       # Paid off, collateral returned
    FORFEITED = "forfeited"     # Shop took the collateral
    VOIDED = "voided"           # Deleted; only seen on void results and audit entries


class PaymentMethod(str, Enum):
    """How a customer tendered a payment."""
    CASH = "cash"
    MASTERCARD = "mastercard"
    VISA = "visa"
    AMEX = "amex"
    ETRANSFER = "etranfer"
    DEBIT = "debit"
    CHECK = "check"
    OTHER = "other"


class PaymentKind(str, Enum):
    """Whether a payment record came from a regular payment or a redemption."""
    PAYMENT = "payment"
    REDEMPTION = "redemption"


class Operation(str, Enum):
    """Operations a caller can request against a loan."""
    CREATE = "create"
    PAYMENT = "payment"
    ADD_MONEY = "add_money"
    DISCOUNT = "discount"
    EXTEND = "extend"
    REDEEM = "redeem"
    FORFEIT = "forfeit"
    REACTIVATE = "reactivate"
    EDIT = "edit"
    VOID = "void"


class ErrorKind(str, Enum):
    """Classification of a failed operation."""
    INVALID_AMOUNT = "invalid_amount"
    DISCOUNT_EXCEEDS_INTEREST = "discount_exceeds_interest"
    INVALID_TRANSITION = "invalid_transition"
    LOAN_NOT_FOUND = "loan_not_found"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    INVALID_FIELD = "invalid_field"
    SCHEMA_VIOLATION = "schema_violation"
    CUSTOMER_NOT_FOUND = "customer_not_found"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LoanError(Exception):
    """Base exception for all ledger errors."""
    kind: Optional[ErrorKind] = None
    retryable: bool = False


class InvalidAmount(LoanError):
    """Raised for a non-positive, negative or malformed monetary input."""
    kind = ErrorKind.INVALID_AMOUNT


class DiscountExceedsInterest(LoanError):
    """Raised when a discount is larger than the loan's current interest."""
    kind = ErrorKind.DISCOUNT_EXCEEDS_INTEREST


class InvalidTransition(LoanError):
    """Raised when an operation is not legal for the loan's current status."""
    kind = ErrorKind.INVALID_TRANSITION


class LoanNotFound(LoanError):
    """Raised when a loan id does not resolve to a stored loan."""
    kind = ErrorKind.LOAN_NOT_FOUND


class ConcurrentModification(LoanError):
    """Raised when the stored loan version differs from the version the caller read."""
    kind = ErrorKind.CONCURRENT_MODIFICATION
    retryable = True


class InvalidField(LoanError):
    """Raised for an invalid non-monetary input (term, days, description, identifiers)."""
    kind = ErrorKind.INVALID_FIELD


class SchemaViolation(InvalidField):
    """Raised when a record carries unknown field names or lacks required ones."""
    kind = ErrorKind.SCHEMA_VIOLATION


class CustomerNotFound(LoanError):
    """Raised when a loan is requested for a customer the directory does not know."""
    kind = ErrorKind.CUSTOMER_NOT_FOUND


# ============================================================================
# DECIMAL HELPERS
# ============================================================================

def to_decimal(value: Any, field_name: str = "amount") -> Decimal:
    """
    Convert a numeric input to a finite Decimal without rounding.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not its binary expansion.

    Raises:
        InvalidAmount: if the value is None, a bool, unparsable, NaN or infinite.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmount(f"{field_name} must be a number, got {value!r}")
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidAmount(f"{field_name} is not a valid number: {value!r}") from None
    if not value.is_finite():
        raise InvalidAmount(f"{field_name} must be finite, got {value}")
    return value


def to_money(value: Any, field_name: str = "amount") -> Decimal:
    """
    Convert a numeric input to a currency amount with exactly two decimal places.

    Rounds half-up: Decimal("0.005") -> Decimal("0.01").

    Raises:
        InvalidAmount: if the value is not a finite number.
    """
    value = to_decimal(value, field_name)
    try:
        return value.quantize(CURRENCY_QUANTUM, rounding=CURRENCY_ROUNDING)
    except InvalidOperation:
        raise InvalidAmount(f"{field_name} is out of range: {value}") from None


def as_date(value: Any) -> date:
    """Return the calendar date of a date or datetime."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raise InvalidField(f"Expected a date, got {value!r}")


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Operator:
    """
    Identity of the shop employee performing an operation.

    Recorded on loans and audit entries for attribution only.
    """
    id: str
    username: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.id, str) or not self.id.strip():
            raise ValueError("Operator id cannot be empty")


# Operator used by batch processes that act without a human at the counter.
SYSTEM_OPERATOR = Operator("system", "system")


# Fields holding currency amounts; always two-place Decimals.
MONEY_FIELDS = (
    'loan_amount', 'interest_amount', 'total_payable_amount', 'remaining_balance',
    'interest_discount', 'recurring_fee', 'redemption_fee',
)


@dataclass(frozen=True, slots=True)
class Loan:
    """
    Immutable snapshot of one pawn transaction.

    Every ledger operation returns a NEW Loan (value semantics), so a snapshot
    held by a caller never changes underneath it.

    Attributes:
        id: Opaque identifier assigned by the book.
        transaction_number: Human-facing number printed on the pawn ticket.
        customer_id: Owning customer profile (external entity).
        loan_amount: Principal handed to the customer.
        interest_rate: Flat interest for the term, in percent.
        interest_amount: Base interest minus any discount since the last recompute.
        total_payable_amount: loan_amount + interest_amount + recurring_fee
            (+ redemption_fee once redeemed).
        remaining_balance: What the customer still owes; never negative.
        loan_issued_date: Date the cash was handed over.
        loan_term: Term in days.
        due_date: Issued date plus term, pushed forward by extensions.
        collateral_description: What was pawned.
        status: Current lifecycle status.
        interest_discount: Cumulative discount applied to the base interest.
        recurring_fee: Flat fee charged on top of interest.
        redemption_fee: One-time fee charged at redemption (zero before).
        collateral_image: Opaque reference to a captured image.
        customer_note: Free-text note.
        created_by: Operator id that issued the loan.
        updated_by: Operator id of the latest write.
        version: Incremented on every successful write.
    """
    id: str
    transaction_number: str
    customer_id: str
    loan_amount: Decimal
    interest_rate: Decimal
    interest_amount: Decimal
    total_payable_amount: Decimal
    remaining_balance: Decimal
    loan_issued_date: date
    loan_term: int
    due_date: date
    collateral_description: str
    status: LoanStatus = LoanStatus.ACTIVE
    interest_discount: Decimal = ZERO
    recurring_fee: Decimal = ZERO
    redemption_fee: Decimal = ZERO
    collateral_image: Optional[str] = None
    customer_note: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    version: int = 0

    def __post_init__(self):
        """Normalize amounts to two-place Decimals and status to LoanStatus."""
        for name in MONEY_FIELDS:
            object.__setattr__(self, name, to_money(getattr(self, name), name))
        if not isinstance(self.interest_rate, Decimal):
            object.__setattr__(self, 'interest_rate', to_decimal(self.interest_rate, 'interest_rate'))
        if not isinstance(self.status, LoanStatus):
            object.__setattr__(self, 'status', LoanStatus(self.status))

    @property
    def is_active(self) -> bool:
        return self.status is LoanStatus.ACTIVE

    def as_dict(self) -> Dict[str, Any]:
        """Return a shallow dict of every field, used for audit snapshots."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def __repr__(self) -> str:
        return (
            f"Loan({self.transaction_number}: {self.status.value}, "
            f"principal={self.loan_amount}, balance={self.remaining_balance}, due={self.due_date})"
        )


@dataclass(frozen=True, slots=True)
class PaymentRecord:
    """
    Append-only record of money received against a loan.

    Attributes:
        loan_id: Loan the money was applied to.
        amount: Amount tendered by the customer.
        method: How it was tendered.
        timestamp: When it was received.
        processed_by: Operator id at the counter.
        kind: PAYMENT for regular payments, REDEMPTION for the final settlement.
        overpayment: Portion of amount above the balance due, kept for reconciliation.
    """
    loan_id: str
    amount: Decimal
    method: PaymentMethod
    timestamp: datetime
    processed_by: Optional[str] = None
    kind: PaymentKind = PaymentKind.PAYMENT
    overpayment: Decimal = ZERO

    def __post_init__(self):
        object.__setattr__(self, 'amount', to_money(self.amount, 'amount'))
        object.__setattr__(self, 'overpayment', to_money(self.overpayment, 'overpayment'))
        if not isinstance(self.method, PaymentMethod):
            object.__setattr__(self, 'method', PaymentMethod(self.method))
        if not isinstance(self.kind, PaymentKind):
            object.__setattr__(self, 'kind', PaymentKind(self.kind))

    @property
    def applied_amount(self) -> Decimal:
        """Amount that actually reduced the balance."""
        return self.amount - self.overpayment


@dataclass(frozen=True, slots=True)
class AuditEntry:
    """
    Record of one successful operation for the audit trail.

    Stores complete before/after snapshots. Either side is None for create
    (no before) and void (no after is persisted, but new_state holds the
    voided snapshot for reference).

    Attributes:
        loan_id: Loan the operation touched.
        operation: What was done.
        timestamp: When it was done.
        operator: Operator id that did it.
        old_state: Loan.as_dict() before the change, or None.
        new_state: Loan.as_dict() after the change, or None.
        note: Short human-readable description.
    """
    loan_id: str
    operation: Operation
    timestamp: datetime
    operator: Optional[str]
    old_state: Optional[Dict[str, Any]]
    new_state: Optional[Dict[str, Any]]
    note: str = ""

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """
        Compute fields that differ between old and new state.

        Returns:
            Dict mapping field name to (old_value, new_value) tuples.
            Only includes fields that actually changed.
        """
        old = self.old_state or {}
        new = self.new_state or {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


@dataclass(frozen=True, slots=True)
class OperationResult:
    """
    Outcome of a ledger operation: either an updated loan with its history
    entries, or a typed failure.

    Callers must check `ok` before treating the loan as mutated. On failure
    `loan` is the untouched input snapshot (None when there was no loan) and
    `payments`/`entries` are empty.

    Attributes:
        operation: The requested operation.
        loan: Updated snapshot on success, input snapshot on failure.
        error: The LoanError that rejected the operation, or None.
        payments: Payment records produced (payment and redeem only).
        entries: Audit entries produced.
        fully_paid: True when a payment brought the balance to zero.
        overpayment: Amount tendered above the balance due.
    """
    operation: Optional[Operation]
    loan: Optional[Loan]
    error: Optional[LoanError] = None
    payments: Tuple[PaymentRecord, ...] = ()
    entries: Tuple[AuditEntry, ...] = ()
    fully_paid: bool = False
    overpayment: Decimal = ZERO

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable

    @property
    def payment(self) -> Optional[PaymentRecord]:
        """The last payment record produced, if any."""
        return self.payments[-1] if self.payments else None

    @property
    def entry(self) -> Optional[AuditEntry]:
        """The last audit entry produced, if any."""
        return self.entries[-1] if self.entries else None

    def unwrap(self) -> Loan:
        """Return the updated loan, raising the stored error if the operation failed."""
        if self.error is not None:
            raise self.error
        return self.loan

    def __repr__(self) -> str:
        name = self.operation.value if self.operation is not None else "unknown"
        if self.error is not None:
            return f"OperationResult({name} REJECTED: {self.error.kind.value}: {self.error})"
        return f"OperationResult({name} APPLIED: {self.loan!r})"


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LoanView(Protocol):
    """
    Read-only interface to stored loans.

    Functions accepting a LoanView declare their read-only intent. LoanBook
    implements this protocol and also provides the mutating operations.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current time of the book's clock."""
        ...

    def get_loan(self, loan_id: str) -> Loan:
        """Return the stored loan. Raises LoanNotFound for unknown ids."""
        ...

    def list_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        """Return stored loans, optionally filtered by status."""
        ...

    def payment_history(self, loan_id: str) -> List[PaymentRecord]:
        """Return the loan's payment records, newest first."""
        ...


@runtime_checkable
class CustomerDirectory(Protocol):
    """Read-only customer-profile lookup used at loan creation."""

    def get_customer(self, customer_id: str) -> Optional[Mapping[str, Any]]:
        """Return the profile's contact/address fields, or None if unknown."""
        ...


# ============================================================================
# CLOCKS
# ============================================================================

# Any zero-argument callable returning the current datetime.
Clock = Callable[[], datetime]


class SystemClock:
    """Clock reading the local wall time."""

    def __call__(self) -> datetime:
        return datetime.now()


class FixedClock:
    """
    Clock that only moves when told to.

    Time never goes backwards, so audit timestamps stay ordered.
    """

    def __init__(self, initial_time: datetime):
        self._now = initial_time

    def __call__(self) -> datetime:
        return self._now

    def advance(self, delta: Optional[timedelta] = None, *, days: int = 0) -> datetime:
        """Move the clock forward by delta and/or a number of days."""
        step = (delta or timedelta(0)) + timedelta(days=days)
        if step < timedelta(0):
            raise ValueError(f"Cannot move clock backwards by {step}")
        self._now = self._now + step
        return self._now

    def set(self, new_time: datetime) -> None:
        """Jump to new_time, which must not be earlier than the current time."""
        if new_time < self._now:
            raise ValueError(f"Cannot move clock backwards: {new_time} < {self._now}")
        self._now = new_time
