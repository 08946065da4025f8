"""
state_machine.py - Loan State Machine

Guards and transitions for the pawn-loan lifecycle:

    (none)    --create----------------> active
    active    --payment/add_money/discount/extend/edit--> active
    active    --redeem----------------> redeemed
    active    --forfeit (eligible)----> forfeited
    forfeited --reactivate------------> active
    any       --void------------------> voided (record deleted by the book)

Every operation takes a loan snapshot, an Operator and a timestamp and returns
an OperationResult. A LoanError raised by a guard or by the balance ledger is
returned in the result instead of propagating; the result then holds the
untouched input loan and no history entries. Other exceptions are bugs and
propagate.

On success the new loan is stamped with the operator id, its version is bumped
by one, and an AuditEntry with before/after snapshots is produced. Payment and
redeem also produce a PaymentRecord.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from . import balance
from .core import (
    Loan, LoanStatus, Operation, Operator, OperationResult, AuditEntry,
    PaymentKind, PaymentMethod, PaymentRecord,
    LoanError, InvalidAmount, InvalidField, InvalidTransition, LoanNotFound, SchemaViolation,
    ZERO, DEFAULT_EXTENSION_DAYS,
    to_decimal, to_money, as_date,
)


# ============================================================================
# TRANSITION TABLE
# ============================================================================

_ACTIVE_ONLY = frozenset({LoanStatus.ACTIVE})

# operation -> (statuses it may start from, status it leaves the loan in)
TRANSITIONS: Dict[Operation, Tuple[FrozenSet[LoanStatus], LoanStatus]] = {
    Operation.PAYMENT: (_ACTIVE_ONLY, LoanStatus.ACTIVE),
    Operation.ADD_MONEY: (_ACTIVE_ONLY, LoanStatus.ACTIVE),
    Operation.DISCOUNT: (_ACTIVE_ONLY, LoanStatus.ACTIVE),
    Operation.EXTEND: (_ACTIVE_ONLY, LoanStatus.ACTIVE),
    Operation.EDIT: (_ACTIVE_ONLY, LoanStatus.ACTIVE),
    Operation.REDEEM: (_ACTIVE_ONLY, LoanStatus.REDEEMED),
    Operation.FORFEIT: (_ACTIVE_ONLY, LoanStatus.FORFEITED),
    Operation.REACTIVATE: (frozenset({LoanStatus.FORFEITED}), LoanStatus.ACTIVE),
    Operation.VOID: (
        frozenset({LoanStatus.ACTIVE, LoanStatus.REDEEMED, LoanStatus.FORFEITED}),
        LoanStatus.VOIDED,
    ),
}

# Fields edit_loan accepts. Monetary ones trigger a full recompute.
EDITABLE_FIELDS = frozenset({
    'loan_amount', 'interest_rate', 'loan_term', 'recurring_fee',
    'collateral_description', 'collateral_image', 'customer_note',
})
MONETARY_EDIT_FIELDS = frozenset({'loan_amount', 'interest_rate', 'recurring_fee'})


def can_transition(status: LoanStatus, operation: Operation) -> bool:
    """Whether operation is legal for a loan in status."""
    allowed = TRANSITIONS.get(Operation(operation))
    return allowed is not None and LoanStatus(status) in allowed[0]


def allowed_operations(status: LoanStatus) -> List[Operation]:
    """Operations legal from status, in declaration order."""
    return [op for op in TRANSITIONS if can_transition(status, op)]


# ============================================================================
# RESULT BUILDERS
# ============================================================================

def _require_status(loan: Optional[Loan], operation: Operation) -> None:
    if loan is None:
        raise LoanNotFound(f"No loan given for {operation.value}")
    if not can_transition(loan.status, operation):
        raise InvalidTransition(
            f"Cannot {operation.value} loan {loan.transaction_number}: status is {loan.status.value}"
        )


def _require_operator(operator: Operator) -> None:
    if not isinstance(operator, Operator):
        raise InvalidField(f"operator must be an Operator, got {operator!r}")


def _rejected(operation: Optional[Operation], loan: Optional[Loan], error: LoanError) -> OperationResult:
    return OperationResult(operation=operation, loan=loan, error=error)


def _applied(
    operation: Operation,
    before: Loan,
    after: Loan,
    operator: Operator,
    timestamp: datetime,
    note: str = "",
    payments: Tuple[PaymentRecord, ...] = (),
    fully_paid: bool = False,
    overpayment: Decimal = ZERO,
) -> OperationResult:
    after = replace(after, updated_by=operator.id, version=before.version + 1)
    entry = AuditEntry(
        loan_id=before.id,
        operation=operation,
        timestamp=timestamp,
        operator=operator.id,
        old_state=before.as_dict(),
        new_state=after.as_dict(),
        note=note,
    )
    return OperationResult(
        operation=operation,
        loan=after,
        payments=payments,
        entries=(entry,),
        fully_paid=fully_paid,
        overpayment=overpayment,
    )


def _non_empty_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidField(f"{field_name} cannot be empty")
    return value


def _optional_text(value: Any, field_name: str) -> Optional[str]:
    if value is not None and not isinstance(value, str):
        raise InvalidField(f"{field_name} must be text, got {value!r}")
    return value


def _rate(value: Any) -> Decimal:
    rate = to_decimal(value, 'interest_rate')
    if rate < 0:
        raise InvalidAmount(f"interest_rate cannot be negative, got {rate}")
    return rate


# ============================================================================
# CREATE
# ============================================================================

def create_loan(
    *,
    loan_id: str,
    transaction_number: str,
    customer_id: str,
    loan_amount: Any,
    interest_rate: Any,
    loan_term: int,
    collateral_description: str,
    operator: Operator,
    timestamp: datetime,
    loan_issued_date: Optional[date] = None,
    recurring_fee: Any = ZERO,
    collateral_image: Optional[str] = None,
    customer_note: Optional[str] = None,
) -> OperationResult:
    """
    Issue a new active loan.

    Interest, total and due date are derived by the balance ledger. The issue
    date defaults to the timestamp's date. The new loan has version 1.

    Guards:
        loan_amount > 0, interest_rate >= 0, recurring_fee >= 0 (InvalidAmount);
        loan_term a positive number of days, collateral_description and
        identifiers non-empty (InvalidField).
    """
    try:
        _require_operator(operator)
        _non_empty_text(loan_id, 'loan_id')
        _non_empty_text(transaction_number, 'transaction_number')
        _non_empty_text(customer_id, 'customer_id')
        _non_empty_text(collateral_description, 'collateral_description')
        _optional_text(collateral_image, 'collateral_image')
        _optional_text(customer_note, 'customer_note')

        principal = to_money(loan_amount, 'loan_amount')
        if principal <= ZERO:
            raise InvalidAmount(f"loan_amount must be positive, got {principal}")
        rate = _rate(interest_rate)
        fee = to_money(recurring_fee, 'recurring_fee')
        if fee < ZERO:
            raise InvalidAmount(f"recurring_fee cannot be negative, got {fee}")

        issued = as_date(loan_issued_date if loan_issued_date is not None else timestamp)
        due = balance.compute_due_date(issued, loan_term)
        interest = balance.compute_interest(principal, rate)
        total = balance.compute_total_payable(principal, interest, fee)
    except LoanError as exc:
        return _rejected(Operation.CREATE, None, exc)

    loan = Loan(
        id=loan_id,
        transaction_number=transaction_number,
        customer_id=customer_id,
        loan_amount=principal,
        interest_rate=rate,
        interest_amount=interest,
        total_payable_amount=total,
        remaining_balance=total,
        loan_issued_date=issued,
        loan_term=loan_term,
        due_date=due,
        collateral_description=collateral_description,
        recurring_fee=fee,
        collateral_image=collateral_image,
        customer_note=customer_note,
        created_by=operator.id,
        updated_by=operator.id,
        version=1,
    )
    entry = AuditEntry(
        loan_id=loan.id,
        operation=Operation.CREATE,
        timestamp=timestamp,
        operator=operator.id,
        old_state=None,
        new_state=loan.as_dict(),
        note=f"Issued {principal} at {rate}% for {loan_term} days",
    )
    return OperationResult(operation=Operation.CREATE, loan=loan, entries=(entry,))


# ============================================================================
# ACTIVE-LOAN OPERATIONS
# ============================================================================

def make_payment(
    loan: Loan,
    amount: Any,
    method: Any = PaymentMethod.CASH,
    *,
    operator: Operator,
    timestamp: datetime,
) -> OperationResult:
    """
    Apply a payment to an active loan.

    A payment equal to the balance reports fully_paid but leaves the loan
    active; redemption is a separate step. Money above the balance is
    accepted and reported as overpayment.
    """
    try:
        _require_operator(operator)
        _require_status(loan, Operation.PAYMENT)
        outcome = balance.apply_payment(loan, amount, method, operator.id, timestamp)
    except LoanError as exc:
        return _rejected(Operation.PAYMENT, loan, exc)

    note = f"Payment {outcome.payment.amount} by {outcome.payment.method.value}"
    if outcome.overpayment > ZERO:
        note += f" (overpaid {outcome.overpayment})"
    return _applied(
        Operation.PAYMENT, loan, outcome.loan, operator, timestamp, note,
        payments=(outcome.payment,),
        fully_paid=outcome.fully_paid,
        overpayment=outcome.overpayment,
    )


def add_money(loan: Loan, amount: Any, *, operator: Operator, timestamp: datetime) -> OperationResult:
    """Lend more against the same collateral; interest and total are re-derived."""
    try:
        _require_operator(operator)
        _require_status(loan, Operation.ADD_MONEY)
        updated = balance.apply_add_money(loan, amount)
    except LoanError as exc:
        return _rejected(Operation.ADD_MONEY, loan, exc)
    added = updated.loan_amount - loan.loan_amount
    return _applied(Operation.ADD_MONEY, loan, updated, operator, timestamp, f"Added {added} to principal")


def discount_interest(
    loan: Loan,
    discount_amount: Any,
    *,
    operator: Operator,
    timestamp: datetime,
) -> OperationResult:
    """
    Reduce the interest owed; the discount may not exceed the current interest.

    A discount larger than the remaining balance clears it; the part that
    found nothing left to reduce is named in the audit note.
    """
    try:
        _require_operator(operator)
        _require_status(loan, Operation.DISCOUNT)
        updated = balance.apply_discount(loan, discount_amount)
    except LoanError as exc:
        return _rejected(Operation.DISCOUNT, loan, exc)
    discount = updated.interest_discount - loan.interest_discount
    note = f"Discounted interest by {discount}"
    unapplied = discount - (loan.remaining_balance - updated.remaining_balance)
    if unapplied > ZERO:
        note += f" ({unapplied} not applied to balance, already paid)"
    return _applied(Operation.DISCOUNT, loan, updated, operator, timestamp, note)


def extend_loan(
    loan: Loan,
    days: int = DEFAULT_EXTENSION_DAYS,
    *,
    operator: Operator,
    timestamp: datetime,
) -> OperationResult:
    """Push the due date forward. Legal on overdue loans whether or not interest was paid."""
    try:
        _require_operator(operator)
        _require_status(loan, Operation.EXTEND)
        updated = balance.extend(loan, days)
    except LoanError as exc:
        return _rejected(Operation.EXTEND, loan, exc)
    return _applied(
        Operation.EXTEND, loan, updated, operator, timestamp,
        f"Extended due date by {days} days to {updated.due_date}",
    )


def edit_loan(
    loan: Loan,
    changes: Mapping[str, Any],
    *,
    operator: Operator,
    timestamp: datetime,
) -> OperationResult:
    """
    Edit loan terms and descriptive fields.

    Only EDITABLE_FIELDS are accepted; any other name is a SchemaViolation.
    A loan_term change moves the due date by the same number of days, so
    earlier extensions are kept. A change to loan_amount, interest_rate or
    recurring_fee re-derives interest and total from the base formula
    (discarding any discount) while preserving the amount already paid; an
    edit that would put the total below that amount is an InvalidAmount.
    """
    try:
        _require_operator(operator)
        _require_status(loan, Operation.EDIT)
        if not changes:
            raise InvalidField("No fields to edit")
        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            raise SchemaViolation(f"Fields cannot be edited: {', '.join(unknown)}")

        updates: Dict[str, Any] = {}
        if 'loan_amount' in changes:
            principal = to_money(changes['loan_amount'], 'loan_amount')
            if principal <= ZERO:
                raise InvalidAmount(f"loan_amount must be positive, got {principal}")
            updates['loan_amount'] = principal
        if 'interest_rate' in changes:
            updates['interest_rate'] = _rate(changes['interest_rate'])
        if 'recurring_fee' in changes:
            fee = to_money(changes['recurring_fee'], 'recurring_fee')
            if fee < ZERO:
                raise InvalidAmount(f"recurring_fee cannot be negative, got {fee}")
            updates['recurring_fee'] = fee
        if 'loan_term' in changes:
            term = changes['loan_term']
            updates['loan_term'] = term
            updates['due_date'] = loan.due_date + (
                balance.compute_due_date(loan.loan_issued_date, term)
                - balance.compute_due_date(loan.loan_issued_date, loan.loan_term)
            )
        if 'collateral_description' in changes:
            updates['collateral_description'] = _non_empty_text(
                changes['collateral_description'], 'collateral_description')
        if 'collateral_image' in changes:
            updates['collateral_image'] = _optional_text(changes['collateral_image'], 'collateral_image')
        if 'customer_note' in changes:
            updates['customer_note'] = _optional_text(changes['customer_note'], 'customer_note')

        updated = replace(loan, **updates)
        if MONETARY_EDIT_FIELDS & set(changes):
            updated = balance.recompute(updated)
    except LoanError as exc:
        return _rejected(Operation.EDIT, loan, exc)

    return _applied(
        Operation.EDIT, loan, updated, operator, timestamp,
        f"Edited {', '.join(sorted(changes))}",
    )


# ============================================================================
# TERMINAL TRANSITIONS
# ============================================================================

def redeem_loan(
    loan: Loan,
    redemption_fee: Any = ZERO,
    method: Any = PaymentMethod.CASH,
    *,
    operator: Operator,
    timestamp: datetime,
) -> OperationResult:
    """
    Close an active loan and release the collateral.

    The optional one-time redemption fee is added to total and balance. Every
    redemption writes one REDEMPTION payment record holding whatever balance
    was still due (fee included), 0.00 for a loan already paid off, and the
    balance goes to zero.
    """
    try:
        _require_operator(operator)
        _require_status(loan, Operation.REDEEM)
        charged = balance.apply_redemption_fee(loan, redemption_fee)
        try:
            method = PaymentMethod(method)
        except ValueError:
            raise InvalidField(f"Unknown payment method {method!r}") from None
    except LoanError as exc:
        return _rejected(Operation.REDEEM, loan, exc)

    collected = charged.remaining_balance
    payment = PaymentRecord(
        loan_id=loan.id,
        amount=collected,
        method=method,
        timestamp=timestamp,
        processed_by=operator.id,
        kind=PaymentKind.REDEMPTION,
    )
    updated = replace(charged, remaining_balance=ZERO, status=LoanStatus.REDEEMED)
    note = f"Redeemed, collected {collected}"
    if charged.redemption_fee > loan.redemption_fee:
        note += f" including redemption fee {charged.redemption_fee - loan.redemption_fee}"
    return _applied(
        Operation.REDEEM, loan, updated, operator, timestamp, note,
        payments=(payment,),
        fully_paid=True,
    )


def forfeit_loan(
    loan: Loan,
    today: Optional[date] = None,
    *,
    operator: Operator,
    timestamp: datetime,
) -> OperationResult:
    """
    Let the shop keep the collateral.

    Eligibility is checked against the snapshot's current balance: the due
    date must be strictly before today (defaults to the timestamp's date) and
    the balance must be zero or below the interest amount.
    """
    try:
        _require_operator(operator)
        _require_status(loan, Operation.FORFEIT)
        today = as_date(today if today is not None else timestamp)
        if not balance.is_eligible_for_forfeiture(loan, today):
            if loan.due_date >= today:
                reason = f"due date {loan.due_date} has not passed"
            else:
                reason = (
                    f"remaining balance {loan.remaining_balance} is not below "
                    f"interest {loan.interest_amount}"
                )
            raise InvalidTransition(f"Loan {loan.transaction_number} is not eligible for forfeiture: {reason}")
    except LoanError as exc:
        return _rejected(Operation.FORFEIT, loan, exc)
    updated = replace(loan, status=LoanStatus.FORFEITED)
    return _applied(Operation.FORFEIT, loan, updated, operator, timestamp, f"Forfeited on {today}")


def reactivate_loan(loan: Loan, *, operator: Operator, timestamp: datetime) -> OperationResult:
    """Bring a forfeited loan back to active. Balances are untouched."""
    try:
        _require_operator(operator)
        _require_status(loan, Operation.REACTIVATE)
    except LoanError as exc:
        return _rejected(Operation.REACTIVATE, loan, exc)
    updated = replace(loan, status=LoanStatus.ACTIVE)
    return _applied(Operation.REACTIVATE, loan, updated, operator, timestamp, "Reactivated forfeited loan")


def void_loan(
    loan: Loan,
    reason: Optional[str] = None,
    *,
    operator: Operator,
    timestamp: datetime,
) -> OperationResult:
    """
    Mark a loan voided. The caller is responsible for confirmation and for
    deleting the loan and its payment history; the audit entry keeps the
    pre-void snapshot.
    """
    try:
        _require_operator(operator)
        _require_status(loan, Operation.VOID)
        _optional_text(reason, 'reason')
    except LoanError as exc:
        return _rejected(Operation.VOID, loan, exc)
    updated = replace(loan, status=LoanStatus.VOIDED)
    return _applied(Operation.VOID, loan, updated, operator, timestamp, reason or "Voided")


# ============================================================================
# DISPATCH
# ============================================================================

_CREATE_REQUIRED = (
    'loan_id', 'transaction_number', 'customer_id', 'loan_amount',
    'interest_rate', 'loan_term', 'collateral_description',
)
_CREATE_OPTIONAL = ('loan_issued_date', 'recurring_fee', 'collateral_image', 'customer_note')

# Keyword parameters each non-create operation accepts.
_PARAMETERS: Dict[Operation, FrozenSet[str]] = {
    Operation.PAYMENT: frozenset({'amount', 'method'}),
    Operation.ADD_MONEY: frozenset({'amount'}),
    Operation.DISCOUNT: frozenset({'discount_amount'}),
    Operation.EXTEND: frozenset({'days'}),
    Operation.REDEEM: frozenset({'redemption_fee', 'method'}),
    Operation.FORFEIT: frozenset({'today'}),
    Operation.REACTIVATE: frozenset(),
    Operation.EDIT: frozenset({'changes'}),
    Operation.VOID: frozenset({'reason'}),
}


def _missing(operation: Operation, loan: Optional[Loan], name: str) -> OperationResult:
    return _rejected(operation, loan, InvalidField(f"Missing '{name}' parameter for {operation.value}"))


def transact(
    loan: Optional[Loan],
    operation: Any,
    *,
    operator: Operator,
    timestamp: datetime,
    **kwargs
) -> OperationResult:
    """
    Run one lifecycle operation on a loan snapshot.

    This is the unified entry point for all loan operations, routing to the
    appropriate function based on operation.

    Args:
        loan: Current snapshot (None for CREATE)
        operation: Operation or its string value:
            - create: requires loan_id, transaction_number, customer_id,
              loan_amount, interest_rate, loan_term, collateral_description
            - payment: requires 'amount', optional 'method'
            - add_money: requires 'amount'
            - discount: requires 'discount_amount'
            - extend: optional 'days'
            - redeem: optional 'redemption_fee', 'method'
            - forfeit: optional 'today'
            - reactivate: no parameters
            - edit: requires 'changes'
            - void: optional 'reason'
        operator: Who performs the operation
        timestamp: When it happens
        **kwargs: Operation-specific parameters

    Returns:
        OperationResult. Unknown operations give an InvalidTransition result,
        missing parameters an InvalidField result and unrecognised
        parameter names a SchemaViolation result.

    Example:
        result = transact(loan, "payment", operator=op, timestamp=now, amount=Decimal("50"))
    """
    try:
        operation = Operation(operation)
    except ValueError:
        return _rejected(None, loan, InvalidTransition(f"Unknown operation {operation!r}"))

    if operation == Operation.CREATE:
        for name in _CREATE_REQUIRED:
            if kwargs.get(name) is None:
                return _missing(operation, None, name)
        unknown = sorted(set(kwargs) - set(_CREATE_REQUIRED) - set(_CREATE_OPTIONAL))
        if unknown:
            return _rejected(operation, None, SchemaViolation(f"Unknown loan fields: {', '.join(unknown)}"))
        return create_loan(operator=operator, timestamp=timestamp, **kwargs)

    unknown = sorted(set(kwargs) - _PARAMETERS[operation])
    if unknown:
        return _rejected(
            operation, loan,
            SchemaViolation(f"Unknown parameters for {operation.value}: {', '.join(unknown)}"),
        )

    if operation == Operation.PAYMENT:
        amount = kwargs.get('amount')
        if amount is None:
            return _missing(operation, loan, 'amount')
        method = kwargs.get('method', PaymentMethod.CASH)
        return make_payment(loan, amount, method, operator=operator, timestamp=timestamp)

    elif operation == Operation.ADD_MONEY:
        amount = kwargs.get('amount')
        if amount is None:
            return _missing(operation, loan, 'amount')
        return add_money(loan, amount, operator=operator, timestamp=timestamp)

    elif operation == Operation.DISCOUNT:
        discount_amount = kwargs.get('discount_amount')
        if discount_amount is None:
            return _missing(operation, loan, 'discount_amount')
        return discount_interest(loan, discount_amount, operator=operator, timestamp=timestamp)

    elif operation == Operation.EXTEND:
        days = kwargs.get('days', DEFAULT_EXTENSION_DAYS)
        return extend_loan(loan, days, operator=operator, timestamp=timestamp)

    elif operation == Operation.REDEEM:
        fee = kwargs.get('redemption_fee', ZERO)
        method = kwargs.get('method', PaymentMethod.CASH)
        return redeem_loan(loan, fee, method, operator=operator, timestamp=timestamp)

    elif operation == Operation.FORFEIT:
        return forfeit_loan(loan, kwargs.get('today'), operator=operator, timestamp=timestamp)

    elif operation == Operation.REACTIVATE:
        return reactivate_loan(loan, operator=operator, timestamp=timestamp)

    elif operation == Operation.EDIT:
        changes = kwargs.get('changes')
        if changes is None:
            return _missing(operation, loan, 'changes')
        return edit_loan(loan, changes, operator=operator, timestamp=timestamp)

    else:
        return void_loan(loan, kwargs.get('reason'), operator=operator, timestamp=timestamp)
