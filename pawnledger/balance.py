"""
balance.py - Balance & Interest Ledger for Pawn Loans

This module owns every monetary computation on a loan. It is the single source
of truth for interest, totals and remaining balances.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. PURE CALCULATION FUNCTIONS (compute_*):
   - Take all inputs explicitly as parameters
   - No book, no clock, no hidden state
   - Example: compute_interest(Decimal("1000"), Decimal("10")) -> Decimal("100.00")

2. LOAN TRANSFORMS (apply_*, extend, recompute):
   - Take a Loan snapshot, return a NEW Loan
   - Never change status; lifecycle guards live in state_machine.py
   - Raise LoanError subclasses on invalid input

3. PREDICATES (is_*):
   - Evaluated against the snapshot passed in, every call

Key Formulas:
    interest_amount = loan_amount * interest_rate / 100 - interest_discount
    total_payable_amount = loan_amount + interest_amount + recurring_fee (+ redemption_fee once redeemed)
    amount_paid = total_payable_amount - remaining_balance
    forfeitable = due_date < today and (remaining_balance == 0 or remaining_balance < interest_amount)
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, List, Optional

from .core import (
    Loan, LoanStatus, PaymentKind, PaymentMethod, PaymentRecord,
    InvalidAmount, DiscountExceedsInterest, InvalidField, InvalidTransition,
    ZERO, HUNDRED, DEFAULT_EXTENSION_DAYS,
    to_decimal, to_money, as_date,
)


# ============================================================================
# VALIDATION HELPERS
# ============================================================================

def _positive_money(value: Any, field_name: str) -> Decimal:
    amount = to_money(value, field_name)
    if amount <= ZERO:
        raise InvalidAmount(f"{field_name} must be positive, got {amount}")
    return amount


def _non_negative_money(value: Any, field_name: str) -> Decimal:
    amount = to_money(value, field_name)
    if amount < ZERO:
        raise InvalidAmount(f"{field_name} cannot be negative, got {amount}")
    return amount


def _positive_days(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidField(f"{field_name} must be a whole number of days, got {value!r}")
    if value <= 0:
        raise InvalidField(f"{field_name} must be positive, got {value}")
    return value


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def compute_interest(loan_amount: Any, interest_rate: Any) -> Decimal:
    """
    Flat interest for one loan term.

    PURE FUNCTION - same inputs always give the same output.

    Args:
        loan_amount: Principal (>= 0)
        interest_rate: Percent for the term (>= 0), e.g. 10 for 10%

    Returns:
        loan_amount * interest_rate / 100, rounded half-up to cents.

    Raises:
        InvalidAmount: if either input is negative or not a number.

    Example:
        compute_interest(Decimal("1000"), Decimal("10"))  # Decimal("100.00")
    """
    principal = to_decimal(loan_amount, 'loan_amount')
    if principal < 0:
        raise InvalidAmount(f"loan_amount cannot be negative, got {principal}")
    rate = to_decimal(interest_rate, 'interest_rate')
    if rate < 0:
        raise InvalidAmount(f"interest_rate cannot be negative, got {rate}")
    return to_money(principal * rate / HUNDRED, 'interest_amount')


def compute_total_payable(loan_amount: Any, interest_amount: Any, recurring_fee: Any = ZERO) -> Decimal:
    """Principal plus interest plus recurring fee. The redemption fee is never part of it."""
    return (
        to_money(loan_amount, 'loan_amount')
        + to_money(interest_amount, 'interest_amount')
        + to_money(recurring_fee, 'recurring_fee')
    )


def compute_due_date(issued: date, term_days: int) -> date:
    """Due date for a loan issued on `issued` running `term_days` days."""
    return as_date(issued) + timedelta(days=_positive_days(term_days, 'loan_term'))


def amount_paid(loan: Loan) -> Decimal:
    """Money already applied to the loan: total_payable_amount - remaining_balance."""
    return loan.total_payable_amount - loan.remaining_balance


# ============================================================================
# PREDICATES
# ============================================================================

def is_fully_paid(loan: Loan) -> bool:
    return loan.remaining_balance <= ZERO


def is_overdue(loan: Loan, today: date) -> bool:
    """True for an active loan whose due date has passed."""
    return loan.status is LoanStatus.ACTIVE and loan.due_date < as_date(today)


def is_eligible_for_forfeiture(loan: Loan, today: date) -> bool:
    """
    Whether the shop may keep the collateral.

    True iff the due date is strictly before today and the customer has either
    paid everything or not even kept up with the interest. A loan due today is
    not yet eligible.
    """
    if loan.due_date >= as_date(today):
        return False
    return loan.remaining_balance == ZERO or loan.remaining_balance < loan.interest_amount


def check_invariants(loan: Loan) -> List[str]:
    """
    Check the monetary invariants of a loan snapshot.

    Returns:
        List of violation descriptions (empty if all invariants hold).
    """
    violations = []

    if loan.remaining_balance < ZERO:
        violations.append(f"remaining_balance is negative: {loan.remaining_balance}")
    if loan.interest_discount < ZERO:
        violations.append(f"interest_discount is negative: {loan.interest_discount}")
    if loan.interest_amount < ZERO:
        violations.append(f"interest_amount is negative: {loan.interest_amount}")

    expected_interest = compute_interest(loan.loan_amount, loan.interest_rate) - loan.interest_discount
    if loan.interest_amount != expected_interest:
        violations.append(
            f"interest_amount {loan.interest_amount} != base interest minus discount {expected_interest}"
        )

    expected_total = compute_total_payable(loan.loan_amount, loan.interest_amount, loan.recurring_fee)
    if loan.status is LoanStatus.ACTIVE:
        if loan.redemption_fee != ZERO:
            violations.append(f"active loan carries a redemption_fee: {loan.redemption_fee}")
        if loan.total_payable_amount != expected_total:
            violations.append(
                f"total_payable_amount {loan.total_payable_amount} != "
                f"loan_amount + interest_amount + recurring_fee {expected_total}"
            )
    elif loan.total_payable_amount != expected_total + loan.redemption_fee:
        violations.append(
            f"total_payable_amount {loan.total_payable_amount} != "
            f"expected {expected_total + loan.redemption_fee}"
        )

    if loan.remaining_balance > loan.total_payable_amount:
        violations.append(
            f"remaining_balance {loan.remaining_balance} exceeds total {loan.total_payable_amount}"
        )
    if loan.due_date < loan.loan_issued_date:
        violations.append(f"due_date {loan.due_date} precedes issue date {loan.loan_issued_date}")

    return violations


# ============================================================================
# LOAN TRANSFORMS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PaymentOutcome:
    """Result of applying a payment: the new loan, its record and what it settled."""
    loan: Loan
    payment: PaymentRecord
    fully_paid: bool
    overpayment: Decimal


def apply_payment(
    loan: Loan,
    amount: Any,
    method: Any = PaymentMethod.CASH,
    processed_by: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> PaymentOutcome:
    """
    Apply a customer payment to the remaining balance.

    The balance is floored at zero. Money above the balance is accepted and
    reported as overpayment on both the outcome and the payment record.
    Status never changes here; a fully paid loan stays active until redeemed.

    Args:
        loan: Current snapshot
        amount: Tendered amount (must be positive)
        method: PaymentMethod or its string value
        processed_by: Operator id at the counter
        timestamp: When the money was received (defaults to now)

    Raises:
        InvalidAmount: if amount is not positive.
        InvalidField: if method is not a known payment method.
    """
    amount = _positive_money(amount, 'amount')
    try:
        method = PaymentMethod(method)
    except ValueError:
        raise InvalidField(f"Unknown payment method {method!r}") from None

    new_balance = max(loan.remaining_balance - amount, ZERO)
    overpayment = max(amount - loan.remaining_balance, ZERO)

    payment = PaymentRecord(
        loan_id=loan.id,
        amount=amount,
        method=method,
        timestamp=timestamp if timestamp is not None else datetime.now(),
        processed_by=processed_by,
        kind=PaymentKind.PAYMENT,
        overpayment=overpayment,
    )
    new_loan = replace(loan, remaining_balance=new_balance)
    return PaymentOutcome(
        loan=new_loan,
        payment=payment,
        fully_paid=is_fully_paid(new_loan),
        overpayment=overpayment,
    )


def apply_discount(loan: Loan, discount_amount: Any) -> Loan:
    """
    Reduce the loan's interest by a discount.

    The discount is subtracted from interest, total and remaining balance, and
    accumulated in interest_discount so the base formula stays recoverable.

    Raises:
        InvalidAmount: if discount_amount is not positive.
        DiscountExceedsInterest: if discount_amount > current interest_amount.
    """
    discount = _positive_money(discount_amount, 'discount_amount')
    if discount > loan.interest_amount:
        raise DiscountExceedsInterest(
            f"Discount {discount} exceeds interest {loan.interest_amount} on loan {loan.transaction_number}"
        )

    new_interest = loan.interest_amount - discount
    return replace(
        loan,
        interest_amount=new_interest,
        interest_discount=loan.interest_discount + discount,
        total_payable_amount=loan.total_payable_amount - discount,
        remaining_balance=max(loan.remaining_balance - discount, ZERO),
    )


def apply_add_money(loan: Loan, amount: Any) -> Loan:
    """
    Lend more money against the same collateral.

    Restarts the loan's economics: principal grows, interest and total are
    re-derived from scratch (discarding any discount) and the remaining balance
    becomes the new total.

    Raises:
        InvalidAmount: if amount is not positive.
    """
    amount = _positive_money(amount, 'amount')
    new_principal = loan.loan_amount + amount
    new_interest = compute_interest(new_principal, loan.interest_rate)
    new_total = compute_total_payable(new_principal, new_interest, loan.recurring_fee)
    return replace(
        loan,
        loan_amount=new_principal,
        interest_amount=new_interest,
        interest_discount=ZERO,
        total_payable_amount=new_total,
        remaining_balance=new_total,
    )


def extend(loan: Loan, days: int = DEFAULT_EXTENSION_DAYS) -> Loan:
    """
    Push the due date forward. Balance and interest are unchanged.

    Raises:
        InvalidTransition: if the loan is not active.
        InvalidField: if days is not a positive integer.
    """
    if loan.status is not LoanStatus.ACTIVE:
        raise InvalidTransition(f"Cannot extend a {loan.status.value} loan")
    days = _positive_days(days, 'days')
    return replace(loan, due_date=loan.due_date + timedelta(days=days))


def apply_redemption_fee(loan: Loan, fee: Any) -> Loan:
    """
    Charge the one-time redemption fee on total and remaining balance.

    Raises:
        InvalidAmount: if fee is negative.
    """
    fee = _non_negative_money(fee, 'redemption_fee')
    if fee == ZERO:
        return loan
    return replace(
        loan,
        redemption_fee=loan.redemption_fee + fee,
        total_payable_amount=loan.total_payable_amount + fee,
        remaining_balance=loan.remaining_balance + fee,
    )


def recompute(loan: Loan) -> Loan:
    """
    Re-derive interest and total from the base formula.

    Discards any discount. The amount already paid is preserved, so the new
    remaining balance is the new total minus what was paid.

    Raises:
        InvalidAmount: if the new total is below the amount already paid.
    """
    paid = amount_paid(loan)
    new_interest = compute_interest(loan.loan_amount, loan.interest_rate)
    new_total = (
        compute_total_payable(loan.loan_amount, new_interest, loan.recurring_fee)
        + loan.redemption_fee
    )
    if new_total < paid:
        raise InvalidAmount(
            f"New total {new_total} is below the {paid} already paid on loan {loan.transaction_number}"
        )
    return replace(
        loan,
        interest_amount=new_interest,
        interest_discount=ZERO,
        total_payable_amount=new_total,
        remaining_balance=new_total - paid,
    )
