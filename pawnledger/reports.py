"""
reports.py - Balance Feeds

Read-only aggregations over loans and payment records:

1. PAYMENT SUMMARIES (summarize_payments):
   - Cash received in a window, by method and by operator
   - Feeds the shift/cash-drawer process

2. BALANCING REPORT (balancing_report):
   - Active loans issued in a window, split into not-yet-due and due

3. REVENUE REPORT (revenue_report):
   - Payments received in a window, each split into interest and principal
     in the proportion interest_amount / total_payable_amount of its loan
   - Grouped by loan status and by loan

4. SHIFT BALANCE (shift_expected_balance, is_balanced):
   - expected = opening balance + payments received - principal issued
   - balanced when |expected - counted| < 0.01

All functions are pure; they take lists, not a book.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Tuple

from .core import (
    Loan, LoanStatus, PaymentMethod, PaymentRecord,
    InvalidAmount, InvalidField, ZERO, CURRENCY_QUANTUM,
    to_money, as_date,
)


# Cash counts within this amount of the expected balance are balanced.
BALANCE_TOLERANCE = CURRENCY_QUANTUM


# ============================================================================
# PAYMENT SUMMARIES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PaymentSummary:
    """
    Totals over a set of payment records.

    Attributes:
        count: Number of records
        total: Sum of tendered amounts
        by_method: Tendered amount per payment method
        overpayments: Part of total above the balances due
    """
    count: int
    total: Decimal
    by_method: Dict[PaymentMethod, Decimal] = field(default_factory=dict)
    overpayments: Decimal = ZERO

    @property
    def applied(self) -> Decimal:
        """Amount that reduced loan balances."""
        return self.total - self.overpayments


def summarize_payments(
    records: Iterable[PaymentRecord],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    processed_by: Optional[str] = None,
) -> PaymentSummary:
    """
    Summarize payment records received in [start, end).

    Args:
        records: Payment records (any order)
        start: Inclusive lower bound on timestamp (None: unbounded)
        end: Exclusive upper bound on timestamp (None: unbounded)
        processed_by: Only count records taken by this operator id

    Returns:
        PaymentSummary with count, totals and a per-method breakdown
    """
    count = 0
    total = ZERO
    overpayments = ZERO
    by_method: Dict[PaymentMethod, Decimal] = {}

    for record in records:
        if start is not None and record.timestamp < start:
            continue
        if end is not None and record.timestamp >= end:
            continue
        if processed_by is not None and record.processed_by != processed_by:
            continue
        count += 1
        total += record.amount
        overpayments += record.overpayment
        by_method[record.method] = by_method.get(record.method, ZERO) + record.amount

    return PaymentSummary(count=count, total=total, by_method=by_method, overpayments=overpayments)


# ============================================================================
# BALANCING REPORT
# ============================================================================

@dataclass(frozen=True, slots=True)
class LoanBucket:
    """Count and totals of a group of loans."""
    count: int = 0
    total_principal: Decimal = ZERO
    total_interest: Decimal = ZERO

    @property
    def total_amount(self) -> Decimal:
        return self.total_principal + self.total_interest

    def add(self, loan: Loan) -> LoanBucket:
        return LoanBucket(
            count=self.count + 1,
            total_principal=self.total_principal + loan.loan_amount,
            total_interest=self.total_interest + loan.interest_amount,
        )


@dataclass(frozen=True, slots=True)
class BalancingReport:
    """
    Active loans issued in [start_date, end_date], judged on `today`.

    Attributes:
        start_date: First issue date included
        end_date: Last issue date included
        today: Date the due split was made on
        active: Loans with due_date >= today
        due: Loans with due_date < today
    """
    start_date: date
    end_date: date
    today: date
    active: LoanBucket
    due: LoanBucket

    @property
    def total(self) -> LoanBucket:
        return LoanBucket(
            count=self.active.count + self.due.count,
            total_principal=self.active.total_principal + self.due.total_principal,
            total_interest=self.active.total_interest + self.due.total_interest,
        )


def balancing_report(
    loans: Iterable[Loan],
    start_date: date,
    end_date: date,
    today: date,
) -> BalancingReport:
    """
    Split active loans issued in the window into not-yet-due and due.

    Both window bounds are inclusive. Redeemed and forfeited loans are skipped.

    Raises:
        InvalidField: if start_date is after end_date.
    """
    start_date, end_date, today = as_date(start_date), as_date(end_date), as_date(today)
    if start_date > end_date:
        raise InvalidField(f"start_date {start_date} is after end_date {end_date}")

    active = LoanBucket()
    due = LoanBucket()
    for loan in loans:
        if loan.status is not LoanStatus.ACTIVE:
            continue
        if not start_date <= loan.loan_issued_date <= end_date:
            continue
        if loan.due_date < today:
            due = due.add(loan)
        else:
            active = active.add(loan)

    return BalancingReport(start_date=start_date, end_date=end_date, today=today, active=active, due=due)


# ============================================================================
# REVENUE REPORT
# ============================================================================

@dataclass(frozen=True, slots=True)
class RevenueBucket:
    """Payments received, split into interest and principal."""
    count: int = 0
    interest: Decimal = ZERO
    principal: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.interest + self.principal

    def add(self, interest: Decimal, principal: Decimal) -> RevenueBucket:
        return RevenueBucket(
            count=self.count + 1,
            interest=self.interest + interest,
            principal=self.principal + principal,
        )

    def merge(self, other: RevenueBucket) -> RevenueBucket:
        return RevenueBucket(
            count=self.count + other.count,
            interest=self.interest + other.interest,
            principal=self.principal + other.principal,
        )


@dataclass(frozen=True, slots=True)
class RevenueReport:
    """
    Payments received on dates in [start_date, end_date], judged on `today`.

    Attributes:
        start_date: First payment date included
        end_date: Last payment date included
        today: Date the due split was made on
        active: Payments on active loans with due_date >= today
        due: Payments on active loans with due_date < today
        redeemed: Payments on redeemed loans
        forfeited: Payments on forfeited loans
        by_loan: Per-loan buckets keyed by loan id, in payment order
    """
    start_date: date
    end_date: date
    today: date
    active: RevenueBucket
    due: RevenueBucket
    redeemed: RevenueBucket
    forfeited: RevenueBucket
    by_loan: Dict[str, RevenueBucket] = field(default_factory=dict)

    @property
    def total(self) -> RevenueBucket:
        return self.active.merge(self.due).merge(self.redeemed).merge(self.forfeited)


def split_payment(amount: Any, loan: Loan) -> Tuple[Decimal, Decimal]:
    """
    Split a payment into (interest, principal) portions.

    The interest portion is amount * interest_amount / total_payable_amount,
    rounded half-up to cents; the principal portion is the rest, so the two
    always add back to the amount. A loan with nothing payable takes it all
    as principal.
    """
    amount = to_money(amount, 'amount')
    if loan.total_payable_amount <= ZERO:
        return ZERO, amount
    interest = to_money(amount * loan.interest_amount / loan.total_payable_amount, 'interest')
    return interest, amount - interest


def revenue_report(
    payments: Iterable[PaymentRecord],
    loans: Iterable[Loan],
    start_date: date,
    end_date: date,
    today: date,
) -> RevenueReport:
    """
    Split the money received in a window into interest and principal.

    Both window bounds are inclusive and compare against the payment's date.
    Only the applied part of each record counts; overpayments are not revenue.
    Each record is split against its loan's current terms. Records whose
    loan is missing from `loans` or voided are skipped.

    Args:
        payments: Payment records (any order)
        loans: Loans the records belong to
        start_date: First payment date included
        end_date: Last payment date included
        today: Date used to tell due loans from active ones

    Raises:
        InvalidField: if start_date is after end_date.
    """
    start_date, end_date, today = as_date(start_date), as_date(end_date), as_date(today)
    if start_date > end_date:
        raise InvalidField(f"start_date {start_date} is after end_date {end_date}")

    by_id = {loan.id: loan for loan in loans}
    buckets = {'active': RevenueBucket(), 'due': RevenueBucket(),
               'redeemed': RevenueBucket(), 'forfeited': RevenueBucket()}
    by_loan: Dict[str, RevenueBucket] = {}

    for record in sorted(payments, key=lambda r: r.timestamp):
        if not start_date <= record.timestamp.date() <= end_date:
            continue
        loan = by_id.get(record.loan_id)
        if loan is None or loan.status is LoanStatus.VOIDED:
            continue
        interest, principal = split_payment(record.applied_amount, loan)

        if loan.status is LoanStatus.ACTIVE:
            group = 'due' if loan.due_date < today else 'active'
        else:
            group = loan.status.value
        buckets[group] = buckets[group].add(interest, principal)
        by_loan[loan.id] = by_loan.get(loan.id, RevenueBucket()).add(interest, principal)

    return RevenueReport(
        start_date=start_date, end_date=end_date, today=today,
        by_loan=by_loan, **buckets,
    )


# ============================================================================
# SHIFT BALANCE
# ============================================================================

def loans_issued_total(loans: Iterable[Loan], start_date: date, end_date: date) -> Decimal:
    """Principal of loans issued in [start_date, end_date], whatever their status now."""
    start_date, end_date = as_date(start_date), as_date(end_date)
    return sum(
        (loan.loan_amount for loan in loans if start_date <= loan.loan_issued_date <= end_date),
        ZERO,
    )


def shift_expected_balance(opening_balance: Any, payments_received: Any, loans_issued: Any) -> Decimal:
    """
    Cash the drawer should hold at the end of a shift.

    Raises:
        InvalidAmount: if any input is not a valid amount or opening_balance is negative.
    """
    opening = to_money(opening_balance, 'opening_balance')
    if opening < ZERO:
        raise InvalidAmount(f"opening_balance cannot be negative, got {opening}")
    return opening + to_money(payments_received, 'payments_received') - to_money(loans_issued, 'loans_issued')


def is_balanced(expected: Any, counted: Any, tolerance: Decimal = BALANCE_TOLERANCE) -> bool:
    """True when the counted cash is within tolerance of the expected balance."""
    return abs(to_money(counted, 'counted') - to_money(expected, 'expected')) < tolerance
