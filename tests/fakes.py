"""
fakes.py - Test Helpers for pawnledger

Provides a minimal CustomerDirectory, a loan factory for testing ledger and
state-machine functions without a LoanBook, and helpers for book-level tests.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple

from hypothesis import strategies as st

from pawnledger import FixedClock, Loan, LoanBook, Operator, PaymentMethod, state_machine


CLERK = Operator("u-100", "clerk")
ISSUED = date(2024, 1, 1)
OPENED = datetime(2024, 1, 1, 9, 0)


class FakeCustomerDirectory:
    """
    Minimal CustomerDirectory backed by a dict.

    Example:
        customers = FakeCustomerDirectory({'c-1': {'first_name': 'Ada'}})
        customers.get_customer('c-1')   # {'first_name': 'Ada'}
        customers.get_customer('nope')  # None
    """

    def __init__(self, profiles: Optional[Dict[str, Mapping[str, Any]]] = None):
        self._profiles = dict(profiles or {})
        self.lookups = []

    def get_customer(self, customer_id: str) -> Optional[Mapping[str, Any]]:
        self.lookups.append(customer_id)
        return self._profiles.get(customer_id)


def make_loan(
    loan_amount: Any = Decimal("1000"),
    interest_rate: Any = Decimal("10"),
    loan_term: int = 30,
    recurring_fee: Any = Decimal("0"),
    issued: date = ISSUED,
    **overrides
) -> Loan:
    """Create an active loan through the state machine, then apply field overrides."""
    loan = state_machine.create_loan(
        loan_id="loan-1",
        transaction_number="123456789",
        customer_id="c-1",
        loan_amount=loan_amount,
        interest_rate=interest_rate,
        loan_term=loan_term,
        collateral_description="14k gold ring",
        recurring_fee=recurring_fee,
        loan_issued_date=issued,
        operator=CLERK,
        timestamp=OPENED,
    ).unwrap()
    return replace(loan, **overrides) if overrides else loan


def issue_standard_loan(book: LoanBook, operator: Operator = CLERK, **kwargs) -> Loan:
    """Issue 1000.00 at 10% for 30 days to customer c-1 through the book."""
    terms = dict(
        loan_amount=Decimal("1000"),
        interest_rate=Decimal("10"),
        loan_term=30,
        collateral_description="14k gold ring",
    )
    terms.update(kwargs)
    customer_id = terms.pop('customer_id', 'c-1')
    return book.create_loan(customer_id, operator, **terms).unwrap()


def book_snapshot(book: LoanBook, loan_id: str) -> Tuple:
    """Everything the book stores about one loan, for before/after comparisons."""
    return (
        book.get_loan(loan_id),
        book.payment_history(loan_id),
        book.audit_log(loan_id),
    )


def new_book(seed: Optional[int] = 7) -> LoanBook:
    """A book with customers c-1 and c-2 on a clock fixed at OPENED, for use inside @given tests."""
    customers = FakeCustomerDirectory({'c-1': {'first_name': 'Ada'}, 'c-2': {'first_name': 'Alan'}})
    return LoanBook(customers=customers, clock=FixedClock(OPENED), seed=seed)


def run_operation(book: LoanBook, loan_id: str, name: str, arg: Any, operator: Operator = CLERK):
    """
    Dispatch one generated (name, arg) step to the book.

    Used by the property-based suites; `arg` is an amount, a day count or None
    depending on the operation.
    """
    if name == 'payment':
        return book.make_payment(loan_id, arg, PaymentMethod.CASH, operator)
    if name == 'add_money':
        return book.add_money(loan_id, arg, operator)
    if name == 'discount':
        return book.discount_interest(loan_id, arg, operator)
    if name == 'extend':
        return book.extend_loan(loan_id, operator, arg)
    if name == 'redeem':
        return book.redeem_loan(loan_id, operator, arg)
    if name == 'forfeit':
        return book.forfeit_loan(loan_id, operator, ISSUED + timedelta(days=arg))
    if name == 'reactivate':
        return book.reactivate_loan(loan_id, operator)
    if name == 'edit_amount':
        return book.edit_loan(loan_id, {'loan_amount': arg}, operator)
    raise ValueError(f"Unknown operation {name!r}")


# =============================================================================
# HYPOTHESIS STRATEGIES
# =============================================================================

amounts = st.decimals(min_value=Decimal("-10"), max_value=Decimal("2000"), places=2)

operation_steps = st.lists(
    st.one_of(
        st.tuples(st.just('payment'), amounts),
        st.tuples(st.just('add_money'), amounts),
        st.tuples(st.just('discount'), st.decimals(min_value=Decimal("0"), max_value=Decimal("150"), places=2)),
        st.tuples(st.just('extend'), st.integers(min_value=-1, max_value=60)),
        st.tuples(st.just('redeem'), st.decimals(min_value=Decimal("-5"), max_value=Decimal("50"), places=2)),
        st.tuples(st.just('forfeit'), st.integers(min_value=0, max_value=120)),
        st.tuples(st.just('reactivate'), st.none()),
        st.tuples(st.just('edit_amount'), amounts),
    ),
    max_size=12,
)
