"""
Loan Invariant Conformance Tests

INVARIANT: Every stored loan is internally consistent after every operation.

    ∀ loan L in the book:
        L.remaining_balance ≥ 0
        L.interest_amount = L.loan_amount × L.interest_rate / 100 - L.interest_discount
        L.total_payable_amount = L.loan_amount + L.interest_amount + L.recurring_fee (+ redemption fee once closed)
        L.remaining_balance ≤ L.total_payable_amount

    ∀ operation O on L:
        O applied ⟹ version(L) increases by exactly 1 and one audit entry is written
        O rejected ⟹ version(L) and the audit log are unchanged

Payment history is append-only.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal

from pawnledger import (
    LoanNotFound, LoanStatus, PaymentMethod, check_invariants, compute_interest, to_money,
)
from tests.fakes import CLERK, issue_standard_loan, new_book, operation_steps, run_operation


class TestInvariantProperties:
    """Property-based invariant tests."""

    @given(operation_steps)
    @settings(max_examples=200, deadline=None)
    def test_any_sequence_keeps_loan_consistent(self, steps):
        """
        PROPERTY: No sequence of operations, accepted or rejected, breaks the balance invariants.
        """
        book = new_book()
        loan = issue_standard_loan(book)

        for name, arg in steps:
            run_operation(book, loan.id, name, arg)
            stored = book.get_loan(loan.id)
            assert stored.remaining_balance >= Decimal("0")
            assert check_invariants(stored) == []

        assert book.verify_invariants() == {}

    @given(operation_steps)
    @settings(max_examples=100, deadline=None)
    def test_version_and_audit_advance_together(self, steps):
        """
        PROPERTY: Each applied operation bumps the version by one and writes one audit entry.
        """
        book = new_book()
        loan = issue_standard_loan(book)

        for name, arg in steps:
            before = book.get_loan(loan.id)
            entries_before = len(book.audit_log(loan.id))
            result = run_operation(book, loan.id, name, arg)
            after = book.get_loan(loan.id)

            if result.ok:
                assert after.version == before.version + 1
                assert len(book.audit_log(loan.id)) == entries_before + len(result.entries)
                assert book.audit_log(loan.id)[-1].new_state == after.as_dict()
            else:
                assert after == before
                assert len(book.audit_log(loan.id)) == entries_before

    @given(operation_steps)
    @settings(max_examples=100, deadline=None)
    def test_payment_history_is_append_only(self, steps):
        """
        PROPERTY: Earlier payment records are never changed or removed.
        """
        book = new_book()
        loan = issue_standard_loan(book)

        history = []
        for name, arg in steps:
            run_operation(book, loan.id, name, arg)
            current = list(reversed(book.payment_history(loan.id)))
            assert current[:len(history)] == history
            history = current

    @given(operation_steps)
    @settings(max_examples=100, deadline=None)
    def test_redeemed_loans_are_settled(self, steps):
        """
        PROPERTY: A redeemed loan never carries a balance.
        """
        book = new_book()
        loan = issue_standard_loan(book)

        for name, arg in steps:
            run_operation(book, loan.id, name, arg)
            stored = book.get_loan(loan.id)
            if stored.status is LoanStatus.REDEEMED:
                assert stored.remaining_balance == Decimal("0")

    @given(
        st.decimals(min_value=Decimal("0.01"), max_value=Decimal("1000000"), places=2),
        st.decimals(min_value=Decimal("0"), max_value=Decimal("100"), places=3),
    )
    def test_interest_formula(self, principal, rate):
        """
        PROPERTY: interest = round_half_up(principal × rate / 100, 2).
        """
        assert compute_interest(principal, rate) == to_money(principal * rate / Decimal("100"))


class TestInvariantExamples:
    """Explicit invariant examples."""

    def test_overpayment_floors_balance_at_zero(self):
        book = new_book()
        loan = issue_standard_loan(book)
        result = book.make_payment(loan.id, Decimal("5000"), PaymentMethod.CASH, CLERK)

        assert result.loan.remaining_balance == Decimal("0")
        assert result.overpayment == Decimal("3900.00")
        assert book.verify_invariants() == {}

    def test_voided_loan_leaves_no_balance_behind(self):
        book = new_book()
        loan = issue_standard_loan(book)
        book.make_payment(loan.id, Decimal("100"), PaymentMethod.CASH, CLERK)
        book.void_loan(loan.id, CLERK, confirm=True)

        assert book.list_loans() == []
        assert book.all_payments() == []
        assert [e.operation.value for e in book.audit_log(loan.id)] == ["create", "payment", "void"]
        with pytest.raises(LoanNotFound):
            book.get_loan(loan.id)
