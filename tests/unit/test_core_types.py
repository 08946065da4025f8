"""
test_core_types.py - Unit tests for core data structures

Tests:
- to_money: parsing, half-up rounding, rejection of malformed input
- Loan: coercion, immutability, snapshots
- PaymentRecord: coercion, applied amount
- AuditEntry: changed_fields
- OperationResult: ok/unwrap/error accessors
- Exceptions: kinds and retryability
- Operator, clocks and protocols
"""

import pytest
from dataclasses import FrozenInstanceError, replace
from datetime import date, datetime, timedelta
from decimal import Decimal

from pawnledger import (
    Loan, PaymentRecord, AuditEntry, Operator, OperationResult,
    LoanStatus, PaymentMethod, PaymentKind, Operation, ErrorKind,
    LoanError, InvalidAmount, DiscountExceedsInterest, InvalidTransition,
    LoanNotFound, ConcurrentModification, InvalidField, SchemaViolation, CustomerNotFound,
    FixedClock, SystemClock, LoanView, CustomerDirectory, LoanBook,
    to_money,
)
from tests.fakes import FakeCustomerDirectory, make_loan


class TestToMoney:
    """Tests for currency parsing and rounding."""

    @pytest.mark.parametrize("raw, expected", [
        (1000, Decimal("1000.00")),
        ("1000", Decimal("1000.00")),
        ("12.345", Decimal("12.35")),
        ("0.005", Decimal("0.01")),
        ("-0.005", Decimal("-0.01")),
        (0.1, Decimal("0.10")),
        (Decimal("99.999"), Decimal("100.00")),
        (" 7.5 ", Decimal("7.50")),
    ])
    def test_parses_and_rounds_half_up(self, raw, expected):
        assert to_money(raw) == expected

    def test_result_has_two_places(self):
        assert to_money(5).as_tuple().exponent == -2

    @pytest.mark.parametrize("raw", [None, True, False, "abc", "", "NaN", Decimal("Infinity"), float("inf")])
    def test_rejects_malformed(self, raw):
        with pytest.raises(InvalidAmount):
            to_money(raw)

    def test_error_names_field(self):
        with pytest.raises(InvalidAmount, match="loan_amount"):
            to_money("ten", "loan_amount")


class TestLoan:
    """Tests for the Loan snapshot type."""

    def test_amounts_are_coerced_to_money(self):
        loan = make_loan(loan_amount="1000", interest_rate="10")
        assert loan.loan_amount == Decimal("1000.00")
        assert loan.interest_amount == Decimal("100.00")
        assert loan.interest_rate == Decimal("10")

    def test_status_is_coerced_from_value(self, loan):
        reloaded = replace(loan, status="forfeited")
        assert reloaded.status is LoanStatus.FORFEITED

    def test_unknown_status_rejected(self, loan):
        with pytest.raises(ValueError):
            replace(loan, status="overdue")

    def test_frozen(self, loan):
        with pytest.raises(FrozenInstanceError):
            loan.remaining_balance = Decimal("0")

    def test_replace_returns_new_instance(self, loan):
        updated = replace(loan, remaining_balance=Decimal("5"))
        assert updated is not loan
        assert loan.remaining_balance == Decimal("1100.00")
        assert updated.remaining_balance == Decimal("5.00")

    def test_defaults(self, loan):
        assert loan.status is LoanStatus.ACTIVE
        assert loan.interest_discount == Decimal("0.00")
        assert loan.redemption_fee == Decimal("0.00")
        assert loan.collateral_image is None
        assert loan.customer_note is None

    def test_as_dict_contains_every_field(self, loan):
        snapshot = loan.as_dict()
        assert snapshot['id'] == loan.id
        assert snapshot['remaining_balance'] == loan.remaining_balance
        assert snapshot['status'] is LoanStatus.ACTIVE
        assert len(snapshot) == 21

    def test_is_active(self, loan):
        assert loan.is_active
        assert not replace(loan, status=LoanStatus.REDEEMED).is_active

    def test_repr_mentions_transaction_number(self, loan):
        assert "123456789" in repr(loan)


class TestPaymentRecord:
    """Tests for PaymentRecord."""

    def test_coerces_method_and_kind(self):
        record = PaymentRecord("loan-1", "50", "visa", datetime(2024, 1, 2), kind="redemption")
        assert record.amount == Decimal("50.00")
        assert record.method is PaymentMethod.VISA
        assert record.kind is PaymentKind.REDEMPTION

    def test_applied_amount_excludes_overpayment(self):
        record = PaymentRecord(
            "loan-1", Decimal("1200"), PaymentMethod.CASH, datetime(2024, 1, 2),
            overpayment=Decimal("100"),
        )
        assert record.applied_amount == Decimal("1100.00")

    def test_etransfer_value(self):
        assert PaymentMethod("etranfer") is PaymentMethod.ETRANSFER

    def test_unknown_method_rejected(self):
        with pytest.raises(ValueError):
            PaymentRecord("loan-1", "50", "bitcoin", datetime(2024, 1, 2))


class TestAuditEntry:
    """Tests for AuditEntry.changed_fields."""

    def test_changed_fields_reports_only_differences(self, loan):
        after = replace(loan, remaining_balance=Decimal("1000"), version=2)
        entry = AuditEntry(
            loan_id=loan.id, operation=Operation.PAYMENT, timestamp=datetime(2024, 1, 2),
            operator="u-100", old_state=loan.as_dict(), new_state=after.as_dict(),
        )
        assert entry.changed_fields() == {
            'remaining_balance': (Decimal("1100.00"), Decimal("1000.00")),
            'version': (1, 2),
        }

    def test_create_entry_has_all_fields_changed(self, loan):
        entry = AuditEntry(
            loan_id=loan.id, operation=Operation.CREATE, timestamp=datetime(2024, 1, 1),
            operator="u-100", old_state=None, new_state=loan.as_dict(),
        )
        changes = entry.changed_fields()
        assert changes['loan_amount'] == (None, Decimal("1000.00"))
        assert 'collateral_image' not in changes  # None on both sides


class TestOperationResult:
    """Tests for OperationResult accessors."""

    def test_success(self, loan):
        result = OperationResult(operation=Operation.EXTEND, loan=loan)
        assert result.ok
        assert result.error_kind is None
        assert not result.retryable
        assert result.unwrap() is loan
        assert result.payment is None
        assert result.entry is None

    def test_failure(self, loan):
        error = ConcurrentModification("stale")
        result = OperationResult(operation=Operation.PAYMENT, loan=loan, error=error)
        assert not result.ok
        assert result.error_kind is ErrorKind.CONCURRENT_MODIFICATION
        assert result.retryable
        with pytest.raises(ConcurrentModification):
            result.unwrap()
        assert "REJECTED" in repr(result)

    def test_unknown_operation_repr(self):
        result = OperationResult(operation=None, loan=None, error=InvalidTransition("nope"))
        assert "unknown" in repr(result)


class TestExceptions:
    """Tests for the error hierarchy."""

    @pytest.mark.parametrize("exc_type, kind", [
        (InvalidAmount, ErrorKind.INVALID_AMOUNT),
        (DiscountExceedsInterest, ErrorKind.DISCOUNT_EXCEEDS_INTEREST),
        (InvalidTransition, ErrorKind.INVALID_TRANSITION),
        (LoanNotFound, ErrorKind.LOAN_NOT_FOUND),
        (ConcurrentModification, ErrorKind.CONCURRENT_MODIFICATION),
        (InvalidField, ErrorKind.INVALID_FIELD),
        (SchemaViolation, ErrorKind.SCHEMA_VIOLATION),
        (CustomerNotFound, ErrorKind.CUSTOMER_NOT_FOUND),
    ])
    def test_kinds(self, exc_type, kind):
        assert issubclass(exc_type, LoanError)
        assert exc_type.kind is kind

    def test_only_concurrent_modification_is_retryable(self):
        retryable = [
            t for t in (InvalidAmount, DiscountExceedsInterest, InvalidTransition, LoanNotFound,
                        ConcurrentModification, InvalidField, SchemaViolation, CustomerNotFound)
            if t.retryable
        ]
        assert retryable == [ConcurrentModification]

    def test_schema_violation_is_invalid_field(self):
        assert issubclass(SchemaViolation, InvalidField)


class TestOperatorAndClocks:
    """Tests for Operator, clocks and protocol conformance."""

    def test_operator_requires_id(self):
        with pytest.raises(ValueError):
            Operator("  ")

    def test_fixed_clock_advances(self):
        clock = FixedClock(datetime(2024, 1, 1, 9, 0))
        assert clock() == datetime(2024, 1, 1, 9, 0)
        clock.advance(days=2)
        clock.advance(timedelta(hours=1))
        assert clock() == datetime(2024, 1, 3, 10, 0)

    def test_fixed_clock_never_goes_backwards(self):
        clock = FixedClock(datetime(2024, 1, 2))
        with pytest.raises(ValueError):
            clock.set(datetime(2024, 1, 1))
        with pytest.raises(ValueError):
            clock.advance(timedelta(days=-1))

    def test_system_clock_returns_datetime(self):
        assert isinstance(SystemClock()(), datetime)

    def test_protocols(self):
        assert isinstance(LoanBook(), LoanView)
        assert isinstance(FakeCustomerDirectory(), CustomerDirectory)
