"""
book.py - In-memory Loan Book

The LoanBook is the stateful orchestrator around the pure state machine. It is
the only module that stores loans, and every write goes through one path:

    load snapshot -> optional version check -> state machine -> commit on success

Key responsibilities:
    - Implements the LoanView protocol for read-only access
    - Assigns loan ids and unique transaction numbers
    - Serializes operations per loan (one lock per loan) and rejects stale
      writes when the caller passes expected_version
    - Keeps the append-only payment history and audit log
    - Void deletes the loan and its payment history; the audit entry stays

A failed operation stores nothing: loan, payment history and audit log are
exactly as they were.
"""

from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
import random
import threading

from . import state_machine
from .balance import check_invariants
from .config import LedgerConfig
from .core import (
    Loan, LoanStatus, Operation, Operator, OperationResult, AuditEntry,
    PaymentMethod, PaymentRecord, CustomerDirectory, Clock, SystemClock,
    LoanError, LoanNotFound, ConcurrentModification, CustomerNotFound,
    InvalidField, InvalidTransition,
    ZERO,
)
from .logging import get_logger


logger = get_logger(__name__)

# A step receives the current snapshot and the operation time.
Step = Callable[[Loan, datetime], OperationResult]


class LoanBook:
    """
    Reference store for pawn loans with transactional semantics.

    Thread Safety:
        Operations on the same loan are serialized by a per-loan lock.
        Operations on different loans run independently.

    Example:
        book = LoanBook(clock=FixedClock(datetime(2024, 1, 1, 9, 0)))
        clerk = Operator("u-1", "clerk")
        loan = book.create_loan("c-1", clerk, Decimal("1000"), Decimal("10"), 30, "Gold ring").unwrap()
        result = book.make_payment(loan.id, Decimal("100"), PaymentMethod.CASH, clerk)
    """

    def __init__(
        self,
        customers: Optional[CustomerDirectory] = None,
        clock: Optional[Clock] = None,
        config: Optional[LedgerConfig] = None,
        name: str = "main",
        seed: Optional[int] = None,
    ):
        """
        Create a loan book.

        Args:
            customers: Directory checked at loan creation (None skips the check)
            clock: Source of operation timestamps (default: SystemClock)
            config: Ledger settings (default: LedgerConfig())
            name: Book identifier, used in loan ids
            seed: Seed for transaction-number generation (None: unseeded)
        """
        self.name = name
        self.customers = customers
        self.clock: Clock = clock or SystemClock()
        self.config = config or LedgerConfig()
        self._rng = random.Random(seed)
        self._loans: Dict[str, Loan] = {}
        self._payments: Dict[str, List[PaymentRecord]] = {}
        self._audit_log: List[AuditEntry] = []
        self._by_transaction_number: Dict[str, str] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.RLock()
        self._next_sequence = 1

    # ========================================================================
    # LoanView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self.clock()

    def get_loan(self, loan_id: str) -> Loan:
        """
        Get the stored loan.

        Raises:
            LoanNotFound: If no loan has this id (never issued or voided)
        """
        with self._registry_lock:
            loan = self._loans.get(loan_id)
        if loan is None:
            raise LoanNotFound(f"Loan {loan_id} not found")
        return loan

    def list_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        """All stored loans in issue order, optionally filtered by status."""
        with self._registry_lock:
            loans = list(self._loans.values())
        if status is not None:
            status = LoanStatus(status)
            loans = [loan for loan in loans if loan.status is status]
        return loans

    def payment_history(self, loan_id: str) -> List[PaymentRecord]:
        """
        Payment records of a loan, newest first.

        Raises:
            LoanNotFound: If no loan has this id
        """
        with self._registry_lock:
            if loan_id not in self._loans:
                raise LoanNotFound(f"Loan {loan_id} not found")
            return list(reversed(self._payments.get(loan_id, [])))

    # ========================================================================
    # QUERIES
    # ========================================================================

    def find_by_transaction_number(self, transaction_number: str) -> Optional[Loan]:
        with self._registry_lock:
            loan_id = self._by_transaction_number.get(transaction_number)
            return self._loans.get(loan_id) if loan_id is not None else None

    def loans_for_customer(self, customer_id: str) -> List[Loan]:
        return [loan for loan in self.list_loans() if loan.customer_id == customer_id]

    def total_paid(self, loan_id: str) -> Decimal:
        """Sum of money applied to the loan's balance (overpayments excluded)."""
        return sum((p.applied_amount for p in self.payment_history(loan_id)), ZERO)

    def all_payments(self) -> List[PaymentRecord]:
        """Every stored payment record across loans, oldest first."""
        with self._registry_lock:
            records = [p for history in self._payments.values() for p in history]
        return sorted(records, key=lambda p: p.timestamp)

    def audit_log(self, loan_id: Optional[str] = None) -> List[AuditEntry]:
        """Audit entries in the order they were written, optionally for one loan."""
        with self._registry_lock:
            entries = list(self._audit_log)
        if loan_id is not None:
            entries = [e for e in entries if e.loan_id == loan_id]
        return entries

    def verify_invariants(self) -> Dict[str, List[str]]:
        """
        Check every stored loan.

        Returns:
            Dict mapping loan id to its violations; empty when every loan is consistent.
        """
        violations = {}
        for loan in self.list_loans():
            problems = check_invariants(loan)
            if problems:
                violations[loan.id] = problems
        return violations

    # ========================================================================
    # CREATE
    # ========================================================================

    def create_loan(
        self,
        customer_id: str,
        operator: Operator,
        loan_amount: Any,
        interest_rate: Any,
        loan_term: int,
        collateral_description: str,
        *,
        transaction_number: Optional[str] = None,
        loan_issued_date: Optional[date] = None,
        recurring_fee: Any = ZERO,
        collateral_image: Optional[str] = None,
        customer_note: Optional[str] = None,
    ) -> OperationResult:
        """
        Issue a new loan for an existing customer.

        A transaction number is generated when none is given. A supplied
        number already in use is rejected with InvalidField; an unknown
        customer with CustomerNotFound.
        """
        with self._registry_lock:
            try:
                if self.customers is not None and self.customers.get_customer(customer_id) is None:
                    raise CustomerNotFound(f"Customer {customer_id} not found")
                if transaction_number is None:
                    transaction_number = self._generate_transaction_number()
                elif transaction_number in self._by_transaction_number:
                    raise InvalidField(f"Transaction number {transaction_number} is already in use")
            except LoanError as exc:
                result = OperationResult(operation=Operation.CREATE, loan=None, error=exc)
                self._log_result(result, None, operator)
                return result

            result = state_machine.create_loan(
                loan_id=f"{self.name}-{self._next_sequence:06d}",
                transaction_number=transaction_number,
                customer_id=customer_id,
                loan_amount=loan_amount,
                interest_rate=interest_rate,
                loan_term=loan_term,
                collateral_description=collateral_description,
                operator=operator,
                timestamp=self.clock(),
                loan_issued_date=loan_issued_date,
                recurring_fee=recurring_fee,
                collateral_image=collateral_image,
                customer_note=customer_note,
            )
            if result.ok:
                self._next_sequence += 1
                self._locks[result.loan.id] = threading.Lock()
                self._commit(result)
            self._log_result(result, result.loan.id if result.loan else None, operator)
            return result

    def _generate_transaction_number(self) -> str:
        digits = self.config.transaction_number_digits
        while True:
            candidate = str(self._rng.randint(10 ** (digits - 1), 10 ** digits - 1))
            if candidate not in self._by_transaction_number:
                return candidate

    # ========================================================================
    # OPERATIONS ON EXISTING LOANS
    # ========================================================================

    def make_payment(
        self,
        loan_id: str,
        amount: Any,
        method: Any,
        operator: Operator,
        expected_version: Optional[int] = None,
        finalize_redemption: bool = False,
        redemption_fee: Any = None,
    ) -> OperationResult:
        """
        Apply a payment.

        With finalize_redemption set, a payment that brings the balance to
        zero also redeems the loan in the same transaction, collecting the
        optional redemption fee with the same payment method. If the
        redemption is rejected, the payment is not applied either.
        """
        def step(loan: Loan, now: datetime) -> OperationResult:
            paid = state_machine.make_payment(loan, amount, method, operator=operator, timestamp=now)
            if not (paid.ok and finalize_redemption and paid.fully_paid):
                return paid
            redeemed = state_machine.redeem_loan(
                paid.loan, redemption_fee if redemption_fee is not None else ZERO, method,
                operator=operator, timestamp=now,
            )
            if not redeemed.ok:
                return OperationResult(operation=Operation.PAYMENT, loan=loan, error=redeemed.error)
            return OperationResult(
                operation=Operation.PAYMENT,
                loan=redeemed.loan,
                payments=paid.payments + redeemed.payments,
                entries=paid.entries + redeemed.entries,
                fully_paid=True,
                overpayment=paid.overpayment,
            )

        return self._run(loan_id, Operation.PAYMENT, operator, expected_version, step)

    def add_money(
        self, loan_id: str, amount: Any, operator: Operator, expected_version: Optional[int] = None,
    ) -> OperationResult:
        return self._run(
            loan_id, Operation.ADD_MONEY, operator, expected_version,
            lambda loan, now: state_machine.add_money(loan, amount, operator=operator, timestamp=now),
        )

    def discount_interest(
        self, loan_id: str, discount_amount: Any, operator: Operator, expected_version: Optional[int] = None,
    ) -> OperationResult:
        return self._run(
            loan_id, Operation.DISCOUNT, operator, expected_version,
            lambda loan, now: state_machine.discount_interest(
                loan, discount_amount, operator=operator, timestamp=now),
        )

    def extend_loan(
        self,
        loan_id: str,
        operator: Operator,
        days: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> OperationResult:
        """Push the due date forward by days (default: config.default_extension_days)."""
        if days is None:
            days = self.config.default_extension_days
        return self._run(
            loan_id, Operation.EXTEND, operator, expected_version,
            lambda loan, now: state_machine.extend_loan(loan, days, operator=operator, timestamp=now),
        )

    def redeem_loan(
        self,
        loan_id: str,
        operator: Operator,
        redemption_fee: Any = None,
        method: Any = PaymentMethod.CASH,
        expected_version: Optional[int] = None,
    ) -> OperationResult:
        """Collect the balance plus redemption_fee (None means no fee) and close the loan."""
        if redemption_fee is None:
            redemption_fee = ZERO
        return self._run(
            loan_id, Operation.REDEEM, operator, expected_version,
            lambda loan, now: state_machine.redeem_loan(
                loan, redemption_fee, method, operator=operator, timestamp=now),
        )

    def forfeit_loan(
        self,
        loan_id: str,
        operator: Operator,
        today: Optional[date] = None,
        expected_version: Optional[int] = None,
    ) -> OperationResult:
        """Forfeit the collateral. Eligibility is judged on today (default: the clock's date)."""
        return self._run(
            loan_id, Operation.FORFEIT, operator, expected_version,
            lambda loan, now: state_machine.forfeit_loan(loan, today, operator=operator, timestamp=now),
        )

    def reactivate_loan(
        self, loan_id: str, operator: Operator, expected_version: Optional[int] = None,
    ) -> OperationResult:
        return self._run(
            loan_id, Operation.REACTIVATE, operator, expected_version,
            lambda loan, now: state_machine.reactivate_loan(loan, operator=operator, timestamp=now),
        )

    def edit_loan(
        self,
        loan_id: str,
        changes: Dict[str, Any],
        operator: Operator,
        expected_version: Optional[int] = None,
    ) -> OperationResult:
        return self._run(
            loan_id, Operation.EDIT, operator, expected_version,
            lambda loan, now: state_machine.edit_loan(loan, changes, operator=operator, timestamp=now),
        )

    def void_loan(
        self,
        loan_id: str,
        operator: Operator,
        confirm: bool = False,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> OperationResult:
        """
        Permanently delete a loan and its payment history.

        Requires confirm=True. The audit entry with the pre-void snapshot is kept.
        """
        def step(loan: Loan, now: datetime) -> OperationResult:
            if not confirm:
                return OperationResult(
                    operation=Operation.VOID, loan=loan,
                    error=InvalidTransition(f"Voiding loan {loan.transaction_number} requires confirmation"),
                )
            return state_machine.void_loan(loan, reason, operator=operator, timestamp=now)

        return self._run(loan_id, Operation.VOID, operator, expected_version, step)

    # ========================================================================
    # TRANSACTION PLUMBING
    # ========================================================================

    def _run(
        self,
        loan_id: str,
        operation: Operation,
        operator: Operator,
        expected_version: Optional[int],
        step: Step,
    ) -> OperationResult:
        with self._registry_lock:
            lock = self._locks.get(loan_id)
        if lock is None:
            result = OperationResult(
                operation=operation, loan=None, error=LoanNotFound(f"Loan {loan_id} not found"),
            )
            self._log_result(result, loan_id, operator)
            return result

        with lock:
            with self._registry_lock:
                loan = self._loans.get(loan_id)
            if loan is None:
                # Voided while this call waited for the lock.
                result = OperationResult(
                    operation=operation, loan=None, error=LoanNotFound(f"Loan {loan_id} not found"),
                )
            elif expected_version is not None and expected_version != loan.version:
                result = OperationResult(
                    operation=operation, loan=loan,
                    error=ConcurrentModification(
                        f"Loan {loan_id} is at version {loan.version}, caller expected {expected_version}"
                    ),
                )
            else:
                result = step(loan, self.clock())
                if result.ok:
                    self._commit(result)
            self._log_result(result, loan_id, operator)
            return result

    def _commit(self, result: OperationResult) -> None:
        loan = result.loan
        with self._registry_lock:
            self._audit_log.extend(result.entries)
            if loan.status is LoanStatus.VOIDED:
                del self._loans[loan.id]
                self._payments.pop(loan.id, None)
                self._by_transaction_number.pop(loan.transaction_number, None)
                self._locks.pop(loan.id, None)
                return
            self._loans[loan.id] = loan
            self._by_transaction_number[loan.transaction_number] = loan.id
            self._payments.setdefault(loan.id, []).extend(result.payments)

    def _log_result(self, result: OperationResult, loan_id: Optional[str], operator: Operator) -> None:
        operation = result.operation.value if result.operation is not None else None
        operator_id = getattr(operator, 'id', None)
        if result.ok:
            logger.info(
                "%s applied to loan %s (version %s)", operation, loan_id, result.loan.version,
                extra={
                    'loan_id': loan_id, 'operation': operation,
                    'operator': operator_id, 'version': result.loan.version,
                },
            )
        else:
            logger.warning(
                "%s rejected for loan %s: %s", operation, loan_id, result.error,
                extra={
                    'loan_id': loan_id, 'operation': operation,
                    'operator': operator_id, 'error_kind': result.error_kind.value,
                },
            )
