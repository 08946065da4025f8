"""
pawnledger - Pawn-Loan Lifecycle & Balance Ledger

Business rules for pawn loans: how principal, interest, fees and the remaining
balance evolve through create, payment, add-money, discount, extension,
redemption, forfeiture, reactivation, edit and void.

Usage:
    from datetime import datetime
    from decimal import Decimal
    from pawnledger import LoanBook, FixedClock, Operator, PaymentMethod

    book = LoanBook(clock=FixedClock(datetime(2024, 1, 1, 9, 0)))
    clerk = Operator("u-1", "clerk")

    loan = book.create_loan(
        "c-1", clerk, Decimal("1000"), Decimal("10"), 30, "Gold ring"
    ).unwrap()
    # interest 100.00, total 1100.00, due 2024-01-31

    result = book.make_payment(loan.id, Decimal("1100"), PaymentMethod.CASH, clerk)
    result.fully_paid          # True; the loan stays active until redeemed
    book.redeem_loan(loan.id, clerk, redemption_fee=Decimal("15"))
"""

__version__ = "1.0.0"

# Core types
from .core import (
    Loan,
    PaymentRecord,
    AuditEntry,
    Operator,
    OperationResult,
    LoanView,
    CustomerDirectory,
    Clock,
    SystemClock,
    FixedClock,
    LoanStatus,
    PaymentMethod,
    PaymentKind,
    Operation,
    ErrorKind,
    LoanError,
    InvalidAmount,
    DiscountExceedsInterest,
    InvalidTransition,
    LoanNotFound,
    ConcurrentModification,
    InvalidField,
    SchemaViolation,
    CustomerNotFound,
    SYSTEM_OPERATOR,
    DEFAULT_EXTENSION_DAYS,
    to_money,
)

# Balance & interest ledger
from .balance import (
    PaymentOutcome,
    compute_interest,
    compute_total_payable,
    compute_due_date,
    apply_payment,
    apply_discount,
    apply_add_money,
    apply_redemption_fee,
    extend,
    recompute,
    amount_paid,
    is_eligible_for_forfeiture,
    is_fully_paid,
    is_overdue,
    check_invariants,
)

# State machine
from .state_machine import (
    TRANSITIONS,
    EDITABLE_FIELDS,
    can_transition,
    allowed_operations,
    create_loan,
    make_payment,
    add_money,
    discount_interest,
    extend_loan,
    redeem_loan,
    forfeit_loan,
    reactivate_loan,
    edit_loan,
    void_loan,
    transact,
)

# Record schema
from .schema import (
    LOAN_FIELDS,
    PAYMENT_FIELDS,
    load_loan,
    to_record,
    load_payment,
    payment_to_record,
)

# Orchestration
from .book import LoanBook
from .sweep import DueDateSweep, SweepReport

# Reports
from .reports import (
    PaymentSummary,
    LoanBucket,
    BalancingReport,
    RevenueBucket,
    RevenueReport,
    summarize_payments,
    balancing_report,
    split_payment,
    revenue_report,
    loans_issued_total,
    shift_expected_balance,
    is_balanced,
)

# Configuration and logging
from .config import LedgerConfig, ConfigurationError
from .logging import setup_logging, configure_logging, get_logger, JsonFormatter


__all__ = [
    # Core types
    'Loan', 'PaymentRecord', 'AuditEntry', 'Operator', 'OperationResult',
    'LoanView', 'CustomerDirectory', 'Clock', 'SystemClock', 'FixedClock',
    'LoanStatus', 'PaymentMethod', 'PaymentKind', 'Operation', 'ErrorKind',
    'LoanError', 'InvalidAmount', 'DiscountExceedsInterest', 'InvalidTransition',
    'LoanNotFound', 'ConcurrentModification', 'InvalidField', 'SchemaViolation',
    'CustomerNotFound', 'SYSTEM_OPERATOR', 'DEFAULT_EXTENSION_DAYS', 'to_money',
    # Balance & interest ledger
    'PaymentOutcome', 'compute_interest', 'compute_total_payable', 'compute_due_date',
    'apply_payment', 'apply_discount', 'apply_add_money', 'apply_redemption_fee',
    'extend', 'recompute', 'amount_paid', 'is_eligible_for_forfeiture',
    'is_fully_paid', 'is_overdue', 'check_invariants',
    # State machine
    'TRANSITIONS', 'EDITABLE_FIELDS', 'can_transition', 'allowed_operations',
    'create_loan', 'make_payment', 'add_money', 'discount_interest', 'extend_loan',
    'redeem_loan', 'forfeit_loan', 'reactivate_loan', 'edit_loan', 'void_loan', 'transact',
    # Record schema
    'LOAN_FIELDS', 'PAYMENT_FIELDS', 'load_loan', 'to_record', 'load_payment', 'payment_to_record',
    # Orchestration
    'LoanBook', 'DueDateSweep', 'SweepReport',
    # Reports
    'PaymentSummary', 'LoanBucket', 'BalancingReport', 'summarize_payments',
    'balancing_report', 'loans_issued_total', 'shift_expected_balance', 'is_balanced',
    'RevenueBucket', 'RevenueReport', 'split_payment', 'revenue_report',
    # Configuration and logging
    'LedgerConfig', 'ConfigurationError', 'setup_logging', 'configure_logging',
    'get_logger', 'JsonFormatter',
]
