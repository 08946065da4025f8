"""
sweep.py - Daily Due-Date Sweep

Batch process run once per business day over the loan book.

For every active loan whose due date is today or earlier:
1. If the payments received cover at least the loan's interest, extend the
   due date through the book's normal extend_loan operation
2. Otherwise list the loan as overdue

The sweep never changes a loan's status. "Overdue" is a derived condition
(balance.is_overdue), not a stored status, so forfeiture eligibility is
always judged by the ledger rule alone.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Tuple

from .book import LoanBook
from .config import ConfigurationError
from .core import ErrorKind, LoanNotFound, LoanStatus, Operator, SYSTEM_OPERATOR, as_date
from .logging import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SweepReport:
    """
    What one sweep run did.

    Attributes:
        run_date: Business date the sweep ran for
        extended: Ids of loans whose due date was pushed forward
        overdue: Ids of loans past due without the interest paid
        failed: (loan id, error kind) for extensions the book rejected
    """
    run_date: date
    extended: Tuple[str, ...] = ()
    overdue: Tuple[str, ...] = ()
    failed: Tuple[Tuple[str, ErrorKind], ...] = ()

    @property
    def examined(self) -> int:
        return len(self.extended) + len(self.overdue) + len(self.failed)


class DueDateSweep:
    """
    Daily due-date batch over a LoanBook.

    Features:
    - Uses only the book's public operations, so every extension is
      version-checked, audited and logged like a counter operation
    - A loan that changed between listing and extending is reported as
      failed and picked up again on the next run
    """

    def __init__(
        self,
        book: LoanBook,
        operator: Operator = SYSTEM_OPERATOR,
        extension_days: Optional[int] = None,
    ):
        """
        Initialize the sweep.

        Args:
            book: The loan book to operate on
            operator: Identity recorded on extensions (default: SYSTEM_OPERATOR)
            extension_days: Days per extension (default: book.config.sweep_extension_days)

        Raises:
            ConfigurationError: if extension_days is not a positive integer.
        """
        if extension_days is None:
            extension_days = book.config.sweep_extension_days
        elif isinstance(extension_days, bool) or not isinstance(extension_days, int) or extension_days <= 0:
            raise ConfigurationError(f"extension_days must be a positive integer, got {extension_days!r}")
        self.book = book
        self.operator = operator
        self.extension_days = extension_days

    def due_loans(self, today: date) -> List[str]:
        """Ids of active loans due on or before today."""
        today = as_date(today)
        return [
            loan.id for loan in self.book.list_loans(LoanStatus.ACTIVE)
            if loan.due_date <= today
        ]

    def run(self, today: date) -> SweepReport:
        """
        Sweep all due loans for one business date.

        Args:
            today: Business date of the run

        Returns:
            SweepReport listing extended, overdue and failed loan ids
        """
        today = as_date(today)
        extended: List[str] = []
        overdue: List[str] = []
        failed: List[Tuple[str, ErrorKind]] = []

        for loan_id in self.due_loans(today):
            try:
                loan = self.book.get_loan(loan_id)
                paid = self.book.total_paid(loan_id)
            except LoanNotFound as exc:
                # Voided after the due list was taken.
                failed.append((loan_id, exc.kind))
                continue
            if paid >= loan.interest_amount:
                result = self.book.extend_loan(
                    loan_id, self.operator, self.extension_days, expected_version=loan.version,
                )
                if result.ok:
                    extended.append(loan_id)
                else:
                    failed.append((loan_id, result.error_kind))
            else:
                overdue.append(loan_id)

        report = SweepReport(
            run_date=today,
            extended=tuple(extended),
            overdue=tuple(overdue),
            failed=tuple(failed),
        )
        logger.info(
            "Due-date sweep for %s: %d extended, %d overdue, %d failed",
            today, len(extended), len(overdue), len(failed),
            extra={'run_date': today.isoformat(), 'operator': self.operator.id},
        )
        return report

    def run_many(self, dates: Iterable[date]) -> List[SweepReport]:
        """Run the sweep for each date in order, e.g. to catch up after downtime."""
        return [self.run(day) for day in dates]
