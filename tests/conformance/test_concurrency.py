"""
Concurrency Conformance Tests

INVARIANT: Operations on one loan are serialized.

    ∀ concurrent operations O1..On on loan L:
        every applied Oi sees the snapshot written by the one before it
        at most one Oi carrying expected_version v is applied

Operations on different loans do not block each other.
"""

import threading
from decimal import Decimal

from pawnledger import ErrorKind, PaymentMethod
from tests.fakes import CLERK, issue_standard_loan, new_book


def run_threads(count, target):
    barrier = threading.Barrier(count)
    results = [None] * count

    def worker(i):
        barrier.wait()
        results[i] = target(i)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


class TestConcurrency:
    """Threaded access to one book."""

    def test_unversioned_payments_all_apply(self):
        book = new_book()
        loan = issue_standard_loan(book)

        results = run_threads(
            8, lambda i: book.make_payment(loan.id, Decimal("10"), PaymentMethod.CASH, CLERK),
        )

        assert all(r.ok for r in results)
        stored = book.get_loan(loan.id)
        assert stored.remaining_balance == Decimal("1020.00")
        assert stored.version == 9
        assert sorted(r.loan.version for r in results) == list(range(2, 10))
        assert len(book.payment_history(loan.id)) == 8

    def test_same_expected_version_applies_once(self):
        book = new_book()
        loan = issue_standard_loan(book)

        results = run_threads(
            8, lambda i: book.make_payment(
                loan.id, Decimal("10"), PaymentMethod.CASH, CLERK, expected_version=loan.version,
            ),
        )

        applied = [r for r in results if r.ok]
        rejected = [r for r in results if not r.ok]
        assert len(applied) == 1
        assert all(r.error_kind is ErrorKind.CONCURRENT_MODIFICATION for r in rejected)
        assert book.get_loan(loan.id).remaining_balance == Decimal("1090.00")

    def test_concurrent_creates_get_unique_ids(self):
        book = new_book()

        results = run_threads(8, lambda i: book.create_loan(
            "c-1", CLERK, Decimal("100"), Decimal("10"), 30, f"item {i}",
        ))

        assert len({r.loan.id for r in results}) == 8
        assert len({r.loan.transaction_number for r in results}) == 8
        assert book.verify_invariants() == {}

    def test_loans_are_independent(self):
        book = new_book()
        loans = [issue_standard_loan(book) for _ in range(4)]

        run_threads(4, lambda i: [
            book.make_payment(loans[i].id, Decimal("1"), PaymentMethod.CASH, CLERK) for _ in range(25)
        ])

        assert all(book.get_loan(l.id).remaining_balance == Decimal("1075.00") for l in loans)
        assert len(book.all_payments()) == 100
