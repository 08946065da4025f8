"""
conftest.py - Shared pytest fixtures for pawnledger tests

Provides common fixtures used across unit, functional and conformance tests:
- A fixed clock and counter operators
- A customer directory with two known profiles
- An empty loan book and a standard active loan in it
- A standalone loan snapshot for pure-function tests
"""

import pytest

from pawnledger import FixedClock, LedgerConfig, LoanBook, Operator

from tests.fakes import CLERK, OPENED, FakeCustomerDirectory, issue_standard_loan, make_loan


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return FixedClock(OPENED)


@pytest.fixture
def clerk():
    return CLERK


@pytest.fixture
def manager():
    return Operator("u-200", "manager")


@pytest.fixture
def customers():
    return FakeCustomerDirectory({
        'c-1': {'first_name': 'Ada', 'last_name': 'Byron'},
        'c-2': {'first_name': 'Alan', 'last_name': 'Turing'},
    })


@pytest.fixture
def book(customers, clock):
    return LoanBook(customers=customers, clock=clock, config=LedgerConfig(), seed=7)


@pytest.fixture
def active_loan(book):
    """1000.00 at 10% for 30 days issued 2024-01-01 to c-1, stored in `book`."""
    return issue_standard_loan(book)


@pytest.fixture
def loan():
    """A standalone active loan snapshot: 1000.00 at 10% for 30 days issued 2024-01-01."""
    return make_loan()
