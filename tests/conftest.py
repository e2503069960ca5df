"""
conftest.py - Shared pytest fixtures for loan ledger tests

Provides common fixtures used across unit, functional and conformance tests:
- Basic ledgers (empty, ETH-funded)
- Loan books (default and legacy interest model)
- Loans at each lifecycle stage (requested, funded)
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from typing import Tuple

from loan_ledger import Ledger, LoanBook, LoanTerms, InterestModel, native

from tests.loan_helpers import (
    T0, COLLATERAL, LOAN_AMOUNT, RATE, DURATION, make_book,
)


# =============================================================================
# LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", verbose=False, test_mode=True)


@pytest.fixture
def eth_ledger():
    """Ledger with ETH and alice/bob holding 10 ETH each (issued, not set)."""
    ledger = Ledger("test", T0, verbose=False, test_mode=True)
    ledger.register_unit(native())
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    ledger.issue("alice", "ETH", Decimal("10"))
    ledger.issue("bob", "ETH", Decimal("10"))
    return ledger


# =============================================================================
# LOAN BOOK FIXTURES
# =============================================================================

@pytest.fixture
def book():
    """LoanBook (SIMPLE interest) with alice, bob and carol holding 10 ETH."""
    return make_book()


@pytest.fixture
def legacy_book():
    """LoanBook using the LEGACY interest model."""
    return make_book(LoanTerms(interest_model=InterestModel.LEGACY))


@pytest.fixture
def requested_loan(book) -> Tuple[LoanBook, int]:
    """alice requested 0.0002 ETH against 0.0001 collateral at 5% for 10 years."""
    loan_id = book.request_loan("alice", RATE, DURATION, COLLATERAL)
    return book, loan_id


@pytest.fixture
def funded_loan(requested_loan) -> Tuple[LoanBook, int]:
    """The requested loan, funded by bob."""
    book, loan_id = requested_loan
    book.fund_loan("bob", loan_id, LOAN_AMOUNT)
    return book, loan_id


@pytest.fixture
def one_year_later():
    """One loan-year and 200 seconds after T0."""
    return T0 + timedelta(seconds=31_557_800)
