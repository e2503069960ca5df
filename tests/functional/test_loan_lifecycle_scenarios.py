"""
test_loan_lifecycle_scenarios.py - End-to-end loan scenarios

Scenarios:
- Repayment: request 0.0001 ETH collateral at 5% for 10 years, fund with
  0.0002, repay a year later with interest, collateral refunded
- Default: request and fund, let 10 years pass, lender claims collateral
- Many loans across several borrowers and lenders
- History: clone_at() before each transition and replay() of the full log
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from loan_ledger import (
    Ledger, LoanBook, LoanStatus, InterestModel, LoanTerms,
    LoanNotFound, AlreadyFunded, LoanStillActive, LoanExpired,
    SYSTEM_WALLET,
)

from tests.loan_helpers import T0, make_book


ONE_YEAR_AND_200S = timedelta(seconds=31_557_800)
TEN_YEARS_AND_2000S = timedelta(seconds=315_578_000)


def _balance(book, wallet):
    return book.ledger.get_balance(wallet, "ETH")


# ============================================================================
# REPAYMENT
# ============================================================================

class TestRepaymentScenario:

    def test_request_fund_repay(self, book):
        loan_id = book.request_loan("alice", 5, 10, Decimal("0.0001"))
        loan = book.require_loan(loan_id)
        assert loan.loan_amount == Decimal("0.0002")
        assert not loan.is_funded and not loan.is_repaid

        with pytest.raises(LoanNotFound):
            book.fund_loan("bob", 111, Decimal("0.0002"))

        book.fund_loan("bob", loan_id, Decimal("0.0002"))
        assert book.require_loan(loan_id).is_funded

        with pytest.raises(AlreadyFunded):
            book.fund_loan("bob", loan_id, Decimal("0.0002"))

        book.advance_time(T0 + ONE_YEAR_AND_200S)
        amount_due = book.calculate_amount_due(loan_id)
        assert amount_due == Decimal("0.00021")

        book.repay_loan("alice", loan_id, amount_due)
        loan = book.require_loan(loan_id)
        assert loan.is_repaid
        assert loan.collateral == Decimal("0")

        assert _balance(book, "alice") == Decimal("10") + Decimal("0.0002") - amount_due
        assert _balance(book, "bob") == Decimal("10") - Decimal("0.0002") + amount_due
        assert book.escrow_balance() == Decimal("0")

    def test_legacy_model_scenario(self, legacy_book):
        book = legacy_book
        loan_id = book.request_loan("alice", 5, 10, Decimal("0.0001"))
        book.fund_loan("bob", loan_id, Decimal("0.0002"))
        book.advance_time(T0 + ONE_YEAR_AND_200S)
        # rate 5 < 100: the historical formula charges no interest
        assert book.calculate_amount_due(loan_id) == Decimal("0.0002")
        book.repay_loan("alice", loan_id, Decimal("0.0002"))
        assert book.loan_status(loan_id) is LoanStatus.REPAID


# ============================================================================
# DEFAULT
# ============================================================================

class TestDefaultScenario:

    def test_claim_after_ten_years(self, book):
        loan_id = book.request_loan("alice", 5, 10, Decimal("0.0001"))
        book.fund_loan("bob", loan_id, Decimal("0.0002"))

        book.advance_time(T0 + ONE_YEAR_AND_200S)
        with pytest.raises(LoanStillActive):
            book.claim_collateral("bob", loan_id)

        book.advance_time(T0 + TEN_YEARS_AND_2000S)
        book.claim_collateral("bob", loan_id)

        loan = book.require_loan(loan_id)
        assert loan.status is LoanStatus.DEFAULTED
        assert loan.collateral == Decimal("0")
        assert not loan.is_repaid
        assert _balance(book, "bob") == Decimal("9.9999")
        assert _balance(book, "alice") == Decimal("10.0001")

        with pytest.raises(LoanExpired):
            book.repay_loan("alice", loan_id, book.calculate_amount_due(loan_id))


# ============================================================================
# MANY LOANS
# ============================================================================

class TestLoanPortfolio:

    def test_mixed_outcomes(self):
        book = make_book()
        repaid = book.request_loan("alice", 10, 1, Decimal("1"))
        defaulted = book.request_loan("carol", 3, 2, Decimal("0.5"))
        pending = book.request_loan("alice", 7, 5, Decimal("0.25"))
        book.fund_loan("bob", repaid, Decimal("2"))
        book.fund_loan("bob", defaulted, Decimal("1"))

        book.advance_time(T0 + timedelta(days=200))
        book.repay_loan("alice", repaid, Decimal("2.2"))

        book.advance_time(T0 + timedelta(days=800))
        book.claim_collateral("bob", defaulted)

        statuses = {loan.loan_id: loan.status for loan in book.list_loans()}
        assert statuses == {
            repaid: LoanStatus.REPAID,
            defaulted: LoanStatus.DEFAULTED,
            pending: LoanStatus.REQUESTED,
        }
        custody = book.verify_custody()
        assert custody['valid']
        assert custody['escrow_balance'] == Decimal("0.25")
        assert custody['open_loans'] == [pending]
        assert book.ledger.verify_double_entry({"ETH": Decimal("0")})['valid']


# ============================================================================
# HISTORY
# ============================================================================

class TestHistory:

    def _scenario(self):
        book = make_book()
        loan_id = book.request_loan("alice", 5, 10, Decimal("0.0001"))
        book.advance_time(T0 + timedelta(days=1))
        book.fund_loan("bob", loan_id, Decimal("0.0002"))
        book.advance_time(T0 + ONE_YEAR_AND_200S)
        book.repay_loan("alice", loan_id, Decimal("0.00021"))
        return book, loan_id

    def test_clone_at_each_stage(self):
        book, loan_id = self._scenario()

        before_funding = LoanBook(book.ledger.clone_at(T0))
        assert before_funding.loan_status(loan_id) is LoanStatus.REQUESTED
        assert before_funding.escrow_balance() == Decimal("0.0001")

        before_repayment = LoanBook(book.ledger.clone_at(T0 + timedelta(days=2)))
        loan = before_repayment.require_loan(loan_id)
        assert loan.status is LoanStatus.FUNDED
        assert loan.lender == "bob"
        assert before_repayment.verify_custody()['valid']

    def test_clone_at_before_loan_existed(self):
        book = make_book()
        book.advance_time(T0 + timedelta(hours=1))
        loan_id = book.request_loan("alice", 5, 10, Decimal("0.0001"))
        past = LoanBook(book.ledger.clone_at(T0))
        assert past.get_loan(loan_id) is None
        assert past.next_loan_id == 1
        assert past.escrow_balance() == Decimal("0")

    def test_reconstructed_book_can_continue(self):
        book, loan_id = self._scenario()
        past = LoanBook(book.ledger.clone_at(T0 + timedelta(days=2)))
        past.advance_time(past.require_loan(loan_id).due_date + timedelta(seconds=1))
        past.claim_collateral("bob", loan_id)
        assert past.loan_status(loan_id) is LoanStatus.DEFAULTED
        assert book.loan_status(loan_id) is LoanStatus.REPAID

    def test_replay_reproduces_book(self):
        book, loan_id = self._scenario()
        replayed = LoanBook(book.ledger.replay())
        assert replayed.require_loan(loan_id) == book.require_loan(loan_id)
        for wallet in book.ledger.list_wallets():
            assert _balance(replayed, wallet) == _balance(book, wallet)
        assert replayed.current_time == book.current_time

    def test_production_ledger_with_issuance(self):
        """No test-mode shortcuts: every balance comes from logged issuance."""
        ledger = Ledger("prod", T0, verbose=False)
        book = LoanBook(ledger, LoanTerms(interest_model=InterestModel.SIMPLE))
        for wallet in ("alice", "bob"):
            ledger.register_wallet(wallet)
            ledger.issue(wallet, "ETH", Decimal("1"))

        loan_id = book.request_loan("alice", 5, 10, Decimal("0.0001"))
        book.fund_loan("bob", loan_id, Decimal("0.0002"))
        book.repay_loan("alice", loan_id, Decimal("0.00021"))

        assert ledger.get_balance(SYSTEM_WALLET, "ETH") == Decimal("-2")
        assert ledger.verify_double_entry({"ETH": Decimal("0")})['valid']
        replayed = ledger.replay()
        assert replayed.get_balance("bob", "ETH") == Decimal("1.00001")
