#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: The Collateralized Loan Book

Walks through the two lifecycles of a loan on the ledger. Press Enter to
advance.

WHAT YOU'LL LEARN:
  1-3:  Setup        - Ledger, native currency, wallets, the loan book
  4-6:  Repayment    - Request, fund, repay with interest
  7-8:  Default      - Request, fund, claim collateral after the due date
  9:    Rejections   - Every failed call leaves the ledger untouched
  10:   Time Travel  - clone_at() and replay() reconstruct loan history

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from loan_ledger import (
    Ledger, LoanBook, LoanTerms, InterestModel,
    LoanError, SYSTEM_WALLET, SECONDS_PER_YEAR,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    borrower_initial_eth: Decimal = Decimal("1")
    lender_initial_eth: Decimal = Decimal("1")

    collateral: Decimal = Decimal("0.0001")
    interest_rate: int = 5
    duration_years: int = 10

    interest_model: InterestModel = InterestModel.SIMPLE


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def print_balances(book: LoanBook, wallets):
    for wallet in wallets:
        print(f"    {wallet:<12} {book.ledger.get_balance(wallet, book.terms.currency)} ETH")
    print(f"    {book.escrow_wallet:<12} {book.escrow_balance()} ETH (escrow)")


# ============================================================================
# PHASE 1: SETUP
# ============================================================================

def step_01_ledger():
    step_header(1, "The Ledger",
        "Create the double-entry ledger that will custody every wei.")
    ledger = Ledger("loans", CONFIG.start_time, verbose=True)
    print(f"\n    Ledger '{ledger.name}' at {ledger.current_time}")
    return ledger


def step_02_loan_book(ledger: Ledger):
    step_header(2, "The Loan Book",
        "Attach a LoanBook: it registers ETH and its escrow wallet.")
    book = LoanBook(ledger, LoanTerms(interest_model=CONFIG.interest_model))
    print(f"\n    Units:   {ledger.list_units()}")
    print(f"    Wallets: {sorted(ledger.list_wallets())}")
    return book


def step_03_wallets(book: LoanBook):
    step_header(3, "Borrower and Lender",
        "Register wallets and issue ETH from the system wallet.")
    ledger = book.ledger
    for wallet, amount in (("alice", CONFIG.borrower_initial_eth),
                           ("bob", CONFIG.lender_initial_eth),
                           ("carol", CONFIG.borrower_initial_eth),
                           ("dave", CONFIG.lender_initial_eth)):
        ledger.register_wallet(wallet)
        ledger.issue(wallet, "ETH", amount)
    print(f"\n    {SYSTEM_WALLET} balance: {ledger.get_balance(SYSTEM_WALLET, 'ETH')} ETH")
    print_balances(book, ["alice", "bob", "carol", "dave"])


# ============================================================================
# PHASE 2: REPAYMENT
# ============================================================================

def step_04_request(book: LoanBook) -> int:
    step_header(4, "Request a Loan",
        "alice posts collateral; the loan offered is twice the collateral.")
    loan_id = book.request_loan("alice", CONFIG.interest_rate,
                                CONFIG.duration_years, CONFIG.collateral)
    loan = book.require_loan(loan_id)
    print(f"\n    Loan #{loan_id}: collateral={loan.collateral} loan_amount={loan.loan_amount}")
    print(f"    Due: {loan.due_date}  Status: {loan.status.value}")
    print_balances(book, ["alice", "bob"])
    return loan_id


def step_05_fund(book: LoanBook, loan_id: int):
    step_header(5, "Fund the Loan",
        "bob pays exactly the loan amount, which goes straight to alice.")
    loan = book.require_loan(loan_id)
    book.fund_loan("bob", loan_id, loan.loan_amount)
    print(f"\n    Status: {book.loan_status(loan_id).value}  Lender: {book.require_loan(loan_id).lender}")
    print_balances(book, ["alice", "bob"])


def step_06_repay(book: LoanBook, loan_id: int):
    step_header(6, "Repay with Interest",
        "A year later alice repays principal plus interest and gets her collateral back.")
    book.advance_time(book.current_time + timedelta(seconds=SECONDS_PER_YEAR + 200))
    due = book.calculate_amount_due(loan_id)
    print(f"\n    Amount due after one year: {due} ETH")
    book.repay_loan("alice", loan_id, due)
    loan = book.require_loan(loan_id)
    print(f"    Status: {loan.status.value}  Collateral held: {loan.collateral}")
    print_balances(book, ["alice", "bob"])


# ============================================================================
# PHASE 3: DEFAULT
# ============================================================================

def step_07_request_and_fund(book: LoanBook) -> int:
    step_header(7, "A Second Loan",
        "carol borrows from dave on the same terms.")
    loan_id = book.request_loan("carol", CONFIG.interest_rate,
                                CONFIG.duration_years, CONFIG.collateral)
    book.fund_loan("dave", loan_id, book.require_loan(loan_id).loan_amount)
    print(f"\n    Loan #{loan_id} is {book.loan_status(loan_id).value}")
    return loan_id


def step_08_claim(book: LoanBook, loan_id: int):
    step_header(8, "Default and Claim",
        "carol never repays; after the due date dave seizes the collateral.")
    loan = book.require_loan(loan_id)
    book.advance_time(loan.due_date + timedelta(seconds=1))
    book.claim_collateral("dave", loan_id)
    print(f"\n    Status: {book.loan_status(loan_id).value}")
    print_balances(book, ["carol", "dave"])


# ============================================================================
# PHASE 4: REJECTIONS AND HISTORY
# ============================================================================

def step_09_rejections(book: LoanBook, repaid_id: int, defaulted_id: int):
    step_header(9, "Rejected Calls",
        "Every precondition failure raises a LoanError and changes nothing.")
    attempts = [
        ("request with zero collateral", lambda: book.request_loan("alice", 5, 10, Decimal("0"))),
        ("fund loan #111", lambda: book.fund_loan("bob", 111, Decimal("0.0002"))),
        ("fund a funded loan", lambda: book.fund_loan("dave", repaid_id, Decimal("0.0002"))),
        ("repay a repaid loan", lambda: book.repay_loan("alice", repaid_id, Decimal("0.0002"))),
        ("claim twice", lambda: book.claim_collateral("dave", defaulted_id)),
    ]
    tx_count = len(book.ledger.transaction_log)
    for label, attempt in attempts:
        try:
            attempt()
        except LoanError as e:
            print(f"    {label:<30} -> {type(e).__name__}: {e}")
    assert len(book.ledger.transaction_log) == tx_count
    custody = book.verify_custody()
    print(f"\n    Custody valid: {custody['valid']}  escrow={custody['escrow_balance']}")


def step_10_time_travel(book: LoanBook, repaid_id: int):
    step_header(10, "Time Travel",
        "Reconstruct the book before the repayment, then replay the whole log.")
    repaid_at = book.require_loan(repaid_id).settled_at
    past = LoanBook(book.ledger.clone_at(repaid_at - timedelta(seconds=1)), verbose=False)
    print(f"\n    Loan #{repaid_id} just before repayment: {past.loan_status(repaid_id).value}")

    book.ledger.verbose = False
    replayed = book.ledger.replay()
    matches = all(
        replayed.get_balance(w, "ETH") == book.ledger.get_balance(w, "ETH")
        for w in book.ledger.list_wallets()
    )
    print(f"    Replayed {len(replayed.transaction_log)} transactions; balances match: {matches}")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       COLLATERALIZED LOAN BOOK - INTERACTIVE TUTORIAL")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    ledger = step_01_ledger()
    wait_for_enter()
    book = step_02_loan_book(ledger)
    wait_for_enter()
    step_03_wallets(book)
    wait_for_enter()

    repaid_id = step_04_request(book)
    wait_for_enter()
    step_05_fund(book, repaid_id)
    wait_for_enter()
    step_06_repay(book, repaid_id)
    wait_for_enter()

    defaulted_id = step_07_request_and_fund(book)
    wait_for_enter()
    step_08_claim(book, defaulted_id)
    wait_for_enter()

    step_09_rejections(book, repaid_id, defaulted_id)
    wait_for_enter()
    step_10_time_travel(book, repaid_id)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)


if __name__ == "__main__":
    main()
