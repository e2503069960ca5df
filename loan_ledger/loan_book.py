"""
loan_book.py - Collateralized Loan Book

LoanBook is the public face of the system: the keyed store of loans plus the
state transitions that create, fund, repay or default them. It owns all
custody of value through an escrow wallet on the underlying Ledger.

Every call either commits its transition completely and emits one
notification, or raises a LoanError with nothing changed:

    1. Validate preconditions and build a PendingTransaction (loan.py)
    2. Execute it atomically on the Ledger (moves + loan state together)
    3. Publish the notification for the committed transaction

Calls are serialized by a re-entrant lock, so only one funder can observe
an unfunded loan and at most one repay or claim can succeed.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
import threading

from .core import (
    ExecuteResult, Transaction, TransferFailed, UNIT_TYPE_LOAN,
    native,
)
from .ledger import Ledger
from .loan import (
    Loan, LoanStatus, LoanTerms, LOAN_SYMBOL_PREFIX,
    load_loan, require_loan, loan_from_state,
    calculate_amount_due as _calculate_amount_due,
    compute_loan_request, compute_loan_funding,
    compute_loan_repayment, compute_collateral_claim,
)
from .events import (
    EventLog, EventHandler, LoanEvent,
    LoanRequested, LoanFunded, LoanRepaid, CollateralClaimed,
)


class LoanBook:
    """
    Peer-to-peer collateralized loan ledger.

    Example:
        ledger = Ledger("main", datetime(2025, 1, 1), verbose=False)
        book = LoanBook(ledger)
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")
        ledger.issue("alice", "ETH", Decimal("1"))
        ledger.issue("bob", "ETH", Decimal("1"))

        loan_id = book.request_loan("alice", interest_rate=5, duration_years=10,
                                    collateral=Decimal("0.0001"))
        book.fund_loan("bob", loan_id, Decimal("0.0002"))
    """

    def __init__(
        self,
        ledger: Ledger,
        terms: Optional[LoanTerms] = None,
        verbose: Optional[bool] = None,
    ):
        """
        Attach a loan book to a ledger.

        Registers the native currency unit and the escrow wallet if the
        ledger does not have them yet. Loans already present on the ledger
        (e.g. a clone, or another book on the same ledger) are picked up, and
        each request takes the id after the highest loan on the ledger.

        Args:
            ledger: Ledger holding balances and loan records
            terms: Book configuration (default: LoanTerms())
            verbose: Print notifications (default: ledger.verbose)
        """
        self.ledger = ledger
        self.terms = terms or LoanTerms()
        self.verbose = ledger.verbose if verbose is None else verbose
        self.events = EventLog(verbose=self.verbose)
        self._lock = threading.RLock()

        if not ledger.has_unit(self.terms.currency):
            ledger.register_unit(native(
                self.terms.currency, self.terms.currency_name, self.terms.decimal_places
            ))
        if not ledger.is_registered(self.terms.escrow_wallet):
            ledger.register_wallet(self.terms.escrow_wallet)

    # ========================================================================
    # READ-ONLY QUERIES
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self.ledger.current_time

    @property
    def next_loan_id(self) -> int:
        """Id the next successful request_loan() will receive."""
        with self._lock:
            return self._allocate_loan_id()

    @property
    def escrow_wallet(self) -> str:
        return self.terms.escrow_wallet

    def get_loan(self, loan_id: int) -> Optional[Loan]:
        """Return the loan record, or None if no loan has this id."""
        with self._lock:
            return load_loan(self.ledger, loan_id)

    def require_loan(self, loan_id: int) -> Loan:
        """
        Return the loan record.

        Raises:
            LoanNotFound: If no loan has this id
        """
        with self._lock:
            return require_loan(self.ledger, loan_id)

    def list_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        """All loans in id order, optionally filtered by status."""
        with self._lock:
            loans = self._scan_loans()
        if status is not None:
            loans = [loan for loan in loans if loan.status is status]
        return loans

    def loan_status(self, loan_id: int) -> LoanStatus:
        return self.require_loan(loan_id).status

    def calculate_amount_due(self, loan_id: int, at: Optional[datetime] = None) -> Decimal:
        """
        Principal plus interest due on a loan at a given time.

        Args:
            loan_id: Loan to price
            at: Timestamp to price at (default: the ledger clock)

        Raises:
            LoanNotFound: If no loan has this id
            InterestCalculationError: If the interest model cannot price the
                                      loan at this time
        """
        with self._lock:
            loan = require_loan(self.ledger, loan_id)
            when = at if at is not None else self.ledger.current_time
            return _calculate_amount_due(
                loan, when,
                self.terms.interest_model,
                self.terms.seconds_per_year,
                self.terms.decimal_places,
            )

    def escrow_balance(self) -> Decimal:
        """Native currency currently held in escrow."""
        with self._lock:
            return self.ledger.get_balance(self.terms.escrow_wallet, self.terms.currency)

    def verify_custody(self) -> Dict[str, Any]:
        """
        Check that escrow holds exactly the collateral of all loans.

        Returns:
            Dict with keys:
            - 'valid': bool
            - 'escrow_balance': Decimal held by the escrow wallet
            - 'expected_collateral': Decimal sum of loan collateral
            - 'open_loans': ids of loans still holding collateral
        """
        with self._lock:
            loans = self._scan_loans()
            balance = self.ledger.get_balance(self.terms.escrow_wallet, self.terms.currency)
        expected = sum((loan.collateral for loan in loans), Decimal("0"))
        return {
            'valid': balance == expected,
            'escrow_balance': balance,
            'expected_collateral': expected,
            'open_loans': [loan.loan_id for loan in loans if loan.collateral > 0],
        }

    def subscribe(self, handler: EventHandler, event_type=None):
        """Subscribe to notifications; see EventLog.subscribe()."""
        return self.events.subscribe(handler, event_type)

    # ========================================================================
    # TIME
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """Move the ledger clock forward."""
        with self._lock:
            self.ledger.advance_time(new_time)

    # ========================================================================
    # STATE TRANSITIONS
    # ========================================================================

    def request_loan(
        self,
        borrower: str,
        interest_rate: int,
        duration_years: int,
        collateral: Decimal,
    ) -> int:
        """
        Post collateral and open a loan for collateral * 2.

        Returns:
            The new loan id (sequential, starting at 1)

        Raises:
            InvalidCollateral: collateral is not a positive wei amount
            ValueError: interest_rate or duration_years is not a
                        non-negative integer
            TransferFailed: the borrower cannot post the collateral
        """
        with self._lock:
            loan_id = self._allocate_loan_id()
            pending = compute_loan_request(
                self.ledger, loan_id, borrower, interest_rate, duration_years,
                collateral, self.terms,
            )
            tx = self._submit(pending, loan_id, "request")
            loan = require_loan(self.ledger, loan_id)
            self._emit(LoanRequested(
                loan_id=loan_id,
                timestamp=tx.execution_time,
                exec_id=tx.exec_id,
                borrower=borrower,
                collateral=loan.collateral,
            ))
            return loan_id

    def fund_loan(self, lender: str, loan_id: int, payment: Decimal) -> Loan:
        """
        Pay exactly the loan amount to the borrower and become the lender.

        Returns:
            The funded loan record

        Raises:
            LoanNotFound, AlreadyFunded, IncorrectPaymentAmount, TransferFailed
        """
        with self._lock:
            pending = compute_loan_funding(self.ledger, loan_id, lender, payment, self.terms)
            tx = self._submit(pending, loan_id, "funding")
            loan = require_loan(self.ledger, loan_id)
            self._emit(LoanFunded(
                loan_id=loan_id,
                timestamp=tx.execution_time,
                exec_id=tx.exec_id,
                lender=lender,
                amount=loan.loan_amount,
            ))
            return loan

    def repay_loan(self, payer: str, loan_id: int, payment: Decimal) -> Loan:
        """
        Pay the amount due to the lender and release the collateral.

        Returns:
            The repaid loan record

        Raises:
            LoanNotFound, LoanNotFunded, AlreadyRepaid, LoanExpired,
            IncorrectPaymentAmount, InterestCalculationError, TransferFailed
        """
        with self._lock:
            pending = compute_loan_repayment(self.ledger, loan_id, payer, payment, self.terms)
            amount_due = self.calculate_amount_due(loan_id)
            tx = self._submit(pending, loan_id, "repayment")
            loan = require_loan(self.ledger, loan_id)
            self._emit(LoanRepaid(
                loan_id=loan_id,
                timestamp=tx.execution_time,
                exec_id=tx.exec_id,
                amount_due=amount_due,
                payer=payer,
            ))
            return loan

    def claim_collateral(self, claimant: str, loan_id: int) -> Loan:
        """
        Transfer the collateral of an overdue, unrepaid loan to its lender.

        Returns:
            The defaulted loan record

        Raises:
            LoanNotFound, LoanNotFunded, AlreadyRepaid, AlreadyClaimed,
            LoanStillActive, TransferFailed
        """
        with self._lock:
            pending = compute_collateral_claim(self.ledger, loan_id, claimant, self.terms)
            seized = pending.moves[0].quantity
            tx = self._submit(pending, loan_id, "collateral claim")
            loan = require_loan(self.ledger, loan_id)
            self._emit(CollateralClaimed(
                loan_id=loan_id,
                timestamp=tx.execution_time,
                exec_id=tx.exec_id,
                lender=loan.lender,
                collateral=seized,
                claimed_by=claimant,
            ))
            return loan

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _scan_loans(self) -> List[Loan]:
        loans = [
            loan_from_state(unit.state)
            for unit in self.ledger.units.values()
            if unit.unit_type == UNIT_TYPE_LOAN
        ]
        return sorted(loans, key=lambda loan: loan.loan_id)

    def _allocate_loan_id(self) -> int:
        prefix_len = len(LOAN_SYMBOL_PREFIX)
        taken = [
            int(symbol[prefix_len:])
            for symbol in self.ledger.units
            if symbol.startswith(LOAN_SYMBOL_PREFIX) and symbol[prefix_len:].isdigit()
        ]
        return max(taken, default=0) + 1

    def _submit(self, pending, loan_id: int, operation: str) -> Transaction:
        result = self.ledger.execute(pending)
        if result != ExecuteResult.APPLIED:
            raise TransferFailed(
                f"Loan {loan_id} {operation} rejected by ledger: {self.ledger.last_rejection}",
                loan_id,
            )
        return self.ledger.transaction_log[-1]

    def _emit(self, event: LoanEvent) -> None:
        if self.verbose:
            print(f"[{event.name}] loan={event.loan_id} at {event.timestamp} ({event.exec_id})")
        self.events.publish(event)
