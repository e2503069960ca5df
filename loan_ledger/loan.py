"""
loan.py - Collateralized Loan Units

This module provides the loan record, its arithmetic and the transaction
builders for every state transition, using a pure function architecture.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - LoanTerms: Book-wide configuration (currency, multiplier, interest model)
   - Loan: Immutable snapshot of one loan record

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take all inputs explicitly as parameters
   - No LedgerView, no hidden state

3. ADAPTER FUNCTIONS (load_loan, to_state_dict, create_loan_unit):
   - Convert between ledger unit state and the Loan dataclass

4. TRANSACTION BUILDERS (compute_*):
   - Take (view, ...) and return a PendingTransaction
   - Raise a LoanError subclass for every precondition violation before
     anything is built, so a rejected call never reaches the ledger

Key Formulas:
    loan_amount   = collateral * 2
    due_date      = start_date + duration_years * SECONDS_PER_YEAR
    years_elapsed = floor((at - start_date) / SECONDS_PER_YEAR)
    SIMPLE:  interest = floor(loan_amount * rate * max(years_elapsed, 1) / 100)
    LEGACY:  interest = floor(floor(rate / 100) * loan_amount / years_elapsed)
    amount_due    = loan_amount + interest

State Machine:
    REQUESTED --fund--> FUNDED --repay (at <= due)--> REPAID
                        FUNDED --claim (at >  due)--> DEFAULTED
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from enum import Enum
from typing import Any, Dict, List, Optional

from .core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    UNIT_TYPE_LOAN, ESCROW_WALLET, NATIVE_DECIMAL_PLACES,
    UnitNotRegistered,
    InvalidCollateral, LoanNotFound, AlreadyFunded, LoanNotFunded,
    AlreadyRepaid, AlreadyClaimed, IncorrectPaymentAmount, LoanExpired,
    LoanStillActive, TransferFailed,
    InterestCalculationError,
    build_transaction, non_transferable_rule, _freeze_state,
)


# 365.25 days
SECONDS_PER_YEAR = 31_557_600

LOAN_TO_COLLATERAL_MULTIPLIER = 2

LOAN_SYMBOL_PREFIX = "LOAN_"


class InterestModel(Enum):
    """
    How interest is charged on repayment.

    SIMPLE: loan_amount * rate% per started year, at least one year.
    LEGACY: the historical formula, kept for compatibility. It divides the
            rate by 100 with integer truncation (zero interest for any rate
            below 100) and divides by the elapsed years, failing with
            InterestCalculationError when less than a year has elapsed.
    """
    SIMPLE = "simple"
    LEGACY = "legacy"


class LoanStatus(Enum):
    """Lifecycle position derived from the loan's flags and collateral."""
    REQUESTED = "requested"
    FUNDED = "funded"
    REPAID = "repaid"
    DEFAULTED = "defaulted"


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class LoanTerms:
    """
    Book-wide loan configuration, fixed for the lifetime of a LoanBook.

    Attributes:
        currency: Symbol of the native currency used for collateral and loans
        currency_name: Human-readable currency name
        collateral_multiplier: loan_amount = collateral * multiplier
        seconds_per_year: Length of a loan year in seconds
        interest_model: SIMPLE (default) or LEGACY
        escrow_wallet: Wallet custodying posted collateral
        decimal_places: Precision of currency amounts
    """
    currency: str = "ETH"
    currency_name: str = "Ether"
    collateral_multiplier: int = LOAN_TO_COLLATERAL_MULTIPLIER
    seconds_per_year: int = SECONDS_PER_YEAR
    interest_model: InterestModel = InterestModel.SIMPLE
    escrow_wallet: str = ESCROW_WALLET
    decimal_places: int = NATIVE_DECIMAL_PLACES

    def __post_init__(self):
        if not self.currency or not self.currency.strip():
            raise ValueError("currency cannot be empty")
        if not self.escrow_wallet or not self.escrow_wallet.strip():
            raise ValueError("escrow_wallet cannot be empty")
        if self.collateral_multiplier <= 0:
            raise ValueError(f"collateral_multiplier must be positive, got {self.collateral_multiplier}")
        if self.seconds_per_year <= 0:
            raise ValueError(f"seconds_per_year must be positive, got {self.seconds_per_year}")
        if self.decimal_places < 0:
            raise ValueError(f"decimal_places must be non-negative, got {self.decimal_places}")
        if not isinstance(self.interest_model, InterestModel):
            object.__setattr__(self, 'interest_model', InterestModel(self.interest_model))

    @property
    def quantum(self) -> Decimal:
        """Smallest representable currency amount (one wei by default)."""
        return Decimal(10) ** -self.decimal_places


@dataclass(frozen=True, slots=True)
class Loan:
    """
    Immutable snapshot of a loan record.

    A Loan always describes an existing loan: lookups for unknown ids return
    None or raise LoanNotFound, never a zero-valued record. lender is None
    until the loan is funded.
    """
    loan_id: int
    borrower: str
    lender: Optional[str]
    collateral: Decimal          # Held in escrow; zero once returned or seized
    loan_amount: Decimal         # collateral * multiplier at creation
    interest_rate: int           # Integer percent (5 = 5%)
    duration_years: int
    start_date: datetime
    due_date: datetime
    is_funded: bool
    is_repaid: bool
    currency: str
    funded_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None   # Repayment or collateral claim time

    @property
    def symbol(self) -> str:
        return loan_symbol(self.loan_id)

    @property
    def status(self) -> LoanStatus:
        return loan_status(self)

    @property
    def is_open(self) -> bool:
        """True while the loan can still change state."""
        return self.status in (LoanStatus.REQUESTED, LoanStatus.FUNDED)


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def loan_symbol(loan_id: int) -> str:
    """Ledger unit symbol carrying a loan's record."""
    return f"{LOAN_SYMBOL_PREFIX}{loan_id}"


def loan_status(loan: Loan) -> LoanStatus:
    """
    Derive the lifecycle status from the record's flags.

    A funded, unrepaid loan whose collateral has been zeroed was seized by
    the lender.
    """
    if loan.is_repaid:
        return LoanStatus.REPAID
    if not loan.is_funded:
        return LoanStatus.REQUESTED
    if loan.collateral == 0:
        return LoanStatus.DEFAULTED
    return LoanStatus.FUNDED


def calculate_loan_amount(
    collateral: Decimal,
    multiplier: int = LOAN_TO_COLLATERAL_MULTIPLIER,
) -> Decimal:
    """Loan offered for a given collateral."""
    return collateral * multiplier


def calculate_due_date(
    start_date: datetime,
    duration_years: int,
    seconds_per_year: int = SECONDS_PER_YEAR,
) -> datetime:
    """
    Deadline for repayment: start_date + duration_years loan-years.

    Raises:
        ValueError: If the due date falls outside the representable calendar
    """
    try:
        return start_date + timedelta(seconds=duration_years * seconds_per_year)
    except OverflowError as e:
        raise ValueError(f"duration_years={duration_years} overflows the calendar") from e


def calculate_years_elapsed(
    start_date: datetime,
    at: datetime,
    seconds_per_year: int = SECONDS_PER_YEAR,
) -> int:
    """
    Whole loan-years between start_date and at (floored).

    Raises:
        InterestCalculationError: If at is before start_date (underflow)
    """
    if at < start_date:
        raise InterestCalculationError(
            f"timestamp {at} precedes loan start {start_date}"
        )
    return (at - start_date) // timedelta(seconds=seconds_per_year)


def calculate_interest(
    loan_amount: Decimal,
    interest_rate: int,
    years_elapsed: int,
    model: InterestModel = InterestModel.SIMPLE,
    decimal_places: int = NATIVE_DECIMAL_PLACES,
) -> Decimal:
    """
    Interest owed after years_elapsed whole years, floored to the quantum.

    Raises:
        InterestCalculationError: LEGACY model with years_elapsed == 0
    """
    quantum = Decimal(10) ** -decimal_places
    if model is InterestModel.LEGACY:
        if years_elapsed == 0:
            raise InterestCalculationError(
                "division by zero: less than one year elapsed since loan start"
            )
        rate_factor = interest_rate // 100
        interest = rate_factor * loan_amount / years_elapsed
    else:
        interest = loan_amount * interest_rate * max(years_elapsed, 1) / 100
    return interest.quantize(quantum, rounding=ROUND_DOWN)


def calculate_amount_due(
    loan: Loan,
    at: datetime,
    model: InterestModel = InterestModel.SIMPLE,
    seconds_per_year: int = SECONDS_PER_YEAR,
    decimal_places: int = NATIVE_DECIMAL_PLACES,
) -> Decimal:
    """
    Principal plus interest the borrower must pay at time at.

    Example:
        # 0.002 ETH at 5%, repaid 1 year and 200 seconds after the request
        calculate_amount_due(loan, loan.start_date + timedelta(seconds=31_557_800))
        # -> Decimal("0.0021") with SIMPLE, Decimal("0.002") with LEGACY
    """
    years = calculate_years_elapsed(loan.start_date, at, seconds_per_year)
    interest = calculate_interest(
        loan.loan_amount, loan.interest_rate, years, model, decimal_places
    )
    return loan.loan_amount + interest


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def to_state_dict(loan: Loan) -> Dict[str, Any]:
    """Serialize a Loan into ledger unit state."""
    return {
        'loan_id': loan.loan_id,
        'borrower': loan.borrower,
        'lender': loan.lender,
        'collateral': loan.collateral,
        'loan_amount': loan.loan_amount,
        'interest_rate': loan.interest_rate,
        'duration_years': loan.duration_years,
        'start_date': loan.start_date,
        'due_date': loan.due_date,
        'is_funded': loan.is_funded,
        'is_repaid': loan.is_repaid,
        'currency': loan.currency,
        'funded_at': loan.funded_at,
        'settled_at': loan.settled_at,
    }


def loan_from_state(state: Dict[str, Any]) -> Loan:
    """Build a Loan from ledger unit state."""
    return Loan(
        loan_id=state['loan_id'],
        borrower=state['borrower'],
        lender=state.get('lender'),
        collateral=Decimal(str(state['collateral'])),
        loan_amount=Decimal(str(state['loan_amount'])),
        interest_rate=state['interest_rate'],
        duration_years=state['duration_years'],
        start_date=state['start_date'],
        due_date=state['due_date'],
        is_funded=state['is_funded'],
        is_repaid=state['is_repaid'],
        currency=state['currency'],
        funded_at=state.get('funded_at'),
        settled_at=state.get('settled_at'),
    )


def load_loan(view: LedgerView, loan_id: int) -> Optional[Loan]:
    """
    Load a loan from the ledger, or None if no such loan exists.

    Ids that are not positive integers never name a loan.
    """
    if isinstance(loan_id, bool) or not isinstance(loan_id, int) or loan_id <= 0:
        return None
    try:
        state = view.get_unit_state(loan_symbol(loan_id))
    except UnitNotRegistered:
        return None
    if not state:
        return None
    return loan_from_state(state)


def require_loan(view: LedgerView, loan_id: int) -> Loan:
    """
    Load a loan or raise.

    Raises:
        LoanNotFound: If no loan exists with this id
    """
    loan = load_loan(view, loan_id)
    if loan is None:
        raise LoanNotFound(f"Loan {loan_id} does not exist", loan_id)
    return loan


def create_loan_unit(loan: Loan) -> Unit:
    """
    Create the ledger unit that carries a loan's record.

    Loan units are never held by any wallet: max_balance is zero and every
    move is refused by non_transferable_rule.
    """
    return Unit(
        symbol=loan.symbol,
        name=f"Collateralized Loan #{loan.loan_id}",
        unit_type=UNIT_TYPE_LOAN,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        transfer_rule=non_transferable_rule,
        _frozen_state=_freeze_state(to_state_dict(loan)),
    )


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError(f"amount must be numeric, got {value!r}")
    return Decimal(str(value))


def _require_non_negative_int(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


def _parse_payment(payment: Any) -> Optional[Decimal]:
    try:
        return _to_decimal(payment)
    except (InvalidOperation, TypeError, ValueError):
        return None


def _origin(wallet: str, symbol: str, event_type: str) -> TransactionOrigin:
    return TransactionOrigin(
        origin_type=OriginType.USER_ACTION,
        source_id=wallet,
        unit_symbol=symbol,
        event_type=event_type,
    )


def _transfer(
    view: LedgerView,
    loan_id: int,
    quantity: Decimal,
    unit_symbol: str,
    source: str,
    dest: str,
    contract_id: str,
) -> List[Move]:
    """
    Moves for one value transfer.

    A transfer to oneself moves nothing, but the sender must still hold
    the amount.
    """
    if source != dest:
        return [Move(quantity=quantity, unit_symbol=unit_symbol, source=source,
                     dest=dest, contract_id=contract_id)]
    balance = view.get_balance(source, unit_symbol)
    if balance < quantity:
        raise TransferFailed(
            f"insufficient funds: {source} {unit_symbol} {balance} < {quantity}", loan_id
        )
    return []


# ============================================================================
# TRANSACTION BUILDERS
# ============================================================================

def compute_loan_request(
    view: LedgerView,
    loan_id: int,
    borrower: str,
    interest_rate: int,
    duration_years: int,
    collateral: Decimal,
    terms: LoanTerms = LoanTerms(),
) -> PendingTransaction:
    """
    Build the transaction that opens a loan.

    The transaction creates the LOAN_<id> unit and moves the collateral from
    the borrower into escrow; both happen together or not at all.

    Args:
        view: Read-only ledger access (provides the start time)
        loan_id: Id to assign (allocated by the caller)
        borrower: Wallet posting the collateral
        interest_rate: Integer percent
        duration_years: Whole years until the due date
        collateral: Amount posted, in the native currency

    Raises:
        InvalidCollateral: If collateral is not a positive amount
                           representable at the currency's precision
        ValueError: If interest_rate or duration_years is not a
                    non-negative integer

    Example:
        tx = compute_loan_request(ledger, 1, "alice", 5, 10, Decimal("0.0001"))
        ledger.execute(tx)
        # LOAN_1: loan_amount 0.0002, due 10 loan-years after now
    """
    try:
        amount = _to_decimal(collateral)
        if not amount.is_finite() or amount <= 0:
            raise InvalidCollateral(f"collateral must be positive, got {collateral}")
        representable = amount == amount.quantize(terms.quantum, rounding=ROUND_DOWN)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise InvalidCollateral(f"collateral is not a representable amount: {collateral!r}") from e
    if not representable:
        raise InvalidCollateral(
            f"collateral {amount} is finer than {terms.quantum} {terms.currency}"
        )
    _require_non_negative_int("interest_rate", interest_rate)
    _require_non_negative_int("duration_years", duration_years)

    now = view.current_time
    loan = Loan(
        loan_id=loan_id,
        borrower=borrower,
        lender=None,
        collateral=amount,
        loan_amount=calculate_loan_amount(amount, terms.collateral_multiplier),
        interest_rate=interest_rate,
        duration_years=duration_years,
        start_date=now,
        due_date=calculate_due_date(now, duration_years, terms.seconds_per_year),
        is_funded=False,
        is_repaid=False,
        currency=terms.currency,
    )

    moves = [
        Move(
            quantity=amount,
            unit_symbol=terms.currency,
            source=borrower,
            dest=terms.escrow_wallet,
            contract_id=f'collateral_{loan.symbol}',
        )
    ]

    return build_transaction(
        view, moves,
        origin=_origin(borrower, loan.symbol, "REQUEST"),
        units_to_create=(create_loan_unit(loan),),
    )


def compute_loan_funding(
    view: LedgerView,
    loan_id: int,
    lender: str,
    payment: Decimal,
    terms: LoanTerms = LoanTerms(),
) -> PendingTransaction:
    """
    Build the transaction that funds a requested loan.

    The payment is forwarded in full to the borrower; the loan records the
    lender and becomes funded.

    Raises:
        LoanNotFound: Unknown loan id
        AlreadyFunded: The loan already has a lender
        IncorrectPaymentAmount: payment != loan_amount
        TransferFailed: A borrower funding itself cannot cover the payment
    """
    loan = require_loan(view, loan_id)
    if loan.is_funded:
        raise AlreadyFunded(f"Loan {loan_id} is already funded", loan_id)

    amount = _parse_payment(payment)
    if amount is None or amount != loan.loan_amount:
        raise IncorrectPaymentAmount(
            f"Loan {loan_id} requires exactly {loan.loan_amount} {loan.currency}, got {payment}",
            loan_id, expected=loan.loan_amount, received=amount,
        )

    now = view.current_time
    old_state = view.get_unit_state(loan.symbol)
    new_state = {
        **old_state,
        'lender': lender,
        'is_funded': True,
        'funded_at': now,
    }

    moves = _transfer(
        view, loan_id, loan.loan_amount, loan.currency,
        lender, loan.borrower, f'funding_{loan.symbol}',
    )
    state_changes = [UnitStateChange(unit=loan.symbol, old_state=old_state, new_state=new_state)]

    return build_transaction(view, moves, state_changes, origin=_origin(lender, loan.symbol, "FUND"))


def compute_loan_repayment(
    view: LedgerView,
    loan_id: int,
    payer: str,
    payment: Decimal,
    terms: LoanTerms = LoanTerms(),
) -> PendingTransaction:
    """
    Build the transaction that repays a funded loan.

    The payment goes to the lender and the escrowed collateral returns to
    the borrower. Any wallet may pay, the lender included.

    Raises:
        LoanNotFound: Unknown loan id
        LoanNotFunded: The loan was never funded
        AlreadyRepaid: The loan is already repaid
        LoanExpired: The due date has passed
        IncorrectPaymentAmount: payment != amount due now
        InterestCalculationError: The interest model cannot price the loan now
        TransferFailed: A lender repaying itself cannot cover the payment
    """
    loan = require_loan(view, loan_id)
    if not loan.is_funded:
        raise LoanNotFunded(f"Loan {loan_id} is not funded", loan_id)
    if loan.is_repaid:
        raise AlreadyRepaid(f"Loan {loan_id} is already repaid", loan_id)

    now = view.current_time
    if now > loan.due_date:
        raise LoanExpired(f"Loan {loan_id} expired at {loan.due_date}", loan_id)

    amount_due = calculate_amount_due(
        loan, now, terms.interest_model, terms.seconds_per_year, terms.decimal_places
    )
    amount = _parse_payment(payment)
    if amount is None or amount != amount_due:
        raise IncorrectPaymentAmount(
            f"Loan {loan_id} requires exactly {amount_due} {loan.currency}, got {payment}",
            loan_id, expected=amount_due, received=amount,
        )

    old_state = view.get_unit_state(loan.symbol)
    new_state = {
        **old_state,
        'collateral': Decimal("0"),
        'is_repaid': True,
        'settled_at': now,
    }

    moves = _transfer(
        view, loan_id, amount_due, loan.currency,
        payer, loan.lender, f'repayment_{loan.symbol}',
    ) + [
        Move(
            quantity=loan.collateral,
            unit_symbol=loan.currency,
            source=terms.escrow_wallet,
            dest=loan.borrower,
            contract_id=f'collateral_release_{loan.symbol}',
        ),
    ]
    state_changes = [UnitStateChange(unit=loan.symbol, old_state=old_state, new_state=new_state)]

    return build_transaction(view, moves, state_changes, origin=_origin(payer, loan.symbol, "REPAY"))


def compute_collateral_claim(
    view: LedgerView,
    loan_id: int,
    claimant: str,
    terms: LoanTerms = LoanTerms(),
) -> PendingTransaction:
    """
    Build the transaction that seizes the collateral of a defaulted loan.

    The escrowed collateral goes to the recorded lender whoever submits the
    claim. is_repaid stays False, which marks the loan as defaulted.

    Raises:
        LoanNotFound: Unknown loan id
        LoanNotFunded: The loan was never funded
        AlreadyRepaid: The loan was repaid
        AlreadyClaimed: The collateral was already seized
        LoanStillActive: The due date has not passed yet
    """
    loan = require_loan(view, loan_id)
    if not loan.is_funded:
        raise LoanNotFunded(f"Loan {loan_id} is not funded", loan_id)
    if loan.is_repaid:
        raise AlreadyRepaid(f"Loan {loan_id} is already repaid", loan_id)
    if loan.collateral == 0:
        raise AlreadyClaimed(f"Collateral of loan {loan_id} was already claimed", loan_id)

    now = view.current_time
    if now <= loan.due_date:
        raise LoanStillActive(f"Loan {loan_id} is active until {loan.due_date}", loan_id)

    old_state = view.get_unit_state(loan.symbol)
    new_state = {
        **old_state,
        'collateral': Decimal("0"),
        'settled_at': now,
    }

    moves = [
        Move(
            quantity=loan.collateral,
            unit_symbol=loan.currency,
            source=terms.escrow_wallet,
            dest=loan.lender,
            contract_id=f'collateral_claim_{loan.symbol}',
        )
    ]
    state_changes = [UnitStateChange(unit=loan.symbol, old_state=old_state, new_state=new_state)]

    return build_transaction(view, moves, state_changes, origin=_origin(claimant, loan.symbol, "CLAIM"))
