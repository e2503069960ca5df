"""
loan_ledger - Collateralized Loan Ledger

A peer-to-peer collateralized loan book on top of a double-entry ledger.
A borrower posts native currency as collateral and receives a loan offer of
twice that amount; a lender funds it; the borrower repays principal plus
interest before the due date or forfeits the collateral to the lender.

Usage:
    from datetime import datetime
    from decimal import Decimal
    from loan_ledger import Ledger, LoanBook

    ledger = Ledger("main", datetime(2025, 1, 1))
    book = LoanBook(ledger)
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    ledger.issue("alice", "ETH", Decimal("1"))
    ledger.issue("bob", "ETH", Decimal("1"))

    loan_id = book.request_loan("alice", interest_rate=5, duration_years=10,
                                collateral=Decimal("0.0001"))
    book.fund_loan("bob", loan_id, Decimal("0.0002"))
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    native,
    non_transferable_rule,
    SYSTEM_WALLET,
    ESCROW_WALLET,
    UNIT_TYPE_NATIVE,
    UNIT_TYPE_LOAN,
    NATIVE_DECIMAL_PLACES,
    QUANTITY_EPSILON,
)

# Exceptions
from .core import (
    LedgerError,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    LoanError,
    InvalidCollateral,
    LoanNotFound,
    AlreadyFunded,
    LoanNotFunded,
    AlreadyRepaid,
    AlreadyClaimed,
    IncorrectPaymentAmount,
    LoanExpired,
    LoanStillActive,
    TransferFailed,
    InterestCalculationError,
)

# Ledger
from .ledger import Ledger

# Loans
from .loan import (
    SECONDS_PER_YEAR,
    LOAN_TO_COLLATERAL_MULTIPLIER,
    InterestModel,
    LoanStatus,
    LoanTerms,
    Loan,
    loan_symbol,
    loan_status,
    calculate_loan_amount,
    calculate_due_date,
    calculate_years_elapsed,
    calculate_interest,
    calculate_amount_due,
    to_state_dict,
    loan_from_state,
    load_loan,
    require_loan,
    create_loan_unit,
    compute_loan_request,
    compute_loan_funding,
    compute_loan_repayment,
    compute_collateral_claim,
)

# Notifications
from .events import (
    LoanEvent,
    LoanRequested,
    LoanFunded,
    LoanRepaid,
    CollateralClaimed,
    EventHandler,
    EventLog,
)

# Loan book
from .loan_book import LoanBook

__version__ = "1.0.0"

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'build_transaction',
    'Unit', 'UnitStateChange', 'ExecuteResult',
    'native', 'non_transferable_rule',
    'SYSTEM_WALLET', 'ESCROW_WALLET', 'UNIT_TYPE_NATIVE', 'UNIT_TYPE_LOAN',
    'NATIVE_DECIMAL_PLACES', 'QUANTITY_EPSILON',
    # Exceptions
    'LedgerError', 'TransferRuleViolation', 'UnitNotRegistered', 'WalletNotRegistered',
    'LoanError', 'InvalidCollateral', 'LoanNotFound', 'AlreadyFunded',
    'LoanNotFunded', 'AlreadyRepaid', 'AlreadyClaimed', 'IncorrectPaymentAmount',
    'LoanExpired', 'LoanStillActive', 'TransferFailed',
    'InterestCalculationError',
    # Ledger
    'Ledger',
    # Loans
    'SECONDS_PER_YEAR', 'LOAN_TO_COLLATERAL_MULTIPLIER',
    'InterestModel', 'LoanStatus', 'LoanTerms', 'Loan',
    'loan_symbol', 'loan_status',
    'calculate_loan_amount', 'calculate_due_date', 'calculate_years_elapsed',
    'calculate_interest', 'calculate_amount_due',
    'to_state_dict', 'loan_from_state', 'load_loan', 'require_loan', 'create_loan_unit',
    'compute_loan_request', 'compute_loan_funding',
    'compute_loan_repayment', 'compute_collateral_claim',
    # Notifications
    'LoanEvent', 'LoanRequested', 'LoanFunded', 'LoanRepaid', 'CollateralClaimed',
    'EventHandler', 'EventLog',
    # Loan book
    'LoanBook',
]
