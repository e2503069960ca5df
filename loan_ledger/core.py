"""
Core types and pure functions for the collateralized loan ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError, LoanError and the categorical loan rejections
4. Type aliases: Positions, BalanceMap, UnitState
5. Transfer rules: Pure validation functions for moves
6. Unit factories: native() for the settlement currency

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Loan arithmetic must be deterministic. The global context is configured at
# module load time; no other code should modify it.
#
#   - prec=50: enough for 18-decimal amounts multiplied by rates and years
#   - rounding=ROUND_HALF_EVEN: context default; loan math quantizes with
#     ROUND_DOWN explicitly (integer floor semantics)
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and redemption of native currency.
# The system wallet is exempt from balance validation.
SYSTEM_WALLET = "system"

# Wallet owned by the loan book that custodies posted collateral.
ESCROW_WALLET = "loan_escrow"

UNIT_TYPE_NATIVE = "NATIVE"
UNIT_TYPE_LOAN = "COLLATERALIZED_LOAN"

# Native currency precision: 18 decimal places (1 wei = 1e-18).
NATIVE_DECIMAL_PLACES = 18

# Quantities with absolute value below one wei are treated as zero.
QUANTITY_EPSILON = Decimal("1e-18")

DECIMAL_ROUNDING = {
    UNIT_TYPE_NATIVE: ROUND_DOWN,
    UNIT_TYPE_LOAN: ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit (for loans: the loan record).
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Loan transaction builders receive a LedgerView and can query balances,
    unit state and the clock, but cannot modify anything. The Ledger class
    implements this protocol; tests use FakeView.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Return the balance of a specific unit in a wallet.

        Returns Decimal("0") if the wallet holds none of the unit.
        """
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction intent was previously processed (idempotent).
    REJECTED: Transaction failed validation (balance constraints, transfer
              rules, unregistered wallets or units, future timestamp).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"     # Borrower/lender call into the loan book
    CONTRACT = "contract"           # Built by a loan transaction builder
    SYSTEM = "system"               # Issuance, initial setup


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when operating on a unit that has not been registered."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when operating on a wallet that has not been registered."""
    pass


class LoanError(LedgerError):
    """
    Base class for categorical loan rejections.

    Every subclass is raised before any value moves; a call that raises a
    LoanError leaves balances, loans and notifications unchanged.
    """

    def __init__(self, message: str, loan_id: Optional[int] = None):
        super().__init__(message)
        self.loan_id = loan_id


class InvalidCollateral(LoanError):
    """Collateral must be strictly positive and representable in wei."""
    pass


class LoanNotFound(LoanError):
    """No loan exists with the requested id."""
    pass


class AlreadyFunded(LoanError):
    """The loan has already been funded by a lender."""
    pass


class LoanNotFunded(LoanError):
    """The operation requires a funded loan."""
    pass


class AlreadyRepaid(LoanError):
    """The loan has already been repaid."""
    pass


class AlreadyClaimed(LoanError):
    """The collateral of a defaulted loan has already been claimed."""
    pass


class IncorrectPaymentAmount(LoanError):
    """The payment does not exactly match the amount required."""

    def __init__(self, message: str, loan_id: Optional[int] = None,
                 expected: Optional[Decimal] = None, received: Optional[Decimal] = None):
        super().__init__(message, loan_id)
        self.expected = expected
        self.received = received


class LoanExpired(LoanError):
    """Repayment attempted after the due date."""
    pass


class LoanStillActive(LoanError):
    """Collateral claim attempted on or before the due date."""
    pass


class TransferFailed(LoanError):
    """The ledger rejected the value transfers of a loan operation."""
    pass


class InterestCalculationError(LoanError, ArithmeticError):
    """Division by zero or underflow while computing the amount due."""
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (wallet id, builder name)
        unit_symbol: Symbol of the loan unit involved (if applicable)
        event_type: Loan operation (e.g., "REQUEST", "FUND", "REPAY", "CLAIM")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Before/after snapshot of a unit's state, kept in the transaction log.

    Stores complete snapshots so that clone_at() can restore old_state and
    replay() can re-apply new_state.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for every field that differs."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (finite, at least one wei).
        unit_symbol: The symbol of the unit being transferred (e.g., "ETH").
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """
    Normalize a Decimal to a canonical string.

    Decimal("1.0") and Decimal("1.00") both become "1"; fixed-point notation
    is used so that wei-sized values never switch to exponent form.
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Independent of dict insertion order and Decimal representation.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Same moves, state changes, origin and created units always produce the
    same intent_id; the ledger uses it to refuse duplicate execution.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}|{_canonicalize(unit.state)}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        old_canonical = _canonicalize(sc.old_state)
        new_canonical = _canonicalize(sc.new_state)
        content_parts.append(f"state_change:{sc.unit}|{old_canonical}|{new_canonical}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Built by the loan transaction builders and submitted to Ledger.execute(),
    which either applies every move, unit creation and state change, or none.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes (old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        units_to_create: Units to register atomically with the moves
        intent_id: Content hash of the transaction (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if there are no moves, no state changes and no units to create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction stamped with the view's current time.

    State snapshots are deep-copied so later mutation of the caller's dicts
    cannot leak into the audit log.

    Example:
        old_state = view.get_unit_state("LOAN_1")
        new_state = {**old_state, "is_funded": True, "lender": "bob"}
        tx = build_transaction(view, [
            Move(Decimal("0.0002"), "ETH", "bob", "alice", "fund_LOAN_1"),
        ], [UnitStateChange("LOAN_1", old_state, new_state)])
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Value transfers that were applied
        state_changes: Unit state changes that were applied
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger
        units_to_create: Units registered by this transaction
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        lines = [
            f"Transaction {self.exec_id}",
            f"  intent_id : {self.intent_id}",
            f"  executed  : {self.execution_time}",
            f"  origin    : {self.origin}",
        ]
        for unit in self.units_to_create:
            lines.append(f"  + unit {unit.symbol} ({unit.name})")
        for i, move in enumerate(self.moves):
            lines.append(f"  [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}")
        for sc in self.state_changes:
            for field_name, (old_val, new_val) in sc.changed_fields().items():
                lines.append(f"  {sc.unit}.{field_name}: {old_val!r} → {new_val!r}")
        return "\n".join(lines)


# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a sorted tuple of (key, value) pairs."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit in the ledger: the native currency or a loan record.

    Attributes:
        symbol: Short identifier (e.g., "ETH", "LOAN_1").
        name: Human-readable name.
        unit_type: UNIT_TYPE_NATIVE or UNIT_TYPE_LOAN.
        min_balance: Minimum allowed balance in any wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
        transfer_rule: Optional function to validate moves involving this unit.
        _frozen_state: Internal frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """Return the unit's state as a new dict."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """
        Round a value to this unit's precision.

        Native amounts are floored (ROUND_DOWN), mirroring integer wei
        arithmetic. Returns the value unchanged if decimal_places is None.
        """
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# TRANSFER RULES
# ============================================================================

def non_transferable_rule(view: LedgerView, move: Move) -> None:
    """
    Reject every move of a loan record unit.

    Loan units exist only to carry loan state; no wallet ever holds a
    position in them.

    Raises:
        TransferRuleViolation: Always.
    """
    raise TransferRuleViolation(
        f"{move.unit_symbol} is a loan record and cannot be transferred"
    )


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def native(symbol: str = "ETH", name: str = "Ether",
           decimal_places: int = NATIVE_DECIMAL_PLACES) -> Unit:
    """
    Create the native currency unit used for both collateral and loans.

    Args:
        symbol: Currency symbol (default: "ETH").
        name: Full name of the currency.
        decimal_places: Precision of amounts (default: 18, i.e. wei).

    Returns:
        A Unit with a zero minimum balance: wallets cannot overdraw, so a
        payer without sufficient funds causes the whole transaction to be
        rejected.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_NATIVE,
        decimal_places=decimal_places,
        min_balance=Decimal("0"),
    )
