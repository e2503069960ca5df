"""
events.py - Loan Notifications

The four notifications a LoanBook emits after a state transition commits:

1. LoanRequested: borrower posted collateral and opened a loan
2. LoanFunded: a lender paid the loan amount to the borrower
3. LoanRepaid: the loan was repaid and the collateral released
4. CollateralClaimed: the lender seized the collateral after default

Events are just data; EventLog keeps them in commit order and fans them out
to subscribers. Each event carries the exec_id of the ledger transaction
that committed it, so the transaction log remains the audit trail.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, ClassVar, Iterator, List, Optional, Tuple, Type


# ============================================================================
# EVENT DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class LoanEvent:
    """
    Base notification.

    Attributes:
        loan_id: Loan the event refers to
        timestamp: Ledger time at which the transition committed
        exec_id: Ledger transaction that carried the transition
    """
    NAME: ClassVar[str] = "LoanEvent"

    loan_id: int
    timestamp: datetime
    exec_id: str

    @property
    def name(self) -> str:
        return self.NAME


@dataclass(frozen=True, slots=True)
class LoanRequested(LoanEvent):
    NAME: ClassVar[str] = "LoanRequested"

    borrower: str
    collateral: Decimal


@dataclass(frozen=True, slots=True)
class LoanFunded(LoanEvent):
    NAME: ClassVar[str] = "LoanFunded"

    lender: str
    amount: Decimal


@dataclass(frozen=True, slots=True)
class LoanRepaid(LoanEvent):
    NAME: ClassVar[str] = "LoanRepaid"

    amount_due: Decimal
    payer: str


@dataclass(frozen=True, slots=True)
class CollateralClaimed(LoanEvent):
    NAME: ClassVar[str] = "CollateralClaimed"

    lender: str
    collateral: Decimal
    claimed_by: str


# ============================================================================
# EVENT LOG
# ============================================================================

# Subscriber type: event -> None
EventHandler = Callable[[LoanEvent], None]


class EventLog:
    """
    Ordered history of emitted notifications plus subscriber fan-out.

    Subscribers run synchronously, in subscription order, after the event has
    been recorded. A subscriber that raises does not stop delivery to the
    others and never reaches the publisher; the failure is kept in
    delivery_errors and printed when verbose.
    """

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.delivery_errors: List[Tuple[LoanEvent, EventHandler, Exception]] = []
        self._events: List[LoanEvent] = []
        self._subscribers: List[Tuple[Optional[Type[LoanEvent]], EventHandler]] = []

    def subscribe(
        self,
        handler: EventHandler,
        event_type: Optional[Type[LoanEvent]] = None,
    ) -> Callable[[], None]:
        """
        Register a handler, optionally only for one event type.

        Returns:
            A callable that removes the subscription.
        """
        entry = (event_type, handler)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: LoanEvent) -> None:
        """Record an event and deliver it to matching subscribers."""
        self._events.append(event)
        for event_type, handler in list(self._subscribers):
            if event_type is None or isinstance(event, event_type):
                try:
                    handler(event)
                except Exception as e:
                    self.delivery_errors.append((event, handler, e))
                    if self.verbose:
                        print(f"⚠ SUBSCRIBER FAILED: {event.name} loan={event.loan_id}: {e!r}")

    def history(
        self,
        event_type: Optional[Type[LoanEvent]] = None,
        loan_id: Optional[int] = None,
    ) -> List[LoanEvent]:
        """Recorded events, optionally filtered by type and loan id."""
        return [
            e for e in self._events
            if (event_type is None or isinstance(e, event_type))
            and (loan_id is None or e.loan_id == loan_id)
        ]

    def last(self) -> Optional[LoanEvent]:
        return self._events[-1] if self._events else None

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[LoanEvent]:
        return iter(list(self._events))
