"""
test_ledger_operations.py - Unit tests for Ledger class operations

Tests:
- Ledger creation and configuration
- Wallet and unit registration
- Balance queries, issuance and test-mode set_balance
- Time management
- Transaction execution: atomicity, idempotency, rejection reasons
- Optimistic concurrency on unit state (stale snapshots are rejected)
- Units created by transactions (rollback on rejection)
- clone(), clone_at(), replay(), verify_double_entry()
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from loan_ledger import (
    Ledger, Move, Unit, UnitStateChange, ExecuteResult,
    build_transaction, native, non_transferable_rule,
    SYSTEM_WALLET, UNIT_TYPE_LOAN,
    LedgerError, UnitNotRegistered, WalletNotRegistered,
)

from tests.fake_view import FakeView


T0 = datetime(2025, 1, 1)


def _loan_unit(symbol="LOAN_1", **state):
    return Unit(
        symbol=symbol,
        name="Loan",
        unit_type=UNIT_TYPE_LOAN,
        max_balance=Decimal("0"),
        decimal_places=0,
        transfer_rule=non_transferable_rule,
        _frozen_state=tuple(sorted(state.items())),
    )


class TestLedgerCreation:

    def test_create_ledger_minimal(self):
        ledger = Ledger("main")
        assert ledger.name == "main"
        assert ledger.current_time == datetime(1970, 1, 1)
        assert ledger.verbose is True

    def test_system_wallet_preregistered(self, empty_ledger):
        assert empty_ledger.is_registered(SYSTEM_WALLET)
        assert empty_ledger.list_wallets() == {SYSTEM_WALLET}


class TestWalletRegistration:

    def test_register_wallet(self, empty_ledger):
        assert empty_ledger.register_wallet("alice") == "alice"
        assert empty_ledger.is_registered("alice")

    def test_register_duplicate_wallet_raises(self, empty_ledger):
        empty_ledger.register_wallet("alice")
        with pytest.raises(ValueError, match="already registered"):
            empty_ledger.register_wallet("alice")

    @pytest.mark.parametrize("wallet_id", ["", "   "])
    def test_register_blank_wallet_raises(self, empty_ledger, wallet_id):
        with pytest.raises(ValueError, match="empty"):
            empty_ledger.register_wallet(wallet_id)

    def test_list_wallets_returns_copy(self, empty_ledger):
        wallets = empty_ledger.list_wallets()
        wallets.add("mallory")
        assert not empty_ledger.is_registered("mallory")


class TestUnitRegistration:

    def test_register_unit(self, empty_ledger):
        empty_ledger.register_unit(native())
        assert empty_ledger.has_unit("ETH")
        assert empty_ledger.get_unit("ETH").decimal_places == 18

    def test_register_duplicate_unit_raises(self, empty_ledger):
        empty_ledger.register_unit(native())
        with pytest.raises(ValueError, match="already registered"):
            empty_ledger.register_unit(native())

    def test_get_unit_state_unregistered_raises(self, empty_ledger):
        with pytest.raises(UnitNotRegistered):
            empty_ledger.get_unit_state("LOAN_1")

    def test_get_unit_state_is_a_copy(self, empty_ledger):
        empty_ledger.register_unit(_loan_unit(collateral=Decimal("1")))
        state = empty_ledger.get_unit_state("LOAN_1")
        state["collateral"] = Decimal("0")
        assert empty_ledger.get_unit_state("LOAN_1")["collateral"] == Decimal("1")

    def test_verbose_registration_prints(self, capsys):
        ledger = Ledger("loud", T0, verbose=True)
        ledger.register_unit(native())
        assert "Registered: ETH (Ether) [NATIVE]" in capsys.readouterr().out


class TestBalanceOperations:

    def test_get_balance_default_zero(self, eth_ledger):
        eth_ledger.register_wallet("carol")
        assert eth_ledger.get_balance("carol", "ETH") == Decimal("0")

    def test_get_balance_unregistered_wallet_raises(self, eth_ledger):
        with pytest.raises(WalletNotRegistered):
            eth_ledger.get_balance("mallory", "ETH")

    def test_get_balance_unregistered_unit_raises(self, eth_ledger):
        with pytest.raises(UnitNotRegistered):
            eth_ledger.get_balance("alice", "BTC")

    def test_issue_debits_system_wallet(self, eth_ledger):
        assert eth_ledger.get_balance("alice", "ETH") == Decimal("10")
        assert eth_ledger.get_balance(SYSTEM_WALLET, "ETH") == Decimal("-20")
        assert eth_ledger.total_supply("ETH") == Decimal("0")

    def test_issue_is_logged(self, eth_ledger):
        assert len(eth_ledger.transaction_log) == 2
        assert eth_ledger.transaction_log[0].moves[0].source == SYSTEM_WALLET

    def test_repeated_issue_not_deduplicated(self, eth_ledger):
        """Each issuance is a distinct intent, even with identical amounts."""
        assert eth_ledger.issue("alice", "ETH", Decimal("10")) == ExecuteResult.APPLIED
        assert eth_ledger.get_balance("alice", "ETH") == Decimal("20")

    def test_set_balance_requires_test_mode(self):
        ledger = Ledger("prod", T0, verbose=False)
        ledger.register_unit(native())
        ledger.register_wallet("alice")
        with pytest.raises(LedgerError, match="test_mode"):
            ledger.set_balance("alice", "ETH", Decimal("1"))

    def test_set_balance_in_test_mode(self, eth_ledger):
        eth_ledger.set_balance("alice", "ETH", Decimal("3"))
        assert eth_ledger.get_balance("alice", "ETH") == Decimal("3")
        assert eth_ledger.get_positions("ETH")["alice"] == Decimal("3")

    def test_get_positions_drops_zero(self, eth_ledger):
        tx = build_transaction(eth_ledger, [Move(Decimal("10"), "ETH", "alice", "bob", "all")])
        eth_ledger.execute(tx)
        positions = eth_ledger.get_positions("ETH")
        assert "alice" not in positions
        assert positions["bob"] == Decimal("20")

    def test_get_wallet_balances(self, eth_ledger):
        assert eth_ledger.get_wallet_balances("bob") == {"ETH": Decimal("10")}


class TestTimeManagement:

    def test_advance_time(self, eth_ledger):
        eth_ledger.advance_time(T0 + timedelta(days=1))
        assert eth_ledger.current_time == T0 + timedelta(days=1)

    def test_advance_time_same_time_ok(self, eth_ledger):
        eth_ledger.advance_time(T0)
        assert eth_ledger.current_time == T0

    def test_advance_time_backwards_raises(self, eth_ledger):
        with pytest.raises(ValueError, match="backwards"):
            eth_ledger.advance_time(T0 - timedelta(seconds=1))


# ============================================================================
# EXECUTION
# ============================================================================

class TestTransactionExecution:

    def test_execute_simple_transaction(self, eth_ledger):
        tx = build_transaction(eth_ledger, [Move(Decimal("1.5"), "ETH", "alice", "bob", "pay")])
        assert eth_ledger.execute(tx) == ExecuteResult.APPLIED
        assert eth_ledger.get_balance("alice", "ETH") == Decimal("8.5")
        assert eth_ledger.get_balance("bob", "ETH") == Decimal("11.5")
        assert eth_ledger.last_rejection is None

    def test_execute_idempotency(self, eth_ledger):
        tx = build_transaction(eth_ledger, [Move(Decimal("1"), "ETH", "alice", "bob", "pay")])
        assert eth_ledger.execute(tx) == ExecuteResult.APPLIED
        assert eth_ledger.execute(tx) == ExecuteResult.ALREADY_APPLIED
        assert eth_ledger.get_balance("bob", "ETH") == Decimal("11")

    def test_execute_reject_insufficient_funds(self, eth_ledger):
        tx = build_transaction(eth_ledger, [Move(Decimal("10.000000000000000001"), "ETH", "alice", "bob", "pay")])
        assert eth_ledger.execute(tx) == ExecuteResult.REJECTED
        assert eth_ledger.last_rejection.startswith("insufficient funds: alice ETH")
        assert eth_ledger.get_balance("alice", "ETH") == Decimal("10")

    def test_execute_reject_unregistered_wallet(self, eth_ledger):
        tx = build_transaction(eth_ledger, [Move(Decimal("1"), "ETH", "alice", "mallory", "pay")])
        assert eth_ledger.execute(tx) == ExecuteResult.REJECTED
        assert eth_ledger.last_rejection == "wallet not registered: mallory"

    def test_execute_reject_unregistered_unit(self, eth_ledger):
        tx = build_transaction(eth_ledger, [Move(Decimal("1"), "BTC", "alice", "bob", "pay")])
        assert eth_ledger.execute(tx) == ExecuteResult.REJECTED
        assert eth_ledger.last_rejection == "unit not registered: BTC"

    def test_execute_reject_future_timestamp(self, eth_ledger):
        future_view = FakeView({}, time=T0 + timedelta(days=1))
        tx = build_transaction(future_view, [Move(Decimal("1"), "ETH", "alice", "bob", "pay")])
        assert eth_ledger.execute(tx) == ExecuteResult.REJECTED
        assert eth_ledger.last_rejection == "future timestamp"

    def test_multi_move_atomic(self, eth_ledger):
        """Second move overdraws bob, so the first is not applied either."""
        tx = build_transaction(eth_ledger, [
            Move(Decimal("1"), "ETH", "alice", "bob", "leg_1"),
            Move(Decimal("12"), "ETH", "bob", "alice", "leg_2"),
        ])
        assert eth_ledger.execute(tx) == ExecuteResult.REJECTED
        assert eth_ledger.get_balance("alice", "ETH") == Decimal("10")
        assert eth_ledger.get_balance("bob", "ETH") == Decimal("10")

    def test_loan_unit_cannot_be_moved(self, eth_ledger):
        eth_ledger.register_unit(_loan_unit())
        tx = build_transaction(eth_ledger, [Move(Decimal("1"), "LOAN_1", "alice", "bob", "steal")])
        assert eth_ledger.execute(tx) == ExecuteResult.REJECTED
        assert "cannot be transferred" in eth_ledger.last_rejection

    def test_empty_transaction_is_noop(self, eth_ledger):
        tx = build_transaction(eth_ledger, [])
        assert eth_ledger.execute(tx) == ExecuteResult.APPLIED
        assert len(eth_ledger.transaction_log) == 2

    def test_exec_id_format(self, eth_ledger):
        tx = eth_ledger.transaction_log[1]
        assert tx.exec_id.startswith("exec:test:000000000001:")
        assert tx.sequence_number == 1


class TestStateChanges:

    def test_state_change_applied(self, eth_ledger):
        eth_ledger.register_unit(_loan_unit(is_funded=False))
        old = eth_ledger.get_unit_state("LOAN_1")
        tx = build_transaction(eth_ledger, [], [
            UnitStateChange("LOAN_1", old, {**old, "is_funded": True}),
        ])
        assert eth_ledger.execute(tx) == ExecuteResult.APPLIED
        assert eth_ledger.get_unit_state("LOAN_1")["is_funded"] is True

    def test_stale_snapshot_rejected(self, eth_ledger):
        """Two changes built from the same snapshot: only the first applies."""
        eth_ledger.register_unit(_loan_unit(is_funded=False, lender=None))
        old = eth_ledger.get_unit_state("LOAN_1")
        first = build_transaction(eth_ledger, [], [
            UnitStateChange("LOAN_1", old, {**old, "is_funded": True, "lender": "bob"}),
        ])
        second = build_transaction(eth_ledger, [], [
            UnitStateChange("LOAN_1", old, {**old, "is_funded": True, "lender": "carol"}),
        ])
        assert eth_ledger.execute(first) == ExecuteResult.APPLIED
        assert eth_ledger.execute(second) == ExecuteResult.REJECTED
        assert eth_ledger.last_rejection.startswith("stale state for LOAN_1.")
        assert eth_ledger.get_unit_state("LOAN_1")["lender"] == "bob"

    def test_state_change_unknown_unit_rejected(self, eth_ledger):
        tx = build_transaction(eth_ledger, [], [UnitStateChange("LOAN_9", {}, {"x": 1})])
        assert eth_ledger.execute(tx) == ExecuteResult.REJECTED
        assert eth_ledger.last_rejection == "unit not registered: LOAN_9"


class TestUnitsToCreate:

    def test_unit_created_with_moves(self, eth_ledger):
        eth_ledger.register_wallet("loan_escrow")
        tx = build_transaction(
            eth_ledger,
            [Move(Decimal("1"), "ETH", "alice", "loan_escrow", "collateral_LOAN_1")],
            units_to_create=(_loan_unit(collateral=Decimal("1")),),
        )
        assert eth_ledger.execute(tx) == ExecuteResult.APPLIED
        assert eth_ledger.has_unit("LOAN_1")
        assert eth_ledger.get_balance("loan_escrow", "ETH") == Decimal("1")

    def test_unit_removed_when_moves_rejected(self, eth_ledger):
        eth_ledger.register_wallet("loan_escrow")
        tx = build_transaction(
            eth_ledger,
            [Move(Decimal("100"), "ETH", "alice", "loan_escrow", "collateral_LOAN_1")],
            units_to_create=(_loan_unit(collateral=Decimal("100")),),
        )
        assert eth_ledger.execute(tx) == ExecuteResult.REJECTED
        assert not eth_ledger.has_unit("LOAN_1")

    def test_existing_unit_symbol_rejected(self, eth_ledger):
        eth_ledger.register_unit(_loan_unit())
        tx = build_transaction(eth_ledger, [], units_to_create=(_loan_unit(collateral=Decimal("1")),))
        assert eth_ledger.execute(tx) == ExecuteResult.REJECTED
        assert eth_ledger.last_rejection == "unit already registered: LOAN_1"
        assert eth_ledger.get_unit_state("LOAN_1") == {}


# ============================================================================
# CLONE / CLONE_AT / REPLAY
# ============================================================================

class TestClone:

    def test_clone_creates_independent_copy(self, eth_ledger):
        cloned = eth_ledger.clone()
        tx = build_transaction(cloned, [Move(Decimal("1"), "ETH", "alice", "bob", "pay")])
        cloned.execute(tx)
        assert cloned.get_balance("alice", "ETH") == Decimal("9")
        assert eth_ledger.get_balance("alice", "ETH") == Decimal("10")
        assert len(eth_ledger.transaction_log) == 2


class TestCloneAt:

    def test_clone_at_reconstructs_past(self, eth_ledger):
        eth_ledger.advance_time(T0 + timedelta(days=1))
        tx = build_transaction(eth_ledger, [Move(Decimal("4"), "ETH", "alice", "bob", "pay")])
        eth_ledger.execute(tx)

        past = eth_ledger.clone_at(T0)
        assert past.current_time == T0
        assert past.get_balance("alice", "ETH") == Decimal("10")
        assert past.get_balance("bob", "ETH") == Decimal("10")
        assert len(past.transaction_log) == 2

    def test_clone_at_removes_units_created_later(self, eth_ledger):
        eth_ledger.register_wallet("loan_escrow")
        eth_ledger.advance_time(T0 + timedelta(days=1))
        tx = build_transaction(
            eth_ledger,
            [Move(Decimal("1"), "ETH", "alice", "loan_escrow", "collateral_LOAN_1")],
            units_to_create=(_loan_unit(collateral=Decimal("1")),),
        )
        eth_ledger.execute(tx)

        past = eth_ledger.clone_at(T0)
        assert not past.has_unit("LOAN_1")
        assert past.get_balance("loan_escrow", "ETH") == Decimal("0")

    def test_clone_at_future_raises(self, eth_ledger):
        with pytest.raises(ValueError, match="future"):
            eth_ledger.clone_at(T0 + timedelta(days=1))


class TestReplay:

    def test_replay_recreates_state(self, eth_ledger):
        eth_ledger.advance_time(T0 + timedelta(hours=1))
        eth_ledger.execute(build_transaction(
            eth_ledger, [Move(Decimal("2.5"), "ETH", "alice", "bob", "pay")]
        ))
        replayed = eth_ledger.replay()
        assert replayed.name == "test_replayed"
        assert replayed.current_time == eth_ledger.current_time
        for wallet in eth_ledger.list_wallets():
            assert replayed.get_balance(wallet, "ETH") == eth_ledger.get_balance(wallet, "ETH")

    def test_replay_does_not_reproduce_set_balance(self, eth_ledger):
        eth_ledger.set_balance("alice", "ETH", Decimal("99"))
        replayed = eth_ledger.replay()
        assert replayed.get_balance("alice", "ETH") == Decimal("10")


class TestVerifyDoubleEntry:

    def test_issued_supply_sums_to_zero(self, eth_ledger):
        result = eth_ledger.verify_double_entry({"ETH": Decimal("0")})
        assert result['valid']
        assert result['supplies']["ETH"] == Decimal("0")

    def test_set_balance_breaks_conservation(self, eth_ledger):
        eth_ledger.set_balance("alice", "ETH", Decimal("11"))
        result = eth_ledger.verify_double_entry({"ETH": Decimal("0")})
        assert not result['valid']
        assert result['discrepancies'][0]['difference'] == Decimal("1")

    def test_unknown_expected_unit_reported(self, eth_ledger):
        result = eth_ledger.verify_double_entry({"BTC": Decimal("0")})
        assert not result['valid']
        assert result['discrepancies'][0]['error'] == 'unit not registered'
