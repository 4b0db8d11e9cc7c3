"""
LedgerManager：回合生命週期與帳務
"""
import pytest

from core.credit_issuer import CreditIssuer
from core.entropy import FixedEntropySource
from core.ledger_manager import LedgerManager
from core.exceptions import (
    InvalidLedgerConfig,
    LedgerNotFound,
    Unauthorized,
    RoundAlreadyOpen,
    RoundClosed,
    RoundAlreadyClosed,
    TooEarly,
    InvalidDeadline,
    InvalidStakeCount,
    StakeSlotNotFound,
    InsufficientCredit,
    InsufficientAllowance,
    InsufficientBalance,
    DepositRequired,
    NothingToWithdraw,
    NoBalance,
)
from models import EventLog, Payable, RoundStatus
from tests.conftest import PRICE, FEE, COST, OPERATOR, START


def _ledger(db, ledger_id):
    return LedgerManager.get_ledger(db, ledger_id)


# ============ 部署 ============

class TestDeploy:
    def test_deploy_starts_closed_with_empty_pools(self, db, ledger_id):
        ledger = _ledger(db, ledger_id)
        assert ledger.round_status == RoundStatus.CLOSED
        assert ledger.is_round_open is False
        assert ledger.prize_pool == 0
        assert ledger.operator_pool == 0
        assert ledger.stake_cost == COST
        assert ledger.account == f"ledger:{ledger_id}"
        assert LedgerManager.stake_count(db, ledger_id) == 0

    @pytest.mark.parametrize("price,fee,ratio,operator", [
        (-1, FEE, 1, OPERATOR),
        (PRICE, -1, 1, OPERATOR),
        (PRICE, FEE, 0, OPERATOR),
        (PRICE, FEE, 1, ""),
    ])
    def test_deploy_rejects_invalid_config(self, db, manager, price, fee, ratio, operator):
        with pytest.raises(InvalidLedgerConfig):
            manager.deploy(
                db, stake_price=price, stake_fee=fee,
                credit_ratio=ratio, operator_identity=operator
            )

    def test_unknown_ledger(self, db, manager):
        with pytest.raises(LedgerNotFound):
            manager.open_round(db, "missing", OPERATOR, START + 60)
        with pytest.raises(LedgerNotFound):
            LedgerManager.get_ledger(db, "missing")


# ============ 開啟回合 ============

class TestOpenRound:
    def test_only_operator_can_open(self, db, manager, ledger_id):
        with pytest.raises(Unauthorized):
            manager.open_round(db, ledger_id, "alice", START + 60)
        assert _ledger(db, ledger_id).is_round_open is False

    def test_cannot_open_while_open(self, db, manager, ledger_id, open_round):
        open_round()
        with pytest.raises(RoundAlreadyOpen):
            manager.open_round(db, ledger_id, OPERATOR, START + 120)

    @pytest.mark.parametrize("offset", [0, -1, -60])
    def test_deadline_must_be_in_future(self, db, manager, ledger_id, offset):
        with pytest.raises(InvalidDeadline):
            manager.open_round(db, ledger_id, OPERATOR, START + offset)
        assert _ledger(db, ledger_id).is_round_open is False

    def test_open_sets_flag_and_deadline(self, db, manager, ledger_id):
        manager.open_round(db, ledger_id, OPERATOR, START + 60)
        ledger = _ledger(db, ledger_id)
        assert ledger.is_round_open is True
        assert ledger.round_deadline == START + 60
        assert ledger.round_number == 1


# ============ 下注 ============

class TestStake:
    def test_stake_requires_open_round(self, db, manager, ledger_id, fund):
        fund("alice", COST)
        with pytest.raises(RoundClosed):
            manager.place_stake(db, ledger_id, "alice")

    def test_stake_rejected_at_deadline(self, db, manager, ledger_id, fund, open_round, clock):
        fund("alice", COST)
        deadline = open_round()
        clock.set(deadline)
        with pytest.raises(RoundClosed):
            manager.place_stake(db, ledger_id, "alice")

    def test_stake_requires_credit(self, db, manager, ledger_id, open_round):
        open_round()
        with pytest.raises(InsufficientCredit):
            manager.place_stake(db, ledger_id, "bob")

    def test_stake_requires_allowance(self, db, manager, ledger_id, fund, open_round):
        fund("alice", COST, approve=False)
        open_round()
        with pytest.raises(InsufficientAllowance):
            manager.place_stake(db, ledger_id, "alice")
        assert LedgerManager.stake_count(db, ledger_id) == 0

    def test_stake_moves_credits_and_updates_pools(self, db, manager, ledger_id, fund, open_round):
        fund("alice", 3 * COST)
        open_round()

        manager.place_stake(db, ledger_id, "alice")

        ledger = _ledger(db, ledger_id)
        assert ledger.prize_pool == PRICE
        assert ledger.operator_pool == FEE
        assert LedgerManager.stake_count(db, ledger_id) == 1
        assert LedgerManager.stake_at(db, ledger_id, 0) == "alice"
        assert LedgerManager.balance_of(db, ledger_id, "alice") == 2 * COST
        assert LedgerManager.balance_of(db, ledger_id, ledger.account) == COST
        assert LedgerManager.allowance_of(db, ledger_id, "alice") == 2 * COST

    def test_pools_track_stake_count(self, db, manager, ledger_id, fund, open_round):
        fund("alice", 10 * COST)
        fund("bob", 10 * COST)
        open_round()

        for identity in ["alice", "bob", "alice", "bob", "bob"]:
            manager.place_stake(db, ledger_id, identity)
            ledger = _ledger(db, ledger_id)
            count = LedgerManager.stake_count(db, ledger_id)
            assert ledger.prize_pool == PRICE * count
            assert ledger.operator_pool == FEE * count

        assert [LedgerManager.stake_at(db, ledger_id, i) for i in range(5)] == [
            "alice", "bob", "alice", "bob", "bob"
        ]

    def test_stake_at_out_of_range(self, db, ledger_id):
        with pytest.raises(StakeSlotNotFound):
            LedgerManager.stake_at(db, ledger_id, 0)

    def test_failed_transfer_reverts_stake(self, db, manager, ledger_id, fund, open_round, monkeypatch):
        fund("alice", COST)
        open_round()

        def failing_transfer_from(self, spender, payer, payee, amount):
            raise InsufficientBalance("transfer rejected")

        monkeypatch.setattr(CreditIssuer, "transfer_from", failing_transfer_from)

        with pytest.raises(InsufficientBalance):
            manager.place_stake(db, ledger_id, "alice")

        ledger = _ledger(db, ledger_id)
        assert LedgerManager.stake_count(db, ledger_id) == 0
        assert ledger.prize_pool == 0
        assert ledger.operator_pool == 0
        assert LedgerManager.balance_of(db, ledger_id, "alice") == COST


class TestStakeMany:
    def test_many_stakes(self, db, manager, ledger_id, fund, open_round):
        fund("alice", 5 * COST)
        open_round()

        manager.place_many_stakes(db, ledger_id, "alice", 5)

        ledger = _ledger(db, ledger_id)
        assert LedgerManager.stake_count(db, ledger_id) == 5
        assert ledger.prize_pool == 5 * PRICE
        assert ledger.operator_pool == 5 * FEE
        assert LedgerManager.balance_of(db, ledger_id, "alice") == 0

    def test_many_stakes_fail_atomically(self, db, manager, ledger_id, fund, open_round):
        fund("alice", 4 * COST)
        open_round()
        manager.place_stake(db, ledger_id, "alice")
        before = LedgerManager.stake_count(db, ledger_id)

        with pytest.raises(InsufficientCredit):
            manager.place_many_stakes(db, ledger_id, "alice", 5)

        assert LedgerManager.stake_count(db, ledger_id) == before
        assert _ledger(db, ledger_id).prize_pool == PRICE
        assert LedgerManager.balance_of(db, ledger_id, "alice") == 3 * COST

    def test_exact_scenario_five_with_four_funded(self, db, manager, ledger_id, fund, open_round):
        fund("alice", 4 * COST)
        open_round()

        with pytest.raises(InsufficientCredit):
            manager.place_many_stakes(db, ledger_id, "alice", 5)

        assert LedgerManager.stake_count(db, ledger_id) == 0

    @pytest.mark.parametrize("count", [0, -3])
    def test_count_must_be_positive(self, db, manager, ledger_id, fund, open_round, count):
        fund("alice", COST)
        open_round()
        with pytest.raises(InvalidStakeCount):
            manager.place_many_stakes(db, ledger_id, "alice", count)


# ============ 結算 ============

class TestCloseRound:
    def test_close_without_open_round(self, db, manager, ledger_id):
        with pytest.raises(RoundAlreadyClosed):
            manager.close_round(db, ledger_id)

    def test_close_before_deadline(self, db, manager, ledger_id, open_round, clock):
        deadline = open_round()
        clock.set(deadline - 1)
        with pytest.raises(TooEarly):
            manager.close_round(db, ledger_id)
        assert _ledger(db, ledger_id).is_round_open is True

    def test_single_participant_scenario(self, db, manager, ledger_id, fund, open_round, clock):
        fund("alice", COST)
        deadline = open_round()
        manager.place_stake(db, ledger_id, "alice")

        ledger = _ledger(db, ledger_id)
        assert ledger.prize_pool == 800_000
        assert ledger.operator_pool == 200_000

        clock.set(deadline)
        outcome = manager.close_round(db, ledger_id)

        assert outcome.winner == "alice"
        assert outcome.prize == 800_000
        ledger = _ledger(db, ledger_id)
        assert ledger.is_round_open is False
        assert ledger.prize_pool == 0
        assert ledger.operator_pool == 200_000
        assert LedgerManager.stake_count(db, ledger_id) == 0
        assert LedgerManager.payable_of(db, ledger_id, "alice") == 800_000

        paid = manager.withdraw_as_winner(db, ledger_id, "alice")
        assert paid == 800_000
        assert LedgerManager.balance_of(db, ledger_id, "alice") == 800_000

    def test_winner_is_entropy_mod_slot_count(self, db, clock, ledger_id, fund, open_round):
        manager = LedgerManager(clock=clock, entropy=FixedEntropySource([5]))
        for identity in ["alice", "bob", "carol"]:
            fund(identity, COST)
        deadline = open_round()
        for identity in ["alice", "bob", "carol"]:
            manager.place_stake(db, ledger_id, identity)

        clock.set(deadline + 10)
        outcome = manager.close_round(db, ledger_id)

        assert outcome.winning_index == 2
        assert outcome.winner == "carol"
        assert LedgerManager.payable_of(db, ledger_id, "carol") == 3 * PRICE
        assert LedgerManager.payable_of(db, ledger_id, "alice") == 0
        assert LedgerManager.payable_of(db, ledger_id, "bob") == 0

    def test_close_empty_round(self, db, manager, ledger_id, open_round, clock):
        deadline = open_round()
        clock.set(deadline)

        outcome = manager.close_round(db, ledger_id)

        assert outcome.winner is None
        assert outcome.stake_count == 0
        assert db.query(Payable).count() == 0
        assert _ledger(db, ledger_id).is_round_open is False

    def test_payable_accumulates_across_rounds(self, db, manager, ledger_id, fund, open_round, clock):
        fund("alice", 2 * COST)
        for _ in range(2):
            deadline = open_round()
            manager.place_stake(db, ledger_id, "alice")
            clock.set(deadline)
            manager.close_round(db, ledger_id)

        ledger = _ledger(db, ledger_id)
        assert ledger.round_number == 2
        assert ledger.operator_pool == 2 * FEE
        assert LedgerManager.payable_of(db, ledger_id, "alice") == 2 * PRICE

    def test_close_records_event(self, db, manager, ledger_id, fund, open_round, clock):
        fund("alice", COST)
        deadline = open_round()
        manager.place_stake(db, ledger_id, "alice")
        clock.set(deadline)
        manager.close_round(db, ledger_id)

        event = db.query(EventLog).filter(EventLog.event_type == "ROUND_CLOSED").one()
        assert event.data["winner"] == "alice"
        assert event.data["prize"] == PRICE
        assert event.data["closed_at"] == deadline


# ============ 提領 ============

class TestWithdraw:
    def _settle(self, db, manager, ledger_id, fund, open_round, clock):
        fund("alice", COST)
        deadline = open_round()
        manager.place_stake(db, ledger_id, "alice")
        clock.set(deadline)
        manager.close_round(db, ledger_id)

    def test_nothing_to_withdraw(self, db, manager, ledger_id):
        with pytest.raises(NothingToWithdraw):
            manager.withdraw_as_winner(db, ledger_id, "alice")

    def test_second_withdraw_fails(self, db, manager, ledger_id, fund, open_round, clock):
        self._settle(db, manager, ledger_id, fund, open_round, clock)

        assert manager.withdraw_as_winner(db, ledger_id, "alice") == PRICE
        assert LedgerManager.payable_of(db, ledger_id, "alice") == 0
        with pytest.raises(NothingToWithdraw):
            manager.withdraw_as_winner(db, ledger_id, "alice")
        assert LedgerManager.balance_of(db, ledger_id, "alice") == PRICE

    def test_payable_is_zero_when_transfer_runs(
        self, db, manager, ledger_id, fund, open_round, clock, monkeypatch
    ):
        self._settle(db, manager, ledger_id, fund, open_round, clock)
        seen = []
        original = CreditIssuer.transfer

        def observing_transfer(self, sender, payee, amount):
            row = self.db.query(Payable).filter(Payable.identity == payee).first()
            seen.append(row.amount)
            return original(self, sender, payee, amount)

        monkeypatch.setattr(CreditIssuer, "transfer", observing_transfer)
        manager.withdraw_as_winner(db, ledger_id, "alice")

        assert seen == [0]

    def test_operator_withdraw_requires_operator(self, db, manager, ledger_id):
        with pytest.raises(Unauthorized):
            manager.withdraw_as_operator(db, ledger_id, "alice")

    def test_operator_withdraw_resets_pool(self, db, manager, ledger_id, fund, open_round, clock):
        fund("alice", 3 * COST)
        deadline = open_round()
        manager.place_many_stakes(db, ledger_id, "alice", 2)

        assert manager.withdraw_as_operator(db, ledger_id, OPERATOR) == 2 * FEE
        assert _ledger(db, ledger_id).operator_pool == 0
        assert LedgerManager.balance_of(db, ledger_id, OPERATOR) == 2 * FEE

        manager.place_stake(db, ledger_id, "alice")
        assert _ledger(db, ledger_id).operator_pool == FEE

        clock.set(deadline)
        manager.close_round(db, ledger_id)
        assert _ledger(db, ledger_id).operator_pool == FEE

    def test_transfer_operator(self, db, manager, ledger_id):
        with pytest.raises(Unauthorized):
            manager.transfer_operator(db, ledger_id, "alice", "alice")

        manager.transfer_operator(db, ledger_id, OPERATOR, "alice")

        assert _ledger(db, ledger_id).operator_identity == "alice"
        with pytest.raises(Unauthorized):
            manager.open_round(db, ledger_id, OPERATOR, START + 60)
        manager.open_round(db, ledger_id, "alice", START + 60)


# ============ Credit ============

class TestCredits:
    def test_purchase_requires_deposit(self, db, manager, ledger_id):
        with pytest.raises(DepositRequired):
            manager.purchase_credits(db, ledger_id, "alice", 0)

    def test_purchase_mints_at_ratio(self, db, manager):
        ledger = manager.deploy(db, stake_price=PRICE, stake_fee=FEE,
                                credit_ratio=2, operator_identity=OPERATOR)
        minted = manager.purchase_credits(db, ledger.id, "alice", 2_000_000)

        assert minted == 4_000_000
        assert LedgerManager.balance_of(db, ledger.id, "alice") == 4_000_000
        assert _ledger(db, ledger.id).base_reserve == 2_000_000

    def test_redeem_requires_balance(self, db, manager, ledger_id):
        with pytest.raises(NoBalance):
            manager.redeem_all_credits(db, ledger_id, "alice")

    def test_redeem_burns_full_balance(self, db, manager):
        ledger = manager.deploy(db, stake_price=PRICE, stake_fee=FEE,
                                credit_ratio=2, operator_identity=OPERATOR)
        manager.purchase_credits(db, ledger.id, "alice", 5_000_000)

        payout = manager.redeem_all_credits(db, ledger.id, "alice")

        assert payout == 5_000_000
        assert LedgerManager.balance_of(db, ledger.id, "alice") == 0
        assert _ledger(db, ledger.id).base_reserve == 0
        with pytest.raises(NoBalance):
            manager.redeem_all_credits(db, ledger.id, "alice")

    def test_winnings_can_be_redeemed(self, db, manager, ledger_id, fund, open_round, clock):
        fund("alice", COST)
        fund("bob", COST)
        deadline = open_round()
        manager.place_stake(db, ledger_id, "alice")
        manager.place_stake(db, ledger_id, "bob")
        clock.set(deadline)
        outcome = manager.close_round(db, ledger_id)

        manager.withdraw_as_winner(db, ledger_id, outcome.winner)
        payout = manager.redeem_all_credits(db, ledger_id, outcome.winner)

        assert payout == 2 * PRICE
        assert _ledger(db, ledger_id).base_reserve == 2 * COST - 2 * PRICE


# ============ 帳本帳戶不能當成呼叫者 ============

class TestLedgerAccountIdentity:
    def _settle_two(self, db, manager, ledger_id, fund, open_round, clock):
        fund("alice", COST)
        fund("bob", COST)
        deadline = open_round()
        manager.place_stake(db, ledger_id, "alice")
        manager.place_stake(db, ledger_id, "bob")
        clock.set(deadline)
        return manager.close_round(db, ledger_id)

    def test_redeem_as_ledger_account_rejected(self, db, manager, ledger_id, fund, open_round, clock):
        outcome = self._settle_two(db, manager, ledger_id, fund, open_round, clock)
        account = _ledger(db, ledger_id).account

        with pytest.raises(Unauthorized):
            manager.redeem_all_credits(db, ledger_id, account)

        assert LedgerManager.balance_of(db, ledger_id, account) == 2 * COST
        assert manager.withdraw_as_winner(db, ledger_id, outcome.winner) == 2 * PRICE
        assert manager.withdraw_as_operator(db, ledger_id, OPERATOR) == 2 * FEE
        assert LedgerManager.balance_of(db, ledger_id, account) == 0

    def test_commands_reject_ledger_account(self, db, manager, ledger_id, open_round):
        account = _ledger(db, ledger_id).account
        open_round()

        with pytest.raises(Unauthorized):
            manager.purchase_credits(db, ledger_id, account, COST)
        with pytest.raises(Unauthorized):
            manager.approve(db, ledger_id, account, COST)
        with pytest.raises(Unauthorized):
            manager.place_stake(db, ledger_id, account)
        with pytest.raises(Unauthorized):
            manager.place_many_stakes(db, ledger_id, account, 2)
        with pytest.raises(Unauthorized):
            manager.withdraw_as_winner(db, ledger_id, account)
        with pytest.raises(Unauthorized):
            manager.transfer_operator(db, ledger_id, OPERATOR, account)

        ledger = _ledger(db, ledger_id)
        assert ledger.base_reserve == 0
        assert ledger.operator_identity == OPERATOR
        assert LedgerManager.stake_count(db, ledger_id) == 0


class TestOperatorWithdrawOrdering:
    def test_operator_pool_is_zero_when_transfer_runs(
        self, db, manager, ledger_id, fund, open_round, monkeypatch
    ):
        fund("alice", 2 * COST)
        open_round()
        manager.place_many_stakes(db, ledger_id, "alice", 2)
        seen = []
        original = CreditIssuer.transfer

        def observing_transfer(self, sender, payee, amount):
            seen.append((LedgerManager.get_ledger(self.db, ledger_id).operator_pool, amount))
            return original(self, sender, payee, amount)

        monkeypatch.setattr(CreditIssuer, "transfer", observing_transfer)
        manager.withdraw_as_operator(db, ledger_id, OPERATOR)

        assert seen == [(0, 2 * FEE)]
