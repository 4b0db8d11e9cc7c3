"""
Ledger Manager：管理下注回合的完整生命週期與帳務

職責：
1. 部署帳本（固定價格、手續費、兌換比例、operator）
2. 開啟回合 -> 接受下注 -> 截止後結算 -> 贏家提領
3. 三個獨立的餘額：prize_pool（本回合獎池）、operator_pool（手續費累積）、
   payable（每個贏家可領取的獎金）

原則：
- 所有狀態變更都在一個 transaction 內完成（@transactional），失敗就整筆 rollback
- 先檢查、再改帳本狀態、最後才呼叫 CreditIssuer 轉帳（checks-effects-interactions）
- 不快取任何 credit 餘額，一律透過 CreditIssuer 查詢
- 時間與隨機來源都是注入的，測試可以替換
"""
from dataclasses import dataclass
from typing import Optional
import logging

from sqlalchemy.orm import Session

from models import Ledger, StakeSlot, Payable, RoundStatus, EventLog
from core.clock import Clock, SystemClock
from core.entropy import RandomnessSource, build_entropy_source, select_winner_index
from core.credit_issuer import CreditIssuer
from core.state_machine import LedgerStateMachine
from core.locks import with_ledger_lock, with_payable_lock
from core.exceptions import (
    LedgerNotFound,
    InvalidLedgerConfig,
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
    DepositRequired,
    InsufficientReserve,
    NothingToWithdraw,
    NoBalance,
)
from config import get_settings
from database import transactional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoundOutcome:
    """一次結算的結果（沒有下注時 winner 為 None）"""
    round_number: int
    stake_count: int
    prize: int
    winner: Optional[str]
    winning_index: Optional[int]


class LedgerManager:
    """帳本生命週期管理器"""

    def __init__(self, clock: Optional[Clock] = None, entropy: Optional[RandomnessSource] = None):
        self.clock = clock or SystemClock()
        self.entropy = entropy or build_entropy_source(get_settings().entropy_source, self.clock)

    # ============ 部署 ============

    @transactional
    def deploy(
        self,
        db: Session,
        stake_price: int,
        stake_fee: int,
        credit_ratio: int,
        operator_identity: str,
        credit_name: str = "Lottery Token",
        credit_symbol: str = "LT0",
    ) -> Ledger:
        """
        建立新帳本

        參數：
            stake_price: 每注進入獎池的部分（base units）
            stake_fee: 每注進入 operator_pool 的部分（base units）
            credit_ratio: 每單位 base currency 可換到的 credit 數量
            operator_identity: 可以開啟回合、提領手續費的身分

        異常：
            InvalidLedgerConfig: 參數不合法
        """
        if stake_price < 0 or stake_fee < 0:
            raise InvalidLedgerConfig("Stake price and fee must be non-negative")
        if credit_ratio < 1:
            raise InvalidLedgerConfig("Credit ratio must be at least 1")
        if not operator_identity:
            raise InvalidLedgerConfig("Operator identity is required")

        ledger = Ledger(
            credit_name=credit_name,
            credit_symbol=credit_symbol,
            credit_ratio=credit_ratio,
            stake_price=stake_price,
            stake_fee=stake_fee,
            operator_identity=operator_identity,
            round_status=RoundStatus.CLOSED,
            round_number=0,
            prize_pool=0,
            operator_pool=0,
            base_reserve=0,
        )
        db.add(ledger)
        db.flush()  # 取得 ledger.id

        db.add(EventLog(
            ledger_id=ledger.id,
            event_type="LEDGER_DEPLOYED",
            data={
                "stake_price": stake_price,
                "stake_fee": stake_fee,
                "credit_ratio": credit_ratio,
                "operator": operator_identity,
                "credit_symbol": credit_symbol,
            }
        ))

        logger.info(
            f"Deployed ledger {ledger.id} ({credit_symbol}) "
            f"price={stake_price} fee={stake_fee} ratio={credit_ratio}"
        )
        return ledger

    # ============ 回合生命週期 ============

    @transactional
    def open_round(self, db: Session, ledger_id: str, caller: str, deadline: int) -> Ledger:
        """
        開啟回合（狀態轉換 CLOSED -> OPEN）

        異常：
            Unauthorized: caller 不是 operator
            RoundAlreadyOpen: 已有進行中的回合
            InvalidDeadline: deadline 不在未來
        """
        ledger = self._lock(db, ledger_id)
        self._require_operator(ledger, caller)

        if ledger.is_round_open:
            raise RoundAlreadyOpen(f"Ledger {ledger_id} already has an open round")

        now = self.clock.now()
        if deadline <= now:
            raise InvalidDeadline(f"Deadline {deadline} must be after {now}")

        LedgerStateMachine.transition(ledger, RoundStatus.OPEN, db)
        ledger.round_deadline = deadline

        db.add(EventLog(
            ledger_id=ledger.id,
            event_type="ROUND_OPENED",
            data={"round_number": ledger.round_number, "deadline": deadline}
        ))
        return ledger

    @transactional
    def place_stake(self, db: Session, ledger_id: str, identity: str) -> Ledger:
        """下一注（等同 place_many_stakes(count=1)）"""
        return self._stake(db, ledger_id, identity, 1)

    @transactional
    def place_many_stakes(self, db: Session, ledger_id: str, identity: str, count: int) -> Ledger:
        """
        一次下 count 注

        總成本 count * (price + fee) 先整體檢查，不足就整筆拒絕，
        不會只套用其中幾注
        """
        return self._stake(db, ledger_id, identity, count)

    def _stake(self, db: Session, ledger_id: str, identity: str, count: int) -> Ledger:
        if count < 1:
            raise InvalidStakeCount(f"Stake count must be at least 1, got {count}")

        ledger = self._lock(db, ledger_id)
        self._require_participant(ledger, identity)
        if not ledger.is_round_open or self.clock.now() >= ledger.round_deadline:
            raise RoundClosed(f"Ledger {ledger_id} is not accepting stakes")

        issuer = CreditIssuer.for_ledger(db, ledger)
        total = ledger.stake_cost * count

        # 1. 檢查：餘額、授權
        balance = issuer.balance_of(identity)
        if balance < total:
            raise InsufficientCredit(
                f"{identity} holds {balance} credits, {count} stake(s) cost {total}"
            )
        allowed = issuer.allowance(identity, ledger.account)
        if allowed < total:
            raise InsufficientAllowance(
                f"{identity} approved {allowed} credits, {count} stake(s) cost {total}"
            )

        # 2. 帳本狀態
        start = len(ledger.stake_slots)
        for offset in range(count):
            ledger.stake_slots.append(StakeSlot(position=start + offset, identity=identity))
        ledger.prize_pool += ledger.stake_price * count
        ledger.operator_pool += ledger.stake_fee * count

        db.add(EventLog(
            ledger_id=ledger.id,
            event_type="STAKES_PLACED",
            data={
                "identity": identity,
                "count": count,
                "round_number": ledger.round_number,
            }
        ))
        db.flush()

        # 3. 轉帳
        issuer.transfer_from(ledger.account, identity, ledger.account, total)

        logger.info(
            f"{identity} placed {count} stake(s) on ledger {ledger_id} "
            f"(prize_pool={ledger.prize_pool}, slots={len(ledger.stake_slots)})"
        )
        return ledger

    @transactional
    def close_round(self, db: Session, ledger_id: str) -> RoundOutcome:
        """
        結算回合（狀態轉換 OPEN -> CLOSED），任何人都可以呼叫

        流程：
        1. 檢查回合已開啟且已過截止時間
        2. 有下注時：index = entropy % 下注數，獎池記入贏家的 payable
        3. 清空下注、prize_pool 歸零（operator_pool 不動）

        異常：
            RoundAlreadyClosed: 沒有進行中的回合
            TooEarly: 尚未到截止時間
        """
        ledger = self._lock(db, ledger_id)
        if not ledger.is_round_open:
            raise RoundAlreadyClosed(f"Ledger {ledger_id} has no open round")

        now = self.clock.now()
        if now < ledger.round_deadline:
            raise TooEarly(f"Round closes at {ledger.round_deadline}, now {now}")

        slots = list(ledger.stake_slots)
        prize = ledger.prize_pool
        winner = None
        winning_index = None

        if slots:
            winning_index = select_winner_index(self.entropy.next(), len(slots))
            winner = slots[winning_index].identity
            payable = with_payable_lock(ledger.id, winner, db).first()
            if payable is None:
                payable = Payable(ledger_id=ledger.id, identity=winner, amount=0)
                db.add(payable)
            payable.amount += prize

        outcome = RoundOutcome(
            round_number=ledger.round_number,
            stake_count=len(slots),
            prize=prize,
            winner=winner,
            winning_index=winning_index,
        )

        LedgerStateMachine.transition(ledger, RoundStatus.CLOSED, db)
        ledger.stake_slots.clear()
        ledger.prize_pool = 0

        db.add(EventLog(
            ledger_id=ledger.id,
            event_type="ROUND_CLOSED",
            data={
                "round_number": outcome.round_number,
                "stake_count": outcome.stake_count,
                "prize": outcome.prize,
                "winner": outcome.winner,
                "winning_index": outcome.winning_index,
                "closed_at": now,
            }
        ))

        if winner is None:
            logger.info(f"Closed round {outcome.round_number} of ledger {ledger_id} with no stakes")
        else:
            logger.info(
                f"Closed round {outcome.round_number} of ledger {ledger_id}: "
                f"{winner} wins {prize} (index {winning_index} of {len(slots)})"
            )
        return outcome

    # ============ 提領 ============

    @transactional
    def withdraw_as_winner(self, db: Session, ledger_id: str, identity: str) -> int:
        """
        贏家提領全部 payable

        payable 先歸零，再從帳本帳戶轉出，重複呼叫只會看到 0

        異常：
            NothingToWithdraw: 沒有可領取的獎金
        """
        ledger = self._lock(db, ledger_id)
        self._require_participant(ledger, identity)
        payable = with_payable_lock(ledger.id, identity, db).first()
        if payable is None or payable.amount == 0:
            raise NothingToWithdraw(f"{identity} has nothing to withdraw")

        amount = payable.amount
        payable.amount = 0
        db.add(EventLog(
            ledger_id=ledger.id,
            event_type="WINNER_WITHDREW",
            data={"identity": identity, "amount": amount}
        ))
        db.flush()

        CreditIssuer.for_ledger(db, ledger).transfer(ledger.account, identity, amount)

        logger.info(f"{identity} withdrew {amount} credits from ledger {ledger_id}")
        return amount

    @transactional
    def withdraw_as_operator(self, db: Session, ledger_id: str, caller: str) -> int:
        """
        operator 提領全部手續費，operator_pool 歸零

        異常：
            Unauthorized: caller 不是 operator
        """
        ledger = self._lock(db, ledger_id)
        self._require_operator(ledger, caller)

        amount = ledger.operator_pool
        ledger.operator_pool = 0
        db.add(EventLog(
            ledger_id=ledger.id,
            event_type="OPERATOR_WITHDREW",
            data={"identity": caller, "amount": amount}
        ))
        db.flush()

        CreditIssuer.for_ledger(db, ledger).transfer(ledger.account, caller, amount)

        logger.info(f"Operator {caller} withdrew {amount} credits from ledger {ledger_id}")
        return amount

    @transactional
    def transfer_operator(self, db: Session, ledger_id: str, caller: str, new_operator: str) -> Ledger:
        """
        轉移 operator 身分

        異常：
            Unauthorized: caller 不是 operator
            InvalidLedgerConfig: new_operator 為空
        """
        ledger = self._lock(db, ledger_id)
        self._require_operator(ledger, caller)
        if not new_operator:
            raise InvalidLedgerConfig("New operator identity is required")
        self._require_participant(ledger, new_operator)

        previous = ledger.operator_identity
        ledger.operator_identity = new_operator
        db.add(EventLog(
            ledger_id=ledger.id,
            event_type="OPERATOR_TRANSFERRED",
            data={"from": previous, "to": new_operator}
        ))

        logger.info(f"Ledger {ledger_id} operator transferred from {previous} to {new_operator}")
        return ledger

    # ============ Credit ============

    @transactional
    def purchase_credits(self, db: Session, ledger_id: str, identity: str, deposit: int) -> int:
        """
        存入 base currency，依比例取得 credit

        返回：
            取得的 credit 數量

        異常：
            DepositRequired: deposit <= 0
        """
        if deposit <= 0:
            raise DepositRequired("A base-currency deposit is required to purchase credits")

        ledger = self._lock(db, ledger_id)
        self._require_participant(ledger, identity)
        ledger.base_reserve += deposit
        return CreditIssuer.for_ledger(db, ledger).mint_against_deposit(identity, deposit)

    @transactional
    def approve(self, db: Session, ledger_id: str, identity: str, amount: int) -> int:
        """授權帳本從 identity 扣款（下注時使用），返回新的授權額度"""
        ledger = self._lock(db, ledger_id)
        self._require_participant(ledger, identity)
        CreditIssuer.for_ledger(db, ledger).approve(identity, ledger.account, amount)
        return amount

    @transactional
    def redeem_all_credits(self, db: Session, ledger_id: str, identity: str) -> int:
        """
        燒掉 identity 全部的 credit，從帳本的 reserve 兌回 base currency

        返回：
            兌回的 base currency 數量

        異常：
            NoBalance: 沒有 credit
            InsufficientReserve: reserve 不足
        """
        ledger = self._lock(db, ledger_id)
        self._require_participant(ledger, identity)
        issuer = CreditIssuer.for_ledger(db, ledger)

        credits = issuer.balance_of(identity)
        if credits == 0:
            raise NoBalance(f"{identity} holds no credits")

        payout = credits // ledger.credit_ratio
        if payout > ledger.base_reserve:
            raise InsufficientReserve(
                f"Ledger reserve {ledger.base_reserve} cannot cover {payout}"
            )

        ledger.base_reserve -= payout
        db.add(EventLog(
            ledger_id=ledger.id,
            event_type="CREDITS_REDEEMED",
            data={"identity": identity, "credits": credits, "base_amount": payout}
        ))
        db.flush()

        issuer.burn_for_redeem(identity, credits)

        logger.info(f"{identity} redeemed {credits} credits for {payout} on ledger {ledger_id}")
        return payout

    # ============ 查詢 ============

    @staticmethod
    def get_ledger(db: Session, ledger_id: str) -> Ledger:
        """
        透過 id 取得 Ledger

        異常：
            LedgerNotFound: Ledger 不存在
        """
        ledger = db.query(Ledger).filter(Ledger.id == ledger_id).first()
        if not ledger:
            raise LedgerNotFound(ledger_id)
        return ledger

    @staticmethod
    def stake_count(db: Session, ledger_id: str) -> int:
        LedgerManager.get_ledger(db, ledger_id)
        return db.query(StakeSlot).filter(StakeSlot.ledger_id == ledger_id).count()

    @staticmethod
    def stake_at(db: Session, ledger_id: str, index: int) -> str:
        """
        取得本回合第 index 注的下注者

        異常：
            StakeSlotNotFound: index 超出範圍
        """
        LedgerManager.get_ledger(db, ledger_id)
        slot = db.query(StakeSlot).filter(
            StakeSlot.ledger_id == ledger_id,
            StakeSlot.position == index
        ).first()
        if not slot:
            raise StakeSlotNotFound(index)
        return slot.identity

    @staticmethod
    def payable_of(db: Session, ledger_id: str, identity: str) -> int:
        LedgerManager.get_ledger(db, ledger_id)
        payable = db.query(Payable).filter(
            Payable.ledger_id == ledger_id,
            Payable.identity == identity
        ).first()
        return payable.amount if payable else 0

    @staticmethod
    def balance_of(db: Session, ledger_id: str, identity: str) -> int:
        ledger = LedgerManager.get_ledger(db, ledger_id)
        return CreditIssuer.for_ledger(db, ledger).balance_of(identity)

    @staticmethod
    def allowance_of(db: Session, ledger_id: str, identity: str) -> int:
        ledger = LedgerManager.get_ledger(db, ledger_id)
        return CreditIssuer.for_ledger(db, ledger).allowance(identity, ledger.account)

    # ============ 內部 ============

    @staticmethod
    def _lock(db: Session, ledger_id: str) -> Ledger:
        ledger = with_ledger_lock(ledger_id, db).first()
        if not ledger:
            raise LedgerNotFound(ledger_id)
        return ledger

    @staticmethod
    def _require_operator(ledger: Ledger, caller: str) -> None:
        if caller != ledger.operator_identity:
            logger.warning(f"Rejected operator call by {caller} on ledger {ledger.id}")
            raise Unauthorized(caller)

    @staticmethod
    def _require_participant(ledger: Ledger, identity: str) -> None:
        # 帳本帳戶的 credit 支撐 prize_pool、operator_pool 與 payable，不能當成呼叫者
        if identity == ledger.account:
            logger.warning(f"Rejected call using ledger account {identity}")
            raise Unauthorized(identity)
