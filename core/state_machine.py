"""
回合狀態機：集中管理 Ledger 回合狀態的轉換

合法轉換：
    CLOSED -> OPEN    （operator 開啟回合）
    OPEN   -> CLOSED  （截止後結算）

所有狀態變更都經過這裡，並寫入 ROUND_STATE_CHANGED 事件
"""
import logging

from sqlalchemy.orm import Session

from models import Ledger, RoundStatus, EventLog
from core.exceptions import InvalidStateTransition

logger = logging.getLogger(__name__)


class LedgerStateMachine:
    ALLOWED_TRANSITIONS = {
        RoundStatus.CLOSED: {RoundStatus.OPEN},
        RoundStatus.OPEN: {RoundStatus.CLOSED},
    }

    @classmethod
    def can_transition(cls, current: RoundStatus, target: RoundStatus) -> bool:
        return target in cls.ALLOWED_TRANSITIONS.get(current, set())

    @classmethod
    def transition(cls, ledger: Ledger, target: RoundStatus, db: Session) -> Ledger:
        """
        轉換回合狀態

        參數：
            ledger: 已鎖定的 Ledger
            target: 目標狀態
            db: SQLAlchemy Session

        返回：
            更新後的 Ledger

        異常：
            InvalidStateTransition: 不允許的轉換
        """
        current = ledger.round_status
        if not cls.can_transition(current, target):
            raise InvalidStateTransition(
                f"Cannot transition ledger {ledger.id} from {current.value} to {target.value}"
            )

        ledger.round_status = target
        if target == RoundStatus.OPEN:
            ledger.round_number += 1

        db.add(EventLog(
            ledger_id=ledger.id,
            event_type="ROUND_STATE_CHANGED",
            data={
                "from": current.value,
                "to": target.value,
                "round_number": ledger.round_number,
            }
        ))

        logger.info(
            f"Ledger {ledger.id} round {ledger.round_number}: {current.value} -> {target.value}"
        )
        return ledger
