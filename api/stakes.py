"""
Stake API Endpoints

職責：
1. 下注（單注 / 多注）
2. 查詢本回合某一注的下注者
3. 贏家提領獎金
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import (
    CallerRequest,
    ManyStakesSubmit,
    StakeResponse,
    StakeSlotResponse,
    AmountResponse,
)
from core.ledger_manager import LedgerManager
from core.exceptions import LedgerException
from api.dependencies import get_ledger_manager, to_http_exception

router = APIRouter(prefix="/api/ledgers", tags=["stakes"])
logger = logging.getLogger(__name__)


@router.post("/{ledger_id}/stakes", response_model=StakeResponse)
def place_stake(
    ledger_id: str,
    request: CallerRequest,
    db: Session = Depends(get_db),
    manager: LedgerManager = Depends(get_ledger_manager)
):
    """
    下一注

    前置條件：
    - 回合開啟中且未過截止時間
    - credit 餘額與授權額度 >= stake_price + stake_fee
    """
    try:
        ledger = manager.place_stake(db, ledger_id, request.identity)
        return StakeResponse(
            stake_count=LedgerManager.stake_count(db, ledger_id),
            prize_pool=ledger.prize_pool,
            operator_pool=ledger.operator_pool
        )

    except LedgerException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to place stake: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{ledger_id}/stakes/many", response_model=StakeResponse)
def place_many_stakes(
    ledger_id: str,
    request: ManyStakesSubmit,
    db: Session = Depends(get_db),
    manager: LedgerManager = Depends(get_ledger_manager)
):
    """
    一次下多注

    總成本先整體檢查，不足就整筆拒絕（不會只下其中幾注）
    """
    try:
        ledger = manager.place_many_stakes(db, ledger_id, request.identity, request.count)
        return StakeResponse(
            stake_count=LedgerManager.stake_count(db, ledger_id),
            prize_pool=ledger.prize_pool,
            operator_pool=ledger.operator_pool
        )

    except LedgerException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to place stakes: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{ledger_id}/stakes/{index}", response_model=StakeSlotResponse)
def get_stake(ledger_id: str, index: int, db: Session = Depends(get_db)):
    """取得本回合第 index 注的下注者"""
    try:
        identity = LedgerManager.stake_at(db, ledger_id, index)
        return StakeSlotResponse(index=index, identity=identity)

    except LedgerException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get stake: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{ledger_id}/winnings/withdraw", response_model=AmountResponse)
def withdraw_as_winner(
    ledger_id: str,
    request: CallerRequest,
    db: Session = Depends(get_db),
    manager: LedgerManager = Depends(get_ledger_manager)
):
    """
    贏家提領全部 payable

    返回：
        - amount: 轉入 identity 的 credit 數量
    """
    try:
        amount = manager.withdraw_as_winner(db, ledger_id, request.identity)
        return AmountResponse(identity=request.identity, amount=amount)

    except LedgerException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to withdraw winnings: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
