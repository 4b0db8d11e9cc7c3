"""
Ledger API Endpoints

職責：
1. 部署帳本、查詢帳本狀態
2. operator 開啟回合；截止後任何人都可以結算
3. operator 提領手續費、轉移 operator 身分
4. 查詢已結算的回合紀錄
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from models import Ledger
from schemas import (
    LedgerDeploy,
    LedgerResponse,
    RoundOpen,
    RoundCloseResponse,
    RoundHistoryEntry,
    RoundHistoryResponse,
    CallerRequest,
    OperatorTransfer,
    AmountResponse,
)
from core.ledger_manager import LedgerManager
from core.exceptions import LedgerException
from services.history_service import get_round_history
from api.dependencies import get_ledger_manager, to_http_exception

router = APIRouter(prefix="/api/ledgers", tags=["ledgers"])
logger = logging.getLogger(__name__)


def ledger_response(db: Session, ledger: Ledger) -> LedgerResponse:
    return LedgerResponse(
        ledger_id=ledger.id,
        credit_name=ledger.credit_name,
        credit_symbol=ledger.credit_symbol,
        credit_ratio=ledger.credit_ratio,
        stake_price=ledger.stake_price,
        stake_fee=ledger.stake_fee,
        operator_identity=ledger.operator_identity,
        is_round_open=ledger.is_round_open,
        round_number=ledger.round_number,
        round_deadline=ledger.round_deadline,
        stake_count=LedgerManager.stake_count(db, ledger.id),
        prize_pool=ledger.prize_pool,
        operator_pool=ledger.operator_pool,
        base_reserve=ledger.base_reserve,
    )


@router.post("", response_model=LedgerResponse)
def deploy_ledger(
    config: LedgerDeploy,
    db: Session = Depends(get_db),
    manager: LedgerManager = Depends(get_ledger_manager)
):
    """
    部署新帳本

    參數：
        stake_price / stake_fee: 每注的獎池部分與手續費（base units）
        credit_ratio: 每單位 base currency 換得的 credit
        operator_identity: operator 身分
    """
    try:
        ledger = manager.deploy(
            db,
            stake_price=config.stake_price,
            stake_fee=config.stake_fee,
            credit_ratio=config.credit_ratio,
            operator_identity=config.operator_identity,
            credit_name=config.credit_name,
            credit_symbol=config.credit_symbol
        )
        return ledger_response(db, ledger)

    except LedgerException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to deploy ledger: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{ledger_id}", response_model=LedgerResponse)
def get_ledger(ledger_id: str, db: Session = Depends(get_db)):
    """
    查詢帳本狀態

    返回：
        - is_round_open / round_deadline / round_number
        - stake_count / prize_pool / operator_pool
    """
    try:
        ledger = LedgerManager.get_ledger(db, ledger_id)
        return ledger_response(db, ledger)

    except LedgerException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get ledger: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{ledger_id}/rounds/open", response_model=LedgerResponse)
def open_round(
    ledger_id: str,
    request: RoundOpen,
    db: Session = Depends(get_db),
    manager: LedgerManager = Depends(get_ledger_manager)
):
    """
    開啟回合（operator endpoint）

    前置條件：
    - identity 必須是 operator
    - 沒有進行中的回合
    - deadline 在未來
    """
    try:
        ledger = manager.open_round(db, ledger_id, request.identity, request.deadline)
        logger.info(f"Round {ledger.round_number} opened on ledger {ledger_id}")
        return ledger_response(db, ledger)

    except LedgerException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to open round: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{ledger_id}/rounds/close", response_model=RoundCloseResponse)
def close_round(
    ledger_id: str,
    db: Session = Depends(get_db),
    manager: LedgerManager = Depends(get_ledger_manager)
):
    """
    結算回合（任何人都可以呼叫）

    前置條件：
    - 有進行中的回合
    - 已到截止時間

    返回：
        - winner: 中獎者（沒有下注時為 null）
        - prize: 記入中獎者 payable 的金額
    """
    try:
        outcome = manager.close_round(db, ledger_id)
        return RoundCloseResponse(
            round_number=outcome.round_number,
            stake_count=outcome.stake_count,
            prize=outcome.prize,
            winner=outcome.winner,
            winning_index=outcome.winning_index
        )

    except LedgerException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to close round: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{ledger_id}/rounds/history", response_model=RoundHistoryResponse)
def round_history(ledger_id: str, db: Session = Depends(get_db)):
    """取得已結算回合的紀錄（舊到新）"""
    try:
        LedgerManager.get_ledger(db, ledger_id)
        rounds = get_round_history(ledger_id, db)
        return RoundHistoryResponse(rounds=[RoundHistoryEntry(**entry) for entry in rounds])

    except LedgerException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get round history: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{ledger_id}/operator/withdraw", response_model=AmountResponse)
def withdraw_as_operator(
    ledger_id: str,
    request: CallerRequest,
    db: Session = Depends(get_db),
    manager: LedgerManager = Depends(get_ledger_manager)
):
    """提領全部手續費（operator endpoint）"""
    try:
        amount = manager.withdraw_as_operator(db, ledger_id, request.identity)
        return AmountResponse(identity=request.identity, amount=amount)

    except LedgerException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to withdraw operator pool: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{ledger_id}/operator/transfer", response_model=LedgerResponse)
def transfer_operator(
    ledger_id: str,
    request: OperatorTransfer,
    db: Session = Depends(get_db),
    manager: LedgerManager = Depends(get_ledger_manager)
):
    """轉移 operator 身分（operator endpoint）"""
    try:
        ledger = manager.transfer_operator(db, ledger_id, request.identity, request.new_operator)
        return ledger_response(db, ledger)

    except LedgerException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to transfer operator: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
