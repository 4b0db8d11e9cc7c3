"""
Credit API Endpoints

職責：
1. 存入 base currency 購買 credit
2. 授權帳本扣款（下注前必須先授權）
3. 查詢餘額 / 授權 / 待領獎金
4. 燒掉全部 credit 兌回 base currency
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import (
    CallerRequest,
    CreditPurchase,
    AllowanceSubmit,
    AmountResponse,
    BalanceResponse,
)
from core.ledger_manager import LedgerManager
from core.exceptions import LedgerException
from services.history_service import total_paid_to
from api.dependencies import get_ledger_manager, to_http_exception

router = APIRouter(prefix="/api/ledgers", tags=["credits"])
logger = logging.getLogger(__name__)


@router.post("/{ledger_id}/credits/purchase", response_model=AmountResponse)
def purchase_credits(
    ledger_id: str,
    request: CreditPurchase,
    db: Session = Depends(get_db),
    manager: LedgerManager = Depends(get_ledger_manager)
):
    """
    購買 credit

    返回：
        - amount: 取得的 credit（deposit * credit_ratio）
    """
    try:
        minted = manager.purchase_credits(db, ledger_id, request.identity, request.deposit)
        return AmountResponse(identity=request.identity, amount=minted)

    except LedgerException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to purchase credits: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{ledger_id}/credits/approve", response_model=AmountResponse)
def approve(
    ledger_id: str,
    request: AllowanceSubmit,
    db: Session = Depends(get_db),
    manager: LedgerManager = Depends(get_ledger_manager)
):
    """設定帳本可以從 identity 扣款的額度（覆蓋舊值）"""
    try:
        amount = manager.approve(db, ledger_id, request.identity, request.amount)
        return AmountResponse(identity=request.identity, amount=amount)

    except LedgerException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to approve allowance: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{ledger_id}/credits/balance", response_model=BalanceResponse)
def get_balance(
    ledger_id: str,
    identity: str = Query(...),
    db: Session = Depends(get_db)
):
    """
    查詢 identity 的 credit 狀態

    返回：
        - balance: credit 餘額
        - allowance: 授權給帳本的額度
        - payable: 待領取的獎金
        - total_won: 歷來結算時贏得的獎金總額
    """
    try:
        return BalanceResponse(
            identity=identity,
            balance=LedgerManager.balance_of(db, ledger_id, identity),
            allowance=LedgerManager.allowance_of(db, ledger_id, identity),
            payable=LedgerManager.payable_of(db, ledger_id, identity),
            total_won=total_paid_to(ledger_id, identity, db)
        )

    except LedgerException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get balance: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{ledger_id}/credits/redeem", response_model=AmountResponse)
def redeem_all_credits(
    ledger_id: str,
    request: CallerRequest,
    db: Session = Depends(get_db),
    manager: LedgerManager = Depends(get_ledger_manager)
):
    """
    燒掉全部 credit，兌回 base currency

    返回：
        - amount: 兌回的 base currency（credits // credit_ratio）
    """
    try:
        payout = manager.redeem_all_credits(db, ledger_id, request.identity)
        return AmountResponse(identity=request.identity, amount=payout)

    except LedgerException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to redeem credits: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
