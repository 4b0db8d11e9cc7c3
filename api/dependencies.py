"""
API 共用的 dependency 與異常轉換
"""
from functools import lru_cache

from fastapi import HTTPException

from config import get_settings
from core.clock import SystemClock
from core.entropy import build_entropy_source
from core.ledger_manager import LedgerManager
from core.exceptions import (
    LedgerException,
    LedgerNotFound,
    StakeSlotNotFound,
    Unauthorized,
    RoundAlreadyOpen,
    RoundAlreadyClosed,
    RoundClosed,
    TooEarly,
)

# 狀態衝突：呼叫本身合法，但帳本目前的狀態不允許
_CONFLICTS = (RoundAlreadyOpen, RoundAlreadyClosed, RoundClosed, TooEarly)


@lru_cache()
def get_ledger_manager() -> LedgerManager:
    """
    FastAPI dependency：提供 LedgerManager

    時間用系統時鐘，隨機來源依設定（block / system）
    測試透過 app.dependency_overrides 換成固定時間與固定亂數
    """
    settings = get_settings()
    clock = SystemClock()
    return LedgerManager(
        clock=clock,
        entropy=build_entropy_source(settings.entropy_source, clock)
    )


def to_http_exception(exc: LedgerException) -> HTTPException:
    """把帳本異常轉成對應的 HTTP 狀態碼"""
    if isinstance(exc, (LedgerNotFound, StakeSlotNotFound)):
        status_code = 404
    elif isinstance(exc, Unauthorized):
        status_code = 403
    elif isinstance(exc, _CONFLICTS):
        status_code = 409
    else:
        status_code = 400

    return HTTPException(
        status_code=status_code,
        detail={"error": type(exc).__name__, "message": str(exc)}
    )
