"""
自定義異常類別

集中管理所有帳本業務邏輯異常，方便 API 層統一處理
所有異常都是同步拒絕：transaction 會 rollback，不會留下部分狀態
"""


class LedgerException(Exception):
    """所有帳本異常的基類"""
    pass


# ============ Ledger 相關異常 ============

class LedgerNotFound(LedgerException):
    """帳本不存在"""
    def __init__(self, ledger_id):
        self.ledger_id = ledger_id
        super().__init__(f"Ledger {ledger_id} not found")


class InvalidLedgerConfig(LedgerException):
    """部署參數不合法（價格/手續費為負、比例 <= 0）"""
    pass


class Unauthorized(LedgerException):
    """呼叫者不是 operator"""
    def __init__(self, identity):
        self.identity = identity
        super().__init__(f"{identity} is not the operator")


# ============ Round 相關異常 ============

class RoundAlreadyOpen(LedgerException):
    """已經有進行中的回合"""
    pass


class RoundClosed(LedgerException):
    """回合未開放或已過截止時間，不接受下注"""
    pass


class RoundAlreadyClosed(LedgerException):
    """沒有進行中的回合可以關閉"""
    pass


class TooEarly(LedgerException):
    """尚未到達截止時間"""
    pass


class InvalidDeadline(LedgerException):
    """截止時間必須在未來"""
    pass


class InvalidStakeCount(LedgerException):
    """一次下注數量必須 >= 1"""
    pass


class StakeSlotNotFound(LedgerException):
    """下注位置超出範圍"""
    def __init__(self, index):
        self.index = index
        super().__init__(f"No stake at index {index}")


# ============ 狀態轉換異常 ============

class InvalidStateTransition(LedgerException):
    """非法的狀態轉換"""
    pass


# ============ Credit 相關異常 ============

class InsufficientCredit(LedgerException):
    """credit 餘額不足以支付下注"""
    pass


class InsufficientAllowance(LedgerException):
    """授權給帳本的額度不足"""
    pass


class InsufficientBalance(LedgerException):
    """轉帳來源餘額不足"""
    pass


class DepositRequired(LedgerException):
    """購買 credit 必須存入 base currency"""
    pass


class InsufficientReserve(LedgerException):
    """帳本持有的 base currency 不足以兌回"""
    pass


# ============ Withdraw 相關異常 ============

class NothingToWithdraw(LedgerException):
    """沒有可領取的獎金"""
    pass


class NoBalance(LedgerException):
    """沒有 credit 可以兌回"""
    pass
