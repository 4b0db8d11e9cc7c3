"""
並發控制工具

提供 Database-level 的鎖定機制，讓所有改變帳本狀態的呼叫被序列化

主要使用 PostgreSQL 的 SELECT ... FOR UPDATE 來實現悲觀鎖（Pessimistic Locking）
SQLite 不支援 FOR UPDATE，SQLAlchemy 會直接省略（SQLite 本身就是單一寫入者）
"""
from sqlalchemy.orm import Session, Query

from models import Ledger, Payable, CreditAccount, CreditAllowance


def with_ledger_lock(ledger_id: str, db: Session) -> Query:
    """
    鎖定一個 Ledger（行級鎖）

    使用場景：
    - 開啟 / 關閉回合
    - 下注（prize_pool、operator_pool、stake_slots 一起變動）
    - operator 提領

    範例：
        ledger = with_ledger_lock(ledger_id, db).first()
        if not ledger:
            raise LedgerNotFound(ledger_id)
        ledger.prize_pool += ledger.stake_price
        db.commit()

    參數：
        ledger_id: Ledger id
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 或 .one() 來取得結果）

    注意：
        - nowait=False 表示如果鎖被佔用，會等待
        - 必須在 transaction 內使用（確保有 commit 或 rollback）
    """
    return db.query(Ledger).filter(
        Ledger.id == ledger_id
    ).with_for_update(nowait=False)


def with_payable_lock(ledger_id: str, identity: str, db: Session) -> Query:
    """
    鎖定某個身分的應付獎金（行級鎖）

    使用場景：
    - 贏家提領：先歸零再轉帳，鎖住避免重複提領
    """
    return db.query(Payable).filter(
        Payable.ledger_id == ledger_id,
        Payable.identity == identity
    ).with_for_update(nowait=False)


def with_account_lock(ledger_id: str, holder: str, db: Session) -> Query:
    """
    鎖定一個 credit 帳戶（行級鎖）

    使用場景：
    - 轉帳、mint、burn 時更新餘額
    """
    return db.query(CreditAccount).filter(
        CreditAccount.ledger_id == ledger_id,
        CreditAccount.holder == holder
    ).with_for_update(nowait=False)


def with_allowance_lock(ledger_id: str, owner: str, spender: str, db: Session) -> Query:
    """鎖定一筆授權額度（行級鎖）"""
    return db.query(CreditAllowance).filter(
        CreditAllowance.ledger_id == ledger_id,
        CreditAllowance.owner == owner,
        CreditAllowance.spender == spender
    ).with_for_update(nowait=False)
