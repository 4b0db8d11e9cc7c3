"""
資料模型

Ledger 本身就是帳本的狀態物件：每個操作都以 ledger_id 取得（並鎖定）這一列，
不使用任何 process-wide 全域變數。
"""
import enum
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


def _uuid() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoundStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class Ledger(Base):
    __tablename__ = "ledgers"

    id = Column(String(36), primary_key=True, default=_uuid)

    # 部署時固定，之後不可變更
    credit_name = Column(String(64), nullable=False)
    credit_symbol = Column(String(16), nullable=False)
    credit_ratio = Column(Integer, nullable=False)
    stake_price = Column(BigInteger, nullable=False)
    stake_fee = Column(BigInteger, nullable=False)

    operator_identity = Column(String(128), nullable=False)

    round_status = Column(Enum(RoundStatus), nullable=False, default=RoundStatus.CLOSED)
    round_number = Column(Integer, nullable=False, default=0)
    round_deadline = Column(BigInteger, nullable=True)

    prize_pool = Column(BigInteger, nullable=False, default=0)
    operator_pool = Column(BigInteger, nullable=False, default=0)
    # 帳本持有的 base currency（購買 credit 時存入，兌回時支出）
    base_reserve = Column(BigInteger, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=_utcnow)

    stake_slots = relationship(
        "StakeSlot",
        back_populates="ledger",
        order_by="StakeSlot.position",
        cascade="all, delete-orphan",
    )

    @property
    def is_round_open(self) -> bool:
        return self.round_status == RoundStatus.OPEN

    @property
    def stake_cost(self) -> int:
        return self.stake_price + self.stake_fee

    @property
    def account(self) -> str:
        """帳本自己在 credit 系統中的持有者身分（等同合約地址）"""
        return f"ledger:{self.id}"


class StakeSlot(Base):
    __tablename__ = "stake_slots"
    __table_args__ = (UniqueConstraint("ledger_id", "position", name="uq_slot_position"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    ledger_id = Column(String(36), ForeignKey("ledgers.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    identity = Column(String(128), nullable=False)

    ledger = relationship("Ledger", back_populates="stake_slots")


class Payable(Base):
    __tablename__ = "payables"
    __table_args__ = (UniqueConstraint("ledger_id", "identity", name="uq_payable_identity"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    ledger_id = Column(String(36), ForeignKey("ledgers.id"), nullable=False, index=True)
    identity = Column(String(128), nullable=False)
    amount = Column(BigInteger, nullable=False, default=0)


class CreditAccount(Base):
    __tablename__ = "credit_accounts"
    __table_args__ = (UniqueConstraint("ledger_id", "holder", name="uq_credit_holder"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    ledger_id = Column(String(36), ForeignKey("ledgers.id"), nullable=False, index=True)
    holder = Column(String(128), nullable=False)
    balance = Column(BigInteger, nullable=False, default=0)


class CreditAllowance(Base):
    __tablename__ = "credit_allowances"
    __table_args__ = (
        UniqueConstraint("ledger_id", "owner", "spender", name="uq_credit_allowance"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    ledger_id = Column(String(36), ForeignKey("ledgers.id"), nullable=False, index=True)
    owner = Column(String(128), nullable=False)
    spender = Column(String(128), nullable=False)
    amount = Column(BigInteger, nullable=False, default=0)


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ledger_id = Column(String(36), ForeignKey("ledgers.id"), nullable=False, index=True)
    event_type = Column(String(64), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
