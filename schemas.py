"""
API request / response schemas

金額一律是整數 base units
"""
from typing import List, Optional

from pydantic import BaseModel, Field


# ============ Ledger ============

class LedgerDeploy(BaseModel):
    stake_price: int = Field(..., ge=0)
    stake_fee: int = Field(..., ge=0)
    credit_ratio: int = Field(..., ge=1)
    operator_identity: str = Field(..., min_length=1)
    credit_name: str = "Lottery Token"
    credit_symbol: str = "LT0"


class LedgerResponse(BaseModel):
    ledger_id: str
    credit_name: str
    credit_symbol: str
    credit_ratio: int
    stake_price: int
    stake_fee: int
    operator_identity: str
    is_round_open: bool
    round_number: int
    round_deadline: Optional[int]
    stake_count: int
    prize_pool: int
    operator_pool: int
    base_reserve: int


class RoundOpen(BaseModel):
    identity: str
    deadline: int


class RoundCloseResponse(BaseModel):
    round_number: int
    stake_count: int
    prize: int
    winner: Optional[str]
    winning_index: Optional[int]


class RoundHistoryEntry(BaseModel):
    round_number: Optional[int]
    stake_count: int
    prize: int
    winner: Optional[str]
    winning_index: Optional[int]
    closed_at: Optional[int]


class RoundHistoryResponse(BaseModel):
    rounds: List[RoundHistoryEntry]


class OperatorTransfer(BaseModel):
    identity: str
    new_operator: str = Field(..., min_length=1)


# ============ Stakes ============

class CallerRequest(BaseModel):
    identity: str


class ManyStakesSubmit(BaseModel):
    identity: str
    count: int


class StakeResponse(BaseModel):
    stake_count: int
    prize_pool: int
    operator_pool: int


class StakeSlotResponse(BaseModel):
    index: int
    identity: str


# ============ Credits ============

class CreditPurchase(BaseModel):
    identity: str
    deposit: int


class AllowanceSubmit(BaseModel):
    identity: str
    amount: int = Field(..., ge=0)


class AmountResponse(BaseModel):
    identity: str
    amount: int


class BalanceResponse(BaseModel):
    identity: str
    balance: int
    allowance: int
    payable: int
    total_won: int
