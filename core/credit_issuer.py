"""
Credit Issuer：credit 的發行、轉帳、授權與兌回

每個 Ledger 有自己的 credit（部署時決定名稱、符號與兌換比例），
帳戶與授權都以 ledger_id 區分。

這裡不開 transaction，也不 commit：由呼叫者（LedgerManager）的
@transactional 決定整體要 commit 還是 rollback
"""
import logging

from sqlalchemy.orm import Session

from models import Ledger, CreditAccount, CreditAllowance, EventLog
from core.locks import with_account_lock, with_allowance_lock
from core.exceptions import InsufficientAllowance, InsufficientBalance

logger = logging.getLogger(__name__)


class CreditIssuer:
    """綁定單一 Ledger 的 credit 帳務"""

    def __init__(self, db: Session, ledger_id: str, ratio: int):
        self.db = db
        self.ledger_id = ledger_id
        self.ratio = ratio

    @classmethod
    def for_ledger(cls, db: Session, ledger: Ledger) -> "CreditIssuer":
        return cls(db, ledger.id, ledger.credit_ratio)

    # ============ 查詢 ============

    def balance_of(self, holder: str) -> int:
        account = self.db.query(CreditAccount).filter(
            CreditAccount.ledger_id == self.ledger_id,
            CreditAccount.holder == holder
        ).first()
        return account.balance if account else 0

    def allowance(self, owner: str, spender: str) -> int:
        row = self.db.query(CreditAllowance).filter(
            CreditAllowance.ledger_id == self.ledger_id,
            CreditAllowance.owner == owner,
            CreditAllowance.spender == spender
        ).first()
        return row.amount if row else 0

    # ============ 轉帳 ============

    def approve(self, owner: str, spender: str, amount: int) -> None:
        """設定 owner 授權給 spender 的額度（覆蓋舊值）"""
        _check_amount(amount)
        row = with_allowance_lock(self.ledger_id, owner, spender, self.db).first()
        if row is None:
            row = CreditAllowance(
                ledger_id=self.ledger_id, owner=owner, spender=spender, amount=0
            )
            self.db.add(row)
        row.amount = amount
        self.db.flush()

    def transfer(self, sender: str, payee: str, amount: int) -> None:
        """
        直接從 sender 轉給 payee

        異常：
            InsufficientBalance: sender 餘額不足
        """
        _check_amount(amount)
        source = self._account(sender)
        if source.balance < amount:
            raise InsufficientBalance(
                f"{sender} holds {source.balance}, needs {amount}"
            )
        target = self._account(payee)
        source.balance -= amount
        target.balance += amount
        self.db.flush()

    def transfer_from(self, spender: str, payer: str, payee: str, amount: int) -> None:
        """
        spender 使用 payer 的授權額度，把 credit 從 payer 轉給 payee

        異常：
            InsufficientAllowance: 授權額度不足
            InsufficientBalance: payer 餘額不足
        """
        _check_amount(amount)
        grant = with_allowance_lock(self.ledger_id, payer, spender, self.db).first()
        granted = grant.amount if grant else 0
        if granted < amount:
            raise InsufficientAllowance(
                f"{payer} allowed {spender} {granted}, needs {amount}"
            )

        self.transfer(payer, payee, amount)
        if grant is not None:
            grant.amount -= amount
            self.db.flush()

    # ============ 發行 / 兌回 ============

    def mint_against_deposit(self, holder: str, deposit: int) -> int:
        """
        依比例發行 credit

        返回：
            發行的 credit 數量（deposit * ratio）
        """
        _check_amount(deposit)
        minted = deposit * self.ratio
        account = self._account(holder)
        account.balance += minted
        self.db.add(EventLog(
            ledger_id=self.ledger_id,
            event_type="CREDITS_MINTED",
            data={"holder": holder, "deposit": deposit, "credits": minted}
        ))
        self.db.flush()
        logger.info(f"Minted {minted} credits to {holder} on ledger {self.ledger_id}")
        return minted

    def burn_for_redeem(self, holder: str, amount: int) -> int:
        """
        燒掉 credit，計算可兌回的 base currency

        返回：
            base currency 數量（amount // ratio，不足一單位的部分捨去）

        異常：
            InsufficientBalance: holder 餘額不足
        """
        _check_amount(amount)
        account = self._account(holder)
        if account.balance < amount:
            raise InsufficientBalance(
                f"{holder} holds {account.balance}, cannot burn {amount}"
            )
        account.balance -= amount
        self.db.flush()
        return amount // self.ratio

    def _account(self, holder: str) -> CreditAccount:
        account = with_account_lock(self.ledger_id, holder, self.db).first()
        if account is None:
            account = CreditAccount(ledger_id=self.ledger_id, holder=holder, balance=0)
            self.db.add(account)
            self.db.flush()
        return account


def _check_amount(amount: int) -> None:
    if amount < 0:
        raise ValueError(f"Amount must be non-negative, got {amount}")
