"""
部署腳本：依 .env 設定建立一個新帳本

用法：
    python deploy.py

讀取的設定（見 config.Settings）：
    DEFAULT_STAKE_PRICE / DEFAULT_STAKE_FEE（人類可讀金額，例如 0.8 / 0.2）
    DEFAULT_CREDIT_RATIO / DEFAULT_CREDIT_NAME / DEFAULT_CREDIT_SYMBOL
    OPERATOR_IDENTITY / DATABASE_URL
"""
import logging

import models  # noqa: F401  註冊所有資料表
from config import get_settings
from database import Base, SessionLocal, engine
from core.ledger_manager import LedgerManager
from services.units_service import to_base_units

logger = logging.getLogger("deploy")


def deploy_from_settings(db, manager: LedgerManager):
    """用目前的設定部署帳本，返回新的 Ledger"""
    settings = get_settings()
    return manager.deploy(
        db,
        stake_price=to_base_units(settings.default_stake_price),
        stake_fee=to_base_units(settings.default_stake_fee),
        credit_ratio=settings.default_credit_ratio,
        operator_identity=settings.operator_identity,
        credit_name=settings.default_credit_name,
        credit_symbol=settings.default_credit_symbol
    )


def main() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    logger.info(f"Using database {settings.database_url}")
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        logger.info("Deploying ledger")
        ledger = deploy_from_settings(db, LedgerManager())
        logger.info(
            f"Ledger deployed with id {ledger.id}: {ledger.credit_name} ({ledger.credit_symbol}), "
            f"price={ledger.stake_price} fee={ledger.stake_fee} ratio={ledger.credit_ratio} "
            f"operator={ledger.operator_identity}"
        )
    finally:
        db.close()


if __name__ == "__main__":
    main()
