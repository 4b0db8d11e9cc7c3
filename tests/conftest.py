"""
共用 fixtures

每個測試都有自己的 in-memory SQLite（StaticPool 讓所有連線共用同一個 DB），
時間固定在 START，亂數由 FixedEntropySource 決定
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from database import Base, get_db
from core.clock import FrozenClock
from core.entropy import FixedEntropySource
from core.ledger_manager import LedgerManager
from api.dependencies import get_ledger_manager

START = 1_700_000_000
PRICE = 800_000    # 0.8 credit（decimals=6）
FEE = 200_000      # 0.2 credit
COST = PRICE + FEE
OPERATOR = "operator"


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FrozenClock(start=START)


@pytest.fixture
def entropy():
    return FixedEntropySource([0])


@pytest.fixture
def manager(clock, entropy):
    return LedgerManager(clock=clock, entropy=entropy)


@pytest.fixture
def ledger(db, manager):
    return manager.deploy(
        db,
        stake_price=PRICE,
        stake_fee=FEE,
        credit_ratio=1,
        operator_identity=OPERATOR,
        credit_name="Lottery Token",
        credit_symbol="LT0"
    )


@pytest.fixture
def ledger_id(ledger):
    return ledger.id


@pytest.fixture
def fund(db, manager, ledger_id):
    """購買 credit 並把全部額度授權給帳本"""
    def _fund(identity, credits, approve=True):
        manager.purchase_credits(db, ledger_id, identity, credits)
        if approve:
            manager.approve(db, ledger_id, identity, LedgerManager.balance_of(db, ledger_id, identity))
    return _fund


@pytest.fixture
def open_round(db, manager, ledger_id, clock):
    """開啟一個 60 秒後截止的回合，返回 deadline"""
    def _open(duration=60):
        deadline = clock.now() + duration
        manager.open_round(db, ledger_id, OPERATOR, deadline)
        return deadline
    return _open


@pytest.fixture
def client(session_factory, manager):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ledger_manager] = lambda: manager
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
