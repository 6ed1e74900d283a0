import os

# 앱 모듈 import 전에 테스트용 설정 주입
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ANALYSIS_ENGINE_CALLBACK_TOKEN", "engine-test-token")

from contextlib import contextmanager

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tradelogapi.config import Settings
from tradelogapi.models.base import Base
from tradelogapi.models import credit, trade_log  # noqa: F401


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite://",
        SECRET_KEY="test-secret-key",
        REVIEW_CREDIT_COST=1,
        REVIEW_TIMEOUT_SECONDS=0.05,
        ANALYSIS_ENGINE_SUBMIT_TIMEOUT_SECONDS=0.05,
        DEFAULT_PLAN_CREDITS=5,
        BONUS_CREDITS_PER_AD=1,
        BONUS_CREDIT_TTL_HOURS=24,
        MAX_DAILY_REWARDED_ADS=3,
    )


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return sessionmaker(
        autocommit=False, autoflush=False, bind=db_engine, expire_on_commit=False
    )


@pytest.fixture
def db_session(session_maker):
    session = session_maker()
    yield session
    session.close()


@pytest.fixture
def session_factory(session_maker):
    """get_db_context 와 같은 계약의 테스트용 세션 팩토리"""

    @contextmanager
    def factory():
        session = session_maker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return factory


@pytest.fixture
def catalog():
    from tradelogapi.core.instruments import Instrument, InstrumentCatalog

    return InstrumentCatalog(
        [
            Instrument(
                instrument_key="NSE_EQ|INE002A01018",
                trading_symbol="RELIANCE",
                name="Reliance Industries Ltd",
                exchange="NSE",
            ),
            Instrument(
                instrument_key="NSE_EQ|INE467B01029",
                trading_symbol="TCS",
                name="Tata Consultancy Services Ltd",
                exchange="NSE",
            ),
        ]
    )


@pytest.fixture
def seed_account(session_factory):
    """원장 항목과 함께 잔액을 심어 두는 헬퍼 (정합성 유지)"""
    from tradelogapi.models.credit import CreditBucket, LedgerEventType
    from tradelogapi.repositories.credit_repository import CreditRepository

    def seed(account_id, regular=0, bonus=0, bonus_expiry=None):
        with session_factory() as db:
            repo = CreditRepository(db)
            repo.create_account(account_id, "basic", commit=False)
            if regular:
                repo.increment(account_id, CreditBucket.REGULAR, regular)
                repo.add_entry(
                    account_id=account_id,
                    bucket=CreditBucket.REGULAR,
                    event_type=LedgerEventType.GRANT.value,
                    delta=regular,
                    balance_after=regular,
                    reason="seed",
                    ref_id=f"seed:{account_id}:regular",
                )
            if bonus:
                repo.add_bonus(account_id, bonus, bonus_expiry)
                repo.add_entry(
                    account_id=account_id,
                    bucket=CreditBucket.BONUS,
                    event_type=LedgerEventType.GRANT.value,
                    delta=bonus,
                    balance_after=bonus,
                    reason="seed",
                    ref_id=f"seed:{account_id}:bonus",
                )

    return seed


@pytest.fixture
def create_trade_log(session_factory, settings, catalog):
    """리뷰 전(none) 상태의 트레이드 로그 생성 헬퍼"""
    from decimal import Decimal

    from tradelogapi.models.trade_log import TradeDirection
    from tradelogapi.schemas.trade_log import TradeLogCreate
    from tradelogapi.services.trade_log_service import TradeLogService

    def create(account_id, instrument_key="NSE_EQ|INE002A01018"):
        with session_factory() as db:
            service = TradeLogService(db, settings, catalog)
            return service.create_trade_log(
                account_id,
                TradeLogCreate(
                    instrument_key=instrument_key,
                    direction=TradeDirection.BUY,
                    quantity=10,
                    entry_price=Decimal("2450.50"),
                    target_price=Decimal("2550"),
                    stop_loss=Decimal("2400"),
                    reasoning="Breakout above VWAP with volume",
                ),
            )

    return create
