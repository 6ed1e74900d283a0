import logging

from sqlalchemy.orm import Session

from tradelogapi.config import Settings
from tradelogapi.core.exceptions import NotFoundError, ValidationError
from tradelogapi.core.instruments import InstrumentCatalog
from tradelogapi.models.trade_log import CreditType, ReviewStatus
from tradelogapi.repositories.trade_log_repository import TradeLogRepository
from tradelogapi.schemas.trade_log import (
    TradeLogCreate,
    TradeLogListResponse,
    TradeLogResponse,
)

logger = logging.getLogger(__name__)


class TradeLogService:
    """트레이드 로그 생성/조회 (리뷰 상태 변경은 디스패처 전담)"""

    def __init__(self, db: Session, settings: Settings, catalog: InstrumentCatalog):
        self.db = db
        self.settings = settings
        self.catalog = catalog
        self.repo = TradeLogRepository(db)

    def create_trade_log(self, account_id: int, payload: TradeLogCreate) -> TradeLogResponse:
        """
        트레이드 로그 생성

        instrument_key 로 스냅샷에서 종목 정보를 확정합니다.
        리뷰 요청(needs_review)은 생성 후 디스패처가 별도로 처리합니다.

        Raises:
            ValidationError: 알 수 없는 instrument_key
        """
        instrument = self.catalog.resolve(payload.instrument_key)
        if instrument is None:
            raise ValidationError(
                message="Unknown instrument",
                details={"instrument_key": payload.instrument_key},
            )

        entry = self.repo.create(
            account_id=account_id,
            instrument_key=instrument.instrument_key,
            trading_symbol=instrument.trading_symbol,
            instrument_name=instrument.name,
            exchange=instrument.exchange,
            direction=payload.direction.value,
            quantity=payload.quantity,
            entry_price=payload.entry_price,
            target_price=payload.target_price,
            stop_loss=payload.stop_loss,
            term=payload.term.value,
            reasoning=payload.reasoning,
            needs_review=False,
            review_status=ReviewStatus.NONE.value,
            credit_type=CreditType.REGULAR.value,
            is_from_rewarded_ad=False,
            review_attempt_count=0,
        )
        logger.info(
            f"Created trade log {entry.id} for account {account_id} "
            f"({entry.direction.value} {entry.quantity} {entry.trading_symbol})"
        )
        return entry

    def get_trade_log(self, trade_log_id: int, account_id: int) -> TradeLogResponse:
        entry = self.repo.get_owned(trade_log_id, account_id)
        if entry is None:
            raise NotFoundError(
                message="Trade log not found",
                details={"trade_log_id": trade_log_id},
            )
        return entry

    def list_trade_logs(
        self, account_id: int, limit: int = 20, offset: int = 0
    ) -> TradeLogListResponse:
        items = self.repo.list_for_account(account_id, limit=limit, offset=offset)
        total_count = self.repo.count({"account_id": account_id})
        return TradeLogListResponse(
            items=items,
            total_count=total_count,
            has_next=offset + len(items) < total_count,
        )
