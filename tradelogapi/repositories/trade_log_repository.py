from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from tradelogapi.models.trade_log import ReviewStatus, TradeLog as TradeLogModel
from tradelogapi.repositories.base import BaseRepository
from tradelogapi.schemas.trade_log import TradeLogResponse


class TradeLogRepository(BaseRepository[TradeLogModel, TradeLogResponse]):
    """트레이드 로그 리포지토리

    리뷰 상태 전이는 모두 이전 상태(및 시도 ID)를 조건으로 거는 UPDATE 입니다.
    갱신된 행이 0이면 다른 요청이 먼저 전이시킨 것입니다.
    """

    def __init__(self, db: Session):
        super().__init__(TradeLogModel, TradeLogResponse, db)

    def get_fresh(self, trade_log_id: int) -> Optional[TradeLogResponse]:
        """세션 캐시를 무시하고 최신 값 조회"""
        self._ensure_clean_session()
        instance = (
            self.db.query(TradeLogModel)
            .filter(TradeLogModel.id == trade_log_id)
            .populate_existing()
            .first()
        )
        return self._to_schema(instance)

    def get_owned(self, trade_log_id: int, account_id: int) -> Optional[TradeLogResponse]:
        """계정 소유의 트레이드 로그 조회"""
        entry = self.get_fresh(trade_log_id)
        if entry is None or entry.account_id != account_id:
            return None
        return entry

    def list_for_account(
        self, account_id: int, limit: int = 20, offset: int = 0
    ) -> List[TradeLogResponse]:
        return self.find_all(
            filters={"account_id": account_id},
            order_by=desc(TradeLogModel.id),
            limit=limit,
            offset=offset,
        )

    def begin_attempt(
        self,
        trade_log_id: int,
        from_statuses: Iterable[ReviewStatus],
        attempt_id: str,
        credit_type: str,
        is_from_rewarded_ad: bool,
        requested_at: datetime,
    ) -> bool:
        """
        새 리뷰 시도 시작 (→ pending)

        이전 결과/에러/메타데이터는 새 시도가 수락된 이 시점에만 지웁니다.
        """
        updated = (
            self.db.query(TradeLogModel)
            .filter(
                TradeLogModel.id == trade_log_id,
                TradeLogModel.review_status.in_([ReviewStatus(s).value for s in from_statuses]),
            )
            .update(
                {
                    TradeLogModel.review_status: ReviewStatus.PENDING.value,
                    TradeLogModel.review_attempt_id: attempt_id,
                    TradeLogModel.review_attempt_count: TradeLogModel.review_attempt_count + 1,
                    TradeLogModel.credit_type: credit_type,
                    TradeLogModel.is_from_rewarded_ad: is_from_rewarded_ad,
                    TradeLogModel.needs_review: True,
                    TradeLogModel.review_requested_at: requested_at,
                    TradeLogModel.review_completed_at: None,
                    TradeLogModel.review_result: None,
                    TradeLogModel.review_error: None,
                    TradeLogModel.review_metadata: None,
                },
                synchronize_session=False,
            )
        )
        return updated > 0

    def finalize_attempt(
        self,
        trade_log_id: int,
        attempt_id: str,
        status: ReviewStatus,
        completed_at: datetime,
        result: Optional[List[Dict[str, Any]]] = None,
        error: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        pending 시도를 종료 상태로 전이

        pending 이면서 시도 ID 가 일치할 때만 갱신합니다 (늦게 도착하거나
        중복된 콜백은 0 행).
        """
        values: Dict[Any, Any] = {
            TradeLogModel.review_status: ReviewStatus(status).value,
            TradeLogModel.review_completed_at: completed_at,
        }
        if result is not None:
            values[TradeLogModel.review_result] = result
        if error is not None:
            values[TradeLogModel.review_error] = error
        if metadata is not None:
            values[TradeLogModel.review_metadata] = metadata

        updated = (
            self.db.query(TradeLogModel)
            .filter(
                TradeLogModel.id == trade_log_id,
                TradeLogModel.review_status == ReviewStatus.PENDING.value,
                TradeLogModel.review_attempt_id == attempt_id,
            )
            .update(values, synchronize_session=False)
        )
        return updated > 0

    def find_stale_pending(self, older_than: datetime, limit: int = 500) -> List[TradeLogResponse]:
        """요청 시각이 older_than 이전인 pending 항목"""
        instances = (
            self.db.query(TradeLogModel)
            .filter(
                TradeLogModel.review_status == ReviewStatus.PENDING.value,
                TradeLogModel.review_requested_at < older_than,
            )
            .order_by(TradeLogModel.review_requested_at)
            .limit(limit)
            .all()
        )
        return self._to_schemas(instances)
