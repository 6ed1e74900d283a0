"""
트레이드 로그 데이터 모델

트레이더가 기록한 매매 아이디어와, 그 아이디어에 대한 자동 리뷰(분석 엔진)의
진행 상태를 함께 저장합니다. 리뷰 상태 컬럼은 디스패처만 변경합니다.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from tradelogapi.models.base import BaseModel


class ReviewStatus(str, Enum):
    """리뷰 진행 상태"""

    NONE = "none"  # 리뷰 요청 이력 없음
    PENDING = "pending"  # 크레딧 예약 완료, 분석 진행 중
    COMPLETED = "completed"  # 엔진 정상 완료
    REJECTED = "rejected"  # 엔진이 분석을 거절 (데이터 부족, 장외 시간 등)
    FAILED = "failed"  # 엔진이 오류 결과를 반환
    ERROR = "error"  # 파이프라인이 응답을 받지 못함 (타임아웃, 통신 오류 등)


class CreditType(str, Enum):
    """리뷰 비용을 지불한 크레딧 버킷"""

    REGULAR = "regular"
    BONUS = "bonus"


class TradeDirection(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class TradeTerm(str, Enum):
    INTRADAY = "intraday"
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


class TradeLog(BaseModel):
    """트레이드 로그 - 리뷰 레코드의 애그리거트 루트"""

    __tablename__ = "trade_logs"
    __table_args__ = (
        Index("idx_trade_logs_account_created", "account_id", "created_at"),
        Index("idx_trade_logs_review_status", "review_status", "review_requested_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # 매매 파라미터 (종목 정보는 인스트루먼트 스냅샷에서 확정)
    instrument_key: Mapped[str] = mapped_column(String(64), nullable=False)
    trading_symbol: Mapped[str] = mapped_column(String(64), nullable=False)
    instrument_name: Mapped[Optional[str]] = mapped_column(String(255))
    exchange: Mapped[Optional[str]] = mapped_column(String(16))
    direction: Mapped[str] = mapped_column(String(4), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    entry_price: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    target_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 4))
    stop_loss: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 4))
    term: Mapped[str] = mapped_column(String(16), nullable=False, default=TradeTerm.SHORT.value)
    reasoning: Mapped[Optional[str]] = mapped_column(Text)

    # 리뷰 레코드
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    review_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ReviewStatus.NONE.value
    )
    credit_type: Mapped[str] = mapped_column(
        String(16), nullable=False, default=CreditType.REGULAR.value
    )
    is_from_rewarded_ad: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    review_attempt_id: Mapped[Optional[str]] = mapped_column(String(32))
    review_attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    review_requested_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    review_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # review_result[0] = 정규화된 엔진 판정 payload
    review_result: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON(none_as_null=True))
    # {message, code, type, retryable}
    review_error: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON(none_as_null=True))
    # 비용/토큰 사용량 (completed/rejected 에서만 기록)
    review_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON(none_as_null=True))
