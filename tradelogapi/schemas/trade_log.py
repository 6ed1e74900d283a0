from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from tradelogapi.models.trade_log import (
    CreditType,
    ReviewStatus,
    TradeDirection,
    TradeTerm,
)


class TradeLogCreate(BaseModel):
    """트레이드 로그 생성 요청"""

    instrument_key: str = Field(..., min_length=1, max_length=64, description="인스트루먼트 키 (예: NSE_EQ|INE002A01018)")
    direction: TradeDirection = Field(..., description="BUY(롱) / SELL(숏)")
    quantity: int = Field(..., gt=0, description="수량")
    entry_price: Decimal = Field(..., gt=0, description="진입가")
    target_price: Optional[Decimal] = Field(None, gt=0, description="목표가")
    stop_loss: Optional[Decimal] = Field(None, gt=0, description="손절가")
    term: TradeTerm = Field(TradeTerm.SHORT, description="매매 기간")
    reasoning: Optional[str] = Field(None, max_length=2000, description="매매 근거")
    needs_review: bool = Field(False, description="생성과 동시에 리뷰 요청 여부")
    is_from_rewarded_ad: bool = Field(False, description="리뷰 비용을 보너스 크레딧으로 지불")


class TradeLogResponse(BaseModel):
    """트레이드 로그 응답"""

    id: int
    account_id: int
    instrument_key: str
    trading_symbol: str
    instrument_name: Optional[str] = None
    exchange: Optional[str] = None
    direction: TradeDirection
    quantity: int
    entry_price: Decimal
    target_price: Optional[Decimal] = None
    stop_loss: Optional[Decimal] = None
    term: TradeTerm
    reasoning: Optional[str] = None

    needs_review: bool = False
    review_status: ReviewStatus = ReviewStatus.NONE
    credit_type: CreditType = CreditType.REGULAR
    is_from_rewarded_ad: bool = False
    review_attempt_id: Optional[str] = None
    review_attempt_count: int = 0
    review_requested_at: Optional[datetime] = None
    review_completed_at: Optional[datetime] = None
    review_result: Optional[List[Dict[str, Any]]] = None
    review_error: Optional[Dict[str, Any]] = None
    review_metadata: Optional[Dict[str, Any]] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TradeLogCreateResponse(BaseModel):
    """생성 결과 - 리뷰를 함께 요청한 경우 요청 결과 포함"""

    trade_log: TradeLogResponse
    review_requested: bool = False
    review_error: Optional[Dict[str, Any]] = Field(
        None, description="생성은 되었으나 리뷰 요청이 거절된 경우의 에러"
    )


class TradeLogListResponse(BaseModel):
    items: List[TradeLogResponse]
    total_count: int
    has_next: bool
