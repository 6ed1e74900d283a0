import hashlib
import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from tradelogapi.models.trade_log import CreditType, ReviewStatus


class ReviewRequest(BaseModel):
    """리뷰 요청/재시도 요청"""

    is_from_rewarded_ad: bool = Field(False, description="보너스(광고) 크레딧으로 지불")


class ReviewAck(BaseModel):
    """리뷰 요청 접수 응답 - 결과는 폴링으로 확인"""

    trade_log_id: int
    review_status: ReviewStatus
    attempt_id: str
    credit_type: CreditType
    is_from_rewarded_ad: bool
    review_requested_at: Optional[datetime] = None
    message: str = "Review requested"


class ReviewErrorInfo(BaseModel):
    message: str
    code: str
    type: str = "infra"
    retryable: bool = True


class DetailedAnalysis(BaseModel):
    ui: Optional[Dict[str, Any]] = None
    analysis: Optional[Dict[str, Any]] = None
    micro_chart_url: Optional[str] = None
    full_chart_url: Optional[str] = None


class ReviewMetadataView(BaseModel):
    total_cost: float = 0.0
    cost_breakdown: Dict[str, Any] = Field(default_factory=dict)
    models_used: List[str] = Field(default_factory=list)
    token_usage: Dict[str, Any] = Field(default_factory=dict)
    user_experience: Optional[str] = None
    review_processed_at: Optional[datetime] = None


class ReviewStatusView(BaseModel):
    """폴링용 리뷰 상태 뷰"""

    trade_log_id: int
    review_status: ReviewStatus
    is_review_completed: bool
    review_requested_at: Optional[datetime] = None
    review_completed_at: Optional[datetime] = None
    credit_type: CreditType
    is_from_rewarded_ad: bool = False
    recommendation: str
    verdict: str
    confidence: float
    risk_level: str
    is_analysis_correct: str
    review_error: Optional[ReviewErrorInfo] = None
    detailed_analysis: Optional[DetailedAnalysis] = None
    review_metadata: Optional[ReviewMetadataView] = None
    created_at: Optional[datetime] = None


class ReviewCallbackAck(BaseModel):
    accepted: bool
    review_status: Optional[ReviewStatus] = None
    message: str = ""


class ReconcileRequest(BaseModel):
    older_than_seconds: Optional[float] = Field(
        None, gt=0, description="기본값은 REVIEW_TIMEOUT_SECONDS"
    )


class ReconcileResponse(BaseModel):
    reconciled: int
    trade_log_ids: List[int] = Field(default_factory=list)


class AttemptHandle(BaseModel):
    """엔진 콜백이 가리켜야 하는 시도 식별자"""

    trade_log_id: int
    attempt_id: str


class TradeParameters(BaseModel):
    """분석 엔진에 전달하는 매매 파라미터"""

    instrument_key: str
    trading_symbol: str
    instrument_name: Optional[str] = None
    exchange: Optional[str] = None
    direction: str
    quantity: int
    entry_price: Decimal
    target_price: Optional[Decimal] = None
    stop_loss: Optional[Decimal] = None
    term: str
    reasoning: Optional[str] = None
    credit_type: CreditType
    is_from_rewarded_ad: bool = False
    logged_at: Optional[datetime] = None

    def fingerprint(self) -> str:
        """엔진 측 캐시 키 - 비용 관련 필드는 제외"""
        data = self.model_dump(
            mode="json", exclude={"credit_type", "is_from_rewarded_ad", "logged_at"}
        )
        encoded = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
