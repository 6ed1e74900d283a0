"""
리뷰 조회 프로젝터

트레이드 로그의 리뷰 레코드를 폴링용 뷰로 변환합니다. 읽기 전용이며
부분적으로만 채워졌거나 예전 형식(camelCase)으로 저장된 결과도 처리합니다.
"""

import logging
import re
from typing import Any, List, Optional

from pydantic import ValidationError as PydanticValidationError

from tradelogapi.models.trade_log import ReviewStatus
from tradelogapi.schemas.review import (
    DetailedAnalysis,
    ReviewErrorInfo,
    ReviewMetadataView,
    ReviewStatusView,
)
from tradelogapi.schemas.trade_log import TradeLogResponse
from tradelogapi.schemas.verdict import ReviewAnalysis, ReviewPayload, UiChip

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5
NO_ANALYSIS_RISK = "N/A"

_NUMBER = re.compile(r"[\d.]+")
_LEADING_FLOAT = re.compile(r"\d*\.?\d*")


def _leading_float(text: str) -> float:
    match = _LEADING_FLOAT.match(text)
    try:
        return float(match.group()) if match else 0.0
    except ValueError:
        return 0.0


def extract_confidence(chips: Optional[List[UiChip]]) -> float:
    """라벨에 'rr' 이 들어간 첫 칩의 숫자 값, 없으면 0.5"""
    for chip in chips or []:
        if not chip.label or "rr" not in chip.label.lower():
            continue
        if isinstance(chip.value, bool):
            continue
        if isinstance(chip.value, (int, float)):
            return float(chip.value)
        if isinstance(chip.value, str):
            match = _NUMBER.search(chip.value)
            if match:
                return _leading_float(match.group())
    return DEFAULT_CONFIDENCE


def extract_risk_level(analysis: Optional[ReviewAnalysis]) -> str:
    """
    위험도 판정 (우선순위 순)

    1. 분석 결과 무효 → High
    2. 데이터 부족 → High
    3. 오늘 기준 유효하지 않음 → Medium-High
    4. VWAP 아래 + 15분 바이어스 역행 → High
    5. 그 외 → Medium
    """
    if analysis is None:
        return NO_ANALYSIS_RISK
    if analysis.is_valid is False:
        return "High"
    if analysis.guards is not None and analysis.guards.needs_data:
        return "High"

    user_review = analysis.user_review
    if user_review is not None and user_review.is_valid_today is False:
        return "Medium-High"

    alignment = user_review.alignment if user_review is not None else None
    if (
        alignment is not None
        and alignment.with_vwap == "below"
        and alignment.with_15m_bias == "against"
    ):
        return "High"
    return "Medium"


def load_payload(review_result: Optional[List[Any]]) -> Optional[ReviewPayload]:
    """review_result[0] 을 정규화된 payload 로 (읽을 수 없으면 None)"""
    if not review_result:
        return None
    raw = review_result[0]
    if not isinstance(raw, dict):
        return None
    try:
        return ReviewPayload.model_validate(raw)
    except PydanticValidationError as e:
        logger.warning(f"Stored review payload could not be read: {e.error_count()} error(s)")
        return None


class ReviewQueryProjector:
    def project(self, entry: TradeLogResponse) -> ReviewStatusView:
        payload = load_payload(entry.review_result)
        analysis = payload.analysis if payload else None
        ui = payload.ui if payload else None

        is_review_completed = entry.review_status in (
            ReviewStatus.COMPLETED,
            ReviewStatus.REJECTED,
        ) or (entry.review_status == ReviewStatus.FAILED and analysis is not None)

        recommendation = (
            (analysis.tldr if analysis else None)
            or (ui.tldr if ui else None)
            or "No analysis available"
        )

        if analysis is None or analysis.is_valid is None:
            is_analysis_correct = "unknown"
        else:
            is_analysis_correct = "valid" if analysis.is_valid else "invalid"

        return ReviewStatusView(
            trade_log_id=entry.id,
            review_status=entry.review_status,
            is_review_completed=is_review_completed,
            review_requested_at=entry.review_requested_at,
            review_completed_at=entry.review_completed_at,
            credit_type=entry.credit_type,
            is_from_rewarded_ad=entry.is_from_rewarded_ad,
            recommendation=recommendation,
            verdict=(ui.verdict if ui and ui.verdict else "unknown"),
            confidence=extract_confidence(ui.chips if ui else None),
            risk_level=extract_risk_level(analysis),
            is_analysis_correct=is_analysis_correct,
            review_error=self._error(entry),
            detailed_analysis=self._detailed(payload),
            review_metadata=self._metadata(entry),
            created_at=entry.review_completed_at or entry.updated_at,
        )

    @staticmethod
    def _error(entry: TradeLogResponse) -> Optional[ReviewErrorInfo]:
        error = entry.review_error
        if not error:
            return None
        return ReviewErrorInfo(
            message=str(error.get("message") or "Review failed"),
            code=str(error.get("code") or "UNKNOWN_ERROR"),
            type=str(error.get("type") or "infra"),
            retryable=bool(error.get("retryable", True)),
        )

    @staticmethod
    def _detailed(payload: Optional[ReviewPayload]) -> Optional[DetailedAnalysis]:
        if payload is None:
            return None
        return DetailedAnalysis(
            ui=payload.ui.model_dump(mode="json") if payload.ui else None,
            analysis=payload.analysis.model_dump(mode="json") if payload.analysis else None,
            micro_chart_url=payload.micro_chart_url,
            full_chart_url=payload.full_chart_url,
        )

    @staticmethod
    def _metadata(entry: TradeLogResponse) -> Optional[ReviewMetadataView]:
        metadata = entry.review_metadata
        if not metadata:
            return None
        return ReviewMetadataView(
            total_cost=metadata.get("total_cost") or 0.0,
            cost_breakdown=metadata.get("cost_breakdown") or {},
            models_used=metadata.get("models_used") or [],
            token_usage=metadata.get("token_usage") or {},
            user_experience=metadata.get("user_experience"),
            review_processed_at=metadata.get("review_processed_at"),
        )
