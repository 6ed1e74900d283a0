from datetime import datetime, timezone
from decimal import Decimal

import pytest

from tradelogapi.models.trade_log import ReviewStatus
from tradelogapi.schemas.trade_log import TradeLogResponse
from tradelogapi.schemas.verdict import ReviewAnalysis, UiChip
from tradelogapi.services.review_projector import (
    DEFAULT_CONFIDENCE,
    NO_ANALYSIS_RISK,
    ReviewQueryProjector,
    extract_confidence,
    extract_risk_level,
    load_payload,
)


def make_entry(**overrides):
    data = dict(
        id=1,
        account_id=1001,
        instrument_key="NSE_EQ|INE002A01018",
        trading_symbol="RELIANCE",
        direction="BUY",
        quantity=10,
        entry_price=Decimal("2450.5"),
        term="short",
        review_status="none",
        updated_at=datetime(2025, 1, 6, 4, 0, tzinfo=timezone.utc),
    )
    data.update(overrides)
    return TradeLogResponse(**data)


class TestExtractRiskLevel:
    """위험도 우선순위 테스트"""

    def test_no_analysis(self):
        assert extract_risk_level(None) == NO_ANALYSIS_RISK

    def test_invalid_analysis_is_high(self):
        analysis = ReviewAnalysis.model_validate(
            {"isValid": False, "userReview": {"isValidToday": False}}
        )
        assert extract_risk_level(analysis) == "High"

    def test_needs_data_is_high(self):
        analysis = ReviewAnalysis.model_validate(
            {"isValid": True, "guards": {"needsData": True}, "userReview": {"isValidToday": False}}
        )
        assert extract_risk_level(analysis) == "High"

    def test_not_valid_today_beats_alignment(self):
        analysis = ReviewAnalysis.model_validate(
            {
                "isValid": True,
                "userReview": {
                    "isValidToday": False,
                    "alignment": {"withVWAP": "below", "with15mBias": "against"},
                },
            }
        )
        assert extract_risk_level(analysis) == "Medium-High"

    def test_below_vwap_against_bias_is_high(self):
        analysis = ReviewAnalysis.model_validate(
            {
                "isValid": True,
                "userReview": {
                    "isValidToday": True,
                    "alignment": {"withVWAP": "below", "with15mBias": "against"},
                },
            }
        )
        assert extract_risk_level(analysis) == "High"

    def test_default_is_medium(self):
        analysis = ReviewAnalysis.model_validate(
            {"isValid": True, "userReview": {"alignment": {"withVWAP": "above"}}}
        )
        assert extract_risk_level(analysis) == "Medium"


class TestExtractConfidence:
    @pytest.mark.parametrize(
        "chips,expected",
        [
            (None, DEFAULT_CONFIDENCE),
            ([], DEFAULT_CONFIDENCE),
            ([{"label": "Trend", "value": 0.9}], DEFAULT_CONFIDENCE),
            ([{"label": "RR", "value": 2.5}], 2.5),
            ([{"label": "Target RR", "value": "1:2.4"}], 1.0),
            ([{"label": "rr ratio", "value": "2.75x"}], 2.75),
            ([{"label": "RR", "value": "n/a"}, {"label": "Err", "value": 3}], 3.0),
        ],
    )
    def test_extract(self, chips, expected):
        parsed = [UiChip.model_validate(chip) for chip in chips] if chips is not None else None
        assert extract_confidence(parsed) == expected


class TestLoadPayload:
    def test_empty(self):
        assert load_payload(None) is None
        assert load_payload([]) is None

    def test_non_dict_is_ignored(self):
        assert load_payload(["not a payload"]) is None

    def test_reads_camel_case(self):
        payload = load_payload([{"reviewId": "rv-9", "ui": {"verdict": "avoid"}}])

        assert payload.review_id == "rv-9"
        assert payload.ui.verdict == "avoid"


class TestReviewQueryProjector:
    """폴링 뷰 변환 테스트"""

    def test_pending_without_result(self):
        view = ReviewQueryProjector().project(make_entry(review_status="pending"))

        assert view.review_status == ReviewStatus.PENDING
        assert view.is_review_completed is False
        assert view.recommendation == "No analysis available"
        assert view.verdict == "unknown"
        assert view.confidence == DEFAULT_CONFIDENCE
        assert view.risk_level == NO_ANALYSIS_RISK
        assert view.is_analysis_correct == "unknown"
        assert view.detailed_analysis is None

    def test_completed_review(self):
        completed_at = datetime(2025, 1, 6, 5, 0, tzinfo=timezone.utc)
        entry = make_entry(
            review_status="completed",
            review_completed_at=completed_at,
            review_result=[
                {
                    "analysis": {"isValid": True, "tldr": "Good entry near support"},
                    "ui": {"verdict": "take", "chips": [{"label": "RR", "value": 2}]},
                    "microChartUrl": "https://charts.example/micro.png",
                }
            ],
            review_metadata={
                "total_cost": 0.02,
                "models_used": ["analyst-large"],
                "user_experience": "fast",
                "review_processed_at": "2025-01-06T05:00:00+00:00",
            },
        )

        view = ReviewQueryProjector().project(entry)

        assert view.is_review_completed is True
        assert view.recommendation == "Good entry near support"
        assert view.verdict == "take"
        assert view.confidence == 2.0
        assert view.risk_level == "Medium"
        assert view.is_analysis_correct == "valid"
        assert view.detailed_analysis.micro_chart_url == "https://charts.example/micro.png"
        assert view.review_metadata.total_cost == 0.02
        assert view.review_metadata.user_experience == "fast"
        assert view.review_metadata.review_processed_at == completed_at
        assert view.created_at == completed_at

    def test_failed_with_analysis_counts_as_completed(self):
        entry = make_entry(
            review_status="failed",
            review_result=[{"analysis": {"isValid": False}}],
            review_error={"message": "Model returned no answer", "code": "MODEL_EMPTY", "type": "engine"},
        )

        view = ReviewQueryProjector().project(entry)

        assert view.is_review_completed is True
        assert view.is_analysis_correct == "invalid"
        assert view.risk_level == "High"
        assert view.review_error.code == "MODEL_EMPTY"

    def test_error_shows_infra_fault(self):
        entry = make_entry(
            review_status="error",
            review_error={"message": "The analysis took too long", "code": "TIMEOUT", "type": "infra", "retryable": True},
        )

        view = ReviewQueryProjector().project(entry)

        assert view.is_review_completed is False
        assert view.review_error.code == "TIMEOUT"
        assert view.review_error.retryable is True
        assert view.created_at == entry.updated_at

    def test_ui_tldr_fallback(self):
        entry = make_entry(
            review_status="rejected",
            review_result=[{"ui": {"tldr": "Market closed", "verdict": "rejected"}}],
        )

        view = ReviewQueryProjector().project(entry)

        assert view.is_review_completed is True
        assert view.recommendation == "Market closed"
