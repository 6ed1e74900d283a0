"""Versioned analysis-engine verdict.

Engines post a ``schema_version=2`` verdict. Older engines post the legacy
camelCase shape without a version; ``parse_verdict`` translates it once here so
nothing downstream inspects raw engine payloads.
"""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

VERDICT_SCHEMA_VERSION = 2


class VerdictParseError(ValueError):
    """Callback body could not be turned into a verdict."""


class VerdictOutcome(str, Enum):
    VALID = "valid"
    REJECTED = "rejected"
    FAILED = "failed"


class _PayloadModel(BaseModel):
    class Config:
        populate_by_name = True
        extra = "allow"


class ReviewAlignment(_PayloadModel):
    with_vwap: Optional[str] = Field(None, alias="withVWAP")
    with_15m_bias: Optional[str] = Field(None, alias="with15mBias")


class ReviewGuards(_PayloadModel):
    needs_data: Optional[bool] = Field(None, alias="needsData")


class UserReview(_PayloadModel):
    is_valid_today: Optional[bool] = Field(None, alias="isValidToday")
    alignment: Optional[ReviewAlignment] = None


class ReviewAnalysis(_PayloadModel):
    is_valid: Optional[bool] = Field(None, alias="isValid")
    tldr: Optional[str] = None
    guards: Optional[ReviewGuards] = None
    user_review: Optional[UserReview] = Field(None, alias="userReview")
    market_hours_rejection: Optional[bool] = Field(None, alias="marketHoursRejection")


class UiChip(_PayloadModel):
    label: Optional[str] = None
    value: Optional[Any] = None


class ReviewUi(_PayloadModel):
    verdict: Optional[str] = None
    tldr: Optional[str] = None
    chips: List[UiChip] = Field(default_factory=list)


class ReviewPayload(_PayloadModel):
    """Normalized analysis payload stored as ``review_result[0]``."""

    review_id: Optional[str] = Field(None, alias="reviewId")
    analysis: Optional[ReviewAnalysis] = None
    ui: Optional[ReviewUi] = None
    micro_chart_url: Optional[str] = Field(None, alias="microChartUrl")
    full_chart_url: Optional[str] = Field(None, alias="fullChartUrl")


class ReviewCost(_PayloadModel):
    total_cost: float = Field(0.0, alias="totalCost")
    cost_breakdown: Dict[str, Any] = Field(default_factory=dict, alias="costBreakdown")
    models_used: List[str] = Field(default_factory=list, alias="modelsUsed")
    token_usage: Dict[str, Any] = Field(default_factory=dict, alias="tokenUsage")
    user_experience: Optional[str] = Field(None, alias="userExperience")


class EngineError(_PayloadModel):
    message: str = "Analysis engine reported a failure"
    code: str = "ENGINE_FAILED"


class EngineVerdict(_PayloadModel):
    schema_version: int = Field(VERDICT_SCHEMA_VERSION, alias="schemaVersion")
    outcome: VerdictOutcome
    payload: ReviewPayload = Field(default_factory=ReviewPayload)
    cost: Optional[ReviewCost] = None
    error: Optional[EngineError] = None


class ReviewCallback(BaseModel):
    """Engine completion callback body."""

    trade_log_id: int
    attempt_id: str = Field(..., min_length=1, max_length=32)
    verdict: Dict[str, Any]


def parse_verdict(raw: Any) -> EngineVerdict:
    if not isinstance(raw, Mapping):
        raise VerdictParseError(f"Verdict must be an object, got {type(raw).__name__}")

    version = raw.get("schema_version", raw.get("schemaVersion"))
    try:
        if version is None:
            return _translate_legacy(raw)
        if version == VERDICT_SCHEMA_VERSION:
            return EngineVerdict.model_validate(raw)
    except PydanticValidationError as e:
        raise VerdictParseError(f"Invalid verdict: {e.error_count()} validation error(s)") from e

    raise VerdictParseError(f"Unsupported verdict schema version: {version}")


def _translate_legacy(raw: Mapping) -> EngineVerdict:
    analysis = dict(raw.get("analysis") or {})
    if "isValid" not in analysis and "is_valid" not in analysis:
        legacy_correct = _legacy_correctness(raw.get("isAnalaysisCorrect"))
        if legacy_correct is not None:
            analysis["isValid"] = legacy_correct

    payload = ReviewPayload.model_validate(
        {
            "reviewId": raw.get("reviewId"),
            "analysis": analysis or None,
            "ui": raw.get("ui"),
            "microChartUrl": raw.get("microChartUrl"),
            "fullChartUrl": raw.get("fullChartUrl"),
        }
    )

    status = str(raw.get("status") or "").lower()
    error = None
    if status == "rejected" or (payload.analysis and payload.analysis.market_hours_rejection):
        outcome = VerdictOutcome.REJECTED
    elif payload.analysis is not None and payload.analysis.is_valid is not None:
        outcome = VerdictOutcome.VALID
    else:
        outcome = VerdictOutcome.FAILED
        message = raw.get("error") or raw.get("message")
        error = EngineError(message=str(message)) if message else EngineError()

    return EngineVerdict(
        schema_version=VERDICT_SCHEMA_VERSION,
        outcome=outcome,
        payload=payload,
        cost=_legacy_cost(raw),
        error=error,
    )


def _legacy_correctness(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.lower()
        if lowered in ("valid", "true", "correct"):
            return True
        if lowered in ("invalid", "false", "incorrect"):
            return False
    return None


def _legacy_cost(raw: Mapping) -> Optional[ReviewCost]:
    token_usage = raw.get("tokenUsage")
    metadata = raw.get("reviewMetadata") or {}
    if not token_usage and not metadata:
        return None

    token_usage = dict(token_usage or metadata.get("tokenUsage") or {})
    models_used = metadata.get("modelsUsed") or (
        [token_usage["model"]] if token_usage.get("model") else []
    )
    return ReviewCost(
        total_cost=metadata.get("totalCost", token_usage.get("estimatedCost", 0.0)) or 0.0,
        cost_breakdown=metadata.get("costBreakdown") or {},
        models_used=models_used,
        token_usage=token_usage,
        user_experience=metadata.get("userExperience"),
    )
