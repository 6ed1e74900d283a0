"""
Analysis engine fault classification.

Any failure to obtain an answer from the engine is an infrastructure fault:
the attempt moves to ``error``, the reservation is refunded and the user may
retry. Each fault carries a code so the polling client can explain it.
"""

import asyncio
from typing import Any, Dict

import httpx

from tradelogapi.schemas.verdict import VerdictParseError


class AnalysisEngineError(Exception):
    """Base exception for analysis engine errors."""

    code = "UNKNOWN_ERROR"


class EngineSubmissionError(AnalysisEngineError):
    """Engine refused or could not accept the submission."""

    code = "SUBMISSION_REFUSED"


class EngineUnavailableError(AnalysisEngineError):
    """Engine is not configured or not reachable."""

    code = "CONNECTION_ERROR"


FAULT_MESSAGES: Dict[str, str] = {
    "TIMEOUT": "The analysis took too long to respond. Your credit has been refunded; please retry.",
    "CONNECTION_ERROR": "Could not reach the analysis service. Your credit has been refunded; please retry.",
    "RATE_LIMIT": "The analysis service is busy. Your credit has been refunded; please retry in a few minutes.",
    "SERVER_ERROR": "The analysis service had an internal error. Your credit has been refunded; please retry.",
    "BAD_REQUEST": "The analysis service could not process this trade. Your credit has been refunded.",
    "UNAUTHORIZED": "The analysis service rejected our credentials. Your credit has been refunded.",
    "PARSE_ERROR": "The analysis result could not be read. Your credit has been refunded; please retry.",
    "QUEUE_FULL": "The review queue was full. Your credit has been refunded; please retry.",
    "SUBMISSION_REFUSED": "The analysis service refused the review. Your credit has been refunded; please retry.",
    "UNKNOWN_ERROR": "Something went wrong while reviewing. Your credit has been refunded; please retry.",
}


class ReviewFault:
    """Infra fault recorded as ``review_error`` on the trade log."""

    def __init__(self, code: str, detail: str = "", retryable: bool = True):
        self.code = code
        self.detail = detail
        self.retryable = retryable

    @property
    def message(self) -> str:
        return FAULT_MESSAGES.get(self.code, FAULT_MESSAGES["UNKNOWN_ERROR"])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "type": "infra",
            "retryable": self.retryable,
        }

    def __repr__(self) -> str:
        return f"ReviewFault(code={self.code!r}, detail={self.detail!r})"


def classify_fault(exc: BaseException) -> ReviewFault:
    """Map an exception raised while running an attempt to a fault code."""
    detail = str(exc) or type(exc).__name__

    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ReviewFault("TIMEOUT", detail)
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        if status_code == 400:
            return ReviewFault("BAD_REQUEST", detail)
        if status_code in (401, 403):
            return ReviewFault("UNAUTHORIZED", detail)
        if status_code == 429:
            return ReviewFault("RATE_LIMIT", detail)
        if status_code >= 500:
            return ReviewFault("SERVER_ERROR", detail)
        return ReviewFault("SUBMISSION_REFUSED", detail)
    if isinstance(exc, httpx.RequestError):
        return ReviewFault("CONNECTION_ERROR", detail)
    if isinstance(exc, VerdictParseError):
        return ReviewFault("PARSE_ERROR", detail)
    if isinstance(exc, AnalysisEngineError):
        return ReviewFault(exc.code, detail)
    return ReviewFault("UNKNOWN_ERROR", detail)
