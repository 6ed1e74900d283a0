"""
리뷰 레코드 상태 머신

none → pending → {completed | rejected | failed | error}
{failed, error, rejected} 는 명시적 재시도로 다시 pending 에 진입합니다.

| 상태 | 크레딧 |
|------|--------|
| pending | 1 예약 |
| completed / rejected / failed | 예약 확정 (엔진이 답을 줌) |
| error | 예약 반환 (답을 받지 못함) |
"""

from typing import Dict, FrozenSet

from tradelogapi.core.exceptions import InvalidReviewStateError
from tradelogapi.models.trade_log import ReviewStatus
from tradelogapi.schemas.verdict import VerdictOutcome

REVIEW_TRANSITIONS: Dict[ReviewStatus, FrozenSet[ReviewStatus]] = {
    ReviewStatus.NONE: frozenset({ReviewStatus.PENDING}),
    ReviewStatus.PENDING: frozenset(
        {
            ReviewStatus.COMPLETED,
            ReviewStatus.REJECTED,
            ReviewStatus.FAILED,
            ReviewStatus.ERROR,
        }
    ),
    ReviewStatus.COMPLETED: frozenset(),
    ReviewStatus.REJECTED: frozenset({ReviewStatus.PENDING}),
    ReviewStatus.FAILED: frozenset({ReviewStatus.PENDING}),
    ReviewStatus.ERROR: frozenset({ReviewStatus.PENDING}),
}

# 최초 요청 / 재시도가 허용되는 상태
REQUESTABLE_STATUSES: FrozenSet[ReviewStatus] = frozenset({ReviewStatus.NONE})
RETRYABLE_STATUSES: FrozenSet[ReviewStatus] = frozenset(
    {ReviewStatus.FAILED, ReviewStatus.ERROR, ReviewStatus.REJECTED}
)

# 종료 상태별 크레딧 처리
CHARGED_STATUSES: FrozenSet[ReviewStatus] = frozenset(
    {ReviewStatus.COMPLETED, ReviewStatus.REJECTED, ReviewStatus.FAILED}
)

# 비용/토큰 메타데이터를 저장하는 상태
METADATA_STATUSES: FrozenSet[ReviewStatus] = frozenset(
    {ReviewStatus.COMPLETED, ReviewStatus.REJECTED}
)

_OUTCOME_STATUS = {
    VerdictOutcome.VALID: ReviewStatus.COMPLETED,
    VerdictOutcome.REJECTED: ReviewStatus.REJECTED,
    VerdictOutcome.FAILED: ReviewStatus.FAILED,
}


def can_transition(current: ReviewStatus, target: ReviewStatus) -> bool:
    return ReviewStatus(target) in REVIEW_TRANSITIONS[ReviewStatus(current)]


def ensure_transition(current: ReviewStatus, target: ReviewStatus) -> None:
    """허용되지 않는 전이면 InvalidReviewStateError"""
    if not can_transition(current, target):
        current = ReviewStatus(current)
        raise InvalidReviewStateError(
            current_status=current.value,
            message=_transition_message(current, ReviewStatus(target)),
        )


def ensure_can_start(current: ReviewStatus, allowed: FrozenSet[ReviewStatus]) -> None:
    """요청/재시도 진입 검사 - 전이표와 진입 경로(allowed) 모두 만족해야 함"""
    current = ReviewStatus(current)
    if current in allowed:
        ensure_transition(current, ReviewStatus.PENDING)
        return

    if current == ReviewStatus.NONE:
        message = "No previous review to retry; request a review first"
    elif current in RETRYABLE_STATUSES:
        message = f"Review is '{current.value}'; use retry to run it again"
    else:
        message = _transition_message(current, ReviewStatus.PENDING)
    raise InvalidReviewStateError(current_status=current.value, message=message)


def outcome_to_status(outcome: VerdictOutcome) -> ReviewStatus:
    return _OUTCOME_STATUS[VerdictOutcome(outcome)]


def _transition_message(current: ReviewStatus, target: ReviewStatus) -> str:
    if current == ReviewStatus.PENDING and target == ReviewStatus.PENDING:
        return "A review is already in progress for this trade log"
    if current == ReviewStatus.COMPLETED:
        return "This trade log has already been reviewed"
    return f"Cannot move review from '{current.value}' to '{target.value}'"
