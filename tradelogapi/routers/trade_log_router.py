"""
트레이드 로그 API 라우터

- POST /trade-logs: 트레이드 로그 생성 (needs_review=True 면 리뷰도 요청)
- GET /trade-logs: 내 트레이드 로그 목록
- GET /trade-logs/{id}: 트레이드 로그 조회
- POST /trade-logs/{id}/request-review: 리뷰 요청 (크레딧 1 예약)
- POST /trade-logs/{id}/retry-review: 실패/에러/거절된 리뷰 재시도
- GET /trade-logs/{id}/review-status: 리뷰 상태 폴링

리뷰 요청은 즉시 응답(202)하고 결과는 review-status 폴링으로 확인합니다.
"""

import logging
from typing import Optional

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Path, Query, status

from tradelogapi.containers import Container
from tradelogapi.core.auth_middleware import get_current_account
from tradelogapi.core.exceptions import BaseAPIException
from tradelogapi.deps import get_trade_log_service
from tradelogapi.schemas.auth import CurrentAccount
from tradelogapi.schemas.review import ReviewAck, ReviewRequest, ReviewStatusView
from tradelogapi.schemas.trade_log import (
    TradeLogCreate,
    TradeLogCreateResponse,
    TradeLogListResponse,
    TradeLogResponse,
)
from tradelogapi.services.review_dispatcher import ReviewDispatcher
from tradelogapi.services.review_projector import ReviewQueryProjector
from tradelogapi.services.trade_log_service import TradeLogService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/trade-logs", tags=["trade-logs"])


@router.post("", response_model=TradeLogCreateResponse, status_code=status.HTTP_201_CREATED)
@inject
async def create_trade_log(
    payload: TradeLogCreate,
    current_account: CurrentAccount = Depends(get_current_account),
    trade_log_service: TradeLogService = Depends(get_trade_log_service),
    dispatcher: ReviewDispatcher = Depends(Provide[Container.services.review_dispatcher]),
) -> TradeLogCreateResponse:
    """
    트레이드 로그 생성

    needs_review=True 인 경우 생성 직후 리뷰를 요청합니다. 리뷰 요청이
    거절되어도(크레딧 부족 등) 로그는 생성되며 review_error 로 사유를 알려줍니다.
    """
    entry = trade_log_service.create_trade_log(current_account.account_id, payload)
    if not payload.needs_review:
        return TradeLogCreateResponse(trade_log=entry)

    try:
        dispatcher.request_review(
            entry.id, current_account.account_id, payload.is_from_rewarded_ad
        )
    except BaseAPIException as e:
        logger.info(f"Trade log {entry.id} created without review: {e.error_code}")
        return TradeLogCreateResponse(
            trade_log=entry,
            review_requested=False,
            review_error=e.detail["error"],
        )

    return TradeLogCreateResponse(
        trade_log=trade_log_service.get_trade_log(entry.id, current_account.account_id),
        review_requested=True,
    )


@router.get("", response_model=TradeLogListResponse)
async def list_trade_logs(
    limit: int = Query(20, ge=1, le=100, description="페이지 크기"),
    offset: int = Query(0, ge=0, description="오프셋"),
    current_account: CurrentAccount = Depends(get_current_account),
    trade_log_service: TradeLogService = Depends(get_trade_log_service),
) -> TradeLogListResponse:
    return trade_log_service.list_trade_logs(
        current_account.account_id, limit=limit, offset=offset
    )


@router.get("/{trade_log_id}", response_model=TradeLogResponse)
async def get_trade_log(
    trade_log_id: int = Path(..., gt=0),
    current_account: CurrentAccount = Depends(get_current_account),
    trade_log_service: TradeLogService = Depends(get_trade_log_service),
) -> TradeLogResponse:
    return trade_log_service.get_trade_log(trade_log_id, current_account.account_id)


@router.post(
    "/{trade_log_id}/request-review",
    response_model=ReviewAck,
    status_code=status.HTTP_202_ACCEPTED,
)
@inject
async def request_review(
    trade_log_id: int = Path(..., gt=0),
    payload: Optional[ReviewRequest] = None,
    current_account: CurrentAccount = Depends(get_current_account),
    dispatcher: ReviewDispatcher = Depends(Provide[Container.services.review_dispatcher]),
) -> ReviewAck:
    """
    리뷰 요청

    HTTP Status:
        202: 접수됨 (pending)
        402: 크레딧 부족 (details.suggest_ad)
        404: 로그 없음
        409: 요청할 수 없는 상태
        503: 리뷰 큐 포화
    """
    payload = payload or ReviewRequest()
    return dispatcher.request_review(
        trade_log_id, current_account.account_id, payload.is_from_rewarded_ad
    )


@router.post(
    "/{trade_log_id}/retry-review",
    response_model=ReviewAck,
    status_code=status.HTTP_202_ACCEPTED,
)
@inject
async def retry_review(
    trade_log_id: int = Path(..., gt=0),
    payload: Optional[ReviewRequest] = None,
    current_account: CurrentAccount = Depends(get_current_account),
    dispatcher: ReviewDispatcher = Depends(Provide[Container.services.review_dispatcher]),
) -> ReviewAck:
    """리뷰 재시도 - failed / error / rejected 상태에서만 가능, 새 크레딧 예약"""
    payload = payload or ReviewRequest()
    return dispatcher.retry_review(
        trade_log_id, current_account.account_id, payload.is_from_rewarded_ad
    )


@router.get("/{trade_log_id}/review-status", response_model=ReviewStatusView)
@inject
async def get_review_status(
    trade_log_id: int = Path(..., gt=0),
    current_account: CurrentAccount = Depends(get_current_account),
    trade_log_service: TradeLogService = Depends(get_trade_log_service),
    projector: ReviewQueryProjector = Depends(Provide[Container.services.review_projector]),
) -> ReviewStatusView:
    entry = trade_log_service.get_trade_log(trade_log_id, current_account.account_id)
    return projector.project(entry)
