import logging
from datetime import timedelta
from typing import Optional

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends

from tradelogapi.containers import Container
from tradelogapi.core.auth_middleware import require_admin, verify_engine_token
from tradelogapi.schemas.auth import CurrentAccount
from tradelogapi.schemas.review import (
    ReconcileRequest,
    ReconcileResponse,
    ReviewCallbackAck,
)
from tradelogapi.schemas.verdict import ReviewCallback
from tradelogapi.services.review_dispatcher import ReviewDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reviews", tags=["reviews"])


@router.post(
    "/callback",
    response_model=ReviewCallbackAck,
    dependencies=[Depends(verify_engine_token)],
)
@inject
async def review_callback(
    callback: ReviewCallback,
    dispatcher: ReviewDispatcher = Depends(Provide[Container.services.review_dispatcher]),
) -> ReviewCallbackAck:
    """
    분석 엔진 완료 콜백

    중복/지연 콜백도 200 으로 응답합니다 (accepted=False). 엔진은 재전송할 필요가 없습니다.
    """
    return dispatcher.handle_callback(callback)


@router.post("/admin/reconcile", response_model=ReconcileResponse)
@inject
async def reconcile_stale_reviews(
    payload: Optional[ReconcileRequest] = None,
    admin: CurrentAccount = Depends(require_admin),
    dispatcher: ReviewDispatcher = Depends(Provide[Container.services.review_dispatcher]),
) -> ReconcileResponse:
    """오래된 pending 리뷰를 TIMEOUT 으로 정리하고 크레딧 반환 (관리자)"""
    older_than = None
    if payload and payload.older_than_seconds:
        older_than = timedelta(seconds=payload.older_than_seconds)
    logger.info(f"Admin {admin.account_id} triggered stale review reconciliation")
    return dispatcher.reconcile_stale_reviews(older_than)
