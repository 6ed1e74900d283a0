"""
크레딧 API 라우터

사용자용 엔드포인트:
- GET /credits/balance: 내 크레딧 잔액 (만료 반영)
- GET /credits/can-use: 리뷰 요청 가능 여부 (예약 아님)
- GET /credits/ledger: 내 크레딧 원장
- POST /credits/rewarded-ad: 리워드 광고 시청 보상
- GET /credits/integrity: 내 원장 정합성 검증

관리자용 엔드포인트:
- POST /credits/admin/provision: 구독 프로비저닝
- POST /credits/admin/grant: 일반 크레딧 지급
"""

from fastapi import APIRouter, Depends, Query

from tradelogapi.core.auth_middleware import get_current_account, require_admin
from tradelogapi.deps import get_credit_ledger_service
from tradelogapi.schemas.auth import CurrentAccount
from tradelogapi.schemas.credit import (
    CreditBalanceResponse,
    CreditCheckResult,
    CreditIntegrityResponse,
    CreditLedgerResponse,
    GrantCreditsRequest,
    LedgerMovement,
    ProvisionAccountRequest,
    RewardedAdRequest,
    RewardedAdResponse,
)
from tradelogapi.services.credit_ledger_service import CreditLedgerService

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/balance", response_model=CreditBalanceResponse)
async def get_my_balance(
    current_account: CurrentAccount = Depends(get_current_account),
    ledger: CreditLedgerService = Depends(get_credit_ledger_service),
) -> CreditBalanceResponse:
    return ledger.get_balance(current_account.account_id)


@router.get("/can-use", response_model=CreditCheckResult)
async def can_use_credit(
    prefer_bonus: bool = Query(False, description="보너스(광고) 크레딧으로 확인"),
    current_account: CurrentAccount = Depends(get_current_account),
    ledger: CreditLedgerService = Depends(get_credit_ledger_service),
) -> CreditCheckResult:
    """리뷰 1회 비용 사용 가능 여부 - 긍정 응답이 예약을 의미하지는 않음"""
    return ledger.can_use(current_account.account_id, prefer_bonus=prefer_bonus)


@router.get("/ledger", response_model=CreditLedgerResponse)
async def get_my_ledger(
    limit: int = Query(50, ge=1, le=100, description="페이지 크기"),
    offset: int = Query(0, ge=0, description="오프셋"),
    current_account: CurrentAccount = Depends(get_current_account),
    ledger: CreditLedgerService = Depends(get_credit_ledger_service),
) -> CreditLedgerResponse:
    return ledger.get_ledger(current_account.account_id, limit=limit, offset=offset)


@router.post("/rewarded-ad", response_model=RewardedAdResponse)
async def claim_rewarded_ad(
    payload: RewardedAdRequest,
    current_account: CurrentAccount = Depends(get_current_account),
    ledger: CreditLedgerService = Depends(get_credit_ledger_service),
) -> RewardedAdResponse:
    """
    리워드 광고 시청 보상 - 보너스 크레딧 지급

    HTTP Status:
        200: 지급 완료 (같은 ad_ref 재요청은 idempotent=True)
        404: 크레딧 계정 없음
        429: 오늘 광고 한도 소진 (AD_LIMIT_REACHED)
    """
    return ledger.grant_rewarded_ad_credit(current_account.account_id, payload.ad_ref)


@router.get("/integrity", response_model=CreditIntegrityResponse)
async def verify_my_integrity(
    current_account: CurrentAccount = Depends(get_current_account),
    ledger: CreditLedgerService = Depends(get_credit_ledger_service),
) -> CreditIntegrityResponse:
    return ledger.verify_integrity(current_account.account_id)


@router.post("/admin/provision", response_model=CreditBalanceResponse)
async def provision_account(
    payload: ProvisionAccountRequest,
    admin: CurrentAccount = Depends(require_admin),
    ledger: CreditLedgerService = Depends(get_credit_ledger_service),
) -> CreditBalanceResponse:
    return ledger.provision_account(
        payload.account_id,
        plan_id=payload.plan_id,
        regular_credits=payload.regular_credits,
    )


@router.post("/admin/grant", response_model=LedgerMovement)
async def grant_credits(
    payload: GrantCreditsRequest,
    admin: CurrentAccount = Depends(require_admin),
    ledger: CreditLedgerService = Depends(get_credit_ledger_service),
) -> LedgerMovement:
    return ledger.grant_regular(
        payload.account_id,
        payload.amount,
        reason=f"{payload.reason} (admin {admin.account_id})",
        ref_id=payload.ref_id,
    )
