from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from tradelogapi.models.credit import CreditBucket, LedgerEventType


class CreditAccountResponse(BaseModel):
    """크레딧 계정 (저장된 원본 값)"""

    id: int
    account_id: int
    plan_id: str
    regular_credits: int
    bonus_credits: int
    bonus_credits_expiry: Optional[datetime] = None
    rewarded_ad_day: Optional[date] = None
    rewarded_ad_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CreditBalanceResponse(BaseModel):
    """크레딧 잔액 응답 - 만료된 보너스 크레딧은 0으로 표시"""

    account_id: int = Field(..., description="계정 ID")
    plan_id: str = Field(..., description="플랜 ID")
    regular_credits: int = Field(..., description="일반 크레딧 잔액")
    bonus_credits: int = Field(..., description="유효한 보너스 크레딧 잔액")
    bonus_credits_expiry: Optional[datetime] = Field(None, description="보너스 크레딧 만료 시각")
    total_available: int = Field(..., description="사용 가능한 전체 크레딧")
    rewarded_ads_today: int = Field(0, description="오늘 시청한 리워드 광고 수")
    rewarded_ads_remaining: int = Field(0, description="오늘 남은 리워드 광고 수")


class CreditCheckResult(BaseModel):
    """크레딧 사용 가능 여부 (예약 아님)"""

    can_use: bool = Field(..., description="사용 가능 여부")
    reason: str = Field(..., description="판단 사유")
    bucket: Optional[CreditBucket] = Field(None, description="확인한 버킷")
    available: int = Field(0, description="해당 버킷의 유효 잔액")
    suggest_ad: bool = Field(False, description="리워드 광고 시청 권유 여부")
    error_code: Optional[str] = Field(None, description="실패 시 에러 코드")


class LedgerMovement(BaseModel):
    """원장 연산 결과"""

    success: bool = Field(..., description="성공 여부")
    ref_id: str = Field(..., description="멱등성 키")
    bucket: CreditBucket = Field(..., description="버킷")
    event_type: LedgerEventType = Field(..., description="이벤트 타입")
    delta: int = Field(..., description="잔액 변동량")
    balance_after: int = Field(..., description="변동 후 버킷 잔액")
    idempotent: bool = Field(False, description="이미 처리된 요청이었는지 여부")
    message: str = Field("", description="응답 메시지")


class CreditLedgerEntryResponse(BaseModel):
    """크레딧 원장 항목"""

    id: int
    account_id: int
    bucket: CreditBucket
    event_type: LedgerEventType
    delta: int
    balance_after: int
    reason: str
    ref_id: str
    trade_log_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CreditLedgerResponse(BaseModel):
    """크레딧 원장 조회 응답"""

    account_id: int = Field(..., description="계정 ID")
    entries: List[CreditLedgerEntryResponse] = Field(..., description="원장 항목 목록 (최신순)")
    total_count: int = Field(..., description="전체 항목 수")
    has_next: bool = Field(..., description="다음 페이지 존재 여부")


class BucketIntegrity(BaseModel):
    bucket: CreditBucket
    stored_balance: int
    ledger_sum: int
    difference: int


class CreditIntegrityResponse(BaseModel):
    """원장 정합성 검증 결과"""

    account_id: int = Field(..., description="계정 ID")
    status: str = Field(..., description="OK | MISMATCH")
    buckets: List[BucketIntegrity] = Field(..., description="버킷별 검증 결과")
    entry_count: int = Field(..., description="원장 항목 수")


class RewardedAdRequest(BaseModel):
    """리워드 광고 시청 보상 요청"""

    ad_ref: str = Field(..., min_length=1, max_length=100, description="광고 시청 고유 ID (멱등성 키)")


class RewardedAdResponse(BaseModel):
    """리워드 광고 보상 결과"""

    granted: int = Field(..., description="지급된 보너스 크레딧")
    bonus_credits: int = Field(..., description="보상 후 유효 보너스 크레딧")
    bonus_credits_expiry: Optional[datetime] = Field(None, description="보너스 크레딧 만료 시각")
    rewarded_ads_today: int = Field(..., description="오늘 시청한 리워드 광고 수")
    rewarded_ads_remaining: int = Field(..., description="오늘 남은 리워드 광고 수")
    idempotent: bool = Field(False, description="이미 처리된 광고였는지 여부")


class ProvisionAccountRequest(BaseModel):
    """구독 프로비저닝 요청 (관리자)"""

    account_id: int = Field(..., gt=0)
    plan_id: Optional[str] = Field(None, max_length=50)
    regular_credits: Optional[int] = Field(None, ge=0)


class GrantCreditsRequest(BaseModel):
    """일반 크레딧 지급 요청 (관리자)"""

    account_id: int = Field(..., gt=0)
    amount: int = Field(..., gt=0, description="지급할 크레딧")
    reason: str = Field(..., min_length=1, max_length=255, description="지급 사유")
    ref_id: Optional[str] = Field(None, max_length=100, description="멱등성 키")
