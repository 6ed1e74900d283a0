"""
크레딧 데이터 모델

리뷰 요청에 사용되는 크레딧 잔액(계정당 1행)과, 모든 잔액 변동을 기록하는
원장(Ledger) 테이블을 정의합니다.

원장 원칙:
1. 불변성: 한번 기록된 항목은 수정되지 않음
2. 멱등성: ref_id 유니크 제약으로 중복 처리 방지
3. 정합성: 버킷별 delta 합계 == 계정의 저장된 잔액
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import UniqueConstraint

from tradelogapi.models.base import BaseModel


class CreditBucket(str, Enum):
    """크레딧 버킷"""

    REGULAR = "regular"  # 플랜/결제로 지급된 크레딧
    BONUS = "bonus"  # 리워드 광고 시청으로 획득한 기간 한정 크레딧


class LedgerEventType(str, Enum):
    """원장 이벤트 타입"""

    GRANT = "grant"  # 지급 (플랜 프로비저닝, 관리자 지급, 광고 보상)
    AUTHORIZE = "authorize"  # 리뷰 시도를 위한 예약 (잔액 차감)
    CONSUME = "consume"  # 예약 확정 (delta 0)
    REFUND = "refund"  # 예약 반환 (잔액 복구)
    ADJUST = "adjust"  # 관리자 조정
    EXPIRE = "expire"  # 만료된 보너스 크레딧 정리


class CreditAccount(BaseModel):
    """크레딧 계정 - 계정당 1행, 원장 연산으로만 변경"""

    __tablename__ = "credit_accounts"
    __table_args__ = (
        UniqueConstraint("account_id", name="uq_credit_accounts_account_id"),
        CheckConstraint("regular_credits >= 0", name="ck_credit_accounts_regular_non_negative"),
        CheckConstraint("bonus_credits >= 0", name="ck_credit_accounts_bonus_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    plan_id: Mapped[str] = mapped_column(String(50), nullable=False)

    regular_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bonus_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # null 이면 만료 없음
    bonus_credits_expiry: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # 일일 리워드 광고 쿼터 (IST 기준 날짜)
    rewarded_ad_day: Mapped[Optional[date]] = mapped_column(Date)
    rewarded_ad_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CreditLedgerEntry(BaseModel):
    """크레딧 원장 - 모든 잔액 변동의 감사 기록"""

    __tablename__ = "credit_ledger"
    __table_args__ = (
        UniqueConstraint("ref_id", name="uq_credit_ledger_ref_id"),
        Index("idx_credit_ledger_account", "account_id", "id"),
        Index("idx_credit_ledger_trade_log", "trade_log_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    bucket: Mapped[str] = mapped_column(String(16), nullable=False)
    event_type: Mapped[str] = mapped_column(String(16), nullable=False)

    # 잔액 변동량 (consume 은 0)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    # 변동 후 해당 버킷 잔액
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    # 멱등성 키, 리뷰 관련 항목은 "review:{trade_log_id}:{attempt_id}:{event}"
    ref_id: Mapped[str] = mapped_column(String(128), nullable=False)
    trade_log_id: Mapped[Optional[int]] = mapped_column(BigInteger)
