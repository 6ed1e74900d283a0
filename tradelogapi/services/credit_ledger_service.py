"""
크레딧 원장 서비스

리뷰 비용 정산의 단일 진입점입니다. 잔액 카운터는 이 서비스를 통해서만
변경되며, 모든 변동은 원장에 기록됩니다.

리뷰 1회 비용 흐름:
- authorize: 조건부 차감으로 1 크레딧 예약 (리뷰 pending 진입 전)
- consume: 엔진이 답을 준 경우 예약 확정 (delta 0 항목)
- refund: 엔진 응답을 받지 못한 경우 예약 반환

모든 연산은 ref_id 로 멱등합니다. commit=False 로 호출하면 호출자의
트랜잭션에 참여합니다 (리뷰 레코드 전이와 함께 커밋).
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tradelogapi.config import Settings
from tradelogapi.core.exceptions import (
    InsufficientCreditError,
    LedgerStateError,
    NotFoundError,
    RewardedAdLimitError,
)
from tradelogapi.models.credit import CreditBucket, LedgerEventType
from tradelogapi.repositories.credit_repository import CreditRepository
from tradelogapi.schemas.credit import (
    BucketIntegrity,
    CreditAccountResponse,
    CreditBalanceResponse,
    CreditCheckResult,
    CreditIntegrityResponse,
    CreditLedgerEntryResponse,
    CreditLedgerResponse,
    LedgerMovement,
    RewardedAdResponse,
)
from tradelogapi.utils.timezone_utils import ensure_utc, get_ist_date, utc_now

logger = logging.getLogger(__name__)


def review_ref_id(trade_log_id: int, attempt_id: str, event: LedgerEventType) -> str:
    """리뷰 시도별 원장 멱등성 키"""
    return f"review:{trade_log_id}:{attempt_id}:{LedgerEventType(event).value}"


def effective_bonus(account: CreditAccountResponse, now: datetime) -> int:
    """만료된 보너스 크레딧은 0으로 취급 (만료 시각 없음 = 만료 없음)"""
    expiry = ensure_utc(account.bonus_credits_expiry)
    if expiry is None or now < expiry:
        return account.bonus_credits
    return 0


class CreditLedgerService:
    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings
        self.repo = CreditRepository(db)

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------

    def _require_account(self, account_id: int) -> CreditAccountResponse:
        account = self.repo.get_account(account_id)
        if account is None:
            raise NotFoundError(
                message="Credit account not found",
                details={"account_id": account_id},
            )
        return account

    def _rewarded_ads_today(self, account: CreditAccountResponse, now: datetime) -> int:
        if account.rewarded_ad_day != get_ist_date(now):
            return 0
        return account.rewarded_ad_count

    def _rewarded_ads_remaining(self, account: CreditAccountResponse, now: datetime) -> int:
        used = self._rewarded_ads_today(account, now)
        return max(self.settings.MAX_DAILY_REWARDED_ADS - used, 0)

    def get_balance(self, account_id: int) -> CreditBalanceResponse:
        """현재 잔액 (만료 반영)"""
        account = self._require_account(account_id)
        now = utc_now()
        bonus = effective_bonus(account, now)
        return CreditBalanceResponse(
            account_id=account.account_id,
            plan_id=account.plan_id,
            regular_credits=account.regular_credits,
            bonus_credits=bonus,
            bonus_credits_expiry=account.bonus_credits_expiry if bonus else None,
            total_available=account.regular_credits + bonus,
            rewarded_ads_today=self._rewarded_ads_today(account, now),
            rewarded_ads_remaining=self._rewarded_ads_remaining(account, now),
        )

    def can_use(
        self,
        account_id: int,
        amount: Optional[int] = None,
        prefer_bonus: bool = False,
    ) -> CreditCheckResult:
        """
        크레딧 사용 가능 여부 확인 (읽기 전용, 예약 아님)

        Args:
            account_id: 계정 ID
            amount: 필요한 크레딧 (기본: REVIEW_CREDIT_COST)
            prefer_bonus: True 면 보너스(광고) 버킷만 확인

        Returns:
            CreditCheckResult: 실패 시 reason / error_code / suggest_ad 포함
        """
        amount = amount or self.settings.REVIEW_CREDIT_COST
        account = self.repo.get_account(account_id)
        if account is None:
            return CreditCheckResult(
                can_use=False,
                reason="No active credit account found",
                error_code="NO_CREDIT_ACCOUNT",
            )

        now = utc_now()
        bonus = effective_bonus(account, now)

        if prefer_bonus:
            if bonus >= amount:
                return CreditCheckResult(
                    can_use=True,
                    reason="Bonus credits available",
                    bucket=CreditBucket.BONUS,
                    available=bonus,
                )
            if self._rewarded_ads_remaining(account, now) > 0:
                reason = "No ad credits available. Watch a rewarded ad to earn a bonus credit."
            else:
                reason = "No ad credits available and today's rewarded ad limit has been reached."
            return CreditCheckResult(
                can_use=False,
                reason=reason,
                bucket=CreditBucket.BONUS,
                available=bonus,
                suggest_ad=False,
                error_code="AD_CREDITS_EXHAUSTED",
            )

        if account.regular_credits >= amount:
            return CreditCheckResult(
                can_use=True,
                reason="Regular credits available",
                bucket=CreditBucket.REGULAR,
                available=account.regular_credits,
            )

        # 광고 크레딧을 이미 보유했거나 오늘 더 시청할 수 있으면 광고 경로 안내
        suggest_ad = bonus >= amount or self._rewarded_ads_remaining(account, now) > 0
        reason = "No regular credits remaining."
        if suggest_ad:
            reason += " Use a rewarded ad credit instead."
        return CreditCheckResult(
            can_use=False,
            reason=reason,
            bucket=CreditBucket.REGULAR,
            available=account.regular_credits,
            suggest_ad=suggest_ad,
            error_code="CREDITS_EXHAUSTED",
        )

    def has_outstanding_authorization(self, trade_log_id: int, attempt_id: str) -> bool:
        """consume/refund 되지 않은 예약이 있는지"""
        if self.repo.get_entry_by_ref(review_ref_id(trade_log_id, attempt_id, LedgerEventType.AUTHORIZE)) is None:
            return False
        for event in (LedgerEventType.CONSUME, LedgerEventType.REFUND):
            if self.repo.get_entry_by_ref(review_ref_id(trade_log_id, attempt_id, event)) is not None:
                return False
        return True

    def get_ledger(self, account_id: int, limit: int = 50, offset: int = 0) -> CreditLedgerResponse:
        """원장 조회 (페이징, 최신순)"""
        self._require_account(account_id)
        entries = self.repo.get_entries(account_id, limit=limit, offset=offset)
        total_count = self.repo.count_entries(account_id)
        return CreditLedgerResponse(
            account_id=account_id,
            entries=entries,
            total_count=total_count,
            has_next=offset + len(entries) < total_count,
        )

    def verify_integrity(self, account_id: int) -> CreditIntegrityResponse:
        """버킷별 원장 delta 합계와 저장된 잔액 비교"""
        account = self._require_account(account_id)
        sums = self.repo.sum_deltas_by_bucket(account_id)
        stored = {
            CreditBucket.REGULAR: account.regular_credits,
            CreditBucket.BONUS: account.bonus_credits,
        }

        buckets = []
        for bucket, stored_balance in stored.items():
            ledger_sum = sums.get(bucket.value, 0)
            buckets.append(
                BucketIntegrity(
                    bucket=bucket,
                    stored_balance=stored_balance,
                    ledger_sum=ledger_sum,
                    difference=stored_balance - ledger_sum,
                )
            )

        status = "OK" if all(b.difference == 0 for b in buckets) else "MISMATCH"
        if status != "OK":
            logger.error(f"Credit ledger mismatch for account {account_id}: {buckets}")
        return CreditIntegrityResponse(
            account_id=account_id,
            status=status,
            buckets=buckets,
            entry_count=self.repo.count_entries(account_id),
        )

    # ------------------------------------------------------------------
    # 리뷰 예약 / 확정 / 반환
    # ------------------------------------------------------------------

    def authorize(
        self,
        account_id: int,
        bucket: CreditBucket,
        trade_log_id: int,
        attempt_id: str,
        amount: Optional[int] = None,
        commit: bool = True,
    ) -> LedgerMovement:
        """
        리뷰 시도 1회분 예약 - 조건부 차감 + authorize 원장 기록

        Raises:
            InsufficientCreditError: 조건부 차감에 해당하는 행이 없음
        """
        amount = amount or self.settings.REVIEW_CREDIT_COST
        bucket = CreditBucket(bucket)
        ref_id = review_ref_id(trade_log_id, attempt_id, LedgerEventType.AUTHORIZE)

        existing = self.repo.get_entry_by_ref(ref_id)
        if existing:
            return self._movement(existing, idempotent=True)

        balance_after = self.repo.try_decrement(account_id, bucket, amount, utc_now())
        if balance_after is None:
            raise InsufficientCreditError(account_id, bucket.value, amount)

        entry = self._record(
            account_id=account_id,
            bucket=bucket,
            event_type=LedgerEventType.AUTHORIZE,
            delta=-amount,
            balance_after=balance_after,
            reason=f"Review authorization for trade log {trade_log_id}",
            ref_id=ref_id,
            trade_log_id=trade_log_id,
            commit=commit,
        )
        logger.info(
            f"Authorized {amount} {bucket.value} credit(s) for account {account_id}, "
            f"trade log {trade_log_id} attempt {attempt_id} (balance {balance_after})"
        )
        return entry

    def consume(
        self,
        account_id: int,
        trade_log_id: int,
        attempt_id: str,
        bucket: Optional[CreditBucket] = None,
        commit: bool = True,
    ) -> LedgerMovement:
        """
        예약 확정 - 엔진이 결과를 반환한 시도

        Raises:
            LedgerStateError: 예약이 없거나 이미 반환됨
        """
        ref_id = review_ref_id(trade_log_id, attempt_id, LedgerEventType.CONSUME)
        existing = self.repo.get_entry_by_ref(ref_id)
        if existing:
            return self._movement(existing, idempotent=True)

        authorization = self._require_authorization(account_id, trade_log_id, attempt_id, bucket)
        if self.repo.get_entry_by_ref(review_ref_id(trade_log_id, attempt_id, LedgerEventType.REFUND)):
            raise LedgerStateError(
                f"Authorization for trade log {trade_log_id} attempt {attempt_id} was already refunded"
            )

        entry = self._record(
            account_id=account_id,
            bucket=authorization.bucket,
            event_type=LedgerEventType.CONSUME,
            delta=0,
            balance_after=self.repo.get_bucket_balance(account_id, authorization.bucket),
            reason=f"Review completed for trade log {trade_log_id}",
            ref_id=ref_id,
            trade_log_id=trade_log_id,
            commit=commit,
        )
        logger.info(
            f"Consumed {authorization.bucket.value} credit reservation for trade log "
            f"{trade_log_id} attempt {attempt_id}"
        )
        return entry

    def refund(
        self,
        account_id: int,
        trade_log_id: int,
        attempt_id: str,
        bucket: Optional[CreditBucket] = None,
        commit: bool = True,
    ) -> LedgerMovement:
        """
        예약 반환 - 파이프라인이 응답을 받지 못한 시도

        Raises:
            LedgerStateError: 예약이 없거나 이미 확정됨
        """
        ref_id = review_ref_id(trade_log_id, attempt_id, LedgerEventType.REFUND)
        existing = self.repo.get_entry_by_ref(ref_id)
        if existing:
            return self._movement(existing, idempotent=True)

        authorization = self._require_authorization(account_id, trade_log_id, attempt_id, bucket)
        if self.repo.get_entry_by_ref(review_ref_id(trade_log_id, attempt_id, LedgerEventType.CONSUME)):
            raise LedgerStateError(
                f"Authorization for trade log {trade_log_id} attempt {attempt_id} was already consumed"
            )

        amount = -authorization.delta
        balance_after = self.repo.increment(account_id, authorization.bucket, amount)
        if balance_after is None:
            raise LedgerStateError(f"Credit account {account_id} disappeared during refund")

        entry = self._record(
            account_id=account_id,
            bucket=authorization.bucket,
            event_type=LedgerEventType.REFUND,
            delta=amount,
            balance_after=balance_after,
            reason=f"Review refund for trade log {trade_log_id}",
            ref_id=ref_id,
            trade_log_id=trade_log_id,
            commit=commit,
        )
        logger.warning(
            f"Refunded {amount} {authorization.bucket.value} credit(s) to account {account_id} "
            f"for trade log {trade_log_id} attempt {attempt_id} (balance {balance_after})"
        )
        return entry

    def _require_authorization(
        self,
        account_id: int,
        trade_log_id: int,
        attempt_id: str,
        bucket: Optional[CreditBucket],
    ) -> CreditLedgerEntryResponse:
        authorization = self.repo.get_entry_by_ref(
            review_ref_id(trade_log_id, attempt_id, LedgerEventType.AUTHORIZE)
        )
        if authorization is None or authorization.account_id != account_id:
            raise LedgerStateError(
                f"No authorization for trade log {trade_log_id} attempt {attempt_id}"
            )
        if bucket is not None and CreditBucket(bucket) != authorization.bucket:
            raise LedgerStateError(
                f"Authorization for trade log {trade_log_id} was made from the "
                f"{authorization.bucket.value} bucket, not {CreditBucket(bucket).value}"
            )
        return authorization

    # ------------------------------------------------------------------
    # 지급
    # ------------------------------------------------------------------

    def provision_account(
        self,
        account_id: int,
        plan_id: Optional[str] = None,
        regular_credits: Optional[int] = None,
    ) -> CreditBalanceResponse:
        """구독 프로비저닝 - 계정 생성 + 플랜 크레딧 지급 (이미 있으면 그대로 반환)"""
        if self.repo.get_account(account_id) is not None:
            return self.get_balance(account_id)

        plan_id = plan_id or self.settings.DEFAULT_PLAN_ID
        credits = self.settings.DEFAULT_PLAN_CREDITS if regular_credits is None else regular_credits

        try:
            self.repo.create_account(account_id, plan_id, commit=False)
            if credits > 0:
                balance_after = self.repo.increment(account_id, CreditBucket.REGULAR, credits)
                self.repo.add_entry(
                    account_id=account_id,
                    bucket=CreditBucket.REGULAR,
                    event_type=LedgerEventType.GRANT.value,
                    delta=credits,
                    balance_after=balance_after,
                    reason=f"Plan '{plan_id}' provisioned",
                    ref_id=f"provision:{account_id}",
                )
            self.db.commit()
        except IntegrityError:
            # 동시 프로비저닝 - 먼저 생성된 계정을 사용
            self.db.rollback()
            logger.info(f"Credit account {account_id} was provisioned concurrently")
            return self.get_balance(account_id)

        logger.info(f"Provisioned credit account {account_id} (plan={plan_id}, credits={credits})")
        return self.get_balance(account_id)

    def grant_regular(
        self,
        account_id: int,
        amount: int,
        reason: str,
        ref_id: Optional[str] = None,
    ) -> LedgerMovement:
        """일반 크레딧 지급 (플랜 충전 / 관리자 지급)"""
        self._require_account(account_id)
        ref_id = ref_id or f"grant:{account_id}:{uuid.uuid4().hex}"

        existing = self.repo.get_entry_by_ref(ref_id)
        if existing:
            return self._movement(existing, idempotent=True)

        balance_after = self.repo.increment(account_id, CreditBucket.REGULAR, amount)
        movement = self._record(
            account_id=account_id,
            bucket=CreditBucket.REGULAR,
            event_type=LedgerEventType.GRANT,
            delta=amount,
            balance_after=balance_after,
            reason=reason,
            ref_id=ref_id,
        )
        logger.info(f"Granted {amount} regular credit(s) to account {account_id}: {reason}")
        return movement

    def grant_rewarded_ad_credit(self, account_id: int, ad_ref: str) -> RewardedAdResponse:
        """
        리워드 광고 시청 보상

        BONUS_CREDITS_PER_AD 만큼 보너스 크레딧을 지급하고 만료 시각을
        now + BONUS_CREDIT_TTL_HOURS 로 연장합니다. 하루 MAX_DAILY_REWARDED_ADS 회 제한.

        Raises:
            RewardedAdLimitError: 일일 쿼터 소진
        """
        account = self._require_account(account_id)
        ref_id = f"rewarded_ad:{account_id}:{ad_ref}"
        now = utc_now()

        existing = self.repo.get_entry_by_ref(ref_id)
        if existing:
            return self._rewarded_ad_response(account_id, existing.delta, now, idempotent=True)

        # 만료된 잔여 보너스는 새 만료 시각으로 되살아나지 않도록 먼저 정리
        if account.bonus_credits > 0 and effective_bonus(account, now) == 0:
            if self.repo.expire_bonus(account_id, account.bonus_credits, now):
                self.repo.add_entry(
                    account_id=account_id,
                    bucket=CreditBucket.BONUS,
                    event_type=LedgerEventType.EXPIRE.value,
                    delta=-account.bonus_credits,
                    balance_after=0,
                    reason="Bonus credits expired",
                    ref_id=f"expire:{account_id}:{uuid.uuid4().hex}",
                )

        used = self.repo.claim_rewarded_ad_slot(
            account_id, get_ist_date(now), self.settings.MAX_DAILY_REWARDED_ADS
        )
        if used is None:
            self.db.rollback()
            raise RewardedAdLimitError(
                message="Daily rewarded ad limit reached. Please try again tomorrow.",
                details={"max_daily_rewarded_ads": self.settings.MAX_DAILY_REWARDED_ADS},
            )

        amount = self.settings.BONUS_CREDITS_PER_AD
        expiry = now + timedelta(hours=self.settings.BONUS_CREDIT_TTL_HOURS)
        balance_after = self.repo.add_bonus(account_id, amount, expiry)
        self._record(
            account_id=account_id,
            bucket=CreditBucket.BONUS,
            event_type=LedgerEventType.GRANT,
            delta=amount,
            balance_after=balance_after,
            reason=f"Rewarded ad {ad_ref}",
            ref_id=ref_id,
        )
        logger.info(
            f"Granted {amount} bonus credit(s) to account {account_id} for rewarded ad "
            f"{ad_ref} ({used}/{self.settings.MAX_DAILY_REWARDED_ADS} today)"
        )
        return self._rewarded_ad_response(account_id, amount, now)

    def _rewarded_ad_response(
        self, account_id: int, granted: int, now: datetime, idempotent: bool = False
    ) -> RewardedAdResponse:
        account = self._require_account(account_id)
        return RewardedAdResponse(
            granted=granted,
            bonus_credits=effective_bonus(account, now),
            bonus_credits_expiry=account.bonus_credits_expiry,
            rewarded_ads_today=self._rewarded_ads_today(account, now),
            rewarded_ads_remaining=self._rewarded_ads_remaining(account, now),
            idempotent=idempotent,
        )

    # ------------------------------------------------------------------
    # 내부
    # ------------------------------------------------------------------

    def _record(
        self,
        account_id: int,
        bucket: CreditBucket,
        event_type: LedgerEventType,
        delta: int,
        balance_after: int,
        reason: str,
        ref_id: str,
        trade_log_id: Optional[int] = None,
        commit: bool = True,
    ) -> LedgerMovement:
        """원장 기록 + (선택) 커밋

        단독 호출(commit=True)에서 ref_id 경합이 나면 먼저 기록된 항목을 반환합니다.
        호출자 트랜잭션 안(commit=False)에서는 예외를 그대로 전파합니다.
        """
        try:
            entry = self.repo.add_entry(
                account_id=account_id,
                bucket=bucket,
                event_type=LedgerEventType(event_type).value,
                delta=delta,
                balance_after=balance_after,
                reason=reason,
                ref_id=ref_id,
                trade_log_id=trade_log_id,
            )
            if commit:
                self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if not commit:
                raise
            existing = self.repo.get_entry_by_ref(ref_id)
            if existing is None:
                raise
            return self._movement(existing, idempotent=True)

        return self._movement(entry)

    @staticmethod
    def _movement(entry: CreditLedgerEntryResponse, idempotent: bool = False) -> LedgerMovement:
        return LedgerMovement(
            success=True,
            ref_id=entry.ref_id,
            bucket=entry.bucket,
            event_type=entry.event_type,
            delta=entry.delta,
            balance_after=entry.balance_after,
            idempotent=idempotent,
            message="Transaction already processed (idempotent)" if idempotent else "Transaction completed successfully",
        )
