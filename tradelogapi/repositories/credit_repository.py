"""
크레딧 리포지토리

잔액 변경은 모두 조건부 UPDATE 한 문장으로 수행합니다
(UPDATE ... SET bucket = bucket - n WHERE bucket >= n). 동일 계정에 대한 동시
요청은 DB 행 잠금으로 직렬화되므로 잔액이 음수가 되지 않습니다.
"""

from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy import and_, desc, func, or_
from sqlalchemy.orm import Session

from tradelogapi.models.credit import (
    CreditAccount as CreditAccountModel,
    CreditBucket,
    CreditLedgerEntry as CreditLedgerEntryModel,
)
from tradelogapi.repositories.base import BaseRepository
from tradelogapi.schemas.credit import (
    CreditAccountResponse,
    CreditLedgerEntryResponse,
)


class CreditRepository(BaseRepository[CreditAccountModel, CreditAccountResponse]):
    """크레딧 계정 + 원장 리포지토리"""

    def __init__(self, db: Session):
        super().__init__(CreditAccountModel, CreditAccountResponse, db)

    @staticmethod
    def _bucket_column(bucket: CreditBucket):
        if CreditBucket(bucket) == CreditBucket.BONUS:
            return CreditAccountModel.bonus_credits
        return CreditAccountModel.regular_credits

    # ------------------------------------------------------------------
    # 계정
    # ------------------------------------------------------------------

    def get_account(self, account_id: int) -> Optional[CreditAccountResponse]:
        """계정 조회 (세션 캐시 무시, 항상 최신 값)"""
        self._ensure_clean_session()
        instance = (
            self.db.query(CreditAccountModel)
            .filter(CreditAccountModel.account_id == account_id)
            .populate_existing()
            .first()
        )
        return self._to_schema(instance)

    def create_account(
        self, account_id: int, plan_id: str, commit: bool = True
    ) -> CreditAccountResponse:
        """잔액 0 으로 계정 생성 (지급은 원장을 통해 별도로 기록)"""
        return self.create(
            commit=commit,
            account_id=account_id,
            plan_id=plan_id,
            regular_credits=0,
            bonus_credits=0,
            rewarded_ad_count=0,
        )

    def get_bucket_balance(self, account_id: int, bucket: CreditBucket) -> int:
        """버킷의 저장된 잔액 (만료 여부와 무관한 원본 카운터)"""
        column = self._bucket_column(bucket)
        value = (
            self.db.query(column)
            .filter(CreditAccountModel.account_id == account_id)
            .scalar()
        )
        return int(value or 0)

    def try_decrement(
        self, account_id: int, bucket: CreditBucket, amount: int, now: datetime
    ) -> Optional[int]:
        """
        조건부 차감 - 잔액이 충분할 때만 차감하고 차감 후 잔액을 반환

        보너스 버킷은 만료되지 않은 경우에만 차감합니다.
        조건에 맞는 행이 없으면 None.
        """
        column = self._bucket_column(bucket)
        conditions = [
            CreditAccountModel.account_id == account_id,
            column >= amount,
        ]
        if CreditBucket(bucket) == CreditBucket.BONUS:
            conditions.append(
                or_(
                    CreditAccountModel.bonus_credits_expiry.is_(None),
                    CreditAccountModel.bonus_credits_expiry > now,
                )
            )

        updated = (
            self.db.query(CreditAccountModel)
            .filter(and_(*conditions))
            .update({column: column - amount}, synchronize_session=False)
        )
        if updated == 0:
            return None
        return self.get_bucket_balance(account_id, bucket)

    def increment(
        self, account_id: int, bucket: CreditBucket, amount: int
    ) -> Optional[int]:
        """원자적 증가 - 증가 후 잔액 반환, 계정이 없으면 None"""
        column = self._bucket_column(bucket)
        updated = (
            self.db.query(CreditAccountModel)
            .filter(CreditAccountModel.account_id == account_id)
            .update({column: column + amount}, synchronize_session=False)
        )
        if updated == 0:
            return None
        return self.get_bucket_balance(account_id, bucket)

    def expire_bonus(self, account_id: int, expected_amount: int, now: datetime) -> bool:
        """만료된 보너스 크레딧을 0으로 정리 (다른 요청이 먼저 정리했으면 False)"""
        updated = (
            self.db.query(CreditAccountModel)
            .filter(
                CreditAccountModel.account_id == account_id,
                CreditAccountModel.bonus_credits == expected_amount,
                CreditAccountModel.bonus_credits > 0,
                CreditAccountModel.bonus_credits_expiry.isnot(None),
                CreditAccountModel.bonus_credits_expiry <= now,
            )
            .update({CreditAccountModel.bonus_credits: 0}, synchronize_session=False)
        )
        return updated > 0

    def add_bonus(self, account_id: int, amount: int, expiry: datetime) -> Optional[int]:
        """보너스 크레딧 추가 + 만료 시각 연장"""
        updated = (
            self.db.query(CreditAccountModel)
            .filter(CreditAccountModel.account_id == account_id)
            .update(
                {
                    CreditAccountModel.bonus_credits: CreditAccountModel.bonus_credits + amount,
                    CreditAccountModel.bonus_credits_expiry: expiry,
                },
                synchronize_session=False,
            )
        )
        if updated == 0:
            return None
        return self.get_bucket_balance(account_id, CreditBucket.BONUS)

    def claim_rewarded_ad_slot(
        self, account_id: int, today: date, max_daily: int
    ) -> Optional[int]:
        """
        일일 리워드 광고 쿼터 1회 사용

        날짜가 바뀌었으면 카운터를 먼저 초기화합니다.
        쿼터가 남아 있으면 사용 후 횟수를, 소진되었으면 None 반환.
        """
        self.db.query(CreditAccountModel).filter(
            CreditAccountModel.account_id == account_id,
            or_(
                CreditAccountModel.rewarded_ad_day.is_(None),
                CreditAccountModel.rewarded_ad_day != today,
            ),
        ).update(
            {
                CreditAccountModel.rewarded_ad_day: today,
                CreditAccountModel.rewarded_ad_count: 0,
            },
            synchronize_session=False,
        )

        updated = (
            self.db.query(CreditAccountModel)
            .filter(
                CreditAccountModel.account_id == account_id,
                CreditAccountModel.rewarded_ad_day == today,
                CreditAccountModel.rewarded_ad_count < max_daily,
            )
            .update(
                {CreditAccountModel.rewarded_ad_count: CreditAccountModel.rewarded_ad_count + 1},
                synchronize_session=False,
            )
        )
        if updated == 0:
            return None

        return (
            self.db.query(CreditAccountModel.rewarded_ad_count)
            .filter(CreditAccountModel.account_id == account_id)
            .scalar()
        )

    # ------------------------------------------------------------------
    # 원장
    # ------------------------------------------------------------------

    def get_entry_by_ref(self, ref_id: str) -> Optional[CreditLedgerEntryResponse]:
        entry = (
            self.db.query(CreditLedgerEntryModel)
            .filter(CreditLedgerEntryModel.ref_id == ref_id)
            .first()
        )
        if entry is None:
            return None
        return CreditLedgerEntryResponse.model_validate(entry)

    def add_entry(
        self,
        account_id: int,
        bucket: CreditBucket,
        event_type: str,
        delta: int,
        balance_after: int,
        reason: str,
        ref_id: str,
        trade_log_id: Optional[int] = None,
    ) -> CreditLedgerEntryResponse:
        """원장 항목 추가 (flush 만 수행, 커밋은 서비스가 결정)"""
        entry = CreditLedgerEntryModel(
            account_id=account_id,
            bucket=CreditBucket(bucket).value,
            event_type=event_type,
            delta=delta,
            balance_after=balance_after,
            reason=reason,
            ref_id=ref_id,
            trade_log_id=trade_log_id,
        )
        self.db.add(entry)
        self.db.flush()
        self.db.refresh(entry)
        return CreditLedgerEntryResponse.model_validate(entry)

    def get_entries(
        self, account_id: int, limit: int = 50, offset: int = 0
    ) -> List[CreditLedgerEntryResponse]:
        """원장 조회 (최신순)"""
        entries = (
            self.db.query(CreditLedgerEntryModel)
            .filter(CreditLedgerEntryModel.account_id == account_id)
            .order_by(desc(CreditLedgerEntryModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )
        return [CreditLedgerEntryResponse.model_validate(entry) for entry in entries]

    def count_entries(self, account_id: int) -> int:
        return (
            self.db.query(func.count(CreditLedgerEntryModel.id))
            .filter(CreditLedgerEntryModel.account_id == account_id)
            .scalar()
            or 0
        )

    def sum_deltas_by_bucket(self, account_id: int) -> Dict[str, int]:
        """버킷별 delta 합계"""
        rows = (
            self.db.query(
                CreditLedgerEntryModel.bucket,
                func.coalesce(func.sum(CreditLedgerEntryModel.delta), 0),
            )
            .filter(CreditLedgerEntryModel.account_id == account_id)
            .group_by(CreditLedgerEntryModel.bucket)
            .all()
        )
        return {bucket: int(total) for bucket, total in rows}
