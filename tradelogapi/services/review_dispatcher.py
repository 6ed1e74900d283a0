"""
리뷰 디스패처

리뷰 레코드와 크레딧 원장을 함께 움직이는 유일한 컴포넌트입니다.

요청 흐름:
1. 소유 확인 → 상태 확인 → 큐 여유 확인 (크레딧 이동 전)
2. can_use → authorize (조건부 차감) → 레코드 pending (조건부 UPDATE)
   - 2 는 한 트랜잭션: 레코드 전이에 실패하면 예약도 함께 롤백
3. 워커 풀에 시도 등록 후 즉시 응답

종료 흐름:
- complete: 엔진이 답을 줌 → completed / rejected / failed + consume
- fail: 답을 받지 못함 (타임아웃, 통신 오류, 파싱 실패 등) → error + refund
- 두 연산 모두 pending 이면서 시도 ID 가 일치할 때만 적용 (중복/지연 콜백 무시)
"""

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Callable, ContextManager, Dict, FrozenSet, Optional, Set

from sqlalchemy.orm import Session

from tradelogapi.config import Settings
from tradelogapi.core.exceptions import (
    CreditExhaustedError,
    InsufficientCreditError,
    InvalidReviewStateError,
    NotFoundError,
    ReviewQueueFullError,
)
from tradelogapi.database.session import get_db_context
from tradelogapi.models.credit import CreditBucket
from tradelogapi.models.trade_log import CreditType, ReviewStatus
from tradelogapi.providers.analysis.engine import AnalysisEngine
from tradelogapi.providers.analysis.exceptions import ReviewFault, classify_fault
from tradelogapi.providers.queue.events import ReviewFinalizedEvent
from tradelogapi.providers.queue.review_events import ReviewEventPublisher
from tradelogapi.repositories.trade_log_repository import TradeLogRepository
from tradelogapi.schemas.review import (
    ReconcileResponse,
    ReviewAck,
    ReviewCallbackAck,
    TradeParameters,
)
from tradelogapi.schemas.trade_log import TradeLogResponse
from tradelogapi.schemas.verdict import (
    EngineError,
    EngineVerdict,
    ReviewCallback,
    VerdictParseError,
    parse_verdict,
)
from tradelogapi.services.credit_ledger_service import CreditLedgerService
from tradelogapi.services.review_state import (
    CHARGED_STATUSES,
    METADATA_STATUSES,
    REQUESTABLE_STATUSES,
    RETRYABLE_STATUSES,
    ensure_can_start,
    ensure_transition,
    outcome_to_status,
)
from tradelogapi.services.review_worker_pool import ReviewJob, ReviewWorkerPool
from tradelogapi.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], ContextManager[Session]]


def trade_parameters_from(entry: TradeLogResponse) -> TradeParameters:
    return TradeParameters(
        instrument_key=entry.instrument_key,
        trading_symbol=entry.trading_symbol,
        instrument_name=entry.instrument_name,
        exchange=entry.exchange,
        direction=entry.direction.value,
        quantity=entry.quantity,
        entry_price=entry.entry_price,
        target_price=entry.target_price,
        stop_loss=entry.stop_loss,
        term=entry.term.value,
        reasoning=entry.reasoning,
        credit_type=entry.credit_type,
        is_from_rewarded_ad=entry.is_from_rewarded_ad,
        logged_at=entry.created_at,
    )


class ReviewDispatcher:
    def __init__(
        self,
        settings: Settings,
        engine: AnalysisEngine,
        pool: ReviewWorkerPool,
        publisher: ReviewEventPublisher,
        session_factory: SessionFactory = get_db_context,
    ):
        self.settings = settings
        self.engine = engine
        self.pool = pool
        self.publisher = publisher
        self._session_factory = session_factory
        # attempt_id → 콜백 대기 중인 워커
        self._waiters: Dict[str, asyncio.Future] = {}
        # 큐에 있거나 처리 중인 attempt_id
        self._inflight: Set[str] = set()

    async def start(self) -> None:
        await self.pool.start(self._run_attempt)

    async def stop(self) -> None:
        await self.pool.stop()
        await self.engine.aclose()

    # ------------------------------------------------------------------
    # 요청 / 재시도
    # ------------------------------------------------------------------

    def request_review(
        self, trade_log_id: int, account_id: int, is_from_rewarded_ad: bool = False
    ) -> ReviewAck:
        """최초 리뷰 요청 (none 에서만 가능)"""
        return self._start_attempt(
            trade_log_id, account_id, is_from_rewarded_ad, REQUESTABLE_STATUSES
        )

    def retry_review(
        self, trade_log_id: int, account_id: int, is_from_rewarded_ad: bool = False
    ) -> ReviewAck:
        """재시도 (failed / error / rejected 에서만 가능, 새 크레딧 예약)"""
        return self._start_attempt(
            trade_log_id, account_id, is_from_rewarded_ad, RETRYABLE_STATUSES
        )

    def _start_attempt(
        self,
        trade_log_id: int,
        account_id: int,
        is_from_rewarded_ad: bool,
        allowed: FrozenSet[ReviewStatus],
    ) -> ReviewAck:
        bucket = CreditBucket.BONUS if is_from_rewarded_ad else CreditBucket.REGULAR
        attempt_id = uuid.uuid4().hex

        with self._session_factory() as db:
            trade_logs = TradeLogRepository(db)
            ledger = CreditLedgerService(db, self.settings)

            entry = trade_logs.get_owned(trade_log_id, account_id)
            if entry is None:
                raise NotFoundError(
                    message="Trade log not found",
                    details={"trade_log_id": trade_log_id},
                )

            ensure_can_start(entry.review_status, allowed)

            if not self.pool.has_capacity():
                raise ReviewQueueFullError()

            check = ledger.can_use(account_id, prefer_bonus=is_from_rewarded_ad)
            if not check.can_use:
                logger.info(
                    f"Review for trade log {trade_log_id} refused: {check.error_code} ({check.reason})"
                )
                raise CreditExhaustedError(
                    message=check.reason,
                    error_code=check.error_code or "CREDITS_EXHAUSTED",
                    suggest_ad=check.suggest_ad,
                    details={
                        "bucket": check.bucket.value if check.bucket else None,
                        "available": check.available,
                    },
                )

            try:
                ledger.authorize(account_id, bucket, trade_log_id, attempt_id, commit=False)
            except InsufficientCreditError:
                # can_use 와 authorize 사이에 다른 요청이 잔액을 가져감
                raise CreditExhaustedError(
                    message=f"No {bucket.value} credits available",
                    error_code="AD_CREDITS_EXHAUSTED" if is_from_rewarded_ad else "CREDITS_EXHAUSTED",
                    suggest_ad=not is_from_rewarded_ad,
                    details={"bucket": bucket.value, "available": 0},
                )

            accepted = trade_logs.begin_attempt(
                trade_log_id=trade_log_id,
                from_statuses=allowed,
                attempt_id=attempt_id,
                credit_type=CreditType(bucket.value).value,
                is_from_rewarded_ad=is_from_rewarded_ad,
                requested_at=utc_now(),
            )
            if not accepted:
                # 동시 요청에 밀림 - 예외로 트랜잭션이 롤백되어 예약도 취소됨
                db.rollback()
                current = trade_logs.get_fresh(trade_log_id)
                raise InvalidReviewStateError(
                    current_status=current.review_status.value if current else "unknown",
                    message="Review state changed by a concurrent request",
                )

            db.commit()
            entry = trade_logs.get_fresh(trade_log_id)

        logger.info(
            f"Trade log {trade_log_id} -> pending (attempt {attempt_id}, {bucket.value} credit)"
        )

        job = ReviewJob(
            trade_log_id=trade_log_id,
            attempt_id=attempt_id,
            account_id=account_id,
            parameters=trade_parameters_from(entry),
        )
        self._inflight.add(attempt_id)
        try:
            self.pool.submit(job)
        except ReviewQueueFullError as e:
            self._inflight.discard(attempt_id)
            self.fail(trade_log_id, attempt_id, ReviewFault("QUEUE_FULL", str(e)))
            return self._ack(trade_log_id, account_id, attempt_id, "Review could not be queued; credit refunded")

        return self._ack(trade_log_id, account_id, attempt_id, "Review requested")

    def _ack(self, trade_log_id: int, account_id: int, attempt_id: str, message: str) -> ReviewAck:
        with self._session_factory() as db:
            entry = TradeLogRepository(db).get_owned(trade_log_id, account_id)
        return ReviewAck(
            trade_log_id=trade_log_id,
            review_status=entry.review_status,
            attempt_id=attempt_id,
            credit_type=entry.credit_type,
            is_from_rewarded_ad=entry.is_from_rewarded_ad,
            review_requested_at=entry.review_requested_at,
            message=message,
        )

    # ------------------------------------------------------------------
    # 종료
    # ------------------------------------------------------------------

    @staticmethod
    def _is_current_attempt(entry: Optional[TradeLogResponse], attempt_id: str) -> bool:
        return (
            entry is not None
            and entry.review_status == ReviewStatus.PENDING
            and entry.review_attempt_id == attempt_id
        )

    def complete(
        self, trade_log_id: int, attempt_id: str, verdict: EngineVerdict
    ) -> Optional[ReviewStatus]:
        """
        엔진 판정 반영 + 예약 확정

        Returns:
            적용된 종료 상태, 현재 시도가 아니면 None (no-op)
        """
        status = outcome_to_status(verdict.outcome)

        with self._session_factory() as db:
            trade_logs = TradeLogRepository(db)
            entry = trade_logs.get_fresh(trade_log_id)
            if not self._is_current_attempt(entry, attempt_id):
                logger.info(
                    f"Ignoring verdict for trade log {trade_log_id} attempt {attempt_id}: "
                    f"not the pending attempt"
                )
                return None

            ensure_transition(entry.review_status, status)

            error = None
            if status == ReviewStatus.FAILED:
                engine_error = verdict.error or EngineError()
                error = {
                    "message": engine_error.message,
                    "code": engine_error.code,
                    "type": "engine",
                    "retryable": True,
                }
            metadata = self._review_metadata(verdict) if status in METADATA_STATUSES else None

            finalized = trade_logs.finalize_attempt(
                trade_log_id=trade_log_id,
                attempt_id=attempt_id,
                status=status,
                completed_at=utc_now(),
                result=[verdict.payload.model_dump(mode="json")],
                error=error,
                metadata=metadata,
            )
            if not finalized:
                db.rollback()
                return None

            CreditLedgerService(db, self.settings).consume(
                entry.account_id,
                trade_log_id,
                attempt_id,
                bucket=CreditBucket(entry.credit_type.value),
                commit=False,
            )
            db.commit()

        logger.info(f"Trade log {trade_log_id} -> {status.value} (attempt {attempt_id}, charged)")
        self._release_waiter(attempt_id, status)
        self._publish(entry, attempt_id, status)
        return status

    def fail(
        self, trade_log_id: int, attempt_id: str, fault: ReviewFault
    ) -> Optional[ReviewStatus]:
        """
        인프라 장애 처리 - 예약 반환 + error

        Returns:
            ReviewStatus.ERROR, 현재 시도가 아니면 None (no-op)
        """
        with self._session_factory() as db:
            trade_logs = TradeLogRepository(db)
            entry = trade_logs.get_fresh(trade_log_id)
            if not self._is_current_attempt(entry, attempt_id):
                logger.info(
                    f"Ignoring failure for trade log {trade_log_id} attempt {attempt_id}: "
                    f"not the pending attempt"
                )
                return None

            ensure_transition(entry.review_status, ReviewStatus.ERROR)

            finalized = trade_logs.finalize_attempt(
                trade_log_id=trade_log_id,
                attempt_id=attempt_id,
                status=ReviewStatus.ERROR,
                completed_at=utc_now(),
                error=fault.to_dict(),
            )
            if not finalized:
                db.rollback()
                return None

            CreditLedgerService(db, self.settings).refund(
                entry.account_id,
                trade_log_id,
                attempt_id,
                bucket=CreditBucket(entry.credit_type.value),
                commit=False,
            )
            db.commit()

        logger.warning(
            f"Trade log {trade_log_id} -> error (attempt {attempt_id}, {fault.code}: {fault.detail}); credit refunded"
        )
        self._release_waiter(attempt_id, ReviewStatus.ERROR)
        self._publish(entry, attempt_id, ReviewStatus.ERROR, error_code=fault.code)
        return ReviewStatus.ERROR

    def handle_callback(self, callback: ReviewCallback) -> ReviewCallbackAck:
        """엔진 콜백 처리 - 파싱 실패는 PARSE_ERROR 인프라 장애 (환불)"""
        try:
            verdict = parse_verdict(callback.verdict)
        except VerdictParseError as e:
            logger.warning(
                f"Unparseable verdict for trade log {callback.trade_log_id} attempt "
                f"{callback.attempt_id}: {str(e)}"
            )
            status = self.fail(callback.trade_log_id, callback.attempt_id, classify_fault(e))
            return ReviewCallbackAck(
                accepted=status is not None,
                review_status=status,
                message="Verdict could not be parsed",
            )

        status = self.complete(callback.trade_log_id, callback.attempt_id, verdict)
        if status is None:
            return ReviewCallbackAck(accepted=False, message="Stale or duplicate callback ignored")
        return ReviewCallbackAck(accepted=True, review_status=status, message="Verdict recorded")

    def reconcile_stale_reviews(self, older_than: Optional[timedelta] = None) -> ReconcileResponse:
        """
        오래된 pending 시도 정리 (프로세스 재시작으로 고아가 된 시도)

        이 프로세스의 큐에 있거나 워커가 처리 중인 시도는 건드리지 않습니다.
        """
        if older_than is None:
            older_than = timedelta(seconds=self.settings.REVIEW_TIMEOUT_SECONDS)
        cutoff = utc_now() - older_than

        with self._session_factory() as db:
            stale = TradeLogRepository(db).find_stale_pending(cutoff)

        reconciled = []
        for entry in stale:
            attempt_id = entry.review_attempt_id
            if attempt_id in self._inflight or attempt_id in self._waiters:
                continue
            with self._session_factory() as db:
                outstanding = CreditLedgerService(db, self.settings).has_outstanding_authorization(
                    entry.id, attempt_id
                )
            if not outstanding:
                logger.error(
                    f"Trade log {entry.id} is pending without an outstanding authorization "
                    f"(attempt {attempt_id}); left for manual review"
                )
                continue
            fault = ReviewFault("TIMEOUT", f"No verdict since {entry.review_requested_at}")
            if self.fail(entry.id, entry.review_attempt_id, fault) is not None:
                reconciled.append(entry.id)

        if reconciled:
            logger.warning(f"Reconciled {len(reconciled)} stale review(s): {reconciled}")
        return ReconcileResponse(reconciled=len(reconciled), trade_log_ids=reconciled)

    # ------------------------------------------------------------------
    # 워커
    # ------------------------------------------------------------------

    async def _run_attempt(self, job: ReviewJob) -> None:
        """
        워커 1건 처리 - 엔진 제출 후 콜백을 최대 REVIEW_TIMEOUT_SECONDS 대기

        큐에서 기다리는 동안 종료되었거나 새 시도로 바뀐 레코드는 엔진에 보내지 않습니다.
        DB 작업은 executor 에서 실행합니다.
        """
        loop = asyncio.get_running_loop()
        try:
            current = await loop.run_in_executor(
                None, self._is_pending_attempt, job.trade_log_id, job.attempt_id
            )
            if not current:
                logger.info(
                    f"Skipping review attempt {job.attempt_id} for trade log {job.trade_log_id}: "
                    f"no longer the pending attempt"
                )
                return

            waiter = loop.create_future()
            self._waiters[job.attempt_id] = waiter
            try:
                verdict = await asyncio.wait_for(
                    self.engine.submit(job.handle, job.parameters),
                    timeout=self.settings.ANALYSIS_ENGINE_SUBMIT_TIMEOUT_SECONDS,
                )
                if verdict is not None:
                    await loop.run_in_executor(
                        None, self.complete, job.trade_log_id, job.attempt_id, verdict
                    )
                    return
                await asyncio.wait_for(waiter, timeout=self.settings.REVIEW_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                fault = ReviewFault(
                    "TIMEOUT", f"No verdict within {self.settings.REVIEW_TIMEOUT_SECONDS}s"
                )
                await loop.run_in_executor(None, self.fail, job.trade_log_id, job.attempt_id, fault)
            except Exception as e:
                logger.error(
                    f"Review attempt {job.attempt_id} for trade log {job.trade_log_id} failed: {str(e)}"
                )
                await loop.run_in_executor(
                    None, self.fail, job.trade_log_id, job.attempt_id, classify_fault(e)
                )
            finally:
                self._waiters.pop(job.attempt_id, None)
        finally:
            self._inflight.discard(job.attempt_id)

    def _is_pending_attempt(self, trade_log_id: int, attempt_id: str) -> bool:
        with self._session_factory() as db:
            entry = TradeLogRepository(db).get_fresh(trade_log_id)
        return self._is_current_attempt(entry, attempt_id)

    def _release_waiter(self, attempt_id: str, status: ReviewStatus) -> None:
        """대기 중인 워커 깨우기 (executor 스레드에서 호출될 수 있음)"""
        waiter = self._waiters.get(attempt_id)
        if waiter is None or waiter.done():
            return
        waiter_loop = waiter.get_loop()
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if running_loop is waiter_loop:
            waiter.set_result(status)
        else:
            waiter_loop.call_soon_threadsafe(self._resolve_waiter, waiter, status)

    @staticmethod
    def _resolve_waiter(waiter: asyncio.Future, status: ReviewStatus) -> None:
        if not waiter.done():
            waiter.set_result(status)

    # ------------------------------------------------------------------
    # 내부
    # ------------------------------------------------------------------

    @staticmethod
    def _review_metadata(verdict: EngineVerdict) -> Dict:
        cost = verdict.cost
        metadata = {"review_processed_at": utc_now().isoformat()}
        if cost is not None:
            metadata.update(
                {
                    "total_cost": cost.total_cost,
                    "cost_breakdown": cost.cost_breakdown,
                    "models_used": cost.models_used,
                    "token_usage": cost.token_usage,
                    "user_experience": cost.user_experience,
                }
            )
        return metadata

    def _publish(
        self,
        entry: TradeLogResponse,
        attempt_id: str,
        status: ReviewStatus,
        error_code: Optional[str] = None,
    ) -> None:
        event = ReviewFinalizedEvent(
            trade_log_id=entry.id,
            account_id=entry.account_id,
            attempt_id=attempt_id,
            review_status=status.value,
            credit_type=entry.credit_type.value,
            charged=status in CHARGED_STATUSES,
            error_code=error_code,
            trading_symbol=entry.trading_symbol,
            occurred_at=utc_now(),
        )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.publisher.publish(event)
            return
        loop.run_in_executor(None, self.publisher.publish, event)
