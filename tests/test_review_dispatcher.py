import asyncio
import threading
from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from tradelogapi.core.exceptions import (
    CreditExhaustedError,
    InvalidReviewStateError,
    NotFoundError,
    ReviewQueueFullError,
)
from tradelogapi.models.credit import CreditBucket, LedgerEventType
from tradelogapi.models.trade_log import CreditType, ReviewStatus, TradeLog
from tradelogapi.providers.analysis.exceptions import ReviewFault
from tradelogapi.repositories.trade_log_repository import TradeLogRepository
from tradelogapi.schemas.verdict import ReviewCallback, parse_verdict
from tradelogapi.services.credit_ledger_service import CreditLedgerService
from tradelogapi.services.review_dispatcher import ReviewDispatcher
from tradelogapi.services.review_projector import ReviewQueryProjector
from tradelogapi.utils.timezone_utils import utc_now

ACCOUNT_ID = 1001


def completed_verdict():
    return {
        "schema_version": 2,
        "outcome": "valid",
        "payload": {
            "reviewId": "rv-1",
            "analysis": {"isValid": True, "tldr": "Setup is sound"},
            "ui": {"verdict": "good", "chips": [{"label": "RR", "value": 2.1}]},
        },
        "cost": {"totalCost": 0.012, "modelsUsed": ["analyst-large"]},
    }


def rejected_verdict():
    return {
        "schema_version": 2,
        "outcome": "rejected",
        "payload": {
            "analysis": {"marketHoursRejection": True, "tldr": "Market is closed"},
        },
    }


def failed_verdict():
    return {
        "schema_version": 2,
        "outcome": "failed",
        "error": {"message": "Model returned no answer", "code": "MODEL_EMPTY"},
    }


async def wait_for_waiter(dispatcher, attempt_id):
    """워커가 엔진 제출 후 콜백 대기에 들어갈 때까지 대기"""
    for _ in range(100):
        if attempt_id in dispatcher._waiters:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"attempt {attempt_id} never started waiting")


@pytest.fixture
def pool():
    pool = Mock()
    pool.has_capacity.return_value = True
    return pool


@pytest.fixture
def engine():
    engine = Mock()
    engine.submit = AsyncMock(return_value=None)
    engine.aclose = AsyncMock()
    return engine


@pytest.fixture
def publisher():
    return Mock()


@pytest.fixture
def dispatcher(settings, engine, pool, publisher, session_factory):
    return ReviewDispatcher(
        settings=settings,
        engine=engine,
        pool=pool,
        publisher=publisher,
        session_factory=session_factory,
    )


@pytest.fixture
def read(session_factory, settings):
    """현재 레코드/잔액/원장 조회 헬퍼"""

    class Reader:
        def entry(self, trade_log_id):
            with session_factory() as db:
                return TradeLogRepository(db).get_fresh(trade_log_id)

        def balance(self, account_id=ACCOUNT_ID):
            with session_factory() as db:
                return CreditLedgerService(db, settings).get_balance(account_id)

        def event_types(self, account_id=ACCOUNT_ID):
            with session_factory() as db:
                ledger = CreditLedgerService(db, settings).get_ledger(account_id, limit=100)
            return [entry.event_type for entry in ledger.entries]

        def integrity(self, account_id=ACCOUNT_ID):
            with session_factory() as db:
                return CreditLedgerService(db, settings).verify_integrity(account_id).status

    return Reader()


class TestRequestReview:
    """리뷰 요청 테스트"""

    def test_request_authorizes_and_queues(self, dispatcher, pool, seed_account, create_trade_log, read):
        """none → pending, 일반 크레딧 1 예약, 워커 풀 등록"""
        # Given
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)

        # When
        ack = dispatcher.request_review(entry.id, ACCOUNT_ID)

        # Then
        assert ack.review_status == ReviewStatus.PENDING
        assert ack.credit_type == CreditType.REGULAR
        assert read.balance().regular_credits == 4

        stored = read.entry(entry.id)
        assert stored.review_attempt_id == ack.attempt_id
        assert stored.review_attempt_count == 1
        assert stored.needs_review is True

        pool.submit.assert_called_once()
        job = pool.submit.call_args[0][0]
        assert job.trade_log_id == entry.id
        assert job.attempt_id == ack.attempt_id
        assert job.parameters.trading_symbol == "RELIANCE"

    def test_regular_exhausted_with_bonus(self, dispatcher, pool, seed_account, create_trade_log, read):
        """regular=0, bonus=5: 일반 요청은 거절, 광고 요청은 bonus 로 pending"""
        # Given
        seed_account(ACCOUNT_ID, regular=0, bonus=5)
        entry = create_trade_log(ACCOUNT_ID)

        # When / Then
        with pytest.raises(CreditExhaustedError) as exc_info:
            dispatcher.request_review(entry.id, ACCOUNT_ID, is_from_rewarded_ad=False)
        assert exc_info.value.status_code == 402
        assert exc_info.value.suggest_ad is True
        assert read.entry(entry.id).review_status == ReviewStatus.NONE
        pool.submit.assert_not_called()

        ack = dispatcher.request_review(entry.id, ACCOUNT_ID, is_from_rewarded_ad=True)

        assert ack.review_status == ReviewStatus.PENDING
        assert ack.credit_type == CreditType.BONUS
        assert ack.is_from_rewarded_ad is True
        assert read.balance().bonus_credits == 4
        assert read.balance().regular_credits == 0

    def test_unknown_or_foreign_trade_log(self, dispatcher, seed_account, create_trade_log):
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)

        with pytest.raises(NotFoundError):
            dispatcher.request_review(entry.id, 2002)
        with pytest.raises(NotFoundError):
            dispatcher.request_review(99999, ACCOUNT_ID)

    def test_request_while_pending_conflicts(self, dispatcher, seed_account, create_trade_log, read):
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        dispatcher.request_review(entry.id, ACCOUNT_ID)

        with pytest.raises(InvalidReviewStateError) as exc_info:
            dispatcher.request_review(entry.id, ACCOUNT_ID)

        assert exc_info.value.status_code == 409
        assert exc_info.value.current_status == "pending"
        assert read.balance().regular_credits == 4

    def test_no_capacity_refuses_before_moving_credit(self, dispatcher, pool, seed_account, create_trade_log, read):
        """백프레셔: 큐가 가득 차면 크레딧 이동 없이 503"""
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        pool.has_capacity.return_value = False

        with pytest.raises(ReviewQueueFullError):
            dispatcher.request_review(entry.id, ACCOUNT_ID)

        assert read.balance().regular_credits == 5
        assert read.entry(entry.id).review_status == ReviewStatus.NONE

    def test_enqueue_failure_refunds(self, dispatcher, pool, seed_account, create_trade_log, read):
        """예약 후 큐 등록 실패 → error + 환불"""
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        pool.submit.side_effect = ReviewQueueFullError()

        ack = dispatcher.request_review(entry.id, ACCOUNT_ID)

        assert ack.review_status == ReviewStatus.ERROR
        stored = read.entry(entry.id)
        assert stored.review_error["code"] == "QUEUE_FULL"
        assert read.balance().regular_credits == 5
        assert read.integrity() == "OK"


class TestRetryReview:
    """재시도 테스트"""

    def test_retry_while_pending_conflicts(self, dispatcher, seed_account, create_trade_log):
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        dispatcher.request_review(entry.id, ACCOUNT_ID)

        with pytest.raises(InvalidReviewStateError):
            dispatcher.retry_review(entry.id, ACCOUNT_ID)

    def test_retry_without_previous_review_conflicts(self, dispatcher, seed_account, create_trade_log):
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)

        with pytest.raises(InvalidReviewStateError):
            dispatcher.retry_review(entry.id, ACCOUNT_ID)

    def test_completed_is_terminal(self, dispatcher, seed_account, create_trade_log):
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        ack = dispatcher.request_review(entry.id, ACCOUNT_ID)
        dispatcher.complete(entry.id, ack.attempt_id, parse_verdict(completed_verdict()))

        with pytest.raises(InvalidReviewStateError):
            dispatcher.retry_review(entry.id, ACCOUNT_ID)
        with pytest.raises(InvalidReviewStateError):
            dispatcher.request_review(entry.id, ACCOUNT_ID)

    def test_retry_after_rejection_charges_new_attempt(self, dispatcher, seed_account, create_trade_log, read):
        """rejected 는 재시도 가능, 새 시도는 새 예약"""
        seed_account(ACCOUNT_ID, bonus=5)
        entry = create_trade_log(ACCOUNT_ID)
        first = dispatcher.request_review(entry.id, ACCOUNT_ID, is_from_rewarded_ad=True)
        dispatcher.complete(entry.id, first.attempt_id, parse_verdict(rejected_verdict()))

        second = dispatcher.retry_review(entry.id, ACCOUNT_ID, is_from_rewarded_ad=True)

        assert second.review_status == ReviewStatus.PENDING
        assert second.attempt_id != first.attempt_id
        stored = read.entry(entry.id)
        assert stored.review_attempt_count == 2
        assert stored.review_result is None
        assert stored.review_metadata is None
        assert read.balance().bonus_credits == 3

    def test_retry_after_error_can_switch_bucket(self, dispatcher, seed_account, create_trade_log, read):
        seed_account(ACCOUNT_ID, regular=2, bonus=2)
        entry = create_trade_log(ACCOUNT_ID)
        first = dispatcher.request_review(entry.id, ACCOUNT_ID)
        dispatcher.fail(entry.id, first.attempt_id, ReviewFault("CONNECTION_ERROR"))

        second = dispatcher.retry_review(entry.id, ACCOUNT_ID, is_from_rewarded_ad=True)

        assert second.credit_type == CreditType.BONUS
        balance = read.balance()
        assert balance.regular_credits == 2
        assert balance.bonus_credits == 1

    def test_late_callback_from_previous_attempt_is_ignored(self, dispatcher, seed_account, create_trade_log, read):
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        first = dispatcher.request_review(entry.id, ACCOUNT_ID)
        dispatcher.fail(entry.id, first.attempt_id, ReviewFault("TIMEOUT"))
        second = dispatcher.retry_review(entry.id, ACCOUNT_ID)

        ack = dispatcher.handle_callback(
            ReviewCallback(trade_log_id=entry.id, attempt_id=first.attempt_id, verdict=completed_verdict())
        )

        assert ack.accepted is False
        stored = read.entry(entry.id)
        assert stored.review_status == ReviewStatus.PENDING
        assert stored.review_attempt_id == second.attempt_id
        assert read.balance().regular_credits == 4


class TestFinalization:
    """종료 상태별 크레딧 처리 테스트"""

    def test_timeout_refunds_bonus(self, dispatcher, publisher, seed_account, create_trade_log, read):
        """인프라 타임아웃 → error, 보너스 5 로 복구"""
        seed_account(ACCOUNT_ID, bonus=5)
        entry = create_trade_log(ACCOUNT_ID)
        ack = dispatcher.request_review(entry.id, ACCOUNT_ID, is_from_rewarded_ad=True)
        assert read.balance().bonus_credits == 4

        status = dispatcher.fail(entry.id, ack.attempt_id, ReviewFault("TIMEOUT", "no verdict"))

        assert status == ReviewStatus.ERROR
        stored = read.entry(entry.id)
        assert stored.review_status == ReviewStatus.ERROR
        assert stored.review_error["code"] == "TIMEOUT"
        assert stored.review_error["type"] == "infra"
        assert stored.review_metadata is None
        assert read.balance().bonus_credits == 5
        assert LedgerEventType.REFUND in read.event_types()
        assert read.integrity() == "OK"
        event = publisher.publish.call_args[0][0]
        assert event.charged is False
        assert event.error_code == "TIMEOUT"

    def test_rejected_verdict_is_charged(self, dispatcher, publisher, seed_account, create_trade_log, read):
        """rejected → 완료로 표시, 보너스 4"""
        seed_account(ACCOUNT_ID, bonus=5)
        entry = create_trade_log(ACCOUNT_ID)
        ack = dispatcher.request_review(entry.id, ACCOUNT_ID, is_from_rewarded_ad=True)

        status = dispatcher.complete(entry.id, ack.attempt_id, parse_verdict(rejected_verdict()))

        assert status == ReviewStatus.REJECTED
        view = ReviewQueryProjector().project(read.entry(entry.id))
        assert view.review_status == ReviewStatus.REJECTED
        assert view.is_review_completed is True
        assert view.recommendation == "Market is closed"
        assert read.balance().bonus_credits == 4
        assert LedgerEventType.CONSUME in read.event_types()
        assert publisher.publish.call_args[0][0].charged is True

    def test_completed_verdict_stores_result_and_metadata(self, dispatcher, seed_account, create_trade_log, read):
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        ack = dispatcher.request_review(entry.id, ACCOUNT_ID)

        dispatcher.complete(entry.id, ack.attempt_id, parse_verdict(completed_verdict()))

        stored = read.entry(entry.id)
        assert stored.review_status == ReviewStatus.COMPLETED
        assert stored.review_completed_at is not None
        assert stored.review_result[0]["review_id"] == "rv-1"
        assert stored.review_metadata["total_cost"] == 0.012
        assert stored.review_metadata["models_used"] == ["analyst-large"]
        assert stored.review_error is None
        assert read.balance().regular_credits == 4

    def test_failed_verdict_is_charged_with_engine_error(self, dispatcher, seed_account, create_trade_log, read):
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        ack = dispatcher.request_review(entry.id, ACCOUNT_ID)

        status = dispatcher.complete(entry.id, ack.attempt_id, parse_verdict(failed_verdict()))

        assert status == ReviewStatus.FAILED
        stored = read.entry(entry.id)
        assert stored.review_error["code"] == "MODEL_EMPTY"
        assert stored.review_error["type"] == "engine"
        assert stored.review_metadata is None
        assert read.balance().regular_credits == 4

    def test_duplicate_callback_charges_once(self, dispatcher, seed_account, create_trade_log, read):
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        ack = dispatcher.request_review(entry.id, ACCOUNT_ID)
        callback = ReviewCallback(
            trade_log_id=entry.id, attempt_id=ack.attempt_id, verdict=completed_verdict()
        )

        first = dispatcher.handle_callback(callback)
        second = dispatcher.handle_callback(callback)

        assert first.accepted is True
        assert first.review_status == ReviewStatus.COMPLETED
        assert second.accepted is False
        assert read.entry(entry.id).review_status == ReviewStatus.COMPLETED
        assert read.balance().regular_credits == 4
        assert read.event_types().count(LedgerEventType.CONSUME) == 1

    def test_fail_after_complete_is_noop(self, dispatcher, seed_account, create_trade_log, read):
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        ack = dispatcher.request_review(entry.id, ACCOUNT_ID)
        dispatcher.complete(entry.id, ack.attempt_id, parse_verdict(completed_verdict()))

        assert dispatcher.fail(entry.id, ack.attempt_id, ReviewFault("TIMEOUT")) is None
        assert read.entry(entry.id).review_status == ReviewStatus.COMPLETED
        assert read.balance().regular_credits == 4

    def test_unparseable_callback_is_infra_fault(self, dispatcher, seed_account, create_trade_log, read):
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        ack = dispatcher.request_review(entry.id, ACCOUNT_ID)

        result = dispatcher.handle_callback(
            ReviewCallback(
                trade_log_id=entry.id,
                attempt_id=ack.attempt_id,
                verdict={"schema_version": 7, "outcome": "valid"},
            )
        )

        assert result.accepted is True
        assert result.review_status == ReviewStatus.ERROR
        assert read.entry(entry.id).review_error["code"] == "PARSE_ERROR"
        assert read.balance().regular_credits == 5


class TestReconcile:
    """오래된 pending 정리 테스트"""

    @pytest.fixture
    def restarted(self, settings, engine, pool, publisher, session_factory):
        """같은 DB 를 보는 새 프로세스의 디스패처"""
        return ReviewDispatcher(
            settings=settings,
            engine=engine,
            pool=pool,
            publisher=publisher,
            session_factory=session_factory,
        )

    def test_reconcile_stale_pending(self, dispatcher, restarted, seed_account, create_trade_log, session_factory, read):
        """재시작으로 고아가 된 오래된 pending 만 TIMEOUT + 환불"""
        seed_account(ACCOUNT_ID, regular=5)
        stale = create_trade_log(ACCOUNT_ID)
        fresh = create_trade_log(ACCOUNT_ID)
        dispatcher.request_review(stale.id, ACCOUNT_ID)
        dispatcher.request_review(fresh.id, ACCOUNT_ID)

        with session_factory() as db:
            db.query(TradeLog).filter(TradeLog.id == stale.id).update(
                {TradeLog.review_requested_at: utc_now() - timedelta(hours=1)},
                synchronize_session=False,
            )

        result = restarted.reconcile_stale_reviews(timedelta(minutes=10))

        assert result.reconciled == 1
        assert result.trade_log_ids == [stale.id]
        assert read.entry(stale.id).review_status == ReviewStatus.ERROR
        assert read.entry(stale.id).review_error["code"] == "TIMEOUT"
        assert read.entry(fresh.id).review_status == ReviewStatus.PENDING
        assert read.balance().regular_credits == 4
        assert read.integrity() == "OK"

    def test_reconcile_skips_queued_attempt(self, dispatcher, seed_account, create_trade_log, read):
        """큐에서 워커를 기다리는 시도는 환불하지 않음"""
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        ack = dispatcher.request_review(entry.id, ACCOUNT_ID)
        assert ack.attempt_id not in dispatcher._waiters

        result = dispatcher.reconcile_stale_reviews(timedelta(seconds=-1))

        assert result.reconciled == 0
        assert read.entry(entry.id).review_status == ReviewStatus.PENDING
        assert read.balance().regular_credits == 4

    def test_reconcile_leaves_pending_without_authorization(
        self, dispatcher, restarted, seed_account, create_trade_log, session_factory, read
    ):
        """예약 기록이 없는 pending 은 환불하지 않고 남김"""
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        ack = dispatcher.request_review(entry.id, ACCOUNT_ID)
        with session_factory() as db:
            CreditLedgerService(db, dispatcher.settings).consume(ACCOUNT_ID, entry.id, ack.attempt_id)

        result = restarted.reconcile_stale_reviews(timedelta(seconds=-1))

        assert result.reconciled == 0
        assert read.entry(entry.id).review_status == ReviewStatus.PENDING
        assert read.balance().regular_credits == 4

    async def test_queued_attempt_finalized_before_dequeue_is_not_submitted(
        self, dispatcher, engine, pool, seed_account, create_trade_log, read
    ):
        """큐 대기 중 error 로 정리된 시도는 엔진에 보내지 않음"""
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        dispatcher.request_review(entry.id, ACCOUNT_ID)
        job = pool.submit.call_args[0][0]
        dispatcher.fail(entry.id, job.attempt_id, ReviewFault("TIMEOUT", "no verdict"))
        assert read.balance().regular_credits == 5

        await dispatcher._run_attempt(job)

        assert engine.submit.await_count == 0
        assert read.entry(entry.id).review_status == ReviewStatus.ERROR
        assert read.balance().regular_credits == 5
        assert job.attempt_id not in dispatcher._inflight

    async def test_superseded_attempt_is_not_submitted(
        self, dispatcher, engine, pool, seed_account, create_trade_log, read
    ):
        """재시도로 바뀐 뒤 꺼내진 이전 시도는 건너뛰고 새 시도는 그대로 pending"""
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        dispatcher.request_review(entry.id, ACCOUNT_ID)
        old_job = pool.submit.call_args[0][0]
        dispatcher.fail(entry.id, old_job.attempt_id, ReviewFault("TIMEOUT", "no verdict"))
        second = dispatcher.retry_review(entry.id, ACCOUNT_ID)

        await dispatcher._run_attempt(old_job)

        assert engine.submit.await_count == 0
        stored = read.entry(entry.id)
        assert stored.review_status == ReviewStatus.PENDING
        assert stored.review_attempt_id == second.attempt_id
        assert read.balance().regular_credits == 4


class TestRunAttempt:
    """워커 처리 테스트"""

    async def test_no_callback_times_out_and_refunds(self, dispatcher, pool, seed_account, create_trade_log, read):
        seed_account(ACCOUNT_ID, bonus=5)
        entry = create_trade_log(ACCOUNT_ID)
        dispatcher.request_review(entry.id, ACCOUNT_ID, is_from_rewarded_ad=True)
        job = pool.submit.call_args[0][0]

        await dispatcher._run_attempt(job)

        stored = read.entry(entry.id)
        assert stored.review_status == ReviewStatus.ERROR
        assert stored.review_error["code"] == "TIMEOUT"
        assert read.balance().bonus_credits == 5
        assert job.attempt_id not in dispatcher._waiters
        assert job.attempt_id not in dispatcher._inflight

    async def test_inline_verdict_completes(self, dispatcher, engine, pool, seed_account, create_trade_log, read):
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        dispatcher.request_review(entry.id, ACCOUNT_ID)
        job = pool.submit.call_args[0][0]
        engine.submit.return_value = parse_verdict(completed_verdict())

        await dispatcher._run_attempt(job)

        assert read.entry(entry.id).review_status == ReviewStatus.COMPLETED
        assert read.balance().regular_credits == 4

    async def test_engine_error_is_classified(self, dispatcher, engine, pool, seed_account, create_trade_log, read):
        import httpx

        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        dispatcher.request_review(entry.id, ACCOUNT_ID)
        job = pool.submit.call_args[0][0]
        engine.submit.side_effect = httpx.ConnectError("connection refused")

        await dispatcher._run_attempt(job)

        assert read.entry(entry.id).review_error["code"] == "CONNECTION_ERROR"
        assert read.balance().regular_credits == 5

    async def test_callback_releases_waiting_worker(self, dispatcher, settings, pool, seed_account, create_trade_log, read):
        settings.REVIEW_TIMEOUT_SECONDS = 5.0
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        ack = dispatcher.request_review(entry.id, ACCOUNT_ID)
        job = pool.submit.call_args[0][0]

        task = asyncio.create_task(dispatcher._run_attempt(job))
        await wait_for_waiter(dispatcher, job.attempt_id)
        assert ack.attempt_id in dispatcher._waiters

        dispatcher.handle_callback(
            ReviewCallback(trade_log_id=entry.id, attempt_id=ack.attempt_id, verdict=completed_verdict())
        )
        await asyncio.wait_for(task, timeout=1.0)

        assert read.entry(entry.id).review_status == ReviewStatus.COMPLETED
        assert read.balance().regular_credits == 4

    async def test_reconcile_skips_live_waiters(self, dispatcher, settings, pool, seed_account, create_trade_log, read):
        settings.REVIEW_TIMEOUT_SECONDS = 5.0
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        dispatcher.request_review(entry.id, ACCOUNT_ID)
        job = pool.submit.call_args[0][0]

        task = asyncio.create_task(dispatcher._run_attempt(job))
        await wait_for_waiter(dispatcher, job.attempt_id)

        result = dispatcher.reconcile_stale_reviews(timedelta(seconds=0))

        assert result.reconciled == 0
        assert read.entry(entry.id).review_status == ReviewStatus.PENDING
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    async def test_finalization_runs_off_the_event_loop(self, dispatcher, pool, seed_account, create_trade_log, read):
        """DB 를 쓰는 종료 처리는 executor 스레드에서 실행"""
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        dispatcher.request_review(entry.id, ACCOUNT_ID)
        job = pool.submit.call_args[0][0]

        threads = []
        original_fail = dispatcher.fail

        def recording_fail(*args):
            threads.append(threading.get_ident())
            return original_fail(*args)

        dispatcher.fail = recording_fail

        await dispatcher._run_attempt(job)

        assert len(threads) == 1
        assert threads[0] != threading.get_ident()
        assert read.entry(entry.id).review_status == ReviewStatus.ERROR
        assert read.balance().regular_credits == 5

    async def test_callback_from_worker_thread_releases_waiter(self, dispatcher, settings, pool, seed_account, create_trade_log, read):
        """동기 라우트(스레드풀)에서 들어온 콜백도 대기 중인 워커를 깨움"""
        settings.REVIEW_TIMEOUT_SECONDS = 5.0
        seed_account(ACCOUNT_ID, regular=5)
        entry = create_trade_log(ACCOUNT_ID)
        ack = dispatcher.request_review(entry.id, ACCOUNT_ID)
        job = pool.submit.call_args[0][0]

        task = asyncio.create_task(dispatcher._run_attempt(job))
        await wait_for_waiter(dispatcher, job.attempt_id)

        callback = ReviewCallback(trade_log_id=entry.id, attempt_id=ack.attempt_id, verdict=completed_verdict())
        result = await asyncio.get_running_loop().run_in_executor(None, dispatcher.handle_callback, callback)
        await asyncio.wait_for(task, timeout=1.0)

        assert result.accepted is True
        assert read.entry(entry.id).review_status == ReviewStatus.COMPLETED
        assert read.balance().regular_credits == 4
        assert job.attempt_id not in dispatcher._inflight
