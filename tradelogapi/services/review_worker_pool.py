"""
리뷰 워커 풀

asyncio.Queue 에 리뷰 시도를 쌓고 고정 개수의 워커 태스크가 처리합니다.
큐가 가득 차면 새 태스크를 만들지 않고 ReviewQueueFullError 로 거절합니다.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel, Field

from tradelogapi.config import Settings
from tradelogapi.core.exceptions import ReviewQueueFullError
from tradelogapi.schemas.review import AttemptHandle, TradeParameters
from tradelogapi.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


class ReviewJob(BaseModel):
    """큐에 들어가는 리뷰 시도 1건"""

    trade_log_id: int
    attempt_id: str
    account_id: int
    parameters: TradeParameters
    enqueued_at: datetime = Field(default_factory=utc_now)

    @property
    def handle(self) -> AttemptHandle:
        return AttemptHandle(trade_log_id=self.trade_log_id, attempt_id=self.attempt_id)


ReviewJobHandler = Callable[[ReviewJob], Awaitable[None]]


class ReviewWorkerPool:
    def __init__(self, settings: Settings):
        self.worker_count = max(settings.REVIEW_WORKER_COUNT, 1)
        self.max_depth = max(settings.REVIEW_QUEUE_MAX_DEPTH, 1)
        self._queue: "asyncio.Queue[ReviewJob]" = asyncio.Queue(maxsize=self.max_depth)
        self._workers: List[asyncio.Task] = []
        self._handler: Optional[ReviewJobHandler] = None

    @property
    def running(self) -> bool:
        return any(not worker.done() for worker in self._workers)

    @property
    def running_workers(self) -> int:
        return sum(1 for worker in self._workers if not worker.done())

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    def has_capacity(self) -> bool:
        return self.running and not self._queue.full()

    async def start(self, handler: ReviewJobHandler) -> None:
        if self.running:
            return
        self._handler = handler
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"review-worker-{index}")
            for index in range(self.worker_count)
        ]
        logger.info(
            f"Started {self.worker_count} review workers (queue depth limit {self.max_depth})"
        )

    def submit(self, job: ReviewJob) -> None:
        """큐에 추가 - 가득 찼거나 워커가 없으면 ReviewQueueFullError"""
        if not self.running:
            raise ReviewQueueFullError(message="Review workers are not running")
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.warning(
                f"Review queue full ({self.max_depth}); refusing trade log {job.trade_log_id}"
            )
            raise ReviewQueueFullError(details={"queue_depth": self.max_depth})
        logger.info(
            f"Queued review for trade log {job.trade_log_id} attempt {job.attempt_id} "
            f"(depth {self.depth}/{self.max_depth})"
        )

    async def join(self) -> None:
        """큐가 빌 때까지 대기"""
        await self._queue.join()

    async def stop(self) -> None:
        if not self._workers:
            return
        if self.depth:
            # 남은 시도는 pending 으로 남고 다음 기동 시 정리됨
            logger.warning(f"Stopping review workers with {self.depth} queued attempt(s)")
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Review workers stopped")

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._handler(job)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    f"[review-worker-{index}] Unhandled error for trade log {job.trade_log_id} "
                    f"attempt {job.attempt_id}"
                )
            finally:
                self._queue.task_done()
