import json
import logging
from typing import Optional

import boto3

from tradelogapi.config import Settings
from tradelogapi.providers.queue.events import ReviewFinalizedEvent

logger = logging.getLogger(__name__)


class ReviewEventPublisher:
    """리뷰 종료 이벤트 발행 (SQS FIFO, fire-and-forget)

    큐 URL 이 없으면 로그만 남깁니다. 발행 실패는 리뷰 상태에 영향을 주지
    않으므로 예외를 호출자에게 전파하지 않고 에러 로그로 남깁니다.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.queue_url: Optional[str] = settings.REVIEW_EVENTS_QUEUE_URL
        self._sqs = None

    def _client(self):
        if self._sqs is None:
            self._sqs = boto3.client(
                "sqs",
                region_name=self.settings.AWS_REGION,
                aws_access_key_id=self.settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=self.settings.AWS_SECRET_ACCESS_KEY,
                endpoint_url=self.settings.SQS_ENDPOINT_URL,
            )
        return self._sqs

    def publish(self, event: ReviewFinalizedEvent) -> bool:
        if not self.queue_url:
            logger.info(
                f"Review event (not queued): trade log {event.trade_log_id} -> {event.review_status}"
            )
            return False

        try:
            self._client().send_message(
                QueueUrl=self.queue_url,
                MessageBody=json.dumps(event.model_dump(mode="json")),
                MessageGroupId=f"account-{event.account_id}",
                MessageDeduplicationId=event.deduplication_id,
            )
        except Exception as e:
            logger.error(
                f"Failed to publish review event for trade log {event.trade_log_id}: {str(e)}"
            )
            return False

        logger.info(
            f"Published review event for trade log {event.trade_log_id} ({event.review_status})"
        )
        return True
