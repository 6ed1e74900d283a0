from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ReviewFinalizedEvent(BaseModel):
    """리뷰 시도가 종료 상태에 도달했을 때 발행 (알림 등 후속 처리용)"""

    trade_log_id: int
    account_id: int
    attempt_id: str
    review_status: str
    credit_type: str
    charged: bool
    error_code: Optional[str] = None
    trading_symbol: Optional[str] = None
    occurred_at: datetime

    @property
    def deduplication_id(self) -> str:
        return f"{self.trade_log_id}-{self.attempt_id}-{self.review_status}"
