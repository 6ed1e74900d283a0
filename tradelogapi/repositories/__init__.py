# Repository layer - Data access with Pydantic responses

from .base import BaseRepository
from .credit_repository import CreditRepository
from .trade_log_repository import TradeLogRepository
