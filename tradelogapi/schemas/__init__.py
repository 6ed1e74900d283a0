from .auth import CurrentAccount, TokenPayload
from .credit import CreditBalanceResponse, CreditCheckResult, LedgerMovement
from .trade_log import TradeLogCreate, TradeLogResponse
from .review import ReviewAck, ReviewStatusView, TradeParameters
from .verdict import EngineVerdict, parse_verdict
