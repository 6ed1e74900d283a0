from dependency_injector.wiring import Provide, inject
from fastapi import Depends
from sqlalchemy.orm import Session

from tradelogapi.config import settings
from tradelogapi.containers import Container
from tradelogapi.core.instruments import InstrumentCatalog
from tradelogapi.database.session import get_db

# Services
from tradelogapi.services.credit_ledger_service import CreditLedgerService
from tradelogapi.services.trade_log_service import TradeLogService


def get_credit_ledger_service(db: Session = Depends(get_db)) -> CreditLedgerService:
    return CreditLedgerService(db=db, settings=settings)


@inject
def get_trade_log_service(
    db: Session = Depends(get_db),
    catalog: InstrumentCatalog = Depends(Provide[Container.externals.instrument_catalog]),
) -> TradeLogService:
    return TradeLogService(db=db, settings=settings, catalog=catalog)
