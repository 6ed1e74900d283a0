"""
인스트루먼트(종목) 스냅샷

시작 시 JSON 파일에서 한 번 읽어 들이고 이후에는 읽기 전용으로 공유합니다.
트레이드 로그 생성 시 instrument_key 로 종목명/심볼/거래소를 확정합니다.
"""

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class Instrument(BaseModel):
    instrument_key: str
    trading_symbol: str
    name: Optional[str] = None
    exchange: Optional[str] = None

    class Config:
        frozen = True


class InstrumentCatalog:
    """instrument_key → Instrument 불변 조회 테이블"""

    def __init__(self, instruments: Iterable[Instrument] = ()):
        by_key: Dict[str, Instrument] = {}
        for instrument in instruments:
            by_key[instrument.instrument_key] = instrument
        self._by_key: Mapping[str, Instrument] = MappingProxyType(by_key)

    @classmethod
    def from_file(cls, path: str) -> "InstrumentCatalog":
        """JSON 스냅샷 로드 (파일이 없으면 빈 카탈로그)"""
        file_path = Path(path)
        if not file_path.exists():
            logger.warning(f"Instrument snapshot not found at {path}; catalog is empty")
            return cls()

        with file_path.open(encoding="utf-8") as f:
            raw = json.load(f)

        catalog = cls(Instrument.model_validate(item) for item in raw)
        logger.info(f"Loaded {len(catalog)} instruments from {path}")
        return catalog

    def resolve(self, instrument_key: str) -> Optional[Instrument]:
        return self._by_key.get(instrument_key)

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, instrument_key: object) -> bool:
        return instrument_key in self._by_key


def load_instrument_catalog(settings) -> InstrumentCatalog:
    return InstrumentCatalog.from_file(settings.INSTRUMENTS_FILE)
