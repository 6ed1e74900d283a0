"""
Analysis engine client.

The engine is an external, slow service. ``submit`` only hands the attempt
over; the verdict arrives later through ``POST /api/v1/reviews/callback``.
An engine may also answer inline with a verdict in the submission response,
in which case ``submit`` returns it.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from tradelogapi.config import Settings
from tradelogapi.providers.analysis.exceptions import EngineUnavailableError
from tradelogapi.schemas.review import AttemptHandle, TradeParameters
from tradelogapi.schemas.verdict import EngineVerdict, parse_verdict

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/reviews/callback"


class AnalysisEngine(ABC):
    @abstractmethod
    async def submit(
        self, handle: AttemptHandle, parameters: TradeParameters
    ) -> Optional[EngineVerdict]:
        """Hand an attempt to the engine; return a verdict only if it answered inline."""

    async def aclose(self) -> None:
        return None


class HttpAnalysisEngine(AnalysisEngine):
    """HTTP client for the analysis engine"""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.base_url = settings.ANALYSIS_ENGINE_URL.rstrip("/")
        self.callback_url = (
            f"{settings.PUBLIC_BASE_URL.rstrip('/')}{settings.API_V1_STR}{CALLBACK_PATH}"
        )

        # HTTP 클라이언트 재사용 (연결 풀 유지)
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()
        self._timeout = httpx.Timeout(
            settings.ANALYSIS_ENGINE_SUBMIT_TIMEOUT_SECONDS, connect=5.0
        )

    async def _get_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None or self._client.is_closed:
                headers = {"Content-Type": "application/json"}
                if self.settings.ANALYSIS_ENGINE_API_KEY:
                    headers["Authorization"] = f"Bearer {self.settings.ANALYSIS_ENGINE_API_KEY}"
                self._client = httpx.AsyncClient(
                    base_url=self.base_url, timeout=self._timeout, headers=headers
                )
            return self._client

    async def submit(
        self, handle: AttemptHandle, parameters: TradeParameters
    ) -> Optional[EngineVerdict]:
        if not self.base_url:
            raise EngineUnavailableError("ANALYSIS_ENGINE_URL is not configured")

        body = {
            "trade_log_id": handle.trade_log_id,
            "attempt_id": handle.attempt_id,
            "fingerprint": parameters.fingerprint(),
            "trade": parameters.model_dump(mode="json"),
            "callback_url": self.callback_url,
        }

        client = await self._get_client()
        response = await client.post("/v1/reviews", json=body)
        response.raise_for_status()

        logger.info(
            f"Submitted trade log {handle.trade_log_id} attempt {handle.attempt_id} "
            f"to analysis engine (status={response.status_code})"
        )

        if response.status_code == 200 and response.content:
            data = response.json()
            if isinstance(data, dict) and data.get("verdict") is not None:
                return parse_verdict(data["verdict"])
        return None

    async def aclose(self) -> None:
        async with self._client_lock:
            if self._client is not None and not self._client.is_closed:
                await self._client.aclose()
            self._client = None
