"""
Trading platform REST client.

Fetches equity curves and trading logs and parses them into raw models.
"""

import os
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from trading_perf.data.models import EquityCurve, Timeframe, TradingLogEvent


class TradingApiError(Exception):
    """Trading platform API error."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[str] = None,
        status: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.status = status
        super().__init__(f"Trading API Error {code} ({status}): {message}")

    @property
    def is_warming_up(self) -> bool:
        """Server accepted the request but the series is still being built."""
        return self.status == 202

    @property
    def is_auth_error(self) -> bool:
        return self.status in (401, 403)


class TradingApiClient:
    """
    Async client for the trading platform API.

    Requests go out unauthenticated first when public_first is set and are
    retried with the bearer token on 401/403.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        public_first: bool = True,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token if token is not None else os.getenv("TRADING_API_TOKEN", "")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.public_first = public_first

        self._session: Optional[aiohttp.ClientSession] = None

        # Stats
        self._requests = 0
        self._errors = 0

    @property
    def stats(self) -> Dict[str, Any]:
        return {"requests": self._requests, "errors": self._errors}

    # =========================================================================
    # Session Management
    # =========================================================================

    async def connect(self) -> None:
        """Create HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            logger.debug("HTTP session created")

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None
            logger.debug("HTTP session closed")

    async def __aenter__(self) -> "TradingApiClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # =========================================================================
    # Request Handling
    # =========================================================================

    async def _request(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        use_auth: bool = True,
    ) -> Any:
        """
        GET an endpoint and unwrap the {success, data, error} envelope.

        Raises:
            TradingApiError: non-OK status, 202 warm-up, non-JSON body or
                success=false
            aiohttp.ClientError: transport failure
        """
        await self.connect()

        url = f"{self.base_url}{endpoint}"
        params = {k: v for k, v in (params or {}).items() if v is not None}
        headers = {"Content-Type": "application/json"}
        if use_auth and self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        self._requests += 1
        try:
            async with self._session.get(url, params=params, headers=headers) as resp:
                if resp.status == 202:
                    raise TradingApiError("WARMING_UP", "Series is warming up", status=202)

                try:
                    payload = await resp.json(content_type=None)
                except ValueError as e:
                    raise TradingApiError(
                        "INVALID_RESPONSE",
                        "Response body is not valid JSON",
                        str(e),
                        resp.status,
                    ) from e

                error = (payload or {}).get("error") or {}
                if resp.status >= 400 or not (payload or {}).get("success", False):
                    raise TradingApiError(
                        error.get("code", "UNKNOWN_ERROR"),
                        error.get("message", "An unknown error occurred"),
                        error.get("details"),
                        resp.status,
                    )

                return payload.get("data")

        except TradingApiError:
            self._errors += 1
            raise
        except aiohttp.ClientError as e:
            self._errors += 1
            logger.error(f"HTTP error on {endpoint}: {e}")
            raise

    async def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if not self.public_first:
            return await self._request(endpoint, params, use_auth=True)

        try:
            return await self._request(endpoint, params, use_auth=False)
        except TradingApiError as e:
            if e.is_auth_error and self.token:
                logger.debug(f"Retrying {endpoint} with auth after {e.status}")
                return await self._request(endpoint, params, use_auth=True)
            raise

    # =========================================================================
    # Endpoints
    # =========================================================================

    async def get_equity_curve(
        self,
        trading_id: str,
        timeframe: Timeframe,
        limit: int = 500,
        end_time: Optional[int] = None,
    ) -> EquityCurve:
        """Latest `limit` samples of the equity curve up to end_time (ms)."""
        data = await self._get(
            f"/tradings/{trading_id}/equity-curve",
            {"timeframe": Timeframe(timeframe).value, "limit": limit, "end_time": end_time},
        )
        return EquityCurve.from_api(data or {})

    async def get_equity_curve_range(
        self,
        trading_id: str,
        timeframe: Timeframe,
        start_time: int,
        end_time: int,
    ) -> EquityCurve:
        """Equity curve samples between start_time and end_time (ms)."""
        data = await self._get(
            f"/tradings/{trading_id}/equity-curve",
            {
                "timeframe": Timeframe(timeframe).value,
                "start_time": start_time,
                "end_time": end_time,
            },
        )
        return EquityCurve.from_api(data or {})

    async def get_trading_logs(
        self,
        trading_id: str,
        since: Optional[int] = None,
    ) -> List[TradingLogEvent]:
        """Trading logs, optionally only those after `since` (ms)."""
        data = await self._get(f"/tradings/{trading_id}/trading-logs", {"since": since})

        raw_logs = data.get("trading_logs", []) if isinstance(data, dict) else (data or [])
        logs = [TradingLogEvent.from_api(item) for item in raw_logs]
        skipped = sum(1 for log in logs if log is None)
        if skipped:
            logger.debug(f"Skipped {skipped} trading logs of unknown type")
        return [log for log in logs if log is not None]
