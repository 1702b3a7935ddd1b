import asyncio
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Iterable

import httpx
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from .config import settings, TOKEN_MAP
from .error_handling import PriceLookupFailure, error_collector

logger = structlog.get_logger()


class APIError(Exception):
    """Custom exception for API errors"""
    pass


class PriceOracle(ABC):
    """asset symbol -> USD price; 0.0 when the price cannot be determined"""

    @abstractmethod
    async def get_token_prices(self, symbols: Iterable[str]) -> Dict[str, float]:
        pass

    async def get_token_price(self, symbol: str) -> float:
        prices = await self.get_token_prices([symbol])
        return prices.get(symbol, 0.0)


class BaseAPIClient:
    def __init__(self, base_url: str, headers: Optional[Dict] = None, timeout: float = 30.0):
        self.base_url = base_url
        self.default_headers = headers or {}
        self.timeout = timeout
        self.client: Optional[httpx.AsyncClient] = None

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.default_headers,
            timeout=self.timeout,
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=100)
        )

    async def __aenter__(self):
        self.client = self._build_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.client:
            await self.client.aclose()
            self.client = None

    @retry(
        stop=stop_after_attempt(settings.PRICE_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True
    )
    async def _send(self, client: httpx.AsyncClient, method: str, endpoint: str, **kwargs) -> httpx.Response:
        response = await client.request(method, endpoint, **kwargs)
        response.raise_for_status()
        return response

    async def _make_request(self, method: str, endpoint: str, **kwargs) -> dict:
        """Make HTTP request with retry logic.

        Uses the client opened by ``async with`` when there is one, otherwise a
        short-lived client for this request only.
        """
        try:
            if self.client:
                response = await self._send(self.client, method, endpoint, **kwargs)
            else:
                async with self._build_client() as client:
                    response = await self._send(client, method, endpoint, **kwargs)
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error("HTTP error from external API",
                         method=method, endpoint=endpoint,
                         status_code=e.response.status_code)
            raise APIError(f"API request failed: {e.response.status_code}")
        except httpx.RequestError as e:
            logger.error("Request error from external API",
                         method=method, endpoint=endpoint, error=str(e))
            raise APIError(f"Network error: {str(e)}")


class CoinGeckoClient(BaseAPIClient, PriceOracle):
    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None):
        headers = {"Accept": "application/json"}
        api_key = api_key if api_key is not None else settings.COINGECKO_API_KEY
        if api_key:
            headers["x-cg-demo-api-key"] = api_key
        super().__init__(base_url or settings.COINGECKO_BASE_URL, headers,
                         timeout=settings.PRICE_FETCH_TIMEOUT_SECONDS)

    @staticmethod
    def coingecko_id(symbol: str) -> str:
        """Symbol -> CoinGecko id; unknown symbols are tried lowercased as ids"""
        return TOKEN_MAP.get(symbol) or TOKEN_MAP.get(symbol.upper()) or symbol.lower()

    async def get_token_prices(self, symbols: Iterable[str], vs_currency: str = "usd") -> Dict[str, float]:
        """USD prices per symbol. Never raises; a missing or failed price is 0.0."""
        symbols = list(dict.fromkeys(symbols))
        if not symbols:
            return {}

        ids = {symbol: self.coingecko_id(symbol) for symbol in symbols}
        params = {
            "ids": ",".join(sorted(set(ids.values()))),
            "vs_currencies": vs_currency,
        }

        try:
            data = await asyncio.wait_for(
                self._make_request("GET", "/simple/price", params=params),
                timeout=settings.PRICE_FETCH_TIMEOUT_SECONDS
            )
        except (APIError, asyncio.TimeoutError, ValueError) as e:
            for symbol in symbols:
                error_collector.record_error(
                    PriceLookupFailure(symbol, str(e) or type(e).__name__),
                    {"source": "coingecko"}
                )
            return {symbol: 0.0 for symbol in symbols}

        prices: Dict[str, float] = {}
        for symbol, coin_id in ids.items():
            price = (data.get(coin_id) or {}).get(vs_currency)
            if isinstance(price, (int, float)) and not isinstance(price, bool) and price > 0:
                prices[symbol] = float(price)
            else:
                error_collector.record_error(
                    PriceLookupFailure(symbol, "price not available"),
                    {"source": "coingecko", "coingecko_id": coin_id}
                )
                prices[symbol] = 0.0

        return prices


class APIManager:
    """Central manager for the external API clients"""

    def __init__(self):
        self.coingecko = CoinGeckoClient()

    @property
    def price_oracle(self) -> PriceOracle:
        return self.coingecko

    async def health_check(self) -> Dict[str, str]:
        """Check health of external APIs"""
        health_status = {}

        try:
            async with CoinGeckoClient() as client:
                await client._make_request("GET", "/ping")
            health_status["coingecko"] = "healthy"
        except APIError:
            health_status["coingecko"] = "unhealthy"

        return health_status


# Global API manager instance
api_manager = APIManager()
