"""
Exchange rates - provider interface, TTL cache, CoinGecko client

Rate failures never abort a computation: callers catch RateUnavailableError,
drop the affected amount and raise a stale flag instead.
"""
import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional, Protocol, Tuple

import requests

logger = logging.getLogger(__name__)

FIAT_CURRENCIES = {"USD", "EUR", "GBP", "JPY", "AUD", "CAD", "CHF", "CNY", "INR", "KRW"}

# Ticker -> CoinGecko coin id
COINGECKO_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDT": "tether",
    "BNB": "binancecoin",
    "SOL": "solana",
    "USDC": "usd-coin",
    "XRP": "ripple",
    "ADA": "cardano",
    "DOGE": "dogecoin",
    "TRX": "tron",
    "AVAX": "avalanche-2",
    "DOT": "polkadot",
    "MATIC": "matic-network",
    "LINK": "chainlink",
    "SHIB": "shiba-inu",
    "LTC": "litecoin",
    "BCH": "bitcoin-cash",
    "ALGO": "algorand",
    "XLM": "stellar",
    "UNI": "uniswap",
}


class RateUnavailableError(Exception):
    """Rate could not be fetched (network, unknown pair, bad payload)"""
    pass


class RateProvider(Protocol):
    async def rate(self, from_currency: str, to_currency: str) -> Decimal:
        ...


async def convert(provider: RateProvider, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
    """amount in from_currency -> to_currency (no lookup for the same currency)"""
    if from_currency.upper() == to_currency.upper():
        return amount
    rate = await provider.rate(from_currency.upper(), to_currency.upper())
    return amount * rate


class CachedRateProvider:
    """
    TTL cache in front of another provider

    When a refresh fails the last known rate is served (logged as stale);
    only a pair that was never fetched raises RateUnavailableError.
    """

    def __init__(self, inner: RateProvider, ttl_seconds: int = 300, clock=time.monotonic):
        self.inner = inner
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._cache: Dict[Tuple[str, str], Tuple[Decimal, float]] = {}

    async def rate(self, from_currency: str, to_currency: str) -> Decimal:
        key = (from_currency.upper(), to_currency.upper())
        if key[0] == key[1]:
            return Decimal("1")

        cached = self._cache.get(key)
        if cached is not None and self.clock() - cached[1] < self.ttl_seconds:
            return cached[0]

        try:
            value = await self.inner.rate(*key)
        except RateUnavailableError:
            if cached is None:
                raise
            logger.warning("Rate refresh failed for %s->%s, using last known rate", *key)
            return cached[0]

        self._cache[key] = (value, self.clock())
        return value

    def last_known(self, from_currency: str, to_currency: str) -> Optional[Decimal]:
        cached = self._cache.get((from_currency.upper(), to_currency.upper()))
        return cached[0] if cached else None


class CoinGeckoRateProvider:
    """
    CoinGecko /simple/price client

    Fiat->fiat pairs (and crypto pairs with no direct quote) go through USDT.
    requests is blocking, so each call runs in a worker thread.
    """

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: int = 10):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    async def rate(self, from_currency: str, to_currency: str) -> Decimal:
        source, target = from_currency.upper(), to_currency.upper()
        if source == target:
            return Decimal("1")
        return await asyncio.to_thread(self._fetch_rate, source, target)

    def _fetch_rate(self, source: str, target: str) -> Decimal:
        if source in FIAT_CURRENCIES and target in FIAT_CURRENCIES:
            return self._cross_rate(source, target)
        try:
            return self._direct_rate(source, target)
        except RateUnavailableError:
            logger.debug("Direct rate %s->%s unavailable, trying USDT cross rate", source, target)
            return self._cross_rate(source, target)

    def _direct_rate(self, source: str, target: str) -> Decimal:
        coin_id = COINGECKO_IDS.get(source, source.lower())
        data = self._get_prices(ids=coin_id, vs_currencies=target.lower())
        return self._pick(data, coin_id, target.lower())

    def _cross_rate(self, source: str, target: str) -> Decimal:
        # tether quoted in both currencies: source->target = (USDT in target) / (USDT in source)
        data = self._get_prices(ids="tether", vs_currencies=f"{source.lower()},{target.lower()}")
        in_source = self._pick(data, "tether", source.lower())
        in_target = self._pick(data, "tether", target.lower())
        if in_source == 0:
            raise RateUnavailableError(f"Zero USDT quote for {source}")
        return in_target / in_source

    def _get_prices(self, **params) -> dict:
        headers = {"accept": "application/json"}
        if self.api_key:
            headers["x-cg-demo-api-key"] = self.api_key
        try:
            resp = requests.get(
                f"{self.base_url}/simple/price",
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise RateUnavailableError(str(exc)) from exc

    @staticmethod
    def _pick(data: dict, coin_id: str, currency: str) -> Decimal:
        try:
            return Decimal(str(data[coin_id][currency]))
        except (KeyError, TypeError, InvalidOperation):
            raise RateUnavailableError(f"No {coin_id}/{currency} quote in response")


def build_rate_provider(settings) -> CachedRateProvider:
    """Default provider for the running app: CoinGecko behind the TTL cache"""
    return CachedRateProvider(
        CoinGeckoRateProvider(
            base_url=settings.COINGECKO_BASE_URL,
            api_key=settings.COINGECKO_API_KEY,
            timeout=settings.RATE_REQUEST_TIMEOUT_SECONDS,
        ),
        ttl_seconds=settings.RATE_CACHE_TTL_SECONDS,
    )
