"""
Macro-economic signal for crypto markets.

Three indicators, each mapped to [-1, 1] where higher inflation, tighter
policy and a stronger dollar read as bearish:
  - CPI year-over-year vs the 2% target (FRED CPIAUCSL)
  - effective Fed funds rate vs a 2.5% neutral rate (FRED FEDFUNDS)
  - a dollar index proxy built from major FX rates
Indicators that cannot be fetched fall back to recent fixed readings.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx

from quantum_matrix.core.cache import CacheService
from quantum_matrix.core.schema import MacroDetails, utcnow
from quantum_matrix.utils.https_client import https_get, safe_json
from quantum_matrix.utils.sentiment_scaler import clamp

log = logging.getLogger(__name__)

FRED_BASE_URL = "https://api.stlouisfed.org/fred/series/observations"
FX_URL = "https://api.exchangerate.host/latest"
CPI_SERIES = "CPIAUCSL"
FED_FUNDS_SERIES = "FEDFUNDS"
MACRO_CACHE_KEY = "macro:signals"

INFLATION_TARGET = 2.0
NEUTRAL_RATE = 2.5
NEUTRAL_DXY = 100.0
COMPOSITE_WEIGHTS = {"cpi": 0.35, "rate": 0.35, "dxy": 0.30}


@dataclass
class IndicatorReading:
    value: float
    previous_value: float
    source: str = "FRED"
    yoy_change: Optional[float] = None   # CPI only
    stance: str = "neutral"              # policy rate only: hawkish | neutral | dovish
    last_update: str = ""

    @property
    def change(self) -> float:
        return self.value - self.previous_value

    @property
    def trend(self) -> str:
        if self.change > 0:
            return "rising"
        if self.change < 0:
            return "falling"
        return "stable"


def fallback_cpi() -> IndicatorReading:
    return IndicatorReading(value=313.0, previous_value=312.5, source="fallback", yoy_change=2.9)


def fallback_fed_rate() -> IndicatorReading:
    return IndicatorReading(value=4.33, previous_value=4.33, source="fallback")


def fallback_dxy() -> IndicatorReading:
    return IndicatorReading(value=104.5, previous_value=104.0, source="fallback")


def cpi_signal(cpi: Optional[IndicatorReading]) -> float:
    # 0% YoY = +0.33, 2% = 0, 8% = -1
    if cpi is None or cpi.yoy_change is None:
        return 0.0
    return clamp(-(cpi.yoy_change - INFLATION_TARGET) / 6.0, -1.0, 1.0)


def rate_signal(rate: Optional[IndicatorReading]) -> float:
    if rate is None:
        return 0.0
    momentum = {"dovish": 0.1, "hawkish": -0.1}.get(rate.stance, 0.0)
    return clamp(-(rate.value - NEUTRAL_RATE) / 5.0 + momentum, -1.0, 1.0)


def dxy_signal(dxy: Optional[IndicatorReading]) -> float:
    if dxy is None:
        return 0.0
    return clamp(-(dxy.value - NEUTRAL_DXY) / 20.0, -1.0, 1.0)


def composite_score(cpi: float, rate: float, dxy: float) -> float:
    total = cpi * COMPOSITE_WEIGHTS["cpi"] + rate * COMPOSITE_WEIGHTS["rate"] + dxy * COMPOSITE_WEIGHTS["dxy"]
    return round(total, 3)


def interpret(score: float) -> str:
    if score <= -0.4:
        return "Very Hawkish"
    if score <= -0.15:
        return "Hawkish"
    if score <= 0.15:
        return "Neutral"
    if score <= 0.4:
        return "Dovish"
    return "Very Dovish"


def data_freshness(readings: List[Optional[IndicatorReading]]) -> str:
    live = sum(1 for r in readings if r is not None and r.source != "fallback")
    if live >= 2:
        return "fresh"
    if live >= 1:
        return "stale"
    return "fallback"


@dataclass
class MacroSignals:
    cpi: Optional[IndicatorReading]
    fed_rate: Optional[IndicatorReading]
    dxy: Optional[IndicatorReading]
    cpi_signal: float
    rate_signal: float
    dxy_signal: float
    composite_score: float
    interpretation: str
    data_freshness: str
    last_update: str

    def details(self) -> MacroDetails:
        return MacroDetails(
            composite_score=self.composite_score,
            interpretation=self.interpretation,
            cpi_signal=self.cpi_signal,
            rate_signal=self.rate_signal,
            dxy_signal=self.dxy_signal,
            data_freshness=self.data_freshness,
        )

    @classmethod
    def from_readings(cls, cpi, fed_rate, dxy) -> "MacroSignals":
        c, r, d = cpi_signal(cpi), rate_signal(fed_rate), dxy_signal(dxy)
        score = composite_score(c, r, d)
        return cls(
            cpi=cpi, fed_rate=fed_rate, dxy=dxy,
            cpi_signal=c, rate_signal=r, dxy_signal=d,
            composite_score=score,
            interpretation=interpret(score),
            data_freshness=data_freshness([cpi, fed_rate, dxy]),
            last_update=utcnow().isoformat(),
        )


class MacroSignalProvider:
    """Fetches the three indicators in parallel and caches the composite for an hour."""

    def __init__(
        self,
        fred_api_key: Optional[str] = None,
        cache: Optional[CacheService] = None,
        cache_ttl: float = 3600,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.fred_api_key = fred_api_key
        self.cache = cache or CacheService()
        self.cache_ttl = cache_ttl
        self._transport = transport
        if not fred_api_key:
            log.warning("FRED_API_KEY not set - using fallback CPI and rate data")

    async def get_macro_signals(self) -> MacroSignals:
        cached = self.cache.get(MACRO_CACHE_KEY)
        if cached is not None:
            log.debug("Returning cached macro signals")
            return cached

        async with httpx.AsyncClient(transport=self._transport, timeout=10.0) as client:
            cpi, fed_rate, dxy = await asyncio.gather(
                self.fetch_cpi(client),
                self.fetch_fed_rate(client),
                self.fetch_dxy(client),
            )

        signals = MacroSignals.from_readings(cpi, fed_rate, dxy)
        self.cache.set(MACRO_CACHE_KEY, signals, self.cache_ttl)
        log.info(
            "Macro signals calculated: composite=%.3f interpretation=%s freshness=%s",
            signals.composite_score, signals.interpretation, signals.data_freshness,
        )
        return signals

    async def score(self) -> float:
        return (await self.get_macro_signals()).composite_score

    async def _fred_series(self, client: httpx.AsyncClient, series_id: str, limit: int) -> List[dict]:
        resp = await https_get(client, FRED_BASE_URL, params={
            "series_id": series_id,
            "api_key": self.fred_api_key,
            "file_type": "json",
            "sort_order": "desc",
            "limit": limit,
        })
        data = safe_json(resp) or {}
        return [o for o in data.get("observations", []) if o.get("value") not in (None, ".")]

    async def fetch_cpi(self, client: httpx.AsyncClient) -> IndicatorReading:
        if not self.fred_api_key:
            return fallback_cpi()
        obs = await self._fred_series(client, CPI_SERIES, 13)
        if len(obs) < 2:
            log.warning("CPI series unavailable, using fallback")
            return fallback_cpi()

        current = float(obs[0]["value"])
        previous = float(obs[1]["value"])
        year_ago = float(obs[12]["value"]) if len(obs) >= 13 else current * 0.97
        return IndicatorReading(
            value=current,
            previous_value=previous,
            yoy_change=(current - year_ago) / year_ago * 100.0,
            last_update=obs[0].get("date", ""),
        )

    async def fetch_fed_rate(self, client: httpx.AsyncClient) -> IndicatorReading:
        if not self.fred_api_key:
            return fallback_fed_rate()
        obs = await self._fred_series(client, FED_FUNDS_SERIES, 3)
        if len(obs) < 2:
            log.warning("Fed funds series unavailable, using fallback")
            return fallback_fed_rate()

        current = float(obs[0]["value"])
        previous = float(obs[1]["value"])
        change = current - previous
        stance = "hawkish" if change > 0.1 else "dovish" if change < -0.1 else "neutral"
        return IndicatorReading(
            value=current,
            previous_value=previous,
            stance=stance,
            last_update=obs[0].get("date", ""),
        )

    async def fetch_dxy(self, client: httpx.AsyncClient) -> IndicatorReading:
        data = safe_json(await https_get(client, FX_URL, params={"base": "USD", "symbols": "EUR,GBP,JPY"}))
        rates = (data or {}).get("rates")
        if not rates:
            return fallback_dxy()

        eur = rates.get("EUR") or 0.92
        gbp = rates.get("GBP") or 0.79
        jpy = rates.get("JPY") or 149.0
        # scaled to land in the usual 90-110 DXY range
        proxy = ((1 / eur) * 50 + (jpy / 100) * 25 + (1 / gbp) * 25) * 1.1
        value = round(proxy, 2)
        return IndicatorReading(value=value, previous_value=value, source="exchangerate.host",
                                last_update=utcnow().isoformat())
