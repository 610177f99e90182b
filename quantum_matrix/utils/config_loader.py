from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Dict, List

import yaml

from quantum_matrix.core.schema import RiskTier, Strategy

log = logging.getLogger(__name__)

ENGINE_CONFIG_PATH = "config/engine.yaml"
SOURCES_CONFIG_PATH = "config/sources.yaml"
STRATEGIES_CONFIG_PATH = "config/strategies.yaml"


@dataclass
class FeedbackConfig:
    bullish_score_above: float = 55
    bearish_score_below: float = 45
    bullish_min_change_pct: float = 0.5
    bearish_max_change_pct: float = -0.5
    neutral_max_abs_change_pct: float = 1.5
    batch_size: int = 50
    min_age_hours: float = 24


@dataclass
class AdaptiveBands:
    # High/Degen active at or above aggressive_min_score
    aggressive_min_score: int = 61
    medium_min_score: int = 41
    medium_max_score: int = 80
    low_max_score: int = 60


@dataclass
class EngineConfig:
    macro_weights: Dict[str, float] = field(
        default_factory=lambda: {"low": 0.10, "normal": 0.15, "high": 0.25}
    )
    base_ratios: Dict[str, Dict[str, float]] = field(
        default_factory=lambda: {
            "mixed": {"lexicon": 0.25, "social": 0.20, "news_trend": 0.25, "language_model": 0.30},
            "social": {"lexicon": 0.40, "social": 0.10, "news_trend": 0.20, "language_model": 0.30},
            "news": {"lexicon": 0.15, "social": 0.15, "news_trend": 0.25, "language_model": 0.45},
        }
    )
    horizon_tilt: float = 0.03
    long_horizon_macro_tilt: float = 0.05
    new_asset_tilt: float = 0.05

    confidence_floor: float = 0.5
    spread_penalty: float = 0.5
    disagreement_threshold: float = 0.6
    nudge: float = 0.1
    tie_break_bullish_at: float = 55
    tie_break_bearish_at: float = 45

    cache_ttl_seconds: int = 15 * 60
    macro_cache_ttl_seconds: int = 60 * 60
    extractor_timeout_seconds: float = 8.0
    language_model_timeout_seconds: float = 20.0
    language_model_fallback_factor: float = 0.9

    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)
    adaptive: AdaptiveBands = field(default_factory=AdaptiveBands)

    paper_gas_cost_usd: float = 3.5
    paper_base_rate: float = 0.005
    paper_bullish_bonus: float = 0.002
    paper_bonus_score_above: float = 60

    retention_days: int = 365


@dataclass
class SourcesConfig:
    rss_feeds: List[str] = field(
        default_factory=lambda: [
            "https://cointelegraph.com/rss",
            "https://cryptopotato.com/feed/",
            "https://decrypt.co/feed",
        ]
    )
    subreddits: List[str] = field(default_factory=lambda: ["CryptoCurrency", "Bitcoin", "DeFi"])
    credibility: Dict[str, float] = field(
        default_factory=lambda: {
            "CoinTelegraph": 0.8,
            "CryptoPotato": 0.6,
            "Decrypt": 0.85,
            "Unknown Source": 0.4,
        }
    )
    default_credibility: float = 0.5
    price_asset: str = "ethereum"
    trending_fallback: List[str] = field(default_factory=lambda: ["BTC", "ETH", "SOL", "AI", "RWA"])
    max_headlines: int = 15
    max_posts: int = 15
    posts_per_subreddit: int = 5


DEFAULT_STRATEGIES: List[Strategy] = [
    Strategy("strat-mean-reversion", "Mean Reversion v4", RiskTier.MEDIUM, 18.5, "Quant"),
    Strategy("strat-delta-gamma", "Delta-Gamma Hedged", RiskTier.LOW, 12.2, "DeltaNeutral"),
    Strategy("strat-momentum-alpha", "Alpha Momentum", RiskTier.HIGH, 45.0, "Momentum"),
    Strategy("strat-liquid-loop", "Recursive Staking", RiskTier.HIGH, 24.5, "Leverage"),
    Strategy("strat-basis-arb", "Basis Arbitrage", RiskTier.LOW, 8.5, "Yield"),
    Strategy("strat-degen-farm", "Hyper-Liquidity", RiskTier.DEGEN, 150.5, "Yield"),
]


def _read_yaml(path: str) -> Dict[str, Any]:
    if not path or not os.path.exists(path):
        log.info("Config %s not found, using defaults", path)
        return {}
    with open(path, "r") as fh:
        return yaml.safe_load(fh) or {}


def _overlay(target: Any, data: Dict[str, Any]) -> Any:
    """Copy known keys from data onto a dataclass instance, recursing into nested dataclasses."""
    known = {f.name for f in fields(target)}
    for key, value in data.items():
        if key not in known:
            log.warning("Ignoring unknown config key %r for %s", key, type(target).__name__)
            continue
        current = getattr(target, key)
        if is_dataclass(current) and isinstance(value, dict):
            _overlay(current, value)
        else:
            setattr(target, key, value)
    return target


def load_engine_config(path: str = ENGINE_CONFIG_PATH) -> EngineConfig:
    return _overlay(EngineConfig(), _read_yaml(path).get("engine", {}))


def load_sources(path: str = SOURCES_CONFIG_PATH) -> SourcesConfig:
    return _overlay(SourcesConfig(), _read_yaml(path).get("sources", {}))


def load_strategy_catalog(path: str = STRATEGIES_CONFIG_PATH) -> Dict[str, Strategy]:
    rows = _read_yaml(path).get("strategies")
    if not rows:
        return {s.id: s for s in DEFAULT_STRATEGIES}

    catalog: Dict[str, Strategy] = {}
    for row in rows:
        strategy = Strategy(
            id=str(row["id"]),
            name=str(row.get("name", row["id"])),
            risk_tier=RiskTier(row.get("risk_tier", "Medium")),
            apy=float(row.get("apy", 0.0)),
            type=str(row.get("type", "")),
            description=str(row.get("description", "")),
        )
        catalog[strategy.id] = strategy
    return catalog
