from typing import Dict, List, Optional

from vaderSentiment.vaderSentiment import SentimentIntensityAnalyzer

from quantum_matrix.pipelines.market.market_data import NewsItem
from quantum_matrix.pipelines.social.social_sentiment import text_polarity
from quantum_matrix.utils.sentiment_scaler import clamp


def source_credibility(source: str, table: Dict[str, float], default: float = 0.5) -> float:
    """First table entry whose key is a substring of the publisher name."""
    for key, weight in table.items():
        if key in (source or ""):
            return float(weight)
    return default


def news_trend_score(
    news: List[NewsItem],
    credibility: Dict[str, float],
    default_credibility: float = 0.5,
    analyzer: Optional[SentimentIntensityAnalyzer] = None,
) -> float:
    """Credibility-weighted average headline polarity; 0 without headlines."""
    if not news:
        return 0.0

    weighted = 0.0
    total = 0.0
    for item in news:
        weight = source_credibility(item.source or "Unknown Source", credibility, default_credibility)
        weighted += text_polarity(item.title, analyzer) * weight
        total += weight

    if total == 0:
        return 0.0
    return clamp(weighted / total, -1.0, 1.0)
