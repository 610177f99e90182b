import logging
import math
from typing import List, Optional

from vaderSentiment.vaderSentiment import SentimentIntensityAnalyzer

from quantum_matrix.pipelines.market.market_data import RedditPost
from quantum_matrix.utils.sentiment_scaler import clamp

log = logging.getLogger(__name__)

_analyzer: Optional[SentimentIntensityAnalyzer] = None


def get_analyzer() -> SentimentIntensityAnalyzer:
    global _analyzer
    if _analyzer is None:
        _analyzer = SentimentIntensityAnalyzer()
    return _analyzer


def text_polarity(text: str, analyzer: Optional[SentimentIntensityAnalyzer] = None) -> float:
    """VADER compound score, already in [-1, 1]."""
    text = (text or "").strip()
    if not text:
        return 0.0
    return clamp(float((analyzer or get_analyzer()).polarity_scores(text)["compound"]), -1.0, 1.0)


def post_influence(post: RedditPost) -> float:
    """Engagement weight: log10(score + 2) * log10(comments + 2)."""
    return math.log10(max(post.score, 0) + 2) * math.log10(max(post.num_comments, 0) + 2)


def social_score(posts: List[RedditPost], analyzer: Optional[SentimentIntensityAnalyzer] = None) -> float:
    """Influence-weighted average polarity of post titles; 0 without posts."""
    if not posts:
        return 0.0

    weighted = 0.0
    total_influence = 0.0
    for post in posts:
        influence = post_influence(post)
        weighted += text_polarity(post.title, analyzer) * influence
        total_influence += influence

    if total_influence == 0:
        return 0.0

    score = clamp(weighted / total_influence, -1.0, 1.0)
    log.debug("Social score %.4f from %d posts", score, len(posts))
    return score
