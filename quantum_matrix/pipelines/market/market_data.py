from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import List, Optional

import httpx
from bs4 import BeautifulSoup

from quantum_matrix.core.exceptions import MarketDataUnavailable
from quantum_matrix.utils.config_loader import SourcesConfig
from quantum_matrix.utils.https_client import https_get, safe_json

log = logging.getLogger(__name__)

FEAR_GREED_URL = "https://api.alternative.me/fng/?limit=1"
REDDIT_TOP_URL = "https://www.reddit.com/r/{sub}/top.json"
COINGECKO_TRENDING_URL = "https://api.coingecko.com/api/v3/search/trending"
COINGECKO_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"


@dataclass
class FearGreedReading:
    value: int
    classification: str = ""


@dataclass
class RedditPost:
    title: str
    score: int = 0
    num_comments: int = 0
    url: str = ""


@dataclass
class NewsItem:
    title: str
    source: str = "Unknown Source"
    published_at: Optional[datetime] = None
    link: str = ""


@dataclass
class MarketData:
    fear_greed: Optional[FearGreedReading] = None
    news: List[NewsItem] = field(default_factory=list)
    posts: List[RedditPost] = field(default_factory=list)
    trending: List[str] = field(default_factory=list)

    @property
    def has_sentiment_inputs(self) -> bool:
        return self.fear_greed is not None or bool(self.news) or bool(self.posts)


def _parse_pub_date(raw: str) -> Optional[datetime]:
    if not raw:
        return None
    try:
        dt = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_rss(text: str, limit: int = 100) -> List[NewsItem]:
    """Parse an RSS document into headline items, skipping entries without title or link."""
    soup = BeautifulSoup(text, "xml")
    channel_title = soup.find("title")
    source = channel_title.text.strip() if channel_title and channel_title.text.strip() else "Unknown Source"

    out: List[NewsItem] = []
    for it in soup.find_all("item")[:limit]:
        title = it.title.text.strip() if it.title else ""
        link = it.link.text.strip() if it.link else ""
        if not title or not link:
            continue
        out.append(NewsItem(
            title=title,
            source=source,
            published_at=_parse_pub_date(it.pubDate.text if it.pubDate else ""),
            link=link,
        ))
    return out


class MarketDataClient:
    """
    Best-effort fetchers for the raw market inputs.

    Every individual source fails soft (None / empty list). Only when no
    sentiment input at all could be fetched does `get_aggregated_data`
    raise `MarketDataUnavailable`.
    """

    def __init__(
        self,
        sources: Optional[SourcesConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        self.sources = sources or SourcesConfig()
        self._transport = transport
        self._timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self._timeout, follow_redirects=True)

    async def get_aggregated_data(self) -> MarketData:
        async with self._client() as client:
            fear_greed, news, posts, trending = await asyncio.gather(
                self.fetch_fear_greed(client),
                self.fetch_news(client),
                self.fetch_reddit_posts(client),
                self.fetch_trending(client),
            )

        data = MarketData(fear_greed=fear_greed, news=news, posts=posts, trending=trending)
        if not data.has_sentiment_inputs:
            raise MarketDataUnavailable("No fear/greed, news or social data could be fetched")

        log.info(
            "Market data aggregated: fear_greed=%s news=%d posts=%d",
            fear_greed.value if fear_greed else None, len(news), len(posts),
        )
        return data

    async def fetch_fear_greed(self, client: httpx.AsyncClient) -> Optional[FearGreedReading]:
        data = safe_json(await https_get(client, FEAR_GREED_URL))
        try:
            row = data["data"][0]
            return FearGreedReading(value=int(row["value"]), classification=row.get("value_classification", ""))
        except (TypeError, KeyError, IndexError, ValueError) as e:
            log.warning("Failed to fetch Fear & Greed index: %s", e)
            return None

    async def fetch_news(self, client: httpx.AsyncClient) -> List[NewsItem]:
        async def one(url: str) -> List[NewsItem]:
            resp = await https_get(client, url, headers={"User-Agent": "Mozilla/5.0"})
            if resp is None:
                return []
            try:
                return parse_rss(resp.text)
            except Exception:
                log.exception("RSS parse failed for %s", url)
                return []

        batches = await asyncio.gather(*(one(url) for url in self.sources.rss_feeds))

        unique = {}
        for batch in batches:
            for item in batch:
                unique.setdefault(item.title, item)

        oldest = datetime.min.replace(tzinfo=timezone.utc)
        items = sorted(unique.values(), key=lambda n: n.published_at or oldest, reverse=True)
        return items[: self.sources.max_headlines]

    async def fetch_reddit_posts(self, client: httpx.AsyncClient) -> List[RedditPost]:
        async def one(sub: str) -> List[RedditPost]:
            resp = await https_get(
                client,
                REDDIT_TOP_URL.format(sub=sub),
                params={"t": "day", "limit": self.sources.posts_per_subreddit},
            )
            data = safe_json(resp)
            listing = data.get("data") if isinstance(data, dict) else None
            children = listing.get("children") if isinstance(listing, dict) else None
            if not isinstance(children, list):
                if data:
                    log.warning("Unexpected Reddit listing shape for r/%s", sub)
                return []
            out = []
            for child in children:
                post = child.get("data") if isinstance(child, dict) else None
                if not isinstance(post, dict) or not post.get("title"):
                    continue
                try:
                    out.append(RedditPost(
                        title=str(post["title"]),
                        score=int(post.get("score") or 0),
                        num_comments=int(post.get("num_comments") or 0),
                        url=str(post.get("url") or ""),
                    ))
                except (TypeError, ValueError):
                    log.debug("Skipping malformed Reddit post in r/%s", sub)
            return out

        batches = await asyncio.gather(*(one(sub) for sub in self.sources.subreddits))
        posts = [p for batch in batches for p in batch]
        posts.sort(key=lambda p: p.score, reverse=True)
        return posts[: self.sources.max_posts]

    async def fetch_trending(self, client: httpx.AsyncClient) -> List[str]:
        data = safe_json(await https_get(client, COINGECKO_TRENDING_URL))
        try:
            return [c["item"]["symbol"] for c in data["coins"]]
        except (TypeError, KeyError):
            log.warning("Failed to fetch trending coins, using fallback")
            return list(self.sources.trending_fallback)

    async def get_reference_price(self) -> Optional[float]:
        asset = self.sources.price_asset
        async with self._client() as client:
            data = safe_json(await https_get(
                client, COINGECKO_PRICE_URL, params={"ids": asset, "vs_currencies": "usd"},
            ))
        try:
            return float(data[asset]["usd"])
        except (TypeError, KeyError, ValueError):
            log.warning("Failed to fetch %s reference price", asset)
            return None
