from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from quantum_matrix.core.allocation_service import AllocationService
from quantum_matrix.core.cache import CacheService
from quantum_matrix.core.coalescer import WriteCoalescer
from quantum_matrix.core.orchestrator import LanguageModelScorer, SentimentOrchestrator
from quantum_matrix.core.schema import Strategy
from quantum_matrix.pipelines.language_model.lm_sentiment import TransformersScorer
from quantum_matrix.pipelines.macros.macros_sentiment import MacroSignalProvider
from quantum_matrix.pipelines.market.market_data import MarketDataClient
from quantum_matrix.storage.repository import InMemoryRepository, Repository
from quantum_matrix.utils.config_loader import (
    EngineConfig,
    SourcesConfig,
    load_engine_config,
    load_sources,
    load_strategy_catalog,
)

log = logging.getLogger(__name__)


@dataclass
class Engine:
    """Everything the API, the jobs and the CLI share within one process."""
    config: EngineConfig
    sources: SourcesConfig
    catalog: Dict[str, Strategy]
    cache: CacheService
    repository: Repository
    market: MarketDataClient
    macro: MacroSignalProvider
    orchestrator: SentimentOrchestrator
    allocations: AllocationService
    coalescer: Optional[WriteCoalescer] = None


def build_repository(settings: Any) -> Repository:
    backend = (settings.storage_backend or "memory").lower()
    if backend == "memory":
        return InMemoryRepository()
    if backend == "clickhouse":
        from quantum_matrix.ingestion.clickhouse_ingest import ClickHouseRepository

        repo = ClickHouseRepository(
            host=settings.clickhouse_host,
            port=settings.clickhouse_port,
            database=settings.clickhouse_database,
        )
        repo.ensure_schema()
        return repo
    raise ValueError(f"Unknown storage backend {settings.storage_backend!r}")


def build_engine(
    settings: Any,
    repository: Optional[Repository] = None,
    market: Optional[MarketDataClient] = None,
    language_model: Optional[LanguageModelScorer] = None,
    macro: Optional[MacroSignalProvider] = None,
) -> Engine:
    config = load_engine_config(settings.engine_config_path)
    sources = load_sources(settings.sources_config_path)
    catalog = load_strategy_catalog(settings.strategies_config_path)
    cache = CacheService()
    repository = repository or build_repository(settings)

    market = market or MarketDataClient(sources)
    macro = macro or MacroSignalProvider(settings.fred_api_key, cache, config.macro_cache_ttl_seconds)
    orchestrator = SentimentOrchestrator(
        market=market,
        language_model=language_model or TransformersScorer(settings.language_model),
        macro=macro,
        cache=cache,
        config=config,
        sources=sources,
    )

    coalescer = None
    if settings.persist_delay_seconds and settings.persist_delay_seconds > 0:
        coalescer = WriteCoalescer(repository.save_allocation, settings.persist_delay_seconds)

    log.info(
        "Engine ready: storage=%s strategies=%d persist_delay=%.1fs",
        type(repository).__name__, len(catalog), settings.persist_delay_seconds or 0,
    )
    return Engine(
        config=config,
        sources=sources,
        catalog=catalog,
        cache=cache,
        repository=repository,
        market=market,
        macro=macro,
        orchestrator=orchestrator,
        allocations=AllocationService(repository, catalog, coalescer),
        coalescer=coalescer,
    )
