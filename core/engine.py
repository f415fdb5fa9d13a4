"""
Core Engine - orchestrates one super token analysis

Fast cache -> durable store -> full pipeline -> write-through, with a stale
durable entry as the last resort when the pipeline itself fails.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

import pydantic

from analysis.models import SuperTokenScore
from analysis.security_analyzer import BaseSecurityAnalyzer
from analysis.token_scorer import run_sub_analyses, score_token
from config.config_manager import EngineConfig
from core.progress import ProgressObserver, as_observer
from core.resilience import CircuitBreaker, ResilientExecutor, RetryPolicy
from data.collectors.base_collector import BaseCollector
from data.collectors.birdeye import BirdeyeCollector
from data.collectors.chain_data import ChainDataClient, SolanaChainClient
from data.collectors.dexscreener import DexScreenerCollector
from data.collectors.jupiter import JupiterCollector
from data.collectors.rugcheck import RugCheckCollector
from data.collectors.solscan import SolscanCollector
from data.processors.aggregator import ExternalDataAggregator
from data.storage.cache import CacheManager
from data.storage.database import DatabaseManager
from data.storage.models import CacheEntry, DurableStore, FastCache
from utils.constants import FAST_CACHE_PREFIX
from utils.errors import (AnalysisError, CacheError, DatabaseError, InvalidTokenAddressError,
                          TokenScorerError, ValidationError)
from utils.helpers import is_valid_solana_address, short_address, utc_now

logger = logging.getLogger(__name__)


class TokenRiskEngine:
    """
    Entry point for token risk analysis.

    Collaborators are injected: the chain client, the provider collectors and
    the two cache tiers. Either cache tier may be None, in which case that
    tier is skipped.
    """

    def __init__(
        self,
        chain_client: ChainDataClient,
        providers: Mapping[str, BaseCollector],
        fast_cache: Optional[FastCache] = None,
        durable_store: Optional[DurableStore] = None,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        chain_executor: Optional[ResilientExecutor] = None,
        provider_executors: Optional[Mapping[str, ResilientExecutor]] = None,
    ):
        self.config = config or EngineConfig()
        self.policy = self.config.scoring
        self.cache_ttl = self.config.cache.cache_ttl
        self.stale_ttl = self.config.cache.stale_ttl
        self.clock = clock

        resilience = self.config.resilience
        self.chain_client = chain_client
        self.chain_executor = chain_executor or ResilientExecutor(
            CircuitBreaker.from_config('chain', resilience),
            RetryPolicy.from_config(resilience),
        )
        self.security_analyzer = BaseSecurityAnalyzer(chain_client, self.chain_executor, self.policy)
        self.aggregator = ExternalDataAggregator(
            providers,
            resilience,
            outer_timeout=self.config.providers.aggregator_timeout,
            executors=provider_executors,
        )

        self.fast_cache = fast_cache
        self.durable_store = durable_store

        self.stats = {
            'requests': 0,
            'fast_cache_hits': 0,
            'durable_hits': 0,
            'computed': 0,
            'stale_fallbacks': 0,
            'failures': 0,
            'cache_errors': 0,
        }

    @classmethod
    def from_config(cls, config: Optional[EngineConfig] = None) -> "TokenRiskEngine":
        """Wire the production collaborators; call initialize() before use"""
        config = config or EngineConfig()
        providers_cfg = config.providers
        timeout = config.resilience.call_timeout

        chain_client = SolanaChainClient(
            providers_cfg.solana_rpc_url,
            helius_api_key=providers_cfg.helius_api_key,
            request_timeout=timeout,
            holder_sample_size=providers_cfg.holder_sample_size,
            transaction_sample_size=providers_cfg.transaction_sample_size,
        )
        providers = {
            'rugcheck': RugCheckCollector(providers_cfg.rugcheck_api_key, request_timeout=timeout),
            'dexscreener': DexScreenerCollector(request_timeout=timeout),
            'birdeye': BirdeyeCollector(providers_cfg.birdeye_api_key, request_timeout=timeout),
            'solscan': SolscanCollector(providers_cfg.solscan_api_key, request_timeout=timeout),
            'jupiter': JupiterCollector(request_timeout=timeout),
        }
        fast_cache = CacheManager(config.cache.redis_url, default_ttl=config.cache.cache_ttl)
        durable_store = DatabaseManager(
            config.cache.database_url,
            min_size=config.cache.db_pool_min,
            max_size=config.cache.db_pool_max,
        )
        return cls(chain_client, providers, fast_cache, durable_store, config)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self):
        """Open sessions and connect the cache tiers; an unreachable tier is disabled"""
        if hasattr(self.chain_client, 'initialize'):
            await self.chain_client.initialize()
        for collector in self.aggregator.providers.values():
            await collector.initialize()

        if isinstance(self.fast_cache, CacheManager) and not self.fast_cache.is_connected:
            try:
                await self.fast_cache.connect()
            except CacheError as e:
                logger.warning(f"Fast cache disabled: {e}")
                self.fast_cache = None

        if isinstance(self.durable_store, DatabaseManager) and not self.durable_store.is_connected:
            try:
                await self.durable_store.connect()
            except DatabaseError as e:
                logger.warning(f"Durable store disabled: {e}")
                self.durable_store = None

        logger.info("Token risk engine initialized")

    async def close(self):
        """Release sessions and connections"""
        await self.aggregator.close()
        if hasattr(self.chain_client, 'close'):
            await self.chain_client.close()
        if isinstance(self.fast_cache, CacheManager):
            await self.fast_cache.disconnect()
        if isinstance(self.durable_store, DatabaseManager):
            await self.durable_store.disconnect()
        logger.info("Token risk engine closed")

    async def __aenter__(self) -> "TokenRiskEngine":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    @staticmethod
    def cache_key(token_address: str) -> str:
        return f"{FAST_CACHE_PREFIX}:{token_address}"

    async def analyze_token(
        self,
        token_address: str,
        force_refresh: bool = False,
        on_progress: Any = None,
    ) -> SuperTokenScore:
        """
        Analyze one token.

        Args:
            token_address: base58 mint address
            force_refresh: skip both cache reads and recompute
            on_progress: ProgressObserver or callable receiving phase names

        Raises:
            InvalidTokenAddressError: address is not a valid Solana mint
            AnalysisError: the pipeline failed and no stored entry exists
        """
        if not is_valid_solana_address(token_address):
            raise InvalidTokenAddressError(token_address)

        self.stats['requests'] += 1
        observer = as_observer(on_progress)
        now = self.clock()

        observer.on_phase('cache_lookup')
        durable_entry: Optional[CacheEntry] = None
        if not force_refresh:
            cached = await self._read_fast(token_address, now)
            if cached is not None:
                self.stats['fast_cache_hits'] += 1
                observer.on_phase('complete')
                return cached.model_copy(update={'cached': True, 'stale_fallback': False})

            durable_entry = await self._read_durable(token_address)
            if durable_entry is not None and not durable_entry.is_stale(self.stale_ttl, now):
                self.stats['durable_hits'] += 1
                await self._write_fast(durable_entry.payload)
                observer.on_phase('complete')
                return durable_entry.payload.model_copy(update={'cached': True, 'stale_fallback': False})

        try:
            result = await self._compute(token_address, observer, now)
        except ValidationError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats['failures'] += 1
            logger.error(f"Analysis pipeline failed for {short_address(token_address)}: {e}", exc_info=True)
            if durable_entry is None:
                durable_entry = await self._read_durable(token_address)
            if durable_entry is not None:
                self.stats['stale_fallbacks'] += 1
                logger.warning(f"Serving stored analysis from {durable_entry.analyzed_at.isoformat()} "
                               f"for {short_address(token_address)}")
                observer.on_phase('complete')
                return durable_entry.payload.model_copy(update={'cached': True, 'stale_fallback': True})
            raise AnalysisError(f"Analysis failed for {token_address}: {e}") from e

        observer.on_phase('cache_write')
        await self._write_through(result)
        self.stats['computed'] += 1
        observer.on_phase('complete')
        return result

    async def _compute(self, token_address: str, observer: ProgressObserver, now: datetime) -> SuperTokenScore:
        started = time.perf_counter()

        observer.on_phase('base_security')
        report = await self.security_analyzer.analyze(token_address)

        observer.on_phase('external_data')
        bundle = await self.aggregator.fetch_all(token_address)
        if bundle.unavailable:
            logger.info(f"Scoring {short_address(token_address)} without {bundle.unavailable}")

        observer.on_phase('derived_analysis')
        analyses = run_sub_analyses(report, bundle, self.policy)

        observer.on_phase('scoring')
        return score_token(report, bundle, self.policy, now=now, started=started, analyses=analyses)

    # ------------------------------------------------------------------
    # Cache tiers (fail open)
    # ------------------------------------------------------------------

    async def _read_fast(self, token_address: str, now: datetime) -> Optional[SuperTokenScore]:
        if self.fast_cache is None:
            return None
        try:
            document = await self.fast_cache.get_json(self.cache_key(token_address))
        except TokenScorerError as e:
            self.stats['cache_errors'] += 1
            logger.warning(f"Fast cache read failed, treating as miss: {e}")
            return None
        if document is None:
            return None
        try:
            score = SuperTokenScore.model_validate(document)
        except pydantic.ValidationError as e:
            logger.warning(f"Discarding malformed cache entry for {short_address(token_address)}: {e}")
            return None
        if (now - score.analyzed_at).total_seconds() >= self.stale_ttl:
            return None
        return score

    async def _read_durable(self, token_address: str) -> Optional[CacheEntry]:
        if self.durable_store is None:
            return None
        try:
            return await self.durable_store.get_analysis(token_address)
        except (TokenScorerError, pydantic.ValidationError) as e:
            self.stats['cache_errors'] += 1
            logger.warning(f"Durable store read failed, treating as miss: {e}")
            return None

    async def _write_fast(self, score: SuperTokenScore) -> None:
        if self.fast_cache is None:
            return
        document = score.model_copy(update={'cached': False, 'stale_fallback': False}).model_dump(mode='json')
        try:
            await self.fast_cache.set_json(self.cache_key(score.token_address), document, self.cache_ttl)
        except TokenScorerError as e:
            self.stats['cache_errors'] += 1
            logger.warning(f"Fast cache write failed: {e}")

    async def _write_through(self, score: SuperTokenScore) -> None:
        await self._write_fast(score)
        if self.durable_store is None:
            return
        try:
            await self.durable_store.save_analysis(CacheEntry.from_score(score))
        except TokenScorerError as e:
            self.stats['cache_errors'] += 1
            logger.warning(f"Durable store write failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            'engine': dict(self.stats),
            'providers': self.aggregator.get_stats(),
            'chain_breaker': self.chain_executor.breaker.get_stats(),
        }
