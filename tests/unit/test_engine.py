# tests/unit/test_engine.py
"""
Unit tests for the analysis engine: cache tiers, fallback and progress
"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

import core.engine as engine_module
from analysis.models import GlobalRiskLevel
from core.engine import TokenRiskEngine
from core.progress import PHASES, RecordingProgress
from data.storage.database import DatabaseManager
from data.storage.models import CacheEntry
from tests.fixtures.mock_data import (FIXED_NOW, HEALTHY_TOKEN, INVALID_TOKENS, FakeChainClient,
                                      InMemoryFastCache, sample_score)
from utils.errors import AnalysisError, InvalidTokenAddressError

KEY = TokenRiskEngine.cache_key(HEALTHY_TOKEN)


def seed_fast(cache, age_seconds: float = 0):
    score = sample_score(analyzed_at=FIXED_NOW - timedelta(seconds=age_seconds))
    cache.data[KEY] = score.model_dump(mode='json')
    return score


def seed_durable(store, age_seconds: float):
    score = sample_score(analyzed_at=FIXED_NOW - timedelta(seconds=age_seconds))
    store.entries[HEALTHY_TOKEN] = CacheEntry.from_score(score)
    return score


def break_pipeline(monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("scoring exploded")
    monkeypatch.setattr(engine_module, 'score_token', broken)


@pytest.mark.unit
class TestComputePath:

    @pytest.mark.asyncio
    async def test_cold_start_computes_and_writes_through(self, make_engine, fast_cache, durable_store):
        engine = make_engine()
        result = await engine.analyze_token(HEALTHY_TOKEN)

        assert not result.cached
        assert not result.stale_fallback
        assert result.analyzed_at == FIXED_NOW
        assert KEY in fast_cache.data
        assert fast_cache.ttls[KEY] == 1800
        assert durable_store.entries[HEALTHY_TOKEN].payload == result
        assert engine.stats['computed'] == 1

    @pytest.mark.asyncio
    async def test_phases_in_order(self, make_engine):
        progress = RecordingProgress()
        await make_engine().analyze_token(HEALTHY_TOKEN, on_progress=progress)
        assert progress.phases == list(PHASES)

    @pytest.mark.asyncio
    async def test_callable_progress(self, make_engine):
        seen = []
        await make_engine().analyze_token(HEALTHY_TOKEN, on_progress=seen.append)
        await asyncio.sleep(0)
        assert seen[0] == 'cache_lookup'
        assert seen[-1] == 'complete'

    @pytest.mark.asyncio
    async def test_bad_progress_argument(self, make_engine):
        with pytest.raises(TypeError):
            await make_engine().analyze_token(HEALTHY_TOKEN, on_progress=42)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("address", INVALID_TOKENS)
    async def test_invalid_address(self, make_engine, address):
        chain = FakeChainClient()
        engine = make_engine(chain=chain)
        with pytest.raises(InvalidTokenAddressError):
            await engine.analyze_token(address)
        assert chain.calls == {}
        assert engine.stats['requests'] == 0

    @pytest.mark.asyncio
    async def test_without_cache_tiers(self, make_engine):
        result = await make_engine(fast=None, durable=None).analyze_token(HEALTHY_TOKEN)
        assert result.global_risk_level in (GlobalRiskLevel.ULTRA_SAFE, GlobalRiskLevel.SAFE)


@pytest.mark.unit
class TestFastCache:

    @pytest.mark.asyncio
    async def test_hit_skips_pipeline(self, make_engine, fast_cache):
        stored = seed_fast(fast_cache, age_seconds=60)
        chain = FakeChainClient()
        engine = make_engine(chain=chain)

        result = await engine.analyze_token(HEALTHY_TOKEN)

        assert result.cached
        assert result.super_score == stored.super_score
        assert chain.calls == {}
        assert engine.stats['fast_cache_hits'] == 1

    @pytest.mark.asyncio
    async def test_hit_reports_only_lookup_and_complete(self, make_engine, fast_cache):
        seed_fast(fast_cache)
        progress = RecordingProgress()
        await make_engine().analyze_token(HEALTHY_TOKEN, on_progress=progress)
        assert progress.phases == ['cache_lookup', 'complete']

    @pytest.mark.asyncio
    async def test_expired_document_is_ignored(self, make_engine, fast_cache):
        seed_fast(fast_cache, age_seconds=7200)
        result = await make_engine().analyze_token(HEALTHY_TOKEN)
        assert not result.cached
        assert result.analyzed_at == FIXED_NOW

    @pytest.mark.asyncio
    async def test_malformed_document_is_a_miss(self, make_engine, fast_cache):
        fast_cache.data[KEY] = {'token_address': HEALTHY_TOKEN}
        result = await make_engine().analyze_token(HEALTHY_TOKEN)
        assert not result.cached

    @pytest.mark.asyncio
    async def test_failing_cache_fails_open(self, make_engine):
        engine = make_engine(fast=InMemoryFastCache(fail=True))
        result = await engine.analyze_token(HEALTHY_TOKEN)
        assert not result.cached
        # one failed read, one failed write
        assert engine.stats['cache_errors'] == 2
        assert engine.stats['computed'] == 1

    @pytest.mark.asyncio
    async def test_force_refresh_skips_reads(self, make_engine, fast_cache, durable_store):
        seed_fast(fast_cache)
        seed_durable(durable_store, age_seconds=10)
        result = await make_engine().analyze_token(HEALTHY_TOKEN, force_refresh=True)
        assert not result.cached
        assert fast_cache.gets == 0
        assert durable_store.saves == 1


@pytest.mark.unit
class TestDurableStore:

    @pytest.mark.asyncio
    async def test_fresh_entry_is_served_and_backfilled(self, make_engine, fast_cache, durable_store):
        stored = seed_durable(durable_store, age_seconds=3600)
        engine = make_engine()

        result = await engine.analyze_token(HEALTHY_TOKEN)

        assert result.cached
        assert result.analyzed_at == stored.analyzed_at
        assert fast_cache.data[KEY]['cached'] is False
        assert engine.stats['durable_hits'] == 1
        assert durable_store.saves == 0

    @pytest.mark.asyncio
    async def test_stale_entry_is_recomputed(self, make_engine, durable_store):
        seed_durable(durable_store, age_seconds=7200)
        result = await make_engine().analyze_token(HEALTHY_TOKEN)
        assert not result.cached
        assert durable_store.entries[HEALTHY_TOKEN].analyzed_at == FIXED_NOW


@pytest.mark.unit
class TestFailureFallback:

    @pytest.mark.asyncio
    async def test_stale_entry_served_when_pipeline_fails(self, make_engine, durable_store, monkeypatch):
        stored = seed_durable(durable_store, age_seconds=3 * 3600)
        break_pipeline(monkeypatch)
        engine = make_engine()

        result = await engine.analyze_token(HEALTHY_TOKEN)

        assert result.cached
        assert result.stale_fallback
        assert result.analyzed_at == stored.analyzed_at
        assert engine.stats['failures'] == 1
        assert engine.stats['stale_fallbacks'] == 1

    @pytest.mark.asyncio
    async def test_forced_refresh_still_falls_back(self, make_engine, durable_store, monkeypatch):
        seed_durable(durable_store, age_seconds=60)
        break_pipeline(monkeypatch)
        result = await make_engine().analyze_token(HEALTHY_TOKEN, force_refresh=True)
        assert result.stale_fallback

    @pytest.mark.asyncio
    async def test_nothing_stored_raises(self, make_engine, monkeypatch):
        break_pipeline(monkeypatch)
        with pytest.raises(AnalysisError):
            await make_engine().analyze_token(HEALTHY_TOKEN)


@pytest.mark.unit
class TestLifecycle:

    @pytest.mark.asyncio
    async def test_context_manager_closes_providers(self, make_engine):
        engine = make_engine()
        async with engine:
            await engine.analyze_token(HEALTHY_TOKEN)
        assert all(p.closed for p in engine.aggregator.providers.values())

    def test_stats(self, make_engine):
        stats = make_engine().get_stats()
        assert set(stats) == {'engine', 'providers', 'chain_breaker'}
        assert stats['engine']['requests'] == 0
        assert stats['chain_breaker']['state'] == 'CLOSED'


def faulting_database(read_error=None, write_error=None, row=None) -> DatabaseManager:
    """DatabaseManager over a pool whose connection raises the given asyncpg errors"""
    conn = AsyncMock()
    conn.fetchrow.side_effect = read_error
    conn.fetchrow.return_value = row
    conn.execute.side_effect = write_error
    manager = DatabaseManager("postgresql://localhost/test")
    manager.pool = MagicMock()
    manager.pool.acquire.return_value.__aenter__.return_value = conn
    manager.pool.acquire.return_value.__aexit__.return_value = False
    manager.is_connected = True
    return manager


def stored_row(age_seconds: float):
    score = sample_score(analyzed_at=FIXED_NOW - timedelta(seconds=age_seconds))
    return {
        'token_address': HEALTHY_TOKEN,
        'analyzed_at': score.analyzed_at,
        'payload': score.model_dump(mode='json'),
    }


@pytest.mark.unit
class TestFailingDurableStore:

    @pytest.mark.asyncio
    async def test_read_failure_is_a_miss(self, make_engine):
        database = faulting_database(read_error=asyncpg.InterfaceError("pool is closing"))
        engine = make_engine(durable=database)

        result = await engine.analyze_token(HEALTHY_TOKEN)

        assert not result.cached
        assert result.analyzed_at == FIXED_NOW
        assert engine.stats['computed'] == 1
        assert engine.stats['cache_errors'] == 1

    @pytest.mark.asyncio
    async def test_write_failure_is_logged_not_raised(self, make_engine, fast_cache):
        database = faulting_database(write_error=asyncpg.InterfaceError("pool is closing"))
        engine = make_engine(durable=database)

        result = await engine.analyze_token(HEALTHY_TOKEN)

        assert not result.cached
        assert KEY in fast_cache.data
        assert engine.stats['cache_errors'] == 1

    @pytest.mark.asyncio
    async def test_postgres_error_on_write(self, make_engine):
        database = faulting_database(write_error=asyncpg.PostgresError("disk full"))
        result = await make_engine(durable=database).analyze_token(HEALTHY_TOKEN)
        assert result.super_score > 0

    @pytest.mark.asyncio
    async def test_pipeline_and_store_both_failing(self, make_engine, monkeypatch):
        break_pipeline(monkeypatch)
        database = faulting_database(read_error=asyncpg.exceptions.InternalClientError("protocol state"))
        engine = make_engine(durable=database)

        with pytest.raises(AnalysisError):
            await engine.analyze_token(HEALTHY_TOKEN)
        assert engine.stats['failures'] == 1
        assert engine.stats['cache_errors'] == 2

    @pytest.mark.asyncio
    async def test_stale_row_served_when_writes_fail(self, make_engine, monkeypatch):
        break_pipeline(monkeypatch)
        database = faulting_database(row=stored_row(3 * 3600),
                                     write_error=asyncpg.InterfaceError("pool is closing"))

        result = await make_engine(durable=database).analyze_token(HEALTHY_TOKEN)

        assert result.stale_fallback
        assert result.analyzed_at == FIXED_NOW - timedelta(hours=3)
