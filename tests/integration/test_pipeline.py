# tests/integration/test_pipeline.py
"""
End-to-end analysis runs over fake chain and provider collaborators
"""
from datetime import timedelta

import pytest

import core.engine as engine_module
from analysis.models import GlobalRiskLevel, Severity
from data.storage.models import CacheEntry
from tests.fixtures.mock_data import (FIXED_NOW, HEALTHY_TOKEN, RISKY_TOKEN, FakeChainClient, MockDataGenerator,
                                      failing_providers, healthy_providers, sample_score)
from utils.constants import PROVIDER_NAMES
from utils.errors import AnalysisError


@pytest.mark.integration
class TestFullPipeline:

    @pytest.mark.asyncio
    async def test_healthy_token(self, make_engine):
        result = await make_engine().analyze_token(HEALTHY_TOKEN)

        assert result.super_score == 97
        assert result.global_risk_level == GlobalRiskLevel.ULTRA_SAFE
        assert result.all_red_flags == []
        assert result.green_flags
        assert result.unavailable_providers == []
        assert result.score_breakdown.base_security_score == 100
        assert result.summary()["risk_level"] == GlobalRiskLevel.ULTRA_SAFE.value

    @pytest.mark.asyncio
    async def test_scam_token(self, make_engine):
        chain = FakeChainClient(
            healthy=False,
            mint_authority=True,
            freeze_authority=True,
            transactions=MockDataGenerator.honeypot_transactions(),
        )
        result = await make_engine(chain=chain).analyze_token(RISKY_TOKEN)

        assert result.global_risk_level == GlobalRiskLevel.SCAM
        assert result.has_critical_flag()
        assert any(f.category == 'Honeypot' for f in result.all_red_flags)
        assert not result.cached

    @pytest.mark.asyncio
    async def test_rugged_provider_report_forces_scam(self, make_engine):
        providers = healthy_providers()
        providers['rugcheck'].datum = MockDataGenerator.rugcheck(rugged=True)
        result = await make_engine(providers=providers).analyze_token(HEALTHY_TOKEN)
        assert result.global_risk_level == GlobalRiskLevel.SCAM

    @pytest.mark.asyncio
    async def test_all_providers_down(self, make_engine):
        result = await make_engine(providers=failing_providers()).analyze_token(HEALTHY_TOKEN)

        assert sorted(result.unavailable_providers) == sorted(PROVIDER_NAMES)
        assert 0 <= result.super_score <= 100
        assert result.score_breakdown.birdeye_score == 50
        assert not any(f.severity == Severity.CRITICAL for f in result.all_red_flags)

    @pytest.mark.asyncio
    async def test_chain_down_is_low_confidence_not_failure(self, make_engine):
        result = await make_engine(chain=FakeChainClient(fail=('all',))).analyze_token(HEALTHY_TOKEN)
        assert result.base_security_report.low_confidence
        assert result.score_breakdown.base_security_score == 50
        assert not result.stale_fallback


@pytest.mark.integration
class TestCachingAcrossCalls:

    @pytest.mark.asyncio
    async def test_second_call_is_cached(self, make_engine):
        chain = FakeChainClient()
        engine = make_engine(chain=chain)

        first = await engine.analyze_token(HEALTHY_TOKEN)
        second = await engine.analyze_token(HEALTHY_TOKEN)

        assert not first.cached
        assert second.cached
        assert second.super_score == first.super_score
        assert chain.calls['authorities'] == 1
        assert engine.stats['fast_cache_hits'] == 1

    @pytest.mark.asyncio
    async def test_force_refresh_recomputes(self, make_engine):
        chain = FakeChainClient()
        engine = make_engine(chain=chain)

        await engine.analyze_token(HEALTHY_TOKEN)
        refreshed = await engine.analyze_token(HEALTHY_TOKEN, force_refresh=True)

        assert not refreshed.cached
        assert chain.calls['authorities'] == 2
        assert engine.stats['computed'] == 2

    @pytest.mark.asyncio
    async def test_restart_reads_durable_store(self, make_engine, durable_store):
        first = await make_engine(fast=None).analyze_token(HEALTHY_TOKEN)

        chain = FakeChainClient()
        restarted = make_engine(chain=chain, fast=None)
        second = await restarted.analyze_token(HEALTHY_TOKEN)

        assert second.cached
        assert second.analyzed_at == first.analyzed_at
        assert chain.calls == {}

    @pytest.mark.asyncio
    async def test_old_durable_entry_is_replaced(self, make_engine, durable_store):
        old = sample_score(analyzed_at=FIXED_NOW - timedelta(hours=3))
        durable_store.entries[HEALTHY_TOKEN] = CacheEntry.from_score(old)

        result = await make_engine().analyze_token(HEALTHY_TOKEN)

        assert not result.cached
        assert durable_store.entries[HEALTHY_TOKEN].analyzed_at == FIXED_NOW

    @pytest.mark.asyncio
    async def test_stale_fallback_then_recovery(self, make_engine, durable_store, monkeypatch):
        old = sample_score(analyzed_at=FIXED_NOW - timedelta(hours=3))
        durable_store.entries[HEALTHY_TOKEN] = CacheEntry.from_score(old)
        engine = make_engine()

        real_score_token = engine_module.score_token

        def broken(*args, **kwargs):
            raise RuntimeError("scoring exploded")

        monkeypatch.setattr(engine_module, 'score_token', broken)
        degraded = await engine.analyze_token(HEALTHY_TOKEN)
        assert degraded.stale_fallback
        assert degraded.analyzed_at == old.analyzed_at

        monkeypatch.setattr(engine_module, 'score_token', real_score_token)
        recovered = await engine.analyze_token(HEALTHY_TOKEN)
        assert not recovered.stale_fallback
        assert recovered.analyzed_at == FIXED_NOW

    @pytest.mark.asyncio
    async def test_failure_without_history(self, make_engine, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("scoring exploded")

        monkeypatch.setattr(engine_module, 'score_token', broken)
        engine = make_engine()
        with pytest.raises(AnalysisError):
            await engine.analyze_token(HEALTHY_TOKEN)
        assert engine.stats['failures'] == 1
