# tests/unit/test_aggregator.py
"""
Unit tests for the external data aggregator
"""
import pytest

from config.config_manager import ResilienceConfig
from data.processors.aggregator import ExternalDataAggregator, ExternalDataBundle
from tests.conftest import fast_executor
from tests.fixtures.mock_data import HEALTHY_TOKEN, FakeProvider, MockDataGenerator, healthy_providers
from utils.constants import PROVIDER_NAMES
from utils.errors import ProviderUnavailableError


def make_aggregator(providers, outer_timeout=2.0):
    return ExternalDataAggregator(
        providers,
        ResilienceConfig(max_retries=0),
        outer_timeout=outer_timeout,
        executors={name: fast_executor(name) for name in providers},
    )


@pytest.mark.unit
class TestExternalDataAggregator:

    @pytest.mark.asyncio
    async def test_all_providers_answer(self):
        aggregator = make_aggregator(healthy_providers())
        bundle = await aggregator.fetch_all(HEALTHY_TOKEN)

        assert bundle.unavailable == []
        assert bundle.available == list(PROVIDER_NAMES)
        assert bundle.dexscreener.volume_24h == 250_000.0

    @pytest.mark.asyncio
    async def test_failing_provider_is_absent(self):
        providers = healthy_providers()
        providers['birdeye'] = FakeProvider('birdeye', error=ProviderUnavailableError('birdeye', 'HTTP 500'))
        bundle = await make_aggregator(providers).fetch_all(HEALTHY_TOKEN)

        assert bundle.birdeye is None
        assert bundle.unavailable == ['birdeye']
        assert bundle.rugcheck is not None

    @pytest.mark.asyncio
    async def test_provider_with_no_data_is_unavailable(self):
        providers = healthy_providers()
        providers['solscan'] = FakeProvider('solscan', datum=None)
        bundle = await make_aggregator(providers).fetch_all(HEALTHY_TOKEN)
        assert bundle.unavailable == ['solscan']

    @pytest.mark.asyncio
    async def test_unexpected_exception_does_not_escape(self):
        providers = {'jupiter': FakeProvider('jupiter', error=KeyError('routePlan'))}
        bundle = await make_aggregator(providers).fetch_all(HEALTHY_TOKEN)

        assert bundle.jupiter is None
        assert set(bundle.unavailable) == set(PROVIDER_NAMES)

    @pytest.mark.asyncio
    async def test_outer_timeout_drops_stragglers(self):
        providers = healthy_providers()
        providers['rugcheck'] = FakeProvider('rugcheck', hang=True)
        aggregator = ExternalDataAggregator(
            providers,
            ResilienceConfig(max_retries=0, call_timeout=30),
            outer_timeout=0.1,
        )
        bundle = await aggregator.fetch_all(HEALTHY_TOKEN)

        assert bundle.rugcheck is None
        assert 'rugcheck' in bundle.unavailable
        assert bundle.dexscreener is not None
        for task in list(aggregator._background):
            task.cancel()

    @pytest.mark.asyncio
    async def test_open_breaker_skips_provider(self):
        providers = healthy_providers()
        aggregator = make_aggregator(providers)
        executor = aggregator.executors['dexscreener']
        for _ in range(executor.breaker.failure_threshold):
            await executor.breaker.record_failure()

        bundle = await aggregator.fetch_all(HEALTHY_TOKEN)
        assert 'dexscreener' in bundle.unavailable
        assert providers['dexscreener'].calls == 0

    @pytest.mark.asyncio
    async def test_no_providers(self):
        bundle = await make_aggregator({}).fetch_all(HEALTHY_TOKEN)
        assert bundle.is_empty
        assert bundle.unavailable == list(PROVIDER_NAMES)

    @pytest.mark.asyncio
    async def test_close_closes_collectors(self):
        providers = healthy_providers()
        await make_aggregator(providers).close()
        assert all(p.closed for p in providers.values())

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValueError):
            make_aggregator({'coingecko': FakeProvider('coingecko')})

    def test_stats_per_provider(self):
        stats = make_aggregator(healthy_providers()).get_stats()
        assert set(stats) == set(PROVIDER_NAMES)
        assert stats['birdeye']['breaker']['state'] == 'CLOSED'

    def test_bundle_available_order(self):
        bundle = ExternalDataBundle(jupiter=MockDataGenerator.jupiter(), rugcheck=MockDataGenerator.rugcheck())
        assert bundle.available == ['rugcheck', 'jupiter']
