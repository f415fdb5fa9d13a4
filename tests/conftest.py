# tests/conftest.py
"""
Global pytest configuration and fixtures
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from analysis.models import RiskLevel
from config.config_manager import EngineConfig, ResilienceConfig, ScoringPolicy
from core.engine import TokenRiskEngine
from core.resilience import CircuitBreaker, ResilientExecutor, RetryPolicy
from tests.fixtures.mock_data import (FIXED_NOW, HEALTHY_TOKEN, FakeChainClient, InMemoryDurableStore,
                                      InMemoryFastCache, MockDataGenerator, base_report, healthy_providers)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "integration: full pipeline tests with fake collaborators")


async def no_sleep(_seconds):
    return None


def fast_executor(name: str, max_retries: int = 0, failure_threshold: int = 100) -> ResilientExecutor:
    """Executor without backoff delays, for tests"""
    return ResilientExecutor(
        CircuitBreaker(name, failure_threshold=failure_threshold),
        RetryPolicy(max_retries=max_retries, backoff_base=0, jitter=0, call_timeout=2.0),
        sleep=no_sleep,
    )


# Test configuration
TEST_CONFIG = EngineConfig(
    resilience=ResilienceConfig(max_retries=0, backoff_base=0, jitter=0, call_timeout=2.0),
)


@pytest.fixture
def policy():
    return ScoringPolicy()


@pytest.fixture
def healthy_report():
    return base_report(HEALTHY_TOKEN)


@pytest.fixture
def critical_report():
    return base_report(HEALTHY_TOKEN, score=20, risk_level=RiskLevel.CRITICAL)


@pytest.fixture
def healthy_bundle():
    return MockDataGenerator.healthy_bundle()


@pytest.fixture
def empty_bundle():
    return MockDataGenerator.empty_bundle()


@pytest.fixture
def fast_cache():
    return InMemoryFastCache()


@pytest.fixture
def durable_store():
    return InMemoryDurableStore()


@pytest.fixture
def make_engine(fast_cache, durable_store):
    """Factory for engines over fake collaborators and a fixed clock"""

    def _make(chain=None, providers=None, clock=None, fast=fast_cache, durable=durable_store):
        providers = healthy_providers() if providers is None else providers
        return TokenRiskEngine(
            chain or FakeChainClient(),
            providers,
            fast_cache=fast,
            durable_store=durable,
            config=TEST_CONFIG,
            clock=clock or (lambda: FIXED_NOW),
            chain_executor=fast_executor('chain'),
            provider_executors={name: fast_executor(name) for name in providers},
        )

    return _make
