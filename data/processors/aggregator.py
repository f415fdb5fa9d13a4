"""
External Data Aggregator - fans out to all third-party providers for one token
Every provider runs behind its own circuit breaker; slow or failing providers are simply absent
"""

import asyncio
import logging
import time
from typing import Dict, List, Mapping, Optional, Set

from pydantic import BaseModel, ConfigDict

from config.config_manager import ResilienceConfig
from core.resilience import CircuitBreaker, ResilientExecutor, RetryPolicy
from data.collectors.base_collector import BaseCollector
from data.collectors.birdeye import BirdeyeData
from data.collectors.dexscreener import DexScreenerData
from data.collectors.jupiter import JupiterRouteData
from data.collectors.rugcheck import RugCheckData
from data.collectors.solscan import SolscanData
from utils.constants import PROVIDER_NAMES
from utils.helpers import short_address

logger = logging.getLogger(__name__)


class ExternalDataBundle(BaseModel):
    """Provider data for one token, each field absent when that provider did not answer"""
    model_config = ConfigDict(frozen=True)

    rugcheck: Optional[RugCheckData] = None
    dexscreener: Optional[DexScreenerData] = None
    birdeye: Optional[BirdeyeData] = None
    solscan: Optional[SolscanData] = None
    jupiter: Optional[JupiterRouteData] = None
    unavailable: List[str] = []

    @property
    def available(self) -> List[str]:
        return [name for name in PROVIDER_NAMES if getattr(self, name) is not None]

    @property
    def is_empty(self) -> bool:
        return not self.available


class ExternalDataAggregator:
    """
    Concurrent provider fan-out.

    fetch_all never raises for provider problems: each failure is logged and
    the provider is reported as unavailable. An outer timeout bounds the whole
    group; providers still running at that point are left to finish on their
    own (their own per-attempt deadline still applies) and are treated as
    absent for this analysis.
    """

    def __init__(
        self,
        providers: Mapping[str, BaseCollector],
        resilience: Optional[ResilienceConfig] = None,
        outer_timeout: float = 10.0,
        executors: Optional[Mapping[str, ResilientExecutor]] = None,
    ):
        unknown = set(providers) - set(PROVIDER_NAMES)
        if unknown:
            raise ValueError(f"Unknown providers: {sorted(unknown)}")

        self.providers = dict(providers)
        self.outer_timeout = outer_timeout
        resilience = resilience or ResilienceConfig()

        self.executors: Dict[str, ResilientExecutor] = dict(executors or {})
        for name in self.providers:
            if name not in self.executors:
                self.executors[name] = ResilientExecutor(
                    CircuitBreaker.from_config(name, resilience),
                    RetryPolicy.from_config(resilience),
                )

        # Stragglers that outlived the outer timeout; referenced until they finish
        self._background: Set[asyncio.Task] = set()

    async def _guarded(self, name: str, token_address: str):
        collector = self.providers[name]
        started = time.perf_counter()
        try:
            result = await self.executors[name].execute(lambda: collector.fetch(token_address))
        except Exception as e:
            logger.warning(f"Provider {name} unavailable for {short_address(token_address)}: "
                           f"{type(e).__name__}: {e}")
            return None
        logger.debug(f"Provider {name} answered in {(time.perf_counter() - started) * 1000:.0f}ms"
                     f"{'' if result is not None else ' (no data)'}")
        return result

    async def fetch_all(self, token_address: str) -> ExternalDataBundle:
        tasks: Dict[str, asyncio.Task] = {
            name: asyncio.create_task(self._guarded(name, token_address), name=f"provider:{name}")
            for name in self.providers
        }
        if not tasks:
            return ExternalDataBundle(unavailable=list(PROVIDER_NAMES))

        done, pending = await asyncio.wait(tasks.values(), timeout=self.outer_timeout)

        for task in pending:
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        if pending:
            late = sorted(n for n, t in tasks.items() if t in pending)
            logger.warning(f"Providers {late} still pending after {self.outer_timeout}s, "
                           f"continuing without them")

        results = {}
        unavailable = [name for name in PROVIDER_NAMES if name not in tasks]
        for name, task in tasks.items():
            value = task.result() if task in done else None
            if value is None:
                unavailable.append(name)
            results[name] = value

        return ExternalDataBundle(**results, unavailable=sorted(unavailable))

    async def close(self):
        for collector in self.providers.values():
            await collector.close()

    def get_stats(self) -> Dict[str, dict]:
        return {
            name: {
                'breaker': executor.breaker.get_stats(),
                'collector': self.providers[name].get_stats(),
            }
            for name, executor in self.executors.items()
        }
