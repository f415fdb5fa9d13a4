"""
Liquidity depth analysis

Estimates the price impact of market buys against the main constant-product pool
"""

import logging
from typing import Dict, Optional, Tuple

from analysis.models import BaseSecurityReport, FlagCollector, Severity, SubAnalysis
from config.config_manager import ScoringPolicy
from data.processors.aggregator import ExternalDataBundle
from utils.helpers import safe_ratio

logger = logging.getLogger(__name__)

DEFAULT_POLICY = ScoringPolicy()

TRADE_SIZES_SOL = (1, 10, 100)

HEALTH_SCORES = {
    'EXCELLENT': 100,
    'GOOD': 80,
    'FAIR': 60,
    'POOR': 30,
    'CRITICAL': 10,
}


def price_impact_percent(trade_sol: float, reserve_sol: float) -> float:
    """Price impact of a buy of trade_sol on an x*y=k pool holding reserve_sol"""
    if reserve_sol <= 0:
        return 100.0
    return 100.0 * trade_sol / (reserve_sol + trade_sol)


def depth_health(slippage_10_sol: float, policy: ScoringPolicy) -> str:
    if slippage_10_sol < policy.depth_excellent_slippage:
        return 'EXCELLENT'
    if slippage_10_sol < policy.depth_good_slippage:
        return 'GOOD'
    if slippage_10_sol < policy.depth_fair_slippage:
        return 'FAIR'
    if slippage_10_sol < policy.depth_poor_slippage:
        return 'POOR'
    return 'CRITICAL'


def _sol_price(bundle: ExternalDataBundle, policy: ScoringPolicy) -> float:
    dex = bundle.dexscreener
    if dex is not None:
        price = safe_ratio(dex.price_usd, dex.price_native)
        if price:
            return price
    return policy.sol_price_usd_fallback


def resolve_reserve(report: BaseSecurityReport, bundle: ExternalDataBundle,
                    policy: ScoringPolicy) -> Tuple[Optional[float], str]:
    """
    SOL reserve of the deepest pool and where it came from.

    On-chain pools win. When the chain check degraded the DexScreener quote
    side (or half the USD liquidity) stands in.
    """
    liquidity = report.liquidity_analysis
    if not liquidity.degraded:
        if liquidity.pools:
            return max(p.sol_reserve for p in liquidity.pools), 'chain'
        return 0.0, 'chain'

    dex = bundle.dexscreener
    if dex is not None:
        if dex.liquidity_quote:
            return dex.liquidity_quote, 'dexscreener'
        if dex.liquidity_usd:
            return dex.liquidity_usd / 2 / _sol_price(bundle, policy), 'dexscreener'
    return None, 'none'


def analyze_liquidity_depth(report: BaseSecurityReport, bundle: ExternalDataBundle,
                            policy: Optional[ScoringPolicy] = None) -> SubAnalysis:
    policy = policy or DEFAULT_POLICY
    reserve, source = resolve_reserve(report, bundle, policy)
    if reserve is None:
        return SubAnalysis.neutral('liquidity_depth', 'Liquidity Depth', 'No pool reserves available')

    flags = FlagCollector()
    if reserve <= 0:
        flags.red('Liquidity Depth', Severity.CRITICAL, 'No executable liquidity in any pool')
        return SubAnalysis.build('liquidity_depth', 0, flags, {
            'reserve_sol': 0.0,
            'source': source,
            'health': 'CRITICAL',
        })

    slippage: Dict[str, float] = {
        f'slippage_{size}_sol': round(price_impact_percent(size, reserve), 3)
        for size in TRADE_SIZES_SOL
    }
    health = depth_health(slippage['slippage_10_sol'], policy)

    if health == 'CRITICAL':
        flags.red('Liquidity Depth', Severity.CRITICAL,
                  f"A 10 SOL buy moves price {slippage['slippage_10_sol']:.1f}%")
    elif health == 'POOR':
        flags.red('Liquidity Depth', Severity.MEDIUM,
                  f"Thin liquidity: a 10 SOL buy moves price {slippage['slippage_10_sol']:.1f}%")
    elif health == 'EXCELLENT':
        flags.green('Liquidity Depth', 'Deep liquidity, under 1% impact on a 10 SOL buy')

    return SubAnalysis.build('liquidity_depth', HEALTH_SCORES[health], flags, {
        'reserve_sol': round(reserve, 4),
        'source': source,
        'health': health,
        **slippage,
    }, low_confidence=source != 'chain')
