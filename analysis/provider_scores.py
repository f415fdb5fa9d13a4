"""
Per-provider scores

Each third-party source is reduced to one 0-100 score. An absent provider
scores the neutral midpoint with a note.
"""

import logging
from typing import Optional

from analysis.models import BaseSecurityReport, FlagCollector, Severity, SubAnalysis
from config.config_manager import ScoringPolicy
from data.processors.aggregator import ExternalDataBundle

logger = logging.getLogger(__name__)

DEXSCREENER_MAX_POINTS = 60
BIRDEYE_MAX_POINTS = 50


def rugcheck_score(report: BaseSecurityReport, bundle: ExternalDataBundle,
                   policy: Optional[ScoringPolicy] = None) -> SubAnalysis:
    data = bundle.rugcheck
    if data is None:
        return SubAnalysis.neutral('rugcheck', 'RugCheck', 'RugCheck unavailable')

    flags = FlagCollector()
    if data.rugged:
        flags.red('Rugged', Severity.CRITICAL, 'RugCheck reports this token as rugged')
        return SubAnalysis.build('rugcheck', 0, flags, {
            'rugged': True,
            'risk': 100,
            'danger_risks': data.danger_count,
            'warn_risks': data.warn_count,
        })

    if data.score_normalised is not None:
        risk = min(100, max(0, data.score_normalised))
    else:
        # raw score is an unbounded sum; ten raw points per normalised point
        risk = min(100, max(0, (data.score or 0) / 10))

    score = 100 - risk - 15 * data.danger_count - 5 * data.warn_count
    for item in data.risks:
        if item.level == 'danger':
            flags.red('RugCheck', Severity.HIGH, f'RugCheck: {item.name}')
        elif item.level == 'warn':
            flags.note('RugCheck', f'RugCheck warning: {item.name}')

    if not data.risks and risk < 10:
        flags.green('RugCheck', 'RugCheck reports no risks')

    return SubAnalysis.build('rugcheck', score, flags, {
        'rugged': bool(data.rugged),
        'risk': risk,
        'danger_risks': data.danger_count,
        'warn_risks': data.warn_count,
    })


def dexscreener_score(report: BaseSecurityReport, bundle: ExternalDataBundle,
                      policy: Optional[ScoringPolicy] = None) -> SubAnalysis:
    data = bundle.dexscreener
    if data is None:
        return SubAnalysis.neutral('dexscreener', 'DexScreener', 'DexScreener unavailable')

    points = 0
    liquidity = data.liquidity_usd or 0
    if liquidity > 100_000:
        points += 20
    elif liquidity > 50_000:
        points += 15
    elif liquidity > 10_000:
        points += 10
    elif liquidity > 1_000:
        points += 5

    volume = data.volume_24h or 0
    if volume > 100_000:
        points += 15
    elif volume > 50_000:
        points += 10
    elif volume > 10_000:
        points += 5

    buys, sells = data.buys_24h or 0, data.sells_24h or 0
    balance = abs(buys / (buys + sells + 1) - 0.5)
    if buys + sells > 0:
        if balance < 0.1:
            points += 15
        elif balance < 0.2:
            points += 10

    holders = data.holders or 0
    if holders > 1000:
        points += 10
    elif holders > 500:
        points += 5

    return SubAnalysis.build('dexscreener', points * 100 / DEXSCREENER_MAX_POINTS, FlagCollector(), {
        'points': points,
        'liquidity_usd': data.liquidity_usd,
        'volume_24h': data.volume_24h,
        'pair_count': data.pair_count,
    })


def birdeye_score(report: BaseSecurityReport, bundle: ExternalDataBundle,
                  policy: Optional[ScoringPolicy] = None) -> SubAnalysis:
    data = bundle.birdeye
    if data is None:
        return SubAnalysis.neutral('birdeye', 'Birdeye', 'Birdeye unavailable')

    points = 0
    liquidity = data.liquidity or 0
    if liquidity > 100_000:
        points += 15
    elif liquidity > 50_000:
        points += 10
    elif liquidity > 10_000:
        points += 5

    volume = data.volume_24h or 0
    if volume > 100_000:
        points += 15
    elif volume > 50_000:
        points += 10

    holders = data.holders or 0
    if holders > 1000:
        points += 10
    elif holders > 500:
        points += 5

    if (data.unique_wallets_24h or 0) > 100:
        points += 10

    return SubAnalysis.build('birdeye', points * 100 / BIRDEYE_MAX_POINTS, FlagCollector(), {
        'points': points,
        'liquidity': data.liquidity,
        'unique_wallets_24h': data.unique_wallets_24h,
    })


def jupiter_score(report: BaseSecurityReport, bundle: ExternalDataBundle,
                  policy: Optional[ScoringPolicy] = None) -> SubAnalysis:
    data = bundle.jupiter
    if data is None:
        return SubAnalysis.neutral('jupiter', 'Jupiter', 'Jupiter unavailable')

    flags = FlagCollector()
    if not data.has_route:
        flags.red('Jupiter', Severity.MEDIUM, 'No Jupiter swap route')
        return SubAnalysis.build('jupiter', 15, flags, {'has_route': False})
    if data.can_sell is False:
        flags.red('Jupiter', Severity.HIGH, 'Jupiter finds a buy route but no sell route')
        return SubAnalysis.build('jupiter', 5, flags, {'has_route': True, 'can_sell': False})

    impact = data.buy_price_impact_pct
    if impact is None:
        score = 35
    elif impact < 0.5:
        score = 60
    elif impact < 1:
        score = 50
    elif impact < 3:
        score = 35
    elif impact < 10:
        score = 20
    else:
        score = 5

    if data.route_count >= 3:
        score += 40
    elif data.route_count >= 2:
        score += 25
    elif data.route_count == 1:
        score += 10

    return SubAnalysis.build('jupiter', score, flags, {
        'has_route': True,
        'can_sell': data.can_sell,
        'route_count': data.route_count,
        'buy_price_impact_pct': impact,
        'round_trip_loss_pct': data.round_trip_loss_pct,
    })


def competitor_score(report: BaseSecurityReport, bundle: ExternalDataBundle,
                     policy: Optional[ScoringPolicy] = None) -> SubAnalysis:
    """No competitor data source is wired; always the neutral midpoint"""
    return SubAnalysis.build('competitor', SubAnalysis.NEUTRAL_SCORE, FlagCollector(),
                             {'available': False})
