"""
Market Analyzer for the Super Token Scorer
Volume authenticity, bot activity, price trajectory, provider consistency and social presence
"""

import logging
from collections import Counter, defaultdict
from typing import Dict, List, Optional, Set, Tuple

from analysis.models import BaseSecurityReport, FlagCollector, Severity, SubAnalysis, TokenTransaction
from config.config_manager import ScoringPolicy
from data.processors.aggregator import ExternalDataBundle
from utils.helpers import relative_spread, safe_ratio

logger = logging.getLogger(__name__)

DEFAULT_POLICY = ScoringPolicy()


def _first(*values):
    return next((v for v in values if v is not None), None)


# ============================================================================
# Volume authenticity
# ============================================================================

def estimate_fake_volume_percent(volume: float, liquidity: Optional[float],
                                 buy_sell_ratio: Optional[float], txns: Optional[int],
                                 unique_wallets: Optional[int]) -> float:
    """Heuristic share of 24h volume that is not organic, capped at 95"""
    fake = 0.0

    if buy_sell_ratio is not None:
        if buy_sell_ratio < 0.2 or buy_sell_ratio > 5:
            fake += 40
        elif buy_sell_ratio < 0.33 or buy_sell_ratio > 3:
            fake += 25
        elif buy_sell_ratio < 0.5 or buy_sell_ratio > 2:
            fake += 10
        else:
            fake += 5

    volume_to_liquidity = safe_ratio(volume, liquidity)
    if volume_to_liquidity is not None:
        if volume_to_liquidity > 20:
            fake += 30
        elif volume_to_liquidity > 10:
            fake += 20
        elif volume_to_liquidity > 5:
            fake += 10

    if txns:
        avg_trade = volume / txns
        if avg_trade > 5000 and txns < 100:
            fake += 15
        elif avg_trade > 2000 and txns < 50:
            fake += 10

    trades_per_wallet = safe_ratio(txns, unique_wallets)
    if trades_per_wallet is not None:
        if trades_per_wallet > 10:
            fake += 15
        elif trades_per_wallet > 5:
            fake += 8

    return min(95.0, fake)


def analyze_volume(report: BaseSecurityReport, bundle: ExternalDataBundle,
                   policy: Optional[ScoringPolicy] = None) -> SubAnalysis:
    policy = policy or DEFAULT_POLICY
    dex, birdeye = bundle.dexscreener, bundle.birdeye

    volume = _first(dex and dex.volume_24h, birdeye and birdeye.volume_24h)
    if volume is None:
        return SubAnalysis.neutral('volume', 'Volume', 'No 24h volume from DexScreener or Birdeye')

    liquidity = _first(dex and dex.liquidity_usd, birdeye and birdeye.liquidity)
    ratio = dex.buy_sell_ratio if dex else None
    if ratio is None and birdeye:
        ratio = safe_ratio(birdeye.buy_volume_24h, birdeye.sell_volume_24h)
    txns = _first(dex and dex.total_txns_24h, birdeye and birdeye.trades_24h)
    unique_wallets = birdeye.unique_wallets_24h if birdeye else None

    fake_pct = estimate_fake_volume_percent(volume, liquidity, ratio, txns, unique_wallets)
    real_volume = volume * (100 - fake_pct) / 100
    volume_to_liquidity = safe_ratio(volume, liquidity)

    change_24h = _first(dex and dex.price_change_24h, birdeye and birdeye.price_change_24h)
    change_7d = birdeye.price_change_7d if birdeye else None
    if change_24h is not None and change_24h > policy.pump_change_24h and volume > 50_000:
        trend = 'PUMP'
    elif change_7d is not None and change_7d > 20:
        trend = 'INCREASING'
    elif change_7d is not None and change_7d < -20:
        trend = 'DECREASING'
    else:
        trend = 'STABLE'

    flags = FlagCollector()
    if fake_pct > policy.fake_volume_high_pct:
        flags.red('Volume', Severity.HIGH, f'Estimated {fake_pct:.0f}% of 24h volume is fake')
    elif fake_pct >= policy.fake_volume_medium_pct:
        flags.red('Volume', Severity.MEDIUM, f'Estimated {fake_pct:.0f}% of 24h volume is fake')

    if volume_to_liquidity is not None and volume >= policy.wash_volume_min_usd:
        if volume_to_liquidity > policy.wash_volume_ratio_critical:
            flags.red('Wash Trading', Severity.CRITICAL,
                      f'24h volume is {volume_to_liquidity:.1f}x liquidity: likely wash trading')
        elif volume_to_liquidity > policy.wash_volume_ratio_high:
            flags.red('Wash Trading', Severity.HIGH,
                      f'24h volume is {volume_to_liquidity:.1f}x liquidity')

    if fake_pct < 10 and volume >= 10_000:
        flags.green('Volume', 'Volume looks organic')

    return SubAnalysis.build('volume', 100 - fake_pct, flags, {
        'reported_volume_24h': volume,
        'real_volume_24h': round(real_volume, 2),
        'fake_volume_percent': round(fake_pct, 2),
        'buy_sell_ratio': round(ratio, 3) if ratio is not None else None,
        'volume_to_liquidity': round(volume_to_liquidity, 3) if volume_to_liquidity is not None else None,
        'volume_trend': trend,
    })


# ============================================================================
# Bot detection
# ============================================================================

def classify_bot_wallets(transactions: List[TokenTransaction],
                         policy: ScoringPolicy) -> Dict[str, Set[str]]:
    """Wallet sets per bot category from slot timing and wallet clustering"""
    by_slot: Dict[int, List[TokenTransaction]] = defaultdict(list)
    for tx in transactions:
        by_slot[tx.slot].append(tx)

    mev: Set[str] = set()
    bundle: Set[str] = set()
    for slot_txs in by_slot.values():
        wallets = {t.wallet for t in slot_txs}
        sides = {t.side for t in slot_txs}
        # sandwich shape: several wallets, both directions, one slot
        if len(wallets) >= policy.mev_min_wallets and sides == {'buy', 'sell'}:
            mev |= wallets
        buys = [t for t in slot_txs if t.side == 'buy']
        if policy.bundle_min_txs <= len(buys) <= policy.bundle_max_txs:
            bundle |= {t.wallet for t in buys}

    per_wallet: Dict[str, Counter] = defaultdict(Counter)
    for tx in transactions:
        per_wallet[tx.wallet][tx.side] += 1
    wash = {
        w for w, c in per_wallet.items()
        if c['buy'] and c['sell'] and sum(c.values()) >= policy.wash_trader_min_txs
    }

    # follower buys shortly after the same leader again and again
    buys = sorted((t for t in transactions if t.side == 'buy'), key=lambda t: t.slot)
    follow_counts: Counter = Counter()
    for i, leader in enumerate(buys):
        for follower in buys[i + 1:]:
            gap = follower.slot - leader.slot
            if gap > policy.copy_trade_slot_gap:
                break
            if gap > 0 and follower.wallet != leader.wallet:
                follow_counts[(leader.wallet, follower.wallet)] += 1
    copy = {follower for (_, follower), n in follow_counts.items() if n >= 3}

    return {'mev': mev, 'bundle': bundle, 'wash_trading': wash, 'copy_trading': copy}


def detect_bots(report: BaseSecurityReport, bundle: ExternalDataBundle,
                 policy: Optional[ScoringPolicy] = None) -> SubAnalysis:
    policy = policy or DEFAULT_POLICY
    transactions = report.trading_patterns.transactions
    if not transactions:
        return SubAnalysis.neutral('bot_detection', 'Bots', 'No transaction sample to classify')

    categories = classify_bot_wallets(transactions, policy)
    traders = {t.wallet for t in transactions}
    bot_wallets: Set[str] = set().union(*categories.values())
    bot_pct = len(bot_wallets) / len(traders) * 100 if traders else 0.0
    bot_txs = sum(1 for t in transactions if t.wallet in bot_wallets)

    if bot_pct > 60:
        score = 10
    elif bot_pct > 40:
        score = 30
    elif bot_pct > 20:
        score = 55
    elif bot_pct > 10:
        score = 75
    else:
        score = 95

    flags = FlagCollector()
    if bot_pct >= policy.bot_high_pct:
        flags.red('Bots', Severity.HIGH, f'{bot_pct:.0f}% of active traders behave like bots')

    patterns = [name for name, wallets in categories.items() if wallets]

    return SubAnalysis.build('bot_detection', score, flags, {
        'total_bots': len(bot_wallets),
        'bot_percent': round(bot_pct, 2),
        'mev_bots': len(categories['mev']),
        'bundle_bots': len(categories['bundle']),
        'sniper_bots': report.trading_patterns.snipers,
        'wash_trading_bots': len(categories['wash_trading']),
        'copy_trading_bots': len(categories['copy_trading']),
        'bot_transactions': bot_txs,
        'suspicious_patterns': patterns,
    })


# ============================================================================
# Price pattern
# ============================================================================

PATTERN_SCORES = {
    'ORGANIC_GROWTH': 90,
    'ACCUMULATION': 80,
    'SIDEWAYS': 65,
    'DISTRIBUTION': 35,
    'DEATH_SPIRAL': 10,
    'PUMP_AND_DUMP': 5,
}


def classify_price_pattern(change_24h: Optional[float], change_7d: Optional[float],
                           policy: ScoringPolicy) -> str:
    if change_24h is not None and change_7d is not None:
        if change_24h > policy.pump_change_24h and change_7d < 0:
            return 'PUMP_AND_DUMP'
    if change_7d is not None:
        if change_7d < policy.death_spiral_change_7d:
            return 'DEATH_SPIRAL'
        if change_7d < policy.distribution_change_7d:
            return 'DISTRIBUTION'
        if policy.organic_min_change_7d <= change_7d <= policy.organic_max_change_7d:
            return 'ORGANIC_GROWTH'
        if (change_24h is not None and abs(change_24h) < policy.accumulation_max_change_24h
                and abs(change_7d) < policy.accumulation_max_change_7d):
            return 'ACCUMULATION'
        return 'SIDEWAYS'

    if change_24h < policy.distribution_change_7d:
        return 'DISTRIBUTION'
    if abs(change_24h) < policy.accumulation_max_change_24h:
        return 'ACCUMULATION'
    return 'SIDEWAYS'


def analyze_price_pattern(report: BaseSecurityReport, bundle: ExternalDataBundle,
                          policy: Optional[ScoringPolicy] = None) -> SubAnalysis:
    policy = policy or DEFAULT_POLICY
    dex, birdeye = bundle.dexscreener, bundle.birdeye
    change_24h = _first(dex and dex.price_change_24h, birdeye and birdeye.price_change_24h)
    change_7d = birdeye.price_change_7d if birdeye else None

    if change_24h is None and change_7d is None:
        return SubAnalysis.neutral('price_pattern', 'Price Action', 'No price history from providers')

    pattern = classify_price_pattern(change_24h, change_7d, policy)

    flags = FlagCollector()
    if change_7d is None:
        flags.note('Price Action', '7d price change unavailable, pattern based on 24h only (low confidence)')
    if pattern == 'PUMP_AND_DUMP':
        flags.red('Price Action', Severity.CRITICAL,
                  f'Pump and dump: +{change_24h:.0f}% in 24h while down {change_7d:.0f}% over 7d')
    elif pattern == 'DEATH_SPIRAL':
        flags.red('Price Action', Severity.HIGH, f'Price collapsed {change_7d:.0f}% over 7 days')
    elif pattern == 'DISTRIBUTION':
        flags.red('Price Action', Severity.MEDIUM, 'Price trajectory suggests distribution')
    elif pattern == 'ORGANIC_GROWTH':
        flags.green('Price Action', 'Steady organic price growth')

    return SubAnalysis.build('price_pattern', PATTERN_SCORES[pattern], flags, {
        'pattern': pattern,
        'price_change_24h': change_24h,
        'price_change_7d': change_7d,
    }, low_confidence=change_7d is None)


# ============================================================================
# Cross-source consistency
# ============================================================================

def _consistency_penalty(spread: Optional[float], tolerance: float) -> float:
    if spread is None or spread <= tolerance:
        return 0.0
    return 25 + min(25.0, (spread - tolerance) * 50)


def analyze_cross_source_consistency(report: BaseSecurityReport, bundle: ExternalDataBundle,
                                     policy: Optional[ScoringPolicy] = None) -> SubAnalysis:
    policy = policy or DEFAULT_POLICY
    dex, birdeye, solscan, rugcheck = bundle.dexscreener, bundle.birdeye, bundle.solscan, bundle.rugcheck

    holder_counts = [
        dex.holders if dex else None,
        birdeye.holders if birdeye else None,
        solscan.holders if solscan else None,
        rugcheck.total_holders if rugcheck else None,
    ]
    market_caps = [
        _first(dex.market_cap, dex.fdv) if dex else None,
        birdeye.market_cap if birdeye else None,
        solscan.market_cap if solscan else None,
    ]
    holder_spread = relative_spread(holder_counts)
    mcap_spread = relative_spread(market_caps)

    if holder_spread is None and mcap_spread is None:
        return SubAnalysis.neutral('cross_source', 'Data Consistency',
                                   'Fewer than two providers reported holders or market cap')

    flags = FlagCollector()
    tolerance = policy.consistency_tolerance
    for label, spread in (('holder count', holder_spread), ('market cap', mcap_spread)):
        if spread is not None and spread > tolerance:
            flags.red('Data Consistency', Severity.MEDIUM,
                      f'Providers disagree on {label} by {spread * 100:.0f}%')

    score = 100 - _consistency_penalty(holder_spread, tolerance) - _consistency_penalty(mcap_spread, tolerance)

    return SubAnalysis.build('cross_source', score, flags, {
        'holder_spread': round(holder_spread, 4) if holder_spread is not None else None,
        'market_cap_spread': round(mcap_spread, 4) if mcap_spread is not None else None,
        'tolerance': tolerance,
        'sources': bundle.available,
    })


# ============================================================================
# Social presence
# ============================================================================

def analyze_social(report: BaseSecurityReport, bundle: ExternalDataBundle,
                   policy: Optional[ScoringPolicy] = None) -> SubAnalysis:
    metadata = report.metadata
    solscan = bundle.solscan
    has_name = metadata.name != "UNKNOWN" or bool(solscan and solscan.name)
    if not has_name and solscan is None:
        return SubAnalysis.neutral('social', 'Social', 'No token metadata available')

    website = metadata.has_website or bool(solscan and solscan.website)
    socials = metadata.has_socials or bool(solscan and solscan.twitter)

    score = 20
    score += 25 if website else 0
    score += 25 if socials else 0
    score += 20 if metadata.verified else 0
    score += 10 if metadata.description else 0

    flags = FlagCollector()
    if not website and not socials:
        flags.red('Social', Severity.LOW, 'No website or social links')
    elif website and socials:
        flags.green('Social', 'Website and social links present')

    return SubAnalysis.build('social', score, flags, {
        'has_website': website,
        'has_socials': socials,
        'verified': metadata.verified,
        'has_description': bool(metadata.description),
    })
