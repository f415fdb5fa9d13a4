"""
Holder-side derived analyzers: new-wallet exposure, insiders, smart money
and historical holder behaviour.

All functions are pure: they only read the base security report and the
provider bundle.
"""

import logging
from collections import defaultdict
from datetime import timedelta
from typing import Dict, List, Optional

from analysis.models import BaseSecurityReport, FlagCollector, HolderAccount, Severity, SubAnalysis
from config.config_manager import ScoringPolicy
from data.processors.aggregator import ExternalDataBundle

logger = logging.getLogger(__name__)

DEFAULT_POLICY = ScoringPolicy()


def _wallet_holders(report: BaseSecurityReport) -> List[HolderAccount]:
    return [h for h in report.holder_distribution.holders if not h.is_pool]


def net_changes_24h(report: BaseSecurityReport) -> Dict[str, float]:
    """
    Net token delta per wallet over the last 24h.

    Uses the holder's own net_change_24h when the chain client supplied it,
    otherwise sums the sampled transactions.
    """
    cutoff = (report.analyzed_at - timedelta(hours=24)).timestamp()
    deltas: Dict[str, float] = defaultdict(float)
    for tx in report.trading_patterns.transactions:
        if tx.block_time is not None and tx.block_time < cutoff:
            continue
        amount = tx.token_amount or 0.0
        deltas[tx.wallet] += amount if tx.side == 'buy' else -amount

    for holder in report.holder_distribution.holders:
        if holder.net_change_24h is not None:
            deltas[holder.owner] = holder.net_change_24h
    return dict(deltas)


# ============================================================================
# New wallets
# ============================================================================

def analyze_new_wallets(report: BaseSecurityReport, bundle: ExternalDataBundle,
                        policy: Optional[ScoringPolicy] = None) -> SubAnalysis:
    policy = policy or DEFAULT_POLICY
    sample = [h for h in _wallet_holders(report) if h.wallet_age_days is not None]
    if not sample:
        return SubAnalysis.neutral('new_wallets', 'New Wallets', 'No wallet age data for holders')

    new_wallets = [h for h in sample if h.wallet_age_days < policy.new_wallet_age_days]
    new_pct = len(new_wallets) / len(sample) * 100
    suspicious = [h for h in new_wallets if h.percent >= policy.new_wallet_suspicious_balance_pct]
    new_wallet_supply = sum(h.percent for h in new_wallets)

    flags = FlagCollector()
    if new_pct >= policy.new_wallet_critical_pct or len(suspicious) >= policy.new_wallet_suspicious_critical:
        risk, score = 'CRITICAL', 10
        flags.red('New Wallets', Severity.CRITICAL,
                  f'{new_pct:.0f}% of top holders are wallets younger than '
                  f'{policy.new_wallet_age_days:.0f} days ({len(suspicious)} with large balances)')
    elif new_pct >= policy.new_wallet_high_pct:
        risk, score = 'HIGH', 30
        flags.red('New Wallets', Severity.HIGH, f'{new_pct:.0f}% of top holders are fresh wallets')
    elif new_pct >= policy.new_wallet_medium_pct:
        risk, score = 'MEDIUM', 55
        flags.red('New Wallets', Severity.MEDIUM, f'{new_pct:.0f}% of top holders are fresh wallets')
    else:
        risk, score = 'LOW', 100 - new_pct

    return SubAnalysis.build('new_wallets', score, flags, {
        'sampled_holders': len(sample),
        'new_wallets': len(new_wallets),
        'new_wallet_percent': round(new_pct, 2),
        'new_wallet_supply_percent': round(new_wallet_supply, 2),
        'suspicious_wallets': len(suspicious),
        'risk_level': risk,
    })


# ============================================================================
# Insiders
# ============================================================================

def analyze_insiders(report: BaseSecurityReport, bundle: ExternalDataBundle,
                     policy: Optional[ScoringPolicy] = None) -> SubAnalysis:
    policy = policy or DEFAULT_POLICY
    launch_slot = report.holder_distribution.launch_slot
    holders = [h for h in _wallet_holders(report) if h.first_acquired_slot is not None]
    if launch_slot is None or not holders:
        return SubAnalysis.neutral('insiders', 'Insiders', 'Launch slot or holder acquisition history unknown')

    insiders = [h for h in holders if h.first_acquired_slot - launch_slot <= policy.insider_block_window]
    insider_pct = sum(h.percent for h in insiders)

    changes = net_changes_24h(report)
    selling = [h for h in insiders if changes.get(h.owner, 0.0) < 0]
    net_selling = bool(selling)

    flags = FlagCollector()
    if insider_pct >= policy.insider_critical_pct:
        risk, score = 'CRITICAL', 10
        flags.red('Insiders', Severity.CRITICAL,
                  f'Early insiders hold {insider_pct:.1f}% of supply')
    elif insider_pct >= policy.insider_high_pct:
        risk, score = 'HIGH', 35
        flags.red('Insiders', Severity.HIGH, f'Early insiders hold {insider_pct:.1f}% of supply')
    elif insider_pct >= policy.insider_medium_pct:
        risk, score = 'MEDIUM', 60
        flags.red('Insiders', Severity.MEDIUM, f'Early insiders hold {insider_pct:.1f}% of supply')
    else:
        risk, score = 'LOW', 100 - insider_pct * 2

    if net_selling:
        score -= 20
        flags.red('Insiders', Severity.HIGH,
                  f'{len(selling)} insider wallets are net sellers over the last 24h')

    return SubAnalysis.build('insiders', score, flags, {
        'insider_wallets': len(insiders),
        'insider_percent': round(insider_pct, 2),
        'insiders_net_selling': net_selling,
        'selling_wallets': len(selling),
        'block_window': policy.insider_block_window,
        'risk_level': risk,
    })


# ============================================================================
# Smart money
# ============================================================================

def analyze_smart_money(report: BaseSecurityReport, bundle: ExternalDataBundle,
                        policy: Optional[ScoringPolicy] = None) -> SubAnalysis:
    policy = policy or DEFAULT_POLICY
    profiled = [h for h in _wallet_holders(report)
                if h.wallet_age_days is not None and h.tx_count is not None]
    if not profiled:
        return SubAnalysis.neutral('smart_money', 'Smart Money', 'No wallet history for holders')

    smart = [
        h for h in profiled
        if h.wallet_age_days > policy.smart_money_min_age_days
        and h.tx_count > policy.smart_money_min_txs
        and h.percent >= policy.smart_money_min_balance_pct
    ]
    changes = net_changes_24h(report)
    buying = [h for h in smart if changes.get(h.owner, 0.0) > 0]
    selling = [h for h in smart if changes.get(h.owner, 0.0) < 0]

    flags = FlagCollector()
    if not smart:
        signal, score = 'NEUTRAL', 50
    elif len(buying) >= 3 and not selling:
        signal, score = 'STRONG_BUY', 95
        flags.green('Smart Money', f'{len(buying)} seasoned wallets accumulating')
    elif len(buying) > len(selling):
        signal, score = 'BUY', 75
    elif len(selling) >= 3 and not buying:
        signal, score = 'STRONG_SELL', 10
        flags.red('Smart Money', Severity.HIGH, f'{len(selling)} seasoned wallets are exiting')
    elif len(selling) > len(buying):
        signal, score = 'SELL', 30
    else:
        signal, score = 'NEUTRAL', 55

    return SubAnalysis.build('smart_money', score, flags, {
        'smart_wallets': len(smart),
        'buying': len(buying),
        'selling': len(selling),
        'smart_money_percent': round(sum(h.percent for h in smart), 2),
        'signal': signal,
    })


# ============================================================================
# Historical holders
# ============================================================================

def analyze_historical_holders(report: BaseSecurityReport, bundle: ExternalDataBundle,
                               policy: Optional[ScoringPolicy] = None) -> SubAnalysis:
    """Diamond hands (wallets older than 30 days) versus paper hands (under a day)"""
    sample = [h for h in _wallet_holders(report) if h.wallet_age_days is not None]
    if not sample:
        return SubAnalysis.neutral('historical_holders', 'Holder History', 'No wallet age data for holders')

    diamond = sum(1 for h in sample if h.wallet_age_days > 30)
    paper = sum(1 for h in sample if h.wallet_age_days < 1)
    diamond_pct = diamond / len(sample) * 100
    paper_pct = paper / len(sample) * 100

    score = 50 + diamond_pct / 2 - paper_pct / 2

    flags = FlagCollector()
    if diamond_pct >= 60:
        flags.green('Holder History', f'{diamond_pct:.0f}% of top holders are long-standing wallets')

    return SubAnalysis.build('historical_holders', score, flags, {
        'sampled_holders': len(sample),
        'diamond_hands_percent': round(diamond_pct, 2),
        'paper_hands_percent': round(paper_pct, 2),
    })
