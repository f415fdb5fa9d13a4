"""
Developer / team analysis: how much of the supply the deployer still controls
and whether it is being sold.
"""

import logging
from typing import Optional

from analysis.holder_analyzer import net_changes_24h
from analysis.models import BaseSecurityReport, FlagCollector, Severity, SubAnalysis
from config.config_manager import ScoringPolicy
from data.processors.aggregator import ExternalDataBundle

logger = logging.getLogger(__name__)

DEFAULT_POLICY = ScoringPolicy()


def analyze_team(report: BaseSecurityReport, bundle: ExternalDataBundle,
                 policy: Optional[ScoringPolicy] = None) -> SubAnalysis:
    policy = policy or DEFAULT_POLICY
    distribution = report.holder_distribution
    creator = distribution.creator_address
    if creator is None and bundle.solscan is not None:
        creator = bundle.solscan.creator
    if creator is None:
        return SubAnalysis.neutral('team', 'Team', 'Token creator could not be identified')

    allocation = distribution.creator_percent
    liquidity = report.liquidity_analysis
    locked = liquidity.is_protected
    vesting = liquidity.lp_lock_end is not None
    selling = net_changes_24h(report).get(creator, 0.0) < 0

    flags = FlagCollector()
    if selling:
        risk, score = 'CRITICAL', 10
        flags.red('Team', Severity.CRITICAL, 'Team wallet is selling')
    elif allocation > policy.team_critical_pct:
        risk, score = 'CRITICAL', 10
        flags.red('Team', Severity.CRITICAL, f'Team wallet holds {allocation:.1f}% of supply')
    elif allocation > policy.team_high_pct and not locked:
        risk, score = 'HIGH', 35
        flags.red('Team', Severity.HIGH,
                  f'Team wallet holds {allocation:.1f}% of supply with no liquidity lock')
    elif allocation > policy.team_medium_pct and not report.authorities.is_revoked:
        risk, score = 'MEDIUM', 60
        flags.red('Team', Severity.MEDIUM,
                  f'Team wallet holds {allocation:.1f}% and keeps token authorities')
    else:
        risk, score = 'LOW', 90 + (10 if locked else 0)

    if locked and vesting and not selling:
        flags.green('Team', 'Team liquidity locked with a vesting schedule')

    return SubAnalysis.build('team', score, flags, {
        'team_wallet': creator,
        'team_allocation_percent': round(allocation, 2),
        'team_tokens_locked': locked,
        'vesting_detected': vesting,
        'team_selling': selling,
        'risk_level': risk,
    })
