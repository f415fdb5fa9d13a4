"""
Token Scorer - combines the base security report and every derived analysis
into one weighted super score, a global risk tier and a recommendation.

score_token is deterministic for fixed inputs: it never touches the network,
the clock (unless ``now`` is omitted) or any cache.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from analysis.dev_analyzer import analyze_team
from analysis.holder_analyzer import (analyze_historical_holders, analyze_insiders,
                                      analyze_new_wallets, analyze_smart_money)
from analysis.liquidity_monitor import analyze_liquidity_depth
from analysis.market_analyzer import (analyze_cross_source_consistency, analyze_price_pattern,
                                      analyze_social, analyze_volume, detect_bots)
from analysis.models import (BaseSecurityReport, FlagCollector, GlobalRiskLevel, RedFlag,
                             RiskLevel, ScoreBreakdown, Severity, SubAnalysis, SuperTokenScore)
from analysis.provider_scores import (birdeye_score, competitor_score, dexscreener_score,
                                      jupiter_score, rugcheck_score)
from config.config_manager import ScoringPolicy
from data.processors.aggregator import ExternalDataBundle
from utils.constants import FORCE_SCAM_CATEGORIES, RECOMMENDATIONS
from utils.helpers import clamp_score, utc_now

logger = logging.getLogger(__name__)

DEFAULT_POLICY = ScoringPolicy()

SubAnalyzer = Callable[[BaseSecurityReport, ExternalDataBundle, ScoringPolicy], SubAnalysis]

# Weight per breakdown field; sums to 1.0
SCORE_WEIGHTS: Dict[str, float] = {
    'base_security_score': 0.28,
    'rug_check_score': 0.10,
    'liquidity_depth_score': 0.09,
    'team_score': 0.07,
    'new_wallet_score': 0.06,
    'insider_score': 0.06,
    'bot_detection_score': 0.06,
    'volume_score': 0.05,
    'price_pattern_score': 0.05,
    'dex_screener_score': 0.04,
    'birdeye_score': 0.03,
    'jupiter_score': 0.03,
    'smart_money_score': 0.02,
    'social_score': 0.02,
    'cross_chain_score': 0.02,
    'historical_holders_score': 0.01,
    'competitor_score': 0.01,
}

# Breakdown field fed by each derived analyzer, in execution order
SUB_ANALYZERS: Tuple[Tuple[str, str, SubAnalyzer], ...] = (
    ('new_wallet_score', 'new_wallets', analyze_new_wallets),
    ('insider_score', 'insiders', analyze_insiders),
    ('volume_score', 'volume', analyze_volume),
    ('social_score', 'social', analyze_social),
    ('bot_detection_score', 'bot_detection', detect_bots),
    ('smart_money_score', 'smart_money', analyze_smart_money),
    ('team_score', 'team', analyze_team),
    ('price_pattern_score', 'price_pattern', analyze_price_pattern),
    ('historical_holders_score', 'historical_holders', analyze_historical_holders),
    ('liquidity_depth_score', 'liquidity_depth', analyze_liquidity_depth),
    ('cross_chain_score', 'cross_source', analyze_cross_source_consistency),
    ('competitor_score', 'competitor', competitor_score),
    ('rug_check_score', 'rugcheck', rugcheck_score),
    ('dex_screener_score', 'dexscreener', dexscreener_score),
    ('birdeye_score', 'birdeye', birdeye_score),
    ('jupiter_score', 'jupiter', jupiter_score),
)

TIER_THRESHOLDS: Tuple[Tuple[int, GlobalRiskLevel], ...] = (
    (85, GlobalRiskLevel.ULTRA_SAFE),
    (70, GlobalRiskLevel.SAFE),
    (50, GlobalRiskLevel.MODERATE),
    (35, GlobalRiskLevel.RISKY),
    (15, GlobalRiskLevel.VERY_RISKY),
)

LOW_LIQUIDITY_USD = 10_000


# ============================================================================
# Pure scoring helpers
# ============================================================================

def aggregate(breakdown: ScoreBreakdown) -> int:
    """Weighted sum of the breakdown, rounded and clamped to [0, 100]"""
    total = sum(weight * getattr(breakdown, field) for field, weight in SCORE_WEIGHTS.items())
    return clamp_score(total)


def apply_penalties(composite: int, analyses: Dict[str, SubAnalysis],
                    policy: ScoringPolicy) -> Tuple[int, List[str]]:
    """Multiplicative penalties for compound risks, then the no-liquidity cap"""
    score = float(composite)
    applied: List[str] = []

    rugcheck = analyses.get('rugcheck')
    if rugcheck and not rugcheck.low_confidence and rugcheck.score < policy.rugcheck_bad_score:
        score *= policy.rugcheck_bad_multiplier
        applied.append('rugcheck_bad')

    new_wallets = analyses.get('new_wallets')
    if new_wallets and not new_wallets.low_confidence and new_wallets.score <= policy.sybil_new_wallet_score:
        score *= policy.sybil_multiplier
        applied.append('sybil')

    insiders = analyses.get('insiders')
    if insiders and insiders.analysis.get('insiders_net_selling'):
        score *= policy.insider_selling_multiplier
        applied.append('insider_selling')

    bots = analyses.get('bot_detection')
    if bots and not bots.low_confidence and bots.score <= policy.bot_activity_score:
        score *= policy.bot_activity_multiplier
        applied.append('bot_activity')

    depth = analyses.get('liquidity_depth')
    if depth and depth.score == 0:
        score = min(score, policy.no_liquidity_score_cap)
        applied.append('no_liquidity')

    return clamp_score(score), applied


def classify_risk(score: int, red_flags: Iterable[RedFlag], force_scam: bool = False) -> GlobalRiskLevel:
    """
    Bucket the super score into a tier.

    Any CRITICAL red flag costs one tier. A Honeypot or Rugged flag, or an
    explicit force_scam, short-circuits to SCAM.
    """
    red_flags = list(red_flags)
    if force_scam or any(f.category in FORCE_SCAM_CATEGORIES for f in red_flags):
        return GlobalRiskLevel.SCAM

    tier = GlobalRiskLevel.SCAM
    for threshold, level in TIER_THRESHOLDS:
        if score >= threshold:
            tier = level
            break

    if any(f.severity == Severity.CRITICAL for f in red_flags):
        tier = tier.downgrade()
    return tier


def recommendation_for(tier: GlobalRiskLevel) -> str:
    return RECOMMENDATIONS[tier.value]


def consolidate_flags(report: BaseSecurityReport, analyses: Dict[str, SubAnalysis],
                      policy: ScoringPolicy) -> FlagCollector:
    """Base report flags, then every sub-analysis, then cross-analysis findings"""
    flags = FlagCollector()
    flags.extend(report.red_flags, report.green_flags, report.notes)

    if report.risk_level == RiskLevel.CRITICAL:
        flags.red('Security', Severity.CRITICAL,
                  f'Base security rated CRITICAL ({report.security_score}/100)')
    elif report.risk_level == RiskLevel.HIGH:
        flags.red('Security', Severity.HIGH,
                  f'Base security rated HIGH risk ({report.security_score}/100)')

    for sub in analyses.values():
        flags.extend(sub.red_flags, sub.green_flags, sub.notes)

    volume = analyses['volume'].analysis
    price = analyses['price_pattern'].analysis
    if volume.get('volume_trend') == 'PUMP' and price.get('pattern') == 'DEATH_SPIRAL':
        flags.red('Price Action', Severity.CRITICAL,
                  'Volume pump into a collapsing price: honeypot-like pattern')

    liquidity_usd = report.liquidity_analysis.liquidity_usd
    fake_pct = volume.get('fake_volume_percent')
    if (liquidity_usd is not None and liquidity_usd < LOW_LIQUIDITY_USD
            and fake_pct is not None and fake_pct >= policy.fake_volume_medium_pct):
        flags.red('Liquidity', Severity.HIGH, 'Low liquidity with suspicious volume')

    new_wallet_pct = analyses['new_wallets'].analysis.get('new_wallet_percent', 0)
    insider_pct = analyses['insiders'].analysis.get('insider_percent', 0)
    if new_wallet_pct > 60 and insider_pct >= policy.insider_medium_pct:
        flags.red('Sybil', Severity.HIGH,
                  f'Sybil pattern: {new_wallet_pct:.0f}% fresh wallets with {insider_pct:.0f}% insider supply')

    team = analyses['team'].analysis
    if team.get('team_allocation_percent', 0) > 20 and not team.get('team_tokens_locked', True):
        flags.red('Team', Severity.MEDIUM, 'Large unlocked team allocation')

    return flags


def _run(name: str, analyzer: SubAnalyzer, report: BaseSecurityReport,
         bundle: ExternalDataBundle, policy: ScoringPolicy) -> SubAnalysis:
    try:
        return analyzer(report, bundle, policy)
    except Exception as e:
        logger.error(f"Sub-analysis {analyzer.__name__} failed: {e}", exc_info=True)
        return SubAnalysis.neutral(name, 'Analysis', f'{analyzer.__name__} failed')


def _token_identity(report: BaseSecurityReport, bundle: ExternalDataBundle) -> Tuple[str, str]:
    symbol, name = report.metadata.symbol, report.metadata.name
    if symbol == "UNKNOWN":
        symbol = (bundle.solscan and bundle.solscan.symbol) or (bundle.birdeye and bundle.birdeye.symbol) or symbol
    if name == "UNKNOWN" and bundle.solscan and bundle.solscan.name:
        name = bundle.solscan.name
    return symbol, name


# ============================================================================
# Assembly
# ============================================================================

def run_sub_analyses(report: BaseSecurityReport, bundle: ExternalDataBundle,
                     policy: Optional[ScoringPolicy] = None) -> Dict[str, SubAnalysis]:
    """Every derived analyzer in order, keyed by analysis name"""
    policy = policy or DEFAULT_POLICY
    return {
        name: _run(name, analyzer, report, bundle, policy)
        for _, name, analyzer in SUB_ANALYZERS
    }


def score_token(
    report: BaseSecurityReport,
    bundle: ExternalDataBundle,
    policy: Optional[ScoringPolicy] = None,
    now: Optional[datetime] = None,
    started: Optional[float] = None,
    analyses: Optional[Dict[str, SubAnalysis]] = None,
) -> SuperTokenScore:
    """
    Build the SuperTokenScore for one token.

    Args:
        report: completed base security report
        bundle: provider data, possibly partial or empty
        policy: thresholds, defaults when omitted
        now: analysis timestamp
        started: time.perf_counter() at pipeline start, for analysis_time_ms
        analyses: precomputed run_sub_analyses output
    """
    policy = policy or DEFAULT_POLICY
    if analyses is None:
        analyses = run_sub_analyses(report, bundle, policy)

    scores: Dict[str, int] = {'base_security_score': report.security_score}
    for field, name, _ in SUB_ANALYZERS:
        scores[field] = analyses[name].score

    breakdown = ScoreBreakdown(**scores)
    composite = aggregate(breakdown)
    super_score, penalties = apply_penalties(composite, analyses, policy)
    if penalties:
        logger.debug(f"Penalties {penalties} took composite {composite} to {super_score}")

    flags = consolidate_flags(report, analyses, policy)
    tier = classify_risk(super_score, flags.red_flags)
    symbol, name = _token_identity(report, bundle)

    elapsed_ms = int((time.perf_counter() - started) * 1000) if started is not None else 0

    return SuperTokenScore(
        token_address=report.token_address,
        token_symbol=symbol,
        token_name=name,
        super_score=super_score,
        global_risk_level=tier,
        recommendation=recommendation_for(tier),
        score_breakdown=breakdown,
        base_security_report=report,
        analyses=analyses,
        rugcheck_data=bundle.rugcheck,
        dexscreener_data=bundle.dexscreener,
        birdeye_data=bundle.birdeye,
        solscan_data=bundle.solscan,
        jupiter_data=bundle.jupiter,
        unavailable_providers=list(bundle.unavailable),
        all_red_flags=flags.red_flags,
        green_flags=flags.green_flags,
        notes=flags.notes,
        analyzed_at=now or utc_now(),
        analysis_time_ms=elapsed_ms,
    )
