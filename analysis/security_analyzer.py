# analysis/security_analyzer.py

import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from analysis.models import (
    AuthorityAnalysis,
    BaseSecurityReport,
    FlagCollector,
    HolderAccount,
    HolderDistribution,
    LiquidityAnalysis,
    PoolInfo,
    RiskLevel,
    Severity,
    TokenMetadata,
    TokenTransaction,
    TradingPatterns,
)
from config.config_manager import ScoringPolicy
from core.resilience import ResilientExecutor
from data.collectors.chain_data import ChainDataClient, HolderSnapshot, MintInfo
from utils.errors import InvalidTokenAddressError
from utils.helpers import clamp_score, gini_coefficient, is_valid_solana_address, short_address, utc_now

logger = logging.getLogger(__name__)

SECURITY_WEIGHTS = {
    'authorities': 0.35,
    'holders': 0.30,
    'liquidity': 0.20,
    'trading_patterns': 0.15,
}


class BaseSecurityAnalyzer:
    """
    On-chain security analysis for a Solana mint.

    Four independent checks (authorities, holder concentration, liquidity
    protection, trading patterns) run concurrently through the chain
    executor. A check that still fails after retries degrades to a neutral
    score of 50 with an INFO note instead of failing the whole report.
    """

    def __init__(self, chain_client: ChainDataClient, executor: ResilientExecutor,
                 policy: Optional[ScoringPolicy] = None):
        self.chain = chain_client
        self.executor = executor
        self.policy = policy or ScoringPolicy()

    async def _fetch(self, label: str, operation: Callable[[], Awaitable[Any]]) -> Tuple[Any, Optional[Exception]]:
        try:
            return await self.executor.execute(operation), None
        except Exception as e:
            logger.warning(f"Security check '{label}' failed: {type(e).__name__}: {e}")
            return None, e

    async def analyze(self, token_address: str) -> BaseSecurityReport:
        if not is_valid_solana_address(token_address):
            raise InvalidTokenAddressError(token_address)

        logger.info(f"Running base security analysis for {short_address(token_address)}")

        authority_lookup = asyncio.ensure_future(
            self._fetch('authorities', lambda: self.chain.get_authorities(token_address))
        )

        async def with_mint_info(method):
            # reuses the mint account read; refetched only if that lookup failed
            mint_info, _ = await asyncio.shield(authority_lookup)
            return await method(token_address, mint_info=mint_info)

        (
            (metadata, _),
            (mint_info, auth_error),
            (snapshot, holder_error),
            (pools, pool_error),
            (transactions, tx_error),
        ) = await asyncio.gather(
            self._fetch('metadata', lambda: with_mint_info(self.chain.get_token_metadata)),
            authority_lookup,
            self._fetch('holders', lambda: with_mint_info(self.chain.get_holder_distribution)),
            self._fetch('liquidity', lambda: self.chain.get_liquidity_pools(token_address)),
            self._fetch('trading_patterns', lambda: self.chain.get_recent_transactions(token_address)),
        )

        flags = FlagCollector()

        if auth_error is not None:
            authorities = AuthorityAnalysis(degraded=True)
            flags.note('Authorities', 'Authority check unavailable, using neutral score (low confidence)')
        else:
            authorities = analyze_authorities(mint_info, flags)

        if holder_error is not None:
            holders = HolderDistribution(degraded=True)
            flags.note('Holders', 'Holder distribution unavailable, using neutral score (low confidence)')
        else:
            holders = analyze_holders(snapshot, self.policy, flags)

        if pool_error is not None:
            liquidity = LiquidityAnalysis(degraded=True)
            flags.note('Liquidity', 'Liquidity pools unavailable, using neutral score (low confidence)')
        else:
            liquidity = analyze_liquidity(pools, self.policy, flags)

        if tx_error is not None:
            patterns = TradingPatterns(degraded=True)
            flags.note('Trading', 'Transaction history unavailable, using neutral score (low confidence)')
        else:
            patterns = analyze_trading_patterns(transactions, holders.launch_slot, self.policy, flags)

        security_score = clamp_score(
            SECURITY_WEIGHTS['authorities'] * authorities.score
            + SECURITY_WEIGHTS['holders'] * holders.score
            + SECURITY_WEIGHTS['liquidity'] * liquidity.score
            + SECURITY_WEIGHTS['trading_patterns'] * patterns.score
        )

        degraded = [authorities.degraded, holders.degraded, liquidity.degraded, patterns.degraded]
        low_confidence = all(degraded)
        if low_confidence:
            logger.warning(f"All security checks degraded for {short_address(token_address)}")

        risk_level = risk_level_for(security_score)
        if patterns.honeypot_detected:
            risk_level = RiskLevel.CRITICAL

        if metadata is None:
            metadata = TokenMetadata()

        report = BaseSecurityReport(
            token_address=token_address,
            security_score=security_score,
            risk_level=risk_level,
            metadata=metadata,
            authorities=authorities,
            holder_distribution=holders,
            liquidity_analysis=liquidity,
            trading_patterns=patterns,
            red_flags=flags.red_flags,
            green_flags=flags.green_flags,
            notes=flags.notes,
            low_confidence=low_confidence,
            analyzed_at=utc_now(),
        )

        logger.info(
            f"Base security for {short_address(token_address)}: score={security_score} "
            f"risk={risk_level.value} red_flags={len(report.red_flags)} "
            f"degraded={sum(degraded)}/4"
        )
        return report


def risk_level_for(score: int) -> RiskLevel:
    if score >= 80:
        return RiskLevel.LOW
    if score >= 60:
        return RiskLevel.MEDIUM
    if score >= 40:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


# ============================================================================
# Authorities
# ============================================================================

def analyze_authorities(mint_info: MintInfo, flags: FlagCollector) -> AuthorityAnalysis:
    has_mint = bool(mint_info.mint_authority)
    has_freeze = bool(mint_info.freeze_authority)

    if has_mint and has_freeze:
        risk, score = RiskLevel.CRITICAL, 0
        flags.red('Authorities', Severity.CRITICAL,
                  'Mint and freeze authorities are both active: supply can be inflated and wallets frozen')
    elif has_mint:
        risk, score = RiskLevel.HIGH, 20
        flags.red('Authorities', Severity.HIGH, 'Mint authority is active: supply can be inflated')
    elif has_freeze:
        risk, score = RiskLevel.MEDIUM, 60
        flags.red('Authorities', Severity.MEDIUM, 'Freeze authority is active: wallets can be frozen')
    else:
        risk, score = RiskLevel.LOW, 100
        flags.green('Authorities', 'Mint and freeze authorities revoked')

    return AuthorityAnalysis(
        mint_authority=mint_info.mint_authority,
        freeze_authority=mint_info.freeze_authority,
        has_mint_authority=has_mint,
        has_freeze_authority=has_freeze,
        risk_level=risk,
        score=score,
    )


# ============================================================================
# Holder distribution
# ============================================================================

def detect_bundle(holders: List[HolderAccount]) -> int:
    """Number of wallets whose first acquisition shares a slot with another wallet"""
    by_slot: Dict[int, set] = defaultdict(set)
    for holder in holders:
        if holder.first_acquired_slot is not None and not holder.is_pool:
            by_slot[holder.first_acquired_slot].add(holder.owner)
    return sum(len(wallets) for wallets in by_slot.values() if len(wallets) > 1)


def analyze_holders(snapshot: HolderSnapshot, policy: ScoringPolicy,
                    flags: FlagCollector) -> HolderDistribution:
    wallets = sorted((h for h in snapshot.holders if not h.is_pool),
                     key=lambda h: h.percent, reverse=True)

    if not wallets:
        flags.note('Holders', 'No holder accounts returned, using neutral score (low confidence)')
        return HolderDistribution(
            total_holders=snapshot.total_holders,
            launch_slot=snapshot.launch_slot,
            creator_address=snapshot.creator,
            degraded=True,
        )

    top10 = sum(h.percent for h in wallets[:10])

    creator = next((h for h in wallets if snapshot.creator and h.owner == snapshot.creator), None)
    if creator is None and snapshot.creator is None:
        creator = wallets[0]
    creator_percent = creator.percent if creator else 0.0
    creator_address = creator.owner if creator else snapshot.creator

    if top10 >= policy.top10_critical_pct:
        risk, score = RiskLevel.CRITICAL, 0
        flags.red('Holders', Severity.CRITICAL, f'Top 10 holders own {top10:.1f}% of supply')
    elif top10 >= policy.top10_high_pct:
        risk, score = RiskLevel.HIGH, 35
        flags.red('Holders', Severity.HIGH, f'Top 10 holders own {top10:.1f}% of supply')
    elif top10 >= policy.top10_medium_pct:
        risk, score = RiskLevel.MEDIUM, 70
        flags.red('Holders', Severity.MEDIUM, f'Top 10 holders own {top10:.1f}% of supply')
    else:
        risk, score = RiskLevel.LOW, 100

    if creator_percent >= policy.creator_critical_pct:
        risk, score = RiskLevel.CRITICAL, min(score, 0)
        flags.red('Holders', Severity.CRITICAL, f'Creator holds {creator_percent:.1f}% of supply')
    elif creator_percent >= policy.creator_high_pct:
        if risk in (RiskLevel.LOW, RiskLevel.MEDIUM):
            risk = RiskLevel.HIGH
        score = min(score, 35)
        flags.red('Holders', Severity.HIGH, f'Creator holds {creator_percent:.1f}% of supply')

    bundle_wallets = detect_bundle(wallets)
    if bundle_wallets:
        score -= policy.bundle_penalty
        flags.red('Bundle', Severity.HIGH,
                  f'Bundled launch: {bundle_wallets} top holders acquired in a shared slot')

    if risk == RiskLevel.LOW and score >= 90:
        flags.green('Holders', f'Healthy distribution: top 10 hold {top10:.1f}%')

    return HolderDistribution(
        total_holders=snapshot.total_holders,
        top10_holders_percent=round(top10, 2),
        creator_address=creator_address,
        creator_percent=round(creator_percent, 2),
        gini_coefficient=round(gini_coefficient(h.amount for h in wallets), 4),
        concentration_risk=risk,
        bundle_detected=bundle_wallets > 0,
        bundle_wallets=bundle_wallets,
        launch_slot=snapshot.launch_slot,
        holders=list(snapshot.holders),
        score=clamp_score(score),
    )


# ============================================================================
# Liquidity
# ============================================================================

def analyze_liquidity(pools: List[PoolInfo], policy: ScoringPolicy,
                      flags: FlagCollector) -> LiquidityAnalysis:
    if not pools:
        flags.red('Liquidity', Severity.CRITICAL, 'No liquidity pool found')
        return LiquidityAnalysis(risk_level=RiskLevel.CRITICAL, score=0)

    main_pool = max(pools, key=lambda p: p.sol_reserve)
    total_sol = sum(p.sol_reserve for p in pools)
    usd_values = [p.liquidity_usd for p in pools if p.liquidity_usd is not None]
    liquidity_usd = sum(usd_values) if usd_values else None

    lp_burned = main_pool.lp_burned_percent >= policy.lp_burned_min_pct
    lp_locked = main_pool.lp_locked
    protected = lp_burned or lp_locked

    if total_sol < policy.liquidity_critical_sol:
        risk, score = RiskLevel.CRITICAL, 10
        flags.red('Liquidity', Severity.CRITICAL, f'Very low liquidity: {total_sol:.2f} SOL')
    elif protected:
        risk = RiskLevel.LOW
        score = 100 if total_sol >= policy.liquidity_medium_sol else 85
    elif total_sol < policy.liquidity_high_sol:
        risk, score = RiskLevel.HIGH, 30
    elif total_sol < policy.liquidity_medium_sol:
        risk, score = RiskLevel.MEDIUM, 55
    else:
        risk, score = RiskLevel.MEDIUM, 70

    if not protected:
        severity = Severity.HIGH if total_sol < policy.liquidity_high_sol else Severity.MEDIUM
        flags.red('Liquidity', severity, 'LP tokens are neither burned nor locked: liquidity can be pulled')
    if lp_burned:
        flags.green('Liquidity', f'LP tokens burned ({main_pool.lp_burned_percent:.0f}%)')
    elif lp_locked:
        flags.green('Liquidity', 'LP tokens locked')

    return LiquidityAnalysis(
        total_liquidity_sol=round(total_sol, 4),
        liquidity_usd=liquidity_usd,
        lp_burned=lp_burned,
        lp_locked=lp_locked,
        lp_lock_end=main_pool.lock_end,
        pools=list(pools),
        risk_level=risk,
        score=score,
    )


# ============================================================================
# Trading patterns
# ============================================================================

def analyze_trading_patterns(transactions: List[TokenTransaction], launch_slot: Optional[int],
                             policy: ScoringPolicy, flags: FlagCollector) -> TradingPatterns:
    if not transactions:
        flags.note('Trading', 'No recent transactions to scan, using neutral score (low confidence)')
        return TradingPatterns(degraded=True)

    txs = sorted(transactions, key=lambda t: t.slot)
    buys = [t for t in txs if t.side == 'buy']
    sells = [t for t in txs if t.side == 'sell']

    # Several distinct wallets buying in the same slot
    buyers_by_slot: Dict[int, set] = defaultdict(set)
    for tx in buys:
        buyers_by_slot[tx.slot].add(tx.wallet)
    bundle_bots = sum(len(w) - 1 for w in buyers_by_slot.values() if len(w) > 1)

    snipers = 0
    if launch_slot is not None:
        first_buy: Dict[str, int] = {}
        for tx in buys:
            first_buy.setdefault(tx.wallet, tx.slot)
        snipers = sum(1 for slot in first_buy.values() if slot - launch_slot <= policy.sniper_slot_window)

    per_wallet: Dict[str, Dict[str, int]] = defaultdict(lambda: {'buy': 0, 'sell': 0})
    for tx in txs:
        per_wallet[tx.wallet][tx.side] += 1
    wash_traders = sum(
        1 for c in per_wallet.values()
        if c['buy'] and c['sell'] and c['buy'] + c['sell'] >= policy.wash_repeat_trades
    )
    wash_trading = wash_traders >= policy.wash_min_wallets

    honeypot = len(buys) > policy.honeypot_min_buys and not sells

    score = 100
    if honeypot:
        score = 0
        flags.red('Honeypot', Severity.CRITICAL,
                  f'HONEYPOT DETECTED: {len(buys)} buys and no sells in recent history')
    if bundle_bots > policy.bundle_bot_high:
        score -= 30
        flags.red('Bots', Severity.HIGH, f'{bundle_bots} bundled buys in shared slots')
    elif bundle_bots:
        score -= 10
    if snipers >= policy.sniper_alert_count:
        score -= 15
        flags.red('Snipers', Severity.MEDIUM,
                  f'{snipers} wallets bought within {policy.sniper_slot_window} slots of launch')
    if wash_trading:
        score -= 20
        flags.red('Wash Trading', Severity.HIGH, f'{wash_traders} wallets repeatedly trading both sides')

    score = clamp_score(score)
    if score >= 80:
        risk = RiskLevel.LOW
    elif score >= 60:
        risk = RiskLevel.MEDIUM
    elif score >= 30:
        risk = RiskLevel.HIGH
    else:
        risk = RiskLevel.CRITICAL

    return TradingPatterns(
        bundle_bots=bundle_bots,
        snipers=snipers,
        wash_trading=wash_trading,
        wash_traders=wash_traders,
        honeypot_detected=honeypot,
        can_sell=False if honeypot else (True if sells else None),
        buy_count=len(buys),
        sell_count=len(sells),
        unique_traders=len(per_wallet),
        transactions=txs,
        risk_level=risk,
        score=score,
    )
