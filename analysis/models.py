"""
Domain models for token risk analysis.

All records are immutable pydantic models. They serialize with
model_dump(mode="json") and rebuild with model_validate, which is how the
cache tiers round-trip a SuperTokenScore.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from data.collectors.birdeye import BirdeyeData
from data.collectors.dexscreener import DexScreenerData
from data.collectors.jupiter import JupiterRouteData
from data.collectors.rugcheck import RugCheckData
from data.collectors.solscan import SolscanData
from utils.constants import GREEN_FLAG_BOOST, SEVERITY_IMPACT
from utils.helpers import clamp_score, utc_now


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


# ============================================================================
# Enums
# ============================================================================

class Severity(str, Enum):
    INFO = "INFO"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class RiskLevel(str, Enum):
    """Risk of a single check or of the base security report"""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class GlobalRiskLevel(str, Enum):
    """Final tier, ordered safest first"""
    ULTRA_SAFE = "ULTRA_SAFE"
    SAFE = "SAFE"
    MODERATE = "MODERATE"
    RISKY = "RISKY"
    VERY_RISKY = "VERY_RISKY"
    SCAM = "SCAM"

    @classmethod
    def ordered(cls) -> List["GlobalRiskLevel"]:
        return list(cls)

    def downgrade(self, steps: int = 1) -> "GlobalRiskLevel":
        tiers = self.ordered()
        return tiers[min(len(tiers) - 1, tiers.index(self) + steps)]


# ============================================================================
# Flags
# ============================================================================

class RedFlag(FrozenModel):
    category: str
    severity: Severity
    message: str
    score_impact: int = 0

    @model_validator(mode='before')
    @classmethod
    def default_impact(cls, data):
        if isinstance(data, dict) and not data.get('score_impact'):
            severity = data.get('severity')
            level = severity.value if isinstance(severity, Severity) else str(severity)
            data = {**data, 'score_impact': SEVERITY_IMPACT.get(level, 0)}
        return data

    @property
    def key(self) -> Tuple[str, str]:
        return (self.category, self.message)


class GreenFlag(FrozenModel):
    category: str
    message: str
    score_boost: int = 0

    @model_validator(mode='before')
    @classmethod
    def default_boost(cls, data):
        if isinstance(data, dict) and not data.get('score_boost'):
            data = {**data, 'score_boost': GREEN_FLAG_BOOST.get(data.get('category'), 0)}
        return data

    @property
    def key(self) -> Tuple[str, str]:
        return (self.category, self.message)


class FlagCollector:
    """
    Append-only flag accumulator for one analysis step.

    Red flags, green flags and informational notes are kept apart and
    deduplicated by (category, message), preserving first-seen order.
    """

    def __init__(self):
        self._red: Dict[Tuple[str, str], RedFlag] = {}
        self._green: Dict[Tuple[str, str], GreenFlag] = {}
        self._notes: Dict[Tuple[str, str], RedFlag] = {}

    def red(self, category: str, severity: Severity, message: str) -> None:
        if severity == Severity.INFO:
            self.note(category, message)
            return
        flag = RedFlag(category=category, severity=severity, message=message)
        self._red.setdefault(flag.key, flag)

    def green(self, category: str, message: str) -> None:
        flag = GreenFlag(category=category, message=message)
        self._green.setdefault(flag.key, flag)

    def note(self, category: str, message: str) -> None:
        flag = RedFlag(category=category, severity=Severity.INFO, message=message)
        self._notes.setdefault(flag.key, flag)

    def extend(self, red_flags=(), green_flags=(), notes=()) -> None:
        for flag in red_flags:
            self._red.setdefault(flag.key, flag)
        for flag in green_flags:
            self._green.setdefault(flag.key, flag)
        for flag in notes:
            self._notes.setdefault(flag.key, flag)

    @property
    def red_flags(self) -> List[RedFlag]:
        return list(self._red.values())

    @property
    def green_flags(self) -> List[GreenFlag]:
        return list(self._green.values())

    @property
    def notes(self) -> List[RedFlag]:
        return list(self._notes.values())


# ============================================================================
# Base security report
# ============================================================================

class TokenMetadata(FrozenModel):
    name: str = "UNKNOWN"
    symbol: str = "UNKNOWN"
    supply: Optional[float] = None
    decimals: Optional[int] = None
    verified: bool = False
    has_website: bool = False
    has_socials: bool = False
    description: Optional[str] = None


class AuthorityAnalysis(FrozenModel):
    mint_authority: Optional[str] = None
    freeze_authority: Optional[str] = None
    has_mint_authority: bool = False
    has_freeze_authority: bool = False
    risk_level: RiskLevel = RiskLevel.MEDIUM
    score: int = 50
    degraded: bool = False

    @computed_field
    @property
    def is_revoked(self) -> bool:
        return not self.has_mint_authority and not self.has_freeze_authority


class HolderAccount(FrozenModel):
    owner: str
    token_account: Optional[str] = None
    amount: float = 0.0                         # UI amount
    percent: float = 0.0                        # of total supply
    first_acquired_slot: Optional[int] = None
    wallet_age_days: Optional[float] = None
    tx_count: Optional[int] = None
    net_change_24h: Optional[float] = None      # token delta over 24h, negative = selling
    is_pool: bool = False


class HolderDistribution(FrozenModel):
    total_holders: Optional[int] = None
    top10_holders_percent: float = 0.0
    creator_address: Optional[str] = None
    creator_percent: float = 0.0
    gini_coefficient: float = 0.0
    concentration_risk: RiskLevel = RiskLevel.MEDIUM
    bundle_detected: bool = False
    bundle_wallets: int = 0
    launch_slot: Optional[int] = None
    holders: List[HolderAccount] = []
    score: int = 50
    degraded: bool = False


class PoolInfo(FrozenModel):
    address: str
    dex: str = "unknown"
    sol_reserve: float = 0.0
    token_reserve: float = 0.0
    liquidity_usd: Optional[float] = None
    lp_burned_percent: float = 0.0
    lp_locked: bool = False
    lock_end: Optional[datetime] = None


class LiquidityAnalysis(FrozenModel):
    total_liquidity_sol: float = 0.0
    liquidity_usd: Optional[float] = None
    lp_burned: bool = False
    lp_locked: bool = False
    lp_lock_end: Optional[datetime] = None
    pools: List[PoolInfo] = []
    risk_level: RiskLevel = RiskLevel.MEDIUM
    score: int = 50
    degraded: bool = False

    @property
    def is_protected(self) -> bool:
        return self.lp_burned or self.lp_locked


class TokenTransaction(FrozenModel):
    signature: str
    slot: int
    wallet: str
    side: str                           # "buy" or "sell"
    block_time: Optional[int] = None
    token_amount: Optional[float] = None
    sol_amount: Optional[float] = None


class TradingPatterns(FrozenModel):
    bundle_bots: int = 0
    snipers: int = 0
    wash_trading: bool = False
    wash_traders: int = 0
    honeypot_detected: bool = False
    can_sell: Optional[bool] = None
    buy_count: int = 0
    sell_count: int = 0
    unique_traders: int = 0
    transactions: List[TokenTransaction] = []
    risk_level: RiskLevel = RiskLevel.MEDIUM
    score: int = 50
    degraded: bool = False


class BaseSecurityReport(FrozenModel):
    token_address: str
    security_score: int = Field(ge=0, le=100)
    risk_level: RiskLevel
    metadata: TokenMetadata = Field(default_factory=TokenMetadata)
    authorities: AuthorityAnalysis = Field(default_factory=AuthorityAnalysis)
    holder_distribution: HolderDistribution = Field(default_factory=HolderDistribution)
    liquidity_analysis: LiquidityAnalysis = Field(default_factory=LiquidityAnalysis)
    trading_patterns: TradingPatterns = Field(default_factory=TradingPatterns)
    red_flags: List[RedFlag] = []
    green_flags: List[GreenFlag] = []
    notes: List[RedFlag] = []
    low_confidence: bool = False
    analyzed_at: datetime = Field(default_factory=utc_now)


# ============================================================================
# Sub-analysis results
# ============================================================================

class SubAnalysis(FrozenModel):
    """Uniform output of every derived sub-analyzer"""
    name: str
    score: int = Field(ge=0, le=100)
    red_flags: List[RedFlag] = []
    green_flags: List[GreenFlag] = []
    notes: List[RedFlag] = []
    analysis: Dict[str, Any] = {}
    low_confidence: bool = False

    NEUTRAL_SCORE: ClassVar[int] = 50

    @classmethod
    def build(cls, name: str, score: float, flags: FlagCollector,
              analysis: Dict[str, Any], low_confidence: bool = False) -> "SubAnalysis":
        return cls(
            name=name,
            score=clamp_score(score),
            red_flags=flags.red_flags,
            green_flags=flags.green_flags,
            notes=flags.notes,
            analysis=analysis,
            low_confidence=low_confidence,
        )

    @classmethod
    def neutral(cls, name: str, category: str, reason: str,
                analysis: Optional[Dict[str, Any]] = None) -> "SubAnalysis":
        """Missing input: neutral midpoint plus an informational note, never a red flag"""
        flags = FlagCollector()
        flags.note(category, f"{reason}; neutral score applied (low confidence)")
        return cls.build(name, cls.NEUTRAL_SCORE, flags, analysis or {}, low_confidence=True)


class ScoreBreakdown(FrozenModel):
    """Fixed 17-entry breakdown, every value in [0, 100]"""
    base_security_score: int = Field(ge=0, le=100, alias='baseSecurityScore')
    new_wallet_score: int = Field(ge=0, le=100, alias='newWalletScore')
    insider_score: int = Field(ge=0, le=100, alias='insiderScore')
    volume_score: int = Field(ge=0, le=100, alias='volumeScore')
    social_score: int = Field(ge=0, le=100, alias='socialScore')
    bot_detection_score: int = Field(ge=0, le=100, alias='botDetectionScore')
    smart_money_score: int = Field(ge=0, le=100, alias='smartMoneyScore')
    team_score: int = Field(ge=0, le=100, alias='teamScore')
    price_pattern_score: int = Field(ge=0, le=100, alias='pricePatternScore')
    historical_holders_score: int = Field(ge=0, le=100, alias='historicalHoldersScore')
    liquidity_depth_score: int = Field(ge=0, le=100, alias='liquidityDepthScore')
    cross_chain_score: int = Field(ge=0, le=100, alias='crossChainScore')
    competitor_score: int = Field(ge=0, le=100, alias='competitorScore')
    rug_check_score: int = Field(ge=0, le=100, alias='rugCheckScore')
    dex_screener_score: int = Field(ge=0, le=100, alias='dexScreenerScore')
    birdeye_score: int = Field(ge=0, le=100, alias='birdeyeScore')
    jupiter_score: int = Field(ge=0, le=100, alias='jupiterScore')

    def as_dict(self) -> Dict[str, int]:
        """camelCase keys, as exposed to API consumers"""
        return self.model_dump(by_alias=True)


class SuperTokenScore(FrozenModel):
    token_address: str
    token_symbol: str = "UNKNOWN"
    token_name: str = "UNKNOWN"
    super_score: int = Field(ge=0, le=100)
    global_risk_level: GlobalRiskLevel
    recommendation: str
    score_breakdown: ScoreBreakdown
    base_security_report: BaseSecurityReport
    analyses: Dict[str, SubAnalysis] = {}

    rugcheck_data: Optional[RugCheckData] = None
    dexscreener_data: Optional[DexScreenerData] = None
    birdeye_data: Optional[BirdeyeData] = None
    solscan_data: Optional[SolscanData] = None
    jupiter_data: Optional[JupiterRouteData] = None
    unavailable_providers: List[str] = []

    all_red_flags: List[RedFlag] = []
    green_flags: List[GreenFlag] = []
    notes: List[RedFlag] = []

    analyzed_at: datetime = Field(default_factory=utc_now)
    analysis_time_ms: int = 0
    cached: bool = False
    stale_fallback: bool = False

    def has_critical_flag(self) -> bool:
        return any(f.severity == Severity.CRITICAL for f in self.all_red_flags)

    def summary(self) -> Dict[str, Any]:
        return {
            'token': self.token_address,
            'symbol': self.token_symbol,
            'super_score': self.super_score,
            'risk_level': self.global_risk_level.value,
            'red_flags': len(self.all_red_flags),
            'green_flags': len(self.green_flags),
            'cached': self.cached,
            'stale_fallback': self.stale_fallback,
        }
