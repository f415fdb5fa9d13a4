"""
Configuration Manager for the Super Token Scorer
Typed configuration sections with YAML loading, environment overrides and validation
"""
from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from config.settings import Settings
from utils.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ConfigType(Enum):
    """Configuration sections"""
    RESILIENCE = "resilience"
    PROVIDERS = "providers"
    CACHE = "cache"
    SCORING = "scoring"
    LOGGING = "logging"


class ResilienceConfig(BaseModel):
    max_retries: int = Field(default=2, ge=0)
    backoff_base: float = Field(default=0.5, ge=0)
    backoff_cap: float = Field(default=4.0, ge=0)
    jitter: float = Field(default=0.3, ge=0, le=1)
    call_timeout: float = Field(default=Settings.REQUEST_TIMEOUT, gt=0)
    failure_threshold: int = Field(default=5, ge=1)
    failure_window: float = Field(default=60.0, gt=0)
    cooldown: float = Field(default=30.0, gt=0)


class ProviderConfig(BaseModel):
    solana_rpc_url: str = Settings.SOLANA_RPC_URL
    helius_api_key: str = Settings.HELIUS_API_KEY
    birdeye_api_key: str = Settings.BIRDEYE_API_KEY
    solscan_api_key: str = Settings.SOLSCAN_API_KEY
    rugcheck_api_key: str = Settings.RUGCHECK_API_KEY
    aggregator_timeout: float = Field(default=Settings.AGGREGATOR_TIMEOUT, gt=0)
    holder_sample_size: int = Field(default=20, ge=1, le=100)
    transaction_sample_size: int = Field(default=100, ge=1, le=1000)


class CacheConfig(BaseModel):
    redis_url: str = Settings.REDIS_URL
    database_url: str = Settings.DATABASE_URL
    cache_ttl: int = Field(default=Settings.CACHE_TTL, ge=1)
    stale_ttl: int = Field(default=Settings.STALE_TTL, ge=1)
    db_pool_min: int = Field(default=2, ge=1)
    db_pool_max: int = Field(default=10, ge=1)


class LoggingConfig(BaseModel):
    level: str = Settings.LOG_LEVEL
    format: str = Settings.LOG_FORMAT
    log_dir: str = str(Settings.LOGS_DIR)
    console: bool = True

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        if v.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"unknown log level {v}")
        return v.upper()


class ScoringPolicy(BaseModel):
    """Every threshold the analyzers compare against"""

    # Holder concentration (percent of supply)
    top10_critical_pct: float = 50.0
    top10_high_pct: float = 30.0
    top10_medium_pct: float = 15.0
    creator_critical_pct: float = 50.0
    creator_high_pct: float = 30.0
    bundle_penalty: int = 15

    # Pool depth (SOL side of the pool)
    liquidity_critical_sol: float = 5.0
    liquidity_high_sol: float = 20.0
    liquidity_medium_sol: float = 50.0
    lp_burned_min_pct: float = 90.0

    # Trading patterns
    honeypot_min_buys: int = 10
    sniper_slot_window: int = 5
    bundle_bot_high: int = 20
    wash_repeat_trades: int = 5
    wash_min_wallets: int = 3
    sniper_alert_count: int = 5

    # New wallets
    new_wallet_age_days: float = 10.0
    new_wallet_medium_pct: float = 30.0
    new_wallet_high_pct: float = 50.0
    new_wallet_critical_pct: float = 70.0
    new_wallet_suspicious_balance_pct: float = 1.0
    new_wallet_suspicious_critical: int = 10

    # Insiders
    insider_block_window: int = 10
    insider_medium_pct: float = 15.0
    insider_high_pct: float = 25.0
    insider_critical_pct: float = 40.0

    # Volume
    fake_volume_medium_pct: float = 30.0
    fake_volume_high_pct: float = 60.0
    wash_volume_ratio_high: float = 8.0
    wash_volume_ratio_critical: float = 15.0
    wash_volume_min_usd: float = 5_000.0

    # Bots
    mev_min_wallets: int = 3
    bundle_min_txs: int = 5
    bundle_max_txs: int = 15
    wash_trader_min_txs: int = 10
    copy_trade_slot_gap: int = 2
    bot_high_pct: float = 40.0

    # Smart money
    smart_money_min_age_days: float = 90.0
    smart_money_min_txs: int = 100
    smart_money_min_balance_pct: float = 0.1

    # Team
    team_critical_pct: float = 25.0
    team_high_pct: float = 15.0
    team_medium_pct: float = 10.0

    # Price pattern (percent change)
    pump_change_24h: float = 100.0
    organic_min_change_7d: float = 50.0
    organic_max_change_7d: float = 200.0
    death_spiral_change_7d: float = -50.0
    distribution_change_7d: float = -20.0
    accumulation_max_change_24h: float = 5.0
    accumulation_max_change_7d: float = 10.0

    # Liquidity depth (slippage percent on a 10 SOL buy)
    depth_excellent_slippage: float = 1.0
    depth_good_slippage: float = 3.0
    depth_fair_slippage: float = 10.0
    depth_poor_slippage: float = 25.0
    sol_price_usd_fallback: float = 150.0

    # Cross-source consistency
    consistency_tolerance: float = 0.25

    # Composite penalties
    no_liquidity_score_cap: int = 15
    rugcheck_bad_score: int = 30
    rugcheck_bad_multiplier: float = 0.7
    sybil_new_wallet_score: int = 20
    sybil_multiplier: float = 0.85
    insider_selling_multiplier: float = 0.85
    bot_activity_score: int = 30
    bot_activity_multiplier: float = 0.9

    @model_validator(mode='after')
    def validate_ordering(self):
        if not (self.top10_medium_pct <= self.top10_high_pct <= self.top10_critical_pct):
            raise ValueError("top10 thresholds must be ascending medium <= high <= critical")
        if not (self.new_wallet_medium_pct <= self.new_wallet_high_pct <= self.new_wallet_critical_pct):
            raise ValueError("new wallet thresholds must be ascending")
        if not (self.depth_excellent_slippage <= self.depth_good_slippage
                <= self.depth_fair_slippage <= self.depth_poor_slippage):
            raise ValueError("liquidity depth slippage tiers must be ascending")
        return self


class EngineConfig(BaseModel):
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)
    providers: ProviderConfig = Field(default_factory=ProviderConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    scoring: ScoringPolicy = Field(default_factory=ScoringPolicy)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class ConfigManager:
    """
    Loads the engine configuration from:
    - schema defaults (pydantic)
    - an optional YAML file
    - environment variables named SECTION__FIELD (e.g. SCORING__BOT_HIGH_PCT)
    """

    ENV_SEPARATOR = "__"

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self.config_path = Path(config_path) if config_path else None
        self.config: Optional[EngineConfig] = None

    def load(self) -> EngineConfig:
        """Merge all sources and validate"""
        config_data: Dict[str, Any] = {}

        file_data = self._load_config_from_file()
        for section, values in file_data.items():
            config_data.setdefault(section, {}).update(values or {})

        for section, values in self._load_config_from_env().items():
            config_data.setdefault(section, {}).update(values)

        try:
            self.config = EngineConfig(**config_data)
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise ConfigurationError(str(e)) from e

        logger.info("Configuration loaded"
                    + (f" from {self.config_path}" if self.config_path else " from defaults"))
        return self.config

    def _load_config_from_file(self) -> Dict[str, Dict[str, Any]]:
        """Load configuration sections from YAML"""
        if not self.config_path:
            return {}
        if not self.config_path.exists():
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Top level of {self.config_path} must be a mapping")

        known = {t.value for t in ConfigType}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config sections: {sorted(unknown)}")
        return {k: v for k, v in data.items() if k in known}

    def _load_config_from_env(self) -> Dict[str, Dict[str, Any]]:
        """Load SECTION__FIELD overrides from the environment"""
        env_data: Dict[str, Dict[str, Any]] = {}
        schemas = EngineConfig.model_fields

        for config_type in ConfigType:
            section_model = schemas[config_type.value].annotation
            prefix = config_type.value.upper() + self.ENV_SEPARATOR
            for field_name in section_model.model_fields:
                value = os.getenv(prefix + field_name.upper())
                if value is not None:
                    env_data.setdefault(config_type.value, {})[field_name] = value

        return env_data

    def get_config(self, config_type: ConfigType) -> BaseModel:
        if self.config is None:
            self.load()
        return getattr(self.config, config_type.value)

    def get_scoring_policy(self) -> ScoringPolicy:
        return self.get_config(ConfigType.SCORING)

    def get_resilience_config(self) -> ResilienceConfig:
        return self.get_config(ConfigType.RESILIENCE)

    def get_provider_config(self) -> ProviderConfig:
        return self.get_config(ConfigType.PROVIDERS)

    def get_cache_config(self) -> CacheConfig:
        return self.get_config(ConfigType.CACHE)

    def get_logging_config(self) -> LoggingConfig:
        return self.get_config(ConfigType.LOGGING)
