"""
System-wide Constants for the Super Token Scorer
Centralized configuration for Solana addresses, provider endpoints and scoring tables
"""

from typing import Dict, FrozenSet

# ============= Solana Addresses =============

WSOL_MINT = "So11111111111111111111111111111111111111112"
LAMPORTS_PER_SOL = 1_000_000_000

# ============= Provider Endpoints =============

RUGCHECK_API_URL = "https://api.rugcheck.xyz/v1"
DEXSCREENER_API_URL = "https://api.dexscreener.com/latest/dex"
BIRDEYE_API_URL = "https://public-api.birdeye.so"
SOLSCAN_API_URL = "https://pro-api.solscan.io/v2.0"
JUPITER_API_URL = "https://lite-api.jup.ag"
RAYDIUM_API_URL = "https://api-v3.raydium.io"

PROVIDER_NAMES = ("rugcheck", "dexscreener", "birdeye", "solscan", "jupiter")

# ============= Cache Keys =============

FAST_CACHE_PREFIX = "score"
DURABLE_TABLE = "super_token_analysis"

# ============= Flag Severity Tables =============

SEVERITY_IMPACT: Dict[str, int] = {
    "CRITICAL": 25,
    "HIGH": 15,
    "MEDIUM": 8,
    "LOW": 3,
    "INFO": 0,
}

# Green-flag score boost per category, the counterpart of SEVERITY_IMPACT
GREEN_FLAG_BOOST: Dict[str, int] = {
    "Authorities": 10,
    "Liquidity": 10,
    "Holders": 5,
    "Liquidity Depth": 5,
    "RugCheck": 5,
    "Team": 5,
    "Smart Money": 3,
    "Holder History": 3,
    "Volume": 3,
    "Price Action": 3,
    "Social": 2,
}

# Red-flag categories that force the SCAM tier
FORCE_SCAM_CATEGORIES: FrozenSet[str] = frozenset({"Honeypot", "Rugged"})

# ============= Recommendations =============

RECOMMENDATIONS: Dict[str, str] = {
    "ULTRA_SAFE": (
        "Excellent fundamentals across every check. Authorities are revoked, "
        "liquidity is protected and holder distribution is healthy. "
        "Standard position sizing is reasonable."
    ),
    "SAFE": (
        "Solid token with only minor concerns. Review the listed warnings "
        "and keep position sizes moderate."
    ),
    "MODERATE": (
        "Mixed signals. Several risk factors are present; trade only with "
        "small size and tight risk controls."
    ),
    "RISKY": (
        "Significant risk factors detected. Only consider with capital you "
        "can afford to lose entirely."
    ),
    "VERY_RISKY": (
        "Multiple serious red flags. Avoid unless you fully understand and "
        "accept the risk of total loss."
    ),
    "SCAM": (
        "Strong indicators of a scam, honeypot or rug pull. Do not buy."
    ),
}
