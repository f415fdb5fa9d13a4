"""
Utility Helper Functions for the Super Token Scorer
Core utilities for address validation, score math, time and payload coercion
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence, Union

import base58
import numpy as np

# ============= Solana Utilities =============

def is_valid_solana_address(address: Any) -> bool:
    """Check that address is a base58 string decoding to a 32-byte key"""
    if not isinstance(address, str) or not 32 <= len(address) <= 44:
        return False
    try:
        return len(base58.b58decode(address)) == 32
    except ValueError:
        return False

def short_address(address: str, visible_chars: int = 4) -> str:
    """Shorten an address for log lines"""
    if len(address) <= visible_chars * 2:
        return address
    return f"{address[:visible_chars]}...{address[-visible_chars:]}"

# ============= Math & Score Utilities =============

def clamp(value: Union[int, float], low: float = 0, high: float = 100) -> float:
    """Clamp value into [low, high]"""
    return max(low, min(high, value))

def clamp_score(value: Union[int, float]) -> int:
    """Round and clamp to an integer score in [0, 100]"""
    return int(round(clamp(value, 0, 100)))

def gini_coefficient(values: Iterable[float]) -> float:
    """
    Gini coefficient of a distribution of balances.

    0 is perfectly equal, values close to 1 mean a single wallet holds
    almost everything.
    """
    arr = np.sort(np.asarray([v for v in values if v is not None and v > 0], dtype=float))
    n = arr.size
    if n == 0 or arr.sum() == 0:
        return 0.0
    index = np.arange(1, n + 1)
    return float(((2 * index - n - 1) * arr).sum() / (n * arr.sum()))

def relative_spread(values: Sequence[Optional[float]]) -> Optional[float]:
    """(max - min) / max over the non-null positive values, None with fewer than two"""
    present = [float(v) for v in values if v is not None and v > 0]
    if len(present) < 2:
        return None
    high = max(present)
    return (high - min(present)) / high

def safe_ratio(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    """numerator / denominator, or None when either is missing or the denominator is zero"""
    if numerator is None or not denominator:
        return None
    return numerator / denominator

# ============= Time Utilities =============

def utc_now() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)

def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes coming back from storage"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

# ============= Payload Coercion =============

def to_float(value: Any) -> Optional[float]:
    """Lenient float conversion for provider payloads"""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None

def to_int(value: Any) -> Optional[int]:
    """Lenient int conversion for provider payloads"""
    number = to_float(value)
    return int(number) if number is not None else None


__all__ = [
    'is_valid_solana_address',
    'short_address',
    'clamp',
    'clamp_score',
    'gini_coefficient',
    'relative_spread',
    'safe_ratio',
    'utc_now',
    'ensure_utc',
    'to_float',
    'to_int',
]
