"""
DexScreener API Integration
Pair-level market data for a Solana token
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from data.collectors.base_collector import BaseCollector
from utils.constants import DEXSCREENER_API_URL
from utils.helpers import to_float, to_int

logger = logging.getLogger(__name__)


class DexScreenerData(BaseModel):
    """Main (most liquid) Solana pair for a token"""
    model_config = ConfigDict(frozen=True)

    pair_address: Optional[str] = None
    dex: Optional[str] = None
    price_usd: Optional[float] = None
    price_native: Optional[float] = None
    volume_24h: Optional[float] = None
    liquidity_usd: Optional[float] = None
    liquidity_quote: Optional[float] = None
    fdv: Optional[float] = None
    market_cap: Optional[float] = None
    price_change_24h: Optional[float] = None
    price_change_6h: Optional[float] = None
    price_change_1h: Optional[float] = None
    buys_24h: Optional[int] = None
    sells_24h: Optional[int] = None
    holders: Optional[int] = None
    pair_created_at: Optional[int] = None  # ms since epoch
    pair_count: int = 0

    @property
    def buy_sell_ratio(self) -> Optional[float]:
        """buys / sells, None when either side is unknown or sells is zero"""
        if self.buys_24h is None or not self.sells_24h:
            return None
        return self.buys_24h / self.sells_24h

    @property
    def total_txns_24h(self) -> Optional[int]:
        if self.buys_24h is None and self.sells_24h is None:
            return None
        return (self.buys_24h or 0) + (self.sells_24h or 0)


class DexScreenerCollector(BaseCollector[DexScreenerData]):
    """DexScreener data collector"""

    name = "dexscreener"
    base_url = DEXSCREENER_API_URL

    async def fetch(self, token_address: str) -> Optional[DexScreenerData]:
        data = await self._get_json(f"tokens/{token_address}")
        if not data:
            return None

        pairs = [p for p in data.get('pairs') or [] if p.get('chainId') == 'solana']
        if not pairs:
            logger.debug(f"DexScreener has no Solana pairs for {token_address}")
            return None

        return self.parse_pair(self._main_pair(pairs), pair_count=len(pairs))

    @staticmethod
    def _main_pair(pairs: List[Dict[str, Any]]) -> Dict[str, Any]:
        return max(pairs, key=lambda p: to_float((p.get('liquidity') or {}).get('usd')) or 0.0)

    @staticmethod
    def parse_pair(pair: Dict[str, Any], pair_count: int = 1) -> DexScreenerData:
        liquidity = pair.get('liquidity') or {}
        volume = pair.get('volume') or {}
        price_change = pair.get('priceChange') or {}
        txns_24h = (pair.get('txns') or {}).get('h24') or {}

        return DexScreenerData(
            pair_address=pair.get('pairAddress'),
            dex=pair.get('dexId'),
            price_usd=to_float(pair.get('priceUsd')),
            price_native=to_float(pair.get('priceNative')),
            volume_24h=to_float(volume.get('h24')),
            liquidity_usd=to_float(liquidity.get('usd')),
            liquidity_quote=to_float(liquidity.get('quote')),
            fdv=to_float(pair.get('fdv')),
            market_cap=to_float(pair.get('marketCap')),
            price_change_24h=to_float(price_change.get('h24')),
            price_change_6h=to_float(price_change.get('h6')),
            price_change_1h=to_float(price_change.get('h1')),
            buys_24h=to_int(txns_24h.get('buys')),
            sells_24h=to_int(txns_24h.get('sells')),
            holders=to_int(pair.get('holders')),
            pair_created_at=to_int(pair.get('pairCreatedAt')),
            pair_count=pair_count,
        )
