"""
Solscan API Integration
Token metadata and holder counts from the chain explorer
"""

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict

from data.collectors.base_collector import BaseCollector
from utils.constants import SOLSCAN_API_URL
from utils.helpers import to_float, to_int

logger = logging.getLogger(__name__)


class SolscanData(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    symbol: Optional[str] = None
    decimals: Optional[int] = None
    supply: Optional[float] = None
    holders: Optional[int] = None
    creator: Optional[str] = None
    created_time: Optional[int] = None
    website: Optional[str] = None
    twitter: Optional[str] = None
    price: Optional[float] = None
    volume_24h: Optional[float] = None
    market_cap: Optional[float] = None


class SolscanCollector(BaseCollector[SolscanData]):
    """Solscan token metadata collector"""

    name = "solscan"
    base_url = SOLSCAN_API_URL

    def _headers(self):
        headers = super()._headers()
        if self.api_key:
            headers['token'] = self.api_key
        return headers

    async def fetch(self, token_address: str) -> Optional[SolscanData]:
        data = await self._get_json("token/meta", params={'address': token_address})
        if not data or not data.get('success', True):
            return None
        meta = data.get('data', data)
        if not isinstance(meta, dict) or not meta:
            return None
        return self.parse(meta)

    @staticmethod
    def parse(meta: dict) -> SolscanData:
        metadata = meta.get('metadata') or {}
        return SolscanData(
            name=meta.get('name') or metadata.get('name'),
            symbol=meta.get('symbol') or metadata.get('symbol'),
            decimals=to_int(meta.get('decimals')),
            supply=to_float(meta.get('supply')),
            holders=to_int(meta.get('holder')),
            creator=meta.get('creator'),
            created_time=to_int(meta.get('created_time')),
            website=metadata.get('website') or meta.get('website'),
            twitter=metadata.get('twitter') or meta.get('twitter'),
            price=to_float(meta.get('price')),
            volume_24h=to_float(meta.get('volume_24h')),
            market_cap=to_float(meta.get('market_cap')),
        )
