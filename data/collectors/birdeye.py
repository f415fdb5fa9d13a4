"""
Birdeye API Integration
Token overview: price, liquidity, volume and wallet activity
"""

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict

from data.collectors.base_collector import BaseCollector
from utils.constants import BIRDEYE_API_URL
from utils.helpers import to_float, to_int

logger = logging.getLogger(__name__)


class BirdeyeData(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: Optional[str] = None
    price: Optional[float] = None
    liquidity: Optional[float] = None
    volume_24h: Optional[float] = None
    buy_volume_24h: Optional[float] = None
    sell_volume_24h: Optional[float] = None
    price_change_24h: Optional[float] = None
    price_change_7d: Optional[float] = None
    market_cap: Optional[float] = None
    holders: Optional[int] = None
    supply: Optional[float] = None
    unique_wallets_24h: Optional[int] = None
    trades_24h: Optional[int] = None
    last_trade_unix_time: Optional[int] = None


class BirdeyeCollector(BaseCollector[BirdeyeData]):
    """Birdeye token overview collector"""

    name = "birdeye"
    base_url = BIRDEYE_API_URL

    def _headers(self):
        headers = super()._headers()
        headers['x-chain'] = 'solana'
        if self.api_key:
            headers['X-API-KEY'] = self.api_key
        return headers

    async def fetch(self, token_address: str) -> Optional[BirdeyeData]:
        data = await self._get_json("defi/token_overview", params={'address': token_address})
        if not data or not data.get('success', True):
            return None
        overview = data.get('data')
        if not overview:
            return None
        return self.parse(overview)

    @staticmethod
    def parse(overview: dict) -> BirdeyeData:
        return BirdeyeData(
            symbol=overview.get('symbol'),
            price=to_float(overview.get('price', overview.get('value'))),
            liquidity=to_float(overview.get('liquidity')),
            volume_24h=to_float(overview.get('v24hUSD')),
            buy_volume_24h=to_float(overview.get('vBuy24hUSD')),
            sell_volume_24h=to_float(overview.get('vSell24hUSD')),
            price_change_24h=to_float(overview.get('priceChange24hPercent')),
            price_change_7d=to_float(overview.get('priceChange7dPercent')),
            market_cap=to_float(overview.get('mc', overview.get('marketCap'))),
            holders=to_int(overview.get('holder')),
            supply=to_float(overview.get('supply')),
            unique_wallets_24h=to_int(overview.get('uniqueWallet24h')),
            trades_24h=to_int(overview.get('trade24h')),
            last_trade_unix_time=to_int(overview.get('lastTradeUnixTime')),
        )
