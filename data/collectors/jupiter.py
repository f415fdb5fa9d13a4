"""
Jupiter API Integration
Route availability and price impact for round-trip swaps against SOL
"""

import logging
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from data.collectors.base_collector import BaseCollector
from utils.constants import JUPITER_API_URL, LAMPORTS_PER_SOL, WSOL_MINT
from utils.helpers import to_float, to_int

logger = logging.getLogger(__name__)

NO_ROUTE_STATUSES = (400, 404)


class JupiterRouteData(BaseModel):
    """
    Result of a 1 SOL buy quote followed by a sell quote of the bought amount.

    can_sell is None when it could not be checked: no buy route, or a buy
    quote without an output amount to sell back.
    """
    model_config = ConfigDict(frozen=True)

    price_usd: Optional[float] = None
    has_route: bool = False
    can_sell: Optional[bool] = None
    route_count: int = 0
    dex_labels: List[str] = []
    buy_price_impact_pct: Optional[float] = None
    sell_price_impact_pct: Optional[float] = None
    round_trip_loss_pct: Optional[float] = None


class JupiterCollector(BaseCollector[JupiterRouteData]):
    """Jupiter quote and price collector"""

    name = "jupiter"
    base_url = JUPITER_API_URL

    def __init__(self, *args, quote_amount_sol: float = 1.0, **kwargs):
        super().__init__(*args, **kwargs)
        self.quote_amount_lamports = int(quote_amount_sol * LAMPORTS_PER_SOL)

    async def fetch(self, token_address: str) -> Optional[JupiterRouteData]:
        price_usd = await self._fetch_price(token_address)

        buy = await self._get_json(
            "swap/v1/quote",
            params={
                'inputMint': WSOL_MINT,
                'outputMint': token_address,
                'amount': str(self.quote_amount_lamports),
                'slippageBps': '500',
            },
            empty_statuses=NO_ROUTE_STATUSES,
        )
        if not buy or not buy.get('routePlan'):
            if price_usd is None:
                return None
            return JupiterRouteData(price_usd=price_usd, has_route=False)

        sell = None
        out_amount = to_int(buy.get('outAmount'))
        if out_amount:
            sell = await self._get_json(
                "swap/v1/quote",
                params={
                    'inputMint': token_address,
                    'outputMint': WSOL_MINT,
                    'amount': str(out_amount),
                    'slippageBps': '500',
                },
                empty_statuses=NO_ROUTE_STATUSES,
            ) or {}

        return self.parse_quotes(buy, sell, price_usd, self.quote_amount_lamports)

    async def _fetch_price(self, token_address: str) -> Optional[float]:
        data = await self._get_json("price/v2", params={'ids': token_address})
        if not data:
            return None
        entry = (data.get('data') or {}).get(token_address) or {}
        return to_float(entry.get('price'))

    @staticmethod
    def parse_quotes(buy: dict, sell: Optional[dict], price_usd: Optional[float],
                     amount_in_lamports: int) -> JupiterRouteData:
        route_plan = buy.get('routePlan') or []
        labels = sorted({
            (step.get('swapInfo') or {}).get('label') or 'Unknown'
            for step in route_plan
        })

        can_sell = None if sell is None else bool(sell.get('routePlan'))
        round_trip_loss = None
        sell_impact = None
        if can_sell:
            sell_impact = _impact_pct(sell.get('priceImpactPct'))
            sol_back = to_int(sell.get('outAmount'))
            if sol_back is not None and amount_in_lamports:
                round_trip_loss = max(0.0, (1 - sol_back / amount_in_lamports) * 100)

        return JupiterRouteData(
            price_usd=price_usd,
            has_route=True,
            can_sell=can_sell,
            route_count=len(route_plan),
            dex_labels=labels,
            buy_price_impact_pct=_impact_pct(buy.get('priceImpactPct')),
            sell_price_impact_pct=sell_impact,
            round_trip_loss_pct=round_trip_loss,
        )


def _impact_pct(value) -> Optional[float]:
    # Jupiter reports price impact as a fraction string ("0.0123" == 1.23%)
    impact = to_float(value)
    return impact * 100 if impact is not None else None
