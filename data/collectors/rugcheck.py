"""
RugCheck.xyz API Integration
Rug-risk report for Solana mints
"""

import logging
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from data.collectors.base_collector import BaseCollector
from utils.constants import RUGCHECK_API_URL
from utils.helpers import to_float, to_int

logger = logging.getLogger(__name__)


class RugCheckRisk(BaseModel):
    """Individual risk detected by RugCheck"""
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    level: str = "info"  # "info", "warn", "danger"
    score: int = 0


class RugCheckData(BaseModel):
    """
    Summary of a RugCheck report.

    score: raw risk sum (higher is riskier, unbounded).
    score_normalised: risk on a 0-100 scale when the API provides it.
    """
    model_config = ConfigDict(frozen=True)

    score: Optional[int] = None
    score_normalised: Optional[int] = None
    risks: List[RugCheckRisk] = []
    rugged: Optional[bool] = None
    total_holders: Optional[int] = None
    total_market_liquidity: Optional[float] = None
    lp_locked_pct: Optional[float] = None
    mint_authority: Optional[str] = None
    freeze_authority: Optional[str] = None

    @property
    def danger_count(self) -> int:
        return sum(1 for r in self.risks if r.level == "danger")

    @property
    def warn_count(self) -> int:
        return sum(1 for r in self.risks if r.level == "warn")


class RugCheckCollector(BaseCollector[RugCheckData]):
    """RugCheck report collector"""

    name = "rugcheck"
    base_url = RUGCHECK_API_URL

    def _headers(self):
        headers = super()._headers()
        if self.api_key:
            headers['Authorization'] = f"Bearer {self.api_key}"
        return headers

    async def fetch(self, token_address: str) -> Optional[RugCheckData]:
        data = await self._get_json(f"tokens/{token_address}/report")
        if not data:
            return None
        return self.parse(data)

    @staticmethod
    def parse(data: dict) -> RugCheckData:
        risks = [
            RugCheckRisk(
                name=r.get('name', 'unknown'),
                description=r.get('description') or "",
                level=(r.get('level') or 'info').lower(),
                score=to_int(r.get('score')) or 0,
            )
            for r in data.get('risks') or []
            if isinstance(r, dict)
        ]

        lp_locked = None
        markets = data.get('markets') or []
        if markets:
            locked = [to_float((m.get('lp') or {}).get('lpLockedPct')) for m in markets]
            locked = [v for v in locked if v is not None]
            if locked:
                lp_locked = max(locked)

        return RugCheckData(
            score=to_int(data.get('score')),
            score_normalised=to_int(data.get('score_normalised')),
            risks=risks,
            rugged=data.get('rugged'),
            total_holders=to_int(data.get('totalHolders')),
            total_market_liquidity=to_float(data.get('totalMarketLiquidity')),
            lp_locked_pct=lp_locked,
            mint_authority=data.get('mintAuthority'),
            freeze_authority=data.get('freezeAuthority'),
        )
