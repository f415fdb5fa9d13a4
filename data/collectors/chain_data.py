"""
On-chain Data Collector for Solana
Mint authorities, holder distribution, liquidity pools and recent trades via JSON-RPC
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import aiohttp
import orjson
from pydantic import BaseModel, ConfigDict

from analysis.models import HolderAccount, PoolInfo, TokenMetadata, TokenTransaction
from utils.constants import LAMPORTS_PER_SOL, RAYDIUM_API_URL, RUGCHECK_API_URL, WSOL_MINT
from utils.errors import RPCError
from utils.helpers import to_float, to_int

logger = logging.getLogger(__name__)


class MintInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    mint_authority: Optional[str] = None
    freeze_authority: Optional[str] = None
    supply: Optional[float] = None          # UI units
    decimals: Optional[int] = None


class HolderSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    supply: Optional[float] = None
    total_holders: Optional[int] = None
    holders: List[HolderAccount] = []
    creator: Optional[str] = None
    launch_slot: Optional[int] = None


class ChainDataClient(Protocol):
    """What the security analyzer needs from the chain"""

    async def get_authorities(self, token_address: str) -> MintInfo: ...

    async def get_holder_distribution(self, token_address: str,
                                      mint_info: Optional[MintInfo] = None) -> HolderSnapshot: ...

    async def get_liquidity_pools(self, token_address: str) -> List[PoolInfo]: ...

    async def get_recent_transactions(self, token_address: str) -> List[TokenTransaction]: ...

    async def get_token_metadata(self, token_address: str,
                                 mint_info: Optional[MintInfo] = None) -> TokenMetadata: ...


class SolanaChainClient:
    """
    Solana JSON-RPC client.

    Uses plain RPC for everything that RPC can answer, the Raydium v3 API
    for pool reserves and LP burn status, the RugCheck report for LP lock
    status, and Helius DAS (when an API key is configured) for token metadata.
    """

    LAUNCH_SCAN_PAGES = 3
    SIGNATURE_PAGE = 1000
    LP_LOCKED_MIN_PCT = 50.0

    def __init__(self, rpc_url: str, helius_api_key: str = "", request_timeout: float = 8.0,
                 holder_sample_size: int = 20, transaction_sample_size: int = 100,
                 max_concurrent: int = 8, session: Optional[aiohttp.ClientSession] = None):
        self.rpc_url = rpc_url
        self.helius_api_key = helius_api_key
        self.request_timeout = request_timeout
        self.holder_sample_size = holder_sample_size
        self.transaction_sample_size = transaction_sample_size
        self.session = session
        self._owns_session = session is None
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._request_id = 0

        self.stats = {
            'rpc_calls': 0,
            'rpc_errors': 0,
        }

    @property
    def das_url(self) -> Optional[str]:
        if not self.helius_api_key:
            return None
        return f"https://mainnet.helius-rpc.com/?api-key={self.helius_api_key}"

    async def initialize(self):
        if not self.session:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout)
            )
            self._owns_session = True

    async def close(self):
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _rpc(self, method: str, params: Any, url: Optional[str] = None) -> Any:
        if not self.session:
            await self.initialize()

        self._request_id += 1
        payload = {'jsonrpc': '2.0', 'id': self._request_id, 'method': method, 'params': params}
        self.stats['rpc_calls'] += 1

        try:
            async with self._semaphore:
                async with self.session.post(url or self.rpc_url, data=orjson.dumps(payload),
                                             headers={'Content-Type': 'application/json'}) as response:
                    if response.status != 200:
                        raise RPCError(f"{method}: HTTP {response.status}")
                    body = await response.json(content_type=None, loads=orjson.loads)
        except asyncio.TimeoutError as e:
            self.stats['rpc_errors'] += 1
            raise RPCError(f"{method}: timeout") from e
        except aiohttp.ClientError as e:
            self.stats['rpc_errors'] += 1
            raise RPCError(f"{method}: {type(e).__name__}: {e}") from e
        except ValueError as e:
            self.stats['rpc_errors'] += 1
            raise RPCError(f"{method}: invalid JSON: {e}") from e

        if body.get('error'):
            self.stats['rpc_errors'] += 1
            error = body['error']
            raise RPCError(f"{method}: {error.get('code')} {error.get('message')}")
        return body.get('result')

    async def _http_get(self, url: str, params: Dict[str, Any]) -> Any:
        if not self.session:
            await self.initialize()
        try:
            async with self.session.get(url, params=params) as response:
                if response.status != 200:
                    raise RPCError(f"GET {url}: HTTP {response.status}")
                return await response.json(content_type=None, loads=orjson.loads)
        except asyncio.TimeoutError as e:
            raise RPCError(f"GET {url}: timeout") from e
        except aiohttp.ClientError as e:
            raise RPCError(f"GET {url}: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise RPCError(f"GET {url}: invalid JSON: {e}") from e

    # ------------------------------------------------------------------
    # Authorities
    # ------------------------------------------------------------------

    async def get_authorities(self, token_address: str) -> MintInfo:
        result = await self._rpc('getAccountInfo', [token_address, {'encoding': 'jsonParsed'}])
        value = (result or {}).get('value')
        if not value:
            raise RPCError(f"Mint account {token_address} not found")

        parsed = (value.get('data') or {}).get('parsed') or {}
        if parsed.get('type') != 'mint':
            raise RPCError(f"{token_address} is not an SPL mint")

        info = parsed.get('info') or {}
        decimals = to_int(info.get('decimals'))
        raw_supply = to_float(info.get('supply'))
        supply = raw_supply / (10 ** decimals) if raw_supply is not None and decimals is not None else None

        return MintInfo(
            mint_authority=info.get('mintAuthority'),
            freeze_authority=info.get('freezeAuthority'),
            supply=supply,
            decimals=decimals,
        )

    # ------------------------------------------------------------------
    # Holders
    # ------------------------------------------------------------------

    async def get_holder_distribution(self, token_address: str,
                                      mint_info: Optional[MintInfo] = None) -> HolderSnapshot:
        """Top holders with wallet profiles; pass mint_info to skip a second account lookup"""
        if mint_info is None:
            mint_info, largest, launch = await asyncio.gather(
                self.get_authorities(token_address),
                self._rpc('getTokenLargestAccounts', [token_address]),
                self._find_launch(token_address),
            )
        else:
            largest, launch = await asyncio.gather(
                self._rpc('getTokenLargestAccounts', [token_address]),
                self._find_launch(token_address),
            )

        accounts = ((largest or {}).get('value') or [])[: self.holder_sample_size]
        if not accounts:
            return HolderSnapshot(supply=mint_info.supply, launch_slot=launch.get('slot'),
                                  creator=launch.get('creator'))

        owners = await self._resolve_owners([a['address'] for a in accounts])
        pool_owners = await self._pool_authorities(token_address)
        scans: Dict[str, asyncio.Task] = {}

        def signatures(address: str) -> asyncio.Task:
            # one scan per distinct address, shared by wallet profile and first slot
            if address not in scans:
                scans[address] = asyncio.ensure_future(self._rpc(
                    'getSignaturesForAddress', [address, {'limit': self.SIGNATURE_PAGE}]
                ))
            return scans[address]

        async def enrich(account: Dict[str, Any]) -> HolderAccount:
            address = account['address']
            owner = owners.get(address, address)
            amount = to_float(account.get('uiAmount')) or 0.0
            percent = (amount / mint_info.supply * 100) if mint_info.supply else 0.0
            holder = HolderAccount(
                owner=owner,
                token_account=address,
                amount=amount,
                percent=percent,
                is_pool=owner in pool_owners,
            )
            if holder.is_pool:
                # pool vaults are excluded from every wallet analysis
                return holder

            age_days, tx_count = self._wallet_profile(await signatures(owner))
            first_slot = self._first_slot(await signatures(address))
            return holder.model_copy(update={
                'first_acquired_slot': first_slot,
                'wallet_age_days': age_days,
                'tx_count': tx_count,
            })

        try:
            holders = await asyncio.gather(*(enrich(a) for a in accounts))
        finally:
            for task in scans.values():
                if not task.done():
                    task.cancel()
        return HolderSnapshot(
            supply=mint_info.supply,
            holders=list(holders),
            creator=launch.get('creator'),
            launch_slot=launch.get('slot'),
        )

    async def _resolve_owners(self, token_accounts: List[str]) -> Dict[str, str]:
        result = await self._rpc('getMultipleAccounts', [token_accounts, {'encoding': 'jsonParsed'}])
        owners = {}
        for address, value in zip(token_accounts, (result or {}).get('value') or []):
            info = (((value or {}).get('data') or {}).get('parsed') or {}).get('info') or {}
            if info.get('owner'):
                owners[address] = info['owner']
        return owners

    async def _pool_authorities(self, token_address: str) -> set:
        try:
            pools = await self._raydium_pools(token_address)
        except RPCError as e:
            logger.debug(f"Pool authority lookup failed for {token_address}: {e}")
            return set()
        return {p.get('authority') for p in pools if p.get('authority')} | {p.get('id') for p in pools}

    @staticmethod
    def _wallet_profile(sigs: Optional[List[Dict[str, Any]]]):
        """(age in days of the oldest of the last page of signatures, signature count)"""
        if not sigs:
            return None, 0
        oldest = sigs[-1].get('blockTime')
        age = None
        if oldest:
            age = (datetime.now(timezone.utc).timestamp() - oldest) / 86400
        return age, len(sigs)

    @classmethod
    def _first_slot(cls, sigs: Optional[List[Dict[str, Any]]]) -> Optional[int]:
        if not sigs or len(sigs) >= cls.SIGNATURE_PAGE:
            # history deeper than one page, first acquisition unknown
            return None
        return to_int(sigs[-1].get('slot'))

    async def _find_launch(self, token_address: str) -> Dict[str, Any]:
        """Walk mint signatures back to the oldest one, resolving the fee payer as creator"""
        before = None
        oldest = None
        for _ in range(self.LAUNCH_SCAN_PAGES):
            options = {'limit': self.SIGNATURE_PAGE}
            if before:
                options['before'] = before
            sigs = await self._rpc('getSignaturesForAddress', [token_address, options])
            if not sigs:
                break
            oldest = sigs[-1]
            if len(sigs) < self.SIGNATURE_PAGE:
                break
            before = oldest['signature']
        else:
            # not the real genesis transaction
            return {}

        if not oldest:
            return {}

        creator = None
        tx = await self._rpc('getTransaction', [oldest['signature'], {
            'encoding': 'jsonParsed', 'maxSupportedTransactionVersion': 0,
        }])
        keys = (((tx or {}).get('transaction') or {}).get('message') or {}).get('accountKeys') or []
        if keys:
            first = keys[0]
            creator = first.get('pubkey') if isinstance(first, dict) else first

        return {'slot': to_int(oldest.get('slot')), 'creator': creator}

    # ------------------------------------------------------------------
    # Liquidity
    # ------------------------------------------------------------------

    async def _raydium_pools(self, token_address: str) -> List[Dict[str, Any]]:
        data = await self._http_get(f"{RAYDIUM_API_URL}/pools/info/mint", {
            'mint1': token_address,
            'mint2': WSOL_MINT,
            'poolType': 'all',
            'poolSortField': 'liquidity',
            'sortType': 'desc',
            'pageSize': 5,
            'page': 1,
        })
        return ((data or {}).get('data') or {}).get('data') or []

    async def _lp_locks(self, token_address: str):
        """
        LP lock percentages from the RugCheck report.

        Returns (percent per market address, highest percent, latest locker
        unlock time). An unavailable report yields no locks.
        """
        try:
            report = await self._http_get(f"{RUGCHECK_API_URL}/tokens/{token_address}/report", {})
        except RPCError as e:
            logger.debug(f"LP lock lookup failed for {token_address}: {e}")
            return {}, None, None

        per_market = {}
        for market in (report or {}).get('markets') or []:
            pct = to_float((market.get('lp') or {}).get('lpLockedPct'))
            if pct is not None and market.get('pubkey'):
                per_market[market['pubkey']] = pct
        highest = max(per_market.values()) if per_market else None

        unlocks = [to_int(locker.get('unlockDate'))
                   for locker in ((report or {}).get('lockers') or {}).values()
                   if isinstance(locker, dict)]
        unlocks = [u for u in unlocks if u]
        lock_end = datetime.fromtimestamp(max(unlocks), tz=timezone.utc) if unlocks else None
        return per_market, highest, lock_end

    async def get_liquidity_pools(self, token_address: str) -> List[PoolInfo]:
        raw_pools, (locks, highest_lock, lock_end) = await asyncio.gather(
            self._raydium_pools(token_address),
            self._lp_locks(token_address),
        )

        pools = []
        for raw in raw_pools:
            address = raw.get('id', '')
            mint_a = (raw.get('mintA') or {}).get('address')
            amount_a = to_float(raw.get('mintAmountA')) or 0.0
            amount_b = to_float(raw.get('mintAmountB')) or 0.0
            sol_reserve, token_reserve = (amount_a, amount_b) if mint_a == WSOL_MINT else (amount_b, amount_a)
            locked_pct = locks.get(address, highest_lock)
            lp_locked = locked_pct is not None and locked_pct >= self.LP_LOCKED_MIN_PCT

            pools.append(PoolInfo(
                address=address,
                dex=f"raydium-{(raw.get('type') or 'amm').lower()}",
                sol_reserve=sol_reserve,
                token_reserve=token_reserve,
                liquidity_usd=to_float(raw.get('tvl')),
                lp_burned_percent=to_float(raw.get('burnPercent')) or 0.0,
                lp_locked=lp_locked,
                lock_end=lock_end if lp_locked else None,
            ))
        return pools

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def get_recent_transactions(self, token_address: str) -> List[TokenTransaction]:
        sigs = await self._rpc('getSignaturesForAddress', [
            token_address, {'limit': self.transaction_sample_size}
        ])
        signatures = [s for s in sigs or [] if not s.get('err')]

        async def load(sig: Dict[str, Any]):
            tx = await self._rpc('getTransaction', [sig['signature'], {
                'encoding': 'jsonParsed', 'maxSupportedTransactionVersion': 0,
            }])
            return self.parse_transaction(token_address, sig['signature'], tx)

        parsed = await asyncio.gather(*(load(s) for s in signatures))
        return [tx for tx in parsed if tx is not None]

    @staticmethod
    def parse_transaction(token_address: str, signature: str, tx: Optional[Dict[str, Any]]) -> Optional[TokenTransaction]:
        """Classify a transaction as a buy or sell by the signer's token balance delta"""
        if not tx:
            return None
        meta = tx.get('meta') or {}
        message = (tx.get('transaction') or {}).get('message') or {}
        keys = message.get('accountKeys') or []
        if not keys:
            return None
        signer = keys[0].get('pubkey') if isinstance(keys[0], dict) else keys[0]

        deltas: Dict[str, float] = defaultdict(float)
        for balance in meta.get('preTokenBalances') or []:
            if balance.get('mint') == token_address:
                deltas[balance.get('owner')] -= to_float((balance.get('uiTokenAmount') or {}).get('uiAmount')) or 0.0
        for balance in meta.get('postTokenBalances') or []:
            if balance.get('mint') == token_address:
                deltas[balance.get('owner')] += to_float((balance.get('uiTokenAmount') or {}).get('uiAmount')) or 0.0

        change = deltas.get(signer, 0.0)
        if change == 0:
            return None

        sol_amount = None
        pre, post = meta.get('preBalances') or [], meta.get('postBalances') or []
        if pre and post:
            sol_amount = abs(post[0] - pre[0]) / LAMPORTS_PER_SOL

        return TokenTransaction(
            signature=signature,
            slot=to_int(tx.get('slot')) or 0,
            block_time=to_int(tx.get('blockTime')),
            wallet=signer,
            side='buy' if change > 0 else 'sell',
            token_amount=abs(change),
            sol_amount=sol_amount,
        )

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def get_token_metadata(self, token_address: str,
                                 mint_info: Optional[MintInfo] = None) -> TokenMetadata:
        if mint_info is None:
            mint_info = await self.get_authorities(token_address)
        if not self.das_url:
            return TokenMetadata(supply=mint_info.supply, decimals=mint_info.decimals)

        asset = await self._rpc('getAsset', {'id': token_address}, url=self.das_url)
        content = (asset or {}).get('content') or {}
        metadata = content.get('metadata') or {}
        links = content.get('links') or {}

        return TokenMetadata(
            name=metadata.get('name') or "UNKNOWN",
            symbol=metadata.get('symbol') or "UNKNOWN",
            supply=mint_info.supply,
            decimals=mint_info.decimals,
            verified=bool((asset or {}).get('creators') and any(
                c.get('verified') for c in asset['creators']
            )),
            has_website=bool(links.get('external_url')),
            has_socials=bool(links.get('twitter') or links.get('telegram')),
            description=metadata.get('description'),
        )
