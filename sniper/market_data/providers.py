"""
Market Data Providers - Fournisseurs REST et RPC
================================================

Implémentations concrètes des fournisseurs interrogés par l'agrégateur:
- Jupiter: prix, volume, liste de tokens, quotes de swap
- Raydium: scan de la liste des pools (prix pondéré par la liquidité)
- Birdeye: API premium (clé requise), prix/volume/liquidité/métadonnées
- Solscan: holders et métadonnées
- OnChain: RPC Solana (âge du token, comptes)

Chaque réponse est une donnée optionnelle, jamais une vérité absolue:
une réponse vide est retournée comme None.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

from .base_provider import BaseProvider, PermanentProviderError, TransientProviderError
from .cache import CacheKind, MarketDataCache
from ..models.asset import AccountInfo, AssetQuote, PoolInfo, SwapQuote, TokenInfo
from ..utils.math_utils import safe_float


# =============================================================================
# JUPITER
# =============================================================================

class JupiterProvider(BaseProvider):
    """Agrégateur Jupiter: prix v4, stats de volume, quotes v6, liste de tokens"""

    name = "jupiter"

    quote_url = "https://quote-api.jup.ag/v6/quote"
    stats_url = "https://stats.jup.ag/api/token/{mint}"
    token_list_url = "https://token.jup.ag/all"

    def __init__(self, config, session=None, rate_limiter=None,
                 cache: Optional[MarketDataCache] = None):
        super().__init__(config, session, rate_limiter)
        self.cache = cache or MarketDataCache()
        self._token_list_lock = asyncio.Lock()

    async def fetch_price(self, address: str, max_age: Optional[float] = None) -> Optional[float]:
        data = await self._get("/v4/price", params={"ids": address})
        entry = (data or {}).get("data", {}).get(address) or {}
        price = safe_float(entry.get("price"))
        return price if price > 0 else None

    async def fetch_volume(self, address: str) -> Optional[float]:
        data = await self._request_json("GET", "", url=self.stats_url.format(mint=address))
        volume = safe_float((data or {}).get("volume24h"))
        return volume if volume > 0 else None

    async def fetch_metrics(self, address: str) -> Optional[AssetQuote]:
        price = await self.fetch_price(address)
        if not price:
            return None
        try:
            volume = await self.fetch_volume(address) or 0.0
        except PermanentProviderError:
            volume = 0.0
        return AssetQuote(address=address, price=price, volume_24h=volume)

    async def fetch_token_list(self, use_cache: bool = True) -> List[Dict[str, Any]]:
        """
        Liste complète des tokens Jupiter

        Args:
            use_cache: Réutiliser la liste en cache (TTL des pools)
        """
        async with self._token_list_lock:
            if use_cache:
                hit, tokens = self.cache.get(CacheKind.POOLS, "jupiter:tokens")
                if hit:
                    return tokens

            data = await self._request_json("GET", "", url=self.token_list_url)
            if not isinstance(data, list):
                raise PermanentProviderError(f"{self.name}: token list is not an array", self.name)

            tokens = [t for t in data if isinstance(t, dict) and t.get("address")]
            self.cache.set(CacheKind.POOLS, "jupiter:tokens", tokens)
            self.logger.debug(f"Fetched {len(tokens)} tokens from Jupiter list")
            return tokens

    async def fetch_token_info(self, address: str) -> Optional[TokenInfo]:
        for token in await self.fetch_token_list():
            if token.get("address") == address:
                return TokenInfo(
                    address=address,
                    symbol=token.get("symbol", ""),
                    name=token.get("name", ""),
                    decimals=int(token.get("decimals") or 0),
                    source=self.name,
                )
        return None

    async def fetch_quote(self, input_mint: str, output_mint: str, amount: int,
                          slippage_bps: int = 50) -> Optional[SwapQuote]:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(int(amount)),
            "slippageBps": str(slippage_bps),
        }
        try:
            data = await self._request_json("GET", "", params=params, url=self.quote_url)
        except PermanentProviderError as e:
            # 400/404: aucune route disponible pour cette paire
            if e.status in (400, 404):
                return None
            raise

        if not data or "outAmount" not in data:
            return None
        out_amount = int(safe_float(data.get("outAmount")))
        if out_amount <= 0:
            return None
        return SwapQuote(
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=int(safe_float(data.get("inAmount", amount))),
            out_amount=out_amount,
            price_impact_pct=safe_float(data.get("priceImpactPct")),
            slippage_bps=int(safe_float(data.get("slippageBps", slippage_bps))),
            raw=data,
        )


# =============================================================================
# RAYDIUM (scan de pools)
# =============================================================================

class RaydiumProvider(BaseProvider):
    """Scan de la liste des paires Raydium v2, mise en cache avec le TTL des pools"""

    name = "raydium"

    def __init__(self, config, session=None, rate_limiter=None,
                 cache: Optional[MarketDataCache] = None):
        super().__init__(config, session, rate_limiter)
        self.cache = cache or MarketDataCache()
        self._pools_lock = asyncio.Lock()

    def _headers(self) -> Dict[str, str]:
        return {"Accept": "application/json", "User-Agent": "Mozilla/5.0"}

    @staticmethod
    def _parse_pool(raw: Dict[str, Any]) -> Optional[PoolInfo]:
        liquidity = safe_float(raw.get("liquidity"))
        if not raw.get("baseMint") or liquidity <= 0:
            return None
        name = raw.get("name") or ""
        base_symbol, _, quote_symbol = name.partition("-")
        return PoolInfo(
            pool_id=raw.get("ammId", ""),
            base_mint=raw["baseMint"],
            quote_mint=raw.get("quoteMint", ""),
            base_symbol=raw.get("baseSymbol") or base_symbol,
            quote_symbol=raw.get("quoteSymbol") or quote_symbol,
            liquidity=liquidity,
            volume_24h=safe_float(raw.get("volume24h")),
            price=safe_float(raw.get("price")),
        )

    async def get_pools(self, max_age: Optional[float] = None) -> List[PoolInfo]:
        """Liste des pools (une seule requête concurrente, puis cache)"""
        async with self._pools_lock:
            hit, pools = self.cache.get(CacheKind.POOLS, "raydium:pairs", max_age)
            if hit:
                return pools

            data = await self._get("/v2/main/pairs")
            if not isinstance(data, list):
                raise PermanentProviderError(f"{self.name}: pair list is not an array", self.name)

            pools = [p for p in (self._parse_pool(raw) for raw in data if isinstance(raw, dict)) if p]
            self.cache.set(CacheKind.POOLS, "raydium:pairs", pools)
            self.logger.info(f"Fetched {len(pools)} pools from Raydium")
            return pools

    async def pools_for(self, address: str, max_age: Optional[float] = None) -> List[PoolInfo]:
        return [p for p in await self.get_pools(max_age) if address in (p.base_mint, p.quote_mint)]

    async def fetch_price(self, address: str, max_age: Optional[float] = None) -> Optional[float]:
        # Prix pondéré par la liquidité sur les pools où le token est la base;
        # la liste des pools est rechargée si elle est plus vieille que max_age
        pools = [p for p in await self.pools_for(address, max_age) if p.base_mint == address and p.price > 0]
        total_liquidity = sum(p.liquidity for p in pools)
        if total_liquidity <= 0:
            return None
        return sum(p.price * p.liquidity for p in pools) / total_liquidity

    async def fetch_liquidity(self, address: str) -> Optional[float]:
        liquidity = sum(p.liquidity for p in await self.pools_for(address))
        return liquidity if liquidity > 0 else None

    async def fetch_volume(self, address: str) -> Optional[float]:
        volume = sum(p.volume_24h for p in await self.pools_for(address))
        return volume if volume > 0 else None

    async def fetch_metrics(self, address: str) -> Optional[AssetQuote]:
        pools = await self.pools_for(address)
        if not pools:
            return None
        price = await self.fetch_price(address) or 0.0
        return AssetQuote(
            address=address,
            price=price,
            volume_24h=sum(p.volume_24h for p in pools),
            liquidity=sum(p.liquidity for p in pools),
        )

    async def fetch_token_info(self, address: str) -> Optional[TokenInfo]:
        for pool in await self.pools_for(address):
            symbol = pool.base_symbol if pool.base_mint == address else pool.quote_symbol
            if symbol:
                return TokenInfo(address=address, symbol=symbol, name=symbol, source=self.name)
        return None

    async def count_pools(self, address: str) -> int:
        return len(await self.pools_for(address))


# =============================================================================
# BIRDEYE (premium)
# =============================================================================

class BirdeyeProvider(BaseProvider):
    """API premium Birdeye, activée uniquement avec une clé"""

    name = "birdeye"

    @property
    def is_enabled(self) -> bool:
        return self.config.enabled and bool(self.config.api_key)

    def _headers(self) -> Dict[str, str]:
        return {"Accept": "application/json", "X-API-KEY": self.config.api_key or ""}

    async def _data(self, path: str, address: str) -> Optional[Dict[str, Any]]:
        payload = await self._get(path, params={"address": address})
        if not payload or not payload.get("success"):
            return None
        return payload.get("data") or None

    async def fetch_price(self, address: str, max_age: Optional[float] = None) -> Optional[float]:
        data = await self._data("/public/price", address)
        price = safe_float((data or {}).get("value"))
        return price if price > 0 else None

    async def fetch_volume(self, address: str) -> Optional[float]:
        data = await self._data("/public/token_volume", address)
        volume = safe_float((data or {}).get("volume24h"))
        return volume if volume > 0 else None

    async def fetch_liquidity(self, address: str) -> Optional[float]:
        data = await self._data("/public/token_list", address)
        if not data:
            return None
        tokens = data.get("tokens") if isinstance(data, dict) else None
        if tokens:
            entry = next((t for t in tokens if t.get("address") == address), tokens[0])
            liquidity = safe_float(entry.get("liquidity"))
        else:
            liquidity = safe_float(data.get("liquidity"))
        return liquidity if liquidity > 0 else None

    async def fetch_metrics(self, address: str) -> Optional[AssetQuote]:
        price_data, volume_data = await asyncio.gather(
            self._data("/public/price", address),
            self._data("/public/token_volume", address),
        )
        if not price_data:
            return None
        price = safe_float(price_data.get("value"))
        if price <= 0:
            return None
        return AssetQuote(
            address=address,
            price=price,
            volume_24h=safe_float((volume_data or {}).get("volume24h")),
            market_cap=safe_float(price_data.get("marketCap")),
            price_change_24h=safe_float(price_data.get("priceChange24h")),
        )

    async def fetch_token_info(self, address: str) -> Optional[TokenInfo]:
        data = await self._data("/public/token_metadata", address)
        if not data or not data.get("symbol"):
            return None
        return TokenInfo(
            address=address,
            symbol=data.get("symbol", ""),
            name=data.get("name", ""),
            decimals=int(safe_float(data.get("decimals"))),
            source=self.name,
        )


# =============================================================================
# SOLSCAN
# =============================================================================

class SolscanProvider(BaseProvider):
    """Solscan: nombre de holders et métadonnées"""

    name = "solscan"

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.api_key:
            headers["token"] = self.config.api_key
        return headers

    async def fetch_holders(self, address: str) -> Optional[int]:
        data = await self._get("/token/holders", params={"tokenAddress": address, "limit": 100})
        if not isinstance(data, dict) or "total" not in data:
            return None
        return int(safe_float(data.get("total")))

    async def fetch_token_info(self, address: str) -> Optional[TokenInfo]:
        data = await self._get("/token/meta", params={"tokenAddress": address})
        if not isinstance(data, dict) or not data.get("symbol"):
            return None
        return TokenInfo(
            address=address,
            symbol=data.get("symbol", ""),
            name=data.get("name", ""),
            decimals=int(safe_float(data.get("decimals"))),
            source=self.name,
        )


# =============================================================================
# ON-CHAIN (RPC Solana)
# =============================================================================

class OnChainProvider(BaseProvider):
    """RPC JSON Solana: âge des tokens et lecture de comptes"""

    name = "onchain"
    max_signatures = 1000

    def __init__(self, config, session=None, rate_limiter=None, clock=time.time):
        super().__init__(config, session, rate_limiter)
        self._clock = clock
        self._rpc_id = 0

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        self._rpc_id += 1
        body = {"jsonrpc": "2.0", "id": self._rpc_id, "method": method, "params": params}
        payload = await self._request_json("POST", "", json_body=body)
        if not isinstance(payload, dict):
            raise PermanentProviderError(f"{self.name}: malformed RPC response", self.name)
        if payload.get("error"):
            error = payload["error"]
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            # -32005: node behind / rate limited, -32603: internal error
            if code in (-32005, -32603, 429):
                raise TransientProviderError(f"{self.name}: RPC {code} {message}", self.name)
            raise PermanentProviderError(f"{self.name}: RPC {code} {message}", self.name)
        return payload.get("result")

    async def get_account_info(self, address: str) -> Optional[AccountInfo]:
        result = await self._rpc("getAccountInfo", [address, {"encoding": "base64"}])
        value = (result or {}).get("value")
        if not value:
            return None
        data = value.get("data") or []
        data_length = len(data[0]) * 3 // 4 if data and isinstance(data[0], str) else 0
        return AccountInfo(
            address=address,
            owner=value.get("owner", ""),
            lamports=int(value.get("lamports") or 0),
            executable=bool(value.get("executable")),
            data_length=data_length,
        )

    async def get_signatures(self, address: str, limit: int = 1000) -> List[Dict[str, Any]]:
        result = await self._rpc(
            "getSignaturesForAddress", [address, {"limit": limit, "commitment": "confirmed"}]
        )
        return result or []

    async def get_block_height(self) -> int:
        return int(await self._rpc("getBlockHeight", []) or 0)

    async def get_balance(self, address: str) -> float:
        result = await self._rpc("getBalance", [address])
        return int((result or {}).get("value") or 0) / 1e9

    async def fetch_token_age(self, address: str) -> Optional[float]:
        """Âge en jours de la plus ancienne signature connue du mint"""
        signatures = await self.get_signatures(address, self.max_signatures)
        block_times = [s.get("blockTime") for s in signatures if s.get("blockTime")]
        if not block_times:
            return None
        age_days = (self._clock() - min(block_times)) / 86400
        return max(age_days, 0.0) or None
