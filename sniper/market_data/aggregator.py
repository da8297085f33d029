"""
Market Data Aggregator - Source de données unique et résiliente
===============================================================

Transforme plusieurs API amont, lentes et limitées en débit, en une source
de données unique avec cache TTL, fusion des requêtes concurrentes et
backoff. L'absence de donnée est un résultat normal (0 / None), jamais une
erreur.
"""

import asyncio
import dataclasses
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from .base_provider import (
    BaseProvider, MarketDataUnavailableError, PermanentProviderError,
    QueueSaturationError, RateLimitError, TransientProviderError,
)
from .cache import CacheKind, MarketDataCache
from .providers import (
    BirdeyeProvider, JupiterProvider, OnChainProvider, RaydiumProvider, SolscanProvider,
)
from .scoring import calculate_quick_score, calculate_token_score, check_token_validity
from ..models.asset import AssetQuote, SwapQuote, TokenInfo
from ..models.config import SniperConfig, ValidationConfig
from ..utils.async_utils import backoff_delays


ProviderCall = Callable[[BaseProvider], Awaitable[Any]]


class MarketDataAggregator:
    """
    Agrégateur de données de marché

    Responsabilités:
    - Interroger les fournisseurs dans un ordre de priorité fixe par type
    - Mettre en cache chaque résultat avec le TTL de son type
    - Fusionner les requêtes concurrentes sur une même clé
    - Retenter un fournisseur limité en débit avec backoff exponentiel
    - Calculer le filtre de validité et les scores des candidats
    """

    def __init__(self, providers: Dict[str, BaseProvider], cache: MarketDataCache,
                 provider_order: Dict[str, List[str]],
                 validation: Optional[ValidationConfig] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        """
        Initialise l'agrégateur

        Args:
            providers: Fournisseurs disponibles {nom: fournisseur}
            cache: Cache TTL partagé (possédé par l'agrégateur)
            provider_order: Ordre de priorité par type de donnée
            validation: Seuils du filtre de validité et poids des scores
            sleep: Fonction d'attente (injectable pour les tests)
        """
        self.providers = providers
        self.cache = cache
        self.provider_order = provider_order
        self.validation = validation or ValidationConfig()
        self.logger = logging.getLogger(__name__)
        self._sleep = sleep

        # État partagé entre tâches
        self._lock = asyncio.Lock()
        self._inflight: Dict[Tuple[CacheKind, str], asyncio.Future] = {}

        # Métriques
        self.upstream_calls = 0
        self.coalesced_calls = 0
        self.retries = 0
        self.fallthroughs = 0

    @classmethod
    def from_config(cls, config: SniperConfig, session=None) -> "MarketDataAggregator":
        """Construit l'agrégateur et ses fournisseurs depuis la configuration"""
        md = config.market_data
        cache = MarketDataCache(md.cache_ttl_seconds)
        providers_config = md.providers
        providers: Dict[str, BaseProvider] = {
            "jupiter": JupiterProvider(providers_config.jupiter, session, cache=cache),
            "raydium": RaydiumProvider(providers_config.raydium, session, cache=cache),
            "birdeye": BirdeyeProvider(providers_config.birdeye, session),
            "solscan": SolscanProvider(providers_config.solscan, session),
            "onchain": OnChainProvider(providers_config.onchain, session),
        }
        return cls(providers, cache, md.provider_order, config.validation)

    # =============================================================================
    # RESOLUTION
    # =============================================================================

    async def _resolve(self, kind: CacheKind, key: str, call: ProviderCall,
                       max_age: Optional[float] = None) -> Any:
        """Cache, puis requête en vol, puis fournisseurs"""
        hit, value = self.cache.get(kind, key, max_age)
        if hit:
            return value

        async with self._lock:
            hit, value = self.cache.get(kind, key, max_age)
            if hit:
                return value

            inflight_key = (kind, key)
            task = self._inflight.get(inflight_key)
            if task is None:
                task = asyncio.ensure_future(self._fetch_from_providers(kind, key, call))
                self._inflight[inflight_key] = task
                task.add_done_callback(lambda t, k=inflight_key: self._release(k, t))
                self.upstream_calls += 1
            else:
                self.coalesced_calls += 1

        return await asyncio.shield(task)

    def _release(self, key: Tuple[CacheKind, str], task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Marque l'exception comme récupérée si aucun appelant n'attend plus
            task.exception()

    async def _fetch_from_providers(self, kind: CacheKind, key: str, call: ProviderCall) -> Any:
        """Itère les fournisseurs par priorité jusqu'à obtenir une donnée"""
        consulted = 0
        transport_failures = 0

        for name in self.provider_order.get(kind.value, []):
            provider = self.providers.get(name)
            if provider is None or not provider.is_enabled:
                continue

            consulted += 1
            try:
                value = await self._call_with_retry(provider, call)
            except QueueSaturationError:
                raise
            except TransientProviderError as e:
                transport_failures += 1
                self.fallthroughs += 1
                self.logger.warning(f"{name} unavailable for {kind.value} {key}: {e}")
                continue
            except PermanentProviderError as e:
                self.fallthroughs += 1
                self.logger.debug(f"{name} failed for {kind.value} {key}: {e}")
                continue
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                self.fallthroughs += 1
                self.logger.debug(f"{name} returned unusable {kind.value} data for {key}: {e}")
                continue

            if value is not None:
                self.cache.set(kind, key, value)
                return value

        if consulted and transport_failures == consulted:
            raise MarketDataUnavailableError(
                f"All {consulted} provider(s) failed for {kind.value} {key}"
            )
        return None

    async def _call_with_retry(self, provider: BaseProvider, call: ProviderCall) -> Any:
        """Appelle un fournisseur; 429 et erreurs transitoires sont retentés avec backoff"""
        config = provider.config
        delays = backoff_delays(
            max(provider.min_interval, 0.1), config.backoff_multiplier, config.max_backoff_seconds
        )
        rate_limit_retries = 0
        transient_retries = 0

        while True:
            try:
                return await call(provider)
            except RateLimitError:
                if rate_limit_retries >= config.max_rate_limit_retries:
                    raise
                rate_limit_retries += 1
                reason = f"rate limited ({rate_limit_retries}/{config.max_rate_limit_retries})"
            except TransientProviderError:
                if transient_retries >= config.transient_retries:
                    raise
                transient_retries += 1
                reason = f"transient error ({transient_retries}/{config.transient_retries})"

            delay = next(delays)
            self.retries += 1
            self.logger.info(f"🔄 {provider.name} {reason}, retrying in {delay:.1f}s")
            await self._sleep(delay)

    # =============================================================================
    # PUBLIC API
    # =============================================================================

    async def get_price(self, address: str, max_age: Optional[float] = None) -> float:
        """
        Prix d'un token

        Args:
            address: Adresse du token
            max_age: Âge maximum accepté pour une valeur en cache

        Returns:
            float: Prix, 0.0 si aucun fournisseur n'a de donnée
        """
        value = await self._resolve(
            CacheKind.PRICE, address, lambda p: p.fetch_price(address, max_age=max_age), max_age
        )
        return value or 0.0

    async def get_liquidity(self, address: str, max_age: Optional[float] = None) -> float:
        value = await self._resolve(
            CacheKind.LIQUIDITY, address, lambda p: p.fetch_liquidity(address), max_age
        )
        return value or 0.0

    async def get_volume(self, address: str) -> float:
        value = await self._resolve(CacheKind.VOLUME, address, lambda p: p.fetch_volume(address))
        return value or 0.0

    async def get_token_info(self, address: str) -> Optional[TokenInfo]:
        return await self._resolve(
            CacheKind.TOKEN_INFO, address, lambda p: p.fetch_token_info(address)
        )

    async def get_token_age(self, address: str) -> float:
        """Âge en jours, 0.0 si indéterminable"""
        value = await self._resolve(CacheKind.AGE, address, lambda p: p.fetch_token_age(address))
        return value or 0.0

    async def get_token_holders(self, address: str) -> int:
        value = await self._resolve(CacheKind.HOLDERS, address, lambda p: p.fetch_holders(address))
        return value or 0

    async def get_quote(self, from_asset: str, to_asset: str, amount: int) -> Optional[SwapQuote]:
        """
        Quote de swap

        Args:
            from_asset: Mint d'entrée
            to_asset: Mint de sortie
            amount: Montant en unités de base du mint d'entrée

        Returns:
            SwapQuote ou None si aucune route
        """
        key = f"{from_asset}:{to_asset}:{int(amount)}"
        return await self._resolve(
            CacheKind.QUOTE, key, lambda p: p.fetch_quote(from_asset, to_asset, int(amount))
        )

    async def get_metrics(self, address: str) -> AssetQuote:
        """
        Métriques agrégées, complétées par les lectures de liquidité et d'âge

        Returns:
            AssetQuote: vide (valeurs à 0) si aucune donnée
        """
        quote = await self._resolve(
            CacheKind.METRICS, address, lambda p: p.fetch_metrics(address)
        )
        quote = dataclasses.replace(quote) if quote is not None else AssetQuote(address=address)

        try:
            if quote.liquidity <= 0:
                quote.liquidity = await self.get_liquidity(address)
            if quote.age_days <= 0:
                quote.age_days = await self.get_token_age(address)
        except MarketDataUnavailableError as e:
            self.logger.debug(f"Partial metrics for {address}: {e}")

        return quote

    async def get_pool_count(self, address: str) -> int:
        raydium = self.providers.get("raydium")
        if not isinstance(raydium, RaydiumProvider) or not raydium.is_enabled:
            return 0
        try:
            return await raydium.count_pools(address)
        except (TransientProviderError, PermanentProviderError) as e:
            self.logger.debug(f"Pool count unavailable for {address}: {e}")
            return 0

    # =============================================================================
    # VALIDATION & SCORING
    # =============================================================================

    def check_token(self, token_info: Optional[TokenInfo], quote: AssetQuote) -> Tuple[bool, str]:
        v = self.validation
        return check_token_validity(
            token_info, quote,
            max_liquidity=v.max_liquidity,
            max_price=v.max_price,
            max_volume_liquidity_ratio=v.max_volume_liquidity_ratio,
            max_age_days=v.max_age_days,
            blocklist=v.blocklist,
        )

    async def is_valid_token(self, address: str) -> bool:
        """Filtre de validité complet sur un token"""
        token_info = await self.get_token_info(address)
        quote = await self.get_metrics(address)
        is_valid, reason = self.check_token(token_info, quote)
        if not is_valid:
            self.logger.info(f"Token {address} rejected: {reason}")
        return is_valid

    def calculate_token_score(self, quote: AssetQuote, holder_count: int) -> float:
        return calculate_token_score(
            quote.liquidity, quote.volume_24h, quote.price_change_24h,
            holder_count, quote.age_days, self.validation.score_weights,
        )

    def calculate_quick_score(self, liquidity: float, volume_24h: float, price: float,
                              pool_count: int) -> float:
        return calculate_quick_score(
            liquidity, volume_24h, price, pool_count, self.validation.quick_score_weights
        )

    async def rank_candidates(self, addresses: Iterable[str], limit: Optional[int] = None,
                              concurrency: int = 5) -> List[Tuple[str, float]]:
        """
        Classe des candidats par score de validité décroissant

        Les candidats rejetés par le filtre de validité sont exclus.
        """
        semaphore = asyncio.Semaphore(concurrency)

        async def score(address: str) -> Optional[Tuple[str, float]]:
            async with semaphore:
                try:
                    token_info = await self.get_token_info(address)
                    quote = await self.get_metrics(address)
                    is_valid, reason = self.check_token(token_info, quote)
                    if not is_valid:
                        self.logger.debug(f"Candidate {address} skipped: {reason}")
                        return None
                    holders = await self.get_token_holders(address)
                    return address, self.calculate_token_score(quote, holders)
                except (MarketDataUnavailableError, QueueSaturationError) as e:
                    self.logger.warning(f"Could not score {address}: {e}")
                    return None

        results = await asyncio.gather(*(score(a) for a in dict.fromkeys(addresses)))
        ranked = sorted((r for r in results if r), key=lambda r: r[1], reverse=True)
        return ranked[:limit] if limit else ranked

    # =============================================================================
    # LIFECYCLE & STATS
    # =============================================================================

    async def close(self) -> None:
        for provider in self.providers.values():
            await provider.close()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "upstream_calls": self.upstream_calls,
            "coalesced_calls": self.coalesced_calls,
            "retries": self.retries,
            "fallthroughs": self.fallthroughs,
            "inflight": len(self._inflight),
            "cache": self.cache.get_stats(),
            "providers": {name: p.get_stats() for name, p in self.providers.items()},
        }
