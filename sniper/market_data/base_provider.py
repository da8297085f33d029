"""
Base Provider - Interface commune des fournisseurs de données
=============================================================

Classe de base des fournisseurs REST (agrégateurs de prix, scan de pools,
API premium, RPC on-chain). Elle porte la session aiohttp, le limiteur de
débit et la traduction des réponses HTTP en erreurs typées.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp


class ProviderError(Exception):
    """Exception de base pour les erreurs de fournisseur"""

    def __init__(self, message: str, provider: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status = status


class TransientProviderError(ProviderError):
    """Erreur temporaire (timeout, 5xx, connexion) : peut être retentée"""
    pass


class RateLimitError(TransientProviderError):
    """Limite de taux atteinte (HTTP 429)"""
    pass


class PermanentProviderError(ProviderError):
    """Erreur définitive (4xx hors 429, réponse malformée) : pas de retry"""
    pass


class QueueSaturationError(Exception):
    """File d'attente du limiteur pleine : l'appelant doit dégrader"""
    pass


class MarketDataUnavailableError(Exception):
    """Tous les fournisseurs consultés ont échoué sur une erreur de transport"""
    pass


class BaseProvider:
    """
    Fournisseur de données de marché

    Les sous-classes implémentent un sous-ensemble des méthodes fetch_*.
    Une méthode non supportée retourne None (absence de donnée).
    """

    name = "base"
    user_agent = "pump-sniper/1.0"

    def __init__(self, config, session: Optional[aiohttp.ClientSession] = None,
                 rate_limiter=None):
        """
        Initialise le fournisseur

        Args:
            config: ProviderConfig du fournisseur
            session: Session aiohttp partagée (créée à la demande sinon)
            rate_limiter: Limiteur de débit (créé depuis la config sinon)
        """
        from .rate_limiter import RateLimiter

        self.config = config
        self.base_url = config.base_url
        self.logger = logging.getLogger(f"{__name__}.{self.name}")
        self._session = session
        self._owns_session = session is None
        self.rate_limiter = rate_limiter or RateLimiter(
            self.name,
            min_interval=config.min_interval_seconds,
            max_requests=config.max_requests_per_window,
            window_seconds=config.window_seconds,
            max_queue_size=config.max_queue_size,
        )

        # Status tracking
        self.request_count = 0
        self.error_count = 0
        self.last_error: Optional[str] = None

    @property
    def min_interval(self) -> float:
        return self.config.min_interval_seconds

    @property
    def is_enabled(self) -> bool:
        return self.config.enabled

    # =============================================================================
    # HTTP
    # =============================================================================

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": self.user_agent})
            self._owns_session = True
        return self._session

    def _headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    async def _request_json(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                            json_body: Any = None, url: Optional[str] = None) -> Any:
        """
        Exécute une requête HTTP limitée en débit et décode le JSON

        Raises:
            RateLimitError: HTTP 429
            TransientProviderError: timeout, erreur réseau, 5xx
            PermanentProviderError: autre 4xx, JSON invalide
            QueueSaturationError: file du limiteur pleine
        """
        await self.rate_limiter.acquire()

        session = await self._get_session()
        target = url or f"{self.base_url}{path}"
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
        self.request_count += 1

        try:
            async with session.request(method, target, params=params, json=json_body,
                                       headers=self._headers(), timeout=timeout) as response:
                if response.status == 429:
                    raise RateLimitError(f"{self.name}: rate limited", self.name, 429)
                if response.status >= 500:
                    raise TransientProviderError(
                        f"{self.name}: HTTP {response.status}", self.name, response.status
                    )
                if response.status >= 400:
                    raise PermanentProviderError(
                        f"{self.name}: HTTP {response.status}", self.name, response.status
                    )
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise PermanentProviderError(
                        f"{self.name}: malformed payload ({e})", self.name, response.status
                    ) from e

        except ProviderError as e:
            self.error_count += 1
            self.last_error = str(e)
            raise
        except asyncio.TimeoutError as e:
            self.error_count += 1
            self.last_error = "timeout"
            raise TransientProviderError(f"{self.name}: request timed out", self.name) from e
        except aiohttp.ClientError as e:
            self.error_count += 1
            self.last_error = str(e)
            raise TransientProviderError(f"{self.name}: {e}", self.name) from e

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request_json("GET", path, params=params)

    async def _post(self, path: str, json_body: Any) -> Any:
        return await self._request_json("POST", path, json_body=json_body)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    # =============================================================================
    # DATA (overridden by subclasses)
    # =============================================================================

    async def fetch_price(self, address: str, max_age: Optional[float] = None) -> Optional[float]:
        """max_age bounds any provider-side snapshot the price is derived from"""
        return None

    async def fetch_liquidity(self, address: str) -> Optional[float]:
        return None

    async def fetch_volume(self, address: str) -> Optional[float]:
        return None

    async def fetch_metrics(self, address: str):
        return None

    async def fetch_token_info(self, address: str):
        return None

    async def fetch_token_age(self, address: str) -> Optional[float]:
        return None

    async def fetch_holders(self, address: str) -> Optional[int]:
        return None

    async def fetch_quote(self, input_mint: str, output_mint: str, amount: int):
        return None

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.is_enabled,
            "requests": self.request_count,
            "errors": self.error_count,
            "last_error": self.last_error,
            "rate_limiter": self.rate_limiter.get_stats(),
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name}, base_url={self.base_url})"
