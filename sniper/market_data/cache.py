"""
Market Data Cache - Cache TTL par type de donnée
================================================

Objet possédé par l'agrégateur (injecté à la construction). Chaque type de
donnée a son propre TTL; une entrée n'est jamais retournée une fois
now - fetched_at > TTL(kind).
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, Optional, Tuple, TypeVar


T = TypeVar("T")


class CacheKind(str, Enum):
    """Types de données mises en cache"""
    PRICE = "price"
    VOLUME = "volume"
    LIQUIDITY = "liquidity"
    POOLS = "pools"
    METRICS = "metrics"
    TOKEN_INFO = "token_info"
    HOLDERS = "holders"
    AGE = "age"
    QUOTE = "quote"


DEFAULT_TTLS: Dict[CacheKind, float] = {
    CacheKind.PRICE: 300.0,
    CacheKind.VOLUME: 300.0,
    CacheKind.LIQUIDITY: 300.0,
    CacheKind.POOLS: 300.0,
    CacheKind.METRICS: 300.0,
    CacheKind.TOKEN_INFO: 300.0,
    CacheKind.HOLDERS: 300.0,
    CacheKind.AGE: 3600.0,
    CacheKind.QUOTE: 15.0,
}


@dataclass
class CacheEntry(Generic[T]):
    """Valeur et date de récupération"""
    value: T
    fetched_at: float


class MarketDataCache:
    """Cache TTL indexé par (kind, key)"""

    def __init__(self, ttls: Optional[Dict[Any, float]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self._ttls: Dict[CacheKind, float] = dict(DEFAULT_TTLS)
        for kind, ttl in (ttls or {}).items():
            self._ttls[CacheKind(kind)] = float(ttl)
        self._clock = clock
        self._entries: Dict[Tuple[CacheKind, str], CacheEntry] = {}

        self.hits = 0
        self.misses = 0

    def ttl(self, kind: CacheKind) -> float:
        return self._ttls[CacheKind(kind)]

    def get(self, kind: CacheKind, key: str, max_age: Optional[float] = None) -> Tuple[bool, Any]:
        """
        Lit une entrée fraîche

        Args:
            kind: Type de donnée
            key: Clé (adresse du token en général)
            max_age: Âge maximum exigé par l'appelant, borné par le TTL

        Returns:
            (hit, value)
        """
        kind = CacheKind(kind)
        entry = self._entries.get((kind, key))
        if entry is None:
            self.misses += 1
            return False, None

        limit = self._ttls[kind]
        if max_age is not None:
            limit = min(limit, max_age)

        if self._clock() - entry.fetched_at > limit:
            if self._clock() - entry.fetched_at > self._ttls[kind]:
                del self._entries[(kind, key)]
            self.misses += 1
            return False, None

        self.hits += 1
        return True, entry.value

    def set(self, kind: CacheKind, key: str, value: Any) -> None:
        self._entries[(CacheKind(kind), key)] = CacheEntry(value=value, fetched_at=self._clock())

    def invalidate(self, kind: Optional[CacheKind] = None, key: Optional[str] = None) -> int:
        """Supprime les entrées correspondantes et retourne leur nombre"""
        targets = [
            k for k in self._entries
            if (kind is None or k[0] == CacheKind(kind)) and (key is None or k[1] == key)
        ]
        for k in targets:
            del self._entries[k]
        return len(targets)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now - e.fetched_at > self._ttls[k[0]]]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}
