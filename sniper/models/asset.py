"""
Asset Models - Données de marché éphémères
==========================================

Structures retournées par l'agrégateur de données de marché. Aucune n'est
persistée: elles sont recalculées à chaque requête et mises en cache
transitoirement.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional


@dataclass
class AssetQuote:
    """Métriques agrégées d'un token"""
    address: str
    price: float = 0.0
    volume_24h: float = 0.0
    liquidity: float = 0.0
    market_cap: float = 0.0
    price_change_24h: float = 0.0
    age_days: float = 0.0

    @property
    def is_empty(self) -> bool:
        return self.price <= 0 and self.liquidity <= 0 and self.volume_24h <= 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TokenInfo:
    """Métadonnées d'un token"""
    address: str
    symbol: str = ""
    name: str = ""
    decimals: int = 0
    source: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.address and self.symbol and self.name)


@dataclass
class SwapQuote:
    """Estimation d'un swap retournée par un agrégateur"""
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    price_impact_pct: float = 0.0
    slippage_bps: int = 0
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class PoolInfo:
    """Pool de liquidité issu d'un scan on-chain/AMM"""
    pool_id: str
    base_mint: str
    quote_mint: str
    base_symbol: str = ""
    quote_symbol: str = ""
    liquidity: float = 0.0
    volume_24h: float = 0.0
    price: float = 0.0
    pool_count: int = 1


@dataclass(frozen=True)
class DiscoveryRecord:
    """Candidat issu d'un flux de nouveaux tokens"""
    address: str
    symbol: str = ""
    name: str = ""
    source: str = ""


@dataclass
class AccountInfo:
    """Sous-ensemble de getAccountInfo utile à la validation rapide"""
    address: str
    owner: str
    lamports: int = 0
    executable: bool = False
    data_length: int = 0
    extra: Optional[Dict[str, Any]] = field(default=None, repr=False)
