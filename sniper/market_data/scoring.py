"""
Scoring - Filtre de validité et scores composites
=================================================

Fonctions pures, sans I/O: pour des entrées identiques elles produisent
le même résultat au bit près.
"""

import logging
import math
from typing import Optional, Sequence, Tuple

from ..models.asset import AssetQuote, TokenInfo


logger = logging.getLogger(__name__)

DEFAULT_SCORE_WEIGHTS = (0.2, 0.2, 0.2, 0.2, 0.2)
DEFAULT_QUICK_SCORE_WEIGHTS = (0.4, 0.3, 0.2, 0.1)


def calculate_token_score(liquidity: float, volume_24h: float, price_change_24h: float,
                          holder_count: int, age_days: float,
                          weights: Sequence[float] = DEFAULT_SCORE_WEIGHTS) -> float:
    """
    Score de validité utilisé pour classer les candidats

    score = w1·log10(liq+1) + w2·log10(vol+1) + w3·max(0, 1 − |Δ24h|/100)
            + w4·min(1, holders/1000) + w5·min(1, age/30)
    """
    w1, w2, w3, w4, w5 = weights
    stability = max(0.0, 1 - abs(price_change_24h) / 100)
    return (
        w1 * math.log10(max(liquidity, 0.0) + 1)
        + w2 * math.log10(max(volume_24h, 0.0) + 1)
        + w3 * stability
        + w4 * min(1.0, holder_count / 1000)
        + w5 * min(1.0, age_days / 30)
    )


def calculate_quick_score(liquidity: float, volume_24h: float, price: float, pool_count: int,
                          weights: Sequence[float] = DEFAULT_QUICK_SCORE_WEIGHTS) -> float:
    """Score de pré-filtre rapide: 0.4·liq + 0.3·vol + 0.2·prix + 0.1·pools (log10)"""
    w_liq, w_vol, w_price, w_pools = weights
    return (
        w_liq * math.log10(max(liquidity, 0.0) + 1)
        + w_vol * math.log10(max(volume_24h, 0.0) + 1)
        + w_price * math.log10(max(price, 0.0) + 1)
        + w_pools * math.log10(max(pool_count, 0) + 1)
    )


def check_token_validity(token_info: Optional[TokenInfo], quote: AssetQuote,
                         max_liquidity: float = 1_000_000.0,
                         max_price: float = 10_000.0,
                         max_volume_liquidity_ratio: float = 100.0,
                         max_age_days: float = 30.0,
                         blocklist: Sequence[str] = ("test", "scam", "fake", "pump", "dump"),
                         ) -> Tuple[bool, str]:
    """
    Filtre de validité

    Un rejet n'est pas une erreur: c'est un résultat négatif normal.

    Returns:
        (is_valid, reason)
    """
    if token_info is None:
        return False, "no token info"

    if not token_info.is_complete:
        return False, "missing basic info"

    name = token_info.name.lower()
    symbol = token_info.symbol.lower()
    for keyword in blocklist:
        if keyword in name or keyword in symbol:
            return False, f"suspicious name or symbol ({keyword})"

    if quote.liquidity <= 0:
        return False, "no liquidity"
    if quote.liquidity > max_liquidity:
        return False, "suspiciously high liquidity"

    if quote.price <= 0:
        return False, "invalid price"
    if quote.price > max_price:
        return False, "suspiciously high price"

    if quote.volume_24h <= 0:
        return False, "no volume"
    if quote.volume_24h > quote.liquidity * max_volume_liquidity_ratio:
        return False, "suspicious volume/liquidity ratio"

    if quote.age_days <= 0:
        return False, "unknown age"
    if quote.age_days > max_age_days:
        return False, "too old"

    return True, "ok"
