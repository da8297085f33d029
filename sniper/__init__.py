"""
Pump Sniper
"""

__version__ = "1.0.0"
__description__ = "Solana new-token sniper with resilient market data and position management"

from .bot.sniper_engine import SniperEngine
from .models.config import SniperConfig

__all__ = [
    'SniperEngine',
    'SniperConfig'
]
