"""
Data models for the pump sniper.
"""

from .asset import AssetQuote, TokenInfo, SwapQuote, PoolInfo, DiscoveryRecord, AccountInfo
from .position import Position, PositionState, ExitReason, compute_exit_levels
from .config import SniperConfig, BotMode, ConfigurationError

__all__ = [
    "AssetQuote", "TokenInfo", "SwapQuote", "PoolInfo", "DiscoveryRecord", "AccountInfo",
    "Position", "PositionState", "ExitReason", "compute_exit_levels",
    "SniperConfig", "BotMode", "ConfigurationError",
]
