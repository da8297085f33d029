"""
Bot Package - Core Sniping Engine
"""

from .discovery_scanner import DiscoveryScanner
from .position_manager import PositionManager
from .sniper_engine import SniperEngine, EngineState

__all__ = [
    'DiscoveryScanner',
    'PositionManager',
    'SniperEngine',
    'EngineState'
]
