"""
Position Models - Positions surveillées
=======================================

Une position est créée après une entrée réussie, mutée uniquement par sa
propre tâche de surveillance, et "détruite" en passant monitoring=False.
Elle n'est jamais supprimée du fichier persistant.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
from enum import Enum
import time


class PositionState(Enum):
    """États d'une position"""
    OPEN = "open"
    PARTIAL = "partial"
    CLOSED = "closed"


class ExitReason(Enum):
    """Raisons de sortie"""
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    TIME_LIMIT = "time_limit"
    MANUAL = "manual"


def compute_exit_levels(entry_price: float, stop_loss_pct: float,
                        take_profit_pct: float) -> tuple:
    """
    Calcule les niveaux de stop loss et take profit

    Args:
        entry_price: Prix d'entrée
        stop_loss_pct: Pourcentage sous le prix d'entrée
        take_profit_pct: Pourcentage au-dessus du prix d'entrée

    Returns:
        (stop_loss_price, take_profit_price)
    """
    stop_loss_price = entry_price * (1 - stop_loss_pct / 100)
    take_profit_price = entry_price * (1 + take_profit_pct / 100)
    return stop_loss_price, take_profit_price


@dataclass
class Position:
    """Position sur un token, persistée en camelCase"""
    token_address: str
    entry_price: float
    entry_timestamp: float  # epoch secondes, précision milliseconde
    stop_loss_price: float
    take_profit_price: float
    monitoring: bool = True
    initial_investment: float = 0.0

    symbol: str = ""
    take_profit_taken: bool = False
    exit_reason: Optional[str] = None
    exit_timestamp: Optional[float] = None
    recovered: bool = False

    @classmethod
    def open(cls, token_address: str, entry_price: float, stop_loss_pct: float,
             take_profit_pct: float, initial_investment: float,
             entry_timestamp: Optional[float] = None, symbol: str = "",
             recovered: bool = False) -> "Position":
        """Crée une position avec ses niveaux de sortie"""
        if entry_price <= 0:
            raise ValueError(f"Invalid entry price {entry_price} for {token_address}")

        stop_loss_price, take_profit_price = compute_exit_levels(
            entry_price, stop_loss_pct, take_profit_pct
        )
        return cls(
            token_address=token_address,
            entry_price=entry_price,
            entry_timestamp=round(entry_timestamp if entry_timestamp is not None else time.time(), 3),
            stop_loss_price=stop_loss_price,
            take_profit_price=take_profit_price,
            monitoring=True,
            initial_investment=initial_investment,
            symbol=symbol,
            recovered=recovered,
        )

    @property
    def state(self) -> PositionState:
        if not self.monitoring:
            return PositionState.CLOSED
        if self.take_profit_taken:
            return PositionState.PARTIAL
        return PositionState.OPEN

    def age_hours(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return max(0.0, (now - self.entry_timestamp) / 3600)

    def close(self, reason: ExitReason, now: Optional[float] = None) -> None:
        self.monitoring = False
        self.exit_reason = reason.value
        self.exit_timestamp = round(time.time() if now is None else now, 3)

    def mark_take_profit(self, price: float) -> None:
        """Transition vers l'état partiel: le reliquat n'a plus de stop loss"""
        self.take_profit_taken = True
        self.entry_price = price
        self.stop_loss_price = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tokenAddress": self.token_address,
            "entryPrice": self.entry_price,
            "entryTimestamp": int(round(self.entry_timestamp * 1000)),
            "stopLossPrice": self.stop_loss_price,
            "takeProfitPrice": self.take_profit_price,
            "monitoring": self.monitoring,
            "initialInvestment": self.initial_investment,
            "symbol": self.symbol,
            "takeProfitTaken": self.take_profit_taken,
            "exitReason": self.exit_reason,
            "exitTimestamp": (
                int(round(self.exit_timestamp * 1000)) if self.exit_timestamp is not None else None
            ),
            "recovered": self.recovered,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        exit_ts = data.get("exitTimestamp")
        return cls(
            token_address=data["tokenAddress"],
            entry_price=float(data["entryPrice"]),
            entry_timestamp=float(data["entryTimestamp"]) / 1000,
            stop_loss_price=float(data["stopLossPrice"]),
            take_profit_price=float(data["takeProfitPrice"]),
            monitoring=bool(data.get("monitoring", False)),
            initial_investment=float(data.get("initialInvestment", 0.0)),
            symbol=data.get("symbol", ""),
            take_profit_taken=bool(data.get("takeProfitTaken", False)),
            exit_reason=data.get("exitReason"),
            exit_timestamp=float(exit_ts) / 1000 if exit_ts is not None else None,
            recovered=bool(data.get("recovered", False)),
        )
