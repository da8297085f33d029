"""
Execution Client - Interface du collaborateur d'exécution
=========================================================

Le moteur ne signe ni ne diffuse jamais de transaction lui-même: il délègue
au client d'exécution. Ce module définit l'interface, un client de paper
trading qui simule les fills aux prix de l'agrégateur, et le chargement
d'une implémentation live fournie par l'opérateur.
"""

import importlib
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..models.config import ConfigurationError


class ExecutionClient(ABC):
    """
    Interface de base du collaborateur d'exécution
    """

    # =============================================================================
    # WALLET
    # =============================================================================

    @abstractmethod
    def get_public_key(self) -> str:
        """Clé publique du wallet"""
        pass

    @abstractmethod
    async def get_balance(self) -> float:
        """
        Balance de l'asset de base (SOL)

        Returns:
            float: Balance en unités UI
        """
        pass

    @abstractmethod
    async def get_token_balance(self, token_address: str) -> float:
        """
        Balance d'un token

        Args:
            token_address: Mint du token

        Returns:
            float: Quantité détenue (0 si aucune)
        """
        pass

    @abstractmethod
    async def get_all_wallet_tokens(self) -> List[Dict[str, Any]]:
        """
        Tous les tokens détenus

        Returns:
            Liste de {"asset": mint, "balance": quantité}
        """
        pass

    # =============================================================================
    # TRADING
    # =============================================================================

    @abstractmethod
    async def execute_trade(self, from_asset: str, to_asset: str, amount: float,
                            slippage_bps: int) -> Optional[str]:
        """
        Exécute un swap

        Args:
            from_asset: Mint vendu
            to_asset: Mint acheté
            amount: Quantité de from_asset (unités UI)
            slippage_bps: Slippage maximum

        Returns:
            Identifiant de transaction ou None si échec
        """
        pass

    async def on_account_event(self, event: Dict[str, Any]) -> None:
        """Notification de compte relayée par le superviseur de connexion"""
        return None

    async def close(self) -> None:
        return None


class PaperExecutionClient(ExecutionClient):
    """
    Exécution simulée au prix courant de l'agrégateur

    Les fills sont instantanés et sans slippage.
    """

    def __init__(self, aggregator, base_mint: str, starting_balance: float = 1.0,
                 public_key: str = "paper-wallet"):
        self.aggregator = aggregator
        self.base_mint = base_mint
        self.public_key = public_key
        self.logger = logging.getLogger(__name__)

        self._balances: Dict[str, float] = {base_mint: starting_balance}
        self.trades: List[Dict[str, Any]] = []

    def get_public_key(self) -> str:
        return self.public_key

    async def get_balance(self) -> float:
        return self._balances.get(self.base_mint, 0.0)

    async def get_token_balance(self, token_address: str) -> float:
        return self._balances.get(token_address, 0.0)

    async def get_all_wallet_tokens(self) -> List[Dict[str, Any]]:
        return [
            {"asset": asset, "balance": balance}
            for asset, balance in self._balances.items()
            if asset != self.base_mint and balance > 0
        ]

    async def _price_in_base(self, asset: str) -> float:
        if asset == self.base_mint:
            return 1.0
        token_price = await self.aggregator.get_price(asset)
        base_price = await self.aggregator.get_price(self.base_mint)
        if token_price <= 0 or base_price <= 0:
            return 0.0
        return token_price / base_price

    async def execute_trade(self, from_asset: str, to_asset: str, amount: float,
                            slippage_bps: int) -> Optional[str]:
        available = self._balances.get(from_asset, 0.0)
        if amount <= 0 or amount > available + 1e-12:
            self.logger.warning(
                f"Paper trade rejected: {amount} {from_asset[:8]} requested, {available} available"
            )
            return None

        from_price = await self._price_in_base(from_asset)
        to_price = await self._price_in_base(to_asset)
        if from_price <= 0 or to_price <= 0:
            self.logger.warning(f"Paper trade rejected: no price for {from_asset[:8]} -> {to_asset[:8]}")
            return None

        received = amount * from_price / to_price
        self._balances[from_asset] = max(0.0, available - amount)
        self._balances[to_asset] = self._balances.get(to_asset, 0.0) + received

        tx_id = f"paper-{uuid.uuid4().hex[:16]}"
        self.trades.append({
            "tx_id": tx_id, "from": from_asset, "to": to_asset,
            "amount": amount, "received": received, "slippage_bps": slippage_bps,
        })
        self.logger.info(
            f"📝 Paper trade {tx_id}: {amount:.6f} {from_asset[:8]} -> {received:.6f} {to_asset[:8]}"
        )
        return tx_id


def load_execution_client(path: str, **kwargs) -> ExecutionClient:
    """
    Charge un client d'exécution live au format 'package.module:Classe'

    Raises:
        ConfigurationError: chemin invalide ou classe incompatible
    """
    module_name, _, class_name = path.partition(":")
    if not module_name or not class_name:
        raise ConfigurationError(f"Invalid execution client path '{path}', expected 'module:Class'")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import execution client module '{module_name}': {e}") from e

    client_class = getattr(module, class_name, None)
    if client_class is None or not (isinstance(client_class, type) and issubclass(client_class, ExecutionClient)):
        raise ConfigurationError(f"'{path}' is not an ExecutionClient subclass")

    return client_class(**kwargs)
