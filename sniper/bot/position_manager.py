"""
Position Manager - Gestionnaire des positions
=============================================

Gère le cycle de vie des positions: entrée via le client d'exécution, une
tâche de surveillance indépendante par position (stop loss, take profit,
limite de temps), persistance après chaque mutation et reprise après crash.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..connectors.execution import ExecutionClient
from ..core.event_bus import EventBus, EventType
from ..core.persistence import PositionStore
from ..market_data.aggregator import MarketDataAggregator
from ..market_data.base_provider import MarketDataUnavailableError, QueueSaturationError
from ..models.config import SniperConfig
from ..models.position import ExitReason, Position
from ..utils.async_utils import safe_ensure_future, wait_for_event
from ..utils.math_utils import calculate_profit_percentage, safe_float, to_base_units
from ..utils.time_utils import format_duration


SOL_DECIMALS = 9


class PositionManager:
    """
    Gestionnaire des positions

    Responsabilités:
    - Ouvrir une position après une entrée réussie
    - Surveiller chaque position dans sa propre tâche
    - Appliquer stop loss, take profit partiel et limite de temps
    - Respecter le nombre maximum de positions surveillées
    - Reprendre les positions persistées et réconcilier le wallet
    """

    def __init__(self, config: SniperConfig, aggregator: MarketDataAggregator,
                 execution: ExecutionClient, store: PositionStore,
                 event_bus: Optional[EventBus] = None,
                 clock: Callable[[], float] = time.time):
        """
        Initialise le gestionnaire de positions

        Args:
            config: Configuration complète
            aggregator: Agrégateur de données partagé
            execution: Client d'exécution (live ou paper)
            store: Fichier des positions
            event_bus: Bus d'événements (optionnel)
            clock: Horloge epoch en secondes
        """
        self.config = config
        self.aggregator = aggregator
        self.execution = execution
        self.store = store
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)
        self._clock = clock

        # État des positions
        self.positions: Dict[str, Position] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._entry_lock = asyncio.Lock()
        self._pending_entries: set = set()
        self._shutdown = asyncio.Event()
        self._store_loaded = False
        self._recovered = False

        # Limites de trading
        self.max_positions = config.trading.max_active_positions
        self.snipe_amount = config.trading.snipe_amount
        self.slippage_bps = config.trading.slippage_bps
        self.base_mint = config.network.base_mint

        # Paramètres de gestion des risques
        risk = config.risk_management
        self.stop_loss_pct = risk.stop_loss_percentage
        self.take_profit_pct = risk.take_profit_percentage
        self.take_profit_sell_pct = risk.take_profit_sell_percentage
        self.max_position_age_hours = risk.max_position_age_hours
        self.monitor_interval = risk.monitor_interval_seconds
        self.error_retry = risk.error_retry_seconds

        # Métriques
        self.total_positions_opened = 0
        self.total_positions_closed = 0
        self.total_partial_exits = 0
        self.failed_entries = 0
        self.recovered_positions = 0

    # =============================================================================
    # CAPACITY
    # =============================================================================

    def get_active_positions_count(self) -> int:
        return sum(1 for p in self.positions.values() if p.monitoring)

    def can_add_position(self) -> bool:
        """Vrai tant que le nombre de positions surveillées est sous le maximum"""
        return self.get_active_positions_count() + len(self._pending_entries) < self.max_positions

    # =============================================================================
    # POSITION OPENING
    # =============================================================================

    async def snipe_token(self, token_address: str, symbol: str = "") -> bool:
        """
        Entre sur un token et démarre sa surveillance

        Args:
            token_address: Adresse du token
            symbol: Symbole connu (optionnel)

        Returns:
            bool: True si la position a été ouverte
        """
        if self._shutdown.is_set():
            return False

        async with self._entry_lock:
            existing = self.positions.get(token_address)
            if (existing and existing.monitoring) or token_address in self._pending_entries:
                self.logger.info(f"Position already exists for {token_address}, skipping")
                return False

            if not self.can_add_position():
                self.logger.info(
                    f"Maximum number of positions reached ({self.max_positions}), skipping {token_address}"
                )
                return False

            # Réserve la capacité pendant l'entrée
            self._pending_entries.add(token_address)

        try:
            return await self._open_position(token_address, symbol)
        finally:
            self._pending_entries.discard(token_address)

    async def _open_position(self, token_address: str, symbol: str) -> bool:
        self.logger.info(
            f"🚀 Sniping {token_address}: {self.snipe_amount} SOL, slippage {self.slippage_bps / 100}%"
        )

        try:
            if self.config.trading.pre_trade_validation:
                is_valid, validated_symbol = await self._validate_for_trading(token_address)
                if not is_valid:
                    self.logger.info(f"❌ {token_address} failed pre-trade validation, skipping")
                    return False
                symbol = symbol or validated_symbol

            tx_id = await self.execution.execute_trade(
                self.base_mint, token_address, self.snipe_amount, self.slippage_bps
            )
            if not tx_id:
                self.failed_entries += 1
                self.logger.warning(f"⚠️ Failed to execute buy for {token_address}")
                return False

            self.logger.info(f"✅ Buy transaction successful: {tx_id}")

            entry_price = await self.aggregator.get_price(token_address, max_age=0)
            if entry_price <= 0:
                self.failed_entries += 1
                self.logger.warning(f"⚠️ Could not determine entry price for {token_address}")
                return False

        except (MarketDataUnavailableError, QueueSaturationError) as e:
            self.failed_entries += 1
            self.logger.warning(f"Market data unavailable while sniping {token_address}: {e}")
            return False
        except Exception as e:
            self.failed_entries += 1
            self.logger.error(f"Error sniping token {token_address}: {e}")
            return False

        position = Position.open(
            token_address, entry_price, self.stop_loss_pct, self.take_profit_pct,
            self.snipe_amount, entry_timestamp=self._clock(), symbol=symbol,
        )
        self.positions[token_address] = position
        self.total_positions_opened += 1
        await self._persist()

        self.logger.info(
            f"📈 Opened position {symbol or token_address[:8]}: entry {entry_price:.8f}, "
            f"SL {position.stop_loss_price:.8f} (-{self.stop_loss_pct}%), "
            f"TP {position.take_profit_price:.8f} (+{self.take_profit_pct}%)"
        )
        await self._publish(EventType.POSITION_OPENED, position)
        self._spawn_monitor(token_address)
        return True

    async def _validate_for_trading(self, token_address: str) -> Tuple[bool, str]:
        """Token info, liquidité minimum et quote disponible"""
        token_info = await self.aggregator.get_token_info(token_address)
        if token_info is None:
            self.logger.info(f"Token info not available for {token_address}")
            return False, ""

        liquidity = await self.aggregator.get_liquidity(token_address)
        if liquidity < self.config.trading.min_entry_liquidity:
            self.logger.info(f"Insufficient liquidity ({liquidity}) for {token_address}")
            return False, token_info.symbol

        quote = await self.aggregator.get_quote(
            self.base_mint, token_address, to_base_units(self.snipe_amount, SOL_DECIMALS)
        )
        if quote is None:
            self.logger.info(f"No quote available for {token_address}")
            return False, token_info.symbol

        self.logger.debug(f"{token_address} passed pre-trade validation, quote out {quote.out_amount}")
        return True, token_info.symbol

    # =============================================================================
    # MONITORING
    # =============================================================================

    def _spawn_monitor(self, token_address: str) -> None:
        current = self._tasks.get(token_address)
        if current and not current.done():
            return

        task = safe_ensure_future(
            self._monitor_position(token_address), name=f"monitor-{token_address[:8]}"
        )
        self._tasks[token_address] = task

        def _unregister(t: asyncio.Task, address: str = token_address) -> None:
            if self._tasks.get(address) is t:
                del self._tasks[address]

        task.add_done_callback(_unregister)

    async def _monitor_position(self, token_address: str) -> None:
        """Boucle de surveillance d'une position"""
        position = self.positions[token_address]
        self.logger.info(
            f"📊 Monitoring {position.symbol or token_address}: entry {position.entry_price:.8f}, "
            f"SL {position.stop_loss_price:.8f}, TP {position.take_profit_price:.8f}"
        )

        while position.monitoring and not self._shutdown.is_set():
            delay = self.monitor_interval
            try:
                price = await self.aggregator.get_price(token_address, max_age=self.monitor_interval)
                if price <= 0:
                    self.logger.warning(f"⚠️ No price for {token_address}, skipping this cycle")
                else:
                    await self._evaluate_tick(position, price)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"Error monitoring position for {token_address}: {e}")
                delay = self.error_retry

            if not position.monitoring:
                break
            if await wait_for_event(self._shutdown, delay):
                break

        self.logger.info(f"📊 Monitoring ended for {token_address} ({position.state.value})")

    async def _evaluate_tick(self, position: Position, price: float) -> Optional[ExitReason]:
        """
        Applique les règles de sortie pour un prix observé

        Returns:
            La transition effectuée, ou None
        """
        now = self._clock()
        address = position.token_address
        change = calculate_profit_percentage(position.entry_price, price)
        self.logger.debug(f"{address}: price {price:.8f} ({change:+.2f}%)")

        if price <= position.stop_loss_price:
            self.logger.warning(f"⚠️ STOP LOSS TRIGGERED for {address} at {price:.8f}")
            if await self._execute_sell(address, 100):
                await self._close(position, ExitReason.STOP_LOSS, now)
                return ExitReason.STOP_LOSS
            return None

        transition = None
        if not position.take_profit_taken and price >= position.take_profit_price:
            self.logger.info(f"🎯 TAKE PROFIT TRIGGERED for {address} at {price:.8f}")
            if await self._execute_sell(address, self.take_profit_sell_pct):
                position.mark_take_profit(price)
                self.total_partial_exits += 1
                await self._persist()
                await self._publish(EventType.POSITION_PARTIAL_EXIT, position)
                self.logger.info(
                    f"Holding {100 - self.take_profit_sell_pct:.0f}% of {address} without stop loss"
                )
                transition = ExitReason.TAKE_PROFIT

        if position.age_hours(now) >= self.max_position_age_hours:
            self.logger.info(
                f"⏰ Position time limit reached ({self.max_position_age_hours}h) for {address}"
            )
            if await self._execute_sell(address, 100):
                await self._close(position, ExitReason.TIME_LIMIT, now)
                return ExitReason.TIME_LIMIT

        return transition

    async def _execute_sell(self, token_address: str, percentage: float) -> bool:
        """
        Vend un pourcentage de la balance détenue

        Returns:
            bool: True si la vente est faite ou s'il ne reste rien à vendre
        """
        balance = await self.execution.get_token_balance(token_address)
        if balance <= 0:
            self.logger.warning(f"⚠️ No token balance to sell for {token_address}")
            return True

        amount = balance * percentage / 100
        self.logger.info(f"Selling {percentage:.0f}% ({amount} tokens) of {token_address}")
        tx_id = await self.execution.execute_trade(
            token_address, self.base_mint, amount, self.slippage_bps
        )
        if not tx_id:
            self.logger.error(f"❌ Sell failed for {token_address}, retrying next cycle")
            return False

        self.logger.info(f"✅ Sell transaction successful: {tx_id}")
        return True

    async def _close(self, position: Position, reason: ExitReason, now: float) -> None:
        position.close(reason, now)
        self.total_positions_closed += 1
        await self._persist()
        await self._publish(EventType.POSITION_CLOSED, position)
        self.logger.info(f"🔒 Position {position.token_address} closed: {reason.value}")

    async def stop_monitoring(self, token_address: str) -> bool:
        """Arrêt manuel de la surveillance d'une position (sans vente)"""
        position = self.positions.get(token_address)
        if position is None or not position.monitoring:
            return False

        await self._close(position, ExitReason.MANUAL, self._clock())
        self.logger.info(f"Stopped monitoring position for {token_address}")
        return True

    # =============================================================================
    # RECOVERY
    # =============================================================================

    async def recover_positions(self) -> int:
        """
        Recharge le fichier des positions et reprend la surveillance

        Returns:
            int: Nombre de positions reprises
        """
        loaded = self.load_positions()
        self._recovered = True

        active = [p for p in self.positions.values() if p.monitoring]
        if len(active) > self.max_positions:
            self.logger.warning(
                f"{len(active)} persisted positions exceed the maximum of {self.max_positions}"
            )

        for position in active:
            self._spawn_monitor(position.token_address)

        self.logger.info(f"Recovered {len(loaded)} positions, {len(active)} resumed")
        return len(active)

    async def scan_wallet_for_missing_positions(self) -> int:
        """
        Réconcilie les tokens du wallet absents de l'ensemble des positions

        Returns:
            int: Nombre de positions synthétisées
        """
        risk = self.config.risk_management
        excluded = self.config.get_excluded_tokens()
        holdings = await self.execution.get_all_wallet_tokens()
        added = 0

        for holding in holdings:
            asset = holding.get("asset")
            balance = safe_float(holding.get("balance"))
            if not asset or balance <= 0 or asset in excluded or asset in self.positions:
                continue
            if not self.can_add_position():
                self.logger.info("Maximum positions reached, wallet reconciliation stopped")
                break

            try:
                price = await self.aggregator.get_price(asset)
            except (MarketDataUnavailableError, QueueSaturationError) as e:
                self.logger.warning(f"Could not price wallet token {asset}: {e}")
                continue
            if price <= 0:
                self.logger.debug(f"Wallet token {asset} has no price, ignored")
                continue

            async with self._entry_lock:
                # State may have changed while the price was fetched
                if asset in self.positions or asset in self._pending_entries:
                    continue
                if not self.can_add_position():
                    self.logger.info("Maximum positions reached, wallet reconciliation stopped")
                    break

                position = Position.open(
                    asset, price,
                    risk.recovery_stop_loss_percentage,
                    risk.recovery_take_profit_percentage,
                    risk.recovery_default_investment,
                    entry_timestamp=self._clock() - risk.recovery_entry_age_hours * 3600,
                    recovered=True,
                )
                self.positions[asset] = position
                added += 1

            self.recovered_positions += 1
            self.logger.info(f"🔄 Recovered wallet position {asset} at {price:.8f} ({balance} tokens)")
            self._spawn_monitor(asset)

        if added:
            await self._persist()
        return added

    # =============================================================================
    # SHUTDOWN
    # =============================================================================

    async def shutdown(self, grace_seconds: Optional[float] = None) -> int:
        """
        Signale l'arrêt, attend les tâches puis abandonne les retardataires

        Les positions gardent monitoring=True pour être reprises au redémarrage.
        Le fichier n'est réécrit que si recover_positions a chargé les positions.

        Returns:
            int: Nombre de tâches abandonnées
        """
        grace = self.config.bot.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        self._shutdown.set()

        tasks = [t for t in self._tasks.values() if not t.done()]
        abandoned = 0
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=grace)
            abandoned = len(pending)
            for task in pending:
                task.cancel()
            if pending:
                self.logger.warning(f"Abandoned {abandoned} monitoring task(s) after {grace}s")
                await asyncio.gather(*pending, return_exceptions=True)

        if self._recovered:
            await self._persist()
        return abandoned

    # =============================================================================
    # PERSISTENCE & EVENTS
    # =============================================================================

    def load_positions(self) -> List[Position]:
        """
        Charge le fichier persistant sans démarrer de surveillance

        Les positions déjà en mémoire restent prioritaires.
        """
        loaded = self.store.load()
        for position in loaded:
            self.positions.setdefault(position.token_address, position)
        self._store_loaded = True
        return loaded

    async def _persist(self) -> bool:
        # Rewriting before the file was read would drop the persisted positions
        if not self._store_loaded:
            self.load_positions()
        return await self.store.save(list(self.positions.values()))

    async def _publish(self, event_type: EventType, position: Position) -> None:
        if self.event_bus:
            await self.event_bus.publish(event_type, position.to_dict(), source="position_manager")

    # =============================================================================
    # QUERIES & STATS
    # =============================================================================

    def get_active_positions(self) -> List[Position]:
        return [p for p in self.positions.values() if p.monitoring]

    def get_active_positions_summary(self) -> List[Dict[str, Any]]:
        now = self._clock()
        return [
            {
                "token": p.token_address,
                "symbol": p.symbol,
                "state": p.state.value,
                "entry_price": p.entry_price,
                "stop_loss": p.stop_loss_price,
                "take_profit": p.take_profit_price,
                "investment": p.initial_investment,
                "age": format_duration(now - p.entry_timestamp),
                "recovered": p.recovered,
            }
            for p in self.get_active_positions()
        ]

    def get_manager_stats(self) -> Dict[str, Any]:
        return {
            "active_positions": self.get_active_positions_count(),
            "max_positions": self.max_positions,
            "pending_entries": len(self._pending_entries),
            "monitoring_tasks": len(self._tasks),
            "total_positions": len(self.positions),
            "total_opened": self.total_positions_opened,
            "total_closed": self.total_positions_closed,
            "partial_exits": self.total_partial_exits,
            "failed_entries": self.failed_entries,
            "recovered_positions": self.recovered_positions,
        }
