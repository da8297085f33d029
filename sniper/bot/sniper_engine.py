"""
Sniper Engine - Moteur principal du sniper
==========================================

Moteur central qui coordonne tous les composants :
- Agrégateur de données de marché
- Scanner de nouveaux tokens
- Gestionnaire de positions
- Superviseur de connexion websocket

Câble le flux découverte → attente de liquidité → entrée → surveillance.
"""

import asyncio
import logging
import signal
import time
from enum import Enum
from typing import Any, Dict, Optional, Set

import aiohttp

from .discovery_scanner import DiscoveryScanner
from .position_manager import PositionManager
from ..config.settings import check_startup_requirements
from ..connectors.connection_supervisor import ConnectionSupervisor
from ..connectors.execution import ExecutionClient, PaperExecutionClient, load_execution_client
from ..core.event_bus import EventBus, EventType
from ..core.persistence import KnownTokenStore, PositionStore
from ..market_data.aggregator import MarketDataAggregator
from ..market_data.base_provider import MarketDataUnavailableError, QueueSaturationError
from ..market_data.feeds import build_feeds
from ..models.config import ConfigurationError, SniperConfig


class EngineState(Enum):
    """États possibles du moteur"""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class SniperEngine:
    """
    Moteur principal du sniper

    Responsabilités:
    - Construction et câblage des composants
    - Reprise des positions et réconciliation du wallet au démarrage
    - Callback de nouveaux tokens (liquidité, puis entrée)
    - Arrêt coopératif avec délai de grâce
    """

    def __init__(self, config: SniperConfig, aggregator: Optional[MarketDataAggregator] = None,
                 execution: Optional[ExecutionClient] = None):
        """
        Initialise le moteur

        Args:
            config: Configuration complète
            aggregator: Agrégateur déjà construit (construit depuis la config sinon)
            execution: Client d'exécution (paper ou chargé depuis la config sinon)
        """
        self.config = config
        self.logger = logging.getLogger(__name__)

        # État du moteur
        self.state = EngineState.STOPPED
        self.start_time: Optional[float] = None
        self._stop_requested = asyncio.Event()

        # Composants
        self._session: Optional[aiohttp.ClientSession] = None
        self.aggregator = aggregator
        self.execution = execution
        self.event_bus: Optional[EventBus] = None
        self.position_manager: Optional[PositionManager] = None
        self.scanner: Optional[DiscoveryScanner] = None
        self.supervisor: Optional[ConnectionSupervisor] = None

        # Tokens déjà tentés pendant ce processus
        self.attempted_tokens: Set[str] = set()

        # Métriques
        self.tokens_received = 0
        self.snipes_attempted = 0
        self.snipes_succeeded = 0
        self.connection_errors = 0

    # =============================================================================
    # LIFECYCLE MANAGEMENT
    # =============================================================================

    async def initialize(self) -> bool:
        """
        Initialise tous les composants du moteur

        Returns:
            bool: True si l'initialisation réussit

        Raises:
            ConfigurationError: configuration de démarrage manquante
        """
        try:
            self.logger.info("🚀 Initializing Pump Sniper Engine...")
            self.state = EngineState.STARTING

            # 1. Prérequis bloquants
            check_startup_requirements(self.config)

            # 2. Données de marché
            if self.aggregator is None:
                self._session = aiohttp.ClientSession(headers={"User-Agent": "pump-sniper/1.0"})
                self.aggregator = MarketDataAggregator.from_config(self.config, self._session)

            # 3. Exécution
            if self.execution is None:
                self.execution = self._create_execution_client()

            # 4. État persistant et bus d'événements
            self.event_bus = EventBus()
            position_store = PositionStore(self.config.persistence.positions_file)
            known_store = KnownTokenStore(self.config.persistence.known_tokens_file)

            # 5. Gestionnaires
            self.position_manager = PositionManager(
                self.config, self.aggregator, self.execution, position_store, self.event_bus
            )
            feeds = build_feeds(self.config, self.aggregator.providers["jupiter"], self._session)
            self.scanner = DiscoveryScanner(
                self.config, self.aggregator, self.aggregator.providers["onchain"],
                known_store, feeds, self.event_bus,
            )

            # 6. Souscription aux événements du wallet
            wallet = self.config.network.wallet_public_key
            if self.config.connection.enabled and wallet:
                self.supervisor = ConnectionSupervisor(
                    self.config.network.get_ws_url(), wallet,
                    on_event=self.execution.on_account_event,
                    on_error=self._on_connection_error,
                    config=self.config.connection,
                    session=self._session,
                )

            mode = "PAPER TRADING" if self.config.is_paper_trading() else "LIVE"
            self.logger.info(f"✅ Engine initialized ({mode}, wallet {self.execution.get_public_key()})")
            return True

        except ConfigurationError as e:
            self.logger.error(f"❌ Configuration error: {e}")
            self.state = EngineState.ERROR
            raise
        except Exception as e:
            self.logger.error(f"❌ Engine initialization failed: {e}")
            self.state = EngineState.ERROR
            return False

    def _create_execution_client(self) -> ExecutionClient:
        if self.config.is_paper_trading():
            return PaperExecutionClient(
                self.aggregator, self.config.network.base_mint,
                public_key=self.config.network.wallet_public_key or "paper-wallet",
            )
        return load_execution_client(self.config.bot.execution_client, config=self.config)

    async def start(self) -> bool:
        """
        Démarre le moteur

        Returns:
            bool: True si le démarrage réussit
        """
        if self.state == EngineState.RUNNING:
            self.logger.warning("Engine already running")
            return True

        if self.position_manager is None:
            if not await self.initialize():
                return False

        try:
            await self.event_bus.start()

            status = await self.get_status()
            balance = status["wallet"]["balance"]
            if balance is not None:
                self.logger.info(f"Wallet balance: {balance:.4f} SOL")
            if status["wallet"]["low_balance"]:
                self.logger.warning("⚠️ WARNING: Low wallet balance! Add more SOL to continue operation.")

            # Reprise après crash
            await self.position_manager.recover_positions()
            active = self.position_manager.get_active_positions_count()
            self.logger.info(f"📊 ACTIVE POSITIONS: {active}/{self.position_manager.max_positions}")

            self.logger.info("🔍 Scanning wallet for tokens from previous trades...")
            try:
                await self.position_manager.scan_wallet_for_missing_positions()
            except (MarketDataUnavailableError, QueueSaturationError) as e:
                self.logger.warning(f"Wallet reconciliation skipped: {e}")

            if self.supervisor:
                await self.supervisor.start()

            self.state = EngineState.RUNNING
            self.start_time = time.time()
            await self.scanner.start_monitoring(self._on_new_asset)

            self.logger.info("🟢 Pump sniper is running, waiting for new tokens...")
            return True

        except Exception as e:
            self.logger.error(f"❌ Failed to start engine: {e}")
            self.state = EngineState.ERROR
            return False

    async def stop(self, grace_seconds: Optional[float] = None) -> None:
        """
        Arrête le moteur

        Les positions restent marquées surveillées et reprennent au redémarrage.

        Args:
            grace_seconds: Délai laissé aux tâches en cours avant abandon
        """
        if self.state == EngineState.STOPPED:
            return

        grace = self.config.bot.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        self.logger.info("🛑 Shutting down pump sniper...")
        self.state = EngineState.STOPPING

        try:
            if self.scanner:
                await self.scanner.stop_monitoring(grace)
            if self.supervisor:
                await self.supervisor.stop()
            if self.position_manager:
                await self.position_manager.shutdown(grace)
            if self.event_bus:
                await self.event_bus.stop()
            if self.aggregator:
                await self.aggregator.close()
            if self.execution:
                await self.execution.close()
            if self._session and not self._session.closed:
                await self._session.close()

            self.state = EngineState.STOPPED
            self.logger.info("✅ Engine stopped")

        except Exception as e:
            self.logger.error(f"Error during engine stop: {e}")
            self.state = EngineState.ERROR

    def request_stop(self) -> None:
        self._stop_requested.set()

    async def run_forever(self) -> None:
        """Démarre le moteur et tourne jusqu'à SIGINT/SIGTERM"""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                # Pas de signal handler hors thread principal / sous Windows
                pass

        if not await self.start():
            await self.stop()
            return

        try:
            await self._stop_requested.wait()
        finally:
            await self.stop()

    # =============================================================================
    # NEW TOKENS
    # =============================================================================

    async def _on_new_asset(self, token_address: str) -> None:
        """Callback du scanner pour chaque nouveau token qualifié"""
        if self.state != EngineState.RUNNING:
            return

        self.tokens_received += 1

        if token_address in self.attempted_tokens:
            self.logger.debug(f"Already attempted to snipe {token_address}, skipping")
            return

        if not self.position_manager.can_add_position():
            self.logger.info(
                f"Maximum number of positions reached ({self.position_manager.max_positions}), "
                f"skipping {token_address}"
            )
            return

        self.attempted_tokens.add(token_address)

        try:
            self.logger.info(f"🔍 New token {token_address}, waiting for liquidity...")
            if not await self.scanner.wait_for_liquidity(token_address):
                self.logger.info(f"❌ No liquidity added for {token_address} within timeout window")
                return

            symbol = ""
            try:
                token_info = await self.aggregator.get_token_info(token_address)
            except (MarketDataUnavailableError, QueueSaturationError) as e:
                self.logger.debug(f"Could not retrieve token info for {token_address}: {e}")
                token_info = None
            if token_info:
                symbol = token_info.symbol
                self.logger.info(f"Token: {token_info.name} ({token_info.symbol})")

            if self.state != EngineState.RUNNING:
                return

            self.logger.info(f"🚀 Liquidity detected! Executing snipe for {token_address}")
            self.snipes_attempted += 1
            if await self.position_manager.snipe_token(token_address, symbol=symbol):
                self.snipes_succeeded += 1

        except Exception as e:
            self.logger.error(f"Error processing token {token_address}: {e}")

    async def _on_connection_error(self, error: Exception) -> None:
        self.connection_errors += 1
        if self.event_bus:
            await self.event_bus.publish(EventType.CONNECTION_LOST, str(error), source="sniper_engine")

    # =============================================================================
    # STATUS & METRICS
    # =============================================================================

    async def get_status(self) -> Dict[str, Any]:
        """Récupère le statut complet du moteur"""
        balance = None
        if self.execution:
            try:
                balance = await self.execution.get_balance()
            except Exception as e:
                self.logger.warning(f"Could not read wallet balance: {e}")

        threshold = self.config.bot.low_balance_warning
        uptime = time.time() - self.start_time if self.start_time else 0.0

        return {
            "engine": {
                "state": self.state.value,
                "mode": self.config.bot.mode,
                "uptime_seconds": uptime,
                "tokens_received": self.tokens_received,
                "attempted_tokens": len(self.attempted_tokens),
                "snipes_attempted": self.snipes_attempted,
                "snipes_succeeded": self.snipes_succeeded,
                "connection_errors": self.connection_errors,
            },
            "wallet": {
                "public_key": self.execution.get_public_key() if self.execution else None,
                "balance": balance,
                "low_balance": balance is not None and balance < threshold,
            },
            "positions": self.position_manager.get_manager_stats() if self.position_manager else {},
            "scanner": self.scanner.get_scanner_stats() if self.scanner else {},
            "market_data": self.aggregator.get_stats() if self.aggregator else {},
            "connection": self.supervisor.get_status() if self.supervisor else {},
            "events": self.event_bus.get_stats() if self.event_bus else {},
        }

    def __repr__(self) -> str:
        active = self.position_manager.get_active_positions_count() if self.position_manager else 0
        return (f"SniperEngine(state={self.state.value}, "
                f"positions={active}/{self.config.trading.max_active_positions}, "
                f"attempted={len(self.attempted_tokens)})")
