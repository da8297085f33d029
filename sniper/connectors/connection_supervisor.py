"""
Connection Supervisor - Souscription websocket résiliente
=========================================================

Maintient une souscription logique aux événements du compte (logsSubscribe
sur le RPC websocket Solana). Le superviseur n'interprète pas le contenu
des événements: il les relaie via on_event, l'interprétation appartient
au client d'exécution.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import aiohttp

from ..models.config import ConnectionConfig
from ..utils.async_utils import safe_ensure_future, wait_for_event


Callback = Callable[[Any], Union[None, Awaitable[None]]]


class ConnectionLostError(Exception):
    """La connexion websocket s'est fermée ou a échoué"""
    pass


class SubscriptionError(Exception):
    """Le nœud a refusé la souscription"""
    pass


class ConnectionSupervisor:
    """
    Superviseur de connexion

    Responsabilités:
    - Ouvrir la connexion websocket et souscrire aux logs du compte
    - Reconnecter avec backoff exponentiel, nombre de tentatives borné
    - Health check périodique qui rétablit une souscription absente
    - Relayer événements et erreurs aux callbacks injectés
    """

    def __init__(self, ws_url: str, account: str,
                 on_event: Optional[Callback] = None,
                 on_error: Optional[Callback] = None,
                 config: Optional[ConnectionConfig] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        """
        Initialise le superviseur

        Args:
            ws_url: Endpoint websocket du RPC
            account: Clé publique dont on observe les logs
            on_event: Callback appelé pour chaque notification
            on_error: Callback appelé pour chaque erreur de souscription
            config: Paramètres de reconnexion et de health check
            session: Session aiohttp (créée à la demande sinon)
        """
        self.ws_url = ws_url
        self.account = account
        self.on_event = on_event
        self.on_error = on_error
        self.config = config or ConnectionConfig()
        self.logger = logging.getLogger(__name__)

        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._subscription_id: Optional[int] = None
        self._request_id = 0
        self._pending_request_id: Optional[int] = None

        self._running = False
        self._stop_event = asyncio.Event()
        self._subscription_task: Optional[asyncio.Task] = None
        self._health_task: Optional[asyncio.Task] = None
        self._attempts = 0

        # Métriques
        self.events_received = 0
        self.error_count = 0
        self.reconnect_count = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_subscribed(self) -> bool:
        return self._ws is not None and not self._ws.closed and self._subscription_id is not None

    # =============================================================================
    # LIFECYCLE
    # =============================================================================

    async def start(self) -> None:
        if self._running:
            self.logger.warning("Connection supervisor already running")
            return

        self.logger.info(f"🔌 Starting account subscription for {self.account[:8]}...")
        self._running = True
        self._stop_event.clear()
        self._start_subscription()
        self._health_task = safe_ensure_future(self._health_check_loop(), name="ws-health-check")

    async def stop(self) -> None:
        if not self._running:
            return

        self.logger.info("Stopping connection supervisor")
        self._running = False
        self._stop_event.set()

        if self._ws is not None and not self._ws.closed:
            await self._ws.close()

        for task in (self._subscription_task, self._health_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    def _start_subscription(self) -> None:
        self._attempts = 0
        self._subscription_task = safe_ensure_future(self._run_subscription(), name="ws-subscription")

    # =============================================================================
    # SUBSCRIPTION LOOP
    # =============================================================================

    async def _run_subscription(self) -> None:
        """Boucle de souscription avec reconnexion bornée"""
        while self._running:
            try:
                await self._listen_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self._running:
                    break

                self._attempts += 1
                self.error_count += 1
                await self._invoke(self.on_error, e)

                if self._attempts >= self.config.max_reconnect_attempts:
                    self.logger.error(
                        f"❌ Max reconnection attempts ({self.config.max_reconnect_attempts}) reached, "
                        f"waiting for health check"
                    )
                    break

                delay = self._reconnect_delay(self._attempts)
                self.logger.warning(
                    f"Subscription error ({e}), reconnecting in {delay:.1f}s "
                    f"(attempt {self._attempts}/{self.config.max_reconnect_attempts})"
                )
                self.reconnect_count += 1
                if await wait_for_event(self._stop_event, delay):
                    break

    def _reconnect_delay(self, attempt: int) -> float:
        delay = self.config.initial_reconnect_delay_seconds * (2 ** (attempt - 1))
        return min(delay, self.config.max_reconnect_delay_seconds)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def _subscribe_request(self) -> Dict[str, Any]:
        self._request_id += 1
        return {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "logsSubscribe",
            "params": [{"mentions": [self.account]}, {"commitment": self.config.commitment}],
        }

    async def _listen_once(self) -> None:
        """Une session websocket complète: connexion, souscription, lecture"""
        session = await self._get_session()
        try:
            async with session.ws_connect(self.ws_url, heartbeat=self.config.heartbeat_seconds) as ws:
                self._ws = ws
                request = self._subscribe_request()
                self._pending_request_id = request["id"]
                await ws.send_json(request)

                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        try:
                            payload = json.loads(msg.data)
                        except ValueError:
                            self.logger.debug(f"Ignoring non-JSON frame: {msg.data[:80]!r}")
                            continue
                        await self._handle_message(payload)
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        raise ConnectionLostError(f"WebSocket error: {ws.exception()}")

            if self._running:
                raise ConnectionLostError("WebSocket connection closed")
        finally:
            self._ws = None
            self._subscription_id = None

    async def _handle_message(self, payload: Dict[str, Any]) -> None:
        if payload.get("id") is not None and payload.get("id") == self._pending_request_id:
            if payload.get("error"):
                raise SubscriptionError(f"logsSubscribe rejected: {payload['error']}")
            self._subscription_id = payload.get("result")
            self._attempts = 0
            self.logger.info(f"✅ Subscribed to account logs (subscription {self._subscription_id})")
            return

        if payload.get("method") == "logsNotification":
            self.events_received += 1
            result = (payload.get("params") or {}).get("result")
            await self._invoke(self.on_event, result)

    # =============================================================================
    # HEALTH CHECK
    # =============================================================================

    async def _health_check_loop(self) -> None:
        """Rétablit la souscription si elle est absente"""
        while self._running:
            if await wait_for_event(self._stop_event, self.config.health_check_interval_seconds):
                break
            await self.check_health()

    async def check_health(self) -> bool:
        """
        Vérifie la souscription et la relance si elle est absente

        Returns:
            bool: True si la souscription était active
        """
        if not self._running:
            return False

        task_alive = self._subscription_task is not None and not self._subscription_task.done()
        if task_alive:
            return True

        self.logger.warning("🔄 Subscription absent, re-establishing")
        self._start_subscription()
        return False

    # =============================================================================
    # CALLBACKS & STATUS
    # =============================================================================

    async def _invoke(self, callback: Optional[Callback], argument: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(argument)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            self.logger.error(f"Error in connection callback: {e}")

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "subscribed": self.is_subscribed,
            "subscription_id": self._subscription_id,
            "attempts": self._attempts,
            "events_received": self.events_received,
            "errors": self.error_count,
            "reconnects": self.reconnect_count,
        }
