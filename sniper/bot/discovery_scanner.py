"""
Discovery Scanner - Détection des nouveaux tokens
=================================================

Interroge périodiquement plusieurs flux de nouveaux tokens, déduplique
contre l'ensemble des tokens connus (persisté) et la liste d'exclusion,
valide rapidement chaque candidat on-chain puis invoque le callback pour
chaque survivant. Fournit aussi l'attente de liquidité avant une entrée.
"""

import asyncio
import logging
import re
import time
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from ..core.event_bus import EventBus, EventType
from ..core.persistence import KnownTokenStore
from ..market_data.aggregator import MarketDataAggregator
from ..market_data.base_provider import (
    MarketDataUnavailableError, ProviderError, QueueSaturationError,
)
from ..market_data.feeds import CandidateFeed
from ..market_data.providers import OnChainProvider
from ..models.asset import DiscoveryRecord
from ..models.config import SniperConfig
from ..utils.async_utils import backoff_delays, safe_ensure_future, wait_for_event
from ..utils.math_utils import to_base_units


NewAssetCallback = Callable[[str], Awaitable[None]]

# Adresse base58 Solana (clé publique de 32 octets)
BASE58_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")

SOL_DECIMALS = 9


class DiscoveryScanner:
    """
    Scanner de nouveaux tokens

    Responsabilités:
    - Boucle de scan périodique, jamais interrompue par l'échec d'un flux
    - Ensemble des tokens connus, croissant et persisté
    - Validation rapide on-chain (compte, programme propriétaire, âge)
    - Attente de liquidité avec backoff borné
    """

    def __init__(self, config: SniperConfig, aggregator: MarketDataAggregator,
                 onchain: OnChainProvider, known_store: KnownTokenStore,
                 feeds: Iterable[CandidateFeed], event_bus: Optional[EventBus] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialise le scanner

        Args:
            config: Configuration complète
            aggregator: Agrégateur de données partagé
            onchain: Fournisseur RPC pour la lecture des comptes
            known_store: Fichier de l'ensemble des tokens connus
            feeds: Flux interrogés à chaque cycle
            event_bus: Bus d'événements (optionnel)
            sleep: Fonction d'attente du backoff de liquidité
            clock: Horloge monotone du backoff de liquidité
        """
        self.config = config
        self.discovery = config.discovery
        self.aggregator = aggregator
        self.onchain = onchain
        self.known_store = known_store
        self.feeds = list(feeds)
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)
        self._sleep = sleep
        self._clock = clock

        self.excluded_tokens: Set[str] = config.get_excluded_tokens()
        self.known_tokens: Set[str] = known_store.load()
        self._seed_pending = self.discovery.seed_known_tokens_on_first_scan and not self.known_tokens

        # État de la boucle
        self.is_scanning = False
        self._stop_event = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._callback: Optional[NewAssetCallback] = None
        self._callback_tasks: Set[asyncio.Task] = set()

        # Métriques
        self.scan_count = 0
        self.error_cycles = 0
        self.candidates_seen = 0
        self.validation_rejects = 0
        self.dispatched = 0
        self.feed_errors: Dict[str, int] = defaultdict(int)
        self.last_scan_time: Optional[float] = None

    # =============================================================================
    # LIFECYCLE
    # =============================================================================

    async def start_monitoring(self, callback: NewAssetCallback) -> None:
        """
        Démarre la boucle de scan

        Args:
            callback: Appelé une fois par nouveau token qualifié
        """
        if self.is_scanning:
            self.logger.warning("Already monitoring for new tokens")
            return

        self.logger.info(
            f"🔍 Starting token discovery ({len(self.feeds)} feeds, "
            f"{len(self.known_tokens)} known tokens, every {self.discovery.scan_interval_seconds}s)"
        )
        self._callback = callback
        self.is_scanning = True
        self._stop_event.clear()
        self._loop_task = safe_ensure_future(self._monitoring_loop(), name="discovery-loop")

    async def stop_monitoring(self, grace_seconds: Optional[float] = None) -> None:
        """Arrête la boucle; le cycle en cours se termine dans le délai de grâce"""
        if not self.is_scanning:
            return

        self.logger.info("Stopping token discovery")
        self.is_scanning = False
        self._stop_event.set()

        grace = self.config.bot.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        pending = [t for t in [self._loop_task, *self._callback_tasks] if t and not t.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=grace)
            for task in still_running:
                task.cancel()
            if still_running:
                self.logger.warning(f"Abandoned {len(still_running)} discovery task(s) after {grace}s")
                await asyncio.gather(*still_running, return_exceptions=True)

        await self.known_store.save(self.known_tokens)

    async def _monitoring_loop(self) -> None:
        """Boucle principale du scanner"""
        while self.is_scanning and not self._stop_event.is_set():
            delay = self.discovery.scan_interval_seconds
            try:
                await self.scan_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.error_cycles += 1
                self.logger.error(f"Error monitoring new tokens: {e}")
                delay = min(self.discovery.error_retry_seconds, self.discovery.scan_interval_seconds)

            if await wait_for_event(self._stop_event, delay):
                break

    # =============================================================================
    # SCANNING
    # =============================================================================

    async def scan_once(self) -> List[str]:
        """
        Exécute un cycle de scan

        Returns:
            Adresses transmises au callback pendant ce cycle
        """
        self.scan_count += 1
        self.last_scan_time = time.time()

        results = await asyncio.gather(
            *(feed.fetch_candidates() for feed in self.feeds), return_exceptions=True
        )

        candidates: Dict[str, DiscoveryRecord] = {}
        baseline: Set[str] = set()

        for feed, result in zip(self.feeds, results):
            if isinstance(result, BaseException):
                self.feed_errors[feed.name] += 1
                self.logger.warning(f"Feed {feed.name} failed: {result}")
                continue

            seeding = self._seed_pending and feed.is_baseline
            for record in result:
                address = record.address
                if address in self.known_tokens or address in self.excluded_tokens:
                    continue
                if seeding:
                    baseline.add(address)
                elif address not in candidates:
                    candidates[address] = record

            if seeding:
                self._seed_pending = False

        new_addresses = baseline | set(candidates)
        if new_addresses:
            self.known_tokens.update(new_addresses)
            await self.known_store.save(self.known_tokens)

        if baseline:
            self.logger.info(f"Recorded {len(baseline)} baseline tokens without dispatch")

        if not candidates:
            return []

        self.candidates_seen += len(candidates)
        self.logger.info(f"Found {len(candidates)} potentially new tokens")

        records = list(candidates.values())
        verdicts = await asyncio.gather(*(self.quick_validate(r.address) for r in records))

        dispatched = []
        for record, is_valid in zip(records, verdicts):
            if not is_valid:
                self.validation_rejects += 1
                continue

            self.logger.info(
                f"🔔 New token detected: {record.address} "
                f"({record.symbol or 'Unknown'} - {record.name or 'Unknown'}) via {record.source}"
            )
            if self.event_bus:
                await self.event_bus.publish(
                    EventType.TOKEN_DISCOVERED, record, source="discovery_scanner"
                )
            self._dispatch(record.address)
            dispatched.append(record.address)

        return dispatched

    def _dispatch(self, address: str) -> None:
        if self._callback is None:
            return
        task = safe_ensure_future(self._callback(address), name=f"new-asset-{address[:8]}")
        self._callback_tasks.add(task)
        task.add_done_callback(self._callback_tasks.discard)
        self.dispatched += 1

    async def quick_validate(self, address: str) -> bool:
        """
        Validation rapide d'un candidat

        Vérifie la syntaxe de l'adresse, l'existence du compte on-chain, son
        programme propriétaire et, si déterminable, la fenêtre d'âge.
        """
        if not BASE58_ADDRESS.match(address or ""):
            self.logger.debug(f"{address}: not a valid address")
            return False

        try:
            account = await self.onchain.get_account_info(address)
        except (ProviderError, QueueSaturationError) as e:
            self.logger.debug(f"{address}: error checking token account: {e}")
            return False

        if account is None:
            self.logger.debug(f"{address}: no account found")
            return False

        if account.owner not in self.discovery.token_program_ids:
            self.logger.debug(f"{address}: not owned by a token program ({account.owner})")
            return False

        try:
            age_days = await self.aggregator.get_token_age(address)
        except (MarketDataUnavailableError, QueueSaturationError) as e:
            self.logger.debug(f"{address}: age unavailable: {e}")
            age_days = 0.0

        if age_days > 0:
            age_hours = age_days * 24
            if not self.discovery.min_token_age_hours <= age_hours <= self.discovery.max_token_age_hours:
                self.logger.debug(f"{address}: age {age_hours:.1f}h outside window")
                return False

        return True

    # =============================================================================
    # LIQUIDITY
    # =============================================================================

    async def wait_for_liquidity(self, address: str, max_wait_ms: Optional[int] = None) -> bool:
        """
        Attend qu'un token devienne négociable

        Args:
            address: Adresse du token
            max_wait_ms: Attente maximum en millisecondes

        Returns:
            bool: True dès qu'une quote, une liquidité suffisante ou un prix existe
        """
        if address in self.excluded_tokens:
            self.logger.info(f"{address} is an established token, skipping liquidity check")
            return True

        max_wait_ms = self.discovery.max_wait_for_liquidity_ms if max_wait_ms is None else max_wait_ms
        deadline = self._clock() + max_wait_ms / 1000

        if await self._has_liquidity(address):
            self.logger.info(f"✅ {address}: immediate liquidity found")
            return True

        delays = backoff_delays(
            self.discovery.liquidity_backoff_initial_seconds,
            self.discovery.liquidity_backoff_multiplier,
            self.discovery.liquidity_backoff_max_seconds,
        )
        for attempt in range(1, self.discovery.liquidity_max_attempts + 1):
            remaining = deadline - self._clock()
            if remaining <= 0 or self._stop_event.is_set():
                break

            await self._sleep(min(next(delays), remaining))
            if await self._has_liquidity(address):
                self.logger.info(f"✅ {address}: liquidity found after {attempt} poll(s)")
                return True

        self.logger.info(f"⚠️ {address}: no liquidity found within {max_wait_ms / 1000:.0f}s")
        return False

    async def _has_liquidity(self, address: str) -> bool:
        """Quote, liquidité et prix interrogés en parallèle"""
        base_mint = self.config.network.base_mint
        amount = to_base_units(self.discovery.test_quote_amount, SOL_DECIMALS)

        async def quote_check() -> bool:
            return await self.aggregator.get_quote(base_mint, address, amount) is not None

        async def liquidity_check() -> bool:
            return await self.aggregator.get_liquidity(address) >= self.discovery.min_liquidity_threshold

        async def price_check() -> bool:
            return await self.aggregator.get_price(address) > 0

        pending = {
            asyncio.ensure_future(quote_check()),
            asyncio.ensure_future(liquidity_check()),
            asyncio.ensure_future(price_check()),
        }
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                found = False
                for task in done:
                    if task.exception() is not None:
                        self.logger.debug(f"{address}: liquidity check failed: {task.exception()}")
                    elif task.result():
                        found = True
                if found:
                    return True
            return False
        finally:
            # Shared in-flight fetches are shielded inside the aggregator
            for task in pending:
                task.cancel()

    # =============================================================================
    # STATS
    # =============================================================================

    def get_scanner_stats(self) -> Dict[str, Any]:
        return {
            "is_scanning": self.is_scanning,
            "known_tokens": len(self.known_tokens),
            "excluded_tokens": len(self.excluded_tokens),
            "scans": self.scan_count,
            "error_cycles": self.error_cycles,
            "candidates_seen": self.candidates_seen,
            "validation_rejects": self.validation_rejects,
            "dispatched": self.dispatched,
            "pending_callbacks": len(self._callback_tasks),
            "feed_errors": dict(self.feed_errors),
            "last_scan_time": self.last_scan_time,
        }
