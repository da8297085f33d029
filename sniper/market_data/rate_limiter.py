"""
Rate Limiter - Gouvernance du débit par fournisseur
===================================================

Chaque fournisseur possède son propre limiteur combinant :
- un espacement minimum entre deux requêtes
- un plafond glissant (N requêtes par fenêtre)
- une file d'attente bornée : au-delà, l'appel échoue immédiatement
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Any, Optional

from .base_provider import QueueSaturationError


@dataclass
class RateWindow:
    """Statistiques de la fenêtre courante"""
    window_start: Optional[float]
    request_count: int


class RateLimiter:
    """
    Limiteur de débit d'un fournisseur

    Les appelants sont servis dans l'ordre d'arrivée (asyncio.Lock est FIFO).
    Le verrou est conservé pendant l'attente: c'est lui qui matérialise la
    file d'attente, dont la taille est bornée par max_queue_size.
    """

    def __init__(self, name: str, min_interval: float = 0.0,
                 max_requests: int = 20, window_seconds: float = 300.0,
                 max_queue_size: int = 50,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Any] = asyncio.sleep):
        """
        Initialise le limiteur

        Args:
            name: Nom du fournisseur (logs et erreurs)
            min_interval: Espacement minimum entre requêtes (secondes)
            max_requests: Requêtes autorisées par fenêtre glissante
            window_seconds: Durée de la fenêtre glissante
            max_queue_size: Nombre maximum d'appelants en attente
        """
        self.name = name
        self.min_interval = min_interval
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_queue_size = max_queue_size
        self.logger = logging.getLogger(f"{__name__}.{name}")

        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._timestamps: Deque[float] = deque()
        self._last_request_time: Optional[float] = None
        self._waiting = 0

        # Métriques
        self.total_requests = 0
        self.total_rejected = 0
        self.total_wait_seconds = 0.0

    @property
    def queue_depth(self) -> int:
        return self._waiting

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    def _required_wait(self, now: float) -> float:
        wait = 0.0
        if self._last_request_time is not None:
            wait = max(wait, self.min_interval - (now - self._last_request_time))
        if len(self._timestamps) >= self.max_requests:
            wait = max(wait, self.window_seconds - (now - self._timestamps[0]))
        return wait

    async def acquire(self) -> None:
        """
        Attend un créneau d'émission

        Raises:
            QueueSaturationError: si la file d'attente est pleine
        """
        if self._waiting >= self.max_queue_size:
            self.total_rejected += 1
            raise QueueSaturationError(
                f"{self.name}: request queue full ({self.max_queue_size} waiting)"
            )

        self._waiting += 1
        try:
            async with self._lock:
                while True:
                    now = self._clock()
                    self._prune(now)
                    wait = self._required_wait(now)
                    if wait <= 0:
                        break
                    if len(self._timestamps) >= self.max_requests:
                        self.logger.warning(
                            f"Rate window full for {self.name}, sleeping {wait:.1f}s"
                        )
                    self.total_wait_seconds += wait
                    await self._sleep(wait)

                self._timestamps.append(now)
                self._last_request_time = now
                self.total_requests += 1
        finally:
            self._waiting -= 1

    def get_window(self) -> RateWindow:
        now = self._clock()
        self._prune(now)
        return RateWindow(
            window_start=self._timestamps[0] if self._timestamps else None,
            request_count=len(self._timestamps),
        )

    def get_stats(self) -> Dict[str, Any]:
        window = self.get_window()
        return {
            "provider": self.name,
            "requests_in_window": window.request_count,
            "max_requests": self.max_requests,
            "queue_depth": self._waiting,
            "total_requests": self.total_requests,
            "total_rejected": self.total_rejected,
            "total_wait_seconds": round(self.total_wait_seconds, 3),
        }
