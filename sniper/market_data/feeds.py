"""
New-token feeds polled by the discovery scanner.

A feed returns DiscoveryRecord candidates; filtering against the known set
and the exclusion list is the scanner's job.
"""

import logging
from typing import List

from .base_provider import BaseProvider
from .providers import JupiterProvider
from ..models.asset import DiscoveryRecord


class CandidateFeed:
    """Interface of a new-token feed"""

    name = "feed"
    # A baseline feed lists every tradable token, not just new ones
    is_baseline = False

    async def fetch_candidates(self) -> List[DiscoveryRecord]:
        raise NotImplementedError


class JupiterTokenListFeed(CandidateFeed):
    """Full Jupiter token list, refreshed at the pools cache TTL"""

    name = "jupiter"
    is_baseline = True

    def __init__(self, provider: JupiterProvider):
        self.provider = provider
        self.logger = logging.getLogger(__name__)

    async def fetch_candidates(self) -> List[DiscoveryRecord]:
        tokens = await self.provider.fetch_token_list()
        return [
            DiscoveryRecord(
                address=token["address"],
                symbol=token.get("symbol", ""),
                name=token.get("name", ""),
                source=self.name,
            )
            for token in tokens
        ]


class PumpFunFeed(BaseProvider, CandidateFeed):
    """Recently created pump.fun tokens"""

    name = "pumpfun"

    async def fetch_candidates(self) -> List[DiscoveryRecord]:
        data = await self._get("/tokens/recent")
        tokens = data.get("tokens") if isinstance(data, dict) else None
        if not isinstance(tokens, list):
            self.logger.debug("pump.fun returned no token array")
            return []

        return [
            DiscoveryRecord(
                address=token["address"],
                symbol=token.get("symbol") or "PUMP",
                name=token.get("name") or "Pump Token",
                source=self.name,
            )
            for token in tokens
            if isinstance(token, dict) and token.get("address")
        ]


def build_feeds(config, jupiter: JupiterProvider, session=None) -> List[CandidateFeed]:
    """Instantiate the feeds listed in discovery.feeds, in order"""
    feeds: List[CandidateFeed] = []
    for name in config.discovery.feeds:
        if name == "jupiter":
            feeds.append(JupiterTokenListFeed(jupiter))
        elif name == "pumpfun":
            feeds.append(PumpFunFeed(config.market_data.providers.pumpfun, session))
        else:
            logging.getLogger(__name__).warning(f"Unknown discovery feed '{name}', ignored")
    return feeds
