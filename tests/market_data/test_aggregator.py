"""
Tests for the market data aggregator: cache, coalescing, retries and fallthrough.
"""
import asyncio

import pytest

from sniper.market_data.aggregator import MarketDataAggregator
from sniper.market_data.base_provider import (
    MarketDataUnavailableError, PermanentProviderError, QueueSaturationError,
    RateLimitError, TransientProviderError,
)
from sniper.market_data.cache import MarketDataCache
from sniper.models.asset import AssetQuote, SwapQuote, TokenInfo
from sniper.models.config import SniperConfig


TOKEN = "TokenAxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxx"

ORDER = {
    "price": ["jupiter", "raydium"],
    "liquidity": ["raydium"],
    "volume": ["jupiter"],
    "metrics": ["jupiter"],
    "token_info": ["jupiter"],
    "age": ["onchain"],
    "holders": ["solscan"],
    "quote": ["jupiter"],
}


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def build(clock, sleeps):
    """Aggregator factory over scripted providers"""

    async def record_sleep(seconds):
        sleeps.append(seconds)

    def _build(*providers, ttls=None):
        cache = MarketDataCache(ttls, clock=clock)
        return MarketDataAggregator(
            {p.name: p for p in providers}, cache, ORDER, sleep=record_sleep
        )

    return _build


@pytest.mark.asyncio
async def test_absence_of_data_is_zero_not_error(build, make_provider):
    aggregator = build(make_provider("jupiter"), make_provider("raydium"),
                       make_provider("onchain"), make_provider("solscan"))

    assert await aggregator.get_price(TOKEN) == 0.0
    assert await aggregator.get_liquidity(TOKEN) == 0.0
    assert await aggregator.get_volume(TOKEN) == 0.0
    assert await aggregator.get_token_age(TOKEN) == 0.0
    assert await aggregator.get_token_holders(TOKEN) == 0
    assert await aggregator.get_token_info(TOKEN) is None
    assert await aggregator.get_quote("SOL", TOKEN, 10_000_000) is None


@pytest.mark.asyncio
async def test_repeat_request_within_ttl_hits_cache(build, make_provider, clock):
    jupiter = make_provider("jupiter", {"price": 1.25})
    aggregator = build(jupiter, ttls={"price": 300})

    assert await aggregator.get_price(TOKEN) == 1.25
    clock.advance(299)
    assert await aggregator.get_price(TOKEN) == 1.25
    assert jupiter.calls["price"] == 1

    clock.advance(2)
    await aggregator.get_price(TOKEN)
    assert jupiter.calls["price"] == 2


@pytest.mark.asyncio
async def test_max_age_forces_fresh_read(build, make_provider, clock):
    jupiter = make_provider("jupiter", {"price": [1.0, 2.0]})
    aggregator = build(jupiter, ttls={"price": 300})

    assert await aggregator.get_price(TOKEN) == 1.0
    clock.advance(20)
    assert await aggregator.get_price(TOKEN, max_age=15) == 2.0
    assert jupiter.calls["price"] == 2


@pytest.mark.asyncio
async def test_concurrent_requests_coalesce(build, make_provider):
    jupiter = make_provider("jupiter", {"price": 0.5})
    jupiter.gate = asyncio.Event()
    aggregator = build(jupiter)

    pending = asyncio.ensure_future(
        asyncio.gather(*(aggregator.get_price(TOKEN) for _ in range(10)))
    )
    await asyncio.sleep(0.01)
    jupiter.gate.set()
    results = await pending

    assert results == [0.5] * 10
    assert jupiter.calls["price"] == 1
    assert aggregator.upstream_calls == 1
    assert aggregator.coalesced_calls == 9


@pytest.mark.asyncio
async def test_coalesced_failure_reaches_every_caller(build, make_provider):
    jupiter = make_provider("jupiter", {"price": QueueSaturationError("full")})
    jupiter.gate = asyncio.Event()
    aggregator = build(jupiter)

    pending = asyncio.ensure_future(asyncio.gather(
        *(aggregator.get_price(TOKEN) for _ in range(3)), return_exceptions=True
    ))
    await asyncio.sleep(0.01)
    jupiter.gate.set()
    results = await pending

    assert all(isinstance(r, QueueSaturationError) for r in results)
    assert jupiter.calls["price"] == 1


@pytest.mark.asyncio
async def test_rate_limited_provider_backs_off(build, make_provider, sleeps):
    jupiter = make_provider(
        "jupiter", {"price": [RateLimitError("429"), RateLimitError("429"), 3.0]},
        min_interval_seconds=1.0,
    )
    aggregator = build(jupiter)

    assert await aggregator.get_price(TOKEN) == 3.0
    assert sleeps == [1.0, 1.5]
    assert aggregator.retries == 2


@pytest.mark.asyncio
async def test_rate_limit_backoff_is_capped(build, make_provider, sleeps):
    jupiter = make_provider("jupiter", {"price": RateLimitError("429")}, min_interval_seconds=1.0)
    aggregator = build(jupiter)

    with pytest.raises(MarketDataUnavailableError):
        await aggregator.get_price(TOKEN)

    assert len(sleeps) == 15
    assert sleeps[:3] == [1.0, 1.5, 2.25]
    assert max(sleeps) == 30.0
    assert jupiter.calls["price"] == 16


@pytest.mark.asyncio
async def test_transient_failure_falls_through_to_next_provider(build, make_provider):
    jupiter = make_provider("jupiter", {"price": TransientProviderError("timeout")})
    raydium = make_provider("raydium", {"price": 2.0})
    aggregator = build(jupiter, raydium)

    assert await aggregator.get_price(TOKEN) == 2.0
    # One call plus two transient retries
    assert jupiter.calls["price"] == 3
    assert aggregator.fallthroughs == 1


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried(build, make_provider, sleeps):
    jupiter = make_provider("jupiter", {"price": PermanentProviderError("404", status=404)})
    raydium = make_provider("raydium", {"price": 2.0})
    aggregator = build(jupiter, raydium)

    assert await aggregator.get_price(TOKEN) == 2.0
    assert jupiter.calls["price"] == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_all_providers_down_raises(build, make_provider):
    jupiter = make_provider("jupiter", {"price": TransientProviderError("503")})
    raydium = make_provider("raydium", {"price": TransientProviderError("503")})
    aggregator = build(jupiter, raydium)

    with pytest.raises(MarketDataUnavailableError):
        await aggregator.get_price(TOKEN)


@pytest.mark.asyncio
async def test_mixed_failures_mean_no_data(build, make_provider):
    jupiter = make_provider("jupiter", {"price": TransientProviderError("503")})
    raydium = make_provider("raydium", {"price": PermanentProviderError("400")})
    aggregator = build(jupiter, raydium)

    assert await aggregator.get_price(TOKEN) == 0.0


@pytest.mark.asyncio
async def test_disabled_provider_is_skipped(build, make_provider):
    jupiter = make_provider("jupiter", {"price": 9.0}, enabled=False)
    raydium = make_provider("raydium", {"price": 2.0})
    aggregator = build(jupiter, raydium)

    assert await aggregator.get_price(TOKEN) == 2.0
    assert jupiter.calls["price"] == 0


@pytest.mark.asyncio
async def test_queue_saturation_propagates(build, make_provider):
    jupiter = make_provider("jupiter", {"price": QueueSaturationError("full")})
    raydium = make_provider("raydium", {"price": 2.0})
    aggregator = build(jupiter, raydium)

    with pytest.raises(QueueSaturationError):
        await aggregator.get_price(TOKEN)
    assert raydium.calls["price"] == 0


@pytest.mark.asyncio
async def test_quotes_are_cached_per_amount(build, make_provider):
    quote = SwapQuote("SOL", TOKEN, 1000, 5000)
    jupiter = make_provider("jupiter", {"quote": quote})
    aggregator = build(jupiter)

    assert await aggregator.get_quote("SOL", TOKEN, 1000) is quote
    assert await aggregator.get_quote("SOL", TOKEN, 1000) is quote
    await aggregator.get_quote("SOL", TOKEN, 2000)
    assert jupiter.calls["quote"] == 2


@pytest.mark.asyncio
async def test_metrics_filled_from_liquidity_and_age(build, make_provider):
    jupiter = make_provider("jupiter", {"metrics": AssetQuote(TOKEN, price=1.0, volume_24h=500.0)})
    raydium = make_provider("raydium", {"liquidity": 800.0})
    onchain = make_provider("onchain", {"age": 3.0})
    aggregator = build(jupiter, raydium, onchain)

    metrics = await aggregator.get_metrics(TOKEN)
    assert metrics.liquidity == 800.0
    assert metrics.age_days == 3.0

    # The cached metrics object is not mutated
    cached = await aggregator.get_metrics(TOKEN)
    assert cached is not metrics
    assert jupiter.calls["metrics"] == 1


@pytest.mark.asyncio
async def test_metrics_without_data_are_empty(build, make_provider):
    aggregator = build(make_provider("jupiter"), make_provider("raydium"), make_provider("onchain"))
    metrics = await aggregator.get_metrics(TOKEN)
    assert metrics.is_empty
    assert metrics.address == TOKEN


@pytest.mark.asyncio
async def test_pool_count_without_raydium_scan(build, make_provider):
    aggregator = build(make_provider("raydium"))
    assert await aggregator.get_pool_count(TOKEN) == 0


@pytest.mark.asyncio
async def test_rank_candidates_orders_valid_tokens(build, make_provider):
    good = AssetQuote(TOKEN, price=1.0, volume_24h=5000.0, liquidity=10000.0, age_days=2.0)
    jupiter = make_provider("jupiter", {
        "metrics": good,
        "token_info": [TokenInfo(TOKEN, "GOOD", "Good Token"), TokenInfo("B", "SCAM", "Scam")],
    })
    solscan = make_provider("solscan", {"holders": 250})
    aggregator = build(jupiter, solscan, make_provider("raydium"), make_provider("onchain"))

    ranked = await aggregator.rank_candidates([TOKEN, "B", TOKEN])
    assert [address for address, _ in ranked] == [TOKEN]
    assert ranked[0][1] == pytest.approx(aggregator.calculate_token_score(good, 250))


@pytest.mark.asyncio
async def test_is_valid_token_rejects_without_info(build, make_provider):
    aggregator = build(make_provider("jupiter"), make_provider("raydium"), make_provider("onchain"))
    assert await aggregator.is_valid_token(TOKEN) is False


def test_from_config_builds_every_provider():
    aggregator = MarketDataAggregator.from_config(SniperConfig())
    assert set(aggregator.providers) == {"jupiter", "raydium", "birdeye", "solscan", "onchain"}
    # Birdeye needs an API key
    assert aggregator.providers["birdeye"].is_enabled is False
    assert aggregator.get_stats()["upstream_calls"] == 0
