"""
Command-line interface for the pump sniper.
Allows control and inspection of the bot and its persisted state.
"""

import asyncio
import os
import sys

import click
from rich.console import Console

from sniper.bot.sniper_engine import SniperEngine
from sniper.config.settings import create_sample_config, load_config, validate_config
from sniper.core.persistence import KnownTokenStore, PositionStore
from sniper.market_data.aggregator import MarketDataAggregator
from sniper.market_data.base_provider import MarketDataUnavailableError, QueueSaturationError
from sniper.models.config import ConfigurationError
from sniper.ui.dashboard import build_status_panel, build_token_panel, print_positions
from sniper.utils.logging_utils import setup_logging


console = Console()


def _load_config(ctx):
    try:
        return load_config(ctx.obj.get('config_file'))
    except ConfigurationError as e:
        click.echo(f"❌ {e}")
        sys.exit(1)


@click.group()
@click.option('--config', '-c', help='Configuration file path')
@click.option('--verbose', '-v', is_flag=True, help='Verbose logging')
@click.pass_context
def cli(ctx, config, verbose):
    """Pump Sniper CLI"""

    # Console logging until a command loads the full configuration
    setup_logging({"console": True}, level="WARNING", verbose=verbose)

    ctx.ensure_object(dict)
    ctx.obj['config_file'] = config
    ctx.obj['verbose'] = verbose


@cli.command()
@click.pass_context
def start(ctx):
    """Start the sniper"""

    config = _load_config(ctx)
    setup_logging(config.logging, level=config.bot.log_level, verbose=ctx.obj.get('verbose'))

    mode = "PAPER TRADING" if config.is_paper_trading() else "LIVE"
    click.echo(f"🚀 Starting Pump Sniper ({mode})...")
    click.echo("Press Ctrl+C to stop the bot.")

    try:
        engine = SniperEngine(config)
        asyncio.run(engine.run_forever())
    except ConfigurationError as e:
        click.echo(f"❌ Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\n👋 Bot stopped by user")


@cli.command()
@click.option('--output', '-o', default='config.sample.yaml', help='Output file name')
def init(output):
    """Create a sample configuration file"""

    click.echo(f"📝 Creating sample configuration: {output}")
    create_sample_config(output)

    click.echo("\n📋 Next steps:")
    click.echo(f"1. Edit {output} (keep API keys and RPC URLs in .env)")
    click.echo("2. Rename to config.yaml")
    click.echo("3. Run: python cli.py validate")
    click.echo("4. Run: python cli.py start")


@cli.command()
@click.option('--config', '-c', 'config_file', help='Configuration file to validate')
def validate(config_file):
    """Validate configuration file"""

    config_file = config_file or "config.yaml"
    click.echo(f"🔍 Validating configuration: {config_file}")

    if not os.path.exists(config_file):
        click.echo(f"❌ Configuration file not found: {config_file}")
        click.echo("💡 Run 'python cli.py init' to create a sample config")
        sys.exit(1)

    is_valid, errors = validate_config(config_file)
    if not is_valid:
        click.echo("❌ Configuration has errors:")
        for error in errors:
            click.echo(f"   • {error}")
        sys.exit(1)

    click.echo("✅ Configuration is valid!")


@cli.command()
@click.pass_context
def status(ctx):
    """Show wallet, positions and discovery status without trading"""

    config = _load_config(ctx)

    async def collect():
        engine = SniperEngine(config)
        try:
            if not await engine.initialize():
                return None
            # Read-only view of the persisted positions, no monitoring is started
            engine.position_manager.load_positions()
            return await engine.get_status()
        finally:
            await engine.stop(grace_seconds=0)

    try:
        engine_status = asyncio.run(collect())
    except ConfigurationError as e:
        click.echo(f"❌ Configuration error: {e}")
        sys.exit(1)

    if engine_status is None:
        click.echo("❌ Engine initialization failed")
        sys.exit(1)

    console.print(build_status_panel(engine_status))


@cli.command()
@click.option('--all', 'show_all', is_flag=True, help='Include closed positions')
@click.pass_context
def positions(ctx, show_all):
    """Show persisted positions"""

    config = _load_config(ctx)
    store = PositionStore(config.persistence.positions_file)
    loaded = store.load()

    shown = loaded if show_all else [p for p in loaded if p.monitoring]
    active = sum(1 for p in loaded if p.monitoring)
    click.echo(f"📊 Active positions: {active}/{config.trading.max_active_positions} "
               f"({len(loaded)} total in {store.path})")
    print_positions(console, shown, title="All Positions" if show_all else "Active Positions")


@cli.command('known-tokens')
@click.option('--reset', is_flag=True, help='Forget every known token')
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def known_tokens(ctx, reset, yes):
    """Show or reset the known-token set"""

    config = _load_config(ctx)
    store = KnownTokenStore(config.persistence.known_tokens_file)
    tokens = store.load()

    click.echo(f"🗂️  {len(tokens)} known tokens in {store.path}")
    if not reset:
        return

    if not yes and not click.confirm("Every known token will be reported as new again. Continue?"):
        click.echo("Aborted")
        return

    if asyncio.run(store.reset()):
        click.echo("✅ Known-token set reset")
    else:
        click.echo("❌ Could not reset known-token set")
        sys.exit(1)


async def _with_aggregator(config, action):
    aggregator = MarketDataAggregator.from_config(config)
    try:
        return await action(aggregator)
    finally:
        await aggregator.close()


@cli.command()
@click.argument('address')
@click.pass_context
def price(ctx, address):
    """Show the current price of a token"""

    config = _load_config(ctx)

    try:
        value = asyncio.run(_with_aggregator(config, lambda a: a.get_price(address)))
    except (MarketDataUnavailableError, QueueSaturationError) as e:
        click.echo(f"❌ Market data unavailable: {e}")
        sys.exit(1)

    if value > 0:
        click.echo(f"💵 {address}: {value:.10g}")
    else:
        click.echo(f"📭 No price available for {address}")


@cli.command()
@click.argument('address')
@click.pass_context
def check(ctx, address):
    """Run the validity gate and scores on a token"""

    config = _load_config(ctx)

    async def run_check(aggregator):
        token_info = await aggregator.get_token_info(address)
        quote = await aggregator.get_metrics(address)
        holders = await aggregator.get_token_holders(address)
        pool_count = await aggregator.get_pool_count(address)
        _, verdict = aggregator.check_token(token_info, quote)
        return build_token_panel(
            address, token_info, quote, verdict,
            aggregator.calculate_token_score(quote, holders),
            aggregator.calculate_quick_score(quote.liquidity, quote.volume_24h, quote.price, pool_count),
            holders, pool_count,
        )

    try:
        panel = asyncio.run(_with_aggregator(config, run_check))
    except (MarketDataUnavailableError, QueueSaturationError) as e:
        click.echo(f"❌ Market data unavailable: {e}")
        sys.exit(1)

    console.print(panel)


if __name__ == '__main__':
    cli()
