"""
Dashboard - Affichage console des positions et du statut
========================================================

Tables rich utilisées par le CLI: positions persistées, statut du moteur,
métriques d'un token.
"""

import time
from typing import Any, Dict, Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..models.asset import AssetQuote, TokenInfo
from ..models.position import Position, PositionState
from ..utils.time_utils import format_duration, utc_isoformat


STATE_STYLES = {
    PositionState.OPEN: "[green]🟢 Open[/green]",
    PositionState.PARTIAL: "[yellow]🟡 Partial[/yellow]",
    PositionState.CLOSED: "[dim]⚪ Closed[/dim]",
}


def build_positions_table(positions: Iterable[Position], now: Optional[float] = None) -> Table:
    """Tableau des positions"""
    now = time.time() if now is None else now

    table = Table(show_header=True, header_style="bold magenta", border_style="cyan")
    table.add_column("Token", style="cyan", no_wrap=True)
    table.add_column("Symbol", style="yellow")
    table.add_column("Entry", style="white", justify="right")
    table.add_column("Stop Loss", style="red", justify="right")
    table.add_column("Take Profit", style="green", justify="right")
    table.add_column("Invested", style="white", justify="right")
    table.add_column("Age", style="cyan")
    table.add_column("Status")
    table.add_column("Exit", style="dim")

    for position in positions:
        token = position.token_address
        table.add_row(
            f"{token[:6]}…{token[-4:]}" if len(token) > 12 else token,
            position.symbol or "-",
            f"{position.entry_price:.8g}",
            f"{position.stop_loss_price:.8g}" if position.stop_loss_price > 0 else "[dim]none[/dim]",
            f"{position.take_profit_price:.8g}",
            f"{position.initial_investment:g} SOL",
            format_duration(now - position.entry_timestamp),
            STATE_STYLES[position.state] + (" (recovered)" if position.recovered else ""),
            position.exit_reason or "",
        )

    return table


def build_status_panel(status: Dict[str, Any]) -> Panel:
    """Panneau de statut du moteur"""
    engine = status.get("engine", {})
    wallet = status.get("wallet", {})
    positions = status.get("positions", {})
    scanner = status.get("scanner", {})
    events = status.get("events", {})

    balance = wallet.get("balance")
    balance_text = f"{balance:.4f} SOL" if balance is not None else "unknown"
    if wallet.get("low_balance"):
        balance_text = f"[red]{balance_text} ⚠️ low[/red]"

    lines = [
        f"State: [bold]{engine.get('state', 'unknown')}[/bold] ({engine.get('mode', '-')})",
        f"Wallet: {wallet.get('public_key') or '-'}  Balance: {balance_text}",
        f"Positions: {positions.get('active_positions', 0)}/{positions.get('max_positions', 0)} active, "
        f"{positions.get('total_opened', 0)} opened, {positions.get('total_closed', 0)} closed",
        f"Discovery: {scanner.get('known_tokens', 0)} known tokens, "
        f"{scanner.get('dispatched', 0)} dispatched, {scanner.get('scans', 0)} scans",
        f"Events: {events.get('published', 0)} published, {events.get('dropped', 0)} dropped",
        f"Uptime: {format_duration(engine.get('uptime_seconds', 0))}",
    ]
    return Panel("\n".join(lines), title="🤖 Pump Sniper Status", border_style="cyan")


def build_token_panel(address: str, token_info: Optional[TokenInfo], quote: AssetQuote,
                      verdict: str, validity_score: float, quick_score: float,
                      holders: int, pool_count: int) -> Panel:
    """Panneau de diagnostic d'un token"""
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")

    if token_info:
        table.add_row("Name", f"{token_info.name} ({token_info.symbol})")
    table.add_row("Price", f"{quote.price:.10g}")
    table.add_row("Liquidity", f"{quote.liquidity:,.2f}")
    table.add_row("Volume 24h", f"{quote.volume_24h:,.2f}")
    table.add_row("Change 24h", f"{quote.price_change_24h:+.2f}%")
    table.add_row("Age", f"{quote.age_days:.2f} days")
    table.add_row("Holders", str(holders))
    table.add_row("Pools", str(pool_count))
    table.add_row("Validity score", f"{validity_score:.4f}")
    table.add_row("Quick score", f"{quick_score:.4f}")
    style = "green" if verdict == "ok" else "red"
    table.add_row("Verdict", f"[{style}]{verdict}[/{style}]")

    return Panel(table, title=f"🔎 {address}", border_style="cyan", subtitle=utc_isoformat())


def print_positions(console: Console, positions: Iterable[Position], title: str = "Positions") -> None:
    positions = list(positions)
    if not positions:
        console.print("💤 [yellow]No positions[/yellow]")
        return
    console.print(Panel(build_positions_table(positions), title=f"📊 {title}", border_style="cyan"))
