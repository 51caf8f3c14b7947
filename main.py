#!/usr/bin/env python3
"""
SlotSniper - Driving Test Slot Sniper - Main Entry Point

Usage:
    python main.py --config config/config.yaml run [--no-start]
    python main.py --config config/config.yaml status
    python main.py --config config/config.yaml logs [--limit 50] [--level warning]
    python main.py classify response.html [--deadline 2026-06-30]
"""
import asyncio
import logging
import sys
from pathlib import Path

import click
from dateutil import parser as date_parser
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from slotsniper.common.config import load_config
from slotsniper.common.models import Outcome, SessionSnapshot
from slotsniper.common.scheduler import SessionClock, format_countdown
from slotsniper.common.store import JsonFileStore
from slotsniper.engine.classifier import ResponseClassifier
from slotsniper.engine.controller import StartDecision, evaluate_cooldown_gate

console = Console()

LEVEL_STYLES = {
    "debug": "dim",
    "info": "white",
    "success": "green",
    "warning": "yellow",
    "error": "red",
}


def setup_logging(level: str = "INFO", log_file: str = None):
    """Configure logging"""
    handlers = [RichHandler(console=console, rich_tracebacks=True)]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(message)s",
        handlers=handlers
    )


def load_snapshot(cfg) -> SessionSnapshot:
    data = JsonFileStore(cfg.storage.state_file).load()
    return SessionSnapshot.model_validate(data) if data else SessionSnapshot()


@click.group()
@click.option("--config", "-c", default="config/config.yaml", help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, config, verbose):
    """
    SlotSniper - Driving Test Slot Sniper

    Polls the test centre availability page and claims released slots.
    """
    ctx.ensure_object(dict)

    try:
        cfg = load_config(config if Path(config).exists() else None)
        ctx.obj["config"] = cfg
        setup_logging(
            level="DEBUG" if verbose else cfg.logging.level,
            log_file=cfg.logging.file
        )
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {config}[/red]")
        console.print("Create a config file from config/config.example.yaml")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.option("--no-start", is_flag=True, help="Only resume a recovered session, never start a new one")
@click.pass_context
def run(ctx, no_start):
    """Open the browser and poll until the session ends"""
    from slotsniper.browser.bot import SlotSniperBot

    cfg = ctx.obj["config"]

    async def go():
        console.print(Panel(
            f"🎯 SlotSniper\n\n"
            f"Site: {cfg.site.home_url}\n"
            f"State file: {cfg.storage.state_file}\n\n"
            f"Press Ctrl+C to close the browser (session state is kept)",
            style="blue"
        ))

        async with SlotSniperBot(cfg) as bot:
            report = await bot.run(auto_start=not no_start)

            if report is None:
                console.print("[yellow]Session did not run - see the log above[/yellow]")
                return

            counters = bot.controller.counters
            console.print(Panel(
                f"Recovery: {report.kind.value}\n"
                f"Clicks today: {counters.daily_total}\n"
                f"Clicks total: {counters.total}",
                title="Session finished",
                style="green"
            ))

    try:
        asyncio.run(go())
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/yellow]")


@cli.command()
@click.pass_context
def status(ctx):
    """Show the persisted session state"""
    cfg = ctx.obj["config"]
    snapshot = load_snapshot(cfg)
    state = snapshot.state
    counters = snapshot.counters

    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    table.add_row("Status", state.status.value)
    table.add_row("Time left", format_countdown(state.countdown_remaining_seconds))
    table.add_row("Last active", str(state.last_active_at or "-"))
    table.add_row("Last full run ended", str(state.last_full_duration_stop_at or "-"))

    gate = evaluate_cooldown_gate(state, cfg.session, SessionClock(cfg.timezone).now())
    if gate.decision == StartDecision.REJECT:
        table.add_row("Cooldown", f"[yellow]{format_countdown(int(gate.remaining.total_seconds()))} left[/yellow]")
    else:
        table.add_row("Cooldown", "[green]none[/green]")

    table.add_row("Clicks today", f"{counters.daily_total} / {cfg.session.max_clicks_per_day}")
    table.add_row("Clicks total", str(counters.total))
    table.add_row("Next available", str(counters.next_available))
    table.add_row("Previous available", str(counters.previous_available))
    table.add_row("Claim queue", f"{len(snapshot.claim_queue)} links{' (locked)' if snapshot.claim_locked else ''}")

    console.print(Panel("📋 Session State", style="blue"))
    console.print(table)


@cli.command()
@click.option("--limit", "-n", default=50, help="Number of entries to show")
@click.option("--level", "-l", default=None, help="Only show entries of this level")
@click.pass_context
def logs(ctx, limit, level):
    """Show the session event log (newest first)"""
    cfg = ctx.obj["config"]
    entries = load_snapshot(cfg).logs
    if level:
        entries = [e for e in entries if e.level == level.lower()]

    if not entries:
        console.print("[yellow]No log entries[/yellow]")
        return

    table = Table(title=f"Session Log ({len(entries)} entries)")
    table.add_column("Time")
    table.add_column("Level")
    table.add_column("Message")
    table.add_column("Data")

    for entry in entries[:limit]:
        style = LEVEL_STYLES.get(entry.level, "white")
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            f"[{style}]{entry.level}[/{style}]",
            entry.message,
            ", ".join(f"{k}={v}" for k, v in entry.data.items()),
        )

    console.print(table)


@cli.command()
@click.argument("response_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--deadline", "-d", default=None, help="Latest acceptable date (defaults to the config)")
@click.pass_context
def classify(ctx, response_file, deadline):
    """Classify a saved search response body"""
    cfg = ctx.obj["config"]
    body = Path(response_file).read_text(encoding="utf-8", errors="replace")
    deadline_date = date_parser.parse(deadline).date() if deadline else cfg.session.deadline_date

    result = ResponseClassifier().classify(body, deadline_date)

    style = {
        Outcome.SLOT_FOUND: "green",
        Outcome.RATE_LIMITED: "yellow",
        Outcome.CAPTCHA: "red",
        Outcome.FATAL_ERROR: "red",
        Outcome.NO_SLOT: "blue",
    }[result.outcome]

    lines = [f"Outcome: [bold]{result.outcome.value}[/bold]"]
    if result.claim_link:
        lines.append(f"Claim link: {result.claim_link}")
    if result.period_start:
        lines.append(f"Period start: {result.period_start}")
    if result.error_code is not None:
        lines.append(f"Error code: {result.error_code}")
    if result.sitekey:
        lines.append(f"Sitekey: {result.sitekey}")

    console.print(Panel("\n".join(lines), title="🔍 Classification", style=style))


@cli.command()
@click.pass_context
def info(ctx):
    """Show current configuration"""
    cfg = ctx.obj["config"]

    console.print(Panel("📋 Current Configuration", style="blue"))

    table = Table(show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("Site", cfg.site.home_url)
    table.add_row("Username", cfg.credentials.username or "[red]not set[/red]")
    table.add_row("Settings backend", cfg.backend.url or "local config")
    table.add_row("Jitter", f"{cfg.session.jitter_min}-{cfg.session.jitter_max}s")
    table.add_row("Max clicks/day", str(cfg.session.max_clicks_per_day))
    table.add_row("Running time", f"{cfg.session.max_running_minutes} min")
    table.add_row("Cooldown", f"{cfg.session.cooldown_minutes} min")
    table.add_row("Deadline", str(cfg.session.deadline_date or "today + 3 months"))
    table.add_row("Housekeeping every", f"{cfg.automation.housekeeping_min_actions}-{cfg.automation.housekeeping_max_actions} clicks")
    table.add_row("Reserved cap", str(cfg.automation.reserved_cap))
    table.add_row("Headless Mode", str(cfg.browser.headless))
    table.add_row("Timezone", cfg.timezone)

    console.print(table)


if __name__ == "__main__":
    cli()
