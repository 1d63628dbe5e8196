"""CLI entry point for etransfer-reconciler."""

from __future__ import annotations

import asyncio
import logging
from email import message_from_bytes
from pathlib import Path

import click

from etransfer_reconciler.adapters.imap import ImapSession
from etransfer_reconciler.config import get_reconnect_policy
from etransfer_reconciler.mailbox import backoff_delay_ms
from etransfer_reconciler.parser import parse_notification

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
)
def cli(log_level: str) -> None:
    """e-Transfer reconciler: match payment emails to pending orders."""
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)


@cli.command()
def run() -> None:
    """Watch the mailbox and monitor order status until interrupted."""
    from etransfer_reconciler.worker import Worker

    try:
        worker = Worker.from_env()
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    try:
        asyncio.run(worker.run())
    except KeyboardInterrupt:
        click.echo("Stopped.")


@cli.command()
@click.argument("email_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def parse(email_file: Path) -> None:
    """Show the payment event extracted from a saved email.

    Accepts a raw .eml message or a plain text/HTML body.
    """
    raw = email_file.read_bytes()
    if email_file.suffix.lower() == ".eml":
        msg = message_from_bytes(raw)
        html_body, text_body = ImapSession._extract_bodies(msg)
        text = f"{text_body or ''} {html_body or ''}"
    else:
        text = raw.decode("utf-8", errors="replace")

    event = parse_notification(text, message_id=email_file.name)
    click.echo(f"status:          {event.status}")
    click.echo(f"amount_cents:    {event.amount_cents}")
    click.echo(f"order_reference: {event.order_reference or '-'}")
    click.echo(f"sender_email:    {event.sender_email or '-'}")


@cli.command()
def backoff() -> None:
    """Print the reconnect delay schedule for the configured policy."""
    policy = get_reconnect_policy()
    for attempt in range(1, policy.max_attempts + 1):
        delay = backoff_delay_ms(attempt, policy.base_delay_ms, policy.max_delay_ms)
        click.echo(f"attempt {attempt:>2}: {delay} ms")
