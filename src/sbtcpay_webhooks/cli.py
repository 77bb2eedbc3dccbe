"""Typer CLI for the sBTCPay webhook gateway."""

import asyncio
import signal

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="sbtcpay-webhooks", help="sBTCPay webhook delivery gateway")
console = Console()


def _configure_logging() -> None:
    from sbtcpay_webhooks.common.config import get_settings
    from sbtcpay_webhooks.common.logging import setup_logging

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host"),
    port: int = typer.Option(8080, help="Bind port"),
):
    """Start the operator API server."""
    import uvicorn
    from sbtcpay_webhooks.app import create_app

    console.print(f"[bold green]Starting sBTCPay webhooks API on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


async def _run_worker() -> None:
    from sbtcpay_webhooks.deps import get_db, get_executor, get_redis, get_worker

    db = get_db()
    await db.init()
    await db.create_all()
    worker = get_worker()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.request_stop)

    try:
        await worker.run_forever()
    finally:
        await get_executor().close()
        await get_redis().aclose()
        await db.close()


@app.command()
def worker():
    """Run the webhook delivery worker until SIGINT/SIGTERM."""
    _configure_logging()
    console.print("[bold green]Starting webhook worker[/bold green]")
    asyncio.run(_run_worker())
    console.print("Webhook worker stopped")


async def _queue_status() -> dict:
    from sbtcpay_webhooks.deps import get_queue, get_redis

    try:
        return await get_queue().stats()
    finally:
        await get_redis().aclose()


@app.command("queue-status")
def queue_status():
    """Show pending, in-flight and scheduled delivery counts."""
    from sbtcpay_webhooks.common.exceptions import QueueUnavailableError

    try:
        stats = asyncio.run(_queue_status())
    except QueueUnavailableError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        raise typer.Exit(1)

    table = Table(title="Webhook delivery queue")
    table.add_column("Queue")
    table.add_column("Count", justify="right")
    table.add_row("pending", str(stats["queue_length"]))
    table.add_row("in flight", str(stats["processing_count"]))
    table.add_row("scheduled", str(stats["scheduled_count"]))
    console.print(table)


async def _requeue_pending(limit: int) -> int:
    from sbtcpay_webhooks.deps import get_db, get_dispatcher, get_redis

    db = get_db()
    await db.init()
    try:
        return await get_dispatcher().requeue_pending(limit=limit)
    finally:
        await get_redis().aclose()
        await db.close()


@app.command("requeue-pending")
def requeue_pending(
    limit: int = typer.Option(100, help="Maximum deliveries to queue"),
):
    """Queue due pending/retrying deliveries (recovery after a queue outage)."""
    _configure_logging()
    count = asyncio.run(_requeue_pending(limit))
    console.print(f"[bold]{count}[/bold] deliveries queued")


async def _init_db() -> None:
    from sbtcpay_webhooks.deps import get_db

    db = get_db()
    await db.init()
    await db.create_all()
    await db.close()


@app.command("init-db")
def init_db():
    """Create the events, webhooks and webhook_deliveries tables."""
    asyncio.run(_init_db())
    console.print("[bold green]Database initialized[/bold green]")


if __name__ == "__main__":
    app()
