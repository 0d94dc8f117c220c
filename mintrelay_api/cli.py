"""
CLI entry point for the Mint Relay API.
"""

import asyncio
from typing import Optional

import structlog
import typer

from .config import get_settings
from .exceptions import MintRelayError
from .ledger import build_ledger
from .units import format_units

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

app = typer.Typer(
    name="mintrelay",
    help="USDC payment verification and mint relay",
    add_completion=False,
)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Override HOST"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Override PORT"),
) -> None:
    """
    Start the HTTP API.
    """
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "mintrelay_api.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=settings.debug,
    )


@app.command()
def verify(
    tx_hash: str = typer.Argument(..., help="Payment transaction hash"),
    to: Optional[str] = typer.Option(None, "--to", help="Required transfer recipient"),
) -> None:
    """
    Check a payment transaction without minting.
    """
    from .service import build_service

    settings = get_settings()

    async def _verify() -> None:
        service = build_service(settings)
        try:
            check = await service.verify_payment(tx_hash, to)
        finally:
            await service.close()

        if not check.valid:
            typer.echo(f"✗ Not valid: {check.reason}")
            raise typer.Exit(code=1)

        typer.echo("✓ Valid payment")
        typer.echo(f"  From:  {check.transfer.from_address}")
        typer.echo(f"  To:    {check.transfer.to_address}")
        typer.echo(f"  Value: {format_units(check.transfer.value, settings.usdc_decimals)} USDC ({check.transfer.value})")
        typer.echo(f"  Block: {check.block_number}")

    try:
        asyncio.run(_verify())
    except (MintRelayError, ValueError) as e:
        typer.echo(f"✗ {getattr(e, 'reason', e)}", err=True)
        raise typer.Exit(code=2)


def _external_ledger():
    settings = get_settings()
    ledger = build_ledger(
        upstash_url=settings.upstash_redis_rest_url,
        upstash_token=settings.upstash_redis_rest_token,
        database_url=settings.ledger_database_url,
        ttl_seconds=settings.processed_ttl_seconds,
    )
    if ledger.backend_name == "none":
        typer.echo("No idempotency store configured (UPSTASH_REDIS_REST_* or LEDGER_DATABASE_URL).", err=True)
        raise typer.Exit(code=2)
    return ledger


@app.command("ledger-status")
def ledger_status(
    tx_hash: str = typer.Argument(..., help="Payment transaction hash"),
) -> None:
    """
    Show the ledger state of a payment transaction.
    """
    ledger = _external_ledger()

    async def _status() -> Optional[str]:
        try:
            return await ledger.status(tx_hash)
        finally:
            await ledger.close()

    state = asyncio.run(_status())
    typer.echo(f"{tx_hash.lower()}: {state or 'not marked'}")


@app.command()
def unmark(
    tx_hash: str = typer.Argument(..., help="Payment transaction hash"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """
    Remove an in-flight ledger entry after manual reconciliation.

    Only do this once you have confirmed no mint landed for the payment.
    """
    ledger = _external_ledger()

    if not yes:
        typer.confirm(f"Allow {tx_hash} to trigger a mint again?", abort=True)

    async def _unmark() -> bool:
        try:
            return await ledger.unmark(tx_hash)
        finally:
            await ledger.close()

    if asyncio.run(_unmark()):
        typer.echo(f"✓ Unmarked {tx_hash.lower()}")
    else:
        typer.echo(f"✗ Could not unmark {tx_hash.lower()}", err=True)
        raise typer.Exit(code=1)


@app.command()
def version() -> None:
    """Show the relay version."""
    from mintrelay_api import __version__
    typer.echo(f"mintrelay v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
