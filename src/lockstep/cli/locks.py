"""Lock operator commands for Lockstep CLI.

Inspect and clean up the leases of one lock service namespace, e.g. after an
aborted run left leases behind.
"""

import asyncio
import os

import typer

from lockstep.exceptions import APIError, LockConflictError
from lockstep.locking import LockClient, generate_client_name

app = typer.Typer(help="Inspect and clean up leases on a lock service")


def _resolve_url(url: str | None) -> str:
    url = url or os.environ.get("LOCKSTEP_EXTERNAL_LOCKING_URL")
    if not url:
        typer.echo("No lock service URL. Pass --url or set LOCKSTEP_EXTERNAL_LOCKING_URL.", err=True)
        raise typer.Exit(1)
    return url


@app.command("list")
def locks_list(
    url: str = typer.Option(
        None,
        "--url",
        "-u",
        help="Namespace URL (e.g., 'http://localhost:1524/my-project')",
    ),
) -> None:
    """List all active leases of a namespace."""
    url = _resolve_url(url)

    async def _list():
        async with LockClient(url, generate_client_name()) as client:
            return await client.list()

    try:
        leases = asyncio.run(_list())
    except APIError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if not leases:
        typer.echo("No active leases.")
        return

    for lease in leases:
        typer.echo(
            f"  {lease.resource}: {lease.client} (expires in {lease.expire_in / 1000:.1f}s)"
        )


@app.command("clear")
def locks_clear(
    url: str = typer.Option(
        None,
        "--url",
        "-u",
        help="Namespace URL (e.g., 'http://localhost:1524/my-project')",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Release every lease of a namespace, whoever holds it."""
    url = _resolve_url(url)
    if not yes:
        typer.confirm(f"Release all leases at {url}?", abort=True)

    async def _clear() -> int:
        async with LockClient(url, generate_client_name()) as client:
            return await client.clear_all()

    try:
        count = asyncio.run(_clear())
    except (APIError, LockConflictError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Released {count} leases.")


@app.command("client-name")
def locks_client_name() -> None:
    """Show the client name this machine uses as lease holder."""
    typer.echo(generate_client_name())
