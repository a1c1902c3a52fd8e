"""Lockstep CLI - Lock service and lock operator commands.

Usage:
    lockstep lockserver [--host host] [--port port]

    lockstep locks list --url <namespace-url>
    lockstep locks clear --url <namespace-url>
    lockstep locks client-name

    lockstep version

Configuration:
    Set LOCKSTEP_LOCKSERVER_HOST / LOCKSTEP_LOCKSERVER_PORT to configure the
    lock service, LOCKSTEP_EXTERNAL_LOCKING_URL as default for --url.
"""

import logging

import typer

from lockstep.cli import locks

# Main CLI app
app = typer.Typer(
    name="lockstep",
    help="Lockstep CLI - Resource-locking test scheduler",
    no_args_is_help=True,
)

app.add_typer(locks.app, name="locks")


@app.command()
def lockserver(
    host: str = typer.Option(None, "--host", help="Interface to bind to"),
    port: int = typer.Option(None, "--port", "-p", help="Port to listen on"),
) -> None:
    """Run the lock service."""
    from lockstep.lockserver import LockServerSettings, serve

    overrides = {}
    if host is not None:
        overrides["host"] = host
    if port is not None:
        overrides["port"] = port
    serve(LockServerSettings(**overrides))


@app.command()
def version() -> None:
    """Show the Lockstep version."""
    try:
        from importlib.metadata import version as get_version

        ver = get_version("lockstep")
    except Exception:
        ver = "unknown"

    typer.echo(f"lockstep {ver}")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Lockstep CLI - Resource-locking test scheduler.

    Use 'lockstep lockserver' to run a lock service.
    Use 'lockstep locks' commands to inspect and clean up leases.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


if __name__ == "__main__":
    app()
