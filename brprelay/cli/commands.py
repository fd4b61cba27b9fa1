"""CLI commands for brprelay.

Top-level commands: serve (relay server), status (query a running relay),
call (send one JSON-RPC call through the relay) and peer (run the duplex
client with the built-in demo handlers).
"""

import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table

from brprelay import __logo__, __version__
from brprelay.cli.shared.logging_utils import ensure_rotating_log_file
from brprelay.cli.shared.network_utils import http_base_url, is_port_in_use

app = typer.Typer(
    name="brprelay",
    help=f"{__logo__} brprelay - BRP JSON-RPC relay to a duplex WebSocket peer",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} brprelay v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", callback=version_callback, is_eager=True
    ),
):
    """brprelay - BRP JSON-RPC relay."""
    pass


def _default_url() -> str:
    from brprelay.config.access import get_config as get_cached_config

    config = get_cached_config()
    return http_base_url(config.server.host, config.server.port)


# ============================================================================
# Server
# ============================================================================


@app.command()
def serve(
    host: str = typer.Option(None, "--host", "-h", help="Bind host (defaults to server.host)"),
    port: int = typer.Option(None, "--port", "-p", help="Listen port (defaults to server.port)"),
    path: str = typer.Option(None, "--path", help="Duplex WebSocket path (defaults to relay.path)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Start the relay (HTTP JSON-RPC and the duplex WebSocket on one port)."""
    from brprelay.api.server import run_server
    from brprelay.config.access import get_config as get_cached_config

    config = get_cached_config().model_copy(deep=True)
    if host:
        config.server.host = host
    if port:
        config.server.port = port
    if path:
        config.relay.path = path.strip("/")

    if is_port_in_use(config.server.host, config.server.port):
        console.print(
            f"[red]Port {config.server.port} is already in use.[/red] "
            f"Close the process using it, or pass [cyan]--port[/cyan] "
            f"(current: {config.server.host}:{config.server.port})."
        )
        raise typer.Exit(1)

    log_path = ensure_rotating_log_file("serve", level="DEBUG" if verbose else "INFO")
    base = http_base_url(config.server.host, config.server.port)
    console.print(f"{__logo__} Starting brprelay on {config.server.host}:{config.server.port}...")
    console.print(f"[green]✓[/green] JSON-RPC: POST {base}/")
    if config.relay.enabled:
        console.print(f"[green]✓[/green] Peer WebSocket: {base.replace('http', 'ws', 1)}{config.relay.route}")
    else:
        console.print("[yellow]Relay disabled; peer connections will be refused[/yellow]")
    console.print(f"[dim]Logs: {log_path}[/dim]")

    run_server(config, log_level="info" if verbose else "warning")


# ============================================================================
# Client-side helpers
# ============================================================================


@app.command()
def status(
    url: str = typer.Option(None, "--url", help="Relay base URL (defaults to the configured server)"),
):
    """Show the state of a running relay."""
    import httpx

    base = (url or _default_url()).rstrip("/")
    try:
        resp = httpx.get(f"{base}/status", timeout=5.0)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        console.print(f"[red]Relay not reachable at {base}: {e}[/red]")
        raise typer.Exit(1)
    data = resp.json()

    table = Table(title=f"{__logo__} brprelay status")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("URL", base)
    table.add_row("Path", str(data.get("path")))
    table.add_row("Enabled", "[green]yes[/green]" if data.get("enabled") else "[red]no[/red]")
    connected = data.get("connected")
    table.add_row("Peer", "[green]connected[/green]" if connected else "[dim]not connected[/dim]")
    table.add_row("Generation", str(data.get("generation")))
    table.add_row("Pending calls", str(data.get("pending")))
    table.add_row("Replies routed", str(data.get("repliesRouted")))
    table.add_row("Replies dropped", str(data.get("repliesDropped")))
    console.print(table)


@app.command()
def call(
    method: str = typer.Argument(..., help="JSON-RPC method, e.g. rpc.ping or rpc.ticks+watch"),
    params: str = typer.Option(None, "--params", help="JSON-encoded params"),
    call_id: str = typer.Option("1", "--id", help="Request id (numeric strings are sent as integers)"),
    url: str = typer.Option(None, "--url", help="Relay base URL (defaults to the configured server)"),
    timeout: float = typer.Option(60.0, "--timeout", help="HTTP timeout in seconds"),
):
    """Send one JSON-RPC call through the relay and print the reply (or stream, for +watch)."""
    import httpx

    from brprelay.relay.frames import is_watch_method

    payload: dict = {"jsonrpc": "2.0", "id": int(call_id) if call_id.lstrip("-").isdigit() else call_id, "method": method}
    if params:
        try:
            payload["params"] = json.loads(params)
        except json.JSONDecodeError as e:
            console.print(f"[red]--params is not valid JSON: {e}[/red]")
            raise typer.Exit(1)

    base = (url or _default_url()).rstrip("/")
    try:
        if not is_watch_method(method):
            resp = httpx.post(f"{base}/", json=payload, timeout=timeout)
            console.print_json(data=resp.json())
            return
        with httpx.stream("POST", f"{base}/", json=payload, timeout=None) as resp:
            if not resp.headers.get("content-type", "").startswith("text/event-stream"):
                resp.read()
                console.print_json(data=resp.json())
                return
            for line in resp.iter_lines():
                if line.startswith("data: "):
                    console.print_json(line[len("data: "):])
    except httpx.HTTPError as e:
        console.print(f"[red]Request to {base} failed: {e}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[dim]Watch closed[/dim]")


# ============================================================================
# Peer
# ============================================================================


@app.command()
def peer(
    url: str = typer.Option(None, "--url", help="Relay WebSocket URL (defaults to peer config)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Run the duplex peer with the built-in demo handlers (rpc.ping, rpc.ticks+watch)."""
    from brprelay.config.access import get_config as get_cached_config
    from brprelay.peer.client import RelayPeer
    from brprelay.peer.demo import demo_handlers

    config = get_cached_config()
    relay_peer = RelayPeer.from_config(config.peer, handlers=demo_handlers())
    if url:
        relay_peer.url = url
    log_path = ensure_rotating_log_file("peer", level="DEBUG" if verbose else "INFO")
    console.print(f"{__logo__} Connecting peer to {relay_peer.url}")
    console.print(f"[dim]Logs: {log_path}[/dim]")

    async def run():
        try:
            await relay_peer.run_forever()
        finally:
            await relay_peer.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\nGoodbye!")


if __name__ == "__main__":
    app()
