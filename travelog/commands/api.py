"""Slash command for managing the reference remote store server."""

from __future__ import annotations

from typing import List, Tuple

from rich.console import Console
from rich.table import Table

from ..api import APIServerState, TravelogAPIServer
from ..api.auth import APIKeyManager, hash_key
from ..slash_commands import (
    SlashCommand,
    SlashCommandContext,
    render_rich,
)

SERVER_KEY = "api_server"


def _get_server(context: SlashCommandContext) -> TravelogAPIServer:
    """Get or create the API server instance held in router metadata."""
    server = context.metadata.get(SERVER_KEY)
    if server is None:
        server = TravelogAPIServer(config_bundle=context.config)
        context.metadata[SERVER_KEY] = server
    return server


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    """Manage the remote store server."""

    if not args:
        return _show_status(context)

    subcommand = args[0].lower()

    if subcommand == "start":
        return _start_server(context)
    elif subcommand == "stop":
        return _stop_server(context)
    elif subcommand == "status":
        return _show_status(context)
    elif subcommand == "key":
        return _show_or_regenerate_key(context, args[1:])
    elif subcommand == "help":
        return HELP_TEXT
    else:
        return f"[api] Unknown subcommand '{subcommand}'. Use /api help for usage."


def _start_server(context: SlashCommandContext) -> str:
    server = _get_server(context)
    if server.state is APIServerState.RUNNING:
        return f"[api] Server is already running at http://{server.host}:{server.port}"

    try:
        started = server.start(blocking=False)
    except OSError as exc:
        return f"[api] Error starting server: {exc}"
    if not started:
        return f"[api] Failed to start server (state: {server.state.value})"

    fingerprint = hash_key(server.api_key)
    return (
        f"[api] Serving {server.store_dir} at http://{server.host}:{server.port}\n"
        f"Key fingerprint: {fingerprint} (full key: /api key)"
    )


def _stop_server(context: SlashCommandContext) -> str:
    server = context.metadata.get(SERVER_KEY)
    state = server.state if server is not None else None
    if state is not APIServerState.RUNNING:
        return f"[api] Server is not running (state: {state.value if state else 'not started'})"
    return "[api] Server stopped" if server.stop() else f"[api] Failed to stop server (state: {server.state.value})"


def _status_rows(context: SlashCommandContext) -> List[Tuple[str, str]]:
    server = context.metadata.get(SERVER_KEY)
    api_config = context.config.section("api")
    if server is None:
        rows = [("State", "not initialized")]
    else:
        status = server.status()
        rows = [
            ("State", status["state"]),
            ("Listen", f"{status['host']}:{status['port']}"),
            ("Store", status["store_dir"]),
            ("URL", status["url"] or "-"),
        ]
    rows.append(("Configured", f"{api_config.get('host', '127.0.0.1')}:{api_config.get('port', 8750)}"))
    return rows


def _show_status(context: SlashCommandContext) -> str:
    rows = _status_rows(context)

    def _render(console: Console) -> None:
        table = Table(title="Remote Store Server", show_header=False)
        table.add_column("Property", style="bold")
        table.add_column("Value")
        for key, value in rows:
            table.add_row(key, value)
        console.print(table)

    return render_rich(_render)


def _show_or_regenerate_key(context: SlashCommandContext, args: List[str]) -> str:
    manager = APIKeyManager(context.config.data_dir)
    if args[:1] and args[0].lower() == "regenerate":
        key = manager.regenerate_key()
        return f"[api] New API key generated: {key} (fingerprint {hash_key(key)})"
    key = manager.get_or_generate_key()
    return f"[api] API Key: {key} (fingerprint {hash_key(key)})"


HELP_TEXT = """[api] Usage:
  /api              Show server status
  /api start        Start the remote store server
  /api stop         Stop the server
  /api status       Show server status
  /api key          Show the API key
  /api key regenerate   Generate a new API key
  /api help         Show this help

Endpoints (when running):
  GET    /health                       Health check
  GET    /api/v1/photos?userId=...     List a user's photos
  GET    /api/v1/photos/{id}           Fetch one photo document
  PUT    /api/v1/photos/{id}           Upsert a photo document
  DELETE /api/v1/photos/{id}           Delete a photo and its image
  GET    /api/v1/profiles/{userId}     Fetch a profile
  PUT    /api/v1/profiles/{userId}     Upsert a profile
  GET    /blobs/{path}                 Download an image
  PUT    /blobs/{path}                 Upload an image

Authentication:
  Include X-API-Key header or ?api_key= query param.
  Point clients at the server with remote.kind: http and remote.api_key."""


COMMAND = SlashCommand(
    name="api",
    description="Manage the remote store server. Usage: /api [start|stop|status|key|help]",
    handler=_handler,
)
