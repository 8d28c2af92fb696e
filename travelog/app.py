"""
Interactive console for the travelog journal.

Slash commands drive the journal runtime (photos, profile, sync, conflicts)
and the reference remote store server. ``python -m travelog serve`` runs
the server in the foreground instead of opening the shell.
"""

from __future__ import annotations

import logging
import os
try:
    import readline
except ImportError:  # pragma: no cover
    readline = None
from shutil import get_terminal_size
from typing import List, Optional, Sequence
import sys

from .api import APIServerState, TravelogAPIServer
from .commands import COMMANDS
from .configuration import (
    ConfigurationBundle,
    Diagnostic,
    load_runtime_configuration,
)
from .logging_utils import log_path_within, setup_logging
from .runtime import JournalRuntime
from .slash_commands import CommandRouter

logger = logging.getLogger("travelog")

ENV_FLAGS = {"1": True, "true": True, "yes": True, "on": True,
             "0": False, "false": False, "no": False, "off": False}
EXIT_WORDS = {"quit", "exit", "/quit", "/exit"}
BANNER_WIDTH = 58


def _banner_text(user_id: str, terminal_width: int) -> str:
    if terminal_width < BANNER_WIDTH + 2:
        return f"Travelog :: {user_id}"
    body = [line.center(BANNER_WIDTH) for line in ("TRAVELOG", f"offline journal :: {user_id}")]
    rule = "═" * BANNER_WIDTH
    return "\n".join([f"╔{rule}╗", *(f"║{line}║" for line in body), f"╚{rule}╝"])


def print_banner(user_id: str) -> None:
    """Print the header naming the journal that is open."""
    print(_banner_text(user_id, get_terminal_size(fallback=(80, 24)).columns))
    print()


def _resolve_ui_verbose(config_bundle: ConfigurationBundle) -> bool:
    """``TRAVELOG_UI_VERBOSE`` wins over ``ui.verbose``; unparseable values mean on."""
    env_value = os.environ.get("TRAVELOG_UI_VERBOSE")
    if env_value is not None:
        return ENV_FLAGS.get(env_value.strip().lower(), True)
    return bool(config_bundle.section("ui").get("verbose", True))


def build_router(
    config: ConfigurationBundle,
    runtime: Optional[JournalRuntime] = None,
) -> CommandRouter:
    router = CommandRouter(config, runtime=runtime)
    for command in COMMANDS:
        router.register(command)
    return router


def emit_configuration_report(config: ConfigurationBundle) -> None:
    if not config.diagnostics:
        print(f"[config] Loaded {len(config.files_loaded)} file(s) from repo and data config directories.")
        return
    print("[config] Diagnostics:")
    for diag in config.diagnostics:
        print(f"  - ({diag.level.upper()}) {diag.message} [{diag.source or config.data_dir}]")


def configure_autocomplete(router: CommandRouter) -> None:
    """Tab-complete ``/command`` names when readline is available."""
    if readline is None:
        return

    candidates = [f"/{name}" for name in router.command_names]

    def completer(text: str, state: int) -> Optional[str]:
        if not readline.get_line_buffer().startswith("/"):
            return None
        prefix = text if text.startswith("/") else f"/{text}"
        matches = [candidate for candidate in candidates if candidate.startswith(prefix)]
        return matches[state] if state < len(matches) else None

    readline.set_completer(completer)
    readline.set_completer_delims(" \t")
    readline.parse_and_bind("tab: complete")


def execute_cli_command(command_line: str, router: CommandRouter) -> str:
    """Run one command line (no leading '/'), print the reply and return it."""
    words = command_line.split()
    if not words:
        return ""
    result = router.handle(words[0], words[1:])
    print(result)
    logger.info("Executed CLI command: %s", " ".join(words))
    return result


def initialize_logging(config_bundle: ConfigurationBundle, *, console: bool = True) -> None:
    logging_cfg = config_bundle.section("logging")
    level_name = os.environ.get("TRAVELOG_LOG_LEVEL") or logging_cfg.get("level") or "WARNING"
    log_path = setup_logging(
        config_bundle.data_dir,
        level_name.upper(),
        structured=bool(logging_cfg.get("structured", True)),
        console=console,
    )
    config_bundle.log_path = log_path
    if not log_path_within(log_path, config_bundle.data_dir):
        config_bundle.diagnostics.append(
            Diagnostic(
                level="warning",
                message=f"Data log directory is not writable; logging to fallback path '{log_path}'.",
                source=log_path,
            )
        )
    logger.info("Logging initialized at %s", log_path)


def serve(config_bundle: ConfigurationBundle) -> int:
    """Run the reference remote store server until interrupted."""
    server = TravelogAPIServer(config_bundle=config_bundle)
    print(f"[api] Serving {server.store_dir} on http://{server.host}:{server.port}")
    print(f"[api] API key: {server.api_key}")
    return 0 if server.start(blocking=True) else 1


def _run_shell(router: CommandRouter) -> None:
    while True:
        try:
            line = input("> ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\n[Exiting travelog]")
            return
        if not line:
            continue
        if line.lower() in EXIT_WORDS:
            print("[Goodbye]")
            return
        if line.startswith("/"):
            execute_cli_command(line[1:], router)
        else:
            print("[travelog] Commands start with '/'. Try /help.")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for `python -m travelog`."""

    args: List[str] = list(sys.argv[1:] if argv is None else argv)
    config_bundle = load_runtime_configuration(create=True)
    initialize_logging(config_bundle)

    if args[:1] == ["serve"]:
        return serve(config_bundle)

    runtime = JournalRuntime(config_bundle)
    runtime.start()
    if _resolve_ui_verbose(config_bundle):
        print_banner(runtime.user_id)
        emit_configuration_report(config_bundle)
    router = build_router(config_bundle, runtime)
    configure_autocomplete(router)

    try:
        _run_shell(router)
    finally:
        server = router.metadata.get("api_server")
        if server is not None and server.state is APIServerState.RUNNING:
            server.stop()
        runtime.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
