"""Tests for the slash command registry and the journal commands."""

from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from travelog.app import build_router, execute_cli_command
from travelog.configuration import ConfigurationBundle, load_runtime_configuration
from travelog.errors import RecordNotFoundError
from travelog.models import SyncStatus
from travelog.runtime import JournalRuntime
from travelog.slash_commands import (
    CommandRouter,
    SlashCommand,
    SlashCommandContext,
    format_millis,
    render_help_table,
    render_rich,
)


@pytest.fixture
def bundle(tmp_path: Path) -> ConfigurationBundle:
    bundle = load_runtime_configuration(tmp_path)
    bundle.merged["sync"]["auto_sync"] = False
    return bundle


@pytest.fixture
def runtime(bundle: ConfigurationBundle):
    journal = JournalRuntime(bundle, user_id="alice")
    journal.start()
    yield journal
    journal.stop()


@pytest.fixture
def router(bundle: ConfigurationBundle, runtime: JournalRuntime) -> CommandRouter:
    return build_router(bundle, runtime)


@pytest.fixture
def image(tmp_path: Path) -> str:
    path = tmp_path / "camera" / "porto.jpg"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"jpeg")
    return str(path)


def test_router_handles_registered_command(tmp_path: Path):
    config = ConfigurationBundle(data_dir=tmp_path, status="ready")
    router = CommandRouter(config)
    captured = {}

    def handler(context: SlashCommandContext, args: List[str]) -> str:
        captured["context"] = context
        return f"echo:{' '.join(args)}"

    router.register(SlashCommand(name="echo", description="Echo args", handler=handler))
    result = router.handle("ECHO", ["hello", "world"])

    assert result == "echo:hello world"
    assert captured["context"].config is config
    assert "echo" in router.command_names


def test_unknown_command_suggests_help(tmp_path: Path):
    router = CommandRouter(ConfigurationBundle(data_dir=tmp_path, status="ready"))

    assert router.handle("teleport", []) == "[router] Unknown command '/teleport'. Try /help."


def test_runtime_commands_need_runtime(tmp_path: Path):
    router = build_router(ConfigurationBundle(data_dir=tmp_path, status="ready"))

    assert "needs the journal runtime" in router.handle("photos", [])
    assert "Slash Commands" in router.handle("help", [])


def test_journal_errors_become_messages(tmp_path: Path):
    router = CommandRouter(ConfigurationBundle(data_dir=tmp_path, status="ready"))

    def handler(context: SlashCommandContext, args: List[str]) -> str:
        raise RecordNotFoundError("p9")

    router.register(SlashCommand(name="boom", description="Fails", handler=handler))

    assert router.handle("boom", []) == "[boom] No record with id 'p9'"


def test_render_help_table_lists_commands(tmp_path: Path):
    router = build_router(ConfigurationBundle(data_dir=tmp_path, status="ready"))

    output = render_help_table(router.commands())

    assert "/sync" in output
    assert "/conflicts" in output


def test_help_for_single_command(tmp_path: Path):
    router = build_router(ConfigurationBundle(data_dir=tmp_path, status="ready"))

    assert router.handle("help", ["/sync"]).startswith("/sync: Synchronize the journal")
    assert router.handle("help", ["nope"]) == "[help] Unknown command '/nope'."


def test_render_rich_produces_ansi():
    def _render(console):
        console.print("hello", style="bold red")

    ansi = render_rich(_render)

    assert "\x1b[" in ansi  # contains ANSI escape sequence


def test_format_millis():
    assert format_millis(0) == "never"
    assert format_millis(86_400_000) == "1970-01-02 00:00:00 UTC"


def test_photos_add_edit_list_remove(router: CommandRouter, runtime: JournalRuntime, image: str):
    added = router.handle("photos", ["add", image, 'title="Sunset', 'at', 'Porto"', "location=Porto"])
    assert added.startswith("[photos] Added ")
    photo = runtime.coordinator.photos[0]
    assert photo.title == "Sunset at Porto"
    assert photo.location_name == "Porto"

    edited = router.handle("photos", ["edit", photo.id, "note=windy"])
    assert edited == f"[photos] Updated {photo.id} (version 2)"
    assert "Unknown field(s): colour" in router.handle("photos", ["edit", photo.id, "colour=red"])

    listing = router.handle("photos", ["list", "pending"])
    assert photo.id in listing
    assert router.handle("photos", ["list", "synced"]) == "[photos] No photos."

    assert router.handle("photos", ["remove", photo.id]) == f"[photos] Removed {photo.id}"
    assert router.handle("photos", []) == "[photos] No photos."
    assert router.handle("photos", ["remove", photo.id]) == f"[photos] No record with id '{photo.id}'"


def test_sync_now_reports_summary(router: CommandRouter, runtime: JournalRuntime, image: str):
    router.handle("photos", ["add", image])

    output = router.handle("sync", ["now"])

    assert output.startswith("[sync] Sync completed in ")
    assert "1 uploaded" in output
    assert "Profile: pushed" in output
    assert runtime.coordinator.photos[0].sync_status is SyncStatus.SYNCED
    assert "Last Sync" in router.handle("sync", ["status"])


def test_sync_auto_toggle(router: CommandRouter, runtime: JournalRuntime):
    assert router.handle("sync", ["auto"]) == "[sync] Usage: /sync auto on|off"
    assert router.handle("sync", ["auto", "on"]).startswith("[sync] Auto-sync on")
    assert runtime.coordinator.auto_sync_enabled
    assert router.handle("sync", ["auto", "off"]) == "[sync] Auto-sync off"
    assert not runtime.coordinator.auto_sync_enabled


def test_profile_set_and_show(router: CommandRouter, runtime: JournalRuntime):
    assert router.handle("profile", ["set", "name=Ana", "avatar=/tmp/me.jpg"]) == "[profile] Saved (version 2), pending sync"
    assert runtime.coordinator.profile.name == "Ana"

    router.handle("profile", ["set", "avatar="])
    assert runtime.coordinator.profile.avatar_uri is None
    assert "Unsupported option" in router.handle("profile", ["set", "email=a@b"])
    assert "Ana" in router.handle("profile", ["show"])


def test_conflicts_listing_and_validation(router: CommandRouter, runtime: JournalRuntime, image: str):
    assert router.handle("conflicts", []) == "[conflicts] No conflicts."

    router.handle("photos", ["add", image])
    photo_id = runtime.coordinator.photos[0].id
    assert router.handle("conflicts", ["resolve", photo_id, "keepLocal"]) == (
        f"[conflicts] Record '{photo_id}' is not in conflict"
    )
    assert router.handle("conflicts", ["resolve", photo_id]).startswith("[conflicts] Usage")
    assert router.handle("conflicts", ["resolve", "profile", "keepLocal"]) == (
        "[conflicts] Profile is not in conflict"
    )


def test_status_shows_sync_section(router: CommandRouter):
    output = router.handle("status", ["sync"])

    assert "Pending" in output
    assert "Auto-sync" in output


def test_api_key_command_persists_key(router: CommandRouter, bundle: ConfigurationBundle):
    first = router.handle("api", ["key"])
    again = router.handle("api", ["key"])
    regenerated = router.handle("api", ["key", "regenerate"])

    assert first == again
    assert first.startswith("[api] API Key: ")
    assert regenerated.startswith("[api] New API key generated: ")
    assert (bundle.data_dir / "config" / ".api_key").exists()
    assert "not running" in router.handle("api", ["stop"])


def test_execute_cli_command_prints_result(router: CommandRouter, capsys):
    result = execute_cli_command("help sync", router)

    assert result.startswith("/sync:")
    assert "/sync:" in capsys.readouterr().out
    assert execute_cli_command("   ", router) == ""
