"""Tests for sync passes: upload, download, conflicts, deletions and failure scoping."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from travelog.errors import NetworkUnavailableError, SyncInProgressError
from travelog.models import (
    RemotePhotoRecord,
    RemoteProfileRecord,
    SyncStatus,
    create_initial_profile,
    create_photo,
)
from travelog.storage import LocalStore, MemoryKeyValueBackend
from travelog.sync import SyncOutcome, SyncSettings

USER = "alice"


def _first_sync(engine, photos, profile=None) -> SyncOutcome:
    profile = profile or create_initial_profile(user_id=USER, now=1)
    return asyncio.run(engine.synchronize(USER, photos, profile))


def _edit_remote(remote, photo_id: str, **changes) -> RemotePhotoRecord:
    async def scenario():
        record = await remote.get_photo(photo_id)
        for name, value in changes.items():
            setattr(record, name, value)
        await remote.put_photo(record)
        return record

    return asyncio.run(scenario())


def test_first_sync_uploads_blob_metadata_and_profile(make_engine, make_image, document_store, local_store):
    engine = make_engine()
    photo = create_photo(make_image(data=b"sunset"), "Porto", title="Sunset", now=1000)

    outcome = _first_sync(engine, [photo])

    result = outcome.result
    assert result.uploaded == 1
    assert result.errors == []
    assert result.profile_status == "pushed"

    synced = outcome.photos[0]
    assert synced.sync_status is SyncStatus.SYNCED
    assert synced.needs_upload is False
    assert synced.server_id == photo.id
    assert synced.remote_uri == f"store://photos/{USER}/{photo.id}"
    assert synced.uri == photo.uri

    doc = document_store.get_document("photos", photo.id)
    assert doc["userId"] == USER
    assert doc["title"] == "Sunset"
    assert doc["lastModified"] == 1000
    assert document_store.read_blob(f"photos/{USER}/{photo.id}") == b"sunset"
    assert document_store.get_document("profiles", USER)["name"] == "Voyageur"

    # caller's objects are untouched; reconciled state is persisted
    assert photo.sync_status is SyncStatus.PENDING
    stored = asyncio.run(local_store.load_photos(USER))
    assert stored[0].sync_status is SyncStatus.SYNCED
    assert asyncio.run(local_store.load_last_sync(USER)) > 0


def test_second_pass_is_idempotent(make_engine, make_image, remote):
    engine = make_engine()
    first = _first_sync(engine, [create_photo(make_image(), now=1000)])
    uploads_after_first = len(remote.uploaded_paths)

    second = asyncio.run(engine.synchronize(USER, first.photos, first.profile))

    assert second.result.is_clean
    assert second.result.to_dict()["uploaded"] == 0
    assert second.photos == first.photos
    assert len(remote.uploaded_paths) == uploads_after_first


def test_download_materializes_remote_only_records(make_engine, make_image, tmp_path: Path):
    phone = make_engine()
    tablet = make_engine(store=LocalStore(MemoryKeyValueBackend()), device="tablet")
    photo = create_photo(make_image(data=b"harbour"), "Bergen", now=1000)
    _first_sync(phone, [photo])

    outcome = _first_sync(tablet, [])

    assert outcome.result.downloaded == 1
    pulled = outcome.photos[0]
    assert pulled.id == photo.id
    assert pulled.sync_status is SyncStatus.SYNCED
    assert pulled.location_name == "Bergen"
    assert pulled.last_modified == 1000
    assert Path(pulled.uri) == tmp_path / "tablet" / "media" / USER / f"{photo.id}.jpg"
    assert Path(pulled.uri).read_bytes() == b"harbour"


def test_synced_record_pulls_newer_remote_without_lowering_version(make_engine, make_image):
    engine = make_engine()
    outcome = _first_sync(engine, [create_photo(make_image(), now=1000)])
    local = outcome.photos[0]
    local.version = 9
    _edit_remote(engine.remote, local.id, title="Edited elsewhere", version=2, last_modified=5000)

    second = asyncio.run(engine.synchronize(USER, [local], outcome.profile))

    pulled = second.photos[0]
    assert second.result.downloaded == 1
    assert pulled.title == "Edited elsewhere"
    assert pulled.last_modified == 5000
    assert pulled.version == 9
    assert pulled.sync_status is SyncStatus.SYNCED


def test_remote_newer_than_pending_edit_is_a_conflict(make_engine, make_image, document_store):
    engine = make_engine(conflict_strategy="manual")
    outcome = _first_sync(engine, [create_photo(make_image(), now=1000)])
    local = outcome.photos[0]
    _edit_remote(engine.remote, local.id, title="remote", version=2, last_modified=2000)
    local.title = "local"
    local.touch(now=1500)

    second = asyncio.run(engine.synchronize(USER, [local], outcome.profile))

    assert second.result.conflicts == 1
    assert second.result.uploaded == 0
    assert second.photos[0].sync_status is SyncStatus.CONFLICT
    assert second.photos[0].title == "local"
    assert document_store.get_document("photos", local.id)["title"] == "remote"


def test_newest_wins_pulls_when_remote_is_later(make_engine, make_image):
    engine = make_engine()
    outcome = _first_sync(engine, [create_photo(make_image(), now=1000)])
    local = outcome.photos[0]
    _edit_remote(engine.remote, local.id, title="remote", version=2, last_modified=2000)
    local.title = "local"
    local.touch(now=1500)

    second = asyncio.run(engine.synchronize(USER, [local], outcome.profile))

    resolved = second.photos[0]
    assert second.result.conflicts == 1
    assert second.result.conflicts_resolved == 1
    assert resolved.title == "remote"
    assert resolved.last_modified == 2000
    assert resolved.version == 2
    assert resolved.sync_status is SyncStatus.SYNCED


def test_later_local_edit_overwrites_remote(make_engine, make_image, document_store):
    engine = make_engine()
    outcome = _first_sync(engine, [create_photo(make_image(), now=1000)])
    local = outcome.photos[0]
    _edit_remote(engine.remote, local.id, title="remote", version=2, last_modified=2000)
    local.title = "local"
    local.touch(now=2500)

    second = asyncio.run(engine.synchronize(USER, [local], outcome.profile))

    assert second.result.uploaded == 1
    assert second.result.conflicts == 0
    assert document_store.get_document("photos", local.id)["title"] == "local"
    assert document_store.get_document("photos", local.id)["lastModified"] == 2500


def test_keep_local_strategy_pushes_past_newer_remote(make_engine, make_image, document_store):
    engine = make_engine(conflict_strategy="keep_local")
    outcome = _first_sync(engine, [create_photo(make_image(), now=1000)])
    local = outcome.photos[0]
    _edit_remote(engine.remote, local.id, title="remote", version=3, last_modified=2000)
    local.title = "local"
    local.touch(now=1500)

    second = asyncio.run(engine.synchronize(USER, [local], outcome.profile))

    doc = document_store.get_document("photos", local.id)
    assert second.result.conflicts_resolved == 1
    assert doc["title"] == "local"
    assert doc["lastModified"] == 2001
    assert doc["version"] == 3
    assert second.photos[0].sync_status is SyncStatus.SYNCED


def test_failed_upload_is_scoped_to_its_record(make_engine, make_remote, make_image):
    photos = [create_photo(make_image(f"{i}.jpg"), now=1000 + i) for i in range(3)]
    remote = make_remote(fail_uploads={photos[1].id})
    engine = make_engine(client=remote)

    outcome = _first_sync(engine, photos)

    by_id = {p.id: p for p in outcome.photos}
    assert outcome.result.uploaded == 2
    assert len(outcome.result.errors) == 1
    assert photos[1].id in outcome.result.errors[0]
    assert by_id[photos[0].id].sync_status is SyncStatus.SYNCED
    assert by_id[photos[1].id].sync_status is SyncStatus.ERROR
    assert by_id[photos[1].id].needs_upload is True
    assert by_id[photos[2].id].sync_status is SyncStatus.SYNCED


def test_error_records_are_retried_next_pass(make_engine, make_remote, make_image):
    photo = create_photo(make_image(), now=1000)
    flaky = make_remote(fail_uploads={photo.id})
    outcome = _first_sync(make_engine(client=flaky), [photo])
    assert outcome.photos[0].sync_status is SyncStatus.ERROR

    retry = asyncio.run(make_engine().synchronize(USER, outcome.photos, outcome.profile))

    assert retry.result.uploaded == 1
    assert retry.photos[0].sync_status is SyncStatus.SYNCED


def test_missing_local_file_marks_error(make_engine, tmp_path: Path):
    engine = make_engine()
    photo = create_photo(str(tmp_path / "deleted-from-camera-roll.jpg"), now=1000)

    outcome = _first_sync(engine, [photo])

    assert outcome.photos[0].sync_status is SyncStatus.ERROR
    assert outcome.result.uploaded == 0


def test_offline_pass_aborts_without_side_effects(make_engine, make_remote, make_image, local_store):
    engine = make_engine(client=make_remote(online=False))

    with pytest.raises(NetworkUnavailableError):
        _first_sync(engine, [create_photo(make_image())])

    assert local_store.backend.items == {}
    assert not engine.guard.is_active(USER)


def test_concurrent_pass_for_same_user_is_rejected(make_engine, make_remote, make_image):
    engine = make_engine(client=make_remote(delay=0.05))
    profile = create_initial_profile(user_id=USER)

    async def scenario():
        return await asyncio.gather(
            engine.synchronize(USER, [create_photo(make_image())], profile),
            engine.synchronize(USER, [], profile),
            return_exceptions=True,
        )

    first, second = asyncio.run(scenario())

    assert isinstance(first, SyncOutcome)
    assert isinstance(second, SyncInProgressError)
    assert not engine.guard.is_active(USER)


def test_pending_delete_is_confirmed_and_removed(make_engine, make_image, document_store):
    engine = make_engine()
    outcome = _first_sync(engine, [create_photo(make_image(), now=1000)])
    doomed = outcome.photos[0]
    doomed.sync_status = SyncStatus.PENDING_DELETE

    second = asyncio.run(engine.synchronize(USER, [doomed], outcome.profile))

    assert second.result.deleted == 1
    assert second.removed_ids == [doomed.id]
    assert second.photos == []
    assert document_store.get_document("photos", doomed.id) is None


def test_failed_delete_is_kept_and_not_resurrected(make_engine, make_remote, make_image):
    outcome = _first_sync(make_engine(), [create_photo(make_image(), now=1000)])
    doomed = outcome.photos[0]
    doomed.sync_status = SyncStatus.PENDING_DELETE
    engine = make_engine(client=make_remote(fail_deletes={doomed.id}))

    second = asyncio.run(engine.synchronize(USER, [doomed], outcome.profile))

    assert second.result.deleted == 0
    assert second.result.downloaded == 0
    assert len(second.result.errors) == 1
    assert [p.sync_status for p in second.photos] == [SyncStatus.PENDING_DELETE]


def test_listing_failure_skips_download(make_engine, make_remote):
    engine = make_engine(client=make_remote(fail_listing=True))

    outcome = _first_sync(engine, [])

    assert outcome.result.downloaded == 0
    assert any("download skipped" in e for e in outcome.result.errors)


def test_profile_pulls_newer_remote_and_keeps_version(make_engine, remote):
    engine = make_engine()
    outcome = _first_sync(engine, [], create_initial_profile("Ana", user_id=USER, now=100))
    profile = outcome.profile
    profile.version = 6
    asyncio.run(remote.put_profile(RemoteProfileRecord(USER, "Ana Sousa", 2, 900)))

    second = asyncio.run(engine.synchronize(USER, [], profile))

    assert second.result.profile_status == "pulled"
    assert second.profile.name == "Ana Sousa"
    assert second.profile.version == 6
    assert second.profile.sync_status is SyncStatus.SYNCED


def test_profile_conflict_left_for_user_with_manual_strategy(make_engine, remote):
    engine = make_engine(conflict_strategy="manual")
    outcome = _first_sync(engine, [], create_initial_profile("Ana", user_id=USER, now=100))
    asyncio.run(remote.put_profile(RemoteProfileRecord(USER, "Remote Ana", 2, 900)))
    profile = outcome.profile
    profile.name = "Local Ana"
    profile.touch(now=500)

    second = asyncio.run(engine.synchronize(USER, [], profile))

    assert second.result.profile_status == "conflict"
    assert second.profile.in_conflict


def test_resolve_conflict_keep_server(make_engine, make_image, document_store):
    engine = make_engine(conflict_strategy="manual")
    outcome = _first_sync(engine, [create_photo(make_image(), now=1000)])
    local = outcome.photos[0]
    _edit_remote(engine.remote, local.id, title="remote", version=2, last_modified=2000)
    local.title = "local"
    local.touch(now=1500)
    conflicted = asyncio.run(engine.synchronize(USER, [local], outcome.profile)).photos[0]

    resolved = asyncio.run(engine.resolve_conflict(USER, conflicted, "keepServer"))

    assert resolved.title == "remote"
    assert resolved.sync_status is SyncStatus.SYNCED
    assert conflicted.sync_status is SyncStatus.CONFLICT


def test_resolve_conflict_keep_local(make_engine, make_image, document_store):
    engine = make_engine(conflict_strategy="manual")
    outcome = _first_sync(engine, [create_photo(make_image(), now=1000)])
    local = outcome.photos[0]
    _edit_remote(engine.remote, local.id, title="remote", version=2, last_modified=2000)
    local.title = "local"
    local.touch(now=1500)
    conflicted = asyncio.run(engine.synchronize(USER, [local], outcome.profile)).photos[0]

    resolved = asyncio.run(engine.resolve_conflict(USER, conflicted, "keepLocal"))

    assert resolved.sync_status is SyncStatus.SYNCED
    assert resolved.last_modified == 2001
    assert document_store.get_document("photos", local.id)["title"] == "local"


def test_sync_settings_from_config():
    settings = SyncSettings.from_config(
        {"sync": {"interval_minutes": 5, "conflict_strategy": "keep_server", "max_concurrency": 0}}
    )

    assert settings.interval_minutes == 5.0
    assert settings.conflict_strategy == "keep_server"
    assert settings.max_concurrency == 1
    assert SyncSettings.from_config({}).conflict_strategy == "newest_wins"


def test_replaced_image_reaches_other_devices(make_engine, make_image):
    phone = make_engine()
    tablet = make_engine(store=LocalStore(MemoryKeyValueBackend()), device="tablet")
    phone_first = _first_sync(phone, [create_photo(make_image("a.jpg", b"OLD-BYTES"), now=1000)])
    tablet_first = _first_sync(tablet, [])
    assert Path(tablet_first.photos[0].uri).read_bytes() == b"OLD-BYTES"

    edited = phone_first.photos[0]
    edited.uri = make_image("b.jpg", b"NEW-BYTES")
    edited.needs_upload = True
    edited.touch(now=5000)
    pushed = asyncio.run(phone.synchronize(USER, [edited], phone_first.profile))
    assert pushed.result.uploaded == 1
    assert pushed.photos[0].blob_revision == 5000

    second = asyncio.run(tablet.synchronize(USER, tablet_first.photos, tablet_first.profile))

    pulled = second.photos[0]
    assert second.result.downloaded == 1
    assert pulled.blob_revision == 5000
    assert Path(pulled.uri).read_bytes() == b"NEW-BYTES"


def test_metadata_only_edit_keeps_local_image(make_engine, make_image, remote):
    phone = make_engine()
    tablet = make_engine(store=LocalStore(MemoryKeyValueBackend()), device="tablet")
    _first_sync(phone, [create_photo(make_image(data=b"harbour"), now=1000)])
    tablet_first = _first_sync(tablet, [])
    local = tablet_first.photos[0]
    Path(local.uri).write_bytes(b"local-copy")
    _edit_remote(remote, local.id, title="Renamed", version=2, last_modified=2000)

    second = asyncio.run(tablet.synchronize(USER, [local], tablet_first.profile))

    assert second.photos[0].title == "Renamed"
    assert Path(second.photos[0].uri).read_bytes() == b"local-copy"


@pytest.mark.parametrize("status", [SyncStatus.UPLOADING, SyncStatus.DOWNLOADING])
def test_interrupted_transfer_is_retried(make_engine, make_image, document_store, status):
    engine = make_engine()
    photo = create_photo(make_image(), now=1000)
    photo.sync_status = status

    outcome = _first_sync(engine, [photo])

    assert outcome.result.uploaded == 1
    assert outcome.photos[0].sync_status is SyncStatus.SYNCED
    assert document_store.get_document("photos", photo.id) is not None


def test_failed_upload_remembers_the_attempt(make_engine, make_remote, make_image):
    photo = create_photo(make_image(), now=1000)
    engine = make_engine(client=make_remote(fail_uploads=[photo.id]))

    failed = _first_sync(engine, [photo]).photos[0]

    assert failed.sync_status is SyncStatus.ERROR
    assert failed.server_id is None
    assert failed.push_attempted is True


def _profile_conflict(engine, remote):
    outcome = _first_sync(engine, [], create_initial_profile("Ana", user_id=USER, now=100))
    asyncio.run(remote.put_profile(RemoteProfileRecord(USER, "Remote Ana", 2, 900)))
    profile = outcome.profile
    profile.name = "Local Ana"
    profile.touch(now=500)
    return asyncio.run(engine.synchronize(USER, [], profile)).profile


def test_resolve_profile_conflict_keep_server(make_engine, remote):
    engine = make_engine(conflict_strategy="manual")
    conflicted = _profile_conflict(engine, remote)

    resolved = asyncio.run(engine.resolve_profile_conflict(USER, conflicted, "keepServer"))

    assert resolved.name == "Remote Ana"
    assert resolved.sync_status is SyncStatus.SYNCED
    assert resolved.version == conflicted.version
    assert conflicted.in_conflict
    assert not engine.guard.is_active(USER)


def test_resolve_profile_conflict_keep_local(make_engine, remote, document_store):
    engine = make_engine(conflict_strategy="manual")
    conflicted = _profile_conflict(engine, remote)

    resolved = asyncio.run(engine.resolve_profile_conflict(USER, conflicted, "keepLocal"))

    assert resolved.sync_status is SyncStatus.SYNCED
    assert resolved.last_modified == 901
    doc = document_store.get_document("profiles", USER)
    assert doc["name"] == "Local Ana"
    assert doc["lastModified"] == 901
