"""End-to-end tests for the upload pipeline against fake blob storage and SQLite."""

import asyncio
from unittest.mock import patch

import pytest

from areacms.core.errors import (
    FileNotFound,
    LanguageNotFound,
    PayloadTooLarge,
    ProcessingFailed,
    StorageWriteFailed,
    UnsupportedMediaType,
    ValidationError,
)
from areacms.models.files import FileType, TranslationInput
from areacms.uploads.keys import generate_storage_key
from areacms.uploads.sources import RejectedPart, UploadRequest
from areacms.uploads.transcoder import MediaTranscoder
from support import PROJECT_ID, ThreadedBlobStore, make_image, make_part, make_pipeline, make_validator


def _request(parts, declared_type=FileType.IMAGE, translations=None, rejected=None) -> UploadRequest:
    return UploadRequest(
        project_id=PROJECT_ID,
        declared_type=declared_type,
        parts=parts,
        translations=translations or {},
        rejected=rejected or [],
    )


@pytest.mark.asyncio
async def test_image_upload_with_translation(pipeline, blob_store, metadata_store, png_bytes):
    part = make_part("photo.png", png_bytes, "image/png")

    stored = await pipeline.upload(_request([part], translations={"en": TranslationInput(title="Sunset")}))

    assert stored.type == FileType.IMAGE
    assert stored.name == "photo.png"
    assert stored.thumbnail_path is not None
    assert stored.thumbnail_path in blob_store.blobs
    assert stored.path in blob_store.blobs
    assert len(stored.translations) == 1
    assert stored.translations[0].language_id == await metadata_store.get_language_id(PROJECT_ID, "en")
    assert part.consumed


@pytest.mark.asyncio
async def test_audio_with_two_locales_rejected_before_upload(pipeline, blob_store, metadata_store):
    part = make_part("track.mp3", b"ID3-audio", "audio/mpeg")
    translations = {"en": TranslationInput(title="Track"), "fr": TranslationInput(title="Piste")}

    with pytest.raises(ValidationError):
        await pipeline.upload(_request([part], FileType.AUDIO, translations))

    assert blob_store.save_calls == []
    assert (await metadata_store.list_files(PROJECT_ID))[1] == 0
    assert part.consumed


@pytest.mark.asyncio
async def test_flaky_blob_store_retries_to_one_blob(pipeline, blob_store, png_bytes):
    blob_store.fail_saves = 2

    stored = await pipeline.upload(_request([make_part("doc.png", png_bytes, "image/png")]))

    main_saves = [key for key in blob_store.save_calls if "/thumb-" not in key]
    assert main_saves == [stored.path] * 3
    assert stored.path in blob_store.blobs
    assert len([key for key in blob_store.blobs if "/thumb-" not in key]) == 1


@pytest.mark.asyncio
async def test_unknown_locale_removes_uploaded_blobs(pipeline, blob_store, metadata_store, png_bytes):
    part = make_part("photo.png", png_bytes, "image/png")

    with pytest.raises(LanguageNotFound) as exc_info:
        await pipeline.upload(_request([part], translations={"xx": TranslationInput(title="?")}))

    assert exc_info.value.status_code == 500
    assert blob_store.save_calls
    assert blob_store.blobs == {}
    assert (await metadata_store.list_files(PROJECT_ID))[1] == 0


@pytest.mark.asyncio
async def test_batch_with_oversized_file_is_partial_success(blob_store, metadata_store):
    pipeline = make_pipeline(blob_store, metadata_store, make_validator(max_file_bytes=4096))
    parts = [
        make_part(f"file{i}.svg", b"<svg/>" * (10 if i != 3 else 1000), "image/svg+xml", "files")
        for i in range(1, 6)
    ]

    report = await pipeline.upload_batch(_request(parts))

    assert len(report.succeeded) == 4
    assert len(report.failed) == 1
    assert report.failed[0].name == "file3.svg"
    assert report.failed[0].error == "PayloadTooLarge"
    assert sorted(f.name for f in report.succeeded) == ["file1.svg", "file2.svg", "file4.svg", "file5.svg"]


@pytest.mark.asyncio
async def test_batch_reports_decoder_rejected_parts(pipeline):
    rejected = RejectedPart("files", "huge.png", "image/png", PayloadTooLarge("too big"))
    parts = [make_part("ok.svg", b"<svg/>", "image/svg+xml", "files")]

    report = await pipeline.upload_batch(_request(parts, rejected=[rejected]))

    assert [f.name for f in report.succeeded] == ["ok.svg"]
    assert [(f.name, f.error) for f in report.failed] == [("huge.png", "PayloadTooLarge")]


@pytest.mark.asyncio
async def test_batch_limit_counts_decoder_rejected_parts(blob_store, metadata_store):
    pipeline = make_pipeline(blob_store, metadata_store, make_validator(max_files_per_batch=2))
    rejected = RejectedPart("files", "huge.png", "image/png", PayloadTooLarge("too big"))
    parts = [make_part(f"{i}.svg", b"<svg/>", "image/svg+xml", "files") for i in range(2)]

    with pytest.raises(ValidationError, match="Too many files"):
        await pipeline.upload_batch(_request(parts, rejected=[rejected]))

    assert blob_store.save_calls == []


@pytest.mark.asyncio
async def test_batch_isolates_processing_failures(pipeline, png_bytes):
    parts = [
        make_part("good.png", png_bytes, "image/png", "files"),
        make_part("corrupt.png", b"not an image", "image/png", "files"),
        make_part("clip.mp3", b"ID3", "audio/mpeg", "files"),
    ]

    report = await pipeline.upload_batch(_request(parts))

    assert [f.name for f in report.succeeded] == ["good.png"]
    failures = {f.name: f.error for f in report.failed}
    assert failures == {"corrupt.png": ProcessingFailed.category, "clip.mp3": UnsupportedMediaType.category}


@pytest.mark.asyncio
async def test_batch_respects_concurrency_cap(blob_store, metadata_store):
    pipeline = make_pipeline(blob_store, metadata_store, max_concurrency=2)
    in_flight = 0
    peak = 0
    original_save = blob_store.save

    async def tracking_save(data, key, content_type):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return await original_save(data, key, content_type)

    blob_store.save = tracking_save
    parts = [make_part(f"{i}.svg", b"<svg/>", "image/svg+xml", "files") for i in range(6)]

    report = await pipeline.upload_batch(_request(parts))

    assert len(report.succeeded) == 6
    assert peak <= 2


@pytest.mark.asyncio
async def test_batch_per_file_timeout(blob_store, metadata_store):
    pipeline = make_pipeline(blob_store, metadata_store, file_timeout=0.05)
    original_save = blob_store.save

    async def slow_for_one(data, key, content_type):
        if "slow" in key:
            await asyncio.sleep(1)
        return await original_save(data, key, content_type)

    blob_store.save = slow_for_one
    parts = [
        make_part("slow.svg", b"<svg/>", "image/svg+xml", "files"),
        make_part("fast.svg", b"<svg/>", "image/svg+xml", "files"),
    ]

    report = await pipeline.upload_batch(_request(parts))

    assert [f.name for f in report.succeeded] == ["fast.svg"]
    assert [(f.name, f.error) for f in report.failed] == [("slow.svg", "ProcessingTimeout")]
    assert not any("slow" in key for key in blob_store.blobs)


@pytest.mark.asyncio
async def test_file_timeout_removes_blob_written_late_by_worker_thread(metadata_store):
    blob_store = ThreadedBlobStore(write_delay=0.3)
    pipeline = make_pipeline(blob_store, metadata_store, file_timeout=0.1)

    report = await pipeline.upload_batch(_request([make_part("a.svg", b"<svg/>", "image/svg+xml", "files")]))
    await asyncio.sleep(0.4)

    assert [(f.name, f.error) for f in report.failed] == [("a.svg", "ProcessingTimeout")]
    assert blob_store.save_calls
    assert blob_store.blobs == {}
    assert (await metadata_store.list_files(PROJECT_ID))[1] == 0


@pytest.mark.asyncio
async def test_batch_timeout_cancels_unfinished_files(metadata_store):
    blob_store = ThreadedBlobStore(write_delay=1.0, slow_when=lambda key: "-f0.svg" not in key)
    pipeline = make_pipeline(
        blob_store, metadata_store, max_concurrency=1, file_timeout=None, batch_timeout=0.4
    )
    parts = [make_part(f"f{i}.svg", b"<svg/>", "image/svg+xml", "files") for i in range(3)]

    report = await pipeline.upload_batch(_request(parts))
    await asyncio.sleep(0.1)

    assert len(report.succeeded) + len(report.failed) == 3
    assert [f.name for f in report.succeeded] == ["f0.svg"]
    assert sorted((f.name, f.error) for f in report.failed) == [
        ("f1.svg", "ProcessingTimeout"),
        ("f2.svg", "ProcessingTimeout"),
    ]
    assert list(blob_store.blobs) == [report.succeeded[0].path]
    assert (await metadata_store.list_files(PROJECT_ID))[1] == 1


@pytest.mark.asyncio
async def test_batch_request_level_rules_reject_everything(pipeline, blob_store):
    parts = [make_part(f"{i}.mp3", b"ID3", "audio/mpeg", "files") for i in range(2)]
    translations = {"en": TranslationInput(), "fr": TranslationInput()}

    with pytest.raises(ValidationError):
        await pipeline.upload_batch(_request(parts, FileType.AUDIO, translations))

    with pytest.raises(ValidationError):
        await pipeline.upload_batch(_request([]))

    assert blob_store.save_calls == []


@pytest.mark.asyncio
async def test_update_cannot_change_type(pipeline, blob_store, metadata_store, png_bytes):
    stored = await pipeline.upload(_request([make_part("a.png", png_bytes, "image/png")]))
    saves_before = len(blob_store.save_calls)
    replacement = make_part("b.mp3", b"ID3", "audio/mpeg")

    with pytest.raises(ValidationError):
        await pipeline.update(PROJECT_ID, stored.id, requested_type=FileType.AUDIO, part=replacement)

    assert len(blob_store.save_calls) == saves_before
    assert replacement.consumed
    unchanged = await metadata_store.get_file(PROJECT_ID, stored.id)
    assert unchanged.path == stored.path
    assert unchanged.name == stored.name


@pytest.mark.asyncio
async def test_audio_update_with_two_locales(pipeline, blob_store):
    stored = await pipeline.upload(
        _request([make_part("t.mp3", b"ID3", "audio/mpeg")], FileType.AUDIO, {"en": TranslationInput()})
    )
    saves_before = len(blob_store.save_calls)

    with pytest.raises(ValidationError):
        await pipeline.update(
            PROJECT_ID,
            stored.id,
            part=make_part("t2.mp3", b"ID3-new", "audio/mpeg"),
            translations={"en": TranslationInput(), "fr": TranslationInput()},
        )

    assert len(blob_store.save_calls) == saves_before


@pytest.mark.asyncio
async def test_no_row_for_failed_upload(pipeline, blob_store, metadata_store, png_bytes):
    blob_store.fail_saves = 10

    with pytest.raises(StorageWriteFailed):
        await pipeline.upload(_request([make_part("a.png", png_bytes, "image/png")]))

    files, total = await metadata_store.list_files(PROJECT_ID)
    assert total == 0
    for key in blob_store.save_calls:
        assert all(f.path != key for f in files)


@pytest.mark.asyncio
async def test_thumbnail_generation_failure_stores_file(pipeline, metadata_store, png_bytes):
    with patch.object(MediaTranscoder, "generate_thumbnail", side_effect=RuntimeError("boom")):
        stored = await pipeline.upload(_request([make_part("a.png", png_bytes, "image/png")]))

    assert stored.thumbnail_path is None
    assert (await metadata_store.get_file(PROJECT_ID, stored.id)).thumbnail_path is None


@pytest.mark.asyncio
async def test_same_name_same_millisecond_keys_differ(pipeline, blob_store):
    def frozen_clock_key(*args, **kwargs):
        return generate_storage_key(*args, clock=lambda: 1700000000.0, **kwargs)

    with patch("areacms.uploads.writer.generate_storage_key", side_effect=frozen_clock_key):
        first = await pipeline.upload(_request([make_part("same.svg", b"<svg/>", "image/svg+xml")]))
        second = await pipeline.upload(_request([make_part("same.svg", b"<svg/>", "image/svg+xml")]))

    assert first.path.startswith("project-7/1700000000000-")
    assert second.path.startswith("project-7/1700000000000-")
    assert first.path != second.path
    assert first.path in blob_store.blobs
    assert second.path in blob_store.blobs


@pytest.mark.asyncio
async def test_update_replaces_blob_and_translations(pipeline, blob_store, png_bytes):
    stored = await pipeline.upload(
        _request([make_part("a.png", png_bytes, "image/png")], translations={"en": TranslationInput(title="A")})
    )

    updated = await pipeline.update(
        PROJECT_ID,
        stored.id,
        requested_type=FileType.IMAGE,
        part=make_part("b.png", make_image(50, 50), "image/png"),
        translations={"fr": TranslationInput(title="B")},
    )

    assert updated.name == "b.png"
    assert updated.path != stored.path
    assert stored.path not in blob_store.blobs
    assert updated.path in blob_store.blobs
    assert [(t.locale, t.title) for t in updated.translations] == [("fr", "B")]


@pytest.mark.asyncio
async def test_update_missing_file(pipeline):
    with pytest.raises(FileNotFound):
        await pipeline.update(PROJECT_ID, 12345, translations={})


@pytest.mark.asyncio
async def test_single_upload_rejects_multiple_files(pipeline, blob_store):
    parts = [make_part("a.svg", b"<svg/>", "image/svg+xml"), make_part("b.svg", b"<svg/>", "image/svg+xml")]

    with pytest.raises(ValidationError):
        await pipeline.upload(_request(parts))

    assert all(part.consumed for part in parts)
    assert blob_store.save_calls == []


@pytest.mark.asyncio
async def test_single_upload_surfaces_decoder_rejection(pipeline):
    rejected = RejectedPart("file", "huge.png", "image/png", PayloadTooLarge("too big"))

    with pytest.raises(PayloadTooLarge):
        await pipeline.upload(_request([], rejected=[rejected]))


@pytest.mark.asyncio
async def test_get_and_delete(pipeline, blob_store):
    stored = await pipeline.upload(_request([make_part("a.svg", b"<svg/>", "image/svg+xml")]))

    assert (await pipeline.get(PROJECT_ID, stored.id)).id == stored.id

    result = await pipeline.delete(PROJECT_ID, stored.id)

    assert result.blobs_deleted
    assert blob_store.blobs == {}
    with pytest.raises(FileNotFound):
        await pipeline.get(PROJECT_ID, stored.id)


@pytest.mark.asyncio
async def test_streamed_parts_are_processed(pipeline, blob_store, png_bytes):
    part = make_part("photo.png", png_bytes, "image/png", streamed=True)

    stored = await pipeline.upload(_request([part]))

    assert stored.path in blob_store.blobs
    assert part.consumed
