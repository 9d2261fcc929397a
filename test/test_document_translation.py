import asyncio
import sys
import time

import pytest
from conftest import AUTH_KEY
from translation_client.errors import DocumentTranslationError, ErrorKind, TranslatorError
from translation_client.models import DocumentHandle, DocumentState
from translation_client.translation_client import TranslationClient

CONTENT = b"Hello, world!"


@pytest.mark.asyncio
async def test_successful_translation_polls_until_done_then_downloads(server, client):
    server_instance, _ = server

    result = await client.translate_document(CONTENT, "hello.txt", "en", "de")

    assert result == b"translated:" + CONTENT
    assert server_instance.request_counts["upload"] == 1
    assert server_instance.request_counts["status"] == 3
    assert server_instance.request_counts["result"] == 1


@pytest.mark.asyncio
async def test_status_change_callback_sees_each_state_once(server, options):
    server_instance, _ = server
    server_instance.status_sequence = ["queued", "translating", "translating", "done"]
    status_changes = []

    async def status_callback(status):
        status_changes.append(status.status)

    async with TranslationClient(AUTH_KEY, options, on_status_change=status_callback) as client:
        await client.translate_document(CONTENT, "hello.txt", "en", "de")

    assert status_changes == [DocumentState.queued, DocumentState.translating, DocumentState.done]


@pytest.mark.asyncio
async def test_server_side_error_carries_handle_and_message(server, client):
    server_instance, _ = server
    server_instance.status_sequence = ["queued", "error"]

    with pytest.raises(DocumentTranslationError) as exc_info:
        await client.translate_document(CONTENT, "hello.txt", "en", "de")

    error = exc_info.value
    assert error.kind is ErrorKind.document_translation
    assert error.document_handle is not None
    assert error.document_handle.document_id in server_instance.documents
    assert "Source document is corrupt" in error.message
    assert server_instance.request_counts["result"] == 0


@pytest.mark.asyncio
async def test_document_never_ready_exhausts_download_retries(server, client):
    server_instance, _ = server
    server_instance.document_ready = False

    with pytest.raises(DocumentTranslationError) as exc_info:
        await client.translate_document(CONTENT, "hello.txt", "en", "de")

    error = exc_info.value
    (document_id,) = server_instance.documents
    assert error.document_handle.document_id == document_id
    assert error.document_handle.document_key == server_instance.documents[document_id]["key"]
    assert error.__cause__.kind is ErrorKind.document_not_ready
    assert server_instance.request_counts["result"] == 6


@pytest.mark.asyncio
async def test_download_is_retried_until_document_ready(server, client):
    server_instance, _ = server
    server_instance.failures["result"] = [503, 503]

    result = await client.translate_document(CONTENT, "hello.txt", "en", "de")

    assert result == b"translated:" + CONTENT
    assert server_instance.request_counts["result"] == 3


@pytest.mark.asyncio
async def test_failed_upload_has_no_handle(server, client):
    server_instance, _ = server
    server_instance.failures["upload"] = [456]

    with pytest.raises(DocumentTranslationError) as exc_info:
        await client.translate_document(CONTENT, "hello.txt", "en", "de")

    assert exc_info.value.document_handle is None
    assert exc_info.value.__cause__.kind is ErrorKind.quota_exceeded
    assert server_instance.request_counts["status"] == 0


@pytest.mark.asyncio
async def test_invalid_arguments_are_wrapped_without_handle(server, client):
    with pytest.raises(DocumentTranslationError) as exc_info:
        await client.translate_document(CONTENT, "hello.txt", "en", "pt")

    assert exc_info.value.document_handle is None
    assert isinstance(exc_info.value.__cause__, ValueError)


@pytest.mark.asyncio
async def test_transient_failures_at_every_step_are_absorbed(server, client):
    server_instance, _ = server
    server_instance.failures["upload"] = [502]
    server_instance.failures["status"] = [500]
    server_instance.failures["result"] = [429]

    result = await client.translate_document(CONTENT, "hello.txt", "en", "de")

    assert result == b"translated:" + CONTENT
    assert len(server_instance.documents) == 1
    assert server_instance.request_counts["upload"] == 2
    assert server_instance.request_counts["status"] == 4
    assert server_instance.request_counts["result"] == 2


@pytest.mark.asyncio
async def test_cancellation_mid_poll_raises_cancelled_error_with_handle(server, options):
    server_instance, _ = server
    server_instance.status_sequence = ["translating"]
    options = options.model_copy(update={"document_poll_interval": 0.2})
    caught = []

    async with TranslationClient(AUTH_KEY, options) as client:

        async def translate():
            try:
                await client.translate_document(CONTENT, "hello.txt", "en", "de")
            except asyncio.CancelledError as e:
                caught.append(e)
                raise

        task = asyncio.create_task(translate())
        await server_instance.wait_for_requests("status", 2)
        cancelled_at = time.monotonic()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert time.monotonic() - cancelled_at < 0.2

    polls = server_instance.request_counts["status"]
    await asyncio.sleep(0.3)
    assert server_instance.request_counts["status"] == polls
    assert server_instance.request_counts["result"] == 0

    (error,) = caught
    assert not isinstance(error, DocumentTranslationError)
    assert error.kind is ErrorKind.cancelled
    assert error.document_handle.document_id in server_instance.documents


@pytest.mark.asyncio
async def test_cancellation_is_not_caught_by_except_exception(server, client):
    server_instance, _ = server
    server_instance.status_sequence = ["translating"]
    swallowed = []

    async def worker():
        try:
            await client.translate_document(CONTENT, "hello.txt", "en", "de")
        except Exception as e:
            swallowed.append(e)
        return "kept running"

    task = asyncio.create_task(worker())
    await server_instance.wait_for_requests("status", 2)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert task.cancelled()
    assert swallowed == []


@pytest.mark.asyncio
async def test_wait_for_timeout_around_document_translation(server, client):
    server_instance, _ = server
    server_instance.status_sequence = ["translating"]

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(client.translate_document(CONTENT, "hello.txt", "en", "de"), 0.3)

    assert server_instance.request_counts["upload"] == 1
    assert server_instance.request_counts["result"] == 0


@pytest.mark.asyncio
@pytest.mark.skipif(sys.version_info < (3, 11), reason="asyncio.timeout requires Python 3.11")
async def test_timeout_context_around_document_translation(server, client):
    server_instance, _ = server
    server_instance.status_sequence = ["translating"]
    caught = []

    with pytest.raises(TimeoutError):
        async with asyncio.timeout(0.3):
            try:
                await client.translate_document(CONTENT, "hello.txt", "en", "de")
            except asyncio.CancelledError as e:
                caught.append(e)
                raise

    (cancelled,) = caught
    assert cancelled.document_handle.document_id in server_instance.documents


@pytest.mark.asyncio
async def test_workflow_can_be_resumed_from_a_persisted_handle(server, client):
    server_instance, _ = server

    handle = await client.translate_document_upload(CONTENT, "hello.txt", None, "de")
    persisted = handle.model_dump_json()

    restored = DocumentHandle.model_validate_json(persisted)
    status = await client.translate_document_wait_until_done(restored)
    assert status.done
    assert status.billed_characters == len(CONTENT)

    assert await client.translate_document_download(restored) == b"translated:" + CONTENT
    assert server_instance.request_counts["upload"] == 1


@pytest.mark.asyncio
async def test_status_with_wrong_key_is_rejected(server, client):
    handle = await client.translate_document_upload(CONTENT, "hello.txt", "en", "de")
    forged = DocumentHandle(document_id=handle.document_id, document_key="wrong")

    with pytest.raises(TranslatorError) as exc_info:
        await client.translate_document_status(forged)

    assert exc_info.value.kind is ErrorKind.authorization


@pytest.mark.asyncio
async def test_translate_document_from_path_writes_output(server, client, tmp_path):
    input_path = tmp_path / "hello.txt"
    input_path.write_bytes(CONTENT)
    output_path = tmp_path / "hello_de.txt"

    await client.translate_document_from_path(input_path, output_path, "en", "de")

    assert output_path.read_bytes() == b"translated:" + CONTENT


@pytest.mark.asyncio
async def test_translate_document_from_path_leaves_no_output_on_failure(server, client, tmp_path):
    server_instance, _ = server
    server_instance.status_sequence = ["error"]
    input_path = tmp_path / "hello.txt"
    input_path.write_bytes(CONTENT)
    output_path = tmp_path / "hello_de.txt"

    with pytest.raises(DocumentTranslationError):
        await client.translate_document_from_path(input_path, output_path, "en", "de")

    assert not output_path.exists()


@pytest.mark.asyncio
async def test_translate_document_from_path_refuses_to_overwrite(server, client, tmp_path):
    server_instance, _ = server
    input_path = tmp_path / "hello.txt"
    input_path.write_bytes(CONTENT)
    output_path = tmp_path / "hello_de.txt"
    output_path.write_bytes(b"keep me")

    with pytest.raises(FileExistsError):
        await client.translate_document_from_path(input_path, output_path, "en", "de")

    assert output_path.read_bytes() == b"keep me"
    assert server_instance.request_counts["upload"] == 0


@pytest.mark.asyncio
async def test_translate_document_from_path_creates_output_before_upload(server, client, tmp_path):
    server_instance, _ = server
    server_instance.delays["upload"] = [0.3]
    input_path = tmp_path / "hello.txt"
    input_path.write_bytes(CONTENT)
    output_path = tmp_path / "hello_de.txt"

    task = asyncio.create_task(
        client.translate_document_from_path(input_path, output_path, "en", "de")
    )
    await server_instance.wait_for_requests("upload", 1)

    assert output_path.exists()
    with pytest.raises(FileExistsError):
        await client.translate_document_from_path(input_path, output_path, "en", "fr")

    await task
    assert output_path.read_bytes() == b"translated:" + CONTENT
    assert server_instance.request_counts["upload"] == 1
