import asyncio
import platform
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, TypeVar, Union

from loguru import logger

from translation_client.errors import (
    DocumentTranslationError,
    ErrorKind,
    TranslatorError,
)
from translation_client.executor import ApiRequest, HttpResponse, RequestExecutor, UploadFile
from translation_client.models import (
    DocumentHandle,
    DocumentStatus,
    DocumentTranslateOptions,
    Formality,
    GlossaryInfo,
    GlossaryLanguagePair,
    Language,
    SentenceSplittingMode,
    TextRephraseOptions,
    TextResult,
    TextTranslateOptions,
    TranslatorOptions,
    Usage,
    WriteResult,
    standardize_language_code,
)
from translation_client.status import StatusContext

VERSION = "1.0.0"

SERVER_URL = "https://api.deepl.com"
SERVER_URL_FREE = "https://api-free.deepl.com"

GLOSSARY_CONTEXT = StatusContext(using_glossary=True)

T = TypeVar("T")


def auth_key_is_free_account(auth_key: str) -> bool:
    return auth_key.rstrip().endswith(":fx")


class TranslationClient:
    """Client for the v2 translation API.

    Every HTTP call goes through a RequestExecutor, which retries transient
    failures; document translation adds its own polling and download retry
    loops on top of that.
    """

    def __init__(
        self,
        auth_key: str,
        options: Optional[TranslatorOptions] = None,
        on_status_change: Optional[Callable[[DocumentStatus], Any]] = None,
        executor: Optional[RequestExecutor] = None,
    ):
        auth_key = (auth_key or "").strip()
        if not auth_key:
            raise ValueError("auth_key must not be empty")

        self.options = options or TranslatorOptions()
        self.logger = logger
        self.on_status_change = on_status_change

        server_url = self.options.server_url or (
            SERVER_URL_FREE if auth_key_is_free_account(auth_key) else SERVER_URL
        )
        headers = {name.lower(): value for name, value in self.options.headers.items()}
        headers.setdefault("user-agent", self._user_agent())
        headers.setdefault("authorization", f"DeepL-Auth-Key {auth_key}")

        self.executor = executor or RequestExecutor(
            server_url,
            headers=headers,
            retry_config=self.options.retry_config,
            backoff=self.options.backoff,
            overall_timeout=self.options.overall_timeout,
        )

    async def __aenter__(self) -> "TranslationClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self.executor.close()

    def _user_agent(self) -> str:
        user_agent = f"translation-client-python/{VERSION}"
        if self.options.send_platform_info:
            user_agent += f" ({platform.platform()}) python/{platform.python_version()}"
        if self.options.app_info is not None:
            user_agent += f" {self.options.app_info.app_name}/{self.options.app_info.app_version}"
        return user_agent

    async def get_usage(self) -> Usage:
        response = await self.executor.execute(ApiRequest("GET", "/v2/usage"))
        return _parse_json(response, Usage.from_response)

    async def translate_text(
        self,
        text: Union[str, Iterable[str]],
        source_lang: Optional[str],
        target_lang: str,
        options: Optional[TextTranslateOptions] = None,
    ) -> Union[TextResult, list[TextResult]]:
        """Translates one text or a list of texts.

        Returns a single TextResult when given a string, otherwise a list in
        input order.
        """
        single = isinstance(text, str)
        texts = [text] if single else list(text)
        if not texts:
            raise ValueError("texts must not be empty")
        if any(not t for t in texts):
            raise ValueError("text must not be empty")

        form = _text_params(source_lang, target_lang, options)
        form.append(("show_billed_characters", "1"))
        form.extend(("text", t) for t in texts)

        response = await self.executor.execute(ApiRequest("POST", "/v2/translate", form=form))
        results = _parse_json(
            response, lambda data: [TextResult.model_validate(item) for item in data["translations"]]
        )
        return results[0] if single else results

    async def rephrase_text(
        self,
        text: Union[str, Iterable[str]],
        target_lang: Optional[str] = None,
        options: Optional[TextRephraseOptions] = None,
    ) -> Union[WriteResult, list[WriteResult]]:
        """Rephrases one text or a list of texts, optionally into another language variant"""
        single = isinstance(text, str)
        texts = [text] if single else list(text)
        if not texts:
            raise ValueError("texts must not be empty")
        if any(not t for t in texts):
            raise ValueError("text must not be empty")

        form = []
        if target_lang is not None:
            if not target_lang.strip():
                raise ValueError("target_lang must not be empty")
            form.append(("target_lang", standardize_language_code(target_lang)))
        if options is not None:
            if options.writing_style is not None and options.tone is not None:
                raise ValueError("Only one of writing_style and tone may be set")
            if options.writing_style is not None:
                form.append(("writing_style", options.writing_style))
            if options.tone is not None:
                form.append(("tone", options.tone))
        form.extend(("text", t) for t in texts)

        response = await self.executor.execute(ApiRequest("POST", "/v2/write/rephrase", form=form))
        results = _parse_json(
            response, lambda data: [WriteResult.model_validate(item) for item in data["improvements"]]
        )
        return results[0] if single else results

    async def translate_document(
        self,
        content: bytes,
        filename: str,
        source_lang: Optional[str],
        target_lang: str,
        options: Optional[DocumentTranslateOptions] = None,
    ) -> bytes:
        """Uploads a document, waits for it to be translated and downloads the result.

        Any failure is raised as DocumentTranslationError; its document_handle
        is set whenever the upload succeeded, so the caller can resume with
        translate_document_wait_until_done / translate_document_download
        instead of uploading (and paying for) the document again.

        Cancellation is not wrapped: the caller's own asyncio.CancelledError
        is re-raised with ``document_handle`` and ``kind`` attached.
        """
        handle: Optional[DocumentHandle] = None
        try:
            handle = await self.translate_document_upload(
                content, filename, source_lang, target_lang, options
            )
            await self.translate_document_wait_until_done(handle)
            return await self.translate_document_download(handle)
        except asyncio.CancelledError as e:
            self.logger.info(f"Document translation cancelled (handle: {handle})")
            e.kind = ErrorKind.cancelled
            e.document_handle = handle
            raise
        except Exception as e:
            self.logger.error(f"Document translation failed (handle: {handle}): {e}")
            raise DocumentTranslationError(
                f"Error occurred during document translation: {e}", handle
            ) from e

    async def translate_document_from_path(
        self,
        input_path: Union[str, Path],
        output_path: Union[str, Path],
        source_lang: Optional[str],
        target_lang: str,
        options: Optional[DocumentTranslateOptions] = None,
    ) -> None:
        input_path = Path(input_path)
        output_path = Path(output_path)
        content = input_path.read_bytes()

        # Created before uploading; raises FileExistsError if the output is already there
        output_file = output_path.open("xb")
        try:
            with output_file:
                translated = await self.translate_document(
                    content, input_path.name, source_lang, target_lang, options
                )
                output_file.write(translated)
        except BaseException:
            output_path.unlink(missing_ok=True)
            raise

    async def translate_document_upload(
        self,
        content: bytes,
        filename: str,
        source_lang: Optional[str],
        target_lang: str,
        options: Optional[DocumentTranslateOptions] = None,
    ) -> DocumentHandle:
        form = _common_params(
            source_lang,
            target_lang,
            options.formality if options else None,
            options.glossary_id if options else None,
        )
        response = await self.executor.execute(
            ApiRequest(
                "POST",
                "/v2/document",
                form=form,
                upload=UploadFile(filename=filename, content=content),
            )
        )
        handle = _parse_json(response, DocumentHandle.model_validate)
        self.logger.debug(f"Uploaded {filename} as document {handle.document_id}")
        return handle

    async def translate_document_status(self, handle: DocumentHandle) -> DocumentStatus:
        response = await self.executor.execute(
            ApiRequest(
                "POST",
                f"/v2/document/{handle.document_id}",
                form=[("document_key", handle.document_key)],
            )
        )
        return _parse_json(response, DocumentStatus.model_validate)

    async def _handle_status_change(
        self, status: DocumentStatus, last_status: Optional[DocumentStatus]
    ) -> None:
        """Invoke the status change callback if the document state has changed"""
        if last_status is not None and last_status.status == status.status:
            return
        self.logger.debug(f"Document {status.document_id} status changed to {status.status.value}")
        if self.on_status_change is not None:
            await self.on_status_change(status)

    async def translate_document_wait_until_done(self, handle: DocumentHandle) -> DocumentStatus:
        """Polls the document status at a fixed interval until it is done or failed"""
        status = await self.translate_document_status(handle)
        await self._handle_status_change(status, None)

        while status.ok and not status.done:
            self.logger.debug(
                f"Document {handle.document_id} is {status.status.value}, "
                f"checking again in {self.options.document_poll_interval}s"
            )
            await asyncio.sleep(self.options.document_poll_interval)
            last_status = status
            status = await self.translate_document_status(handle)
            await self._handle_status_change(status, last_status)

        if not status.ok:
            raise TranslatorError(ErrorKind.document_translation, status.error_message or "Unknown error")
        return status

    async def translate_document_download(self, handle: DocumentHandle) -> bytes:
        """Downloads the translated document.

        A "document not ready" response is retried here, separately from the
        executor's network retries, up to document_download_retries times.
        """
        api_request = ApiRequest(
            "POST",
            f"/v2/document/{handle.document_id}/result",
            form=[("document_key", handle.document_key)],
            accept="*/*",
            context=StatusContext(downloading_document=True),
        )
        attempts = self.options.document_download_retries + 1

        for attempt in range(1, attempts + 1):
            try:
                response = await self.executor.execute(api_request)
            except TranslatorError as e:
                if e.kind is not ErrorKind.document_not_ready or attempt == attempts:
                    raise
                delay = self.executor.compute_delay(attempt)
                self.logger.debug(
                    f"Document {handle.document_id} not ready for download, waiting {delay:.2f}s"
                )
                await asyncio.sleep(delay)
            else:
                return response.body

    async def get_source_languages(self) -> list[Language]:
        return await self._get_languages("source")

    async def get_target_languages(self) -> list[Language]:
        return await self._get_languages("target")

    async def _get_languages(self, language_type: str) -> list[Language]:
        response = await self.executor.execute(
            ApiRequest("GET", "/v2/languages", query=[("type", language_type)])
        )
        return _parse_json(response, lambda data: [Language.model_validate(item) for item in data])

    async def get_glossary_languages(self) -> list[GlossaryLanguagePair]:
        response = await self.executor.execute(ApiRequest("GET", "/v2/glossary-language-pairs"))
        return _parse_json(
            response,
            lambda data: [GlossaryLanguagePair.model_validate(item) for item in data["supported_languages"]],
        )

    async def create_glossary(
        self,
        name: str,
        source_lang: str,
        target_lang: str,
        entries: dict[str, str],
    ) -> GlossaryInfo:
        if not name:
            raise ValueError("Glossary name must not be empty")
        if not entries:
            raise ValueError("Glossary entries must not be empty")

        form = [
            ("name", name),
            ("source_lang", _strip_region(source_lang)),
            ("target_lang", _strip_region(target_lang)),
            ("entries_format", "tsv"),
            ("entries", entries_to_tsv(entries)),
        ]
        response = await self.executor.execute(
            ApiRequest("POST", "/v2/glossaries", form=form, context=GLOSSARY_CONTEXT)
        )
        return _parse_json(response, GlossaryInfo.model_validate)

    async def get_glossary(self, glossary_id: str) -> GlossaryInfo:
        response = await self.executor.execute(
            ApiRequest("GET", f"/v2/glossaries/{glossary_id}", context=GLOSSARY_CONTEXT)
        )
        return _parse_json(response, GlossaryInfo.model_validate)

    async def wait_until_glossary_ready(self, glossary_id: str) -> GlossaryInfo:
        info = await self.get_glossary(glossary_id)
        while not info.ready:
            await asyncio.sleep(self.options.glossary_poll_interval)
            info = await self.get_glossary(glossary_id)
        return info

    async def list_glossaries(self) -> list[GlossaryInfo]:
        response = await self.executor.execute(
            ApiRequest("GET", "/v2/glossaries", context=GLOSSARY_CONTEXT)
        )
        return _parse_json(
            response, lambda data: [GlossaryInfo.model_validate(item) for item in data["glossaries"]]
        )

    async def get_glossary_entries(self, glossary_id: str) -> dict[str, str]:
        response = await self.executor.execute(
            ApiRequest(
                "GET",
                f"/v2/glossaries/{glossary_id}/entries",
                accept="text/tab-separated-values",
                context=GLOSSARY_CONTEXT,
            )
        )
        return entries_from_tsv(response.text())

    async def delete_glossary(self, glossary_id: str) -> None:
        await self.executor.execute(
            ApiRequest("DELETE", f"/v2/glossaries/{glossary_id}", context=GLOSSARY_CONTEXT)
        )


def _parse_json(response: HttpResponse, parse: Callable[[Any], T]) -> T:
    """Decode a successful response body, raising TranslatorError if it is not what the API returns"""
    try:
        return parse(response.json())
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise TranslatorError(
            ErrorKind.generic,
            f"Invalid response from server: {e}",
            status_code=response.status,
        ) from e


def entries_to_tsv(entries: dict[str, str]) -> str:
    return "\n".join(f"{source}\t{target}" for source, target in entries.items())


def entries_from_tsv(tsv: str) -> dict[str, str]:
    entries = {}
    for line in tsv.splitlines():
        if not line.strip():
            continue
        source, _, target = line.partition("\t")
        entries[source] = target
    return entries


def _strip_region(code: str) -> str:
    return standardize_language_code(code).split("-")[0]


def _common_params(
    source_lang: Optional[str],
    target_lang: str,
    formality: Optional[Formality],
    glossary_id: Optional[str],
) -> list[tuple[str, str]]:
    if source_lang is not None and not source_lang.strip():
        raise ValueError("source_lang must not be empty")
    if not target_lang or not target_lang.strip():
        raise ValueError("target_lang must not be empty")

    target_lang = standardize_language_code(target_lang)
    if target_lang in ("en", "pt"):
        raise ValueError(
            f'target_lang="{target_lang}" is deprecated, please use '
            f'"{target_lang}-XX" with a regional variant instead'
        )

    params = [("target_lang", target_lang)]
    if source_lang is not None:
        params.append(("source_lang", standardize_language_code(source_lang)))

    if glossary_id is not None:
        if source_lang is None:
            raise ValueError("source_lang is required if using a glossary")
        params.append(("glossary_id", glossary_id))

    if formality is not None and formality != Formality.default:
        params.append(("formality", formality.value))
    return params


def _text_params(
    source_lang: Optional[str],
    target_lang: str,
    options: Optional[TextTranslateOptions],
) -> list[tuple[str, str]]:
    if options is None:
        return _common_params(source_lang, target_lang, None, None)

    params = _common_params(source_lang, target_lang, options.formality, options.glossary_id)
    if options.context is not None:
        params.append(("context", options.context))
    if options.split_sentences != SentenceSplittingMode.all:
        params.append(
            ("split_sentences", "0" if options.split_sentences == SentenceSplittingMode.off else "nonewlines")
        )
    if options.preserve_formatting:
        params.append(("preserve_formatting", "1"))
    if options.tag_handling is not None:
        params.append(("tag_handling", options.tag_handling))
    if not options.outline_detection:
        params.append(("outline_detection", "0"))
    if options.non_splitting_tags:
        params.append(("non_splitting_tags", ",".join(options.non_splitting_tags)))
    if options.splitting_tags:
        params.append(("splitting_tags", ",".join(options.splitting_tags)))
    if options.ignore_tags:
        params.append(("ignore_tags", ",".join(options.ignore_tags)))
    if options.model_type is not None:
        params.append(("model_type", options.model_type.value))
    return params
