"""Translation helpers that refuse to run past a caller-chosen usage limit.

Useful for reserving part of the account quota: the current usage is
fetched first and the request is only sent if it fits under ``limit``.
"""

from typing import Optional

from translation_client.errors import ErrorKind, TranslatorError
from translation_client.models import DocumentTranslateOptions, TextResult, TextTranslateOptions
from translation_client.translation_client import TranslationClient


async def translate_text_with_quota_guard(
    client: TranslationClient,
    texts: list[str],
    source_lang: Optional[str],
    target_lang: str,
    character_limit: int,
    options: Optional[TextTranslateOptions] = None,
) -> list[TextResult]:
    usage = await client.get_usage()
    if usage.character is None:
        raise TranslatorError(ErrorKind.quota_exceeded, "Character usage is not reported for this account")

    requested = sum(len(text) for text in texts)
    if usage.character.count + requested > character_limit:
        raise TranslatorError(
            ErrorKind.quota_exceeded,
            f"Quota exceeded, current usage is {usage.character.count} characters, "
            f"{requested} requested and limit is {character_limit}",
        )
    return await client.translate_text(texts, source_lang, target_lang, options)


async def translate_document_with_quota_guard(
    client: TranslationClient,
    content: bytes,
    filename: str,
    source_lang: Optional[str],
    target_lang: str,
    document_limit: int,
    options: Optional[DocumentTranslateOptions] = None,
) -> bytes:
    usage = await client.get_usage()
    if usage.document is None:
        raise TranslatorError(ErrorKind.quota_exceeded, "Document usage is not reported for this account")

    if usage.document.count + 1 > document_limit:
        raise TranslatorError(
            ErrorKind.quota_exceeded,
            f"Quota exceeded, current usage is {usage.document.count} documents "
            f"and limit is {document_limit}",
        )
    return await client.translate_document(content, filename, source_lang, target_lang, options)
