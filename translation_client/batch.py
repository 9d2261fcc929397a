import asyncio
from typing import Iterable, Optional

from loguru import logger

from translation_client.models import BatchResult, BatchTarget
from translation_client.translation_client import TranslationClient

DEFAULT_MAX_PARALLEL_REQUESTS = 10


async def _translate_target(
    client: TranslationClient,
    texts: list[str],
    source_lang: Optional[str],
    target: BatchTarget,
) -> BatchResult:
    """Translates texts into one target language, converting any failure into a failed result"""
    try:
        results = await client.translate_text(texts, source_lang, target.target_lang, target.options)
    except Exception as e:
        logger.warning(f"Batch translation into {target.target_lang} failed: {e}")
        return BatchResult(target_lang=target.target_lang, completed=False, error=str(e))

    return BatchResult(
        target_lang=target.target_lang,
        completed=True,
        results=results,
        cost=sum(result.billed_characters or 0 for result in results),
    )


async def translate_batch(
    client: TranslationClient,
    texts: Iterable[str],
    source_lang: Optional[str],
    targets: Iterable[BatchTarget],
    handle_in_parallel: bool = True,
    max_parallel_requests: int = DEFAULT_MAX_PARALLEL_REQUESTS,
) -> list[BatchResult]:
    """Translates the same texts into several target languages.

    Each target is a separate request (and is billed separately). A failure
    for one target never aborts the others; it shows up as a BatchResult
    with completed=False. Exactly one result is returned per target.
    """
    if max_parallel_requests < 1:
        raise ValueError("max_parallel_requests must be at least 1")

    texts = list(texts)
    targets = list(targets)

    if not handle_in_parallel:
        return [await _translate_target(client, texts, source_lang, target) for target in targets]

    semaphore = asyncio.Semaphore(max_parallel_requests)

    async def run(target: BatchTarget) -> BatchResult:
        async with semaphore:
            return await _translate_target(client, texts, source_lang, target)

    logger.debug(
        f"Translating {len(texts)} texts into {len(targets)} languages, "
        f"at most {max_parallel_requests} at a time"
    )
    return list(await asyncio.gather(*(run(target) for target in targets)))
