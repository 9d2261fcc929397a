import asyncio
import json
import random
from dataclasses import dataclass, field
from typing import Any, Optional

import aiohttp
from loguru import logger

from translation_client.backoff import BackoffPolicy
from translation_client.errors import ErrorKind, TranslatorError
from translation_client.models import RetryConfig
from translation_client.status import ClassifiedOutcome, StatusContext, Verdict, classify


@dataclass(frozen=True)
class UploadFile:
    filename: str
    content: bytes


@dataclass(frozen=True)
class ApiRequest:
    """Description of one logical API request.

    The body is rebuilt from these fields for every attempt, so multipart
    uploads can be retried.
    """

    method: str
    path: str
    query: Optional[list[tuple[str, str]]] = None
    form: Optional[list[tuple[str, str]]] = None
    upload: Optional[UploadFile] = None
    accept: Optional[str] = None
    context: StatusContext = field(default_factory=StatusContext)

    def build_body(self) -> Any:
        if self.upload is None:
            return self.form

        body = aiohttp.FormData()
        for key, value in self.form or []:
            body.add_field(key, value)
        body.add_field("file", self.upload.content, filename=self.upload.filename)
        return body


@dataclass(frozen=True)
class HttpResponse:
    status: int
    headers: dict[str, str]
    body: bytes

    def json(self) -> Any:
        return json.loads(self.body)

    def text(self) -> str:
        return self.body.decode("utf-8")


class RequestExecutor:
    def __init__(
        self,
        server_url: str,
        headers: Optional[dict[str, str]] = None,
        retry_config: Optional[RetryConfig] = None,
        backoff: Optional[BackoffPolicy] = None,
        rng: Optional[random.Random] = None,
        overall_timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.server_url = server_url.rstrip("/")
        self.headers = dict(headers or {})
        self.retry_config = retry_config or RetryConfig()
        self.backoff = backoff or BackoffPolicy()
        self.rng = rng or random.Random()
        self.overall_timeout = overall_timeout
        self.logger = logger
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "RequestExecutor":
        await self._ensure_session()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def compute_delay(self, attempt: int) -> float:
        return self.backoff.compute_delay(attempt, self.rng)

    async def execute(self, api_request: ApiRequest) -> HttpResponse:
        """Sends the request, retrying transient failures with backoff.

        Raises TranslatorError for terminal outcomes and for transient ones
        once retries are exhausted. Cancellation of the calling task is
        never retried and propagates as asyncio.CancelledError.
        """
        if self.overall_timeout is None:
            return await self._execute_with_retries(api_request)

        try:
            return await asyncio.wait_for(self._execute_with_retries(api_request), self.overall_timeout)
        except asyncio.TimeoutError as e:
            self.logger.error(f"{api_request.method} {api_request.path} exceeded overall timeout of {self.overall_timeout}s")
            raise TranslatorError(
                ErrorKind.connection,
                f"Request timed out: no response within overall timeout of {self.overall_timeout}s",
            ) from e

    async def _execute_with_retries(self, api_request: ApiRequest) -> HttpResponse:
        session = await self._ensure_session()
        attempts = self.retry_config.max_retries + 1

        for attempt in range(1, attempts + 1):
            cause: Optional[BaseException] = None
            try:
                response = await self._send_once(session, api_request)
            except asyncio.TimeoutError as e:
                cause = e
                outcome = ClassifiedOutcome.retryable(
                    TranslatorError(
                        ErrorKind.connection,
                        f"Request timed out after {self.retry_config.per_attempt_timeout}s",
                    )
                )
            except aiohttp.ClientError as e:
                cause = e
                outcome = ClassifiedOutcome.retryable(
                    TranslatorError(ErrorKind.connection, f"Request failed: {e}")
                )
            else:
                outcome = classify(response.status, response.body, api_request.context)
                if outcome.verdict is Verdict.success:
                    return response

            if outcome.verdict is Verdict.terminal or attempt == attempts:
                if outcome.verdict is Verdict.retryable:
                    self.logger.error(
                        f"{api_request.method} {api_request.path} failed after {attempt} attempts: {outcome.error}"
                    )
                raise outcome.error from cause

            delay = self.compute_delay(attempt)
            self.logger.warning(
                f"{api_request.method} {api_request.path} attempt {attempt}/{attempts} failed "
                f"({outcome.error}), retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    async def _send_once(self, session: aiohttp.ClientSession, api_request: ApiRequest) -> HttpResponse:
        url = f"{self.server_url}{api_request.path}"
        headers = {name: value for name, value in self.headers.items() if name.lower() != "accept"}
        headers["Accept"] = api_request.accept or "application/json"
        timeout = aiohttp.ClientTimeout(total=self.retry_config.per_attempt_timeout)

        async with session.request(
            api_request.method,
            url,
            params=api_request.query,
            data=api_request.build_body(),
            headers=headers,
            timeout=timeout,
        ) as response:
            body = await response.read()
            self.logger.debug(f"{api_request.method} {url} -> {response.status}")
            return HttpResponse(
                status=response.status,
                headers=dict(response.headers),
                body=body,
            )
