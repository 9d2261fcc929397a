import json
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from translation_client.errors import ErrorKind, TranslatorError

HTTP_BAD_REQUEST = 400
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_TOO_MANY_REQUESTS = 429
HTTP_QUOTA_EXCEEDED = 456
HTTP_INTERNAL_SERVER_ERROR = 500
HTTP_SERVICE_UNAVAILABLE = 503


class Verdict(str, Enum):
    success = "success"
    retryable = "retryable"
    terminal = "terminal"


@dataclass(frozen=True)
class StatusContext:
    using_glossary: bool = False
    downloading_document: bool = False


@dataclass(frozen=True)
class ClassifiedOutcome:
    """Result of classifying one HTTP attempt.

    For ``retryable`` outcomes ``error`` is what gets raised once retries
    are exhausted; for ``terminal`` outcomes it is raised immediately.
    """

    verdict: Verdict
    error: Optional[TranslatorError] = None

    @classmethod
    def success(cls) -> "ClassifiedOutcome":
        return cls(Verdict.success)

    @classmethod
    def retryable(cls, error: TranslatorError) -> "ClassifiedOutcome":
        return cls(Verdict.retryable, error)

    @classmethod
    def terminal(cls, error: TranslatorError) -> "ClassifiedOutcome":
        return cls(Verdict.terminal, error)


def error_details(body: Optional[bytes]) -> str:
    """Extracts the message/detail fields of a JSON error body, or an empty string"""
    if not body:
        return ""
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return ""
    if not isinstance(data, dict):
        return ""

    details = ""
    if data.get("message") is not None:
        details += f", message: {data['message']}"
    if data.get("detail") is not None:
        details += f", detail: {data['detail']}"
    return details


def classify(
    status_code: int,
    body: Optional[bytes] = None,
    context: StatusContext = StatusContext(),
) -> ClassifiedOutcome:
    if status_code < HTTP_BAD_REQUEST:
        return ClassifiedOutcome.success()

    details = error_details(body)

    def error(kind: ErrorKind, message: str) -> TranslatorError:
        return TranslatorError(kind, message + details, status_code=status_code)

    if status_code == HTTP_FORBIDDEN:
        return ClassifiedOutcome.terminal(
            error(ErrorKind.authorization, "Authorization failure, check auth key")
        )
    if status_code == HTTP_QUOTA_EXCEEDED:
        return ClassifiedOutcome.terminal(
            error(ErrorKind.quota_exceeded, "Quota for this billing period has been exceeded")
        )
    if status_code == HTTP_NOT_FOUND:
        if context.using_glossary:
            return ClassifiedOutcome.terminal(error(ErrorKind.glossary_not_found, "Glossary not found"))
        return ClassifiedOutcome.terminal(error(ErrorKind.not_found, "Not found, check server_url"))
    if status_code == HTTP_BAD_REQUEST:
        return ClassifiedOutcome.terminal(error(ErrorKind.bad_request, "Bad request"))
    if status_code == HTTP_TOO_MANY_REQUESTS:
        return ClassifiedOutcome.retryable(
            error(
                ErrorKind.rate_limited,
                "Too many requests, servers are currently experiencing high load",
            )
        )
    if status_code == HTTP_SERVICE_UNAVAILABLE:
        # 503 is never retried at the network level
        if context.downloading_document:
            return ClassifiedOutcome.terminal(error(ErrorKind.document_not_ready, "Document not ready"))
        return ClassifiedOutcome.terminal(error(ErrorKind.service_unavailable, "Service unavailable"))
    if status_code >= HTTP_INTERNAL_SERVER_ERROR:
        return ClassifiedOutcome.retryable(
            error(ErrorKind.generic, f"Unexpected status code: {status_code}")
        )
    return ClassifiedOutcome.terminal(error(ErrorKind.generic, f"Unexpected status code: {status_code}"))
