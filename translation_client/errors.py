from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from translation_client.models import DocumentHandle


class ErrorKind(str, Enum):
    connection = "connection"
    authorization = "authorization"
    quota_exceeded = "quota_exceeded"
    not_found = "not_found"
    glossary_not_found = "glossary_not_found"
    bad_request = "bad_request"
    rate_limited = "rate_limited"
    document_not_ready = "document_not_ready"
    service_unavailable = "service_unavailable"
    document_translation = "document_translation"
    cancelled = "cancelled"
    generic = "generic"


class TranslatorError(Exception):
    """Error raised by the translation client.

    Callers dispatch on ``kind`` rather than on the exception type; the
    subclass below exists only to attach a document handle.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class DocumentTranslationError(TranslatorError):
    """Failure somewhere in upload -> poll -> download.

    ``document_handle`` is None when the upload itself never succeeded, so
    a caller can tell whether re-uploading would bill the document twice.
    """

    def __init__(
        self,
        message: str,
        document_handle: Optional["DocumentHandle"] = None,
        kind: ErrorKind = ErrorKind.document_translation,
    ):
        super().__init__(kind, message)
        self.document_handle = document_handle
