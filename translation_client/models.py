from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from translation_client.backoff import BackoffPolicy


def standardize_language_code(code: str) -> str:
    """Lower-case the language and upper-case any region, e.g. ``en-us`` -> ``en-US``."""
    language, _, region = code.strip().partition("-")
    if region:
        return f"{language.lower()}-{region.upper()}"
    return language.lower()


class DocumentState(str, Enum):
    queued = "queued"
    translating = "translating"
    done = "done"
    error = "error"


class Formality(str, Enum):
    default = "default"
    less = "less"
    more = "more"
    prefer_less = "prefer_less"
    prefer_more = "prefer_more"


class SentenceSplittingMode(str, Enum):
    all = "all"
    off = "off"
    no_newlines = "nonewlines"


class ModelType(str, Enum):
    quality_optimized = "quality_optimized"
    latency_optimized = "latency_optimized"
    prefer_quality_optimized = "prefer_quality_optimized"


class RetryConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    per_attempt_timeout: float = Field(10.0, gt=0)
    max_retries: int = Field(5, ge=0)


class AppInfo(BaseModel):
    app_name: str
    app_version: str


class TranslatorOptions(BaseModel):
    server_url: Optional[str] = None
    headers: dict[str, str] = Field(default_factory=dict)
    max_network_retries: int = Field(5, ge=0)
    per_retry_timeout: float = Field(10.0, gt=0)
    overall_timeout: Optional[float] = 100.0
    document_poll_interval: float = 5.0
    document_download_retries: int = Field(5, ge=0)
    glossary_poll_interval: float = 2.0
    send_platform_info: bool = True
    app_info: Optional[AppInfo] = None
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)

    @property
    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            per_attempt_timeout=self.per_retry_timeout,
            max_retries=self.max_network_retries,
        )


class TextTranslateOptions(BaseModel):
    formality: Optional[Formality] = None
    glossary_id: Optional[str] = None
    context: Optional[str] = None
    split_sentences: SentenceSplittingMode = SentenceSplittingMode.all
    preserve_formatting: bool = False
    tag_handling: Optional[str] = None
    outline_detection: bool = True
    non_splitting_tags: list[str] = Field(default_factory=list)
    splitting_tags: list[str] = Field(default_factory=list)
    ignore_tags: list[str] = Field(default_factory=list)
    model_type: Optional[ModelType] = None


class TextRephraseOptions(BaseModel):
    """Only one of writing_style and tone may be set in the same request"""

    writing_style: Optional[str] = None
    tone: Optional[str] = None


class DocumentTranslateOptions(BaseModel):
    formality: Optional[Formality] = None
    glossary_id: Optional[str] = None


class DocumentHandle(BaseModel):
    """Identifier and secret key of a document translation on the server.

    This is the only way back to an in-flight document; persist it with
    ``model_dump_json()`` to resume polling from another process.
    """

    model_config = ConfigDict(frozen=True)

    document_id: str
    document_key: str


class DocumentStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: str
    status: DocumentState
    seconds_remaining: Optional[int] = None
    billed_characters: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != DocumentState.error

    @property
    def done(self) -> bool:
        return self.status == DocumentState.done


class TextResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    detected_source_language: str
    billed_characters: Optional[int] = None

    @field_validator("detected_source_language")
    @classmethod
    def _standardize(cls, value: str) -> str:
        return standardize_language_code(value)

    def __str__(self) -> str:
        return self.text


class WriteResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    detected_source_language: str
    target_language: str

    @field_validator("detected_source_language")
    @classmethod
    def _standardize(cls, value: str) -> str:
        return standardize_language_code(value)

    def __str__(self) -> str:
        return self.text


class BatchTarget(BaseModel):
    target_lang: str
    options: TextTranslateOptions = Field(default_factory=TextTranslateOptions)


class BatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_lang: str
    completed: bool = False
    results: list[TextResult] = Field(default_factory=list)
    error: Optional[str] = None
    cost: int = 0


class UsageDetail(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int
    limit: int

    @property
    def limit_reached(self) -> bool:
        return self.count >= self.limit

    def __str__(self) -> str:
        return f"{self.count} of {self.limit}"


class Usage(BaseModel):
    model_config = ConfigDict(frozen=True)

    character: Optional[UsageDetail] = None
    document: Optional[UsageDetail] = None
    team_document: Optional[UsageDetail] = None

    @classmethod
    def from_response(cls, data: dict) -> "Usage":
        def detail(prefix: str) -> Optional[UsageDetail]:
            count = data.get(f"{prefix}_count")
            limit = data.get(f"{prefix}_limit")
            if count is None or limit is None:
                return None
            return UsageDetail(count=count, limit=limit)

        return cls(
            character=detail("character"),
            document=detail("document"),
            team_document=detail("team_document"),
        )

    @property
    def any_limit_reached(self) -> bool:
        return any(
            detail is not None and detail.limit_reached
            for detail in (self.character, self.document, self.team_document)
        )

    def __str__(self) -> str:
        lines = ["Usage this billing period:"]
        for label, detail in (
            ("Characters", self.character),
            ("Documents", self.document),
            ("Team documents", self.team_document),
        ):
            if detail is not None:
                lines.append(f"{label}: {detail}")
        return "\n".join(lines)


class Language(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    code: str = Field(alias="language")
    name: str
    supports_formality: Optional[bool] = None

    @field_validator("code")
    @classmethod
    def _standardize(cls, value: str) -> str:
        return standardize_language_code(value)

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"


class GlossaryLanguagePair(BaseModel):
    source_lang: str
    target_lang: str


class GlossaryInfo(BaseModel):
    glossary_id: str
    name: str
    ready: bool
    source_lang: str
    target_lang: str
    creation_time: datetime
    entry_count: int

    def __str__(self) -> str:
        return f'Glossary "{self.name}" ({self.glossary_id})'
