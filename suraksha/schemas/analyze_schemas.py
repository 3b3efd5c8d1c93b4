import base64
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from suraksha.utils.preprocessing import is_absolute_url


DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>[A-Za-z0-9+/=]+)$")


class ContentCategory(str, Enum):
    """What the user said they are submitting."""
    TEXT = "text"
    IMAGE = "image"
    QRCODE = "qrcode"
    VIDEO = "video"
    URL = "url"


class SourceHint(str, Enum):
    """Tells the model how to read the payload (e.g. a photo that is really video frames)."""
    TEXT = "text"
    IMAGE = "image"
    QRCODE = "qrcode"
    VIDEO = "video"


class InformationStatus(str, Enum):
    REAL = "REAL"
    FAKE = "FAKE"
    SCAM = "SCAM"
    SUSPICIOUS = "SUSPICIOUS"


class SafetyStatus(str, Enum):
    SAFE = "Safe"
    SUSPICIOUS = "Suspicious"
    UNSAFE = "Unsafe"


class CamelModel(BaseModel):
    """Wire models use camelCase, Python code uses snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenCamelModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ============== MEDIA / SUBMISSION ==============


class MediaPayload(BaseModel):
    """A MIME-typed, base64-encoded file, ready to be inlined as a data URI."""
    model_config = ConfigDict(frozen=True)

    mime_type: str
    data: str
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"

    def raw_bytes(self) -> bytes:
        return base64.b64decode(self.data)


class Submission(BaseModel):
    """One user-initiated analysis request, before routing."""

    category: ContentCategory
    raw_content: Optional[str] = None
    media: Optional[MediaPayload] = None
    url_value: Optional[str] = None
    source_hint: Optional[SourceHint] = None
    filename: Optional[str] = None
    # Set only by the server when the content was decoded from an uploaded QR image
    from_qr: bool = False


class QrDecodeResult(BaseModel):
    """A decoded QR symbol, re-classified as text or URL content."""

    category: Literal[ContentCategory.TEXT, ContentCategory.URL]
    decoded: str
    raw_content: Optional[str] = None
    url_value: Optional[str] = None


# ============== MODEL REQUESTS ==============


class ContentAnalysisRequest(CamelModel):
    content: Optional[str] = None
    photo_data_uri: Optional[str] = None
    source: Optional[SourceHint] = None

    @field_validator("photo_data_uri")
    @classmethod
    def _check_data_uri(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not DATA_URI_RE.match(value):
            raise ValueError("photo_data_uri must be a 'data:<mimetype>;base64,<data>' URI")
        return value

    @model_validator(mode="after")
    def _require_payload(self):
        if not (self.content and self.content.strip()) and not self.photo_data_uri:
            raise ValueError("content analysis needs text content or a photo")
        return self


class UrlAnalysisRequest(CamelModel):
    url: str

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        if not is_absolute_url(value):
            raise ValueError("url must be an absolute URL")
        return value


AnalysisRequest = Union[ContentAnalysisRequest, UrlAnalysisRequest]


# ============== MODEL RESPONSES (VERDICTS) ==============


class DetailedAnalysis(FrozenCamelModel):
    """Red flags by category. video_analysis is only kept for video submissions."""
    psychological_triggers: List[str] = Field(default_factory=list)
    language_analysis: List[str] = Field(default_factory=list)
    request_analysis: List[str] = Field(default_factory=list)
    video_analysis: Optional[List[str]] = None


class PossibilityScore(FrozenCamelModel):
    # Model-supplied percentages; the pair is not required to sum to 100.
    score_true: float = Field(alias="true", ge=0, le=100)
    score_false_or_scam: float = Field(alias="falseOrScam", ge=0, le=100)


class ContentAnalysisResponse(FrozenCamelModel):
    kind: Literal["content"] = "content"
    information_status: InformationStatus
    possibility_score: PossibilityScore
    information_type: List[str]
    detailed_analysis: DetailedAnalysis
    simple_explanation: str
    warning_or_safety_advice: str
    final_verdict: str


class UrlAnalysisResponse(FrozenCamelModel):
    kind: Literal["url"] = "url"
    safety_status: SafetyStatus
    reason: str
    risk: str
    advice: str


ContentVerdict = ContentAnalysisResponse
UrlVerdict = UrlAnalysisResponse

Verdict = Annotated[Union[ContentVerdict, UrlVerdict], Field(discriminator="kind")]


# ============== HISTORY ==============


class PromptSummary(FrozenCamelModel):
    type: ContentCategory
    content: str


class HistoryItem(FrozenCamelModel):
    """A submission summary paired with its verdict. Never mutated after creation."""
    id: str
    prompt: PromptSummary
    result: Verdict
    created_at: Optional[datetime] = None


class AnalysisTimestamp(CamelModel):
    seconds: int
    nanoseconds: int

    @classmethod
    def from_datetime(cls, value: datetime) -> "AnalysisTimestamp":
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        seconds = int(value.timestamp())
        return cls(seconds=seconds, nanoseconds=value.microsecond * 1000)


class HistoryRecord(CamelModel):
    """Flat history entry, as returned by the persisted store and the chat tool."""
    id: str
    final_verdict: str
    content: str
    information_status: str
    analysis_timestamp: Optional[AnalysisTimestamp] = None


class DashboardStats(CamelModel):
    total_analyzed: int
    threats_this_week: int
    accuracy_confidence: int
    threat_level: Literal["High", "Medium", "Low"]
