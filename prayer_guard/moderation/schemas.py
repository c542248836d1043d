import datetime as dt
from typing import Annotated, Literal, Optional, Union, get_args

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    computed_field,
    field_validator,
)


Category = Literal[
    "hate_speech",
    "harassment",
    "violence",
    "self_harm",
    "sexual_content",
    "spam",
    "profanity",
    "illegal_activity",
]
CATEGORIES: tuple[str, ...] = get_args(Category)

Severity = Literal["low", "medium", "high", "critical"]
ModerationStatus = Literal["pending", "approved", "rejected", "review"]
TaskStatus = Literal["pending", "processing", "completed", "failed"]
Modality = Literal["text", "audio", "video"]

TextKind = Literal["prayer", "response", "chat", "profile"]
AudioKind = Literal["audio_prayer", "audio_response"]
VideoKind = Literal["video_response"]

# Strict on purpose for a pastoral audience: self_harm is flagged earliest,
# spam latest because its false positives block ordinary prayers.
DEFAULT_THRESHOLDS: dict[str, float] = {
    "hate_speech": 0.5,
    "harassment": 0.5,
    "violence": 0.6,
    "self_harm": 0.4,
    "sexual_content": 0.5,
    "spam": 0.7,
    "profanity": 0.6,
    "illegal_activity": 0.5,
}


class ModerationFlag(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: Category
    severity: Severity
    score: float
    description: str


class ModerationResult(BaseModel):
    """Normalised classifier verdict. ``approved`` is derived from ``flags``."""

    model_config = ConfigDict(frozen=True)

    flags: list[ModerationFlag] = Field(default_factory=list)
    raw_scores: dict[str, float] = Field(default_factory=dict)
    processing_time_ms: int = 0
    model_version: str
    # Audio only; kept as evidence, never used to flag.
    transcription: Optional[str] = None

    @computed_field  # type: ignore[misc]
    @property
    def approved(self) -> bool:
        return len(self.flags) == 0


class PolicyConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    strict_mode: bool = False
    auto_reject: bool = True
    thresholds: dict[Category, float] = Field(default_factory=lambda: dict(DEFAULT_THRESHOLDS))

    @field_validator("thresholds")
    @classmethod
    def _complete_thresholds(cls, value: dict[str, float]) -> dict[str, float]:
        for category, threshold in value.items():
            if not 0.0 <= threshold <= 1.0:
                raise ValueError(f"threshold for {category} must be within [0, 1], got {threshold}")
        merged = dict(DEFAULT_THRESHOLDS)
        merged.update(value)
        return merged


DEFAULT_POLICY = PolicyConfig()


# --- content to moderate ---------------------------------------------------


class TextContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str
    content_id: str
    content_kind: TextKind = "prayer"
    user_id: Optional[str] = None


class AudioContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["audio"] = "audio"
    audio_url: str
    content_id: str
    content_kind: AudioKind = "audio_prayer"
    user_id: Optional[str] = None
    duration_seconds: Optional[float] = None


class VideoContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["video"] = "video"
    video_url: str
    content_id: str
    content_kind: VideoKind = "video_response"
    user_id: Optional[str] = None
    duration_seconds: Optional[float] = None


ContentToModerate = Annotated[
    Union[TextContent, AudioContent, VideoContent],
    Field(discriminator="type"),
]
content_adapter: TypeAdapter = TypeAdapter(ContentToModerate)


# --- moderator outputs -----------------------------------------------------


class ModeratorOutput(BaseModel):
    status: ModerationStatus
    result: ModerationResult
    message: Optional[str] = None

    @computed_field  # type: ignore[misc]
    @property
    def should_block(self) -> bool:
        return not self.result.approved


class TextModerationOutput(ModeratorOutput):
    pass


class AudioModerationOutput(ModeratorOutput):
    transcription: Optional[str] = None


class VideoModerationOutput(BaseModel):
    status: ModerationStatus
    task_id: Optional[str] = None
    result: Optional[ModerationResult] = None
    message: Optional[str] = None

    @computed_field  # type: ignore[misc]
    @property
    def should_block(self) -> bool:
        # Pending video is hidden, not blocked.
        return self.result is not None and not self.result.approved


class VideoTaskStatus(BaseModel):
    task_id: str
    status: TaskStatus
    result: Optional[ModerationResult] = None
    error: Optional[str] = None


class WebhookOutcome(BaseModel):
    success: bool
    content_id: Optional[str] = None
    result: Optional[ModerationResult] = None
    # True when the task had already reached a terminal state
    duplicate: bool = False


class ModerationResponse(BaseModel):
    content_id: str
    modality: Modality
    status: ModerationStatus
    approved: bool
    task_id: Optional[str] = None
    message: Optional[str] = None
    result: Optional[ModerationResult] = None
    processing_time_ms: int = 0


# --- persisted records -----------------------------------------------------


class ModerationLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    content_id: str
    content_kind: str
    modality: Modality
    status: ModerationStatus
    flags: list[ModerationFlag] = Field(default_factory=list)
    raw_scores: dict[str, float] = Field(default_factory=dict)
    processing_time_ms: int = 0
    model_version: str
    user_id: Optional[str] = None
    meta: Optional[dict] = None
    created_at: Optional[dt.datetime] = None


class ModerationTaskRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    task_id: str
    content_id: str
    content_kind: str = "video_response"
    media_url: str
    user_id: Optional[str] = None
    status: TaskStatus = "pending"
    result: Optional[ModerationResult] = None
    error_message: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    completed_at: Optional[dt.datetime] = None
    expires_at: Optional[dt.datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")


# --- admin / misc ----------------------------------------------------------


class ModerationStats(BaseModel):
    total: int = 0
    approved: int = 0
    rejected: int = 0
    approval_rate: float = 0.0
    avg_processing_time_ms: float = 0.0
    by_modality: dict[str, int] = Field(default_factory=dict)
    by_category: dict[str, int] = Field(default_factory=dict)


class ConfigUpdateResult(BaseModel):
    success: bool
    error: Optional[str] = None


class FileValidation(BaseModel):
    valid: bool
    error: Optional[str] = None
