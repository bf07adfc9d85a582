from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import (
    AnyUrl,
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictStr,
    field_validator,
    model_validator,
)

from app.domain.states import JobStatus
from app.domain.tiers import Tier

MAX_PROMPT_LENGTH = 5000
MIN_REQUESTED_DURATION = 1
MAX_REQUESTED_DURATION = 120


class AdmissionRequest(BaseModel):
    """
    Inbound generation request. Field order is validation order: the first
    reported error decides the rejection code.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source_ref: Annotated[AnyUrl, Field(alias="sourceRef")]
    prompt: Annotated[StrictStr, Field(max_length=MAX_PROMPT_LENGTH)]
    account_id: Annotated[StrictStr, Field(alias="accountId")]
    tier: Literal["free", "pro", "premium", "vip"]
    requested_duration_seconds: Annotated[
        Optional[float],
        Field(alias="requestedDurationSeconds", ge=MIN_REQUESTED_DURATION, le=MAX_REQUESTED_DURATION, strict=True),
    ] = None
    callback_url: Annotated[Optional[AnyUrl], Field(alias="callbackUrl")] = None
    use_queue: Annotated[StrictBool, Field(alias="useQueue")] = True

    @field_validator("prompt", "account_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must be a non-empty string")
        return value


class JobRecord(BaseModel):
    """
    Read-side view of a job, checked against the lifecycle invariants every
    time it crosses the store boundary.
    """
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    account_id: str
    tier: Tier
    status: JobStatus
    priority: int
    source_ref: str
    prompt: str
    duration_seconds: int
    frames_generated: int = 0
    asset_url: Optional[str] = None
    last_error: Optional[str] = None
    used_fallback: bool = False
    audio_track: Optional[dict[str, Any]] = None
    retry_count: int = 0
    callback_url: Optional[str] = None
    webhook_sent: bool = False
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime

    @model_validator(mode="after")
    def _check_state(self) -> "JobRecord":
        if self.status == JobStatus.COMPLETED:
            if not self.asset_url or self.completed_at is None:
                raise ValueError("completed job requires asset_url and completed_at")
        elif self.asset_url is not None:
            raise ValueError(f"asset_url set on {self.status} job")
        if self.status == JobStatus.PENDING and self.completed_at is not None:
            raise ValueError("pending job cannot carry completed_at")
        if self.status == JobStatus.PROCESSING and self.started_at is None:
            raise ValueError("processing job requires started_at")
        if self.webhook_sent and self.status not in (JobStatus.COMPLETED, JobStatus.FAILED):
            raise ValueError("webhook_sent on non-terminal job")
        return self


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    remaining: int
    limit: int
    reset_date: datetime


@dataclass(frozen=True)
class QuotaSnapshot:
    limit: int
    used: int
    remaining: int
    reset_date: datetime


# --- Render pipeline values ---

@dataclass(frozen=True)
class RenderConfig:
    frame_count: int
    duration_seconds: int
    fallback: bool = False


@dataclass(frozen=True)
class FrameAsset:
    index: int
    url: str


@dataclass(frozen=True)
class RenderFault:
    index: int
    error: str


FrameResult = Union[FrameAsset, RenderFault]


@dataclass
class RenderOutcome:
    asset_url: str
    frames: list[FrameResult] = field(default_factory=list)
    used_fallback: bool = False
    packaging_degraded: bool = False
    audio_track: Optional[dict[str, Any]] = None
    mood: Optional[str] = None

    @property
    def frame_count(self) -> int:
        """Frames attempted, placeholders included."""
        return len(self.frames)

    @property
    def rendered_count(self) -> int:
        return sum(1 for f in self.frames if isinstance(f, FrameAsset))

    @property
    def placeholder_count(self) -> int:
        return sum(1 for f in self.frames if isinstance(f, RenderFault))


@dataclass(frozen=True)
class DispatchResult:
    job_id: UUID
    status: JobStatus
    asset_url: Optional[str] = None
    frame_count: int = 0
    used_fallback: bool = False
    retry_count: int = 0
    will_retry: bool = False
    error: Optional[str] = None
