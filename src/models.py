"""Shared Pydantic data models for gitlab-chat-relay."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class AuditEventType(str, Enum):
    WEBHOOK_ACCEPTED = "webhook_accepted"
    WEBHOOK_FORBIDDEN = "webhook_forbidden"
    WEBHOOK_REJECTED = "webhook_rejected"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    TOKEN_RESET = "token_reset"
    CALLBACK_FORBIDDEN = "callback_forbidden"


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class UpdateSource(str, Enum):
    """Which CI webhook produced a pipeline update."""

    JOB = "job"
    PIPELINE = "pipeline"


class CoalescingState(str, Enum):
    NO_ACTIVE_MESSAGE = "no_active_message"
    HAS_ACTIVE_MESSAGE = "has_active_message"


# --- Notification Models ---


class LinkButton(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    label: str


class Notification(BaseModel):
    """Human-readable summary of one inbound event."""

    model_config = ConfigDict(frozen=True)

    text: str
    link: LinkButton | None = None


class PipelineUpdate(BaseModel):
    """A job or pipeline status change, routed through the coalescer."""

    model_config = ConfigDict(frozen=True)

    pipeline_id: int
    status: str
    source: UpdateSource
    notification: Notification


class PipelineTracking(BaseModel):
    """Per-recipient record of the chat message that represents the active pipeline."""

    model_config = ConfigDict(frozen=True)

    last_pipeline_id: str = ""
    last_message_id: str = ""

    @property
    def message_id(self) -> int:
        try:
            return int(self.last_message_id)
        except ValueError:
            return 0

    @property
    def state(self) -> CoalescingState:
        if self.message_id == 0:
            return CoalescingState.NO_ACTIVE_MESSAGE
        return CoalescingState.HAS_ACTIVE_MESSAGE


# --- Audit Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    source_ip: str | None = None
    recipient_id: int | None = None
    action: str
    result: str  # "success" | "failure" | "blocked"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
