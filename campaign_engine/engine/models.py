"""
Campaign Engine - Domain types and lookup tables.

Status vocabularies, the step state machine, per-channel lookup tables,
workflow step validation and the per-channel connector configs.
"""

import logging
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator, model_validator

from campaign_engine.engine.errors import WorkflowValidationError

logger = logging.getLogger(__name__)


# ─── AUTONOMY ─────────────────────────────────────────────────

class AutonomyLevel(str, Enum):
    MANUAL_APPROVAL = "manual_approval"
    SEMI_AUTONOMOUS = "semi_autonomous"
    FULL_AUTONOMOUS = "full_autonomous"

    @classmethod
    def parse(cls, value) -> "AutonomyLevel":
        """Parse a stored level. Unknown values fall back to manual approval."""
        if isinstance(value, cls):
            return value
        normalized = (value or "").strip().lower()
        if normalized == "fully_autonomous":
            return cls.FULL_AUTONOMOUS
        try:
            return cls(normalized)
        except ValueError:
            logger.warning("Unknown autonomy level %r, treating as manual_approval", value)
            return cls.MANUAL_APPROVAL


# ─── STEP STATE MACHINE ───────────────────────────────────────

class StepStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    REQUIRES_APPROVAL = "requires_approval"
    APPROVED = "approved"
    SENT = "sent"
    FAILED = "failed"
    REJECTED = "rejected"


TERMINAL_STATUSES = frozenset({StepStatus.SENT, StepStatus.FAILED, StepStatus.REJECTED})

# executing is the claim state a worker holds while dispatching
ALLOWED_TRANSITIONS = {
    StepStatus.PENDING: frozenset({StepStatus.EXECUTING, StepStatus.REQUIRES_APPROVAL}),
    StepStatus.EXECUTING: frozenset({
        StepStatus.SENT, StepStatus.FAILED, StepStatus.REQUIRES_APPROVAL,
        StepStatus.PENDING, StepStatus.APPROVED,
    }),
    StepStatus.REQUIRES_APPROVAL: frozenset({StepStatus.APPROVED, StepStatus.REJECTED}),
    StepStatus.APPROVED: frozenset({StepStatus.EXECUTING}),
    StepStatus.SENT: frozenset(),
    StepStatus.FAILED: frozenset(),
    StepStatus.REJECTED: frozenset(),
}

# Statuses the poller picks up once scheduled_at has passed
DUE_STATUSES = (StepStatus.PENDING, StepStatus.APPROVED)


def can_transition(from_status, to_status) -> bool:
    return StepStatus(to_status) in ALLOWED_TRANSITIONS[StepStatus(from_status)]


def sources_for(to_status) -> List[str]:
    """All statuses from which `to_status` may be entered."""
    target = StepStatus(to_status)
    return [s.value for s, targets in ALLOWED_TRANSITIONS.items() if target in targets]


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CampaignStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


# ─── CHANNEL TABLES ───────────────────────────────────────────

SUPPORTED_CHANNELS = (
    "email", "sms", "linkedin", "linkedin_message", "linkedin_connection",
    "phone", "voicemail",
)

ALWAYS_APPROVAL_CHANNELS = frozenset({
    "linkedin", "linkedin_message", "linkedin_connection", "phone", "voicemail",
})

CHANNEL_BASELINE_CONFIDENCE = {
    "email": 90,
    "sms": 85,
    "linkedin": 75,
    "linkedin_message": 75,
    "linkedin_connection": 70,
    "phone": 65,
    "voicemail": 65,
}
DEFAULT_BASELINE_CONFIDENCE = 75

# Which contact field a channel delivers to
RECIPIENT_FIELDS = {
    "email": "email",
    "sms": "phone",
    "phone": "phone",
    "voicemail": "phone",
    "linkedin": "linkedin_url",
    "linkedin_message": "linkedin_url",
    "linkedin_connection": "linkedin_url",
}

# Which rate-limit bucket a channel draws from
RATE_ACTION_TYPES = {
    "email": "email",
    "sms": "sms",
    "phone": "call",
    "voicemail": "call",
    "linkedin": "message",
    "linkedin_message": "message",
    "linkedin_connection": "connection_request",
}


# ─── WORKFLOW ─────────────────────────────────────────────────

class DelayUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"


DELAY_UNIT_SECONDS = {
    DelayUnit.MINUTES: 60,
    DelayUnit.HOURS: 3600,
    DelayUnit.DAYS: 86400,
    DelayUnit.WEEKS: 604800,
}


class WorkflowStep(BaseModel):
    """One position in a campaign workflow, before per-contact materialization."""

    channel: str
    content: str
    subject: Optional[str] = None
    delay: float = Field(default=0, allow_inf_nan=False)
    delay_unit: DelayUnit = DelayUnit.DAYS
    confidence: Optional[int] = Field(default=None, ge=0, le=100)

    @field_validator("channel")
    @classmethod
    def _known_channel(cls, value):
        value = (value or "").strip().lower()
        if value not in SUPPORTED_CHANNELS:
            raise ValueError(f"unsupported channel '{value}'")
        return value

    @field_validator("content")
    @classmethod
    def _non_empty_content(cls, value):
        if not value or not value.strip():
            raise ValueError("content must not be empty")
        return value

    @field_validator("delay")
    @classmethod
    def _non_negative_delay(cls, value):
        if value < 0:
            raise ValueError("delay must not be negative")
        return value

    @model_validator(mode="after")
    def _email_needs_subject(self):
        if self.channel == "email" and not (self.subject or "").strip():
            raise ValueError("email steps need a subject")
        return self

    @property
    def delay_seconds(self) -> int:
        return int(self.delay * DELAY_UNIT_SECONDS[self.delay_unit])


def validate_workflow(steps) -> List[WorkflowStep]:
    """Validate a raw workflow definition.

    Collects every problem instead of stopping at the first so the caller can
    report them all at once. Raises WorkflowValidationError if anything is wrong.
    """
    if not isinstance(steps, list) or not steps:
        raise WorkflowValidationError(["workflow must contain at least one step"])

    problems = []
    parsed = []
    for position, raw in enumerate(steps, start=1):
        if isinstance(raw, WorkflowStep):
            parsed.append(raw)
            continue
        if not isinstance(raw, dict):
            problems.append(f"step {position}: expected an object")
            continue
        try:
            parsed.append(WorkflowStep.model_validate(raw))
        except ValidationError as e:
            for err in e.errors():
                problems.append(f"step {position}: {err['msg']}")

    if problems:
        raise WorkflowValidationError(problems)
    return parsed


# ─── CHANNEL CONNECTOR CONFIGS ───────────────────────────────

class EmailConnectorConfig(BaseModel):
    channel: Literal["email"] = "email"
    provider: str = "smtp"
    from_address: str
    reply_to: Optional[str] = None


class SmsConnectorConfig(BaseModel):
    channel: Literal["sms"] = "sms"
    from_number: str


class LinkedInConnectorConfig(BaseModel):
    channel: Literal["linkedin"] = "linkedin"
    account_id: str
    daily_connection_limit: int = Field(default=20, ge=0)
    daily_message_limit: int = Field(default=15, ge=0)


class PhoneConnectorConfig(BaseModel):
    channel: Literal["phone"] = "phone"
    caller_id: str
    voicemail_drop: bool = False


ConnectorConfig = Annotated[
    Union[EmailConnectorConfig, SmsConnectorConfig, LinkedInConnectorConfig, PhoneConnectorConfig],
    Field(discriminator="channel"),
]

_connector_adapter = TypeAdapter(ConnectorConfig)

# Step channels that share a connector
CONNECTOR_FOR_CHANNEL = {
    "email": "email",
    "sms": "sms",
    "linkedin": "linkedin",
    "linkedin_message": "linkedin",
    "linkedin_connection": "linkedin",
    "phone": "phone",
    "voicemail": "phone",
}


def parse_connector_config(data: dict):
    """Parse a raw connector config dict into its channel-specific model."""
    return _connector_adapter.validate_python(data)
