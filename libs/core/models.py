from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class InitializationState(str, Enum):
    uninitialized = "uninitialized"
    ready = "ready"
    degraded_ready = "degraded_ready"


class ToolErrorKind(str, Enum):
    unknown_tool = "UnknownTool"
    invalid_arguments = "InvalidArguments"
    channel_unavailable = "ChannelUnavailable"
    delivery_failed = "DeliveryFailed"
    internal = "InternalError"


class ToolIntent(str, Enum):
    read = "read"
    search = "search"
    action = "action"


class ToolName(str, Enum):
    get_personal_info = "get_personal_info"
    get_work_experience = "get_work_experience"
    get_education = "get_education"
    get_skills = "get_skills"
    search_cv = "search_cv"
    send_email = "send_email"


class ExperienceEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = ""
    company: str = ""
    period: str = ""
    location: str = ""
    highlights: List[str] = Field(default_factory=list)


class EducationEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    degree: str = ""
    institution: str = ""
    period: str = ""
    details: List[str] = Field(default_factory=list)


class CVRecord(BaseModel):
    """Structured view of a parsed CV document.

    Records are immutable; re-parsing a document yields a new record that replaces
    the old one as a whole.
    """

    model_config = ConfigDict(frozen=True)

    personal: Dict[str, str] = Field(default_factory=dict)
    experience: List[ExperienceEntry] = Field(default_factory=list)
    education: List[EducationEntry] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    raw_text: str = ""

    @classmethod
    def empty(cls) -> "CVRecord":
        return cls(personal={}, experience=[], education=[], skills=[], raw_text="")

    def is_empty(self) -> bool:
        return not (
            self.personal or self.experience or self.education or self.skills or self.raw_text
        )


class ToolDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    parameters: Dict[str, Any]
    intent: ToolIntent = ToolIntent.read


class NoArguments(BaseModel):
    pass


class SearchArguments(BaseModel):
    query: str

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("query must not be empty")
        return stripped


class SendEmailArguments(BaseModel):
    recipient: str
    subject: str
    body: str

    @field_validator("recipient")
    @classmethod
    def _recipient_trimmed(cls, value: str) -> str:
        return value.strip()

    @field_validator("subject")
    @classmethod
    def _subject_single_line(cls, value: str) -> str:
        # Line breaks would become extra headers in the outgoing message.
        if "\r" in value or "\n" in value:
            raise ValueError("subject must not contain line breaks")
        return value


class SearchMatch(BaseModel):
    section: str
    field: str
    text: str
    index: Optional[int] = None
    entry: Optional[Dict[str, Any]] = None


class DeliveryReceipt(BaseModel):
    message_id: str
    recipient: str
    subject: str
    transport: str
    accepted_at: datetime


class ProbeResult(BaseModel):
    success: bool
    error: Optional[str] = None


class ChannelStatus(BaseModel):
    configured: bool
    transport: str
    last_probe: Optional[ProbeResult] = None


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class ToolResult(BaseModel):
    """Transport-neutral outcome of a single tool call."""

    success: bool
    tool: str
    timestamp: str = Field(default_factory=utc_timestamp)
    data: Any = None
    summary: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ToolErrorKind] = None
    traceback: Optional[str] = None

    @model_validator(mode="after")
    def _check_branch(self) -> "ToolResult":
        if self.success and (self.error is not None or self.error_kind is not None):
            raise ValueError("successful result must not carry an error")
        if self.success and self.data is None:
            raise ValueError("successful result requires data")
        if not self.success and (self.error is None or self.error_kind is None):
            raise ValueError("failed result requires error and error_kind")
        if not self.success and self.data is not None:
            raise ValueError("failed result must not carry data")
        return self

    @classmethod
    def ok(cls, tool: str, data: Any, summary: Optional[str] = None) -> "ToolResult":
        return cls(success=True, tool=tool, data=data, summary=summary)

    @classmethod
    def fail(
        cls,
        tool: str,
        kind: ToolErrorKind,
        error: str,
        traceback: Optional[str] = None,
    ) -> "ToolResult":
        return cls(success=False, tool=tool, error=error, error_kind=kind, traceback=traceback)

    def to_envelope(self) -> Dict[str, Any]:
        envelope: Dict[str, Any] = {"success": self.success}
        if self.success:
            envelope["data"] = _jsonable(self.data)
            if self.summary is not None:
                envelope["summary"] = self.summary
        else:
            envelope["error"] = self.error
            envelope["error_kind"] = self.error_kind.value if self.error_kind else None
            if self.traceback:
                envelope["traceback"] = self.traceback
        envelope["tool"] = self.tool
        envelope["timestamp"] = self.timestamp
        return envelope


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value
