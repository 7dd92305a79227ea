from __future__ import annotations

import re
from typing import Any, Dict, Iterator, List

from libs.core.models import (
    CVRecord,
    NoArguments,
    SearchArguments,
    SearchMatch,
    SendEmailArguments,
    ToolDefinition,
    ToolErrorKind,
    ToolIntent,
    ToolName,
)
from libs.core.tool_registry import (
    Tool,
    ToolContext,
    ToolExecutionError,
    ToolOutput,
    ToolRegistry,
)
from libs.tools.email_service import DeliveryError

_NO_PARAMETERS: Dict[str, Any] = {"type": "object", "properties": {}, "required": []}

_EMAIL_PATTERN = r"^\s*[^@\s]+@[^@\s]+\.[^@\s]+\s*$"
_SINGLE_LINE_PATTERN = r"^[^\r\n]*$"

TOOL_DEFINITIONS: List[ToolDefinition] = [
    ToolDefinition(
        name=ToolName.get_personal_info.value,
        description="Get personal information (name, contact details, summary) from the CV.",
        parameters=_NO_PARAMETERS,
        intent=ToolIntent.read,
    ),
    ToolDefinition(
        name=ToolName.get_work_experience.value,
        description="Get the work experience entries from the CV, most recent first.",
        parameters=_NO_PARAMETERS,
        intent=ToolIntent.read,
    ),
    ToolDefinition(
        name=ToolName.get_education.value,
        description="Get the education entries from the CV.",
        parameters=_NO_PARAMETERS,
        intent=ToolIntent.read,
    ),
    ToolDefinition(
        name=ToolName.get_skills.value,
        description="Get the list of skills from the CV.",
        parameters=_NO_PARAMETERS,
        intent=ToolIntent.read,
    ),
    ToolDefinition(
        name=ToolName.search_cv.value,
        description=(
            "Search the whole CV (personal info, experience, education, skills and full "
            "text) for a case-insensitive phrase."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "minLength": 1,
                    "description": "Text to search for.",
                }
            },
            "required": ["query"],
        },
        intent=ToolIntent.search,
    ),
    ToolDefinition(
        name=ToolName.send_email.value,
        description="Send an email notification through the configured mail transport.",
        parameters={
            "type": "object",
            "properties": {
                "recipient": {
                    "type": "string",
                    "pattern": _EMAIL_PATTERN,
                    "description": "Recipient email address.",
                },
                "subject": {
                    "type": "string",
                    "minLength": 1,
                    "pattern": _SINGLE_LINE_PATTERN,
                    "description": "Subject line, a single line of text.",
                },
                "body": {"type": "string", "minLength": 1, "description": "Plain-text body."},
            },
            "required": ["recipient", "subject", "body"],
        },
        intent=ToolIntent.action,
    ),
]


async def get_personal_info(context: ToolContext, _args: NoArguments) -> ToolOutput:
    personal = dict(context.record.personal)
    return ToolOutput(data=personal, summary=f"Retrieved {len(personal)} personal info fields")


async def get_work_experience(context: ToolContext, _args: NoArguments) -> ToolOutput:
    entries = [entry.model_dump() for entry in context.record.experience]
    return ToolOutput(data=entries, summary=f"Retrieved {len(entries)} work experience entries")


async def get_education(context: ToolContext, _args: NoArguments) -> ToolOutput:
    entries = [entry.model_dump() for entry in context.record.education]
    return ToolOutput(data=entries, summary=f"Retrieved {len(entries)} education entries")


async def get_skills(context: ToolContext, _args: NoArguments) -> ToolOutput:
    skills = list(context.record.skills)
    return ToolOutput(data=skills, summary=f"Retrieved {len(skills)} skills")


async def search_cv(context: ToolContext, args: SearchArguments) -> ToolOutput:
    matches = search_record(
        context.record,
        args.query,
        context_chars=context.search_context_chars,
        max_raw_matches=context.search_max_raw_matches,
    )
    data = [match.model_dump(exclude_none=True) for match in matches]
    return ToolOutput(data=data, summary=f"Found {len(data)} matches for '{args.query}'")


async def send_email(context: ToolContext, args: SendEmailArguments) -> ToolOutput:
    channel = context.channel
    if not channel.is_configured:
        raise ToolExecutionError(
            ToolErrorKind.channel_unavailable, "Email service is not configured"
        )
    try:
        receipt = await channel.send_email(args.recipient, args.subject, args.body)
    except DeliveryError as exc:
        raise ToolExecutionError(
            ToolErrorKind.delivery_failed, f"Failed to send email: {exc}"
        ) from exc
    return ToolOutput(
        data=receipt.model_dump(mode="json"), summary=f"Email sent to {args.recipient}"
    )


def search_record(
    record: CVRecord, query: str, context_chars: int = 60, max_raw_matches: int = 20
) -> List[SearchMatch]:
    """Return every fragment of ``record`` containing ``query``, case-insensitively.

    Sections are scanned in a fixed order (personal, experience, education, skills,
    raw text) and each section in document order; results are not ranked. Structured
    hits carry the entry they came from; raw-text hits carry a window of
    ``context_chars`` around each occurrence, at most ``max_raw_matches`` of them.
    """
    needle = query.strip()
    if not needle:
        return []
    pattern = re.compile(re.escape(needle), re.IGNORECASE)
    matches: List[SearchMatch] = []
    for key, value in record.personal.items():
        if pattern.search(value):
            matches.append(SearchMatch(section="personal", field=key, text=value))
    for section, entries in (("experience", record.experience), ("education", record.education)):
        for index, entry in enumerate(entries):
            dumped = entry.model_dump()
            for field, text in _entry_texts(dumped):
                if pattern.search(text):
                    matches.append(
                        SearchMatch(
                            section=section, field=field, text=text, index=index, entry=dumped
                        )
                    )
    for index, skill in enumerate(record.skills):
        if pattern.search(skill):
            matches.append(SearchMatch(section="skills", field="skill", text=skill, index=index))
    matches.extend(_raw_text_matches(record.raw_text, pattern, context_chars, max_raw_matches))
    return matches


def _entry_texts(entry: Dict[str, Any]) -> Iterator[tuple[str, str]]:
    for field, value in entry.items():
        if isinstance(value, str):
            yield field, value
        elif isinstance(value, list):
            for position, item in enumerate(value):
                if isinstance(item, str):
                    yield f"{field}[{position}]", item


def _raw_text_matches(
    raw_text: str, pattern: re.Pattern[str], context_chars: int, max_matches: int
) -> List[SearchMatch]:
    if not raw_text or max_matches <= 0:
        return []
    window = max(0, context_chars)
    matches: List[SearchMatch] = []
    for found in pattern.finditer(raw_text):
        start = max(0, found.start() - window)
        end = min(len(raw_text), found.end() + window)
        matches.append(
            SearchMatch(
                section="raw_text",
                field="raw_text",
                text=raw_text[start:end].strip(),
                index=found.start(),
            )
        )
        if len(matches) >= max_matches:
            break
    return matches


def register_cv_tools(registry: ToolRegistry) -> None:
    handlers = {
        ToolName.get_personal_info: (NoArguments, get_personal_info),
        ToolName.get_work_experience: (NoArguments, get_work_experience),
        ToolName.get_education: (NoArguments, get_education),
        ToolName.get_skills: (NoArguments, get_skills),
        ToolName.search_cv: (SearchArguments, search_cv),
        ToolName.send_email: (SendEmailArguments, send_email),
    }
    for definition in TOOL_DEFINITIONS:
        arguments_model, handler = handlers[ToolName(definition.name)]
        registry.register(
            Tool(definition=definition, arguments_model=arguments_model, handler=handler)
        )
