from __future__ import annotations

import time
import traceback
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from jsonschema import Draft202012Validator
from prometheus_client import Counter, Histogram
from pydantic import BaseModel, ValidationError

from libs.tools.email_service import NotificationChannel

from . import logging as core_logging
from .models import CVRecord, ToolDefinition, ToolErrorKind, ToolResult

LOGGER = core_logging.get_logger("tool_registry")

TOOL_CALLS_TOTAL = Counter(
    "cv_tool_calls_total", "Tool calls handled by the dispatcher", ["tool", "outcome"]
)
TOOL_CALL_DURATION = Histogram(
    "cv_tool_call_duration_seconds", "Tool call duration in seconds", ["tool"]
)

_MAX_REPORTED_ERRORS = 5


class ToolExecutionError(Exception):
    def __init__(self, kind: ToolErrorKind, detail: str) -> None:
        super().__init__(detail)
        self.kind = kind
        self.detail = detail


@dataclass(frozen=True)
class ToolContext:
    record: CVRecord
    channel: NotificationChannel
    search_context_chars: int = 60
    search_max_raw_matches: int = 20


@dataclass
class ToolOutput:
    data: Any
    summary: Optional[str] = None


ToolHandler = Callable[[ToolContext, Any], Awaitable[ToolOutput]]


@dataclass(frozen=True)
class Tool:
    definition: ToolDefinition
    arguments_model: Type[BaseModel]
    handler: ToolHandler


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: Dict[str, Tool] = {}
        self._validators: Dict[str, Draft202012Validator] = {}

    def register(self, tool: Tool) -> None:
        name = tool.definition.name
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        Draft202012Validator.check_schema(tool.definition.parameters)
        self._tools[name] = tool
        self._validators[name] = Draft202012Validator(tool.definition.parameters)

    def list_definitions(self) -> List[ToolDefinition]:
        return [tool.definition for tool in self._tools.values()]

    def names(self) -> List[str]:
        return list(self._tools)

    def get(self, name: Any) -> Tool:
        if not isinstance(name, str) or name not in self._tools:
            raise ToolExecutionError(ToolErrorKind.unknown_tool, f"Unknown tool: {name}")
        return self._tools[name]

    def validate_arguments(self, tool: Tool, args: Any) -> BaseModel:
        """Check ``args`` against the tool schema, then build its typed argument model.

        Raises ``ToolExecutionError`` with kind ``InvalidArguments`` naming every offending
        parameter (up to five) before anything runs.
        """
        if args is None:
            args = {}
        if not isinstance(args, Mapping):
            raise ToolExecutionError(
                ToolErrorKind.invalid_arguments, "arguments must be a JSON object"
            )
        payload = dict(args)
        validator = self._validators[tool.definition.name]
        errors = sorted(validator.iter_errors(payload), key=lambda err: list(err.path))
        if errors:
            messages = "; ".join(
                f"{'/'.join(map(str, err.path)) or '<root>'}: {err.message}"
                for err in errors[:_MAX_REPORTED_ERRORS]
            )
            raise ToolExecutionError(
                ToolErrorKind.invalid_arguments, f"Invalid arguments: {messages}"
            )
        try:
            return tool.arguments_model.model_validate(payload)
        except ValidationError as exc:
            messages = "; ".join(
                f"{'.'.join(map(str, err['loc'])) or '<root>'}: {err['msg']}"
                for err in exc.errors()[:_MAX_REPORTED_ERRORS]
            )
            raise ToolExecutionError(
                ToolErrorKind.invalid_arguments, f"Invalid arguments: {messages}"
            ) from exc


_DEFAULT_REGISTRY: Optional[ToolRegistry] = None


def default_registry() -> ToolRegistry:
    global _DEFAULT_REGISTRY
    if _DEFAULT_REGISTRY is None:
        from libs.tools.cv_tools import register_cv_tools

        registry = ToolRegistry()
        register_cv_tools(registry)
        _DEFAULT_REGISTRY = registry
    return _DEFAULT_REGISTRY


class ToolDispatcher:
    """Resolves tool names to handlers and normalizes every outcome into a ToolResult.

    The dispatcher owns the CV record and the notification channel for its lifetime and
    keeps no state between calls, so concurrent ``execute`` calls do not interfere.
    """

    def __init__(
        self,
        record: CVRecord,
        channel: NotificationChannel,
        registry: Optional[ToolRegistry] = None,
        *,
        include_traceback: bool = False,
        search_context_chars: int = 60,
        search_max_raw_matches: int = 20,
    ) -> None:
        if record is None:
            raise ValueError("record is required; pass CVRecord.empty() as a fallback")
        if channel is None:
            raise ValueError("channel is required; pass an unconfigured channel as a fallback")
        self._registry = registry or default_registry()
        self._context = ToolContext(
            record=record,
            channel=channel,
            search_context_chars=search_context_chars,
            search_max_raw_matches=search_max_raw_matches,
        )
        self._include_traceback = include_traceback

    @property
    def record(self) -> CVRecord:
        return self._context.record

    @property
    def channel(self) -> NotificationChannel:
        return self._context.channel

    def get_tool_definitions(self) -> List[ToolDefinition]:
        return self._registry.list_definitions()

    async def execute(self, name: str, args: Optional[Mapping[str, Any]] = None) -> ToolResult:
        tool_name = name if isinstance(name, str) else str(name)
        metric_label = "unknown"
        started = time.perf_counter()
        try:
            tool = self._registry.get(name)
            metric_label = tool.definition.name
            arguments = self._registry.validate_arguments(tool, args)
            output = await tool.handler(self._context, arguments)
            result = ToolResult.ok(tool_name, output.data, output.summary)
        except ToolExecutionError as exc:
            result = ToolResult.fail(tool_name, exc.kind, exc.detail)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("tool_call_crashed", tool=tool_name, error=str(exc))
            result = ToolResult.fail(
                tool_name,
                ToolErrorKind.internal,
                f"Tool execution failed: {tool_name}",
                traceback=traceback.format_exc() if self._include_traceback else None,
            )
        duration = time.perf_counter() - started
        outcome = "success" if result.success else result.error_kind.value
        TOOL_CALLS_TOTAL.labels(tool=metric_label, outcome=outcome).inc()
        TOOL_CALL_DURATION.labels(tool=metric_label).observe(duration)
        if result.success:
            LOGGER.info(
                "tool_call_completed", tool=tool_name, duration_ms=int(duration * 1000)
            )
        else:
            LOGGER.warning(
                "tool_call_failed",
                tool=tool_name,
                error_kind=outcome,
                error=result.error,
                duration_ms=int(duration * 1000),
            )
        return result
