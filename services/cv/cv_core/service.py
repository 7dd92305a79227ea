from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from libs.core import logging as core_logging
from libs.core.models import (
    ChannelStatus,
    CVRecord,
    InitializationState,
    ProbeResult,
    utc_timestamp,
)
from libs.core.state_machine import is_servable, validate_init_transition
from libs.core.tool_registry import ToolDispatcher
from libs.tools.cv_parser import CVParser
from libs.tools.email_service import (
    ChannelConfig,
    NotificationChannel,
    UnconfiguredChannel,
    resolve_channel,
)

from .config import CVServerSettings
from .errors import InitializationFailure

LOGGER = core_logging.get_logger("cv")

ParserFactory = Callable[[Path], Any]
ChannelFactory = Callable[[ChannelConfig], NotificationChannel]


@dataclass(frozen=True)
class InitializationReport:
    state: InitializationState
    cv_loaded: bool
    cv_source: str
    channel: ChannelStatus
    initialized_at: str
    errors: tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "cv_loaded": self.cv_loaded,
            "cv_source": self.cv_source,
            "email": self.channel.model_dump(mode="json"),
            "errors": list(self.errors),
            "initialized_at": self.initialized_at,
        }


@dataclass(frozen=True)
class InitializedServer:
    dispatcher: ToolDispatcher
    report: InitializationReport


def _construct_channel(config: ChannelConfig, factory: ChannelFactory) -> NotificationChannel:
    try:
        return factory(config)
    except Exception as exc:  # noqa: BLE001
        raise InitializationFailure("channel", str(exc)) from exc


async def _parse_document(cv_path: Path, factory: ParserFactory) -> CVRecord:
    try:
        return await factory(cv_path).parse_cv()
    except Exception as exc:  # noqa: BLE001
        raise InitializationFailure("document", str(exc)) from exc


async def _probe_channel(channel: NotificationChannel) -> ProbeResult:
    try:
        return await channel.verify_connection()
    except Exception as exc:  # noqa: BLE001
        return ProbeResult(success=False, error=str(exc) or exc.__class__.__name__)


async def initialize_dispatcher(
    cv_path: Path | str,
    channel_config: ChannelConfig,
    *,
    parser_factory: ParserFactory = CVParser,
    channel_factory: ChannelFactory = resolve_channel,
    include_traceback: bool = False,
    search_context_chars: int = 60,
    search_max_raw_matches: int = 20,
) -> InitializedServer:
    """Build a dispatcher from a CV document and a channel configuration.

    The steps run in order: channel, document, dispatcher, connectivity probe. A failing
    channel or document degrades the result to fallback values instead of raising; the
    probe outcome is only recorded.
    """
    cv_path = Path(cv_path)
    errors: List[str] = []

    try:
        channel = _construct_channel(channel_config, channel_factory)
    except InitializationFailure as exc:
        LOGGER.error("initialization_failure", stage=exc.stage, error=exc.detail, exc_info=True)
        errors.append(str(exc))
        channel = UnconfiguredChannel(f"Email service unavailable: {exc.detail}")

    try:
        record = await _parse_document(cv_path, parser_factory)
        cv_loaded = True
    except InitializationFailure as exc:
        LOGGER.error("initialization_failure", stage=exc.stage, error=exc.detail, exc_info=True)
        errors.append(str(exc))
        record = CVRecord.empty()
        cv_loaded = False

    dispatcher = ToolDispatcher(
        record,
        channel,
        include_traceback=include_traceback,
        search_context_chars=search_context_chars,
        search_max_raw_matches=search_max_raw_matches,
    )

    probe = await _probe_channel(channel)
    if probe.success:
        LOGGER.info("email_service_connected", transport=channel.transport)
    else:
        LOGGER.warning(
            "email_service_connection_failed", transport=channel.transport, error=probe.error
        )

    state = InitializationState.ready if not errors else InitializationState.degraded_ready
    report = InitializationReport(
        state=state,
        cv_loaded=cv_loaded,
        cv_source=str(cv_path),
        channel=ChannelStatus(
            configured=channel.is_configured, transport=channel.transport, last_probe=probe
        ),
        initialized_at=utc_timestamp(),
        errors=tuple(errors),
    )
    core_logging.log_event(
        LOGGER,
        "server_initialized",
        {
            "state": state.value,
            "cv_loaded": cv_loaded,
            "email_configured": channel.is_configured,
            "tools": len(dispatcher.get_tool_definitions()),
        },
    )
    return InitializedServer(dispatcher=dispatcher, report=report)


async def initialize_from_settings(settings: CVServerSettings) -> InitializedServer:
    return await initialize_dispatcher(
        settings.cv_path,
        settings.channel,
        include_traceback=settings.include_tracebacks,
        search_context_chars=settings.search_context_chars,
        search_max_raw_matches=settings.search_max_raw_matches,
    )


class DispatcherHandle:
    """Holder for the current dispatcher, shared by the transport adapters.

    ``initialize`` runs one lifecycle at a time and publishes the result with a single
    reference swap, so readers observe either the previous or the new dispatcher.
    """

    def __init__(self, initializer: Callable[[], Awaitable[InitializedServer]]) -> None:
        self._initializer = initializer
        self._current: Optional[InitializedServer] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: CVServerSettings) -> "DispatcherHandle":
        return cls(lambda: initialize_from_settings(settings))

    @property
    def state(self) -> InitializationState:
        current = self._current
        if current is None:
            return InitializationState.uninitialized
        return current.report.state

    @property
    def dispatcher(self) -> Optional[ToolDispatcher]:
        current = self._current
        return current.dispatcher if current is not None else None

    @property
    def report(self) -> Optional[InitializationReport]:
        current = self._current
        return current.report if current is not None else None

    @property
    def is_initialized(self) -> bool:
        return self._current is not None

    async def initialize(self) -> InitializedServer:
        async with self._lock:
            return await self._run_lifecycle()

    async def ensure_initialized(self) -> InitializedServer:
        current = self._current
        if current is not None:
            return current
        async with self._lock:
            current = self._current
            if current is not None:
                return current
            return await self._run_lifecycle()

    async def _run_lifecycle(self) -> InitializedServer:
        server = await self._initializer()
        if not validate_init_transition(self.state, server.report.state):
            raise RuntimeError(
                f"invalid initialization transition: {self.state.value} -> "
                f"{server.report.state.value}"
            )
        self._current = server
        return server

    def status(self) -> Dict[str, Any]:
        current = self._current
        if current is None:
            return {
                "initialized": False,
                "state": InitializationState.uninitialized.value,
                "cv_loaded": False,
                "email_configured": False,
                "tools_ready": False,
                "tool_count": 0,
            }
        report = current.report
        return {
            "initialized": True,
            "state": report.state.value,
            "cv_loaded": report.cv_loaded,
            "email_configured": report.channel.configured,
            "tools_ready": is_servable(report.state),
            "tool_count": len(current.dispatcher.get_tool_definitions()),
            **report.to_dict(),
        }
