from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from libs.tools.email_service import ChannelConfig

DEFAULT_CORS_ORIGINS = [
    "https://mcp-cv-frontend.vercel.app",
    "http://localhost:3000",
    "http://localhost:3001",
]


def _parse_optional_int(value: str | None) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _parse_optional_float(value: str | None) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_origins(value: str | None) -> List[str]:
    if value is None:
        return list(DEFAULT_CORS_ORIGINS)
    return [origin.strip() for origin in value.split(",") if origin.strip()]


@dataclass(frozen=True)
class CVServerSettings:
    cv_path: Path = Path("cv.pdf")
    host: str = "0.0.0.0"
    port: int = 3001
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    reinitialize_per_request: bool = False
    include_tracebacks: bool = False
    search_context_chars: int = 60
    search_max_raw_matches: int = 20
    channel: ChannelConfig = field(default_factory=ChannelConfig)


def load_channel_config() -> ChannelConfig:
    port = _parse_optional_int(os.getenv("SMTP_PORT"))
    timeout_s = _parse_optional_float(os.getenv("SMTP_TIMEOUT_S"))
    return ChannelConfig(
        transport=os.getenv("EMAIL_TRANSPORT", "smtp"),
        host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
        port=port if port is not None else 587,
        username=os.getenv("EMAIL_USER", ""),
        password=os.getenv("EMAIL_PASS", ""),
        sender=os.getenv("EMAIL_FROM", ""),
        use_tls=_parse_bool(os.getenv("SMTP_USE_TLS"), True),
        timeout_s=timeout_s if timeout_s is not None else 10.0,
    )


def load_settings() -> CVServerSettings:
    port = _parse_optional_int(os.getenv("PORT")) or _parse_optional_int(
        os.getenv("MCP_SERVER_PORT")
    )
    context_chars = _parse_optional_int(os.getenv("CV_SEARCH_CONTEXT_CHARS"))
    max_raw_matches = _parse_optional_int(os.getenv("CV_SEARCH_MAX_RAW_MATCHES"))
    return CVServerSettings(
        cv_path=Path(os.getenv("CV_PATH", "cv.pdf")),
        host=os.getenv("HOST", "0.0.0.0"),
        port=port or 3001,
        cors_origins=_parse_origins(os.getenv("CORS_ORIGINS")),
        reinitialize_per_request=_parse_bool(os.getenv("CV_REINITIALIZE_PER_REQUEST"), False),
        include_tracebacks=_parse_bool(os.getenv("CV_INCLUDE_TRACEBACKS"), False),
        search_context_chars=max(0, context_chars) if context_chars is not None else 60,
        search_max_raw_matches=max(0, max_raw_matches) if max_raw_matches is not None else 20,
        channel=load_channel_config(),
    )
