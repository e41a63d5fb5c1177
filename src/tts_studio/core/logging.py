from __future__ import annotations

import logging
from typing import Any, Dict, List

import structlog
from rich.logging import RichHandler

# Events that get their own marker; everything else falls back to the level marker.
EVENT_ICONS: Dict[str, str] = {
    "gateway_listening": "🚀",
    "startup_check": "🧪",
    "startup_checks_complete": "🧪",
    "tts_request": "🗣️",
    "cloud_request": "🗣️",
    "tts_streaming": "🔊",
    "clip_saved": "💾",
    "speech_stopped": "🛑",
}

LEVEL_ICONS: Dict[str, str] = {"critical": "❌", "error": "❌", "warning": "⚠️"}
LEVEL_COLORS: Dict[str, str] = {"critical": "bold red", "error": "bold red", "warning": "bold yellow"}

# Shown first, in this order; the rest follow sorted.
LEADING_KEYS = ("service", "component", "voice", "format", "status", "upstream_status", "details")


def configure_logging(level: str) -> None:
    """
    Rich console output for the gateway and the CLI.
    """
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, markup=True, show_path=False)],
    )

    # Request lines from uvicorn/httpx duplicate our own tts_request events.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            render_line,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level.upper())),
        cache_logger_on_first_use=True,
    )


def get_logger(**kwargs: Any) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger().bind(**kwargs)


def render_line(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> str:
    """Final structlog processor: `<icon> <event>  key=value ...` with rich markup."""
    fields = dict(event_dict)
    event = str(fields.pop("event", method_name))
    level = str(fields.pop("level", method_name)).lower()

    icon = EVENT_ICONS.get(event) or LEVEL_ICONS.get(level, "✅")
    color = LEVEL_COLORS.get(level, "bold cyan")
    title = "[%s]%s %s[/%s]" % (color, icon, event, color)

    parts: List[str] = ["%s=%r" % (k, fields.pop(k)) for k in LEADING_KEYS if k in fields]
    parts.extend("%s=%r" % (k, fields[k]) for k in sorted(fields))

    if parts:
        return "%s  %s" % (title, " ".join(parts))
    return title
