"""structlog setup and request-scoped log context.

Every event carries the request fields bound for the current task
(request_id, user_id, path, method, session_id) plus an ISO timestamp.
Stdlib loggers such as uvicorn and sqlalchemy go through the same renderer.

    logger = get_logger(__name__)
    logger.info("chat.route.decided", intent="coding", model="gpt-4")
"""

import logging
import sys
from collections.abc import Mapping
from contextvars import ContextVar
from types import MappingProxyType
from typing import Any

import structlog

_EMPTY: Mapping[str, str] = MappingProxyType({})

# Replaced, never mutated, so a child task cannot leak fields into its parent
_request_context: ContextVar[Mapping[str, str]] = ContextVar("request_context", default=_EMPTY)

_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def add_request_context(logger: Any, method_name: str, event_dict: dict) -> dict:
    """structlog processor: merge bound request fields under explicit ones."""
    for key, value in _request_context.get().items():
        event_dict.setdefault(key, value)
    return event_dict


def _bind(**fields: str | None) -> None:
    merged = dict(_request_context.get())
    merged.update({key: value for key, value in fields.items() if value is not None})
    _request_context.set(MappingProxyType(merged))


def set_request_context(
    request_id: str | None,
    user_id: str | None = None,
    path: str | None = None,
    method: str | None = None,
) -> None:
    """Bind request fields; omitted fields keep their current value."""
    _bind(user_id=user_id, path=path, method=method)
    context = {key: value for key, value in _request_context.get().items() if key != "request_id"}
    if request_id is not None:
        context["request_id"] = request_id
    _request_context.set(MappingProxyType(context))


def set_session_id(session_id: str | None) -> None:
    _bind(session_id=session_id)


def clear_request_context() -> None:
    _request_context.set(_EMPTY)


def get_request_id() -> str | None:
    return _request_context.get().get("request_id")


def configure_logging(json_format: bool = True, level: int | str = logging.INFO) -> None:
    """Configure structlog and route the root stdlib logger through it.

    Args:
        json_format: JSON lines when True, the colored dev console otherwise.
        level: Root level, as a number or a name such as "DEBUG".
    """
    pre_chain = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper() if isinstance(level, str) else level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
