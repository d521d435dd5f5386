"""
Gateway logging: JSON lines rendered by structlog over stdlib logging.

Modules keep using ``logging.getLogger(__name__)``. Per-request and
per-action fields (request_id, correlation_id, action_id) live in
structlog's contextvars, bound with ``log_context()``, and are merged into
every line written while they are bound.

Every rendered event and traceback passes through redact_secrets, so a
gateway key or bearer token that slips into a message is masked before it
reaches disk.

The server writes commgate.jsonl (and stderr in the foreground). The CLI
and the approval console write commgate-cli.jsonl only, so log lines never
interleave with prompts.
"""
from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from contextlib import contextmanager
from typing import Iterator, List, Optional

import structlog

from commgate import __version__
from commgate.core.redaction import redact_secrets

SERVICE_NAME = "commgate"

_QUIET_LOGGERS = ("httpcore", "httpx", "urllib3", "asyncio", "alembic")


@contextmanager
def log_context(**fields: Optional[str]) -> Iterator[None]:
    """Attach fields to every log line emitted inside the block."""
    tokens = structlog.contextvars.bind_contextvars(
        **{k: v for k, v in fields.items() if v is not None}
    )
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


def _gateway_fields(logger, method_name: str, event_dict: dict) -> dict:
    event_dict["service"] = SERVICE_NAME
    event_dict["version"] = __version__
    return event_dict


def _redact(logger, method_name: str, event_dict: dict) -> dict:
    for field in ("event", "exception"):
        value = event_dict.get(field)
        if isinstance(value, str):
            event_dict[field] = redact_secrets(value)
    return event_dict


def _pre_chain() -> List:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _gateway_fields,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
    ]


def _file_handler(path: str, max_bytes: int, backup_count: int) -> Optional[logging.Handler]:
    try:
        return logging.handlers.RotatingFileHandler(
            path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8",
        )
    except OSError:
        return None


def setup_logging(
    log_dir: str = "logs",
    log_file: str = "commgate.jsonl",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    log_level: int | str = logging.INFO,
    console: bool = True,
) -> None:
    """Route all logging to JSON lines. Safe to call again (handlers are replaced)."""
    os.makedirs(log_dir, exist_ok=True)
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            _redact,
            structlog.processors.JSONRenderer(),
        ],
    )

    handlers: List[logging.Handler] = []
    file_handler = _file_handler(os.path.join(log_dir, log_file), max_bytes, backup_count)
    if file_handler is not None:
        handlers.append(file_handler)
    if console or file_handler is None:
        handlers.append(logging.StreamHandler(sys.stderr))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
