"""Structured JSON logging for signing and verification events.

Records are rendered as one JSON object per line with their ``extra`` fields
under ``context``. Key material never reaches the output: raw byte blobs are
replaced by their length, and fields named like keys or signatures are
masked whatever their type, so base64 or hex encodings are caught as well.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
from collections.abc import Mapping
from datetime import datetime, timezone
from queue import Full, Queue
from typing import Iterable
from uuid import uuid4

from typing_extensions import override

LOGGER = logging.getLogger(__name__)

_STRUCTURED_RESERVED_KEYS: frozenset[str] = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "message",
        "trace_id",
    }
)

SENSITIVE_FIELDS: frozenset[str] = frozenset(
    {
        "secret_key",
        "secretKey",
        "private_key",
        "privateKey",
        "public_key",
        "publicKey",
        "signature",
    }
)

REDACTED = "[redacted]"


def scrub_key_material(value: object) -> object:
    """Return ``value`` with byte blobs and key-named fields masked."""

    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"<{len(value)} bytes>"
    if isinstance(value, Mapping):
        return {
            str(key): REDACTED if key in SENSITIVE_FIELDS else scrub_key_material(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [scrub_key_material(item) for item in value]
    return value


class JsonFormatter(logging.Formatter):
    """Render log records as JSON, lifting ``extra`` fields into ``context``."""

    def __init__(self, *, default_trace_id: str | None = None) -> None:
        super().__init__()
        self._default_trace_id = default_trace_id

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited
        trace_id = getattr(record, "trace_id", None) or self._default_trace_id

        exception_text: str | None = None
        if record.exc_info:
            exception_text = self.formatException(record.exc_info)
        elif record.exc_text:
            exception_text = record.exc_text

        context = scrub_key_material(
            {
                key: value
                for key, value in record.__dict__.items()
                if key not in _STRUCTURED_RESERVED_KEYS
            }
        )

        payload: dict[str, object] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "trace_id": trace_id,
            "context": context,
        }
        if exception_text:
            payload["exception"] = exception_text

        return json.dumps(payload, default=str)


class BoundedQueueHandler(logging.handlers.QueueHandler):
    """Queue handler that drops records, and counts them, when the queue is full."""

    def __init__(self, queue: Queue[logging.LogRecord]) -> None:
        super().__init__(queue)
        self.dropped = 0

    @override
    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except Full:
            self.dropped += 1


def configure_structured_logging(
    logger: logging.Logger,
    *,
    trace_id: str | None = None,
    level: int = logging.INFO,
    queue_size: int = 1024,
) -> logging.handlers.QueueListener:
    """Attach a non-blocking JSON pipeline to ``logger``.

    Args:
        logger: Target logger, typically ``logging.getLogger("order_integrity")``.
        trace_id: Static trace identifier stamped on every record unless the
            record carries its own ``trace_id``.
        level: Logging verbosity level.
        queue_size: Records buffered before new ones are dropped.

    Returns:
        The started queue listener; pass it to :func:`shutdown_listeners`.
    """

    logger.setLevel(level)

    record_queue: Queue[logging.LogRecord] = Queue(maxsize=queue_size)
    logger.addHandler(BoundedQueueHandler(record_queue))

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(
        JsonFormatter(default_trace_id=trace_id or str(uuid4()))
    )

    listener = logging.handlers.QueueListener(record_queue, stream_handler)
    listener.start()
    return listener


def shutdown_listeners(listeners: Iterable[logging.handlers.QueueListener]) -> None:
    """Stop all queue listeners, logging rather than raising on failure."""

    for listener in listeners:
        try:
            listener.stop()
        except Exception as exc:
            LOGGER.warning("Failed to stop logging listener", exc_info=exc)
