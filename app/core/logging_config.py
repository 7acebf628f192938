"""
Structured logging for the chat service.

Every record carries the service name, the OpenTelemetry trace/span ids of
the command or request being handled, and, when passed through ``extra``,
the chat context (connection, user, room, command) grouped under ``chat``
so that all events of one WebSocket connection can be filtered together.

Usage:
    import logging

    logger = logging.getLogger(__name__)
    logger.info("User logged in over WebSocket", extra={"user_id": 4, "connection_id": "ab12"})
"""
import logging
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Iterable
from pythonjsonlogger import jsonlogger

# Keys accepted in ``extra`` that describe where in the chat an event happened
CHAT_CONTEXT_FIELDS = ("connection_id", "user_id", "room_id", "command")

QUIET_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "websockets", "httpx")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter emitting the fields our log pipeline indexes on."""

    def __init__(self, service_name: str = "estate-chat", *args, **kwargs):
        self.service_name = service_name
        super().__init__(*args, **kwargs)

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
            timespec='milliseconds'
        ).replace('+00:00', 'Z')
        log_record['level'] = record.levelname
        log_record['service'] = self.service_name
        log_record['logger'] = record.name
        log_record['message'] = record.getMessage()

        chat = {}
        for field in CHAT_CONTEXT_FIELDS:
            value = log_record.pop(field, None)
            if value is not None:
                chat[field] = value
        if chat:
            log_record['chat'] = chat

        if record.exc_info:
            log_record['exception'] = self.formatException(record.exc_info)


class LogContextFilter(logging.Filter):
    """
    Stamp records with trace ids and a request id.

    Records logged outside a span get ``no-trace``; records logged outside
    an HTTP request (WebSocket frames, heartbeat sweeps) get ``no-request``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            from opentelemetry import trace
            span_context = trace.get_current_span().get_span_context()
        except Exception:
            span_context = None

        if span_context is not None and span_context.is_valid:
            record.trace_id = format(span_context.trace_id, '032x')
            record.span_id = format(span_context.span_id, '016x')
        else:
            record.trace_id = 'no-trace'
            record.span_id = 'no-span'

        if not hasattr(record, 'request_id'):
            record.request_id = 'no-request'

        return True


def configure_logging(
    service_name: str = "estate-chat",
    level: str = "INFO",
    enable_json: bool = True,
    quiet_loggers: Iterable[str] = QUIET_LOGGERS
) -> logging.Handler:
    """
    Install a single stdout handler on the root logger.

    Calling it again replaces the previous handler, so tests and reloads
    do not duplicate output.

    Args:
        service_name: Value of the ``service`` field
        level: Root log level name
        enable_json: JSON lines when True, plain text for local runs
        quiet_loggers: Third-party loggers capped at WARNING

    Returns:
        The installed handler
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(LogContextFilter())

    if enable_json:
        handler.setFormatter(CustomJsonFormatter(
            service_name=service_name,
            fmt='%(timestamp)s %(level)s %(service)s %(trace_id)s %(span_id)s %(request_id)s %(message)s'
        ))
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)-7s %(name)s [%(trace_id)s] %(message)s',
            datefmt='%H:%M:%S'
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    return handler
