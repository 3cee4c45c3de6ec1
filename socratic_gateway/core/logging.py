import json
import logging
from datetime import UTC, datetime

_EXTRA_FIELDS = (
    "request_id",
    "client_key",
    "origin",
    "principal_id",
    "reason",
    "route",
    "model",
    "model_id",
    "provider",
    "message_count",
    "retry_after_s",
    "tool",
    "step",
    "latency_ms",
    "token_in",
    "token_out",
    "error",
    "error_type",
    "conversation_id",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": datetime.now(tz=UTC).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        for field in _EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def configure_logging(log_level: str) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())
