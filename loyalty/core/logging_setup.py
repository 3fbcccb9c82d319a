from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone

from loyalty.core.config import LOG_LEVEL
from loyalty.core.request_context import current_context

# segredos que podem aparecer em mensagens (headers do POS, login)
_SECRET_PATTERN = re.compile(
    r"(authorization\s*[:=]\s*bearer\s+|(?:x-api-key|api_key|token|password)\s*[:=]\s*)([^\s\",}]+)",
    re.IGNORECASE,
)

_EXTRA_FIELDS = ("endpoint", "method", "status_code", "error_code")


def mask_secrets(text: str) -> str:
    return _SECRET_PATTERN.sub(r"\1***", text)


class JsonFormatter(logging.Formatter):
    """Uma linha JSON por registro, com o contexto da requisição atual."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = current_context()
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": mask_secrets(record.getMessage()),
            "request_id": getattr(record, "request_id", None) or ctx.request_id,
            "shop_id": getattr(record, "shop_id", None) or ctx.shop_id,
            "user_id": getattr(record, "user_id", None) or ctx.user_id,
            "duration_ms": getattr(record, "duration_ms", None),
        }
        entry.update(
            (name, getattr(record, name))
            for name in _EXTRA_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.levelno >= logging.CRITICAL:
            # CRITICAL = alerta operacional (débito sem estorno, códigos esgotados)
            entry["alert"] = True
        if record.exc_info:
            entry["exception"] = mask_secrets(self.formatException(record.exc_info))
        return json.dumps(entry, ensure_ascii=False)


def configure_logging(level: str = LOG_LEVEL) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)
