from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar
from typing import Optional

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(value: Optional[str] = None) -> str:
    cid = str(value or uuid.uuid4())
    correlation_id_ctx.set(cid)
    return cid


class CorrelationLogFilter(logging.Filter):
    """Exposes the current correlation id to stdlib formatters."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        return True
