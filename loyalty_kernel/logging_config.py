"""
loyalty_kernel.logging_config -- JSON log lines scoped to enrollment work.

Every line carries the scope it was written in:

    enrollment       a customer decision or request for one (customer,
                     program) pair; ``request_id`` once the request exists
    reconciliation   a scan-and-repair job; ``job_id`` always, ``phase``
                     while a phase is running

Scope fields are bound with ``LogContext.for_request`` /
``LogContext.for_reconciliation`` and nest: a phase bound inside a job
keeps the job id.  Kernel errors attached to a record are flattened into
``error_code`` / ``retryable`` plus their structured attributes, so an
operator can filter on the code without parsing messages.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

from loyalty_kernel.domain.identifiers import EntityId
from loyalty_kernel.exceptions import LoyaltyKernelError

_LOGGER_PREFIX = "loyalty_kernel"

_EMPTY: Mapping[str, Any] = MappingProxyType({})
_bound: ContextVar[Mapping[str, Any]] = ContextVar("loyalty_log_scope", default=_EMPTY)


def _scalar(value: Any) -> Any:
    """Reduce ids, enums and timestamps to JSON scalars; str() anything else."""
    if isinstance(value, (Enum, EntityId)):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


class LogContext:
    """Context-local scope fields attached to every loyalty_kernel log line."""

    FIELDS = (
        "correlation_id",
        "operation",
        "request_id",
        "customer_id",
        "program_id",
        "job_id",
        "phase",
    )

    @classmethod
    def get_all(cls) -> dict[str, Any]:
        return dict(_bound.get())

    @classmethod
    def clear(cls) -> None:
        _bound.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Add fields for the duration of the block.  None values are skipped."""
        unknown = set(fields) - set(cls.FIELDS)
        if unknown:
            raise ValueError(f"unknown log context fields: {sorted(unknown)}")
        merged = dict(_bound.get())
        merged.update({k: _scalar(v) for k, v in fields.items() if v is not None})
        token = _bound.set(MappingProxyType(merged))
        try:
            yield cls
        finally:
            _bound.reset(token)

    @classmethod
    def for_request(
        cls,
        request_id: Any = None,
        *,
        customer_id: Any = None,
        program_id: Any = None,
        correlation_id: Any = None,
    ):
        return cls.bind(
            request_id=request_id,
            customer_id=customer_id,
            program_id=program_id,
            correlation_id=correlation_id,
        )

    @classmethod
    def for_reconciliation(cls, job_id: Any = None, *, phase: Any = None):
        return cls.bind(job_id=job_id, phase=phase)


def _scope(bound: Mapping[str, Any]) -> str | None:
    if "job_id" in bound or "phase" in bound:
        return "reconciliation"
    if "request_id" in bound or "customer_id" in bound:
        return "enrollment"
    return None


_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: scope, bound context, extras, error."""

    def format(self, record: logging.LogRecord) -> str:
        bound = _bound.get()
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        scope = _scope(bound)
        if scope is not None:
            payload["scope"] = scope
        payload.update(bound)

        # Explicit extras are more specific than the bound scope.
        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._error_fields(record))

        return json.dumps(payload, default=_scalar)

    def _error_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        if isinstance(exc, LoyaltyKernelError):
            fields["error_code"] = exc.code
            fields["retryable"] = exc.retryable
            for key, val in vars(exc).items():
                if not key.startswith("_"):
                    fields[f"exc_{key}"] = val
            # Expected kernel outcomes below ERROR do not need a stack.
            if record.levelno < logging.ERROR:
                return fields
        fields["traceback"] = self.formatException(record.exc_info)
        return fields


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the loyalty_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Install the JSON handler on the loyalty_kernel logger once per process."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Drop the installed handler.  Tests only."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
