"""
Wallet Observability

Structured logging, tracing, and audit events for the negotiation core.
Provides correlation IDs and context propagation so that every log line of a
round (create, contribute, finalize, post) can be tied back to its slate.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                    Round Driver / Locker                 │
    │  logger.info("msg", slate_id=x)   tracer.span("round")  │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                 WalletLogger / Tracer                    │
    │  Context propagation, correlation IDs, structured data  │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                    Handlers / Exporters                  │
    │         StructuredHandler (JSON)  │  span exporters      │
    └─────────────────────────────────────────────────────────┘

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import hashlib
import json
import logging
import sys
import threading
import time
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, TypeVar

# Context variables for request-scoped data
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)
span_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "span_id", default=""
)
trace_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "trace_id", default=""
)


class LogLevel(Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class WalletLayer(Enum):
    """Wallet components for categorization."""
    SECP = "secp"
    AGGREGATOR = "aggregator"
    SLATE = "slate"
    BUILDER = "builder"
    SELECTION = "selection"
    LOCKER = "locker"
    STORE = "store"
    LEDGER = "ledger"
    KEYCHAIN = "keychain"
    API = "api"
    RPC = "rpc"
    CONFIG = "config"
    CLI = "cli"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    trace_id: str = ""
    span_id: str = ""
    layer: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass
class Span:
    """
    Tracing span.

    Represents one round-driver operation with timing, attributes
    and parent-child relationships.
    """
    trace_id: str
    span_id: str
    parent_span_id: str = ""
    name: str = ""
    layer: str = ""
    start_time: float = field(default_factory=time.monotonic)
    end_time: Optional[float] = None
    status: str = "ok"
    attributes: Dict[str, Any] = field(default_factory=dict)

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def set_status(self, status: str, message: str = "") -> None:
        self.status = status
        if message:
            self.attributes["status_message"] = message

    def end(self) -> None:
        if self.end_time is None:
            self.end_time = time.monotonic()

    @property
    def duration_ms(self) -> float:
        end = self.end_time or time.monotonic()
        return (end - self.start_time) * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_span_id": self.parent_span_id,
            "name": self.name,
            "layer": self.layer,
            "duration_ms": round(self.duration_ms, 2),
            "status": self.status,
            "attributes": self.attributes,
        }


class SpanContext:
    """Context manager for spans."""

    def __init__(self, tracer: "Tracer", name: str, layer: WalletLayer, **attributes: Any):
        self.tracer = tracer
        self.name = name
        self.layer = layer
        self.attributes = attributes
        self.span: Optional[Span] = None
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> Span:
        self.span = self.tracer.start_span(self.name, self.layer, **self.attributes)
        self._token = span_id_var.set(self.span.span_id)
        return self.span

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.span:
            if exc_type:
                self.span.set_status("error", str(exc_val))
                self.span.set_attribute("exception_type", exc_type.__name__)
                kind = getattr(exc_val, "kind", None)
                if kind:
                    self.span.set_attribute("error_kind", kind)
            self.tracer.end_span(self.span)
        if self._token:
            span_id_var.reset(self._token)


class Tracer:
    """
    Creates and manages spans for tracking a negotiation across
    wallet components.
    """

    def __init__(self, service_name: str = "mwslate"):
        self.service_name = service_name
        self._spans: Dict[str, Span] = {}
        self._lock = threading.RLock()
        self._exporters: List[Callable[[Span], None]] = []

    def add_exporter(self, exporter: Callable[[Span], None]) -> None:
        self._exporters.append(exporter)

    def remove_exporter(self, exporter: Callable[[Span], None]) -> None:
        if exporter in self._exporters:
            self._exporters.remove(exporter)

    def start_trace(self) -> str:
        trace_id = uuid.uuid4().hex
        trace_id_var.set(trace_id)
        return trace_id

    def start_span(self, name: str, layer: WalletLayer, **attributes: Any) -> Span:
        trace_id = trace_id_var.get() or self.start_trace()
        span = Span(
            trace_id=trace_id,
            span_id=uuid.uuid4().hex[:16],
            parent_span_id=span_id_var.get(),
            name=name,
            layer=layer.value,
            attributes=attributes,
        )

        with self._lock:
            self._spans[span.span_id] = span

        return span

    def end_span(self, span: Span) -> None:
        span.end()

        with self._lock:
            self._spans.pop(span.span_id, None)

        for exporter in list(self._exporters):
            try:
                exporter(span)
            except Exception:  # exporter faults never break a round
                logging.getLogger("mwslate.tracer").exception("span exporter failed")

    def active_spans(self) -> List[Span]:
        with self._lock:
            return list(self._spans.values())

    def span(self, name: str, layer: WalletLayer, **attributes: Any) -> SpanContext:
        return SpanContext(self, name, layer, **attributes)


class StructuredHandler(logging.Handler):
    """Logging handler that outputs structured JSON."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                correlation_id=correlation_id_var.get(),
                trace_id=trace_id_var.get(),
                span_id=span_id_var.get(),
                layer=getattr(record, "layer", ""),
                operation=getattr(record, "operation", ""),
                duration_ms=getattr(record, "duration_ms", None),
                error_code=getattr(record, "error_code", ""),
                context=getattr(record, "context", {}),
            )

            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))

            self.stream.write(event.to_json() + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


class TextFormatter(logging.Formatter):
    """Human readable single-line format with the structured context appended."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        context = getattr(record, "context", None)
        if context:
            base += " " + " ".join(f"{k}={v}" for k, v in sorted(context.items()))
        return base


class WalletLogger:
    """
    Structured logger for wallet components.

    Automatically includes correlation IDs, trace context,
    and layer information in all log events.
    """

    def __init__(
        self,
        name: str,
        layer: WalletLayer,
        level: Optional[LogLevel] = None,
    ):
        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"mwslate.{layer.value}.{name}")
        if level is not None:
            self._logger.setLevel(getattr(logging, level.value.upper()))

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        extra = {
            "layer": self.layer.value,
            "operation": operation,
            "error_code": error_code,
            "duration_ms": duration_ms,
            "context": context,
        }
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def error(
        self,
        message: str,
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)

    def operation(
        self,
        name: str,
        duration_ms: float,
        success: bool = True,
        **context: Any,
    ) -> None:
        """Log an operation completion."""
        level = logging.INFO if success else logging.WARNING
        status = "completed" if success else "failed"
        self._log(
            level,
            f"Operation {name} {status}",
            operation=name,
            duration_ms=duration_ms,
            **context,
        )


def configure_logging(level: str = "info", fmt: str = "json", stream: Any = None) -> logging.Logger:
    """Install the wallet handler on the ``mwslate`` root logger (idempotent)."""
    root = logging.getLogger("mwslate")
    root.setLevel(getattr(logging, level.upper()))
    for handler in list(root.handlers):
        if getattr(handler, "_mwslate_handler", False):
            root.removeHandler(handler)

    if fmt == "json":
        handler: logging.Handler = StructuredHandler(stream)
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(TextFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    handler._mwslate_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    return root


def generate_correlation_id() -> str:
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


_tracer: Optional[Tracer] = None


def get_tracer() -> Tracer:
    """Get the global tracer instance."""
    global _tracer
    if _tracer is None:
        _tracer = Tracer()
    return _tracer


def get_logger(name: str, layer: WalletLayer) -> WalletLogger:
    return WalletLogger(name, layer)


T = TypeVar("T")


def timed_operation(
    logger: WalletLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for timing and logging operations."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            start = time.monotonic()
            success = True
            try:
                return func(*args, **kwargs)
            except Exception:
                success = False
                raise
            finally:
                duration_ms = (time.monotonic() - start) * 1000
                logger.operation(operation_name, duration_ms, success)
        return wrapper
    return decorator


# =============================================================================
# AUDIT TRAIL
# =============================================================================

@dataclass
class AuditEvent:
    """Negotiation lifecycle event."""
    event_id: str
    timestamp: str
    action: str
    tx_log_id: Optional[int]
    slate_id: str
    outcome: str  # success, failure, noop
    correlation_id: str = ""
    previous_hash: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AuditLogger:
    """
    Tamper-evident audit trail for negotiation lifecycle events
    (lock, release, finalize, post, cancel, confirm).

    Each event is hash-chained to its predecessor.
    """

    GENESIS = "genesis"

    def __init__(self, logger: Optional[WalletLogger] = None, max_events: int = 10000):
        self._logger = logger or get_logger("audit", WalletLayer.LOCKER)
        self._last_hash: str = self.GENESIS
        self._events: List[AuditEvent] = []
        self._max_events = max_events
        self._lock = threading.Lock()

    @staticmethod
    def _compute_hash(event: AuditEvent) -> str:
        data = json.dumps(event.to_dict(), sort_keys=True, default=str)
        return hashlib.sha256(data.encode()).hexdigest()

    def log(
        self,
        action: str,
        tx_log_id: Optional[int],
        slate_id: Optional[str],
        outcome: str = "success",
        **details: Any,
    ) -> AuditEvent:
        with self._lock:
            event = AuditEvent(
                event_id=uuid.uuid4().hex,
                timestamp=datetime.now(timezone.utc).isoformat(),
                action=action,
                tx_log_id=tx_log_id,
                slate_id=slate_id or "",
                outcome=outcome,
                correlation_id=get_correlation_id(),
                previous_hash=self._last_hash,
                details=details,
            )
            self._last_hash = self._compute_hash(event)
            self._events.append(event)
            if len(self._events) > self._max_events:
                self._events = self._events[-self._max_events:]
            event_hash = self._last_hash

        self._logger.info(
            f"AUDIT: {action} tx={tx_log_id} slate={slate_id} outcome={outcome}",
            operation="audit",
            event_hash=event_hash,
            **details,
        )
        return event

    @property
    def events(self) -> List[AuditEvent]:
        with self._lock:
            return list(self._events)

    def verify_chain(self) -> bool:
        """Recompute the hash chain over the retained events."""
        with self._lock:
            events = list(self._events)
        for prev, current in zip(events, events[1:]):
            if current.previous_hash != self._compute_hash(prev):
                return False
        return True
