"""Pluggable request tracing with an in-memory default tracer."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol


class TracerAlreadyRegisteredError(Exception):
    """Raised when a request tracer is registered a second time."""


@dataclass(frozen=True)
class RequestSpanContext:
    """The context a span hands to its children."""

    ref_ctx: Any = None
    value: Any = None


class _RequestSpan(Protocol):
    def end(self) -> None: ...

    def context(self) -> RequestSpanContext: ...

    def add_event(self, name: str, timestamp: datetime) -> None: ...

    def set_attribute(self, key: str, value: Any) -> None: ...


class _RequestTracer(Protocol):
    def request_span(
        self, parent_context: RequestSpanContext, operation_name: str
    ) -> _RequestSpan: ...


_DEFAULT_NOOP_SPAN_CONTEXT = RequestSpanContext()


@dataclass
class NoopSpan:
    """A span kept in memory only; it is exported nowhere."""

    operation_name: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)
    events: list[tuple[str, datetime]] = field(default_factory=list)
    ended: bool = False

    def end(self) -> None:
        """Mark the span as complete."""
        self.ended = True

    def context(self) -> RequestSpanContext:
        return _DEFAULT_NOOP_SPAN_CONTEXT

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def add_event(self, name: str, timestamp: datetime) -> None:
        self.events.append((name, timestamp))


class NoopTracer:
    """The tracer in use until another one is registered."""

    def request_span(
        self, parent_context: RequestSpanContext, operation_name: str
    ) -> NoopSpan:
        return NoopSpan(operation_name=operation_name)


_registered_tracer: _RequestTracer = NoopTracer()


def register_request_tracer(tracer: _RequestTracer) -> None:
    """Install a tracer; only one may be registered."""
    global _registered_tracer
    if not isinstance(_registered_tracer, NoopTracer):
        raise TracerAlreadyRegisteredError(f"RequestTracer already registered {tracer!r}")
    _registered_tracer = tracer


def reset_request_tracer() -> None:
    """Go back to the default tracer."""
    global _registered_tracer
    _registered_tracer = NoopTracer()


@dataclass
class Trace:
    span_context: RequestSpanContext = field(default_factory=RequestSpanContext)
    span: _RequestSpan | None = None

    def finish(self) -> None:
        if self.span is not None:
            self.span.end()

    def root_context(self) -> RequestSpanContext:
        if self.span is not None:
            return self.span.context()
        return self.span_context


@dataclass
class ObserverLabels:
    vb_id: int
    collection_ids: Mapping[int, str] = field(default_factory=dict)


@dataclass
class OpTracer:
    parent_context: RequestSpanContext
    op_span: _RequestSpan | None

    def finish(self) -> None:
        if self.op_span is not None:
            self.op_span.end()

    def root_context(self) -> RequestSpanContext:
        if self.op_span is not None:
            return self.op_span.context()
        return self.parent_context


@dataclass
class OpTelemetryHandler:
    """Tracks one operation: its span and its start time."""

    tracer: OpTracer
    service: str
    operation: str
    start: datetime
    metrics_complete: Callable[[str, str, datetime], None]

    def root_context(self) -> RequestSpanContext:
        return self.tracer.root_context()

    def start_time(self) -> datetime:
        return self.start

    def finish(self) -> None:
        self.tracer.finish()
        self.metrics_complete(self.service, self.operation, self.start)


class ListenerTracer:
    """A span opened by a listener while it handles an event."""

    def __init__(
        self,
        component: ListenerTracerComponent,
        parent_context: RequestSpanContext,
        span: _RequestSpan | None = None,
    ) -> None:
        self._component = component
        self._parent_context = parent_context
        self._span = span

    def create_child_trace(
        self, operation_name: str, attributes: Mapping[str, Any] | None
    ) -> ListenerTracer:
        return self._component.initialize_listener_trace(operation_name, attributes)

    def finish(self) -> None:
        if self._span is not None:
            self._span.end()

    def parent_context(self) -> RequestSpanContext:
        if self._span is not None:
            return self._span.context()
        return self._parent_context


class ListenerTracerComponent:
    """Opens listener spans below the span of the operation being handled."""

    def __init__(
        self, tracer_component: TracerComponent, op_context: RequestSpanContext
    ) -> None:
        self.tracer_component = tracer_component
        self.op_context = op_context

    def _open(
        self,
        parent: RequestSpanContext,
        operation_name: str,
        attributes: Mapping[str, Any] | None,
    ) -> ListenerTracer:
        span = self.tracer_component.tracer.request_span(parent, operation_name)
        for key, value in (attributes or {}).items():
            span.set_attribute(key, value)
        return ListenerTracer(self, span.context(), span)

    def initialize_listener_trace(
        self, operation_name: str, attributes: Mapping[str, Any] | None
    ) -> ListenerTracer:
        return self._open(self.op_context, operation_name, attributes)

    def create_listener_trace(
        self,
        trace: ListenerTracer,
        operation_name: str,
        attributes: Mapping[str, Any] | None,
    ) -> ListenerTracer:
        return self._open(trace._parent_context, operation_name, attributes)


class TracerComponent:
    """Creates operation and listener traces with one tracer."""

    def __init__(self, tracer: _RequestTracer | None = None) -> None:
        self.tracer = tracer if tracer is not None else _registered_tracer
        self.latencies: dict[tuple[str, str], timedelta] = {}

    def start_op_telemetry_handler(
        self,
        service: str,
        operation: str,
        trace_context: RequestSpanContext,
        observer_labels: ObserverLabels,
    ) -> OpTelemetryHandler:
        return OpTelemetryHandler(
            tracer=self._create_op_trace(operation, trace_context, observer_labels),
            service=service,
            operation=operation,
            start=datetime.now(timezone.utc),
            metrics_complete=self.response_value_record,
        )

    def _create_op_trace(
        self,
        operation_name: str,
        parent_context: RequestSpanContext,
        observer_labels: ObserverLabels,
    ) -> OpTracer:
        span = self.tracer.request_span(parent_context, operation_name)
        span.set_attribute("op.attributes", parent_context.value)
        span.set_attribute("vb_id", observer_labels.vb_id)
        span.set_attribute("collection_ids", observer_labels.collection_ids)
        return OpTracer(parent_context=parent_context, op_span=span)

    def new_listener_tracer_component(
        self, op_context: RequestSpanContext
    ) -> ListenerTracerComponent:
        return ListenerTracerComponent(self, op_context)

    def response_value_record(self, service: str, operation: str, start: datetime) -> None:
        """Keep how long the latest run of an operation took."""
        self.latencies[(service, operation)] = datetime.now(timezone.utc) - start