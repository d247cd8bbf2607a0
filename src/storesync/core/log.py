"""Logging for storesync, on top of logfire.

Library code logs through the module-level proxy:

    from storesync.core.log import logger
    logger.info("Fetched remote", remote="origin")

Keyword arguments become span attributes. Where records end up is
decided by the sinks of the installed Logger: the console (rendered by
logfire), a log file, an OTLP collector, or logfire's cloud. Each sink
filters by its own minimum level.
"""

from __future__ import annotations

import contextlib
from abc import abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import logfire
from opentelemetry.proto.logs.v1 import logs_pb2
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
    SpanExportResult,
)
from pydantic import Field, PrivateAttr, model_validator

from storesync.core.base import BaseConfig

# Level names as logfire knows them, with their OpenTelemetry severity
LEVEL_SEVERITY = {
    "trace": logs_pb2.SEVERITY_NUMBER_TRACE,
    "debug": logs_pb2.SEVERITY_NUMBER_DEBUG,
    "info": logs_pb2.SEVERITY_NUMBER_INFO,
    "warn": logs_pb2.SEVERITY_NUMBER_WARN,
    "error": logs_pb2.SEVERITY_NUMBER_ERROR,
    "fatal": logs_pb2.SEVERITY_NUMBER_FATAL,
}

# Span attributes that logfire and OpenTelemetry add on their own
_BOOKKEEPING = ("code.", "logfire.", "otel.", "telemetry.", "service.", "process.")

_active: Logger | None = None


def level_name(severity: int) -> str:
    """Name of the highest level at or below an OpenTelemetry severity."""
    names = [n for n, s in LEVEL_SEVERITY.items() if s <= severity]
    return names[-1] if names else "trace"


def severity_of(span: ReadableSpan) -> int:
    return (span.attributes or {}).get(
        "logfire.level_num", LEVEL_SEVERITY["info"]
    )


def format_line(span: ReadableSpan, template: str) -> str:
    """Render a finished span with a str.format template.

    Template fields: timestamp, level, message, location. Attributes
    passed by the caller are appended as key=value pairs.

    Examples:
        "{timestamp:%H:%M:%S} {level:<5} {message}"
        -> "14:02:11 info  Pushed │ branch='main' remote='origin'"
    """
    attrs = span.attributes or {}
    path = attrs.get("code.filepath")
    fields = {
        "timestamp": datetime.fromtimestamp(span.start_time / 1e9, tz=UTC),
        "level": level_name(severity_of(span)),
        "message": str(attrs.get("logfire.msg", span.name)),
        "location": f"{path}:{attrs.get('code.lineno', '')}" if path else "",
    }
    try:
        line = template.format(**fields)
    except (KeyError, IndexError, ValueError) as e:
        line = f"<bad log template {template!r}: {e}> {fields['message']}"

    extra = sorted(
        (key, value) for key, value in attrs.items()
        if not key.startswith(_BOOKKEEPING)
    )
    if extra:
        line += " │ " + " ".join(f"{key}={value!r}" for key, value in extra)
    return line + "\n"


class MinimumLevelExporter(SpanExporter):
    """Passes on only the spans at or above a level."""

    def __init__(self, inner: SpanExporter, level: str | None):
        self.inner = inner
        self.threshold = LEVEL_SEVERITY.get(
            (level or "info").lower(), LEVEL_SEVERITY["info"]
        )

    def export(self, spans) -> SpanExportResult:
        wanted = [s for s in spans if severity_of(s) >= self.threshold]
        if not wanted:
            return SpanExportResult.SUCCESS
        return self.inner.export(wanted)

    def shutdown(self) -> None:
        self.inner.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self.inner.force_flush(timeout_millis)


class Sink(BaseConfig):
    """A destination for log records."""

    enabled: bool = Field(default=True, description="Whether this sink is used")
    level: str | None = Field(
        default=None,
        description=(
            "Lowest level written (trace, debug, info, warn, error, "
            "fatal); the logger's level when unset"
        ),
    )

    _processor: Any = PrivateAttr(default=None)

    @abstractmethod
    def create_processor(self, log_root: Path, repo_name: str):
        """Span processor feeding this sink; None if logfire handles it."""

    def close(self):
        if self._processor is not None:
            with contextlib.suppress(Exception):
                self._processor.shutdown()
            self._processor = None


class ConsoleSink(Sink):
    """Terminal output, rendered by logfire."""

    verbose: bool = Field(default=False, description="Show span attributes")
    colors: str = Field(default="auto", description="auto, always or never")

    def create_processor(self, log_root: Path, repo_name: str):
        return None


class FileSink(Sink):
    """One line per record, appended to a file."""

    enabled: bool = Field(default=False, description="Write a log file")
    path: str = Field(
        default="{log_root}/{repo_name}/storesync.log",
        description="File path; {log_root} and {repo_name} are filled in",
    )
    format_template: str = Field(
        default="{timestamp:%Y-%m-%d %H:%M:%S} {level:<5} {message}",
        description="Line layout, see format_line()",
    )

    _file: Any = PrivateAttr(default=None)

    def create_processor(self, log_root: Path, repo_name: str):
        target = Path(self.path.format(log_root=log_root, repo_name=repo_name))
        target.parent.mkdir(parents=True, exist_ok=True)
        # Line buffered: a crash loses at most the record being written
        self._file = target.open("a", buffering=1, encoding="utf-8")
        exporter = ConsoleSpanExporter(
            out=self._file,
            formatter=lambda span: format_line(span, self.format_template),
        )
        return BatchSpanProcessor(MinimumLevelExporter(exporter, self.level))

    def close(self):
        # Flushing the processor writes pending records to the file
        super().close()
        if self._file is not None and not self._file.closed:
            self._file.close()


class OTLPSink(Sink):
    """Export to an OpenTelemetry collector over gRPC."""

    enabled: bool = Field(default=False, description="Export over OTLP")
    endpoint: str = Field(
        default="http://localhost:4317", description="Collector address"
    )
    insecure: bool = Field(default=True, description="Plain-text gRPC")
    headers: dict[str, str] = Field(
        default_factory=dict, description="Extra request headers"
    )

    def create_processor(self, log_root: Path, repo_name: str):
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        exporter = OTLPSpanExporter(
            endpoint=self.endpoint,
            insecure=self.insecure,
            headers=self.headers or None,
        )
        if self.level:
            exporter = MinimumLevelExporter(exporter, self.level)
        return BatchSpanProcessor(exporter)


class LogfireSink(Sink):
    """logfire.dev; logfire ships the spans itself."""

    enabled: bool = Field(default=False, description="Send to logfire.dev")
    token: str | None = Field(
        default=None, description="Write token (or LOGFIRE_TOKEN)", repr=False
    )

    def create_processor(self, log_root: Path, repo_name: str):
        return None


class Logger(BaseConfig):
    """The configured sinks; closing the logger closes them all."""

    level: str = Field(
        default="info",
        description="Level for sinks that do not set one",
    )
    console: ConsoleSink = Field(default_factory=ConsoleSink)
    file: FileSink = Field(default_factory=FileSink)
    otlp: OTLPSink = Field(default_factory=OTLPSink)
    logfire: LogfireSink = Field(default_factory=LogfireSink)

    @model_validator(mode="after")
    def _inherit_level(self) -> Logger:
        for sink in self.sinks:
            if sink.level is None and not isinstance(sink, OTLPSink):
                sink.level = self.level
        return self

    @property
    def sinks(self) -> tuple[Sink, ...]:
        return (self.console, self.file, self.otlp, self.logfire)

    def setup(self, log_root: Path, repo_name: str):
        """Open the sinks and point logfire at them."""
        processors = []
        for sink in self.sinks:
            if not sink.enabled:
                continue
            sink._processor = sink.create_processor(log_root, repo_name)
            if sink._processor is not None:
                processors.append(sink._processor)

        console = False
        if self.console.enabled:
            console = logfire.ConsoleOptions(
                min_log_level=self.console.level,
                verbose=self.console.verbose,
                colors=self.console.colors,
                include_timestamps=True,
            )

        logfire.configure(
            service_name=f"storesync-{repo_name}",
            send_to_logfire=self.logfire.enabled,
            token=self.logfire.token if self.logfire.enabled else None,
            console=console,
            additional_span_processors=processors or None,
        )

    def log(self, level: str, msg: str, **attributes):
        logfire.log(level, msg, attributes=attributes or None)

    def trace(self, msg: str, **attributes):
        self.log("trace", msg, **attributes)

    def debug(self, msg: str, **attributes):
        self.log("debug", msg, **attributes)

    def info(self, msg: str, **attributes):
        self.log("info", msg, **attributes)

    def warn(self, msg: str, **attributes):
        self.log("warn", msg, **attributes)

    def error(self, msg: str, **attributes):
        self.log("error", msg, **attributes)

    def span(self, msg: str, **attributes):
        """Context manager grouping the records logged inside it."""
        return logfire.span(msg, **attributes)


class _Proxy:
    """Stands in for the active Logger; silent until one is installed."""

    def __getattr__(self, name):
        if _active is None:
            return _discard
        return getattr(_active, name)

    def span(self, msg: str, **attributes):
        if _active is None:
            return contextlib.nullcontext()
        return _active.span(msg, **attributes)


def _discard(*args, **kwargs):
    return None


logger = _Proxy()


def setup_logger(
    log_root: Path,
    repo_name: str,
    console: ConsoleSink | None = None,
    otlp: OTLPSink | None = None,
    file: FileSink | None = None,
    logfire: LogfireSink | None = None,
) -> Logger:
    """Install a Logger behind ``logger`` and return it.

    Config does this once settings are loaded; tests call it with a
    console-only sink.
    """
    global _active

    _active = Logger(
        console=console or ConsoleSink(),
        otlp=otlp or OTLPSink(),
        file=file or FileSink(),
        logfire=logfire or LogfireSink(),
    )
    _active.setup(log_root, repo_name)
    return _active


def close_logger() -> None:
    """Flush and uninstall the active Logger."""
    global _active
    if _active is not None:
        _active.close()
        _active = None
