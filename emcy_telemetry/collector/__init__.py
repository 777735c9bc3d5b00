from emcy_telemetry.collector.models import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_ENDPOINT,
    DEFAULT_FLUSH_INTERVAL,
    InvocationError,
    InvocationMetadata,
    InvocationOutput,
    StatusResult,
    TelemetryBatch,
    TelemetryConfig,
    TelemetryConfigError,
    ToolInvocation,
    TraceOptions,
)
from emcy_telemetry.collector.telemetry import EmcyTelemetry, extract_error, extract_output

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_ENDPOINT",
    "DEFAULT_FLUSH_INTERVAL",
    "EmcyTelemetry",
    "InvocationError",
    "InvocationMetadata",
    "InvocationOutput",
    "StatusResult",
    "TelemetryBatch",
    "TelemetryConfig",
    "TelemetryConfigError",
    "ToolInvocation",
    "TraceOptions",
    "extract_error",
    "extract_output",
]
