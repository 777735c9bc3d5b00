"""Core data models — invocation records, batches, and collector config."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_core import to_jsonable_python

DEFAULT_ENDPOINT = "https://api.emcy.ai/v1/telemetry"
DEFAULT_BATCH_SIZE = 10
DEFAULT_FLUSH_INTERVAL = 5.0  # seconds


class TelemetryConfigError(ValueError):
    """Raised when a collector cannot be configured from the environment."""


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. ``2024-01-01T00:00:00.000Z``."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class _WireModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Invocation record
# ---------------------------------------------------------------------------

class InvocationOutput(_WireModel):
    status: int | None = None
    body: Any = None


class InvocationError(_WireModel):
    message: str
    code: str | None = None
    stack: str | None = None


class InvocationMetadata(_WireModel):
    session_id: str | None = None
    agent_id: str | None = None
    user_id: str | None = None
    server_name: str | None = None
    server_version: str | None = None
    mcp_server_id: str | None = None


class ToolInvocation(_WireModel):
    """One observed unit of work.

    ``trace()`` always sets exactly one of ``output``/``error``, matching
    ``success``. Records handed to ``log()`` directly are queued as given.
    """

    invocation_id: str
    tool_name: str
    timestamp: str
    duration: int = Field(ge=0)
    success: bool
    input: dict[str, Any] | None = None
    output: InvocationOutput | None = None
    error: InvocationError | None = None
    metadata: InvocationMetadata | None = None


# ---------------------------------------------------------------------------
# Batch (unit of network delivery)
# ---------------------------------------------------------------------------

class TelemetryBatch(_WireModel):
    api_key: str
    mcp_server_id: str | None = None
    timestamp: str
    invocations: list[ToolInvocation] = Field(min_length=1)

    def to_json(self) -> str:
        # Caller payloads are arbitrary: datetimes and the like become ISO strings, the rest str().
        return json.dumps(to_jsonable_python(self.to_wire(), fallback=str))


# ---------------------------------------------------------------------------
# Caller-facing helpers
# ---------------------------------------------------------------------------

class StatusResult(BaseModel):
    """Tagged operation result carrying an explicit status code.

    ``trace()`` maps an instance to ``output={status, body=data}``; any other
    return value becomes ``output={body=result}``.
    """

    status: int | None = None
    data: Any = None


class TraceOptions(BaseModel):
    input: dict[str, Any] | None = None
    session_id: str | None = None
    agent_id: str | None = None
    user_id: str | None = None


class TelemetryConfig(BaseModel):
    api_key: str = Field(min_length=1)
    endpoint: str = DEFAULT_ENDPOINT
    mcp_server_id: str | None = None
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    flush_interval: float = Field(default=DEFAULT_FLUSH_INTERVAL, gt=0)
    debug: bool = False
