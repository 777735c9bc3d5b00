"""emcy_telemetry — batched tool-invocation telemetry for MCP servers.

Usage::

    from emcy_telemetry import create_telemetry

    telemetry = create_telemetry()
    telemetry.set_server_info("weather-server", "1.2.0")

    forecast = await telemetry.trace("get_forecast", lambda: fetch_forecast(city))
    ...
    await telemetry.shutdown()
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()  # reads .env into os.environ (no-op if file missing)

from emcy_telemetry.collector import (
    EmcyTelemetry,
    StatusResult,
    TelemetryBatch,
    TelemetryConfig,
    TelemetryConfigError,
    ToolInvocation,
    TraceOptions,
)
from emcy_telemetry.lifecycle.interface import ManualTerminationHooks, TerminationHooks
from emcy_telemetry.transport import HttpTransport, JSONLTransport, MemoryTransport, Transport

__version__ = "0.1.0"

__all__ = [
    "EmcyTelemetry",
    "HttpTransport",
    "JSONLTransport",
    "ManualTerminationHooks",
    "MemoryTransport",
    "StatusResult",
    "TelemetryBatch",
    "TelemetryConfig",
    "TelemetryConfigError",
    "TerminationHooks",
    "ToolInvocation",
    "TraceOptions",
    "Transport",
    "create_telemetry",
]

_TRUTHY = {"1", "true", "yes", "on"}


def _env_number(name: str, cast: type) -> int | float | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return cast(raw)
    except ValueError as exc:
        raise TelemetryConfigError(f"{name}={raw!r} is not a valid {cast.__name__}") from exc


def create_telemetry(
    *,
    api_key: str | None = None,
    endpoint: str | None = None,
    mcp_server_id: str | None = None,
    batch_size: int | None = None,
    flush_interval: float | None = None,
    debug: bool | None = None,
    transport: Transport | None = None,
    hooks: TerminationHooks | None = None,
) -> EmcyTelemetry:
    """Wire a collector from keyword arguments, falling back to the environment.

    Environment variables (all optional except the API key):
      EMCY_API_KEY         — bearer token for the collector endpoint
      EMCY_ENDPOINT        — default ``https://api.emcy.ai/v1/telemetry``
      EMCY_MCP_SERVER_ID   — groups telemetry under a registered server
      EMCY_BATCH_SIZE      — default ``10``
      EMCY_FLUSH_INTERVAL  — seconds, default ``5``
      EMCY_DEBUG           — set to ``1`` for diagnostic log lines
    """
    api_key = api_key or os.environ.get("EMCY_API_KEY")
    if not api_key:
        raise TelemetryConfigError("No API key: pass api_key= or set EMCY_API_KEY")

    if batch_size is None:
        batch_size = _env_number("EMCY_BATCH_SIZE", int)
    if flush_interval is None:
        flush_interval = _env_number("EMCY_FLUSH_INTERVAL", float)
    if debug is None:
        debug = os.environ.get("EMCY_DEBUG", "").strip().lower() in _TRUTHY

    return EmcyTelemetry.from_options(
        api_key=api_key,
        endpoint=endpoint or os.environ.get("EMCY_ENDPOINT"),
        mcp_server_id=mcp_server_id or os.environ.get("EMCY_MCP_SERVER_ID"),
        batch_size=batch_size,
        flush_interval=flush_interval,
        debug=debug,
        transport=transport,
        hooks=hooks,
    )
