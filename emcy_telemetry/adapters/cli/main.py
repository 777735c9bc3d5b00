"""CLI adapter — sends one diagnostic invocation and prints the outcome as JSON."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from emcy_telemetry import TelemetryConfigError, TraceOptions, create_telemetry
from emcy_telemetry.lifecycle.interface import ManualTerminationHooks


async def run_ping(tool_name: str = "emcy_ping") -> dict:
    telemetry = create_telemetry(batch_size=1000, hooks=ManualTerminationHooks())
    telemetry.set_server_info("emcy-ping", "0.1.0")

    async def _noop() -> str:
        return "pong"

    await telemetry.trace(tool_name, _noop, TraceOptions(input={"source": "cli"}))
    delivered = await telemetry.flush()
    await telemetry.shutdown()
    return {"tool": tool_name, "delivered": bool(delivered), **telemetry.stats}


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    tool_name = sys.argv[1] if len(sys.argv) > 1 else "emcy_ping"

    try:
        result = asyncio.run(run_ping(tool_name))
    except TelemetryConfigError as exc:
        print(f"Usage: EMCY_API_KEY=... emcy-ping [tool_name]  ({exc})", file=sys.stderr)
        sys.exit(2)

    print(json.dumps(result), flush=True)
    sys.exit(0 if result["delivered"] else 1)


if __name__ == "__main__":
    main()
