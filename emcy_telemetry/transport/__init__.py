from emcy_telemetry.transport.interface import Transport
from emcy_telemetry.transport.http import HttpTransport
from emcy_telemetry.transport.jsonl import JSONLTransport
from emcy_telemetry.transport.memory import MemoryTransport

__all__ = ["HttpTransport", "JSONLTransport", "MemoryTransport", "Transport"]
