# packet_sniffer/capture/utils.py
import json
import socket
import time
from typing import Iterable, Optional


def host_identity(override: Optional[str] = None) -> str:
    """Stable name keying every record this agent writes to the shared store."""
    return override or socket.gethostname()


def serialize_batch(records: Iterable) -> str:
    return json.dumps([r.to_dict() for r in records], separators=(",", ":"))


def monotonic_ns_clock():
    """
    Returns a callable producing strictly increasing epoch nanoseconds.
    Two appends inside the same clock tick still get distinct, ordered keys.
    """
    last = [0]

    def now_ns() -> int:
        ts = time.time_ns()
        if ts <= last[0]:
            ts = last[0] + 1
        last[0] = ts
        return ts

    return now_ns
