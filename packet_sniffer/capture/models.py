# packet_sniffer/capture/models.py
# Records that flow from capture callbacks through the bounded queues into the sink.
import base64
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass(frozen=True)
class InterfaceInfo:
    """One capturable device as reported by the capture provider."""
    name: str
    description: str
    index: int
    address: Optional[str] = None


@dataclass(frozen=True)
class InterfaceHandle:
    name: str
    description: str
    index: int
    address: Optional[str] = None

    @classmethod
    def from_info(cls, info: InterfaceInfo, address: Optional[str] = None) -> "InterfaceHandle":
        return cls(name=info.name, description=info.description, index=info.index,
                   address=address or info.address)

    @property
    def label(self) -> str:
        # what goes into records: the bound address if known, else the device name
        return self.address or self.name


@dataclass(frozen=True)
class CapturedFrame:
    timestamp: float
    data: bytes


@dataclass(frozen=True)
class RawPacketRecord:
    timestamp: float
    data: bytes
    length: int
    interface: str
    filter: str

    def to_dict(self) -> dict:
        return {
            "record_type": "raw_packet",
            "timestamp": self.timestamp,
            "interface": self.interface,
            "filter": self.filter,
            "length": self.length,
            "data": base64.b64encode(self.data).decode("ascii"),
        }


@dataclass(frozen=True)
class StatisticsSample:
    """Cumulative counters for one capture session, as delivered by the provider."""
    timestamp: float
    received_packets: int
    received_bytes: int
    dropped_packets: int = 0
    interface_dropped_packets: int = 0


@dataclass(frozen=True)
class StatisticsRecord:
    interface: str
    filter: str
    timestamp: float
    received_packets: int
    received_bytes: int
    dropped_packets: int
    interface_dropped_packets: int

    @classmethod
    def from_sample(cls, sample: StatisticsSample, interface: str, bpf_filter: str) -> "StatisticsRecord":
        return cls(
            interface=interface,
            filter=bpf_filter,
            timestamp=sample.timestamp,
            received_packets=sample.received_packets,
            received_bytes=sample.received_bytes,
            dropped_packets=sample.dropped_packets,
            interface_dropped_packets=sample.interface_dropped_packets,
        )

    def to_dict(self) -> dict:
        return {
            "record_type": "statistics",
            "interface": self.interface,
            "filter": self.filter,
            "timestamp": self.timestamp,
            "received_packets": self.received_packets,
            "received_bytes": self.received_bytes,
            "dropped_packets": self.dropped_packets,
            "interface_dropped_packets": self.interface_dropped_packets,
        }


@dataclass(frozen=True)
class MetricsRecord:
    interface: str
    timestamp: float
    bps: int
    pps: int
    filter: str

    @classmethod
    def between(cls, previous: StatisticsSample, current: StatisticsSample,
                interface: str, bpf_filter: str) -> Optional["MetricsRecord"]:
        """Rates over the window between two consecutive samples, or None for an empty window."""
        elapsed = current.timestamp - previous.timestamp
        if elapsed <= 0:
            return None
        # counters restart when a session is reopened
        delta_bytes = max(0, current.received_bytes - previous.received_bytes)
        delta_packets = max(0, current.received_packets - previous.received_packets)
        return cls(
            interface=interface,
            timestamp=current.timestamp,
            bps=int(delta_bytes * 8 / elapsed),
            pps=int(delta_packets / elapsed),
            filter=bpf_filter,
        )

    def to_dict(self) -> dict:
        return {
            "record_type": "metrics",
            "interface": self.interface,
            "ts": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
            "bps": self.bps,
            "pps": self.pps,
            "filter": self.filter,
        }
