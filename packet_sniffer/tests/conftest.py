# packet_sniffer/tests/conftest.py
# Fakes for the capture provider, the stream sink and the scheduler, so the pipeline
# runs in-process without privileges, interfaces or an InfluxDB server.
import json
import threading

import pytest

from packet_sniffer.capture.models import InterfaceInfo
from packet_sniffer.config_loader import AgentConfig, InfluxSettings, NetworkSettings
from packet_sniffer.errors import CaptureError, SinkAppendError


class FakeSink:
    def __init__(self, fail=False):
        self.fail = fail
        self.appends = []
        self.closed = False
        self._lock = threading.Lock()

    def append(self, stream_key, kind, payload, count=0):
        if self.fail:
            raise SinkAppendError("store unavailable")
        with self._lock:
            self.appends.append((stream_key, kind, json.loads(payload), count))

    def close(self):
        self.closed = True

    def batches(self, kind):
        with self._lock:
            return [batch for _, k, batch, _ in self.appends if k == kind]

    def records(self, kind):
        return [r for batch in self.batches(kind) for r in batch]


class FakeSession:
    def __init__(self, handle, bpf_filter, calls, fail_on_start=False):
        self.handle = handle
        self.filter = bpf_filter
        self.calls = calls
        self.fail_on_start = fail_on_start
        self.packet_callbacks = []
        self.statistics_callbacks = []
        self.running = False
        self.closed = False

    def on_packet(self, callback):
        self.calls.append("on_packet")
        self.packet_callbacks.append(callback)

    def on_statistics(self, callback):
        self.calls.append("on_statistics")
        self.statistics_callbacks.append(callback)

    def start_capture(self):
        if self.fail_on_start:
            raise CaptureError("device busy", {"interface": self.handle.name})
        self.calls.append("start_capture")
        self.running = True

    def is_running(self):
        return self.running

    def stop_capture(self):
        self.calls.append("stop_capture")
        self.running = False

    def close(self):
        self.calls.append("close")
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def emit_packet(self, frame):
        for cb in self.packet_callbacks:
            cb(frame)

    def emit_statistics(self, sample):
        for cb in self.statistics_callbacks:
            cb(sample)


class FakeProvider:
    def __init__(self, interfaces, fail_on_start=False):
        self.interfaces = list(interfaces)
        self.fail_on_start = fail_on_start
        self.calls = []
        self.sessions = []
        self.statistics_sessions = []
        self._lock = threading.Lock()

    def list_interfaces(self):
        return list(self.interfaces)

    def open(self, handle, bpf_filter):
        session = FakeSession(handle, bpf_filter, self.calls, self.fail_on_start)
        with self._lock:
            self.sessions.append(session)
        return session

    def open_statistics(self, handle, bpf_filter):
        session = FakeSession(handle, bpf_filter, self.calls, self.fail_on_start)
        with self._lock:
            self.statistics_sessions.append(session)
        return session


class FakeScheduler:
    def __init__(self):
        self.jobs = []
        self.running = False

    def add_job(self, func, trigger, **kwargs):
        self.jobs.append((func, trigger, kwargs))

    def start(self):
        self.running = True

    def shutdown(self, wait=True):
        self.running = False


@pytest.fixture
def interfaces():
    return [
        InterfaceInfo(name="lo", description="Loopback Interface", index=1, address="127.0.0.1"),
        InterfaceInfo(name="eth0", description="Intel(R) Ethernet Connection", index=2, address="192.168.1.20"),
        InterfaceInfo(name="wg0", description="WireGuard Tunnel", index=3),
    ]


@pytest.fixture
def provider(interfaces):
    return FakeProvider(interfaces)


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def failing_sink():
    return FakeSink(fail=True)


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def make_provider():
    return FakeProvider


@pytest.fixture
def agent_config():
    return AgentConfig(
        influx=InfluxSettings(url="http://localhost:8086", bucket="packet_streams", org="networkorg"),
        network=NetworkSettings(
            adapter_prefix="Ethernet",
            virtual_adapter_prefix="WireGuard",
            virtual_ip_prefix="10.8.",
            local_ip_prefix="192.168.",
        ),
        filters=["tcp", "udp"],
        max_queue_size=3,
        host_id="sensor-01",
        capture_poll_interval_sec=0.01,
        address_poll_interval_sec=0.01,
        statistics_flush_interval_sec=0.05,
        statistics_sample_interval_sec=0.01,
        sink_retry_delay_sec=0.01,
    )
