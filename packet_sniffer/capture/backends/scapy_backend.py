# packet_sniffer/capture/backends/scapy_backend.py
from scapy.all import AsyncSniffer, conf
from typing import Callable, List, Optional
from loguru import logger
import threading
import time

import psutil

from ...errors import CaptureError, ConfigError
from ..models import CapturedFrame, InterfaceHandle, InterfaceInfo, StatisticsSample


STOP_GRACE_SEC = 2.0


class _SnifferSession:
    """
    Shared lifecycle for sessions driven by a Scapy AsyncSniffer.
    Callbacks must be registered before start_capture(); delivery happens on the sniffer thread.
    """

    def __init__(self, handle: InterfaceHandle, bpf_filter: Optional[str]):
        self.handle = handle
        self.filter = bpf_filter
        self._lock = threading.Lock()
        self._sniffer: Optional[AsyncSniffer] = None
        self._closed = False

    def _packet_handler(self, pkt) -> None:
        raise NotImplementedError

    def start_capture(self) -> None:
        with self._lock:
            if self._closed:
                raise CaptureError("Session already closed", {"interface": self.handle.name})
            if self._sniffer is not None:
                return
            logger.info("Starting sniffer on iface={} filter={}", self.handle.name, self.filter)
            try:
                self._sniffer = AsyncSniffer(iface=self.handle.name, filter=self.filter,
                                             prn=self._packet_handler, store=False)
                self._sniffer.start()
            except Exception as e:
                self._sniffer = None
                raise CaptureError("Failed to start capture",
                                   {"interface": self.handle.name, "filter": self.filter, "error": e}) from e

    def is_running(self) -> bool:
        sniffer = self._sniffer
        return sniffer is not None and sniffer.thread is not None and sniffer.thread.is_alive()

    def stop_capture(self) -> None:
        with self._lock:
            sniffer, self._sniffer = self._sniffer, None
        if sniffer is None:
            return
        # AsyncSniffer only flips `running` once its sockets are open; stop() refuses before that
        thread = sniffer.thread
        deadline = time.monotonic() + STOP_GRACE_SEC
        while not sniffer.running and thread is not None and thread.is_alive() and time.monotonic() < deadline:
            time.sleep(0.01)
        if sniffer.running:
            sniffer.stop()
        elif thread is not None and thread.is_alive():
            logger.warning("Sniffer on iface={} filter={} never came up, leaving its thread behind",
                           self.handle.name, self.filter)
            return
        logger.info("Stopped sniffer on iface={} filter={}", self.handle.name, self.filter)

    def close(self) -> None:
        if self._closed:
            return
        self.stop_capture()
        self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class ScapyCaptureSession(_SnifferSession):
    """Delivers every captured frame to the registered packet callbacks."""

    def __init__(self, handle: InterfaceHandle, bpf_filter: Optional[str]):
        super().__init__(handle, bpf_filter)
        self._callbacks: List[Callable[[CapturedFrame], None]] = []

    def on_packet(self, callback: Callable[[CapturedFrame], None]) -> None:
        self._callbacks.append(callback)

    def _packet_handler(self, pkt) -> None:
        frame = CapturedFrame(timestamp=float(pkt.time), data=bytes(pkt))
        for cb in self._callbacks:
            cb(frame)


def interface_drop_counters(name: str):
    """(dropped on receive, receive errors) for a NIC, as the OS reports them."""
    counters = psutil.net_io_counters(pernic=True).get(name)
    if counters is None:
        return 0, 0
    return counters.dropin, counters.errin


class ScapyStatisticsSession(_SnifferSession):
    """
    Counts packets/bytes matching the filter and emits cumulative StatisticsSample
    objects every `interval` seconds from a sampler thread.
    """

    def __init__(self, handle: InterfaceHandle, bpf_filter: Optional[str], interval: float = 1.0,
                 drop_counters: Callable[[str], tuple] = interface_drop_counters):
        super().__init__(handle, bpf_filter)
        self.interval = interval
        self._drop_counters = drop_counters
        self._callbacks: List[Callable[[StatisticsSample], None]] = []
        self._count_lock = threading.Lock()
        self._packets = 0
        self._bytes = 0
        self._drop_baseline = (0, 0)
        self._stop = threading.Event()
        self._sampler: Optional[threading.Thread] = None

    def on_statistics(self, callback: Callable[[StatisticsSample], None]) -> None:
        self._callbacks.append(callback)

    def _packet_handler(self, pkt) -> None:
        with self._count_lock:
            self._packets += 1
            self._bytes += len(pkt)

    def sample(self) -> StatisticsSample:
        with self._count_lock:
            packets, nbytes = self._packets, self._bytes
        dropped, errors = self._drop_counters(self.handle.name)
        return StatisticsSample(
            timestamp=time.time(),
            received_packets=packets,
            received_bytes=nbytes,
            dropped_packets=max(0, dropped - self._drop_baseline[0]),
            interface_dropped_packets=max(0, errors - self._drop_baseline[1]),
        )

    def _sample_loop(self) -> None:
        while not self._stop.wait(self.interval):
            s = self.sample()
            for cb in self._callbacks:
                cb(s)

    def start_capture(self) -> None:
        self._drop_baseline = self._drop_counters(self.handle.name)
        super().start_capture()
        self._stop.clear()
        self._sampler = threading.Thread(target=self._sample_loop, daemon=True,
                                         name=f"stats-{self.handle.name}-{self.filter}")
        self._sampler.start()

    def stop_capture(self) -> None:
        self._stop.set()
        if self._sampler:
            self._sampler.join(timeout=self.interval + 1)
            self._sampler = None
        super().stop_capture()


class ScapyBackend:
    """Capture provider built on Scapy's interface table and AsyncSniffer."""

    name = "scapy"

    def __init__(self, statistics_interval: float = 1.0):
        self.statistics_interval = statistics_interval

    def list_interfaces(self) -> List[InterfaceInfo]:
        interfaces = []
        for iface in conf.ifaces.values():
            ip = getattr(iface, "ip", None)
            interfaces.append(InterfaceInfo(
                name=iface.name,
                description=iface.description or iface.name,
                index=iface.index,
                address=ip if ip and ip != "0.0.0.0" else None,
            ))
        return sorted(interfaces, key=lambda i: i.index)

    def open(self, handle: InterfaceHandle, bpf_filter: Optional[str]) -> ScapyCaptureSession:
        return ScapyCaptureSession(handle, bpf_filter)

    def open_statistics(self, handle: InterfaceHandle, bpf_filter: Optional[str]) -> ScapyStatisticsSession:
        return ScapyStatisticsSession(handle, bpf_filter, interval=self.statistics_interval)


def create_backend(name: str, statistics_interval: float = 1.0):
    if name == "scapy":
        return ScapyBackend(statistics_interval=statistics_interval)
    raise ConfigError("Unsupported capture backend", {"backend": name})
