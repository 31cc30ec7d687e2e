# packet_sniffer/capture/task.py
# One capture session pair (packets + statistics) on one interface with one filter.
import threading
from contextlib import ExitStack
from typing import Optional

from loguru import logger

from ..errors import CaptureError
from .event_queue import BoundedEventQueue
from .models import CapturedFrame, InterfaceHandle, MetricsRecord, RawPacketRecord, StatisticsRecord, StatisticsSample


class CaptureTask:
    """
    Owns the capture sessions for (interface, filter) from open to close and is the
    only producer for its packet queue and statistics queue.

    run() blocks, checking the stop event every poll_interval seconds; sessions are
    stopped and released on every exit path.
    """

    def __init__(self, provider, handle: InterfaceHandle, bpf_filter: str,
                 packet_queue: BoundedEventQueue, statistics_queue: BoundedEventQueue,
                 stop_event: threading.Event, poll_interval: float = 2.0):
        self.provider = provider
        self.handle = handle
        self.filter = bpf_filter
        self.packet_queue = packet_queue
        self.statistics_queue = statistics_queue
        self.stop_event = stop_event
        self.poll_interval = poll_interval
        self.error: Optional[BaseException] = None
        self.started = threading.Event()
        self._previous_sample: Optional[StatisticsSample] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def name(self) -> str:
        return f"capture[{self.handle.label}/{self.filter}]"

    @property
    def failed(self) -> bool:
        return self.error is not None

    def _on_packet(self, frame: CapturedFrame) -> None:
        self.packet_queue.put(RawPacketRecord(
            timestamp=frame.timestamp,
            data=frame.data,
            length=len(frame.data),
            interface=self.handle.label,
            filter=self.filter,
        ))

    def _on_statistics(self, sample: StatisticsSample) -> None:
        self.statistics_queue.put(StatisticsRecord.from_sample(sample, self.handle.label, self.filter))
        previous, self._previous_sample = self._previous_sample, sample
        if previous is not None:
            metrics = MetricsRecord.between(previous, sample, self.handle.label, self.filter)
            if metrics is not None:
                self.statistics_queue.put(metrics)

    def run(self) -> None:
        try:
            with ExitStack() as stack:
                statistics_session = stack.enter_context(self.provider.open_statistics(self.handle, self.filter))
                packet_session = stack.enter_context(self.provider.open(self.handle, self.filter))

                # register before starting, or the first deliveries can be missed
                statistics_session.on_statistics(self._on_statistics)
                packet_session.on_packet(self._on_packet)

                statistics_session.start_capture()
                stack.callback(statistics_session.stop_capture)
                packet_session.start_capture()
                stack.callback(packet_session.stop_capture)
                self.started.set()
                logger.info("{} started", self.name)

                while not self.stop_event.wait(self.poll_interval):
                    if not (packet_session.is_running() and statistics_session.is_running()):
                        raise CaptureError("Capture session stopped unexpectedly",
                                           {"interface": self.handle.name, "filter": self.filter})
            logger.info("{} stopped", self.name)
        except Exception as e:
            self.error = e
            logger.exception("{} failed on adapter {}: {}", self.name, self.handle.description, e)
        finally:
            self.started.set()

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, name=self.name, daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
