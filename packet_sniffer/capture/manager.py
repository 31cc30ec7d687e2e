# packet_sniffer/capture/manager.py
import threading
from enum import Enum
from typing import List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from loguru import logger

from ..config_loader import AgentConfig
from ..errors import CaptureError, fail_fast
from .event_queue import RAW_PACKETS_KEY, STATISTICS_KEY, BatchFlusher, BoundedEventQueue
from .interfaces import AddressPoller, InterfaceResolver, PollerState
from .models import InterfaceHandle
from .task import CaptureTask
from .utils import host_identity


class AgentState(Enum):
    INIT = "init"
    RESOLVING_PRIMARY = "resolving_primary_interface"
    CAPTURING_PRIMARY = "capturing_primary"
    WAITING_FOR_SECONDARY = "waiting_for_secondary_address"
    RESOLVING_SECONDARY = "resolving_secondary_interface"
    CAPTURING_BOTH = "capturing_both"
    DRAINING = "draining"
    STOPPED = "stopped"


class CaptureManager:
    """
    High-level capture orchestrator. Resolves the primary adapter, runs one CaptureTask
    per configured filter on it, waits for the secondary (tunnel) address and then
    captures there too. Statistics queues are flushed on a schedule; packet queues
    flush themselves when full. On stop everything still queued is flushed once more.
    """

    def __init__(self, config: AgentConfig, provider, sink, stop_event: Optional[threading.Event] = None,
                 resolver: Optional[InterfaceResolver] = None, scheduler=None, on_failure=fail_fast):
        self.config = config
        self.provider = provider
        self.sink = sink
        self.stop_event = stop_event or threading.Event()
        self.resolver = resolver or InterfaceResolver(provider)
        self.scheduler = scheduler or BackgroundScheduler()
        self.stream_key = host_identity(config.host_id)
        self.flusher = BatchFlusher(sink, self.stream_key, on_failure=on_failure)
        self.state = AgentState.INIT
        self.tasks: List[CaptureTask] = []
        self.packet_queues: List[BoundedEventQueue] = []
        self.statistics_queues: List[BoundedEventQueue] = []
        self.poller: Optional[AddressPoller] = None
        self._poller_thread: Optional[threading.Thread] = None
        self._queues_lock = threading.Lock()

    def _set_state(self, state: AgentState) -> None:
        logger.info("Agent state {} -> {}", self.state.value, state.value)
        self.state = state

    def stop(self) -> None:
        self.stop_event.set()

    def _start_capture(self, handle: InterfaceHandle) -> List[CaptureTask]:
        started = []
        for bpf_filter in self.config.filters:
            label = f"{handle.label}/{bpf_filter}"
            packet_queue = BoundedEventQueue(RAW_PACKETS_KEY, self.config.max_queue_size,
                                             on_overflow=self.flusher.flush, name=f"{RAW_PACKETS_KEY}[{label}]")
            statistics_queue = BoundedEventQueue(STATISTICS_KEY, self.config.max_queue_size,
                                                 on_overflow=self.flusher.flush, name=f"{STATISTICS_KEY}[{label}]")
            with self._queues_lock:
                self.packet_queues.append(packet_queue)
                self.statistics_queues.append(statistics_queue)
            task = CaptureTask(self.provider, handle, bpf_filter, packet_queue, statistics_queue,
                               self.stop_event, poll_interval=self.config.capture_poll_interval_sec)
            self.tasks.append(task)
            task.start()
            started.append(task)
        logger.info("Started {} capture task(s) on {}", len(started), handle.description)
        return started

    def flush_statistics(self) -> int:
        """Scheduled job: ship every statistics queue, empty or not."""
        with self._queues_lock:
            queues = list(self.statistics_queues)
        return self.flusher.flush_all(queues)

    def _start_scheduler(self) -> None:
        self.scheduler.add_job(self.flush_statistics, "interval",
                               seconds=self.config.statistics_flush_interval_sec,
                               id="statistics_flush", max_instances=1, coalesce=True)
        self.scheduler.start()
        logger.info("Statistics flush scheduled every {}s", self.config.statistics_flush_interval_sec)

    def _start_poller(self) -> None:
        self.poller = AddressPoller(self.resolver, self.config.network.virtual_ip_prefix,
                                    self.config.address_poll_interval_sec, self.stop_event)
        self._poller_thread = threading.Thread(target=self.poller.wait, name="address-poller", daemon=True)
        self._poller_thread.start()

    def _check_tasks(self) -> None:
        for task in self.tasks:
            if task.failed:
                raise CaptureError("Capture task failed", {"task": task.name, "error": task.error})

    def run(self) -> AgentState:
        net = self.config.network
        try:
            self._set_state(AgentState.RESOLVING_PRIMARY)
            local_address = self.resolver.address_with_prefix(net.local_ip_prefix) if net.local_ip_prefix else None
            primary = self.resolver.resolve(net.adapter_prefix, address=local_address)

            self._start_scheduler()
            self._set_state(AgentState.CAPTURING_PRIMARY)
            self._start_capture(primary)

            self._set_state(AgentState.WAITING_FOR_SECONDARY)
            self._start_poller()

            while not self.stop_event.wait(self.config.capture_poll_interval_sec):
                self._check_tasks()
                if self.state is AgentState.WAITING_FOR_SECONDARY and self.poller.state is PollerState.RESOLVED:
                    self._set_state(AgentState.RESOLVING_SECONDARY)
                    secondary = self.resolver.resolve(net.virtual_adapter_prefix, address=self.poller.address)
                    self._start_capture(secondary)
                    self._set_state(AgentState.CAPTURING_BOTH)

            if self.state is AgentState.WAITING_FOR_SECONDARY:
                logger.info("Secondary address {}* never appeared, captured the primary adapter only",
                            net.virtual_ip_prefix)
        finally:
            self._drain()
        return self.state

    def _drain(self) -> None:
        self._set_state(AgentState.DRAINING)
        self.stop_event.set()
        join_timeout = self.config.capture_poll_interval_sec + 5
        for task in self.tasks:
            task.join(join_timeout)
            if task.is_alive():
                logger.warning("{} did not stop within {}s", task.name, join_timeout)
        if self._poller_thread:
            self._poller_thread.join(self.config.address_poll_interval_sec + 5)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)

        with self._queues_lock:
            queues = self.packet_queues + self.statistics_queues
        flushed = self.flusher.flush_all(queues, skip_empty=True)
        logger.info("Final flush shipped {} record(s) from {} queue(s)", flushed, len(queues))
        self.sink.close()
        self._set_state(AgentState.STOPPED)
