# packet_sniffer/capture/event_queue.py
# Bounded per-task queues and the flush path that ships them to the stream sink.
#
# Overflow ordering: when a put finds the queue full, the queue is flushed first and the
# triggering record is enqueued afterwards, so it opens the next batch. With max_size=3,
# putting A, B, C, D appends the batch [A, B, C] and leaves [D] queued.
import threading
from typing import Callable, List, Optional

from loguru import logger

from ..errors import PacketSnifferError, fail_fast
from .utils import serialize_batch

RAW_PACKETS_KEY = "raw_packets"
STATISTICS_KEY = "statistics"


class BoundedEventQueue:
    """
    Insertion-ordered buffer with a hard capacity.

    Producers are serialized among themselves, so len(queue) never exceeds max_size.
    detach() is the only way records leave the queue: it swaps in a fresh list under
    the lock, so a record lands in exactly one batch.
    """

    def __init__(self, kind: str, max_size: int, on_overflow: Optional[Callable[["BoundedEventQueue"], int]] = None,
                 name: Optional[str] = None):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.kind = kind
        self.max_size = max_size
        self.name = name or kind
        self.on_overflow = on_overflow
        self._items: List = []
        self._lock = threading.Lock()
        self._put_lock = threading.Lock()
        # held across detach + append so batches of one queue reach the sink in order
        self.flush_lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def snapshot(self) -> list:
        with self._lock:
            return list(self._items)

    def put(self, record) -> bool:
        """Enqueue a record. Returns True when the put had to flush the queue first."""
        with self._put_lock:
            with self._lock:
                if len(self._items) < self.max_size:
                    self._items.append(record)
                    return False
            if self.on_overflow is None:
                raise RuntimeError(f"queue {self.name} is full and has no overflow handler")
            logger.debug("Queue {} reached {} records, flushing before enqueue", self.name, self.max_size)
            # blocks the producer until the batch is in the sink
            self.on_overflow(self)
            with self._lock:
                self._items.append(record)
            return True

    def detach(self) -> list:
        with self._lock:
            batch, self._items = self._items, []
        return batch


class BatchFlusher:
    """
    Serializes a detached batch and appends it to the sink under the host's stream key.

    Append failures are fatal: on_failure defaults to fail_fast, which logs and exits
    the process rather than keep running with a hole in the stream.
    """

    def __init__(self, sink, stream_key: str, on_failure: Callable[..., None] = fail_fast):
        self.sink = sink
        self.stream_key = stream_key
        self.on_failure = on_failure

    def flush(self, queue: BoundedEventQueue, skip_empty: bool = False) -> int:
        with queue.flush_lock:
            batch = queue.detach()
            if skip_empty and not batch:
                return 0
            payload = serialize_batch(batch)
            try:
                self.sink.append(self.stream_key, queue.kind, payload, len(batch))
            except PacketSnifferError as e:
                self.on_failure("Failed to append {} records from {} to stream {}: {}",
                                len(batch), queue.name, self.stream_key, e)
                return 0
            logger.debug("Flushed {} records from {} to stream {}", len(batch), queue.name, self.stream_key)
            return len(batch)

    def flush_all(self, queues, skip_empty: bool = False) -> int:
        return sum(self.flush(q, skip_empty=skip_empty) for q in queues)
