# packet_sniffer/storage/influx_client.py
# Stream sink backed by InfluxDB.
# Every append becomes one point: tag host = stream key, tag kind = record kind,
# field payload = serialized batch. Points carry strictly increasing nanosecond
# timestamps, so the measurement behaves as an append-only, key-ordered stream.
import threading
from typing import Callable, Optional

from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.write_api import SYNCHRONOUS
from loguru import logger

from ..capture.utils import monotonic_ns_clock
from ..errors import SinkAppendError, SinkConnectionError


class InfluxStorage:
    def __init__(self, client, bucket: str, org: Optional[str] = None, measurement: str = "capture_batches"):
        """
        Wraps an already reachable client. Use InfluxStorage.connect() to get one that
        waits for the server first.

        The write API is SYNCHRONOUS on purpose: a batched/async writer would report
        failures on its own thread, after the caller already dropped the batch.
        """
        self.client = client
        self.bucket = bucket
        self.org = org
        self.measurement = measurement
        self.write_api = client.write_api(write_options=SYNCHRONOUS)
        self._lock = threading.Lock()
        self._clock = monotonic_ns_clock()

    @classmethod
    def connect(cls, url: str, bucket: str, token: Optional[str] = None, org: Optional[str] = None,
                measurement: str = "capture_batches", timeout_ms: int = 10000, retry_delay: float = 10.0,
                stop_event: Optional[threading.Event] = None,
                client_factory: Callable[..., object] = InfluxDBClient) -> Optional["InfluxStorage"]:
        """
        Block until the server answers a ping, retrying with a fixed delay.
        Returns None if stop_event is raised before a connection is made.
        """
        stop_event = stop_event or threading.Event()
        attempt = 0
        while not stop_event.is_set():
            attempt += 1
            client = None
            try:
                client = client_factory(url=url, token=token, org=org, timeout=timeout_ms)
                if client.ping():
                    logger.info("Connected to InfluxDB at {} after {} attempt(s)", url, attempt)
                    return cls(client, bucket=bucket, org=org, measurement=measurement)
                raise SinkConnectionError("InfluxDB did not answer ping", {"url": url})
            except Exception as e:
                if client is not None:
                    client.close()
                # same line every time so a long outage stays greppable, not noisy
                logger.error("No connection to the stream store at {}, retrying in {}s: {}", url, retry_delay, e)
                stop_event.wait(retry_delay)
        logger.warning("Stopped connecting to {} after {} attempt(s)", url, attempt)
        return None

    def append(self, stream_key: str, kind: str, payload: str, count: int = 0) -> None:
        """Append one entry to the stream. Raises SinkAppendError on any client failure."""
        with self._lock:
            p = (Point(self.measurement)
                 .tag("host", stream_key)
                 .tag("kind", kind)
                 .field("payload", payload)
                 .field("records", int(count))
                 .time(self._clock(), WritePrecision.NS))
            try:
                self.write_api.write(bucket=self.bucket, org=self.org, record=p)
            except Exception as e:
                raise SinkAppendError("Append to stream failed",
                                      {"stream": stream_key, "kind": kind, "error": e}) from e
        logger.debug("Appended {} {} record(s) to stream {}", count, kind, stream_key)

    def close(self) -> None:
        try:
            self.write_api.close()
        finally:
            self.client.close()
        logger.info("Closed InfluxDB connection")
