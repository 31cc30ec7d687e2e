# packet_sniffer/tests/test_influx_client.py
import threading
from unittest.mock import MagicMock

import pytest

from packet_sniffer.errors import SinkAppendError
from packet_sniffer.storage.influx_client import InfluxStorage


def client_with_pings(*results):
    clients = []

    def factory(**kwargs):
        client = MagicMock(name=f"client{len(clients)}")
        client.ping.return_value = results[len(clients)]
        client.kwargs = kwargs
        clients.append(client)
        return client

    return factory, clients


class RecordingEvent(threading.Event):
    """Event whose waits return immediately and are remembered."""

    def __init__(self):
        super().__init__()
        self.waits = []

    def wait(self, timeout=None):
        self.waits.append(timeout)
        return self.is_set()


class TestConnect:
    def test_retries_until_third_attempt_succeeds(self):
        factory, clients = client_with_pings(False, False, True)
        stop = RecordingEvent()

        storage = InfluxStorage.connect(url="http://influx:8086", bucket="b", token="t", org="o",
                                        retry_delay=10, stop_event=stop, client_factory=factory)

        assert stop.waits == [10, 10]
        assert len(clients) == 3
        assert storage.client is clients[2]
        clients[0].close.assert_called_once()
        clients[1].close.assert_called_once()
        clients[2].close.assert_not_called()

    def test_client_construction_errors_are_retried(self):
        attempts = []

        def factory(**kwargs):
            attempts.append(kwargs)
            if len(attempts) == 1:
                raise OSError("connection refused")
            client = MagicMock()
            client.ping.return_value = True
            return client

        stop = RecordingEvent()
        InfluxStorage.connect(url="http://influx:8086", bucket="b", retry_delay=3,
                              stop_event=stop, client_factory=factory)
        assert stop.waits == [3]
        assert attempts[0]["url"] == "http://influx:8086"

    def test_stop_requested_before_connecting_makes_no_attempt(self):
        factory = MagicMock(side_effect=OSError("connection refused"))
        stop = RecordingEvent()
        stop.set()

        assert InfluxStorage.connect(url="http://influx:8086", bucket="b",
                                     stop_event=stop, client_factory=factory) is None
        factory.assert_not_called()

    def test_stop_during_outage_ends_retry_loop(self):
        stop = RecordingEvent()
        attempts = []

        def factory(**kwargs):
            attempts.append(kwargs)
            stop.set()  # shutdown signal arrives while the server is down
            raise OSError("connection refused")

        assert InfluxStorage.connect(url="http://influx:8086", bucket="b", retry_delay=10,
                                     stop_event=stop, client_factory=factory) is None
        assert len(attempts) == 1
        assert stop.waits == [10]


class TestAppend:
    def test_append_writes_one_point_tagged_with_host_and_kind(self):
        client = MagicMock()
        storage = InfluxStorage(client, bucket="packet_streams", org="networkorg")

        storage.append("sensor-01", "raw_packets", '[{"a":1}]', 1)

        write = storage.write_api.write
        write.assert_called_once()
        kwargs = write.call_args.kwargs
        assert kwargs["bucket"] == "packet_streams"
        assert kwargs["org"] == "networkorg"
        line = kwargs["record"].to_line_protocol()
        assert line.startswith("capture_batches,host=sensor-01,kind=raw_packets ")
        assert "records=1i" in line

    def test_consecutive_appends_get_increasing_timestamps(self):
        client = MagicMock()
        storage = InfluxStorage(client, bucket="b")
        storage.append("h", "statistics", "[]", 0)
        storage.append("h", "statistics", "[]", 0)

        lines = [c.kwargs["record"].to_line_protocol() for c in storage.write_api.write.call_args_list]
        first, second = (int(line.rsplit(" ", 1)[1]) for line in lines)
        assert second > first

    def test_client_errors_become_sink_append_error(self):
        client = MagicMock()
        storage = InfluxStorage(client, bucket="b")
        storage.write_api.write.side_effect = OSError("broken pipe")

        with pytest.raises(SinkAppendError):
            storage.append("h", "raw_packets", "[]", 0)

    def test_close_closes_write_api_and_client(self):
        client = MagicMock()
        storage = InfluxStorage(client, bucket="b")
        storage.close()
        storage.write_api.close.assert_called_once()
        client.close.assert_called_once()
