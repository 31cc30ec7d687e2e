# packet_sniffer/tests/test_models.py
import json

from packet_sniffer.capture.models import MetricsRecord, RawPacketRecord, StatisticsRecord, StatisticsSample
from packet_sniffer.capture.utils import monotonic_ns_clock, serialize_batch


def test_metrics_between_two_samples():
    prev = StatisticsSample(timestamp=100.0, received_packets=10, received_bytes=1_000)
    cur = StatisticsSample(timestamp=100.5, received_packets=60, received_bytes=6_000)
    m = MetricsRecord.between(prev, cur, "10.8.0.2", "udp")
    assert (m.bps, m.pps) == (80_000, 100)
    assert m.timestamp == 100.5
    assert m.to_dict()["ts"].startswith("1970-01-01T00:01:40.5")


def test_metrics_need_elapsed_time():
    s = StatisticsSample(timestamp=5.0, received_packets=1, received_bytes=1)
    assert MetricsRecord.between(s, s, "eth0", "tcp") is None


def test_metrics_clamp_counter_reset():
    prev = StatisticsSample(timestamp=1.0, received_packets=500, received_bytes=50_000)
    cur = StatisticsSample(timestamp=2.0, received_packets=3, received_bytes=300)
    m = MetricsRecord.between(prev, cur, "eth0", "tcp")
    assert (m.bps, m.pps) == (0, 0)


def test_serialized_batch_is_self_describing():
    batch = [
        RawPacketRecord(timestamp=1.0, data=b"hi", length=2, interface="eth0", filter="tcp"),
        StatisticsRecord.from_sample(StatisticsSample(2.0, 5, 500, 1, 0), "eth0", "tcp"),
    ]
    decoded = json.loads(serialize_batch(batch))
    assert [d["record_type"] for d in decoded] == ["raw_packet", "statistics"]
    assert decoded[0]["data"] == "aGk="
    assert decoded[1]["dropped_packets"] == 1


def test_clock_is_strictly_increasing():
    now = monotonic_ns_clock()
    stamps = [now() for _ in range(1000)]
    assert all(b > a for a, b in zip(stamps, stamps[1:]))
