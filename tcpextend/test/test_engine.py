import dataclasses

import pytest

from tcpextend.core import CLIENT, SERVER
from tcpextend.engine import MetricEngine
from tcpextend.state import StreamStateStore


def run(records, store=None):
    engine = MetricEngine(store or StreamStateStore())
    return [engine.process(r) for r in records]


def test_download_flow_metrics(download):
    m = run(download)

    # request: client is the sender
    assert m[3].sender == CLIENT
    assert m[3].bytes_in_flight == 100
    assert m[3].bytes_since_push == 100
    assert m[3].max_sendable == 2000 - 100

    # first response segment
    assert m[4].sender == SERVER
    assert m[4].direction == SERVER
    assert m[4].bytes_in_flight == 500
    assert m[4].bytes_since_push == 500
    assert m[4].max_sendable == 1000 - 500
    assert m[4].ack_size == 100

    # second response segment fills the client's window
    assert m[5].bytes_in_flight == 1000
    assert m[5].bytes_since_push == 1000
    assert m[5].max_sendable == 0

    # client ACK: triple still referenced to the server
    assert m[6].direction == CLIENT
    assert m[6].sender == SERVER
    assert m[6].bytes_in_flight == 500
    assert m[6].bytes_since_push == 0
    assert m[6].max_sendable == 500
    assert m[6].ack_size == 500
    assert m[6].packets_before_ack == 2
    assert m[6].inter_packet_delta == pytest.approx(0.03)


def test_tie_break_favours_server(seg):
    # both directions compute 0 bytes in flight
    m = run([seg(1, seq=0, length=0, ack=1, window=8192)])[0]
    assert m.sender == SERVER
    assert m.bytes_in_flight == 0
    assert m.bytes_since_push == 0
    assert m.max_sendable == 8192


def test_push_boundary_resets_bytes_since_push(seg):
    m = run([
        seg(1, seq=1, length=100, ack=1),
        seg(2, seq=101, length=50, ack=1, push=True),
        seg(3, seq=151, length=200, ack=1),
    ])
    assert [x.sender for x in m] == [CLIENT] * 3
    # the pushing segment still reports the full run
    assert m[1].bytes_since_push == 150
    assert m[2].bytes_since_push == 200


def test_bytes_since_push_ignores_retransmission(seg):
    first = seg(1, seq=900, length=100, ack=1, push=True)
    a = seg(2, seq=1000, length=100, ack=1)
    b = seg(4, seq=1100, length=50, ack=1)

    with_retrans = run([first, a, dataclasses.replace(a, index=3), b])
    without = run([first, a, b])
    assert with_retrans[-1].bytes_since_push == 150
    assert without[-1].bytes_since_push == 150


def test_ack_reference_absent_is_none(seg):
    m = run([seg(1, ack=1), seg(7, ack=1, acks_index=3)])
    assert m[0].packets_before_ack is None
    assert m[1].packets_before_ack == 4


def test_ip_id_increment_first_sighting(seg, server_seg):
    m = run([
        seg(1, ip_id=100),
        server_seg(2, ip_id=7000),
        seg(3, ip_id=101),
        server_seg(4, ip_id=6990),
    ])
    assert m[0].ip_id_increment is None
    assert m[1].ip_id_increment is None
    assert m[2].ip_id_increment == 1
    assert m[3].ip_id_increment == -10
    assert not m[2].possibly_out_of_order
    assert m[3].possibly_out_of_order


def test_ip_id_zero_is_a_real_value(seg):
    m = run([seg(1, ip_id=0), seg(2, ip_id=1)])
    assert m[0].ip_id_increment is None
    assert m[1].ip_id_increment == 1


def test_missing_ip_id_keeps_previous(seg):
    m = run([seg(1, ip_id=10), seg(2, ip_id=None), seg(3, ip_id=13)])
    assert m[1].ip_id_increment is None
    assert m[2].ip_id_increment == 3


def test_delta_is_per_endpoint(seg, server_seg):
    m = run([
        seg(1, ts=0.5),
        server_seg(2, ts=0.6),
        server_seg(3, ts=0.65),
        seg(4, ts=1.0),
    ])
    # first packet of an endpoint is measured from capture start
    assert m[0].inter_packet_delta == pytest.approx(0.5)
    assert m[2].inter_packet_delta == pytest.approx(0.05)
    assert m[3].inter_packet_delta == pytest.approx(0.5)


def test_negative_ack_size_is_reported(seg):
    m = run([seg(1, ack=500), seg(2, ack=300)])
    assert m[1].ack_size == -200


def test_no_ack_flag_leaves_ack_size_absent(seg):
    m = run([seg(1, ack=0, has_ack=False)])[0]
    assert m.ack_size is None
    assert m.inter_packet_delta is not None


def test_unknown_direction_does_not_update(seg):
    store = StreamStateStore()
    engine = MetricEngine(store)
    engine.process(seg(1, seq=1, length=100, ack=1))
    before = store.snapshot()

    m = engine.process(seg(2, src_port=6000, seq=1, length=100, ack=1))
    assert store.snapshot() == before
    assert m.direction is None
    assert m.inter_packet_delta is None
    assert m.ack_size is None
    assert m.ip_id_increment is None
    assert m.bytes_in_flight == 101
    assert m.bytes_since_push == 100


def test_capture_order_is_load_bearing(seg):
    pkts = [
        seg(1, seq=1, length=100, ack=1, ts=0.1),
        seg(2, seq=101, length=100, ack=1, push=True, ts=0.3),
        seg(3, seq=201, length=100, ack=1, ts=0.6),
    ]
    forward = run(pkts)
    reordered = [dataclasses.replace(p, index=i) for i, p in enumerate(reversed(pkts), start=1)]
    backward = list(reversed(run(reordered)))

    assert [m.inter_packet_delta for m in forward] != [m.inter_packet_delta for m in backward]
    assert [m.bytes_since_push for m in forward] != [m.bytes_since_push for m in backward]


def test_streams_are_independent(seg):
    store = StreamStateStore()
    engine = MetricEngine(store)
    engine.process(seg(1, seq=1, length=100, ack=1, stream_id="a"))
    m = engine.process(seg(2, seq=1, length=10, ack=1, stream_id="b"))
    assert m.bytes_in_flight == 11
    assert len(store) == 2
