import pytest
from scapy.all import IP, UDP, Raw, wrpcap

from tcpextend.core import SegmentRecord

from packets import C_ADDR, c2s, eth, s2c

CLIENT_PORT = 51000
SERVER_PORT = 80


def make_seg(index, src_port=CLIENT_PORT, dst_port=SERVER_PORT, seq=0, length=0, ack=0,
             push=False, window=65535, ip_id=None, ts=None, stream_id=0, acks_index=None, has_ack=True):
    return SegmentRecord(
        stream_id=stream_id,
        src_port=src_port,
        dst_port=dst_port,
        length=length,
        seq=seq,
        ack=ack,
        push=push,
        window=window,
        ip_id=ip_id,
        index=index,
        timestamp=index * 0.01 if ts is None else ts,
        acks_index=acks_index,
        has_ack=has_ack,
    )


def from_server(index, **kw):
    return make_seg(index, src_port=SERVER_PORT, dst_port=CLIENT_PORT, **kw)


@pytest.fixture
def seg():
    return make_seg


@pytest.fixture
def server_seg():
    return from_server


@pytest.fixture
def download():
    """Handshake, a 100 byte request, a 1000 byte response in two segments, one ACK."""
    return [
        make_seg(1, seq=0, ack=0, has_ack=False, window=1000),
        from_server(2, seq=0, ack=1, window=2000),
        make_seg(3, seq=1, ack=1, window=1000, acks_index=2),
        make_seg(4, seq=1, length=100, ack=1, push=True, window=1000),
        from_server(5, seq=1, length=500, ack=101, window=2000, acks_index=4),
        from_server(6, seq=501, length=500, ack=101, push=True, window=2000),
        make_seg(7, seq=101, ack=501, window=1000, acks_index=5),
    ]


@pytest.fixture
def capture(tmp_path):
    """Handshake with window scaling, one UDP frame, request, two-segment response, final ACK."""
    pkts = [
        c2s("S", 1000, 0, 64240, 1, opts=[("WScale", 7)]),
        s2c("SA", 5000, 1001, 65160, 100, opts=[("WScale", 2)]),
        c2s("A", 1001, 5001, 502, 2),
        eth() / IP(src=C_ADDR, dst="10.0.0.53") / UDP(sport=5353, dport=53) / Raw(load=b"q"),
        c2s("PA", 1001, 5001, 502, 3, payload=b"g" * 100),
        s2c("A", 5001, 1101, 509, 101, payload=b"r" * 500),
        s2c("PA", 5501, 1101, 509, 102, payload=b"r" * 500),
        c2s("A", 1101, 6001, 500, 4),
    ]
    for i, p in enumerate(pkts):
        p.time = 1700000000.0 + i * 0.01
    path = tmp_path / "download.pcap"
    wrpcap(str(path), pkts)
    return str(path)
