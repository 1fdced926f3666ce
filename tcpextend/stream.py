# tcpextend/stream.py
"""
Capture file -> SegmentRecord adapter built on dpkt.

This plays the role of the upstream dissector: it decodes link/IP/TCP headers,
numbers streams, converts sequence numbers to relative ones, applies window
scaling and resolves which earlier frame an ACK acknowledges. The metric core
only ever sees the resulting records.
"""
from __future__ import annotations

import os
import socket
import struct
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple

import dpkt

from .core import SegmentRecord
from .utils import log

_PCAP_MAGIC = {b"\xd4\xc3\xb2\xa1", b"\xa1\xb2\xc3\xd4", b"\x4d\x3c\xb2\xa1", b"\xa1\xb2\x3c\x4d"}
_PCAPNG_MAGIC = b"\x0a\x0d\x0d\x0a"
_PCAPNG_BT_IDB = 1

_DLT_NULL = {0, 108}
_DLT_EN10MB = 1
_DLT_RAW = {12, 14, 101, 228, 229}
_DLT_LINUX_SLL = 113

_SEQ_MOD = 1 << 32

Endpoint = Tuple[str, int]


def _sniff_kind(path: str) -> str:
    with open(path, "rb") as f:
        head = f.read(4)
    if head in _PCAP_MAGIC:
        return "pcap"
    if head == _PCAPNG_MAGIC:
        return "pcapng"
    raise ValueError(f"Unknown capture format (not pcap/pcapng): {path}")


def _pcapng_linktypes(path: str) -> List[int]:
    """Link type of every interface description block, in file order."""
    out: List[int] = []
    with open(path, "rb") as f:
        file_size = os.fstat(f.fileno()).st_size
        order = "<"
        pos = 0
        while pos + 12 <= file_size:
            f.seek(pos)
            hdr = f.read(12)
            if hdr[:4] == _PCAPNG_MAGIC:
                # a section header fixes the byte order of the blocks that follow
                order = "<" if hdr[8:12] == b"\x4d\x3c\x2b\x1a" else ">"
            blk_type, blk_len = struct.unpack(order + "II", hdr[:8])
            if blk_len < 12:
                log.warning(f"Corrupt pcapng block at {pos} in {path}, stopped scanning interfaces")
                break
            if blk_type == _PCAPNG_BT_IDB:
                out.append(struct.unpack(order + "H", hdr[8:10])[0])
            pos += blk_len
    return out


def stream_capture_frames(path: str) -> Iterator[Tuple[float, bytes, int]]:
    """Yield (ts, frame_bytes, linktype) for every frame of a pcap or pcapng file."""
    kind = _sniff_kind(path)
    with open(path, "rb") as f:
        reader = dpkt.pcap.Reader(f) if kind == "pcap" else dpkt.pcapng.Reader(f)
        linktype = reader.datalink()
        if kind == "pcapng":
            linktypes = _pcapng_linktypes(path)
            if len(set(linktypes)) > 1:
                # dpkt only reports the first interface; other frames are decoded with its link type
                log.warning(f"{path} has interfaces with link types {linktypes}; decoding all frames as {linktype}")
        log.debug(f"Detected {kind} linktype {linktype} for {path}")
        for ts, buf in reader:
            yield float(ts), buf, linktype


def _network_layer(buf: bytes, linktype: int):
    """Best-effort unwrap to a dpkt IP / IP6 object, or None."""
    if linktype == _DLT_EN10MB:
        payload = dpkt.ethernet.Ethernet(buf).data
        if isinstance(payload, dpkt.ethernet.VLANtag8021Q):
            payload = payload.data
    elif linktype == _DLT_LINUX_SLL:
        payload = dpkt.sll.SLL(buf).data
    elif linktype in _DLT_NULL:
        payload = dpkt.loopback.Loopback(buf).data
    elif linktype in _DLT_RAW:
        if not buf:
            return None
        version = buf[0] >> 4
        if version == 4:
            payload = dpkt.ip.IP(buf)
        elif version == 6:
            payload = dpkt.ip6.IP6(buf)
        else:
            return None
    else:
        return None
    if isinstance(payload, (dpkt.ip.IP, dpkt.ip6.IP6)):
        return payload
    return None


def _wscale(tcp: dpkt.tcp.TCP) -> Optional[int]:
    for item in dpkt.tcp.parse_opts(tcp.opts):
        if item is None:  # truncated option list
            break
        opt, data = item
        if opt == dpkt.tcp.TCP_OPT_WSCALE and data:
            return min(data[0], 14)
    return None


@dataclass
class _Flow:
    stream_id: int
    base: Dict[Endpoint, int] = field(default_factory=dict)       # ISN per sender
    syn: Dict[Endpoint, Optional[int]] = field(default_factory=dict)  # wscale offered in SYN (None = not offered)
    unacked: Dict[Endpoint, Dict[int, int]] = field(default_factory=dict)  # sender -> {next rel seq: frame}
    fin: Set[Endpoint] = field(default_factory=set)
    closed: bool = False

    def window_shift(self, ep: Endpoint) -> int:
        if len(self.syn) < 2 or any(v is None for v in self.syn.values()):
            return 0
        return self.syn.get(ep) or 0


class SegmentExtractor:
    """
    Stateful frame decoder. Feed every frame of a capture, in order, to
    extract(); non-TCP frames return None but still consume a frame index.
    """

    def __init__(self, relative_seq: bool = True):
        self.relative_seq = relative_seq
        self._flows: Dict[Tuple[Endpoint, Endpoint], _Flow] = {}
        self._next_stream = 0
        self._t0: Optional[float] = None
        self.skipped = 0

    def _flow_for(self, key, syn_only: bool) -> _Flow:
        flow = self._flows.get(key)
        if flow is None or (syn_only and flow.closed):
            flow = _Flow(stream_id=self._next_stream)
            self._next_stream += 1
            self._flows[key] = flow
        return flow

    def extract(self, index: int, ts: float, buf: bytes, linktype: int = _DLT_EN10MB) -> Optional[SegmentRecord]:
        if self._t0 is None:
            self._t0 = ts
        try:
            ip = _network_layer(buf, linktype)
        except (dpkt.UnpackError, struct.error, ValueError) as e:
            log.debug(f"frame {index}: undecodable ({e}), skipped")
            self.skipped += 1
            return None
        if ip is None:
            return None
        tcp = ip.data
        if not isinstance(tcp, dpkt.tcp.TCP):
            return None

        if isinstance(ip, dpkt.ip.IP):
            src = socket.inet_ntop(socket.AF_INET, ip.src)
            dst = socket.inet_ntop(socket.AF_INET, ip.dst)
            ip_id: Optional[int] = ip.id
        else:
            src = socket.inet_ntop(socket.AF_INET6, ip.src)
            dst = socket.inet_ntop(socket.AF_INET6, ip.dst)
            ip_id = None

        flags = tcp.flags
        is_syn = bool(flags & dpkt.tcp.TH_SYN)
        has_ack = bool(flags & dpkt.tcp.TH_ACK)
        me: Endpoint = (src, tcp.sport)
        peer: Endpoint = (dst, tcp.dport)
        key = (me, peer) if me <= peer else (peer, me)
        flow = self._flow_for(key, syn_only=is_syn and not has_ack)

        if is_syn:
            flow.syn[me] = _wscale(tcp)
            flow.base[me] = tcp.seq
        elif me not in flow.base:
            # mid-stream start: number as if a SYN preceded, data begins at 1
            flow.base[me] = (tcp.seq - 1) % _SEQ_MOD
        if has_ack and peer not in flow.base:
            flow.base[peer] = (tcp.ack - 1) % _SEQ_MOD

        length = len(tcp.data)
        rel_seq = (tcp.seq - flow.base[me]) % _SEQ_MOD
        rel_ack = (tcp.ack - flow.base[peer]) % _SEQ_MOD if has_ack else 0

        # which earlier frame from the peer does this ACK complete
        acks_index = None
        if has_ack:
            pending = flow.unacked.get(peer)
            if pending:
                acks_index = pending.get(rel_ack)
                for k in [k for k in pending if k <= rel_ack]:
                    del pending[k]

        consumed = length + (1 if is_syn else 0) + (1 if flags & dpkt.tcp.TH_FIN else 0)
        if consumed:
            flow.unacked.setdefault(me, {})[rel_seq + consumed] = index

        if flags & dpkt.tcp.TH_FIN:
            flow.fin.add(me)
        if flags & dpkt.tcp.TH_RST or len(flow.fin) == 2:
            flow.closed = True

        window = tcp.win if is_syn else tcp.win << flow.window_shift(me)

        if self.relative_seq:
            seq, ack = rel_seq, rel_ack
        else:
            seq, ack = tcp.seq, (tcp.ack if has_ack else 0)

        return SegmentRecord(
            stream_id=flow.stream_id,
            src_port=tcp.sport,
            dst_port=tcp.dport,
            length=length,
            seq=seq,
            ack=ack,
            push=bool(flags & dpkt.tcp.TH_PUSH),
            window=window,
            ip_id=ip_id,
            index=index,
            timestamp=ts - self._t0,
            acks_index=acks_index,
            has_ack=has_ack,
            src=src,
            dst=dst,
        )


def iter_segments(path: str, relative_seq: bool = True) -> Iterator[SegmentRecord]:
    """Yield a SegmentRecord for every TCP frame in a capture; frames are numbered from 1."""
    ex = SegmentExtractor(relative_seq=relative_seq)
    total = 0
    for index, (ts, buf, linktype) in enumerate(stream_capture_frames(path), start=1):
        total = index
        rec = ex.extract(index, ts, buf, linktype)
        if rec is not None:
            yield rec
    if ex.skipped:
        log.warning(f"Skipped {ex.skipped} undecodable frames of {total} in {path}")
