# tcpextend/core.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Hashable, Optional

CLIENT = "client"
SERVER = "server"


@dataclass(frozen=True)
class SegmentRecord:
    """
    One already-dissected TCP segment, as handed over by the capture adapter
    (or any other producer). Fields are plain values; no parsing happens here.
    """
    stream_id: Hashable
    src_port: int
    dst_port: int
    length: int
    seq: int
    ack: int
    push: bool
    window: int
    ip_id: Optional[int]
    index: int          # capture order index
    timestamp: float    # seconds since capture start
    acks_index: Optional[int] = None  # index of the packet this ACK acknowledges
    has_ack: bool = True
    src: Optional[str] = None
    dst: Optional[str] = None

    @property
    def last_seq(self) -> int:
        # last byte covered by this segment
        return self.seq + self.length - 1


@dataclass(frozen=True)
class PacketMetrics:
    bytes_in_flight: int
    max_sendable: int
    bytes_since_push: int
    packets_before_ack: Optional[int] = None
    inter_packet_delta: Optional[float] = None
    ack_size: Optional[int] = None
    ip_id_increment: Optional[int] = None
    sender: str = SERVER
    direction: Optional[str] = None

    @property
    def possibly_out_of_order(self) -> bool:
        inc = self.ip_id_increment
        return inc is not None and (inc > 1 or inc < 0)
