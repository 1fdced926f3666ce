# tcpextend/engine.py
from __future__ import annotations

from .core import CLIENT, SERVER, PacketMetrics, SegmentRecord
from .state import StreamStateStore
from .utils import log


class MetricEngine:
    """
    Per-packet metric computation on top of a StreamStateStore.

    process() mutates the stream state of the packet's sending direction, so it
    must see every packet of a stream exactly once and in capture order. Use
    ResultCache / Session to guarantee that; calling process() directly twice
    for the same packet double-counts.

    All statistics except the ACK related ones (delta, ack_size, ip_id_increment)
    are referenced to the inferred sender and reported on both directions' packets.
    """

    def __init__(self, store: StreamStateStore):
        self.store = store

    def process(self, pkt: SegmentRecord) -> PacketMetrics:
        st = self.store.get_or_init(pkt.stream_id, pkt.src_port, pkt.dst_port)
        last_seq = pkt.last_seq
        direction = st.direction_of(pkt.src_port)

        bsp = {CLIENT: st.client.bytes_since_push, SERVER: st.server.bytes_since_push}
        delta = ack_size = ip_inc = None

        if direction is None:
            log.debug(
                f"stream {pkt.stream_id!r}: port {pkt.src_port} matches neither "
                f"{st.client_port} nor {st.server_port}, packet {pkt.index} not attributed"
            )
        else:
            d = st.side(direction)
            delta = pkt.timestamp - d.last_time

            # from sequence numbers rather than summed lengths, so
            # retransmitted or reordered segments do not inflate it
            bsp[direction] = last_seq - d.push_boundary_seq
            if pkt.push:
                d.bytes_since_push = 0
                d.push_boundary_seq = last_seq
            else:
                d.bytes_since_push = bsp[direction]

            if pkt.has_ack:
                ack_size = pkt.ack - d.last_ack

            if pkt.ip_id is not None:
                if d.last_ip_id is not None:
                    ip_inc = pkt.ip_id - d.last_ip_id
                d.last_ip_id = pkt.ip_id

            d.last_time = pkt.timestamp
            d.last_seq_high = last_seq
            d.last_ack = pkt.ack
            d.window = pkt.window
            d.packets += 1

        c, s = st.client, st.server
        client_bif = c.last_seq_high - s.last_ack + 1
        server_bif = s.last_seq_high - c.last_ack + 1
        # receiver's advertised window minus what the sender still has outstanding
        client_room = s.window - client_bif
        server_room = c.window - server_bif

        # '>=' favours the server (download) when both are equal, e.g. at stream start
        if server_bif >= client_bif:
            sender, bif, room = SERVER, server_bif, server_room
        else:
            sender, bif, room = CLIENT, client_bif, client_room

        pba = None
        if pkt.acks_index is not None:
            # counts every packet index in between, not only this stream's segments
            pba = pkt.index - pkt.acks_index

        return PacketMetrics(
            bytes_in_flight=bif,
            max_sendable=room,
            bytes_since_push=bsp[sender],
            packets_before_ack=pba,
            inter_packet_delta=delta,
            ack_size=ack_size,
            ip_id_increment=ip_inc,
            sender=sender,
            direction=direction,
        )
