# tcpextend/annotate.py
"""
Display side of the metrics: field names, flat rows, a text subtree and the
advisory flags attached to suspicious values. Nothing here touches stream state.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from .core import PacketMetrics, SegmentRecord


@dataclass(frozen=True)
class Advisory:
    field: str
    severity: str   # "note" | "warn"
    group: str      # "sequence" ...
    message: str


# (row key, metrics attribute, label), in display order
FIELDS = [
    ("tcpextend.delta", "inter_packet_delta", "Time delta"),
    ("tcpextend.bsp", "bytes_since_push", "Bytes since PSH"),
    ("tcpextend.bif", "bytes_in_flight", "Bytes in Flight"),
    ("tcpextend.max_tx", "max_sendable", "Max tx bytes"),
    ("tcpextend.pba", "packets_before_ack", "Packets before ACK"),
    ("tcpextend.ack_sz", "ack_size", "Size of segment ACKd"),
    ("tcpextend.ip_inc", "ip_id_increment", "IP ID increment"),
]

ROW_PREFIX = ["frame", "time", "stream", "src", "sport", "dst", "dport", "len", "sender"]
ROW_COLUMNS = ROW_PREFIX + [key for key, _attr, _label in FIELDS] + ["flags"]


def advisories(m: PacketMetrics) -> List[Advisory]:
    out: List[Advisory] = []
    if m.possibly_out_of_order:
        # assumes the sender bumps the IP ID by one per packet
        out.append(Advisory("tcpextend.ip_inc", "warn", "sequence", "This packet may be out of order"))
    return out


def to_row(rec: SegmentRecord, m: PacketMetrics) -> Dict[str, Any]:
    """Flat dict for CSV / JSON output. Absent metrics stay None, never 0."""
    row: Dict[str, Any] = {
        "frame": rec.index,
        "time": round(rec.timestamp, 9),
        "stream": rec.stream_id,
        "src": rec.src,
        "sport": rec.src_port,
        "dst": rec.dst,
        "dport": rec.dst_port,
        "len": rec.length,
        "sender": m.sender,
    }
    for key, attr, _label in FIELDS:
        val = getattr(m, attr)
        if attr == "inter_packet_delta" and val is not None:
            val = round(val, 9)
        row[key] = val
    row["flags"] = ";".join(a.message for a in advisories(m)) or None
    return row


def _fmt(attr: str, val) -> str:
    if attr == "inter_packet_delta":
        return f"{val:.9f} seconds"
    return str(val)


def render_tree(rec: SegmentRecord, m: PacketMetrics) -> List[str]:
    """Text rendering of the 'TCP extended info' subtree for one packet."""
    lines = [f"Frame {rec.index}: stream {rec.stream_id} {rec.src_port} -> {rec.dst_port}, len {rec.length}",
             "  TCP extended info"]
    for key, attr, label in FIELDS:
        val = getattr(m, attr)
        if val is None:
            continue
        lines.append(f"    {label}: {_fmt(attr, val)}  [{key}]")
    for a in advisories(m):
        lines.append(f"      [Expert Info ({a.severity.capitalize()}/{a.group.capitalize()}): {a.message}]")
    return lines
