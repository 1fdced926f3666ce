# tcpextend/state.py
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterable, Mapping, Optional, Tuple

from .core import CLIENT, SERVER


@dataclass
class DirectionState:
    """Running values for one direction of a stream (client->server or server->client)."""
    last_time: float = 0.0
    window: int = 0
    bytes_since_push: int = 0
    push_boundary_seq: int = 0
    last_ack: int = 0
    last_seq_high: int = 0
    last_ip_id: Optional[int] = None  # None until a packet with an IP ID was seen
    packets: int = 0


@dataclass
class StreamState:
    client_port: int
    server_port: int
    client: DirectionState = field(default_factory=DirectionState)
    server: DirectionState = field(default_factory=DirectionState)

    def direction_of(self, src_port: int) -> Optional[str]:
        # server checked first: a stream between two equal ports counts as server traffic
        if src_port == self.server_port:
            return SERVER
        if src_port == self.client_port:
            return CLIENT
        return None

    def side(self, direction: str) -> DirectionState:
        return self.server if direction == SERVER else self.client


# ---- role strategies ----
# A strategy maps the first observed (stream_id, src_port, dst_port) to (client_port, server_port).

class FirstSeenRoles:
    """The endpoint that sent the first packet we see is assumed to be the client."""

    def __call__(self, stream_id: Hashable, src_port: int, dst_port: int) -> Tuple[int, int]:
        return src_port, dst_port


class PortHeuristicRoles:
    """
    Server is the side using a known server port; otherwise the lower port number.
    Equal ports fall back to first-seen.
    """

    def __init__(self, server_ports: Optional[Iterable[int]] = None):
        self.server_ports = set(int(p) for p in (server_ports or []))

    def __call__(self, stream_id: Hashable, src_port: int, dst_port: int) -> Tuple[int, int]:
        if self.server_ports:
            if dst_port in self.server_ports and src_port not in self.server_ports:
                return src_port, dst_port
            if src_port in self.server_ports and dst_port not in self.server_ports:
                return dst_port, src_port
        if src_port < dst_port:
            return dst_port, src_port
        return src_port, dst_port


class ExplicitRoles:
    """Caller-provided client port per stream id; unknown streams fall back to first-seen."""

    def __init__(self, client_ports: Mapping[Hashable, int]):
        self.client_ports = dict(client_ports)

    def __call__(self, stream_id: Hashable, src_port: int, dst_port: int) -> Tuple[int, int]:
        cp = self.client_ports.get(stream_id)
        if cp is not None and int(cp) == dst_port:
            return dst_port, src_port
        return src_port, dst_port


class StreamStateStore:
    """
    stream_id -> StreamState. Entries live until reset(); there is no per-stream delete.
    """

    def __init__(self, roles=None):
        self.roles = roles or FirstSeenRoles()
        self._streams: Dict[Hashable, StreamState] = {}

    def get_or_init(self, stream_id: Hashable, src_port: int, dst_port: int) -> StreamState:
        st = self._streams.get(stream_id)
        if st is None:
            client_port, server_port = self.roles(stream_id, src_port, dst_port)
            st = StreamState(client_port=client_port, server_port=server_port)
            self._streams[stream_id] = st
        return st

    def get(self, stream_id: Hashable) -> Optional[StreamState]:
        return self._streams.get(stream_id)

    def reset(self) -> None:
        self._streams.clear()

    def snapshot(self) -> Dict[Hashable, dict]:
        """Plain-data deep copy of every stream, for comparisons and debugging."""
        return {sid: dataclasses.asdict(st) for sid, st in self._streams.items()}

    def __contains__(self, stream_id: Hashable) -> bool:
        return stream_id in self._streams

    def __len__(self) -> int:
        return len(self._streams)
