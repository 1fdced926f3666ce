# tcpextend/session.py
from __future__ import annotations
from typing import Iterable, Iterator, Optional, Tuple

from .cache import ResultCache
from .core import PacketMetrics, SegmentRecord
from .engine import MetricEngine
from .state import StreamStateStore
from .utils import log


class Session:
    """
    Owns the state of one analysis pass: stream store, engine and result cache.
    Lifecycle: create -> get_or_compute()* -> reset() (new capture) or drop.

    Packets must arrive in ascending index order the first time they are seen.
    Asking again for an already computed index is always fine.
    """

    def __init__(self, roles=None):
        self.store = StreamStateStore(roles=roles)
        self.engine = MetricEngine(self.store)
        self.cache = ResultCache(self.engine)
        self._high_index: Optional[int] = None

    def get_or_compute(self, packet_index: int, packet: SegmentRecord) -> PacketMetrics:
        if packet_index not in self.cache:
            if self._high_index is not None and packet_index <= self._high_index:
                raise RuntimeError(
                    f"Packet {packet_index} arrives after {self._high_index}; "
                    "call reset() before re-analysing in a different order."
                )
            m = self.cache.get_or_compute(packet_index, packet)
            self._high_index = packet_index
            return m
        return self.cache.get_or_compute(packet_index, packet)

    def process(self, packet: SegmentRecord) -> PacketMetrics:
        return self.get_or_compute(packet.index, packet)

    def process_all(self, records: Iterable[SegmentRecord]) -> Iterator[Tuple[SegmentRecord, PacketMetrics]]:
        for rec in records:
            yield rec, self.process(rec)

    def metrics_for(self, packet_index: int) -> Optional[PacketMetrics]:
        return self.cache.get(packet_index)

    def reset(self) -> None:
        """Clear stream state and cached results together."""
        log.debug(f"session reset: {len(self.store)} streams, {len(self.cache)} cached packets dropped")
        self.store.reset()
        self.cache.clear()
        self._high_index = None
