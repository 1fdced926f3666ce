# tcpextend/cache.py
from __future__ import annotations
from typing import Dict, Optional

from .core import PacketMetrics, SegmentRecord
from .engine import MetricEngine


class ResultCache:
    """
    packet index -> PacketMetrics, computed at most once per index.
    A hit never reaches the engine, so re-rendering a packet cannot
    touch stream state a second time.
    """

    def __init__(self, engine: MetricEngine):
        self.engine = engine
        self._entries: Dict[int, PacketMetrics] = {}
        self.hits = 0
        self.misses = 0

    def get_or_compute(self, packet_index: int, packet: SegmentRecord) -> PacketMetrics:
        m = self._entries.get(packet_index)
        if m is not None:
            self.hits += 1
            return m
        self.misses += 1
        m = self.engine.process(packet)
        self._entries[packet_index] = m
        return m

    def get(self, packet_index: int) -> Optional[PacketMetrics]:
        return self._entries.get(packet_index)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def __contains__(self, packet_index: int) -> bool:
        return packet_index in self._entries

    def __len__(self) -> int:
        return len(self._entries)
