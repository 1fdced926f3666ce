# tcpextend/pipeline.py
from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Optional, TextIO

from .annotate import ROW_COLUMNS, advisories, render_tree, to_row
from .config import Config
from .io import open_sink
from .session import Session
from .stream import iter_segments
from .utils import log


def analyze_capture(
    in_pcap: str,
    out_path: Optional[str],
    cfg: Config,
    stream_id: Optional[int] = None,
    out: Optional[TextIO] = None,
    session: Optional[Session] = None,
    show_progress: bool = False,
    progress_every: int = 200_000,
) -> Dict[str, Any]:
    """
    Run one capture through a fresh (or reset) session and write one output
    row per TCP segment. Returns counters for the run.
    """
    if session is None:
        session = Session(roles=cfg.build_roles())
    else:
        session.reset()

    stats: Counter = Counter()
    sink = open_sink(out_path, cfg.output_format, ROW_COLUMNS, out=out)
    try:
        for rec, m in session.process_all(iter_segments(in_pcap, relative_seq=cfg.relative_seq)):
            stats["segments"] += 1
            flags = advisories(m)
            if flags:
                stats["flagged"] += 1
            if m.direction is None:
                stats["unattributed"] += 1
            if show_progress and stats["segments"] % progress_every == 0:
                log.info(f"[progress] {in_pcap} segments={stats['segments']}")

            if stream_id is not None and rec.stream_id != stream_id:
                continue
            if cfg.only_flagged and not flags:
                continue
            if cfg.output_format == "text":
                sink.write(render_tree(rec, m))
            else:
                sink.write(to_row(rec, m))
            stats["written"] += 1
    finally:
        sink.close()

    stats["streams"] = len(session.store)
    log.debug(f"{in_pcap}: {dict(stats)}")
    return dict(stats)
