# tcpextend/batch.py
from __future__ import annotations

import multiprocessing as mp
import os
import time
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Dict, List

from .config import Config
from .pipeline import analyze_capture
from .utils import atomic_write_json, ensure_dir, get_logger, now_iso

log = get_logger("batch")

CAPTURE_SUFFIXES = (".pcap", ".pcapng", ".cap")

_EXT = {"csv": ".csv", "jsonl": ".jsonl", "text": ".txt"}


def collect_captures(in_root: Path) -> List[Path]:
    """Capture files under in_root, by suffix, sorted for a stable order."""
    found = []
    for root, _dirs, files in os.walk(in_root):
        for f in files:
            if f.lower().endswith(CAPTURE_SUFFIXES):
                found.append(Path(root) / f)
    found.sort()
    return found


def _out_path(in_pcap: Path, in_root: Path, out_root: Path, fmt: str) -> Path:
    """Mirror the input tree; keep the capture name and append the format suffix."""
    rel = in_pcap.relative_to(in_root)
    return out_root / rel.parent / f"{rel.name}{_EXT[fmt]}"


def process_single_capture(in_pcap: Path, in_root: Path, out_root: Path, cfg: Config,
                           resume: bool = False) -> Dict[str, Any]:
    out_path = _out_path(in_pcap, in_root, out_root, cfg.output_format)
    ensure_dir(out_path.parent)
    if resume and out_path.exists():
        return {"input": str(in_pcap), "output": str(out_path), "skipped": True, "reason": "exists"}

    t0 = time.time()
    res = analyze_capture(str(in_pcap), str(out_path), cfg)
    return {
        "input": str(in_pcap),
        "output": str(out_path),
        "status": "ok",
        "timestamp": now_iso(),
        "elapsed_sec": round(time.time() - t0, 3),
        "stats": res,
    }


def _task(args):
    return process_single_capture(*args)


class _SerialExecutor(Executor):
    """Runs submissions inline; used when workers <= 1."""

    def submit(self, fn, *args, **kwargs):
        f = Future()
        try:
            f.set_result(fn(*args, **kwargs))
        except Exception as e:
            f.set_exception(e)
        return f


def run_batch(in_root: Path, out_root: Path, cfg: Config, backend: str = "threads",
              workers: int = 4, limit=None, resume: bool = False, verbose: bool = False) -> List[Dict[str, Any]]:
    captures = collect_captures(in_root)
    if limit:
        captures = captures[:limit]
    log.info(f"{len(captures)} captures under {in_root}")

    if workers <= 1:
        executor = _SerialExecutor()
    elif backend == "processes":
        executor = ProcessPoolExecutor(max_workers=workers, mp_context=mp.get_context("spawn"))
    elif backend == "threads":
        executor = ThreadPoolExecutor(max_workers=workers)
    else:
        raise ValueError(f"Unknown backend: {backend}")

    tasks = [(p, in_root, out_root, cfg, resume) for p in captures]
    results = []
    try:
        with executor as ex:
            fut2p = {ex.submit(_task, t): t[0] for t in tasks}
            for fut in as_completed(fut2p):
                p = fut2p[fut]
                try:
                    r = fut.result()
                except Exception as e:
                    results.append({"status": "error", "input": str(p), "error": str(e)})
                    log.error(f"[FAIL] {p.name}: {e}")
                    continue
                results.append(r)
                if verbose:
                    if r.get("skipped"):
                        log.info(f"[SKIP] {p.name} -> exists")
                    else:
                        log.info(f"[DONE] {p.name} in {r['elapsed_sec']}s "
                                 f"segments={r['stats'].get('segments', 0)} flagged={r['stats'].get('flagged', 0)}")
    except KeyboardInterrupt:
        log.warning("Interrupted by user, cancelling remaining tasks...")

    results.sort(key=lambda r: r["input"])
    ensure_dir(out_root)
    atomic_write_json(out_root / "summary.json", {"timestamp": now_iso(), "results": results})
    return results
