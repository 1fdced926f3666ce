# tcpextend/utils.py
from __future__ import annotations

import atexit
import json
import logging
import os
import queue
import sys
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import List, Optional, Union

__all__ = ["setup", "get_logger", "log", "ensure_dir", "atomic_write_json", "now_iso"]


def ensure_dir(p: Path):
    p.mkdir(parents=True, exist_ok=True)


def atomic_write_json(path: Path, obj):
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)
    tmp.replace(path)


def now_iso():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


log = logging.getLogger("tcpextend")
log.addHandler(logging.NullHandler())
log.setLevel(logging.INFO)
log.propagate = False

_FORMAT = "[%(asctime)s] %(levelname).1s %(threadName)s %(name)s: %(message)s"
_listener: Optional[QueueListener] = None


def _sink_handlers(log_dir, level: int) -> List[logging.Handler]:
    """Handlers doing the real I/O: stderr, plus a daily rotated file when log_dir is set."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_dir is not None:
        ensure_dir(Path(log_dir))
        handlers.append(TimedRotatingFileHandler(
            str(Path(log_dir) / "tcpextend.log"), when="midnight", backupCount=7, encoding="utf-8", delay=True))
    formatter = logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for h in handlers:
        h.setFormatter(formatter)
        h.setLevel(level)
    return handlers


def setup(log_dir: Optional[Union[str, os.PathLike]] = None, level: Union[int, str] = "INFO") -> logging.Logger:
    """
    Route the package logger through a queue so analysis threads never block on
    log I/O. Called once by the CLI entry points; later calls are no-ops.
    """
    global _listener
    if _listener is not None:
        return log
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    q: queue.SimpleQueue = queue.SimpleQueue()
    for h in list(log.handlers):
        log.removeHandler(h)
    log.addHandler(QueueHandler(q))
    log.setLevel(level)

    _listener = QueueListener(q, *_sink_handlers(log_dir, level), respect_handler_level=True)
    _listener.start()
    atexit.register(_listener.stop)
    return log


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Child logger, e.g. get_logger("batch") -> tcpextend.batch; records reach the package handlers."""
    return logging.getLogger(f"{log.name}.{name}") if name else log
