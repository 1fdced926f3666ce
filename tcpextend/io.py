# tcpextend/io.py
from __future__ import annotations

import csv
import json
from typing import Any, Dict, List, Sequence, TextIO


class _BufferedSink:
    """Buffer N rows before writing them out."""

    def __init__(self, out: TextIO, buf_size: int = 100, close_out: bool = False):
        self._out = out
        self._buf: List[Dict[str, Any]] = []
        self._limit = buf_size
        self._close_out = close_out

    def write(self, row: Dict[str, Any]):
        self._buf.append(row)
        if len(self._buf) >= self._limit:
            self.flush()

    def flush(self):
        for row in self._buf:
            self._emit(row)
        self._buf.clear()
        self._out.flush()

    def _emit(self, row: Dict[str, Any]):
        raise NotImplementedError

    def close(self):
        self.flush()
        if self._close_out:
            self._out.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class CsvSink(_BufferedSink):
    """CSV rows with a fixed header; None is written as an empty cell."""

    def __init__(self, out: TextIO, columns: Sequence[str], buf_size: int = 100, close_out: bool = False):
        super().__init__(out, buf_size=buf_size, close_out=close_out)
        self._writer = csv.DictWriter(out, fieldnames=list(columns), extrasaction="ignore")
        self._writer.writeheader()

    def _emit(self, row):
        self._writer.writerow(row)


class JsonlSink(_BufferedSink):
    """One JSON object per line; absent metrics are null."""

    def _emit(self, row):
        self._out.write(json.dumps(row, ensure_ascii=False) + "\n")


class TextSink(_BufferedSink):
    """Pre-rendered text blocks (lists of lines), separated by a blank line."""

    def _emit(self, lines):
        self._out.write("\n".join(lines) + "\n\n")


def open_sink(path: str, fmt: str, columns: Sequence[str], out: TextIO = None, buf_size: int = 100):
    """Open a sink on path (or on an already open stream such as stdout)."""
    close_out = out is None
    if out is None:
        if path is None:
            raise ValueError("open_sink needs an output path or an open stream")
        out = open(path, "w", encoding="utf-8", newline="")
    if fmt == "csv":
        return CsvSink(out, columns, buf_size=buf_size, close_out=close_out)
    if fmt == "jsonl":
        return JsonlSink(out, buf_size=buf_size, close_out=close_out)
    if fmt == "text":
        return TextSink(out, buf_size=buf_size, close_out=close_out)
    if close_out:
        out.close()
    raise ValueError(f"Unknown output format: {fmt}")
