from __future__ import annotations

import csv
import io
import logging
import shutil
from pathlib import Path
from typing import Iterable, List, Sequence

from .models import OUTPUT_COLUMNS, ResolvedRecord
from .utils import append_text

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_EVERY = 10


def _csv_lines(rows: Iterable[Sequence[str]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerows(rows)
    return buf.getvalue()


def _needs_header(path: Path) -> bool:
    return not path.exists() or path.stat().st_size == 0


class CsvSink:
    """
    Buffered, append-only CSV writer for resolved records.

    Records are held in memory and written with one append every
    `flush_every` records; `flush()` persists whatever is left. Content
    already in the file is never rewritten.
    """

    def __init__(self, path: Path, *, flush_every: int = DEFAULT_FLUSH_EVERY, encoding: str = "utf-8"):
        if flush_every < 1:
            raise ValueError(f"flush_every must be >= 1, got {flush_every}")
        self.path = path
        self.flush_every = flush_every
        self.encoding = encoding
        self._buffer: List[str] = []
        self.records_written = 0
        self.flushes = 0
        self._ensure_header()

    def _ensure_header(self) -> None:
        if _needs_header(self.path):
            append_text(self.path, _csv_lines([OUTPUT_COLUMNS]), self.encoding)
            return
        # a previous writer may have left the last line unterminated
        with self.path.open("rb") as f:
            f.seek(-1, io.SEEK_END)
            if f.read(1) != b"\n":
                append_text(self.path, "\n", self.encoding)

    def __len__(self) -> int:
        return len(self._buffer)

    def append(self, record: ResolvedRecord) -> None:
        self._buffer.append(_csv_lines([record.to_row()]))
        if len(self._buffer) >= self.flush_every:
            self.flush()

    def flush(self) -> int:
        n = len(self._buffer)
        if n:
            append_text(self.path, "".join(self._buffer), self.encoding)
            self._buffer.clear()
            self.records_written += n
        self.flushes += 1
        logger.debug("Flushed %d record(s) to %s", n, self.path)
        return n


def seed_output_store(main: Path, cleaned: Path) -> bool:
    """
    Start a fresh output store from the cleaned prior output. Only happens when
    the main store does not exist yet; an existing store is never overwritten.
    """
    if main.exists() or not cleaned.exists():
        return False
    main.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(cleaned, main)
    logger.info("Copied cleaned results %s to new output CSV %s", cleaned, main)
    return True
