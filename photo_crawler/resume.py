from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional, Set

from .models import OUTPUT_COLUMNS, ResolvedRecord
from .utils import atomic_write_text

logger = logging.getLogger(__name__)

# Older output files used the dataset's column names.
_COLUMN_ALIASES: Dict[str, tuple[str, ...]] = {
    "owner": ("owner", "user"),
    "item": ("item", "id"),
    "resource_url": ("resource_url", "photo_url"),
}

# Placeholders earlier writers emitted for a missing URL.
_NULL_URLS = {"null", "undefined", "none"}


def _field(row: Mapping[str, Optional[str]], name: str) -> str:
    for key in _COLUMN_ALIASES[name]:
        v = row.get(key)
        if v is not None:
            return v.strip()
    return ""


def parse_item_id(raw: str) -> Optional[int]:
    """'101' and '101.0' are both item 101; anything else is not an id."""
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        f = float(raw)
    except ValueError:
        return None
    if f != f or f in (float("inf"), float("-inf")) or not f.is_integer():
        return None
    return int(f)


def parse_output_row(row: Mapping[str, Optional[str]]) -> Optional[ResolvedRecord]:
    """
    Validate one parsed output row. Returns None for malformed rows
    (missing owner or non-integer item). An empty URL is valid and means
    the item was attempted but not resolved.
    """
    owner = _field(row, "owner")
    item_id = parse_item_id(_field(row, "item"))
    if not owner or item_id is None:
        return None
    url = _field(row, "resource_url")
    if url.lower() in _NULL_URLS:
        url = ""
    return ResolvedRecord(owner_id=owner, item_id=item_id, resource_url=url or None)


def _has_undecodable(row: Mapping[str, object]) -> bool:
    # surrogateescape maps bytes that are not valid in the encoding to U+DC80..U+DCFF
    for v in row.values():
        if isinstance(v, str) and any("\udc80" <= ch <= "\udcff" for ch in v):
            return True
    return False


def iter_output_records(path: Path, *, encoding: str = "utf-8") -> Iterator[Optional[ResolvedRecord]]:
    """
    Yield one entry per data row; malformed rows come out as None.

    Rows holding bytes that do not decode (older writers, a torn tail after a
    crash) are malformed too. A CSV error ends the scan with a warning; the
    rows before it still count.
    """
    with path.open("r", encoding=encoding, errors="surrogateescape", newline="") as f:
        reader = csv.DictReader(f)
        try:
            for row in reader:
                if _has_undecodable(row):
                    yield None
                    continue
                yield parse_output_row(row)
        except csv.Error as e:
            logger.warning("Stopped reading %s at line %d: %s", path, reader.line_num, e)


def compute_completed(prior_output: Optional[Path]) -> Set[int]:
    """
    Item ids already stored with a non-empty URL. A missing store is not an
    error: nothing has been completed yet.
    """
    completed: Set[int] = set()
    if prior_output is None or not prior_output.exists():
        return completed
    try:
        for rec in iter_output_records(prior_output):
            if rec is not None and rec.resolved:
                completed.add(rec.item_id)
    except OSError as e:
        logger.warning("Could not read %s, treating it as empty: %s", prior_output, e)
        return set()
    return completed


# ---------------------------------------------------------------------------
#  Cleaning
# ---------------------------------------------------------------------------

@dataclass
class CleanStats:
    rows_in: int = 0
    malformed: int = 0
    duplicates: int = 0
    rows_out: int = 0
    resolved_out: int = 0


def clean_output(src: Path, dst: Path) -> CleanStats:
    """
    Rewrite an output store into its cleaned form: malformed rows dropped,
    one row per item (the last non-empty URL wins, otherwise the last
    attempt), first-seen order kept. The result is written atomically to
    `dst`, which may be the same path as `src`.
    """
    stats = CleanStats()
    by_item: Dict[int, ResolvedRecord] = {}
    if src.exists():
        for rec in iter_output_records(src):
            stats.rows_in += 1
            if rec is None:
                stats.malformed += 1
                continue
            prev = by_item.get(rec.item_id)
            if prev is not None:
                stats.duplicates += 1
                if prev.resolved and not rec.resolved:
                    continue
            by_item[rec.item_id] = rec

    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(OUTPUT_COLUMNS)
    for rec in by_item.values():
        writer.writerow(rec.to_row())
    atomic_write_text(dst, buf.getvalue())

    stats.rows_out = len(by_item)
    stats.resolved_out = sum(1 for r in by_item.values() if r.resolved)
    logger.info(
        "Cleaned %s -> %s: rows_in=%d malformed=%d duplicates=%d rows_out=%d resolved=%d",
        src, dst, stats.rows_in, stats.malformed, stats.duplicates, stats.rows_out, stats.resolved_out,
    )
    return stats
