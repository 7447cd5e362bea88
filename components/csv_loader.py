from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Set

from photo_crawler.models import WorkItem
from photo_crawler.resume import parse_item_id

logger = logging.getLogger(__name__)


class DatasetLoadError(Exception):
    """The source dataset could not be read. Nothing can run without it."""


def _iter_csv_rows(
    path: Path,
    *,
    owner_field: str,
    item_field: str,
    encoding: str = "utf-8",
    limit: Optional[int] = None,
) -> Iterable[WorkItem]:
    """
    Internal helper: yields WorkItem from a single CSV file, skipping rows
    without an owner or a usable item id.
    """
    count = 0
    with path.open("r", encoding=encoding, newline="") as f:
        reader = csv.DictReader(f)
        missing = [c for c in (owner_field, item_field) if c not in (reader.fieldnames or [])]
        if missing:
            raise DatasetLoadError(f"{path}: missing required column(s) {missing}")
        for line_no, row in enumerate(reader, start=2):
            if limit is not None and count >= limit:
                break
            owner = (row.get(owner_field) or "").strip()
            item_id = parse_item_id(row.get(item_field) or "")
            if not owner or item_id is None:
                logger.warning("Missing user or id for row %d of %s: %r", line_no, path.name, row)
                continue
            yield WorkItem(owner_id=owner, item_id=item_id)
            count += 1


def _dedupe_items(items: Iterable[WorkItem]) -> List[WorkItem]:
    """Keep the first occurrence of each item id."""
    seen: Set[int] = set()
    out: List[WorkItem] = []
    for it in items:
        if it.item_id in seen:
            continue
        seen.add(it.item_id)
        out.append(it)
    return out


def load_work_items(
    path: Path,
    *,
    owner_field: str = "user",
    item_field: str = "id",
    encoding: str = "utf-8",
    limit: Optional[int] = None,
    dedupe: bool = True,
) -> List[WorkItem]:
    """
    Load the (owner, item) pairs from the source dataset.

    Args:
        path: dataset CSV file.
        owner_field: column holding the owner id.
        item_field: column holding the item id.
        encoding: CSV encoding.
        limit: if set, stop after this many valid rows (useful for debugging).
        dedupe: drop repeated item ids, keeping the first.

    Raises:
        DatasetLoadError: the file is missing, unreadable, or not a CSV with
            the required columns.
    """
    path = Path(path)
    if not path.is_file():
        raise DatasetLoadError(f"dataset not found: {path}")
    try:
        items = list(_iter_csv_rows(
            path,
            owner_field=owner_field,
            item_field=item_field,
            encoding=encoding,
            limit=limit,
        ))
    except DatasetLoadError:
        raise
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        raise DatasetLoadError(f"failed to read {path}: {e}") from e
    if dedupe:
        items = _dedupe_items(items)
    return items
