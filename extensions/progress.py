from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from photo_crawler.utils import atomic_write_text

logger = logging.getLogger(__name__)


def format_hms(seconds: float) -> str:
    seconds = max(0, int(round(seconds)))
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    return f"{h:02d}:{m:02d}:{s:02d}"


# ---------------------------------------------------------------------------
#  In-run progress
# ---------------------------------------------------------------------------

@dataclass
class ProgressState:
    """
    Shared by every resolution task on the event loop. `increment()` is the
    only mutation, so `processed` never goes backwards.
    """
    total: int
    processed: int = 0
    started_at: float = field(default_factory=time.monotonic)

    def increment(self) -> int:
        self.processed += 1
        return self.processed

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    @property
    def items_left(self) -> int:
        return max(0, self.total - self.processed)

    @property
    def avg_per_item(self) -> float:
        if self.processed <= 0:
            return 0.0
        return self.elapsed / self.processed

    @property
    def eta_seconds(self) -> float:
        return self.items_left * self.avg_per_item

    @property
    def done(self) -> bool:
        return self.processed >= self.total

    def format_line(self) -> str:
        return (
            f"Processed: {self.processed}/{self.total} | "
            f"Items left: {self.items_left} | ETA: {format_hms(self.eta_seconds)}"
        )


# ---------------------------------------------------------------------------
#  Run snapshot
# ---------------------------------------------------------------------------

class RunSnapshot:
    """
    JSON summary of the latest run, stored at data/run_state.json.
    Informational only: resume decisions are made from the output CSV.
    """

    def __init__(self, path: Path):
        self.path = path
        self.data: Dict[str, Any] = {
            "started_at": None,
            "finished_at": None,
            "dataset_rows": 0,
            "already_completed": 0,
            "total": 0,
            "processed": 0,
            "resolved": 0,
            "unresolved": 0,
            "flushes": 0,
        }

    def mark_start(self, *, dataset_rows: int, already_completed: int, total: int) -> None:
        self.data.update({
            "started_at": datetime.now(timezone.utc).isoformat(),
            "dataset_rows": dataset_rows,
            "already_completed": already_completed,
            "total": total,
        })

    def mark_finished(
        self,
        progress: ProgressState,
        *,
        resolved: int,
        unresolved: int,
        flushes: int,
    ) -> None:
        self.data.update({
            "finished_at": datetime.now(timezone.utc).isoformat(),
            "processed": progress.processed,
            "elapsed_s": round(progress.elapsed, 3),
            "resolved": resolved,
            "unresolved": unresolved,
            "flushes": flushes,
        })

    def save(self) -> None:
        try:
            atomic_write_text(self.path, json.dumps(self.data, indent=2, ensure_ascii=False))
        except OSError as e:
            logger.error("[snapshot] Save failed for %s: %s", self.path, e)
