from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Set

from components.csv_loader import DatasetLoadError, load_work_items
from extensions.progress import ProgressState, RunSnapshot

from .browser import BrowserSessions
from .config import Config
from .models import ResolvedRecord, WorkItem
from .resolver import HttpxProbe, PhotoResolver
from .resume import compute_completed
from .scheduler import Worker, run_pool
from .sink import CsvSink, seed_output_store
from .utils import httpx_client

logger = logging.getLogger(__name__)

__all__ = ["DatasetLoadError", "RunSummary", "build_work_list", "run"]


@dataclass
class RunSummary:
    dataset_rows: int = 0
    already_completed: int = 0
    attempted: int = 0
    resolved: int = 0
    unresolved: int = 0
    flushes: int = 0
    seeded_from_cleaned: bool = False


def build_work_list(items: Iterable[WorkItem], completed: Set[int]) -> List[WorkItem]:
    return [it for it in items if it.owner_id and it.item_id not in completed]


class _CountingSink:
    """Wraps the sink's append to keep resolved/unresolved tallies."""

    def __init__(self, sink: CsvSink, summary: RunSummary):
        self.sink = sink
        self.summary = summary

    def __call__(self, record: ResolvedRecord) -> None:
        if record.resolved:
            self.summary.resolved += 1
        else:
            self.summary.unresolved += 1
        self.sink.append(record)


async def _run_with_default_resolver(cfg: Config, work: List[WorkItem], on_result, progress: ProgressState) -> None:
    async with BrowserSessions(cfg) as sessions:
        async with httpx_client(cfg) as client:
            resolver = PhotoResolver(sessions.session, HttpxProbe(client, cfg), cfg)
            await run_pool(
                work,
                resolver.resolve,
                concurrency=cfg.concurrency,
                on_result=on_result,
                progress=progress,
            )


async def run(
    cfg: Config,
    *,
    resolver: Optional[Worker] = None,
    dataset_loader: Callable[..., List[WorkItem]] = load_work_items,
    limit: Optional[int] = None,
) -> RunSummary:
    """
    One resumable pass over the dataset backlog.

    Only a dataset that cannot be loaded is fatal (DatasetLoadError
    propagates); every per-item failure is absorbed by the scheduler. When no
    `resolver` is given the run owns a Chromium instance and an httpx client
    for its duration.
    """
    summary = RunSummary()
    snapshot = RunSnapshot(cfg.run_state_json)

    # 1) source dataset
    try:
        rows = dataset_loader(cfg.dataset_csv, owner_field=cfg.owner_field, item_field=cfg.item_field, limit=limit)
    except DatasetLoadError as e:
        logger.error("Failed to preload %s: %s", cfg.dataset_csv, e)
        raise
    summary.dataset_rows = len(rows)
    logger.info("%s preloaded: %d row(s).", cfg.dataset_csv.name, len(rows))

    # 2) seed the store from the cleaned prior output
    summary.seeded_from_cleaned = seed_output_store(cfg.output_csv, cfg.cleaned_output_csv)

    # 3) + 4) resume filter
    completed = compute_completed(cfg.output_csv)
    summary.already_completed = len(completed)
    logger.info("Loaded %d completed item(s) from %s.", len(completed), cfg.output_csv)
    work = build_work_list(rows, completed)
    summary.attempted = len(work)

    progress = ProgressState(total=len(work))
    snapshot.mark_start(dataset_rows=len(rows), already_completed=len(completed), total=len(work))
    snapshot.save()
    logger.info("Items to crawl: %d (concurrency=%d, flush every %d)", len(work), cfg.concurrency, cfg.flush_every)

    # 5) + 6) resolve, then final flush whatever happened
    sink = CsvSink(cfg.output_csv, flush_every=cfg.flush_every)
    on_result = _CountingSink(sink, summary)
    try:
        if not work:
            logger.info("Nothing left to crawl.")
        elif resolver is not None:
            await run_pool(work, resolver, concurrency=cfg.concurrency, on_result=on_result, progress=progress)
        else:
            await _run_with_default_resolver(cfg, work, on_result, progress)
    finally:
        sink.flush()
        summary.flushes = sink.flushes
        snapshot.mark_finished(
            progress,
            resolved=summary.resolved,
            unresolved=summary.unresolved,
            flushes=summary.flushes,
        )
        snapshot.save()

    logger.info(
        "DONE: attempted=%d resolved=%d unresolved=%d skipped_completed=%d",
        summary.attempted, summary.resolved, summary.unresolved, summary.already_completed,
    )
    return summary
