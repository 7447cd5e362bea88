from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional, Set

from extensions.logging import item_context
from extensions.progress import ProgressState

from .models import ResolvedRecord, WorkItem
from .resolver import ResolutionError

logger = logging.getLogger(__name__)

Worker = Callable[[str, int], Awaitable[Optional[str]]]
ResultCallback = Callable[[ResolvedRecord], None]


async def _run_one(
    item: WorkItem,
    worker: Worker,
    on_result: ResultCallback,
    progress: ProgressState,
) -> None:
    with item_context(item.item_id):
        try:
            url = await worker(item.owner_id, item.item_id)
        except ResolutionError as e:
            logger.error("Failed to fetch photo for photo_id %s: %s", item.item_id, e.cause)
            url = None
        except Exception:
            logger.exception("Unexpected error while resolving photo_id %s", item.item_id)
            url = None

        on_result(ResolvedRecord.for_item(item, url))
        progress.increment()
        logger.info(progress.format_line())


async def run_pool(
    items: Iterable[WorkItem],
    worker: Worker,
    *,
    concurrency: int,
    on_result: ResultCallback,
    progress: Optional[ProgressState] = None,
) -> ProgressState:
    """
    Run `worker` over `items` with at most `concurrency` tasks in flight.

    Admission stops while the pool is full and resumes as soon as any task
    finishes; completion order is whatever the network gives us. Every item
    ends in exactly one `on_result` call and one progress increment, whether
    or not its resolution succeeded.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")

    items = list(items)
    if progress is None:
        progress = ProgressState(total=len(items))

    in_flight: Set[asyncio.Task] = set()
    try:
        for item in items:
            if len(in_flight) >= concurrency:
                done, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for t in done:
                    # resolution errors never get here; a failing sink does
                    t.result()
            in_flight.add(asyncio.create_task(
                _run_one(item, worker, on_result, progress),
                name=f"resolve-{item.item_id}",
            ))
        if in_flight:
            await asyncio.gather(*in_flight)
    finally:
        pending = [t for t in in_flight if not t.done()]
        for t in pending:
            t.cancel()
        if pending:
            # let cancelled tasks run their session release before we return
            await asyncio.gather(*pending, return_exceptions=True)
    return progress
