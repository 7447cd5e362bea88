from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from components.csv_loader import DatasetLoadError
from extensions.logging import LoggingExtension
from photo_crawler.config import Config, load_config
from photo_crawler.pipeline import run
from photo_crawler.resume import clean_output


# ----------------------------
# CLI parsing
# ----------------------------

def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Resolve photo URLs for (user, id) pairs with a headless browser, resumably"
    )
    p.add_argument("--dataset", type=Path, default=None, help="Source dataset CSV (columns user,id)")
    p.add_argument("--output", type=Path, default=None, help="Append-only output CSV")
    p.add_argument("--cleaned-output", type=Path, default=None, help="Cleaned prior output used to seed a fresh output CSV")
    p.add_argument("--concurrency", type=int, default=None, help="Concurrent browser sessions (default 4)")
    p.add_argument("--flush-every", type=int, default=None, help="Records buffered per output append (default 10)")
    p.add_argument("--item-timeout", type=int, default=None, help="Seconds allowed per item, 0 = unbounded")
    p.add_argument("--limit", type=int, default=None, help="Optional limit of dataset rows")
    p.add_argument(
        "--clean",
        action="store_true",
        help="Only rewrite --output into --cleaned-output (dedupe, drop malformed rows) and exit",
    )

    # Logging
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Console/file log level")
    p.add_argument("--log-file", type=Path, default=None, help="Log file (default logs/crawler.log)")
    return p.parse_args(argv)


def _config_from_args(args: argparse.Namespace) -> Config:
    cfg = load_config().with_overrides(
        dataset_csv=args.dataset,
        output_csv=args.output,
        cleaned_output_csv=args.cleaned_output,
        concurrency=args.concurrency,
        flush_every=args.flush_every,
        item_timeout_s=args.item_timeout,
        log_file=args.log_file,
    )
    if cfg.concurrency < 1:
        raise SystemExit(f"--concurrency must be >= 1 (got {cfg.concurrency})")
    if cfg.flush_every < 1:
        raise SystemExit(f"--flush-every must be >= 1 (got {cfg.flush_every})")
    return cfg


# ----------------------------
# Main async
# ----------------------------

async def main_async(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    cfg = _config_from_args(args)

    level = getattr(logging, args.log_level)
    log_ext = LoggingExtension(cfg.log_file, global_level=level)
    log = logging.getLogger("run_crawl")

    try:
        if args.clean:
            clean_output(cfg.output_csv, cfg.cleaned_output_csv)
            return 0
        try:
            await run(cfg, limit=args.limit)
        except DatasetLoadError:
            log.error("Aborting: source dataset could not be loaded.")
            return 1
        return 0
    finally:
        log_ext.close()


# ----------------------------
# Entrypoint
# ----------------------------

def main() -> None:
    sys.exit(asyncio.run(main_async()))

if __name__ == "__main__":
    main()
