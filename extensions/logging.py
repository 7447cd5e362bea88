from __future__ import annotations
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Iterator, List, Optional

# Per-task context: which photo id is this task resolving right now?
_CURRENT_ITEM_ID: ContextVar[Optional[int]] = ContextVar("_CURRENT_ITEM_ID", default=None)


@contextmanager
def item_context(item_id: int) -> Iterator[None]:
    """
    Tag every log record emitted inside the block (by any module) with
    `item_id`. Each asyncio task has its own copy of the context.
    """
    token = _CURRENT_ITEM_ID.set(int(item_id))
    try:
        yield
    finally:
        _CURRENT_ITEM_ID.reset(token)


def current_item_id() -> Optional[int]:
    return _CURRENT_ITEM_ID.get()


class _ItemFilter(logging.Filter):
    """Stamp records with the current item id ('-' outside a task)."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        current = _CURRENT_ITEM_ID.get()
        record.item_id = "-" if current is None else current
        return True


class LoggingExtension:
    def __init__(
        self,
        log_file: Optional[Path] = None,
        *,
        global_level: int = logging.INFO,
        file_level: Optional[int] = None,  # default to global_level if None
    ) -> None:
        self.log_file = log_file
        self.global_level = global_level
        self.file_level = file_level if file_level is not None else global_level
        self._handlers: List[logging.Handler] = []

        self._install_console(self.global_level)
        if log_file is not None:
            self._install_file(log_file, self.file_level)

        # Make root permissive; rely on handler levels to filter.
        logging.getLogger().setLevel(logging.DEBUG)
        # Playwright/httpx chatter stays out of DEBUG runs unless asked for.
        for noisy in ("httpx", "httpcore", "asyncio"):
            logging.getLogger(noisy).setLevel(max(logging.INFO, global_level))

    # ---------------- Console ----------------

    def _install_console(self, level: int) -> None:
        root = logging.getLogger()
        # Remove any default handlers (e.g., from basicConfig)
        for h in list(root.handlers):
            root.removeHandler(h)

        ch = logging.StreamHandler()
        ch.setLevel(level)
        ch.addFilter(_ItemFilter())
        ch.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        root.addHandler(ch)
        self._handlers.append(ch)

    # ---------------- File ----------------

    def _install_file(self, log_file: Path, level: int) -> None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        fh.setLevel(level)
        fh.addFilter(_ItemFilter())
        fh.setFormatter(logging.Formatter(
            fmt="%(asctime)s %(levelname)s [%(name)s] [item=%(item_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logging.getLogger().addHandler(fh)
        self._handlers.append(fh)

    # ---------------- Cleanup ----------------

    def close(self) -> None:
        root = logging.getLogger()
        for h in self._handlers:
            root.removeHandler(h)
            h.flush()
            h.close()
        self._handlers.clear()
