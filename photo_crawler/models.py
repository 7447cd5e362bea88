from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

OUTPUT_COLUMNS: Tuple[str, str, str] = ("owner", "item", "resource_url")


@dataclass(frozen=True)
class WorkItem:
    """One (owner, item) pair pending resolution. Identity is item_id."""
    owner_id: str
    item_id: int


@dataclass(frozen=True)
class ResolvedRecord:
    owner_id: str
    item_id: int
    resource_url: Optional[str]

    @classmethod
    def for_item(cls, item: WorkItem, resource_url: Optional[str]) -> "ResolvedRecord":
        return cls(owner_id=item.owner_id, item_id=item.item_id, resource_url=resource_url)

    def to_row(self) -> Tuple[str, str, str]:
        return (self.owner_id, str(self.item_id), self.resource_url or "")

    @property
    def resolved(self) -> bool:
        return bool(self.resource_url)
