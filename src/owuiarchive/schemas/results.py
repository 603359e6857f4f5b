"""
Result types collected during a restore.

Each per-entity operation yields an ``ItemResult``. Callers aggregate them
into a ``CategoryReport`` per category and a ``RestoreReport`` for the whole
invocation; failures travel as data, not as exceptions.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from owuiarchive.schemas.selection import Category


class Outcome(str, Enum):
    """Terminal state of one entity after a restore."""
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    OVERWRITTEN = "overwritten"
    FAILED = "failed"


class SyncStats(BaseModel):
    """Child file counts for one composite parent."""
    new: int = 0
    overwritten: int = 0
    skipped: int = 0
    failed: int = 0
    dropped: int = 0  # referenced but without content in the container

    def merge(self, other: "SyncStats") -> None:
        self.new += other.new
        self.overwritten += other.overwritten
        self.skipped += other.skipped
        self.failed += other.failed
        self.dropped += other.dropped

    @property
    def changed(self) -> bool:
        return bool(self.new or self.overwritten)


class ItemResult(BaseModel):
    category: Category
    key: str
    outcome: Outcome
    target_id: Optional[str] = None
    reason: Optional[str] = None
    files: Optional[SyncStats] = None

    @classmethod
    def failed(cls, category: Category, key: str, reason: str) -> "ItemResult":
        return cls(category=category, key=key, outcome=Outcome.FAILED, reason=reason)


class CategoryReport(BaseModel):
    category: Category
    items: List[ItemResult] = Field(default_factory=list)
    unresolved_references: List[str] = Field(default_factory=list)

    def add(self, result: ItemResult) -> ItemResult:
        self.items.append(result)
        return result

    def count(self, outcome: Outcome) -> int:
        return sum(1 for item in self.items if item.outcome == outcome)

    def counts(self) -> Dict[str, int]:
        return {outcome.value: self.count(outcome) for outcome in Outcome}

    @property
    def file_stats(self) -> SyncStats:
        total = SyncStats()
        for item in self.items:
            if item.files:
                total.merge(item.files)
        return total

    @property
    def all_failed(self) -> bool:
        return bool(self.items) and self.count(Outcome.FAILED) == len(self.items)


class RestoreReport(BaseModel):
    container: str
    container_format: str
    overwrite: bool = False
    categories: List[CategoryReport] = Field(default_factory=list)

    def category(self, category: Category) -> Optional[CategoryReport]:
        for report in self.categories:
            if report.category == category:
                return report
        return None

    @property
    def succeeded(self) -> bool:
        """False only when every entity of some category failed."""
        return not any(report.all_failed for report in self.categories)

    def failures(self) -> List[ItemResult]:
        return [item for report in self.categories for item in report.items
                if item.outcome == Outcome.FAILED]
