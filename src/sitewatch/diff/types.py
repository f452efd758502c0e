"""Type definitions for snapshot diffing."""

from dataclasses import dataclass, field


@dataclass
class DiffResult:
    """Classified delta between the stored snapshot and a fresh fetch."""

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    url_count: int = 0

    @property
    def added_count(self) -> int:
        return len(self.added)

    @property
    def removed_count(self) -> int:
        return len(self.removed)

    @property
    def updated_count(self) -> int:
        return len(self.updated)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.updated)

    def counts(self) -> dict[str, int]:
        return {
            "added": self.added_count,
            "removed": self.removed_count,
            "updated": self.updated_count,
        }
