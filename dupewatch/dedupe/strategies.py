from enum import Enum
from typing import Callable, Dict, List

from ..models import FileRecord


class RetentionStrategy(Enum):
    KEEP_OLDEST = "KEEP_OLDEST"
    KEEP_NEWEST = "KEEP_NEWEST"
    KEEP_SMALLEST = "KEEP_SMALLEST"
    KEEP_LARGEST = "KEEP_LARGEST"
    KEEP_FIRST_SEEN = "KEEP_FIRST_SEEN"

    @classmethod
    def parse(cls, name: str) -> "RetentionStrategy":
        from ..config import normalize_strategy
        return cls[normalize_strategy(name)]


# min()/max() return the first extreme element they meet, so ties go to the
# record that comes first in the group's order.
_SELECTORS: Dict[RetentionStrategy, Callable[[List[FileRecord]], FileRecord]] = {
    RetentionStrategy.KEEP_OLDEST: lambda g: min(g, key=lambda r: r.last_modified),
    RetentionStrategy.KEEP_NEWEST: lambda g: max(g, key=lambda r: r.last_modified),
    RetentionStrategy.KEEP_SMALLEST: lambda g: min(g, key=lambda r: r.size),
    RetentionStrategy.KEEP_LARGEST: lambda g: max(g, key=lambda r: r.size),
    RetentionStrategy.KEEP_FIRST_SEEN: lambda g: g[0],
}


def select_keeper(group: List[FileRecord], strategy: RetentionStrategy) -> FileRecord:
    """Picks the member of `group` that survives. The group must not be empty."""
    if not group:
        raise ValueError("Cannot select a keeper from an empty group")
    return _SELECTORS[strategy](group)
