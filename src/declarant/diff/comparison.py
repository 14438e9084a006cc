"""Key-based reconciliation of two keyed collections.

Both sides are mappings keyed by a stable identity. Values are compared with
``==``, so callers normalize them first (sorted lists, rounded amounts) when
ordering or float noise must not count as a change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Hashable, Mapping, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class DiffResult(Generic[K, V]):
    added: dict[K, V] = field(default_factory=dict)
    removed: dict[K, V] = field(default_factory=dict)
    # key -> (before, after)
    updated: dict[K, tuple[V, V]] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.updated)


@dataclass
class SortedDiffResult(Generic[K, V]):
    added: list[tuple[K, V]] = field(default_factory=list)
    removed: list[tuple[K, V]] = field(default_factory=list)
    updated: list[tuple[K, V]] = field(default_factory=list)


def get_diff(existing: Mapping[K, V], incoming: Mapping[K, V]) -> DiffResult[K, V]:
    result: DiffResult[K, V] = DiffResult()
    for key, before in existing.items():
        if key not in incoming:
            result.removed[key] = before
            continue
        after = incoming[key]
        if before != after:
            result.updated[key] = (before, after)
    for key, after in incoming.items():
        if key not in existing:
            result.added[key] = after
    return result


def _sort_key(key: Any) -> Any:
    # Tuple keys may hold None next to strings.
    if isinstance(key, tuple):
        return tuple("" if part is None else str(part) for part in key)
    return str(key)


def sort_diff_with_keys(diff: DiffResult[K, V]) -> SortedDiffResult[K, V]:
    return SortedDiffResult(
        added=sorted(diff.added.items(), key=lambda item: _sort_key(item[0])),
        removed=sorted(diff.removed.items(), key=lambda item: _sort_key(item[0])),
        updated=sorted(
            ((key, after) for key, (_, after) in diff.updated.items()),
            key=lambda item: _sort_key(item[0]),
        ),
    )


def get_diff_counts(diff: DiffResult[Any, Any] | SortedDiffResult[Any, Any]) -> dict[str, int]:
    return {
        "added": len(diff.added),
        "removed": len(diff.removed),
        "updated": len(diff.updated),
    }


def format_diff_result_log(diff: DiffResult[Any, Any] | SortedDiffResult[Any, Any]) -> str:
    counts = get_diff_counts(diff)
    return f"added: {counts['added']} | removed: {counts['removed']} | updated: {counts['updated']}"
