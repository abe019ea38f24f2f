"""Row sampling and per-path value collection."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from .errors import StructureIncompleteError
from .utils import ARRAY_SEGMENT, RNGConfig, escape_segment, join_path


@dataclass(slots=True)
class SampleResult:
    rows: list[dict[str, Any]]
    total: int
    sampled: Optional[int] = None


@dataclass(slots=True)
class SampleSet:
    """Raw values observed per field path.

    ``containers`` counts how many objects were seen at each container path
    (``""`` is the row level) so absent keys can be told apart from present
    ones.
    """

    values: dict[str, list[Any]] = field(default_factory=dict)
    containers: dict[str, int] = field(default_factory=dict)

    def container_count(self, path: str) -> Optional[int]:
        return self.containers.get(path)


def sample_rows(rows: Sequence[dict[str, Any]], max_rows: int, rng: RNGConfig) -> SampleResult:
    """Return at most ``max_rows`` rows, drawn reproducibly when truncating."""

    total = len(rows)
    if total <= max_rows:
        return SampleResult(rows=list(rows), total=total)

    indices = rng.random().sample(range(total), k=max_rows)
    return SampleResult(rows=[rows[i] for i in sorted(indices)], total=total, sampled=max_rows)


class SampleCollector:
    """Walk rows and gather the values seen at every structural position."""

    def __init__(self, max_depth: int) -> None:
        self.max_depth = max_depth
        self.samples = SampleSet()

    def record(self, row: dict[str, Any]) -> None:
        self._walk_object(row, path="", depth=0)

    def _walk_object(self, value: dict[str, Any], path: str, depth: int) -> None:
        self.samples.containers[path] = self.samples.containers.get(path, 0) + 1
        for key, child in value.items():
            child_path = join_path(path, escape_segment(key))
            self._observe(child, child_path, depth + 1)

    def _walk_list(self, value: list[Any], path: str, depth: int) -> None:
        item_path = join_path(path, ARRAY_SEGMENT)
        for item in value:
            if isinstance(item, dict):
                self._check_depth(item_path, depth + 1)
                self._walk_object(item, item_path, depth + 1)
            elif isinstance(item, list):
                self._observe(item, item_path, depth + 1)

    def _observe(self, value: Any, path: str, depth: int) -> None:
        self._check_depth(path, depth)
        self.samples.values.setdefault(path, []).append(value)
        if isinstance(value, dict):
            self._walk_object(value, path, depth)
        elif isinstance(value, list):
            self._walk_list(value, path, depth)

    def _check_depth(self, path: str, depth: int) -> None:
        if depth > self.max_depth:
            raise StructureIncompleteError(
                f"Nesting deeper than {self.max_depth} levels at '{path}'"
            )


def collect_samples(rows: Sequence[dict[str, Any]], max_depth: int = 50) -> SampleSet:
    """Collect raw values per path across all rows."""

    collector = SampleCollector(max_depth=max_depth)
    for row in rows:
        if not isinstance(row, dict):
            raise ValueError("Rows must be JSON objects")
        collector.record(row)
    return collector.samples
