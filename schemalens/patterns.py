"""Fold flat path lists into glob-style wildcard patterns."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from .utils import ARRAY_SEGMENT, WILDCARD, split_path

logger = logging.getLogger(__name__)

_INDEX = re.compile(r"\[\d+\]")
_ATTACHED_ARRAY = re.compile(r"(?<=[^.\\])\[\]")

Path = tuple[str, ...]


@dataclass(slots=True)
class CollapseResult:
    patterns: list[str]
    wildcards: dict[str, list[str]] = field(default_factory=dict)
    iterations: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"patterns": list(self.patterns), "wildcards": {key: list(values) for key, values in self.wildcards.items()}}


def normalize_path(path: str) -> str:
    """Rewrite concrete array indices (``items[3]``) to the ``[]`` segment."""

    path = _INDEX.sub("[]", path)
    return _ATTACHED_ARRAY.sub(".[]", path)


def _render(path: Path) -> str:
    return ".".join(path)


def _fingerprint(prefix: Path, suffixes: set[Path], wildcards: Mapping[Path, set[str]]) -> frozenset:
    """Describe everything below ``prefix`` so interchangeable siblings compare equal.

    A wildcard inside a suffix carries the names it already stands for, so
    two children only match when expanding them would give the same paths.
    """

    annotated = set()
    for suffix in suffixes:
        parts: list[Any] = []
        for index, segment in enumerate(suffix):
            if segment == WILDCARD:
                key = prefix + suffix[: index + 1]
                parts.append((WILDCARD, tuple(sorted(wildcards.get(key, ())))))
            else:
                parts.append(segment)
        annotated.add(tuple(parts))
    return frozenset(annotated)


def _overlaps(first: Path, second: Path) -> bool:
    shorter = min(len(first), len(second))
    return first[:shorter] == second[:shorter]


class PathCollapser:
    """Bounded fixed-point collapse of sibling segments into ``*``."""

    def __init__(self, threshold: int = 3, max_iterations: int = 10) -> None:
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        if max_iterations <= 0:
            raise ValueError("max_iterations must be positive")
        self.threshold = threshold
        self.max_iterations = max_iterations

    def collapse(self, paths: Iterable[str]) -> CollapseResult:
        current: set[Path] = {tuple(split_path(normalize_path(path))) for path in paths if path}
        wildcards: dict[Path, set[str]] = {}

        iterations = 0
        changed = True
        while changed and iterations < self.max_iterations:
            iterations += 1
            current, changed = self._collapse_pass(current, wildcards)

        if changed:
            logger.debug("Path collapse stopped at the iteration cap (%s)", self.max_iterations)

        patterns = sorted((_render(path) for path in current), key=lambda item: (len(split_path(item)), item))
        rendered = {_render(key): sorted(values) for key, values in sorted(wildcards.items())}
        return CollapseResult(patterns=patterns, wildcards=rendered, iterations=iterations)

    def _collapse_pass(self, paths: set[Path], wildcards: dict[Path, set[str]]) -> tuple[set[Path], bool]:
        index: dict[Path, dict[str, set[Path]]] = {}
        for path in paths:
            for position, segment in enumerate(path):
                index.setdefault(path[:position], {}).setdefault(segment, set()).add(path[position + 1 :])

        collapsed: list[Path] = []
        for parent in sorted(index, key=lambda item: (-len(item), item)):
            children = index[parent]
            if WILDCARD in children:
                continue
            if any(_overlaps(parent, done) for done in collapsed):
                continue

            members = self._collapsible_group(parent, children, wildcards)
            if not members:
                continue

            paths = _apply(paths, parent, members, wildcards)
            collapsed.append(parent)
            logger.debug("Collapsed %s siblings under '%s'", len(members), _render(parent))

        return paths, bool(collapsed)

    def _collapsible_group(
        self,
        parent: Path,
        children: Mapping[str, set[Path]],
        wildcards: Mapping[Path, set[str]],
    ) -> list[str]:
        groups: dict[frozenset, list[str]] = {}
        for name in sorted(children):
            if name in (WILDCARD, ARRAY_SEGMENT):
                continue
            suffixes = children[name]
            if suffixes == {()}:
                continue
            groups.setdefault(_fingerprint(parent + (name,), suffixes, wildcards), []).append(name)

        candidates = [names for names in groups.values() if len(names) > self.threshold]
        if not candidates:
            return []
        candidates.sort(key=lambda names: (-len(names), names[0]))
        return candidates[0]


def _apply(paths: set[Path], parent: Path, members: Sequence[str], wildcards: dict[Path, set[str]]) -> set[Path]:
    depth = len(parent)
    member_set = set(members)
    target = parent + (WILDCARD,)

    for key in sorted(wildcards):
        if len(key) > depth and key[:depth] == parent and key[depth] in member_set:
            values = wildcards.pop(key)
            wildcards.setdefault(target + key[depth + 1 :], set()).update(values)
    wildcards.setdefault(target, set()).update(member_set)

    rewritten: set[Path] = set()
    for path in paths:
        if len(path) > depth and path[:depth] == parent and path[depth] in member_set:
            path = target + path[depth + 1 :]
        rewritten.add(path)
    return rewritten


def collapse_paths(paths: Iterable[str], threshold: int = 3, max_iterations: int = 10) -> CollapseResult:
    """Collapse groups of more than ``threshold`` interchangeable siblings into ``*``."""

    return PathCollapser(threshold=threshold, max_iterations=max_iterations).collapse(paths)


def expand_patterns(patterns: Iterable[str], wildcards: Mapping[str, Sequence[str]]) -> list[str]:
    """Substitute every recorded wildcard back to its concrete names."""

    lookup = {tuple(split_path(key)): list(values) for key, values in wildcards.items()}
    expanded: set[str] = set()
    for pattern in patterns:
        segments = tuple(split_path(pattern))
        partial: list[list[str]] = [[]]
        for position, segment in enumerate(segments):
            names = lookup.get(segments[: position + 1]) if segment == WILDCARD else None
            options = names or [segment]
            partial = [prefix + [option] for prefix in partial for option in options]
        expanded.update(".".join(parts) for parts in partial)
    return sorted(expanded)


def merge_wildcards(*dictionaries: Mapping[str, Sequence[str]]) -> dict[str, list[str]]:
    """Union wildcard dictionaries key by key."""

    merged: dict[str, set[str]] = {}
    for dictionary in dictionaries:
        for key, values in dictionary.items():
            merged.setdefault(key, set()).update(values)
    return {key: sorted(values) for key, values in sorted(merged.items())}
