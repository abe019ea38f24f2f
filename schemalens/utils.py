"""Path helpers, RNG configuration and hashing."""

from __future__ import annotations

import hashlib
import json
import random
import re
from dataclasses import dataclass
from typing import Iterable, Optional

ARRAY_SEGMENT = "[]"
WILDCARD = "*"

_ESCAPED = re.compile(r"\\(.)")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


@dataclass(slots=True)
class RNGConfig:
    """Configuration for deterministic random number generation."""

    seed: Optional[int] = None

    def fork(self, offset: int) -> "RNGConfig":
        """Return a new config with a deterministic offset applied."""

        if self.seed is None:
            return RNGConfig(None)
        return RNGConfig(self.seed + offset)

    def random(self) -> random.Random:
        """Create a `random.Random` instance."""

        return random.Random(self.seed)


def stable_hash(values: Iterable[object]) -> str:
    """Generate a stable SHA-256 hash for a sequence of values."""

    serialized = json.dumps(list(values), sort_keys=True, default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def escape_segment(key: str) -> str:
    """Escape backslashes and literal dots so an object key stays a single path segment."""

    return str(key).replace("\\", "\\\\").replace(".", "\\.")


def unescape_segment(segment: str) -> str:
    """Return the original object key for an escaped path segment."""

    return _ESCAPED.sub(r"\1", segment)


def split_path(path: str) -> list[str]:
    """Split on unescaped dots; segments keep their escapes."""

    if not path:
        return []
    parts: list[str] = []
    start = 0
    index = 0
    while index < len(path):
        char = path[index]
        if char == "\\":
            index += 2
            continue
        if char == ".":
            parts.append(path[start:index])
            start = index + 1
        index += 1
    parts.append(path[start:])
    return parts


def join_path(*segments: str) -> str:
    return ".".join(segment for segment in segments if segment)


def leaf_name(path: str) -> str:
    parts = split_path(path)
    return parts[-1] if parts else path


def parent_path(path: str) -> str:
    return ".".join(split_path(path)[:-1])


def path_depth(path: str) -> int:
    return len(split_path(path))


def normalize_name(name: str) -> str:
    """Lower-case snake form of a key, used for name-based rule matching.

    ``userId`` and ``user-id`` both become ``user_id``; escaped dots are kept
    as underscores.
    """

    cleaned = _ESCAPED.sub(lambda match: "_" if match.group(1) == "." else match.group(1), name)
    cleaned = _CAMEL_BOUNDARY.sub("_", cleaned)
    cleaned = re.sub(r"[\s\-]+", "_", cleaned)
    return cleaned.lower()


def sanitize_identifier(name: str) -> str:
    """Reduce free text to ``[a-z0-9_]`` for generated type names."""

    cleaned = re.sub(r"[^a-z0-9_]+", "_", normalize_name(name))
    return re.sub(r"_+", "_", cleaned).strip("_")
