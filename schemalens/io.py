"""Input loading and normalization into flat row tables."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional, TextIO

from .errors import InvalidInputError

logger = logging.getLogger(__name__)

ROOT_TABLE = "root"


@dataclass(slots=True)
class ChunkingConfig:
    """How to read a source file."""

    size: int = 1000
    format: Optional[str] = None
    max_records: Optional[int] = None

    def __post_init__(self) -> None:
        if self.size <= 0:
            raise ValueError("chunk size must be positive")
        if self.format is not None and self.format not in {"json", "jsonl"}:
            raise ValueError("format must be 'json', 'jsonl', or None")
        if self.max_records is not None and self.max_records <= 0:
            raise ValueError("max_records must be positive")


@dataclass(slots=True)
class Table:
    name: str
    rows: list[dict[str, Any]]


class JSONSource:
    """Read a JSON document or a newline-delimited JSON file."""

    def __init__(self, path: Path, config: Optional[ChunkingConfig] = None) -> None:
        self.path = path
        self.config = config or ChunkingConfig()

    def open(self) -> TextIO:
        return self.path.open("r", encoding="utf-8")

    def read(self) -> Any:
        if not self.path.exists():
            raise FileNotFoundError(self.path)

        if self.detect_format() == "jsonl":
            return [record for chunk in self.iter_lines() for record in chunk]

        with self.open() as handle:
            try:
                return json.load(handle)
            except json.JSONDecodeError as exc:
                raise InvalidInputError("invalid", f"Invalid JSON in {self.path}: {exc}") from exc

    def iter_lines(self) -> Iterator[list[Any]]:
        """Yield JSONL records in chunks of ``config.size``."""

        chunk: list[Any] = []
        count = 0
        with self.open() as handle:
            for number, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    chunk.append(json.loads(line))
                except json.JSONDecodeError as exc:
                    raise InvalidInputError("invalid", f"Invalid JSON on line {number} of {self.path}: {exc}") from exc
                count += 1
                if len(chunk) >= self.config.size:
                    yield chunk
                    chunk = []
                if self.config.max_records is not None and count >= self.config.max_records:
                    break
        if chunk:
            yield chunk

    def detect_format(self) -> str:
        if self.config.format:
            return self.config.format
        if self.path.suffix.lower() in {".jsonl", ".ndjson"}:
            return "jsonl"

        with self.open() as handle:
            first_line = ""
            for line in handle:
                if line.strip():
                    first_line = line.strip()
                    break
            remainder = handle.read(1)
        # A first line that is a complete object followed by more content is JSONL.
        if first_line.startswith("{") and remainder:
            try:
                json.loads(first_line)
            except json.JSONDecodeError:
                return "json"
            return "jsonl"
        return "json"


def _is_primitive(value: Any) -> bool:
    return not isinstance(value, (dict, list))


def normalize_input(data: Any) -> list[Table]:
    """Split arbitrary parsed JSON into named row tables.

    - a primitive or an empty container is rejected;
    - a list of primitives becomes ``{index, value}`` rows;
    - a list of objects is the ``root`` table;
    - an object whose values are all non-empty lists of objects becomes one
      table per key;
    - any other object is a single-row ``root`` table.
    """

    if _is_primitive(data):
        raise InvalidInputError("primitive")
    if not data:
        raise InvalidInputError("empty")

    if isinstance(data, list):
        if all(isinstance(item, dict) for item in data):
            return [Table(ROOT_TABLE, list(data))]
        if all(_is_primitive(item) for item in data):
            return [Table(ROOT_TABLE, [{"index": index, "value": item} for index, item in enumerate(data)])]
        rows = [item if isinstance(item, dict) else {"value": item} for item in data]
        logger.warning("Mixed list input; wrapping %s non-object items", sum(1 for item in data if not isinstance(item, dict)))
        return [Table(ROOT_TABLE, rows)]

    if all(
        isinstance(value, list) and value and all(isinstance(item, dict) for item in value)
        for value in data.values()
    ):
        return [Table(str(name), list(rows)) for name, rows in data.items()]

    return [Table(ROOT_TABLE, [data])]


def load_input(path: Path, config: Optional[ChunkingConfig] = None) -> list[Table]:
    """Read ``path`` and normalize its content into tables."""

    data = JSONSource(path, config).read()
    tables = normalize_input(data)
    logger.info("Loaded %s table(s) from %s", len(tables), path)
    return tables
