"""Per-path type, role, aggregation and unit inference."""

from __future__ import annotations

import json
import logging
import re
from collections import Counter
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional

import numpy as np

from .config import AnalysisConfig, matches_any
from .sample import SampleSet
from .utils import leaf_name, normalize_name, parent_path, split_path

logger = logging.getLogger(__name__)

FIELD_TYPES = ("string", "int", "number", "boolean", "date", "object", "array", "null")
ROLES = ("identifier", "measure", "dimension", "time", "text", "metadata")
DATE_FORMATS = frozenset({"datetime", "date", "time"})

_UUID_REGEX = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
_EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_URL_REGEX = re.compile(r"^https?://\S+$", re.IGNORECASE)
_IPV4_REGEX = re.compile(r"^(?:\d{1,3}\.){3}\d{1,3}$")
_DATE_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_REGEX = re.compile(r"^\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?$")
_SEMVER_REGEX = re.compile(r"^v?\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.-]+)?$")

MAX_SAMPLE_LENGTH = 200


@dataclass(frozen=True, slots=True)
class StatsField:
    path: str
    type: str
    nullable: bool
    role: str
    aggregation: str = "none"
    format: Optional[str] = None
    unit: Optional[str] = None
    item_type: Optional[str] = None
    cardinality: int = 0
    sample_size: int = 0
    samples: tuple[Any, ...] = ()
    personal_data: Optional[str] = None

    def __post_init__(self) -> None:
        if self.type not in FIELD_TYPES:
            raise ValueError(f"Unknown field type '{self.type}' for {self.path}")
        if self.role not in ROLES:
            raise ValueError(f"Unknown role '{self.role}' for {self.path}")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["samples"] = list(self.samples)
        return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True, slots=True)
class _Override:
    type: str
    role: str
    format: Optional[str] = None


def value_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    return "string"


def merge_types(observed: list[str]) -> Optional[str]:
    """Collapse observed value types into one declared type, or None if mixed."""

    distinct = set(observed) - {"null"}
    if not distinct:
        return None
    if len(distinct) == 1:
        return distinct.pop()
    if distinct == {"int", "number"}:
        return "number"
    return None


def _fingerprint(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def _parse_datetime(value: str) -> Optional[datetime]:
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _string_format(value: str) -> Optional[str]:
    if _UUID_REGEX.match(value):
        return "uuid"
    if _EMAIL_REGEX.match(value):
        return "email"
    if _URL_REGEX.match(value):
        return "url"
    if _IPV4_REGEX.match(value):
        return "ipv4"
    if _DATE_REGEX.match(value):
        return "date"
    if len(value) > 10 and ("T" in value or " " in value) and _parse_datetime(value) is not None:
        return "datetime"
    if _TIME_REGEX.match(value):
        return "time"
    if _SEMVER_REGEX.match(value):
        return "semver"
    return None


def detect_format(values: list[Any], threshold: float) -> Optional[str]:
    """Return the format shared by at least ``threshold`` of non-empty strings."""

    counts: Counter[str] = Counter()
    total = 0
    for value in values:
        if not isinstance(value, str) or not value.strip():
            continue
        total += 1
        fmt = _string_format(value.strip())
        if fmt is not None:
            counts[fmt] += 1

    if total == 0 or not counts:
        return None
    fmt, count = counts.most_common(1)[0]
    if count / total >= threshold:
        return fmt
    return None


class StatsEngine:
    """Turn sampled values into immutable :class:`StatsField` records."""

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        self.config = config or AnalysisConfig()
        self.patterns = self.config.patterns

    def compute(self, samples: SampleSet) -> list[StatsField]:
        fields: list[StatsField] = []
        for path, values in samples.values.items():
            expected = samples.container_count(parent_path(path))
            fields.append(self.compute_field(path, values, expected))
        logger.debug("Computed stats for %s paths", len(fields))
        return fields

    def compute_field(self, path: str, values: list[Any], expected: Optional[int] = None) -> StatsField:
        non_null = [value for value in values if value is not None]
        nullable = len(non_null) < len(values) or (expected is not None and expected > len(values))

        observed = [value_type(value) for value in non_null]
        declared = merge_types(observed)
        if not non_null:
            field_type = "null"
            nullable = True
        elif declared is None:
            field_type = observed[0]
            nullable = True
        else:
            field_type = declared

        typed = [
            value
            for value, kind in zip(non_null, observed)
            if kind == field_type or (field_type == "number" and kind == "int")
        ]

        fmt: Optional[str] = None
        if field_type == "string":
            fmt = detect_format(typed, self.config.format_threshold)
            if fmt in DATE_FORMATS:
                field_type = "date"

        cardinality = len({_fingerprint(value) for value in non_null})
        sample_size = len(non_null)

        override = self._value_pattern(field_type, typed)
        if override is not None:
            field_type = override.type
            fmt = override.format or fmt
            role = override.role
        else:
            role = self._infer_role(path, field_type, fmt, typed, cardinality, sample_size)

        aggregation = self._infer_aggregation(role, path)
        unit = self._infer_unit(path) if role == "measure" else None
        item_type = _item_type(non_null) if field_type == "array" else None
        personal_data = self._personal_data(path, field_type, fmt)

        return StatsField(
            path=path,
            type=field_type,
            nullable=nullable,
            role=role,
            aggregation=aggregation,
            format=fmt,
            unit=unit,
            item_type=item_type,
            cardinality=cardinality,
            sample_size=sample_size,
            samples=self._representative_samples(non_null),
            personal_data=personal_data,
        )

    def _value_pattern(self, field_type: str, values: list[Any]) -> Optional[_Override]:
        if not values:
            return None
        if field_type == "int":
            if all(1_000_000_000 <= value < 2_000_000_000 for value in values):
                return _Override("date", "time", "unix_seconds")
            if all(1_000_000_000_000 <= value < 2_000_000_000_000 for value in values):
                return _Override("date", "time", "unix_millis")
            if all(value in (0, 1) for value in values):
                return _Override("int", "dimension")
        if field_type == "string":
            tokens = self.patterns.boolean_tokens
            if all(value.strip().lower() in tokens for value in values):
                return _Override("string", "dimension")
        if field_type == "int":
            if all(100 <= value < 600 for value in values):
                return _Override("int", "dimension")
            if all(1900 <= value <= 2100 for value in values):
                return _Override("int", "time", "year")
        return None

    def _infer_role(
        self,
        path: str,
        field_type: str,
        fmt: Optional[str],
        values: list[Any],
        cardinality: int,
        sample_size: int,
    ) -> str:
        if field_type in {"object", "array", "null"}:
            return "metadata"

        patterns = self.patterns
        config = self.config
        leaf = normalize_name(leaf_name(path))

        if matches_any(patterns.boolean_flag, leaf):
            return "dimension"
        if matches_any(patterns.time, leaf) or field_type == "date":
            return "time"
        if fmt == "uuid" or matches_any(patterns.identifier, leaf):
            return "identifier"

        if field_type in {"int", "number"}:
            if matches_any(patterns.measure, leaf):
                return "measure"
            if cardinality == sample_size and sample_size >= config.min_identifier_samples:
                return "identifier"
            if cardinality <= config.low_cardinality and sample_size > config.low_cardinality:
                return "dimension"
            if (
                sample_size >= config.moderate_cardinality_samples
                and cardinality / sample_size <= config.moderate_cardinality_ratio
            ):
                return "dimension"
            return "measure"

        if field_type == "string":
            if matches_any(patterns.text, leaf) or self._is_long_text(values):
                return "text"
            if fmt in {"email", "url"} or matches_any(patterns.dimension, leaf):
                return "dimension"
            if cardinality == sample_size and sample_size >= config.min_identifier_samples:
                return "identifier"
            return "dimension"

        if field_type == "boolean":
            return "dimension"
        return "metadata"

    def _is_long_text(self, values: list[Any]) -> bool:
        lengths = np.array([len(value) for value in values if isinstance(value, str)], dtype=float)
        if lengths.size == 0:
            return False
        return bool(
            lengths.mean() > self.config.text_avg_length or lengths.max() > self.config.text_max_length
        )

    def _infer_aggregation(self, role: str, path: str) -> str:
        if role != "measure":
            return "none"
        leaf = normalize_name(leaf_name(path))
        if matches_any(self.patterns.no_aggregation, leaf):
            return "none"
        parent = ".".join(normalize_name(segment) for segment in split_path(parent_path(path)))
        if matches_any(self.patterns.avg_aggregation, leaf) or matches_any(self.patterns.avg_path, parent):
            return "avg"
        return "sum"

    def _personal_data(self, path: str, field_type: str, fmt: Optional[str]) -> Optional[str]:
        """Name the kind of personal data a scalar field holds, if any."""

        if field_type in {"object", "array", "null"}:
            return None
        if fmt == "email":
            return "email"
        leaf = normalize_name(leaf_name(path))
        for kind, patterns in self.patterns.personal_data:
            if matches_any(patterns, leaf):
                return kind
        if fmt == "ipv4":
            return "ip_address"
        return None

    def _infer_unit(self, path: str) -> Optional[str]:
        leaf = normalize_name(leaf_name(path))
        for pattern, unit in self.patterns.units:
            if pattern.search(leaf):
                return unit
        return None

    def _representative_samples(self, values: list[Any]) -> tuple[Any, ...]:
        seen: set[str] = set()
        samples: list[Any] = []
        for value in values:
            if isinstance(value, (dict, list)):
                continue
            key = _fingerprint(value)
            if key in seen:
                continue
            seen.add(key)
            if isinstance(value, str) and len(value) > MAX_SAMPLE_LENGTH:
                value = value[:MAX_SAMPLE_LENGTH] + "…"
            samples.append(value)
            if len(samples) >= self.config.max_samples_per_field:
                break
        return tuple(samples)


def _item_type(arrays: list[Any]) -> Optional[str]:
    observed = [value_type(item) for array in arrays if isinstance(array, list) for item in array]
    observed = [kind for kind in observed if kind != "null"]
    if not observed:
        return None
    return merge_types(observed) or observed[0]


def compute_stats(samples: SampleSet, config: Optional[AnalysisConfig] = None) -> list[StatsField]:
    """Classify every sampled path."""

    return StatsEngine(config).compute(samples)
