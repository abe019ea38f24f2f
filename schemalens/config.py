"""Analysis thresholds and the rule tables injected into the classifiers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .errors import ConfigError
from .utils import normalize_name


def _words(*terms: str) -> re.Pattern[str]:
    """Match any term as a whole token of a snake-cased name."""

    return re.compile(rf"(?:^|_)(?:{'|'.join(terms)})(?:_|$)")


_BOOLEAN_FLAG = (
    re.compile(r"^(?:is|has|can|should|was|did|allow|allows|enable|use|show)_"),
    re.compile(r"_(?:enabled|disabled|flag)$"),
)

_TIME = (
    re.compile(r"^(?:date|time|datetime|timestamp|when|created|updated|modified|deleted)$"),
    re.compile(r"_(?:at|on|date|datetime|timestamp|ts)$"),
    re.compile(r"^(?:created|updated|modified|deleted|published)_"),
    _words("timestamp"),
)

_IDENTIFIER = (
    _words("id", "key", "uuid", "guid", "sku", "slug", "pk"),
)

_MEASURE = (
    _words(
        "count", "total", "sum", "amount", "price", "cost", "score", "rating",
        "quantity", "qty", "percent", "percentage", "pct", "ratio", "avg",
        "average", "mean", "min", "max", r"tokens?", r"words?", "confidence",
        "weight", "height", "width", "length", "size", "revenue", "profit",
        "balance", "duration", "rate", "num", "value", "volume", "distance",
        "probability", "latency",
    ),
)

_TEXT = (
    _words(
        "description", "desc", "text", "content", "body", "message", "comment",
        "summary", "quote", "context", "reason", "explanation", r"notes?",
        "title", "name", "bio", "evidence", "excerpt", "snippet", "caption",
        "prompt", "answer", "question",
    ),
)

_DIMENSION = (
    _words(
        "status", "state", "type", "kind", "category", "level", "mode", "label",
        r"tags?", "group", "class", "tier", "gender", "country", "region", "city",
        "language", "lang", "locale", "currency", "code", "format", "source",
        "channel", "priority", "severity", "sentiment", "platform", "role",
        "method", "stage", "segment", "variant", "color",
    ),
)

_AVG_AGGREGATION = (
    _words(
        "avg", "average", "mean", "median", "ratio", "percent", "percentage",
        "pct", r"percentile", r"p\d{2}", "rate", "confidence", "rating",
        "probability", "prob", "likelihood",
    ),
)

_AVG_PATH = (
    re.compile(r"(?:^|\.)(?:scores|ratings|percentiles|rates)(?:\.|$)"),
)

_NO_AGGREGATION = (
    _words(
        "limit", "threshold", "quota", "cap", "config", "setting", "lat", "lon",
        "lng", "latitude", "longitude", r"coord(?:inate)?s?", "version", "port",
    ),
)

_UNITS = (
    (_words("cost", "price", "amount", "revenue", "profit", "usd", r"dollars?", "fee", "spend"), "USD"),
    (_words("percent", "percentage", "pct", "ratio"), "percent"),
    (_words(r"tokens?"), "tokens"),
    (_words(r"words?"), "words"),
    (_words(r"bytes?", "size"), "bytes"),
    (_words("ms", "millis", r"milliseconds?", "latency"), "milliseconds"),
    (_words(r"seconds?", r"secs?", "duration", "elapsed"), "seconds"),
    (_words(r"minutes?", r"mins?"), "minutes"),
    (_words(r"hours?", r"hrs?"), "hours"),
    (_words(r"days?"), "days"),
    (_words("count", "quantity", "qty", r"instances?", "num"), "count"),
)

_DYNAMIC_KEYS = (
    re.compile(r"^\d+$"),
    re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"),
    re.compile(r"^[0-9a-fA-F]{16,}$"),
    re.compile(r"^\d{4}-\d{2}(?:-\d{2})?$"),
    re.compile(r"^[a-z]{2}(?:[-_][A-Za-z]{2})?$"),
    re.compile(r"^[A-Za-z]+[_-]?\d+$"),
)

_NAMED_OBJECTS = frozenset(
    {
        "meta", "metadata", "config", "configuration", "settings", "options",
        "headers", "request", "response", "pagination", "links", "error",
        "errors", "address", "location", "params", "parameters",
    }
)

_BOOLEAN_TOKENS = frozenset({"true", "false", "yes", "no", "y", "n", "t", "f", "on", "off"})

_PERSONAL_DATA = (
    ("email", (_words("email", "e_mail"),)),
    ("phone", (_words("phone", "mobile", "tel", "telephone"),)),
    ("name", (_words("first_name", "last_name", "firstname", "lastname", "full_name"), re.compile(r"^name$"))),
    ("address", (_words("address", "street", "city", "zip", "zipcode", "postal", "postcode"),)),
    ("ssn", (_words("ssn", "social_security"),)),
    ("credit_card", (_words("credit_card", "card_number"),)),
    ("ip_address", (_words("ip_address"), re.compile(r"^ip$"))),
)

_DEF_NAMES = (
    (frozenset({"score", "confidence", "evidence"}), "scored_assessment"),
    (frozenset({"score", "confidence"}), "scored_metric"),
    (frozenset({"value", "count"}), "value_count"),
    (frozenset({"id", "name"}), "named_entity"),
    (frozenset({"min", "max"}), "range_metrics"),
    (frozenset({"start", "end"}), "time_range"),
    (frozenset({"lat", "lon"}), "geo_point"),
    (frozenset({"latitude", "longitude"}), "geo_point"),
)

_ROLE_DEF_NAMES = (
    ("measure", "metrics"),
    ("dimension", "attributes"),
    ("text", "text_content"),
    ("time", "timestamps"),
    ("identifier", "references"),
    ("metadata", "details"),
)

_ENTITIES = (
    ("User", (r"^user", r"^customer", r"^member", r"^account"), (r"^(?:user|customer|member|account)_id$",)),
    ("Order", (r"^order", r"^purchase", r"^transaction"), (r"^(?:order|purchase|transaction)_id$",)),
    ("Product", (r"^product", r"^item", r"^sku"), (r"^(?:product|item)_id$", r"^sku$")),
    ("Video", (r"^video", r"^media", r"^content"), (r"^(?:video|media|content)_id$",)),
)


@dataclass(frozen=True, slots=True)
class RulePatterns:
    """Immutable regex tables for role, aggregation, unit, personal-data and naming rules.

    Every classifier receives one of these through :class:`AnalysisConfig`, so
    alternative rule sets can run side by side without touching module state.
    Name patterns are matched against snake-cased leaf names.
    """

    boolean_flag: tuple[re.Pattern[str], ...] = _BOOLEAN_FLAG
    time: tuple[re.Pattern[str], ...] = _TIME
    identifier: tuple[re.Pattern[str], ...] = _IDENTIFIER
    measure: tuple[re.Pattern[str], ...] = _MEASURE
    text: tuple[re.Pattern[str], ...] = _TEXT
    dimension: tuple[re.Pattern[str], ...] = _DIMENSION
    avg_aggregation: tuple[re.Pattern[str], ...] = _AVG_AGGREGATION
    avg_path: tuple[re.Pattern[str], ...] = _AVG_PATH
    no_aggregation: tuple[re.Pattern[str], ...] = _NO_AGGREGATION
    units: tuple[tuple[re.Pattern[str], str], ...] = _UNITS
    dynamic_keys: tuple[re.Pattern[str], ...] = _DYNAMIC_KEYS
    named_objects: frozenset[str] = _NAMED_OBJECTS
    boolean_tokens: frozenset[str] = _BOOLEAN_TOKENS
    personal_data: tuple[tuple[str, tuple[re.Pattern[str], ...]], ...] = _PERSONAL_DATA
    def_names: tuple[tuple[frozenset[str], str], ...] = _DEF_NAMES
    role_def_names: tuple[tuple[str, str], ...] = _ROLE_DEF_NAMES
    entities: tuple[tuple[str, tuple[str, ...], tuple[str, ...]], ...] = _ENTITIES


def matches_any(patterns: tuple[re.Pattern[str], ...], value: str) -> bool:
    return any(pattern.search(value) for pattern in patterns)


@dataclass(frozen=True, slots=True)
class AnalysisConfig:
    """Numeric thresholds and sample caps for one analysis run."""

    max_rows: int = 10_000
    max_depth: int = 50
    max_samples_per_field: int = 5
    format_threshold: float = 0.9
    min_keys_for_map: int = 3
    min_occurrences: int = 3
    min_def_fields: int = 2
    dynamic_key_ratio: float = 0.8
    min_keys_for_variance: int = 5
    max_key_length_variance: float = 1.0
    collapse_threshold: int = 3
    max_collapse_iterations: int = 10
    min_identifier_samples: int = 10
    low_cardinality: int = 2
    moderate_cardinality_ratio: float = 0.1
    moderate_cardinality_samples: int = 50
    text_avg_length: int = 50
    text_max_length: int = 200
    max_tables_for_enrichment: int = 20
    max_fields_for_enrichment: int = 500
    default_descriptions: bool = True
    seed: Optional[int] = 0
    patterns: RulePatterns = field(default_factory=RulePatterns)

    def __post_init__(self) -> None:
        for name in (
            "max_rows",
            "max_depth",
            "max_samples_per_field",
            "min_keys_for_map",
            "min_occurrences",
            "min_def_fields",
            "max_collapse_iterations",
            "min_keys_for_variance",
        ):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        for name in ("format_threshold", "dynamic_key_ratio", "moderate_cardinality_ratio"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must be between 0 and 1")
        if self.collapse_threshold < 1:
            raise ConfigError("collapse_threshold must be at least 1")

    def with_overrides(self, **overrides: Any) -> "AnalysisConfig":
        """Return a copy with the given thresholds replaced."""

        return replace(self, **{key: value for key, value in overrides.items() if value is not None})

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AnalysisConfig":
        """Build a config from plain keys; camelCase aliases are accepted."""

        known = {item.name for item in fields(cls) if item.name != "patterns"}
        aliases = {"min_siblings_for_archetype": "min_occurrences", "threshold": "collapse_threshold"}
        values: dict[str, Any] = {}
        for raw_key, value in data.items():
            key = normalize_name(str(raw_key))
            key = aliases.get(key, key)
            if key not in known:
                raise ConfigError(f"Unknown configuration key: {raw_key}")
            values[key] = value
        try:
            return cls(**values)
        except TypeError as exc:
            raise ConfigError(str(exc)) from exc


def load_config(path: Path) -> AnalysisConfig:
    """Load thresholds from a YAML file.

    The file may hold the keys at top level or under an ``analysis`` section.
    """

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Unable to read configuration {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")
    section = data.get("analysis", data)
    if not isinstance(section, dict):
        raise ConfigError("'analysis' section must be a mapping")
    return AnalysisConfig.from_mapping(section)
