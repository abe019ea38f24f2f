"""What a table supports: per-role field patterns and detected entities."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from .config import AnalysisConfig
from .patterns import collapse_paths, expand_patterns, merge_wildcards
from .stats import StatsField
from .utils import leaf_name, normalize_name, parent_path, path_depth

_ROLE_GROUPS = {
    "identifier": "identifiers",
    "measure": "measures",
    "dimension": "dimensions",
    "time": "time_fields",
    "text": "searchable",
    "metadata": "metadata",
}

_NAME_FIELDS = frozenset({"name", "title", "label"})


@dataclass(slots=True)
class Capabilities:
    identifiers: list[str] = field(default_factory=list)
    measures: list[str] = field(default_factory=list)
    dimensions: list[str] = field(default_factory=list)
    time_fields: list[str] = field(default_factory=list)
    searchable: list[str] = field(default_factory=list)
    metadata: list[str] = field(default_factory=list)
    wildcards: dict[str, list[str]] = field(default_factory=dict)
    time_series: Optional[str] = None
    personal_data: dict[str, str] = field(default_factory=dict)

    def pattern_for(self, path: str) -> str:
        """Return the collapsed pattern covering ``path`` (or the path itself)."""

        for group in _ROLE_GROUPS.values():
            for pattern in getattr(self, group):
                if pattern == path or path in expand_patterns([pattern], self.wildcards):
                    return pattern
        return path

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "identifiers": list(self.identifiers),
            "measures": list(self.measures),
            "dimensions": list(self.dimensions),
            "time_fields": list(self.time_fields),
        }
        if self.searchable:
            data["searchable"] = list(self.searchable)
        if self.metadata:
            data["metadata"] = list(self.metadata)
        if self.wildcards:
            data["wildcards"] = {key: list(values) for key, values in self.wildcards.items()}
        if self.time_series:
            data["time_series"] = self.time_series
        if self.personal_data:
            data["personal_data"] = dict(self.personal_data)
        return data


@dataclass(frozen=True, slots=True)
class Entity:
    name: str
    description: str
    id_field: str
    name_field: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = {"name": self.name, "description": self.description, "id_field": self.id_field}
        if self.name_field:
            data["name_field"] = self.name_field
        return data


def extract_capabilities(fields: Sequence[StatsField], config: Optional[AnalysisConfig] = None) -> Capabilities:
    """Group paths by role and collapse each group into wildcard patterns."""

    config = config or AnalysisConfig()
    grouped: dict[str, list[str]] = {group: [] for group in _ROLE_GROUPS.values()}
    for stats_field in fields:
        grouped[_ROLE_GROUPS.get(stats_field.role, "metadata")].append(stats_field.path)

    capabilities = Capabilities()
    dictionaries = []
    for group, paths in grouped.items():
        result = collapse_paths(
            paths,
            threshold=config.collapse_threshold,
            max_iterations=config.max_collapse_iterations,
        )
        setattr(capabilities, group, result.patterns)
        dictionaries.append(result.wildcards)
    capabilities.wildcards = merge_wildcards(*dictionaries)
    capabilities.personal_data = {
        stats_field.path: stats_field.personal_data
        for stats_field in sorted(fields, key=lambda item: item.path)
        if stats_field.personal_data
    }

    if capabilities.time_fields:
        capabilities.time_series = min(capabilities.time_fields, key=lambda path: (path_depth(path), path))
    return capabilities


def detect_entities(
    fields: Sequence[StatsField],
    capabilities: Capabilities,
    config: Optional[AnalysisConfig] = None,
) -> list[Entity]:
    """Match identifier fields against the entity table; one entity per type."""

    config = config or AnalysisConfig()
    identifiers = [item for item in fields if item.role == "identifier"]
    entities: list[Entity] = []
    seen: set[str] = set()

    for id_field in identifiers:
        leaf = normalize_name(leaf_name(id_field.path))
        path = normalize_name(id_field.path)
        for entity_name, name_patterns, id_patterns in config.patterns.entities:
            if entity_name in seen:
                continue
            matches_id = any(re.search(pattern, leaf) for pattern in id_patterns)
            matches_path = any(re.search(pattern, path) for pattern in name_patterns)
            if matches_id or matches_path:
                entities.append(
                    Entity(
                        name=entity_name,
                        description=f"{entity_name} entity",
                        id_field=capabilities.pattern_for(id_field.path),
                        name_field=_name_field(fields, id_field, capabilities),
                    )
                )
                seen.add(entity_name)
                break

    if not entities:
        top_level = [item for item in identifiers if path_depth(item.path) == 1]
        if top_level:
            root_id = next((item for item in top_level if normalize_name(item.path) == "id"), top_level[0])
            entities.append(
                Entity(
                    name="Record",
                    description="Main data record",
                    id_field=root_id.path,
                    name_field=_name_field(fields, root_id, capabilities),
                )
            )
    return entities


def _name_field(fields: Sequence[StatsField], id_field: StatsField, capabilities: Capabilities) -> Optional[str]:
    parent = parent_path(id_field.path)
    for candidate in fields:
        if candidate.role not in {"text", "dimension"}:
            continue
        if parent_path(candidate.path) != parent:
            continue
        if normalize_name(leaf_name(candidate.path)) in _NAME_FIELDS:
            return capabilities.pattern_for(candidate.path)
    return None
