"""Tree reconstruction, dynamic-key map detection and archetype extraction.

The detector works on the flat :class:`~schemalens.stats.StatsField` list of a
single table:

1. the fields are folded back into a tree keyed by path segment;
2. objects and array items whose children share one value shape become maps;
3. map value shapes that recur often enough are promoted to named type
   definitions;
4. the tree is assembled bottom-up into the tagged node graph, with promoted
   shapes replaced by references.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any, Iterator, Mapping, Optional, Sequence

import numpy as np

from .config import AnalysisConfig, matches_any
from .errors import StructureIncompleteError
from .nodes import ArrayNode, FieldNode, MapNode, NodeDef, ObjectNode, RefNode, TypeDef
from .stats import StatsField
from .utils import (
    ARRAY_SEGMENT,
    join_path,
    normalize_name,
    path_depth,
    sanitize_identifier,
    split_path,
    stable_hash,
    unescape_segment,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "$sig:"


@dataclass(frozen=True, slots=True)
class FieldShape:
    type: str
    role: str
    aggregation: str = "none"
    format: Optional[str] = None
    unit: Optional[str] = None
    nullable: bool = False
    personal_data: Optional[str] = None

    @classmethod
    def from_field(cls, stats_field: StatsField) -> "FieldShape":
        return cls(
            type=stats_field.type,
            role=stats_field.role,
            aggregation=stats_field.aggregation,
            format=stats_field.format,
            unit=stats_field.unit,
            nullable=stats_field.nullable,
            personal_data=stats_field.personal_data,
        )

    def key(self) -> str:
        return f"{self.type}:{self.role}:{self.aggregation}:{self.format or ''}:{self.unit or ''}"

    def to_node(self) -> FieldNode:
        return FieldNode(
            type=self.type,
            role=None if self.role == "metadata" else self.role,
            aggregation=None if self.aggregation == "none" else self.aggregation,
            format=self.format,
            unit=self.unit,
            nullable=self.nullable,
            personal_data=self.personal_data,
        )


@dataclass(slots=True)
class TreeNode:
    path: str
    segment: str
    stats_field: Optional[StatsField] = None
    children: dict[str, "TreeNode"] = field(default_factory=dict)
    is_array: bool = False
    is_map: bool = False
    map_keys: tuple[str, ...] = ()
    def_ref: Optional[str] = None

    def real_children(self) -> dict[str, "TreeNode"]:
        return {name: child for name, child in self.children.items() if name != ARRAY_SEGMENT}

    def value_shape(self) -> dict[str, FieldShape]:
        """Shapes of the immediate descendants that carry stats."""

        return {
            name: FieldShape.from_field(child.stats_field)
            for name, child in self.real_children().items()
            if child.stats_field is not None
        }

    def subtree_signature(self) -> str:
        """Canonical encoding of everything below this node.

        Each child contributes ``name=<shape key>``, sorted by name. Nested
        objects and array items append their own signature in braces, so two
        values only compare equal when they agree at every depth.
        """

        entries = []
        for name in sorted(self.real_children()):
            child = self.children[name]
            entry = name
            if child.stats_field is not None:
                entry = f"{name}={FieldShape.from_field(child.stats_field).key()}"
            if child.children:
                entry += "{" + child.subtree_signature() + "}"
            entries.append(entry)
        item = self.children.get(ARRAY_SEGMENT)
        if item is not None:
            entry = ARRAY_SEGMENT
            if item.stats_field is not None:
                entry += "=" + FieldShape.from_field(item.stats_field).key()
            entries.append(entry + "{" + item.subtree_signature() + "}")
        return "|".join(entries)

    def descendant_count(self) -> int:
        """Number of stats-carrying nodes below this one."""

        return sum(1 for node in iter_tree(self) if node is not self and node.stats_field is not None)


@dataclass(frozen=True, slots=True)
class DetectedMap:
    path: str
    keys: tuple[str, ...]
    signature: str
    def_name: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"path": self.path, "keys": list(self.keys)}
        if self.def_name is not None:
            data["def_name"] = self.def_name
        return data


@dataclass(frozen=True, slots=True)
class DetectedDef:
    name: str
    signature: str
    shape: dict[str, FieldShape]
    occurrences: tuple[str, ...]
    field_count: int = 0


@dataclass(frozen=True, slots=True)
class StructureStats:
    total_fields: int
    unique_fields: int
    def_count: int
    map_count: int
    reduction_percent: int

    def to_dict(self) -> dict[str, int]:
        return {
            "total_fields": self.total_fields,
            "unique_fields": self.unique_fields,
            "def_count": self.def_count,
            "map_count": self.map_count,
            "reduction_percent": self.reduction_percent,
        }


@dataclass(frozen=True, slots=True)
class StructureResult:
    defs: dict[str, TypeDef]
    root: NodeDef
    maps: dict[str, DetectedMap]
    stats: StructureStats

    def to_dict(self) -> dict[str, Any]:
        return {
            "defs": {name: type_def.to_dict() for name, type_def in self.defs.items()},
            "root": self.root.to_dict(),
            "maps": {path: detected.to_dict() for path, detected in self.maps.items()},
            "stats": self.stats.to_dict(),
        }


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------


def build_tree(fields: Sequence[StatsField], max_depth: int = 50) -> TreeNode:
    """Fold flat stats fields into a tree keyed by path segment."""

    root = TreeNode(path="", segment="")
    for stats_field in fields:
        parts = split_path(stats_field.path)
        if len(parts) > max_depth:
            raise StructureIncompleteError(
                f"Path '{stats_field.path}' is deeper than {max_depth} segments"
            )
        current = root
        for index, part in enumerate(parts):
            child = current.children.get(part)
            if child is None:
                child = TreeNode(
                    path=".".join(parts[: index + 1]),
                    segment=part,
                    is_array=part == ARRAY_SEGMENT,
                )
                current.children[part] = child
            current = child
        current.stats_field = stats_field
    return root


def iter_tree(root: TreeNode) -> Iterator[TreeNode]:
    """Pre-order traversal without recursion."""

    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(list(node.children.values())))


def _context_name(path: str) -> str:
    for segment in reversed(split_path(path)):
        if segment != ARRAY_SEGMENT:
            return segment
    return ""


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


class StructureDetector:
    """Detect maps and archetypes for one table and assemble its node graph."""

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        self.config = config or AnalysisConfig()
        self.patterns = self.config.patterns

    def detect(self, fields: Sequence[StatsField], table: Optional[str] = None) -> StructureResult:
        if not fields:
            raise StructureIncompleteError("No fields available to derive a structure", table=table)

        tree = build_tree(fields, self.config.max_depth)
        maps = self.detect_maps(tree)
        maps, detected_defs = self.detect_defs(tree, maps)

        root = self.assemble_node(tree, maps)
        names = {_placeholder(detected.signature): name for name, detected in detected_defs.items()}
        root = resolve_references(root, names)

        nodes = {node.path: node for node in iter_tree(tree)}
        defs = {}
        for name in sorted(detected_defs):
            body = self.assemble_def(nodes[detected_defs[name].occurrences[0]], maps)
            defs[name] = TypeDef(fields={key: resolve_references(child, names) for key, child in body.items()})
        stats = _structure_stats(fields, detected_defs, maps)
        logger.debug(
            "Structure for %s: %s maps, %s defs, %s%% reduction",
            table or "table",
            stats.map_count,
            stats.def_count,
            stats.reduction_percent,
        )
        return StructureResult(defs=defs, root=root, maps=dict(sorted(maps.items())), stats=stats)

    # -- maps ---------------------------------------------------------------

    def detect_maps(self, tree: TreeNode) -> dict[str, DetectedMap]:
        maps: dict[str, DetectedMap] = {}
        for node in iter_tree(tree):
            if node is tree:
                continue
            detected = self._classify_map(node)
            if detected is None:
                continue
            node.is_map = True
            node.map_keys = detected.keys
            maps[node.path] = detected
            logger.debug("Map detected at %s with %s keys", node.path, len(detected.keys))
        return maps

    def _classify_map(self, node: TreeNode) -> Optional[DetectedMap]:
        if ARRAY_SEGMENT in node.children:
            return None
        if normalize_name(node.segment) in self.patterns.named_objects:
            return None
        children = node.children
        if len(children) < self.config.min_keys_for_map:
            return None

        keys = tuple(sorted(children))
        if all(child.real_children() and ARRAY_SEGMENT not in child.children for child in children.values()):
            signatures = {child.subtree_signature() for child in children.values()}
            if len(signatures) != 1:
                return None
            signature = signatures.pop()
            if not signature:
                return None
            return DetectedMap(path=node.path, keys=keys, signature=signature)

        if any(child.children or child.stats_field is None for child in children.values()):
            return None

        # Leaf values carry no descendant shape, so signature equality alone
        # cannot tell a map from a record; require key-name evidence as well.
        value_keys = {FieldShape.from_field(child.stats_field).key() for child in children.values()}
        if len(value_keys) != 1:
            return None
        if not self._has_dynamic_keys(keys):
            return None
        return DetectedMap(path=node.path, keys=keys, signature=f"={value_keys.pop()}")

    def _has_dynamic_keys(self, keys: tuple[str, ...]) -> bool:
        raw = [unescape_segment(key) for key in keys]
        matching = sum(1 for key in raw if matches_any(self.patterns.dynamic_keys, key))
        if matching / len(raw) >= self.config.dynamic_key_ratio:
            return True
        if len(raw) >= self.config.min_keys_for_variance:
            variance = float(np.var([len(key) for key in raw]))
            return variance <= self.config.max_key_length_variance
        return False

    # -- defs ---------------------------------------------------------------

    def detect_defs(
        self,
        tree: TreeNode,
        maps: dict[str, DetectedMap],
    ) -> tuple[dict[str, DetectedMap], dict[str, DetectedDef]]:
        nodes = {node.path: node for node in iter_tree(tree)}
        candidates: dict[str, dict[str, Any]] = {}

        for path in sorted(maps):
            detected = maps[path]
            first = nodes[path].children[detected.keys[0]]
            shape = first.value_shape()
            if not shape:
                continue
            entry = candidates.setdefault(
                detected.signature,
                {
                    "shape": shape,
                    "occurrences": [],
                    "maps": [],
                    "context": path,
                    "field_count": first.descendant_count(),
                },
            )
            entry["occurrences"].extend(join_path(path, key) for key in detected.keys)
            entry["maps"].append(path)

        defs: dict[str, DetectedDef] = {}
        updated = dict(maps)
        for signature, entry in candidates.items():
            shape = entry["shape"]
            occurrences = entry["occurrences"]
            if len(occurrences) < self.config.min_occurrences or len(shape) < self.config.min_def_fields:
                logger.debug(
                    "Shape at %s stays inline (%s occurrences, %s fields)",
                    entry["context"],
                    len(occurrences),
                    len(shape),
                )
                continue

            name = _unique_name(self.infer_def_name(shape, entry["context"]), defs)
            defs[name] = DetectedDef(
                name=name,
                signature=signature,
                shape=shape,
                occurrences=tuple(occurrences),
                field_count=entry["field_count"],
            )
            for path in entry["maps"]:
                updated[path] = replace(updated[path], def_name=name)
                nodes[path].def_ref = name

        return updated, defs

    def infer_def_name(self, shape: Mapping[str, FieldShape], context: str) -> str:
        names = sorted(shape)
        normalized = {normalize_name(name) for name in names}

        for required, def_name in self.patterns.def_names:
            if required <= normalized:
                return def_name

        roles = Counter(shape[name].role for name in names)
        dominant_role, dominant_count = roles.most_common(1)[0]
        has_majority = dominant_count * 2 > len(names)

        stem = _common_stem([normalize_name(name) for name in names])
        if stem:
            suffix = "metrics" if has_majority and dominant_role == "measure" else "data"
            return f"{stem}_{suffix}"

        if has_majority:
            role_names = dict(self.patterns.role_def_names)
            if dominant_role in role_names:
                return role_names[dominant_role]

        parent = sanitize_identifier(_context_name(context))
        if parent:
            return f"{parent}_item"

        return sanitize_identifier("_".join(names[:2])) or "shape"

    # -- assembly -----------------------------------------------------------

    def assemble_node(self, node: TreeNode, maps: Mapping[str, DetectedMap], depth: int = 0) -> NodeDef:
        """Build the tagged node for ``node`` and everything below it."""

        if depth > self.config.max_depth:
            raise StructureIncompleteError(f"Structure deeper than {self.config.max_depth} levels at '{node.path}'")

        if depth == 0:
            return ObjectNode(fields=self._assemble_children(node, maps, depth))

        stats_field = node.stats_field
        nullable = bool(stats_field and stats_field.nullable)

        if ARRAY_SEGMENT in node.children:
            return ArrayNode(items=self._assemble_items(node.children[ARRAY_SEGMENT], maps, depth + 1), nullable=nullable)

        if node.path in maps:
            return self._assemble_map(node, maps[node.path], maps, depth)

        if node.real_children():
            return ObjectNode(fields=self._assemble_children(node, maps, depth), nullable=nullable)

        return _leaf_node(stats_field)

    def assemble_def(self, value: TreeNode, maps: Mapping[str, DetectedMap]) -> dict[str, NodeDef]:
        """Field layout of a promoted def, taken from one of its map values.

        Nested objects, arrays and maps inside the value are kept, so the def
        describes the value at every depth.
        """

        return self._assemble_children(value, maps, path_depth(value.path))

    def _assemble_children(self, node: TreeNode, maps: Mapping[str, DetectedMap], depth: int) -> dict[str, NodeDef]:
        return {
            name: self.assemble_node(child, maps, depth + 1)
            for name, child in node.real_children().items()
        }

    def _assemble_items(self, item: TreeNode, maps: Mapping[str, DetectedMap], depth: int) -> NodeDef:
        if depth > self.config.max_depth:
            raise StructureIncompleteError(f"Structure deeper than {self.config.max_depth} levels at '{item.path}'")
        if item.path in maps:
            return self._assemble_map(item, maps[item.path], maps, depth)
        if item.real_children():
            return ObjectNode(fields=self._assemble_children(item, maps, depth))
        if ARRAY_SEGMENT in item.children:
            return ArrayNode(items=self._assemble_items(item.children[ARRAY_SEGMENT], maps, depth + 1))
        return _leaf_node(item.stats_field)

    def _assemble_map(
        self,
        node: TreeNode,
        detected: DetectedMap,
        maps: Mapping[str, DetectedMap],
        depth: int,
    ) -> MapNode:
        nullable = bool(node.stats_field and node.stats_field.nullable)
        if detected.def_name is not None:
            values: NodeDef = RefNode(name=_placeholder(detected.signature))
        else:
            values = self.assemble_node(node.children[detected.keys[0]], maps, depth + 1)
        return MapNode(keys=detected.keys, values=values, nullable=nullable)


def _leaf_node(stats_field: Optional[StatsField]) -> NodeDef:
    if stats_field is None:
        return FieldNode(type="null", nullable=True)
    if stats_field.type == "array":
        return ArrayNode(items=FieldNode(type=stats_field.item_type or "string"), nullable=stats_field.nullable)
    return FieldShape.from_field(stats_field).to_node()


def _placeholder(signature: str) -> str:
    return PLACEHOLDER_PREFIX + stable_hash([signature])[:16]


def resolve_references(node: NodeDef, names: Mapping[str, str]) -> NodeDef:
    """Rewrite signature placeholders in ``RefNode`` values to final def names."""

    if isinstance(node, RefNode):
        if not node.name.startswith(PLACEHOLDER_PREFIX):
            return node
        resolved = names.get(node.name)
        if resolved is None:
            raise StructureIncompleteError(f"Unresolved type reference {node.name}")
        return RefNode(name=resolved)
    if isinstance(node, ObjectNode):
        return replace(node, fields={name: resolve_references(child, names) for name, child in node.fields.items()})
    if isinstance(node, ArrayNode):
        return replace(node, items=resolve_references(node.items, names))
    if isinstance(node, MapNode):
        return replace(node, values=resolve_references(node.values, names))
    return node


def _common_stem(names: list[str]) -> Optional[str]:
    if len(names) < 2:
        return None
    tokens = [name.split("_") for name in names]
    if any(len(parts) < 2 for parts in tokens):
        return None
    for candidate in (tokens[0][0], tokens[0][-1]):
        if len(candidate) < 2:
            continue
        if all(parts[0] == candidate for parts in tokens) or all(parts[-1] == candidate for parts in tokens):
            return sanitize_identifier(candidate) or None
    return None


def _unique_name(base: str, taken: Mapping[str, Any]) -> str:
    base = sanitize_identifier(base) or "shape"
    if base not in taken:
        return base
    index = 2
    while f"{base}_{index}" in taken:
        index += 1
    return f"{base}_{index}"


def _structure_stats(
    fields: Sequence[StatsField],
    defs: Mapping[str, DetectedDef],
    maps: Mapping[str, DetectedMap],
) -> StructureStats:
    total = len(fields)
    in_defs = sum(detected.field_count * len(detected.occurrences) for detected in defs.values())
    unique = total - in_defs + sum(detected.field_count for detected in defs.values())
    return StructureStats(
        total_fields=total,
        unique_fields=unique,
        def_count=len(defs),
        map_count=len(maps),
        reduction_percent=round((1 - unique / total) * 100),
    )


def detect_structure(
    fields: Sequence[StatsField],
    config: Optional[AnalysisConfig] = None,
    *,
    table: Optional[str] = None,
) -> StructureResult:
    """Run map/def detection and node assembly for one table's fields."""

    return StructureDetector(config).detect(fields, table=table)
