"""Tagged node graph emitted by structure detection.

Every node carries an explicit ``kind`` discriminant. A dynamic-key object is
always a :class:`MapNode`; when its values were promoted to a reusable type
definition, ``values`` is a :class:`RefNode` naming that definition.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterator, Optional, Union

DEFS_PREFIX = "#/$defs/"


@dataclass(frozen=True, slots=True)
class FieldNode:
    type: str
    role: Optional[str] = None
    aggregation: Optional[str] = None
    format: Optional[str] = None
    unit: Optional[str] = None
    nullable: bool = False
    personal_data: Optional[str] = None
    description: Optional[str] = None
    kind: str = field(default="field", init=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind, "type": self.type}
        for name in ("role", "aggregation", "format", "unit", "personal_data", "description"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        if self.nullable:
            data["nullable"] = True
        return data


@dataclass(frozen=True, slots=True)
class ObjectNode:
    fields: dict[str, "NodeDef"]
    nullable: bool = False
    description: Optional[str] = None
    kind: str = field(default="object", init=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind,
            "fields": {name: child.to_dict() for name, child in self.fields.items()},
        }
        if self.nullable:
            data["nullable"] = True
        if self.description is not None:
            data["description"] = self.description
        return data


@dataclass(frozen=True, slots=True)
class ArrayNode:
    items: "NodeDef"
    nullable: bool = False
    description: Optional[str] = None
    kind: str = field(default="array", init=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind, "items": self.items.to_dict()}
        if self.nullable:
            data["nullable"] = True
        if self.description is not None:
            data["description"] = self.description
        return data


@dataclass(frozen=True, slots=True)
class MapNode:
    keys: tuple[str, ...]
    values: "NodeDef"
    nullable: bool = False
    description: Optional[str] = None
    kind: str = field(default="map", init=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind,
            "keys": list(self.keys),
            "values": self.values.to_dict(),
        }
        if self.nullable:
            data["nullable"] = True
        if self.description is not None:
            data["description"] = self.description
        return data


@dataclass(frozen=True, slots=True)
class RefNode:
    name: str
    kind: str = field(default="ref", init=False)

    @property
    def ref(self) -> str:
        return f"{DEFS_PREFIX}{self.name}"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "$ref": self.ref}


NodeDef = Union[FieldNode, ObjectNode, ArrayNode, MapNode, RefNode]


@dataclass(frozen=True, slots=True)
class TypeDef:
    """A promoted archetype: the shared field layout of many map values.

    Fields may be nested objects, arrays or maps when the values are.
    """

    fields: dict[str, NodeDef]
    description: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"fields": {name: node.to_dict() for name, node in self.fields.items()}}
        if self.description is not None:
            data["description"] = self.description
        return data


def _child_path(path: str, segment: str) -> str:
    return f"{path}.{segment}" if path else segment


def iter_node_paths(node: NodeDef, path: str = "") -> Iterator[tuple[str, NodeDef]]:
    """Yield ``(path, node)`` for every addressable node below ``node``.

    Array items use the ``[]`` segment and map values the ``*`` segment; the
    root itself is not yielded.
    """

    stack: list[tuple[str, NodeDef]] = [(path, node)]
    while stack:
        current_path, current = stack.pop()
        if current_path:
            yield current_path, current
        if isinstance(current, ObjectNode):
            children = [(_child_path(current_path, name), child) for name, child in current.fields.items()]
            stack.extend(reversed(children))
        elif isinstance(current, ArrayNode):
            stack.append((_child_path(current_path, "[]"), current.items))
        elif isinstance(current, MapNode):
            stack.append((_child_path(current_path, "*"), current.values))


def describe_node(node: NodeDef, descriptions: dict[str, str], path: str = "") -> NodeDef:
    """Return a copy of ``node`` with descriptions attached by field path.

    Paths use the same dotted form as the stats fields; array items are
    addressed with ``[]``. Nodes without a matching entry are reused as-is.
    """

    if isinstance(node, RefNode):
        return node

    updated: NodeDef = node
    if isinstance(node, ObjectNode):
        children = {
            name: describe_node(child, descriptions, _child_path(path, name))
            for name, child in node.fields.items()
        }
        updated = replace(node, fields=children)
    elif isinstance(node, ArrayNode):
        updated = replace(node, items=describe_node(node.items, descriptions, _child_path(path, "[]")))
    elif isinstance(node, MapNode):
        updated = replace(node, values=describe_node(node.values, descriptions, _child_path(path, "*")))

    description = descriptions.get(path) if path else None
    if description:
        updated = replace(updated, description=description)
    return updated
