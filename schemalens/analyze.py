"""End-to-end analysis: normalize, sample, classify, detect structure."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Optional, Sequence

from .capabilities import Capabilities, Entity, detect_entities, extract_capabilities
from .config import AnalysisConfig
from .errors import EnrichmentError, LimitExceededError
from .io import Table, normalize_input
from .nodes import ArrayNode, FieldNode, MapNode, NodeDef, ObjectNode, RefNode, describe_node, iter_node_paths
from .sample import collect_samples, sample_rows
from .stats import StatsField, compute_stats
from .structure import StructureResult, detect_structure
from .utils import ARRAY_SEGMENT, WILDCARD, RNGConfig, normalize_name, split_path

if TYPE_CHECKING:
    from .enrich import Enricher

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TableAnalysis:
    name: str
    total_rows: int
    sampled_rows: Optional[int]
    fields: list[StatsField]
    structure: StructureResult
    capabilities: Capabilities
    entities: list[Entity] = field(default_factory=list)
    description: Optional[str] = None
    field_descriptions: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "total_rows": self.total_rows}
        if self.sampled_rows is not None:
            data["sampled_rows"] = self.sampled_rows
        if self.description:
            data["description"] = self.description
        data["fields"] = [item.to_dict() for item in self.fields]
        data["structure"] = self.structure.to_dict()
        data["capabilities"] = self.capabilities.to_dict()
        data["entities"] = [entity.to_dict() for entity in self.entities]
        if self.field_descriptions:
            data["field_descriptions"] = dict(self.field_descriptions)
        return data


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    tables: dict[str, TableAnalysis]
    enriched: bool = False

    @property
    def field_count(self) -> int:
        return sum(len(table.fields) for table in self.tables.values())

    def table(self, name: str) -> TableAnalysis:
        return self.tables[name]

    def to_dict(self) -> dict[str, Any]:
        return {
            "enriched": self.enriched,
            "tables": {name: table.to_dict() for name, table in self.tables.items()},
        }


_TYPE_LABELS = {"array": "list of values", "object": "nested object", "date": "timestamp"}


def _readable_name(segment: str) -> str:
    words = normalize_name(segment).replace("_", " ").strip()
    return words[:1].upper() + words[1:]


def _default_description(segment: str, node: NodeDef) -> Optional[str]:
    nullable = False
    if isinstance(node, FieldNode):
        label = _TYPE_LABELS.get(node.type, node.type)
        nullable = node.nullable
    elif isinstance(node, ObjectNode):
        label, nullable = "nested object", node.nullable
    elif isinstance(node, ArrayNode):
        label, nullable = "list of values", node.nullable
    elif isinstance(node, MapNode):
        label, nullable = f"map of {len(node.keys)} keys", node.nullable
    else:
        return None
    text = f"{_readable_name(segment)} ({label})"
    return f"{text}, may be null" if nullable else text


def default_descriptions(node: NodeDef) -> dict[str, str]:
    """Describe every named node below ``node`` from its name and type.

    Array items and map values are skipped; their parent already names them.
    """

    descriptions: dict[str, str] = {}
    for path, child in iter_node_paths(node):
        segment = split_path(path)[-1]
        if segment in (ARRAY_SEGMENT, WILDCARD) or isinstance(child, RefNode):
            continue
        text = _default_description(segment, child)
        if text:
            descriptions[path] = text
    return descriptions


def apply_default_descriptions(table: TableAnalysis) -> TableAnalysis:
    """Attach name-derived descriptions; used when no LLM writes them."""

    structure = table.structure
    descriptions = default_descriptions(structure.root)
    root = describe_node(structure.root, descriptions)

    defs = {}
    for name, type_def in structure.defs.items():
        body = ObjectNode(fields=type_def.fields)
        described = describe_node(body, default_descriptions(body))
        defs[name] = replace(type_def, fields=described.fields)

    return replace(
        table,
        structure=replace(structure, root=root, defs=defs),
        description=table.description or f"Table containing {len(table.fields)} fields",
        field_descriptions={**descriptions, **table.field_descriptions},
    )


def analyze_table(
    name: str,
    rows: Sequence[dict[str, Any]],
    config: Optional[AnalysisConfig] = None,
    rng: Optional[RNGConfig] = None,
) -> TableAnalysis:
    """Run the structural pipeline over one table of rows."""

    config = config or AnalysisConfig()
    rng = rng or RNGConfig(seed=config.seed)

    sampled = sample_rows(rows, config.max_rows, rng)
    if sampled.sampled is not None:
        logger.info("Table %s: sampled %s of %s rows", name, sampled.sampled, sampled.total)

    samples = collect_samples(sampled.rows, max_depth=config.max_depth)
    fields = compute_stats(samples, config)
    structure = detect_structure(fields, config, table=name)
    capabilities = extract_capabilities(fields, config)
    entities = detect_entities(fields, capabilities, config)

    logger.info(
        "Table %s: %s fields, %s maps, %s defs",
        name,
        len(fields),
        structure.stats.map_count,
        structure.stats.def_count,
    )
    analysis = TableAnalysis(
        name=name,
        total_rows=sampled.total,
        sampled_rows=sampled.sampled,
        fields=fields,
        structure=structure,
        capabilities=capabilities,
        entities=entities,
    )
    if config.default_descriptions:
        analysis = apply_default_descriptions(analysis)
    return analysis


def check_enrichment_limits(result: AnalysisResult, config: AnalysisConfig) -> None:
    if len(result.tables) > config.max_tables_for_enrichment:
        raise LimitExceededError(
            f"{len(result.tables)} tables exceed the enrichment limit of {config.max_tables_for_enrichment}",
            result=result,
        )
    if result.field_count > config.max_fields_for_enrichment:
        raise LimitExceededError(
            f"{result.field_count} fields exceed the enrichment limit of {config.max_fields_for_enrichment}",
            result=result,
        )


def analyze_tables(
    tables: Sequence[Table],
    config: Optional[AnalysisConfig] = None,
    *,
    enricher: Optional["Enricher"] = None,
) -> AnalysisResult:
    config = config or AnalysisConfig()
    rng = RNGConfig(seed=config.seed)

    analyses: dict[str, TableAnalysis] = {}
    for index, table in enumerate(tables):
        analyses[table.name] = analyze_table(table.name, table.rows, config, rng.fork(index))
    result = AnalysisResult(tables=analyses)

    if enricher is None:
        return result

    check_enrichment_limits(result, config)
    logger.info("Enriching %s table(s)", len(analyses))
    try:
        return enricher.enrich(result)
    except Exception as error:
        raise EnrichmentError(f"Enrichment failed: {error}", partial_result=result) from error


def analyze(
    data: Any,
    config: Optional[AnalysisConfig] = None,
    *,
    enricher: Optional["Enricher"] = None,
) -> AnalysisResult:
    """Analyze parsed JSON data.

    ``data`` may be a list of records, a mapping of table name to records, or a
    single object. When ``enricher`` is given, descriptions are added after the
    structural pass; failures raise :class:`EnrichmentError` carrying the
    structural result.
    """

    return analyze_tables(normalize_input(data), config, enricher=enricher)
