"""Optional LLM pass that attaches human-readable descriptions."""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import Any

from .analyze import AnalysisResult, TableAnalysis
from .llm import LLMClient
from .nodes import FieldNode, describe_node, iter_node_paths
from .schemas import ENRICHMENT_RESPONSE_SCHEMA

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You document datasets. Given the inferred structure of one table, describe "
    "what the table holds, what each listed field means in domain terms, and what "
    "each reusable type represents. Return field paths exactly as given, including "
    "escaped dots, '[]' array segments and '*' map segments. Reply with JSON only."
)


def build_enrichment_prompt(table: TableAnalysis, max_samples: int = 3) -> dict[str, Any]:
    """Build the chat prompt describing one table's compact structure."""

    stats = {item.path: item for item in table.fields}
    fields = []
    for path, node in iter_node_paths(table.structure.root):
        if not isinstance(node, FieldNode):
            continue
        entry: dict[str, Any] = {"path": path, "type": node.type, "role": node.role or "metadata"}
        stats_field = stats.get(path)
        if stats_field is not None and stats_field.samples:
            entry["examples"] = list(stats_field.samples[:max_samples])
        fields.append(entry)

    summary = {
        "table": table.name,
        "fields": fields,
        "maps": sorted(table.structure.maps),
        "defs": {name: sorted(type_def.fields) for name, type_def in table.structure.defs.items()},
    }
    instructions = (
        "Structure:\n"
        f"{json.dumps(summary, indent=2, default=str)}\n\n"
        'Respond with {"table": "<one sentence>", "fields": {"<path>": "<description>"}, '
        '"defs": {"<def name>": "<description>"}}.'
    )
    return {
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": instructions},
        ]
    }


def apply_descriptions(table: TableAnalysis, response: dict[str, Any]) -> TableAnalysis:
    """Rebuild the frozen structure of ``table`` with descriptions attached."""

    field_descriptions = {
        path: text.strip() for path, text in (response.get("fields") or {}).items() if text and text.strip()
    }
    def_descriptions = response.get("defs") or {}

    structure = table.structure
    defs = {
        name: replace(type_def, description=def_descriptions[name]) if def_descriptions.get(name) else type_def
        for name, type_def in structure.defs.items()
    }
    unknown = sorted(set(def_descriptions) - set(defs))
    if unknown:
        logger.warning("Ignoring descriptions for unknown defs: %s", ", ".join(unknown))

    root = describe_node(structure.root, field_descriptions)
    return replace(
        table,
        structure=replace(structure, root=root, defs=defs),
        description=(response.get("table") or "").strip() or table.description,
        field_descriptions={**table.field_descriptions, **field_descriptions},
    )


class Enricher:
    """Ask the completion server for descriptions, one request per table."""

    def __init__(self, client: LLMClient, *, max_samples: int = 3) -> None:
        self.client = client
        self.max_samples = max_samples

    def enrich_table(self, table: TableAnalysis) -> TableAnalysis:
        prompt = build_enrichment_prompt(table, self.max_samples)
        response = self.client.generate_text(prompt, schema=ENRICHMENT_RESPONSE_SCHEMA, parse_json=True)
        logger.debug("Received %s field descriptions for %s", len(response.get("fields", {})), table.name)
        return apply_descriptions(table, response)

    def enrich(self, result: AnalysisResult) -> AnalysisResult:
        tables = {name: self.enrich_table(table) for name, table in result.tables.items()}
        return replace(result, tables=tables, enriched=True)
