"""JSON schema definitions for validating structured LLM responses."""

from __future__ import annotations

ENRICHMENT_RESPONSE_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "table": {"type": "string"},
        "fields": {
            "type": "object",
            "additionalProperties": {"type": "string"},
        },
        "defs": {
            "type": "object",
            "additionalProperties": {"type": "string"},
        },
    },
    "required": ["table", "fields"],
    "additionalProperties": True,
}

__all__ = ["ENRICHMENT_RESPONSE_SCHEMA"]
