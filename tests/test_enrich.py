import json
import unittest
from unittest.mock import patch

import httpx

from schemalens import analyze
from schemalens.config import AnalysisConfig
from schemalens.enrich import Enricher, build_enrichment_prompt
from schemalens.errors import EnrichmentError, LimitExceededError
from schemalens.llm import LLMClient, LLMConfig


def _rows():
    return [
        {
            "id": 10 + record,
            "title": f"clip {record}",
            "scores": {
                emotion: {"score": 0.1 + index / 10, "confidence": 0.55 + index / 20}
                for index, emotion in enumerate(["fear", "anger", "joy", "trust", "surprise"])
            },
        }
        for record in range(3)
    ]


def _make_response(content) -> httpx.Response:
    return httpx.Response(
        status_code=200,
        json={"choices": [{"index": 0, "message": {"role": "assistant", "content": json.dumps(content)}}]},
        request=httpx.Request("POST", "http://127.0.0.1:8080/v1/chat/completions"),
    )


DESCRIPTIONS = {
    "table": "Emotion scores per video clip.",
    "fields": {
        "id": "Clip identifier",
        "title": "Clip title",
        "scores": "Scores keyed by emotion",
        "scores.*.score": "Strength of the emotion",
    },
    "defs": {"scored_metric": "A score with the model's confidence"},
}


class EnricherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = LLMClient(config=LLMConfig(global_seed=5, max_retries=0))
        self.addCleanup(self.client.close)
        self.enricher = Enricher(self.client)

    def test_descriptions_are_attached(self) -> None:
        with patch.object(self.client._client, "post", return_value=_make_response(DESCRIPTIONS)) as post:
            result = analyze(_rows(), enricher=self.enricher)

        self.assertEqual(post.call_count, 1)
        self.assertTrue(result.enriched)
        table = result.table("root")
        self.assertEqual(table.description, "Emotion scores per video clip.")
        self.assertEqual(table.structure.root.fields["id"].description, "Clip identifier")
        self.assertEqual(table.structure.root.fields["scores"].description, "Scores keyed by emotion")
        self.assertEqual(table.structure.defs["scored_metric"].description, "A score with the model's confidence")
        self.assertEqual(table.field_descriptions["scores.*.score"], "Strength of the emotion")
        self.assertEqual(table.structure.defs["scored_metric"].fields["confidence"].description, "Confidence (number)")

    def test_prompt_lists_compact_structure(self) -> None:
        table = analyze(_rows()).table("root")
        prompt = build_enrichment_prompt(table)

        content = prompt["messages"][1]["content"]
        self.assertIn('"scored_metric"', content)
        self.assertIn('"path": "id"', content)
        self.assertNotIn("scores.fear", content)

    def test_failure_carries_structural_result(self) -> None:
        expected = analyze(_rows())
        with patch.object(self.client._client, "post", return_value=_make_response(["not", "an", "object"])):
            with self.assertRaises(EnrichmentError) as ctx:
                analyze(_rows(), enricher=self.enricher)

        partial = ctx.exception.partial_result
        self.assertFalse(partial.enriched)
        self.assertEqual(partial.to_dict(), expected.to_dict())
        self.assertIsNotNone(ctx.exception.__cause__)

    def test_transport_failure_is_wrapped(self) -> None:
        with patch.object(
            self.client._client, "post", side_effect=httpx.ConnectError("refused")
        ):
            with self.assertRaises(EnrichmentError) as ctx:
                analyze(_rows(), enricher=self.enricher)
        self.assertIsInstance(ctx.exception.__cause__, httpx.ConnectError)

    def test_limits_are_checked_first(self) -> None:
        config = AnalysisConfig(max_fields_for_enrichment=5)
        with patch.object(self.client._client, "post") as post:
            with self.assertRaises(LimitExceededError) as ctx:
                analyze(_rows(), config, enricher=self.enricher)

        post.assert_not_called()
        self.assertIn("root", ctx.exception.result.tables)

    def test_table_limit(self) -> None:
        data = {f"t{index}": [{"id": index}] for index in range(3)}
        with self.assertRaises(LimitExceededError):
            analyze(data, AnalysisConfig(max_tables_for_enrichment=2), enricher=self.enricher)


class DefaultDescriptionTests(unittest.TestCase):
    def test_unenriched_tables_get_name_based_descriptions(self) -> None:
        rows = [
            {"id": 1, "created_at": "2024-01-01T10:00:00Z", "nickname": "ann", **_rows()[0]},
            {"id": 2, "created_at": "2024-01-02T10:00:00Z", **_rows()[1]},
        ]
        table = analyze(rows).table("root")
        fields = table.structure.root.fields

        self.assertEqual(table.description, f"Table containing {len(table.fields)} fields")
        self.assertEqual(fields["created_at"].description, "Created at (timestamp)")
        self.assertEqual(fields["nickname"].description, "Nickname (string), may be null")
        self.assertEqual(fields["scores"].description, "Scores (map of 5 keys)")
        self.assertEqual(table.structure.defs["scored_metric"].fields["score"].description, "Score (number)")
        self.assertEqual(table.field_descriptions["created_at"], "Created at (timestamp)")
        self.assertNotIn("scores.*", table.field_descriptions)

    def test_defaults_can_be_disabled(self) -> None:
        table = analyze(_rows(), AnalysisConfig(default_descriptions=False)).table("root")

        self.assertIsNone(table.description)
        self.assertIsNone(table.structure.root.fields["id"].description)
        self.assertEqual(table.field_descriptions, {})

    def test_failed_enrichment_keeps_defaults(self) -> None:
        client = LLMClient(config=LLMConfig(max_retries=0))
        self.addCleanup(client.close)
        with patch.object(client._client, "post", side_effect=httpx.ConnectError("refused")):
            with self.assertRaises(EnrichmentError) as ctx:
                analyze(_rows(), enricher=Enricher(client))

        table = ctx.exception.partial_result.table("root")
        self.assertTrue(table.description.startswith("Table containing"))
        self.assertEqual(table.structure.root.fields["title"].description, "Title (string)")


if __name__ == "__main__":
    unittest.main()
