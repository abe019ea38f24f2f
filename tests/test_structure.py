import unittest

from schemalens.config import AnalysisConfig
from schemalens.errors import StructureIncompleteError
from schemalens.nodes import ArrayNode, FieldNode, MapNode, ObjectNode, RefNode
from schemalens.sample import collect_samples
from schemalens.stats import compute_stats
from schemalens.structure import FieldShape, StructureDetector, build_tree, detect_structure, resolve_references

EMOTIONS = ["fear", "anger", "joy", "trust", "surprise"]


def _structure(rows, config=None):
    config = config or AnalysisConfig()
    return detect_structure(compute_stats(collect_samples(rows), config), config)


def _emotion_rows():
    return [
        {
            "id": 7,
            "scores": {
                emotion: {"score": 0.1 + index / 10, "confidence": 0.55 + index / 20}
                for index, emotion in enumerate(EMOTIONS)
            },
        }
    ]


def _keyed_rows(key_count):
    return [
        {
            "metrics": {
                f"k{index}": {"low": 1.5 + index, "high": 9.5 + index}
                for index in range(key_count)
            }
        }
    ]


class MapDetectionTests(unittest.TestCase):
    def test_dynamic_children_become_a_map_with_def(self) -> None:
        result = _structure(_emotion_rows())

        self.assertIn("scores", result.maps)
        self.assertEqual(result.maps["scores"].keys, ("anger", "fear", "joy", "surprise", "trust"))
        self.assertEqual(result.maps["scores"].def_name, "scored_metric")

        scores = result.root.fields["scores"]
        self.assertIsInstance(scores, MapNode)
        self.assertIsInstance(scores.values, RefNode)
        self.assertEqual(scores.values.name, "scored_metric")
        self.assertEqual(scores.to_dict()["values"], {"kind": "ref", "$ref": "#/$defs/scored_metric"})

        self.assertEqual(sorted(result.defs), ["scored_metric"])
        self.assertEqual(sorted(result.defs["scored_metric"].fields), ["confidence", "score"])
        self.assertEqual(result.defs["scored_metric"].fields["score"].aggregation, "avg")

    def test_structure_stats(self) -> None:
        stats = _structure(_emotion_rows()).stats

        self.assertEqual(stats.total_fields, 17)
        self.assertEqual(stats.unique_fields, 9)
        self.assertEqual(stats.def_count, 1)
        self.assertEqual(stats.map_count, 1)
        self.assertEqual(stats.reduction_percent, 47)

    def test_differing_shapes_are_not_maps(self) -> None:
        rows = [{"things": {"a": {"x": 1.5, "y": 2.5}, "b": {"x": 1.5}, "c": {"x": 2.5, "y": 3.5}}}]
        result = _structure(rows)

        self.assertEqual(result.maps, {})
        self.assertIsInstance(result.root.fields["things"], ObjectNode)

    def test_every_detected_map_has_homogeneous_children(self) -> None:
        rows = _emotion_rows()
        rows[0]["nested"] = {"a": {"x": 1.5, "y": 2.5}, "b": {"x": 1.5}, "c": {"x": 2.5, "y": 3.5}}
        config = AnalysisConfig()
        fields = compute_stats(collect_samples(rows), config)
        detector = StructureDetector(config)
        tree = build_tree(fields)
        maps = detector.detect_maps(tree)

        nodes = {}
        stack = [tree]
        while stack:
            node = stack.pop()
            nodes[node.path] = node
            stack.extend(node.children.values())

        for path, detected in maps.items():
            self.assertGreaterEqual(len(detected.keys), config.min_keys_for_map)
            signatures = {
                tuple(sorted((name, shape.key()) for name, shape in nodes[path].children[key].value_shape().items()))
                for key in detected.keys
            }
            self.assertEqual(len(signatures), 1)

    def test_named_objects_are_never_maps(self) -> None:
        rows = [{"metadata": {f"k{index}": {"low": 1.5, "high": 2.5} for index in range(5)}}]
        result = _structure(rows)

        self.assertNotIn("metadata", result.maps)
        self.assertIsInstance(result.root.fields["metadata"], ObjectNode)

    def test_leaf_maps_need_dynamic_key_names(self) -> None:
        rows = [
            {
                "daily": {"2024-01-01": 3, "2024-01-02": 5, "2024-01-03": 7},
                "box": {"width": 3, "height": 5, "depth": 7},
            }
        ]
        result = _structure(rows)

        self.assertIn("daily", result.maps)
        self.assertNotIn("box", result.maps)
        daily = result.root.fields["daily"]
        self.assertIsInstance(daily, MapNode)
        self.assertIsInstance(daily.values, FieldNode)
        self.assertEqual(daily.values.type, "int")

    def test_leaf_maps_by_key_length_variance(self) -> None:
        rows = [{"codes": {name: 3 for name in ["abcd", "efgh", "ijkl", "mnop", "qrst"]}}]
        self.assertIn("codes", _structure(rows).maps)


class DefDetectionTests(unittest.TestCase):
    def test_occurrence_threshold_boundary(self) -> None:
        config = AnalysisConfig(min_occurrences=4)

        below = _structure(_keyed_rows(3), config)
        self.assertIn("metrics", below.maps)
        self.assertEqual(below.defs, {})
        inline = below.root.fields["metrics"]
        self.assertIsInstance(inline, MapNode)
        self.assertIsInstance(inline.values, ObjectNode)
        self.assertEqual(sorted(inline.values.fields), ["high", "low"])

        at = _structure(_keyed_rows(4), config)
        self.assertEqual(len(at.defs), 1)
        self.assertIsInstance(at.root.fields["metrics"].values, RefNode)

    def test_single_field_shapes_stay_inline(self) -> None:
        rows = [{"metrics": {f"k{index}": {"low": 1.5 + index} for index in range(5)}}]
        result = _structure(rows)

        self.assertIn("metrics", result.maps)
        self.assertEqual(result.defs, {})

    def test_name_collisions_get_suffixes(self) -> None:
        rows = [
            {
                "a_stats": {f"k{index}": {"min_price": 1.5, "max_price": 9.5} for index in range(3)},
                "b_stats": {
                    f"k{index}": {"min_price": 1.5, "max_price": 9.5, "avg_price": 4.5} for index in range(3)
                },
            }
        ]
        result = _structure(rows)

        self.assertEqual(result.maps["a_stats"].def_name, "price_metrics")
        self.assertEqual(result.maps["b_stats"].def_name, "price_metrics_2")

    def test_parent_name_fallback(self) -> None:
        rows = [{"sensors": {f"s{index}": {"reading": 2.5, "label": "x"} for index in range(3)}}]
        result = _structure(rows)
        self.assertEqual(result.maps["sensors"].def_name, "sensors_item")

    def test_dominant_role_names(self) -> None:
        detector = StructureDetector()
        measures = {"reading": FieldShape("number", "measure", "sum"), "weight": FieldShape("number", "measure", "sum")}
        dimensions = {
            "status": FieldShape("string", "dimension"),
            "color": FieldShape("string", "dimension"),
            "reading": FieldShape("number", "measure", "sum"),
        }

        self.assertEqual(detector.infer_def_name(measures, "sensors"), "metrics")
        self.assertEqual(detector.infer_def_name(dimensions, "sensors"), "attributes")

        rows = [{"sensors": {f"s{index}": {"reading": 2.5, "weight": 1.5} for index in range(3)}}]
        self.assertEqual(_structure(rows).maps["sensors"].def_name, "metrics")

    def test_first_two_names_when_nothing_else_applies(self) -> None:
        shape = {"reading": FieldShape("number", "measure", "sum"), "label": FieldShape("string", "dimension")}
        self.assertEqual(StructureDetector().infer_def_name(shape, ""), "label_reading")

    def test_nested_values_are_kept_in_defs(self) -> None:
        rows = [
            {
                "scores": {
                    emotion: {"score": 0.1 + index / 10, "confidence": 0.5, "detail": {"lo": 1.5, "hi": 2.5}}
                    for index, emotion in enumerate(EMOTIONS)
                }
            }
        ]
        result = _structure(rows)

        self.assertEqual(result.maps["scores"].def_name, "scored_metric")
        detail = result.defs["scored_metric"].fields["detail"]
        self.assertIsInstance(detail, ObjectNode)
        self.assertEqual(sorted(detail.fields), ["hi", "lo"])
        self.assertEqual(detail.fields["lo"].type, "number")
        self.assertEqual(result.stats.total_fields, 31)
        self.assertEqual(result.stats.unique_fields, 11)

    def test_values_differing_below_first_level_get_separate_defs(self) -> None:
        rows = [
            {
                "a": {f"k{index}": {"v": 1.5, "d": {"x": 2.5}} for index in range(3)},
                "b": {f"k{index}": {"v": 1.5, "d": {"y": "text"}} for index in range(3)},
            }
        ]
        result = _structure(rows)

        self.assertEqual(result.maps["a"].def_name, "a_item")
        self.assertEqual(result.maps["b"].def_name, "b_item")
        self.assertEqual(sorted(result.defs["a_item"].fields["d"].fields), ["x"])
        self.assertEqual(sorted(result.defs["b_item"].fields["d"].fields), ["y"])

    def test_values_differing_below_first_level_are_not_one_map(self) -> None:
        rows = [{"things": {"a": {"d": {"x": 1.5}}, "b": {"d": {"x": 1.5}}, "c": {"d": {"y": 1.5}}}}]
        result = _structure(rows)

        self.assertNotIn("things", result.maps)
        self.assertIsInstance(result.root.fields["things"], ObjectNode)

    def test_output_is_deterministic(self) -> None:
        first = _structure(_emotion_rows()).to_dict()
        second = _structure(_emotion_rows()).to_dict()
        self.assertEqual(first, second)


class AssemblyTests(unittest.TestCase):
    def test_arrays(self) -> None:
        rows = [{"tags": ["x", "y"], "items": [{"sku": "A", "qty": 2}], "grid": [[1, 2], [3]]}]
        root = _structure(rows).root

        tags = root.fields["tags"]
        self.assertIsInstance(tags, ArrayNode)
        self.assertEqual(tags.items.type, "string")

        items = root.fields["items"]
        self.assertIsInstance(items, ArrayNode)
        self.assertIsInstance(items.items, ObjectNode)
        self.assertEqual(sorted(items.items.fields), ["qty", "sku"])

        grid = root.fields["grid"]
        self.assertIsInstance(grid, ArrayNode)
        self.assertIsInstance(grid.items, ArrayNode)
        self.assertEqual(grid.items.items.type, "int")

    def test_array_items_can_be_maps(self) -> None:
        rows = [{"history": [{"2024-01-01": 3, "2024-01-02": 5, "2024-01-03": 7}]}]
        result = _structure(rows)

        self.assertIn("history.[]", result.maps)
        history = result.root.fields["history"]
        self.assertIsInstance(history, ArrayNode)
        self.assertIsInstance(history.items, MapNode)
        self.assertEqual(history.items.keys, ("2024-01-01", "2024-01-02", "2024-01-03"))
        self.assertEqual(history.items.values.type, "int")

    def test_every_node_has_a_kind(self) -> None:
        data = _structure(_emotion_rows()).to_dict()
        self.assertEqual(data["root"]["kind"], "object")
        self.assertEqual(data["root"]["fields"]["scores"]["kind"], "map")
        self.assertEqual(data["root"]["fields"]["id"]["kind"], "field")

    def test_empty_fields_raise(self) -> None:
        with self.assertRaises(StructureIncompleteError):
            detect_structure([])

    def test_deep_paths_raise(self) -> None:
        fields = compute_stats(collect_samples([{"a": {"b": {"c": 1}}}]))
        with self.assertRaises(StructureIncompleteError):
            detect_structure(fields, AnalysisConfig(max_depth=2))

    def test_unresolved_references_raise(self) -> None:
        node = ObjectNode(fields={"m": MapNode(keys=("a",), values=RefNode(name="$sig:deadbeef"))})
        with self.assertRaises(StructureIncompleteError):
            resolve_references(node, {})


if __name__ == "__main__":
    unittest.main()
