import unittest

from schemalens.patterns import collapse_paths, expand_patterns, merge_wildcards, normalize_path


class CollapsePathsTests(unittest.TestCase):
    def test_four_siblings_collapse(self) -> None:
        paths = [f"result.{name}.value" for name in "abcd"]
        result = collapse_paths(paths)

        self.assertEqual(result.patterns, ["result.*.value"])
        self.assertEqual(result.wildcards, {"result.*": ["a", "b", "c", "d"]})

    def test_three_siblings_stay_concrete(self) -> None:
        paths = [f"result.{name}.value" for name in "abc"]
        result = collapse_paths(paths)

        self.assertEqual(result.patterns, sorted(paths))
        self.assertEqual(result.wildcards, {})

    def test_threshold_is_configurable(self) -> None:
        paths = [f"result.{name}.value" for name in "abc"]
        result = collapse_paths(paths, threshold=2)
        self.assertEqual(result.patterns, ["result.*.value"])

    def test_leaf_siblings_never_collapse(self) -> None:
        paths = [f"root.{name}" for name in "abcdef"]
        result = collapse_paths(paths)
        self.assertEqual(result.patterns, sorted(paths))

    def test_siblings_with_different_children_stay_apart(self) -> None:
        paths = [f"result.{name}.value" for name in "abcd"] + ["result.e.other"]
        result = collapse_paths(paths)

        self.assertEqual(result.patterns, ["result.*.value", "result.e.other"])
        self.assertEqual(result.wildcards, {"result.*": ["a", "b", "c", "d"]})

    def test_nested_wildcards_rekey_under_outer_pattern(self) -> None:
        users = ["u1", "u2", "u3", "u4"]
        metrics = ["m1", "m2", "m3", "m4"]
        paths = [f"data.{user}.stats.{metric}.value" for user in users for metric in metrics]
        result = collapse_paths(paths)

        self.assertEqual(result.patterns, ["data.*.stats.*.value"])
        self.assertEqual(result.wildcards, {"data.*": users, "data.*.stats.*": metrics})
        self.assertEqual(expand_patterns(result.patterns, result.wildcards), sorted(paths))

    def test_outer_collapse_requires_matching_inner_values(self) -> None:
        paths = [f"data.u{user}.stats.m{metric}.value" for user in range(1, 4) for metric in range(1, 5)]
        paths += [f"data.u4.stats.n{metric}.value" for metric in range(1, 5)]
        result = collapse_paths(paths)

        self.assertNotIn("data.*", result.wildcards)
        self.assertEqual(expand_patterns(result.patterns, result.wildcards), sorted(paths))

    def test_round_trip_on_mixed_paths(self) -> None:
        paths = [
            "id",
            "user.name",
            "user.email",
            "scores.joy.score",
            "scores.joy.confidence",
            "scores.fear.score",
            "scores.fear.confidence",
            "scores.anger.score",
            "scores.anger.confidence",
            "scores.trust.score",
            "scores.trust.confidence",
            "items.[].sku",
        ]
        result = collapse_paths(paths)

        self.assertIn("scores.*.score", result.patterns)
        self.assertEqual(expand_patterns(result.patterns, result.wildcards), sorted(paths))

    def test_patterns_sorted_by_depth(self) -> None:
        paths = ["b.c.d", "a", "b.c", "z"]
        self.assertEqual(collapse_paths(paths).patterns, ["a", "z", "b.c", "b.c.d"])

    def test_array_indices_normalize(self) -> None:
        self.assertEqual(normalize_path("items[3].name"), "items.[].name")
        self.assertEqual(normalize_path("grid.[0].[1]"), "grid.[].[]")

        result = collapse_paths(["items[0].name", "items[1].name"])
        self.assertEqual(result.patterns, ["items.[].name"])

    def test_iteration_cap(self) -> None:
        users = ["u1", "u2", "u3", "u4"]
        metrics = ["m1", "m2", "m3", "m4"]
        paths = [f"data.{user}.stats.{metric}.value" for user in users for metric in metrics]
        result = collapse_paths(paths, max_iterations=1)

        self.assertEqual(result.iterations, 1)
        self.assertEqual(result.patterns, [f"data.{user}.stats.*.value" for user in users])

    def test_merge_wildcards(self) -> None:
        merged = merge_wildcards({"a.*": ["x", "y"]}, {"a.*": ["z", "x"], "b.*": ["q"]})
        self.assertEqual(merged, {"a.*": ["x", "y", "z"], "b.*": ["q"]})


if __name__ == "__main__":
    unittest.main()
