# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
from __future__ import annotations

import unittest

from graphsplice import ir
from graphsplice.rewriter import _basics, _matcher, _pattern_ir


def _matcher_for(text: str) -> _matcher.SubgraphMatcher:
    return _matcher.SubgraphMatcher(_pattern_ir.GraphPattern.from_text(text))


_TRANSPOSE_MATMUL = """
    graph(%input, %weight):
        %weight_t = aten::t(%weight)
        %res = aten::matmul(%input, %weight_t)
        return (%res)
"""


class SubgraphMatcherTest(unittest.TestCase):
    def test_match_binds_values_and_claims_non_constant_nodes(self):
        matcher = _matcher_for(
            """
            graph(%input, %weight, %bias):
                %weight_t = aten::t(%weight)
                %res = aten::addmm(%bias, %input, %weight_t, 1, 1)
                return (%res)
            """
        )
        graph = ir.parse_graph(
            """
            graph(%x, %w, %b):
                %wt = aten::t(%w)
                %y = aten::addmm(%b, %x, %wt, 1, 1)
                return (%y)
            """
        )
        matches = matcher.find_matches(graph)
        self.assertEqual(len(matches), 1)
        match = matches[0]
        self.assertEqual([node.kind for node in match.nodes], ["aten::t", "aten::addmm"])
        self.assertIs(match.anchor, graph[-1])
        self.assertEqual(match.bindings["weight"].name, "w")
        self.assertEqual(match.bindings["bias"].name, "b")
        self.assertEqual([v.name for v in match.outputs], ["y"])

    def test_matches_are_disjoint_and_in_graph_order(self):
        graph = ir.parse_graph(
            """
            graph(%x, %w1, %w2):
                %t1 = aten::t(%w1)
                %y1 = aten::matmul(%x, %t1)
                %t2 = aten::t(%w2)
                %y2 = aten::matmul(%y1, %t2)
                return (%y2)
            """
        )
        matches = _matcher_for(_TRANSPOSE_MATMUL).find_matches(graph)
        self.assertEqual([match.anchor.outputs[0].name for match in matches], ["y1", "y2"])
        self.assertEqual([n for match in matches for n in match.nodes], list(graph))

    def test_overlapping_match_loses_to_earlier_match(self):
        graph = ir.parse_graph(
            """
            graph(%x):
                %a = aten::relu(%x)
                %b = aten::relu(%a)
                %c = aten::relu(%b)
                return (%c)
            """
        )
        statuses = []
        matcher = _matcher_for(
            """
            graph(%x):
                %y = aten::relu(%x)
                %z = aten::relu(%y)
                return (%z)
            """
        )
        matches = matcher.find_matches(
            graph, on_match=lambda node, match, status: statuses.append(status)
        )
        self.assertEqual(len(matches), 1)
        self.assertEqual(list(matches[0].nodes), [graph[0], graph[1]])
        self.assertEqual(
            statuses,
            [
                _basics.MatchStatus.NO_MATCH,
                _basics.MatchStatus.SUCCESS,
                _basics.MatchStatus.OVERLAPPING,
            ],
        )

    def test_distinct_pattern_inputs_can_bind_the_same_value(self):
        graph = ir.parse_graph(
            """
            graph(%x):
                %y = aten::mul(%x, %x)
                return (%y)
            """
        )
        matcher = _matcher_for(
            """
            graph(%a, %b):
                %c = aten::mul(%a, %b)
                return (%c)
            """
        )
        match = matcher.match(graph, graph[0])
        self.assertTrue(match)
        self.assertIs(match.bindings["a"], match.bindings["b"])

    def test_repeated_pattern_input_requires_the_same_value(self):
        graph = ir.parse_graph(
            """
            graph(%x, %y):
                %z = aten::mul(%x, %y)
                return (%z)
            """
        )
        matcher = _matcher_for(
            """
            graph(%a):
                %c = aten::mul(%a, %a)
                return (%c)
            """
        )
        match = matcher.match(graph, graph[0])
        self.assertFalse(match)
        self.assertIn("Binding conflict", match.reason)

    def test_interior_value_used_outside_is_rejected(self):
        graph = ir.parse_graph(
            """
            graph(%x, %w):
                %wt = aten::t(%w)
                %y = aten::matmul(%x, %wt)
                %z = aten::add(%y, %wt, 1)
                return (%z)
            """
        )
        matcher = _matcher_for(_TRANSPOSE_MATMUL)
        match = matcher.match(graph, graph[1])
        self.assertFalse(match)
        self.assertIn("used outside of the match", match.reason)
        self.assertEqual(matcher.find_matches(graph), [])

    def test_interior_value_returned_by_graph_is_rejected(self):
        graph = ir.parse_graph(
            """
            graph(%x, %w):
                %wt = aten::t(%w)
                %y = aten::matmul(%x, %wt)
                return (%y, %wt)
            """
        )
        match = _matcher_for(_TRANSPOSE_MATMUL).match(graph, graph[1])
        self.assertFalse(match)
        self.assertIn("output of the graph", match.reason)

    def test_output_used_before_anchor_is_rejected(self):
        graph = ir.parse_graph(
            """
            graph(%x):
                %a = aten::relu(%x)
                %u = aten::sigmoid(%a)
                %b = aten::neg(%a)
                return (%b, %u)
            """
        )
        matcher = _matcher_for(
            """
            graph(%x):
                %a = aten::relu(%x)
                %b = aten::neg(%a)
                return (%b, %a)
            """
        )
        match = matcher.match(graph, graph[2])
        self.assertFalse(match)
        self.assertIn("before the anchor", match.reason)

    def test_constant_attribute_mismatch(self):
        graph = ir.parse_graph(
            """
            graph(%x, %y):
                %z = aten::add(%x, %y, 2)
                return (%z)
            """
        )
        matcher = _matcher_for(
            """
            graph(%x, %y):
                %z = aten::add(%x, %y, 1)
                return (%z)
            """
        )
        match = matcher.match(graph, graph[-1])
        self.assertFalse(match)
        self.assertIn("Constant value mismatch", match.reason)

    def test_matched_constants_may_be_shared(self):
        graph = ir.parse_graph(
            """
            graph(%b, %x, %wt):
                %one : int = prim::Constant[value=1]()
                %y = aten::addmm(%b, %x, %wt, %one, %one)
                return (%y)
            """
        )
        matcher = _matcher_for(
            """
            graph(%bias, %input, %weight_t):
                %res = aten::addmm(%bias, %input, %weight_t, 1, 1)
                return (%res)
            """
        )
        match = matcher.match(graph, graph[-1])
        self.assertTrue(match)
        self.assertEqual(list(match.nodes), [graph[-1]])

    def test_typed_placeholder_rejects_other_type(self):
        graph = ir.parse_graph(
            """
            graph(%x, %groups : float):
                %y = ns::op(%x, %groups)
                return (%y)
            """
        )
        matcher = _matcher_for(
            """
            graph(%x, %groups : int):
                %y = ns::op(%x, %groups)
                return (%y)
            """
        )
        match = matcher.match(graph, graph[-1])
        self.assertFalse(match)
        self.assertIn("Type mismatch", match.reason)

    def test_untyped_target_value_matches_typed_placeholder(self):
        graph = ir.parse_graph(
            """
            graph(%x, %groups):
                %y = ns::op(%x, %groups)
                return (%y)
            """
        )
        matcher = _matcher_for(
            """
            graph(%x, %groups : int):
                %y = ns::op(%x, %groups)
                return (%y)
            """
        )
        self.assertTrue(matcher.match(graph, graph[-1]))

    def test_arity_mismatch(self):
        graph = ir.parse_graph(
            """
            graph(%x):
                %y = aten::relu(%x, %x)
                return (%y)
            """
        )
        matcher = _matcher_for(
            """
            graph(%x):
                %y = aten::relu(%x)
                return (%y)
            """
        )
        self.assertFalse(matcher.match(graph, graph[-1]))


class FilterTest(unittest.TestCase):
    def setUp(self):
        self.graph = ir.parse_graph(
            """
            graph(%x, %w):
                %wt = aten::t(%w)
                %y = aten::matmul(%x, %wt)
                return (%y)
            """
        )
        self.matcher = _matcher_for(_TRANSPOSE_MATMUL)

    def test_filter_receives_match_and_pattern_values(self):
        seen = []

        def accept(match, values):
            seen.append((match.bindings["weight"].name, sorted(values)))
            return True

        self.assertEqual(len(self.matcher.find_matches(self.graph, accept)), 1)
        self.assertEqual(seen, [("w", ["input", "res", "weight", "weight_t"])])

    def test_rejected_match_claims_no_node(self):
        statuses = []
        matches = self.matcher.find_matches(
            self.graph,
            lambda match, values: False,
            on_match=lambda node, match, status: statuses.append((status, match.reason)),
        )
        self.assertEqual(matches, [])
        self.assertEqual(
            statuses, [(_basics.MatchStatus.CONDITION_FAILED, "Filter rejected the match.")]
        )

    def test_match_failure_error_in_filter_is_a_rejection(self):
        def reject(match, values):
            raise _basics.MatchFailureError("weight is not a parameter", match.bindings["weight"])

        results = []
        matches = self.matcher.find_matches(
            self.graph, reject, on_match=lambda node, match, status: results.append(match)
        )
        self.assertEqual(matches, [])
        self.assertEqual(results[0].reason, "weight is not a parameter")
        self.assertEqual(results[0].failure_nodes_and_values, [self.graph.inputs[1]])

    def test_other_exceptions_in_filter_propagate(self):
        def broken(match, values):
            raise KeyError("missing")

        with self.assertRaises(KeyError):
            self.matcher.find_matches(self.graph, broken)


if __name__ == "__main__":
    unittest.main()
