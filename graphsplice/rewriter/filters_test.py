# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
from __future__ import annotations

import unittest

from graphsplice import ir
from graphsplice.rewriter import MatchFailureError, RewriteRule, filters


def _graph(text: str) -> ir.Graph:
    return ir.parse_graph(text)


class FunctionNameTest(unittest.TestCase):
    def test_function_name_is_unqualified(self):
        graph = _graph(
            """
            graph(%x):
                %f = prim::Constant[name="torch.nn.functional.linear"]()
                %y = prim::CallFunction(%f, %x)
                return (%y)
            """
        )
        self.assertEqual(filters.function_name(graph[0].outputs[0]), "linear")

    def test_non_constant_is_not_a_function_reference(self):
        graph = _graph(
            """
            graph(%f, %x):
                %y = prim::CallFunction(%f, %x)
                return (%y)
            """
        )
        with self.assertRaises(MatchFailureError):
            filters.function_name(graph.inputs[0])

    def test_constant_without_name_is_not_a_function_reference(self):
        graph = _graph(
            """
            graph(%x):
                %y = prim::CallFunction(1, %x)
                return (%y)
            """
        )
        with self.assertRaises(MatchFailureError):
            filters.function_name(graph[0].outputs[0])


class IsCallFunctionNamedTest(unittest.TestCase):
    def setUp(self):
        self.rule = RewriteRule(
            """
            graph(%callee, %x):
                %y = prim::CallFunction(%callee, %x)
                return (%y)
            """,
            """
            graph(%callee, %x):
                %y = aten::relu(%x)
                return (%y)
            """,
            filter=filters.is_call_function_named("relu", callee="callee"),
        )

    def _call(self, function: str) -> ir.Graph:
        return _graph(
            f"""
            graph(%x):
                %f = prim::Constant[name="{function}"]()
                %y = prim::CallFunction(%f, %x)
                return (%y)
            """
        )

    def test_accepts_call_of_named_function(self):
        self.assertEqual(len(self.rule.find_matches(self._call("torch.nn.functional.relu"))), 1)

    def test_rejects_call_of_other_function(self):
        self.assertEqual(self.rule.find_matches(self._call("torch.nn.functional.gelu")), [])

    def test_rejects_dynamic_callee(self):
        graph = _graph(
            """
            graph(%f, %x):
                %y = prim::CallFunction(%f, %x)
                return (%y)
            """
        )
        self.assertEqual(self.rule.find_matches(graph), [])


class IsClampFusableTest(unittest.TestCase):
    _PATTERN = """
        graph(%x, %output_min, %output_max, %dummy_min_max):
            %packed = ns::prepack(%x, %dummy_min_max, %dummy_min_max)
            %res = aten::hardtanh(%packed, %output_min, %output_max)
            return (%res)
    """

    def setUp(self):
        self.rule = RewriteRule(
            self._PATTERN,
            """
            graph(%x, %output_min, %output_max):
                %res = ns::prepack(%x, %output_min, %output_max)
                return (%res)
            """,
            filter=filters.is_clamp_fusable,
        )

    def test_accepts_unclamped_prepack_with_constant_bounds(self):
        graph = _graph(
            """
            graph(%x):
                %none : None = prim::Constant()
                %packed = ns::prepack(%x, %none, %none)
                %res = aten::hardtanh(%packed, 0.0, 6.0)
                return (%res)
            """
        )
        self.assertEqual(len(self.rule.find_matches(graph)), 1)

    def test_rejects_prepack_that_is_already_clamped(self):
        graph = _graph(
            """
            graph(%x):
                %bound : float = prim::Constant[value=1.0]()
                %packed = ns::prepack(%x, %bound, %bound)
                %res = aten::hardtanh(%packed, 0.0, 6.0)
                return (%res)
            """
        )
        self.assertEqual(self.rule.find_matches(graph), [])

    def test_rejects_dynamic_bounds(self):
        graph = _graph(
            """
            graph(%x, %low):
                %none : None = prim::Constant()
                %packed = ns::prepack(%x, %none, %none)
                %res = aten::hardtanh(%packed, %low, 6.0)
                return (%res)
            """
        )
        self.assertEqual(self.rule.find_matches(graph), [])

    def test_pattern_without_dummy_bounds_is_an_error(self):
        rule = RewriteRule(
            """
            graph(%x):
                %res = aten::relu(%x)
                return (%res)
            """,
            """
            graph(%x):
                %res = aten::relu(%x)
                return (%res)
            """,
            filter=filters.is_clamp_fusable,
        )
        graph = _graph(
            """
            graph(%x):
                %y = aten::relu(%x)
                return (%y)
            """
        )
        with self.assertRaises(ValueError):
            rule.find_matches(graph)


if __name__ == "__main__":
    unittest.main()
