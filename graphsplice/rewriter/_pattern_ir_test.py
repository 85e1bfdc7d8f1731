# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
from __future__ import annotations

import unittest

import parameterized

from graphsplice import ir
from graphsplice.rewriter import _pattern_ir


class GraphPatternTest(unittest.TestCase):
    def test_anchor_is_producer_of_first_output(self):
        pattern = _pattern_ir.GraphPattern.from_text(
            """
            graph(%input, %weight, %bias):
                %weight_t = aten::t(%weight)
                %res = aten::addmm(%bias, %input, %weight_t, 1, 1)
                return (%res)
            """
        )
        self.assertEqual(pattern.anchor.kind, "aten::addmm")
        self.assertEqual(len(pattern), 4)
        self.assertEqual([v.name for v in pattern.inputs], ["input", "weight", "bias"])

    def test_interior_values_exclude_outputs_and_constants(self):
        pattern = _pattern_ir.GraphPattern.from_text(
            """
            graph(%input, %weight, %bias):
                %weight_t = aten::t(%weight)
                %output = aten::matmul(%input, %weight_t)
                %res = aten::add(%output, %bias, 1)
                return (%res)
            """
        )
        self.assertEqual([v.name for v in pattern.interior_values], ["weight_t", "output"])
        self.assertEqual(pattern.num_uses(pattern.values["weight_t"]), 1)

    def test_num_uses_counts_repeated_inputs(self):
        pattern = _pattern_ir.GraphPattern.from_text(
            """
            graph(%x):
                %y = aten::mul(%x, %x)
                return (%y)
            """
        )
        self.assertEqual(pattern.num_uses(pattern.values["x"]), 2)

    @parameterized.parameterized.expand(
        [
            (
                "output_is_input",
                """
                graph(%x, %y):
                    %z = aten::relu(%y)
                    return (%z, %x)
                """,
                "must be computed by a node",
            ),
            (
                "unused_input",
                """
                graph(%x, %y):
                    %z = aten::relu(%x)
                    return (%z)
                """,
                "not used by any node",
            ),
            (
                "node_not_reachable_from_anchor",
                """
                graph(%x):
                    %a = aten::relu(%x)
                    %b = aten::neg(%x)
                    return (%a, %b)
                """,
                "not reachable",
            ),
        ]
    )
    def test_invalid_pattern_raises(self, _, text, message):
        with self.assertRaisesRegex(ValueError, message):
            _pattern_ir.GraphPattern.from_text(text)

    def test_pattern_without_output_raises(self):
        graph = ir.Graph([], [], nodes=[])
        with self.assertRaisesRegex(ValueError, "at least one output"):
            _pattern_ir.GraphPattern(graph)


if __name__ == "__main__":
    unittest.main()
