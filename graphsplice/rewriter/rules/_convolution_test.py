# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
from __future__ import annotations

import unittest

import parameterized

from graphsplice import ir
from graphsplice.rewriter.rules import _convolution


def _convolution_graph(transposed: str, stride: str = "[1, 1]", allow_tf32: bool = True):
    tf32 = ", True" if allow_tf32 else ""
    return ir.parse_graph(
        f"""
        graph(%x, %w, %b):
            %y = aten::_convolution(%x, %w, %b, {stride}, [0, 0], [1, 1], {transposed},
                [0, 0], 1, False, False, True{tf32})
            return (%y)
        """
    )


class ConvolutionTest(unittest.TestCase):
    @parameterized.parameterized.expand(
        [
            ("conv2d", "False", True, "aten::conv2d"),
            ("conv2d_deprecated", "False", False, "aten::conv2d"),
            ("conv_transpose2d", "True", True, "aten::conv_transpose2d"),
            ("conv_transpose2d_deprecated", "True", False, "aten::conv_transpose2d"),
        ]
    )
    def test_generic_convolution_is_replaced(self, _, transposed, allow_tf32, expected_kind):
        graph = _convolution_graph(transposed, allow_tf32=allow_tf32)
        self.assertEqual(_convolution.rules.apply_to_graph(graph), 1)
        convolution = graph[-1]
        self.assertEqual(convolution.kind, expected_kind)
        self.assertEqual([v.name for v in convolution.inputs[:3]], ["x", "w", "b"])
        self.assertIs(graph.outputs[0], convolution.outputs[0])
        self.assertEqual(ir.find_graph_inconsistencies(graph), [])

    def test_transposed_convolution_argument_order(self):
        graph = _convolution_graph("True")
        _convolution.rules.apply_to_graph(graph)
        convolution = graph[-1]
        # (input, weight, bias, stride, padding, output_padding, groups, dilation)
        self.assertEqual(ir.constant_value(convolution.inputs[6]), 1)
        self.assertEqual(ir.constant_value(convolution.inputs[7]), [1, 1])

    def test_one_dimensional_convolution_is_kept(self):
        graph = _convolution_graph("False", stride="[1]")
        self.assertEqual(_convolution.rules.apply_to_graph(graph), 0)

    def test_dynamic_transposed_flag_is_kept(self):
        graph = ir.parse_graph(
            """
            graph(%x, %w, %b, %transposed : bool):
                %y = aten::_convolution(%x, %w, %b, [1, 1], [0, 0], [1, 1], %transposed,
                    [0, 0], 1, False, False, True, True)
                return (%y)
            """
        )
        self.assertEqual(_convolution.rules.apply_to_graph(graph), 0)

    def test_stride_built_by_list_construct(self):
        graph = ir.parse_graph(
            """
            graph(%x, %w, %b, %s : int):
                %stride : int[] = prim::ListConstruct(%s, %s)
                %y = aten::_convolution(%x, %w, %b, %stride, [0, 0], [1, 1], False,
                    [0, 0], 1, False, False, True, True)
                return (%y)
            """
        )
        self.assertEqual(_convolution.rules.apply_to_graph(graph), 1)
        self.assertEqual(graph[-1].kind, "aten::conv2d")


if __name__ == "__main__":
    unittest.main()
