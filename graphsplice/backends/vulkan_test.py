# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
from __future__ import annotations

import unittest

import numpy as np
import parameterized

from graphsplice.backends import vulkan


class LinearPrepackTest(unittest.TestCase):
    def test_linear_prepack_pads_output_features(self):
        weight_t = np.arange(15, dtype=np.float64).reshape(3, 5)
        bias = np.ones(5)
        context = vulkan.registry.evaluate(vulkan.LINEAR_PREPACK, [weight_t, bias])
        self.assertIsInstance(context, vulkan.LinearOpContext)
        self.assertEqual(context.out_features, 5)
        self.assertEqual(context.weight.shape, (3, 8))
        self.assertEqual(context.weight.dtype, np.float32)
        np.testing.assert_array_equal(context.weight[:, :5], weight_t)
        np.testing.assert_array_equal(context.weight[:, 5:], 0)
        self.assertEqual(context.bias.shape, (8,))

    def test_linear_prepack_without_bias(self):
        context = vulkan.linear_prepack(np.ones((2, 4)), None)
        self.assertIsNone(context.bias)
        self.assertEqual(context.weight.shape, (2, 4))

    @parameterized.parameterized.expand(
        [
            ("weight_rank", np.ones((2, 2, 2)), None),
            ("bias_size", np.ones((2, 4)), np.ones(3)),
        ]
    )
    def test_linear_prepack_rejects_invalid_parameters(self, _, weight_t, bias):
        with self.assertRaises(ValueError):
            vulkan.linear_prepack(weight_t, bias)


class Conv2dPrepackTest(unittest.TestCase):
    def test_conv2d_clamp_prepack(self):
        weight = np.ones((6, 3, 3, 3), dtype=np.float32)
        context = vulkan.registry.evaluate(
            vulkan.CONV2D_PREPACK,
            [weight, np.zeros(6), [1, 1], [0], [1, 1], 1, 0.0, 6.0],
        )
        self.assertIsInstance(context, vulkan.Conv2dOpContext)
        self.assertEqual(context.weight.shape, (8, 3, 3, 3))
        self.assertEqual(context.out_channels, 6)
        self.assertEqual(context.padding, (0, 0))
        self.assertEqual((context.output_min, context.output_max), (0.0, 6.0))

    def test_conv2d_clamp_prepack_unclamped(self):
        context = vulkan.conv2d_clamp_prepack(
            np.ones((4, 1, 3, 3)), None, [2, 2], [1, 1], [1, 1], 4, None, None
        )
        self.assertEqual(context.groups, 4)
        self.assertEqual(context.stride, (2, 2))
        self.assertIsNone(context.output_min)
        self.assertIsNone(context.output_max)

    @parameterized.parameterized.expand(
        [
            ("bounds", np.ones((4, 1, 3, 3)), 1, 6.0, 0.0),
            ("groups", np.ones((4, 2, 3, 3)), 3, None, None),
            ("rank", np.ones((4, 3, 3)), 1, None, None),
        ]
    )
    def test_conv2d_clamp_prepack_rejects_invalid_parameters(
        self, _, weight, groups, output_min, output_max
    ):
        with self.assertRaises(ValueError):
            vulkan.conv2d_clamp_prepack(
                weight, None, [1, 1], [0, 0], [1, 1], groups, output_min, output_max
            )

    def test_conv2d_transpose_clamp_prepack(self):
        weight = np.ones((3, 2, 3, 3), dtype=np.float32)
        context = vulkan.registry.evaluate(
            vulkan.CONV2D_TRANSPOSE_PREPACK,
            [weight, None, [2, 2], [1, 1], [1, 1], [1, 1], 1, None, 6.0],
        )
        self.assertIsInstance(context, vulkan.Conv2dTransposeOpContext)
        self.assertEqual(context.out_channels, 2)
        self.assertEqual(context.weight.shape, (3, 4, 3, 3))
        self.assertEqual(context.output_padding, (1, 1))
        self.assertEqual(context.output_max, 6.0)


class RegistryTest(unittest.TestCase):
    def test_prepack_kinds(self):
        self.assertEqual(
            vulkan.registry.prepack_kinds(),
            frozenset(
                {vulkan.LINEAR_PREPACK, vulkan.CONV2D_PREPACK, vulkan.CONV2D_TRANSPOSE_PREPACK}
            ),
        )

    def test_run_operations_cannot_be_evaluated(self):
        for kind in (vulkan.LINEAR_RUN, vulkan.CONV2D_RUN, vulkan.CONV2D_TRANSPOSE_RUN):
            self.assertFalse(vulkan.registry.lookup(kind).can_evaluate)

    def test_prepack_result_types_are_context_types(self):
        schema = vulkan.registry.lookup(vulkan.CONV2D_PREPACK)
        self.assertEqual(schema.result_type, vulkan.Conv2dOpContext.type_name)

    def test_common_operations_are_registered(self):
        np.testing.assert_array_equal(
            vulkan.registry.evaluate("aten::t", [np.ones((2, 3))]), np.ones((3, 2))
        )
        self.assertEqual(vulkan.registry.evaluate("prim::ListConstruct", [1, 2]), [1, 2])


if __name__ == "__main__":
    unittest.main()
