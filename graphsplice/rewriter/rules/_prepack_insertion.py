# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Split linear and 2-D convolutions into the prepare/run operation pairs of a backend.

The prepare operation takes the parameters of the operation and produces a packed
constant, the run operation applies it to the activation::

    %res = aten::linear(%input, %weight, %bias)

becomes::

    %weight_t = aten::t(%weight)
    %packed_weight_bias = <namespace>::linear_prepack(%weight_t, %bias)
    %res = <namespace>::linear_run(%input, %packed_weight_bias)

Once the module is frozen, the inputs of the prepare operations are constants and
the prepare operations can be folded.
"""

from __future__ import annotations

__all__ = [
    "conv_prepack_rules",
    "linear_prepack_rules",
    "prepack_insertion_rules",
]

from graphsplice.rewriter import filters
from graphsplice.rewriter._rewrite_rule import RewriteRule, RewriteRuleSet
from graphsplice.rewriter.rules import _convolution, _fuse_linear


def linear_prepack_rules(namespace: str) -> list[RewriteRule]:
    """Rules replacing functional and ``aten`` linear calls by ``linear_prepack``/``linear_run``."""
    prepacked_linear = f"""
    graph(%linear, %input, %weight, %bias):
        %weight_t = aten::t(%weight)
        %packed_weight_bias = {namespace}::linear_prepack(%weight_t, %bias)
        %res = {namespace}::linear_run(%input, %packed_weight_bias)
        return (%res)
    """
    value_mapping = [("weight_t", "res"), ("packed_weight_bias", "res"), ("res", "res")]
    call_function_rule = RewriteRule(
        """
        graph(%linear, %input, %weight, %bias):
            %res = prim::CallFunction(%linear, %input, %weight, %bias)
            return (%res)
        """,
        prepacked_linear,
        value_mapping,
        filter=filters.is_call_function_named("linear", callee="linear"),
        name="PrepackLinearCall",
    )
    linear_rule = RewriteRule(
        """
        graph(%input, %weight, %bias):
            %res = aten::linear(%input, %weight, %bias)
            return (%res)
        """,
        prepacked_linear.replace("%linear, ", "", 1),
        value_mapping,
        name="PrepackLinear",
    )
    return [call_function_rule, linear_rule]


def conv_prepack_rules(namespace: str) -> list[RewriteRule]:
    """Rules replacing ``aten::conv2d`` and ``aten::conv_transpose2d`` by clamp prepare/run pairs."""
    value_mapping = [
        ("output_min_max", "res"),
        ("packed_weight_bias", "res"),
        ("res", "res"),
    ]
    conv2d_rule = RewriteRule(
        """
        graph(%input, %weight, %bias, %stride:int[], %padding:int[], %dilation:int[], %groups:int):
            %res = aten::conv2d(%input, %weight, %bias, %stride, %padding, %dilation, %groups)
            return (%res)
        """,
        f"""
        graph(%input, %weight, %bias, %stride:int[], %padding:int[], %dilation:int[], %groups:int):
            %output_min_max : None = prim::Constant()
            %packed_weight_bias = {namespace}::conv2d_clamp_prepack(
                %weight, %bias, %stride, %padding, %dilation, %groups,
                %output_min_max, %output_min_max)
            %res = {namespace}::conv2d_clamp_run(%input, %packed_weight_bias)
            return (%res)
        """,
        value_mapping,
        name="PrepackConv2d",
    )
    conv_transpose2d_rule = RewriteRule(
        """
        graph(%input, %weight, %bias, %stride:int[], %padding:int[], %dilation:int[],
              %output_padding:int[], %groups:int):
            %res = aten::conv_transpose2d(%input, %weight, %bias, %stride, %padding,
                %output_padding, %groups, %dilation)
            return (%res)
        """,
        f"""
        graph(%input, %weight, %bias, %stride:int[], %padding:int[], %dilation:int[],
              %output_padding:int[], %groups:int):
            %output_min_max : None = prim::Constant()
            %packed_weight_bias = {namespace}::conv2d_transpose_clamp_prepack(
                %weight, %bias, %stride, %padding, %output_padding, %dilation, %groups,
                %output_min_max, %output_min_max)
            %res = {namespace}::conv2d_transpose_clamp_run(%input, %packed_weight_bias)
            return (%res)
        """,
        value_mapping,
        name="PrepackConvTranspose2d",
    )
    return [conv2d_rule, conv_transpose2d_rule]


def prepack_insertion_rules(namespace: str) -> RewriteRuleSet:
    """All the rules inserting the prepare/run pairs of ``namespace``, in application order.

    Decomposed linear transforms are fused into ``aten::linear`` and generic
    convolutions are replaced by their 2-D forms first, so that they are prepacked too.
    """
    return RewriteRuleSet(
        [
            *_fuse_linear.rules,
            *linear_prepack_rules(namespace),
            *_convolution.rules,
            *conv_prepack_rules(namespace),
        ]
    )
