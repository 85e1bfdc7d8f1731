# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Does the following transformation:
- relu(conv2d_clamp_run(X, conv2d_clamp_prepack(..., None, None))) -> conv2d_clamp_run(X, conv2d_clamp_prepack(..., 0.0, None))
- hardtanh(conv2d_clamp_run(X, conv2d_clamp_prepack(..., None, None)), min, max) -> conv2d_clamp_run(X, conv2d_clamp_prepack(..., min, max))

The in-place activations ``relu_`` and ``hardtanh_`` are fused the same way.
"""

from __future__ import annotations

__all__ = ["clamp_fusion_rules"]

from graphsplice.rewriter import filters
from graphsplice.rewriter._rewrite_rule import RewriteRule, RewriteRuleSet


def _prepack_run(namespace: str, output_min: str, output_max: str, context_type: str | None) -> str:
    annotation = f" : {context_type}" if context_type else ""
    return f"""
        %packed_weight_bias{annotation} = {namespace}::conv2d_clamp_prepack(
            %weight, %bias, %stride, %padding, %dilation, %groups,
            %{output_min}, %{output_max})
        %conv2d_res = {namespace}::conv2d_clamp_run(%input, %packed_weight_bias)"""


def _relu_rules(namespace: str, context_type: str | None) -> list[RewriteRule]:
    signature = (
        "graph(%input, %weight, %bias, %stride:int[], %padding:int[],\n"
        "      %dilation:int[], %groups:int, %dummy_min_max):"
    )
    fused = f"""
    {signature}
        %output_min : float = prim::Constant[value=0.0]()
        %output_max : None = prim::Constant()
        {_prepack_run(namespace, "output_min", "output_max", context_type)}
        return (%conv2d_res)
    """
    value_mapping = [
        ("output_min", "packed_weight_bias"),
        ("output_max", "packed_weight_bias"),
        ("packed_weight_bias", "packed_weight_bias"),
        ("conv2d_res", "res"),
    ]
    return [
        RewriteRule(
            f"""
            {signature}
                {_prepack_run(namespace, "dummy_min_max", "dummy_min_max", None)}
                %res = aten::{op}(%conv2d_res)
                return (%res)
            """,
            fused,
            value_mapping,
            filter=filters.is_clamp_fusable,
            name=f"FuseConv2d{op.capitalize()}",
        )
        for op in ("relu", "relu_")
    ]


def _hardtanh_rules(namespace: str, context_type: str | None) -> list[RewriteRule]:
    signature = (
        "graph(%input, %weight, %bias, %stride:int[], %padding:int[],\n"
        "      %dilation:int[], %groups:int, %output_min, %output_max, %dummy_min_max):"
    )
    fused = f"""
    {signature}
        {_prepack_run(namespace, "output_min", "output_max", context_type)}
        return (%conv2d_res)
    """
    value_mapping = [
        ("packed_weight_bias", "packed_weight_bias"),
        ("conv2d_res", "res"),
    ]
    return [
        RewriteRule(
            f"""
            {signature}
                {_prepack_run(namespace, "dummy_min_max", "dummy_min_max", None)}
                %res = aten::{op}(%conv2d_res, %output_min, %output_max)
                return (%res)
            """,
            fused,
            value_mapping,
            filter=filters.is_clamp_fusable,
            name=f"FuseConv2d{op.capitalize()}",
        )
        for op in ("hardtanh", "hardtanh_")
    ]


def clamp_fusion_rules(namespace: str, context_type: str | None = None) -> RewriteRuleSet:
    """Rules folding a ReLU or hardtanh that follows a 2-D convolution into its clamp bounds.

    Args:
        namespace: The namespace of the prepare/run operations.
        context_type: The type annotation of the fused packed constant.
    """
    return RewriteRuleSet(
        [*_relu_rules(namespace, context_type), *_hardtanh_rules(namespace, context_type)]
    )
