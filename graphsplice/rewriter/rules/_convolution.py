# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Replace the generic ``aten::_convolution`` by ``aten::conv2d`` or ``aten::conv_transpose2d``.

Scripted modules may call the generic convolution directly. The rewrite applies
to two-dimensional convolutions whose ``transposed`` flag is a constant.
"""

from __future__ import annotations

from typing import Mapping

from graphsplice import ir
from graphsplice.rewriter._basics import MatchResult
from graphsplice.rewriter._rewrite_rule import RewriteRule, RewriteRuleSet

_LIST_CONSTRUCT_KIND = "prim::ListConstruct"

# Older operator sets have no allow_tf32 flag
_CONVOLUTION_PATTERN = """
    graph(%input, %weight, %bias, %stride:int[], %padding:int[], %dilation:int[],
          %transposed:bool, %output_padding:int[], %groups:int, %benchmark:bool,
          %deterministic:bool, %cudnn_enabled:bool, %allow_tf32:bool):
        %res = aten::_convolution(%input, %weight, %bias, %stride, %padding, %dilation,
            %transposed, %output_padding, %groups, %benchmark, %deterministic,
            %cudnn_enabled, %allow_tf32)
        return (%res)
"""

_CONVOLUTION_DEPRECATED_PATTERN = """
    graph(%input, %weight, %bias, %stride:int[], %padding:int[], %dilation:int[],
          %transposed:bool, %output_padding:int[], %groups:int, %benchmark:bool,
          %deterministic:bool, %cudnn_enabled:bool):
        %res = aten::_convolution(%input, %weight, %bias, %stride, %padding, %dilation,
            %transposed, %output_padding, %groups, %benchmark, %deterministic,
            %cudnn_enabled)
        return (%res)
"""

_CONV2D = """
    graph(%input, %weight, %bias, %stride:int[], %padding:int[], %dilation:int[], %groups:int):
        %res = aten::conv2d(%input, %weight, %bias, %stride, %padding, %dilation, %groups)
        return (%res)
"""

_CONV_TRANSPOSE2D = """
    graph(%input, %weight, %bias, %stride:int[], %padding:int[], %dilation:int[],
          %output_padding:int[], %groups:int):
        %res = aten::conv_transpose2d(%input, %weight, %bias, %stride, %padding,
            %output_padding, %groups, %dilation)
        return (%res)
"""


def _list_length(value: ir.Value) -> int | None:
    """The number of elements of a list value, when known statically."""
    if ir.is_constant(value):
        constant = ir.constant_value(value)
        return len(constant) if isinstance(constant, (list, tuple)) else None
    producer = value.producer()
    if producer is not None and producer.kind == _LIST_CONSTRUCT_KIND:
        return len(producer.inputs)
    return None


def _is_2d_convolution(transposed: bool):
    def check(match: MatchResult, values: Mapping[str, ir.Value]) -> bool:
        del values  # Unused
        flag = match.bindings["transposed"]
        if not ir.is_constant(flag) or ir.constant_value(flag) is not transposed:
            return False
        return _list_length(match.bindings["stride"]) == 2

    return check


conv2d_rule = RewriteRule(
    _CONVOLUTION_PATTERN,
    _CONV2D,
    value_mapping=[("res", "res")],
    filter=_is_2d_convolution(transposed=False),
    name="ConvolutionToConv2d",
)

conv2d_deprecated_rule = RewriteRule(
    _CONVOLUTION_DEPRECATED_PATTERN,
    _CONV2D,
    value_mapping=[("res", "res")],
    filter=_is_2d_convolution(transposed=False),
    name="DeprecatedConvolutionToConv2d",
)

conv_transpose2d_rule = RewriteRule(
    _CONVOLUTION_PATTERN,
    _CONV_TRANSPOSE2D,
    value_mapping=[("res", "res")],
    filter=_is_2d_convolution(transposed=True),
    name="ConvolutionToConvTranspose2d",
)

conv_transpose2d_deprecated_rule = RewriteRule(
    _CONVOLUTION_DEPRECATED_PATTERN,
    _CONV_TRANSPOSE2D,
    value_mapping=[("res", "res")],
    filter=_is_2d_convolution(transposed=True),
    name="DeprecatedConvolutionToConvTranspose2d",
)

rules = RewriteRuleSet(
    [
        conv2d_rule,
        conv2d_deprecated_rule,
        conv_transpose2d_rule,
        conv_transpose2d_deprecated_rule,
    ]
)
