# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Does the following transformation:
- addmm(bias, X, t(W), 1, 1) -> linear(X, W, bias)
- add(matmul(X, t(W)), bias, 1) -> linear(X, W, bias)
- matmul(X, t(W)) -> linear(X, W, None)
"""

from __future__ import annotations

from graphsplice.rewriter._rewrite_rule import RewriteRule, RewriteRuleSet

_LINEAR = """
    graph(%input, %weight, %bias):
        %res = aten::linear(%input, %weight, %bias)
        return (%res)
"""

addmm_to_linear_rule = RewriteRule(
    """
    graph(%input, %weight, %bias):
        %weight_t = aten::t(%weight)
        %res = aten::addmm(%bias, %input, %weight_t, 1, 1)
        return (%res)
    """,
    _LINEAR,
    value_mapping=[("res", "res")],
    name="AddmmToLinear",
)

matmul_add_to_linear_rule = RewriteRule(
    """
    graph(%input, %weight, %bias):
        %weight_t = aten::t(%weight)
        %output = aten::matmul(%input, %weight_t)
        %res = aten::add(%output, %bias, 1)
        return (%res)
    """,
    _LINEAR,
    value_mapping=[("res", "res")],
    name="MatmulAddToLinear",
)

matmul_to_linear_rule = RewriteRule(
    """
    graph(%input, %weight):
        %weight_t = aten::t(%weight)
        %res = aten::matmul(%input, %weight_t)
        return (%res)
    """,
    """
    graph(%input, %weight):
        %bias : None = prim::Constant()
        %res = aten::linear(%input, %weight, %bias)
        return (%res)
    """,
    value_mapping=[("bias", "res"), ("res", "res")],
    name="MatmulToLinear",
)

# The matmul-only rule must come last, it would otherwise claim the matmul of an addition
rules = RewriteRuleSet(
    [
        addmm_to_linear_rule,
        matmul_add_to_linear_rule,
        matmul_to_linear_rule,
    ]
)
