# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
__all__ = [
    "addmm_to_linear_rule",
    "clamp_fusion_rules",
    "conv2d_deprecated_rule",
    "conv2d_rule",
    "conv_prepack_rules",
    "conv_transpose2d_deprecated_rule",
    "conv_transpose2d_rule",
    "fuse_linear_rules",
    "linear_prepack_rules",
    "matmul_add_to_linear_rule",
    "matmul_to_linear_rule",
    "prepack_insertion_rules",
]

from graphsplice.rewriter.rules._clamp_fusion import clamp_fusion_rules
from graphsplice.rewriter.rules._convolution import (
    conv2d_deprecated_rule,
    conv2d_rule,
    conv_transpose2d_deprecated_rule,
    conv_transpose2d_rule,
)
from graphsplice.rewriter.rules._fuse_linear import (
    addmm_to_linear_rule,
    matmul_add_to_linear_rule,
    matmul_to_linear_rule,
)
from graphsplice.rewriter.rules._fuse_linear import rules as fuse_linear_rules
from graphsplice.rewriter.rules._prepack_insertion import (
    conv_prepack_rules,
    linear_prepack_rules,
    prepack_insertion_rules,
)
