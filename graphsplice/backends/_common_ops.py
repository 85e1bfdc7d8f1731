# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Evaluators for side-effect free operations shared by all backends.

These are folded when a module is frozen so that the inputs of the prepare
operations become constants.
"""

from __future__ import annotations

__all__ = ["register_common_ops"]

from typing import Any

import numpy as np

from graphsplice.backends import _registry


def _transpose(tensor: Any) -> np.ndarray:
    # aten::t accepts tensors of rank <= 2
    array = np.asarray(tensor)
    if array.ndim > 2:
        raise ValueError(f"aten::t expects a tensor of rank <= 2, got rank {array.ndim}")
    if array.ndim < 2:
        return array
    return np.ascontiguousarray(array.T)


def _list_construct(*items: Any) -> list[Any]:
    return list(items)


def register_common_ops(registry: _registry.OpRegistry) -> None:
    """Register the shared evaluators into ``registry``."""
    registry.register(_registry.OpSchema("aten::t", 1, _transpose, result_type="Tensor"))
    registry.register(_registry.OpSchema("prim::ListConstruct", None, _list_construct))
