# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Predicates that accept or reject a structural match before it is rewritten.

A filter is called with the match and the values of the pattern by name. The
target value bound to a pattern value ``name`` is ``match.bindings[name]``.
"""

from __future__ import annotations

__all__ = [
    "function_name",
    "is_call_function_named",
    "is_clamp_fusable",
]

from typing import Mapping

from graphsplice import ir
from graphsplice.rewriter import _basics, _matcher

_FUNCTION_NAME_ATTR = "name"


def function_name(value: ir.Value) -> str:
    """Return the unqualified name of the function a constant function reference denotes.

    ``prim::Constant[name="torch.nn.functional.linear"]()`` denotes ``linear``.

    Raises:
        MatchFailureError: If the value is not a constant function reference.
    """
    producer = value.producer()
    if producer is None or producer.kind != ir.CONSTANT_KIND:
        raise _basics.MatchFailureError(f"{value} is not a constant function reference.", value)
    attr = producer.attributes.get(_FUNCTION_NAME_ATTR)
    if attr is None or attr.type != ir.AttributeType.STRING:
        raise _basics.MatchFailureError(f"{value} does not name a function.", value)
    return attr.value.rpartition(".")[2]


def is_call_function_named(function: str, callee: str = "linear") -> _matcher.MatchFilter:
    """Accept matches whose ``callee`` value is a reference to the function called ``function``.

    Args:
        function: The unqualified function name, e.g. ``linear``.
        callee: The name of the pattern value holding the function reference.
    """

    def check(match: _basics.MatchResult, values: Mapping[str, ir.Value]) -> bool:
        del values  # Unused
        return function_name(match.bindings[callee]) == function

    return check


def _is_constant(match: _basics.MatchResult, name: str) -> bool:
    return ir.is_constant(match.bindings[name])


def is_clamp_fusable(match: _basics.MatchResult, values: Mapping[str, ir.Value]) -> bool:
    """Accept a clamp fusion when the prepare operation is not clamped yet.

    The clamp bounds of the prepare operation, ``dummy_min_max``, must be a
    constant ``None``. When the pattern carries ``output_min`` and ``output_max``,
    both must be constants so that the fused operation can be folded.
    """
    if "dummy_min_max" not in values:
        raise ValueError("Expected to find %dummy_min_max in the pattern to be replaced.")
    dummy_min_max = match.bindings["dummy_min_max"]
    if not ir.is_constant(dummy_min_max) or ir.constant_value(dummy_min_max) is not None:
        return False
    if "output_min" in values:
        return _is_constant(match, "output_min") and _is_constant(match, "output_max")
    return True
