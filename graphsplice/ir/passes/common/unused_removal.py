# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
from __future__ import annotations

__all__ = [
    "RemoveUnusedNodesPass",
    "remove_unused_nodes",
]

import logging

from graphsplice import ir

logger = logging.getLogger(__name__)

# Kinds that must be kept even when none of their outputs are used
_SIDE_EFFECT_KINDS = frozenset(
    {
        "prim::SetAttr",
        "prim::Print",
        "prim::RaiseException",
        "aten::warn",
    }
)


def has_side_effects(node: ir.Node) -> bool:
    """Whether the node may have effects other than producing its outputs.

    In-place operators (``aten::add_``) mutate their first input.
    """
    if node.kind in _SIDE_EFFECT_KINDS:
        return True
    return node.namespace == "aten" and node.op.endswith("_") and not node.op.startswith("_")


def remove_unused_nodes(graph: ir.Graph) -> int:
    """Remove the nodes whose outputs are not used, and return how many were removed."""
    graph_outputs = frozenset(graph.outputs)
    count = 0
    for node in reversed(graph):
        removable = not has_side_effects(node)
        for output in node.outputs:
            if output in graph_outputs or output.uses():
                removable = False
                break
        if removable:
            graph.remove(node, safe=True)
            count += 1
    return count


class RemoveUnusedNodesPass(ir.passes.GraphPass):
    """Pass for removing unused nodes (dead code elimination).

    This pass does not modify the method signatures (inputs and outputs).
    """

    def call_graph(self, graph: ir.Graph) -> bool:
        count = remove_unused_nodes(graph)
        if count:
            logger.info("Removed %s unused nodes from graph '%s'", count, graph.name)
        return bool(count)
