# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Merge identical constants in a graph."""

from __future__ import annotations

__all__ = [
    "ConstantPoolingPass",
]

import logging

from graphsplice import ir

logger = logging.getLogger(__name__)


def _pool_constants(graph: ir.Graph) -> bool:
    """Replace every constant by the first identical constant of the graph."""
    modified = False
    existing_constants: dict[
        tuple[
            tuple[ir.Attr, ...],  # attributes
            ir.TypeRef | None,  # output type
        ],
        ir.Node,
    ] = {}

    for node in graph:
        if node.kind != ir.CONSTANT_KIND:
            continue
        value = node.outputs[0]
        if value.is_graph_output():
            continue
        constant_info = (tuple(node.attributes.values()), value.type)
        existing = existing_constants.get(constant_info)
        if existing is None:
            existing_constants[constant_info] = node
            continue
        # The existing constant comes first in the graph, so it is visible to every use
        ir.replace_all_uses_with(value, existing.outputs[0])
        graph.remove(node, safe=True)
        logger.debug("Reusing constant %s", existing)
        modified = True
    return modified


class ConstantPoolingPass(ir.passes.GraphPass):
    """Deduplicate ``prim::Constant`` nodes that hold equal values of the same type.

    Tensors are merged when their dtype, shape and contents are equal. Opaque
    objects are only merged when they are the same object.
    """

    def call_graph(self, graph: ir.Graph) -> bool:
        return _pool_constants(graph)
