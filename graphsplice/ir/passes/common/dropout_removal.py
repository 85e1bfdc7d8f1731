# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
from __future__ import annotations

__all__ = [
    "RemoveDropoutPass",
]

import logging

from graphsplice import ir

logger = logging.getLogger(__name__)

_DROPOUT_KINDS = frozenset(
    {
        "aten::dropout",
        "aten::dropout_",
        "aten::feature_dropout",
        "aten::feature_dropout_",
    }
)


def _is_removable(node: ir.Node) -> bool:
    # aten::dropout(input, p, train)
    if len(node.inputs) != 3:
        return False
    train = node.inputs[2]
    return ir.is_constant(train) and ir.constant_value(train) is False


class RemoveDropoutPass(ir.passes.GraphPass):
    """Remove dropout nodes that are not in training mode.

    The users of the dropout output read the dropout input instead.
    """

    def call_graph(self, graph: ir.Graph) -> bool:
        count = 0
        for node in graph:
            if node.kind not in _DROPOUT_KINDS or not _is_removable(node):
                continue
            input_value = node.inputs[0]
            output = node.outputs[0]
            ir.replace_all_uses_with(output, input_value)
            graph.outputs[:] = [input_value if v is output else v for v in graph.outputs]
            graph.remove(node, safe=True)
            count += 1
        if count:
            logger.info("Removed %s dropout nodes from graph '%s'", count, graph.name)
        return bool(count)
