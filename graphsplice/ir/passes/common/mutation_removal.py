# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Replace in-place operators with their functional form."""

from __future__ import annotations

__all__ = [
    "RemoveMutationPass",
]

import logging

from graphsplice import ir

logger = logging.getLogger(__name__)


# Operators whose output shares its storage with the first input
_VIEW_KINDS = frozenset(
    {
        "aten::alias",
        "aten::as_strided",
        "aten::chunk",
        "aten::detach",
        "aten::diagonal",
        "aten::expand",
        "aten::expand_as",
        "aten::flatten",
        "aten::narrow",
        "aten::permute",
        "aten::reshape",
        "aten::select",
        "aten::slice",
        "aten::split",
        "aten::squeeze",
        "aten::t",
        "aten::transpose",
        "aten::unbind",
        "aten::unflatten",
        "aten::unfold",
        "aten::unsqueeze",
        "aten::view",
        "aten::view_as",
    }
)

# Operators storing their inputs in a container that may be read later
_CONTAINER_KINDS = frozenset(
    {
        "prim::DictConstruct",
        "prim::ListConstruct",
        "prim::TupleConstruct",
    }
)


def _functional_kind(node: ir.Node) -> str | None:
    """Return the functional kind of an in-place ``aten`` operator, e.g. ``aten::relu_``."""
    if node.namespace != "aten":
        return None
    op = node.op
    if not op.endswith("_") or op.startswith("_") or op.endswith("__"):
        return None
    return f"aten::{op[:-1]}"


def _aliases(value: ir.Value, graph: ir.Graph, position: int) -> list[ir.Value]:
    """Values viewing ``value`` through views created before ``position``."""
    aliases = []
    stack = [value]
    while stack:
        current = stack.pop()
        for user, index in current.uses():
            if index != 0 or user.kind not in _VIEW_KINDS or user.graph is not graph:
                continue
            if graph.index_of(user) < position:
                for output in user.outputs:
                    aliases.append(output)
                    stack.append(output)
    return aliases


def _is_safe_to_rewrite(node: ir.Node) -> bool:
    """Whether the mutated value is private to the graph and has no alias.

    Graph inputs, constants and module attributes may be observed by the caller,
    so their mutation has to stay. A view shares the storage of its base, and a
    container may be read after the node, so mutating either stays too.
    """
    if not node.inputs or not node.outputs:
        return False
    mutated = node.inputs[0]
    if mutated.is_graph_input():
        return False
    producer = mutated.producer()
    assert producer is not None
    if producer.kind in (ir.CONSTANT_KIND, ir.GET_ATTR_KIND) or producer.kind in _VIEW_KINDS:
        return False
    if any(user.kind in _CONTAINER_KINDS for user, _ in mutated.uses()):
        return False
    graph = node.graph
    assert graph is not None
    position = graph.index_of(node)
    for alias in _aliases(mutated, graph, position):
        if alias.is_graph_output():
            return False
        if any(graph.index_of(user) > position for user, _ in alias.uses()):
            return False
    return True


def remove_mutation(graph: ir.Graph) -> int:
    count = 0
    for node in graph:
        functional_kind = _functional_kind(node)
        if functional_kind is None or not _is_safe_to_rewrite(node):
            continue
        mutated = node.inputs[0]
        output = node.outputs[0]
        functional = ir.Node(
            functional_kind,
            node.inputs,
            [ir.Attr(attr.name, attr.type, attr.value) for attr in node.attributes.values()],
            num_outputs=len(node.outputs),
        )
        for old_output, new_output in zip(node.outputs, functional.outputs):
            new_output.name = old_output.name
            new_output.type = old_output.type
        graph.insert_before(node, functional)

        # Readers of the mutated value after the node observed the mutation
        position = graph.index_of(node)
        for user, index in tuple(mutated.uses()):
            if user is not functional and user is not node and graph.index_of(user) > position:
                user.replace_input_with(index, functional.outputs[0])
        graph.outputs[:] = [functional.outputs[0] if v is mutated else v for v in graph.outputs]
        ir.replace_all_uses_with(node.outputs, functional.outputs)
        graph.outputs[:] = [functional.outputs[0] if v is output else v for v in graph.outputs]
        graph.remove(node, safe=True)
        count += 1
    return count


class RemoveMutationPass(ir.passes.GraphPass):
    """Turn in-place operators such as ``aten::relu_`` into ``aten::relu``.

    Only values created inside the graph are handled. A value that is a view,
    or that has a view read after the operator, keeps its in-place operator.
    """

    def call_graph(self, graph: ir.Graph) -> bool:
        count = remove_mutation(graph)
        if count:
            logger.info("Removed %s in-place operators from graph '%s'", count, graph.name)
        return bool(count)
