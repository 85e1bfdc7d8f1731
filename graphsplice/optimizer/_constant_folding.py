# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Evaluate operations whose inputs are all constants and embed their results.

Only the operations of an :class:`~graphsplice.backends.OpRegistry` that have an
evaluator are folded. :class:`PrepackFoldingPass` restricts folding to the prepare
operations of a backend, replacing them by the packed constants they produce.
"""

from __future__ import annotations

__all__ = [
    "FOLDED_FROM_KEY",
    "FoldConstantsPass",
    "FoldingError",
    "PrepackFoldingPass",
    "fold_constants",
]

import logging
from typing import Callable, Sequence

from graphsplice import ir
from graphsplice.backends import OpRegistry

logger = logging.getLogger(__name__)

# Metadata key recording the kind of the node a constant was folded from
FOLDED_FROM_KEY = "graphsplice.optimizer.folded_from"


class FoldingError(RuntimeError):
    """Raised when an operation with constant inputs fails to evaluate."""


def _remove_dead_constants(graph: ir.Graph, values: Sequence[ir.Value]) -> None:
    graph_outputs = frozenset(graph.outputs)
    for value in dict.fromkeys(values):
        producer = value.producer()
        if producer is None or producer.graph is not graph:
            continue
        if value.uses() or value in graph_outputs:
            continue
        graph.remove(producer, safe=True)


def _fold_node(graph: ir.Graph, node: ir.Node, registry: OpRegistry) -> None:
    schema = registry.lookup(node.kind)
    assert schema is not None
    inputs = list(node.inputs)
    try:
        result = registry.evaluate(node.kind, [ir.constant_value(v) for v in inputs])
    except Exception as e:
        raise FoldingError(
            f"Failed to evaluate node {node.name!r} of kind '{node.kind}' "
            f"in graph '{graph.name}'"
        ) from e

    output = node.outputs[0]
    constant = ir.create_constant(
        result, schema.result_type or output.type, name=output.name
    )
    constant.meta[FOLDED_FROM_KEY] = node.kind
    graph.insert_before(node, constant)
    ir.replace_all_uses_with(output, constant.outputs[0])
    graph.outputs[:] = [constant.outputs[0] if v is output else v for v in graph.outputs]
    graph.remove(node, safe=True)
    _remove_dead_constants(graph, inputs)


def fold_constants(
    graph: ir.Graph,
    registry: OpRegistry,
    should_fold: Callable[[ir.Node], bool] | None = None,
) -> int:
    """Fold the nodes of ``graph`` whose inputs are all constants.

    Args:
        graph: The graph to fold in place.
        registry: The operations that can be evaluated.
        should_fold: A predicate selecting the nodes to consider. ``None`` considers
            every node the registry can evaluate.

    Returns:
        The number of folded nodes.

    Raises:
        FoldingError: If evaluating a node fails.
    """
    count = 0
    for node in graph:
        if node.graph is not graph or node.kind == ir.CONSTANT_KIND:
            continue
        schema = registry.lookup(node.kind)
        if schema is None or not schema.can_evaluate:
            continue
        if should_fold is not None and not should_fold(node):
            continue
        if len(node.outputs) != 1:
            logger.debug("Skipping %s: folding needs exactly one output", node)
            continue
        if not all(ir.is_constant(value) for value in node.inputs):
            logger.debug("Skipping %s: not all inputs are constants", node)
            continue
        _fold_node(graph, node, registry)
        count += 1
    return count


class FoldConstantsPass(ir.passes.GraphPass):
    """Fold the operations of a registry whose inputs are constants.

    Attributes:
        registry: The operations that can be evaluated.
        should_fold: A predicate selecting the nodes to consider.
    """

    def __init__(
        self,
        registry: OpRegistry,
        should_fold: Callable[[ir.Node], bool] | None = None,
        methods: Sequence[str] | None = None,
        *,
        recursive: bool = True,
    ) -> None:
        super().__init__(methods, recursive=recursive)
        self.registry = registry
        self.should_fold = should_fold

    def call_graph(self, graph: ir.Graph) -> bool:
        count = fold_constants(graph, self.registry, self.should_fold)
        if count:
            logger.info("Folded %s nodes into constants in graph '%s'", count, graph.name)
        return bool(count)


class PrepackFoldingPass(FoldConstantsPass):
    """Replace the prepare operations whose inputs are constants by packed constants.

    A prepare operation with any input that is not a constant, such as an
    activation computed by another node, is left untouched. The run operations
    consuming the prepared value read the packed constant instead.
    """

    def __init__(
        self,
        registry: OpRegistry,
        methods: Sequence[str] | None = None,
        *,
        recursive: bool = True,
    ) -> None:
        self.prepack_kinds = registry.prepack_kinds()
        super().__init__(
            registry,
            lambda node: node.kind in self.prepack_kinds,
            methods,
            recursive=recursive,
        )
