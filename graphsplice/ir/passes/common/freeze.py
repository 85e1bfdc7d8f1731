# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Turn module attributes read by the methods into constants."""

from __future__ import annotations

__all__ = [
    "FreezeModulePass",
]

import logging
from typing import Any, Sequence

from graphsplice import ir

logger = logging.getLogger(__name__)

_SET_ATTR_KIND = "prim::SetAttr"
_ATTRIBUTE_NAME = "name"


def _mutated_attributes(module: ir.Module) -> frozenset[tuple[int, str]]:
    """``(id(owner), name)`` of the attributes written by a method of the module tree.

    The written module is resolved like reads are, so a parent writing through
    its handle to a sub-module marks the attribute of the sub-module.
    """
    written = set()
    for owner in ir.traversal.ModuleIterator(module):
        for method in owner.get_methods():
            for node in method.graph:
                if node.kind != _SET_ATTR_KIND or not node.inputs:
                    continue
                target = _resolve_owner(node.inputs[0], owner)
                if target is not None:
                    written.add((id(target), node.attributes[_ATTRIBUTE_NAME].value))
    return frozenset(written)


def _resolve_owner(value: ir.Value, module: ir.Module) -> ir.Module | None:
    """Return the module a value refers to, following ``prim::GetAttr`` chains from ``%self``."""
    graph = value.graph
    if value.is_graph_input():
        assert graph is not None
        return module if graph.inputs and graph.inputs[0] is value else None
    producer = value.producer()
    if producer is None or producer.kind != ir.GET_ATTR_KIND:
        return None
    parent = _resolve_owner(producer.inputs[0], module)
    if parent is None:
        return None
    child = parent.attributes.get(producer.attributes[_ATTRIBUTE_NAME].value)
    return child if isinstance(child, ir.Module) else None


def _fold_attribute_reads(
    graph: ir.Graph, module: ir.Module, mutated: frozenset[tuple[int, str]]
) -> int:
    count = 0
    for node in graph:
        if node.kind != ir.GET_ATTR_KIND:
            continue
        owner = _resolve_owner(node.inputs[0], module)
        if owner is None:
            continue
        attribute_name = node.attributes[_ATTRIBUTE_NAME].value
        if attribute_name not in owner.attributes:
            raise ir.InconsistentGraphError(
                f"Node {node.name!r} reads attribute '{attribute_name}' "
                f"missing from module '{owner.type_name}'"
            )
        value: Any = owner.attributes[attribute_name]
        if isinstance(value, ir.Module):
            # Sub-module handles stay; reads through them are folded
            continue
        if (id(owner), attribute_name) in mutated:
            logger.debug("Attribute '%s' is mutated, not folding %s", attribute_name, node)
            continue
        output = node.outputs[0]
        constant = ir.create_constant(
            value, output.type or owner.attribute_type(attribute_name), name=output.name
        )
        graph.insert_before(node, constant)
        ir.replace_all_uses_with(output, constant.outputs[0])
        graph.outputs[:] = [constant.outputs[0] if v is output else v for v in graph.outputs]
        graph.remove(node, safe=True)
        count += 1
    return count


class FreezeModulePass(ir.passes.InPlacePass):
    """Fold the attributes of a module tree into its method graphs.

    Every ``prim::GetAttr`` read of a parameter or other non-module attribute,
    through ``%self`` or through a chain of sub-module reads, is replaced by a
    ``prim::Constant`` holding the value. Attributes written with ``prim::SetAttr``
    stay dynamic.

    The root module keeps ``forward`` and the preserved methods only; the other
    methods are dropped. Methods of sub-modules are kept.

    Attributes:
        preserved_methods: Names of the root methods to keep in addition to ``forward``.
    """

    def __init__(self, preserved_methods: Sequence[str] = ()):
        super().__init__()
        self.preserved_methods = tuple(preserved_methods)

    def requires(self, module: ir.Module) -> None:
        for name in ("forward", *self.preserved_methods):
            if not module.has_method(name):
                raise ir.PreconditionError(
                    f"Method '{name}' to keep is not found in module '{module.type_name}'"
                )

    def call(self, module: ir.Module) -> ir.passes.PassResult:
        kept = {"forward", *self.preserved_methods}
        modified = False
        for method in module.get_methods():
            if method.name not in kept:
                module.remove_method(method.name)
                logger.debug("Dropped method '%s' when freezing", method.name)
                modified = True

        mutated = _mutated_attributes(module)
        count = 0
        for owner in ir.traversal.ModuleIterator(module):
            for method in owner.get_methods():
                count += _fold_attribute_reads(method.graph, owner, mutated)
        if count:
            logger.info("Folded %s attribute reads into constants", count)
        return ir.passes.PassResult(module, modified=modified or bool(count))
