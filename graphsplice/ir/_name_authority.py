# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Auxiliary class for managing names in the IR."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from graphsplice.ir import _core


class NameAuthority:
    """Class for giving names to values and nodes in a graph.

    The names are generated in the format ``val_{value_counter}`` for values and
    ``node_{op}_{node_counter}`` for nodes. The counter is incremented each time
    a new value or node is named.

    Node names double as the stable identifiers of nodes inside their graph: they are
    assigned once, when the node joins the graph, and never reused while the graph
    lives, even after the node is removed. Values are identified by name across
    rewrites in the same way.

    If a value/node is already named when added to the graph, the name authority
    will not change its name.
    """

    def __init__(self):
        self._value_counter = 0
        self._node_counter = 0
        self._value_names: set[str] = set()
        self._node_names: set[str] = set()

    def _unique_value_name(self) -> str:
        """Generate a unique name for a value."""
        while True:
            name = f"val_{self._value_counter}"
            self._value_counter += 1
            if name not in self._value_names:
                return name

    def _unique_node_name(self, op: str) -> str:
        """Generate a unique name for a node."""
        while True:
            name = f"node_{op}_{self._node_counter}"
            self._node_counter += 1
            if name not in self._node_names:
                return name

    def register_or_name_value(self, value: _core.Value) -> None:
        if value.name is None:
            value.name = self._unique_value_name()
        self._value_names.add(value.name)

    def register_or_name_node(self, node: _core.Node) -> None:
        if node.name is None:
            node.name = self._unique_node_name(node.op)
        self._node_names.add(node.name)

    def is_value_name_taken(self, name: str) -> bool:
        return name in self._value_names
