# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Utilities to enforce invariants on the IR."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from graphsplice.ir import _core


class InvariantError(Exception):
    """Raised when an invariant is violated."""


class PreconditionError(InvariantError):
    """Raised when a precondition is violated."""


class PostconditionError(InvariantError):
    """Raised when a postcondition is violated."""


class InconsistentGraphError(InvariantError):
    """Raised when a graph is not well formed, e.g. a use points to a removed node."""


def find_graph_inconsistencies(graph: _core.Graph) -> list[str]:
    """Return a description of every well-formedness violation found in the graph.

    The graph is well formed when:

    1. Every node belongs to the graph and every node name is unique.
    2. Every node input is a graph input or the output of an earlier node.
    3. Every recorded use of a value is a live node of the graph whose input
       at that position is the value, and every input of a node is recorded
       as a use.
    4. Every graph output is defined in the graph.
    """
    problems: list[str] = []
    defined: set[int] = {id(value) for value in graph.inputs}
    live_nodes: set[int] = set()
    names: set[str] = set()
    for node in graph:
        if node.graph is not graph:
            problems.append(f"Node {node.name!r} does not point back to its graph.")
        if node.name in names:
            problems.append(f"Node name {node.name!r} is not unique.")
        names.add(node.name)  # type: ignore[arg-type]
        live_nodes.add(id(node))
        for i, value in enumerate(node.inputs):
            if value is None:
                problems.append(f"Input {i} of node {node.name!r} is detached.")
                continue
            if id(value) not in defined:
                problems.append(
                    f"Input {i} of node {node.name!r} ({value}) is not defined before use."
                )
            if (node, i) not in value.uses():
                problems.append(
                    f"Input {i} of node {node.name!r} ({value}) is not recorded as a use."
                )
        for output in node.outputs:
            if output.producer() is not node:
                problems.append(f"Output {output} of node {node.name!r} has another producer.")
            defined.add(id(output))

    values = list(graph.inputs)
    for node in graph:
        values.extend(node.outputs)
    for value in values:
        for user, index in value.uses():
            if id(user) not in live_nodes:
                problems.append(f"Value {value} is used by node {user.name!r} not in the graph.")
            elif index >= len(user.inputs) or user.inputs[index] is not value:
                problems.append(f"Value {value} has a stale use ({user.name!r}, {index}).")

    for output in graph.outputs:
        if id(output) not in defined:
            problems.append(f"Graph output {output} is not defined in the graph.")
    return problems


def check_graph(graph: _core.Graph) -> None:
    """Raise :class:`InconsistentGraphError` if the graph is not well formed."""
    problems = find_graph_inconsistencies(graph)
    if problems:
        raise InconsistentGraphError(
            f"Graph {graph.name!r} is inconsistent:\n" + "\n".join(problems)
        )
