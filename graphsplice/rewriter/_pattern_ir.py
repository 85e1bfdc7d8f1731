# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Patterns described as graphs in the textual graph language."""

from __future__ import annotations

from typing import Iterator, Mapping, Sequence

from graphsplice import ir


def _backward_slice(node: ir.Node) -> set[ir.Node]:
    """The nodes reachable from ``node`` by walking inputs to their producers."""
    covered: set[ir.Node] = set()
    stack = [node]
    while stack:
        current = stack.pop()
        if current in covered:
            continue
        covered.add(current)
        for value in current.inputs:
            producer = value.producer()
            if producer is not None:
                stack.append(producer)
    return covered


class GraphPattern:
    """Represents a pattern that can be matched against a subgraph.

    The pattern is an :class:`ir.Graph`. Its inputs are placeholders that match any
    target value; its nodes must be matched by target nodes of the same kind and
    arity; its outputs are the values replaced by a rewrite.

    The producer of the first output is the *anchor* of the pattern: matching
    starts from a target node of the anchor kind and walks backwards over inputs.
    Every node of the pattern must therefore be reachable from the anchor.

    Raises:
        ValueError: If the pattern has no output, returns an input or a value not
            computed from the anchor, or declares an input that no node uses.
    """

    def __init__(self, graph: ir.Graph) -> None:
        self._graph = graph
        if not graph.outputs:
            raise ValueError("GraphPattern must have at least one output")
        for output in graph.outputs:
            if output.producer() is None:
                raise ValueError(f"Pattern output {output} must be computed by a node.")
        for value in graph.inputs:
            if not value.uses():
                raise ValueError(f"Pattern input {value} is not used by any node.")

        anchor = graph.outputs[0].producer()
        assert anchor is not None
        covered = _backward_slice(anchor)
        uncovered = [node for node in graph if node not in covered]
        if uncovered:
            raise ValueError(
                f"Pattern nodes {[str(node) for node in uncovered]} are not reachable "
                f"from the anchor {anchor}."
            )
        self._anchor = anchor

        self._values: dict[str, ir.Value] = ir.create_value_mapping(graph)
        self._use_counts: dict[ir.Value, int] = {
            value: len(value.uses()) for value in self._values.values()
        }
        output_ids = {id(value) for value in graph.outputs}
        self._interior_values: tuple[ir.Value, ...] = tuple(
            value
            for node in graph
            if node.kind != ir.CONSTANT_KIND
            for value in node.outputs
            if id(value) not in output_ids
        )

    @classmethod
    def from_text(cls, text: str, name: str | None = None) -> GraphPattern:
        """Parse a pattern from the textual graph language."""
        return cls(ir.parse_graph(text, name=name))

    def __str__(self) -> str:
        return str(self._graph)

    @property
    def graph(self) -> ir.Graph:
        return self._graph

    @property
    def anchor(self) -> ir.Node:
        return self._anchor

    @property
    def inputs(self) -> Sequence[ir.Value]:
        return self._graph.inputs

    @property
    def outputs(self) -> Sequence[ir.Value]:
        return self._graph.outputs

    @property
    def values(self) -> Mapping[str, ir.Value]:
        """The values of the pattern by name."""
        return self._values

    @property
    def interior_values(self) -> Sequence[ir.Value]:
        """The values computed by the pattern that are not outputs.

        They must not be used outside of a match, since the rewrite removes them.
        Outputs of ``prim::Constant`` pattern nodes are excluded: matched constants
        stay in the graph.
        """
        return self._interior_values

    def num_uses(self, value: ir.Value) -> int:
        """The number of uses of a pattern value inside the pattern."""
        return self._use_counts[value]

    def num_nodes(self) -> int:
        return len(self._graph)

    def __len__(self) -> int:
        return self.num_nodes()

    def __iter__(self) -> Iterator[ir.Node]:
        return iter(self._graph)
