# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Implementation of the subgraph matching algorithm."""

from __future__ import annotations

import logging
from typing import Callable, Mapping

import graphsplice.rewriter._basics as _basics
import graphsplice.rewriter._pattern_ir as _pattern_ir
from graphsplice import ir

logger = logging.getLogger(__name__)

# A filter receives the match and the values of the pattern by name
MatchFilter = Callable[[_basics.MatchResult, Mapping[str, ir.Value]], bool]


def _valid_to_replace(
    pattern: _pattern_ir.GraphPattern, match: _basics.MatchResult
) -> bool:
    """Check that values computed by the matched nodes, except for the outputs, are used only by the matched nodes."""
    for pattern_value in pattern.interior_values:
        value = match.value_bindings[pattern_value]
        if value.is_graph_output():
            match.fail(f"Value {value} is an output of the graph.", value)
            return False
        # The matched nodes mirror the pattern nodes, so any extra use is outside the match
        if len(value.uses()) != pattern.num_uses(pattern_value):
            match.fail(f"Value {value} is used outside of the match.", value)
            return False
    return True


class SubgraphMatcher:
    """Finds the occurrences of a pattern in a graph.

    Matching starts from a target node of the same kind as the anchor of the
    pattern and walks backwards over the inputs, matching pattern nodes against
    the producers of the corresponding target values. Inputs are compared
    position by position.

    Args:
        pattern: The pattern to look for.
    """

    def __init__(self, pattern: _pattern_ir.GraphPattern) -> None:
        self.pattern = pattern
        self._match: _basics.MatchResult = _basics.MatchResult()

    def __str__(self) -> str:
        return str(self.pattern)

    def fail(self, reason: str, source: ir.Node | ir.Value | None = None) -> bool:
        num_matched_nodes = self._match.num_matched_nodes()
        if num_matched_nodes > 0:  # Log only if at least one node successfully matched.
            logger.debug("Match failed after %s nodes: %s", num_matched_nodes, reason)
        self._match.fail(reason, source)
        return False

    def _match_constant(self, pattern_node: ir.Node, node: ir.Node) -> bool:
        """Match a ``prim::Constant`` pattern node against a target node.

        Matched constants are not part of the matched nodes. Thus, they are not
        deleted if the subgraph is replaced; subsequent dead code elimination
        removes them if they are no longer used.
        """
        if pattern_node.attributes != node.attributes:
            return self.fail(
                f"Constant value mismatch: expected {pattern_node}, got {node}.", node
            )
        return True

    def _match_node(self, pattern_node: ir.Node, node: ir.Node) -> bool:
        """Matches a pattern node against a target node and recurses into the inputs."""
        # Graph-matching: we do not allow the same pattern node to be matched against
        # different graph nodes.
        matched_node = self._match.lookup_node(pattern_node)
        if matched_node is not None:
            if matched_node is not node:
                return self.fail(
                    "Same pattern node is matched against different graph nodes.", node
                )
            return True
        if pattern_node.kind != node.kind:
            return self.fail(
                f"Kind mismatch: expected {pattern_node.kind}, got {node.kind}.", node
            )
        if len(node.inputs) != len(pattern_node.inputs):
            return self.fail(
                f"Input nums mismatch. {len(node.inputs)} vs {len(pattern_node.inputs)}", node
            )
        if len(node.outputs) != len(pattern_node.outputs):
            return self.fail(
                f"Output nums mismatch. {len(node.outputs)} vs {len(pattern_node.outputs)}", node
            )
        if pattern_node.kind == ir.CONSTANT_KIND and not self._match_constant(pattern_node, node):
            return False
        if not self._match.bind_node(pattern_node, node):
            return False

        for output_pattern, output in zip(pattern_node.outputs, node.outputs):
            if not self._match.bind_value(output_pattern, output):
                return False
        for arg_pattern, arg_value in zip(pattern_node.inputs, node.inputs):
            if not self._match_value(arg_pattern, arg_value):
                return False
        return True

    def _match_value(self, pattern_value: ir.Value, value: ir.Value) -> bool:
        """Match a target value against a pattern value."""
        if not self._match.bind_value(pattern_value, value):
            return False
        if pattern_value.is_graph_input():
            # Placeholders match any value of a compatible type
            if (
                pattern_value.type is not None
                and value.type is not None
                and pattern_value.type != value.type
            ):
                return self.fail(
                    f"Type mismatch: %{pattern_value.name} expects {pattern_value.type}, "
                    f"got {value} of type {value.type}.",
                    value,
                )
            return True
        pattern_node = pattern_value.producer()
        assert pattern_node is not None
        node = value.producer()
        if node is None:
            return self.fail(
                "Mismatch: Computed node pattern does not match uncomputed IR value.", value
            )
        if value.index() != pattern_value.index():
            return self.fail(
                f"Node output index mismatch: expected {pattern_value.index()}, got {value.index()}.",
                value,
            )
        return self._match_node(pattern_node, node)

    def _check_output_uses(self, graph: ir.Graph, positions: Mapping[ir.Node, int]) -> bool:
        """Check that external uses of the outputs come after the anchor."""
        match = self._match
        assert match.anchor is not None
        anchor_position = positions[match.anchor]
        matched_nodes = set(match.node_bindings.values())
        for value in match.outputs:
            for user, _ in value.uses():
                if user in matched_nodes:
                    continue
                if user.graph is not graph or positions[user] < anchor_position:
                    return self.fail(
                        f"Output {value} is used by {user.name!r} before the anchor.", user
                    )
        return True

    def match(
        self,
        graph: ir.Graph,
        node: ir.Node,
        positions: Mapping[ir.Node, int] | None = None,
    ) -> _basics.MatchResult:
        """Match the pattern against the subgraph ending at the given node.

        The given node is matched against the anchor of the pattern.

        Args:
            graph: The graph that owns ``node``.
            node: The candidate anchor.
            positions: The position of every node of ``graph``. Computed when not given.

        Returns:
            The match. It is falsy and carries a ``reason`` when matching fails.
        """
        self._match = _basics.MatchResult()
        match = self._match
        pattern = self.pattern
        if positions is None:
            positions = {n: i for i, n in enumerate(graph)}

        if not self._match_node(pattern.anchor, node):
            return match
        match.anchor = node
        match.outputs.extend(match.value_bindings[value] for value in pattern.outputs)
        if not _valid_to_replace(pattern, match):
            return match
        if not self._check_output_uses(graph, positions):
            return match
        match.set_nodes(
            sorted(
                (
                    target
                    for pattern_node, target in match.node_bindings.items()
                    if pattern_node.kind != ir.CONSTANT_KIND
                ),
                key=positions.__getitem__,
            )
        )
        return match

    def find_matches(
        self,
        graph: ir.Graph,
        filter: MatchFilter | None = None,
        *,
        on_match: Callable[[ir.Node, _basics.MatchResult, _basics.MatchStatus], None]
        | None = None,
    ) -> list[_basics.MatchResult]:
        """Find the node-disjoint occurrences of the pattern in the graph.

        Candidate anchors are visited in graph order. A match rejected by the filter
        claims no node. A match that claims a node of an earlier accepted match is
        dropped, so the first match found wins.

        Args:
            graph: The graph to search.
            filter: A predicate on the match and the pattern values by name. Raising
                :class:`MatchFailureError` counts as a rejection.
            on_match: Called with the candidate, the match and its status, for tracing.

        Returns:
            The accepted matches in graph order of their anchors. Empty when nothing matches.
        """
        positions = {node: i for i, node in enumerate(graph)}
        anchor_kind = self.pattern.anchor.kind
        claimed: set[ir.Node] = set()
        matches: list[_basics.MatchResult] = []
        for node in graph:
            if node.kind != anchor_kind:
                continue
            match = self.match(graph, node, positions)
            if not match:
                status = _basics.MatchStatus.NO_MATCH
            elif not self._check_filter(filter, match):
                status = _basics.MatchStatus.CONDITION_FAILED
            elif claimed.intersection(match.nodes):
                match.fail("Match overlaps with an earlier match.", node)
                status = _basics.MatchStatus.OVERLAPPING
            else:
                status = _basics.MatchStatus.SUCCESS
                claimed.update(match.nodes)
                matches.append(match)
            if on_match is not None:
                on_match(node, match, status)
            if status != _basics.MatchStatus.SUCCESS:
                logger.debug("No match at %s: %s", node.name, match.reason)
        return matches

    def _check_filter(self, filter: MatchFilter | None, match: _basics.MatchResult) -> bool:
        if filter is None:
            return True
        try:
            accepted = filter(match, self.pattern.values)
        except _basics.MatchFailureError as e:
            match.fail(e.reason, list(e.failure_sources))
            return False
        if not accepted:
            match.fail("Filter rejected the match.")
        return bool(accepted)

