# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Basic types for the pattern matching and rewriter API."""

from __future__ import annotations

import dataclasses
import enum
import logging
from collections import defaultdict
from typing import TYPE_CHECKING, MutableSequence, Sequence, Union

from graphsplice import ir

if TYPE_CHECKING:
    import graphsplice.rewriter._rewrite_rule as _rewrite_rule

logger = logging.getLogger(__name__)


class MatchFailureInfo:
    """Encapsulates information about a pattern match failure."""

    def __init__(
        self,
        reason: str = "",
        *failure_source: ir.Node | ir.Value,
    ):
        self.reason = reason
        self.failure_sources: tuple[ir.Node | ir.Value, ...] = failure_source
        assert all(isinstance(item, (ir.Node, ir.Value)) for item in failure_source), (
            f"All items in failure_source must be ir.Node or ir.Value, got {[type(item) for item in failure_source]}"
        )

    def __str__(self):
        return f"MatchFailureInfo(reason={self.reason!r}, failure_sources={self.failure_sources!r})"


class MatchFailureError(MatchFailureInfo, Exception):
    """Exception raised when a pattern match fails.

    This makes it easier to handle match failures in a compositional way,
    for example, during the filter-checking phase of a pattern match.
    It allows us to define utility functions without having to check for
    and propagate match failures explicitly.
    """

    def __init__(
        self,
        reason: str = "",
        *failure_source: ir.Node | ir.Value,
    ):
        MatchFailureInfo.__init__(self, reason, *failure_source)
        Exception.__init__(self, reason)


class MatchResult:
    """The state object used by the pattern-matching algorithm.

    A match can either succeed or fail.
    If it succeeds, it holds the nodes of the target graph that matched the
    pattern and the bindings of the pattern values to target values.

    Example::

        graph(%input, %weight, %bias):
          %weight_t = aten::t(%weight)
          %res = aten::addmm(%bias, %input, %weight_t, 1, 1)
          return (%res)

    The above pattern matches a transpose feeding an ``addmm``. The matched
    nodes are the two operations; the ``1`` constants are matched but are not
    part of the matched nodes, so they are left in place by the rewrite. The
    bindings map ``input``, ``weight``, ``bias``, ``weight_t`` and ``res`` to
    the values of the target graph.
    """

    def __init__(self) -> None:
        self._success: bool = True
        self._reason: str = ""
        self._failure_nodes_and_values: list[Union[ir.Node, ir.Value]] = []
        # Pattern value name -> target value
        self._bindings: dict[str, ir.Value] = {}
        self._value_bindings: dict[ir.Value, ir.Value] = {}
        self._node_bindings: dict[ir.Node, ir.Node] = {}
        # Target node -> pattern node, to keep node bindings injective
        self._bound_nodes: dict[ir.Node, ir.Node] = {}
        self._nodes: list[ir.Node] = []
        self._outputs: list[ir.Value] = []
        self.anchor: ir.Node | None = None

    def __repr__(self) -> str:
        return f"MatchResult(success={bool(self)}, reason={self.reason!r}, nodes={self.nodes!r})"

    def __bool__(self) -> bool:
        """Returns True if the match is successful."""
        return self._success

    def fail(
        self,
        reason: str = "",
        failure_source: Union[ir.Node, ir.Value, list[Union[ir.Node, ir.Value]]] | None = None,
    ) -> MatchResult:
        self._success = False
        self._reason = reason
        if failure_source is not None:
            if isinstance(failure_source, list):
                self._failure_nodes_and_values.extend(failure_source)
            else:
                self._failure_nodes_and_values.append(failure_source)
        return self

    @property
    def reason(self) -> str:
        """Returns the reason for the failure."""
        return self._reason

    @property
    def nodes(self) -> Sequence[ir.Node]:
        """Returns the target nodes that matched the pattern, in graph order.

        Nodes matched by ``prim::Constant`` pattern nodes are not included.
        """
        return tuple(self._nodes)

    def set_nodes(self, nodes: Sequence[ir.Node]) -> None:
        self._nodes = list(nodes)

    def lookup_node(self, pattern_node: ir.Node) -> ir.Node | None:
        """Looks up the node that matched the given pattern node."""
        return self._node_bindings.get(pattern_node)

    def bind_node(self, pattern_node: ir.Node, node: ir.Node) -> bool:
        """Binds a pattern node to a target node.

        Returns:
            True if binding succeeded, False if the target node is bound to another pattern node.
        """
        if pattern_node.kind == ir.CONSTANT_KIND:
            # Pooled constants may stand for several pattern constants
            self._node_bindings[pattern_node] = node
            return True
        existing = self._bound_nodes.get(node)
        if existing is not None and existing is not pattern_node:
            self.fail(
                f"Node {node.name!r} is already matched against pattern node {existing.name!r}.",
                node,
            )
            return False
        self._node_bindings[pattern_node] = node
        self._bound_nodes[node] = pattern_node
        return True

    def bind_value(self, pattern_value: ir.Value, value: ir.Value) -> bool:
        """Bind a pattern value to a target value.

        Returns:
            True if binding succeeded, False if there was a conflict
        """
        existing = self._value_bindings.get(pattern_value)
        if existing is not None:
            if existing is value:
                return True
            self.fail(
                f"Binding conflict: %{pattern_value.name} already bound to {existing}, "
                f"cannot rebind to {value}",
                [existing, value],
            )
            return False
        self._value_bindings[pattern_value] = value
        assert pattern_value.name is not None
        self._bindings[pattern_value.name] = value
        return True

    @property
    def bindings(self) -> dict[str, ir.Value]:
        """Returns the bindings of the pattern value names to target values."""
        return self._bindings

    @property
    def value_bindings(self) -> dict[ir.Value, ir.Value]:
        """Returns the bindings of the pattern values to target values."""
        return self._value_bindings

    @property
    def node_bindings(self) -> dict[ir.Node, ir.Node]:
        return self._node_bindings

    @property
    def outputs(self) -> MutableSequence[ir.Value]:
        """Returns the target values bound to the pattern outputs."""
        return self._outputs

    @property
    def failure_nodes_and_values(self) -> list[Union[ir.Node, ir.Value]]:
        """Returns the nodes and values that caused the failure."""
        return self._failure_nodes_and_values

    def num_matched_nodes(self) -> int:
        """Returns the number of nodes matched so far."""
        return len(self._node_bindings)


class MatchStatus(enum.IntEnum):
    """The status of a pattern-matching operation."""

    NO_MATCH = 0  # No successful match found for entire pattern graph
    CONDITION_FAILED = 1  # Subsequent filter check failed
    OVERLAPPING = 2  # Claims a node claimed by an earlier match
    SUCCESS = 3  # A successful match was found


@dataclasses.dataclass
class MatchInfo:
    """The status of a pattern-matching operation. An extension of MatchResult."""

    match_result: MatchResult
    root_node: ir.Node
    container: ir.Graph
    status: MatchStatus

    def score(self) -> int:
        """Return a score for the match."""
        return self.match_result.num_matched_nodes() + int(self.status.value) * 100

    def describe(self) -> str:
        """Return a multi-line description of the match for debug output."""
        lines = [f"Status: {self.status.name}"]
        if self.status != MatchStatus.SUCCESS:
            reason = self.match_result.reason or "no reason given"
            if self.status == MatchStatus.CONDITION_FAILED:
                lines.append(f"Rejected by the filter: {reason}")
            else:
                lines.append(f"Matching failed: {reason}")
            failure_nodes_and_values = self.match_result.failure_nodes_and_values
            if failure_nodes_and_values:
                lines.append("Failure at or around:")
                lines.extend(f"  {cause}" for cause in failure_nodes_and_values)
        lines.append(f"Matched nodes in graph '{self.container.name}':")
        lines.extend(f"  {node}" for node in self.match_result.node_bindings.values())
        return "\n".join(lines)


class MatchingTracer:
    """A debugging helper class to trace the matching of a pattern against a graph.

    This is used to track the best matches found for each rule, and to report the
    results at the end of the matching.
    """

    def __init__(self) -> None:
        self._best_matches_map: dict[_rewrite_rule.RewriteRule, list[MatchInfo]] = defaultdict(
            list
        )

    @property
    def best_matches_map(self) -> dict[_rewrite_rule.RewriteRule, list[MatchInfo]]:
        return self._best_matches_map

    def log(
        self,
        rule: _rewrite_rule.RewriteRule,
        container: ir.Graph,
        node: ir.Node,
        match_result: MatchResult,
        status: MatchStatus,
    ) -> None:
        this_match = MatchInfo(match_result, node, container, status)
        this_score = this_match.score()
        if this_score == 0:
            return
        best_matches = self._best_matches_map[rule]
        if best_matches:
            if this_score < best_matches[0].score():
                return
            if this_score > best_matches[0].score():
                best_matches.clear()
        best_matches.append(this_match)

    def report(self) -> tuple[_rewrite_rule.RewriteRule, MatchInfo] | None:
        """Log the best match over all the rules and return it with its rule.

        Returns ``None`` when no rule got past the first node of its pattern.
        """
        best: tuple[_rewrite_rule.RewriteRule, MatchInfo] | None = None
        for rule, matches in self._best_matches_map.items():
            if not matches:
                continue
            if best is None or matches[0].score() > best[1].score():
                best = (rule, matches[0])
        if best is None:
            logger.info("No matches found.")
            return None
        rule, match = best
        logger.info("Best match of rule '%s':\n%s", rule, match.describe())
        return best
