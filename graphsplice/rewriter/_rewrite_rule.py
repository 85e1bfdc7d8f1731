# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Rewrite rules for module graphs."""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

import graphsplice
import graphsplice.rewriter._basics as _basics
import graphsplice.rewriter._matcher as _matcher
import graphsplice.rewriter._pattern_ir as _pattern_ir
from graphsplice import ir

logger = logging.getLogger(__name__)

# Metadata keys recorded on the nodes created by a rewrite
RULE_NAME_KEY = "graphsplice.rewriter.rule_name"
SOURCE_KEY = "graphsplice.rewriter.source"

ValueMapping = Sequence[tuple[str, str]]


def _combine_filters(*filters: _matcher.MatchFilter | None) -> _matcher.MatchFilter | None:
    present = [f for f in filters if f is not None]
    if not present:
        return None
    if len(present) == 1:
        return present[0]

    def combined(match: _basics.MatchResult, values: Mapping[str, ir.Value]) -> bool:
        return all(f(match, values) for f in present)

    return combined


class RewriteRule:
    """A pattern graph, the graph replacing it and how their values correspond.

    Both graphs are written in the textual graph language. The inputs of the
    replacement refer by name to inputs of the pattern; its outputs replace the
    outputs of the pattern positionally.

    Args:
        pattern: The text of the pattern graph.
        replacement: The text of the replacement graph.
        value_mapping: Pairs ``(replacement value name, pattern value name)``. The
            producer of the replacement value records the name of the value matched
            by the pattern value as its source.
        filter: A predicate a match must satisfy to be rewritten.
        name: The name of the rule, recorded on the nodes it creates.

    Raises:
        ParseError: If either text is malformed.
        ValueError: If the two graphs are not compatible.
    """

    def __init__(
        self,
        pattern: str,
        replacement: str,
        value_mapping: ValueMapping = (),
        filter: _matcher.MatchFilter | None = None,
        name: str | None = None,
    ) -> None:
        self.name = name
        self._pattern = _pattern_ir.GraphPattern.from_text(pattern, name=name)
        self._replacement = ir.parse_graph(replacement, name=name)
        self._matcher = _matcher.SubgraphMatcher(self._pattern)
        self.filter = filter

        pattern_inputs = {value.name for value in self._pattern.inputs}
        for value in self._replacement.inputs:
            if value.name not in pattern_inputs:
                raise ValueError(
                    f"Replacement input %{value.name} is not an input of the pattern."
                )
        if len(self._replacement.outputs) != len(self._pattern.outputs):
            raise ValueError(
                "Number of outputs of the replacement does not match the number of outputs "
                f"of the pattern. Expected {len(self._pattern.outputs)}, but got "
                f"{len(self._replacement.outputs)}."
            )
        for value in self._replacement.outputs:
            if value.producer() is None:
                raise ValueError(
                    f"Replacement output {value} must be computed by a replacement node."
                )

        replacement_values = ir.create_value_mapping(self._replacement)
        self._value_mapping: list[tuple[ir.Value, str]] = []
        for replacement_name, pattern_name in value_mapping:
            if replacement_name not in replacement_values:
                raise ValueError(
                    f"Value mapping refers to %{replacement_name}, which is not a value "
                    "of the replacement."
                )
            if pattern_name not in self._pattern.values:
                raise ValueError(
                    f"Value mapping refers to %{pattern_name}, which is not a value of the pattern."
                )
            self._value_mapping.append((replacement_values[replacement_name], pattern_name))

    def __str__(self) -> str:
        return self.name if self.name else "Anonymous Rule"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"

    @property
    def pattern(self) -> _pattern_ir.GraphPattern:
        return self._pattern

    @property
    def replacement(self) -> ir.Graph:
        return self._replacement

    def find_matches(
        self,
        graph: ir.Graph,
        filter: _matcher.MatchFilter | None = None,
        *,
        tracer: _basics.MatchingTracer | None = None,
    ) -> list[_basics.MatchResult]:
        """Find the node-disjoint matches of the pattern that pass the filters."""
        on_match = None
        if tracer is not None:

            def on_match(
                node: ir.Node, match: _basics.MatchResult, status: _basics.MatchStatus
            ) -> None:
                tracer.log(self, graph, node, match, status)

        return self._matcher.find_matches(
            graph, _combine_filters(self.filter, filter), on_match=on_match
        )

    def apply_to_graph(
        self,
        graph: ir.Graph,
        filter: _matcher.MatchFilter | None = None,
        *,
        tracer: _basics.MatchingTracer | None = None,
    ) -> int:
        """Rewrite every accepted match of the pattern in the graph.

        Args:
            graph: The graph to rewrite in place.
            filter: An additional predicate a match must satisfy.
            tracer: If specified, no changes are made to the graph, only
                information about the best matches found is recorded.

        Returns:
            The number of rewrites.
        """
        matches = self.find_matches(graph, filter, tracer=tracer)
        if tracer is not None:
            return 0
        forwarding: dict[ir.Value, ir.Value] = {}
        for match in matches:
            self._splice(graph, match, forwarding)
            if graphsplice.DEBUG:
                ir.check_graph(graph)
        if matches:
            logger.debug(
                "Rule '%s' rewrote %s matches in graph '%s'", self, len(matches), graph.name
            )
        return len(matches)

    def _splice(
        self,
        graph: ir.Graph,
        match: _basics.MatchResult,
        forwarding: dict[ir.Value, ir.Value],
    ) -> None:
        """Replace one match by an instance of the replacement graph."""

        def resolve(value: ir.Value) -> ir.Value:
            # Values replaced by an earlier rewrite of the same application
            while value in forwarding:
                value = forwarding[value]
            return value

        value_map: dict[ir.Value, ir.Value] = {
            value: resolve(match.bindings[value.name])  # type: ignore[index]
            for value in self._replacement.inputs
        }
        output_ids = {id(value) for value in self._replacement.outputs}
        new_nodes = []
        for template in self._replacement:
            node = ir.Node(
                template.kind,
                [value_map[value] for value in template.inputs],
                [
                    ir.Attr(attr.name, attr.type, attr.value)
                    for attr in template.attributes.values()
                ],
                num_outputs=len(template.outputs),
            )
            for template_output, output in zip(template.outputs, node.outputs):
                output.type = template_output.type
                if id(template_output) not in output_ids:
                    assert template_output.name is not None
                    output.name = graph.unique_value_name(template_output.name)
                value_map[template_output] = output
            if self.name:
                node.meta[RULE_NAME_KEY] = self.name
            new_nodes.append(node)

        for replacement_value, pattern_name in self._value_mapping:
            producer = value_map[replacement_value].producer()
            if producer is not None and producer in new_nodes:
                source = match.bindings[pattern_name].name
                producer.meta.setdefault(SOURCE_KEY, []).append(source)

        old_outputs = list(match.outputs)
        new_outputs = [value_map[value] for value in self._replacement.outputs]
        assert match.anchor is not None
        try:
            ir.replace_nodes_and_values(
                graph, match.anchor, match.nodes, new_nodes, old_outputs, new_outputs
            )
        except ValueError as e:
            raise ir.InconsistentGraphError(
                f"Rule '{self}' could not remove the matched nodes of graph '{graph.name}'"
            ) from e
        for old_value, new_value in zip(old_outputs, new_outputs):
            forwarding[old_value] = new_value


class RewriteRuleSet:
    """An ordered collection of rewrite rules.

    The rules are applied one after the other: each rule rewrites every match
    it finds in the graph left by the previous rules.
    """

    def __init__(self, rules: Sequence[RewriteRule]) -> None:
        if not rules:
            raise ValueError("rules must not be empty")
        self.rules = list(rules)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.rules!r})"

    def __iter__(self):
        yield from self.rules

    def apply_to_graph(
        self,
        graph: ir.Graph,
        filter: _matcher.MatchFilter | None = None,
        *,
        tracer: _basics.MatchingTracer | None = None,
    ) -> int:
        """Apply the rewrite rules to the given graph.

        Args:
            graph: The graph to which the rewrite rules are applied.
            filter: A predicate every match must satisfy in addition to the rule's own filter.
            tracer: The tracer for debugging. Defaults to None.

        Returns:
            The number of rewrites.
        """
        count = 0
        for rule in self.rules:
            count += rule.apply_to_graph(graph, filter, tracer=tracer)
        return count

    def apply_to_module(
        self,
        module: ir.Module,
        *,
        methods: Sequence[str] | None = None,
        recursive: bool = True,
        tracer: _basics.MatchingTracer | None = None,
    ) -> int:
        """Apply the rewrite rules to the methods of a module tree.

        Args:
            module: The root of the module tree.
            methods: Names of the methods to rewrite. ``None`` rewrites all of them.
            recursive: Whether to rewrite the methods of sub-modules.
            tracer: if specified, no changes are made to the module, only
                information about the best matches found is computed. The best
                match is logged once the whole tree has been visited.

        Returns:
            The number of applications of rewrite rules.
        """
        count = 0
        for _, method in ir.traversal.iterate_graphs(module, recursive=recursive):
            if methods is not None and method.name not in methods:
                continue
            count += self.apply_to_graph(method.graph, tracer=tracer)
        if tracer is not None:
            tracer.report()
        return count
