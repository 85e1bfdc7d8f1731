# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
from __future__ import annotations

from typing import Sequence

__all__ = [
    "filters",
    "GraphPattern",
    "MatchFailureError",
    "MatchFailureInfo",
    "MatchResult",
    "MatchStatus",
    "MatchingTracer",
    "RewritePass",
    "RewriteRule",
    "RewriteRuleSet",
    "SubgraphMatcher",
    "RULE_NAME_KEY",
    "SOURCE_KEY",
]

import logging

from graphsplice import ir
from graphsplice.rewriter import filters
from graphsplice.rewriter._basics import (
    MatchFailureError,
    MatchFailureInfo,
    MatchingTracer,
    MatchResult,
    MatchStatus,
)
from graphsplice.rewriter._matcher import SubgraphMatcher
from graphsplice.rewriter._pattern_ir import GraphPattern
from graphsplice.rewriter._rewrite_rule import (
    RULE_NAME_KEY,
    SOURCE_KEY,
    RewriteRule,
    RewriteRuleSet,
)

logger = logging.getLogger(__name__)


class RewritePass(ir.passes.GraphPass):
    """Apply a set of rewrite rules to the graphs of a module tree.

    Args:
        rules: The rules, or a rule set.
        methods: Names of the methods to rewrite. ``None`` rewrites all of them.
        recursive: Whether to rewrite the methods of sub-modules.
        max_iterations: The maximum number of times the rules are applied to a graph.
            Applying the rules stops early when an application rewrites nothing.
    """

    def __init__(
        self,
        rules: Sequence[RewriteRule] | RewriteRuleSet,
        /,
        methods: Sequence[str] | None = None,
        *,
        recursive: bool = True,
        max_iterations: int = 1,
    ) -> None:
        super().__init__(methods, recursive=recursive)
        if isinstance(rules, Sequence):
            if not rules:
                raise ValueError("rules must not be empty")
            # Create a rule set using provided rules
            rules = RewriteRuleSet(rules)
        assert isinstance(rules, RewriteRuleSet)
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be positive, got {max_iterations}")
        self.rules: RewriteRuleSet = rules
        self.max_iterations = max_iterations

    def call_graph(self, graph: ir.Graph) -> bool:
        total = 0
        for iteration in range(self.max_iterations):
            count = self.rules.apply_to_graph(graph)
            total += count
            if not count:
                logger.debug(
                    "No more rewrites in graph '%s' after %s iterations", graph.name, iteration
                )
                break
        if total:
            logger.info("Applied %s rewrites to graph '%s'", total, graph.name)
        return bool(total)
