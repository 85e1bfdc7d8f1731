# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
from __future__ import annotations

import unittest
from unittest import mock

import parameterized

import graphsplice
from graphsplice import ir, rewriter

_DOUBLE_RELU = """
    graph(%x):
        %y = aten::relu(%x)
        %z = aten::relu(%y)
        return (%z)
"""

_SINGLE_RELU = """
    graph(%x):
        %z = aten::relu(%x)
        return (%z)
"""


def _relu_chain(length: int) -> ir.Graph:
    lines = ["graph(%v0):"]
    lines.extend(f"  %v{i + 1} = aten::relu(%v{i})" for i in range(length))
    lines.append(f"  return (%v{length})")
    return ir.parse_graph("\n".join(lines), name="chain")


def _addmm_graph() -> ir.Graph:
    return ir.parse_graph(
        """
        graph(%x, %w, %b):
            %wt = aten::t(%w)
            %y = aten::addmm(%b, %x, %wt, 1, 1)
            %out = aten::relu(%y)
            return (%out)
        """
    )


_ADDMM_TO_LINEAR_PATTERN = """
    graph(%input, %weight, %bias):
        %weight_t = aten::t(%weight)
        %res = aten::addmm(%bias, %input, %weight_t, 1, 1)
        return (%res)
"""

_LINEAR = """
    graph(%input, %weight, %bias):
        %res = aten::linear(%input, %weight, %bias)
        return (%res)
"""

_ADDMM_TO_LINEAR = rewriter.RewriteRule(
    _ADDMM_TO_LINEAR_PATTERN,
    _LINEAR,
    value_mapping=[("res", "res")],
    name="AddmmToLinear",
)


class RewriteRuleValidationTest(unittest.TestCase):
    @parameterized.parameterized.expand(
        [
            (
                "unknown_replacement_input",
                """
                graph(%x, %scale):
                    %z = aten::mul(%x, %scale)
                    return (%z)
                """,
                (),
                "not an input of the pattern",
            ),
            (
                "output_count",
                """
                graph(%x):
                    %z = aten::relu(%x)
                    %w = aten::neg(%x)
                    return (%z, %w)
                """,
                (),
                "Number of outputs",
            ),
            (
                "output_is_input",
                """
                graph(%x):
                    return (%x)
                """,
                (),
                "must be computed by a replacement node",
            ),
            (
                "mapping_unknown_replacement_value",
                _SINGLE_RELU,
                [("missing", "z")],
                "not a value of the replacement",
            ),
            (
                "mapping_unknown_pattern_value",
                _SINGLE_RELU,
                [("z", "missing")],
                "not a value of the pattern",
            ),
        ]
    )
    def test_incompatible_replacement_raises(self, _, replacement, value_mapping, message):
        with self.assertRaisesRegex(ValueError, message):
            rewriter.RewriteRule(_DOUBLE_RELU, replacement, value_mapping)

    def test_malformed_pattern_raises_parse_error(self):
        with self.assertRaises(ir.ParseError):
            rewriter.RewriteRule("graph(%x):\n  %y = relu(%x)\n  return (%y)", _SINGLE_RELU)

    def test_str_is_the_rule_name(self):
        self.assertEqual(str(_ADDMM_TO_LINEAR), "AddmmToLinear")
        self.assertEqual(str(rewriter.RewriteRule(_DOUBLE_RELU, _SINGLE_RELU)), "Anonymous Rule")


class RewriteRuleTest(unittest.TestCase):
    def test_rewrite_replaces_match_and_keeps_graph_consistent(self):
        graph = _addmm_graph()
        count = _ADDMM_TO_LINEAR.apply_to_graph(graph)
        self.assertEqual(count, 1)
        kinds = [node.kind for node in graph]
        self.assertNotIn("aten::addmm", kinds)
        self.assertNotIn("aten::t", kinds)
        linear = next(node for node in graph if node.kind == "aten::linear")
        self.assertEqual([v.name for v in linear.inputs], ["x", "w", "b"])
        self.assertEqual(linear.outputs[0].name, "y")
        self.assertIs(graph[-1].inputs[0], linear.outputs[0])
        self.assertEqual(ir.find_graph_inconsistencies(graph), [])

    def test_rewrite_records_rule_name_and_source(self):
        graph = _addmm_graph()
        _ADDMM_TO_LINEAR.apply_to_graph(graph)
        linear = next(node for node in graph if node.kind == "aten::linear")
        self.assertEqual(linear.meta[rewriter.RULE_NAME_KEY], "AddmmToLinear")
        self.assertEqual(linear.meta[rewriter.SOURCE_KEY], ["y"])

    def test_rewrite_of_graph_output(self):
        graph = ir.parse_graph(
            """
            graph(%x):
                %a = aten::relu(%x)
                %b = aten::relu(%a)
                return (%b)
            """
        )
        rule = rewriter.RewriteRule(_DOUBLE_RELU, _SINGLE_RELU)
        self.assertEqual(rule.apply_to_graph(graph), 1)
        self.assertEqual(len(graph), 1)
        self.assertIs(graph.outputs[0], graph[0].outputs[0])
        self.assertEqual(graph.outputs[0].name, "b")

    def test_intermediate_replacement_values_get_unique_names(self):
        graph = ir.parse_graph(
            """
            graph(%x, %weight_t):
                %y = aten::linear(%x, %weight_t)
                return (%y)
            """
        )
        rule = rewriter.RewriteRule(
            """
            graph(%input, %weight):
                %res = aten::linear(%input, %weight)
                return (%res)
            """,
            """
            graph(%input, %weight):
                %weight_t = aten::t(%weight)
                %res = aten::matmul(%input, %weight_t)
                return (%res)
            """,
        )
        rule.apply_to_graph(graph)
        self.assertEqual(graph[0].outputs[0].name, "weight_t.1")
        self.assertEqual(ir.find_graph_inconsistencies(graph), [])

    def test_no_match_leaves_graph_untouched(self):
        graph = _relu_chain(1)
        before = str(graph)
        self.assertEqual(rewriter.RewriteRule(_DOUBLE_RELU, _SINGLE_RELU).apply_to_graph(graph), 0)
        self.assertEqual(str(graph), before)

    def test_every_disjoint_match_is_rewritten_in_one_application(self):
        graph = _relu_chain(4)
        count = rewriter.RewriteRule(_DOUBLE_RELU, _SINGLE_RELU).apply_to_graph(graph)
        self.assertEqual(count, 2)
        self.assertEqual(len(graph), 2)
        self.assertEqual(ir.find_graph_inconsistencies(graph), [])

    def test_additional_filter_is_combined_with_rule_filter(self):
        rule = rewriter.RewriteRule(
            _DOUBLE_RELU, _SINGLE_RELU, filter=lambda match, values: True
        )
        graph = _relu_chain(2)
        self.assertEqual(rule.apply_to_graph(graph, lambda match, values: False), 0)
        self.assertEqual(rule.apply_to_graph(graph), 1)

    def test_tracer_makes_no_change(self):
        graph = _addmm_graph()
        before = str(graph)
        tracer = rewriter.MatchingTracer()
        self.assertEqual(_ADDMM_TO_LINEAR.apply_to_graph(graph, tracer=tracer), 0)
        self.assertEqual(str(graph), before)
        best = tracer.best_matches_map[_ADDMM_TO_LINEAR]
        self.assertEqual(len(best), 1)
        self.assertEqual(best[0].status, rewriter.MatchStatus.SUCCESS)

    def test_graph_is_checked_after_each_rewrite_in_debug_mode(self):
        graph = _relu_chain(4)
        rule = rewriter.RewriteRule(_DOUBLE_RELU, _SINGLE_RELU)
        with mock.patch.object(graphsplice, "DEBUG", True), mock.patch.object(
            ir, "check_graph", wraps=ir.check_graph
        ) as check_graph:
            rule.apply_to_graph(graph)
        self.assertEqual(check_graph.call_count, 2)


class RewriteRuleSetTest(unittest.TestCase):
    def test_empty_rule_set_raises(self):
        with self.assertRaises(ValueError):
            rewriter.RewriteRuleSet([])

    def test_rules_apply_in_order(self):
        to_neg = rewriter.RewriteRule(
            _SINGLE_RELU, "graph(%x):\n  %z = aten::neg(%x)\n  return (%z)"
        )
        from_neg = rewriter.RewriteRule(
            "graph(%x):\n  %z = aten::neg(%x)\n  return (%z)",
            "graph(%x):\n  %z = aten::abs(%x)\n  return (%z)",
        )
        graph = _relu_chain(1)
        self.assertEqual(rewriter.RewriteRuleSet([to_neg, from_neg]).apply_to_graph(graph), 2)
        self.assertEqual(graph[0].kind, "aten::abs")

    def test_apply_to_module_selects_methods(self):
        child = ir.Module("Child", methods=[ir.Method("forward", _relu_chain(2))])
        module = ir.Module(
            "Parent",
            methods=[
                ir.Method("forward", _relu_chain(2)),
                ir.Method("helper", _relu_chain(2)),
            ],
            attributes={"child": child},
        )
        rules = rewriter.RewriteRuleSet([rewriter.RewriteRule(_DOUBLE_RELU, _SINGLE_RELU)])
        self.assertEqual(rules.apply_to_module(module, methods=["forward"]), 2)
        self.assertEqual(len(module.get_method("helper").graph), 2)
        self.assertEqual(len(child.get_method("forward").graph), 1)


    def test_apply_to_module_with_tracer_reports_best_match(self):
        module = ir.Module("Parent", methods=[ir.Method("forward", _addmm_graph())])
        before = str(module.get_method("forward").graph)
        tracer = rewriter.MatchingTracer()
        rules = rewriter.RewriteRuleSet([_ADDMM_TO_LINEAR])
        with self.assertLogs("graphsplice.rewriter._basics", level="INFO") as cm:
            self.assertEqual(rules.apply_to_module(module, tracer=tracer), 0)
        self.assertEqual(str(module.get_method("forward").graph), before)
        self.assertEqual(len(cm.output), 1)
        self.assertIn("AddmmToLinear", cm.output[0])
        self.assertIn("Status: SUCCESS", cm.output[0])
        rule, match = tracer.report()
        self.assertIs(rule, _ADDMM_TO_LINEAR)
        self.assertEqual(match.status, rewriter.MatchStatus.SUCCESS)

    def test_tracer_describes_filter_rejection(self):
        rule = rewriter.RewriteRule(
            _ADDMM_TO_LINEAR_PATTERN,
            _LINEAR,
            filter=lambda match, values: False,
            name="Rejected",
        )
        tracer = rewriter.MatchingTracer()
        rule.apply_to_graph(_addmm_graph(), tracer=tracer)
        _, match = tracer.report()
        self.assertEqual(match.status, rewriter.MatchStatus.CONDITION_FAILED)
        description = match.describe()
        self.assertIn("Rejected by the filter: Filter rejected the match.", description)
        self.assertIn("aten::addmm", description)

    def test_tracer_without_matches_reports_none(self):
        tracer = rewriter.MatchingTracer()
        with self.assertLogs("graphsplice.rewriter._basics", level="INFO") as cm:
            self.assertIsNone(tracer.report())
        self.assertIn("No matches found.", cm.output[0])


class RewritePassTest(unittest.TestCase):
    def _module(self) -> ir.Module:
        child = ir.Module("Child", methods=[ir.Method("forward", _relu_chain(4))])
        return ir.Module(
            "Parent",
            methods=[ir.Method("forward", _relu_chain(4))],
            attributes={"child": child},
        )

    def test_single_iteration(self):
        module = self._module()
        result = rewriter.RewritePass([rewriter.RewriteRule(_DOUBLE_RELU, _SINGLE_RELU)])(module)
        self.assertTrue(result.modified)
        self.assertEqual(len(module.get_method("forward").graph), 2)

    def test_iterations_stop_at_fixed_point(self):
        module = self._module()
        rewrite_pass = rewriter.RewritePass(
            [rewriter.RewriteRule(_DOUBLE_RELU, _SINGLE_RELU)], max_iterations=5
        )
        rewrite_pass(module)
        self.assertEqual(len(module.get_method("forward").graph), 1)
        self.assertEqual(len(module.attributes["child"].get_method("forward").graph), 1)
        self.assertFalse(rewrite_pass(module).modified)

    def test_non_recursive_pass_skips_submodules(self):
        module = self._module()
        rewriter.RewritePass(
            [rewriter.RewriteRule(_DOUBLE_RELU, _SINGLE_RELU)], recursive=False
        )(module)
        self.assertEqual(len(module.attributes["child"].get_method("forward").graph), 4)

    @parameterized.parameterized.expand([("no_rules", [], 1), ("no_iteration", None, 0)])
    def test_invalid_arguments_raise(self, _, rules, max_iterations):
        if rules is None:
            rules = [rewriter.RewriteRule(_DOUBLE_RELU, _SINGLE_RELU)]
        with self.assertRaises(ValueError):
            rewriter.RewritePass(rules, max_iterations=max_iterations)


if __name__ == "__main__":
    unittest.main()
