# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
from __future__ import annotations

import unittest

import parameterized

from graphsplice import ir
from graphsplice.ir import traversal


def _module(type_name: str, *children: ir.Module, methods=("forward",)) -> ir.Module:
    graph_text = """
        graph(%self, %x):
            %y = aten::relu(%x)
            return (%y)
    """
    return ir.Module(
        type_name,
        methods=[ir.Method(name, ir.parse_graph(graph_text, name=name)) for name in methods],
        attributes={f"child_{i}": child for i, child in enumerate(children)},
    )


class ModuleIteratorTest(unittest.TestCase):
    def setUp(self):
        self.leaf_a = _module("LeafA")
        self.leaf_b = _module("LeafB")
        self.middle = _module("Middle", self.leaf_a)
        self.root = _module("Root", self.middle, self.leaf_b, methods=("forward", "helper"))

    @parameterized.parameterized.expand(
        [
            ("all", None, ["Root", "Middle", "LeafA", "LeafB"]),
            ("none", lambda _: False, ["Root"]),
            ("skip_middle", lambda m: m.type_name != "Middle", ["Root", "Middle", "LeafB"]),
        ]
    )
    def test_module_iterator_visits_depth_first(self, _, recursive, expected):
        iterator = traversal.ModuleIterator(self.root, recursive=recursive)
        visited = [m.type_name for m in iterator]
        self.assertEqual(visited, expected)

    def test_module_iterator_can_be_restarted(self):
        iterator = traversal.ModuleIterator(self.root)
        first = [m.type_name for m in iterator]
        second = [m.type_name for m in iterator]
        self.assertEqual(first, second)

    def test_shared_submodule_is_visited_once(self):
        shared = _module("Shared")
        root = _module("Root", shared, shared)
        self.assertEqual(
            [m.type_name for m in traversal.ModuleIterator(root)], ["Root", "Shared"]
        )

    def test_deep_hierarchy_does_not_exhaust_the_stack(self):
        module = _module("Leaf")
        for _ in range(5000):
            module = ir.Module("Wrapper", attributes={"inner": module})
        self.assertEqual(len(list(traversal.ModuleIterator(module))), 5001)

    def test_iterate_graphs(self):
        methods = [
            (owner.type_name, method.name) for owner, method in traversal.iterate_graphs(self.root)
        ]
        self.assertEqual(
            methods,
            [
                ("Root", "forward"),
                ("Root", "helper"),
                ("Middle", "forward"),
                ("LeafA", "forward"),
                ("LeafB", "forward"),
            ],
        )

    def test_iterate_graphs_not_recursive(self):
        owners = {
            owner.type_name for owner, _ in traversal.iterate_graphs(self.root, recursive=False)
        }
        self.assertEqual(owners, {"Root"})

    def test_iterate_graphs_module_filter_still_visits_children(self):
        owners = [
            owner.type_name
            for owner, _ in traversal.iterate_graphs(
                self.root, module_filter=lambda m: m.type_name != "Middle"
            )
        ]
        self.assertEqual(owners, ["Root", "Root", "LeafA", "LeafB"])


if __name__ == "__main__":
    unittest.main()
