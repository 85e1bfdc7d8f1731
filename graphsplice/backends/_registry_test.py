# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
from __future__ import annotations

import unittest

from graphsplice import backends
from graphsplice.backends import _registry


class OpRegistryTest(unittest.TestCase):
    def setUp(self):
        self.registry = _registry.OpRegistry()

        @self.registry.evaluator("test::pack", num_inputs=2, result_type="Packed", is_prepack=True)
        def pack(a, b):
            return (a, b)

        self.registry.register(_registry.OpSchema("test::run", 2, None))

    def test_lookup(self):
        schema = self.registry.lookup("test::pack")
        self.assertIsNotNone(schema)
        self.assertEqual(schema.result_type, "Packed")
        self.assertTrue(schema.can_evaluate)
        self.assertFalse(self.registry.lookup("test::run").can_evaluate)
        self.assertIsNone(self.registry.lookup("test::missing"))
        self.assertIn("test::run", self.registry)
        self.assertEqual(len(self.registry), 2)

    def test_evaluate(self):
        self.assertEqual(self.registry.evaluate("test::pack", [1, 2]), (1, 2))

    def test_evaluate_checks_number_of_inputs(self):
        with self.assertRaisesRegex(ValueError, "expects 2 inputs"):
            self.registry.evaluate("test::pack", [1])

    def test_evaluate_without_evaluator_raises(self):
        with self.assertRaisesRegex(ValueError, "cannot be evaluated"):
            self.registry.evaluate("test::run", [1, 2])

    def test_evaluate_unknown_kind_raises_key_error(self):
        with self.assertRaises(KeyError):
            self.registry.evaluate("test::missing", [])

    def test_prepack_kinds(self):
        self.assertEqual(self.registry.prepack_kinds(), frozenset({"test::pack"}))

    def test_register_twice_raises_unless_overwriting(self):
        schema = _registry.OpSchema("test::run", 1, None)
        with self.assertRaises(ValueError):
            self.registry.register(schema)
        self.registry.register(schema, overwrite=True)
        self.assertEqual(self.registry.lookup("test::run").num_inputs, 1)

    def test_kind_must_be_namespaced(self):
        with self.assertRaises(ValueError):
            self.registry.register(_registry.OpSchema("run", 1, None))

    def test_require_reports_missing_kinds(self):
        self.registry.require(["test::pack", "test::run"])
        with self.assertRaisesRegex(backends.UnsupportedConfigurationError, "test::other"):
            self.registry.require(["test::pack", "test::other"])


class BackendTest(unittest.TestCase):
    def test_vulkan_backend_is_registered(self):
        backend = backends.get_backend("vulkan")
        self.assertIs(backend, backends.vulkan.BACKEND)
        self.assertEqual(backend.namespace, "vulkan_prepack")
        self.assertIn("vulkan", backends.registered_backends())
        backend.check_available()

    def test_unknown_backend_raises(self):
        with self.assertRaisesRegex(backends.UnsupportedConfigurationError, "metal"):
            backends.get_backend("metal")

    def test_backend_missing_required_operation_is_not_available(self):
        backend = backends.Backend(
            name="incomplete",
            namespace="incomplete_prepack",
            registry=_registry.OpRegistry(),
            required_kinds=("incomplete_prepack::linear_prepack",),
        )
        with self.assertRaises(backends.UnsupportedConfigurationError):
            backend.check_available()

    def test_register_backend_twice_raises(self):
        with self.assertRaises(ValueError):
            backends.register_backend(backends.vulkan.BACKEND)


if __name__ == "__main__":
    unittest.main()
