# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Utilities for traversing the module tree."""

from __future__ import annotations

__all__ = [
    "ModuleIterator",
    "iterate_graphs",
]

from typing import Callable, Iterator

from typing_extensions import Self

from graphsplice.ir import _core


class ModuleIterator(Iterator[_core.Module]):
    def __init__(
        self,
        module: _core.Module,
        *,
        recursive: Callable[[_core.Module], bool] | None = None,
    ):
        """Iterate over a module and its sub-modules, depth first.

        A module is visited before its children, and children are visited in the order
        they were registered. The tree is walked with an explicit stack so that deep
        hierarchies do not exhaust the interpreter stack. Sub-modules shared by several
        parents are visited once.

        Args:
            module: The root of the module tree.
            recursive: A callback that determines whether to visit the children of a
                module. If not provided, the whole tree is visited.
        """
        self._module = module
        self._recursive = recursive
        self._iterator = self._module_iter()

    def __iter__(self) -> Self:
        self._iterator = self._module_iter()
        return self

    def __next__(self) -> _core.Module:
        return next(self._iterator)

    def _module_iter(self) -> Iterator[_core.Module]:
        stack = [self._module]
        visited: set[int] = set()
        while stack:
            module = stack.pop()
            if id(module) in visited:
                continue
            visited.add(id(module))
            yield module
            if self._recursive is not None and not self._recursive(module):
                continue
            # Reversed so that the first child is popped first
            stack.extend(reversed(module.children()))


def iterate_graphs(
    module: _core.Module,
    *,
    module_filter: Callable[[_core.Module], bool] | None = None,
    recursive: bool = True,
) -> Iterator[tuple[_core.Module, _core.Method]]:
    """Yield ``(module, method)`` for every method in the module tree.

    Args:
        module: The root of the module tree.
        module_filter: Optional predicate on the module; when it returns False the
            module's methods are skipped but its children are still visited.
        recursive: Whether to visit sub-modules.
    """
    modules = ModuleIterator(module, recursive=None if recursive else lambda _: False)
    for submodule in modules:
        if module_filter is not None and not module_filter(submodule):
            continue
        for method in submodule.get_methods():
            yield submodule, method
