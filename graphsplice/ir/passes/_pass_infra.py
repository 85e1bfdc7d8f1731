# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
#
# This module implements some APIs described in
# https://pytorch.org/executorch/stable/compiler-custom-compiler-passes.html
# for the module IR.
# The classes {PassResult and PassManager} are derived from
# https://github.com/pytorch/pytorch/blob/1e47c7b11b312b47a621efd547f5c90081f0d9cb/torch/fx/passes/infra/pass_base.py#L12
# and
# https://github.com/pytorch/pytorch/blob/1e47c7b11b312b47a621efd547f5c90081f0d9cb/torch/fx/passes/infra/pass_manager.py#L147
# The original code is licensed under the PyTorch License https://github.com/pytorch/pytorch/blob/main/LICENSE

"""Passes infrastructure for the IR."""

from __future__ import annotations

import dataclasses
import logging
from typing import Literal, Sequence, final

__all__ = [
    "PassBase",
    "Sequential",
    "InPlacePass",
    "FunctionalPass",
    "PassManager",
    "PassResult",
    # Errors
    "InvariantError",
    "PreconditionError",
    "PostconditionError",
    "PassError",
]

import abc

import graphsplice
from graphsplice import ir
from graphsplice.ir._invariants import InvariantError, PostconditionError, PreconditionError

logger = logging.getLogger(__name__)


class PassError(RuntimeError):
    """Raised when an error occurs during a pass."""


@dataclasses.dataclass
class PassResult:
    """Result of a pass.

    Attributes:
        module: The transformed module.
        modified: Whether the resulting module is different from the input module.
    """

    module: ir.Module
    modified: bool


def check_module(module: ir.Module) -> None:
    """Check the well-formedness of every method graph in the module tree.

    Raises:
        InconsistentGraphError: If any graph is not well formed.
    """
    for _, method in ir.traversal.iterate_graphs(module):
        ir.check_graph(method.graph)


class PassBase(abc.ABC):
    """Base class for all passes.


    ``in_place`` and ``changes_input`` properties and what they mean:

    +------------+------------------+----------------------------+
    |            | changes_inputs   | not changes_inputs         |
    +------------+------------------+----------------------------+
    | in_place   | in place         | Side-effect-only pass      |
    +------------+------------------+----------------------------+
    | not        | destructive      | functional                 |
    | in_place   |                  |                            |
    +------------+------------------+----------------------------+
    """

    @property
    @abc.abstractmethod
    def in_place(self) -> bool:
        """Whether the pass modifies the module in place and returns it.

        If True, the pass will return the same module object that was passed in.
        If False, the pass will return a new module object.
        """
        raise NotImplementedError

    @property
    @abc.abstractmethod
    def changes_input(self) -> bool:
        """Whether the pass modifies input module."""
        raise NotImplementedError

    @property
    def destructive(self) -> bool:
        """Whether the pass will destroy the input module when ``in_place=False``.

        A pass is destructive if it is not in place and it modifies the input module.
        """
        return not self.in_place and self.changes_input

    def __call__(self, module_or_result: ir.Module | PassResult, /) -> PassResult:
        if isinstance(module_or_result, PassResult):
            module = module_or_result.module
        else:
            module = module_or_result
        # Check preconditions
        try:
            self.requires(module)
        except PreconditionError:
            raise
        except Exception as e:
            raise PreconditionError(
                f"Pre-condition for pass '{self.__class__.__name__}' failed"
            ) from e

        result = self.call(module)

        # Check postconditions
        try:
            self.ensures(result.module if isinstance(result, PassResult) else module)
        except PostconditionError:
            raise
        except Exception as e:
            raise PostconditionError(
                f"Post-condition for pass '{self.__class__.__name__}' failed"
            ) from e

        if not isinstance(result, PassResult):
            raise TypeError(
                f"The result of the pass '{self.__class__.__name__}' should be type PassResult. "
                "Please create one with ir.passes.PassResult()."
            )

        # Checks that the declared in-place property is respected
        if self.in_place and result.module is not module:
            raise PassError(
                f"The pass '{self.__class__.__name__}' is declared in-place, "
                "but the module returned is *not* the same object as the input module. "
                "Pass developer: Pass should return the same module object or the in_place property should return False."
            )
        if not self.in_place and result.module is module:
            raise PassError(
                f"The pass '{self.__class__.__name__}' is declared not in-place, "
                "but the module returned *is* the same object as the input module. "
                "Pass developer: Pass should return a new module object or the in_place property should return True."
            )
        return result

    def __str__(self) -> str:
        return self.__class__.__name__

    @abc.abstractmethod
    def call(self, module: ir.Module) -> PassResult:
        """The main entry point for the pass."""
        ...

    def requires(self, module: ir.Module) -> None:
        """Pre-conditions for the pass.

        This is optional to implement, will be called before call() if run by a pass manager.
        """
        del module  # Unused

    def ensures(self, module: ir.Module) -> None:
        """Post-conditions for the pass.

        When ``graphsplice.DEBUG`` is set, every graph of the resulting module is
        checked for well-formedness. Subclasses overriding this should call super().
        """
        if graphsplice.DEBUG:
            check_module(module)


class InPlacePass(PassBase):
    """A pass that modifies the input module in place and returns it."""

    @property
    @final
    def in_place(self) -> Literal[True]:
        """An in-place pass is in place."""
        return True

    @property
    @final
    def changes_input(self) -> Literal[True]:
        """An in-place pass changes the input module."""
        return True


class FunctionalPass(PassBase):
    """A pass that returns a new module but does not modify the input module."""

    @property
    @final
    def in_place(self) -> Literal[False]:
        """A functional pass is not in place."""
        return False

    @property
    @final
    def changes_input(self) -> Literal[False]:
        """A functional pass does not change the input module."""
        return False


class Sequential(PassBase):
    """Run a sequence of passes in order."""

    def __init__(self, *passes: PassBase):
        if not passes:
            raise ValueError("Sequential must take at least one pass")
        self.passes = passes
        self._in_place = all(pass_.in_place for pass_ in passes)
        # The sequence changes its input when the first pass does
        self._changes_input = self.passes[0].changes_input or self.passes[0].in_place

    @property
    def in_place(self) -> bool:
        return self._in_place

    @property
    def changes_input(self) -> bool:
        return self._changes_input

    def call(self, module: ir.Module) -> PassResult:
        modified = False
        for i, pass_ in enumerate(self.passes):
            logger.debug("Running the %s-th pass '%s'", i, pass_)
            try:
                pass_result = pass_(module)
            except Exception as e:
                prev_pass_names = [str(p) for p in self.passes[:i]]
                raise PassError(
                    f"An error occurred when running the '{pass_}' pass after the "
                    f"following passes: {prev_pass_names}"
                ) from e

            module = pass_result.module
            modified = modified or pass_result.modified

        return PassResult(module, modified)


class PassManager(Sequential):
    """Pass manager for the IR.

    The PassManager is a Pass that runs a sequence of passes on a module.

    Attributes:
        passes: The passes to run.
        steps: The number of times to run the passes.
        early_stop: Whether to stop running the passes if the graph stops changing.
    """

    def __init__(
        self,
        passes: Sequence[PassBase],
        steps: int = 1,
        early_stop: bool = True,
    ):
        super().__init__(*passes)
        self.steps = steps
        self.early_stop = early_stop

    def call(self, module: ir.Module) -> PassResult:
        """Run the set of passes `steps` number of times or until the graph stops changing."""
        overall_modified = False
        for step in range(self.steps):
            try:
                # Call the call method of Sequential
                step_result = super().call(module)
            except Exception as e:
                raise PassError(f"An error occurred at step {step}") from e
            module = step_result.module
            modified = step_result.modified
            overall_modified = overall_modified or modified
            # If the graph no longer changes, then we can stop running these passes
            if not modified and self.early_stop:
                logger.info("PassManager: No more graph changes detected after step %s", step)
                break
        return PassResult(module, overall_modified)


class GraphPass(InPlacePass):
    """An in-place pass applied to the graphs of selected methods of a module tree.

    Subclasses implement :meth:`call_graph`. By default every method of every
    module in the tree is visited.

    Args:
        methods: Names of the methods to visit. ``None`` visits all methods.
        recursive: Whether to visit sub-modules.
    """

    def __init__(self, methods: Sequence[str] | None = None, *, recursive: bool = True):
        self.methods = tuple(methods) if methods is not None else None
        self.recursive = recursive

    @abc.abstractmethod
    def call_graph(self, graph: ir.Graph) -> bool:
        """Transform one graph in place and return whether it was modified."""
        ...

    def call(self, module: ir.Module) -> PassResult:
        modified = False
        for owner, method in ir.traversal.iterate_graphs(module, recursive=self.recursive):
            if self.methods is not None and method.name not in self.methods:
                continue
            logger.debug("%s: visiting %s.%s", self, owner.type_name, method.name)
            modified = self.call_graph(method.graph) or modified
        return PassResult(module, modified)
