# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
from __future__ import annotations

__all__ = [
    "Collaborators",
    "freeze_module",
    "optimize_for_backend",
    "remove_dropout",
    "remove_mutation",
    "run_canonical_optimizations",
]

import dataclasses
import logging
from typing import Callable, Sequence

import graphsplice.ir.passes.common as common_passes
from graphsplice import backends, ir, rewriter
from graphsplice.optimizer import _constant_folding
from graphsplice.rewriter import rules

logger = logging.getLogger(__name__)

_FORWARD = "forward"
_CANONICAL_OPTIMIZATION_STEPS = 3

# A step of the pipeline transforms a module in place and returns whether it changed it
ModuleStep = Callable[[ir.Module], bool]


def _clone(module: ir.Module) -> ir.Module:
    return module.clone()


def _keep(module: ir.Module) -> bool:
    del module  # Unused
    return False


def freeze_module(
    module: ir.Module, preserved_methods: Sequence[str], registry: backends.OpRegistry
) -> bool:
    """Fold the module attributes into constants, then fold the operations computing on them.

    Prepare operations are left for the prepack folding step, which runs after the
    activations have been fused into them.
    """
    prepack_kinds = registry.prepack_kinds()
    result = ir.passes.Sequential(
        common_passes.FreezeModulePass(preserved_methods),
        _constant_folding.FoldConstantsPass(
            registry, should_fold=lambda node: node.kind not in prepack_kinds
        ),
    )(module)
    return result.modified


def remove_dropout(module: ir.Module) -> bool:
    return common_passes.RemoveDropoutPass()(module).modified


def remove_mutation(module: ir.Module) -> bool:
    return common_passes.RemoveMutationPass([_FORWARD], recursive=False)(module).modified


def run_canonical_optimizations(module: ir.Module) -> bool:
    """Remove dead nodes and merge duplicated constants in the methods of the root module.

    The two passes repeat, at most three times, until the methods stop changing.
    """
    result = ir.passes.PassManager(
        [
            common_passes.RemoveUnusedNodesPass(recursive=False),
            common_passes.ConstantPoolingPass(recursive=False),
        ],
        steps=_CANONICAL_OPTIMIZATION_STEPS,
    )(module)
    return result.modified


@dataclasses.dataclass
class Collaborators:
    """The steps of the pipeline provided by the host of the module tree.

    Each step but ``clone`` transforms the module in place and returns whether
    it modified the module. ``clone`` returns a new module tree that can be
    mutated without affecting its input.

    Attributes:
        clone: Copies the module tree.
        fold_conv_bn: Folds batch normalizations into the preceding convolutions.
            Does nothing by default.
        freeze: Turns the parameters into constants given the names of the methods
            to preserve and the operations of the backend.
        remove_dropout: Removes the dropouts of inference mode.
        remove_mutation: Replaces in-place operators by their functional form.
        run_canonical_optimizations: Removes dead code and pools constants.
    """

    clone: Callable[[ir.Module], ir.Module] = _clone
    fold_conv_bn: ModuleStep = _keep
    freeze: Callable[[ir.Module, Sequence[str], backends.OpRegistry], bool] = freeze_module
    remove_dropout: ModuleStep = remove_dropout
    remove_mutation: ModuleStep = remove_mutation
    run_canonical_optimizations: ModuleStep = run_canonical_optimizations


class _StepPass(ir.passes.InPlacePass):
    """Run a step of :class:`Collaborators` as a pass."""

    def __init__(self, name: str, step: ModuleStep):
        self.name = name
        self.step = step

    def __str__(self) -> str:
        return self.name

    def call(self, module: ir.Module) -> ir.passes.PassResult:
        return ir.passes.PassResult(module, modified=bool(self.step(module)))


def optimize_for_backend(
    module: ir.Module,
    preserved_methods: Sequence[str] = (),
    *,
    backend: str | backends.Backend = "vulkan",
    collaborators: Collaborators | None = None,
) -> ir.Module:
    """Optimize a module tree for the prepare/run operations of a backend.

    The input module is not modified. On the copy, the following steps run in order:

    1. Batch normalizations are folded into convolutions.
    2. Decomposed linear transforms and generic convolutions are canonicalized, and
       linear transforms and 2-D convolutions are replaced by prepare/run pairs.
    3. The module is frozen: its parameters become constants.
    4. ReLU and hardtanh activations following a 2-D convolution in ``forward``
       are fused into the clamp bounds of the convolution.
    5. The prepare operations with constant inputs are replaced by packed constants.
    6. Dropouts are removed, in-place operators of ``forward`` are made functional,
       and dead code is removed.

    The optimized module has a boolean attribute ``optimized_for_<backend>``.

    Args:
        module: The module tree to optimize.
        preserved_methods: Names of methods of the root module to keep besides
            ``forward``. Other methods of the root module are dropped when freezing.
        backend: The backend or the name of a registered backend.
        collaborators: Overrides of the steps provided by the host.

    Returns:
        The optimized copy of the module tree.

    Raises:
        UnsupportedConfigurationError: If the backend is not registered or lacks a
            required operation. Nothing has been done when this is raised.
        PassError: If a step fails. The error raised by the step is chained.
    """
    if isinstance(backend, str):
        backend = backends.get_backend(backend)
    backend.check_available()
    if collaborators is None:
        collaborators = Collaborators()
    registry = backend.registry
    namespace = backend.namespace
    clamp_prepack = registry.lookup(f"{namespace}::conv2d_clamp_prepack")
    context_type = clamp_prepack.result_type if clamp_prepack is not None else None

    optimized = collaborators.clone(module)
    if optimized is module:
        raise ValueError("Collaborators.clone must return a new module.")

    passes = [
        _StepPass("fold_conv_bn", collaborators.fold_conv_bn),
        rewriter.RewritePass(rules.prepack_insertion_rules(namespace)),
        _StepPass(
            "freeze",
            lambda m: collaborators.freeze(m, tuple(preserved_methods), registry),
        ),
        rewriter.RewritePass(
            rules.clamp_fusion_rules(namespace, context_type), [_FORWARD], recursive=False
        ),
        _constant_folding.PrepackFoldingPass(registry),
        _StepPass("remove_dropout", collaborators.remove_dropout),
        _StepPass("remove_mutation", collaborators.remove_mutation),
        _StepPass("run_canonical_optimizations", collaborators.run_canonical_optimizations),
    ]
    optimizer_pass = ir.passes.Sequential(*passes)
    assert optimizer_pass.in_place
    result = optimizer_pass(optimized)
    assert result.module is optimized

    optimized.register_attribute(f"optimized_for_{backend.name}", "bool", True)
    logger.info("Optimized module '%s' for backend '%s'", optimized.type_name, backend.name)
    return optimized
