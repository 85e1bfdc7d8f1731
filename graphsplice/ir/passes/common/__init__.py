# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

__all__ = [
    "ConstantPoolingPass",
    "FreezeModulePass",
    "RemoveDropoutPass",
    "RemoveMutationPass",
    "RemoveUnusedNodesPass",
]

from graphsplice.ir.passes.common.constant_pooling import ConstantPoolingPass
from graphsplice.ir.passes.common.dropout_removal import RemoveDropoutPass
from graphsplice.ir.passes.common.freeze import FreezeModulePass
from graphsplice.ir.passes.common.mutation_removal import RemoveMutationPass
from graphsplice.ir.passes.common.unused_removal import RemoveUnusedNodesPass
