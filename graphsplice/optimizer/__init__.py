# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
from __future__ import annotations

__all__ = [
    "Collaborators",
    "FoldConstantsPass",
    "FoldingError",
    "PrepackFoldingPass",
    "fold_constants",
    "optimize_for_backend",
]

from graphsplice.optimizer._constant_folding import (
    FoldConstantsPass,
    FoldingError,
    PrepackFoldingPass,
    fold_constants,
)
from graphsplice.optimizer._optimizer import Collaborators, optimize_for_backend
