# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

__all__ = [
    "PassBase",
    "PassResult",
    "PassManager",
    "Sequential",
    "InPlacePass",
    "FunctionalPass",
    "GraphPass",
    "check_module",
    # Errors
    "InvariantError",
    "PreconditionError",
    "PostconditionError",
    "PassError",
]

from graphsplice.ir.passes._pass_infra import (
    FunctionalPass,
    GraphPass,
    InPlacePass,
    InvariantError,
    PassBase,
    PassError,
    PassManager,
    PassResult,
    PostconditionError,
    PreconditionError,
    Sequential,
    check_module,
)
