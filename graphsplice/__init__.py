# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Pattern based rewriting of module graphs and ahead-of-time folding of prepare operations."""

__all__ = [
    "backends",
    "ir",
    "optimizer",
    "rewriter",
    "optimize_for_backend",
    # Errors
    "FoldingError",
    "InconsistentGraphError",
    "ParseError",
    "PassError",
    "UnsupportedConfigurationError",
    "DEBUG",
]

import importlib.metadata

from . import _flags

# isort: off
from . import ir, backends, rewriter, optimizer

# isort: on

from .backends import UnsupportedConfigurationError
from .ir import InconsistentGraphError, ParseError
from .ir.passes import PassError
from .optimizer import FoldingError, optimize_for_backend

# Set DEBUG to True to enable additional debug checks
DEBUG = _flags.DEBUG

try:  # noqa: SIM105
    __version__ = importlib.metadata.version("graphsplice")
except importlib.metadata.PackageNotFoundError:
    # package is not installed
    pass
