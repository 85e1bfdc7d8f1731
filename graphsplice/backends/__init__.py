# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Backends targeted by the optimization pipeline and the operations they evaluate."""

__all__ = [
    "Backend",
    "OpRegistry",
    "OpSchema",
    "PackedConstant",
    "UnsupportedConfigurationError",
    "get_backend",
    "register_backend",
    "registered_backends",
    "vulkan",
]

from graphsplice.backends._registry import (
    Backend,
    OpRegistry,
    OpSchema,
    PackedConstant,
    UnsupportedConfigurationError,
    get_backend,
    register_backend,
    registered_backends,
)

# isort: split
# Importing the bundled backends registers them
from graphsplice.backends import vulkan
