# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Flags read from the environment."""

import logging
import os

logger = logging.getLogger(__name__)


def _load_boolean_flag(
    name: str,
    *,
    this_will: str,
    default: bool = False,
) -> bool:
    """Load a boolean flag from environment variable.

    Args:
        name: The name of the environment variable.
        this_will: A string that describes what this flag will do.
        default: The default value if envvar not defined.
    """
    value = os.getenv(name)
    if value is None:
        return default
    state = value == "1"
    if state:
        logger.warning("Flag %s is enabled. This will %s.", name, this_will)
    return state


DEBUG: bool = _load_boolean_flag(
    "GRAPHSPLICE_DEBUG",
    this_will="check the consistency of every graph after each rewrite and pass",
)
