# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""IR enums."""

from __future__ import annotations

import enum


class AttributeType(enum.IntEnum):
    """Enum for the types of node attributes."""

    UNDEFINED = 0
    FLOAT = 1
    INT = 2
    STRING = 3
    TENSOR = 4
    FLOATS = 6
    INTS = 7
    STRINGS = 8
    BOOL = 15
    NONE = 16
    OBJECT = 17

    def __repr__(self) -> str:
        return self.name

    def __str__(self) -> str:
        return self.__repr__()
