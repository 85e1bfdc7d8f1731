# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""In-memory intermediate representation for computation graphs."""

__all__ = [
    # Modules
    "passes",
    "traversal",
    # IR classes
    "Attr",
    "Graph",
    "Input",
    "Method",
    "Module",
    "Node",
    "TypeRef",
    "Value",
    # Enums
    "AttributeType",
    # Constants
    "CONSTANT_KIND",
    "GET_ATTR_KIND",
    # Convenience functions
    "constant_value",
    "convert_attribute",
    "convert_attributes",
    "create_constant",
    "create_value_mapping",
    "is_constant",
    "replace_all_uses_with",
    "replace_nodes_and_values",
    # Text form
    "ParseError",
    "parse_graph",
    # Invariants
    "InconsistentGraphError",
    "InvariantError",
    "PostconditionError",
    "PreconditionError",
    "check_graph",
    "find_graph_inconsistencies",
]

from graphsplice.ir import traversal
from graphsplice.ir._convenience import (
    constant_value,
    convert_attribute,
    convert_attributes,
    create_constant,
    create_value_mapping,
    is_constant,
    replace_all_uses_with,
    replace_nodes_and_values,
)
from graphsplice.ir._core import (
    CONSTANT_KIND,
    GET_ATTR_KIND,
    Attr,
    Graph,
    Input,
    Method,
    Module,
    Node,
    TypeRef,
    Value,
)
from graphsplice.ir._enums import AttributeType
from graphsplice.ir._invariants import (
    InconsistentGraphError,
    InvariantError,
    PostconditionError,
    PreconditionError,
    check_graph,
    find_graph_inconsistencies,
)
from graphsplice.ir._parser import ParseError, parse_graph

# isort: split
from graphsplice.ir import passes
