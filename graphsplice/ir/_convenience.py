# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Convenience methods for constructing and manipulating the IR.

This is an internal only module. The public names are re-exported from
``graphsplice.ir``.
"""

from __future__ import annotations

__all__ = [
    "constant_value",
    "convert_attribute",
    "convert_attributes",
    "create_constant",
    "create_value_mapping",
    "is_constant",
    "replace_all_uses_with",
    "replace_nodes_and_values",
]

from typing import Any, Mapping, Sequence

import numpy as np

from graphsplice.ir import _core, _enums

# Name of the attribute holding the value of a prim::Constant node
CONSTANT_VALUE_ATTR = "value"


def _infer_attribute_type(attr: Any) -> _enums.AttributeType:
    """Infer the attribute type based on the type of the Python object."""
    if attr is None:
        return _enums.AttributeType.NONE
    # bool must be checked before int because bool is a subclass of int
    if isinstance(attr, (bool, np.bool_)):
        return _enums.AttributeType.BOOL
    if isinstance(attr, (int, np.integer)):
        return _enums.AttributeType.INT
    if isinstance(attr, (float, np.floating)):
        return _enums.AttributeType.FLOAT
    if isinstance(attr, str):
        return _enums.AttributeType.STRING
    if isinstance(attr, _core.Attr):
        return attr.type
    if isinstance(attr, np.ndarray):
        return _enums.AttributeType.TENSOR
    if isinstance(attr, (list, tuple)):
        if all(isinstance(x, (int, np.integer)) and not isinstance(x, bool) for x in attr):
            return _enums.AttributeType.INTS
        if all(isinstance(x, (int, float, np.number)) for x in attr):
            return _enums.AttributeType.FLOATS
        if all(isinstance(x, str) for x in attr):
            return _enums.AttributeType.STRINGS
    # Anything else is an opaque object, e.g. a packed constant produced by a backend
    return _enums.AttributeType.OBJECT


def convert_attribute(
    name: str,
    attr: Any,
    attr_type: _enums.AttributeType | None = None,
) -> _core.Attr:
    """Convert a Python object to a _core.Attr object.

    This method is useful when constructing nodes with attributes. It infers the
    attribute type based on the type of the Python value.

    Args:
        name: The name of the attribute.
        attr: The value of the attribute.
        attr_type: The type of the attribute. When provided, it overrides the inferred type.

    Returns:
        A ``Attr`` object.

    Raises:
        ValueError: If ``attr`` is an Attr whose name or type differs from the given ones.
    """
    if isinstance(attr, _core.Attr):
        if attr.name != name:
            raise ValueError(
                f"Attribute name '{attr.name}' does not match provided name '{name}'"
            )
        if attr_type is not None and attr.type != attr_type:
            raise ValueError(
                f"Attribute type '{attr.type}' does not match provided type '{attr_type}'"
            )
        return attr
    if attr_type is None:
        attr_type = _infer_attribute_type(attr)
    if attr_type == _enums.AttributeType.BOOL:
        return _core.Attr(name, attr_type, bool(attr))
    if attr_type == _enums.AttributeType.INT:
        return _core.Attr(name, attr_type, int(attr))
    if attr_type == _enums.AttributeType.FLOAT:
        return _core.Attr(name, attr_type, float(attr))
    if attr_type == _enums.AttributeType.INTS:
        return _core.Attr(name, attr_type, [int(x) for x in attr])
    if attr_type == _enums.AttributeType.FLOATS:
        return _core.Attr(name, attr_type, [float(x) for x in attr])
    if attr_type == _enums.AttributeType.STRINGS:
        return _core.Attr(name, attr_type, list(attr))
    return _core.Attr(name, attr_type, attr)


def convert_attributes(attrs: Mapping[str, Any]) -> list[_core.Attr]:
    """Convert a dictionary of attributes to a list of _core.Attr objects.

    It infers the attribute type based on the type of the value::

        >>> convert_attributes({"stride": [1, 1], "groups": 1, "alpha": 0.5})
        [Attr('stride', INTS, [1, 1]), Attr('groups', INT, 1), Attr('alpha', FLOAT, 0.5)]

    Args:
        attrs: A dictionary of {<attribute name>: <python objects>} to convert.

    Returns:
        A list of _core.Attr objects.
    """
    return [convert_attribute(name, attr) for name, attr in attrs.items()]


def is_constant(value: _core.Value | None) -> bool:
    """Whether the value is a compile-time constant, i.e. produced by ``prim::Constant``."""
    if value is None:
        return False
    producer = value.producer()
    return producer is not None and producer.kind == _core.CONSTANT_KIND


def constant_value(value: _core.Value) -> Any:
    """Return the Python value of a constant.

    A ``prim::Constant`` node without a ``value`` attribute denotes ``None``.

    Raises:
        ValueError: If the value is not a constant.
    """
    if not is_constant(value):
        raise ValueError(f"Value {value!r} is not a constant.")
    producer = value.producer()
    assert producer is not None
    attr = producer.attributes.get(CONSTANT_VALUE_ATTR)
    if attr is None:
        return None
    return attr.value


def create_constant(
    value: Any,
    type: _core.TypeRef | str | None = None,
    *,
    name: str | None = None,
) -> _core.Node:
    """Create a ``prim::Constant`` node holding ``value``.

    ``None`` creates a constant without attributes, the "no value" marker.
    """
    attributes = () if value is None else (convert_attribute(CONSTANT_VALUE_ATTR, value),)
    node = _core.Node(_core.CONSTANT_KIND, (), attributes)
    if isinstance(type, str):
        type = _core.TypeRef(type)
    node.outputs[0].type = type
    node.outputs[0].name = name
    return node


def replace_all_uses_with(
    values: _core.Value | Sequence[_core.Value],
    replacements: _core.Value | Sequence[_core.Value],
) -> None:
    """Replace all uses of the given values with the replacements.

    This is useful when nodes in the graph are replaced with new nodes, where
    the old users need to be updated to use the outputs of the new nodes.

    For example, suppose we have the following graph::

        A -> {B, C}

    We want to replace the node A with a new node D::

        >>> from graphsplice import ir
        >>> input = ir.Input("input")
        >>> node_a = ir.Node("ns::A", [input])
        >>> node_b = ir.Node("ns::B", node_a.outputs)
        >>> node_c = ir.Node("ns::C", node_a.outputs)
        >>> node_d = ir.Node("ns::D", [input])
        >>> replace_all_uses_with(node_a.outputs, node_d.outputs)
        >>> node_b.inputs[0].producer().kind
        'ns::D'
        >>> node_c.inputs[0].producer().kind
        'ns::D'
        >>> len(node_a.outputs[0].uses())
        0

    When values and replacements are sequences, they are zipped into pairs. All
    users of the first value is replaced with the first replacement, and so on.

    .. note::
        You still need to update the graph outputs if any of the values being
        replaced are part of the graph outputs. Be sure to remove the old nodes
        from the graph using ``graph.remove()`` if they are no longer needed.

    Args:
        values: The value or values to be replaced.
        replacements: The new value or values to use as inputs.
    """
    if not isinstance(values, Sequence):
        values = (values,)
    if not isinstance(replacements, Sequence):
        replacements = (replacements,)
    if len(values) != len(replacements):
        raise ValueError("The number of values and replacements must match.")
    for value, replacement in zip(values, replacements):
        for user_node, index in tuple(value.uses()):
            user_node.replace_input_with(index, replacement)


def create_value_mapping(graph: _core.Graph) -> dict[str, _core.Value]:
    """Return a dictionary mapping names to values in the graph."""
    values = {}
    for input in graph.inputs:
        if not input.name:
            continue
        values[input.name] = input
    for node in graph:
        for value in node.outputs:
            if not value.name:
                continue
            values[value.name] = value
    return values


def _check_replaceable(
    graph: _core.Graph,
    insertion_point: _core.Node,
    old_nodes: Sequence[_core.Node],
    old_values: Sequence[_core.Value],
    new_values: Sequence[_core.Value],
) -> None:
    """Raise if the old nodes could not be removed once the old values are replaced."""
    if len(old_values) != len(new_values):
        raise ValueError(
            f"Expected the same number of old and new values, "
            f"got {len(old_values)} and {len(new_values)}"
        )
    if insertion_point.graph is not graph:
        raise ValueError(
            f"The insertion point '{insertion_point!r}' does not belong to this graph."
        )
    removed = frozenset(old_nodes)
    replaced = frozenset(id(value) for value in old_values)
    graph_outputs = frozenset(id(value) for value in graph.outputs)
    for node in old_nodes:
        if node.graph is not graph:
            raise ValueError(f"The node '{node!r}' does not belong to this graph.")
        for output in node.outputs:
            if id(output) in replaced:
                continue
            if id(output) in graph_outputs:
                raise ValueError(
                    f"Output '{output}' of node {node.name!r} is a graph output "
                    "and is not replaced."
                )
            for user, _ in output.uses():
                if user not in removed:
                    raise ValueError(
                        f"Output '{output}' of node {node.name!r} is still used by "
                        f"node {user.name!r}, which is not replaced."
                    )


def replace_nodes_and_values(
    graph: _core.Graph,
    /,
    insertion_point: _core.Node,
    old_nodes: Sequence[_core.Node],
    new_nodes: Sequence[_core.Node],
    old_values: Sequence[_core.Value],
    new_values: Sequence[_core.Value],
) -> None:
    """Replaces nodes and values in the graph.

    The new nodes are inserted before ``insertion_point`` so that they are visible
    to every user of the old values that comes after it. The graph is not modified
    when the replacement is rejected.

    Args:
        graph: The graph to replace nodes and values in.
        insertion_point: The node to insert the new nodes before.
        old_nodes: The nodes to replace.
        new_nodes: The nodes to replace with.
        old_values: The values to replace.
        new_values: The values to replace with.

    Raises:
        ValueError: If an old node would still be used after the replacement, or if
            the numbers of old and new values differ.
    """
    _check_replaceable(graph, insertion_point, old_nodes, old_values, new_values)
    for old_value, new_value in zip(old_values, new_values):
        # Propagate relevant info from old value to new value
        new_value.type = old_value.type if old_value.type is not None else new_value.type
        new_value.name = old_value.name

    graph.insert_before(insertion_point, new_nodes)
    # Reconnect the users of the deleted values to use the new values
    replace_all_uses_with(old_values, new_values)
    # Update graph outputs if the node generates output
    replacement_mapping = {id(old): new for old, new in zip(old_values, new_values)}
    for idx, graph_output in enumerate(graph.outputs):
        if id(graph_output) in replacement_mapping:
            graph.outputs[idx] = replacement_mapping[id(graph_output)]

    graph.remove(old_nodes, safe=True)
