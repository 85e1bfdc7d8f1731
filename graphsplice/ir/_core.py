# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Data structures for the intermediate representation."""

# NOTES for developers:
# NOTE: The text produced by ``str()`` on a Graph or Node is the same mini-graph
# language read by ``graphsplice.ir.parse_graph``. Keep the two in sync.

from __future__ import annotations

import dataclasses
import heapq
import math
from typing import (
    AbstractSet,
    Any,
    Collection,
    Iterable,
    Iterator,
    OrderedDict,
    Sequence,
)

import numpy as np

from graphsplice.ir import _enums, _name_authority

# Kinds with a special meaning to the IR
CONSTANT_KIND = "prim::Constant"
GET_ATTR_KIND = "prim::GetAttr"


@dataclasses.dataclass(frozen=True)
class TypeRef:
    """A static type annotation, such as ``int``, ``int[]``, ``Tensor`` or ``None``.

    Types are opaque names to the IR. Two annotations are the same type when their
    names are equal.
    """

    name: str

    @property
    def is_list(self) -> bool:
        return self.name.endswith("[]")

    @property
    def is_optional(self) -> bool:
        return self.name.endswith("?")

    def __str__(self) -> str:
        return self.name


def _format_literal(value: Any) -> str:
    """Render a Python value in the literal syntax of the graph language."""
    if value is None:
        return "None"
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isinf(value):
            return "inf" if value > 0 else "-inf"
        text = repr(value)
        if "." not in text and "e" not in text and "n" not in text:
            text += "."
        return text
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    if isinstance(value, np.ndarray):
        return f"<Tensor {value.dtype}{list(value.shape)}>"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_format_literal(v) for v in value) + "]"
    return f"<{value.__class__.__name__}>"


class Attr:
    """A static attribute of a node."""

    __slots__ = ("name", "type", "value")

    def __init__(self, name: str, type: _enums.AttributeType, value: Any):
        self.name = name
        self.type = type
        self.value = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Attr):
            return False
        if self.name != other.name:
            return False
        if self.type != other.type:
            return False
        if self.type == _enums.AttributeType.TENSOR:
            return (
                self.value.dtype == other.value.dtype
                and self.value.shape == other.value.shape
                and bool(np.array_equal(self.value, other.value))
            )
        if self.type == _enums.AttributeType.OBJECT:
            return self.value is other.value
        return self.value == other.value

    def __hash__(self) -> int:
        if self.type == _enums.AttributeType.TENSOR:
            return hash(
                (self.name, self.type, self.value.dtype.str, self.value.shape, self.value.tobytes())
            )
        if self.type == _enums.AttributeType.OBJECT:
            return hash((self.name, self.type, id(self.value)))
        if isinstance(self.value, list):
            return hash((self.name, self.type, tuple(self.value)))
        return hash((self.name, self.type, self.value))

    def __str__(self) -> str:
        return f"{self.name}={_format_literal(self.value)}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r}, {self.type!r}, {self.value!r})"


def _split_kind(kind: str) -> tuple[str, str]:
    namespace, sep, op = kind.partition("::")
    if not sep or not namespace or not op:
        raise ValueError(f"Node kind must be of the form 'namespace::op', got {kind!r}")
    return namespace, op


class Node:
    """IR Node.

    If the ``graph`` is provided, the node will be added to the graph. Otherwise,
    user is responsible to call ``graph.append(node)`` (or other mutation methods
    in :class:`Graph`) to add the node to the graph.

    After the node is initialized, it will add itself as a user of the input values.

    The output values of the node are created during node initialization and are immutable.
    To change the output values, create a new node and replace each of the inputs of
    ``output.uses()`` with the new output values by calling :meth:`replace_input_with`
    on the using nodes of this node's outputs.
    """

    __slots__ = (
        "_attributes",
        "_graph",
        "_inputs",
        "_kind",
        "_meta",
        "_name",
        "_outputs",
    )

    def __init__(
        self,
        kind: str,
        inputs: Iterable[Value],
        attributes: Iterable[Attr] = (),
        *,
        num_outputs: int | None = None,
        outputs: Sequence[Value] | None = None,
        graph: Graph | None = None,
        name: str | None = None,
    ):
        """Initialize a node and add it as a user of the input values.

        Args:
            kind: The namespaced operator name, e.g. ``aten::linear``.
            inputs: The input values.
            attributes: The static attributes.
            num_outputs: The number of outputs of the node. If not specified, the number is 1.
            outputs: The output values. If None, the outputs are created during initialization.
            graph: The graph that the node belongs to. If None, the node is not added to any graph.
            name: The name of the node. If None, the graph will name it.

        Raises:
            TypeError: If the attributes are not Attr.
            ValueError: If the kind is not namespaced.
            ValueError: If `num_outputs`, when not None, is not the same as the length of the outputs.
            ValueError: If an output value has a producer set already, when outputs is specified.
        """
        _split_kind(kind)
        self._name = name
        self._kind: str = kind
        self._inputs: tuple[Value, ...] = tuple(inputs)
        for input_value in self._inputs:
            if not isinstance(input_value, Value):
                raise TypeError(f"Node inputs must be Values, got {type(input_value)}")
        self._outputs: tuple[Value, ...] = self._create_outputs(num_outputs, outputs)
        attributes = tuple(attributes)
        if attributes and not isinstance(attributes[0], Attr):
            raise TypeError(
                f"Expected the attributes to be Attr, got {type(attributes[0])}. "
                "If you are copying the attributes from another node, make sure you call "
                "node.attributes.values() because it is a dictionary."
            )
        self._attributes: OrderedDict[str, Attr] = OrderedDict(
            (attr.name, attr) for attr in attributes
        )
        self._meta: dict[str, Any] | None = None
        self._graph: Graph | None = graph

        # Add the node as a use of the inputs
        for i, input_value in enumerate(self._inputs):
            input_value._add_usage(self, i)  # pylint: disable=protected-access

        if self._graph is not None:
            self._graph.append(self)

    def _create_outputs(
        self, num_outputs: int | None, outputs: Sequence[Value] | None
    ) -> tuple[Value, ...]:
        if num_outputs is not None and outputs is not None and num_outputs != len(outputs):
            raise ValueError(
                "num_outputs must be the same as len(outputs) when num_outputs is specified. "
                f"num_outputs: {num_outputs}, outputs: {outputs}"
            )
        if outputs is not None:
            for output in outputs:
                if output.producer() is not None or output.is_graph_input():
                    raise ValueError(
                        "Supplied output value cannot have a producer when used for "
                        f"initializing a Node. Output: {output!r}"
                    )
            for i, output in enumerate(outputs):
                output._producer = self  # pylint: disable=protected-access
                output._index = i  # pylint: disable=protected-access
            return tuple(outputs)
        if num_outputs is None:
            num_outputs = 1
        return tuple(Value(self, index=i) for i in range(num_outputs))

    def __str__(self) -> str:
        outputs_text = ", ".join(v._declaration() for v in self._outputs)  # pylint: disable=protected-access
        attributes_text = (
            "[" + ", ".join(str(attr) for attr in self._attributes.values()) + "]"
            if self._attributes
            else ""
        )
        inputs_text = ", ".join(str(v) for v in self._inputs)
        call_text = f"{self._kind}{attributes_text}({inputs_text})"
        if not self._outputs:
            return call_text
        return f"{outputs_text} = {call_text}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(name={self._name!r}, kind={self._kind!r}, "
            f"inputs={self._inputs!r}, attributes={self._attributes!r}, "
            f"outputs={self._outputs!r})"
        )

    @property
    def name(self) -> str | None:
        return self._name

    @name.setter
    def name(self, value: str | None) -> None:
        self._name = value

    @property
    def kind(self) -> str:
        return self._kind

    @kind.setter
    def kind(self, value: str) -> None:
        _split_kind(value)
        self._kind = value

    @property
    def namespace(self) -> str:
        return _split_kind(self._kind)[0]

    @property
    def op(self) -> str:
        return _split_kind(self._kind)[1]

    @property
    def inputs(self) -> Sequence[Value]:
        return self._inputs

    @inputs.setter
    def inputs(self, _: Any) -> None:
        raise AttributeError(
            "Directly mutating the input sequence is unsupported. "
            "Please use Node.replace_input_with() instead."
        )

    def replace_input_with(self, index: int, value: Value | None) -> None:
        """Replace an input with a new value.

        Passing ``None`` detaches the input. It is only meant to be used right
        before the node is destroyed.
        """
        if index < 0 or index >= len(self._inputs):
            raise ValueError(f"Index out of range: {index}")
        old_input = self._inputs[index]
        self._inputs = tuple(
            value if i == index else old for i, old in enumerate(self._inputs)
        )  # type: ignore[misc]
        if old_input is not None:
            old_input._remove_usage(self, index)  # pylint: disable=protected-access
        if value is not None:
            value._add_usage(self, index)  # pylint: disable=protected-access

    def prepend(self, /, nodes: Node | Iterable[Node]) -> None:
        """Insert a node before this node in the list of nodes in the graph.

        It is the same as calling ``graph.insert_before(self, nodes)``.
        """
        if self._graph is None:
            raise ValueError("The node to prepend to does not belong to any graph.")
        self._graph.insert_before(self, nodes)

    def append(self, /, nodes: Node | Iterable[Node]) -> None:
        """Insert a node after this node in the list of nodes in the graph.

        It is the same as calling ``graph.insert_after(self, nodes)``.
        """
        if self._graph is None:
            raise ValueError("The node to append to does not belong to any graph.")
        self._graph.insert_after(self, nodes)

    @property
    def outputs(self) -> Sequence[Value]:
        return self._outputs

    @outputs.setter
    def outputs(self, _: Sequence[Value]) -> None:
        raise AttributeError("outputs is immutable. Please create a new node instead.")

    @property
    def attributes(self) -> OrderedDict[str, Attr]:
        return self._attributes

    @property
    def meta(self) -> dict[str, Any]:
        """The metadata store for intermediate analysis, e.g. rewrite provenance."""
        if self._meta is None:
            self._meta = {}
        return self._meta

    @property
    def graph(self) -> Graph | None:
        return self._graph

    @graph.setter
    def graph(self, value: Graph | None) -> None:
        self._graph = value


class Value:
    """IR Value.

    A :class:`Value` is a single definition site. It is either owned by exactly one
    node, of which it is an output, or it is an input of a graph. When the value is
    a graph input, ``producer`` and ``index`` are ``None``.

    To find all the nodes that use this value as an input, call :meth:`uses`.

    Attributes:
        name: The name of the value. A value is always named when it is part of a graph.
        type: The static type annotation of the value, if known.
    """

    __slots__ = (
        "_graph",
        "_index",
        "_meta",
        "_name",
        "_producer",
        "_type",
        "_uses",
    )

    def __init__(
        self,
        producer: Node | None = None,
        *,
        index: int | None = None,
        name: str | None = None,
        type: TypeRef | None = None,
    ) -> None:
        self._producer: Node | None = producer
        self._index: int | None = index
        self._name: str | None = name
        self._type: TypeRef | None = type
        # The graph this value is an input of
        self._graph: Graph | None = None
        self._meta: dict[str, Any] | None = None
        # Use a dictionary to preserve insertion order so that the visiting order is deterministic.
        # A single node can use the same value at several input positions.
        self._uses: dict[tuple[Node, int], None] = {}

    def __repr__(self) -> str:
        value_name = self._name if self._name else "anonymous:" + str(id(self))
        producer = self.producer()
        if producer is None:
            producer_text = "None"
        elif producer.name is not None:
            producer_text = producer.name
        else:
            producer_text = f"anonymous_node:{id(producer)}"
        return (
            f"{self.__class__.__name__}({value_name!r}, type={self._type!r}, "
            f"producer={producer_text}, index={self._index})"
        )

    def __str__(self) -> str:
        value_name = self._name if self._name is not None else "anonymous:" + str(id(self))
        return f"%{value_name}"

    def _declaration(self) -> str:
        if self._type is None:
            return str(self)
        return f"{self} : {self._type}"

    def producer(self) -> Node | None:
        """The node that produces this value.

        When producer is ``None``, the value does not belong to a node, and is
        typically a graph input.
        """
        return self._producer

    def index(self) -> int | None:
        """The index of the output of the defining node."""
        return self._index

    def uses(self) -> Collection[tuple[Node, int]]:
        """Return a set of uses of the value.

        The set contains tuples of ``(Node, index)`` where the index is the index of the input
        of the node. For example, if ``node.inputs[1] == value``, then the use is ``(node, 1)``.
        """
        return self._uses.keys()

    def consumers(self) -> Sequence[Node]:
        """Return the distinct nodes that use this value, in use order."""
        return tuple(dict.fromkeys(node for node, _ in self._uses))

    def _add_usage(self, use: Node, index: int) -> None:
        self._uses[(use, index)] = None

    def _remove_usage(self, use: Node, index: int) -> None:
        self._uses.pop((use, index))

    @property
    def name(self) -> str | None:
        return self._name

    @name.setter
    def name(self, value: str | None) -> None:
        self._name = value

    @property
    def type(self) -> TypeRef | None:
        return self._type

    @type.setter
    def type(self, value: TypeRef | None) -> None:
        self._type = value

    @property
    def meta(self) -> dict[str, Any]:
        if self._meta is None:
            self._meta = {}
        return self._meta

    @property
    def graph(self) -> Graph | None:
        """The graph the value lives in, through its producer or as a graph input."""
        if self._producer is not None:
            return self._producer.graph
        return self._graph

    def is_graph_input(self) -> bool:
        """Whether the value is an input of a graph."""
        return self._graph is not None

    def is_graph_output(self) -> bool:
        """Whether the value is an output of a graph."""
        graph = self.graph
        if graph is None:
            return False
        # Cannot use `in` because __eq__ may be defined by subclasses
        return any(output is self for output in graph.outputs)


def Input(name: str | None = None, type: TypeRef | None = None) -> Value:
    """Create an input of a Graph.

    This is equivalent to calling ``Value(name=name, type=type)``.
    """
    # NOTE: The function name is capitalized to mirror the node-producing constructors.
    return Value(name=name, type=type)


def _check_node_safe_to_remove(
    node: Node, to_remove: AbstractSet[Node], graph_outputs: AbstractSet[Value]
) -> None:
    """Check if a node is safe to remove.

    1. It checks to make sure there are no users of the node that are not
        to be removed before removing it.
    2. It checks the node does not contribute to any graph outputs.

    Raises:
        ValueError: If the node is still an output of the graph.
        ValueError: If the node is still being used by other nodes not to be removed.
    """
    for output in node.outputs:
        if output in graph_outputs:
            raise ValueError(
                f"Node '{node!r}' is still an output of the graph and cannot be removed when safe=True."
            )
        uses_not_to_remove = [user for user, _ in output.uses() if user not in to_remove]
        if uses_not_to_remove:
            raise ValueError(
                f"Output value '{output!r}' is still being used by other nodes that are not to be "
                f"removed. All of its users that is not being removed: {uses_not_to_remove!r}. "
                "Please make sure these nodes are no longer using the output value."
            )


class Graph(Sequence[Node]):
    """IR Graph.

    A graph is an ordered collection of nodes together with its input and output
    values. The order of the nodes is the execution order and must be a topological
    order: every input of a node is a graph input or produced by an earlier node.
    It is the responsibility of the mutating code to maintain it, or to call
    :meth:`sort`.

    Iterating over a graph iterates over a snapshot of its nodes, so the graph can be
    mutated during the iteration. Nodes removed in the meantime are still yielded and
    can be recognized by ``node.graph is not graph``.

    Attributes:
        name: The name of the graph.
        inputs: The input values of the graph.
        outputs: The output values of the graph.
    """

    __slots__ = ("_inputs", "_name_authority", "_nodes", "_outputs", "name")

    def __init__(
        self,
        inputs: Sequence[Value],
        outputs: Sequence[Value],
        *,
        nodes: Iterable[Node],
        name: str | None = None,
    ):
        self.name = name
        self._name_authority = _name_authority.NameAuthority()
        self._inputs = list(inputs)
        for value in self._inputs:
            if value.producer() is not None:
                raise ValueError(f"Graph input {value!r} cannot have a producer.")
            value._graph = self  # pylint: disable=protected-access
            self._name_authority.register_or_name_value(value)
        self._nodes: list[Node] = []
        self.extend(nodes)
        self._outputs = list(outputs)

    @property
    def inputs(self) -> list[Value]:
        return self._inputs

    @property
    def outputs(self) -> list[Value]:
        return self._outputs

    def __getitem__(self, index: int) -> Node:  # type: ignore[override]
        return self._nodes[index]

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(tuple(self._nodes))

    def __reversed__(self) -> Iterator[Node]:
        return iter(tuple(reversed(self._nodes)))

    def __contains__(self, node: object) -> bool:
        return isinstance(node, Node) and node.graph is self

    def _set_node_graph_to_self_and_assign_names(self, node: Node) -> Node:
        """Set the graph reference for the node and assign names to it and its outputs."""
        if node.graph is not None and node.graph is not self:
            raise ValueError(
                f"The node '{node!r}' belongs to another graph. Please remove it first with Graph.remove()."
            )
        if node.graph is self and node in self._nodes:
            raise ValueError(f"The node '{node!r}' is already in this graph.")
        self._name_authority.register_or_name_node(node)
        for value in node.outputs:
            self._name_authority.register_or_name_value(value)
        node.graph = self
        return node

    def node(self, index_or_name: int | str, /) -> Node:
        """Get a node by index or name.

        Raises:
            IndexError: If the index is out of range.
            ValueError: If the node with the given name is not found.
        """
        if isinstance(index_or_name, int):
            return self[index_or_name]
        for node in self._nodes:
            if node.name == index_or_name:
                return node
        raise ValueError(f"Node with name '{index_or_name}' not found.")

    def num_nodes(self) -> int:
        """Get the number of nodes in the graph."""
        return len(self._nodes)

    def index_of(self, node: Node) -> int:
        """Return the position of the node in the execution order."""
        if node.graph is not self:
            raise ValueError(f"The node '{node!r}' does not belong to this graph.")
        return self._nodes.index(node)

    def unique_value_name(self, hint: str) -> str:
        """Return a value name based on ``hint`` that is not yet used in this graph."""
        if not self._name_authority.is_value_name_taken(hint):
            return hint
        counter = 1
        while self._name_authority.is_value_name_taken(f"{hint}.{counter}"):
            counter += 1
        return f"{hint}.{counter}"

    # Mutation methods
    def append(self, node: Node, /) -> None:
        """Append a node to the graph.

        Unique names will be assigned to the node and its values if any name is ``None``.

        Raises:
            ValueError: If the node belongs to another graph.
        """
        self._set_node_graph_to_self_and_assign_names(node)
        self._nodes.append(node)

    def extend(self, nodes: Iterable[Node], /) -> None:
        """Extend the graph with the given nodes."""
        for node in nodes:
            self.append(node)

    def remove(self, nodes: Node | Iterable[Node], /, safe: bool = False) -> None:
        """Remove nodes from the graph.

        If any errors are raised, to ensure the graph is not left in an inconsistent state,
        the graph is not modified.

        Args:
            nodes: The node to remove.
            safe: If True, performs the following actions before removal:

                1. It checks to make sure there are no users of the node that are not
                to be removed before removing it.
                2. It checks the node does not contribute to any graph outputs.
                3. It removes references to all inputs so it is no longer a user of other nodes.

        Raises:
            ValueError: If any node to remove does not belong to this graph.
            ValueError: (When ``safe=True``) If the node is still used by nodes not to be removed.
        """
        if isinstance(nodes, Node):
            nodes_set: AbstractSet[Node] = {nodes}
        else:
            nodes_set = frozenset(nodes)
        graph_outputs = frozenset(self._outputs)
        for node in nodes_set:
            if node.graph is not self:
                raise ValueError(f"The node '{node!r}' does not belong to this graph.")
            if safe:
                _check_node_safe_to_remove(node, nodes_set, graph_outputs)
        for node in nodes_set:
            if safe:
                # Detach from all inputs so that it is no longer a user of other nodes
                for i in range(len(node.inputs)):
                    node.replace_input_with(i, None)
            node.graph = None
        self._nodes = [node for node in self._nodes if node not in nodes_set]

    def insert_after(self, node: Node, new_nodes: Iterable[Node] | Node, /) -> None:
        """Insert new nodes after the given node."""
        if isinstance(new_nodes, Node):
            new_nodes = (new_nodes,)
        position = self.index_of(node) + 1
        new_nodes = [self._set_node_graph_to_self_and_assign_names(n) for n in new_nodes]
        self._nodes[position:position] = new_nodes

    def insert_before(self, node: Node, new_nodes: Iterable[Node] | Node, /) -> None:
        """Insert new nodes before the given node."""
        if isinstance(new_nodes, Node):
            new_nodes = (new_nodes,)
        position = self.index_of(node)
        new_nodes = [self._set_node_graph_to_self_and_assign_names(n) for n in new_nodes]
        self._nodes[position:position] = new_nodes

    def sort(self) -> None:
        """Perform a stable topological sort of this graph.

        The sort preserves the original order as much as possible.

        Raises:
            ValueError: If the graph contains a cycle, making topological sorting impossible.
        """
        nodes = list(self._nodes)
        position = {node: i for i, node in enumerate(nodes)}
        num_predecessors: dict[Node, int] = dict.fromkeys(nodes, 0)
        successors: dict[Node, list[Node]] = {node: [] for node in nodes}
        for node in nodes:
            for predecessor in dict.fromkeys(
                v.producer() for v in node.inputs if v.producer() is not None
            ):
                if predecessor not in position:
                    raise ValueError(
                        f"Node '{node!r}' uses a value produced outside of the graph."
                    )
                successors[predecessor].append(node)  # type: ignore[index]
                num_predecessors[node] += 1

        ready = [(position[node], node) for node in nodes if num_predecessors[node] == 0]
        heapq.heapify(ready)
        sorted_nodes: list[Node] = []
        while ready:
            _, current = heapq.heappop(ready)
            sorted_nodes.append(current)
            for successor in successors[current]:
                num_predecessors[successor] -= 1
                if num_predecessors[successor] == 0:
                    heapq.heappush(ready, (position[successor], successor))

        if len(sorted_nodes) != len(nodes):
            raise ValueError("Graph contains a cycle, topological sort is not possible.")
        self._nodes = sorted_nodes

    # End of mutation methods

    def clone(self) -> Graph:
        """Return a deep copy of the graph structure.

        Attribute values are shared: tensors and packed objects are treated as immutable.
        """
        value_map: dict[Value, Value] = {}
        new_inputs = []
        for value in self._inputs:
            new_value = Value(name=value.name, type=value.type)
            value_map[value] = new_value
            new_inputs.append(new_value)
        new_nodes = []
        for node in self._nodes:
            new_node = Node(
                node.kind,
                [value_map[v] for v in node.inputs],
                [Attr(attr.name, attr.type, attr.value) for attr in node.attributes.values()],
                num_outputs=len(node.outputs),
                name=node.name,
            )
            if node._meta:  # pylint: disable=protected-access
                new_node.meta.update(node.meta)
            for old_output, new_output in zip(node.outputs, new_node.outputs):
                new_output.name = old_output.name
                new_output.type = old_output.type
                value_map[old_output] = new_output
            new_nodes.append(new_node)
        return Graph(
            new_inputs,
            [value_map[v] for v in self._outputs],
            nodes=new_nodes,
            name=self.name,
        )

    def __str__(self) -> str:
        return _graph_str(self)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(name={self.name!r}, inputs={self._inputs!r}, "
            f"outputs={self._outputs!r}, len={len(self._nodes)})"
        )


def _graph_str(graph: Graph) -> str:
    """Return the text form of the graph in the graph language."""
    signature = ", ".join(
        v._declaration() for v in graph.inputs  # pylint: disable=protected-access
    )
    lines = [f"graph({signature}):"]
    lines.extend(f"  {node}" for node in graph)
    lines.append("  return (" + ", ".join(str(v) for v in graph.outputs) + ")")
    return "\n".join(lines)


class Method:
    """A named method of a :class:`Module`, owning one graph.

    The first input of the graph is the module itself (``%self``).
    """

    __slots__ = ("graph", "name")

    def __init__(self, name: str, graph: Graph):
        self.name = name
        self.graph = graph

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"


class Module:
    """A node of the host module tree.

    A module owns named methods and named attributes. Attributes hold parameters
    (numpy arrays or Python scalars) or sub-modules; sub-modules are the children
    of the module.
    """

    def __init__(
        self,
        type_name: str,
        *,
        methods: Iterable[Method] = (),
        attributes: dict[str, Any] | None = None,
    ):
        self.type_name = type_name
        self._methods: dict[str, Method] = {method.name: method for method in methods}
        self._attributes: dict[str, Any] = dict(attributes or {})
        self._attribute_types: dict[str, TypeRef] = {}

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.type_name!r}, methods={list(self._methods)!r}, "
            f"attributes={list(self._attributes)!r})"
        )

    @property
    def attributes(self) -> dict[str, Any]:
        return self._attributes

    def get_methods(self) -> Sequence[Method]:
        return tuple(self._methods.values())

    def get_method(self, name: str) -> Method:
        if name not in self._methods:
            raise ValueError(f"Method '{name}' not found in module '{self.type_name}'.")
        return self._methods[name]

    def has_method(self, name: str) -> bool:
        return name in self._methods

    def add_method(self, method: Method) -> None:
        self._methods[method.name] = method

    def remove_method(self, name: str) -> None:
        self.get_method(name)
        del self._methods[name]

    def named_children(self) -> Sequence[tuple[str, Module]]:
        return tuple(
            (name, value) for name, value in self._attributes.items() if isinstance(value, Module)
        )

    def children(self) -> Sequence[Module]:
        return tuple(child for _, child in self.named_children())

    def register_attribute(self, name: str, type: TypeRef | str, value: Any) -> None:
        """Add or overwrite an attribute of the module."""
        if isinstance(type, str):
            type = TypeRef(type)
        self._attributes[name] = value
        self._attribute_types[name] = type

    def attribute_type(self, name: str) -> TypeRef | None:
        return self._attribute_types.get(name)

    def clone(self) -> Module:
        """Return a copy of the module tree whose graphs can be mutated independently.

        Parameter arrays are copied. Packed or other opaque attribute values are shared.
        """
        new_attributes: dict[str, Any] = {}
        for name, value in self._attributes.items():
            if isinstance(value, Module):
                new_attributes[name] = value.clone()
            elif isinstance(value, np.ndarray):
                new_attributes[name] = value.copy()
            else:
                new_attributes[name] = value
        module = Module(
            self.type_name,
            methods=[Method(m.name, m.graph.clone()) for m in self._methods.values()],
            attributes=new_attributes,
        )
        module._attribute_types.update(self._attribute_types)  # pylint: disable=protected-access
        return module
