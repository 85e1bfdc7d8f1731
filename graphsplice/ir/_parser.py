# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Parser for the textual graph language.

The language describes a single graph::

    graph(%input, %weight : Tensor, %bias):
      %weight_t = aten::t(%weight)
      %res = aten::linear(%input, %weight_t, %bias)
      return (%res)

Each statement binds one or more named outputs to an operation of the form
``namespace::op[attr=literal, ...](args)``. Arguments are value references or
inline literals; an inline literal becomes an implicit ``prim::Constant`` node
placed right before the statement that uses it.

Parsing happens in two steps. The first step reads the text into a small syntax
tree, the second resolves names and builds an :class:`~graphsplice.ir.Graph`.
Resolving names once the whole text is known lets the parser tell a use before
definition apart from a name that is never defined.
"""

from __future__ import annotations

__all__ = ["ParseError", "parse_graph"]

import dataclasses
import re
from typing import Any, Iterator

from graphsplice.ir import _convenience, _core, _enums


class ParseError(ValueError):
    """Raised when the text of a graph is malformed.

    Attributes:
        line: The 1-based line of the offending token.
        column: The 1-based column of the offending token.
    """

    def __init__(self, message: str, line: int, column: int):
        super().__init__(f"line {line}, column {column}: {message}")
        self.message = message
        self.line = line
        self.column = column


_TOKEN_PATTERNS = [
    ("COMMENT", r"#[^\n]*"),
    ("WHITESPACE", r"\s+"),
    ("STRING", r'"(?:[^"\\]|\\.)*"'),
    ("VALUE", r"%[A-Za-z0-9_.]+"),
    ("FLOAT", r"-?inf\b|nan\b|-?(?:\d+\.\d*(?:[eE][-+]?\d+)?|\.\d+(?:[eE][-+]?\d+)?|\d+[eE][-+]?\d+)"),
    ("INT", r"-?\d+"),
    ("NAME", r"[A-Za-z_][A-Za-z0-9_.]*"),
    ("SCOPE", r"::"),
    ("PUNCT", r"[()\[\],:=?]"),
    ("MISMATCH", r"."),
]
_TOKEN_REGEX = re.compile(
    "|".join(f"(?P<{name}>{pattern})" for name, pattern in _TOKEN_PATTERNS)
)

_LITERAL_TYPES = {
    _enums.AttributeType.BOOL: "bool",
    _enums.AttributeType.INT: "int",
    _enums.AttributeType.FLOAT: "float",
    _enums.AttributeType.STRING: "str",
    _enums.AttributeType.INTS: "int[]",
    _enums.AttributeType.FLOATS: "float[]",
    _enums.AttributeType.STRINGS: "str[]",
    _enums.AttributeType.NONE: "None",
}


@dataclasses.dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    line: int
    column: int


def _tokenize(text: str) -> Iterator[_Token]:
    line = 1
    line_start = 0
    for match in _TOKEN_REGEX.finditer(text):
        kind = match.lastgroup
        assert kind is not None
        value = match.group()
        column = match.start() - line_start + 1
        if kind == "MISMATCH":
            raise ParseError(f"Unexpected character {value!r}", line, column)
        if kind not in ("WHITESPACE", "COMMENT"):
            yield _Token(kind, value, line, column)
        newlines = value.count("\n")
        if newlines:
            line += newlines
            line_start = match.start() + value.rindex("\n") + 1
    yield _Token("EOF", "", line, len(text) - line_start + 1)


@dataclasses.dataclass
class _Reference:
    name: str
    token: _Token


@dataclasses.dataclass
class _Literal:
    value: Any
    token: _Token


@dataclasses.dataclass
class _Declaration:
    name: str
    type: str | None
    token: _Token


@dataclasses.dataclass
class _Statement:
    outputs: list[_Declaration]
    kind: str
    attributes: list[tuple[str, _Literal]]
    arguments: list[_Reference | _Literal]
    token: _Token


@dataclasses.dataclass
class _GraphSyntax:
    parameters: list[_Declaration]
    statements: list[_Statement]
    returns: list[_Reference]


class _Reader:
    """Recursive descent reader producing the syntax tree."""

    def __init__(self, text: str):
        self._tokens = list(_tokenize(text))
        self._position = 0

    def _peek(self) -> _Token:
        return self._tokens[self._position]

    def _next(self) -> _Token:
        token = self._tokens[self._position]
        if token.kind != "EOF":
            self._position += 1
        return token

    def _error(self, token: _Token, expected: str) -> ParseError:
        if token.kind == "EOF":
            message = f"Unexpected end of text, expected {expected}"
        else:
            message = f"Unexpected token {token.text!r}, expected {expected}"
        return ParseError(message, token.line, token.column)

    def _is_punct(self, text: str) -> bool:
        token = self._peek()
        return token.kind == "PUNCT" and token.text == text

    def _expect_punct(self, text: str) -> _Token:
        token = self._next()
        if token.kind != "PUNCT" or token.text != text:
            raise self._error(token, repr(text))
        return token

    def _expect(self, kind: str, description: str) -> _Token:
        token = self._next()
        if token.kind != kind:
            raise self._error(token, description)
        return token

    def read_graph(self) -> _GraphSyntax:
        keyword = self._expect("NAME", "'graph'")
        if keyword.text != "graph":
            raise self._error(keyword, "'graph'")
        self._expect_punct("(")
        parameters = []
        if not self._is_punct(")"):
            parameters.append(self._read_declaration())
            while self._is_punct(","):
                self._next()
                parameters.append(self._read_declaration())
        self._expect_punct(")")
        self._expect_punct(":")

        statements = []
        while True:
            token = self._peek()
            if token.kind == "NAME" and token.text == "return":
                break
            if token.kind not in ("VALUE", "NAME"):
                raise self._error(token, "a statement or 'return'")
            statements.append(self._read_statement())
        self._next()

        self._expect_punct("(")
        returns = []
        if not self._is_punct(")"):
            returns.append(self._read_reference())
            while self._is_punct(","):
                self._next()
                returns.append(self._read_reference())
        self._expect_punct(")")
        trailing = self._peek()
        if trailing.kind != "EOF":
            raise self._error(trailing, "end of text")
        return _GraphSyntax(parameters, statements, returns)

    def _read_reference(self) -> _Reference:
        token = self._expect("VALUE", "a value reference")
        return _Reference(token.text[1:], token)

    def _read_declaration(self) -> _Declaration:
        token = self._expect("VALUE", "a value name")
        type_name = None
        if self._is_punct(":"):
            self._next()
            type_name = self._read_type()
        return _Declaration(token.text[1:], type_name, token)

    def _read_type(self) -> str:
        name = self._expect("NAME", "a type").text
        if self._is_punct("["):
            self._next()
            self._expect_punct("]")
            name += "[]"
        if self._is_punct("?"):
            self._next()
            name += "?"
        return name

    def _read_statement(self) -> _Statement:
        first = self._peek()
        outputs: list[_Declaration] = []
        # Nodes without outputs, such as prim::SetAttr, have no binding
        if first.kind == "VALUE":
            outputs.append(self._read_declaration())
            while self._is_punct(","):
                self._next()
                outputs.append(self._read_declaration())
            self._expect_punct("=")
        namespace = self._expect("NAME", "an operator namespace")
        self._expect("SCOPE", "'::'")
        op = self._expect("NAME", "an operator name")
        attributes: list[tuple[str, _Literal]] = []
        if self._is_punct("["):
            self._next()
            attributes.append(self._read_attribute())
            while self._is_punct(","):
                self._next()
                attributes.append(self._read_attribute())
            self._expect_punct("]")
        self._expect_punct("(")
        arguments: list[_Reference | _Literal] = []
        if not self._is_punct(")"):
            arguments.append(self._read_argument())
            while self._is_punct(","):
                self._next()
                arguments.append(self._read_argument())
        self._expect_punct(")")
        return _Statement(outputs, f"{namespace.text}::{op.text}", attributes, arguments, first)

    def _read_attribute(self) -> tuple[str, _Literal]:
        name = self._expect("NAME", "an attribute name")
        self._expect_punct("=")
        return name.text, self._read_literal()

    def _read_argument(self) -> _Reference | _Literal:
        if self._peek().kind == "VALUE":
            return self._read_reference()
        return self._read_literal()

    def _read_literal(self) -> _Literal:
        token = self._next()
        if token.kind == "INT":
            return _Literal(int(token.text), token)
        if token.kind == "FLOAT":
            return _Literal(float(token.text), token)
        if token.kind == "STRING":
            return _Literal(_unescape(token.text[1:-1]), token)
        if token.kind == "NAME" and token.text in ("None", "True", "False"):
            return _Literal({"None": None, "True": True, "False": False}[token.text], token)
        if token.kind == "PUNCT" and token.text == "[":
            items = []
            if not self._is_punct("]"):
                items.append(self._read_literal().value)
                while self._is_punct(","):
                    self._next()
                    items.append(self._read_literal().value)
            self._expect_punct("]")
            return _Literal(items, token)
        raise self._error(token, "a literal")


def _unescape(text: str) -> str:
    return re.sub(r"\\(.)", r"\1", text)


def _build_graph(syntax: _GraphSyntax, name: str | None) -> _core.Graph:
    """Resolve the names of the syntax tree and build the graph."""
    all_definitions = {declaration.name for declaration in syntax.parameters}
    for statement in syntax.statements:
        all_definitions.update(declaration.name for declaration in statement.outputs)

    values: dict[str, _core.Value] = {}

    def define(declaration: _Declaration, value: _core.Value) -> None:
        if declaration.name in values:
            raise ParseError(
                f"Value '%{declaration.name}' is defined twice",
                declaration.token.line,
                declaration.token.column,
            )
        values[declaration.name] = value

    def resolve(reference: _Reference, context: str) -> _core.Value:
        if reference.name in values:
            return values[reference.name]
        token = reference.token
        if reference.name in all_definitions:
            raise ParseError(
                f"Value '%{reference.name}' is referenced in {context} before it is defined",
                token.line,
                token.column,
            )
        raise ParseError(
            f"Value '%{reference.name}' is referenced in {context} but never defined",
            token.line,
            token.column,
        )

    inputs = []
    for declaration in syntax.parameters:
        value = _core.Input(
            declaration.name,
            _core.TypeRef(declaration.type) if declaration.type is not None else None,
        )
        define(declaration, value)
        inputs.append(value)

    nodes: list[_core.Node] = []
    for statement in syntax.statements:
        arguments = []
        for argument in statement.arguments:
            if isinstance(argument, _Reference):
                arguments.append(resolve(argument, f"'{statement.kind}'"))
                continue
            constant = _create_literal_constant(argument)
            nodes.append(constant)
            arguments.append(constant.outputs[0])
        try:
            attributes = [
                _convenience.convert_attribute(attr_name, literal.value)
                for attr_name, literal in statement.attributes
            ]
            node = _core.Node(
                statement.kind, arguments, attributes, num_outputs=len(statement.outputs)
            )
        except (TypeError, ValueError) as e:
            raise ParseError(str(e), statement.token.line, statement.token.column) from e
        for declaration, output in zip(statement.outputs, node.outputs):
            output.name = declaration.name
            if declaration.type is not None:
                output.type = _core.TypeRef(declaration.type)
            define(declaration, output)
        nodes.append(node)

    outputs = [resolve(reference, "the return statement") for reference in syntax.returns]
    return _core.Graph(inputs, outputs, nodes=nodes, name=name)


def _create_literal_constant(literal: _Literal) -> _core.Node:
    attr_type = _convenience._infer_attribute_type(literal.value)  # pylint: disable=protected-access
    return _convenience.create_constant(literal.value, _LITERAL_TYPES.get(attr_type))


def parse_graph(text: str, name: str | None = None) -> _core.Graph:
    """Parse the text form of a graph.

    Args:
        text: The graph in the textual graph language.
        name: The name to give to the graph.

    Returns:
        The parsed graph. Values keep the names they have in the text.

    Raises:
        ParseError: If the text is malformed or refers to undefined values.
    """
    return _build_graph(_Reader(text).read_graph(), name)
