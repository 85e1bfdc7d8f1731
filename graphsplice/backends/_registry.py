# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Registry of the operations a backend knows how to evaluate at optimization time."""

from __future__ import annotations

__all__ = [
    "Backend",
    "OpRegistry",
    "OpSchema",
    "PackedConstant",
    "UnsupportedConfigurationError",
    "get_backend",
    "register_backend",
    "registered_backends",
]

import abc
import dataclasses
import logging
from typing import Any, Callable, ClassVar, Iterable, Iterator, Sequence

logger = logging.getLogger(__name__)


class UnsupportedConfigurationError(RuntimeError):
    """Raised when the backend or the operations required by a pipeline are unavailable."""


class PackedConstant(abc.ABC):  # noqa: B024
    """Opaque result of a prepack operation, e.g. pre-transformed weights and their parameters.

    A packed constant is embedded in a graph as the value of a ``prim::Constant`` node.
    It is treated as immutable once created.
    """

    # The type annotation given to the constant that holds the packed object
    type_name: ClassVar[str]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


EvaluatorFunction = Callable[..., Any]


@dataclasses.dataclass(frozen=True)
class OpSchema:
    """The description of one operation kind.

    Attributes:
        kind: The namespaced operation kind, e.g. ``vulkan_prepack::linear_prepack``.
        num_inputs: The number of inputs the operation takes. ``None`` for variadic operations.
        evaluator: The function computing the operation from concrete input values.
            ``None`` when the operation is known but cannot be evaluated ahead of time,
            e.g. the "run" half of a prepare/run pair.
        result_type: The type annotation of the result. ``None`` keeps the annotation of
            the value being replaced.
        is_prepack: Whether the operation is a "prepare" operation producing a packed constant.
    """

    kind: str
    num_inputs: int | None
    evaluator: EvaluatorFunction | None
    result_type: str | None = None
    is_prepack: bool = False

    @property
    def can_evaluate(self) -> bool:
        return self.evaluator is not None


class OpRegistry:
    """A registry of operation schemas keyed by operation kind."""

    def __init__(self, schemas: Iterable[OpSchema] = ()):
        self._schemas: dict[str, OpSchema] = {}
        for schema in schemas:
            self.register(schema)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({list(self._schemas)!r})"

    def __contains__(self, kind: object) -> bool:
        return kind in self._schemas

    def __iter__(self) -> Iterator[OpSchema]:
        return iter(self._schemas.values())

    def __len__(self) -> int:
        return len(self._schemas)

    def register(self, schema: OpSchema, *, overwrite: bool = False) -> None:
        """Register a schema.

        Raises:
            ValueError: If the kind is already registered and ``overwrite`` is False.
        """
        if "::" not in schema.kind:
            raise ValueError(f"Operation kind must be namespaced, got {schema.kind!r}")
        if schema.kind in self._schemas and not overwrite:
            raise ValueError(f"Operation '{schema.kind}' is already registered.")
        self._schemas[schema.kind] = schema

    def evaluator(
        self,
        kind: str,
        *,
        num_inputs: int | None = None,
        result_type: str | None = None,
        is_prepack: bool = False,
    ) -> Callable[[EvaluatorFunction], EvaluatorFunction]:
        """Decorator registering the decorated function as the evaluator of ``kind``."""

        def decorator(function: EvaluatorFunction) -> EvaluatorFunction:
            self.register(OpSchema(kind, num_inputs, function, result_type, is_prepack))
            return function

        return decorator

    def lookup(self, kind: str) -> OpSchema | None:
        return self._schemas.get(kind)

    def evaluate(self, kind: str, inputs: Sequence[Any]) -> Any:
        """Evaluate the operation ``kind`` on concrete input values.

        Raises:
            KeyError: If the kind is not registered.
            ValueError: If the kind cannot be evaluated or the number of inputs is wrong.
            Exception: Whatever the evaluator raises for invalid inputs.
        """
        schema = self._schemas[kind]
        if schema.evaluator is None:
            raise ValueError(f"Operation '{kind}' cannot be evaluated ahead of time.")
        if schema.num_inputs is not None and len(inputs) != schema.num_inputs:
            raise ValueError(
                f"Operation '{kind}' expects {schema.num_inputs} inputs, got {len(inputs)}."
            )
        return schema.evaluator(*inputs)

    def prepack_kinds(self) -> frozenset[str]:
        """The kinds of the prepare operations, the allow-list of prepack folding."""
        return frozenset(schema.kind for schema in self._schemas.values() if schema.is_prepack)

    def require(self, kinds: Iterable[str]) -> None:
        """Check that every kind in ``kinds`` is registered.

        Raises:
            UnsupportedConfigurationError: If any kind is missing.
        """
        missing = sorted(set(kinds) - set(self._schemas))
        if missing:
            raise UnsupportedConfigurationError(
                f"The operation registry does not provide the required operations: {missing}"
            )


@dataclasses.dataclass(frozen=True)
class Backend:
    """A target of the optimization pipeline.

    Attributes:
        name: The name of the backend, e.g. ``vulkan``.
        namespace: The namespace of the backend's prepare/run operations.
        registry: The operations the backend can evaluate.
        required_kinds: The operations the pipeline inserts for this backend.
    """

    name: str
    namespace: str
    registry: OpRegistry
    required_kinds: tuple[str, ...] = ()

    def check_available(self) -> None:
        """Raise :class:`UnsupportedConfigurationError` if a required operation is missing."""
        self.registry.require(self.required_kinds)


_BACKENDS: dict[str, Backend] = {}


def register_backend(backend: Backend, *, overwrite: bool = False) -> None:
    """Make a backend available to :func:`get_backend`.

    Raises:
        ValueError: If a backend with the same name exists and ``overwrite`` is False.
    """
    if backend.name in _BACKENDS and not overwrite:
        raise ValueError(f"Backend '{backend.name}' is already registered.")
    _BACKENDS[backend.name] = backend
    logger.debug("Registered backend '%s'", backend.name)


def get_backend(name: str) -> Backend:
    """Return the backend called ``name``.

    Raises:
        UnsupportedConfigurationError: If no such backend is registered.
    """
    backend = _BACKENDS.get(name)
    if backend is None:
        raise UnsupportedConfigurationError(
            f"Backend '{name}' is not available. Available backends: {sorted(_BACKENDS)}"
        )
    return backend


def registered_backends() -> list[str]:
    return sorted(_BACKENDS)
