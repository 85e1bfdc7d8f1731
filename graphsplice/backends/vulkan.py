# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Reference implementation of the Vulkan prepare operations.

The prepare operations check their parameters and pack them into the context
objects consumed by the matching run operations. Weights are stored as
contiguous float32 arrays whose output channels are padded to a multiple of
four, the width of a texel. The run operations are declared so that the pipeline
can insert them, but they are only executed by the device runtime.
"""

from __future__ import annotations

__all__ = [
    "BACKEND",
    "CONV2D_PREPACK",
    "CONV2D_RUN",
    "CONV2D_TRANSPOSE_PREPACK",
    "CONV2D_TRANSPOSE_RUN",
    "Conv2dOpContext",
    "Conv2dTransposeOpContext",
    "LINEAR_PREPACK",
    "LINEAR_RUN",
    "LinearOpContext",
    "NAMESPACE",
    "registry",
]

import dataclasses
from typing import Any, ClassVar, Sequence

import numpy as np

from graphsplice.backends import _common_ops, _registry

NAMESPACE = "vulkan_prepack"

LINEAR_PREPACK = f"{NAMESPACE}::linear_prepack"
LINEAR_RUN = f"{NAMESPACE}::linear_run"
CONV2D_PREPACK = f"{NAMESPACE}::conv2d_clamp_prepack"
CONV2D_RUN = f"{NAMESPACE}::conv2d_clamp_run"
CONV2D_TRANSPOSE_PREPACK = f"{NAMESPACE}::conv2d_transpose_clamp_prepack"
CONV2D_TRANSPOSE_RUN = f"{NAMESPACE}::conv2d_transpose_clamp_run"

_TEXEL_WIDTH = 4


def _pad_channels(array: np.ndarray, axis: int) -> np.ndarray:
    """Pad ``axis`` with zeros up to a multiple of the texel width."""
    remainder = array.shape[axis] % _TEXEL_WIDTH
    if remainder == 0:
        return array
    pad_width = [(0, 0)] * array.ndim
    pad_width[axis] = (0, _TEXEL_WIDTH - remainder)
    return np.pad(array, pad_width)


def _as_float32(tensor: Any, name: str, ndim: int) -> np.ndarray:
    array = np.asarray(tensor)
    if array.ndim != ndim:
        raise ValueError(f"{name} must be a tensor of rank {ndim}, got shape {array.shape}")
    return np.ascontiguousarray(array, dtype=np.float32)


def _pair(value: int | Sequence[int], name: str) -> tuple[int, int]:
    if isinstance(value, (int, np.integer)):
        return (int(value), int(value))
    values = [int(v) for v in value]
    if len(values) == 1:
        return (values[0], values[0])
    if len(values) != 2:
        raise ValueError(f"{name} must have one or two elements, got {list(value)}")
    return (values[0], values[1])


def _clamp_bounds(
    output_min: float | None, output_max: float | None
) -> tuple[float | None, float | None]:
    output_min = None if output_min is None else float(output_min)
    output_max = None if output_max is None else float(output_max)
    if output_min is not None and output_max is not None and output_min > output_max:
        raise ValueError(
            f"output_min ({output_min}) must not be greater than output_max ({output_max})"
        )
    return output_min, output_max


def _bias(bias: Any, num_channels: int) -> np.ndarray | None:
    if bias is None:
        return None
    array = _as_float32(bias, "bias", 1)
    if array.shape[0] != num_channels:
        raise ValueError(f"bias must have {num_channels} elements, got {array.shape[0]}")
    return _pad_channels(array, 0)


@dataclasses.dataclass(frozen=True, eq=False)
class LinearOpContext(_registry.PackedConstant):
    """Packed parameters of a linear transform.

    Attributes:
        weight: The transposed weight, shape ``(in_features, padded out_features)``.
        bias: The padded bias, or None.
        out_features: The number of output features before padding.
    """

    type_name: ClassVar[str] = "__torch__.torch.classes.vulkan.LinearOpContext"

    weight: np.ndarray
    bias: np.ndarray | None
    out_features: int


@dataclasses.dataclass(frozen=True, eq=False)
class Conv2dOpContext(_registry.PackedConstant):
    """Packed parameters of a 2-D convolution, with an optional clamp of its output."""

    type_name: ClassVar[str] = "__torch__.torch.classes.vulkan.Conv2dOpContext"

    weight: np.ndarray
    bias: np.ndarray | None
    out_channels: int
    stride: tuple[int, int]
    padding: tuple[int, int]
    dilation: tuple[int, int]
    groups: int
    output_min: float | None
    output_max: float | None


@dataclasses.dataclass(frozen=True, eq=False)
class Conv2dTransposeOpContext(_registry.PackedConstant):
    """Packed parameters of a 2-D transposed convolution, with an optional clamp of its output."""

    type_name: ClassVar[str] = "__torch__.torch.classes.vulkan.Conv2dTransposeOpContext"

    weight: np.ndarray
    bias: np.ndarray | None
    out_channels: int
    stride: tuple[int, int]
    padding: tuple[int, int]
    output_padding: tuple[int, int]
    dilation: tuple[int, int]
    groups: int
    output_min: float | None
    output_max: float | None


registry = _registry.OpRegistry()
_common_ops.register_common_ops(registry)


@registry.evaluator(
    LINEAR_PREPACK, num_inputs=2, result_type=LinearOpContext.type_name, is_prepack=True
)
def linear_prepack(weight_t: Any, bias: Any) -> LinearOpContext:
    weight = _as_float32(weight_t, "weight", 2)
    out_features = weight.shape[1]
    return LinearOpContext(
        weight=_pad_channels(weight, 1),
        bias=_bias(bias, out_features),
        out_features=out_features,
    )


def _check_groups(groups: int, in_channels: int, out_channels: int) -> int:
    groups = int(groups)
    if groups < 1:
        raise ValueError(f"groups must be positive, got {groups}")
    if in_channels % groups != 0 or out_channels % groups != 0:
        raise ValueError(
            f"groups ({groups}) must divide the input ({in_channels}) "
            f"and output ({out_channels}) channels"
        )
    return groups


@registry.evaluator(
    CONV2D_PREPACK, num_inputs=8, result_type=Conv2dOpContext.type_name, is_prepack=True
)
def conv2d_clamp_prepack(
    weight: Any,
    bias: Any,
    stride: Sequence[int],
    padding: Sequence[int],
    dilation: Sequence[int],
    groups: int,
    output_min: float | None,
    output_max: float | None,
) -> Conv2dOpContext:
    # weight: (out_channels, in_channels / groups, kernel_h, kernel_w)
    array = _as_float32(weight, "weight", 4)
    out_channels = array.shape[0]
    groups = _check_groups(groups, array.shape[1] * int(groups), out_channels)
    output_min, output_max = _clamp_bounds(output_min, output_max)
    return Conv2dOpContext(
        weight=_pad_channels(array, 0),
        bias=_bias(bias, out_channels),
        out_channels=out_channels,
        stride=_pair(stride, "stride"),
        padding=_pair(padding, "padding"),
        dilation=_pair(dilation, "dilation"),
        groups=groups,
        output_min=output_min,
        output_max=output_max,
    )


@registry.evaluator(
    CONV2D_TRANSPOSE_PREPACK,
    num_inputs=9,
    result_type=Conv2dTransposeOpContext.type_name,
    is_prepack=True,
)
def conv2d_transpose_clamp_prepack(
    weight: Any,
    bias: Any,
    stride: Sequence[int],
    padding: Sequence[int],
    output_padding: Sequence[int],
    dilation: Sequence[int],
    groups: int,
    output_min: float | None,
    output_max: float | None,
) -> Conv2dTransposeOpContext:
    # weight: (in_channels, out_channels / groups, kernel_h, kernel_w)
    array = _as_float32(weight, "weight", 4)
    out_channels = array.shape[1] * int(groups)
    groups = _check_groups(groups, array.shape[0], out_channels)
    output_min, output_max = _clamp_bounds(output_min, output_max)
    return Conv2dTransposeOpContext(
        weight=_pad_channels(array, 1),
        bias=_bias(bias, out_channels),
        out_channels=out_channels,
        stride=_pair(stride, "stride"),
        padding=_pair(padding, "padding"),
        output_padding=_pair(output_padding, "output_padding"),
        dilation=_pair(dilation, "dilation"),
        groups=groups,
        output_min=output_min,
        output_max=output_max,
    )


# The run operations execute on the device only
registry.register(_registry.OpSchema(LINEAR_RUN, 2, None, result_type="Tensor"))
registry.register(_registry.OpSchema(CONV2D_RUN, 2, None, result_type="Tensor"))
registry.register(_registry.OpSchema(CONV2D_TRANSPOSE_RUN, 2, None, result_type="Tensor"))

BACKEND = _registry.Backend(
    name="vulkan",
    namespace=NAMESPACE,
    registry=registry,
    required_kinds=(
        LINEAR_PREPACK,
        LINEAR_RUN,
        CONV2D_PREPACK,
        CONV2D_RUN,
        CONV2D_TRANSPOSE_PREPACK,
        CONV2D_TRANSPOSE_RUN,
    ),
)
_registry.register_backend(BACKEND)
