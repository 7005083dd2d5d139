"""
Element kinds: the numpy scalar types usable as tensor values.

Every supported kind maps to exactly one ``DType`` tag. Conversion between
kinds, tag lookup and random sampling are free functions keyed by the tag, so
the set of kinds stays closed and every dispatch is an explicit table lookup.
"""

from dataclasses import dataclass
from typing import Any, Optional

import ml_dtypes
import numpy as np

from .dtype import _WIDTHS, DType

# --- Dtype Mapping ---
_NUMPY_DTYPES = {
    "i8": np.dtype("i1"),
    "i16": np.dtype("<i2"),
    "i32": np.dtype("<i4"),
    "i64": np.dtype("<i8"),
    "u8": np.dtype("u1"),
    "u32": np.dtype("<u4"),
    "u64": np.dtype("<u8"),
    "f16": np.dtype("<f2"),
    "bf16": np.dtype(ml_dtypes.bfloat16),
    "f32": np.dtype("<f4"),
    "f64": np.dtype("<f8"),
    "bool": np.dtype("bool"),
}

# Keyed by numpy dtype name so that byte order does not matter on lookup.
_REV_NUMPY_DTYPES = {v.name: k for k, v in _NUMPY_DTYPES.items()}

#: Every non-quantized element kind, in wire-code independent order.
ELEMENT_TYPES = tuple(DType(name) for name in _NUMPY_DTYPES)


def as_dtype(element: Any) -> DType:
    """Resolve an element-like argument to its ``DType`` tag.

    Parameters
    ----------
    element : DType, numpy dtype, scalar type or str
        ``DType.F32``, ``np.float32``, ``"float32"`` and ``"f32"`` all
        resolve to the same tag.

    Returns
    -------
    DType
        The tag.

    Raises
    ------
    TypeError
        If the element kind is not supported.
    """
    if isinstance(element, DType):
        return element
    if isinstance(element, str) and element in _WIDTHS:
        return DType(element)
    try:
        dt = np.dtype(element)
    except TypeError:
        raise TypeError(f"Unsupported element type: {element!r}") from None
    name = _REV_NUMPY_DTYPES.get(dt.name)
    if name is None:
        raise TypeError(f"Unsupported element type: {dt}")
    return DType(name)


def numpy_dtype(element: Any) -> np.dtype:
    """Storage numpy dtype of an element kind (little-endian).

    For quantized tags this is the quantized integer type.
    """
    dtype = as_dtype(element)
    if dtype.scheme is not None:
        return dtype.scheme.qtype.numpy_dtype
    return _NUMPY_DTYPES[dtype.name]


def convert_values(values, element: Any) -> np.ndarray:
    """Convert an array elementwise to another element kind.

    Float to integer truncates toward zero, anything to bool means "non-zero",
    bool to a number gives 0 or 1.
    """
    target = numpy_dtype(element)
    arr = np.asarray(values)
    if arr.dtype == target:
        return arr
    if arr.dtype == np.bool_:
        arr = arr.astype(np.uint8)
    elif arr.dtype == _NUMPY_DTYPES["bf16"]:
        arr = arr.astype(np.float32)
    if target == np.bool_:
        return arr != 0
    with np.errstate(invalid="ignore", over="ignore"):
        # bfloat16 casts go through f32
        if target == _NUMPY_DTYPES["bf16"] and arr.dtype != np.float32:
            arr = arr.astype(np.float32)
        return arr.astype(target, casting="unsafe")


def elem(value: Any, element: Any):
    """Convert a single scalar to the given element kind."""
    return convert_values(np.asarray(value), element)[()]


@dataclass(frozen=True)
class Distribution:
    """Distribution descriptor used to sample random values.

    ``kind`` is one of ``"default"``, ``"bernoulli"``, ``"uniform"`` or
    ``"normal"``; ``a`` and ``b`` hold the variant parameters.
    """

    kind: str = "default"
    a: float = 0.0
    b: float = 0.0

    @classmethod
    def default(cls) -> "Distribution":
        return cls("default")

    @classmethod
    def bernoulli(cls, prob: float) -> "Distribution":
        return cls("bernoulli", prob)

    @classmethod
    def uniform(cls, low: float, high: float) -> "Distribution":
        return cls("uniform", low, high)

    @classmethod
    def normal(cls, mean: float, std: float) -> "Distribution":
        return cls("normal", mean, std)


def random_values(
    element: Any,
    distribution: Distribution,
    count: int,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Sample ``count`` values of an element kind.

    ``Distribution.default()`` draws floats uniformly from ``[0, 1)``,
    integers over their full range and booleans with equal probability.
    """
    if rng is None:
        rng = np.random.default_rng()
    dtype = as_dtype(element)
    kind = distribution.kind
    if kind == "default":
        if dtype.is_float():
            samples = rng.random(count)
        elif dtype.is_bool():
            samples = rng.integers(0, 2, size=count)
        else:
            info = np.iinfo(_NUMPY_DTYPES[dtype.name])
            return rng.integers(
                info.min,
                info.max,
                size=count,
                dtype=_NUMPY_DTYPES[dtype.name],
                endpoint=True,
            )
    elif kind == "bernoulli":
        samples = rng.random(count) < distribution.a
    elif kind == "uniform":
        samples = rng.uniform(distribution.a, distribution.b, size=count)
    elif kind == "normal":
        samples = rng.normal(distribution.a, distribution.b, size=count)
    else:
        raise ValueError(f"Unknown distribution: {kind!r}")
    return convert_values(samples, dtype)
