"""
Deprecated typed containers kept for migrating old serialized data.

Use :class:`tensordata.TensorData` for new code; ``DataSerialize`` converts
one way into it.
"""

import warnings
from typing import Any, Optional, Sequence, Union

import numpy as np

from .data import TensorData
from .dtype import DType
from .element import Distribution, as_dtype, convert_values, random_values

_DEPRECATION = "the internal data format has changed, please use `TensorData` instead"


class DataSerialize:
    """Deprecated serializable form: typed values plus a shape."""

    def __init__(self, value: Any, shape: Sequence[int]):
        warnings.warn(_DEPRECATION, DeprecationWarning, stacklevel=2)
        self.value = np.asarray(value).reshape(-1)
        self.shape = [int(d) for d in shape]

    def convert(self, element: Any) -> "DataSerialize":
        """Convert the values to another element kind."""
        if as_dtype(element) == as_dtype(self.value.dtype):
            return self
        return DataSerialize(convert_values(self.value, element), self.shape)

    def into_tensor_data(self) -> TensorData:
        return TensorData(self.value, self.shape)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, DataSerialize):
            return NotImplemented
        return self.shape == other.shape and np.array_equal(self.value, other.value)

    def __repr__(self) -> str:
        return f"DataSerialize(value={self.value.tolist()}, shape={self.shape})"


class Data:
    """Deprecated typed tensor data."""

    def __init__(self, value: Any, shape: Sequence[int]):
        warnings.warn(_DEPRECATION, DeprecationWarning, stacklevel=2)
        self.value = np.asarray(value).reshape(-1)
        self.shape = tuple(int(d) for d in shape)

    @classmethod
    def from_serialized(cls, data: DataSerialize) -> "Data":
        return cls(data.value.copy(), data.shape)

    @classmethod
    def random(
        cls,
        shape: Sequence[int],
        distribution: Optional[Distribution] = None,
        rng: Optional[np.random.Generator] = None,
        dtype: Any = DType.F32,
    ) -> "Data":
        if distribution is None:
            distribution = Distribution.default()
        num_elements = int(np.prod(shape))
        return cls(random_values(dtype, distribution, num_elements, rng), shape)

    @classmethod
    def zeros(cls, shape: Sequence[int], dtype: Any = DType.F32) -> "Data":
        return cls.full(shape, 0, dtype)

    @classmethod
    def ones(cls, shape: Sequence[int], dtype: Any = DType.F32) -> "Data":
        return cls.full(shape, 1, dtype)

    @classmethod
    def full(cls, shape: Sequence[int], fill_value: Any, dtype: Any = None) -> "Data":
        fill = np.asarray(fill_value)
        values = np.full(int(np.prod(shape)), fill)
        return cls(convert_values(values, fill.dtype if dtype is None else dtype), shape)

    def convert(self, element: Any) -> "Data":
        return Data(convert_values(self.value, element), self.shape)

    def from_usize(self, element: Any) -> "Data":
        """Convert unsigned index values to another element kind."""
        if self.value.size and self.value.min() < 0:
            raise ValueError("Index values must be non-negative")
        return self.convert(element)

    def serialize(self) -> DataSerialize:
        return DataSerialize(self.value.copy(), self.shape)

    def into_tensor_data(self) -> TensorData:
        return TensorData(self.value, self.shape)

    def assert_approx_eq(self, other: "Data", precision: int) -> None:
        self.assert_approx_eq_diff(other, 0.1**precision)

    def assert_approx_eq_diff(self, other: "Data", tolerance: float) -> None:
        self.into_tensor_data().assert_approx_eq_diff(other.into_tensor_data(), tolerance)

    def assert_within_range(self, value_range: Union[range, tuple]) -> None:
        self.into_tensor_data().assert_within_range(value_range)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Data):
            return NotImplemented
        return self.shape == other.shape and np.array_equal(self.value, other.value)

    def __str__(self) -> str:
        return str(self.value.tolist())
