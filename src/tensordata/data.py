"""
TensorData: a dtype-tagged byte buffer with a shape.
"""

import logging
from typing import Any, Iterator, Optional, Sequence, Tuple, Union

import numpy as np

from ._bytes import Buffer, bytes_of, cast_slice, read_unaligned
from .config import MAX_REPORTED_DIFFS
from .dtype import DType
from .element import Distribution, as_dtype, convert_values, numpy_dtype, random_values
from .exceptions import TypeMismatch
from .quantization import (
    AffineQuantization,
    PerTensorAffineInt8,
    QParams,
    QuantizationStrategy,
    SymmetricQuantization,
)

logger = logging.getLogger(__name__)

_ITER_CHUNK = 4096  #: Elements converted per step by lazy iteration
_CONVERT_WINDOW = 1 << 16  #: Elements rewritten per step by in-place conversion

Shape = Tuple[int, ...]


def _as_shape(shape: Union[int, Sequence[int]]) -> Shape:
    if isinstance(shape, (int, np.integer)):
        shape = (shape,)
    shape = tuple(int(d) for d in shape)
    if any(d < 0 for d in shape):
        raise ValueError(f"Shape {list(shape)} has negative dimensions")
    return shape


def _numel(shape: Shape) -> int:
    return int(np.prod(shape))


def _validate_data_shape(flat: np.ndarray, shape: Shape) -> np.ndarray:
    """Truncate ``flat`` to the element count of ``shape`` and check it matches."""
    numel = _numel(shape)
    flat = flat[:numel]
    if flat.size != numel:
        raise ValueError(
            f"Shape {list(shape)} is invalid for input of size {flat.size}"
        )
    return flat


def _mismatch(expected: DType, got: DType) -> TypeMismatch:
    return TypeMismatch(
        f"Invalid target element type (expected {expected!r}, got {got!r})",
        expected=expected,
        got=got,
    )


class TensorData:
    """Raw tensor values stored as bytes, with a shape and an element dtype.

    Parameters
    ----------
    values : array_like
        Element values in row-major order. Extra values beyond the element
        count of ``shape`` are dropped.
    shape : int or sequence of int
        Tensor dimensions. An empty shape holds a single scalar.
    dtype : element-like, optional
        Element kind (``DType``, numpy dtype or name). Defaults to the numpy
        dtype of ``values``.

    Raises
    ------
    ValueError
        If fewer values than ``shape`` requires are supplied.
    TypeError
        If the element kind is not supported.
    """

    def __init__(self, values: Any, shape: Union[int, Sequence[int]], dtype: Any = None):
        arr = np.asarray(values)
        target = as_dtype(arr.dtype if dtype is None else dtype)
        if target.is_quantized():
            raise ValueError("Quantized data must be built with TensorData.quantized")
        shape = _as_shape(shape)
        flat = _validate_data_shape(convert_values(arr, target).reshape(-1), shape)

        self.bytes = bytes_of(flat, numpy_dtype(target))
        self.shape = shape
        self.dtype = target

    # --- Construction ---

    @classmethod
    def from_bytes(cls, buf: Buffer, shape: Union[int, Sequence[int]], dtype: Any) -> "TensorData":
        """Rebuild tensor data from its raw bytes, shape and dtype.

        Raises
        ------
        ValueError
            If the byte length is inconsistent with ``shape`` and ``dtype``.
        """
        dtype = as_dtype(dtype)
        shape = _as_shape(shape)
        expected = _numel(shape) * dtype.size()
        if dtype.is_quantized():
            expected += dtype.scheme.param_footprint
        nbytes = memoryview(buf).nbytes
        if nbytes != expected:
            raise ValueError(
                f"Expected {expected} bytes for shape {list(shape)} and dtype "
                f"{dtype!r}, got {nbytes}"
            )
        data = cls.__new__(cls)
        data.bytes = bytearray(buf)
        data.shape = shape
        data.dtype = dtype
        return data

    @classmethod
    def from_array(cls, obj: Any, dtype: Any = None) -> "TensorData":
        """Build tensor data from a (nested) sequence or array, inferring the shape.

        Python ints map to I64 and Python floats to F64 unless ``dtype`` is given.
        """
        arr = np.asarray(obj)
        return cls(arr.reshape(-1), arr.shape, dtype)

    @classmethod
    def quantized(
        cls,
        values: Any,
        shape: Union[int, Sequence[int]],
        strategy: QuantizationStrategy,
    ) -> "TensorData":
        """Build quantized data from int8 codes and their quantization strategy.

        The parameters are packed after the codes so that the last four bytes
        are always the f32 scale. Affine quantization writes its int8 offset
        right before the scale.
        """
        scheme = strategy.scheme()
        qdtype = scheme.qtype.numpy_dtype
        shape = _as_shape(shape)
        flat = _validate_data_shape(np.asarray(values, dtype=qdtype).reshape(-1), shape)

        buf = bytes_of(flat, qdtype)
        if isinstance(strategy, PerTensorAffineInt8):
            buf += bytes_of([strategy.quantization.offset], qdtype)
        buf += bytes_of([strategy.quantization.scale], np.dtype("<f4"))

        data = cls.__new__(cls)
        data.bytes = buf
        data.shape = shape
        data.dtype = DType.qfloat(scheme)
        return data

    @classmethod
    def random(
        cls,
        shape: Union[int, Sequence[int]],
        distribution: Optional[Distribution] = None,
        rng: Optional[np.random.Generator] = None,
        dtype: Any = DType.F32,
    ) -> "TensorData":
        """Populate the data with values sampled from ``distribution``."""
        shape = _as_shape(shape)
        if distribution is None:
            distribution = Distribution.default()
        values = random_values(dtype, distribution, _numel(shape), rng)
        return cls(values, shape, dtype)

    @classmethod
    def zeros(cls, shape: Union[int, Sequence[int]], dtype: Any = DType.F32) -> "TensorData":
        return cls.full(shape, 0, dtype)

    @classmethod
    def ones(cls, shape: Union[int, Sequence[int]], dtype: Any = DType.F32) -> "TensorData":
        return cls.full(shape, 1, dtype)

    @classmethod
    def full(cls, shape: Union[int, Sequence[int]], fill_value: Any, dtype: Any = None) -> "TensorData":
        """Populate the data with ``fill_value``.

        Without ``dtype`` the element kind is taken from ``fill_value``.
        """
        shape = _as_shape(shape)
        fill = np.asarray(fill_value)
        dtype = as_dtype(fill.dtype if dtype is None else dtype)
        return cls(np.full(_numel(shape), fill), shape, dtype)

    # --- Properties ---

    def num_elements(self) -> int:
        """Total number of elements, the product of the shape dimensions."""
        return _numel(self.shape)

    def as_bytes(self) -> memoryview:
        """Read-only view of the whole buffer, quantization parameters included."""
        return memoryview(self.bytes).toreadonly()

    def tensor_bytes(self) -> memoryview:
        """The value bytes, excluding packed quantization parameters."""
        view = memoryview(self.bytes)
        if self.dtype.is_quantized():
            return view[: len(self.bytes) - self.dtype.scheme.param_footprint]
        return view

    # --- Typed views ---

    def _check_target(self, element: Any) -> DType:
        target = as_dtype(element)
        if target != self.dtype:
            raise _mismatch(self.dtype, target)
        return target

    def as_slice(self, element: Any) -> np.ndarray:
        """Read-only 1-D view of the values as ``element``, without copying.

        For quantized data the view covers the int8 codes only.

        Raises
        ------
        TypeMismatch
            If ``element`` is not the stored dtype.
        CastError
            If the bytes cannot be reinterpreted as ``element``.
        """
        target = self._check_target(element)
        return cast_slice(self.tensor_bytes(), numpy_dtype(target))

    def as_mut_slice(self, element: Any) -> np.ndarray:
        """Writable 1-D view of the values as ``element``, without copying.

        Writes through the view modify this instance's buffer.
        """
        target = self._check_target(element)
        return cast_slice(self.tensor_bytes(), numpy_dtype(target), writable=True)

    def to_vec(self, element: Any) -> np.ndarray:
        """Copy of the values as a 1-D array of ``element``."""
        return self.as_slice(element).copy()

    def into_vec(self, element: Any) -> np.ndarray:
        """Hand the buffer over as a writable 1-D array of ``element``.

        No copy is made: the returned array reuses this instance's buffer, so
        the instance should not be used afterward.
        """
        return self.as_mut_slice(element)

    def _source_values(self) -> np.ndarray:
        """The stored values in their native element kind."""
        if self.dtype.is_quantized():
            return cast_slice(self.tensor_bytes(), self.dtype.scheme.qtype.numpy_dtype)
        if self.dtype in (DType.BOOL, DType.U8):
            # bool is a byte equal to either 0 or 1
            return np.frombuffer(self.bytes, dtype=np.uint8)
        return cast_slice(self.bytes, numpy_dtype(self.dtype))

    def _values(self, element: Any) -> np.ndarray:
        target = as_dtype(element)
        if target == self.dtype:
            return self.as_slice(target)
        return convert_values(self._source_values(), target)

    def iter(self, element: Any) -> Iterator[Any]:
        """Lazily yield every value converted to ``element``.

        Quantized data yields its raw int8 codes converted to ``element``;
        call :meth:`dequantize` first to iterate over real values.
        """
        target = as_dtype(element)
        if target == self.dtype:
            yield from self.as_slice(target)
            return
        source = self._source_values()
        for start in range(0, source.size, _ITER_CHUNK):
            yield from convert_values(source[start : start + _ITER_CHUNK], target)

    # --- Conversion ---

    def convert(self, element: Any) -> "TensorData":
        """Convert the data to another element kind.

        The receiver is consumed: when the element widths match its buffer is
        rewritten in place and the same instance is returned, otherwise a new
        instance is built. Bool and quantized data always take the elementwise
        path.
        """
        target = as_dtype(element)
        if target == self.dtype:
            return self
        if target.is_quantized():
            raise ValueError("Use with_quantization to quantize data")
        if target.size() == self.dtype.size() and not (
            self.dtype.is_bool() or self.dtype.is_quantized()
        ):
            logger.debug("Converting %r -> %r in place", self.dtype, target)
            return self._convert_inplace(target)
        logger.debug("Converting %r -> %r elementwise", self.dtype, target)
        return TensorData(self._values(target), self.shape, target)

    def _convert_inplace(self, target: DType) -> "TensorData":
        current = cast_slice(self.bytes, numpy_dtype(self.dtype), writable=True)
        # the old bytes need not be valid booleans yet, so write bool targets as u8
        out_dtype = np.uint8 if target.is_bool() else numpy_dtype(target)
        out = cast_slice(self.bytes, out_dtype, writable=True)
        for start in range(0, current.size, _CONVERT_WINDOW):
            end = start + _CONVERT_WINDOW
            # convert_values copies, so the window is read before it is overwritten
            out[start:end] = convert_values(current[start:end], target)
        self.dtype = target
        return self

    # --- Quantization ---

    def with_quantization(self, strategy: QuantizationStrategy) -> "TensorData":
        """Quantize f32 data with ``strategy``.

        Raises
        ------
        ValueError
            If the data is not f32.
        """
        if self.dtype != DType.F32:
            raise ValueError(f"Only f32 data type can be quantized, got {self.dtype!r}")
        logger.debug("Quantizing %s values with %r", self.num_elements(), strategy)
        codes = strategy.quantize(self.as_slice(DType.F32))
        return TensorData.quantized(codes, self.shape, strategy)

    def get_q_params(self, scale: Any = DType.F32, offset: Any = DType.I8) -> Optional[QParams]:
        """Unpack the quantization parameters, or ``None`` if not quantized.

        The scale is read from the last bytes of the buffer and, for affine
        quantization, the offset from the bytes right before it.
        """
        if not self.dtype.is_quantized():
            return None
        scale_dt = numpy_dtype(scale)
        total = len(self.bytes)
        scale_start = total - scale_dt.itemsize
        scale_value = read_unaligned(self.bytes, scale_start, scale_dt)
        offset_value = None
        if self.dtype.scheme.is_affine:
            offset_dt = numpy_dtype(offset)
            offset_value = read_unaligned(
                self.bytes, scale_start - offset_dt.itemsize, offset_dt
            )
        return QParams(scale_value, offset_value)

    def dequantize(self) -> "TensorData":
        """Dequantize the data to f32.

        Raises
        ------
        TypeMismatch
            If the data is not quantized.
        """
        if not self.dtype.is_quantized():
            raise TypeMismatch(f"Expected quantized data, got {self.dtype!r}")
        qparams = self.get_q_params(DType.F32, DType.I8)
        if self.dtype.scheme.is_affine:
            strategy = AffineQuantization(float(qparams.scale), int(qparams.offset))
        else:
            strategy = SymmetricQuantization(float(qparams.scale))
        logger.debug("Dequantizing %r with %r", self.dtype, strategy)
        values = strategy.dequantize(self._source_values())
        return TensorData(values, self.shape, DType.F32)

    # --- Comparison ---

    def assert_eq(self, other: "TensorData", strict: bool = True) -> None:
        """Assert the data is equal to ``other``.

        Parameters
        ----------
        other : TensorData
            The other data.
        strict : bool, default True
            If True the dtypes must be the same, otherwise ``other`` is compared
            in this data's element kind.

        Raises
        ------
        AssertionError
            If the data differ.
        """
        if strict and self.dtype != other.dtype:
            raise AssertionError(f"Data types differ ({self.dtype!r} != {other.dtype!r})")

        element = self.dtype
        if self.dtype.is_quantized():
            # Comparing quantized to non-quantized data never makes sense
            if not other.dtype.is_quantized():
                raise AssertionError("Quantized data differs from other not quantized data")
            if self.dtype.scheme != other.dtype.scheme:
                raise AssertionError(
                    f"Quantization schemes differ ({self.dtype.scheme!r} != "
                    f"{other.dtype.scheme!r})"
                )
            element = self.dtype.scheme.qtype.numpy_dtype

        message = self._shape_message(other)
        a = self._values(element)
        b = other._values(element)
        n = min(a.size, b.size)
        a, b = a[:n], b[:n]
        if as_dtype(a.dtype).is_float():
            # Floats compare by bit pattern, so equal NaNs match and -0.0 != 0.0
            bits = f"<u{a.itemsize}"
            diff = np.flatnonzero(
                np.ascontiguousarray(a).view(bits) != np.ascontiguousarray(b).view(bits)
            )
        else:
            diff = np.flatnonzero(a != b)
        message += _format_diffs(diff, lambda i: f"{a[i]} != {b[i]}")
        if message:
            raise AssertionError(f"Tensors are not eq:{message}")

    def assert_approx_eq(self, other: "TensorData", precision: int) -> None:
        """Assert approximate equality with a tolerance of ``0.1 ** precision``."""
        self.assert_approx_eq_diff(other, 0.1**precision)

    def assert_approx_eq_diff(self, other: "TensorData", tolerance: float) -> None:
        """Assert every pair of values differs by at most ``tolerance``.

        Two NaNs are equal, as are two infinities of the same sign.

        Raises
        ------
        AssertionError
            If shapes differ or any value is out of tolerance.
        """
        message = self._shape_message(other)
        a = self._values(DType.F64)
        b = other._values(DType.F64)
        n = min(a.size, b.size)
        a, b = a[:n], b[:n]

        with np.errstate(invalid="ignore", over="ignore"):
            both_nan = np.isnan(a) & np.isnan(b)
            both_inf = np.isinf(a) & np.isinf(b) & ((a > 0) == (b > 0))
            err = np.sqrt((a - b) ** 2)
            failed = ~(both_nan | both_inf) & ((err > tolerance) | np.isnan(err))

        diff = np.flatnonzero(failed)
        message += _format_diffs(
            diff,
            lambda i: f"{a[i]} != {b[i]} | difference {err[i]} > tolerance {tolerance}",
        )
        if message:
            raise AssertionError(f"Tensors are not approx eq:{message}")

    def assert_within_range(self, value_range: Union[range, Tuple[Any, Any]]) -> None:
        """Assert every value lies in the half-open range ``[start, end)``.

        Values are compared as f32.
        """
        if isinstance(value_range, range):
            start, end = value_range.start, value_range.stop
        else:
            start, end = value_range
        lo = np.float32(start)
        hi = np.float32(end)
        values = self._values(DType.F32)
        outside = np.flatnonzero((values < lo) | (values >= hi))
        if outside.size:
            raise AssertionError(
                f"Element ({values[outside[0]]}) is not within range {start}..{end}"
            )

    def _shape_message(self, other: "TensorData") -> str:
        if self.shape != other.shape:
            return f"\n  => Shape is different: {list(self.shape)} != {list(other.shape)}"
        return ""

    # --- Wire form ---

    def to_record(self) -> dict:
        """The three-field record ``{"bytes", "shape", "dtype"}``."""
        return {"bytes": bytes(self.bytes), "shape": list(self.shape), "dtype": self.dtype}

    @classmethod
    def from_record(cls, record: dict) -> "TensorData":
        return cls.from_bytes(record["bytes"], record["shape"], record["dtype"])

    def copy(self) -> "TensorData":
        return TensorData.from_bytes(self.bytes, self.shape, self.dtype)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, TensorData):
            return NotImplemented
        return (
            self.dtype == other.dtype
            and self.shape == other.shape
            and self.bytes == other.bytes
        )

    __hash__ = None

    def __repr__(self) -> str:
        return (
            f"TensorData(shape={list(self.shape)}, dtype={self.dtype!r}, "
            f"nbytes={len(self.bytes)})"
        )

    def __str__(self) -> str:
        values = self._source_values() if self.dtype.is_quantized() else self.as_slice(self.dtype)
        text = str(values.tolist())
        if self.dtype.is_quantized():
            return f"{text} {self.dtype.scheme!r}"
        return text


def _format_diffs(diff: np.ndarray, describe) -> str:
    message = ""
    for i in diff[:MAX_REPORTED_DIFFS]:
        message += f"\n  => Position {i}: {describe(i)}"
    if diff.size >= MAX_REPORTED_DIFFS:
        message += f"\n{diff.size - MAX_REPORTED_DIFFS} more errors..."
    return message
