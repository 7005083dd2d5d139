"""
Per-tensor int8 quantization schemes and strategies.

A scheme identifies the quantization family and integer width, it is the part
that travels inside a ``DType``. A strategy additionally carries the numeric
parameters (scale and, for affine quantization, offset) needed to quantize or
dequantize one particular tensor.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

logger = logging.getLogger(__name__)


class QuantizationType(enum.Enum):
    """Integer storage type of quantized values."""

    QINT8 = "qint8"

    @property
    def numpy_dtype(self) -> np.dtype:
        return np.dtype(np.int8)

    @property
    def itemsize(self) -> int:
        return self.numpy_dtype.itemsize

    @property
    def bounds(self):
        info = np.iinfo(self.numpy_dtype)
        return int(info.min), int(info.max)


@dataclass(frozen=True)
class QuantizationScheme:
    """Quantization family (``"affine"`` or ``"symmetric"``) and integer type."""

    mode: str
    qtype: QuantizationType = QuantizationType.QINT8

    def __post_init__(self):
        if self.mode not in ("affine", "symmetric"):
            raise ValueError(f"Unknown quantization mode: {self.mode!r}")

    @classmethod
    def per_tensor_affine(cls, qtype=QuantizationType.QINT8) -> "QuantizationScheme":
        return cls("affine", qtype)

    @classmethod
    def per_tensor_symmetric(
        cls, qtype=QuantizationType.QINT8
    ) -> "QuantizationScheme":
        return cls("symmetric", qtype)

    @property
    def is_affine(self) -> bool:
        return self.mode == "affine"

    @property
    def param_footprint(self) -> int:
        """Number of parameter bytes packed after the quantized values."""
        # f32 scale, plus an offset of the quantized integer type
        footprint = np.dtype(np.float32).itemsize
        if self.is_affine:
            footprint += self.qtype.itemsize
        return footprint

    def __repr__(self) -> str:
        kind = "PerTensorAffine" if self.is_affine else "PerTensorSymmetric"
        return f"{kind}({self.qtype.name})"


@dataclass(frozen=True)
class QParams:
    """Quantization parameters unpacked from a quantized buffer."""

    scale: Any
    offset: Optional[Any] = None


def _round_half_away(x: np.ndarray) -> np.ndarray:
    # np.round rounds half to even, quantization rounds half away from zero
    return np.sign(x) * np.floor(np.abs(x) + 0.5)


@dataclass(frozen=True)
class AffineQuantization:
    """Affine (asymmetric) int8 quantization: ``x = (q - offset) * scale``."""

    scale: float
    offset: int

    def __post_init__(self):
        # The scale is stored as f32, keep the exact representable value.
        object.__setattr__(self, "scale", float(np.float32(self.scale)))
        object.__setattr__(self, "offset", int(self.offset))
        a, b = QuantizationType.QINT8.bounds
        if not a <= self.offset <= b:
            raise ValueError(f"Offset {self.offset} is out of range for int8 [{a}, {b}]")

    @classmethod
    def from_range(cls, alpha: float, beta: float) -> "AffineQuantization":
        """Map the float range ``[alpha, beta]`` (widened to include 0) onto int8."""
        a, b = QuantizationType.QINT8.bounds
        alpha = min(float(alpha), 0.0)
        beta = max(float(beta), 0.0)
        scale = np.float32((beta - alpha) / (b - a))
        if scale == 0:
            return cls(1.0, 0)
        offset = int(np.clip(_round_half_away(np.float32(b - beta / scale)), a, b))
        return cls(float(scale), offset)

    def quantize(self, values) -> np.ndarray:
        a, b = QuantizationType.QINT8.bounds
        x = np.asarray(values, dtype=np.float32)
        inv_scale = np.float32(1.0) / np.float32(self.scale)
        q = _round_half_away(x * inv_scale + np.float32(self.offset))
        return np.clip(q, a, b).astype(np.int8)

    def dequantize(self, codes) -> np.ndarray:
        q = np.asarray(codes).astype(np.int32)
        return (q - np.int32(self.offset)).astype(np.float32) * np.float32(self.scale)


@dataclass(frozen=True)
class SymmetricQuantization:
    """Symmetric int8 quantization: ``x = q * scale``."""

    scale: float

    def __post_init__(self):
        object.__setattr__(self, "scale", float(np.float32(self.scale)))

    @classmethod
    def from_range(cls, alpha: float, beta: float) -> "SymmetricQuantization":
        """Map ``[-m, m]`` onto ``[-127, 127]`` where ``m = max(|alpha|, |beta|)``."""
        b = QuantizationType.QINT8.bounds[1]
        m = max(abs(float(alpha)), abs(float(beta)))
        if m == 0:
            return cls(1.0)
        return cls(float(np.float32(2.0 * m / (2 * b))))

    def quantize(self, values) -> np.ndarray:
        b = QuantizationType.QINT8.bounds[1]
        x = np.asarray(values, dtype=np.float32)
        inv_scale = np.float32(1.0) / np.float32(self.scale)
        q = _round_half_away(x * inv_scale)
        return np.clip(q, -b, b).astype(np.int8)

    def dequantize(self, codes) -> np.ndarray:
        return np.asarray(codes).astype(np.float32) * np.float32(self.scale)


class QuantizationStrategy:
    """A quantization scheme together with its parameters for one tensor."""

    quantization: Any

    def scheme(self) -> QuantizationScheme:
        raise NotImplementedError

    def quantize(self, values) -> np.ndarray:
        return self.quantization.quantize(values)

    def dequantize(self, codes) -> np.ndarray:
        return self.quantization.dequantize(codes)


@dataclass(frozen=True)
class PerTensorAffineInt8(QuantizationStrategy):
    quantization: AffineQuantization

    def scheme(self) -> QuantizationScheme:
        return QuantizationScheme.per_tensor_affine(QuantizationType.QINT8)


@dataclass(frozen=True)
class PerTensorSymmetricInt8(QuantizationStrategy):
    quantization: SymmetricQuantization

    def scheme(self) -> QuantizationScheme:
        return QuantizationScheme.per_tensor_symmetric(QuantizationType.QINT8)


def calibrate(values, scheme: QuantizationScheme) -> QuantizationStrategy:
    """Build a strategy covering the min/max range of ``values``.

    Parameters
    ----------
    values : array_like
        Float values the strategy must represent.
    scheme : QuantizationScheme
        Target scheme.

    Returns
    -------
    QuantizationStrategy
        Affine or symmetric int8 strategy.
    """
    x = np.asarray(values, dtype=np.float32)
    if x.size == 0:
        alpha = beta = 0.0
    else:
        alpha, beta = float(np.min(x)), float(np.max(x))
    logger.debug("Calibrating %r on range [%s, %s]", scheme, alpha, beta)
    if scheme.is_affine:
        return PerTensorAffineInt8(AffineQuantization.from_range(alpha, beta))
    return PerTensorSymmetricInt8(SymmetricQuantization.from_range(alpha, beta))
