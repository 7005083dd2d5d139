from .core import dump, dumps, get_packet_info, iter_dumps, load, loads, read_stream, write_stream
from .data import TensorData
from .dtype import DType
from .element import ELEMENT_TYPES, Distribution, as_dtype, elem, numpy_dtype
from .exceptions import CastError, DataError, TypeMismatch
from .quantization import (
    AffineQuantization,
    PerTensorAffineInt8,
    PerTensorSymmetricInt8,
    QParams,
    QuantizationScheme,
    QuantizationStrategy,
    QuantizationType,
    SymmetricQuantization,
    calibrate,
)

__all__ = [
    "TensorData",
    "DType",
    "ELEMENT_TYPES",
    "Distribution",
    "as_dtype",
    "elem",
    "numpy_dtype",
    "DataError",
    "CastError",
    "TypeMismatch",
    "QuantizationType",
    "QuantizationScheme",
    "QuantizationStrategy",
    "AffineQuantization",
    "SymmetricQuantization",
    "PerTensorAffineInt8",
    "PerTensorSymmetricInt8",
    "QParams",
    "calibrate",
    "dumps",
    "loads",
    "dump",
    "load",
    "iter_dumps",
    "read_stream",
    "write_stream",
    "get_packet_info",
]
