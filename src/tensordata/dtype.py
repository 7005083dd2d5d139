"""
DType tag identifying the element kind stored in a byte buffer.
"""

from dataclasses import dataclass
from typing import ClassVar, Optional

from .config import _DTYPE_CODES, _REV_DTYPE_CODES, _REV_SCHEME_CODES, _SCHEME_CODES
from .quantization import QuantizationScheme, QuantizationType

# Byte width of one stored element, keyed by tag name.
_WIDTHS = {
    "i8": 1,
    "i16": 2,
    "i32": 4,
    "i64": 8,
    "u8": 1,
    "u32": 4,
    "u64": 8,
    "f16": 2,
    "bf16": 2,
    "f32": 4,
    "f64": 8,
    "bool": 1,
}


@dataclass(frozen=True)
class DType:
    """Closed set of element kinds, ``QFloat`` carries its quantization scheme.

    Use the class constants (``DType.F32``, ``DType.BOOL`` ...) and
    ``DType.qfloat(scheme)`` rather than calling the constructor directly.
    """

    name: str
    scheme: Optional[QuantizationScheme] = None

    I8: ClassVar["DType"]
    I16: ClassVar["DType"]
    I32: ClassVar["DType"]
    I64: ClassVar["DType"]
    U8: ClassVar["DType"]
    U32: ClassVar["DType"]
    U64: ClassVar["DType"]
    F16: ClassVar["DType"]
    BF16: ClassVar["DType"]
    F32: ClassVar["DType"]
    F64: ClassVar["DType"]
    BOOL: ClassVar["DType"]

    def __post_init__(self):
        if self.name == "qfloat":
            if self.scheme is None:
                raise ValueError("QFloat dtype requires a quantization scheme")
        elif self.name not in _WIDTHS:
            raise ValueError(f"Unsupported dtype: {self.name!r}")
        elif self.scheme is not None:
            raise ValueError(f"Only QFloat carries a scheme, got {self.name!r}")

    @classmethod
    def qfloat(cls, scheme: QuantizationScheme) -> "DType":
        return cls("qfloat", scheme)

    def size(self) -> int:
        """Byte width of one stored element (the quantized integer for QFloat)."""
        if self.scheme is not None:
            return self.scheme.qtype.itemsize
        return _WIDTHS[self.name]

    @property
    def width(self) -> int:
        return self.size()

    def is_float(self) -> bool:
        return self.name in ("f16", "bf16", "f32", "f64")

    def is_int(self) -> bool:
        return self.name in ("i8", "i16", "i32", "i64")

    def is_uint(self) -> bool:
        return self.name in ("u8", "u32", "u64")

    def is_bool(self) -> bool:
        return self.name == "bool"

    def is_quantized(self) -> bool:
        return self.scheme is not None

    # --- Wire discriminants ---

    def code(self):
        """Return the ``(dtype_code, scheme_code)`` pair written on the wire."""
        if self.scheme is None:
            return _DTYPE_CODES[self.name], 0
        key = (self.scheme.mode, self.scheme.qtype.value)
        return _DTYPE_CODES[self.name], _SCHEME_CODES[key]

    @classmethod
    def from_code(cls, dtype_code: int, scheme_code: int = 0) -> "DType":
        name = _REV_DTYPE_CODES.get(dtype_code)
        if name is None:
            raise ValueError(f"Unsupported dtype code: {dtype_code}")
        if name != "qfloat":
            if scheme_code:
                raise ValueError(f"Unexpected scheme code {scheme_code} for {name}")
            return cls(name)
        key = _REV_SCHEME_CODES.get(scheme_code)
        if key is None:
            raise ValueError(f"Unsupported quantization scheme code: {scheme_code}")
        mode, qtype = key
        return cls.qfloat(QuantizationScheme(mode, QuantizationType(qtype)))

    def __repr__(self) -> str:
        if self.scheme is not None:
            return f"QFloat({self.scheme!r})"
        return self.name.upper() if self.name != "bool" else "Bool"

    __str__ = __repr__


DType.I8 = DType("i8")
DType.I16 = DType("i16")
DType.I32 = DType("i32")
DType.I64 = DType("i64")
DType.U8 = DType("u8")
DType.U32 = DType("u32")
DType.U64 = DType("u64")
DType.F16 = DType("f16")
DType.BF16 = DType("bf16")
DType.F32 = DType("f32")
DType.F64 = DType("f64")
DType.BOOL = DType("bool")
