"""
Configuration and Protocol Constants for tensordata.
"""

_MAGIC = b"TDAT"  #: Magic number for packet header
_VERSION = 1  #: Protocol version
_ALIGNMENT = 64  #: SIMD alignment boundary

# --- Security Limits (DoS Protection) ---
MAX_NDIM = 32  #: Maximum dimensions to prevent allocation attacks
MAX_ELEMENTS = 10**9  #: Maximum elements per tensor

# --- Flags ---
FLAG_ALIGNED = 1  #: Packet uses 64-byte alignment
FLAG_INTEGRITY = 2  #: Packet includes an 8-byte XXH3 checksum footer
FLAG_COMPRESSION = 4  #: Packet body is compressed using LZ4

# --- Comparison helpers ---
MAX_REPORTED_DIFFS = 5  #: Mismatching positions listed in assertion messages

# --- Dtype Mapping ---
# Wire discriminants, keyed by DType name. Never renumber.
_DTYPE_CODES = {
    "f32": 1,
    "i32": 2,
    "f64": 3,
    "i64": 4,
    "u8": 5,
    "bool": 7,
    "f16": 8,
    "i8": 9,
    "i16": 10,
    "u32": 11,
    "u64": 12,
    "bf16": 15,
    "qfloat": 16,
}

_REV_DTYPE_CODES = {v: k for k, v in _DTYPE_CODES.items()}

# Scheme discriminants for QFloat, 0 means "not quantized".
_SCHEME_CODES = {
    ("affine", "qint8"): 1,
    ("symmetric", "qint8"): 2,
}

_REV_SCHEME_CODES = {v: k for k, v in _SCHEME_CODES.items()}
