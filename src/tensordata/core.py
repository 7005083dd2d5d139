"""
Binary packet codec for TensorData.

A packet carries the three fields of a ``TensorData`` record::

    header  <4sBBBBB   magic, version, flags, dtype code, scheme code, ndim
    shape   <{ndim}Q   dimensions
    length  <Q         byte length of the stored body
    padding            zeros up to the 64-byte alignment boundary
    body               raw bytes (quantization parameters included)
    footer  <Q         optional XXH3-64 digest of the body
"""

import logging
import mmap
import struct
from typing import Any, BinaryIO, Dict, Generator, Optional, Tuple, Union

import numpy as np
import xxhash

from .config import (
    _ALIGNMENT,
    _MAGIC,
    _VERSION,
    FLAG_ALIGNED,
    FLAG_COMPRESSION,
    FLAG_INTEGRITY,
    MAX_ELEMENTS,
    MAX_NDIM,
)
from .data import TensorData
from .dtype import DType

try:
    import lz4.frame

    HAS_LZ4 = True
except ImportError:
    HAS_LZ4 = False

logger = logging.getLogger(__name__)

_HEADER = struct.Struct("<4sBBBBB")
_LENGTH = struct.Struct("<Q")
_FOOTER = struct.Struct("<Q")


def _padding(offset: int) -> int:
    return (_ALIGNMENT - (offset % _ALIGNMENT)) % _ALIGNMENT


def _meta_len(ndim: int) -> int:
    """Bytes of shape block plus length field following the header."""
    return ndim * 8 + _LENGTH.size


def _parse_header(header: Union[bytes, bytearray, memoryview]) -> Tuple[int, DType, int]:
    magic, ver, flags, dtype_code, scheme_code, ndim = _HEADER.unpack(header)
    if magic != _MAGIC:
        raise ValueError("Invalid tensordata packet")
    if ver > _VERSION:
        raise ValueError(f"Unsupported packet version: {ver}")
    if ndim > MAX_NDIM:
        raise ValueError(f"Packet exceeds maximum dimensions ({ndim} > {MAX_NDIM})")
    return flags, DType.from_code(dtype_code, scheme_code), ndim


def _parse_meta(
    meta: Union[bytes, bytearray, memoryview], ndim: int, dtype: DType, flags: int
) -> Tuple[Tuple[int, ...], int]:
    shape = struct.unpack(f"<{ndim}Q", meta[: ndim * 8])
    (body_len,) = _LENGTH.unpack(meta[ndim * 8 :])
    num_elements = int(np.prod(shape))
    if num_elements > MAX_ELEMENTS:
        raise ValueError(
            f"Packet exceeds maximum elements ({num_elements} > {MAX_ELEMENTS})"
        )
    if not flags & FLAG_COMPRESSION:
        expected = num_elements * dtype.size()
        if dtype.is_quantized():
            expected += dtype.scheme.param_footprint
        if body_len != expected:
            raise ValueError(
                f"Body length {body_len} does not match shape {list(shape)} "
                f"and dtype {dtype!r}"
            )
    return shape, body_len


def _check_digest(body: Any, footer: Any) -> None:
    if xxhash.xxh3_64_intdigest(body) != _FOOTER.unpack(footer)[0]:
        raise ValueError("Integrity check failed: XXH3 mismatch")


def _read_into_buffer(
    source: Any, buf: Union[bytearray, memoryview, np.ndarray]
) -> bool:
    """Fill a buffer from a source, handling various I/O types."""
    view = memoryview(buf)
    n = view.nbytes
    if n == 0:
        return True
    pos = 0
    while pos < n:
        read = 0
        if hasattr(source, "readinto"):
            read = source.readinto(view[pos:])
        elif hasattr(source, "recv_into"):
            try:
                read = source.recv_into(view[pos:])
            except BlockingIOError:
                continue
        else:
            remaining = n - pos
            chunk = (
                source.recv(remaining)
                if hasattr(source, "recv")
                else source.read(remaining)
            )
            if chunk:
                view[pos : pos + len(chunk)] = chunk
                read = len(chunk)
            else:
                read = 0
        if not read:
            if pos == 0:
                return False
            raise EOFError(f"Expected {n} bytes, got {pos}")
        pos += read
    return True


def read_stream(source: Any) -> Optional[TensorData]:
    """Read and deserialize tensor data from a stream source with DoS protection.

    Parameters
    ----------
    source : file-like or socket-like
        Anything exposing ``readinto``, ``recv_into``, ``recv`` or ``read``.

    Returns
    -------
    Optional[TensorData]
        The data, or None if the stream ended cleanly before the packet.
    """
    header = bytearray(_HEADER.size)
    try:
        if not _read_into_buffer(source, header):
            return None
    except EOFError as e:
        raise EOFError(f"Stream ended during header read. {e}") from None

    flags, dtype, ndim = _parse_header(header)

    meta = bytearray(_meta_len(ndim))
    try:
        if not _read_into_buffer(source, meta):
            raise EOFError("Stream ended during shape read")
    except EOFError as e:
        raise EOFError(f"Stream ended during shape read. {e}") from None

    shape, body_len = _parse_meta(meta, ndim, dtype, flags)

    padding_len = _padding(_HEADER.size + len(meta))
    footer_len = _FOOTER.size if flags & FLAG_INTEGRITY else 0
    data_buffer = bytearray(padding_len + body_len + footer_len)
    try:
        if not _read_into_buffer(source, data_buffer):
            raise EOFError("Stream ended during body read")
    except EOFError as e:
        raise EOFError(f"Stream ended during body read. {e}") from None

    body = memoryview(data_buffer)[padding_len : padding_len + body_len]
    if footer_len:
        _check_digest(body, data_buffer[padding_len + body_len :])
    if flags & FLAG_COMPRESSION:
        body = _decompress(body)
    logger.debug("Read %s packet with shape %s", dtype, list(shape))
    return TensorData.from_bytes(body, shape, dtype)


def _decompress(body: Any) -> bytes:
    if not HAS_LZ4:
        raise ImportError("Decompression requires 'lz4'")
    return lz4.frame.decompress(bytes(body))


def _prefix(data: TensorData, flags: int, body_len: int) -> bytes:
    dtype_code, scheme_code = data.dtype.code()
    ndim = len(data.shape)
    if ndim > MAX_NDIM:
        raise ValueError(f"Tensor exceeds maximum dimensions ({ndim} > {MAX_NDIM})")
    return b"".join(
        [
            _HEADER.pack(_MAGIC, _VERSION, flags, dtype_code, scheme_code, ndim),
            struct.pack(f"<{ndim}Q", *data.shape),
            _LENGTH.pack(body_len),
        ]
    )


def iter_dumps(
    data: TensorData, check_integrity: bool = False
) -> Generator[Union[bytes, memoryview], None, None]:
    """
    Vectored serialization: Yields packet parts to avoid memory copies.

    Parameters
    ----------
    data : TensorData
        The data to serialize.
    check_integrity : bool, default False
        Whether to include integrity check.

    Yields
    ------
    bytes or memoryview
        Packet parts for serialization.
    """
    body = data.as_bytes()
    flags = FLAG_ALIGNED | (FLAG_INTEGRITY if check_integrity else 0)
    prefix = _prefix(data, flags, len(body))
    yield prefix

    padding_len = _padding(len(prefix))
    if padding_len > 0:
        yield b"\x00" * padding_len

    yield body
    if check_integrity:
        yield _FOOTER.pack(xxhash.xxh3_64_intdigest(body))


def write_stream(data: TensorData, dest: Any, check_integrity: bool = False) -> int:
    """
    Write tensor data to a destination using vectored I/O.

    Parameters
    ----------
    data : TensorData
        The data to write.
    dest : file-like object
        The destination to write to.
    check_integrity : bool, default False
        Whether to include integrity check.

    Returns
    -------
    int
        Number of bytes written.
    """
    written = 0
    for chunk in iter_dumps(data, check_integrity=check_integrity):
        dest.write(chunk)
        written += len(chunk)
    return written


def dumps(
    data: TensorData,
    check_integrity: bool = False,
    compress: bool = False,
) -> memoryview:
    """
    Serialize tensor data to a packet.

    Parameters
    ----------
    data : TensorData
        The data to serialize.
    check_integrity : bool, default False
        Whether to include integrity check.
    compress : bool, default False
        Whether to compress the body with LZ4.

    Returns
    -------
    memoryview
        The serialized packet.
    """
    body = data.as_bytes()
    flags = FLAG_ALIGNED | (FLAG_INTEGRITY if check_integrity else 0)

    if compress:
        if not HAS_LZ4:
            raise ImportError("Compression requires 'lz4'")
        body = lz4.frame.compress(bytes(body))
        flags |= FLAG_COMPRESSION

    prefix = _prefix(data, flags, len(body))
    padding_len = _padding(len(prefix))
    body_start = len(prefix) + padding_len
    total_len = body_start + len(body) + (_FOOTER.size if check_integrity else 0)

    buffer = bytearray(total_len)
    buffer[: len(prefix)] = prefix
    buffer[body_start : body_start + len(body)] = body
    if check_integrity:
        digest = xxhash.xxh3_64_intdigest(body)
        _FOOTER.pack_into(buffer, body_start + len(body), digest)
    return memoryview(buffer)


def loads(buffer: Union[bytes, bytearray, memoryview, mmap.mmap]) -> TensorData:
    """Deserialize a packet from a bytes-like object with DoS protection.

    Parameters
    ----------
    buffer : bytes, bytearray, memoryview or mmap.mmap
        The serialized packet.

    Returns
    -------
    TensorData
        The deserialized data, owning a copy of the body.
    """
    mv = memoryview(buffer)
    if len(mv) < _HEADER.size:
        raise ValueError("Packet too short")
    flags, dtype, ndim = _parse_header(mv[: _HEADER.size])

    meta_end = _HEADER.size + _meta_len(ndim)
    if len(mv) < meta_end:
        raise ValueError("Packet too short")
    shape, body_len = _parse_meta(mv[_HEADER.size : meta_end], ndim, dtype, flags)

    body_start = meta_end
    if flags & FLAG_ALIGNED:
        body_start += _padding(meta_end)
    body_end = body_start + body_len
    footer_len = _FOOTER.size if flags & FLAG_INTEGRITY else 0
    if len(mv) < body_end + footer_len:
        raise ValueError("Packet too short")
    body = mv[body_start:body_end]

    if flags & FLAG_INTEGRITY:
        _check_digest(body, mv[body_end : body_end + footer_len])
    if flags & FLAG_COMPRESSION:
        body = _decompress(body)
    return TensorData.from_bytes(body, shape, dtype)


def dump(data: TensorData, fp: BinaryIO, check_integrity: bool = False) -> None:
    """Serialize tensor data and write it to a binary file.

    Parameters
    ----------
    data : TensorData
        The data to serialize.
    fp : BinaryIO
        The binary file pointer to write to.
    check_integrity : bool, optional
        Whether to include integrity check. Default is False.
    """
    write_stream(data, fp, check_integrity=check_integrity)


def load(fp: BinaryIO, mmap_mode: bool = False) -> TensorData:
    """Deserialize tensor data from a binary file.

    Parameters
    ----------
    fp : BinaryIO
        The binary file pointer to read from.
    mmap_mode : bool, optional
        Whether to use memory mapping. Default is False.

    Returns
    -------
    TensorData
        The deserialized data.
    """
    if mmap_mode:
        mm = mmap.mmap(fp.fileno(), 0, access=mmap.ACCESS_READ)
        # loads copies the body. On a decode error the traceback still holds
        # views of the map, so it is only closed after a successful decode.
        data = loads(mm)
        mm.close()
        return data
    result = read_stream(fp)
    if result is None:
        raise EOFError("Empty file or stream")
    return result


def get_packet_info(buffer: Union[bytes, bytearray, memoryview]) -> Dict[str, Any]:
    """Inspect a packet header without decoding its body.

    Returns
    -------
    dict
        ``version``, ``flags``, ``dtype``, ``ndim``, ``shape`` and ``body_length``.
    """
    mv = memoryview(buffer)
    if len(mv) < _HEADER.size:
        raise ValueError("Packet too short")
    ver = _HEADER.unpack(mv[: _HEADER.size])[1]
    flags, dtype, ndim = _parse_header(mv[: _HEADER.size])
    meta_end = _HEADER.size + _meta_len(ndim)
    if len(mv) < meta_end:
        raise ValueError("Packet too short")
    shape, body_len = _parse_meta(mv[_HEADER.size : meta_end], ndim, dtype, flags)
    return {
        "version": ver,
        "flags": flags,
        "dtype": dtype,
        "ndim": ndim,
        "shape": shape,
        "body_length": body_len,
        "compressed": bool(flags & FLAG_COMPRESSION),
        "integrity": bool(flags & FLAG_INTEGRITY),
    }
