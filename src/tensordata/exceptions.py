"""
Errors raised when extracting or reinterpreting tensor data.
"""

from typing import Optional


class DataError(Exception):
    """Base class for the recoverable failures of tensor data manipulation."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message)
        self.message = message
        self.context = kwargs


class CastError(DataError):
    """The stored bytes cannot be reinterpreted as the requested element type."""

    def __init__(
        self,
        message: str,
        nbytes: Optional[int] = None,
        itemsize: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.nbytes = nbytes
        self.itemsize = itemsize


class TypeMismatch(DataError):
    """The requested element type does not match the stored dtype."""
