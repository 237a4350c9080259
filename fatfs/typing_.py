"""Certain types used across the package."""

from __future__ import annotations

from os import PathLike
from typing import TYPE_CHECKING, Callable, Union

from typing_extensions import Buffer, TypeAlias

__all__ = [
    'NoneType',
    'StrPath',
    'ReadOnlyBuffer',
    'WriteableBuffer',
    'ReadableBuffer',
    'Clock',
]


NoneType: TypeAlias = type(None)

# `PathLike` cannot be subscripted at runtime.
if TYPE_CHECKING:
    from datetime import datetime

    StrPath: TypeAlias = Union[str, PathLike[str]]
    Clock: TypeAlias = Callable[[], datetime]

# Unfortunately PEP 688 does not allow us to distinguish read-only and writable buffers.
ReadOnlyBuffer: TypeAlias = Buffer
WriteableBuffer: TypeAlias = Buffer
ReadableBuffer: TypeAlias = Union[ReadOnlyBuffer, WriteableBuffer]
