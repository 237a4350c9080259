"""FAT file system facade raising exceptions instead of returning result codes."""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum, IntFlag
from functools import wraps
from io import SEEK_CUR, SEEK_END, SEEK_SET, RawIOBase, UnsupportedOperation
from threading import Lock
from typing import TYPE_CHECKING, Callable, TypeVar

from typing_extensions import Concatenate, ParamSpec

from .base import FatError, FileResult, FileSystemLimit, check_result
from .fat.directory import SEPARATORS, Attributes, FileInfo
from .fat.filesystem import VolumeTable

if TYPE_CHECKING:
    from .device import BlockDevice
    from .fat.file import FileObject
    from .fat.volume import FatVolume
    from .typing_ import Clock, ReadableBuffer, WriteableBuffer

__all__ = ['FatFileSystem', 'FileIO', 'FileMode', 'FileAttributes', 'ROOT']


log = logging.getLogger(__name__)


ROOT = 'Z:\\'
DEFAULT_BUFFER_SIZE = 8192  # bytes


# Typing
P = ParamSpec('P')
R = TypeVar('R')  # return type


class FileMode(IntFlag):
    """Mode passed to ``FatFileSystem.open()``.

    Combine ``READ`` and/or ``WRITE`` with at most one of the creation modes.
    """

    OPEN_EXISTING = 0x00
    READ = 0x01
    WRITE = 0x02
    CREATE_NEW = 0x04
    CREATE_ALWAYS = 0x08
    OPEN_ALWAYS = 0x10
    SEEK_END = 0x20  # only used as part of APPEND
    APPEND = OPEN_ALWAYS | SEEK_END


class FileAttributes(Enum):
    """Most significant attribute of a file, see ``FatFileSystem.get_attributes()``."""

    READ_ONLY = 0x01
    HIDDEN = 0x02
    SYSTEM = 0x04
    DIRECTORY = 0x10
    ARCHIVE = 0x20
    NORMAL = 0x80
    NOT_EXISTS = 0xFFFFFFFF


# In order of precedence
_ATTRIBUTE_PRECEDENCE = (
    (Attributes.SUBDIRECTORY, FileAttributes.DIRECTORY),
    (Attributes.READ_ONLY, FileAttributes.READ_ONLY),
    (Attributes.HIDDEN, FileAttributes.HIDDEN),
    (Attributes.SYSTEM, FileAttributes.SYSTEM),
    (Attributes.ARCHIVE, FileAttributes.ARCHIVE),
)


def parse_mode(mode: str) -> FileMode:
    """Translate a ``open()`` style mode string to a ``FileMode``."""
    if not set(mode) <= set('xrwab+') or len(mode) > len(set(mode)):
        raise ValueError(f'Invalid mode {mode!r}')
    if sum(c in 'rwax' for c in mode) != 1:
        raise ValueError(
            'Must have exactly one of create/read/write/append mode and at most '
            'one plus'
        )

    if 'x' in mode:
        flags = FileMode.WRITE | FileMode.CREATE_NEW
    elif 'r' in mode:
        flags = FileMode.READ | FileMode.OPEN_EXISTING
    elif 'w' in mode:
        flags = FileMode.WRITE | FileMode.CREATE_ALWAYS
    else:
        flags = FileMode.WRITE | FileMode.APPEND

    if '+' in mode:
        flags |= FileMode.READ | FileMode.WRITE
    return flags


def locked(
    method: Callable[Concatenate['FatFileSystem', P], R],
) -> Callable[Concatenate['FatFileSystem', P], R]:
    @wraps(method)
    def locked_wrapper(self: 'FatFileSystem', *args: P.args, **kwargs: P.kwargs) -> R:
        with self._lock:
            return method(self, *args, **kwargs)

    return locked_wrapper


class FileIO(RawIOBase):
    """Raw binary stream of a file opened on a ``FatFileSystem``.

    Do not use ``__init__`` directly, use ``FatFileSystem.open()`` instead.
    """

    def __init__(self, fs: FatFileSystem, path: str, mode: FileMode, file: FileObject):
        self._fs = fs
        self._path = path
        self._mode = mode
        self._file = file
        self._readable = bool(mode & FileMode.READ)
        self._writable = bool(mode & FileMode.WRITE)
        self._appending = mode & FileMode.APPEND == FileMode.APPEND

    def __repr__(self) -> str:
        cls = self.__class__
        return (
            f'{cls.__module__}.{cls.__qualname__}(fs={self._fs!r}, '
            f'path={self._path!r}, closed={self.closed})'
        )

    def _check_closed(self) -> None:
        if self.closed:
            raise ValueError('I/O operation on closed file')

    def _check_readable(self) -> None:
        if not self._readable:
            raise UnsupportedOperation('File not open for reading')

    def _check_writable(self) -> None:
        if not self._writable:
            raise UnsupportedOperation('File not open for writing')

    @property
    def size(self) -> int:
        """Current size of the file in bytes."""
        return self._file.size

    def read(self, size: int = -1) -> bytes:
        self._check_closed()
        self._check_readable()

        if size < 0:
            return self.readall()
        return self._fs.readfile(self._file, size)

    def readall(self) -> bytes:
        self._check_closed()
        self._check_readable()
        remaining = max(self._file.size - self._file.tell(), 0)
        return self._fs.readfile(self._file, remaining)

    def readinto(self, b: WriteableBuffer) -> int:
        mem = memoryview(b).cast('B')
        data = self.read(len(mem))
        actual = len(data)
        mem[:actual] = data
        return actual

    def write(self, b: ReadableBuffer) -> int:
        self._check_closed()
        self._check_writable()
        if self._appending:
            self._fs.seekfile(self._file, self._file.size)
        return self._fs.writefile(self._file, b)

    def seek(self, pos: int, whence: int = SEEK_SET) -> int:
        self._check_closed()
        if whence == SEEK_CUR:
            pos += self._file.tell()
        elif whence == SEEK_END:
            pos += self._file.size
        elif whence != SEEK_SET:
            raise ValueError(f'Invalid whence ({whence!r})')
        if pos < 0:
            raise ValueError(f'Negative seek position {pos}')
        return self._fs.seekfile(self._file, pos)

    def tell(self) -> int:
        self._check_closed()
        return self._file.tell()

    def truncate(self, size: int | None = None) -> int:
        """Resize the file to ``size`` bytes (the current position by default).

        A file is extended with zeros. The position is left unchanged unless it is
        beyond the new end of the file, in which case it is moved to the end.
        """
        self._check_closed()
        self._check_writable()
        position = self._file.tell()
        if size is None:
            size = position
        if size < 0:
            raise ValueError(f'Negative size {size}')

        current = self._file.size
        if size < current:
            self._fs.seekfile(self._file, size)
            self._fs.truncatefile(self._file)
        elif size > current:
            self._fs.seekfile(self._file, current)
            self._fs.writefile(self._file, bytes(size - current))
        self._fs.seekfile(self._file, min(position, size))
        return size

    def flush(self) -> None:
        self._check_closed()
        self._fs.syncfile(self._file)

    def close(self) -> None:
        if not self.closed:
            try:
                super().close()
            finally:
                self._fs.closefile(self._file)

    def readable(self) -> bool:
        self._check_closed()
        return self._readable

    def writable(self) -> bool:
        self._check_closed()
        return self._writable

    def seekable(self) -> bool:
        self._check_closed()
        return True

    def isatty(self) -> bool:
        self._check_closed()
        return False

    @property
    def name(self) -> str:
        return self._path

    @property
    def mode(self) -> FileMode:
        return self._mode


class FatFileSystem:
    """FAT file system on one drive of a block device.

    Paths are relative to the root directory of the drive. They may start with
    ``ROOT`` (``'Z:\\'``), which is removed. Both ``'/'`` and ``'\\'`` separate path
    segments. Filenames are short (8.3) names, matched case-insensitively.

    All methods are serialized using a lock. Failures raise ``FatError``.
    """

    def __init__(
        self, device: BlockDevice, drive: int = 0, clock: Clock | None = None
    ):
        if clock is None:
            clock = datetime.now
        self._table = VolumeTable(device, drive + 1, clock)
        self._volume = self._table.register(drive)
        self._drive = drive
        self._mounted = False
        self._lock = Lock()

    def __repr__(self) -> str:
        return (
            f'{self.__class__.__name__}(device={self._table.device!r}, '
            f'drive={self._drive})'
        )

    @property
    def table(self) -> VolumeTable:
        return self._table

    @property
    def volume(self) -> FatVolume:
        return self._volume

    @property
    def lock(self) -> Lock:
        return self._lock

    @property
    def root(self) -> str:
        return ROOT

    @property
    def is_ready(self) -> bool:
        return self._mounted

    # Helper methods

    def _reformat(self, path: str) -> str:
        """Strip ``ROOT`` from ``path`` and make sure it starts with a separator."""
        if path.startswith(ROOT):
            path = path[len(ROOT) :]
        if not path.startswith(tuple(SEPARATORS)):
            path = '/' + path
        return path

    def _path(self, path: str) -> str:
        """Engine path of ``path``, including the drive prefix."""
        return f'{self._drive}:{self._reformat(path)}'

    def _free_clusters(self) -> int:
        result, free = self._table.getfree(self._path(''))
        check_result(result)
        return free

    # Mounting

    @locked
    def mount(self) -> None:
        """Mount the drive, raising ``FatError`` if there is no usable FAT volume."""
        if self._mounted:
            raise RuntimeError('Drive is already mounted')
        check_result(self._table.mount(f'{self._drive}:'))
        self._mounted = True

    @locked
    def unmount(self) -> None:
        """Unmount the drive. Open files and directories become invalid."""
        check_result(self._table.unmount(f'{self._drive}:'))
        self._mounted = False

    # Volume information

    @property
    @locked
    def drive_format(self) -> str:
        """``'FAT12'``, ``'FAT16'`` or ``'FAT32'``, or ``''`` if not mounted."""
        fs_type = self._volume.fs_type
        return '' if fs_type is None else str(fs_type)

    @property
    @locked
    def available_free_space(self) -> int:
        """Free space in sectors."""
        free = self._free_clusters()
        return free * self._volume.csize

    @property
    @locked
    def total_free_space(self) -> int:
        """Free space in sectors."""
        free = self._free_clusters()
        return free * self._volume.csize

    @property
    @locked
    def total_size(self) -> int:
        """Size of the data area in sectors."""
        self._free_clusters()
        return (self._volume.n_fatent - 2) * self._volume.csize

    @property
    @locked
    def volume_label(self) -> str:
        result, label = self._table.getlabel(self._path(''))
        check_result(result)
        return label

    # Low-level IO methods for use with a FileObject

    @locked
    def openfile(self, path: str, mode: FileMode) -> FileObject:
        result, file = self._table.open(self._path(path), mode.value)
        check_result(result, path)
        assert file is not None
        return file

    @locked
    def readfile(self, file: FileObject, size: int) -> bytes:
        result, data = file.read(size)
        check_result(result)
        return data

    @locked
    def writefile(self, file: FileObject, b: ReadableBuffer) -> int:
        data = bytes(b)
        result, written = file.write(data)
        check_result(result)
        if written < len(data):
            raise FileSystemLimit(
                f'Only {written} of {len(data)} bytes could be written'
            )
        return written

    @locked
    def seekfile(self, file: FileObject, offset: int) -> int:
        check_result(file.seek(offset))
        return file.tell()

    @locked
    def truncatefile(self, file: FileObject) -> None:
        check_result(file.truncate())

    @locked
    def syncfile(self, file: FileObject) -> None:
        check_result(file.sync())

    @locked
    def closefile(self, file: FileObject) -> None:
        check_result(file.close())

    # Standard accessor methods

    def open(self, path: str, mode: str | FileMode = 'r') -> FileIO:
        """Open the file at ``path`` and return an unbuffered binary stream.

        ``mode`` is either an ``open()`` style mode string (``'r'``, ``'w'``, ``'a'``
        or ``'x'``, optionally combined with ``'+'`` and ``'b'``) or a ``FileMode``.
        """
        if isinstance(mode, str):
            flags = parse_mode(mode)
        else:
            flags = FileMode(mode)
        file = self.openfile(path, flags)
        return FileIO(self, path, flags, file)

    @locked
    def stat(self, path: str) -> FileInfo:
        result, info = self._table.stat(self._path(path))
        check_result(result, path)
        assert info is not None
        return info

    @locked
    def listdir(self, path: str = '/') -> list[str]:
        result, directory = self._table.opendir(self._path(path))
        check_result(result, path)
        assert directory is not None

        names = []
        try:
            while True:
                result, info = directory.read()
                check_result(result, path)
                if not info:
                    break
                names.append(info.name)
        finally:
            directory.close()
        return names

    @locked
    def create_directory(self, path: str) -> None:
        """Create a directory. An existing file or directory at ``path`` is ignored."""
        result = self._table.mkdir(self._path(path))
        if result is not FileResult.EXISTS:
            check_result(result, path)

    @locked
    def delete(self, path: str) -> None:
        """Delete a file or an empty directory."""
        check_result(self._table.unlink(self._path(path)), path)

    @locked
    def rename(self, src: str, dst: str) -> None:
        """Rename or move a file or directory."""
        check_result(self._table.rename(self._path(src), self._reformat(dst)), src)

    @locked
    def get_attributes(self, path: str) -> FileAttributes:
        """Return the most significant attribute of the file or directory at ``path``.

        Directories take precedence, followed by read-only, hidden, system and
        archive files. Files without any of these are ``NORMAL``.
        """
        path = self._reformat(path)
        if not path.strip(SEPARATORS):
            return FileAttributes.DIRECTORY  # root directory has no entry

        result, info = self._table.stat(self._path(path))
        if result is FileResult.FILE_NOT_EXIST:
            return FileAttributes.NOT_EXISTS
        if result is not FileResult.OK or info is None:
            raise FatError(result, path)

        for attribute, file_attribute in _ATTRIBUTE_PRECEDENCE:
            if attribute in info.attributes:
                return file_attribute
        return FileAttributes.NORMAL

    def file_exists(self, path: str) -> bool:
        return self.get_attributes(path) is not FileAttributes.NOT_EXISTS

    def directory_exists(self, path: str) -> bool:
        return self.get_attributes(path) is FileAttributes.DIRECTORY
