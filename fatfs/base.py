"""Exception classes, result codes and helper functions used across ``fatfs``."""

from __future__ import annotations

from enum import Enum
from errno import (
    EACCES,
    EBADF,
    EBUSY,
    EEXIST,
    EINVAL,
    EIO,
    EMFILE,
    ENODEV,
    ENOENT,
    ENOMEM,
    ENOSPC,
    ENXIO,
    EROFS,
    ETIMEDOUT,
)

__all__ = [
    'ValidationError',
    'ValidationWarning',
    'FileResult',
    'FatError',
    'FileSystemLimit',
    'check_result',
    'is_power_of_two',
]


class ValidationError(ValueError):
    """Exception raised if an object representing a specific structure -- for example
    a boot sector or a directory entry -- cannot be created because the data to be
    parsed as the structure does not conform to the standard of the structure.
    """


class ValidationWarning(UserWarning):
    """Warning emitted if a value found in a structure does not conform to the
    standard of the structure but might still be usable.
    """


class FileResult(Enum):
    """Result of a file system operation.

    Every layer of the engine passes these values upwards unchanged. Only
    ``FatFileSystem`` turns them into exceptions.
    """

    OK = 0
    DISK_ERROR = 1
    INTERNAL_ERROR = 2
    NOT_READY = 3
    FILE_NOT_EXIST = 4
    PATH_NOT_FOUND = 5
    INVALID_PATH_NAME = 6
    ACCESS_DENIED = 7
    EXISTS = 8
    INVALID_OBJECT = 9
    WRITE_PROTECTED = 10
    INVALID_DRIVE = 11
    NOT_ENABLED = 12
    NO_FILESYSTEM = 13
    MKFS_ABORTED = 14
    TIMEOUT = 15
    LOCKED = 16
    NOT_ENOUGH_CORE = 17
    TOO_MANY_OPEN_FILES = 18
    INVALID_PARAMETER = 19

    @property
    def ok(self) -> bool:
        return self is FileResult.OK


RESULT_MESSAGES = {
    FileResult.OK: 'Succeeded',
    FileResult.DISK_ERROR: 'A hard error occurred in the low level disk I/O layer',
    FileResult.INTERNAL_ERROR: 'Assertion failed',
    FileResult.NOT_READY: 'The physical drive cannot work',
    FileResult.FILE_NOT_EXIST: 'Could not find the file',
    FileResult.PATH_NOT_FOUND: 'Could not find the path',
    FileResult.INVALID_PATH_NAME: 'The path name format is invalid',
    FileResult.ACCESS_DENIED: 'Access denied due to prohibited access or directory '
    'full',
    FileResult.EXISTS: 'Access denied due to prohibited access',
    FileResult.INVALID_OBJECT: 'The file or directory object is invalid',
    FileResult.WRITE_PROTECTED: 'The physical drive is write protected',
    FileResult.INVALID_DRIVE: 'The logical drive number is invalid',
    FileResult.NOT_ENABLED: 'The volume has no work area',
    FileResult.NO_FILESYSTEM: 'There is no valid FAT volume',
    FileResult.MKFS_ABORTED: 'Formatting was aborted due to a parameter error',
    FileResult.TIMEOUT: 'Could not get a grant to access the volume within the '
    'defined period',
    FileResult.LOCKED: 'The operation is rejected according to the file sharing '
    'policy',
    FileResult.NOT_ENOUGH_CORE: 'Working buffer could not be allocated',
    FileResult.TOO_MANY_OPEN_FILES: 'Number of open files exceeds the limit',
    FileResult.INVALID_PARAMETER: 'Given parameter is invalid',
}

RESULT_ERRNOS = {
    FileResult.DISK_ERROR: EIO,
    FileResult.INTERNAL_ERROR: EIO,
    FileResult.NOT_READY: ENODEV,
    FileResult.FILE_NOT_EXIST: ENOENT,
    FileResult.PATH_NOT_FOUND: ENOENT,
    FileResult.INVALID_PATH_NAME: EINVAL,
    FileResult.ACCESS_DENIED: EACCES,
    FileResult.EXISTS: EEXIST,
    FileResult.INVALID_OBJECT: EBADF,
    FileResult.WRITE_PROTECTED: EROFS,
    FileResult.INVALID_DRIVE: ENXIO,
    FileResult.NOT_ENABLED: ENXIO,
    FileResult.NO_FILESYSTEM: ENODEV,
    FileResult.MKFS_ABORTED: EINVAL,
    FileResult.TIMEOUT: ETIMEDOUT,
    FileResult.LOCKED: EBUSY,
    FileResult.NOT_ENOUGH_CORE: ENOMEM,
    FileResult.TOO_MANY_OPEN_FILES: EMFILE,
    FileResult.INVALID_PARAMETER: EINVAL,
}


class FatError(OSError):
    """Exception raised by ``FatFileSystem`` for a ``FileResult`` other than ``OK``.

    Carries the original ``result`` and an ``errno`` matching it as closely as
    possible, so callers may handle it like any other ``OSError``.
    """

    def __init__(self, result: FileResult, filename: str | None = None):
        if result is FileResult.OK:
            raise ValueError('Cannot create an error from a successful result')
        errno = RESULT_ERRNOS[result]
        message = f'{RESULT_MESSAGES[result]} ({result.name})'
        if filename is None:
            super().__init__(errno, message)
        else:
            super().__init__(errno, message, filename)
        self.result = result


class FileSystemLimit(OSError):
    """Exception raised if the file system cannot provide the requested space."""

    def __init__(self, message: str = 'Not enough free clusters available'):
        super().__init__(ENOSPC, message)


def check_result(result: FileResult, filename: str | None = None) -> None:
    """Raise ``FatError`` if ``result`` is not ``FileResult.OK``."""
    if result is not FileResult.OK:
        raise FatError(result, filename)


def is_power_of_two(value: int) -> bool:
    """Check if ``value`` is a power of two.

    ``value`` must be an ``int`` greater than zero.

    Returns whether ``value`` can be expressed as 2 to the power of x, with x being
    an integer greater than or equal to zero.
    """
    if value <= 0:
        raise ValueError('Value must be greater than 0')
    return value & (value - 1) == 0
