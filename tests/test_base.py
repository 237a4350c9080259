"""Tests for the ``base`` module."""

from errno import EEXIST, ENOENT, ENOSPC

import pytest

from fatfs.base import (
    RESULT_ERRNOS,
    RESULT_MESSAGES,
    FatError,
    FileResult,
    FileSystemLimit,
    check_result,
    is_power_of_two,
)


@pytest.mark.parametrize(
    'value', [1, 2, 4, 8, 16, 32, 64, 128, 512, 1024, 2048, 4096, 1048576]
)
def test_is_power_of_two_positive(value):
    """Test successful positive evaluation of ``is_power_of_two()``."""
    assert is_power_of_two(value)


@pytest.mark.parametrize('value', [3, 5, 6, 7, 9, 10, 12, 20, 24, 63, 384, 1000])
def test_is_power_of_two_negative(value):
    """Test successful negative evaluation of ``is_power_of_two()``."""
    assert not is_power_of_two(value)


@pytest.mark.parametrize('value', [0, -1, -4, -7, -256])
def test_is_power_of_two_fail(value):
    """Test ``is_power_of_two()`` against parameters ``value`` which are expected to
    fail.
    """
    with pytest.raises(ValueError):
        is_power_of_two(value)


def test_file_result_values():
    """Result codes keep their numeric values."""
    assert [result.value for result in FileResult] == list(range(20))
    assert FileResult.OK.ok
    assert not FileResult.DISK_ERROR.ok


def test_every_error_has_message_and_errno():
    for result in FileResult:
        assert result in RESULT_MESSAGES
        if result is not FileResult.OK:
            assert result in RESULT_ERRNOS


@pytest.mark.parametrize(
    ['result', 'errno'],
    [
        (FileResult.FILE_NOT_EXIST, ENOENT),
        (FileResult.PATH_NOT_FOUND, ENOENT),
        (FileResult.EXISTS, EEXIST),
    ],
)
def test_fat_error(result, errno):
    e = FatError(result, 'A.TXT')
    assert isinstance(e, OSError)
    assert e.result is result
    assert e.errno == errno
    assert e.filename == 'A.TXT'
    assert result.name in str(e)


def test_fat_error_ok():
    with pytest.raises(ValueError):
        FatError(FileResult.OK)


def test_check_result():
    check_result(FileResult.OK)
    with pytest.raises(FatError) as exc_info:
        check_result(FileResult.ACCESS_DENIED, 'DIR')
    assert exc_info.value.result is FileResult.ACCESS_DENIED


def test_file_system_limit():
    e = FileSystemLimit()
    assert isinstance(e, OSError)
    assert e.errno == ENOSPC
