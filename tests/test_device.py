"""Tests for the ``device`` module."""

import pytest

from fatfs.device import (
    SECTOR_SIZE,
    DiskControl,
    DiskResult,
    DiskStatus,
    ImageDevice,
    MemoryDevice,
)


class TestMemoryDevice:
    """Tests for ``MemoryDevice``."""

    def test_size_must_be_sector_multiple(self):
        with pytest.raises(ValueError, match='.*multiple.*'):
            MemoryDevice(SECTOR_SIZE + 1)

    def test_status_before_and_after_initialize(self):
        device = MemoryDevice(4 * SECTOR_SIZE)
        assert device.status(0) == DiskStatus.NOINIT
        assert device.initialize(0) == DiskStatus.OK
        assert device.status(0) == DiskStatus.OK

        device.eject()
        assert DiskStatus.NOINIT in device.status(0)

    def test_status_readonly(self):
        device = MemoryDevice(4 * SECTOR_SIZE, readonly=True)
        assert device.initialize(0) == DiskStatus.PROTECT
        assert not device.writable

    def test_other_drives_do_not_exist(self):
        device = MemoryDevice(4 * SECTOR_SIZE)
        assert device.initialize(1) == DiskStatus.NOINIT | DiskStatus.NODISK
        device.initialize(0)
        buffer = bytearray(SECTOR_SIZE)
        assert device.read(1, buffer, 0, 1) is DiskResult.INVALID_PARAMETER
        assert device.control(1, DiskControl.SYNC) == (DiskResult.INVALID_PARAMETER, 0)

    def test_not_ready_before_initialize(self):
        device = MemoryDevice(4 * SECTOR_SIZE)
        buffer = bytearray(SECTOR_SIZE)
        assert device.read(0, buffer, 0, 1) is DiskResult.NOT_READY
        assert device.write(0, buffer, 0, 1) is DiskResult.NOT_READY
        assert device.control(0, DiskControl.SYNC) == (DiskResult.NOT_READY, 0)

    def test_read_write(self):
        data = bytearray(4 * SECTOR_SIZE)
        device = MemoryDevice(data)
        device.initialize(0)

        payload = bytes(range(256)) * 4
        assert device.write(0, payload, 1, 2) is DiskResult.OK
        assert data[SECTOR_SIZE : 3 * SECTOR_SIZE] == payload  # used in place

        buffer = bytearray(2 * SECTOR_SIZE)
        assert device.read(0, buffer, 1, 2) is DiskResult.OK
        assert buffer == payload

    @pytest.mark.parametrize(['sector', 'count'], [(4, 1), (3, 2), (-1, 1), (0, 0)])
    def test_out_of_range(self, sector, count):
        device = MemoryDevice(4 * SECTOR_SIZE)
        device.initialize(0)
        buffer = bytearray(2 * SECTOR_SIZE)
        assert device.read(0, buffer, sector, count) is DiskResult.INVALID_PARAMETER
        assert device.write(0, buffer, sector, count) is DiskResult.INVALID_PARAMETER

    def test_buffer_too_small(self):
        device = MemoryDevice(4 * SECTOR_SIZE)
        device.initialize(0)
        buffer = bytearray(SECTOR_SIZE)
        assert device.read(0, buffer, 0, 2) is DiskResult.INVALID_PARAMETER

    def test_write_protected(self):
        data = bytes(4 * SECTOR_SIZE)
        device = MemoryDevice(data, readonly=True)
        device.initialize(0)
        assert device.write(0, bytes(SECTOR_SIZE), 0, 1) is DiskResult.WRITE_PROTECTED

    def test_control(self):
        device = MemoryDevice(8 * SECTOR_SIZE)
        device.initialize(0)
        assert device.control(0, DiskControl.SYNC) == (DiskResult.OK, 0)
        assert device.control(0, DiskControl.GET_SECTOR_COUNT) == (DiskResult.OK, 8)
        assert device.control(0, DiskControl.GET_SECTOR_SIZE) == (
            DiskResult.OK,
            SECTOR_SIZE,
        )
        assert device.control(0, DiskControl.GET_BLOCK_SIZE)[0] is DiskResult.OK
        assert device.control(0, DiskControl.TRIM)[0] is DiskResult.OK


class TestImageDevice:
    """Tests for ``ImageDevice``."""

    def test_new_and_open(self, tempdir):
        path = tempdir / 'disk.img'
        with ImageDevice.new(path, 8 * SECTOR_SIZE) as device:
            assert device.sectors == 8
            device.initialize(0)
            assert device.write(0, b'\xAB' * SECTOR_SIZE, 3, 1) is DiskResult.OK
            assert device.control(0, DiskControl.SYNC) == (DiskResult.OK, 0)
        assert device.closed

        with ImageDevice.open(path, readonly=True) as device:
            device.initialize(0)
            buffer = bytearray(SECTOR_SIZE)
            assert device.read(0, buffer, 3, 1) is DiskResult.OK
            assert buffer == b'\xAB' * SECTOR_SIZE
            assert device.write(0, buffer, 3, 1) is DiskResult.WRITE_PROTECTED

    def test_new_existing(self, tempfile):
        with pytest.raises(FileExistsError):
            ImageDevice.new(tempfile, SECTOR_SIZE)

    def test_new_invalid_size(self, tempdir):
        with pytest.raises(ValueError):
            ImageDevice.new(tempdir / 'disk.img', 0)

    def test_closed(self, tempdir):
        device = ImageDevice.new(tempdir / 'disk.img', SECTOR_SIZE)
        device.initialize(0)
        device.close()
        device.close()  # no effect
        assert device.read(0, bytearray(SECTOR_SIZE), 0, 1) is DiskResult.NOT_READY
