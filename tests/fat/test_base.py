"""Tests for the `base` module of the `fat` package."""

from __future__ import annotations

import pytest

from fatfs.fat.base import MAX_FAT12, MAX_FAT16, MAX_FAT32, FatType


@pytest.mark.parametrize(
    ["clusters", "fat_type"],
    [
        (1, FatType.FAT_12),
        (MAX_FAT12, FatType.FAT_12),
        (MAX_FAT12 + 1, FatType.FAT_16),
        (MAX_FAT16, FatType.FAT_16),
        (MAX_FAT16 + 1, FatType.FAT_32),
        (MAX_FAT32, FatType.FAT_32),
    ],
)
def test_fat_type_from_cluster_count(clusters, fat_type):
    """Test determination of the FAT type by the number of clusters."""
    assert FatType.from_cluster_count(clusters) is fat_type


def test_fat_type_from_cluster_count_fail():
    with pytest.raises(ValueError):
        FatType.from_cluster_count(MAX_FAT32 + 1)


@pytest.mark.parametrize(
    ["fat_type", "mask", "name"],
    [
        (FatType.FAT_12, 0xFFF, "FAT12"),
        (FatType.FAT_16, 0xFFFF, "FAT16"),
        (FatType.FAT_32, 0x0FFFFFFF, "FAT32"),
    ],
)
def test_fat_type_properties(fat_type, mask, name):
    assert fat_type.mask == mask
    assert str(fat_type) == name
