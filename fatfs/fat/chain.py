"""Cluster chains: allocation, release and cluster addressing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ..base import FileResult
from ..device import DiskResult
from .base import CLUSTER_EOC
from .fat import CLUSTER_EMPTY
from .volume import FSI_DIRTY

if TYPE_CHECKING:
    from .volume import FatVolume

__all__ = [
    'ChainStatus',
    'ChainResult',
    'cluster_to_sector',
    'create_chain',
    'remove_chain',
    'clear_cluster',
]


log = logging.getLogger(__name__)


class ChainStatus(Enum):
    ALLOCATED = 0
    DISK_FULL = 1
    INTERNAL_ERROR = 2
    DISK_ERROR = 3


@dataclass(frozen=True)
class ChainResult:
    """Outcome of ``create_chain()``.

    ``cluster`` is only meaningful if ``status`` is ``ChainStatus.ALLOCATED``.
    """

    status: ChainStatus
    cluster: int = 0

    @classmethod
    def allocated(cls, cluster: int) -> ChainResult:
        return cls(ChainStatus.ALLOCATED, cluster)

    @classmethod
    def from_result(cls, result: FileResult) -> ChainResult:
        """Return the failed ``ChainResult`` matching the error ``result``."""
        if result is FileResult.DISK_ERROR:
            return DISK_ERROR
        return INTERNAL_ERROR

    @property
    def ok(self) -> bool:
        return self.status is ChainStatus.ALLOCATED

    @property
    def result(self) -> FileResult:
        """``FileResult`` equivalent of the status.

        A full disk has no equivalent of its own, callers decide what it means
        for them; it is reported as ``FileResult.OK`` here.
        """
        if self.status is ChainStatus.DISK_ERROR:
            return FileResult.DISK_ERROR
        if self.status is ChainStatus.INTERNAL_ERROR:
            return FileResult.INTERNAL_ERROR
        return FileResult.OK


DISK_FULL = ChainResult(ChainStatus.DISK_FULL)
INTERNAL_ERROR = ChainResult(ChainStatus.INTERNAL_ERROR)
DISK_ERROR = ChainResult(ChainStatus.DISK_ERROR)


def cluster_to_sector(volume: FatVolume, cluster: int) -> int:
    """Return the first sector of ``cluster``, or 0 if ``cluster`` is invalid."""
    if not 2 <= cluster < volume.n_fatent:
        return 0
    return volume.database + volume.csize * (cluster - 2)


def remove_chain(volume: FatVolume, cluster: int, previous: int = 0) -> FileResult:
    """Free the chain starting at ``cluster``.

    If ``previous`` is not 0, it is marked as the new end of the chain, which is
    how a chain is truncated instead of removed.
    """
    if not 2 <= cluster < volume.n_fatent:
        return FileResult.INTERNAL_ERROR

    fat = volume.fat
    if previous:
        result = fat.put(previous, CLUSTER_EOC)
        if result is not FileResult.OK:
            return result

    while cluster < volume.n_fatent:
        next_cluster = fat.get(cluster)
        if isinstance(next_cluster, FileResult):
            return next_cluster
        if next_cluster == CLUSTER_EMPTY:
            break  # already free
        if next_cluster == 1:
            return FileResult.INTERNAL_ERROR

        result = fat.put(cluster, CLUSTER_EMPTY)
        if result is not FileResult.OK:
            return result

        if volume.free_clst < volume.n_fatent - 2:
            volume.free_clst += 1
            volume.fsi_flag |= FSI_DIRTY
        cluster = next_cluster
    return FileResult.OK


def create_chain(volume: FatVolume, cluster: int = 0) -> ChainResult:
    """Allocate a cluster, starting a new chain if ``cluster`` is 0 or appending it
    to the chain ending at ``cluster`` otherwise.

    The cluster right after ``cluster`` (or after the last allocated cluster) is
    preferred. If it is taken, the FAT is scanned for a free cluster, wrapping
    around at the end. If ``cluster`` is not the end of its chain, the next
    cluster of the chain is returned and nothing is allocated.
    """
    fat = volume.fat

    if cluster == 0:
        start = volume.last_clst
        if start == 0 or start >= volume.n_fatent:
            start = 1
    else:
        value = fat.get(cluster)
        if isinstance(value, FileResult):
            return ChainResult.from_result(value)
        if value < 2:
            return INTERNAL_ERROR
        if value < volume.n_fatent:
            return ChainResult.allocated(value)  # already followed by a cluster
        start = cluster

    if volume.free_clst == 0:
        return DISK_FULL

    new = 0
    if start == cluster:
        # Try the contiguous cluster first
        new = start + 1
        if new >= volume.n_fatent:
            new = 2
        value = fat.get(new)
        if isinstance(value, FileResult):
            return ChainResult.from_result(value)
        if value != CLUSTER_EMPTY:
            last = volume.last_clst
            if 2 <= last < volume.n_fatent:
                start = last
            new = 0

    if new == 0:
        new = start
        while True:
            new += 1
            if new >= volume.n_fatent:
                new = 2
                if new > start:
                    return DISK_FULL
            value = fat.get(new)
            if isinstance(value, FileResult):
                return ChainResult.from_result(value)
            if value == CLUSTER_EMPTY:
                break
            if new == start:
                return DISK_FULL

    result = fat.put(new, CLUSTER_EOC)
    if result is FileResult.OK and cluster:
        result = fat.put(cluster, new)
    if result is not FileResult.OK:
        log.debug(f'Failed to link cluster {new} into chain: {result.name}')
        return ChainResult.from_result(result)

    volume.last_clst = new
    if volume.free_clst <= volume.n_fatent - 2:
        volume.free_clst -= 1
    volume.fsi_flag |= FSI_DIRTY
    return ChainResult.allocated(new)


def clear_cluster(volume: FatVolume, cluster: int) -> FileResult:
    """Zero-fill all sectors of ``cluster``.

    Afterwards, the window holds the (zeroed) first sector of the cluster so that
    directory entries can be placed in it right away.
    """
    window = volume.window
    result = window.sync()
    if result is not FileResult.OK:
        return result

    sector = cluster_to_sector(volume, cluster)
    if sector == 0:
        return FileResult.INTERNAL_ERROR

    window.clear(sector)
    for i in range(volume.csize):
        disk_result = volume.device.write(volume.drive, window.buffer, sector + i, 1)
        if disk_result is not DiskResult.OK:
            return FileResult.DISK_ERROR
    return FileResult.OK
