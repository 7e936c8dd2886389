"""Mapping of virtual memory regions onto physical memory, page by page."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable

from .bits import align_down, align_up
from .pmem import PAGESIZE


class PageSize(enum.IntEnum):
    """Page sizes a single map operation may use."""

    PAGE_4K = 0
    PAGE_2M = 1
    PAGE_1G = 2

    @property
    def bytes(self) -> int:
        """Number of bytes a page of this size covers."""
        return {
            PageSize.PAGE_4K: 1 << 12,
            PageSize.PAGE_2M: 1 << 21,
            PageSize.PAGE_1G: 1 << 30,
        }[self]


@dataclass(frozen=True)
class VmemRegion:
    """A virtual range backed by a physical range of the same length."""

    vma: int
    pma: int
    length: int


# Called as mapper(vma, pma, prot, page_size); raises if the page cannot be mapped.
Mapper = Callable[[int, int, int, PageSize], object]


def map_region(mapper: Mapper, region: VmemRegion, prot: int) -> int:
    """Map ``region`` one 4 KiB page at a time through ``mapper``.

    Both bases are rounded down and the length rounded up to a page
    boundary. Any exception raised by ``mapper`` stops the walk and
    propagates; pages mapped before it stay mapped. Returns the number
    of pages mapped.
    """
    if mapper is None or region is None:
        raise ValueError("a mapper and a region are required")

    pbase = align_down(region.pma, PAGESIZE)
    vbase = align_down(region.vma, PAGESIZE)
    length = align_up(region.length, PAGESIZE)

    pages = 0
    for offset in range(0, length, PAGESIZE):
        mapper(vbase + offset, pbase + offset, prot, PageSize.PAGE_4K)
        pages += 1
    return pages