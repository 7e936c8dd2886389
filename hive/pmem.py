"""Physical page-frame allocator driven by a boot memory map.

A bitmap holds one bit per page frame: set means allocated or unusable,
clear means free. Every frame starts out set and the usable ranges of the
memory map are then cleared.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Iterable

from .bits import align_up

PAGESIZE = 4096

UNIT_MIB = 1 << 20
UNIT_GIB = 1 << 30

_log = logging.getLogger(__name__)


class MemType(enum.IntEnum):
    """Kinds of memory map entries reported by the boot protocol."""

    USABLE = 0
    RESERVED = 1
    ACPI_RECLAIM = 2
    ACPI_NVS = 3
    BAD = 4
    BOOTLOADER = 5
    KERNEL = 6
    FRAMEBUFFER = 7


@dataclass
class MemEntry:
    """One range of the physical memory map."""

    base: int
    length: int
    type: MemType

    def __post_init__(self) -> None:
        self.type = MemType(self.type)

    @property
    def end(self) -> int:
        return self.base + self.length


def format_size(size: int) -> str:
    """Render a byte count in GiB, MiB or bytes, truncating."""
    if size >= UNIT_GIB:
        return f"{size // UNIT_GIB} GiB"
    if size >= UNIT_MIB:
        return f"{size // UNIT_MIB} MiB"
    return f"{size} bytes"


class PhysicalMemory:
    """Bitmap allocator for physical page frames."""

    def __init__(self, memory_map: Iterable[MemEntry], kernel_base: int) -> None:
        self.kernel_base = kernel_base
        self.memory_map = tuple(memory_map)
        self._lock = threading.Lock()

        _log.debug("pmem: probing physical memory...")
        usable = [e for e in self.memory_map if e.type is MemType.USABLE]
        self.usable = sum(e.length for e in usable)
        self.usable_top = max((e.end for e in usable), default=0)
        self.bitmap_size = align_up(self.usable // PAGESIZE, 8) // 8
        _log.info("pmem: usable: %s", format_size(self.usable))
        _log.info("pmem: bitmap: %s", format_size(self.bitmap_size))

        _log.debug("pmem: allocating bitmap...")
        home = next((e for e in usable if e.length >= self.bitmap_size), None)
        if home is None:
            raise MemoryError("pmem: no usable memory can hold the frame bitmap")
        self.bitmap_address = self.phys_to_virt(home.base)

        frames = align_up(self.usable_top, PAGESIZE) // PAGESIZE
        self._bitmap = bytearray(b"\xff" * max(self.bitmap_size, (frames + 7) // 8))
        for entry in usable:
            self._set_range(entry.base, entry.end, allocated=False)

    def _test(self, frame: int) -> bool:
        return bool(self._bitmap[frame // 8] & (1 << (frame % 8)))

    def _set_range(self, start: int, end: int, allocated: bool) -> None:
        first = align_up(start, PAGESIZE) // PAGESIZE
        last = align_up(end, PAGESIZE) // PAGESIZE
        if last > len(self._bitmap) * 8:
            raise ValueError(f"range {start:#x}-{end:#x} lies outside managed memory")
        for frame in range(first, last):
            if allocated:
                self._bitmap[frame // 8] |= 1 << (frame % 8)
            else:
                self._bitmap[frame // 8] &= ~(1 << (frame % 8)) & 0xFF

    def _find_run(self, count: int) -> int | None:
        start = None
        found = 0
        for frame in range(self.usable_top // PAGESIZE):
            if self._test(frame):
                start = None
                found = 0
                continue
            if start is None:
                start = frame
            found += 1
            if found >= count:
                return start
        return None

    def alloc(self, count: int) -> int:
        """Allocate ``count`` contiguous frames and return their base address."""
        if count < 1:
            raise ValueError(f"frame count must be positive, got {count}")
        with self._lock:
            start = self._find_run(count)
            if start is None:
                raise MemoryError(f"pmem: no run of {count} free frames")
            base = start * PAGESIZE
            self._set_range(base, base + count * PAGESIZE, allocated=True)
            return base

    def free(self, base: int, count: int) -> None:
        """Return ``count`` frames starting at ``base`` to the free set."""
        with self._lock:
            self._set_range(base, base + count * PAGESIZE, allocated=False)

    def is_allocated(self, address: int) -> bool:
        """Whether the frame holding ``address`` is in use or unusable."""
        frame = address // PAGESIZE
        if frame >= len(self._bitmap) * 8:
            return True
        return self._test(frame)

    def phys_to_virt(self, phys: int) -> int:
        """Translate a physical address into the kernel's mapping of it."""
        return phys + self.kernel_base