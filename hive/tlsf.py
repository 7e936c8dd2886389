"""Two-level segregated fit allocator over a simulated address range.

Addresses are plain integers. Block headers are kept in a table keyed by
the header address, laid out exactly as they would sit in memory: a block
at address ``a`` with size ``s`` hands out data at ``a + 16`` and its
physical successor starts at ``a + 8 + s``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

from .bits import (
    ALIGN_SIZE,
    BLOCK_HEADER_OVERHEAD,
    BLOCK_HEADER_SIZE,
    BLOCK_SIZE_MAX,
    BLOCK_SIZE_MIN,
    BLOCK_START_OFFSET,
    FL_INDEX_COUNT,
    POINTER_SIZE,
    SL_INDEX_COUNT,
    adjust_request_size,
    align_down,
    align_up,
    ffs,
    mapping_insert,
    mapping_search,
)

_FREE_BIT = 1 << 0
_PREV_FREE_BIT = 1 << 1
_FLAG_MASK = _FREE_BIT | _PREV_FREE_BIT
_WORD_MASK = 0xFFFFFFFF

# Bytes taken by the control structure when it sits in front of a pool.
CONTROL_SIZE = (
    align_up(BLOCK_HEADER_SIZE + 4 + 4 * FL_INDEX_COUNT, POINTER_SIZE)
    + FL_INDEX_COUNT * SL_INDEX_COUNT * POINTER_SIZE
)

# Overhead of a pool: the size field of its first block and of the sentinel.
POOL_OVERHEAD = 2 * BLOCK_HEADER_OVERHEAD


class TlsfError(Exception):
    """Raised when the allocator's structures are used inconsistently."""


@dataclass(eq=False)
class _Block:
    address: int
    raw_size: int = 0
    prev_phys: Optional[int] = None

    @property
    def size(self) -> int:
        return self.raw_size & ~_FLAG_MASK

    @size.setter
    def size(self, value: int) -> None:
        self.raw_size = value | (self.raw_size & _FLAG_MASK)

    @property
    def free(self) -> bool:
        return bool(self.raw_size & _FREE_BIT)

    @free.setter
    def free(self, value: bool) -> None:
        if value:
            self.raw_size |= _FREE_BIT
        else:
            self.raw_size &= ~_FREE_BIT

    @property
    def prev_free(self) -> bool:
        return bool(self.raw_size & _PREV_FREE_BIT)

    @prev_free.setter
    def prev_free(self, value: bool) -> None:
        if value:
            self.raw_size |= _PREV_FREE_BIT
        else:
            self.raw_size &= ~_PREV_FREE_BIT

    @property
    def is_last(self) -> bool:
        return self.size == 0

    @property
    def ptr(self) -> int:
        return self.address + BLOCK_START_OFFSET


class Tlsf:
    """A TLSF allocator managing one or more pools of address space."""

    def __init__(self) -> None:
        self._fl_bitmap = 0
        self._sl_bitmap = [0] * FL_INDEX_COUNT
        self._lists: list[list[list[_Block]]] = [
            [[] for _ in range(SL_INDEX_COUNT)] for _ in range(FL_INDEX_COUNT)
        ]
        self._headers: dict[int, _Block] = {}
        self.pools: list[int] = []

    # Block navigation

    def _header(self, address: int) -> _Block:
        try:
            return self._headers[address]
        except KeyError:
            raise TlsfError(f"no block header at {address:#x}") from None

    def _from_ptr(self, ptr: int) -> _Block:
        return self._header(ptr - BLOCK_START_OFFSET)

    def _next(self, block: _Block) -> _Block:
        if block.is_last:
            raise TlsfError("last block has no successor")
        return self._header(block.address + BLOCK_HEADER_OVERHEAD + block.size)

    def _prev(self, block: _Block) -> _Block:
        if not block.prev_free or block.prev_phys is None:
            raise TlsfError("previous block must be free")
        return self._header(block.prev_phys)

    def _link_next(self, block: _Block) -> _Block:
        nxt = self._next(block)
        nxt.prev_phys = block.address
        return nxt

    def _mark_as_free(self, block: _Block) -> None:
        nxt = self._link_next(block)
        nxt.prev_free = True
        block.free = True

    def _mark_as_used(self, block: _Block) -> None:
        nxt = self._next(block)
        nxt.prev_free = False
        block.free = False

    # Free lists

    def _remove_free_block(self, block: _Block, fl: int, sl: int) -> None:
        bucket = self._lists[fl][sl]
        try:
            bucket.remove(block)
        except ValueError:
            raise TlsfError("block is not on its free list") from None
        if not bucket:
            self._sl_bitmap[fl] &= ~(1 << sl)
            if not self._sl_bitmap[fl]:
                self._fl_bitmap &= ~(1 << fl)

    def _insert_free_block(self, block: _Block, fl: int, sl: int) -> None:
        if block.ptr % ALIGN_SIZE:
            raise TlsfError("block not aligned properly")
        self._lists[fl][sl].insert(0, block)
        self._fl_bitmap |= 1 << fl
        self._sl_bitmap[fl] |= 1 << sl

    def _block_remove(self, block: _Block) -> None:
        fl, sl = mapping_insert(block.size)
        self._remove_free_block(block, fl, sl)

    def _block_insert(self, block: _Block) -> None:
        fl, sl = mapping_insert(block.size)
        self._insert_free_block(block, fl, sl)

    def _search_suitable_block(
        self, fl: int, sl: int
    ) -> Optional[tuple[_Block, int, int]]:
        sl_map = self._sl_bitmap[fl] & ((_WORD_MASK << sl) & _WORD_MASK)
        if not sl_map:
            fl_map = self._fl_bitmap & ((_WORD_MASK << (fl + 1)) & _WORD_MASK)
            if not fl_map:
                return None
            fl = ffs(fl_map)
            sl_map = self._sl_bitmap[fl]
        if not sl_map:
            raise TlsfError("internal error - second level bitmap is null")
        sl = ffs(sl_map)
        return self._lists[fl][sl][0], fl, sl

    # Splitting and coalescing

    @staticmethod
    def _can_split(block: _Block, size: int) -> bool:
        return block.size >= BLOCK_HEADER_SIZE + size

    def _split(self, block: _Block, size: int) -> _Block:
        remaining = _Block(block.ptr + size - BLOCK_HEADER_OVERHEAD)
        remain_size = block.size - (size + BLOCK_HEADER_OVERHEAD)
        if remaining.ptr % ALIGN_SIZE:
            raise TlsfError("remaining block not aligned properly")
        if remain_size < BLOCK_SIZE_MIN:
            raise TlsfError("block split with invalid size")
        remaining.size = remain_size
        self._headers[remaining.address] = remaining
        block.size = size
        self._mark_as_free(remaining)
        return remaining

    def _absorb(self, prev: _Block, block: _Block) -> _Block:
        if prev.is_last:
            raise TlsfError("previous block can't be last")
        prev.raw_size += block.size + BLOCK_HEADER_OVERHEAD
        del self._headers[block.address]
        self._link_next(prev)
        return prev

    def _merge_prev(self, block: _Block) -> _Block:
        if block.prev_free:
            prev = self._prev(block)
            if not prev.free:
                raise TlsfError("prev block is not free though marked as such")
            self._block_remove(prev)
            block = self._absorb(prev, block)
        return block

    def _merge_next(self, block: _Block) -> _Block:
        nxt = self._next(block)
        if nxt.free:
            self._block_remove(nxt)
            block = self._absorb(block, nxt)
        return block

    def _trim_free(self, block: _Block, size: int) -> None:
        if not block.free:
            raise TlsfError("block must be free")
        if self._can_split(block, size):
            remaining = self._split(block, size)
            self._link_next(block)
            remaining.prev_free = True
            self._block_insert(remaining)

    def _trim_used(self, block: _Block, size: int) -> None:
        if block.free:
            raise TlsfError("block must be used")
        if self._can_split(block, size):
            remaining = self._split(block, size)
            remaining.prev_free = False
            remaining = self._merge_next(remaining)
            self._block_insert(remaining)

    def _trim_free_leading(self, block: _Block, size: int) -> _Block:
        remaining = block
        if self._can_split(block, size):
            remaining = self._split(block, size - BLOCK_HEADER_OVERHEAD)
            remaining.prev_free = True
            self._link_next(block)
            self._block_insert(block)
        return remaining

    def _locate_free(self, size: int) -> Optional[_Block]:
        if not size:
            return None
        fl, sl = mapping_search(size)
        if fl >= FL_INDEX_COUNT:
            return None
        found = self._search_suitable_block(fl, sl)
        if found is None:
            return None
        block, fl, sl = found
        if block.size < size:
            raise TlsfError("located block is smaller than requested")
        self._remove_free_block(block, fl, sl)
        return block

    def _prepare_used(self, block: _Block, size: int) -> int:
        self._trim_free(block, size)
        self._mark_as_used(block)
        return block.ptr

    # Pools

    def add_pool(self, base: int, size: int) -> int:
        """Hand the range ``[base, base + size)`` to the allocator."""
        pool_bytes = align_down(size - POOL_OVERHEAD, ALIGN_SIZE)
        if base % ALIGN_SIZE:
            raise TlsfError(f"memory must be aligned by {ALIGN_SIZE} bytes")
        if not BLOCK_SIZE_MIN <= pool_bytes <= BLOCK_SIZE_MAX:
            raise TlsfError(
                "memory size must be between "
                f"{POOL_OVERHEAD + BLOCK_SIZE_MIN} and "
                f"{POOL_OVERHEAD + BLOCK_SIZE_MAX} bytes"
            )

        block = _Block(base - BLOCK_HEADER_OVERHEAD)
        block.size = pool_bytes
        block.free = True
        block.prev_free = False
        self._headers[block.address] = block
        self._block_insert(block)

        sentinel = _Block(block.address + BLOCK_HEADER_OVERHEAD + pool_bytes)
        self._headers[sentinel.address] = sentinel
        self._link_next(block)
        sentinel.size = 0
        sentinel.free = False
        sentinel.prev_free = True

        self.pools.append(base)
        return base

    def remove_pool(self, pool: int) -> None:
        """Withdraw a pool; every block in it must have been freed."""
        block = self._header(pool - BLOCK_HEADER_OVERHEAD)
        if not block.free:
            raise TlsfError("block should be free")
        nxt = self._next(block)
        if nxt.free:
            raise TlsfError("next block should not be free")
        if nxt.size != 0:
            raise TlsfError("next block size should be zero")
        self._block_remove(block)
        del self._headers[nxt.address]
        del self._headers[block.address]
        if pool in self.pools:
            self.pools.remove(pool)

    # Allocation interface

    def malloc(self, size: int) -> Optional[int]:
        """Allocate ``size`` bytes; None for a zero request."""
        if not size:
            return None
        adjust = adjust_request_size(size, ALIGN_SIZE)
        block = self._locate_free(adjust)
        if block is None:
            raise MemoryError(f"cannot allocate {size} bytes")
        return self._prepare_used(block, adjust)

    def memalign(self, align: int, size: int) -> Optional[int]:
        """Allocate ``size`` bytes at an address aligned to ``align``."""
        if align <= 0 or align & (align - 1):
            raise ValueError(f"alignment must be a power of two, got {align}")
        if not size:
            return None
        adjust = adjust_request_size(size, ALIGN_SIZE)

        # Room for a leading free block if the alignment gap is too small.
        gap_minimum = BLOCK_HEADER_SIZE
        size_with_gap = adjust_request_size(adjust + align + gap_minimum, align)
        aligned_size = size_with_gap if adjust and align > ALIGN_SIZE else adjust

        block = self._locate_free(aligned_size)
        if block is None:
            raise MemoryError(f"cannot allocate {size} bytes aligned to {align}")

        ptr = block.ptr
        aligned = align_up(ptr, align)
        gap = aligned - ptr
        if gap and gap < gap_minimum:
            offset = max(gap_minimum - gap, align)
            aligned = align_up(aligned + offset, align)
            gap = aligned - ptr
        if gap:
            block = self._trim_free_leading(block, gap)
        return self._prepare_used(block, adjust)

    def realloc(self, ptr: Optional[int], size: int) -> Optional[int]:
        """Resize an allocation, moving it if it cannot grow in place.

        A None pointer allocates; a zero size frees and returns None. A
        request that cannot be met raises MemoryError and leaves the
        original allocation untouched.
        """
        if ptr is not None and size == 0:
            self.free(ptr)
            return None
        if ptr is None:
            return self.malloc(size)

        block = self._from_ptr(ptr)
        if block.free:
            raise TlsfError("block already marked as free")
        nxt = self._next(block)
        cursize = block.size
        combined = cursize + nxt.size + BLOCK_HEADER_OVERHEAD
        adjust = adjust_request_size(size, ALIGN_SIZE)
        if not adjust:
            raise MemoryError(f"cannot allocate {size} bytes")

        if adjust > cursize and (not nxt.free or adjust > combined):
            moved = self.malloc(size)
            self.free(ptr)
            return moved

        if adjust > cursize:
            self._merge_next(block)
            self._mark_as_used(block)
        self._trim_used(block, adjust)
        return ptr

    def free(self, ptr: Optional[int]) -> None:
        """Return an allocation to the pool; None is ignored."""
        if ptr is None:
            return
        block = self._from_ptr(ptr)
        if block.free:
            raise TlsfError("block already marked as free")
        self._mark_as_free(block)
        block = self._merge_prev(block)
        block = self._merge_next(block)
        self._block_insert(block)

    def block_size(self, ptr: Optional[int]) -> int:
        """Internal size of the block behind ``ptr``, 0 for None."""
        if ptr is None:
            return 0
        return self._from_ptr(ptr).size

    # Debugging

    def walk_pool(self, pool: int) -> Iterator[tuple[int, int, bool]]:
        """Yield ``(ptr, size, used)`` for every block of a pool in order."""
        block = self._header(pool - BLOCK_HEADER_OVERHEAD)
        while not block.is_last:
            yield block.ptr, block.size, not block.free
            block = self._next(block)

    def check(self) -> int:
        """Verify free lists and bitmaps; 0 if sound, negative otherwise."""
        status = 0
        for i in range(FL_INDEX_COUNT):
            for j in range(SL_INDEX_COUNT):
                fl_map = self._fl_bitmap & (1 << i)
                sl_list = self._sl_bitmap[i]
                sl_map = sl_list & (1 << j)
                bucket = self._lists[i][j]

                if not fl_map and sl_map:
                    status -= 1
                if not sl_map:
                    if bucket:
                        status -= 1
                    continue
                if not sl_list:
                    status -= 1
                if not bucket:
                    status -= 1

                for block in bucket:
                    nxt = self._next(block)
                    if not block.free:
                        status -= 1
                    if block.prev_free:
                        status -= 1
                    if nxt.free:
                        status -= 1
                    if not nxt.prev_free:
                        status -= 1
                    if block.size < BLOCK_SIZE_MIN:
                        status -= 1
                    if mapping_insert(block.size) != (i, j):
                        status -= 1
        return status

    def check_pool(self, pool: int) -> int:
        """Verify the physical chain of a pool; 0 if sound, negative otherwise."""
        status = 0
        prev_status = False
        for ptr, size, _used in self.walk_pool(pool):
            block = self._from_ptr(ptr)
            if block.prev_free != prev_status:
                status -= 1
            if size != block.size:
                status -= 1
            prev_status = block.free
        return status


def create_with_pool(base: int, size: int) -> Tlsf:
    """Build an allocator whose control data and pool share one range."""
    if base % ALIGN_SIZE:
        raise TlsfError(f"memory must be aligned to {ALIGN_SIZE} bytes")
    tlsf = Tlsf()
    tlsf.add_pool(base + CONTROL_SIZE, size - CONTROL_SIZE)
    return tlsf