"""Storage and thread scopes, and launch geometry taken from call arguments."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Sequence

__all__ = [
    "StorageRank",
    "StorageScope",
    "ThreadScope",
    "ThreadWorkLoad",
    "ThreadAxisConfig",
    "default_storage_rank",
]


class StorageRank(IntEnum):
    """Level of the memory hierarchy."""

    GLOBAL = 0
    SHARED = 1
    WARP = 2
    LOCAL = 3


_RANK_PREFIX = (
    ("global", StorageRank.GLOBAL),
    ("shared", StorageRank.SHARED),
    ("warp", StorageRank.WARP),
    ("local", StorageRank.LOCAL),
)


def default_storage_rank(thread_scope_rank: int) -> StorageRank:
    """Return the default storage rank for a thread scope rank."""
    mapping = {-1: StorageRank.GLOBAL, 0: StorageRank.SHARED, 1: StorageRank.LOCAL}
    try:
        return mapping[thread_scope_rank]
    except KeyError:
        raise ValueError(f"unknown rank {thread_scope_rank}") from None


@dataclass(frozen=True)
class StorageScope:
    """A storage rank with an optional tag for special-purpose memory."""

    rank: StorageRank = StorageRank.GLOBAL
    tag: str = ""

    @classmethod
    def make(cls, text: str) -> "StorageScope":
        """Parse a scope such as ``global`` or ``shared.dyn``."""
        for prefix, rank in _RANK_PREFIX:
            if text.startswith(prefix):
                return cls(rank, text[len(prefix):])
        raise ValueError(f"unknown storage scope {text}")

    def __str__(self) -> str:
        for prefix, rank in _RANK_PREFIX:
            if rank == self.rank:
                return prefix + self.tag
        raise ValueError("unknown storage scope")

    def __hash__(self) -> int:
        return int(self.rank)


@dataclass(frozen=True)
class ThreadScope:
    """Rank of a thread axis and the dimension it indexes."""

    rank: int = 0
    dim_index: int = 0

    @classmethod
    def make(cls, text: str) -> "ThreadScope":
        """Parse ``blockIdx.x``, ``threadIdx.y``, ``vthread`` and the like."""
        if text in ("vthread", "cthread"):
            return cls(1, -1)
        for prefix, rank in (("blockIdx.", 0), ("threadIdx.", 1)):
            if text.startswith(prefix):
                if len(text) <= len(prefix):
                    raise ValueError(f"Unknown threadscope {text}")
                return cls(rank, ord(text[len(prefix)]) - ord("x"))
        raise ValueError(f"Unknown threadscope {text}")


@dataclass(frozen=True)
class ThreadWorkLoad:
    """Grid sizes followed by block sizes, three of each."""

    work_size: tuple[int, int, int, int, int, int] = (1, 1, 1, 1, 1, 1)

    def block_dim(self, i: int) -> int:
        """Return the block size along dimension ``i``."""
        return self.work_size[i + 3]

    def grid_dim(self, i: int) -> int:
        """Return the grid size along dimension ``i``."""
        return self.work_size[i]


class ThreadAxisConfig:
    """Maps trailing call arguments onto launch dimensions."""

    def __init__(self, base: int, thread_axis_tags: Sequence[str]) -> None:
        self._base = base
        self._arg_index_map: list[int] = []
        filled = [False] * 6
        for tag in thread_axis_tags:
            scope = ThreadScope.make(tag)
            index = scope.rank * 3 + scope.dim_index
            if not 0 <= index < 6:
                raise ValueError(f"thread axis {tag} is out of range")
            self._arg_index_map.append(index)
            filled[index] = True
        self._work_dim = 1
        for i in range(3):
            if filled[i] or filled[i + 3]:
                self._work_dim = i + 1

    def extract(self, args: Sequence[int]) -> ThreadWorkLoad:
        """Read the launch sizes from ``args`` starting at the base index."""
        sizes = [1] * 6
        for offset, index in enumerate(self._arg_index_map):
            sizes[index] = int(args[self._base + offset])
        return ThreadWorkLoad(tuple(sizes))

    def work_dim(self) -> int:
        """Return the number of dimensions in use."""
        return self._work_dim