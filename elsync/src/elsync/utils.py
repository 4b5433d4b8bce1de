"""
Small helpers shared by the sync components.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from itertools import islice
from typing import TypeVar

T = TypeVar("T")


def chunks(items: Iterable[T], size: int) -> Iterator[list[T]]:
    """
    Split `items` into lists of at most `size` elements.

    Works lazily, so it can be used on unbounded generators: the caller
    decides when to stop pulling chunks.
    """
    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}")

    iterator = iter(items)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk
