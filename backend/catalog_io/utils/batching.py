"""Helper functions for chunking iterables."""
from collections.abc import Iterable, Iterator
from itertools import islice
from typing import TypeVar

T = TypeVar("T")


def chunked(iterable: Iterable[T], size: int) -> Iterator[list[T]]:
    """Yield successive chunks of at most ``size`` items, preserving order."""
    if size < 1:
        raise ValueError("Chunk size must be at least 1")
    iterator = iter(iterable)
    while chunk := list(islice(iterator, size)):
        yield chunk


def clamp_batch_size(requested: int | None, default: int, maximum: int) -> int:
    """Resolve a caller-supplied batch size against the configured default and hard cap."""
    if requested is None or requested < 1:
        return default
    return min(requested, maximum)
