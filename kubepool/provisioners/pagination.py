"""Lazy pagination over Instance Directory listings."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable

type PageFetcher[R] = Callable[[int, int], Awaitable[list[R]]]
"""Fetch one page: ``(page, size) -> items``. Pages are 1-based."""


async def paginate[R](fetch: PageFetcher[R], size: int) -> AsyncIterator[R]:
    """Yield items page by page until a short page is returned."""
    if size < 1:
        raise ValueError(f"page size must be positive, got {size}")
    page = 1
    while True:
        items = await fetch(page, size)
        for item in items:
            yield item
        if len(items) < size:
            return
        page += 1


class Paginated[R, T]:
    """Restartable lazy sequence built on a paged listing.

    Every ``async for`` starts a fresh scan from page 1; nothing is
    buffered between iterations. ``mapper`` converts a raw item and
    returns None to drop it.

    Example:
        >>> nodes = provisioner.list_nodes("c0ffee")
        >>> async for node in nodes:
        ...     print(node.name)
        >>> snapshot = await nodes.collect()
    """

    def __init__(
        self,
        fetch: PageFetcher[R],
        size: int,
        mapper: Callable[[R], T | None],
    ) -> None:
        self._fetch = fetch
        self._size = size
        self._mapper = mapper

    async def __aiter__(self) -> AsyncIterator[T]:
        async for item in paginate(self._fetch, self._size):
            mapped = self._mapper(item)
            if mapped is not None:
                yield mapped

    async def collect(self) -> list[T]:
        return [item async for item in self]

    async def first(self) -> T | None:
        async for item in self:
            return item
        return None
