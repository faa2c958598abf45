from __future__ import annotations

from typing import Any, List, Optional, Protocol, Sequence, Tuple


Row = List[str]


class PageSource(Protocol):
    """Fetches raw pages at a logical offset and decodes their rows."""

    def fetch_page(self, offset: int) -> Sequence[Any]:
        ...

    def decode_row(self, raw: Any) -> Row:
        ...


class ChunkFetcher:
    """Holds one decoded page (chunk) of rows and a chunk-local position.

    The position starts at -1 after every fetch, meaning no row is selected
    until `advance()` is called.
    """

    def __init__(self, source: PageSource, columns: Sequence[str]):
        self._source = source
        self._columns: Tuple[str, ...] = tuple(columns)
        self._rows: List[Row] = []
        self._chunk_offset = -1
        self._chunk_size = 0
        self._loaded = False

    def column_names(self) -> Tuple[str, ...]:
        return self._columns

    def fetch_next(self, offset: int) -> int:
        """Replace the current chunk with the page at logical `offset`.

        Raises FetchError / DecodeError from the source; the previous chunk is
        kept intact in that case. Returns the new chunk size (0 = end of stream).
        """
        raw_rows = self._source.fetch_page(offset)
        rows = [self._source.decode_row(raw) for raw in raw_rows]
        self._rows = rows
        self._chunk_size = len(rows)
        self._chunk_offset = -1
        self._loaded = True
        return self._chunk_size

    def advance(self) -> None:
        self._chunk_offset += 1

    def exhausted(self) -> bool:
        return self._chunk_offset >= self._chunk_size

    def loaded(self) -> bool:
        """True once any fetch has succeeded."""
        return self._loaded

    def is_empty(self) -> bool:
        return self._chunk_size == 0

    def current_row(self) -> Optional[Row]:
        if 0 <= self._chunk_offset < self._chunk_size:
            return self._rows[self._chunk_offset]
        return None
