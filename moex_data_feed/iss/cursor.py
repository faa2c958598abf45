from __future__ import annotations

from typing import Iterator, Optional, Tuple

from .chunks import ChunkFetcher, Row
from .errors import IssError


class Cursor:
    """Forward-only row stream over a paged source.

    Chunk boundaries are hidden: when the current chunk runs out the next one
    is fetched at the number of rows produced so far. An empty page ends the
    stream; a failed fetch ends it with `error` set. Both states are final.
    """

    def __init__(self, fetcher: ChunkFetcher):
        if not fetcher.loaded():
            raise ValueError("cursor needs a fetcher with chunk 0 loaded; use prepare_cursor()")
        self._cf = fetcher
        self._done = False
        self._err: Optional[IssError] = None
        self._offset = 0

    def advance(self) -> bool:
        if self._err is not None or self._done:
            return False

        self._cf.advance()

        if self._cf.exhausted():
            if self._cf.is_empty():
                # chunk 0 came back empty in prepare_cursor
                self._done = True
                return False
            try:
                self._cf.fetch_next(self._offset)
            except IssError as e:
                self._err = e
                return False
            if self._cf.is_empty():
                self._done = True
                return False
            # first row of the new chunk
            self._cf.advance()

        self._offset += 1
        return True

    def current_row(self) -> Optional[Row]:
        return self._cf.current_row()

    def column_names(self) -> Tuple[str, ...]:
        return self._cf.column_names()

    @property
    def error(self) -> Optional[IssError]:
        return self._err

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def done(self) -> bool:
        return self._done

    def __iter__(self) -> Iterator[Row]:
        while self.advance():
            row = self.current_row()
            if row is not None:
                yield row


def prepare_cursor(fetcher: ChunkFetcher) -> Cursor:
    """Load chunk 0 eagerly and bind a cursor to the fetcher.

    Errors from the first fetch propagate to the caller.
    """
    fetcher.fetch_next(0)
    return Cursor(fetcher)
