from __future__ import annotations

import csv
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, TextIO

from .cursor import Cursor


@contextmanager
def open_output(path: Optional[Path]) -> Iterator[TextIO]:
    """Yield a text sink for CSV: the file at `path` (parents created) or stdout."""
    if path is None:
        yield sys.stdout
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as fh:
        yield fh


def write_csv(cursor: Cursor, fh: TextIO) -> int:
    """Stream the cursor's header and rows to `fh`. Returns the number of data rows.

    Stops at exhaustion or failure; callers check `cursor.error` afterwards.
    """
    writer = csv.writer(fh, lineterminator="\n")
    writer.writerow(cursor.column_names())
    n = 0
    for row in cursor:
        writer.writerow(row)
        n += 1
    fh.flush()
    return n
