"""
FileStorage: append-only log backend for shorty
===============================================

The log file is the durable source of truth: one JSON object per line,
`{"uuid": 3, "short_url": "aB3xY9", "original_url": "...", "user_id": 7, "deleted": false}`.
At construction the whole log is replayed into an in-memory mirror that has
exactly the shape of the table backend (this class *is* a table backend
with a persistence hook).

Key Design Points
-----------------
- **Atomic appends**: every line is written by a single `os.write` on an
  `O_APPEND` descriptor while the store lock is held, so lines never
  interleave and a record is on disk before it becomes visible.
- **Tombstones are appended**: soft delete writes a full record line with
  `deleted: true`. On replay the last line for a short code wins, so a
  crash after a delete never resurrects the URL.
- **Torn tails**: a crash mid-write can leave a partial last line. It is
  truncated away with a warning. A bad line anywhere else means the file is
  corrupted and construction fails with StorageCorruptedError.
- **Compaction**: `compact()` rewrites the log to one line per short code
  through a temp file and `os.replace`.

Example
-------
>>> storage = FileStorage(path="/tmp/short-url-db.json")
>>> storage.save(1, "123456", "https://www.google.com")
>>> storage.resolve("123456")
'https://www.google.com'
"""

import os
import tempfile
from typing import List, Optional

from pydantic import ValidationError

from .base import log
from .errors import StorageCorruptedError, UnavailableError
from .models import URLRecord
from .storage import Storage


class FileStorage(Storage):
    """Append-only JSON-lines log with an in-memory mirror.

    Parameters
    ----------
    path : str
        Log file location; created (with parent directories) if missing.
    fsync : bool
        fsync the descriptor after every append.
    """

    def __init__(self, path: str, fsync: bool = False, **kwargs) -> None:
        super().__init__(**kwargs)
        if not path:
            raise ValueError("path is required for the file storage backend")
        self.path = path
        self.fsync = fsync
        parent = os.path.dirname(os.path.abspath(path))
        try:
            os.makedirs(parent, exist_ok=True)
            # Touch the file so is_ready() reflects a usable location from the start.
            os.close(os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o644))
        except OSError as e:
            raise UnavailableError(f"cannot open file storage {self.path}: {e}") from e
        self._replay()

    # ---- Internal helpers -------------------------------------------------

    def _replay(self) -> None:
        """Rebuild the in-memory mirror from the log."""
        with open(self.path, "rb") as f:
            data = f.read()
        lines = data.split(b"\n")
        # A file ending with "\n" produces a trailing empty chunk.
        if lines and lines[-1] == b"":
            lines.pop()
        count = 0
        offset = 0
        for lineno, line in enumerate(lines, start=1):
            start, offset = offset, offset + len(line) + 1
            if not line.strip():
                continue
            try:
                record = URLRecord.from_line(line.decode("utf-8"))
            except (ValidationError, UnicodeDecodeError) as e:
                if lineno == len(lines):
                    log.warning("truncating torn last line %d of %s", lineno, self.path)
                    os.truncate(self.path, start)
                    data = data[:start]
                    continue
                raise StorageCorruptedError(f"{self.path}:{lineno}: cannot decode record: {e}") from e
            self._apply(record)
            count += 1
        if data and not data.endswith(b"\n"):
            # Last record is intact but unterminated; terminate it before appending.
            with open(self.path, "ab") as f:
                f.write(b"\n")
        log.info("file storage %s replayed %d line(s), last sequence %d", self.path, count, self._last_sequence)

    def _append(self, record: URLRecord) -> None:
        data = record.to_line()
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o644)
        try:
            written = os.write(fd, data)
            if written != len(data):
                raise OSError(f"short write to {self.path}: {written} of {len(data)} bytes")
            if self.fsync:
                os.fsync(fd)
        finally:
            os.close(fd)

    # ---- Contract overrides -----------------------------------------------

    def is_ready(self) -> bool:
        return os.path.isfile(self.path) and os.access(self.path, os.R_OK | os.W_OK)

    # ---- Optional helpers -------------------------------------------------

    def compact(self) -> int:
        """Rewrite the log keeping only the latest line per short code.

        Returns the number of lines written.
        """
        with self._lock:
            records: List[URLRecord] = sorted(self.urls.values(), key=lambda r: r.sequence_id)
            directory = os.path.dirname(os.path.abspath(self.path))
            fd, tmp_path = tempfile.mkstemp(prefix=".compact-", dir=directory)
            try:
                with os.fdopen(fd, "wb") as tmp:
                    for record in records:
                        tmp.write(record.to_line())
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                _unlink_quietly(tmp_path)
                raise
        log.info("compacted %s to %d line(s)", self.path, len(records))
        return len(records)


def _unlink_quietly(path: Optional[str]) -> None:
    if path and os.path.exists(path):
        os.unlink(path)
