"""Read-through cache of CSV files.

The cache is shared by the whole job. Each file is read once; repairs
mutate the cached rows and mark the file dirty. ``flush`` writes dirty
files and is serialized by a lock so it never runs concurrently with
itself.

Usage:
    cache = CsvCache(output_directory=base / "source")
    rows = await cache.read(base / "Account.csv")
    rows[0]["Name"] = rows[0]["Name"].strip()
    cache.mark_dirty(base / "Account.csv")
    await cache.flush()
"""

import asyncio
import logging
from pathlib import Path

from data_migrator.files.codec import read_csv, write_csv

logger = logging.getLogger(__name__)


class CsvCache:
    """CSV rows keyed by file path.

    Args:
        output_directory: Where dirty files are written on flush. When
            ``None`` they overwrite the files they were read from.
    """

    def __init__(self, output_directory: Path | None = None) -> None:
        self.output_directory = output_directory
        self._data: dict[Path, list[dict]] = {}
        self._columns: dict[Path, list[str]] = {}
        self._dirty: set[Path] = set()
        self._next_id = 0
        self._lock = asyncio.Lock()

    def __contains__(self, path: Path) -> bool:
        return path in self._data

    @property
    def dirty_paths(self) -> set[Path]:
        return set(self._dirty)

    async def read(self, path: Path) -> list[dict]:
        """Rows of ``path``; the file is read on first access only."""
        if path not in self._data:
            rows = await asyncio.to_thread(read_csv, path)
            self._data[path] = rows
            self._columns[path] = list(dict.fromkeys(k for row in rows for k in row))
        return self._data[path]

    def columns(self, path: Path) -> list[str]:
        """Columns of a cached file, in file order plus added columns."""
        columns = self._columns.setdefault(path, [])
        for row in self._data.get(path, []):
            for key in row:
                if key not in columns:
                    columns.append(key)
        return columns

    def mark_dirty(self, path: Path) -> None:
        self._dirty.add(path)

    def next_id(self) -> str:
        """Placeholder record id for rows without one."""
        self._next_id += 1
        return f"ID{self._next_id:013d}"

    def output_path(self, path: Path) -> Path:
        if self.output_directory is None:
            return path
        return self.output_directory / path.name

    async def flush(self) -> list[Path]:
        """Write every dirty file and return the written paths."""
        async with self._lock:
            written: list[Path] = []
            for path in sorted(self._dirty):
                output = self.output_path(path)
                await asyncio.to_thread(
                    write_csv, output, self._data.get(path, []), self.columns(path)
                )
                written.append(output)
            self._dirty.clear()
            if written:
                logger.debug(f"Flushed {len(written)} CSV files")
            return written
