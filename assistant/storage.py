"""JSONL persistence: per-path async locks, atomic temp-file writes, corrupt-line quarantine."""
import asyncio
import json
import logging
import os
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


def _parse_lines(text: str) -> Tuple[List[Record], List[str]]:
    records, corrupt = [], []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            value = json.loads(line)
        except json.JSONDecodeError:
            corrupt.append(line)
            continue
        if isinstance(value, dict):
            records.append(value)
        else:
            corrupt.append(line)
    return records, corrupt


def _dump_lines(records: List[Record]) -> str:
    return "".join(json.dumps(r, ensure_ascii=False) + "\n" for r in records)


def _read_sync(path: str) -> Tuple[List[Record], List[str]]:
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError:
        return [], []
    return _parse_lines(text)


def _write_atomic_sync(path: str, text: str) -> None:
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    tmp = os.path.join(directory, f".{os.path.basename(path)}.{uuid.uuid4().hex}.tmp")
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def _append_sync(path: str, record: Record, max_bytes: Optional[int] = None) -> None:
    # Each append rewrites the file, so cap its size by rotating to <path>.1.
    if max_bytes and os.path.exists(path) and os.path.getsize(path) >= max_bytes:
        os.replace(path, path + ".1")
        logger.info(f"Rotated {path} to {path}.1 at {max_bytes} bytes")
    try:
        with open(path, encoding="utf-8") as f:
            existing = f.read()
    except FileNotFoundError:
        existing = ""
    if existing and not existing.endswith("\n"):
        existing += "\n"
    _write_atomic_sync(path, existing + json.dumps(record, ensure_ascii=False) + "\n")


def _quarantine_sync(path: str, lines: List[str]) -> None:
    with open(path + ".corrupt", "a", encoding="utf-8") as f:
        for line in lines:
            f.write(line + "\n")


class JsonlStore:
    """Serializes writers per file path; readers see either the old or the new file."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, path: str) -> asyncio.Lock:
        key = os.path.abspath(path)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def read(self, path: str) -> List[Record]:
        async with self.lock_for(path):
            return await self._read_locked(path)

    async def _read_locked(self, path: str) -> List[Record]:
        records, corrupt = await asyncio.to_thread(_read_sync, path)
        if corrupt:
            logger.warning(f"Skipped {len(corrupt)} corrupt line(s) in {path}, quarantined to {path}.corrupt")
            # Rewrite without the bad lines so they are quarantined only once.
            await asyncio.to_thread(_quarantine_sync, path, corrupt)
            await asyncio.to_thread(_write_atomic_sync, path, _dump_lines(records))
        return records

    async def append(self, path: str, record: Record, max_bytes: Optional[int] = None) -> None:
        """Append one record. With max_bytes, a full file is first rotated to <path>.1."""
        async with self.lock_for(path):
            await asyncio.to_thread(_append_sync, path, record, max_bytes)

    async def write(self, path: str, records: List[Record]) -> None:
        async with self.lock_for(path):
            await asyncio.to_thread(_write_atomic_sync, path, _dump_lines(records))

    async def update(self, path: str, fn: Callable[[List[Record]], Any]) -> Any:
        """Read-modify-write under the path lock. fn mutates the list in place."""
        async with self.lock_for(path):
            records = await self._read_locked(path)
            out = fn(records)
            await asyncio.to_thread(_write_atomic_sync, path, _dump_lines(records))
            return out
