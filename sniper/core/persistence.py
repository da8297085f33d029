"""
Flat-file state persistence.

Both state files are rewritten in full on every save: the payload is written
to a temporary file next to the target and swapped in with os.replace, so a
reader never observes a half-written file. Writes to the same file are
serialized with an asyncio.Lock.
"""

import asyncio
import json
import logging
import os
import tempfile
from typing import Any, Dict, Iterable, List, Optional, Set

from ..models.position import Position
from ..utils.time_utils import utc_isoformat


class PersistenceError(Exception):
    """Disk read/write failure on a state file"""
    pass


class JsonStateFile:
    """A JSON document rewritten atomically, one writer at a time."""

    def __init__(self, path: str):
        self.path = path
        self.logger = logging.getLogger(__name__)
        self._write_lock = asyncio.Lock()
        self.write_count = 0
        self.failed_writes = 0

    def read(self) -> Optional[Dict[str, Any]]:
        """Return the parsed document, or None if the file does not exist."""
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Cannot read {self.path}: {e}") from e

    def _write_atomic(self, payload: Dict[str, Any]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise PersistenceError(f"Cannot write {self.path}: {e}") from e

    async def write(self, payload: Dict[str, Any]) -> None:
        async with self._write_lock:
            try:
                self._write_atomic(payload)
                self.write_count += 1
            except PersistenceError:
                self.failed_writes += 1
                raise


class PositionStore:
    """
    Positions file: {"positions": [...], "lastUpdate": ISO8601}.

    Save failures are logged and reported through the return value; the
    in-memory positions stay authoritative and the next successful save
    reconciles the file.
    """

    def __init__(self, path: str):
        self.file = JsonStateFile(path)
        self.logger = logging.getLogger(__name__)

    @property
    def path(self) -> str:
        return self.file.path

    def load(self) -> List[Position]:
        try:
            document = self.file.read()
        except PersistenceError as e:
            self.logger.error(f"❌ Failed to load positions: {e}")
            return []

        if not document:
            return []

        positions = []
        for entry in document.get("positions", []):
            try:
                positions.append(Position.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping malformed position entry {entry!r}: {e}")
        return positions

    async def save(self, positions: Iterable[Position]) -> bool:
        payload = {
            "positions": [position.to_dict() for position in positions],
            "lastUpdate": utc_isoformat(),
        }
        try:
            await self.file.write(payload)
            return True
        except PersistenceError as e:
            self.logger.error(f"❌ Failed to persist positions: {e}")
            return False


class KnownTokenStore:
    """Known-token file: {"tokens": [...], "lastUpdate": ISO8601}."""

    def __init__(self, path: str):
        self.file = JsonStateFile(path)
        self.logger = logging.getLogger(__name__)

    @property
    def path(self) -> str:
        return self.file.path

    def load(self) -> Set[str]:
        try:
            document = self.file.read()
        except PersistenceError as e:
            self.logger.error(f"❌ Failed to load known tokens: {e}")
            return set()

        if not document:
            return set()
        tokens = set(document.get("tokens", []))
        self.logger.info(f"Loaded {len(tokens)} known tokens from {self.path}")
        return tokens

    async def save(self, tokens: Iterable[str]) -> bool:
        payload = {"tokens": sorted(tokens), "lastUpdate": utc_isoformat()}
        try:
            await self.file.write(payload)
            return True
        except PersistenceError as e:
            self.logger.error(f"❌ Failed to persist known tokens: {e}")
            return False

    async def reset(self) -> bool:
        """Operator action: forget every known token."""
        self.logger.warning(f"Resetting known token set at {self.path}")
        return await self.save([])
