"""Snapshot stores holding every room keyed by room id.

The contract is coarse: ``load`` returns the whole mapping, ``save`` replaces it.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

logger = logging.getLogger(__name__)

Snapshot = Dict[str, Dict[str, object]]


class RoomStore(Protocol):
    def load(self) -> Snapshot:
        ...

    def save(self, rooms: Snapshot) -> None:
        ...


class MemoryStore:
    """Process-local store; each load hands out an independent copy."""

    def __init__(self, rooms: Optional[Snapshot] = None) -> None:
        self._rooms: Snapshot = copy.deepcopy(rooms) if rooms else {}

    def load(self) -> Snapshot:
        return copy.deepcopy(self._rooms)

    def save(self, rooms: Snapshot) -> None:
        self._rooms = copy.deepcopy(rooms)


class JsonFileStore:
    """Flat JSON file. Writes go to a temp file first and are swapped in atomically."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def load(self) -> Snapshot:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring unreadable room store %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring room store %s: top level is not an object", self.path)
            return {}
        return data

    def save(self, rooms: Snapshot) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(rooms, fh, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
