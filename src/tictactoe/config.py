"""Environment-driven settings for the room server."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .registry import FINISHED_ROOM_TTL_SECONDS, ROOM_TTL_SECONDS
from .store import JsonFileStore, MemoryStore, RoomStore

ENV_PREFIX = "TICTACTOE_"
PRESENCE_TIMEOUT_SECONDS = 30


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8000
    data_file: Optional[str] = "data/rooms.json"
    finished_ttl: int = FINISHED_ROOM_TTL_SECONDS
    room_ttl: int = ROOM_TTL_SECONDS
    presence_timeout: int = PRESENCE_TIMEOUT_SECONDS
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        data_file = env.get(ENV_PREFIX + "DATA_FILE", cls.data_file)
        return cls(
            host=env.get(ENV_PREFIX + "HOST", cls.host),
            port=_int(env, "PORT", cls.port),
            data_file=data_file or None,
            finished_ttl=_int(env, "FINISHED_TTL", cls.finished_ttl),
            room_ttl=_int(env, "ROOM_TTL", cls.room_ttl),
            presence_timeout=_int(env, "PRESENCE_TIMEOUT", cls.presence_timeout),
            log_level=env.get(ENV_PREFIX + "LOG_LEVEL", cls.log_level).upper(),
        )

    def make_store(self) -> RoomStore:
        if self.data_file:
            return JsonFileStore(self.data_file)
        return MemoryStore()
