import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

SESSION_PREFIX = "mineworker"
CHUNK_SIZE = 5 * 1024 * 1024
MEMORY_PATTERN = re.compile(r"^\d+[MG]$")


class ServerType:
    VANILLA = "vanilla"
    FORGE = "forge"
    FABRIC = "fabric"
    NEOFORGE = "neoforge"
    QUILT = "quilt"
    PURPUR = "purpur"
    PAPER = "paper"

    choices = [VANILLA, FORGE, FABRIC, NEOFORGE, QUILT, PURPUR, PAPER]
    supported = [FORGE]


class SessionState(Enum):
    ABSENT = 0
    RUNNING = 1


class WaitOutcome(Enum):
    EXITED = 0
    TIMED_OUT = 1
    CANCELLED = 2


def session_name(server_type: str) -> str:
    return f"{SESSION_PREFIX}_{server_type}"


@dataclass
class ServerConfig:
    server_type: str
    world_path: str
    memory: str = "2G"

    @property
    def session_name(self) -> str:
        return session_name(self.server_type)

    @property
    def is_supported(self) -> bool:
        return self.server_type in ServerType.supported

    def to_json(self) -> dict:
        return {
            "serverType": self.server_type,
            "worldPath": self.world_path,
            "memory": self.memory,
        }


@dataclass(frozen=True)
class RemoteArchiveDescriptor:
    id: str
    name: str
    size_bytes: int = 0
    modified_at: Optional[datetime] = None

    @classmethod
    def from_json(cls, data: dict):
        modified = data.get("modifiedTime")
        return cls(
            id=data["id"],
            name=data.get("name") or "Unknown World",
            size_bytes=int(data.get("size") or 0),
            modified_at=datetime.fromisoformat(modified.replace("Z", "+00:00")) if modified else None,
        )


@dataclass
class TransferSession:
    total_bytes: int
    transferred_bytes: int = 0
    chunk_size: int = CHUNK_SIZE
    session_url: Optional[str] = None

    def advance(self, length: int):
        self.transferred_bytes += length
