import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from mcstatus import JavaServer

logger = logging.getLogger("MineWorker.Status")


@dataclass
class ServerPing:
    version: str
    players_online: int
    players_max: int
    latency: float


async def ping(address: str = "localhost:25565", timeout: float = 3) -> Optional[ServerPing]:
    """
    Ask the server for its status list entry. None when it does not answer yet.
    """
    try:
        server = JavaServer.lookup(address, timeout=timeout)
        status = await server.async_status()
    except (OSError, asyncio.TimeoutError, ValueError) as e:
        logger.debug(f"Server at {address} did not answer: {e}")
        return None
    return ServerPing(
        version=status.version.name,
        players_online=status.players.online,
        players_max=status.players.max,
        latency=round(status.latency, 1),
    )
