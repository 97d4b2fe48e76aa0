import logging
import socket
from typing import List, Optional, Tuple

import aiohttp
import psutil

PUBLIC_IP_URL = "https://api.ipify.org"

logger = logging.getLogger("MineWorker.Network")


async def public_ip(url: str = PUBLIC_IP_URL, timeout: float = 5) -> Optional[str]:
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            async with session.get(url) as resp:
                if resp.status != 200:
                    return None
                return (await resp.text()).strip() or None
    except (aiohttp.ClientError, OSError) as e:
        logger.debug(f"Could not determine public ip: {e}")
        return None


def local_addresses() -> Tuple[List[str], List[str]]:
    """
    :return: (ipv4, ipv6) addresses of all non-loopback interfaces
    """
    ipv4s, ipv6s = [], []
    for name, addresses in psutil.net_if_addrs().items():
        stats = psutil.net_if_stats().get(name)
        for address in addresses:
            if address.family == socket.AF_INET and not address.address.startswith("127."):
                ipv4s.append(address.address)
            elif address.family == socket.AF_INET6 and address.address != "::1" and (stats is None or stats.isup):
                ipv6s.append(address.address.split("%")[0])
    return ipv4s, ipv6s
