import asyncio
import logging
from typing import Dict, List, Optional

import aiohttp

from mineworker.exceptions import DNSException

API_BASE = "https://api.cloudflare.com/client/v4"


class CloudflareDNS:
    """
    Keeps the single A record of the server hostname pointed at this machine.
    """

    def __init__(self, api_token: str, zone_id: str, record_name: str, base_url: str = API_BASE):
        self.logger = logging.getLogger(f"MineWorker.{self.__class__.__name__}")
        self.api_token = (api_token or "").strip()
        self.zone_id = (zone_id or "").strip()
        self.record_name = (record_name or "").strip().rstrip(".")
        self.base_url = base_url
        if not self.api_token or not self.zone_id or not self.record_name:
            raise DNSException(
                "DNS zone id, API token and record name must all be set",
                hint="Fill in the dns section of settings.json.",
            )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    async def _call(self, session: aiohttp.ClientSession, method: str, path: str, **kwargs):
        try:
            async with session.request(
                    method, f"{self.base_url}/zones/{self.zone_id}{path}", headers=self._headers(), **kwargs
            ) as resp:
                data = await resp.json(content_type=None)
                if not isinstance(data, dict):
                    raise DNSException(f"Cloudflare {method} {path} failed: unexpected response (HTTP {resp.status})")
                if resp.status >= 400 or not data.get("success"):
                    raise DNSException(f"Cloudflare {method} {path} failed: {data.get('errors')}")
                return data.get("result")
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise DNSException(f"Cloudflare {method} {path} failed: {e}") from e

    async def list_records(self, session: aiohttp.ClientSession) -> List[dict]:
        return await self._call(
            session, "GET", "/dns_records", params={"type": "A", "name": self.record_name}
        ) or []

    async def upsert_a_record(self, ip: str, ttl: int = 120, session: Optional[aiohttp.ClientSession] = None) -> str:
        """
        :return: "created", "updated" or "unchanged"
        """
        if session is None:
            async with aiohttp.ClientSession() as session:
                return await self.upsert_a_record(ip, ttl, session)

        desired = {"type": "A", "name": self.record_name, "content": ip, "ttl": ttl, "proxied": False}
        existing = await self.list_records(session)
        if existing:
            record = existing[0]
            if record.get("content") == ip:
                self.logger.info(f"{self.record_name} already points at {ip}")
                return "unchanged"
            await self._call(session, "PUT", f"/dns_records/{record['id']}", json=desired)
            self.logger.info(f"Updated {self.record_name} to {ip}")
            return "updated"

        await self._call(session, "POST", "/dns_records", json=desired)
        self.logger.info(f"Created {self.record_name} pointing at {ip}")
        return "created"
