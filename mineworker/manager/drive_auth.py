import json
import logging
import os
import time
from typing import Awaitable, Callable, Optional
from urllib.parse import urlencode

import aiohttp

from mineworker.exceptions import ActionCancelledException, AuthenticationException

SCOPES = ["https://www.googleapis.com/auth/drive"]
AUTH_URL = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"

CodePrompt = Callable[[str], Awaitable[str]]


class DriveAuth:
    """
    OAuth access for the installed-app client in ``cred.json``.
    The token is kept in ``token.json`` and refreshed when it expires.
    """

    logger: logging.Logger

    def __init__(self, credentials_file: str, token_file: str, token_url: str = TOKEN_URL):
        self.logger = logging.getLogger(f"MineWorker.{self.__class__.__name__}")
        self.credentials_file = credentials_file
        self.token_file = token_file
        self.token_url = token_url
        self._token: Optional[dict] = None
        self._client = None

    def _load_client(self) -> dict:
        if self._client is None:
            if not os.path.isfile(self.credentials_file):
                raise AuthenticationException(
                    f"OAuth client file {self.credentials_file} does not exist",
                    hint="Download the installed-app credentials from Google Cloud Console.",
                )
            with open(self.credentials_file, "r") as f:
                try:
                    installed = json.load(f)["installed"]
                    self._client = {
                        "client_id": installed["client_id"],
                        "client_secret": installed["client_secret"],
                        "redirect_uri": installed["redirect_uris"][0],
                    }
                except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
                    raise AuthenticationException(f"Invalid OAuth client file: {e}") from e
        return self._client

    def _load_token(self) -> Optional[dict]:
        if not os.path.isfile(self.token_file):
            return None
        with open(self.token_file, "r") as f:
            try:
                token = json.load(f)
            except json.JSONDecodeError as e:
                self.logger.error(f"Error loading token: {e}")
                return None
        self.logger.info(f"Token loaded from {self.token_file}")
        return token

    def _store_token(self, token: dict):
        with open(self.token_file, "w") as f:
            json.dump(token, f)
        self.logger.info(f"Token stored to {self.token_file}")

    def authorization_url(self) -> str:
        client = self._load_client()
        return AUTH_URL + "?" + urlencode({
            "client_id": client["client_id"],
            "redirect_uri": client["redirect_uri"],
            "response_type": "code",
            "access_type": "offline",
            "scope": " ".join(SCOPES),
        })

    async def _request_token(self, data: dict) -> dict:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(self.token_url, data=data) as resp:
                    body = await resp.json(content_type=None)
                    if resp.status != 200:
                        raise AuthenticationException(
                            f"Token request failed with HTTP {resp.status}: {body.get('error_description') or body}"
                        )
        except (aiohttp.ClientError, ValueError) as e:
            raise AuthenticationException(f"Token request failed: {e}") from e
        if body.get("expires_in"):
            body["expiry"] = time.time() + int(body["expires_in"])
        return body

    async def authorize(self, prompt: CodePrompt):
        """
        First-time consent: show the URL, exchange the code the operator pastes back.
        """
        client = self._load_client()
        code = (await prompt(self.authorization_url())).strip()
        if not code:
            raise ActionCancelledException("No authorization code provided.")
        token = await self._request_token({
            "code": code,
            "client_id": client["client_id"],
            "client_secret": client["client_secret"],
            "redirect_uri": client["redirect_uri"],
            "grant_type": "authorization_code",
        })
        self._token = token
        self._store_token(token)

    async def _refresh(self):
        client = self._load_client()
        refresh_token = self._token.get("refresh_token")
        if not refresh_token:
            raise AuthenticationException(
                "Stored token has expired and cannot be refreshed",
                hint=f"Delete {self.token_file} and authorize again.",
            )
        self.logger.debug("Refreshing access token")
        fresh = await self._request_token({
            "refresh_token": refresh_token,
            "client_id": client["client_id"],
            "client_secret": client["client_secret"],
            "grant_type": "refresh_token",
        })
        fresh.setdefault("refresh_token", refresh_token)
        self._token = fresh
        self._store_token(fresh)

    async def ensure_token(self, prompt: CodePrompt):
        if self._token is None:
            self._token = self._load_token()
        if self._token is None:
            await self.authorize(prompt)

    async def get_access_token(self) -> str:
        if self._token is None:
            self._token = self._load_token()
        if self._token is None:
            raise AuthenticationException("Not authorized with Google Drive")
        if not self._token.get("access_token") or self._expiry() < time.time() + 60:
            await self._refresh()
        return self._token["access_token"]

    def _expiry(self) -> float:
        if "expiry" in self._token:
            return float(self._token["expiry"])
        # token.json files written by the googleapis client store milliseconds
        if "expiry_date" in self._token:
            return float(self._token["expiry_date"]) / 1000
        return 0
