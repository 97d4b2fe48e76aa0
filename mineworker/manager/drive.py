import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Union

import aiofiles
import aiohttp

from mineworker.exceptions import TransferException
from mineworker.interaction.models import CHUNK_SIZE, RemoteArchiveDescriptor, TransferSession
from mineworker.utils.files import read_in_chunks, remove_if_exists

UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
FILES_URL = "https://www.googleapis.com/drive/v3/files"
ARCHIVE_MIME_TYPE = "application/zip"
ACCEPTED_CHUNK_STATUS = (200, 201, 308)

TokenProvider = Callable[[], Awaitable[str]]
ProgressCallback = Callable[[int, int], Awaitable[None]]


class UploadStateStore:
    """
    Remembers the resumable session of unfinished uploads, keyed by local path,
    so an interrupted upload can continue where the store stopped acknowledging.
    """

    def __init__(self, file_name: Union[str, Path]):
        self.logger = logging.getLogger(f"MineWorker.{self.__class__.__name__}")
        self.file_name = str(file_name)

    def _load(self) -> Dict[str, dict]:
        if not os.path.exists(self.file_name):
            return {}
        with open(self.file_name, "r") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                self.logger.error(f"Error loading upload state: {e}")
                return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, dict]):
        with open(self.file_name, "w") as f:
            json.dump(data, f, indent=4)

    def get(self, local_path: Path, size: int) -> Optional[dict]:
        state = self._load().get(str(local_path.resolve()))
        if state is None or state.get("size") != size or not state.get("session_url"):
            return None
        return state

    def put(self, local_path: Path, size: int, session_url: str, offset: int):
        data = self._load()
        data[str(local_path.resolve())] = {
            "size": size,
            "session_url": session_url,
            "offset": offset,
        }
        self._save(data)

    def remove(self, local_path: Path):
        data = self._load()
        if data.pop(str(local_path.resolve()), None) is not None:
            self._save(data)

    def pending(self) -> List[Path]:
        """
        Unfinished uploads whose archive is still on disk with the recorded size.
        """
        result = []
        for path, state in self._load().items():
            if os.path.isfile(path) and os.path.getsize(path) == state.get("size"):
                result.append(Path(path))
        return result


class DriveTransport:
    """
    Moves world archives to and from a Drive folder without holding them in memory.
    """

    logger: logging.Logger

    def __init__(
            self,
            token_provider: TokenProvider,
            session: Optional[aiohttp.ClientSession] = None,
            upload_url: str = UPLOAD_URL,
            files_url: str = FILES_URL,
            state_store: Optional[UploadStateStore] = None,
            chunk_size: int = CHUNK_SIZE,
    ):
        self.logger = logging.getLogger(f"MineWorker.{self.__class__.__name__}")
        self.token_provider = token_provider
        self._session = session
        self.upload_url = upload_url
        self.files_url = files_url
        self.state_store = state_store
        self.chunk_size = chunk_size

    @asynccontextmanager
    async def _client(self):
        if self._session is not None:
            yield self._session
        else:
            async with aiohttp.ClientSession() as session:
                yield session

    async def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {await self.token_provider()}"}

    async def list_remote_archives(self, folder_id: str) -> List[RemoteArchiveDescriptor]:
        params = {
            "q": f"'{folder_id}' in parents and trashed = false and mimeType = '{ARCHIVE_MIME_TYPE}'",
            "fields": "files(id, name, mimeType, modifiedTime, size)",
            "orderBy": "modifiedTime desc",
        }
        self.logger.debug(f"Listing archives in folder {folder_id}")
        try:
            async with self._client() as session:
                async with session.get(
                        self.files_url, params=params, headers=await self._auth_headers()
                ) as resp:
                    if resp.status != 200:
                        raise TransferException(
                            f"Listing archives failed with HTTP {resp.status}: {await resp.text()}",
                            status=resp.status,
                        )
                    data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransferException(f"Listing archives failed: {e}") from e
        if not isinstance(data, dict):
            raise TransferException("Listing archives failed: unexpected response from Google Drive")

        archives = [RemoteArchiveDescriptor.from_json(f) for f in data.get("files", []) if f.get("id")]
        archives.sort(key=lambda a: a.modified_at.timestamp() if a.modified_at else 0, reverse=True)
        self.logger.debug(f"Found {len(archives)} archives")
        return archives

    async def _open_session(self, session: aiohttp.ClientSession, name: str, folder_id: str, total: int) -> str:
        headers = await self._auth_headers()
        headers.update({
            "Content-Type": "application/json; charset=UTF-8",
            "X-Upload-Content-Type": ARCHIVE_MIME_TYPE,
            "X-Upload-Content-Length": str(total),
        })
        async with session.post(
                self.upload_url,
                params={"uploadType": "resumable"},
                data=json.dumps({"name": name, "parents": [folder_id]}),
                headers=headers,
        ) as resp:
            if resp.status != 200:
                raise TransferException(
                    f"Could not open upload session, HTTP {resp.status}: {await resp.text()}",
                    status=resp.status,
                )
            location = resp.headers.get("Location")
        if not location:
            raise TransferException("No upload URL returned from Google Drive.")
        return location

    async def _query_offset(self, session: aiohttp.ClientSession, session_url: str, total: int):
        """
        Ask the store how many bytes of an earlier session it kept.

        :return: (offset, metadata); metadata is set when the upload is already complete,
            offset is None when the session is gone
        """
        headers = {"Content-Range": f"bytes */{total}", "Content-Length": "0"}
        try:
            async with session.put(session_url, data=b"", headers=headers) as resp:
                if resp.status in (200, 201):
                    return total, await resp.json(content_type=None)
                if resp.status != 308:
                    self.logger.info(f"Saved upload session rejected with HTTP {resp.status}")
                    return None, None
                received = resp.headers.get("Range")
                if not received:
                    return 0, None
                return int(received.rsplit("-", 1)[-1]) + 1, None
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.info(f"Could not query saved upload session: {e}")
            return None, None

    async def upload(
            self,
            local_path: Union[str, Path],
            folder_id: str,
            display_name: str,
            progress: Optional[ProgressCallback] = None,
            resume: bool = True,
    ) -> str:
        """
        Upload a file through the resumable protocol, one chunk at a time.

        :return: Id of the new Drive file
        :raises TransferException: a request failed or was answered with an unexpected status
        """
        local_path = Path(local_path)
        total = local_path.stat().st_size
        transfer = TransferSession(total_bytes=total, chunk_size=self.chunk_size)

        try:
            async with self._client() as session:
                metadata = None
                saved = self.state_store.get(local_path, total) if self.state_store and resume else None
                if saved is not None:
                    offset, metadata = await self._query_offset(session, saved["session_url"], total)
                    if offset is not None:
                        self.logger.info(f"Resuming upload of {local_path.name} at byte {offset}")
                        transfer.session_url = saved["session_url"]
                        transfer.transferred_bytes = offset
                    elif self.state_store:
                        self.state_store.remove(local_path)

                if transfer.session_url is None:
                    transfer.session_url = await self._open_session(session, display_name, folder_id, total)
                    self.logger.info(f"Opened upload session for {display_name} ({total} bytes)")
                    self._remember(local_path, transfer)

                if metadata is None and total == 0:
                    metadata = await self._put_chunk(session, transfer, b"")
                if metadata is None:
                    async for chunk in read_in_chunks(local_path, transfer.chunk_size, transfer.transferred_bytes):
                        metadata = await self._put_chunk(session, transfer, chunk)
                        transfer.advance(len(chunk))
                        self._remember(local_path, transfer)
                        if progress is not None:
                            await progress(transfer.transferred_bytes, total)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransferException(f"Upload failed after {transfer.transferred_bytes} bytes: {e}") from e

        if not isinstance(metadata, dict) or not metadata.get("id"):
            raise TransferException("Upload finished without the store returning a file id")
        if self.state_store:
            self.state_store.remove(local_path)
        self.logger.info(f"Uploaded {display_name} as {metadata['id']}")
        return metadata["id"]

    async def _put_chunk(self, session: aiohttp.ClientSession, transfer: TransferSession, chunk: bytes):
        start = transfer.transferred_bytes
        if chunk:
            content_range = f"bytes {start}-{start + len(chunk) - 1}/{transfer.total_bytes}"
        else:
            content_range = f"bytes */{transfer.total_bytes}"
        headers = {"Content-Length": str(len(chunk)), "Content-Range": content_range}
        async with session.put(transfer.session_url, data=chunk, headers=headers) as resp:
            if resp.status not in ACCEPTED_CHUNK_STATUS:
                raise TransferException(
                    f"Chunk {content_range} rejected with HTTP {resp.status}: {await resp.text()}",
                    status=resp.status,
                )
            if resp.status == 308:
                return None
            return await resp.json(content_type=None)

    def _remember(self, local_path: Path, transfer: TransferSession):
        if self.state_store:
            self.state_store.put(local_path, transfer.total_bytes, transfer.session_url, transfer.transferred_bytes)

    async def download(
            self,
            file_id: str,
            dest_path: Union[str, Path],
            total: int = 0,
            progress: Optional[ProgressCallback] = None,
    ):
        """
        Stream a Drive file to dest_path. On any failure the partial file is deleted.
        """
        try:
            await self._download(file_id, Path(dest_path), total, progress)
        except BaseException as e:
            remove_if_exists(dest_path)
            if isinstance(e, (aiohttp.ClientError, asyncio.TimeoutError, OSError)):
                raise TransferException(f"Error downloading {file_id}: {e}") from e
            raise

    async def _download(self, file_id: str, dest: Path, total: int, progress: Optional[ProgressCallback]):
        self.logger.info(f"Downloading {file_id} to {dest}")
        downloaded = 0
        async with self._client() as session:
            async with session.get(
                    f"{self.files_url}/{file_id}", params={"alt": "media"}, headers=await self._auth_headers()
            ) as resp:
                if resp.status != 200:
                    raise TransferException(
                        f"Download of {file_id} failed with HTTP {resp.status}", status=resp.status
                    )
                if not total:
                    total = resp.content_length or 0
                async with aiofiles.open(dest, "wb") as f:
                    async for chunk in resp.content.iter_chunked(64 * 1024):
                        await f.write(chunk)
                        downloaded += len(chunk)
                        if progress is not None:
                            await progress(downloaded, total)
        if total and downloaded != total:
            raise TransferException(f"Download of {file_id} stopped at {downloaded} of {total} bytes")
        self.logger.info(f"Downloaded {downloaded} bytes")
