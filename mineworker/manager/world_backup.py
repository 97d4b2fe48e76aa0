import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple, Union

from mineworker.exceptions import PreconditionException, WorldNotFoundException
from mineworker.interaction.models import RemoteArchiveDescriptor
from mineworker.manager.drive import DriveTransport, ProgressCallback
from mineworker.utils.archive import compress_directory, extract_archive
from mineworker.utils.files import remove_if_exists

DOWNLOAD_NAME = "world.zip"


def archive_name(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%m-%d-%Y-%I-%M-%S-%p") + ".zip"


class WorldBackupManager:
    """
    Backs the world directory up to a Drive folder and restores it from there.
    Archives are built and downloaded next to the world directory.
    """

    logger: logging.Logger

    def __init__(self, transport: DriveTransport, folder_id: str):
        self.logger = logging.getLogger(f"MineWorker.{self.__class__.__name__}")
        self.transport = transport
        if not folder_id:
            raise PreconditionException(
                "No Drive folder configured", hint="Set drive.folder_id in settings.json."
            )
        self.folder_id = folder_id

    def pending_uploads(self) -> List[Path]:
        if self.transport.state_store is None:
            return []
        return self.transport.state_store.pending()

    async def create_archive(self, world_path: Union[str, Path]) -> Tuple[Path, int]:
        world_path = Path(world_path)
        if not world_path.is_dir():
            raise WorldNotFoundException(f'World path "{world_path}" does not exist.')
        archive = world_path.parent / archive_name()
        size = await compress_directory(world_path, archive)
        return archive, size

    async def upload_archive(self, archive: Path, progress: Optional[ProgressCallback] = None) -> str:
        self.logger.info(f"Uploading {archive.name} to folder {self.folder_id}")
        return await self.transport.upload(archive, self.folder_id, archive.name, progress=progress)

    async def list_worlds(self) -> List[RemoteArchiveDescriptor]:
        return await self.transport.list_remote_archives(self.folder_id)

    async def load_world(
            self,
            world_path: Union[str, Path],
            archive: RemoteArchiveDescriptor,
            progress: Optional[ProgressCallback] = None,
    ):
        world_path = Path(world_path)
        dest = world_path.parent / DOWNLOAD_NAME
        self.logger.info(f"Loading world {archive.name} ({archive.size_bytes} bytes)")
        await self.transport.download(archive.id, dest, total=archive.size_bytes, progress=progress)
        await extract_archive(dest, world_path)
        remove_if_exists(dest)
        self.logger.info(f"World is now available at {world_path}")
