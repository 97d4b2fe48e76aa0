import asyncio
import logging
import os
import zipfile
from pathlib import Path
from typing import Union

from mineworker.exceptions import ArchiveException, ProcessFailedException
from mineworker.utils.files import remove_if_exists
from mineworker.utils.process import run_command

logger = logging.getLogger("MineWorker.Archive")


def _zip_tree(source: Path, dest: Path) -> int:
    with zipfile.ZipFile(dest, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
        for root, dirs, files in os.walk(source, onerror=_raise):
            dirs.sort()
            for name in sorted(files):
                entry = Path(root) / name
                if entry == dest:
                    continue
                archive.write(entry, entry.relative_to(source))
    return dest.stat().st_size


def _raise(error: OSError):
    raise error


async def compress_directory(source_dir: Union[str, Path], dest_archive: Union[str, Path]) -> int:
    """
    Zip everything below source_dir at maximum compression.

    :return: Size of the finished archive in bytes
    :raises ArchiveException: the tree could not be read or the archive not written
    """
    source = Path(source_dir)
    dest = Path(dest_archive)
    if not source.is_dir():
        raise ArchiveException(f"{source} is not a directory")
    logger.info(f"Compressing {source} into {dest}")
    loop = asyncio.get_running_loop()
    try:
        size = await loop.run_in_executor(None, _zip_tree, source, dest)
    except OSError as e:
        remove_if_exists(dest)
        logger.error(f"Compressing {source} failed: {e}")
        raise ArchiveException(
            f"Error compressing {source}: {e}",
            hint="Check that every file in the world directory is readable and the disk has free space.",
        ) from e
    except BaseException:
        remove_if_exists(dest)
        raise
    logger.info(f"Archive {dest.name} written ({size} bytes)")
    return size


async def extract_archive(archive_path: Union[str, Path], dest_dir: Union[str, Path]):
    """
    Unzip into dest_dir, overwriting files that already exist.
    """
    dest = Path(dest_dir)
    if not dest.is_dir():
        logger.debug(f"Creating directory {dest}")
        try:
            dest.mkdir(parents=True)
        except OSError as e:
            raise ArchiveException(f"Could not create {dest}: {e}") from e
    logger.info(f"Extracting {archive_path} into {dest}")
    try:
        returncode, output = await run_command(
            ["unzip", "-o", str(Path(archive_path).resolve())], cwd=str(dest)
        )
    except OSError as e:
        raise ProcessFailedException(
            f"Could not run unzip: {e}", hint="Install it with: sudo apt-get install unzip -y"
        ) from e
    if returncode != 0:
        raise ProcessFailedException(
            f"unzip exited with code {returncode}", output=output
        )
