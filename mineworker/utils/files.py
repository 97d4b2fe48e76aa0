import logging
import os
from pathlib import Path
from typing import AsyncIterator, Union

import aiofiles

logger = logging.getLogger("MineWorker.FileUtils")


async def read_in_chunks(source: Union[str, Path], chunk_size: int, offset: int = 0) -> AsyncIterator[bytes]:
    async with aiofiles.open(source, "rb") as infile:
        if offset:
            await infile.seek(offset)
        while True:
            c = await infile.read(chunk_size)
            if c:
                yield c
            else:
                return


def remove_if_exists(path: Union[str, Path]):
    if os.path.exists(path):
        logger.info(f"Removing {path}")
        os.remove(path)


def human_size(size: int) -> str:
    return f"{size / 1024 / 1024:.2f} MB"
