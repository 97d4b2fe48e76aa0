import asyncio
import logging
from asyncio.subprocess import PIPE, STDOUT
from typing import Awaitable, Callable, List, Optional, Tuple

from mineworker.exceptions import ProcessFailedException

logger = logging.getLogger("MineWorker.Process")

OutputCallback = Callable[[str], Awaitable[None]]


async def run_command(command: List[str], cwd: str = None, stdin: Optional[str] = None) -> Tuple[int, str]:
    """
    Run a command to completion and return (returncode, combined output).
    Spawn errors are raised as they are, so callers can decide what a missing binary means.
    """
    logger.debug(f"Running {' '.join(command)}")
    proc = await asyncio.create_subprocess_exec(
        *command,
        stdin=PIPE if stdin is not None else None,
        stdout=PIPE,
        stderr=STDOUT,
        cwd=cwd,
    )
    try:
        out, _ = await proc.communicate(stdin.encode("utf-8") if stdin is not None else None)
    except asyncio.CancelledError:
        _kill(proc)
        raise
    return proc.returncode, out.decode("utf-8", errors="ignore")


async def stream_command(
        command: List[str],
        cwd: str = None,
        on_output: Optional[OutputCallback] = None,
        stdin: Optional[str] = None,
) -> Tuple[int, str]:
    """
    Like run_command but hands every output line to on_output while the process runs.
    An interrupt kills the child before the cancellation propagates.
    """
    logger.debug(f"Streaming {' '.join(command)}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdin=PIPE if stdin is not None else None,
            stdout=PIPE,
            stderr=STDOUT,
            cwd=cwd,
        )
    except OSError as e:
        raise ProcessFailedException(f"Could not run {command[0]}: {e}") from e

    output = []
    try:
        if stdin is not None:
            proc.stdin.write(stdin.encode("utf-8"))
            await proc.stdin.drain()
            proc.stdin.close()
        while True:
            line = await proc.stdout.readline()
            if not line:
                break
            line = line.decode("utf-8", errors="ignore").rstrip("\n")
            output.append(line)
            if on_output is not None:
                await on_output(line)
        await proc.wait()
    except asyncio.CancelledError:
        _kill(proc)
        raise
    return proc.returncode, "\n".join(output)


def _kill(proc: asyncio.subprocess.Process):
    if proc.returncode is None:
        logger.info(f"Killing child process {proc.pid}")
        try:
            proc.kill()
        except ProcessLookupError:
            pass
