import asyncio
import fcntl
import logging
import os
import shutil
from asyncio.subprocess import PIPE, STDOUT
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Set

from mineworker.exceptions import (
    ProcessFailedException,
    ServerNotRunningException,
    ServerRunningException,
)
from mineworker.interaction.models import SessionState, WaitOutcome, session_name
from mineworker.paths import lock_dir
from mineworker.utils.process import OutputCallback, run_command


class SessionManager:
    """
    Drives the server that lives inside a detached screen session.

    Nothing about the session is cached: the running state is asked from
    ``screen -ls`` every time, because the server can die or be killed
    without this process noticing.
    """

    logger: logging.Logger

    def __init__(self, multiplexer: str = "screen", locks: Optional[Path] = None):
        self.logger = logging.getLogger(f"MineWorker.{self.__class__.__name__}")
        self.multiplexer = multiplexer
        self.lock_dir = Path(locks or lock_dir)
        self._background: Set[asyncio.Task] = set()

    @staticmethod
    def session_name(server_type: str) -> str:
        return session_name(server_type)

    async def _list_sessions(self) -> str:
        try:
            # screen -ls exits non-zero even when it lists sessions, so only the text counts
            _, output = await run_command([self.multiplexer, "-ls"])
        except OSError as e:
            self.logger.debug(f"Session query failed, treating as not running: {e}")
            return ""
        return output

    async def session_info(self, server_type: str) -> Optional[str]:
        name = self.session_name(server_type)
        for line in (await self._list_sessions()).splitlines():
            if name in line:
                return " ".join(line.split())
        return None

    async def is_running(self, server_type: str) -> bool:
        return await self.session_info(server_type) is not None

    async def state(self, server_type: str) -> SessionState:
        if await self.is_running(server_type):
            return SessionState.RUNNING
        return SessionState.ABSENT

    @contextmanager
    def _start_lock(self, server_type: str):
        if not self.lock_dir.is_dir():
            self.lock_dir.mkdir(parents=True)
        lock_file = self.lock_dir / f"{self.session_name(server_type)}.lock"
        with open(lock_file, "w") as f:
            try:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                raise ServerRunningException(
                    f"Another start of {self.session_name(server_type)} is in progress"
                )
            try:
                yield
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    async def start(
            self,
            server_type: str,
            launch_script: str,
            cwd: str,
            on_output: Optional[OutputCallback] = None,
    ):
        """
        Launch the server script and return once it printed its first line or exited.
        This only means the process was launched, the server keeps booting afterwards.

        :raises ServerRunningException: the session already exists, nothing was spawned
        :raises ProcessFailedException: the script could not be run or failed
        """
        with self._start_lock(server_type):
            if await self.is_running(server_type):
                raise ServerRunningException(
                    "Server is already running.",
                    hint="Please stop it first before starting again.",
                )

            self.logger.info(f"Starting {launch_script} in {cwd}")
            try:
                proc = await asyncio.create_subprocess_exec(
                    launch_script, stdout=PIPE, stderr=STDOUT, cwd=cwd
                )
            except OSError as e:
                raise ProcessFailedException(f"Could not run {launch_script}: {e}") from e

            output = []
            try:
                while True:
                    line = await proc.stdout.readline()
                    if not line:
                        break
                    line = line.decode("utf-8", errors="ignore").rstrip("\n")
                    output.append(line)
                    if on_output is not None:
                        await on_output(line)
                    if line.strip():
                        self.logger.debug(f"Launch script is producing output: {line}")
                        self._drain(proc)
                        return
                returncode = await proc.wait()
            except asyncio.CancelledError:
                if proc.returncode is None:
                    proc.kill()
                raise

        if returncode != 0:
            raise ProcessFailedException(
                f"Launch script exited with code {returncode}", output="\n".join(output)
            )
        self.logger.info(f"Launch script finished, session {self.session_name(server_type)} started")

    def _drain(self, proc: asyncio.subprocess.Process):
        async def read_rest():
            while True:
                line = await proc.stdout.readline()
                if not line:
                    break
                self.logger.debug(line.decode("utf-8", errors="ignore").rstrip("\n"))
            await proc.wait()

        task = asyncio.create_task(read_rest())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def send_stop_signal(self, server_type: str):
        """
        Type ``stop`` into the server console.

        :raises ServerNotRunningException: there is no session to send to
        """
        name = self.session_name(server_type)
        if not await self.is_running(server_type):
            raise ServerNotRunningException(f"No session named {name} is running")
        self.logger.info(f"Sending stop to {name}")
        try:
            returncode, output = await run_command(
                [self.multiplexer, "-S", name, "-X", "stuff", "stop\n"]
            )
        except OSError as e:
            raise ProcessFailedException(f"Could not run {self.multiplexer}: {e}") from e
        if returncode != 0:
            raise ProcessFailedException(
                f"Sending stop to {name} failed with code {returncode}", output=output
            )

    async def wait_for_exit(
            self,
            server_type: str,
            poll_interval: float = 1.0,
            timeout: Optional[float] = None,
            cancel: Optional[asyncio.Event] = None,
    ) -> WaitOutcome:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        while True:
            if cancel is not None and cancel.is_set():
                self.logger.info("Waiting for exit was cancelled")
                return WaitOutcome.CANCELLED
            if not await self.is_running(server_type):
                return WaitOutcome.EXITED
            if deadline is not None and loop.time() >= deadline:
                self.logger.warning(f"{self.session_name(server_type)} did not exit within {timeout}s")
                return WaitOutcome.TIMED_OUT

            delay = poll_interval
            if deadline is not None:
                delay = max(0.0, min(delay, deadline - loop.time()))
            if cancel is None:
                await asyncio.sleep(delay)
            else:
                try:
                    await asyncio.wait_for(cancel.wait(), delay)
                except asyncio.TimeoutError:
                    pass

    async def stop(
            self,
            server_type: str,
            timeout: Optional[float] = 120,
            poll_interval: float = 1.0,
            cancel: Optional[asyncio.Event] = None,
    ) -> WaitOutcome:
        await self.send_stop_signal(server_type)
        return await self.wait_for_exit(server_type, poll_interval, timeout, cancel)

    async def attach(self, server_type: str) -> int:
        """
        Hand the terminal to the server console until the operator detaches.
        """
        name = self.session_name(server_type)
        if not await self.is_running(server_type):
            raise ServerNotRunningException(f"No session named {name} is running")
        if shutil.which(self.multiplexer) is None and not os.path.isfile(self.multiplexer):
            raise ProcessFailedException(f"{self.multiplexer} is not installed")
        proc = await asyncio.create_subprocess_exec(self.multiplexer, "-r", name)
        return await proc.wait()
