import logging
import os
import stat
from pathlib import Path
from typing import Optional, Union

from mineworker.exceptions import (
    InvalidMemoryException,
    PreconditionException,
    ProcessFailedException,
    UnsupportedServerTypeException,
    WorldNotFoundException,
)
from mineworker.interaction import config_store
from mineworker.interaction.models import MEMORY_PATTERN, ServerConfig, ServerType, session_name
from mineworker.utils.process import OutputCallback, stream_command

JVM_ARGS_FILE = "user_jvm_args.txt"

logger = logging.getLogger("MineWorker.Installer")


def validate_memory(memory: str) -> str:
    memory = (memory or "").strip()
    if not MEMORY_PATTERN.match(memory):
        raise InvalidMemoryException(
            f'Invalid memory allocation "{memory}"',
            hint="Memory allocation must be in the format <number>[M|G], e.g. 2G.",
        )
    return memory


def find_installer(world_path: Union[str, Path]) -> Optional[str]:
    for entry in sorted(os.listdir(world_path)):
        if "forge" in entry.lower() and entry.endswith("installer.jar"):
            return entry
    return None


def write_jvm_args(world_path: Union[str, Path], memory: str):
    memory = validate_memory(memory)
    with open(Path(world_path) / JVM_ARGS_FILE, "w") as f:
        f.write(f"-Xmx{memory}\n-Xms{memory}\n")
    logger.info(f"Memory allocation set to {memory}")


def _java_command(script: str, name: str) -> str:
    prefix = f"screen -dmS {name} "
    for line in script.split("\n"):
        if line.startswith("java"):
            return line
        # run.sh was already rewritten by an earlier install
        if line.startswith(prefix):
            return line[len(prefix):]
    return ""


def write_launch_script(world_path: Union[str, Path], server_type: str) -> Path:
    """
    Rewrite the installer's run.sh so it starts the server in a detached screen session.
    """
    script = Path(world_path) / config_store.LAUNCH_SCRIPT_NAME
    if not script.is_file():
        raise PreconditionException(
            f"{script} does not exist", hint="The Forge installer did not finish, run install again."
        )
    name = session_name(server_type)
    with open(script, "r", encoding="utf-8") as f:
        command = _java_command(f.read(), name)
    if not command:
        raise PreconditionException(f"{script} contains no java launch command")

    with open(script, "w", encoding="utf-8") as f:
        f.write(f"#!/usr/bin/env sh\nscreen -dmS {name} {command}")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    logger.info(f"Launch script {script} now starts session {name}")
    return script


class ServerInstaller:
    logger: logging.Logger

    def __init__(self, java: str = "java"):
        self.logger = logging.getLogger(f"MineWorker.{self.__class__.__name__}")
        self.java = java

    async def run_installer(self, world_path: Path, installer_jar: str, on_output: Optional[OutputCallback] = None):
        jar = world_path / installer_jar
        if not jar.is_file():
            raise PreconditionException(f"File {installer_jar} does not exist in the world directory.")
        self.logger.info(f"Installing Forge from {installer_jar}")
        returncode, output = await stream_command(
            [self.java, "-jar", str(jar), "--installServer"], cwd=str(world_path), on_output=on_output
        )
        if returncode != 0:
            raise ProcessFailedException(
                f"Forge installer exited with code {returncode}", output="\n".join(output.splitlines()[-10:])
            )

    async def install(
            self,
            world_path: Union[str, Path],
            server_type: str,
            installer_jar: str,
            memory: str,
            on_output: Optional[OutputCallback] = None,
    ) -> ServerConfig:
        world_path = Path(world_path)
        if not world_path.is_dir():
            raise WorldNotFoundException(
                f'World path "{world_path}" does not exist.', hint="Load a world or create the directory first."
            )
        if server_type not in ServerType.supported:
            raise UnsupportedServerTypeException(f"Installation for {server_type} is not supported yet.")
        memory = validate_memory(memory)

        await self.run_installer(world_path, installer_jar, on_output)
        write_jvm_args(world_path, memory)
        write_launch_script(world_path, server_type)

        config = ServerConfig(server_type=server_type, world_path=str(world_path), memory=memory)
        config_store.write(world_path, config)
        self.logger.info(f"{server_type} server installed in {world_path}")
        return config
