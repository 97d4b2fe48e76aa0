import logging
import shutil
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from mineworker.exceptions import ActionCancelledException, ProcessFailedException
from mineworker.utils.process import OutputCallback, run_command, stream_command

logger = logging.getLogger("MineWorker.Dependencies")


@dataclass
class Package:
    name: str
    binary: str
    install_command: str


PACKAGES = [
    Package("Screen", "screen", "apt-get install screen -y"),
    Package("Java 21", "java", "apt-get install openjdk-21-jdk-headless -y"),
    Package("Unzip", "unzip", "apt-get install unzip -y"),
]

PasswordPrompt = Callable[[], Awaitable[str]]


@dataclass
class SetupContext:
    """
    State of a single setup action. The sudo password lives here and
    is gone once the action returns.
    """

    password_prompt: PasswordPrompt
    password: Optional[str] = None

    async def sudo_password(self) -> str:
        if self.password is None:
            self.password = await self.password_prompt()
            if not self.password:
                raise ActionCancelledException("No password entered.")
        return self.password


async def installed_version(package: Package) -> Optional[str]:
    if shutil.which(package.binary) is None:
        return None
    try:
        _, output = await run_command([package.binary, "--version"])
    except OSError:
        return ""
    lines = output.strip().splitlines()
    return lines[0] if lines else ""


async def install_package(context: SetupContext, package: Package, on_output: Optional[OutputCallback] = None):
    password = await context.sudo_password()
    logger.info(f"Installing {package.name}")
    returncode, output = await stream_command(
        ["sudo", "-S", *package.install_command.split(" ")],
        on_output=on_output,
        stdin=password + "\n",
    )
    if returncode != 0:
        raise ProcessFailedException(
            f"Failed to install {package.name}.",
            output="\n".join(output.splitlines()[-5:]),
            hint=f"You can install {package.name} by running: sudo {package.install_command}",
        )
    logger.info(f"{package.name} installed")
