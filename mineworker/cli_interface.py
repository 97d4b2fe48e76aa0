import asyncio
import getpass
import logging
import os
import platform
import shutil
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

import aioconsole

from mineworker import __version__
from mineworker.exceptions import (
    ActionCancelledException,
    MineWorkerException,
    PreconditionException,
    ProcessFailedException,
    ServerRunningException,
    UnsupportedServerTypeException,
    WorldNotFoundException,
)
from mineworker.interaction import config_store
from mineworker.interaction.property_handler import ServerProperties
from mineworker.interaction.models import ServerConfig, ServerType, SessionState, WaitOutcome
from mineworker.interaction.session import SessionManager
from mineworker.interaction.status import ping
from mineworker.log import setup_logging
from mineworker.manager.data_store import SettingsStore
from mineworker.manager.dependencies import PACKAGES, SetupContext, install_package, installed_version
from mineworker.manager.dns import CloudflareDNS
from mineworker.manager.drive import DriveTransport, UploadStateStore
from mineworker.manager.drive_auth import DriveAuth
from mineworker.manager.installer import ServerInstaller, find_installer, validate_memory
from mineworker.manager.world_backup import WorldBackupManager
from mineworker.paths import upload_state_file, world_dir
from mineworker.utils.files import human_size
from mineworker.utils.network import local_addresses, public_ip
from mineworker.utils.process import run_command

ACTIONS = [
    ("setup", "Quick Setup", "Setup the Minecraft Worker Node"),
    ("load", "Load World", "Load a Minecraft world from Google Drive"),
    ("upload", "Upload World", "Upload a Minecraft world to Google Drive"),
    ("install", "Install Server JAR", "Install the Minecraft server JAR file"),
    ("start", "Start Server", "Start the Minecraft server"),
    ("stop", "Stop Server", "Stop the Minecraft server"),
    ("restart", "Restart Server", "Restart the Minecraft server"),
    ("status", "Check Status", "Check the status of the Minecraft server"),
    ("console", "Open Console", "Open the Minecraft server console"),
    ("exit", "Exit", "Exit the Minecraft Worker Node"),
]


class StatusLine:
    """
    A single terminal line that is rewritten in place, used for progress output.
    """

    def __init__(self):
        self.active = False

    async def update(self, message: str):
        width = shutil.get_terminal_size((80, 20)).columns - 5
        message = message.split("\n")[0][:width]
        print(f"\r\x1b[K{message}", end="", flush=True)
        self.active = True

    def done(self, message: str = ""):
        if self.active:
            print("\r\x1b[K", end="")
            self.active = False
        if message:
            print(message)


class OperatorConsole:
    logger: logging.Logger

    def __init__(self, world_path: Optional[Path] = None, sessions: Optional[SessionManager] = None,
                 settings: Optional[SettingsStore] = None):
        self.logger = logging.getLogger(f"MineWorker.{self.__class__.__name__}")
        self.world_path = Path(world_path or world_dir())
        self.sessions = sessions or SessionManager()
        self.settings_store = settings or SettingsStore()
        self.start_time = datetime.now(timezone.utc)
        self.public_ip: Optional[str] = None
        self.ipv4s: List[str] = []
        self.ipv6s: List[str] = []

    @property
    def settings(self):
        return self.settings_store.settings

    # prompts

    async def ask(self, message: str, default: str = "") -> str:
        suffix = f" [{default}]" if default else ""
        answer = (await aioconsole.ainput(f"{message}{suffix}: ")).strip()
        answer = answer or default
        if not answer:
            raise ActionCancelledException("Action cancelled.")
        return answer

    async def confirm(self, message: str, default: bool = True) -> bool:
        answer = (await aioconsole.ainput(f"{message} [{'Y/n' if default else 'y/N'}]: ")).strip().lower()
        if not answer:
            return default
        return answer in ("y", "yes")

    async def select(self, message: str, options: List[Tuple[str, str, str]]) -> str:
        print(message)
        for i, (_, label, hint) in enumerate(options, start=1):
            print(f"  {i}. {label}" + (f"  ({hint})" if hint else ""))
        answer = (await aioconsole.ainput("Select option: ")).strip()
        for i, (value, _, _) in enumerate(options, start=1):
            if answer == str(i) or answer == value:
                return value
        raise ActionCancelledException("No valid option selected.")

    async def ask_password(self) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, getpass.getpass, "Enter your password to install missing packages: "
        )

    async def wait_for_enter(self):
        await aioconsole.ainput("Press Enter to continue...")

    # banner

    async def _version_of(self, *command: str) -> str:
        try:
            _, output = await run_command(list(command))
        except OSError:
            return ""
        lines = output.strip().splitlines()
        return lines[0] if lines else ""

    async def gather_addresses(self):
        self.public_ip = await public_ip()
        self.ipv4s, self.ipv6s = local_addresses()
        if self.public_ip and self.public_ip not in self.ipv4s:
            self.ipv4s.insert(0, self.public_ip)

    async def print_banner(self):
        screen = await self._version_of("screen", "--version")
        java = await self._version_of("java", "--version")
        config = config_store.read_optional(self.world_path)
        session = await self.sessions.session_info(config.server_type) if config else None

        lines = [
            f"mineworker: {__version__}",
            f"Python: {platform.python_version()}",
            f"SCREEN: {screen or 'screen not found'}",
            f"JAVA: {java or 'Java not found'}",
            f"WORLD DIR: {self.world_path}",
            "",
            f"Platform: {sys.platform}",
            f"Architecture: {platform.machine()}",
            f"Uptime: {int((datetime.now(timezone.utc) - self.start_time).total_seconds() // 60)} minutes",
            f"Console PID: {os.getpid()}",
            "",
            f"Server Type: {config.server_type if config else 'Not specified'}",
            f"Session: {session or 'Not running'}",
            f"Console Start Time: {self.start_time.strftime('%m/%d/%Y, %I:%M:%S %p')} UTC",
            f"IPV4 Address: {', '.join(self.ipv4s) or 'Not available'}",
            f"IPV6 Address: {', '.join(self.ipv6s) or 'Not available'}",
        ]
        print("\n".join(f"=>  {line}" if line else "" for line in lines))
        print()

    # shared steps

    def _require_world(self):
        if not self.world_path.is_dir():
            raise WorldNotFoundException(
                f'World path "{self.world_path}" does not exist.',
                hint="Load a world from Google Drive or create the directory first.",
            )

    def load_operable_config(self) -> ServerConfig:
        self._require_world()
        config = config_store.read(self.world_path)
        if not config.is_supported:
            raise UnsupportedServerTypeException(
                f'Server Type "{config.server_type}" is not supported yet.',
                hint="Please run the install action first.",
            )
        config_store.check_launch_script(config)
        return config

    async def _backup_manager(self) -> WorldBackupManager:
        auth = DriveAuth(self.settings.drive.credentials_file, self.settings.drive.token_file)

        async def code_prompt(url: str) -> str:
            print(f"[AUTH]: Authorize this app by visiting this URL: {url}")
            return await aioconsole.ainput("After authorizing, enter the code provided by Google here: ")

        await auth.ensure_token(code_prompt)
        transport = DriveTransport(auth.get_access_token, state_store=UploadStateStore(upload_state_file))
        return WorldBackupManager(transport, self.settings.drive.folder_id)

    @staticmethod
    def _transfer_progress(status: StatusLine, verb: str):
        async def progress(done: int, total: int):
            percent = f"{done / total * 100:.2f}%" if total else "?"
            await status.update(f"{verb}: {percent} ({done} bytes of {total} bytes)")

        return progress

    async def _stop_session(self, config: ServerConfig) -> bool:
        status = StatusLine()
        await status.update("Stopping server...")
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        previous = signal.getsignal(signal.SIGINT)
        loop.add_signal_handler(signal.SIGINT, cancel.set)
        try:
            outcome = await self.sessions.stop(
                config.server_type,
                timeout=self.settings.stop_timeout,
                poll_interval=self.settings.poll_interval,
                cancel=cancel,
            )
        finally:
            loop.remove_signal_handler(signal.SIGINT)
            if previous is not None:
                signal.signal(signal.SIGINT, previous)

        if outcome == WaitOutcome.EXITED:
            status.done("✓ Server stopped successfully")
            return True
        if outcome == WaitOutcome.TIMED_OUT:
            status.done(
                f"✗ Server did not stop within {self.settings.stop_timeout:g} seconds, "
                f"it is still running. Use the console action to check on it."
            )
        else:
            status.done("✗ Stopped waiting, the server may still be shutting down.")
        return False

    # actions

    async def action_setup(self):
        print("Setting up the server...")
        context = SetupContext(password_prompt=self.ask_password)
        status = StatusLine()
        for package in PACKAGES:
            version = await installed_version(package)
            if version is not None:
                print(f"✓ {package.name} is installed (version: {version})")
                continue
            await status.update(f"Installing {package.name}...")
            await install_package(context, package, on_output=status.update)
            status.done(f"✓ {package.name} installed successfully.")

        if self.settings.dns.configured:
            ip = self.public_ip or (self.ipv4s[0] if self.ipv4s else None)
            if not ip:
                raise PreconditionException("Could not determine the public ip address for the DNS record.")
            dns = CloudflareDNS(self.settings.dns.api_token, self.settings.dns.zone_id, self.settings.dns.record_name)
            result = await dns.upsert_a_record(ip)
            print(f"✓ DNS record {self.settings.dns.record_name} -> {ip} ({result})")
        else:
            print(f"DNS is not configured, skipping record update (see {self.settings_store.data_file}).")
        print("Server setup completed successfully!")

    async def action_load(self):
        config = config_store.read_optional(self.world_path)
        if config and await self.sessions.is_running(config.server_type):
            raise ServerRunningException(
                "Cannot load a world while the server is running.", hint="Please stop the server first."
            )
        backups = await self._backup_manager()
        status = StatusLine()
        await status.update("Loading available worlds from Google Drive...")
        worlds = await backups.list_worlds()
        if not worlds:
            status.done()
            raise PreconditionException("No worlds found in the specified Google Drive folder.")
        status.done(f"✓ Worlds loaded successfully. ({len(worlds)} worlds found)")

        options = [
            (
                world.id,
                world.name,
                f"Modified: {world.modified_at.astimezone().strftime('%Y-%m-%d %H:%M') if world.modified_at else 'Unknown'}"
                f" | Size: {human_size(world.size_bytes) if world.size_bytes else 'Unknown'}",
            )
            for world in worlds
        ]
        world_id = await self.select("Select a world to load", options)
        world = next(w for w in worlds if w.id == world_id)

        print(f"Loading world from Google Drive: {world.name} ({world.size_bytes} bytes)")
        await backups.load_world(self.world_path, world, progress=self._transfer_progress(status, "Downloading"))
        status.done("✓ World loaded successfully!")
        print(f"World is now available at: {self.world_path}")

    async def action_upload(self):
        self._require_world()
        backups = await self._backup_manager()
        status = StatusLine()

        archive = None
        for pending in backups.pending_uploads():
            if await self.confirm(f"Resume unfinished upload of {pending.name}?"):
                archive = pending
                break
        if archive is None:
            await status.update(f"Zipping {self.world_path} folder...")
            try:
                archive, size = await backups.create_archive(self.world_path)
            except MineWorkerException:
                status.done()
                raise
            status.done(f"✓ World folder zipped successfully. ({size} bytes)")

        await status.update("Uploading world to Google Drive...")
        file_id = await backups.upload_archive(archive, progress=self._transfer_progress(status, "Uploading"))
        status.done(f"✓ World uploaded successfully. File ID: {file_id}")
        print(f"File Name: {archive.name}\nFile ID: {file_id}")

    async def action_install(self):
        server_type = await self.select(
            "Select the server type to install",
            [(choice, choice.capitalize(), "") for choice in ServerType.choices],
        )
        if server_type not in ServerType.supported:
            raise UnsupportedServerTypeException(f"Installation for {server_type} is not supported yet.")
        self._require_world()

        installer_jar = await self.ask(
            "Enter the Forge installer JAR file name", find_installer(self.world_path) or ""
        )
        if not (self.world_path / installer_jar).is_file():
            raise PreconditionException(f"File {installer_jar} does not exist in the world directory.")
        memory = validate_memory(
            await self.ask("Enter the maximum memory allocation for the server (e.g., 2G)", "2G")
        )

        status = StatusLine()
        await status.update(f"Installing Forge from {installer_jar}...")
        await ServerInstaller().install(self.world_path, server_type, installer_jar, memory, on_output=status.update)
        status.done(f"✓ Forge installed successfully from {installer_jar}.")
        print(f"Memory allocation set to {memory} for the server.")
        print(f"Forge server installed successfully in {self.world_path}.")

    async def action_start(self):
        config = self.load_operable_config()
        status = StatusLine()
        await status.update("Checking if the server is already running...")
        try:
            await self.sessions.start(
                config.server_type,
                str(Path(config.world_path) / config_store.LAUNCH_SCRIPT_NAME),
                config.world_path,
                on_output=status.update,
            )
        except MineWorkerException:
            status.done()
            raise
        status.done(f'✓ {config.server_type.capitalize()} server started in world directory "{config.world_path}".')

    async def action_stop(self):
        config = self.load_operable_config()
        await self._stop_session(config)

    async def action_restart(self):
        config = self.load_operable_config()
        if await self._stop_session(config):
            await self.action_start()

    async def action_status(self):
        config = self.load_operable_config()
        if await self.sessions.state(config.server_type) is SessionState.ABSENT:
            print(f"Server ({config.server_type}) is not running.")
            return
        session = await self.sessions.session_info(config.server_type)
        print(f"Session: {session or config.session_name}")
        address = ServerProperties(Path(config.world_path) / "server.properties").status_address()
        server = await ping(address)
        if server is None:
            print("The server process is running but does not answer status requests yet.")
        else:
            print(
                f"Version: {server.version}\n"
                f"Players: {server.players_online}/{server.players_max}\n"
                f"Latency: {server.latency} ms"
            )

    async def action_console(self):
        config = self.load_operable_config()
        print("Detach with Ctrl+A, D to return here.")
        code = await self.sessions.attach(config.server_type)
        print(f"Screen session exited with code {code}")

    async def run_action(self, action: str) -> bool:
        """
        Run one menu action. Returns False when the console should exit.
        """
        if action == "exit":
            print("Exiting the Minecraft Worker Node. Goodbye!")
            return False
        handler = getattr(self, f"action_{action}", None)
        if handler is None:
            print("Invalid action selected.")
            return True

        self.logger.info(f"Running action {action}")
        try:
            await handler()
        except ActionCancelledException as e:
            print(str(e) or "Action cancelled.")
        except MineWorkerException as e:
            self.logger.error(f"Action {action} failed: {e}")
            print(f"✗ {e}")
            if isinstance(e, ProcessFailedException) and e.output:
                print(e.output)
            if e.hint:
                print(f"Note: {e.hint}")
        except Exception:
            self.logger.exception(f"Unexpected error in action {action}")
            raise
        return True

    async def run(self):
        if not os.path.exists(self.settings_store.data_file):
            self.settings_store.save()
        await self.gather_addresses()
        print("Welcome to the Minecraft Worker Node!")
        while True:
            await self.print_banner()
            try:
                action = await self.select("Select an Action", ACTIONS)
            except ActionCancelledException:
                print("Not a valid input")
                continue
            if not await self.run_action(action):
                break
            await self.wait_for_enter()


async def main():
    await OperatorConsole().run()


def run_app():
    setup_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nInterrupted, exiting.")
        sys.exit(130)


if __name__ == "__main__":
    run_app()
