"""
Where mineworker keeps its own state.

The world directory sits next to the directory the console is started from.
Everything else (settings, Drive tokens, unfinished uploads, start locks, logs)
goes to a per-user data directory, which MINEWORKER_DATA_DIR relocates.
"""
import os
import pathlib
import platform

from mineworker import __app_name__


def _default_data_dir() -> pathlib.Path:
    system = platform.system()
    if system == "Linux":
        return pathlib.Path.home() / ".local" / "share" / __app_name__
    if system == "Darwin":
        return pathlib.Path.home() / "Library" / "Application Support" / __app_name__
    raise RuntimeError(f"Unsupported platform: {system}")


data_dir = pathlib.Path(os.environ.get("MINEWORKER_DATA_DIR") or _default_data_dir()).expanduser()
data_dir.mkdir(parents=True, exist_ok=True)

settings_file = data_dir / "settings.json"
upload_state_file = data_dir / "upload_state.json"
lock_dir = data_dir / "locks"
log_dir = data_dir / "logs"


def world_dir(cwd: str = None) -> pathlib.Path:
    return pathlib.Path(cwd or os.getcwd()).joinpath("..", "world").resolve()
