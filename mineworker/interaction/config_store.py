import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from mineworker.exceptions import (
    ConfigNotFoundException,
    MalformedConfigException,
    LaunchScriptMismatchException,
)
from mineworker.interaction.models import ServerConfig

CONFIG_FILE_NAME = "mineworker_config.json"
LAUNCH_SCRIPT_NAME = "run.sh"

logger = logging.getLogger("MineWorker.ServerConfigStore")


def config_path(world_path: Union[str, Path]) -> Path:
    return Path(world_path) / CONFIG_FILE_NAME


def write(world_path: Union[str, Path], config: ServerConfig):
    path = config_path(world_path)
    logger.info(f"Writing server config to {path}")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_json(), f, indent=2)


def read(world_path: Union[str, Path]) -> ServerConfig:
    """
    Load the config written by the install action.

    :raises ConfigNotFoundException: the file does not exist, install has not run
    :raises MalformedConfigException: the file exists but is damaged
    """
    path = config_path(world_path)
    if not os.path.isfile(path):
        raise ConfigNotFoundException(
            f'Configuration file "{CONFIG_FILE_NAME}" does not exist in {world_path}',
            hint="Please run the install action first.",
        )
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Error loading server config: {e}")
            raise MalformedConfigException(
                f"Failed to parse {path}: {e}",
                hint="Please check the file format or re-run the install action.",
            ) from e

    if not isinstance(data, dict) or not isinstance(data.get("serverType"), str):
        raise MalformedConfigException(
            f'{path} is missing the required "serverType" field',
            hint="Please check the file format or re-run the install action.",
        )
    return ServerConfig(
        server_type=data["serverType"],
        world_path=data.get("worldPath") or str(world_path),
        memory=data.get("memory") or "2G",
    )


def read_optional(world_path: Union[str, Path]) -> Optional[ServerConfig]:
    try:
        return read(world_path)
    except (ConfigNotFoundException, MalformedConfigException) as e:
        logger.debug(f"No usable server config: {e}")
        return None


def check_launch_script(config: ServerConfig):
    """
    Make sure run.sh still launches the session recorded in the config.
    """
    script = Path(config.world_path) / LAUNCH_SCRIPT_NAME
    if not script.is_file():
        raise LaunchScriptMismatchException(
            f"Launch script {script} does not exist",
            hint="Please run the install action again.",
        )
    with open(script, "r", encoding="utf-8") as f:
        content = f.read()
    if config.session_name not in content:
        raise LaunchScriptMismatchException(
            f"Launch script {script} does not start session {config.session_name}",
            hint="The script and mineworker_config.json disagree, re-run the install action.",
        )
