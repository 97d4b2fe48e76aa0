import logging
import os
from typing import Union


class ServerProperties:
    """
    Read-only view of server.properties, used to find where the server listens.
    """

    logger: logging.Logger
    __data: dict

    def __init__(self, file_name: Union[str, os.PathLike]):
        self.logger = logging.getLogger(f"MineWorker.{self.__class__.__name__}")
        self.file_name = str(file_name)
        self.__data = {}
        if not os.path.exists(self.file_name):
            self.logger.debug("Properties file not found, using defaults")
            return
        with open(self.file_name, "r", encoding="utf-8") as f:
            for i in f:
                if i.startswith("#") or "=" not in i:
                    continue

                key, raw_value = i.split("=", 1)
                raw_value = raw_value.rstrip("\n")

                if raw_value in ["true", "false"]:
                    value = raw_value == "true"
                else:
                    try:
                        value = int(raw_value)
                    except ValueError:
                        value = raw_value

                self.__data[key] = value
        self.logger.debug(f"Loaded {len(self.__data)} entries from properties file")

    def get(self, key, fallback=None):
        return self.__data.get(key, fallback)

    def status_address(self) -> str:
        host = self.get("server-ip") or "localhost"
        return f"{host}:{self.get('server-port', 25565)}"
