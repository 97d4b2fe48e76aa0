import json
import logging
import os
from dataclasses import dataclass, field

from mineworker.paths import data_dir, settings_file


@dataclass
class DriveSettings:
    folder_id: str = ""
    credentials_file: str = str(data_dir / "cred.json")
    token_file: str = str(data_dir / "token.json")


@dataclass
class DNSSettings:
    zone_id: str = ""
    api_token: str = ""
    record_name: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.zone_id and self.api_token and self.record_name)


@dataclass
class Settings:
    drive: DriveSettings = field(default_factory=DriveSettings)
    dns: DNSSettings = field(default_factory=DNSSettings)
    stop_timeout: float = 120
    poll_interval: float = 1.0


ENV_OVERRIDES = {
    "MINEWORKER_DRIVE_FOLDER_ID": ("drive", "folder_id"),
    "MINEWORKER_DNS_ZONE_ID": ("dns", "zone_id"),
    "MINEWORKER_DNS_API_TOKEN": ("dns", "api_token"),
    "MINEWORKER_DNS_RECORD_NAME": ("dns", "record_name"),
}


class SettingsStore:
    logger: logging.Logger
    data_file = str(settings_file)

    def __init__(self, data_file: str = None):
        self.logger = logging.getLogger(
            f"MineWorker.{self.__class__.__name__}"
        )
        if data_file is not None:
            self.data_file = data_file
        self.settings = Settings()
        self.load_data()

    def load_data(self):
        if os.path.exists(self.data_file):
            with open(self.data_file, "r") as f:
                try:
                    data = json.load(f)
                except json.JSONDecodeError as e:
                    self.logger.error(f"Error loading settings, using defaults: {e}")
                    data = {}

            try:
                self.settings = Settings(
                    drive=DriveSettings(**data.get("drive", {})),
                    dns=DNSSettings(**data.get("dns", {})),
                    stop_timeout=float(data.get("stop_timeout", 120)),
                    poll_interval=float(data.get("poll_interval", 1.0)),
                )
            except (TypeError, ValueError, AttributeError) as e:
                self.logger.error(f"Invalid settings, using defaults: {e}")
                self.settings = Settings()

        for variable, (section, key) in ENV_OVERRIDES.items():
            value = os.environ.get(variable)
            if value:
                setattr(getattr(self.settings, section), key, value)

    def save(self):
        with open(self.data_file, "w") as f:
            json.dump(
                {
                    "drive": self.settings.drive.__dict__,
                    "dns": self.settings.dns.__dict__,
                    "stop_timeout": self.settings.stop_timeout,
                    "poll_interval": self.settings.poll_interval,
                },
                f,
                indent=4,
            )
