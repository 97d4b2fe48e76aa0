from .data_store import SettingsStore
from .drive import DriveTransport, UploadStateStore
from .drive_auth import DriveAuth
from .installer import ServerInstaller
from .world_backup import WorldBackupManager
