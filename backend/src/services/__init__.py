from .sync_service import SettingsSyncService
