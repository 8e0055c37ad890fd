from .settings_client import ClientState, SettingsClient
