# owuiarchive/src/owuiarchive/core/config.py

from functools import lru_cache
from typing import Optional

import keyring
from keyring.errors import KeyringError
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BACKUP_TOOL_VERSION = "0.3.0"
KEYRING_SERVICE = "owuiarchive"


class Settings(BaseSettings):
    open_webui_url: str = Field(default="http://localhost:8080")
    open_webui_api_key: Optional[str] = Field(default=None)
    backups_dir: str = Field(default="./backups", validation_alias="OWUI_BACKUPS_DIR")
    keys_dir: str = Field(default="./keys", validation_alias="OWUI_KEYS_DIR")
    encryption_key_file: Optional[str] = Field(default=None, validation_alias="OWUI_ENCRYPTION_KEY")
    request_timeout: float = Field(default=60.0, validation_alias="OWUI_REQUEST_TIMEOUT")
    server_port: int = Field(default=3000, validation_alias="OWUI_SERVER_PORT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
        populate_by_name=True,
    )

    def get_secure_value(self, key: str, default=None):
        attr_name = key.lower()
        try:
            secure = keyring.get_password(KEYRING_SERVICE, key)
        except KeyringError:
            secure = None
        return secure or getattr(self, attr_name, default)

    @property
    def api_key(self) -> Optional[str]:
        """API key from the environment, falling back to the OS keyring."""
        if self.open_webui_api_key:
            return self.open_webui_api_key
        return self.get_secure_value("OPEN_WEBUI_API_KEY")


@lru_cache()
def get_settings() -> Settings:
    return Settings()
