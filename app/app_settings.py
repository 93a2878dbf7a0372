from enum import StrEnum
from pathlib import Path
import tempfile

from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class StorageBackend(StrEnum):
    MEMORY = "memory"
    JSON = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BURNLINK_",
        env_ignore_empty=True,  # use the default values instead of emtpy env var in case it is not configured in .env
    )
    storage_backend: StorageBackend = StorageBackend.MEMORY
    storage_path: Path = Path(tempfile.gettempdir()) / "file_storage.json"

    ttl_hours: float = 24
    # 0 disables the limit
    max_upload_bytes: int = 50 * 1024 * 1024

    reap_on_put: bool = True
    # 0 disables the background sweep
    reap_interval_seconds: float = 600

    cors_allow_origins: list[str] = ["*"]
    status_endpoint_enabled: bool = True

    log_level: str = "INFO"


settings = Settings()
