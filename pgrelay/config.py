import logging
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict

from pgrelay.constants import CHANNEL_EVENT_TYPES
from pgrelay.utils.env_paths import resolve_backend_env_path

# NOTE: paths are resolved at import time, same as the `settings` singleton at the
# bottom of this file.
_DEFAULT_ENV_FILES = (
    resolve_backend_env_path(".env"),
    resolve_backend_env_path(".env.prod"),
)


LOG = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=_DEFAULT_ENV_FILES, extra="ignore")

    ENV: str = "local"
    JSON_LOGGING: bool = False
    LOG_LEVEL: str = "INFO"
    PORT: int = 3001
    ALLOWED_ORIGINS: list[str] = ["*"]

    # upstream notification source
    DATABASE_STRING: str = "postgresql://pgrelay@localhost/pgrelay"
    NOTIFY_CHANNELS: list[str] = list(CHANNEL_EVENT_TYPES)
    CONNECT_TIMEOUT_SECONDS: float = 10
    KEEPALIVE_INTERVAL_SECONDS: float = 30
    KEEPALIVE_TIMEOUT_SECONDS: float = 10
    RECONNECT_DELAY_SECONDS: float = 3
    SHUTDOWN_TIMEOUT_SECONDS: float = 5

    # downstream peers
    WEBSOCKET_PATH: str = "/ws"
    PEER_SEND_TIMEOUT_SECONDS: float = 5

    def model_post_init(self, __context: Any) -> None:  # type: ignore[override]
        super().model_post_init(__context)
        # asyncpg only understands plain libpq DSNs, so drop SQLAlchemy-style driver suffixes
        scheme, sep, remainder = self.DATABASE_STRING.partition("://")
        if not sep:
            return
        dialect, driver_sep, driver = scheme.partition("+")
        if not driver_sep:
            return
        updated_string = f"{dialect}://{remainder}"
        LOG.info(
            "Stripping driver %s from DATABASE_STRING; the notification listener connects with asyncpg.",
            driver,
        )
        object.__setattr__(self, "DATABASE_STRING", updated_string)

    def is_local_environment(self) -> bool:
        return self.ENV == "local"


settings = Settings()
