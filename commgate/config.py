"""
Communication Gateway Configuration
===================================

PURPOSE:
    Pydantic-Settings based configuration for the gateway server, CLI and
    approval console. All settings can be overridden via environment
    variables (COMMGATE_ prefix) or a local .env file.

    DATABASE_URL (unprefixed) overrides the SQLite path, matching the
    convention used by Alembic.
"""

import logging
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Gateway settings shared by the server process and the operator CLI."""

    app_name: str = "commgate"
    debug: bool = False
    log_level: str = "INFO"

    # Everything the gateway writes lives here: database, pid file, logs,
    # persisted HMAC pepper.
    data_directory: str = str(Path.home() / ".commgate")

    # HTTP server (loopback by default; agents run on the same host)
    host: str = "127.0.0.1"
    port: int = 9810

    # HMAC pepper for API key hashing. Auto-generated and persisted under
    # data_directory when unset.
    apikey_hmac_secret: Optional[str] = None

    # Defaults applied to newly created keys
    default_rate_limit_per_hour: int = 10
    default_rate_limit_per_day: int = 50

    # Outbound calls
    webhook_timeout_s: float = 10.0
    webhook_max_workers: int = 4
    delivery_timeout_s: float = 120.0

    # Email sender (SMTP). Email is unavailable when smtp_host is unset.
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from: Optional[str] = None
    smtp_starttls: bool = True

    # SMS / iMessage senders: external commands receiving the message as JSON
    # on stdin. The channel is unavailable when its command is unset.
    sms_command: Optional[str] = None
    imessage_command: Optional[str] = None
    command_timeout_s: float = 60.0

    class Config:
        env_file = ".env"
        env_prefix = "COMMGATE_"
        extra = "ignore"

    @property
    def data_path(self) -> Path:
        return Path(self.data_directory).expanduser()

    @property
    def log_directory(self) -> Path:
        return self.data_path / "logs"

    @property
    def pid_file(self) -> Path:
        return self.data_path / "gateway.pid"

    @property
    def daemon_log_file(self) -> Path:
        return self.log_directory / "gateway-daemon.log"


settings = Settings()
