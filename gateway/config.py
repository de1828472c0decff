from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    # App config
    app_name: str = "Unified Gateway"
    debug: bool = False
    log_level: str = "INFO"
    log_format: str = "json"
    logging_config_path: Optional[str] = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    # Route/mock tables
    config_path: Optional[str] = None
    config_watch_interval: float = 0.0  # seconds, 0 disables the file watcher
    reload_on_sighup: bool = True

    # Backend forwarding
    backend_timeout: float = 30.0
    backend_connect_timeout: float = 5.0
    max_connections: int = 100
    max_keepalive_connections: int = 20
    add_forwarded_headers: bool = True

    # Admin interface
    admin_prefix: str = "/_gateway"
    admin_token: Optional[str] = None

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        if not 1 <= v <= 65535:
            raise ValueError('Port must be between 1 and 65535')
        return v

    @field_validator('backend_timeout', 'backend_connect_timeout')
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError('Timeouts must be positive')
        return v

    @field_validator('config_watch_interval')
    @classmethod
    def validate_watch_interval(cls, v):
        if v < 0:
            raise ValueError('Watch interval cannot be negative')
        return v

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError("Log format must be 'json' or 'console'")
        return v

    @field_validator('admin_prefix')
    @classmethod
    def validate_admin_prefix(cls, v):
        v = v.rstrip("/")
        if not v.startswith("/"):
            raise ValueError('Admin prefix must start with "/" and not be the root path')
        return v


settings = Settings()
