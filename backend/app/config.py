"""Application configuration with environment variable support.

All settings can be overridden via environment variables prefixed with ``SPAWNPOINT_``,
or via a ``.env`` file in the project root.

Examples::

    SPAWNPOINT_PORT=9100 spawnpoint start
    SPAWNPOINT_START_PORT=30000 SPAWNPOINT_END_PORT=30099 spawnpoint start
    SPAWNPOINT_PUBLIC_IP=203.0.113.7 spawnpoint start
"""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root: two levels up from this file (backend/app/config.py -> spawnpoint/)
_BASE_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Spawnpoint configuration. All values overridable via env vars."""

    model_config = SettingsConfigDict(
        env_prefix="SPAWNPOINT_",
        env_file=str(_BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server (the listening port doubles as the heartbeat port handed to game servers)
    host: str = "0.0.0.0"
    port: int = 9006
    public_ip: str | None = None
    public_ip_lookup_url: str = "https://api.ipify.org"

    # Paths
    data_dir: Path = _BASE_DIR / "data"

    # Logging
    log_level: str = "INFO"

    # Port range handed out on every agent (inclusive)
    start_port: int = 5000
    end_port: int = 5100

    # Lifecycle
    heartbeat_timeout_seconds: float = 30.0
    max_active_seconds: float = 24 * 60 * 60
    reaper_interval_seconds: float = 1.0

    # Agent API
    agent_request_timeout_seconds: float = 10.0
    probe_agent_ports: bool = True

    @property
    def db_path(self) -> Path:
        return self.data_dir / "spawnpoint.db"

    @property
    def database_url(self) -> str:
        return f"sqlite+aiosqlite:///{self.db_path}"

    @property
    def max_ports_per_agent(self) -> int:
        return self.end_port - self.start_port + 1


# Singleton instance, import this everywhere
settings = Settings()

DATA_DIR = settings.data_dir
DATABASE_URL = settings.database_url
