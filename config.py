import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class HubSettings:
    hub_url: str = "http://localhost:8080"
    mempool_api: str = "https://mempool.space/api"
    http_timeout: float = 15.0
    metadata_concurrency: int = 8
    refresh_interval: float = 30.0
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "HubSettings":
        settings = cls(
            hub_url=os.environ.get("HUB_URL", cls.hub_url).rstrip("/"),
            mempool_api=os.environ.get("MEMPOOL_API", cls.mempool_api).rstrip("/"),
            http_timeout=_env_float("HTTP_TIMEOUT", cls.http_timeout),
            metadata_concurrency=_env_int(
                "METADATA_CONCURRENCY", cls.metadata_concurrency
            ),
            refresh_interval=_env_float("REFRESH_INTERVAL", cls.refresh_interval),
            log_level=os.environ.get("LOG_LEVEL", cls.log_level).upper(),
            host=os.environ.get("HOST", cls.host),
            port=_env_int("PORT", cls.port),
        )
        if settings.metadata_concurrency < 1:
            raise ValueError("METADATA_CONCURRENCY must be at least 1")
        if settings.refresh_interval <= 0:
            raise ValueError("REFRESH_INTERVAL must be positive")
        return settings
