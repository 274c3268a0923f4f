"""Runtime configuration.

`get_config()` reads the `NAREXTRACT_*` environment variables into a frozen
`AppConfig`; anything unset falls back to the public NixOS services.
"""

import os
from dataclasses import dataclass

DEFAULT_CACHE_URL = "https://cache.nixos.org"
DEFAULT_HYDRA_URL = "https://hydra.nixos.org"
DEFAULT_STORE_DIR = "/nix/store"
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 300.0
DEFAULT_RETRIES = 5


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


@dataclass(frozen=True)
class AppConfig:
    cache_url: str
    hydra_url: str
    store_dir: str
    connect_timeout: float
    read_timeout: float
    retries: int


def get_config() -> AppConfig:
    return AppConfig(
        cache_url=os.getenv("NAREXTRACT_CACHE_URL", DEFAULT_CACHE_URL).rstrip("/"),
        hydra_url=os.getenv("NAREXTRACT_HYDRA_URL", DEFAULT_HYDRA_URL).rstrip("/"),
        store_dir=os.getenv("NAREXTRACT_STORE_DIR", DEFAULT_STORE_DIR).rstrip("/"),
        connect_timeout=_env_float("NAREXTRACT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT),
        read_timeout=DEFAULT_READ_TIMEOUT,
        retries=max(1, _env_int("NAREXTRACT_RETRIES", DEFAULT_RETRIES)),
    )
