"""
asserts_core.config
-------------------
Process-wide settings, read once from the environment at startup, and the
per-device registration parameters.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import Optional

from .constants import (
    DEFAULT_DEVICE_SERVICE_URL, DEFAULT_MAX_RETRIES, DEFAULT_REQUEST_ID_PATH,
    DEFAULT_RETRY_INTERVAL, DEFAULT_RETRY_MAX_INTERVAL, DEFAULT_RETRY_MULTIPLIER,
    DEFAULT_SERIAL_PATH,
)


@dataclass(frozen=True)
class Settings:
    storage_provider: str = "sqlite"
    db_path: str = "db/asserts.db"
    trusted_roots: Optional[str] = None
    transport: str = "http"
    device_service_url: str = DEFAULT_DEVICE_SERVICE_URL
    request_id_path: str = DEFAULT_REQUEST_ID_PATH
    serial_path: str = DEFAULT_SERIAL_PATH
    retry_interval: float = DEFAULT_RETRY_INTERVAL
    max_retries: int = DEFAULT_MAX_RETRIES
    log_level: str = "INFO"

    def storage_config(self) -> dict:
        return {"provider": self.storage_provider, "sqlite_path": self.db_path}


def load_settings() -> Settings:
    return Settings(
        storage_provider=os.getenv("ASSERTS_STORAGE_PROVIDER", "sqlite"),
        db_path=os.getenv("ASSERTS_DB_PATH", "db/asserts.db"),
        trusted_roots=os.getenv("ASSERTS_TRUSTED_ROOTS") or None,
        transport=os.getenv("ASSERTS_TRANSPORT", "http").lower(),
        device_service_url=os.getenv("ASSERTS_DEVICE_SERVICE_URL", DEFAULT_DEVICE_SERVICE_URL),
        request_id_path=os.getenv("ASSERTS_REQUEST_ID_PATH", DEFAULT_REQUEST_ID_PATH),
        serial_path=os.getenv("ASSERTS_SERIAL_PATH", DEFAULT_SERIAL_PATH),
        retry_interval=float(os.getenv("ASSERTS_RETRY_INTERVAL", DEFAULT_RETRY_INTERVAL)),
        max_retries=int(os.getenv("ASSERTS_MAX_RETRIES", DEFAULT_MAX_RETRIES)),
        log_level=os.getenv("ASSERTS_LOG_LEVEL", "INFO").upper(),
    )


@dataclass(frozen=True)
class RegistrationConfig:
    """What a device asks the device service for.

    proposed_serial is only sent when set (factory pre-seeded serials);
    otherwise the service assigns one.
    """
    brand_id: str
    model: str
    device_key_id: str
    proposed_serial: Optional[str] = None
    # device details, copied by the service into the serial body
    body: bytes = b""
    probe: bool = False
    request_id_path: str = DEFAULT_REQUEST_ID_PATH
    serial_path: str = DEFAULT_SERIAL_PATH
    retry_interval: float = DEFAULT_RETRY_INTERVAL
    retry_multiplier: float = DEFAULT_RETRY_MULTIPLIER
    retry_max_interval: float = DEFAULT_RETRY_MAX_INTERVAL
    max_retries: int = DEFAULT_MAX_RETRIES
    extra_headers: dict = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "RegistrationConfig":
        kwargs.setdefault("request_id_path", settings.request_id_path)
        kwargs.setdefault("serial_path", settings.serial_path)
        kwargs.setdefault("retry_interval", settings.retry_interval)
        kwargs.setdefault("max_retries", settings.max_retries)
        return cls(**kwargs)
