"""Environment-backed settings for :mod:`order_integrity`."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["OrderIntegritySettings", "get_settings"]


class OrderIntegritySettings(BaseSettings):
    """Expose environment-derived configuration for order signing.

    Attributes:
        key_dir: Directory holding the server signing keypair.
        algorithm: Signature algorithm used for newly generated keys and
            new signatures.
        public_key_file: File name of the raw public key inside ``key_dir``.
        secret_key_file: File name of the raw secret key inside ``key_dir``.
        log_level: Logging level name applied by the CLI.
        alert_on_dispute: Escalate failed read-time verifications to
            ``ERROR`` so alerting rules can page on them.
        cache_workers: Thread pool size for background ``verified`` cache
            writes.
    """

    key_dir: Path = Field(
        default=Path("config/signing_keys"), alias="ORDER_INTEGRITY_KEY_DIR"
    )
    algorithm: str = Field(default="ML-DSA-65", alias="ORDER_INTEGRITY_ALGORITHM")
    public_key_file: str = Field(
        default="signing_public.key", alias="ORDER_INTEGRITY_PUBLIC_KEY_FILE"
    )
    secret_key_file: str = Field(
        default="signing_secret.key", alias="ORDER_INTEGRITY_SECRET_KEY_FILE"
    )
    log_level: str = Field(default="INFO", alias="ORDER_INTEGRITY_LOG_LEVEL")
    alert_on_dispute: bool = Field(
        default=False, alias="ORDER_INTEGRITY_ALERT_ON_DISPUTE"
    )
    cache_workers: int = Field(default=2, ge=1, alias="ORDER_INTEGRITY_CACHE_WORKERS")

    model_config = SettingsConfigDict(
        env_file=None, extra="ignore", populate_by_name=True
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> str:
        """Accept level names case-insensitively, falling back to ``INFO``."""

        if not isinstance(value, str):
            return "INFO"
        name = value.strip().upper()
        if isinstance(logging.getLevelName(name), int):
            return name
        return "INFO"

    @property
    def public_key_path(self) -> Path:
        return self.key_dir / self.public_key_file

    @property
    def secret_key_path(self) -> Path:
        return self.key_dir / self.secret_key_file

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)


def get_settings() -> OrderIntegritySettings:
    """Return an :class:`OrderIntegritySettings` instance.

    Returns:
        Settings parsed from environment variables.
    """

    return OrderIntegritySettings()
