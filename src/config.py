"""Runtime configuration read from environment variables."""

from __future__ import annotations

import logging
import os
from typing import Literal

from pydantic import BaseModel, ConfigDict

from src.vk.client import DEFAULT_API_VERSION

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class RelayConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    vk_access_token: str
    domain: str
    vk_api_version: str = DEFAULT_API_VERSION
    storage_backend: Literal["vk", "sqlite"] = "vk"
    storage_db_path: str = "data/relay.db"
    audit_log_path: str | None = None
    log_level: str = "info"

    @classmethod
    def from_env(cls) -> RelayConfig:
        """Build the config; raises KeyError when a required variable is missing."""
        return cls(
            vk_access_token=os.environ["VK_ACCESS_TOKEN"],
            domain=os.environ["RELAY_DOMAIN"],
            vk_api_version=os.environ.get("VK_API_VERSION", DEFAULT_API_VERSION),
            storage_backend=os.environ.get("STORAGE_BACKEND", "vk"),  # type: ignore[arg-type]
            storage_db_path=os.environ.get("STORAGE_DB_PATH", "data/relay.db"),
            audit_log_path=os.environ.get("AUDIT_LOG_PATH") or None,
            log_level=os.environ.get("LOG_LEVEL", "info"),
        )


def public_url(domain: str, path: str) -> str:
    """Absolute URL under the public domain; ``https`` is assumed when no scheme is given."""
    base = domain if "://" in domain else f"https://{domain}"
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


def webhook_url(domain: str, recipient_id: int) -> str:
    return public_url(domain, f"/webhook/{recipient_id}")


def callback_url(domain: str) -> str:
    return public_url(domain, "/callback")


def configure_logging(level: str) -> None:
    """Root logging setup; an unknown level name falls back to INFO."""
    resolved = logging.getLevelName(level.upper())
    known = isinstance(resolved, int)
    logging.basicConfig(level=resolved if known else logging.INFO, format=LOG_FORMAT)
    if not known:
        logging.getLogger(__name__).warning("Unknown log level %r, using INFO", level)
