"""Broker connection settings from the environment or a script file."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping

from .transport.connection import DEFAULT_PORT

logger = logging.getLogger(__name__)

HOST_ENV = "VISTA_HOST"
PORT_ENV = "VISTA_PORT"
LOG_LEVEL_ENV = "VISTA_LOG_LEVEL"
DEFAULT_HOST = "localhost"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


@dataclass(frozen=True)
class BrokerSettings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @classmethod
    def from_env(cls) -> BrokerSettings:
        return cls(
            host=os.getenv(HOST_ENV, "").strip() or DEFAULT_HOST,
            port=_env_int(PORT_ENV, DEFAULT_PORT),
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> BrokerSettings:
        """Read a script's ``vista`` block, falling back to the environment."""
        base = cls.from_env()
        data = data or {}
        return cls(
            host=str(data.get("host") or base.host),
            port=int(data.get("port") or base.port),
        )


def log_level() -> str:
    return os.getenv(LOG_LEVEL_ENV, "INFO").strip().upper() or "INFO"
