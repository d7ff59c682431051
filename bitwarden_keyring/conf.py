"""
Keyring Configuration — validated runtime settings.

Reads settings from environment variables named after the fields:
    BITWARDEN_KEYRING_BW_PORT = <int, 0 selects a free port>
    BITWARDEN_KEYRING_AUTO_UNLOCK = <bool>
    ...

Command-line flags override the environment (see ``__main__``).
"""
import os
import socket
import logging
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("bwkeyring.config")

ENV_PREFIX = "BITWARDEN_KEYRING_"


def select_free_port(host: str = "127.0.0.1") -> int:
    """Ask the kernel for an unused TCP port on ``host``.

    The port is released before returning, so another process could
    still claim it before ``bw serve`` binds it.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        port = sock.getsockname()[1]
    logger.info("Auto-selected port: %d", port)
    return port


def env_overrides(environ: Optional[dict[str, str]] = None) -> dict[str, Any]:
    """Collect ``BITWARDEN_KEYRING_*`` values for the known fields."""
    environ = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    for name in KeyringConfig.model_fields:
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is not None and raw != "":
            values[name] = raw
    return values


class KeyringConfig(BaseModel):
    """Validated keyring configuration."""

    bw_port: int = Field(default=0, ge=0, le=65535)
    bw_host: str = "127.0.0.1"
    bw_start_timeout: float = Field(default=10.0, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)
    auto_unlock: bool = True
    debug: bool = False
    debug_http: bool = False
    allow_insecure_prompts: bool = False
    systemd_ask_password_path: Optional[str] = None
    prompt_timeout: int = Field(default=120, ge=1)
    bus: str = "session"

    @field_validator("systemd_ask_password_path")
    @classmethod
    def validate_ask_password_path(cls, v: Optional[str]) -> Optional[str]:
        """The helper path must be absolute so PATH cannot redirect it."""
        if v and not os.path.isabs(v):
            raise ValueError(
                f"systemd_ask_password_path must be an absolute path, got {v!r}"
            )
        return v or None

    @field_validator("bus")
    @classmethod
    def validate_bus(cls, v: str) -> str:
        v = v.lower()
        if v not in ("session", "system"):
            raise ValueError(f"Unsupported bus: {v}")
        return v

    @model_validator(mode="after")
    def warn_ineffective_http_debug(self) -> "KeyringConfig":
        if self.debug_http and not self.debug:
            logger.warning("debug_http has no effect without debug")
        return self

    @property
    def http_debug(self) -> bool:
        """Log redacted HTTP error bodies (needs both debug flags)."""
        return self.debug and self.debug_http

    def with_port(self) -> "KeyringConfig":
        """Return a copy whose ``bw_port`` is a concrete port number."""
        if self.bw_port:
            return self
        return self.model_copy(update={"bw_port": select_free_port(self.bw_host)})

    @classmethod
    def from_env(cls, **overrides: Any) -> "KeyringConfig":
        """Create a KeyringConfig from the environment.

        Args:
            **overrides: Values taking precedence over the environment;
                ``None`` values are ignored.

        Returns:
            Populated KeyringConfig instance.
        """
        values = env_overrides()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
