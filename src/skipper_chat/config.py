"""
Configuration: ~/.skipper/config.json with environment overrides.

File layout::

    {"server": {...ServerConfig...}, "client": {...ClientConfig...}}
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from skipper_chat.models.message import MAX_MESSAGE_LENGTH

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".skipper"
CONFIG_FILE = CONFIG_DIR / "config.json"

DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:3031",
    "http://localhost:3030",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3031",
    "http://127.0.0.1:3030",
]


class ServerConfig(BaseModel):
    data_dir: Path = Field(default_factory=lambda: CONFIG_DIR / "memory")
    host: str = "127.0.0.1"
    port: int = 3031
    max_message_length: int = MAX_MESSAGE_LENGTH
    allowed_origins: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    socketio_path: str = "socket.io"
    # Exact host name of a tailnet deployment, allowed over http and https.
    tailscale_domain: Optional[str] = None
    rate_limit_enabled: bool = True
    rate_limit: str = "100/minute"
    write_rate_limit: str = "20/minute"
    # Leaves room for a 5000-character message in any script once JSON-escaped.
    max_body_bytes: int = 64 * 1024

    def cors_origins(self) -> list[str]:
        origins = list(self.allowed_origins)
        if self.tailscale_domain:
            origins += [f"https://{self.tailscale_domain}", f"http://{self.tailscale_domain}"]
        return origins


class ClientConfig(BaseModel):
    base_url: str = "http://127.0.0.1:3031"
    socketio_path: str = "socket.io"
    ack_timeout: float = 3.0
    reconnect_base: float = 1.0
    reconnect_cap: float = 30.0
    reconnect_jitter: float = 1.0
    max_reconnect_attempts: int = 10
    ping_interval: float = 30.0
    pong_timeout: Optional[float] = 10.0
    poll_interval: float = 5.0
    ready_timeout: float = 15.0

    @model_validator(mode="after")
    def _jitter_within_base(self) -> "ClientConfig":
        # Keeps consecutive backoff delays non-decreasing.
        if self.reconnect_jitter > self.reconnect_base:
            raise ValueError("reconnect_jitter must not exceed reconnect_base")
        return self


class Config(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def _apply_env(data: dict[str, Any], env: dict[str, str]) -> dict[str, Any]:
    server = dict(data.get("server") or {})
    client = dict(data.get("client") or {})
    if env.get("SKIPPER_DATA_DIR"):
        server["data_dir"] = env["SKIPPER_DATA_DIR"]
    if env.get("SKIPPER_HOST"):
        server["host"] = env["SKIPPER_HOST"]
    if env.get("SKIPPER_PORT"):
        server["port"] = env["SKIPPER_PORT"]
    if env.get("SKIPPER_ALLOWED_ORIGINS"):
        server["allowed_origins"] = [o.strip() for o in env["SKIPPER_ALLOWED_ORIGINS"].split(",") if o.strip()]
    if env.get("SKIPPER_TAILSCALE_DOMAIN"):
        server["tailscale_domain"] = env["SKIPPER_TAILSCALE_DOMAIN"].strip()
    if env.get("SKIPPER_BASE_URL"):
        client["base_url"] = env["SKIPPER_BASE_URL"]
    return {"server": server, "client": client}


def load_config(path: Optional[Path] = None, env: Optional[dict[str, str]] = None) -> Config:
    """Load config from disk and environment.

    Invalid values are dropped one by one, with a warning naming each, so the
    remaining file values and overrides still apply.
    """
    raw = _apply_env(_read_config_file(path or CONFIG_FILE), dict(os.environ) if env is None else env)
    try:
        return Config.model_validate(raw)
    except PydanticValidationError as e:
        dropped = _drop_invalid(raw, e)
    logger.warning("Ignoring invalid config values: %s", ", ".join(dropped))
    try:
        return Config.model_validate(raw)
    except PydanticValidationError as e:
        logger.warning("Ignoring invalid config: %s", e)
        return Config()


def _drop_invalid(raw: dict[str, Any], error: PydanticValidationError) -> list[str]:
    dropped: list[str] = []
    for item in error.errors():
        loc = item.get("loc", ())
        if not loc or loc[0] not in raw:
            continue
        section = raw[loc[0]]
        if len(loc) >= 2 and isinstance(section, dict) and loc[1] in section:
            section.pop(loc[1])
            dropped.append(f"{loc[0]}.{loc[1]}")
        elif len(loc) == 1:
            # Cross-field check failed; fall back to that whole section.
            raw[loc[0]] = {}
            dropped.append(str(loc[0]))
    return dropped


def save_config(config: Config, path: Optional[Path] = None) -> None:
    target = path or CONFIG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(config.model_dump_json(indent=2))
