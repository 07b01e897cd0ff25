"""Server profile configuration.

Profiles live in a YAML file (``~/.remote-ai-ide.yaml`` by default):

    servers:
      - name: local
        url: http://localhost:3002
        token: changeme

A missing file is replaced by a default configuration, which is written
back so the user can edit it.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

_LOGGER = logging.getLogger(__name__)

CONFIG_FILENAME = ".remote-ai-ide.yaml"
DEFAULT_SERVER_NAME = "local"
DEFAULT_SERVER_URL = "http://localhost:3002"
DEFAULT_SERVER_TOKEN = "changeme"


@dataclass(frozen=True)
class ServerProfile:
    """A named server the client can connect to.

    Attributes:
        name: Profile name used with ``--server``.
        url: Base HTTP(S) address of the server.
        token: Bearer token for REST calls and the channel handshake.
    """

    name: str
    url: str
    token: str


@dataclass
class ClientConfig:
    """All configured server profiles."""

    servers: list[ServerProfile] = field(default_factory=lambda: [])

    def find_server(self, name: str) -> ServerProfile:
        """Return the profile called ``name``.

        Raises:
            ConfigError: If no such profile exists.
        """
        for server in self.servers:
            if server.name == name:
                return server
        raise ConfigError(f"server {name!r} not found in config")

    def add_server(self, name: str, url: str, token: str) -> ServerProfile:
        """Add a profile; the URL is stored without a trailing slash.

        Raises:
            ConfigError: If a field is empty or the name is taken.
        """
        if not name or not url or not token:
            raise ConfigError("name, url, and token are all required")
        if any(server.name == name for server in self.servers):
            raise ConfigError(
                f"server {name!r} already exists. Remove it first or choose a different name"
            )
        profile = ServerProfile(name=name, url=url.rstrip("/"), token=token)
        self.servers.append(profile)
        return profile

    def remove_server(self, name: str) -> None:
        """Remove the profile called ``name``.

        Raises:
            ConfigError: If no such profile exists.
        """
        remaining = [server for server in self.servers if server.name != name]
        if len(remaining) == len(self.servers):
            raise ConfigError(f"server {name!r} not found")
        self.servers = remaining

    def to_dict(self) -> dict[str, Any]:
        return {
            "servers": [
                {"name": s.name, "url": s.url, "token": s.token} for s in self.servers
            ]
        }


def default_config_path() -> Path:
    """Return ``~/.remote-ai-ide.yaml``, or a relative path without a home."""
    try:
        return Path.home() / CONFIG_FILENAME
    except RuntimeError:
        return Path(CONFIG_FILENAME)


def default_config() -> ClientConfig:
    """Configuration used when no file exists yet."""
    return ClientConfig(
        servers=[
            ServerProfile(
                name=DEFAULT_SERVER_NAME,
                url=DEFAULT_SERVER_URL,
                token=DEFAULT_SERVER_TOKEN,
            )
        ]
    )


def _parse_config(data: Any, path: Path) -> ClientConfig:
    if data is None:
        return ClientConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"parsing config {path}: top level must be a mapping")

    servers: list[ServerProfile] = []
    for idx, entry in enumerate(data.get("servers") or []):
        if not isinstance(entry, dict):
            raise ConfigError(f"parsing config {path}: server #{idx} must be a mapping")
        servers.append(
            ServerProfile(
                name=str(entry.get("name", "")),
                url=str(entry.get("url", "")),
                token=str(entry.get("token", "")),
            )
        )
    return ClientConfig(servers=servers)


def load_config(path: Path) -> ClientConfig:
    """Load configuration from ``path``, creating a default file if missing.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    if not path.exists():
        config = default_config()
        try:
            save_config(path, config)
        except ConfigError as err:
            _LOGGER.warning("Could not write default config: %s", err)
        else:
            _LOGGER.info("Created default config at %s", path)
        return config

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as err:
        raise ConfigError(f"reading config {path}: {err}") from err
    except yaml.YAMLError as err:
        raise ConfigError(f"parsing config {path}: {err}") from err
    return _parse_config(data, path)


def save_config(path: Path, config: ClientConfig) -> None:
    """Write configuration to ``path`` readable by the owner only.

    Raises:
        ConfigError: If the file cannot be written.
    """
    text = yaml.safe_dump(config.to_dict(), sort_keys=False)
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
    except OSError as err:
        raise ConfigError(f"writing config {path}: {err}") from err


def mask_token(token: str) -> str:
    """Hide all but the first and last two characters of a token."""
    if len(token) <= 4:
        return "*" * len(token)
    return token[:2] + "*" * (len(token) - 4) + token[-2:]
