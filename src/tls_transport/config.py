"""Transport configuration.

Configuration is loaded from a single YAML file:

    listen:
      host: 0.0.0.0
      port: 8888
      cert: certs/server.crt
      key: certs/server.key
      ca: certs/client.crt
      request_cert: true
    send:
      cert: certs/client.crt
      key: certs/client.key
      ca: certs/server.crt

Resolution order for the file:
1. Explicit path (--config)
2. TLS_TRANSPORT_CONFIG environment variable
3. None: both sections empty

Relative credential paths are resolved against the config file's directory.
Inline PEM text is kept as-is.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from tls_transport.errors import TransportError
from tls_transport.options import CREDENTIAL_KEYS, PEM_MARKER

CONFIG_ENV_VAR = "TLS_TRANSPORT_CONFIG"
SECTIONS = ("listen", "send")


class ConfigError(TransportError):
    """Configuration error."""

    def __init__(self, message: str):
        super().__init__("E300", message)


@dataclass
class TransportConfig:
    """Options for the listen and send capabilities."""

    listen: dict = field(default_factory=dict)
    send: dict = field(default_factory=dict)
    path: Optional[Path] = None


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at top level of {path}")
    return data


def _resolve_credential(value, base_dir: Path):
    """Anchor a relative credential path at base_dir."""
    if isinstance(value, list):
        return [_resolve_credential(v, base_dir) for v in value]
    if isinstance(value, str) and not value.lstrip().startswith(PEM_MARKER):
        path = Path(value).expanduser()
        return path if path.is_absolute() else base_dir / path
    return value


def _load_section(data: dict, name: str, base_dir: Path) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")

    options = dict(section)
    for key in CREDENTIAL_KEYS:
        if key in options:
            options[key] = _resolve_credential(options[key], base_dir)
    return options


def find_config_path(path: Optional[Path] = None) -> Optional[Path]:
    """Return the config path to use, or None."""
    if path is not None:
        return Path(path)
    if env_path := os.environ.get(CONFIG_ENV_VAR):
        return Path(env_path)
    return None


def load_config(path: Optional[Path] = None) -> TransportConfig:
    """Load transport configuration.

    Args:
        path: Explicit config file (default: TLS_TRANSPORT_CONFIG)

    Returns:
        TransportConfig; empty sections when no file is configured

    Raises:
        ConfigError: If the file is missing or malformed
    """
    config_path = find_config_path(path)
    if config_path is None:
        return TransportConfig()

    data = _parse_yaml(config_path)
    unknown = set(data) - set(SECTIONS)
    if unknown:
        raise ConfigError(f"Unknown section(s) in {config_path}: {', '.join(sorted(unknown))}")

    base_dir = config_path.resolve().parent
    return TransportConfig(
        listen=_load_section(data, "listen", base_dir),
        send=_load_section(data, "send", base_dir),
        path=config_path,
    )
