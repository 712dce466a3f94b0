"""Configuration for the Z-Wave lock controller."""

from __future__ import annotations

import json
import logging
import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from const import SECURITY_KEY_BYTES, SECURITY_KEY_NAMES, SERVER_URL_ENV, WEB_PORT_ENV
from errors import ConfigError

_LOGGER = logging.getLogger(__name__)

DEFAULT_DATA_DIR = os.path.expanduser("~/.zwave-lock")
DEFAULT_CONFIG_FILE = os.path.join(DEFAULT_DATA_DIR, "config.json")
DEFAULT_SERVER_URL = "ws://localhost:3000"
DEFAULT_WEB_PORT = 8099


@dataclass
class Timing:
    """Timeouts and delays, in seconds."""

    ready_timeout_sec: float = 60.0      # Wait for the driver to become ready
    reconnect_delay_sec: float = 5.0     # Fixed delay between reconnect attempts
    settle_delay_sec: float = 5.0        # Non-volatile write settle after set-code
    clear_settle_sec: float = 1.5        # Settle after clear when clearing before set
    interview_timeout_sec: float = 60.0  # Wait for a node interview to complete
    inclusion_timeout_sec: float = 60.0  # Wait for a node to be added or removed
    wake_grace_sec: float = 10.0         # Time to wake a battery node before re-interview

    def to_dict(self) -> dict:
        return {
            "ready_timeout_sec": self.ready_timeout_sec,
            "reconnect_delay_sec": self.reconnect_delay_sec,
            "settle_delay_sec": self.settle_delay_sec,
            "clear_settle_sec": self.clear_settle_sec,
            "interview_timeout_sec": self.interview_timeout_sec,
            "inclusion_timeout_sec": self.inclusion_timeout_sec,
            "wake_grace_sec": self.wake_grace_sec,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Timing:
        defaults = cls()
        return cls(**{
            name: float(data.get(name, value))
            for name, value in defaults.to_dict().items()
        })


@dataclass
class SecurityKeys:
    """Network security keys, 16 random bytes each as hex.

    These are the keys the Z-Wave JS server must be started with. They are
    generated once and never regenerated: changing them breaks communication
    with every device already paired securely.
    """

    S2_AccessControl: str = ""
    S2_Authenticated: str = ""
    S2_Unauthenticated: str = ""
    S0_Legacy: str = ""

    @property
    def complete(self) -> bool:
        return all(getattr(self, name) for name in SECURITY_KEY_NAMES)

    def fill_missing(self) -> list[str]:
        """Generate any missing key. Returns the names that were generated."""
        generated = []
        for name in SECURITY_KEY_NAMES:
            if not getattr(self, name):
                setattr(self, name, secrets.token_hex(SECURITY_KEY_BYTES).upper())
                generated.append(name)
        return generated

    def configured(self) -> list[str]:
        return [name for name in SECURITY_KEY_NAMES if getattr(self, name)]

    def to_dict(self) -> dict[str, str]:
        return {name: getattr(self, name) for name in SECURITY_KEY_NAMES}

    @classmethod
    def from_dict(cls, data: dict) -> SecurityKeys:
        keys = cls()
        for name in SECURITY_KEY_NAMES:
            value = str(data.get(name, "") or "")
            if value:
                try:
                    raw = bytes.fromhex(value)
                except ValueError as err:
                    raise ConfigError(f"Security key {name} is not hex") from err
                if len(raw) != SECURITY_KEY_BYTES:
                    raise ConfigError(
                        f"Security key {name} must be {SECURITY_KEY_BYTES} bytes"
                    )
            setattr(keys, name, value)
        return keys


@dataclass
class Config:
    """Main application configuration."""

    # Z-Wave JS server
    server_url: str = DEFAULT_SERVER_URL
    security_keys: SecurityKeys = field(default_factory=SecurityKeys)

    # Nodes that need their slot cleared before a new code is set
    clear_before_set: list[int] = field(default_factory=list)

    # Web API / dashboard
    web_port: int = DEFAULT_WEB_PORT
    web_host: str = "0.0.0.0"

    timing: Timing = field(default_factory=Timing)

    # Paths
    data_dir: str = DEFAULT_DATA_DIR

    @property
    def config_file(self) -> str:
        return os.path.join(self.data_dir, "config.json")

    @property
    def codes_file(self) -> str:
        return os.path.join(self.data_dir, "user-codes.json")

    def clears_before_set(self, node_id: int) -> bool:
        return node_id in self.clear_before_set

    def validate_server_url(self) -> str:
        """Return the server URL or raise ConfigError when it is unusable."""
        url = (self.server_url or "").strip()
        if not url:
            raise ConfigError(
                "No Z-Wave JS server configured. Set server_url or "
                f"{SERVER_URL_ENV}."
            )
        parsed = urlparse(url)
        if parsed.scheme not in ("ws", "wss") or not parsed.netloc:
            raise ConfigError(
                f"Z-Wave JS server URL must be ws:// or wss://, got {url!r}"
            )
        return url

    def ensure_security_keys(self) -> list[str]:
        """Generate missing security keys and persist them.

        Existing keys are never replaced. Returns the generated key names.
        """
        generated = self.security_keys.fill_missing()
        if generated:
            self.save()
            _LOGGER.warning(
                "Generated security keys %s, saved to %s",
                ", ".join(generated),
                self.config_file,
            )
        return generated

    def to_dict(self) -> dict:
        return {
            "server_url": self.server_url,
            "security_keys": self.security_keys.to_dict(),
            "clear_before_set": list(self.clear_before_set),
            "web_port": self.web_port,
            "web_host": self.web_host,
            "timing": self.timing.to_dict(),
        }

    def save(self) -> None:
        """Save configuration to disk."""
        os.makedirs(self.data_dir, exist_ok=True)
        with open(self.config_file, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, config_file: str | None = None) -> Config:
        """Load configuration from disk."""
        path = config_file or DEFAULT_CONFIG_FILE
        config = cls()
        if config_file:
            config.data_dir = str(Path(config_file).parent)
        if os.path.exists(path):
            try:
                with open(path) as f:
                    data = json.load(f)
            except json.JSONDecodeError as err:
                raise ConfigError(f"Config file {path} is not valid JSON: {err}") from err
            config.server_url = data.get("server_url", DEFAULT_SERVER_URL)
            # Older config files used camelCase keys
            keys = data.get("security_keys", data.get("securityKeys", {}))
            config.security_keys = SecurityKeys.from_dict(keys)
            config.clear_before_set = [int(n) for n in data.get("clear_before_set", [])]
            config.web_port = int(data.get("web_port", DEFAULT_WEB_PORT))
            config.web_host = data.get("web_host", "0.0.0.0")
            config.timing = Timing.from_dict(data.get("timing", {}))
        return config

    def apply_env(self, environ: dict | None = None) -> None:
        """Apply environment variable overrides."""
        env = os.environ if environ is None else environ
        if env.get(SERVER_URL_ENV):
            self.server_url = env[SERVER_URL_ENV]
        if env.get(WEB_PORT_ENV):
            try:
                self.web_port = int(env[WEB_PORT_ENV])
            except ValueError as err:
                raise ConfigError(f"{WEB_PORT_ENV} must be a port number") from err
