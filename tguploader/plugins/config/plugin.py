"""Config plugin - loads, validates and persists configuration.

Priority: 01 (very early, provides config to other plugins)
"""

import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import yaml

from ..base import Plugin, PluginMeta


DEFAULT_API_BASE_URL = "https://api.telegram.org"
DEFAULT_FILTER = "**"
CONFIG_FILE_NAME = "tguploader.yml"


def _expand_env_vars(value: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in strings."""
    if isinstance(value, str):
        pattern = r"\$\{([^}:]+)(?::-([^}]*))?\}"

        def replacer(match):
            var_name = match.group(1)
            default = match.group(2)
            env_value = os.environ.get(var_name)
            if env_value is not None:
                return env_value
            elif default is not None:
                return default
            else:
                # Leave unknown variables for the caption expander
                return match.group(0)

        return re.sub(pattern, replacer, value)
    elif isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    else:
        return value


class Secret:
    """A string that is masked unless explicitly revealed."""

    __slots__ = ("_value",)

    def __init__(self, value: Optional[str] = None):
        self._value = value or ""

    def reveal(self) -> str:
        return self._value

    def __bool__(self) -> bool:
        return bool(self._value)

    def __eq__(self, other) -> bool:
        return isinstance(other, Secret) and other._value == self._value

    def __hash__(self) -> int:
        return hash(self._value)

    def __str__(self) -> str:
        return mask(self._value)

    def __repr__(self) -> str:
        return f"Secret({mask(self._value)!r})"


def mask(value: str) -> str:
    """Mask a secret, keeping the last four characters of long values."""
    if not value:
        return ""
    if len(value) > 4:
        return f"***{value[-4:]}"
    return "****"


# --- Form validation ---


@dataclass(frozen=True)
class FormValidation:
    """Result of validating one configuration field."""

    kind: str  # "ok" or "error"
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.kind == "ok"

    @classmethod
    def success(cls, message: str = "") -> "FormValidation":
        return cls("ok", message)

    @classmethod
    def error(cls, message: str) -> "FormValidation":
        return cls("error", message)


def _is_absolute_uri(value: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme) and bool(parsed.netloc)


def check_chat_id(value: Optional[str]) -> FormValidation:
    if not value or not str(value).strip():
        return FormValidation.error("Cannot be empty")
    return FormValidation.success()


def check_bot_token(value) -> FormValidation:
    if isinstance(value, Secret):
        value = value.reveal()
    if not value or not value.strip():
        return FormValidation.error("Bot token must not be empty")
    return FormValidation.success()


def check_api_base_uri(value: Optional[str]) -> FormValidation:
    if value and not _is_absolute_uri(value):
        return FormValidation.error(f"Invalid API base URI: {value} is not absolute")
    return FormValidation.success()


def check_http_proxy_uri(value: Optional[str]) -> FormValidation:
    if value and not _is_absolute_uri(value):
        return FormValidation.error(f"Invalid HTTP proxy URI: {value} is not absolute")
    return FormValidation.success()


# --- Config objects ---


@dataclass(frozen=True)
class ProxyConfig:
    """HTTP proxy with optional basic credentials."""

    uri: str
    user: Optional[str] = None
    password: Secret = field(default_factory=Secret)


@dataclass(frozen=True)
class BotConfig:
    """Bot API endpoint and credentials, shared read-only across runs."""

    bot_token: Secret = field(default_factory=Secret)
    api_base_url: str = DEFAULT_API_BASE_URL
    proxy: Optional[ProxyConfig] = None
    timeout: float = 60.0


@dataclass(frozen=True)
class UploadJob:
    """Per-job upload settings."""

    chat_id: str
    forward_chat_ids: str = ""
    caption: Optional[str] = None
    filter: str = DEFAULT_FILTER
    silent: bool = False
    fail_on_error: bool = False
    link_on_oversize: bool = False

    def forward_targets(self) -> list[str]:
        """Comma-separated forward chats, trimmed, blanks skipped."""
        if not self.forward_chat_ids:
            return []
        return [c.strip() for c in self.forward_chat_ids.split(",") if c.strip()]


@dataclass
class UploaderConfig:
    """Parsed configuration object."""

    # Telegram section
    api_base_url: str = DEFAULT_API_BASE_URL
    bot_token: Secret = field(default_factory=Secret)
    timeout: float = 60.0
    proxy_uri: str = ""
    proxy_user: str = ""
    proxy_password: Secret = field(default_factory=Secret)

    # Upload section
    chat_id: str = ""
    forward_chat_ids: str = ""
    caption: Optional[str] = None
    filter: str = DEFAULT_FILTER
    silent: bool = False
    fail_build_if_upload_failed: bool = False
    send_link_if_upload_size_limit_exceeded: bool = False

    # Artifacts section
    artifacts_root: Path = field(default_factory=lambda: Path("."))
    artifacts_base_url: Optional[str] = None

    # Raw config for plugin access
    _raw: dict = field(default_factory=dict)

    def get_plugin_config(self, plugin_id: str) -> dict:
        """Get config section for a specific plugin."""
        return self._raw.get(plugin_id, {})

    def bot_config(self) -> BotConfig:
        proxy = None
        if self.proxy_uri and self.proxy_uri.strip():
            proxy = ProxyConfig(
                uri=self.proxy_uri.strip(),
                user=self.proxy_user.strip() or None,
                password=self.proxy_password,
            )
        return BotConfig(
            bot_token=self.bot_token,
            api_base_url=self.api_base_url or DEFAULT_API_BASE_URL,
            proxy=proxy,
            timeout=self.timeout,
        )

    def upload_job(self, **overrides) -> UploadJob:
        """Build the job from the upload section; None overrides are ignored."""
        values = {
            "chat_id": self.chat_id,
            "forward_chat_ids": self.forward_chat_ids,
            "caption": self.caption,
            "filter": self.filter,
            "silent": self.silent,
            "fail_on_error": self.fail_build_if_upload_failed,
            "link_on_oversize": self.send_link_if_upload_size_limit_exceeded,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return UploadJob(**values)

    def validate(self) -> list[str]:
        """Run all field checks and collect error messages."""
        checks = [
            ("upload.chat_id", check_chat_id(self.chat_id)),
            ("telegram.bot_token", check_bot_token(self.bot_token)),
            ("telegram.api_base_url", check_api_base_uri(self.api_base_url)),
            ("telegram.proxy.uri", check_http_proxy_uri(self.proxy_uri)),
        ]
        return [f"{key}: {result.message}" for key, result in checks if not result.ok]

    @classmethod
    def from_dict(cls, data: dict) -> "UploaderConfig":
        """Create config from a dictionary with ${VAR} already expanded."""
        telegram = data.get("telegram", {}) or {}
        proxy = telegram.get("proxy", {}) or {}
        upload = data.get("upload", {}) or {}
        artifacts = data.get("artifacts", {}) or {}

        return cls(
            api_base_url=telegram.get("api_base_url") or DEFAULT_API_BASE_URL,
            bot_token=Secret(telegram.get("bot_token")),
            timeout=float(telegram.get("timeout") or 60),
            proxy_uri=proxy.get("uri") or "",
            proxy_user=proxy.get("user") or "",
            proxy_password=Secret(proxy.get("password")),
            chat_id=str(upload.get("chat_id") or ""),
            forward_chat_ids=str(upload.get("forward_chat_ids") or ""),
            caption=upload.get("caption"),
            filter=upload.get("filter") or DEFAULT_FILTER,
            silent=bool(upload.get("silent", False)),
            fail_build_if_upload_failed=bool(
                upload.get("fail_build_if_upload_failed", False)
            ),
            send_link_if_upload_size_limit_exceeded=bool(
                upload.get("send_link_if_upload_size_limit_exceeded", False)
            ),
            artifacts_root=Path(artifacts.get("root") or "."),
            artifacts_base_url=artifacts.get("base_url"),
            _raw=data,
        )

    @classmethod
    def load(cls, path: Path) -> "UploaderConfig":
        """Load config from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(_expand_env_vars(data))

    def to_dict(self) -> dict:
        """Serialize back to the YAML layout, secrets included."""
        telegram = {
            "api_base_url": self.api_base_url,
            "bot_token": self.bot_token.reveal(),
            "timeout": self.timeout,
        }
        if self.proxy_uri:
            telegram["proxy"] = {
                "uri": self.proxy_uri,
                "user": self.proxy_user,
                "password": self.proxy_password.reveal(),
            }
        artifacts = {"root": str(self.artifacts_root)}
        if self.artifacts_base_url:
            artifacts["base_url"] = self.artifacts_base_url
        return {
            "telegram": telegram,
            "upload": {
                "chat_id": self.chat_id,
                "forward_chat_ids": self.forward_chat_ids,
                "caption": self.caption,
                "filter": self.filter,
                "silent": self.silent,
                "fail_build_if_upload_failed": self.fail_build_if_upload_failed,
                "send_link_if_upload_size_limit_exceeded": (
                    self.send_link_if_upload_size_limit_exceeded
                ),
            },
            "artifacts": artifacts,
        }

    def save(self, path: Path) -> None:
        """Write config to a YAML file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def config_search_paths() -> list[Path]:
    """Config files in increasing precedence."""
    return [Path.home() / ".tguploader" / CONFIG_FILE_NAME, Path(CONFIG_FILE_NAME)]


class ConfigPlugin(Plugin):
    """Configuration management plugin."""

    meta = PluginMeta(
        id="config",
        version="1.0.0",
        capabilities=["config"],
        dependencies=[],
        priority=1,  # Load first
    )

    def __init__(self):
        self._config: Optional[UploaderConfig] = None
        self._config_path: Optional[Path] = None

    def configure(self, config: dict) -> None:
        """Use the dict handed over by the CLI, or fall back to config files."""
        if config:
            self._config = UploaderConfig.from_dict(config)
        else:
            self._config = self._load_config_file()

    def start(self) -> None:
        if self._config:
            print(
                f"[Config] Telegram API: {self._config.api_base_url}",
                file=sys.stderr,
            )

    def stop(self) -> None:
        """Nothing to clean up."""
        pass

    def _load_config_file(self) -> UploaderConfig:
        """Load configuration from the last existing config file."""
        config = UploaderConfig()
        for path in config_search_paths():
            if path.exists():
                config = UploaderConfig.load(path)
                self._config_path = path
        return config

    @property
    def config_path(self) -> Optional[Path]:
        return self._config_path

    def get_config(self) -> UploaderConfig:
        """Get the loaded configuration."""
        if self._config is None:
            self._config = self._load_config_file()
        return self._config

    def get_plugin_config(self, plugin_id: str) -> dict:
        """Get config section for a specific plugin."""
        if self._config is None:
            return {}
        return self._config.get_plugin_config(plugin_id)


# Factory function for plugin discovery
def create_plugin() -> ConfigPlugin:
    return ConfigPlugin()
