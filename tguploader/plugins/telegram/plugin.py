"""Telegram plugin - Bot API client for document uploads.

Every call is a multipart/form-data POST to
``<api_base_url>/bot<token>/<method>``; the JSON reply is checked for a
truthy ``ok`` field.

Priority: 30 (after config)
Capability: telegram

Methods used:
  - sendDocument: upload an artifact
  - sendMessage: link to an artifact too large to upload
  - forwardMessage: copy an uploaded message to another chat
  - getUpdates / logOut: connection test and logout actions
"""

import sys
import traceback
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import httpx

from ..base import Plugin, PluginMeta
from ..config.plugin import (
    DEFAULT_API_BASE_URL,
    BotConfig,
    FormValidation,
    UploaderConfig,
    check_api_base_uri,
    check_bot_token,
    check_http_proxy_uri,
)
from ..interfaces import ProxySetupError, TelegramApiError, TransportError


MB = 1024 * 1024

# The public Bot API server caps uploads at 50 MB, a local server at 2000 MB
PUBLIC_UPLOAD_LIMIT = 50 * MB
LOCAL_UPLOAD_LIMIT = 2000 * MB

_SIZE_UNITS = ["KB", "MB", "GB", "TB"]


def upload_limit(api_base_url: str) -> int:
    """Upload size limit for a Bot API server.

    Only the exact public URL gets the public limit; any other string,
    including a trailing slash variant, is treated as a local server.
    """
    if api_base_url == DEFAULT_API_BASE_URL:
        return PUBLIC_UPLOAD_LIMIT
    return LOCAL_UPLOAD_LIMIT


def human_readable_size(size: int) -> str:
    """Format a byte count like "512 B" or "75.30 MB"."""
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in _SIZE_UNITS:
        value /= 1024
        if value < 1024 or unit == _SIZE_UNITS[-1]:
            return f"{value:.2f} {unit}"


@dataclass
class TelegramResponse:
    """Parsed reply of a Bot API call."""

    ok: bool
    result_message_id: Optional[int] = None
    error_description: Optional[str] = None
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: dict) -> "TelegramResponse":
        result = data.get("result")
        message_id = None
        if isinstance(result, dict):
            message_id = result.get("message_id")
        return cls(
            ok=bool(data.get("ok")),
            result_message_id=message_id,
            error_description=data.get("description"),
            raw=data,
        )


def _form(fields: dict) -> list[tuple]:
    """Plain form fields as filename-less multipart parts."""
    return [(name, (None, str(value))) for name, value in fields.items()]


def _multipart(parts: list[tuple]) -> dict:
    """Request arguments for a multipart/form-data POST, also without fields."""
    if parts:
        return {"files": parts}
    boundary = uuid.uuid4().hex
    return {
        "content": f"--{boundary}--\r\n".encode(),
        "headers": {"Content-Type": f"multipart/form-data; boundary={boundary}"},
    }


class TelegramClient:
    """Synchronous Bot API client.

    Use as a context manager so the underlying httpx.Client is closed.
    """

    def __init__(self, config: BotConfig):
        self._config = config
        self._base_url = config.api_base_url
        proxy = self._build_proxy(config)
        try:
            self._http = httpx.Client(timeout=config.timeout, proxy=proxy)
        except Exception as e:
            raise ProxySetupError(f"Can't set up HTTP proxy: {e}") from e

    @staticmethod
    def _build_proxy(config: BotConfig) -> Optional[httpx.Proxy]:
        proxy = config.proxy
        if proxy is None or not proxy.uri:
            return None
        try:
            auth = None
            if proxy.user and proxy.user.strip():
                auth = (proxy.user.strip(), proxy.password.reveal())
            return httpx.Proxy(proxy.uri, auth=auth)
        except Exception as e:
            raise ProxySetupError(f"Can't set up HTTP proxy: {e}") from e

    def __enter__(self) -> "TelegramClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    @property
    def upload_limit(self) -> int:
        return upload_limit(self._base_url)

    def _url(self, method: str) -> str:
        return f"{self._base_url}/bot{self._config.bot_token.reveal()}/{method}"

    def _call(self, method: str, parts: list[tuple]) -> TelegramResponse:
        """POST a multipart request and interpret the reply.

        Raises:
            TelegramApiError: Non-2xx status, malformed body or ok:false
            TransportError: Network failure
        """
        try:
            response = self._http.post(self._url(method), **_multipart(parts))
        except httpx.RequestError as e:
            raise TransportError(f"{method} request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if not 200 <= response.status_code < 300:
            description = data.get("description") if isinstance(data, dict) else None
            status = str(response.status_code)
            if response.reason_phrase:
                status += f" ({response.reason_phrase})"
            raise TelegramApiError(
                description or f"Unexpected response status: {status}",
                status_code=response.status_code,
                description=description,
            )

        if not isinstance(data, dict):
            raise TelegramApiError(
                f"Malformed {method} response: {response.text[:200]}",
                status_code=response.status_code,
            )

        parsed = TelegramResponse.from_json(data)
        if not parsed.ok:
            raise TelegramApiError(
                parsed.error_description or f"{method} failed: {data}",
                status_code=response.status_code,
                description=parsed.error_description,
            )
        return parsed

    # --- Bot API methods ---

    def send_document(
        self,
        chat_id: str,
        caption: Optional[str],
        silent: bool,
        path: Path,
        file_name: Optional[str] = None,
    ) -> TelegramResponse:
        """Upload a file with an optional Markdown caption."""
        fields = {"chat_id": chat_id}
        if silent:
            fields["disable_notification"] = "true"
        if caption:
            fields["parse_mode"] = "Markdown"
            fields["caption"] = caption

        path = Path(path)
        try:
            with open(path, "rb") as document:
                parts = _form(fields)
                parts.append(
                    (
                        "document",
                        (file_name or path.name, document, "application/octet-stream"),
                    )
                )
                return self._call("sendDocument", parts)
        except OSError as e:
            raise TransportError(f"Can't read '{path}': {e}") from e

    def send_link(
        self,
        chat_id: str,
        caption: Optional[str],
        silent: bool,
        url: str,
        file_name: str,
        size_bytes: int,
    ) -> TelegramResponse:
        """Send a Markdown link to a file instead of the file itself."""
        text = f"[{file_name}]({url}) ({human_readable_size(size_bytes)})"
        if caption:
            text += "\n" + caption

        fields = {
            "chat_id": chat_id,
            "parse_mode": "Markdown",
            "text": text,
            "disable_web_page_preview": "true",
        }
        if silent:
            fields["disable_notification"] = "true"
        return self._call("sendMessage", _form(fields))

    def forward_message(
        self, chat_id: str, source_chat_id: str, message_id: int, silent: bool
    ) -> TelegramResponse:
        fields = {
            "from_chat_id": source_chat_id,
            "chat_id": chat_id,
            "message_id": message_id,
        }
        if silent:
            fields["disable_notification"] = "true"
        return self._call("forwardMessage", _form(fields))

    def get_updates(self) -> TelegramResponse:
        return self._call("getUpdates", [])

    def log_out(self) -> TelegramResponse:
        return self._call("logOut", [])


def _action_result(action) -> FormValidation:
    """Run an admin action and report raw detail, traceback on failure."""
    try:
        response = action()
        return FormValidation.success(f"Success: {response.raw}")
    except Exception as e:
        detail = "".join(traceback.format_exception(type(e), e, e.__traceback__))
        return FormValidation.error(f"Failure: {e}\n{detail}")


# --- Telegram Plugin ---


class TelegramPlugin(Plugin):
    """Provides Bot API clients built from the telegram config section."""

    meta = PluginMeta(
        id="telegram",
        version="1.0.0",
        capabilities=["telegram"],
        dependencies=["config"],
        priority=30,
    )

    def __init__(self):
        self._config: Optional[UploaderConfig] = None
        self._bot_config: Optional[BotConfig] = None

    def configure(self, config: dict) -> None:
        self._config = UploaderConfig.from_dict(config)
        self._bot_config = self._config.bot_config()

        if not self._bot_config.bot_token:
            print("[telegram] Warning: No bot_token configured", file=sys.stderr)

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    @property
    def bot_config(self) -> Optional[BotConfig]:
        return self._bot_config

    def create_client(self) -> TelegramClient:
        """Open a new client; the caller owns and closes it."""
        if self._bot_config is None:
            self._bot_config = BotConfig()
        return TelegramClient(self._bot_config)

    def check_settings(self) -> list[FormValidation]:
        """Validate the fields a connection depends on."""
        cfg = self._bot_config or BotConfig()
        return [
            check_bot_token(cfg.bot_token),
            check_api_base_uri(cfg.api_base_url),
            check_http_proxy_uri(cfg.proxy.uri if cfg.proxy else None),
        ]

    def test_connection(self) -> FormValidation:
        """Call getUpdates and report the raw outcome."""
        return self._admin_action(lambda client: client.get_updates())

    def log_out(self) -> FormValidation:
        """Call logOut, needed before moving the bot to a local API server."""
        return self._admin_action(lambda client: client.log_out())

    def _admin_action(self, call) -> FormValidation:
        for result in self.check_settings():
            if not result.ok:
                return result

        def action():
            with self.create_client() as client:
                return call(client)

        return _action_result(action)

    # --- CLI Extension ---

    def register_commands(self, cli) -> None:
        import click

        plugin = self

        @cli.group()
        def telegram():
            """Telegram bot administration."""
            pass

        @telegram.command("test-connection")
        def test_connection():
            """Check the bot token with getUpdates."""
            result = plugin.test_connection()
            click.echo(result.message, err=not result.ok)
            if not result.ok:
                sys.exit(1)

        @telegram.command("logout")
        @click.option("--yes", is_flag=True, help="Confirm the logout")
        def logout(yes: bool):
            """Log the bot out of the cloud Bot API server."""
            if not yes:
                click.echo("Refusing to log out without --yes", err=True)
                sys.exit(1)
            result = plugin.log_out()
            click.echo(result.message, err=not result.ok)
            if not result.ok:
                sys.exit(1)


def create_plugin() -> TelegramPlugin:
    """Factory function to create the plugin."""
    return TelegramPlugin()
