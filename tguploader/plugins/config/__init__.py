"""Config plugin exports."""

from .plugin import (
    BotConfig,
    ConfigPlugin,
    FormValidation,
    ProxyConfig,
    Secret,
    UploaderConfig,
    UploadJob,
    check_api_base_uri,
    check_bot_token,
    check_chat_id,
    check_http_proxy_uri,
    create_plugin,
)


__all__ = [
    "BotConfig",
    "ConfigPlugin",
    "FormValidation",
    "ProxyConfig",
    "Secret",
    "UploaderConfig",
    "UploadJob",
    "check_api_base_uri",
    "check_bot_token",
    "check_chat_id",
    "check_http_proxy_uri",
    "create_plugin",
]
