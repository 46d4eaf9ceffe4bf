"""tguploader CLI - upload build artifacts to Telegram."""

import json
import os
import sys
from pathlib import Path
from typing import Any, Optional

import click
import yaml

from tguploader import __version__
from tguploader.plugins.config.plugin import (
    CONFIG_FILE_NAME,
    UploaderConfig,
    _expand_env_vars,
    check_chat_id,
    config_search_paths,
    mask,
)
from tguploader.plugins.interfaces import Result


# --- Config Utilities ---


def _find_config_path(explicit_path: Optional[str] = None) -> Path:
    """Find config file path (same logic as config loading)."""
    if explicit_path:
        return Path(explicit_path)

    home_config, local_config = config_search_paths()
    if local_config.exists():
        return local_config
    if home_config.exists():
        return home_config

    # Default to home config for new files
    return home_config


def load_raw_config(explicit_path: Optional[str] = None) -> dict:
    """Read the config file as a dict with environment variables expanded."""
    path = _find_config_path(explicit_path)
    if not path.exists():
        return {}
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    print(f"[Config] Loaded from {path}", file=sys.stderr)
    return _expand_env_vars(data)


def load_merged_config(explicit_path: Optional[str] = None) -> UploaderConfig:
    """Load the effective configuration."""
    return UploaderConfig.from_dict(load_raw_config(explicit_path))


def _mask_secrets(data: dict) -> dict:
    """Mask sensitive values in config dict."""
    secret_keys = {"bot_token", "password", "token", "secret"}
    result = {}
    for k, v in data.items():
        if isinstance(v, dict):
            result[k] = _mask_secrets(v)
        elif k in secret_keys and isinstance(v, str):
            result[k] = mask(v)
        else:
            result[k] = v
    return result


# --- CLI Groups ---


@click.group()
@click.version_option(version=__version__, prog_name="tguploader")
def cli():
    """tguploader - Upload build artifacts to Telegram."""
    pass


# --- Upload ---


@cli.command()
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Config file path")
@click.option("--artifacts", "-a", type=click.Path(), help="Artifacts directory")
@click.option("--base-url", help="Build URL used to link oversized artifacts")
@click.option("--chat-id", help="Destination chat")
@click.option("--forward-chat-ids", help="Comma-separated chats to forward uploads to")
@click.option("--caption", help="Caption template ($VAR, ${TELEGRAM_CHANGELOG})")
@click.option("--filter", "filter_", help="Artifacts glob (default: **)")
@click.option("--silent/--no-silent", default=None, help="Send without notification")
@click.option(
    "--fail-on-error/--no-fail-on-error",
    default=None,
    help="Abort at the first failed upload",
)
@click.option(
    "--link-on-oversize/--no-link-on-oversize",
    default=None,
    help="Send a link when an artifact exceeds the upload limit",
)
@click.option(
    "--result",
    type=click.Choice([r.name for r in Result], case_sensitive=False),
    help="Build result (omit while the build is still running)",
)
@click.option("--since", help="Git revision of the previous build, for the changelog")
@click.option("--json", "as_json", is_flag=True, help="Print the run report as JSON")
@click.option("--debug", "-d", is_flag=True, help="Enable debug logging")
def upload(
    config_path: Optional[str],
    artifacts: Optional[str],
    base_url: Optional[str],
    chat_id: Optional[str],
    forward_chat_ids: Optional[str],
    caption: Optional[str],
    filter_: Optional[str],
    silent: Optional[bool],
    fail_on_error: Optional[bool],
    link_on_oversize: Optional[bool],
    result: Optional[str],
    since: Optional[str],
    as_json: bool,
    debug: bool,
):
    """Upload build artifacts to a Telegram chat."""
    from tguploader.plugins import init_plugins
    from tguploader.workflow import AbortRun

    raw_config = load_raw_config(config_path)

    if debug:
        raw_config.setdefault("logger", {})
        raw_config["logger"]["level"] = "debug"

    registry = init_plugins(config=raw_config)
    try:
        uploader = registry.get("uploader")
        job = uploader.job(
            chat_id=chat_id,
            forward_chat_ids=forward_chat_ids,
            caption=caption,
            filter=filter_,
            silent=silent,
            fail_on_error=fail_on_error,
            link_on_oversize=link_on_oversize,
        )

        check = check_chat_id(job.chat_id)
        if not check.ok:
            click.echo(f"Error: chat id: {check.message}", err=True)
            sys.exit(1)

        build = uploader.build_info(
            Result[result.upper()] if result else None,
            dict(os.environ),
            since=since,
            url=base_url,
        )
        workflow = uploader.workflow(
            Path(artifacts) if artifacts else None,
            base_url,
            log=sys.stderr,
        )

        try:
            report = workflow.run(job, build)
        except AbortRun as e:
            click.echo(f"Error: {e}", err=True)
            if as_json and e.report is not None:
                click.echo(json.dumps(e.report.to_dict(), indent=2))
            sys.exit(1)

        if as_json:
            click.echo(json.dumps(report.to_dict(), indent=2))
        elif not report.skipped:
            click.echo(
                f"Uploaded {len(report.uploaded)}, linked {len(report.linked)}, "
                f"forwarded {len(report.forwarded)}, failed {len(report.failures)}"
            )
    finally:
        registry.stop_all()


# --- Config Commands ---


@cli.group()
def config():
    """Configuration commands."""
    pass


@config.command("show")
@click.option("--config", "-c", "config_path", type=click.Path(), help="Config file")
@click.option("--reveal", is_flag=True, help="Show secrets unmasked")
def config_show(config_path: Optional[str], reveal: bool):
    """Show current configuration.

    Secrets are masked by default (use --reveal to show).
    """
    data = load_merged_config(config_path).to_dict()

    if not reveal:
        data = _mask_secrets(data)

    click.echo(yaml.dump(data, default_flow_style=False, sort_keys=False))
    click.echo("# Use 'tguploader config get <key>' or 'tguploader config set <key> <value>'")


def _parse_value(value: str) -> Any:
    """Interpret a command line value as bool, int, float or string."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    if value.isdigit():
        return int(value)
    try:
        return float(value)
    except ValueError:
        return value


# Values that look numeric but must stay strings
_STRING_KEYS = {"upload.chat_id", "upload.forward_chat_ids", "telegram.bot_token"}


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(),
    help=f"Config file (default: ~/.tguploader/{CONFIG_FILE_NAME} or ./{CONFIG_FILE_NAME})",
)
def config_set(key: str, value: str, config_path: Optional[str]):
    """Set a configuration value.

    KEY uses dot notation for nested values (e.g., upload.chat_id).

    Examples:
        tguploader config set upload.chat_id -1001234567890
        tguploader config set upload.filter "**/*.apk"
        tguploader config set telegram.proxy.uri http://proxy:3128
    """
    path = _find_config_path(config_path)

    if path.exists():
        with open(path) as f:
            cfg = yaml.safe_load(f) or {}
    else:
        cfg = {}

    parsed_value = value if key in _STRING_KEYS else _parse_value(value)

    keys = key.split(".")
    current = cfg
    for k in keys[:-1]:
        if k not in current or current[k] is None:
            current[k] = {}
        elif not isinstance(current[k], dict):
            click.echo(f"Error: {k} is not a section, cannot set nested key", err=True)
            sys.exit(1)
        current = current[k]

    old_value = current.get(keys[-1])
    current[keys[-1]] = parsed_value

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(cfg, f, default_flow_style=False, sort_keys=False)

    secret = keys[-1] in {"bot_token", "password"}
    shown = mask(str(parsed_value)) if secret else parsed_value
    if old_value is not None:
        old_shown = mask(str(old_value)) if secret else old_value
        click.echo(f"Updated {key}: {old_shown} → {shown}")
    else:
        click.echo(f"Set {key} = {shown}")


@config.command("get")
@click.argument("key")
@click.option("--config", "-c", "config_path", type=click.Path(), help="Config file")
def config_get(key: str, config_path: Optional[str]):
    """Get a configuration value.

    KEY uses dot notation for nested values (e.g., upload.filter).
    """
    path = _find_config_path(config_path)

    if not path.exists():
        click.echo(f"Config file not found: {path}", err=True)
        sys.exit(1)

    with open(path) as f:
        cfg = yaml.safe_load(f) or {}

    current = cfg
    for k in key.split("."):
        if not isinstance(current, dict) or k not in current:
            click.echo(f"Key not found: {key}", err=True)
            sys.exit(1)
        current = current[k]

    click.echo(current)


@config.command("validate")
@click.option("--config", "-c", "config_path", type=click.Path(), help="Config file")
def config_validate(config_path: Optional[str]):
    """Validate configuration."""
    try:
        errors = load_merged_config(config_path).validate()
    except Exception as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)

    if errors:
        click.echo("Configuration errors:", err=True)
        for err in errors:
            click.echo(f"  - {err}", err=True)
        sys.exit(1)
    click.echo("Configuration is valid ✓")


# --- Plugins ---


@cli.command("plugins")
def list_plugins():
    """List loaded plugins."""
    from tguploader.plugins import get_registry

    registry = get_registry()
    for info in registry.list_plugins():
        caps = ", ".join(info["capabilities"]) or "none"
        click.echo(f"  {info['id']} v{info['version']} ({caps})")


def register_plugin_commands(config_path: Optional[str] = None) -> None:
    """Load plugins and let them register CLI commands."""
    from tguploader.plugins import init_plugins

    try:
        registry = init_plugins(config=load_raw_config(config_path))
    except Exception as e:
        click.echo(f"Warning: plugins not available: {e}", err=True)
        return

    for plugin in registry.all_plugins():
        try:
            plugin.register_commands(cli)
        except Exception as e:
            click.echo(
                f"Warning: Plugin {plugin.meta.id} command registration failed: {e}",
                err=True,
            )


def main():
    """Entry point."""
    register_plugin_commands()
    cli()


if __name__ == "__main__":
    main()
