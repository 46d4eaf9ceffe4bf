"""Logger plugin - logs upload lifecycle events.

Priority: 5 (very early, logs everything)
"""

import json
import sys
from datetime import datetime, timezone

from ..base import Plugin, PluginMeta


class LoggerPlugin(Plugin):
    """Logging plugin for upload events."""

    meta = PluginMeta(
        id="logger",
        version="1.0.0",
        capabilities=["logging"],
        dependencies=[],
        priority=5,
    )

    def __init__(self):
        self._level: str = "info"
        self._levels = {"debug": 0, "info": 1, "warn": 2, "error": 3}

    def configure(self, config: dict) -> None:
        logger_config = config.get("logger", {}) or {}
        self._level = logger_config.get("level", "info")

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def _should_log(self, level: str) -> bool:
        return self._levels.get(level, 1) >= self._levels.get(self._level, 1)

    def _log(self, level: str, hook: str, msg: str, **extra):
        if not self._should_log(level):
            return
        ts = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        parts = [f"[{ts}]", f"[{level[0].upper()}]", f"[{hook}]", msg]
        if extra:
            parts.append(json.dumps(extra, default=str))
        print(" ".join(parts), file=sys.stderr, flush=True)

    # --- Hook Methods ---

    def on_run_start(self, ctx: dict) -> dict:
        self._log(
            "debug", "run_start", f"Chat {ctx.get('chat_id', '')}", filter=ctx.get("filter")
        )
        return ctx

    def on_before_upload(self, ctx: dict) -> dict:
        self._log(
            "debug", "upload", ctx.get("artifact", ""), size=ctx.get("size", 0)
        )
        return ctx

    def on_after_upload(self, ctx: dict) -> dict:
        artifact = ctx.get("artifact", "")
        mode = ctx.get("mode", "document")
        self._log("info", "upload_done", f"{artifact} sent as {mode}",
                  message_id=ctx.get("message_id"))
        return ctx

    def on_forward(self, ctx: dict) -> dict:
        self._log("info", "forward", f"{ctx.get('artifact', '')} → {ctx.get('chat_id', '')}")
        return ctx

    def on_failure(self, ctx: dict) -> dict:
        level = "error" if ctx.get("fatal") else "warn"
        self._log(level, "failure", ctx.get("message", ""))
        return ctx

    def on_run_complete(self, ctx: dict) -> dict:
        report = ctx.get("report", {})
        if report.get("skipped"):
            self._log("info", "run_done", f"Skipped: {report.get('skip_reason')}")
            return ctx
        self._log(
            "info",
            "run_done",
            f"{len(report.get('uploaded', []))} uploaded, "
            f"{len(report.get('linked', []))} linked, "
            f"{len(report.get('failures', []))} failed",
        )
        return ctx


def create_plugin() -> LoggerPlugin:
    return LoggerPlugin()
