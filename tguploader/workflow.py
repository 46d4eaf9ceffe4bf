"""Upload workflow - delivers build artifacts to a Telegram chat.

One run per finished build:

    check build result -> list artifacts -> expand caption
        -> for each artifact: check size -> send file | send link | skip
                              -> forward to extra chats
        -> done

Every error goes through a single failure policy: with ``fail_on_error`` the
first failure raises AbortRun and ends the run, otherwise it is written to
the build log and the run moves on to the next item.
"""

import sys
from dataclasses import dataclass, field
from typing import Callable, Optional, TextIO

from tguploader.caption import expand_caption
from tguploader.plugins.config.plugin import UploadJob, DEFAULT_FILTER
from tguploader.plugins.interfaces import (
    Artifact,
    ArtifactListError,
    ArtifactStore,
    BuildInfo,
    NoArtifactsError,
    Result,
    UploadError,
    UploadSizeExceededError,
)
from tguploader.plugins.telegram.plugin import TelegramClient, human_readable_size


class AbortRun(Exception):
    """Stops the whole run; raised only when fail_on_error is set."""

    def __init__(self, message: str, report: Optional["RunReport"] = None):
        super().__init__(message)
        self.report = report


@dataclass
class RunReport:
    """What happened during one run."""

    skipped: bool = False
    skip_reason: Optional[str] = None
    uploaded: list[str] = field(default_factory=list)
    linked: list[str] = field(default_factory=list)
    forwarded: list[tuple[str, str]] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures and not self.aborted

    def to_dict(self) -> dict:
        return {
            "skipped": self.skipped,
            "skip_reason": self.skip_reason,
            "uploaded": self.uploaded,
            "linked": self.linked,
            "forwarded": [list(pair) for pair in self.forwarded],
            "failures": self.failures,
            "aborted": self.aborted,
        }


def select_artifacts(store: ArtifactStore, pattern: Optional[str]) -> list[Artifact]:
    """Resolve the artifacts matched by a glob filter.

    Raises:
        ArtifactListError: The store could not be listed
        NoArtifactsError: Nothing matched
    """
    pattern = (pattern or "").strip() or DEFAULT_FILTER

    try:
        paths = store.list(pattern)
        artifacts = [store.child(path) for path in paths]
    except ArtifactListError as e:
        raise ArtifactListError(f"Can't list artifacts: {e}") from e
    except OSError as e:
        raise ArtifactListError(f"Can't list artifacts: {e}") from e

    if not artifacts:
        raise NoArtifactsError("No artifacts are matched by given filter for upload")
    return artifacts


class UploadWorkflow:
    """Runs uploads for finished builds.

    Args:
        client_factory: Returns a new TelegramClient; called once per run,
            after artifacts and caption are ready
        store: Where the build's artifacts live
        log: Build log stream (stderr when None)
        hooks: Optional registry; its upload hooks observe the run
    """

    def __init__(
        self,
        client_factory: Callable[[], TelegramClient],
        store: ArtifactStore,
        log: Optional[TextIO] = None,
        hooks=None,
    ):
        self.client_factory = client_factory
        self.store = store
        self.log = log
        self.hooks = hooks

    def run(self, job: UploadJob, build: BuildInfo) -> RunReport:
        """Upload the build's artifacts.

        Returns:
            RunReport of the run

        Raises:
            AbortRun: A failure occurred and job.fail_on_error is set;
                the partial report is attached as ``report``
        """
        report = RunReport()
        self._hook("on_run_start", {"chat_id": job.chat_id, "filter": job.filter})
        try:
            self._run(job, build, report)
        except AbortRun as e:
            report.aborted = True
            e.report = report
            raise
        finally:
            self._hook("on_run_complete", {"report": report.to_dict()})
        return report

    def _run(self, job: UploadJob, build: BuildInfo, report: RunReport) -> None:
        if build.result is not None and build.result.is_worse_or_equal_to(
            Result.FAILURE
        ):
            report.skipped = True
            report.skip_reason = f"build result is {build.result.name}"
            self._log("Skipping artifacts uploading to the Telegram because of build failure")
            return

        try:
            artifacts = select_artifacts(self.store, job.filter)
            caption = expand_caption(job.caption, build.env, build)
            client = self.client_factory()
        except UploadError as e:
            self._fail(job, report, str(e))
            return

        with client:
            for artifact in artifacts:
                try:
                    self._deliver(client, job, artifact, caption, report)
                except AbortRun:
                    raise
                except UploadError as e:
                    self._fail(
                        job,
                        report,
                        f"Error while uploading artifact '{artifact.relative_path}'"
                        f" to Telegram chat {job.chat_id}: {e}",
                    )
                except Exception as e:
                    self._fail(
                        job,
                        report,
                        f"Can't upload artifact '{artifact.relative_path}'"
                        f" to the Telegram: {e}",
                    )

    def _deliver(
        self,
        client: TelegramClient,
        job: UploadJob,
        artifact: Artifact,
        caption: Optional[str],
        report: RunReport,
    ) -> None:
        path = artifact.relative_path
        self._log(f"Uploading artifact '{path}' to the Telegram chat {job.chat_id}")
        self._hook("on_before_upload", {"artifact": path, "size": artifact.size_bytes})

        limit = client.upload_limit
        if artifact.size_bytes > limit:
            size = human_readable_size(artifact.size_bytes)
            if not job.link_on_oversize:
                raise UploadSizeExceededError(
                    f"size {size} exceeds the upload limit of {human_readable_size(limit)}"
                )
            if not artifact.url:
                raise UploadSizeExceededError(
                    f"size {size} exceeds the upload limit and there is no link to send"
                )
            response = client.send_link(
                job.chat_id,
                caption,
                job.silent,
                artifact.url,
                artifact.file_name,
                artifact.size_bytes,
            )
            report.linked.append(path)
            mode = "link"
        else:
            response = client.send_document(
                job.chat_id, caption, job.silent, artifact.location, artifact.file_name
            )
            report.uploaded.append(path)
            mode = "document"

        self._hook(
            "on_after_upload",
            {"artifact": path, "mode": mode, "message_id": response.result_message_id},
        )

        if response.result_message_id is not None:
            self._forward(client, job, path, response.result_message_id, report)

    def _forward(
        self,
        client: TelegramClient,
        job: UploadJob,
        path: str,
        message_id: int,
        report: RunReport,
    ) -> None:
        for target in job.forward_targets():
            try:
                client.forward_message(target, job.chat_id, message_id, job.silent)
            except Exception as e:
                self._fail(
                    job,
                    report,
                    f"Can't forward artifact '{path}' message to Telegram chat {target}: {e}",
                )
                continue
            report.forwarded.append((path, target))
            self._hook("on_forward", {"artifact": path, "chat_id": target})

    def _fail(self, job: UploadJob, report: RunReport, message: str) -> None:
        report.failures.append(message)
        self._hook("on_failure", {"message": message, "fatal": job.fail_on_error})
        if job.fail_on_error:
            raise AbortRun(message)
        self._log(message)

    def _log(self, message: str) -> None:
        print(message, file=self.log or sys.stderr, flush=True)

    def _hook(self, name: str, ctx: dict) -> None:
        if self.hooks is not None:
            self.hooks.run_hook(name, ctx)
