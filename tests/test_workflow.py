"""Tests for the upload workflow."""

import io
from pathlib import Path
from unittest.mock import MagicMock, Mock, patch

import pytest

from tguploader.plugins.config.plugin import (
    BotConfig,
    ProxyConfig,
    Secret,
    UploadJob,
)
from tguploader.plugins.interfaces import (
    Artifact,
    ArtifactListError,
    ArtifactStore,
    BuildInfo,
    NoArtifactsError,
    ProxySetupError,
    Result,
    TelegramApiError,
)
from tguploader.plugins.telegram.plugin import (
    MB,
    TelegramClient,
    TelegramResponse,
)
from tguploader.workflow import AbortRun, RunReport, UploadWorkflow, select_artifacts


# --- Fakes ---


class FakeStore(ArtifactStore):
    """In-memory store: {relative_path: size}."""

    def __init__(self, root: Path, sizes: dict, base_url=None, error=None):
        self.root = root
        self.sizes = sizes
        self.base_url = base_url
        self.error = error
        for name in sizes:
            path = root / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b"data")

    def list(self, pattern: str) -> list[str]:
        if self.error:
            raise self.error
        if pattern == "**":
            return sorted(self.sizes)
        return sorted(p for p in self.sizes if p.endswith(pattern.lstrip("*")))

    def child(self, relative_path: str) -> Artifact:
        url = f"{self.base_url}/artifact/{relative_path}" if self.base_url else None
        return Artifact(
            relative_path=relative_path,
            size_bytes=self.sizes[relative_path],
            location=self.root / relative_path,
            url=url,
        )


class FakeClient:
    """Records calls; replies with message ids 42, 43, ..."""

    def __init__(self, limit=50 * MB, failures=None):
        self.upload_limit = limit
        self.failures = failures or {}
        self.calls = []
        self.closed = False
        self._next_id = 42

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True

    def _reply(self, key):
        if key in self.failures:
            raise self.failures[key]
        message_id = self._next_id
        self._next_id += 1
        return TelegramResponse(ok=True, result_message_id=message_id)

    def send_document(self, chat_id, caption, silent, path, file_name=None):
        self.calls.append(("sendDocument", chat_id, caption, silent, file_name))
        return self._reply(file_name)

    def send_link(self, chat_id, caption, silent, url, file_name, size_bytes):
        self.calls.append(("sendMessage", chat_id, caption, silent, url, size_bytes))
        return self._reply(file_name)

    def forward_message(self, chat_id, source_chat_id, message_id, silent):
        self.calls.append(("forwardMessage", chat_id, source_chat_id, message_id))
        return self._reply(f"forward:{chat_id}")


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def log():
    return io.StringIO()


def _workflow(client, store, log, hooks=None):
    return UploadWorkflow(lambda: client, store, log=log, hooks=hooks)


# --- select_artifacts ---


class TestSelectArtifacts:
    def test_selects_in_store_order(self, tmp_path):
        store = FakeStore(tmp_path, {"b.apk": 1, "a.apk": 2})
        assert [a.relative_path for a in select_artifacts(store, None)] == [
            "a.apk",
            "b.apk",
        ]

    def test_blank_filter_means_everything(self, tmp_path):
        store = FakeStore(tmp_path, {"a.apk": 1, "b.txt": 2})
        assert len(select_artifacts(store, "  ")) == 2

    def test_no_match(self, tmp_path):
        store = FakeStore(tmp_path, {"a.apk": 1})
        with pytest.raises(NoArtifactsError) as exc_info:
            select_artifacts(store, "*.ipa")
        assert "No artifacts are matched by given filter" in str(exc_info.value)

    def test_store_error_is_wrapped(self, tmp_path):
        store = FakeStore(tmp_path, {}, error=ArtifactListError("disk gone"))
        with pytest.raises(ArtifactListError) as exc_info:
            select_artifacts(store, "**")
        assert str(exc_info.value) == "Can't list artifacts: disk gone"


# --- Build result gating ---


class TestBuildResult:
    @pytest.mark.parametrize(
        "result", [Result.FAILURE, Result.NOT_BUILT, Result.ABORTED]
    )
    def test_failed_build_is_skipped(self, tmp_path, client, log, result):
        store = FakeStore(tmp_path, {"a.apk": 1})
        report = _workflow(client, store, log).run(
            UploadJob(chat_id="100"), BuildInfo(result=result)
        )

        assert report.skipped
        assert client.calls == []
        assert "because of build failure" in log.getvalue()

    @pytest.mark.parametrize("result", [None, Result.SUCCESS, Result.UNSTABLE])
    def test_other_results_upload(self, tmp_path, client, log, result):
        store = FakeStore(tmp_path, {"a.apk": 1})
        report = _workflow(client, store, log).run(
            UploadJob(chat_id="100"), BuildInfo(result=result)
        )

        assert not report.skipped
        assert report.uploaded == ["a.apk"]


# --- Uploads ---


class TestUploads:
    def test_uploads_every_artifact(self, tmp_path, client, log):
        store = FakeStore(tmp_path, {"a.apk": 1, "b.apk": 2})
        job = UploadJob(chat_id="100", caption="Build $N", silent=True)

        report = _workflow(client, store, log).run(job, BuildInfo(env={"N": "7"}))

        assert client.calls == [
            ("sendDocument", "100", "Build 7", True, "a.apk"),
            ("sendDocument", "100", "Build 7", True, "b.apk"),
        ]
        assert report.ok
        assert client.closed
        assert "Uploading artifact 'a.apk' to the Telegram chat 100" in log.getvalue()

    def test_blank_caption_sends_none(self, tmp_path, client, log):
        store = FakeStore(tmp_path, {"a.apk": 1})
        _workflow(client, store, log).run(
            UploadJob(chat_id="100", caption="  "), BuildInfo()
        )
        assert client.calls[0][2] is None

    def test_nested_artifact_file_name(self, tmp_path, client, log):
        store = FakeStore(tmp_path, {"out/release/app.apk": 1})
        _workflow(client, store, log).run(UploadJob(chat_id="100"), BuildInfo())
        assert client.calls[0][4] == "app.apk"

    def test_no_artifacts_makes_no_calls(self, tmp_path, log):
        factory = Mock()
        store = FakeStore(tmp_path, {"a.apk": 1})
        workflow = UploadWorkflow(factory, store, log=log)

        report = workflow.run(UploadJob(chat_id="100", filter="*.ipa"), BuildInfo())

        factory.assert_not_called()
        assert report.failures == ["No artifacts are matched by given filter for upload"]
        assert "No artifacts are matched" in log.getvalue()

    def test_no_artifacts_with_fail_on_error(self, tmp_path, client, log):
        store = FakeStore(tmp_path, {"a.apk": 1})
        with pytest.raises(AbortRun) as exc_info:
            _workflow(client, store, log).run(
                UploadJob(chat_id="100", filter="*.ipa", fail_on_error=True),
                BuildInfo(),
            )
        assert exc_info.value.report.aborted
        assert client.calls == []

    def test_caption_error_stops_run(self, tmp_path, client, log):
        class BrokenEnv(dict):
            def get(self, key, default=None):
                raise RuntimeError("boom")

        store = FakeStore(tmp_path, {"a.apk": 1})
        report = _workflow(client, store, log).run(
            UploadJob(chat_id="100", caption="$X"), BuildInfo(env=BrokenEnv())
        )

        assert client.calls == []
        assert "Can't expand document caption" in report.failures[0]


# --- Size limit ---


class TestSizeLimit:
    def test_oversize_without_link_is_reported(self, tmp_path, client, log):
        store = FakeStore(
            tmp_path, {"big.apk": 75 * MB}, base_url="https://ci/job/app/42"
        )

        report = _workflow(client, store, log).run(UploadJob(chat_id="100"), BuildInfo())

        assert client.calls == []
        assert len(report.failures) == 1
        assert "Error while uploading artifact 'big.apk'" in report.failures[0]
        assert "75.00 MB" in report.failures[0]

    def test_oversize_with_link(self, tmp_path, client, log):
        store = FakeStore(
            tmp_path, {"big.apk": 75 * MB}, base_url="https://ci/job/app/42"
        )
        job = UploadJob(chat_id="100", caption="Nightly", link_on_oversize=True)

        report = _workflow(client, store, log).run(job, BuildInfo())

        assert client.calls == [
            (
                "sendMessage",
                "100",
                "Nightly",
                False,
                "https://ci/job/app/42/artifact/big.apk",
                75 * MB,
            )
        ]
        assert report.linked == ["big.apk"]
        assert report.uploaded == []

    def test_oversize_link_without_url(self, tmp_path, client, log):
        store = FakeStore(tmp_path, {"big.apk": 75 * MB})
        job = UploadJob(chat_id="100", link_on_oversize=True)

        report = _workflow(client, store, log).run(job, BuildInfo())

        assert client.calls == []
        assert "no link" in report.failures[0]

    def test_size_equal_to_limit_is_uploaded(self, tmp_path, client, log):
        store = FakeStore(tmp_path, {"edge.apk": 50 * MB})
        report = _workflow(client, store, log).run(UploadJob(chat_id="100"), BuildInfo())
        assert report.uploaded == ["edge.apk"]

    def test_local_server_limit(self, tmp_path, log):
        client = FakeClient(limit=2000 * MB)
        store = FakeStore(tmp_path, {"big.apk": 75 * MB})
        report = _workflow(client, store, log).run(UploadJob(chat_id="100"), BuildInfo())
        assert report.uploaded == ["big.apk"]


# --- Forwarding ---


class TestForwarding:
    def test_forward_to_each_target(self, tmp_path, client, log):
        store = FakeStore(tmp_path, {"a.apk": 1})
        job = UploadJob(chat_id="100", forward_chat_ids="111, , 222")

        report = _workflow(client, store, log).run(job, BuildInfo())

        assert client.calls[1:] == [
            ("forwardMessage", "111", "100", 42),
            ("forwardMessage", "222", "100", 42),
        ]
        assert report.forwarded == [("a.apk", "111"), ("a.apk", "222")]

    def test_forward_failure_continues(self, tmp_path, log):
        client = FakeClient(
            failures={"forward:111": TelegramApiError("chat not found")}
        )
        store = FakeStore(tmp_path, {"a.apk": 1})
        job = UploadJob(chat_id="100", forward_chat_ids="111,222")

        report = _workflow(client, store, log).run(job, BuildInfo())

        assert report.forwarded == [("a.apk", "222")]
        assert "Telegram chat 111: chat not found" in report.failures[0]

    def test_no_forward_without_message_id(self, tmp_path, log):
        client = FakeClient()
        client._reply = lambda key: TelegramResponse(ok=True)
        store = FakeStore(tmp_path, {"a.apk": 1})

        _workflow(client, store, log).run(
            UploadJob(chat_id="100", forward_chat_ids="111"), BuildInfo()
        )

        assert [c[0] for c in client.calls] == ["sendDocument"]


# --- Failure policy ---


class TestFailurePolicy:
    def test_fail_on_error_aborts_before_next_artifact(self, tmp_path, log):
        client = FakeClient(failures={"a1.apk": TelegramApiError("blocked")})
        store = FakeStore(tmp_path, {"a1.apk": 1, "a2.apk": 1})
        job = UploadJob(chat_id="100", fail_on_error=True)

        with pytest.raises(AbortRun) as exc_info:
            _workflow(client, store, log).run(job, BuildInfo())

        assert [c[4] for c in client.calls] == ["a1.apk"]
        assert "blocked" in str(exc_info.value)
        assert exc_info.value.report.aborted

    def test_errors_logged_and_next_artifact_attempted(self, tmp_path, log):
        client = FakeClient(failures={"a1.apk": TelegramApiError("blocked")})
        store = FakeStore(tmp_path, {"a1.apk": 1, "a2.apk": 1})
        job = UploadJob(chat_id="100")

        report = _workflow(client, store, log).run(job, BuildInfo())

        assert [c[4] for c in client.calls] == ["a1.apk", "a2.apk"]
        assert report.uploaded == ["a2.apk"]
        assert not report.ok
        assert (
            "Error while uploading artifact 'a1.apk' to Telegram chat 100: blocked"
            in log.getvalue()
        )

    def test_unexpected_error(self, tmp_path, log):
        client = FakeClient(failures={"a.apk": RuntimeError("kaput")})
        store = FakeStore(tmp_path, {"a.apk": 1})

        report = _workflow(client, store, log).run(UploadJob(chat_id="100"), BuildInfo())

        assert report.failures == ["Can't upload artifact 'a.apk' to the Telegram: kaput"]

    def test_proxy_error_stops_run(self, tmp_path, log):
        store = FakeStore(tmp_path, {"a.apk": 1})
        factory = Mock(side_effect=ProxySetupError("Can't set up HTTP proxy: bad"))

        report = UploadWorkflow(factory, store, log=log).run(
            UploadJob(chat_id="100"), BuildInfo()
        )

        assert report.failures == ["Can't set up HTTP proxy: bad"]


# --- Hooks ---


class TestHooks:
    def test_hooks_called_in_order(self, tmp_path, client, log):
        hooks = MagicMock()
        store = FakeStore(tmp_path, {"a.apk": 1})
        job = UploadJob(chat_id="100", forward_chat_ids="111")

        _workflow(client, store, log, hooks=hooks).run(job, BuildInfo())

        names = [c[0][0] for c in hooks.run_hook.call_args_list]
        assert names == [
            "on_run_start",
            "on_before_upload",
            "on_after_upload",
            "on_forward",
            "on_run_complete",
        ]

    def test_run_complete_on_abort(self, tmp_path, log):
        hooks = MagicMock()
        client = FakeClient(failures={"a.apk": TelegramApiError("blocked")})
        store = FakeStore(tmp_path, {"a.apk": 1})

        with pytest.raises(AbortRun):
            _workflow(client, store, log, hooks=hooks).run(
                UploadJob(chat_id="100", fail_on_error=True), BuildInfo()
            )

        names = [c[0][0] for c in hooks.run_hook.call_args_list]
        assert names[-2:] == ["on_failure", "on_run_complete"]
        assert hooks.run_hook.call_args_list[-1][0][1]["report"]["aborted"] is True


# --- With the real client ---


class TestWithTelegramClient:
    @pytest.fixture
    def http(self):
        with patch("httpx.Client") as mock_client_class:
            mock_client = MagicMock()
            mock_client_class.return_value = mock_client
            response = MagicMock(status_code=200, reason_phrase="OK")
            response.json = Mock(return_value={"ok": True, "result": {"message_id": 7}})
            mock_client.post.return_value = response
            yield mock_client

    def _run(self, tmp_path, api_base_url, size):
        store = FakeStore(tmp_path, {"app.apk": size}, base_url="https://ci/1")
        config = BotConfig(bot_token=Secret("T"), api_base_url=api_base_url)
        workflow = UploadWorkflow(
            lambda: TelegramClient(config), store, log=io.StringIO()
        )
        return workflow.run(
            UploadJob(chat_id="100", link_on_oversize=True), BuildInfo()
        )

    def test_public_server_links_60mb(self, tmp_path, http):
        report = self._run(tmp_path, "https://api.telegram.org", 60 * MB)
        assert report.linked == ["app.apk"]
        assert http.post.call_args[0][0] == "https://api.telegram.org/botT/sendMessage"

    def test_local_server_uploads_60mb(self, tmp_path, http):
        report = self._run(tmp_path, "http://localhost:8081", 60 * MB)
        assert report.uploaded == ["app.apk"]
        assert http.post.call_args[0][0] == "http://localhost:8081/botT/sendDocument"

    def test_trailing_slash_is_not_public(self, tmp_path, http):
        report = self._run(tmp_path, "https://api.telegram.org/", 60 * MB)
        assert report.uploaded == ["app.apk"]

    def test_bad_proxy_reported(self, tmp_path):
        store = FakeStore(tmp_path, {"app.apk": 1})
        config = BotConfig(
            bot_token=Secret("T"),
            proxy=ProxyConfig(uri="http://proxy:3128", user="u", password=Secret("p")),
        )
        with patch("httpx.Proxy", side_effect=ValueError("unsupported")):
            report = UploadWorkflow(
                lambda: TelegramClient(config), store, log=io.StringIO()
            ).run(UploadJob(chat_id="100"), BuildInfo())

        assert report.failures == ["Can't set up HTTP proxy: unsupported"]

    def test_unusable_proxy_client_reported(self, tmp_path):
        store = FakeStore(tmp_path, {"app.apk": 1})
        config = BotConfig(
            bot_token=Secret("T"), proxy=ProxyConfig(uri="socks5://proxy:1080")
        )
        with patch("httpx.Client", side_effect=ImportError("socksio is not installed")):
            report = UploadWorkflow(
                lambda: TelegramClient(config), store, log=io.StringIO()
            ).run(UploadJob(chat_id="100"), BuildInfo())

        assert report.failures == [
            "Can't set up HTTP proxy: socksio is not installed"
        ]


class TestRunReport:
    def test_to_dict(self):
        report = RunReport(uploaded=["a"], forwarded=[("a", "1")])
        data = report.to_dict()
        assert data["uploaded"] == ["a"]
        assert data["forwarded"] == [["a", "1"]]
        assert report.ok
