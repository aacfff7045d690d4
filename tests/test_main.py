"""Tests for payload parsing, envelopes and the command line."""

import asyncio
import io
import json
import logging
import os
import signal
import pytest
from click.testing import CliRunner

import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import main
from main import Application, cli, failure_envelope, parse_payload, success_envelope
from core.config import EngineConfig, SessionConfig
from core.errors import (
    AdapterError,
    DependencyMissingError,
    InvalidArgumentsError,
    MissingArgumentsError,
)
import browser.driver as driver_module
from browser.driver import BrowserDriver

from fakes import FakeDriver, RecordingDelays


def make_app(tmp_path, **overrides):
    config = EngineConfig(sessions=SessionConfig(sessions_dir=str(tmp_path)), **overrides)
    return Application(config, driver=FakeDriver(), delays=RecordingDelays())


class TestPayload:
    """Test payload decoding."""

    def test_valid(self):
        payload = parse_payload('{"verb": "open", "args": {"url": "https://example.com/"}}')
        assert payload["verb"] == "open"

    def test_args_optional(self):
        assert parse_payload('{"verb": "getTabs"}') == {"verb": "getTabs"}

    def test_not_json(self):
        with pytest.raises(InvalidArgumentsError):
            parse_payload("open https://example.com")

    def test_missing_verb(self):
        with pytest.raises(MissingArgumentsError) as exc_info:
            parse_payload('{"args": {}}')
        assert exc_info.value.missing == ["verb"]

    def test_args_must_be_object(self):
        with pytest.raises(InvalidArgumentsError) as exc_info:
            parse_payload('{"verb": "open", "args": ["x"]}')
        assert exc_info.value.context["field"] == "args"

    def test_payload_must_be_object(self):
        with pytest.raises(InvalidArgumentsError):
            parse_payload('["open"]')


class TestEnvelopes:
    """Test success and failure envelopes."""

    def test_success(self):
        assert success_envelope({"sessionId": "a"}) == {"ok": True, "data": {"sessionId": "a"}}

    def test_missing_arguments(self):
        envelope = failure_envelope(MissingArgumentsError(["url"]))

        assert envelope == {
            "ok": False,
            "code": 10,
            "msg": "MISSING_ARGUMENTS",
            "details": {"missing": ["url"]},
        }

    def test_dependency_missing(self):
        envelope = failure_envelope(DependencyMissingError("playwright not installed", install="pip install playwright"))

        assert envelope["code"] == 14
        assert envelope["msg"] == "DEPENDENCY_MISSING"
        assert envelope["details"]["install"] == "pip install playwright"

    def test_adapter_error(self):
        envelope = failure_envelope(AdapterError("boom", error_type="wait_timeout"))

        assert envelope["code"] == 50
        assert envelope["details"] == {"message": "boom", "errorType": "wait_timeout"}

    def test_unexpected_exception(self):
        envelope = failure_envelope(KeyError("x"))

        assert envelope["code"] == 50
        assert envelope["msg"] == "ADAPTER_ERROR"

    def test_traceback_only_in_debug(self):
        try:
            raise AdapterError("boom")
        except AdapterError as e:
            quiet = failure_envelope(e)
            loud = failure_envelope(e, debug=True)

        assert "traceback" not in quiet["details"]
        assert "AdapterError" in loud["details"]["traceback"]


class TestDriver:
    """Test the missing-driver path."""

    def test_missing_playwright(self, monkeypatch):
        monkeypatch.setattr(driver_module, "PLAYWRIGHT_AVAILABLE", False)

        with pytest.raises(DependencyMissingError) as exc_info:
            BrowserDriver()
        assert exc_info.value.code.value == 14


class TestApplication:
    """Test one-shot handling and serve mode."""

    @pytest.mark.asyncio
    async def test_handle_success(self, tmp_path):
        app = make_app(tmp_path)

        envelope = await app.handle({"verb": "open", "args": {"url": "https://example.com/"}})

        assert envelope["ok"] is True
        assert envelope["data"]["title"] == "Title of example.com"
        await app.stop()

    @pytest.mark.asyncio
    async def test_handle_failure(self, tmp_path):
        app = make_app(tmp_path)

        envelope = await app.handle({"verb": "open", "args": {}})

        assert envelope == {"ok": False, "code": 10, "msg": "MISSING_ARGUMENTS", "details": {"missing": ["url"]}}

    @pytest.mark.asyncio
    async def test_stop_closes_sessions_and_driver(self, tmp_path):
        app = make_app(tmp_path)
        await app.start()
        await app.handle({"verb": "open", "args": {"url": "https://example.com/"}})

        await app.stop()

        assert len(app.registry) == 0
        assert app.driver.stopped
        assert app.driver.contexts[0].closed

    @pytest.mark.asyncio
    async def test_serve_keeps_sessions_between_lines(self, tmp_path):
        app = make_app(tmp_path)
        reader = asyncio.StreamReader()
        reader.feed_data(b'{"verb": "open", "args": {"url": "https://example.com/", "sessionId": "s"}}\n')
        reader.feed_data(b"\n")
        reader.feed_data(b"not json\n")
        reader.feed_data(b'{"verb": "getTabs", "args": {"sessionId": "s"}}\n')
        reader.feed_eof()
        out = io.StringIO()

        await app.serve(reader, out)

        lines = [json.loads(line) for line in out.getvalue().splitlines()]
        assert [line["ok"] for line in lines] == [True, False, True]
        assert lines[1]["code"] == 10
        assert lines[2]["data"]["tabs"][0]["url"] == "https://example.com/"
        assert len(app.driver.contexts) == 1
        await app.stop()

    @pytest.mark.asyncio
    async def test_serve_stops_on_shutdown(self, tmp_path):
        app = make_app(tmp_path)
        reader = asyncio.StreamReader()
        out = io.StringIO()

        task = asyncio.create_task(app.serve(reader, out))
        await asyncio.sleep(0)
        app.request_shutdown()
        await asyncio.wait_for(task, timeout=1)

        assert out.getvalue() == ""

    @pytest.mark.asyncio
    async def test_one_shot_signal_saves_sessions(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("WEB_ENGINE_SESSIONS_DIR", str(tmp_path))
        monkeypatch.delenv("WEB_ENGINE_CONFIG", raising=False)
        app = make_app(tmp_path)
        await app.handle({"verb": "open", "args": {"url": "https://example.com/"}})
        app.driver.launch_delay = 10
        monkeypatch.setattr(main, "build_application", lambda config: app)

        asyncio.get_running_loop().call_later(0.05, os.kill, os.getpid(), signal.SIGTERM)
        code = await asyncio.wait_for(
            main.run('{"verb": "open", "args": {"url": "https://example.org/", "sessionId": "other"}}',
                     False, None, False),
            timeout=5,
        )

        assert code == 1
        assert "Interrupted by signal" in capsys.readouterr().err
        assert (tmp_path / "default_auth.json").exists()
        assert app.driver.contexts[0].closed
        assert app.driver.stopped
        assert len(app.registry) == 0
        logging.basicConfig(stream=sys.stderr, force=True)


class TestCli:
    """Test the command line entry point."""

    @pytest.fixture
    def runner(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WEB_ENGINE_SESSIONS_DIR", str(tmp_path))
        monkeypatch.delenv("WEB_ENGINE_CONFIG", raising=False)
        monkeypatch.setattr(
            main,
            "build_application",
            lambda config: Application(config, driver=FakeDriver(), delays=RecordingDelays()),
        )
        yield CliRunner()
        # The command points logging at the runner's stderr
        logging.basicConfig(stream=sys.stderr, force=True)

    def test_one_shot_success(self, runner):
        result = runner.invoke(cli, ['{"verb": "open", "args": {"url": "https://example.com/"}}'])

        assert result.exit_code == 0
        lines = result.stdout.splitlines()
        assert len(lines) == 1
        envelope = json.loads(lines[0])
        assert envelope["ok"] is True
        assert envelope["data"]["url"] == "https://example.com/"

    def test_logs_stay_off_stdout(self, runner):
        result = runner.invoke(cli, ["--debug", '{"verb": "open", "args": {"url": "https://example.com/"}}'])

        assert result.exit_code == 0
        lines = result.stdout.splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["ok"] is True
        assert "session_created" in result.stderr

    def test_one_shot_failure(self, runner):
        result = runner.invoke(cli, ['{"verb": "click", "args": {}}'])

        assert result.exit_code == 1
        assert "MISSING_ARGUMENTS" in result.output

    def test_invalid_payload(self, runner):
        result = runner.invoke(cli, ["{broken"])

        assert result.exit_code == 1
        assert "INVALID_ARGS" in result.output

    def test_evaluate_disabled_by_default(self, runner):
        result = runner.invoke(cli, ['{"verb": "evaluate", "args": {"script": "return 1"}}'])

        assert result.exit_code == 1
        assert "INVALID_ARGS" in result.output

    def test_evaluate_enabled_by_environment(self, runner, monkeypatch):
        monkeypatch.setenv("WEB_ENGINE_ALLOW_EVALUATE", "true")

        result = runner.invoke(cli, ['{"verb": "evaluate", "args": {"script": "return 1"}}'])

        assert result.exit_code == 0

    def test_bad_config_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["--config", str(tmp_path / "missing.yaml"), '{"verb": "getTabs"}'])

        assert result.exit_code == 1
        assert "ADAPTER_ERROR" in result.output
