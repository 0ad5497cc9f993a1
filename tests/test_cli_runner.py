"""Tests for CliToolRunner: spawning vendor CLIs, streaming, failure reporting.

Runs use stub CLIs (small Python scripts written by the `stub_cli`
fixture) so every path goes through the real supervisor and stream pump.
"""

from __future__ import annotations

import json
import threading
import time

import pytest

from agentrunner.core.errors import ExecutionCancelledError
from agentrunner.providers.cli_runner import (
    CliToolRunner,
    InitializationMonitor,
    compose_failure_message,
)
from agentrunner.streaming.parsers import ClaudeStreamParser, OpenCodeStreamParser

pytestmark = pytest.mark.integration


@pytest.fixture
def make_runner(supervisor, engine_config):
    """Factory: CliToolRunner bound to a stub executable."""

    def make(executable, default="stubcli"):
        return CliToolRunner(
            "Test",
            default,
            executable_path=str(executable) if executable else None,
            supervisor=supervisor,
            config=engine_config,
        )

    return make


SESSION_OK = """
print(json.dumps({"type": "system", "session_id": "abc"}), flush=True)
print(json.dumps({"type": "assistant", "message": {"content": [{"type": "text", "text": "working"}]}}), flush=True)
print(json.dumps({"type": "result", "result": "ok", "usage": {"input_tokens": 1, "output_tokens": 2}}), flush=True)
"""


# =============================================================================
# Failure message composition
# =============================================================================


class TestComposeFailureMessage:
    """Tests for compose_failure_message()."""

    def test_stderr_first(self):
        message = compose_failure_message("Claude", 1, "stderr text", "stream error", ["out"])
        assert message == "stderr text\nstream error"

    def test_stream_error_only(self):
        assert compose_failure_message("Claude", 1, "", "stream error", ["out"]) == "stream error"

    def test_stdout_tail_when_nothing_else(self):
        lines = [f"line{i}" for i in range(1, 13)]
        message = compose_failure_message("Claude", 1, "", "", lines)
        assert message.startswith("Last output:\n")
        assert message.splitlines()[1:] == lines[-10:]

    def test_exit_code_fallback(self):
        assert compose_failure_message("Claude", 7, "", "", []) == "Claude CLI exited with code 7"


class TestInitializationMonitor:
    """Tests for the 'still initializing' notices."""

    def test_warns_until_output(self):
        notices: list[dict] = []
        monitor = InitializationMonitor(lambda: False, lambda **kw: notices.append(kw), interval=0.05).start()
        time.sleep(0.4)
        monitor.stop()

        assert monitor.warnings_sent >= 3
        assert notices[0]["output_line"].startswith("Still initializing...")
        assert notices[1]["output_line"].startswith("Still waiting for response...")
        assert notices[2]["output_line"].endswith("Process is running.")
        assert notices[0]["current_message"].startswith("Waiting for CLI response")

    def test_silent_once_output_arrives(self):
        notices: list[dict] = []
        monitor = InitializationMonitor(lambda: True, lambda **kw: notices.append(kw), interval=0.05).start()
        time.sleep(0.2)
        monitor.stop()
        assert notices == []


# =============================================================================
# Streaming runs
# =============================================================================


class TestRunStreaming:
    """Tests for CliToolRunner.run_streaming()."""

    def test_successful_session(self, make_runner, stub_cli, supervisor, progress_events):
        runner = make_runner(stub_cli(SESSION_OK))
        parser = ClaudeStreamParser(progress_events.append)

        result = runner.run_streaming(["-p", "hi"], parser)

        assert result.success
        assert result.session_id == "abc"
        assert result.output == "ok"
        assert result.exit_code == 0
        assert result.process_id is not None
        assert result.command_used.endswith("-p hi")
        assert (result.input_tokens, result.output_tokens) == (1, 2)
        assert result.messages[0].content == "working"
        assert supervisor.tracked_ids() == []

        started = [p for p in progress_events if p.current_message == "CLI process started successfully"]
        assert started and started[0].process_id == result.process_id
        assert any(p.output_line and "Waiting for CLI to initialize" in p.output_line for p in progress_events)

    def test_arguments_passed_verbatim(self, make_runner, stub_cli):
        """Prompts with spaces and quotes arrive as single arguments, never via a shell."""
        runner = make_runner(stub_cli('print(json.dumps({"type": "result", "result": json.dumps(args)}))'))
        result = runner.run_streaming(["-p", "fix 'this' && rm -rf /"], ClaudeStreamParser())
        assert json.loads(result.output) == ["-p", "fix 'this' && rm -rf /"]

    def test_environment_and_working_directory(self, make_runner, stub_cli, tmp_path):
        runner = make_runner(
            stub_cli(
                """
                import os
                print(json.dumps({"type": "result", "result": os.environ["MY_VAR"] + "@" + os.getcwd()}))
                """
            )
        )
        result = runner.run_streaming([], ClaudeStreamParser(), working_directory=str(tmp_path), environment={"MY_VAR": "v"})
        value, cwd = result.output.split("@")
        assert value == "v"
        assert cwd == str(tmp_path.resolve())

    def test_stderr_failure(self, make_runner, stub_cli):
        runner = make_runner(stub_cli("print('boom', file=sys.stderr)\nsys.exit(2)"))
        result = runner.run_streaming([], ClaudeStreamParser())
        assert not result.success
        assert result.exit_code == 2
        assert result.error_message == "boom"

    def test_stdout_tail_failure(self, make_runner, stub_cli):
        runner = make_runner(stub_cli("for i in range(1, 13): print(f'line{i}')\nsys.exit(1)"))
        result = runner.run_streaming([], ClaudeStreamParser())
        assert result.error_message.startswith("Last output:\n")
        assert "line12" in result.error_message
        assert "line2\n" not in result.error_message

    def test_silent_failure(self, make_runner, stub_cli):
        runner = make_runner(stub_cli("sys.exit(1)"))
        result = runner.run_streaming([], ClaudeStreamParser())
        assert result.error_message == "Test CLI exited with code 1"

    def test_stream_error_fails_zero_exit(self, make_runner, stub_cli):
        """An error event fails the run even when the CLI exits 0."""
        runner = make_runner(stub_cli('print(json.dumps({"type": "error", "message": "quota"}))'))
        result = runner.run_streaming([], ClaudeStreamParser())
        assert not result.success
        assert result.exit_code == 0
        assert result.error_message == "quota"

    def test_opencode_early_error(self, make_runner, stub_cli):
        runner = make_runner(stub_cli("print(\"Error: model 'x/y' not found\")"))
        result = runner.run_streaming([], OpenCodeStreamParser())
        assert not result.success
        assert "model 'x/y' not found" in result.error_message

    def test_pending_interaction_on_failure(self, make_runner, stub_cli):
        runner = make_runner(stub_cli("print('Do you want to continue? [y/N]')\nsys.exit(1)"))
        result = runner.run_streaming([], ClaudeStreamParser())
        assert result.pending_interaction is not None
        assert result.pending_interaction.interaction_type == "confirmation"
        assert result.is_paused is False

    def test_timeout(self, make_runner, stub_cli, supervisor):
        runner = make_runner(stub_cli("print('starting', flush=True)\ntime.sleep(30)"))
        result = runner.run_streaming([], ClaudeStreamParser(), timeout=1)
        assert not result.success
        assert result.timed_out
        assert result.exit_code == -1
        assert result.error_message.startswith("Execution timed out after 1 seconds.")
        assert supervisor.tracked_ids() == []

    def test_cancel_raises_with_session(self, make_runner, stub_cli, supervisor):
        runner = make_runner(
            stub_cli(
                """
                print(json.dumps({"type": "system", "session_id": "resume-me"}), flush=True)
                time.sleep(30)
                """
            )
        )
        cancel = threading.Event()
        threading.Timer(1.5, cancel.set).start()

        with pytest.raises(ExecutionCancelledError) as exc_info:
            runner.run_streaming([], ClaudeStreamParser(), cancel_event=cancel)

        assert exc_info.value.session_id == "resume-me"
        assert exc_info.value.process_id is not None
        assert supervisor.tracked_ids() == []

    def test_spawn_failure(self, make_runner, tmp_path):
        runner = make_runner(tmp_path / "missing", default="definitely-missing-agent-cli")
        result = runner.run_streaming(["-p", "x"], ClaudeStreamParser())
        assert not result.success
        assert result.error_message.startswith("Failed to start Test CLI process")
        assert "Current PATH" in result.error_message

    def test_slow_parser_is_stopped_before_finalize(self, make_runner, stub_cli, engine_config):
        """Past the drain grace, undelivered lines are dropped and the parser stops changing."""
        engine_config.stream_drain_grace = 0.2

        class SlowParser(ClaudeStreamParser):
            def handle(self, line):
                time.sleep(0.3)
                super().handle(line)

        runner = make_runner(stub_cli("for i in range(10):\n    print(f'line {i}', flush=True)\n"))
        parser = SlowParser()

        result = runner.run_streaming([], parser)

        delivered = len(parser.stdout_lines)
        assert result.success
        assert delivered < 10
        time.sleep(0.7)
        assert len(parser.stdout_lines) == delivered


# =============================================================================
# One-shot commands
# =============================================================================


VERSIONED_CLI = """
import pathlib
state = pathlib.Path(__file__).with_suffix(".version")
if args == ["--version"]:
    print(state.read_text() if state.exists() else "1.0.0")
elif args == ["update"]:
    state.write_text("1.1.0")
    print("updated")
elif args[:1] == ["-p"]:
    print("answer to " + args[1])
else:
    print("unknown command", file=sys.stderr)
    sys.exit(2)
"""


class TestOneShotCommands:
    """Tests for connection tests, prompts, capture and update."""

    def test_connection_ok(self, make_runner, stub_cli):
        runner = make_runner(stub_cli(VERSIONED_CLI))
        assert runner.test_cli_connection() == (True, None)
        assert runner.get_cli_version() == "1.0.0"

    def test_connection_without_output(self, make_runner, stub_cli):
        runner = make_runner(stub_cli("sys.exit(1)"))
        connected, error = runner.test_cli_connection()
        assert not connected
        assert "Exit code: 1" in error
        assert "No output received from --version command." in error
        assert runner.get_cli_version() == "unknown"

    def test_connection_missing_executable(self, make_runner, tmp_path):
        runner = make_runner(tmp_path / "missing", default="definitely-missing-agent-cli")
        connected, error = runner.test_cli_connection()
        assert not connected
        assert error.startswith("Failed to start Test CLI")
        assert "configure an absolute executable path" in error

    def test_connection_timeout(self, make_runner, stub_cli, engine_config):
        engine_config.connection_test_timeout = 0.5
        runner = make_runner(stub_cli("time.sleep(30)"))
        connected, error = runner.test_cli_connection()
        assert not connected
        assert error.startswith("CLI test timed out after")
        assert runner.get_cli_version() == "unknown (timeout)"

    def test_simple_prompt(self, make_runner, stub_cli):
        runner = make_runner(stub_cli(VERSIONED_CLI))
        response = runner.run_simple_prompt(["-p", "ping"])
        assert response.success
        assert response.response == "answer to ping"
        assert response.model_used == "stubcli"
        assert response.duration_ms >= 0

    def test_simple_prompt_error(self, make_runner, stub_cli):
        runner = make_runner(stub_cli(VERSIONED_CLI))
        response = runner.run_simple_prompt(["bogus"])
        assert not response.success
        assert response.error_message == "Test CLI returned error: unknown command"

    def test_simple_prompt_timeout(self, make_runner, stub_cli, engine_config):
        engine_config.prompt_timeout = 0.5
        runner = make_runner(stub_cli("time.sleep(30)"))
        response = runner.run_simple_prompt(["-p", "x"])
        assert response.error_message.startswith("Request timed out after")

    def test_run_capture(self, make_runner, stub_cli):
        runner = make_runner(stub_cli(VERSIONED_CLI))
        assert runner.run_capture(["-p", "x"], 10) == "answer to x"
        assert runner.run_capture(["bogus"], 10) is None

    def test_update_reports_versions(self, make_runner, stub_cli):
        runner = make_runner(stub_cli(VERSIONED_CLI))
        result = runner.run_update()
        assert result.success
        assert (result.previous_version, result.new_version) == ("1.0.0", "1.1.0")
        assert result.output == "updated"

    def test_update_failure(self, make_runner, stub_cli):
        runner = make_runner(stub_cli(VERSIONED_CLI))
        result = runner.run_update(("upgrade",))
        assert not result.success
        assert result.previous_version == "1.0.0"
        assert result.error_message == "unknown command"

    def test_summarize_output(self, make_runner):
        runner = make_runner(None)
        summary = runner.summarize_output("Refactored the parser module for speed")
        assert summary.success and summary.source == "output"
        missing = runner.summarize_output(None)
        assert not missing.success
        assert missing.error_message == "No session ID or output available to generate summary"
