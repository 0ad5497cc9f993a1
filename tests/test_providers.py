"""Tests for provider adapters: argument vectors, capabilities, factory,
end-to-end CLI runs against stub executables, and OpenCode REST mode.
"""

from __future__ import annotations

import json
import threading

import httpx
import pytest

from agentrunner.core.errors import (
    CliAgentAuthenticationError,
    CliAgentError,
    CliAgentNotAvailableError,
    ExecutionCancelledError,
    ProviderConfigError,
    UsageLimitExceededError,
)
from agentrunner.core.models import (
    ConnectionMode,
    ExecutionOptions,
    MessageRole,
    ProviderConfig,
    ProviderType,
    UsageLimitType,
)
from agentrunner.providers import capabilities
from agentrunner.providers.claude import ClaudeArguments, ClaudeProvider
from agentrunner.providers.cli_runner import CliToolRunner
from agentrunner.providers.copilot import CopilotArguments, CopilotProvider
from agentrunner.providers.factory import create_provider
from agentrunner.providers.opencode import DEFAULT_MODELS, OpenCodeArguments, OpenCodeProvider
from agentrunner.providers.opencode_api import OpenCodeApiClient


# =============================================================================
# Argument builders
# =============================================================================


class TestClaudeArguments:
    """Tests for ClaudeArguments."""

    def test_minimal(self):
        args = ClaudeArguments().build("fix it", ExecutionOptions())
        assert args == [
            "-p",
            "fix it",
            "--output-format",
            "stream-json",
            "--verbose",
            "--dangerously-skip-permissions",
        ]

    def test_full_option_order(self):
        options = ExecutionOptions(
            session_id="s1",
            model="opus",
            max_turns=5,
            max_budget_usd=1.5,
            system_prompt="be brief",
            append_system_prompt="and kind",
            allowed_tools=["Read", "Edit"],
            excluded_tools=["Bash"],
            additional_directories=["/a", "/b"],
            mcp_config_path="mcp.json",
            additional_args=["--debug"],
        )
        args = ClaudeArguments().build("p", options)
        assert args[6:] == [
            "--resume", "s1",
            "--model", "opus",
            "--max-turns", "5",
            "--max-budget-usd", "1.5",
            "--system-prompt", "be brief",
            "--append-system-prompt", "and kind",
            "--allowedTools", "Read,Edit",
            "--disallowedTools", "Bash",
            "--add-dir", "/a",
            "--add-dir", "/b",
            "--mcp-config", "mcp.json",
            "--debug",
        ]  # fmt: skip

    def test_resume_beats_continue(self):
        assert "--continue" not in ClaudeArguments().build("p", ExecutionOptions(session_id="s", continue_last_session=True))
        assert "--continue" in ClaudeArguments().build("p", ExecutionOptions(continue_last_session=True))

    def test_summary_and_simple(self):
        builder = ClaudeArguments()
        assert builder.build_summary("s1", "sum") == ["--resume", "s1", "-p", "sum", "--max-turns", "1"]
        assert builder.build_simple_prompt("hello") == ["-p", "hello"]


class TestCopilotArguments:
    """Tests for CopilotArguments."""

    def test_full_option_order(self):
        options = ExecutionOptions(
            continue_last_session=True,
            model="gpt-5.1",
            agent="reviewer",
            system_prompt="sys",
            allowed_tools=["read", "write"],
            excluded_tools=["shell"],
            mcp_config_path="/tmp/mcp.json",
            additional_directories=["/extra"],
            additional_args=["--no-color"],
        )
        assert CopilotArguments().build("p", options) == [
            "-p", "p", "--yolo", "--silent",
            "--continue",
            "--model", "gpt-5.1",
            "--agent", "reviewer",
            "--system-prompt", "sys",
            "--available-tools", "read",
            "--available-tools", "write",
            "--excluded-tools", "shell",
            "--additional-mcp-config", "@/tmp/mcp.json",
            "--add-dir", "/extra",
            "--no-color",
        ]  # fmt: skip

    def test_summary_and_simple(self):
        builder = CopilotArguments()
        assert builder.build_simple_prompt("q") == ["-p", "q", "--yolo", "--silent"]
        assert builder.build_summary("s", "sum") == ["--resume", "s", "-p", "sum", "--yolo", "--silent"]


class TestOpenCodeArguments:
    """Tests for OpenCodeArguments."""

    def test_prompt_is_last(self):
        options = ExecutionOptions(
            session_id="ses_1",
            model="anthropic/claude-sonnet-4",
            agent="plan",
            title="Job 7",
            output_format="json",
            attached_files=["a.py", "b.py"],
            additional_args=["--print-logs"],
        )
        assert OpenCodeArguments().build("do it", options) == [
            "run",
            "--session", "ses_1",
            "--model", "anthropic/claude-sonnet-4",
            "--agent", "plan",
            "--title", "Job 7",
            "--format", "json",
            "--file", "a.py",
            "--file", "b.py",
            "--print-logs",
            "do it",
        ]  # fmt: skip

    def test_model_from_environment_option(self):
        options = ExecutionOptions(environment_variables={"OPENCODE_MODEL": "openai/gpt-4o"})
        assert OpenCodeArguments().build("p", options) == ["run", "--model", "openai/gpt-4o", "p"]

    def test_explicit_model_wins(self):
        options = ExecutionOptions(model="openai/o1", environment_variables={"OPENCODE_MODEL": "openai/gpt-4o"})
        assert OpenCodeArguments().build("p", options)[1:3] == ["--model", "openai/o1"]

    def test_summary_and_simple(self):
        builder = OpenCodeArguments()
        assert builder.build_summary("ses_1", "ignored") == ["session", "show", "ses_1", "--format", "json"]
        assert builder.build_simple_prompt("q") == ["run", "q"]
        assert builder.build_simple_prompt("q", ExecutionOptions(model="m")) == ["run", "--model", "m", "q"]


# =============================================================================
# Capabilities and factory
# =============================================================================


class TestCapabilities:
    """Tests for the capability registry and configuration validation."""

    def test_modes(self):
        assert capabilities.supports_mode(ProviderType.OPENCODE, ConnectionMode.REST)
        assert not capabilities.supports_mode(ProviderType.CLAUDE, ConnectionMode.REST)
        assert capabilities.get_default_mode(ProviderType.OPENCODE) == ConnectionMode.REST
        assert capabilities.get_default_executable(ProviderType.COPILOT) == "copilot"

    def test_valid_configs(self, claude_config, opencode_rest_config):
        assert capabilities.validate_configuration(claude_config) == []
        assert capabilities.validate_configuration(opencode_rest_config) == []

    def test_unsupported_mode(self):
        config = ProviderConfig(id="c", name="C", type=ProviderType.CLAUDE, connection_mode=ConnectionMode.REST, api_endpoint="http://x")
        assert capabilities.validate_configuration(config) == ["claude does not support rest connection mode."]

    @pytest.mark.parametrize(
        "endpoint,message",
        [
            (None, "API Endpoint is required for REST connection mode."),
            ("   ", "API Endpoint is required for REST connection mode."),
            ("ftp://host", "API Endpoint must be a valid HTTP or HTTPS URL."),
            ("not a url", "API Endpoint must be a valid HTTP or HTTPS URL."),
        ],
    )
    def test_rest_endpoint(self, endpoint, message):
        config = ProviderConfig(
            id="o", name="O", type=ProviderType.OPENCODE, connection_mode=ConnectionMode.REST, api_endpoint=endpoint
        )
        assert capabilities.validate_configuration(config) == [message]


class TestCreateProvider:
    """Tests for create_provider()."""

    def test_class_per_type(self, claude_config, copilot_config, opencode_rest_config, supervisor):
        assert isinstance(create_provider(claude_config, supervisor=supervisor), ClaudeProvider)
        assert isinstance(create_provider(copilot_config, supervisor=supervisor), CopilotProvider)
        provider = create_provider(opencode_rest_config, supervisor=supervisor)
        assert isinstance(provider, OpenCodeProvider)
        assert provider.api is not None
        assert repr(provider) == "OpenCodeProvider(id='opencode-server', mode=rest)"
        provider.close()

    def test_invalid_configuration(self):
        config = ProviderConfig(id="bad", name="Bad", type=ProviderType.CLAUDE, connection_mode=ConnectionMode.REST)
        with pytest.raises(ProviderConfigError) as exc_info:
            create_provider(config)
        message = str(exc_info.value)
        assert message.startswith("Invalid configuration for provider 'bad': ")
        assert "claude does not support rest connection mode." in message
        assert exc_info.value.recoverable is False

    def test_unknown_type(self, mocker, claude_config):
        mocker.patch.dict("agentrunner.providers.factory.PROVIDER_CLASSES", {}, clear=True)
        with pytest.raises(ProviderConfigError, match="Unknown provider type"):
            create_provider(claude_config)

    def test_executable_path_reaches_runner(self, claude_config, supervisor):
        config = claude_config.model_copy(update={"executable_path": "/opt/claude/bin/claude"})
        provider = create_provider(config, supervisor=supervisor)
        assert provider.runner.executable_path == "/opt/claude/bin/claude"
        assert provider.runner.supervisor is supervisor


# =============================================================================
# Static provider metadata
# =============================================================================


class TestProviderMetadata:
    """Tests for provider info and usage limits (runner mocked)."""

    def test_claude(self, mocker, claude_config, supervisor):
        provider = ClaudeProvider(claude_config, supervisor=supervisor)
        mocker.patch.object(provider.runner, "get_cli_version", return_value="2.0.1")

        info = provider.get_provider_info()
        assert info.version == "2.0.1"
        assert "sonnet" in info.available_models
        assert info.pricing.input_price_per_million == 3.0
        assert info.pricing.output_price_per_million == 15.0
        assert info.available_agents[0].is_default

        usage = provider.get_usage_limits()
        assert usage.limit_type == UsageLimitType.SESSION_LIMIT
        assert not usage.is_limit_reached

    def test_copilot(self, mocker, copilot_config, supervisor):
        provider = CopilotProvider(copilot_config, supervisor=supervisor)
        mocker.patch.object(provider.runner, "get_cli_version", return_value="0.0.381")

        info = provider.get_provider_info()
        assert len(info.available_models) == 15
        assert info.pricing.model_multipliers["claude-haiku-4.5"] == 0.2
        assert info.additional_info["hasPremiumRequestLimit"] is True
        assert provider.get_usage_limits().limit_type == UsageLimitType.PREMIUM_REQUESTS

    def test_opencode_cli_models_fallback(self, mocker, supervisor):
        config = ProviderConfig(id="oc", name="OpenCode", type=ProviderType.OPENCODE)
        provider = OpenCodeProvider(config, supervisor=supervisor)
        mocker.patch.object(provider.runner, "get_cli_version", return_value="0.15.0")
        mocker.patch.object(provider.runner, "run_capture", return_value=None)

        info = provider.get_provider_info()
        assert info.available_models == DEFAULT_MODELS
        assert "modelsWarning" in info.additional_info
        assert [agent.name for agent in info.available_agents] == ["build", "plan"]
        assert provider.get_usage_limits().limit_type == UsageLimitType.NONE

    def test_opencode_rest_uses_defaults(self, mocker, opencode_rest_config, supervisor):
        provider = OpenCodeProvider(opencode_rest_config, supervisor=supervisor)
        version = mocker.patch.object(provider.runner, "get_cli_version")

        info = provider.get_provider_info()
        assert info.version is None
        assert info.available_models == DEFAULT_MODELS
        version.assert_not_called()
        provider.close()


# =============================================================================
# End-to-end CLI providers (stub executables)
# =============================================================================


CLAUDE_STUB = """
if args == ["--version"]:
    print("2.0.1 (Claude Code)")
elif "--output-format" in args:
    session = args[args.index("--resume") + 1] if "--resume" in args else "sess-new"
    print(json.dumps({"type": "system", "session_id": session}), flush=True)
    if args[1] == "fail":
        print(json.dumps({"type": "result", "is_error": True, "result": "Tool crashed"}))
        sys.exit(1)
    print(json.dumps({"type": "result", "result": "done: " + args[1], "total_cost_usd": 0.02}))
elif args[:1] == ["--resume"]:
    print(json.dumps({"type": "result", "result": "Fixed the failing parser tests"}))
elif args[:1] == ["-p"]:
    if args[1] == "explode":
        print("model overloaded", file=sys.stderr)
        sys.exit(1)
    if args[1] == "limited":
        print("You've reached your usage limit. Try again in 2 hours", file=sys.stderr)
        sys.exit(1)
    if args[1] == "login":
        print("Error: not logged in. Run /login", file=sys.stderr)
        sys.exit(1)
    print("pong")
elif args == ["update"]:
    print("already up to date")
"""


@pytest.mark.integration
class TestClaudeProviderEndToEnd:
    """ClaudeProvider driving a stub `claude` executable."""

    @pytest.fixture
    def provider(self, stub_cli, claude_config, supervisor, engine_config):
        exe = stub_cli(CLAUDE_STUB)
        config = claude_config.model_copy(update={"executable_path": str(exe)})
        return ClaudeProvider(config, supervisor=supervisor, engine_config=engine_config)

    def test_connection(self, provider):
        assert provider.test_connection()
        assert provider.is_connected
        assert provider.last_connection_error is None
        assert provider.get_provider_info().version == "2.0.1 (Claude Code)"

    def test_new_session(self, provider, progress_events):
        result = provider.execute_with_session("hi", progress=progress_events.append)
        assert result.success
        assert result.session_id == "sess-new"
        assert result.output == "done: hi"
        assert result.cost_usd == 0.02
        assert progress_events

    def test_resume_session(self, provider):
        result = provider.execute_with_session("again", session_id="sess-42")
        assert result.session_id == "sess-42"
        assert "--resume sess-42" in result.command_used

    def test_failed_session(self, provider):
        result = provider.execute_with_session("fail")
        assert not result.success
        assert result.exit_code == 1
        assert "Tool crashed" in result.error_message

    def test_prompt_and_execute(self, provider):
        response = provider.get_prompt_response("ping")
        assert response.success and response.response == "pong"
        assert response.model_used == "claude"
        assert provider.execute("ping") == "pong"

    def test_execute_raises(self, provider):
        with pytest.raises(CliAgentError, match="Claude CLI returned error: model overloaded"):
            provider.execute("explode")

    def test_execute_raises_typed_errors(self, provider):
        """Limit, login and missing-executable failures map onto specific exceptions."""
        with pytest.raises(UsageLimitExceededError) as exc_info:
            provider.execute("limited")
        assert exc_info.value.provider_name == "Claude"
        assert exc_info.value.reset_time is not None

        with pytest.raises(CliAgentAuthenticationError, match="requires authentication"):
            provider.execute("login")

    def test_execute_missing_executable(self, claude_config, supervisor, engine_config):
        runner = CliToolRunner("Claude", "definitely-missing-claude-cli", supervisor=supervisor, config=engine_config)
        provider = ClaudeProvider(claude_config, runner=runner)
        with pytest.raises(CliAgentNotAvailableError, match="'Claude' is not available"):
            provider.execute("ping")

    def test_session_summary(self, provider):
        summary = provider.get_session_summary("sess-42")
        assert summary.success
        assert summary.source == "session"
        assert summary.summary == "Fixed the failing parser tests"

    def test_summary_falls_back_to_output(self, provider):
        summary = provider.get_session_summary(None, fallback_output="Updated the README with usage notes")
        assert summary.source == "output"
        assert summary.summary == "Updated the README with usage notes"

    def test_update(self, provider):
        result = provider.update_cli()
        assert result.success
        assert result.previous_version == result.new_version == "2.0.1 (Claude Code)"

    def test_cancel(self, stub_cli, claude_config, supervisor, engine_config):
        exe = stub_cli(
            """
            print(json.dumps({"type": "system", "session_id": "keep-me"}), flush=True)
            time.sleep(30)
            """
        )
        provider = ClaudeProvider(
            claude_config.model_copy(update={"executable_path": str(exe)}),
            supervisor=supervisor,
            engine_config=engine_config,
        )
        cancel = threading.Event()
        threading.Timer(1.5, cancel.set).start()
        with pytest.raises(ExecutionCancelledError) as exc_info:
            provider.execute_with_session("long job", cancel_event=cancel)
        assert exc_info.value.session_id == "keep-me"


@pytest.mark.integration
class TestCopilotProviderEndToEnd:
    """CopilotProvider driving a stub `copilot` executable."""

    def test_plain_text_run_with_footer(self, stub_cli, copilot_config, supervisor, engine_config):
        exe = stub_cli(
            """
            if args[:1] == ["--resume"]:
                print("  Renamed the config loader  ")
            else:
                print("Made the change.")
                print("claude-sonnet-4.5  1.2k in, 300 out (Est. 1 Premium request)", file=sys.stderr)
            """
        )
        provider = CopilotProvider(
            copilot_config.model_copy(update={"executable_path": str(exe)}),
            supervisor=supervisor,
            engine_config=engine_config,
        )

        result = provider.execute_with_options("edit", ExecutionOptions(model="claude-sonnet-4.5"))
        assert result.success
        assert "Made the change." in result.output
        assert (result.input_tokens, result.output_tokens) == (1200, 300)
        assert result.premium_requests_consumed == 1

        summary = provider.get_session_summary("s1")
        assert summary.source == "session"
        assert summary.summary == "Renamed the config loader"


@pytest.mark.integration
class TestOpenCodeCliEndToEnd:
    """OpenCodeProvider in CLI mode against a stub `opencode` executable."""

    @pytest.fixture
    def provider(self, stub_cli, supervisor, engine_config):
        exe = stub_cli(
            """
            if args == ["--version"]:
                print("0.15.0")
            elif args == ["models"]:
                print("INFO loading providers")
                print("anthropic/claude-opus-4")
                print("ollama/llama3:8b")
            elif args[:2] == ["session", "show"]:
                print(json.dumps({"summary": "Added retry handling", "messages": []}))
            elif args == ["upgrade"]:
                print("upgraded")
            elif args[:1] == ["run"]:
                print(json.dumps({"type": "session", "session_id": "ses_9"}))
                print(json.dumps({"type": "message", "content": "All done"}))
                print(json.dumps({"type": "done", "input_tokens": 5, "output_tokens": 7, "model": "openai/gpt-4o"}))
            """
        )
        config = ProviderConfig(id="oc", name="OpenCode", type=ProviderType.OPENCODE, executable_path=str(exe))
        return OpenCodeProvider(config, supervisor=supervisor, engine_config=engine_config)

    def test_run(self, provider):
        result = provider.execute_with_options("go", ExecutionOptions(output_format="json"))
        assert result.success
        assert result.session_id == "ses_9"
        assert result.messages[0].role == MessageRole.ASSISTANT
        assert result.messages[0].content == "All done"
        assert result.model_used == "openai/gpt-4o"
        assert result.total_tokens == 12
        assert result.command_used.endswith("--format json go")

    def test_info_lists_models(self, provider):
        info = provider.get_provider_info()
        assert info.version == "0.15.0"
        assert info.available_models == ["anthropic/claude-opus-4", "ollama/llama3:8b"]
        assert info.pricing.model_multipliers["anthropic/claude-opus-4"] == 5.0
        assert info.pricing.model_multipliers["ollama/llama3:8b"] == 0.01
        assert "modelsWarning" not in info.additional_info

    def test_stored_summary(self, provider):
        summary = provider.get_session_summary("ses_9")
        assert summary.success and summary.source == "session"
        assert summary.summary == "Added retry handling"

    def test_upgrade(self, provider):
        result = provider.update_cli()
        assert result.success
        assert result.output == "upgraded"


# =============================================================================
# OpenCode REST mode
# =============================================================================


class RestServer:
    """Scriptable handler for httpx.MockTransport; records every request."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[str, httpx.Response] = {}
        self.error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.routes.get(request.url.path, httpx.Response(404, text="no route"))

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


@pytest.fixture
def rest_server() -> RestServer:
    return RestServer()


@pytest.fixture
def rest_provider(opencode_rest_config, rest_server, supervisor):
    provider = OpenCodeProvider(opencode_rest_config, transport=httpx.MockTransport(rest_server), supervisor=supervisor)
    yield provider
    provider.close()


class TestOpenCodeApiClient:
    """Tests for OpenCodeApiClient."""

    def test_auth_header_and_base_url(self, rest_server):
        rest_server.routes["/health"] = httpx.Response(200, text="ok")
        client = OpenCodeApiClient("http://opencode.test/", "k", transport=httpx.MockTransport(rest_server))
        assert client.endpoint == "http://opencode.test"
        assert client.health().status_code == 200
        assert rest_server.requests[0].headers["Authorization"] == "Bearer k"
        client.close()

    def test_no_key_no_header(self, rest_server):
        rest_server.routes["/health"] = httpx.Response(200)
        client = OpenCodeApiClient("http://opencode.test", transport=httpx.MockTransport(rest_server))
        client.health()
        assert "Authorization" not in rest_server.requests[0].headers
        client.close()


class TestOpenCodeRest:
    """OpenCodeProvider in REST mode."""

    def test_connection_ok(self, rest_provider, rest_server):
        rest_server.routes["/health"] = httpx.Response(200, json={"status": "ok"})
        assert rest_provider.test_connection()
        assert rest_server.requests[0].headers["Authorization"] == "Bearer secret-key"

    def test_connection_bad_status(self, rest_provider, rest_server):
        rest_server.routes["/health"] = httpx.Response(503, text="down")
        assert not rest_provider.test_connection()
        assert rest_provider.last_connection_error == (
            "REST API test failed. Status: 503 Service Unavailable. "
            "Endpoint: http://opencode.test/health. Response: down"
        )

    def test_connection_refused(self, rest_provider, rest_server):
        rest_server.error = httpx.ConnectError("connection refused")
        assert not rest_provider.test_connection()
        assert rest_provider.last_connection_error.startswith("Failed to connect to OpenCode API at http://opencode.test")

    def test_execute_session(self, rest_provider, rest_server):
        rest_server.routes["/run"] = httpx.Response(
            200,
            json={
                "output": "Refactored",
                "success": True,
                "session_id": "ses_rest",
                "input_tokens": 10,
                "output_tokens": 20,
                "cost_usd": 0.5,
            },
            headers={"X-RateLimit-Limit": "100", "X-RateLimit-Remaining": "40"},
        )
        result = rest_provider.execute_with_session("refactor", session_id="ses_old")

        assert rest_server.body() == {"prompt": "refactor", "session_id": "ses_old"}
        assert result.success
        assert result.session_id == "ses_rest"
        assert result.output == "Refactored"
        assert result.total_tokens == 30
        assert [m.role for m in result.messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert result.detected_usage_limits.percent_used == 60

    def test_rate_limited(self, rest_provider, rest_server):
        rest_server.routes["/run"] = httpx.Response(429, json={"error": "slow"}, headers={"Retry-After": "120"})
        result = rest_provider.execute_with_session("x")
        assert not result.success
        assert result.error_message == "OpenCode API returned 429 Too Many Requests for /run"
        assert result.detected_usage_limits.limit_type == UsageLimitType.RATE_LIMIT
        assert result.detected_usage_limits.is_limit_reached

    def test_server_reported_failure(self, rest_provider, rest_server):
        rest_server.routes["/run"] = httpx.Response(200, json={"success": False, "error": "agent crashed"})
        result = rest_provider.execute_with_session("x")
        assert not result.success
        assert result.error_message == "agent crashed"

    def test_failure_without_error_text(self, rest_provider, rest_server):
        """A failed run always carries an error message, even when the server sends none."""
        rest_server.routes["/run"] = httpx.Response(200, json={"success": False, "output": ""})
        result = rest_provider.execute_with_session("do it")
        assert not result.success
        assert result.error_message == "OpenCode API reported failure (session n/a)"

        rest_server.routes["/run"] = httpx.Response(200, json={"success": False, "session_id": "ses_9"})
        assert rest_provider.execute_with_session("do it").error_message == (
            "OpenCode API reported failure (session ses_9)"
        )

    def test_cancelled_before_request(self, rest_provider, rest_server):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ExecutionCancelledError):
            rest_provider.execute_with_session("x", session_id="s", cancel_event=cancel)
        assert rest_server.requests == []

    def test_prompt(self, rest_provider, rest_server):
        rest_server.routes["/v1/prompt"] = httpx.Response(200, json={"output": "42", "success": True})
        response = rest_provider.get_prompt_response("meaning?")
        assert response.success
        assert response.response == "42"
        assert response.model_used == "opencode"
        assert rest_server.body() == {"prompt": "meaning?", "max_tokens": 4096}

    def test_prompt_errors(self, rest_provider, rest_server):
        rest_server.routes["/v1/prompt"] = httpx.Response(500, text="boom")
        assert rest_provider.get_prompt_response("q").error_message.startswith("HTTP error calling OpenCode API: ")

        rest_server.routes["/v1/prompt"] = httpx.Response(200, json={"success": True, "output": ""})
        assert rest_provider.get_prompt_response("q").error_message == "No response content received from OpenCode API."

    def test_execute(self, rest_provider, rest_server):
        rest_server.routes["/run"] = httpx.Response(200, json={"output": "ok", "success": True})
        assert rest_provider.execute("x") == "ok"

        rest_server.routes["/run"] = httpx.Response(502, text="bad gateway")
        with pytest.raises(CliAgentError, match="OpenCode API request failed"):
            rest_provider.execute("x")

    def test_execute_typed_errors(self, rest_provider, rest_server):
        rest_server.routes["/run"] = httpx.Response(429, text="slow down", headers={"Retry-After": "60"})
        with pytest.raises(UsageLimitExceededError) as exc_info:
            rest_provider.execute("x")
        assert exc_info.value.reset_time is not None

        rest_server.routes["/run"] = httpx.Response(401, text="bad key")
        with pytest.raises(CliAgentAuthenticationError):
            rest_provider.execute("x")

    def test_update_not_available(self, rest_provider):
        result = rest_provider.update_cli()
        assert not result.success
        assert result.error_message == "CLI update is not available in REST connection mode."

    def test_summary_uses_fallback_output(self, rest_provider, rest_server):
        summary = rest_provider.get_session_summary("ses_1", fallback_output="Implemented the login flow end to end")
        assert summary.source == "output"
        assert rest_server.requests == []
