"""CLI entry point for agentrunner.

Commands:
- agentrunner providers: List configured providers
- agentrunner test: Test a provider's connection
- agentrunner info: Show models, agents and pricing of a provider
- agentrunner run: Run an agent session with live output
- agentrunner prompt: One-shot prompt without streaming
- agentrunner usage: Show a provider's usage limits
- agentrunner update: Update a provider's CLI
- agentrunner git ...: diff, commit, push, sync, checkout, branches, clone
"""

import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from agentrunner import __version__
from agentrunner.core.config import EngineConfig, load_config
from agentrunner.core.errors import AgentRunnerError, ExecutionCancelledError
from agentrunner.core.models import (
    ConnectionMode,
    ExecutionOptions,
    ExecutionProgress,
    ExecutionResult,
    ProviderConfig,
    ProviderType,
)
from agentrunner.providers import create_provider, validate_configuration
from agentrunner.providers.base import Provider
from agentrunner.vcs import VersionControlService

console = Console()


def get_repo_path() -> Path:
    """Get the repository path (current directory)."""
    return Path.cwd()


def _load(ctx: click.Context) -> EngineConfig:
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = load_config(get_repo_path())
        except AgentRunnerError as e:
            raise click.ClickException(str(e)) from e
    return ctx.obj["config"]


def _resolve_provider_config(config: EngineConfig, provider_id: str | None) -> ProviderConfig:
    if provider_id is None:
        provider = config.default_provider()
        if provider is None:
            raise click.ClickException("No providers configured. Add one to .agentrunner/config.yaml")
        return provider

    provider = config.get_provider(provider_id)
    if provider is not None:
        return provider

    # Bare vendor names work without a config file
    try:
        provider_type = ProviderType(provider_id)
    except ValueError:
        raise click.ClickException(f"Provider '{provider_id}' not found") from None
    return ProviderConfig(
        id=provider_type.value,
        name=provider_type.value,
        type=provider_type,
        connection_mode=ConnectionMode.CLI,
    )


def _open_provider(ctx: click.Context, provider_id: str | None) -> Provider:
    config = _load(ctx)
    try:
        return create_provider(_resolve_provider_config(config, provider_id), engine_config=config)
    except AgentRunnerError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """agentrunner - run AI coding-agent CLIs and automate git around them."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)


# ============================================================================
# Providers
# ============================================================================


@main.command()
@click.pass_context
def providers(ctx: click.Context) -> None:
    """List configured providers."""
    config = _load(ctx)
    if not config.providers:
        console.print("[yellow]No providers configured.[/yellow]")
        return

    table = Table(title="Providers")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Mode")
    table.add_column("Enabled")
    table.add_column("Problems", style="red")
    for p in config.providers:
        name = f"{p.name} (default)" if p.is_default else p.name
        table.add_row(
            p.id,
            escape(name),
            p.type.value,
            p.connection_mode.value,
            "yes" if p.is_enabled else "no",
            escape(" ".join(validate_configuration(p))),
        )
    console.print(table)


@main.command()
@click.argument("provider_id", required=False)
@click.pass_context
def test(ctx: click.Context, provider_id: str | None) -> None:
    """Test a provider's connection."""
    with _open_provider(ctx, provider_id) as provider:
        if provider.test_connection():
            console.print(f"[green]Connected:[/green] {provider.name}")
            return
        console.print(f"[red]Connection failed:[/red] {escape(provider.last_connection_error or 'unknown error')}")
        sys.exit(1)


@main.command()
@click.argument("provider_id", required=False)
@click.pass_context
def info(ctx: click.Context, provider_id: str | None) -> None:
    """Show models, agents and pricing of a provider."""
    with _open_provider(ctx, provider_id) as provider:
        provider_info = provider.get_provider_info()

    console.print(f"[bold]Version:[/bold] {escape(provider_info.version or 'n/a')}")
    table = Table(title="Models")
    table.add_column("Model", style="cyan")
    table.add_column("Multiplier", justify="right")
    for model in provider_info.available_models:
        multiplier = provider_info.pricing.model_multipliers.get(model)
        table.add_row(escape(model), f"{multiplier:g}x" if multiplier is not None else "-")
    console.print(table)

    if provider_info.available_agents:
        console.print("\n[bold]Agents:[/bold]")
        for agent in provider_info.available_agents:
            marker = " (default)" if agent.is_default else ""
            console.print(f"  - {escape(agent.name)}{marker}: {escape(agent.description)}")
    warning = provider_info.additional_info.get("modelsWarning")
    if warning:
        console.print(f"\n[yellow]{escape(str(warning))}[/yellow]")


def _print_progress(progress: ExecutionProgress) -> None:
    if progress.tool_name and not progress.output_line:
        console.print(f"[magenta]tool[/magenta] {escape(progress.tool_name)}")
    elif progress.output_line:
        style = "red" if progress.is_error_output else "dim"
        console.print(f"[{style}]{escape(progress.output_line)}[/{style}]", highlight=False)


def _run_cancellable(provider: Provider, prompt: str, options: ExecutionOptions, quiet: bool) -> ExecutionResult:
    """Run in a worker thread so Ctrl-C can cancel the agent cleanly."""
    cancel_event = threading.Event()
    with ThreadPoolExecutor(max_workers=1) as pool:
        future = pool.submit(
            provider.execute_with_options,
            prompt,
            options,
            None if quiet else _print_progress,
            cancel_event,
        )
        while True:
            try:
                return future.result(timeout=0.5)
            except FutureTimeoutError:
                continue
            except KeyboardInterrupt:
                console.print("\n[yellow]Cancelling...[/yellow]")
                cancel_event.set()


def _print_result(result: ExecutionResult) -> None:
    if result.success:
        console.print(Panel(escape(result.output or ""), title="[green]Completed[/green]"))
    else:
        console.print(Panel(escape(result.error_message or ""), title="[red]Failed[/red]"))

    details = []
    if result.session_id:
        details.append(f"session {result.session_id}")
    if result.model_used:
        details.append(f"model {result.model_used}")
    if result.input_tokens is not None or result.output_tokens is not None:
        details.append(f"tokens {result.input_tokens or 0} in / {result.output_tokens or 0} out")
    if result.cost_usd is not None:
        details.append(f"cost ${result.cost_usd:.4f}")
    if result.premium_requests_consumed is not None:
        details.append(f"premium requests {result.premium_requests_consumed}")
    if details:
        console.print(f"[dim]{escape(', '.join(details))}[/dim]")

    limits = result.detected_usage_limits
    if limits is not None and limits.is_limit_reached:
        reset = f" (resets {limits.reset_time:%Y-%m-%d %H:%M} UTC)" if limits.reset_time else ""
        console.print(f"[yellow]Usage limit reached:[/yellow] {escape(limits.message or '')}{reset}")
    if result.pending_interaction is not None:
        console.print(f"[yellow]Agent appears to be waiting for input:[/yellow] {escape(result.pending_interaction.prompt)}")


@main.command()
@click.argument("prompt")
@click.option("--provider", "-p", "provider_id", help="Provider id or vendor name (default: configured default)")
@click.option("--session", "-s", "session_id", help="Resume this session")
@click.option("--continue", "continue_last", is_flag=True, help="Continue the most recent session")
@click.option("--model", "-m", help="Model to use")
@click.option("--agent", help="Agent to use (OpenCode, Copilot)")
@click.option("--dir", "-d", "working_directory", type=click.Path(file_okay=False), help="Working directory")
@click.option("--timeout", type=float, help="Kill the agent after this many seconds")
@click.option("--max-turns", type=int, help="Maximum agent turns (Claude)")
@click.option("--quiet", "-q", is_flag=True, help="Do not stream agent output")
@click.pass_context
def run(
    ctx: click.Context,
    prompt: str,
    provider_id: str | None,
    session_id: str | None,
    continue_last: bool,
    model: str | None,
    agent: str | None,
    working_directory: str | None,
    timeout: float | None,
    max_turns: int | None,
    quiet: bool,
) -> None:
    """Run an agent session with live output."""
    options = ExecutionOptions(
        session_id=session_id,
        continue_last_session=continue_last,
        working_directory=working_directory or str(get_repo_path()),
        model=model,
        agent=agent,
        timeout_seconds=timeout,
        max_turns=max_turns,
    )
    with _open_provider(ctx, provider_id) as provider:
        console.print(f"\n[bold]Running {escape(provider.name)}:[/bold] {escape(prompt)}\n")
        try:
            result = _run_cancellable(provider, prompt, options, quiet)
        except ExecutionCancelledError as e:
            resume = f" Resume with --session {e.session_id}" if e.session_id else ""
            console.print(f"[yellow]Cancelled.[/yellow]{resume}")
            sys.exit(130)

    _print_result(result)
    if not result.success:
        sys.exit(1)


@main.command()
@click.argument("prompt")
@click.option("--provider", "-p", "provider_id", help="Provider id or vendor name")
@click.pass_context
def prompt(ctx: click.Context, prompt: str, provider_id: str | None) -> None:
    """One-shot prompt without streaming."""
    with _open_provider(ctx, provider_id) as provider:
        response = provider.get_prompt_response(prompt, str(get_repo_path()))
    if not response.success:
        console.print(f"[red]Error:[/red] {escape(response.error_message or '')}")
        sys.exit(1)
    console.print(response.response or "")
    console.print(f"[dim]{response.duration_ms} ms[/dim]")


@main.command()
@click.argument("provider_id", required=False)
@click.pass_context
def usage(ctx: click.Context, provider_id: str | None) -> None:
    """Show a provider's usage limits."""
    with _open_provider(ctx, provider_id) as provider:
        limits = provider.get_usage_limits()
    console.print(f"[bold]Limit type:[/bold] {limits.limit_type.value}")
    console.print(f"[bold]Reached:[/bold] {'yes' if limits.is_limit_reached else 'no'}")
    if limits.percent_used is not None:
        console.print(f"[bold]Used:[/bold] {limits.current_usage}/{limits.max_usage} ({limits.percent_used}%)")
    if limits.message:
        console.print(escape(limits.message))


@main.command()
@click.argument("provider_id", required=False)
@click.pass_context
def update(ctx: click.Context, provider_id: str | None) -> None:
    """Update a provider's CLI."""
    with _open_provider(ctx, provider_id) as provider:
        result = provider.update_cli()
    if not result.success:
        console.print(f"[red]Update failed:[/red] {escape(result.error_message or '')}")
        sys.exit(1)
    console.print(f"[green]Updated:[/green] {escape(result.previous_version or '?')} -> {escape(result.new_version or '?')}")


# ============================================================================
# Git
# ============================================================================


def _vcs(ctx: click.Context) -> VersionControlService:
    return VersionControlService(config=_load(ctx))


def _report(result) -> None:
    if result.success:
        console.print(f"[green]OK[/green] {escape(result.output or '')}")
        if result.commit_hash:
            console.print(f"[dim]commit {result.commit_hash}[/dim]")
        return
    console.print(f"[red]Error:[/red] {escape(result.error or '')}")
    if result.commit_hash:
        console.print(f"[dim]commit {result.commit_hash}[/dim]")
    sys.exit(1)


@main.group()
def git() -> None:
    """Git automation for agent working directories."""
    pass


@git.command()
@click.option("--base", help="Diff against this commit instead of HEAD")
@click.option("--stat", "stat_only", is_flag=True, help="Only print the summary")
@click.pass_context
def diff(ctx: click.Context, base: str | None, stat_only: bool) -> None:
    """Show the working directory diff."""
    service = _vcs(ctx)
    repo = get_repo_path()
    try:
        service.ensure_repository(repo)
    except AgentRunnerError as e:
        raise click.ClickException(str(e)) from e

    if stat_only:
        summary = service.get_diff_summary(repo, base)
        console.print(str(summary) if summary else "No changes")
        return
    text = service.get_working_directory_diff(repo, base)
    console.print(escape(text) if text else "No changes", highlight=False)


@git.command()
@click.argument("message")
@click.option("--push", "push_after", is_flag=True, help="Push after committing")
@click.option("--remote", default="origin", show_default=True)
@click.pass_context
def commit(ctx: click.Context, message: str, push_after: bool, remote: str) -> None:
    """Commit all changes."""
    service = _vcs(ctx)
    if push_after:
        result = service.commit_and_push(
            get_repo_path(),
            message,
            remote,
            progress=lambda text: console.print(f"[dim]{escape(text)}[/dim]"),
        )
    else:
        result = service.commit_all_changes(get_repo_path(), message)
    _report(result)


@git.command()
@click.option("--remote", default="origin", show_default=True)
@click.option("--branch", help="Branch to push (default: current)")
@click.pass_context
def push(ctx: click.Context, remote: str, branch: str | None) -> None:
    """Push the current branch."""
    _report(_vcs(ctx).push(get_repo_path(), remote, branch))


@git.command()
@click.option("--remote", default="origin", show_default=True)
@click.pass_context
def sync(ctx: click.Context, remote: str) -> None:
    """Discard local changes and reset the current branch to the remote."""
    _report(_vcs(ctx).sync_with_origin(get_repo_path(), remote))


@git.command()
@click.argument("branch")
@click.option("--remote", default="origin", show_default=True)
@click.pass_context
def checkout(ctx: click.Context, branch: str, remote: str) -> None:
    """Hard checkout BRANCH to match the remote exactly."""
    _report(_vcs(ctx).hard_checkout_branch(get_repo_path(), branch, remote))


@git.command()
@click.option("--all", "include_remote", is_flag=True, help="Include remote-tracking branches")
@click.pass_context
def branches(ctx: click.Context, include_remote: bool) -> None:
    """List branches."""
    for branch in _vcs(ctx).get_branches(get_repo_path(), include_remote):
        style = "green" if branch.is_current else ("blue" if branch.is_remote else "")
        text = escape(str(branch))
        console.print(f"[{style}]{text}[/{style}]" if style else text)


@git.command()
@click.argument("url")
@click.argument("target", type=click.Path(file_okay=False))
@click.option("--branch", "-b", help="Branch to check out")
@click.pass_context
def clone(ctx: click.Context, url: str, target: str, branch: str | None) -> None:
    """Clone URL into TARGET (absent or empty)."""
    _report(_vcs(ctx).clone_repository(url, target, branch))


if __name__ == "__main__":
    main()
