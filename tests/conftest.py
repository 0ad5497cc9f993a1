# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the agentrunner test suite.

This module provides foundational fixtures used across all test modules:
- Temporary repositories, real git repositories and bare remotes
- A ProcessSupervisor that is disposed after each test
- Stub vendor CLIs (small Python scripts) for end-to-end provider runs
- Sample provider configurations

Usage:
    Import fixtures implicitly via pytest's fixture discovery.
    All fixtures in this file are automatically available in test modules.
"""

from __future__ import annotations

import shutil
import stat
import subprocess
import sys
import textwrap
from collections.abc import Callable, Generator
from pathlib import Path
from unittest.mock import Mock

import pytest

from agentrunner.core.config import EngineConfig
from agentrunner.core.models import (
    ConnectionMode,
    ExecutionProgress,
    ProviderConfig,
    ProviderType,
)
from agentrunner.process.supervisor import ProcessSupervisor


# =============================================================================
# Repository and File System Fixtures
# =============================================================================


@pytest.fixture
def temp_repo(tmp_path: Path) -> Path:
    """Create a temporary project directory with a basic file structure.

    Creates:
        - src/ directory with a sample Python file
        - README.md

    Returns:
        Path to the project root (not a git repository).
    """
    repo = tmp_path / "repo"
    src_dir = repo / "src"
    src_dir.mkdir(parents=True)
    (src_dir / "main.py").write_text('"""Main module."""\n\ndef main():\n    return 1\n')
    (repo / "README.md").write_text("# Test Project\n")
    return repo


@pytest.fixture
def isolated_home(tmp_path: Path, monkeypatch) -> Path:
    """Point HOME at an empty directory so the user's real config is ignored."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("AGENTRUNNER_STALL_THRESHOLD", raising=False)
    monkeypatch.delenv("AGENTRUNNER_GIT_TIMEOUT", raising=False)
    return home


def _git(cwd: Path, *args: str) -> subprocess.CompletedProcess:
    return subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)


@pytest.fixture
def repo_with_git(temp_repo: Path) -> Path:
    """Create a temporary repository with actual git initialization.

    WARNING: Runs actual git commands. The repository has one commit on
    branch `main` and a configured author.

    Returns:
        Path to git-initialized repository.
    """
    if shutil.which("git") is None:
        pytest.skip("Git not available")
    try:
        _git(temp_repo, "init")
        _git(temp_repo, "config", "user.email", "test@example.com")
        _git(temp_repo, "config", "user.name", "Test User")
        _git(temp_repo, "config", "commit.gpgsign", "false")
        _git(temp_repo, "add", ".")
        _git(temp_repo, "commit", "-m", "Initial commit")
        _git(temp_repo, "branch", "-M", "main")
    except subprocess.CalledProcessError:
        pytest.skip("Git not available")
    return temp_repo


@pytest.fixture
def repo_with_remote(repo_with_git: Path, tmp_path: Path) -> tuple[Path, Path]:
    """A git repository whose `origin` is a local bare repository.

    `main` is pushed and tracked, so fetch / push / hard checkout work
    without a network.

    Returns:
        (working repository, bare remote)
    """
    remote = tmp_path / "remote.git"
    _git(tmp_path, "init", "--bare", str(remote))
    _git(remote, "symbolic-ref", "HEAD", "refs/heads/main")
    _git(repo_with_git, "remote", "add", "origin", str(remote))
    _git(repo_with_git, "push", "-u", "origin", "main")
    return repo_with_git, remote


@pytest.fixture
def git() -> Callable[..., subprocess.CompletedProcess]:
    """Run a git command in a directory: git(cwd, "status")."""
    return _git


# =============================================================================
# Process Fixtures
# =============================================================================


@pytest.fixture
def supervisor() -> Generator[ProcessSupervisor, None, None]:
    """A private ProcessSupervisor, disposed (all children killed) after the test."""
    sup = ProcessSupervisor(drain_grace_seconds=5.0)
    yield sup
    sup.dispose()


@pytest.fixture
def engine_config() -> EngineConfig:
    """Engine configuration with short timeouts for tests."""
    return EngineConfig(
        connection_test_timeout=10.0,
        prompt_timeout=20.0,
        stream_drain_grace=5.0,
        git_timeout=30.0,
        push_timeout=60.0,
    )


@pytest.fixture
def stub_cli(tmp_path: Path) -> Callable[[str], Path]:
    """Factory writing an executable Python script that stands in for a vendor CLI.

    The body runs with `sys`, `json` and `time` imported and `args`
    bound to the command-line arguments.

    Example:
        def test_run(stub_cli):
            exe = stub_cli('print(json.dumps({"type": "result", "result": "ok"}))')
    """
    counter = {"n": 0}

    def make(body: str) -> Path:
        counter["n"] += 1
        path = tmp_path / "bin" / f"stub-cli-{counter['n']}"
        path.parent.mkdir(exist_ok=True)
        script = (
            f"#!{sys.executable}\n"
            "import json, sys, time\n"
            "args = sys.argv[1:]\n"
            + textwrap.dedent(body)
        )
        path.write_text(script)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    if sys.platform == "win32":
        pytest.skip("Stub CLIs rely on shebang scripts")
    return make


@pytest.fixture
def mock_subprocess(mocker) -> Mock:
    """Create a mock for subprocess.run operations.

    Example:
        def test_git_command(mock_subprocess):
            mock_subprocess.return_value.stdout = "git output"
            # Test GitCommandExecutor without actual git commands
    """
    mock_run = mocker.patch("subprocess.run")
    mock_run.return_value.returncode = 0
    mock_run.return_value.stdout = ""
    mock_run.return_value.stderr = ""
    return mock_run


@pytest.fixture
def progress_events() -> list[ExecutionProgress]:
    """List that collects ExecutionProgress notifications; pass `.append` as the callback."""
    return []


# =============================================================================
# Provider Configuration Fixtures
# =============================================================================


@pytest.fixture
def claude_config() -> ProviderConfig:
    return ProviderConfig(id="claude-main", name="Claude", type=ProviderType.CLAUDE, is_default=True)


@pytest.fixture
def copilot_config() -> ProviderConfig:
    return ProviderConfig(id="copilot-main", name="Copilot", type=ProviderType.COPILOT)


@pytest.fixture
def opencode_rest_config() -> ProviderConfig:
    return ProviderConfig(
        id="opencode-server",
        name="OpenCode",
        type=ProviderType.OPENCODE,
        connection_mode=ConnectionMode.REST,
        api_endpoint="http://opencode.test",
        api_key="secret-key",
    )


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "integration: marks integration tests")
    config.addinivalue_line("markers", "git: marks tests requiring git")
