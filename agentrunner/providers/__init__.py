"""Vendor adapters behind one Provider contract."""

from agentrunner.providers.base import ArgumentBuilder, CliBackedProvider, Provider
from agentrunner.providers.capabilities import (
    get_default_mode,
    get_supported_modes,
    supports_mode,
    validate_configuration,
)
from agentrunner.providers.claude import ClaudeArguments, ClaudeProvider
from agentrunner.providers.cli_runner import CliToolRunner
from agentrunner.providers.copilot import CopilotArguments, CopilotProvider
from agentrunner.providers.factory import create_provider
from agentrunner.providers.opencode import OpenCodeArguments, OpenCodeProvider

__all__ = [
    "ArgumentBuilder",
    "ClaudeArguments",
    "ClaudeProvider",
    "CliBackedProvider",
    "CliToolRunner",
    "CopilotArguments",
    "CopilotProvider",
    "OpenCodeArguments",
    "OpenCodeProvider",
    "Provider",
    "create_provider",
    "get_default_mode",
    "get_supported_modes",
    "supports_mode",
    "validate_configuration",
]
