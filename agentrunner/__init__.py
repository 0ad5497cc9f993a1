"""agentrunner - execution engine for autonomous coding-agent CLIs.

Drives vendor agent tools (Claude Code, GitHub Copilot CLI, OpenCode) as
supervised subprocesses or REST calls, normalizes their streaming output into
one result model, and automates the git state those agents modify.
"""

__version__ = "0.1.0"
