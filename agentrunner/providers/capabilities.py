"""Declared capabilities of each vendor: connection modes and executables."""

from urllib.parse import urlparse

from agentrunner.core.models import ConnectionMode, ProviderConfig, ProviderType

SUPPORTED_MODES: dict[ProviderType, tuple[ConnectionMode, ...]] = {
    ProviderType.OPENCODE: (ConnectionMode.CLI, ConnectionMode.REST),
    ProviderType.CLAUDE: (ConnectionMode.CLI,),
    ProviderType.COPILOT: (ConnectionMode.CLI,),
}

DEFAULT_MODES: dict[ProviderType, ConnectionMode] = {
    ProviderType.OPENCODE: ConnectionMode.REST,
    ProviderType.CLAUDE: ConnectionMode.CLI,
    ProviderType.COPILOT: ConnectionMode.CLI,
}

DEFAULT_EXECUTABLES: dict[ProviderType, str] = {
    ProviderType.OPENCODE: "opencode",
    ProviderType.CLAUDE: "claude",
    ProviderType.COPILOT: "copilot",
}

DESCRIPTIONS: dict[ProviderType, str] = {
    ProviderType.OPENCODE: "OpenCode AI agent with REST API and CLI support",
    ProviderType.CLAUDE: "Anthropic Claude Code CLI agent",
    ProviderType.COPILOT: "GitHub Copilot CLI agent",
}


def get_supported_modes(provider_type: ProviderType) -> tuple[ConnectionMode, ...]:
    return SUPPORTED_MODES.get(provider_type, (ConnectionMode.CLI,))


def get_default_mode(provider_type: ProviderType) -> ConnectionMode:
    return DEFAULT_MODES.get(provider_type, ConnectionMode.CLI)


def supports_mode(provider_type: ProviderType, mode: ConnectionMode) -> bool:
    return mode in get_supported_modes(provider_type)


def get_default_executable(provider_type: ProviderType) -> str:
    return DEFAULT_EXECUTABLES.get(provider_type, "")


def get_description(provider_type: ProviderType) -> str:
    return DESCRIPTIONS.get(provider_type, "Unknown provider")


def validate_configuration(config: ProviderConfig) -> list[str]:
    """Return human-readable problems with `config` (empty when valid)."""
    errors = []
    if not supports_mode(config.type, config.connection_mode):
        errors.append(
            f"{config.type.value} does not support {config.connection_mode.value} connection mode."
        )

    if config.connection_mode == ConnectionMode.REST:
        if not config.api_endpoint or not config.api_endpoint.strip():
            errors.append("API Endpoint is required for REST connection mode.")
        else:
            parsed = urlparse(config.api_endpoint)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                errors.append("API Endpoint must be a valid HTTP or HTTPS URL.")
    return errors
