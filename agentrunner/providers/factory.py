"""Create provider instances from configuration."""

import logging

from agentrunner.core.config import EngineConfig
from agentrunner.core.errors import ProviderConfigError
from agentrunner.core.models import ProviderConfig, ProviderType
from agentrunner.process.supervisor import ProcessSupervisor
from agentrunner.providers.base import CliBackedProvider
from agentrunner.providers.capabilities import validate_configuration
from agentrunner.providers.claude import ClaudeProvider
from agentrunner.providers.copilot import CopilotProvider
from agentrunner.providers.opencode import OpenCodeProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[ProviderType, type[CliBackedProvider]] = {
    ProviderType.OPENCODE: OpenCodeProvider,
    ProviderType.CLAUDE: ClaudeProvider,
    ProviderType.COPILOT: CopilotProvider,
}


def create_provider(
    config: ProviderConfig,
    supervisor: ProcessSupervisor | None = None,
    engine_config: EngineConfig | None = None,
) -> CliBackedProvider:
    """Build the adapter for `config.type`.

    Raises:
        ProviderConfigError: If the vendor is unknown or the configuration
            is invalid for it.
    """
    provider_class = PROVIDER_CLASSES.get(config.type)
    if provider_class is None:
        raise ProviderConfigError(f"Unknown provider type: {config.type}")

    errors = validate_configuration(config)
    if errors:
        raise ProviderConfigError(f"Invalid configuration for provider '{config.id}': " + " ".join(errors))

    logger.debug(f"Creating {provider_class.__name__} for '{config.id}' ({config.connection_mode.value})")
    return provider_class(config, supervisor=supervisor, engine_config=engine_config)
