"""Engine configuration.

Loaded from `.agentrunner/config.yaml` (repository) or
`~/.agentrunner/config.yaml` (user), repository values winning. Every engine
class also accepts explicit parameters, so loading a file is optional.

Example:
    stall_threshold_seconds: 600
    providers:
      - id: claude-main
        name: Claude
        type: claude
        is_default: true
      - id: opencode-server
        name: OpenCode
        type: opencode
        connection_mode: rest
        api_endpoint: http://localhost:4096
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from agentrunner.core.errors import ProviderConfigError
from agentrunner.core.models import ProviderConfig

logger = logging.getLogger(__name__)

CONFIG_RELATIVE_PATH = Path(".agentrunner") / "config.yaml"

# env var -> (field, type)
ENV_OVERRIDES: dict[str, tuple[str, type]] = {
    "AGENTRUNNER_STALL_THRESHOLD": ("stall_threshold_seconds", float),
    "AGENTRUNNER_GIT_TIMEOUT": ("git_timeout", float),
}


@dataclass
class EngineConfig:
    """Timeouts and provider definitions used by the engine."""

    stall_threshold_seconds: float = 300.0
    connection_test_timeout: float = 10.0
    prompt_timeout: float = 120.0
    stream_drain_grace: float = 10.0
    git_timeout: float = 30.0
    push_timeout: float = 120.0
    max_diff_bytes: int = 1024 * 1024
    providers: list[ProviderConfig] = field(default_factory=list)

    def get_provider(self, provider_id: str) -> ProviderConfig | None:
        return next((p for p in self.providers if p.id == provider_id), None)

    def default_provider(self) -> ProviderConfig | None:
        """The enabled provider marked default, else the first enabled one."""
        enabled = [p for p in self.providers if p.is_enabled]
        return next((p for p in enabled if p.is_default), enabled[0] if enabled else None)


def _search_paths(repo_path: Path | None) -> list[Path]:
    paths = [Path.home() / CONFIG_RELATIVE_PATH]
    if repo_path is not None:
        paths.append(Path(repo_path) / CONFIG_RELATIVE_PATH)
    return paths


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ProviderConfigError(f"Invalid config in {path}: {e}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ProviderConfigError(f"Invalid config in {path}: expected a mapping")
    return data


def _parse_providers(raw: Any, source: Path) -> list[ProviderConfig]:
    if not isinstance(raw, list):
        raise ProviderConfigError(f"Invalid 'providers' in {source}: expected a list")
    providers = []
    for entry in raw:
        try:
            providers.append(ProviderConfig.model_validate(entry))
        except ValidationError as e:
            raise ProviderConfigError(f"Invalid provider in {source}: {e}")
    return providers


def load_config(repo_path: str | Path | None = None) -> EngineConfig:
    """Build an EngineConfig from config files and environment overrides.

    Raises:
        ProviderConfigError: If a config file is malformed.
    """
    known = {f.name for f in fields(EngineConfig)}
    values: dict[str, Any] = {}

    for path in _search_paths(Path(repo_path) if repo_path else None):
        if not path.is_file():
            continue
        data = _read_yaml(path)
        for key, value in data.items():
            if key == "providers":
                values["providers"] = _parse_providers(value, path)
            elif key in known:
                values[key] = value
            else:
                logger.warning(f"Ignoring unknown config key '{key}' in {path}")
        logger.debug(f"Loaded config from {path}")

    for env_name, (field_name, cast) in ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None:
            continue
        try:
            values[field_name] = cast(raw)
        except ValueError:
            logger.warning(f"Ignoring {env_name}={raw!r}: not a number")

    return EngineConfig(**values)
