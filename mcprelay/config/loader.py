"""Configuration loading and validation.

Resolves ``RelayConfig`` from (lowest to highest precedence) built-in
defaults, an optional YAML file, environment variables, and explicit
overrides from the CLI. Errors are always actionable.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from mcprelay.config.schema import RelayConfig


class ConfigValidationError(Exception):
    """Raised when configuration is malformed or fails validation.

    Attributes:
        source: Where the bad configuration came from (file path or "environment").
        details: Structured error details from pydantic validation.
    """

    def __init__(self, source: str, details: list[dict[str, Any]], message: str) -> None:
        self.source = source
        self.details = details
        super().__init__(message)


# Environment variable → RelayConfig field.
ENV_VARS: dict[str, str] = {
    "RENDER_API_KEY": "api_key",
    "MCP_PATH_SECRET": "path_secret",
    "UPSTREAM_MCP_URL": "upstream_url",
    "UPSTREAM_TIMEOUT_MS": "timeout_ms",
    "HOST": "host",
    "PORT": "port",
    "RENDER_API_URL": "api_base_url",
    "MAX_BODY_BYTES": "max_body_bytes",
    "MCPRELAY_LOG": "log_path",
}

# Fields where an empty string in the environment means "use the default".
_OPTIONAL_WHEN_BLANK = frozenset(
    {"upstream_url", "timeout_ms", "host", "port", "api_base_url", "max_body_bytes", "log_path"}
)


def read_env(environ: Mapping[str, str]) -> dict[str, Any]:
    """Extract known configuration keys from an environment mapping."""
    values: dict[str, Any] = {}
    for env_name, field_name in ENV_VARS.items():
        if env_name not in environ:
            continue
        raw = environ[env_name]
        if raw.strip() == "" and field_name in _OPTIONAL_WHEN_BLANK:
            continue
        values[field_name] = raw.strip() if field_name != "api_key" else raw
    return values


def read_config_file(path: Path) -> dict[str, Any]:
    """Read a YAML configuration file into a plain mapping.

    Raises:
        FileNotFoundError: If the file doesn't exist (with actionable message).
        ConfigValidationError: If the YAML is malformed or not a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found at {path}. "
            f"Drop the --config option to use environment variables only."
        )

    try:
        raw_data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigValidationError(
            source=str(path),
            details=[{"type": "yaml_parse_error", "msg": str(e)}],
            message=f"Failed to parse YAML in {path}: {e}",
        ) from e

    if raw_data is None:
        return {}

    if not isinstance(raw_data, dict):
        raise ConfigValidationError(
            source=str(path),
            details=[{"type": "not_a_mapping", "got": type(raw_data).__name__}],
            message=(
                f"Config file {path} must contain a YAML mapping (key-value pairs) "
                f"at the top level, got {type(raw_data).__name__}."
            ),
        )
    return raw_data


def load_config(
    *,
    environ: Mapping[str, str] | None = None,
    config_path: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> RelayConfig:
    """Resolve and validate the proxy configuration.

    Args:
        environ: Environment mapping to read. Pass ``os.environ`` in
            production; tests pass a plain dict.
        config_path: Optional YAML file with ``RelayConfig`` field names as keys.
        overrides: Explicit values (e.g. CLI options). ``None`` values are ignored.

    Returns:
        A validated, frozen RelayConfig.

    Raises:
        FileNotFoundError: If ``config_path`` is given but doesn't exist.
        ConfigValidationError: If any layer holds an invalid value.
    """
    merged: dict[str, Any] = {}
    source = "environment"

    if config_path is not None:
        merged.update(read_config_file(config_path))
        source = f"{config_path} + environment"

    merged.update(read_env(environ or {}))

    if overrides:
        merged.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return RelayConfig.model_validate(merged)
    except ValidationError as e:
        error_details = e.errors()
        error_lines = []
        for err in error_details:
            loc = " → ".join(str(part) for part in err["loc"])
            env_name = _env_name_for(loc)
            hint = f" (env {env_name})" if env_name else ""
            error_lines.append(f"  - {loc}{hint}: {err['msg']}")

        summary = "\n".join(error_lines)
        raise ConfigValidationError(
            source=source,
            details=error_details,
            message=f"Configuration from {source} is invalid:\n{summary}",
        ) from e


def _env_name_for(field_name: str) -> str | None:
    for env_name, name in ENV_VARS.items():
        if name == field_name:
            return env_name
    return None
