"""
Configuration loading for the node-updater operator.

Settings come from an optional YAML file with a top-level ``node_updater`` key;
anything the file leaves out falls back to the environment variables the
operator deployment injects.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from ..errors import ConfigurationError

CONFIG_SECTION = "node_updater"

ENVIRONMENT_FALLBACKS = {
    "subscription_id": "AZURE_SUBSCRIPTION_ID",
    "resource_group": "AZURE_CLUSTER_RESOURCE_GROUP",
    "cluster_name": "AZURE_CLUSTER_NAME",
    "devops_organization": "AZP_ORGANIZATION",
    "devops_token": "AZP_TOKEN",
    "kubeconfig": "KUBECONFIG",
}


class ConfigNotFoundError(ConfigurationError):
    """Raised when the configuration file or its section is missing."""


class OperatorConfig(BaseModel):
    """Operator configuration model with validation."""
    model_config = ConfigDict(validate_assignment=True)

    subscription_id: str
    resource_group: str
    cluster_name: str
    devops_organization: str = ""
    devops_token: str = ""
    error_requeue_seconds: float = 10
    progress_requeue_seconds: float = 10
    steady_requeue_seconds: float = 3600
    request_timeout_seconds: float = 30
    log_level: str = "INFO"
    kubeconfig: Optional[str] = None

    @field_validator("subscription_id", "resource_group", "cluster_name")
    @classmethod
    def _identifier_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        if any(char.isspace() for char in value):
            raise ValueError(f"'{value}' must not contain whitespace")
        return value

    @field_validator(
        "error_requeue_seconds",
        "progress_requeue_seconds",
        "steady_requeue_seconds",
        "request_timeout_seconds",
    )
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ValueError(f"unknown log level '{value}'")
        return level

    def has_devops_credentials(self) -> bool:
        return bool(self.devops_organization and self.devops_token)


def read_config_section(yaml_file_path: str) -> Dict[str, Any]:
    """
    Read the ``node_updater`` section of a YAML configuration file.

    Raises:
        ConfigNotFoundError: If the file or the section is missing
        ConfigurationError: If the file is not valid YAML
    """
    path = Path(yaml_file_path).expanduser()
    try:
        with open(path, "r") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigNotFoundError(f"YAML file not found at path: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Error parsing YAML file {path}: {exc}") from exc

    if not isinstance(data, dict) or CONFIG_SECTION not in data:
        raise ConfigNotFoundError(f"'{CONFIG_SECTION}' key not found in {path}")

    section = data[CONFIG_SECTION] or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"'{CONFIG_SECTION}' in {path} must be a mapping")
    return section


def load_config(
    config_file: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
) -> OperatorConfig:
    """
    Build the operator configuration from a YAML file and the environment.

    Values from the file win; missing keys are filled from the environment.
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = read_config_section(config_file) if config_file else {}

    for key, variable in ENVIRONMENT_FALLBACKS.items():
        if values.get(key) in (None, "") and environ.get(variable):
            values[key] = environ[variable]

    try:
        return OperatorConfig(**values)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid node-updater configuration: {exc}") from exc
