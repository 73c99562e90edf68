"""Configuration models for releasectl.

Configuration is read from ``~/.releasectl.yaml`` (if present) and then
overridden by ``RELEASECTL_*`` environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from releasectl.integrations.kubernetes.config import KubernetesConfig

DEFAULT_CONFIG_PATH = Path.home() / ".releasectl.yaml"
ENV_PREFIX = "RELEASECTL_"


class StorageConfig(BaseModel):
    """Where release records are persisted."""

    model_config = ConfigDict(extra="forbid")

    driver: Literal["secret", "memory"] = "secret"
    namespace: str | None = Field(
        default=None,
        description="Namespace holding release records (defaults to the release namespace)",
    )


class ReleasectlConfig(BaseModel):
    """Complete releasectl configuration."""

    model_config = ConfigDict(extra="forbid")

    namespace: str = "default"
    timeout: float = 300.0
    wait: bool = False
    storage: StorageConfig = StorageConfig()
    kubernetes: KubernetesConfig = KubernetesConfig()
    output_format: Literal["table", "json", "yaml"] = "table"

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    @field_validator("namespace")
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        """Namespaces must be non-empty."""
        if not v.strip():
            raise ValueError("namespace must not be empty")
        return v.strip()

    @classmethod
    def from_env(cls, base_config: dict[str, Any] | None = None) -> ReleasectlConfig:
        """Create configuration with environment variable overrides.

        Environment variables take precedence over base_config values.

        Supported environment variables:
            RELEASECTL_NAMESPACE: Default release namespace
            RELEASECTL_TIMEOUT: Default operation timeout in seconds
            RELEASECTL_WAIT: Wait for resources to become ready ("1"/"true")
            RELEASECTL_STORAGE: Storage driver (secret, memory)
            RELEASECTL_KUBE_CONTEXT: Kubeconfig context
            RELEASECTL_KUBECONFIG: Kubeconfig path
            RELEASECTL_OUTPUT: Output format (table, json, yaml)
        """
        config_dict: dict[str, Any] = dict(base_config) if base_config else {}
        storage = dict(config_dict.get("storage") or {})
        kubernetes = dict(config_dict.get("kubernetes") or {})

        if namespace := os.environ.get(f"{ENV_PREFIX}NAMESPACE"):
            config_dict["namespace"] = namespace

        if timeout := os.environ.get(f"{ENV_PREFIX}TIMEOUT"):
            config_dict["timeout"] = float(timeout)

        if wait := os.environ.get(f"{ENV_PREFIX}WAIT"):
            config_dict["wait"] = wait.lower() in ("1", "true", "yes")

        if driver := os.environ.get(f"{ENV_PREFIX}STORAGE"):
            storage["driver"] = driver

        if context := os.environ.get(f"{ENV_PREFIX}KUBE_CONTEXT"):
            kubernetes["context"] = context

        if kubeconfig := os.environ.get(f"{ENV_PREFIX}KUBECONFIG"):
            kubernetes["kubeconfig"] = kubeconfig

        if output_format := os.environ.get(f"{ENV_PREFIX}OUTPUT"):
            config_dict["output_format"] = output_format

        config_dict["storage"] = storage
        config_dict["kubernetes"] = kubernetes
        return cls.model_validate(config_dict)

    def storage_namespace(self, release_namespace: str | None = None) -> str:
        """Namespace in which release records are stored."""
        return self.storage.namespace or release_namespace or self.namespace


def load_config(path: Path | None = None) -> ReleasectlConfig:
    """Load configuration from a YAML file plus environment overrides.

    Args:
        path: Config file path. Defaults to ``~/.releasectl.yaml``; a missing
            file is not an error.

    Returns:
        The validated configuration.

    Raises:
        ValueError: If the file is not valid YAML or not a mapping.
        pydantic.ValidationError: If values fail validation.
    """
    config_path = path or DEFAULT_CONFIG_PATH
    base: dict[str, Any] = {}
    if config_path.exists():
        try:
            loaded = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ValueError(f"Config file {config_path} is not valid YAML: {e}") from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        base = loaded or {}
    return ReleasectlConfig.from_env(base)
