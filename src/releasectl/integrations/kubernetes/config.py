"""Kubernetes connection settings."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator

DEFAULT_FIELD_MANAGER = "releasectl"


class KubernetesConfig(BaseModel):
    """How to reach the cluster."""

    model_config = ConfigDict(extra="forbid")

    context: str | None = None
    kubeconfig: str | None = None
    retry_attempts: int = 3
    poll_interval: float = 2.0
    field_manager: str = DEFAULT_FIELD_MANAGER

    @field_validator("kubeconfig")
    @classmethod
    def validate_kubeconfig(cls, v: str | None) -> str | None:
        """Expand ~ in kubeconfig path."""
        if v is None:
            return None
        return str(Path(v).expanduser())

    @field_validator("retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:
        """Validate retry_attempts is at least one."""
        if v < 1:
            raise ValueError("retry_attempts must be at least 1")
        return v

    @field_validator("poll_interval")
    @classmethod
    def validate_poll_interval(cls, v: float) -> float:
        """Validate poll_interval is positive."""
        if v <= 0:
            raise ValueError("poll_interval must be positive")
        return v
