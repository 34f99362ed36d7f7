"""Configuration loader for Leasehold.

Loads config from a YAML cascade: config/default.yaml is always loaded,
then environment-specific overrides, then environment variables. The
resource pool lives in its own file (config/resources.yaml) and is read
once per session start.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from leasehold.core.exceptions import ConfigError


DEFAULT_CONFIG_DIR = Path(__file__).parent.parent.parent / "config"


# ---------------------------------------------------------------------------
# Config schema
# ---------------------------------------------------------------------------

class OrchestratorConfig(BaseModel):
    max_rotations_per_slot: int = 20
    default_concurrency: int = 1
    min_concurrency: int = 1
    max_concurrency: int = 10
    worker_stagger_seconds: float = 2.0
    no_resource_wait_seconds: float = 5.0
    rotation_retry_seconds: float = 30.0
    rotation_settle_seconds: float = 40.0
    provision_failure_backoff_seconds: float = 5.0
    default_visible: bool = True


class ProvisioningConfig(BaseModel):
    backend: str = "http"  # "http" or "local"
    base_url: str = "http://127.0.0.1:50325"
    api_key: str = ""
    timeout_seconds: float = 20.0
    retries: int = 2
    backoff_seconds: float = 1.0
    create_path: str = "/api/v1/contexts"
    open_path: str = "/api/v1/contexts/{context_id}/open"
    close_path: str = "/api/v1/contexts/{context_id}/close"
    destroy_path: str = "/api/v1/contexts/{context_id}"


class RotationConfig(BaseModel):
    backend: str = "http"  # "http" or "noop"
    timeout_seconds: float = 30.0


class SessionLogConfig(BaseModel):
    capacity: int = 500
    exposed: int = 200


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class AppConfig(BaseModel):
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    provisioning: ProvisioningConfig = Field(default_factory=ProvisioningConfig)
    rotation: RotationConfig = Field(default_factory=RotationConfig)
    session_log: SessionLogConfig = Field(default_factory=SessionLogConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ---------------------------------------------------------------------------
# Resource pool (resources.yaml)
# ---------------------------------------------------------------------------

class ResourceConfig(BaseModel):
    """One exclusive resource: connection parameters plus optional rotation handle."""
    name: str = ""
    protocol: str = "http"
    host: Optional[str] = None
    port: Optional[int] = None
    username: str = ""
    password: str = ""
    rotate_url: Optional[str] = None

    @property
    def can_rotate(self) -> bool:
        return bool(self.rotate_url)

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        if self.host:
            return f"{self.host}:{self.port}" if self.port else self.host
        return "direct"

    def connection_params(self) -> dict[str, Any]:
        """Parameters handed to the provisioning backend. Empty for direct resources."""
        if not self.host or not self.port:
            return {}
        return {
            "protocol": self.protocol,
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "password": self.password,
        }


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base, returning a new dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml(path: Path) -> Any:
    if not path.exists():
        return None
    try:
        with open(path) as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e


def load_config(
    config_dir: Optional[Path] = None,
    env: Optional[str] = None,
) -> AppConfig:
    """Load application config from YAML cascade.

    Order: default.yaml -> {env}.yaml -> env vars (LEASEHOLD_*)
    """
    if config_dir is None:
        config_dir = DEFAULT_CONFIG_DIR

    base = _load_yaml(config_dir / "default.yaml")
    merged: dict[str, Any] = base if isinstance(base, dict) else {}

    if env:
        overlay = _load_yaml(config_dir / f"{env}.yaml")
        if isinstance(overlay, dict):
            merged = _deep_merge(merged, overlay)

    provisioning_url = os.getenv("LEASEHOLD_PROVISIONING_URL")
    if provisioning_url:
        merged.setdefault("provisioning", {})["base_url"] = provisioning_url.rstrip("/")

    provisioning_key = os.getenv("LEASEHOLD_PROVISIONING_API_KEY")
    if provisioning_key:
        merged.setdefault("provisioning", {})["api_key"] = provisioning_key

    max_rotations = os.getenv("LEASEHOLD_MAX_ROTATIONS")
    if max_rotations:
        try:
            merged.setdefault("orchestrator", {})["max_rotations_per_slot"] = int(max_rotations)
        except ValueError as e:
            raise ConfigError(f"LEASEHOLD_MAX_ROTATIONS must be an integer, got '{max_rotations}'") from e

    try:
        return AppConfig(**merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def load_resource_pool(config_dir: Optional[Path] = None) -> list[ResourceConfig]:
    """Load the resource pool from resources.yaml.

    Accepts either a top-level list or a mapping with a ``resources`` key.
    A missing file means an empty pool.
    """
    if config_dir is None:
        config_dir = DEFAULT_CONFIG_DIR

    data = _load_yaml(config_dir / "resources.yaml")
    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("resources") or []
    if not isinstance(data, list):
        raise ConfigError("resources.yaml must contain a list of resources")

    resources: list[ResourceConfig] = []
    for i, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ConfigError(f"Resource #{i + 1} must be a mapping, got {type(entry).__name__}")
        try:
            resources.append(ResourceConfig(**entry))
        except ValidationError as e:
            raise ConfigError(f"Invalid resource #{i + 1}: {e}") from e
    return resources
