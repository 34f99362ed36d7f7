"""Component factory for Leasehold.

Creates and wires the config, external collaborators, stages and the
session controller so callers receive a ready-to-start bundle.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from leasehold.adapters.provisioning import (
    HttpProvisioningClient,
    LocalProvisioningClient,
    ProvisioningClient,
)
from leasehold.adapters.rotation import HttpRotationService, NoopRotationService, RotationService
from leasehold.core.config import AppConfig, load_config, load_resource_pool
from leasehold.core.exceptions import ConfigError
from leasehold.orchestrator.controller import SessionController
from leasehold.stages.base import Stage, load_stages

logger = logging.getLogger("leasehold.factory")


@dataclass
class ComponentBundle:
    """Container for all initialized components."""

    config: AppConfig
    provisioning: ProvisioningClient
    rotation: RotationService
    controller: SessionController
    stages: list[Stage] = field(default_factory=list)
    config_dir: Optional[Path] = None


class ComponentFactory:
    """Factory for creating and wiring Leasehold components.

    Usage:
        bundle = ComponentFactory.create(stages_spec="mypkg.stages:build")
        await bundle.controller.start(5)
    """

    @staticmethod
    def create(
        config_dir: Optional[Path] = None,
        env: Optional[str] = None,
        stages_spec: Optional[str] = None,
        stages: Optional[Sequence[Stage]] = None,
        provisioning: Optional[ProvisioningClient] = None,
        rotation: Optional[RotationService] = None,
    ) -> ComponentBundle:
        """Create and wire all components.

        Args:
            config_dir: Path to config/ directory. Default: project root/config.
            env: Environment name for config overlay (e.g., "test").
            stages_spec: ``package.module:factory`` import path for the stage list.
            stages: Stage list to use directly (takes precedence over stages_spec).
            provisioning: Override the provisioning client built from config.
            rotation: Override the rotation service.

        Returns:
            ComponentBundle with a controller ready to start.
        """
        logger.info("Initializing components...")

        config = load_config(config_dir=config_dir, env=env)

        if stages is not None:
            stage_list = list(stages)
        elif stages_spec:
            stage_list = load_stages(stages_spec)
        else:
            raise ConfigError("No stages given: pass stages or a 'package.module:factory' spec")
        logger.info("Loaded %d stage(s): %s", len(stage_list), [s.name for s in stage_list])

        if provisioning is None:
            provisioning = _build_provisioning(config)
        if rotation is None:
            rotation = _build_rotation(config)

        controller = SessionController(
            config=config,
            provisioning=provisioning,
            rotation=rotation,
            stages=stage_list,
            resource_loader=functools.partial(load_resource_pool, config_dir),
        )

        logger.info("All components initialized")
        return ComponentBundle(
            config=config,
            provisioning=provisioning,
            rotation=rotation,
            controller=controller,
            stages=stage_list,
            config_dir=config_dir,
        )

    @staticmethod
    async def close(bundle: ComponentBundle) -> None:
        """Shut down network clients held by the bundle."""
        for component in (bundle.provisioning, bundle.rotation):
            aclose = getattr(component, "aclose", None)
            if aclose is not None:
                await aclose()
        logger.info("All components shut down")


def _build_provisioning(config: AppConfig) -> ProvisioningClient:
    backend = config.provisioning.backend.lower()
    if backend == "local":
        logger.info("Using in-process provisioning backend")
        return LocalProvisioningClient()
    if backend == "http":
        logger.info("Provisioning client configured (base_url=%s)", config.provisioning.base_url)
        return HttpProvisioningClient(config.provisioning)
    raise ConfigError(f"Unknown provisioning backend '{config.provisioning.backend}' (expected http or local)")


def _build_rotation(config: AppConfig) -> RotationService:
    backend = config.rotation.backend.lower()
    if backend == "http":
        return HttpRotationService(config.rotation)
    if backend == "noop":
        logger.info("Resource rotation disabled")
        return NoopRotationService()
    raise ConfigError(f"Unknown rotation backend '{config.rotation.backend}' (expected http or noop)")
