"""
Deployer dependencies for FastAPI.
Builds one DiamondDeployer per request around process-wide shared state.
"""

from typing import Any, Callable, Optional

from fastapi import Depends

from diamond_deployer.api.services.deployer_service import DiamondDeployer
from diamond_deployer.core.config import settings
from diamond_deployer.core.exceptions import DiamondDeployerException, create_http_exception
from diamond_deployer.core.logging import get_logger
from diamond_deployer.domain.models.facet import DiamondConfig
from diamond_deployer.domain.repositories.deployment_repository import (
    DeploymentRepository,
    get_deployment_repository,
)
from diamond_deployer.domain.state_tracker import DeploymentStateTracker
from diamond_deployer.infrastructure.artifacts.config_loader import load_diamond_config
from diamond_deployer.infrastructure.blockchain.diamond_client import DiamondClient

logger = get_logger(__name__)

# In-flight deployments of this process, keyed by (diamond, network)
state_tracker = DeploymentStateTracker()

_repository: Optional[DeploymentRepository] = None


def get_state_tracker() -> DeploymentStateTracker:
    return state_tracker


def get_repository() -> DeploymentRepository:
    global _repository
    if _repository is None:
        _repository = get_deployment_repository()
    return _repository


def get_config_loader() -> Callable[[str], DiamondConfig]:
    return load_diamond_config


def get_client_factory() -> Callable[[str], Any]:
    return DiamondClient.from_settings


def _build_deployer(
    diamond: str,
    network: str,
    config_loader: Callable[[str], DiamondConfig],
    client: Any,
    repository: DeploymentRepository,
    tracker: DeploymentStateTracker,
) -> DiamondDeployer:
    return DiamondDeployer(
        config=config_loader(diamond),
        client=client,
        repository=repository,
        tracker=tracker,
        network_name=network,
        batch_cuts=settings.BATCH_CUTS,
        strict_priority_ties=settings.STRICT_PRIORITY_TIES,
        min_balance_wei=settings.MIN_BALANCE_WEI,
    )


async def get_deployer(
    diamond: str,
    network: str,
    config_loader: Callable[[str], DiamondConfig] = Depends(get_config_loader),
    client_factory: Callable[[str], Any] = Depends(get_client_factory),
    repository: DeploymentRepository = Depends(get_repository),
    tracker: DeploymentStateTracker = Depends(get_state_tracker),
) -> DiamondDeployer:
    """
    Build a deployer able to talk to the chain.

    Args:
        diamond: Diamond name (path parameter)
        network: Network name (path parameter)

    Returns:
        DiamondDeployer

    Raises:
        HTTPException: unknown diamond, invalid configuration or missing RPC settings
    """
    try:
        return _build_deployer(
            diamond, network, config_loader, client_factory(network), repository, tracker
        )
    except DiamondDeployerException as e:
        logger.warning(f"Cannot build deployer for {diamond} on {network}: {e.message}")
        raise create_http_exception(e)


async def get_readonly_deployer(
    diamond: str,
    network: str,
    config_loader: Callable[[str], DiamondConfig] = Depends(get_config_loader),
    repository: DeploymentRepository = Depends(get_repository),
    tracker: DeploymentStateTracker = Depends(get_state_tracker),
) -> DiamondDeployer:
    """Build a deployer for record-only views (no RPC endpoint or key required)."""
    try:
        return _build_deployer(diamond, network, config_loader, None, repository, tracker)
    except DiamondDeployerException as e:
        logger.warning(f"Cannot build deployer for {diamond} on {network}: {e.message}")
        raise create_http_exception(e)
