"""
Deployment state tracking.

The deployment status is derived, never stored: it is computed from the
persisted deployment record and the target configuration. IN_PROGRESS only
reflects submissions running in the current process.
"""

from contextlib import contextmanager
from enum import Enum
from typing import Iterator, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from diamond_deployer.core.exceptions import DeploymentInProgressError
from diamond_deployer.domain.models.deployment import DeploymentRecord, DeploymentStatus
from diamond_deployer.domain.models.facet import DiamondConfig
from diamond_deployer.domain.models.selector import DIAMOND_CUT_SELECTOR
from diamond_deployer.domain.registry import SelectorRegistry


class DriftKind(str, Enum):
    """Kind of difference between the record and the target configuration."""

    SELECTOR_ADDED = "selector_added"
    SELECTOR_MOVED = "selector_moved"
    SELECTOR_REMOVED = "selector_removed"
    FACET_VERSION = "facet_version"
    PROTOCOL_VERSION = "protocol_version"


class DriftItem(BaseModel):
    """One difference between the record and the target configuration."""

    kind: DriftKind = Field(..., description="Drift kind")
    detail: str = Field(..., description="Human-readable description")
    facet_name: Optional[str] = Field(None, description="Facet concerned")
    selector: Optional[str] = Field(None, description="Selector concerned")


def detect_drift(
    record: Optional[DeploymentRecord], config: DiamondConfig
) -> List[DriftItem]:
    """
    List the differences between a deployment record and a target configuration.

    Args:
        record: Persisted deployment record (None when never deployed)
        config: Target configuration

    Returns:
        Drift items; empty when the record matches the target selector-for-selector
    """
    if record is None or not record.is_deployed:
        return []

    drift: List[DriftItem] = []
    target = SelectorRegistry.from_config(config).mapping()
    recorded = record.selector_facet_names()

    for selector, facet_name in target.items():
        current = recorded.get(selector)
        if current is None:
            drift.append(
                DriftItem(
                    kind=DriftKind.SELECTOR_ADDED,
                    detail=f"{selector} to be added to {facet_name}",
                    facet_name=facet_name,
                    selector=selector,
                )
            )
        elif current != facet_name:
            drift.append(
                DriftItem(
                    kind=DriftKind.SELECTOR_MOVED,
                    detail=f"{selector} to move from {current} to {facet_name}",
                    facet_name=facet_name,
                    selector=selector,
                )
            )

    for selector, facet_name in recorded.items():
        if selector in target:
            continue
        # Orphaned cut facet selectors are never removed implicitly
        if selector == DIAMOND_CUT_SELECTOR or facet_name == config.cut_facet_name:
            continue
        drift.append(
            DriftItem(
                kind=DriftKind.SELECTOR_REMOVED,
                detail=f"{selector} to be removed from {facet_name}",
                facet_name=facet_name,
                selector=selector,
            )
        )

    routed = set(target.values())
    for facet in config.facets:
        deployed = record.facets.get(facet.name)
        if facet.name in routed and deployed is not None and facet.version > deployed.version:
            drift.append(
                DriftItem(
                    kind=DriftKind.FACET_VERSION,
                    detail=f"{facet.name} version {deployed.version} -> {facet.version}",
                    facet_name=facet.name,
                )
            )

    if config.protocol_version > record.protocol_version:
        drift.append(
            DriftItem(
                kind=DriftKind.PROTOCOL_VERSION,
                detail=f"protocol version {record.protocol_version} -> {config.protocol_version}",
            )
        )

    return drift


def compute_status(
    record: Optional[DeploymentRecord], config: DiamondConfig
) -> DeploymentStatus:
    """Derive the deployment status from the record and the target configuration."""
    if record is None or not record.is_deployed:
        return DeploymentStatus.NOT_DEPLOYED
    if detect_drift(record, config):
        return DeploymentStatus.UPGRADE_AVAILABLE
    return DeploymentStatus.COMPLETED


class DeploymentStateTracker:
    """Tracks in-flight submissions of the current process.

    Keyed by (diamond name, network name). Nothing here is persisted; after a
    restart every diamond is back to its derived status.
    """

    def __init__(self) -> None:
        self._active: Set[Tuple[str, str]] = set()

    def is_in_progress(self, diamond_name: str, network_name: str) -> bool:
        return (diamond_name, network_name) in self._active

    @contextmanager
    def in_progress(self, diamond_name: str, network_name: str) -> Iterator[None]:
        """Mark a diamond as being submitted for the duration of the block."""
        key = (diamond_name, network_name)
        if key in self._active:
            raise DeploymentInProgressError(diamond_name, network_name)
        self._active.add(key)
        try:
            yield
        finally:
            self._active.discard(key)

    def status(
        self,
        record: Optional[DeploymentRecord],
        config: DiamondConfig,
        network_name: str,
    ) -> DeploymentStatus:
        if self.is_in_progress(config.diamond_name, network_name):
            return DeploymentStatus.IN_PROGRESS
        return compute_status(record, config)
