"""
Selector registry.

Maps each function selector to the facet that owns it in the target
configuration. Rebuilt from scratch on every reconciliation pass.
"""

from typing import Dict, Iterator, List, Optional, Set

from pydantic import BaseModel, Field

from diamond_deployer.core.logging import get_logger
from diamond_deployer.domain.models.deployment import CutAction
from diamond_deployer.domain.models.facet import DiamondConfig
from diamond_deployer.domain.models.selector import Selector, normalize_selector

logger = get_logger(__name__)


class RegistryEntry(BaseModel):
    """Resolved owner of one selector."""

    selector: Selector = Field(..., description="Function selector")
    facet_name: str = Field(..., description="Owning facet")
    priority: int = Field(..., description="Priority of the owning facet")
    action: CutAction = Field(CutAction.NONE, description="Pending cut action")


class SelectorCollision(BaseModel):
    """A claim on a selector that lost to another facet."""

    selector: Selector
    winner: str
    loser: str
    priority: int
    tie: bool = Field(False, description="Both claims had the same priority")


class SelectorRegistry:
    """In-memory selector -> facet registry with priority resolution.

    Higher priority wins. On a priority tie the most recently registered
    facet wins; callers control the order in which facets are registered.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, RegistryEntry] = {}
        self.collisions: List[SelectorCollision] = []

    @classmethod
    def from_config(cls, config: DiamondConfig) -> "SelectorRegistry":
        """Build a fresh registry from a target configuration, in facet order."""
        registry = cls()
        for facet in config.facets:
            for selector in facet.selectors:
                registry.register(selector, facet.name, facet.priority)
        return registry

    def register(self, selector: str, facet_name: str, priority: int) -> None:
        selector = normalize_selector(selector)
        existing = self._entries.get(selector)

        if existing is not None and existing.facet_name != facet_name:
            if existing.priority > priority:
                self.collisions.append(
                    SelectorCollision(
                        selector=selector,
                        winner=existing.facet_name,
                        loser=facet_name,
                        priority=priority,
                    )
                )
                logger.debug(
                    "Selector claim dropped",
                    selector=selector,
                    facet=facet_name,
                    owner=existing.facet_name,
                )
                return
            self.collisions.append(
                SelectorCollision(
                    selector=selector,
                    winner=facet_name,
                    loser=existing.facet_name,
                    priority=existing.priority,
                    tie=existing.priority == priority,
                )
            )

        self._entries[selector] = RegistryEntry(
            selector=selector, facet_name=facet_name, priority=priority
        )

    def resolve(self, selector: str) -> Optional[str]:
        entry = self._entries.get(normalize_selector(selector))
        return entry.facet_name if entry else None

    def entry(self, selector: str) -> Optional[RegistryEntry]:
        return self._entries.get(normalize_selector(selector))

    def entries_for_facet(self, facet_name: str) -> Set[str]:
        return {
            selector
            for selector, entry in self._entries.items()
            if entry.facet_name == facet_name
        }

    def set_action(self, selector: str, action: CutAction) -> None:
        self._entries[normalize_selector(selector)].action = action

    def mapping(self) -> Dict[str, str]:
        """Selector -> facet name for every registered selector."""
        return {selector: entry.facet_name for selector, entry in self._entries.items()}

    def tie_collisions(self) -> List[SelectorCollision]:
        return [collision for collision in self.collisions if collision.tie]

    def entries(self) -> List[RegistryEntry]:
        return list(self._entries.values())

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, selector: object) -> bool:
        try:
            return normalize_selector(selector) in self._entries
        except ValueError:
            return False
