"""
Facet reconciler.

Compares the target facet configuration against the facets currently routed
by a diamond and produces the cut operations needed to converge.
"""

from typing import Dict, List, Optional, Set, Tuple

from diamond_deployer.core.exceptions import ConfigurationError, StateInconsistencyError
from diamond_deployer.core.logging import get_logger
from diamond_deployer.domain.models.deployment import CutAction, CutOperation, simulate_cut
from diamond_deployer.domain.models.facet import ZERO_ADDRESS, DiamondConfig, normalize_address
from diamond_deployer.domain.models.selector import DIAMOND_CUT_SELECTOR, normalize_selector
from diamond_deployer.domain.registry import SelectorRegistry

logger = get_logger(__name__)

__all__ = ["FacetReconciler", "owners_from_facets", "simulate_cut"]


def owners_from_facets(facets: Dict[str, List[str]]) -> Dict[str, str]:
    """Turn loupe output (facet address -> selectors) into selector -> facet address."""
    owners: Dict[str, str] = {}
    for address, selectors in facets.items():
        checksum = normalize_address(address)
        for selector in selectors:
            owners[normalize_selector(selector)] = checksum
    return owners


class FacetReconciler:
    """Diff engine producing ordered diamond cut operations."""

    def __init__(
        self,
        config: DiamondConfig,
        strict_priority_ties: bool = False,
        allow_cut_facet_removal: bool = False,
    ):
        """
        Initialize the reconciler.

        Args:
            config: Target diamond configuration
            strict_priority_ties: Treat same-priority selector collisions as errors
            allow_cut_facet_removal: Allow orphaned cut facet selectors to be removed
        """
        self.config = config
        self.strict_priority_ties = strict_priority_ties
        self.allow_cut_facet_removal = allow_cut_facet_removal
        self.registry: Optional[SelectorRegistry] = None

    def build_registry(self) -> SelectorRegistry:
        """Build the registry for the target configuration, resolving collisions."""
        registry = SelectorRegistry.from_config(self.config)

        ties = registry.tie_collisions()
        if ties and self.strict_priority_ties:
            raise ConfigurationError(
                [
                    f"Selector {tie.selector} claimed by {tie.loser} and {tie.winner} "
                    f"at equal priority {tie.priority}"
                    for tie in ties
                ]
            )
        for tie in ties:
            logger.warning(
                "Equal-priority selector collision resolved by order",
                selector=tie.selector,
                winner=tie.winner,
                loser=tie.loser,
                priority=tie.priority,
            )

        self.registry = registry
        return registry

    def reconcile(
        self,
        facet_addresses: Dict[str, str],
        on_chain: Dict[str, List[str]],
        managed_addresses: Optional[Set[str]] = None,
        diamond_address: Optional[str] = None,
    ) -> List[CutOperation]:
        """
        Compute the cut operations converging the diamond to the target.

        Args:
            facet_addresses: Target facet name -> deployed facet address
            on_chain: Facet address -> selectors, as returned by the loupe
            managed_addresses: Addresses this system deployed (None: all on-chain facets)
            diamond_address: Diamond address, owner of immutable functions

        Returns:
            Cut operations ordered add, replace, remove; empty when converged
        """
        registry = self.build_registry()
        addresses = {name: normalize_address(a) for name, a in facet_addresses.items()}

        missing = sorted(
            {
                entry.facet_name
                for entry in registry.entries()
                if entry.facet_name not in addresses
            }
        )
        if missing:
            raise ConfigurationError(
                [f"No deployed address for facet {name}" for name in missing]
            )

        owners = owners_from_facets(on_chain)
        managed = (
            {normalize_address(a) for a in managed_addresses} | set(addresses.values())
            if managed_addresses is not None
            else None
        )
        diamond = normalize_address(diamond_address) if diamond_address else None

        conflicts: List[str] = []
        planned: List[Tuple[CutAction, str, Optional[str], str]] = []

        for entry in registry.entries():
            target = addresses[entry.facet_name]
            owner = owners.get(entry.selector)

            if owner is None:
                action = CutAction.ADD
            elif diamond is not None and owner == diamond:
                conflicts.append(
                    f"Selector {entry.selector} is immutable on the diamond and "
                    f"cannot be routed to {entry.facet_name}"
                )
                continue
            elif owner != target:
                action = CutAction.REPLACE
            else:
                action = CutAction.NONE

            registry.set_action(entry.selector, action)
            if action is not CutAction.NONE:
                planned.append((action, target, entry.facet_name, entry.selector))

        protected = self._protected_owners(owners, addresses)
        for selector, owner in owners.items():
            if selector in registry:
                continue
            if diamond is not None and owner == diamond:
                continue
            if not self.allow_cut_facet_removal and (
                selector == DIAMOND_CUT_SELECTOR or owner in protected
            ):
                logger.warning(
                    "Keeping orphaned cut facet selector",
                    selector=selector,
                    facet_address=owner,
                )
                continue
            if managed is not None and owner not in managed:
                conflicts.append(
                    f"Selector {selector} is routed to unmanaged facet {owner} "
                    f"with no target owner"
                )
                continue
            planned.append((CutAction.REMOVE, ZERO_ADDRESS, None, selector))

        if conflicts:
            raise StateInconsistencyError(
                conflicts, details={"diamond_name": self.config.diamond_name}
            )

        return self._group(planned)

    def is_converged(
        self, facet_addresses: Dict[str, str], on_chain: Dict[str, List[str]]
    ) -> bool:
        return not self.reconcile(facet_addresses, on_chain)

    def _protected_owners(
        self, owners: Dict[str, str], addresses: Dict[str, str]
    ) -> Set[str]:
        protected = set()
        if DIAMOND_CUT_SELECTOR in owners:
            protected.add(owners[DIAMOND_CUT_SELECTOR])
        if self.config.cut_facet_name in addresses:
            protected.add(addresses[self.config.cut_facet_name])
        return protected

    @staticmethod
    def _group(
        planned: List[Tuple[CutAction, str, Optional[str], str]]
    ) -> List[CutOperation]:
        groups: Dict[Tuple[CutAction, str], Tuple[Optional[str], List[str]]] = {}
        for action, address, name, selector in planned:
            _, selectors = groups.setdefault((action, address), (name, []))
            selectors.append(selector)

        operations = [
            CutOperation(
                action=action,
                facet_address=address,
                facet_name=name,
                selectors=selectors,
            )
            for (action, address), (name, selectors) in groups.items()
        ]
        operations.sort(key=lambda operation: operation.action.order)
        return operations
