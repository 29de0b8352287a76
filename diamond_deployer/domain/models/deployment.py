"""
Deployment models: cut operations, deployment status and the persisted record.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field

from diamond_deployer.domain.models.facet import Address, FacetRecord, normalize_address
from diamond_deployer.domain.models.selector import Selector, selector_to_bytes


class CutAction(str, Enum):
    """Action applied to a selector by a diamond cut."""

    ADD = "add"
    REPLACE = "replace"
    REMOVE = "remove"
    NONE = "none"

    @property
    def code(self) -> int:
        """EIP-2535 FacetCutAction value."""
        codes = {
            CutAction.ADD: 0,
            CutAction.REPLACE: 1,
            CutAction.REMOVE: 2,
        }
        if self not in codes:
            raise ValueError(f"{self.value} is not a cut action")
        return codes[self]

    @property
    def order(self) -> int:
        """Submission order: add, then replace, then remove."""
        return self.code


class DeploymentStatus(str, Enum):
    """Derived lifecycle state of a diamond on one network."""

    NOT_DEPLOYED = "not_deployed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    UPGRADE_AVAILABLE = "upgrade_available"


class CutOperation(BaseModel):
    """One FacetCut entry: an action applied to a list of selectors of one facet."""

    action: CutAction = Field(..., description="Add, replace or remove")
    facet_address: Address = Field(..., description="Facet address (zero address for removals)")
    facet_name: Optional[str] = Field(None, description="Facet name, when known")
    selectors: List[Selector] = Field(..., description="Selectors in submission order")

    def to_facet_cut(self) -> Tuple[str, int, List[bytes]]:
        """Encode as the (facetAddress, action, functionSelectors) tuple of IDiamondCut."""
        return (
            self.facet_address,
            self.action.code,
            [selector_to_bytes(selector) for selector in self.selectors],
        )


def simulate_cut(
    owners: Dict[str, str], operations: Iterable[CutOperation]
) -> Dict[str, str]:
    """
    Apply cut operations to a selector -> facet address mapping.

    Mirrors the on-chain effect of diamondCut without its checks.

    Args:
        owners: Current selector -> facet address mapping
        operations: Operations to apply, in submission order

    Returns:
        New selector -> facet address mapping
    """
    result = dict(owners)
    for operation in operations:
        for selector in operation.selectors:
            if operation.action is CutAction.REMOVE:
                result.pop(selector, None)
            else:
                result[selector] = operation.facet_address
    return result


class DeploymentRecord(BaseModel):
    """Persisted source of truth for one diamond on one network."""

    model_config = ConfigDict(populate_by_name=True)

    diamond_name: str = Field(..., alias="DiamondName", description="Diamond name")
    network_name: str = Field(..., alias="networkName", description="Network name")
    chain_id: int = Field(0, alias="chainId", description="Chain ID")
    diamond_address: Optional[Address] = Field(
        None, alias="DiamondAddress", description="Diamond proxy address"
    )
    deployer_address: Optional[Address] = Field(
        None, alias="DeployerAddress", description="Deployer account address"
    )
    protocol_version: int = Field(0, alias="protocolVersion", description="Protocol version")
    facets: Dict[str, FacetRecord] = Field(
        default_factory=dict, alias="DeployedFacets", description="Facets keyed by name"
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Last update timestamp",
    )

    @property
    def is_deployed(self) -> bool:
        return bool(self.diamond_address)

    def selector_owners(self) -> Dict[str, str]:
        """Selector -> facet address mapping recorded for this diamond."""
        owners: Dict[str, str] = {}
        for facet in self.facets.values():
            for selector in facet.selectors:
                owners[selector] = facet.address
        return owners

    def selector_facet_names(self) -> Dict[str, str]:
        """Selector -> record key; superseded facets keep their "<name>@<address>" key."""
        names: Dict[str, str] = {}
        for key, facet in self.facets.items():
            for selector in facet.selectors:
                names[selector] = key
        return names

    def facets_by_address(self) -> Dict[str, List[str]]:
        """Loupe-shaped view (facet address -> selectors) of the record."""
        return {
            facet.address: list(facet.selectors)
            for facet in self.facets.values()
            if facet.selectors
        }

    def managed_addresses(self) -> Set[str]:
        return {facet.address for facet in self.facets.values()}

    def apply_cut(
        self,
        operations: List[CutOperation],
        deployed: Optional[Dict[str, FacetRecord]] = None,
    ) -> None:
        """
        Update the facet records after a confirmed cut.

        Args:
            operations: Operations confirmed on-chain
            deployed: Records of facets deployed in this run, keyed by address
        """
        deployed = {normalize_address(a): r for a, r in (deployed or {}).items()}
        owners = simulate_cut(self.selector_owners(), operations)

        templates: Dict[str, FacetRecord] = {
            facet.address: facet for facet in self.facets.values()
        }
        templates.update(deployed)

        grouped: Dict[str, List[str]] = {}
        for selector, address in owners.items():
            grouped.setdefault(address, []).append(selector)

        # A name keeps pointing at its newest address; older addresses that
        # still route selectors are kept under "<name>@<address>".
        plain_owner: Dict[str, str] = {
            facet.name: facet.address
            for key, facet in self.facets.items()
            if key == facet.name
        }
        for address, record in deployed.items():
            plain_owner[record.name] = address

        facets: Dict[str, FacetRecord] = {}
        for address, selectors in grouped.items():
            template = templates.get(address)
            if template is None:
                template = FacetRecord(name=address, address=address)
            key = template.name
            if plain_owner.get(template.name, address) != address:
                key = f"{template.name}@{address}"
            facets[key] = template.model_copy(update={"selectors": selectors})

        self.facets = facets
        self.touch()

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)
