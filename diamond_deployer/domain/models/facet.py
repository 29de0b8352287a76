"""
Facet models: the target configuration and the persisted facet records.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from web3 import Web3

from diamond_deployer.domain.models.selector import (
    Selector,
    selectors_from_abi,
    unique_selectors,
)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_address(value: str) -> str:
    """Return the EIP-55 checksum form of an address."""
    return Web3.to_checksum_address(value)


Address = Annotated[str, AfterValidator(normalize_address)]


# Target configuration


class FacetConfig(BaseModel):
    """A facet as declared in the target configuration."""

    name: str = Field(..., description="Facet contract name, unique per diamond")
    priority: int = Field(0, description="Higher priority wins selector collisions")
    version: int = Field(0, description="Facet version; a bump triggers redeployment")
    selectors: List[Selector] = Field(
        default_factory=list, description="Selectors routed to this facet"
    )
    exclude_selectors: List[Selector] = Field(
        default_factory=list, description="ABI-derived selectors this facet must not route"
    )
    abi: Optional[List[Dict[str, Any]]] = Field(None, description="Compiled contract ABI")
    bytecode: Optional[str] = Field(None, description="Compiled creation bytecode")
    constructor_args: List[Any] = Field(default_factory=list, description="Constructor arguments")

    @model_validator(mode="after")
    def derive_selectors(self) -> "FacetConfig":
        """Fill selectors from the ABI when none are listed and drop excluded ones."""
        selectors = self.selectors
        if not selectors and self.abi:
            selectors = selectors_from_abi(self.abi)
        excluded = set(self.exclude_selectors)
        self.selectors = [s for s in unique_selectors(selectors) if s not in excluded]
        return self


class DiamondConfig(BaseModel):
    """Target configuration of one diamond."""

    diamond_name: str = Field(..., description="Diamond name")
    protocol_version: int = Field(0, description="Application-level configuration version")
    facets: List[FacetConfig] = Field(
        default_factory=list, description="Facets in caller-controlled processing order"
    )
    cut_facet_name: str = Field("DiamondCutFacet", description="Facet providing diamondCut")
    diamond_abi: Optional[List[Dict[str, Any]]] = Field(None, description="Diamond proxy ABI")
    diamond_bytecode: Optional[str] = Field(None, description="Diamond proxy bytecode")
    diamond_constructor_args: Optional[List[Any]] = Field(
        None, description="Proxy constructor args; defaults to (owner, cut facet address)"
    )
    init_address: Optional[str] = Field(None, description="Initializer called by diamondCut")
    init_calldata: str = Field("0x", description="Calldata for the initializer")

    def get_facet(self, name: str) -> Optional[FacetConfig]:
        for facet in self.facets:
            if facet.name == name:
                return facet
        return None

    @property
    def facet_names(self) -> List[str]:
        return [facet.name for facet in self.facets]

    @property
    def cut_facet(self) -> Optional[FacetConfig]:
        return self.get_facet(self.cut_facet_name)


# Persisted records


class FacetRecord(BaseModel):
    """A deployed facet as persisted in the deployment record."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Facet name")
    address: Address = Field(..., description="Facet contract address")
    selectors: List[Selector] = Field(
        default_factory=list, alias="funcSelectors", description="Selectors routed to this facet"
    )
    priority: int = Field(0, description="Priority at deployment time")
    version: int = Field(0, description="Facet version at deployment time")
    tx_hash: Optional[str] = Field(None, description="Deployment transaction hash")
    verified: bool = Field(False, description="Block-explorer verification flag")
    deployed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Deployment timestamp",
    )
