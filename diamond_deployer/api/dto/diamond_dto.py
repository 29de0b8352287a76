from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from diamond_deployer.api.services.deployer_service import (
    DeploymentPlan,
    DeploymentResult,
    VerificationReport,
)
from diamond_deployer.domain.models.deployment import DeploymentStatus
from diamond_deployer.domain.state_tracker import DriftItem


# Status DTOs
class FacetStatusDTO(BaseModel):
    """Deployed facet summary."""

    key: str = Field(..., description="Record key (name, or name@address when superseded)")
    name: str = Field(..., description="Facet name")
    address: str = Field(..., description="Facet address")
    version: int = Field(..., description="Deployed facet version")
    selector_count: int = Field(..., description="Selectors routed to the facet")


class DiamondStatusDTO(BaseModel):
    """Deployment status of a diamond on a network."""

    diamond_name: str = Field(..., description="Diamond name")
    network_name: str = Field(..., description="Network name")
    status: DeploymentStatus = Field(..., description="Derived deployment status")
    chain_id: Optional[int] = Field(None, description="Chain ID of the record")
    diamond_address: Optional[str] = Field(None, description="Diamond proxy address")
    deployed_protocol_version: Optional[int] = Field(None, description="Recorded protocol version")
    target_protocol_version: int = Field(..., description="Configured protocol version")
    facets: List[FacetStatusDTO] = Field(default_factory=list, description="Deployed facets")
    drift: List[DriftItem] = Field(default_factory=list, description="Pending differences")
    updated_at: Optional[datetime] = Field(None, description="Last record update")


# Response DTOs
class DiamondStatusResponseDTO(BaseModel):
    """Response DTO for diamond status."""

    success: bool = Field(..., description="Operation success status")
    message: str = Field(..., description="Response message")
    data: Optional[DiamondStatusDTO] = Field(None, description="Status data")


class DeploymentPlanResponseDTO(BaseModel):
    """Response DTO for a dry run."""

    success: bool = Field(..., description="Operation success status")
    message: str = Field(..., description="Response message")
    data: Optional[DeploymentPlan] = Field(None, description="Deployment plan")


class DeploymentResultResponseDTO(BaseModel):
    """Response DTO for a deploy or upgrade run."""

    success: bool = Field(..., description="Operation success status")
    message: str = Field(..., description="Response message")
    data: Optional[DeploymentResult] = Field(None, description="Deployment result")


class VerificationResponseDTO(BaseModel):
    """Response DTO for deployment verification."""

    success: bool = Field(..., description="Operation success status")
    message: str = Field(..., description="Response message")
    data: Optional[VerificationReport] = Field(None, description="Verification report")
