"""
Diamond Router for the Diamond Deployer.
Handles status, dry-run, deployment and verification endpoints.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from diamond_deployer.api.deps.deployer_deps import get_deployer, get_readonly_deployer
from diamond_deployer.api.dto.diamond_dto import (
    DeploymentPlanResponseDTO,
    DeploymentResultResponseDTO,
    DiamondStatusDTO,
    DiamondStatusResponseDTO,
    FacetStatusDTO,
    VerificationResponseDTO,
)
from diamond_deployer.api.services.deployer_service import DiamondDeployer
from diamond_deployer.core.exceptions import DiamondDeployerException, create_http_exception
from diamond_deployer.core.logging import get_logger
from diamond_deployer.domain.state_tracker import detect_drift

logger = get_logger(__name__)

# Create router
router = APIRouter()


@router.get("/{diamond}/{network}/status", response_model=DiamondStatusResponseDTO)
async def get_diamond_status(
    deployer: DiamondDeployer = Depends(get_readonly_deployer),
) -> DiamondStatusResponseDTO:
    """
    Get the deployment status of a diamond on a network.

    Reads the persisted record only; no RPC call is made.

    Returns:
        DiamondStatusResponseDTO with status, deployed facets and drift
    """
    try:
        record = await deployer.load_record()
        status = deployer.tracker.status(record, deployer.config, deployer.network_name)

        data = DiamondStatusDTO(
            diamond_name=deployer.diamond_name,
            network_name=deployer.network_name,
            status=status,
            target_protocol_version=deployer.config.protocol_version,
            drift=detect_drift(record, deployer.config),
        )
        if record is not None:
            data.chain_id = record.chain_id
            data.diamond_address = record.diamond_address
            data.deployed_protocol_version = record.protocol_version
            data.updated_at = record.updated_at
            data.facets = [
                FacetStatusDTO(
                    key=key,
                    name=facet.name,
                    address=facet.address,
                    version=facet.version,
                    selector_count=len(facet.selectors),
                )
                for key, facet in record.facets.items()
            ]

        return DiamondStatusResponseDTO(
            success=True, message=f"Diamond is {status.value}", data=data
        )

    except DiamondDeployerException as e:
        raise create_http_exception(e)
    except Exception as e:
        logger.error(f"Error getting diamond status: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@router.get("/{diamond}/{network}/plan", response_model=DeploymentPlanResponseDTO)
async def plan_deployment(
    deployer: DiamondDeployer = Depends(get_readonly_deployer),
) -> DeploymentPlanResponseDTO:
    """
    Dry run: report configuration problems, drift and the pending cut.

    Returns:
        DeploymentPlanResponseDTO
    """
    try:
        plan = await deployer.plan()
        if plan.problems:
            message = f"Configuration has {len(plan.problems)} problem(s)"
        elif plan.operations or plan.facets_to_deploy:
            message = "Deployment pending"
        else:
            message = "Nothing to do"
        return DeploymentPlanResponseDTO(
            success=not plan.problems, message=message, data=plan
        )

    except DiamondDeployerException as e:
        raise create_http_exception(e)
    except Exception as e:
        logger.error(f"Error planning deployment: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@router.post("/{diamond}/{network}/deploy", response_model=DeploymentResultResponseDTO)
async def deploy_diamond(
    force: bool = Query(False, description="Reconcile against the loupe even without drift"),
    deployer: DiamondDeployer = Depends(get_deployer),
) -> DeploymentResultResponseDTO:
    """
    Deploy a diamond, or upgrade it to the target configuration.

    Args:
        force: Reconcile even when the record shows no drift

    Returns:
        DeploymentResultResponseDTO with the operations applied
    """
    logger.info(
        f"Deploy requested: {deployer.diamond_name} on {deployer.network_name}",
        force=force,
    )

    try:
        result = await deployer.deploy(force=force)
        if not result.tx_hashes:
            message = "Diamond already up to date"
        else:
            message = f"Applied {len(result.operations)} cut operation(s) in {len(result.tx_hashes)} transaction(s)"
        return DeploymentResultResponseDTO(success=True, message=message, data=result)

    except DiamondDeployerException as e:
        raise create_http_exception(e)
    except Exception as e:
        logger.error(f"Error deploying diamond: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@router.get("/{diamond}/{network}/verify", response_model=VerificationResponseDTO)
async def verify_deployment(
    deployer: DiamondDeployer = Depends(get_deployer),
) -> VerificationResponseDTO:
    """
    Compare the deployment record with live chain state.

    Returns:
        VerificationResponseDTO; success is False when mismatches were found
    """
    try:
        report = await deployer.verify_deployment()
        message = (
            "Deployment verified"
            if report.ok
            else f"Verification found {len(report.errors)} error(s)"
        )
        return VerificationResponseDTO(success=report.ok, message=message, data=report)

    except DiamondDeployerException as e:
        raise create_http_exception(e)
    except Exception as e:
        logger.error(f"Error verifying deployment: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")
