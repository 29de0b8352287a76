"""
Custom exceptions for the Diamond Deployer.
Provides structured error handling for diamond deployment and reconciliation.
"""

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status


class DiamondDeployerException(Exception):
    """Base exception for the Diamond Deployer."""

    def __init__(
        self,
        message: str,
        error_code: str = "DIAMOND_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


# Configuration
class ConfigurationError(DiamondDeployerException):
    """Raised when the target configuration is missing, ambiguous or invalid.

    Carries every detected problem, not just the first one.
    """

    def __init__(self, problems: List[str], details: Optional[Dict[str, Any]] = None):
        self.problems = list(problems)
        message = "Configuration invalid: " + "; ".join(self.problems)
        details = dict(details or {})
        details.setdefault("problems", self.problems)
        super().__init__(message, "CONFIGURATION_ERROR", details)


# Transactions & RPC
class TransactionError(DiamondDeployerException):
    """Raised when an on-chain read or write fails."""

    def __init__(
        self,
        message: str = "Transaction failed",
        error_code: str = "TRANSACTION_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details)


class RetriableTransactionError(TransactionError):
    """Raised when a transient failure persists after all retries."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "TRANSACTION_RETRIABLE", details)


class NetworkError(RetriableTransactionError):
    """Raised when an RPC read keeps failing after all retries."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.error_code = "NETWORK_ERROR"


class FatalTransactionError(TransactionError):
    """Raised on reverts, insufficient funds or malformed calls. Never retried."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "TRANSACTION_FATAL", details)


# State
class StateInconsistencyError(DiamondDeployerException):
    """Raised when on-chain state diverges from the record in a way that needs an operator."""

    def __init__(self, conflicts: List[str], details: Optional[Dict[str, Any]] = None):
        self.conflicts = list(conflicts)
        message = "On-chain state inconsistent: " + "; ".join(self.conflicts)
        details = dict(details or {})
        details.setdefault("conflicts", self.conflicts)
        super().__init__(message, "STATE_INCONSISTENCY", details)


class DeploymentInProgressError(DiamondDeployerException):
    """Raised when a deployment is already being submitted for the same diamond and network."""

    def __init__(self, diamond_name: str, network_name: str, details: Optional[Dict[str, Any]] = None):
        message = f"Deployment already in progress: {diamond_name} on {network_name}"
        super().__init__(message, "DEPLOYMENT_IN_PROGRESS", details)


class DiamondNotFoundError(DiamondDeployerException):
    """Raised when no target configuration exists for a diamond."""

    def __init__(self, diamond_name: str, details: Optional[Dict[str, Any]] = None):
        message = f"Diamond configuration not found: {diamond_name}"
        super().__init__(message, "DIAMOND_NOT_FOUND", details)


def create_http_exception(
    exc: DiamondDeployerException,
    status_code: Optional[int] = None
) -> HTTPException:
    """
    Convert a DiamondDeployerException to an HTTPException.

    Args:
        exc: DiamondDeployerException instance
        status_code: HTTP status code (derived from the error code when omitted)

    Returns:
        HTTPException: FastAPI HTTP exception
    """
    return HTTPException(
        status_code=status_code or get_exception_status_code(exc),
        detail={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


def get_exception_status_code(exc: DiamondDeployerException) -> int:
    """
    Get the appropriate HTTP status code for a DiamondDeployerException.

    Args:
        exc: DiamondDeployerException instance

    Returns:
        int: HTTP status code
    """
    status_mapping = {
        "CONFIGURATION_ERROR": status.HTTP_422_UNPROCESSABLE_ENTITY,
        "DIAMOND_NOT_FOUND": status.HTTP_404_NOT_FOUND,
        "DEPLOYMENT_IN_PROGRESS": status.HTTP_409_CONFLICT,
        "STATE_INCONSISTENCY": status.HTTP_409_CONFLICT,
        "TRANSACTION_ERROR": status.HTTP_502_BAD_GATEWAY,
        "TRANSACTION_RETRIABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
        "NETWORK_ERROR": status.HTTP_503_SERVICE_UNAVAILABLE,
        "TRANSACTION_FATAL": status.HTTP_502_BAD_GATEWAY,
    }

    return status_mapping.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
