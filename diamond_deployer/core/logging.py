"""
Logging configuration for the Diamond Deployer.
Provides structured logging for diamond deployment and upgrade operations.
"""

import logging
import sys
from typing import Any, Dict, List, Optional

import structlog
from structlog.stdlib import LoggerFactory

from diamond_deployer.core.config import settings


# Libraries whose INFO output drowns deployment events
_NOISY_LOGGERS = {
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.INFO,
    "web3": logging.WARNING,
    "urllib3": logging.WARNING,
    "motor": logging.WARNING,
    "pymongo": logging.WARNING,
}


def setup_logging() -> None:
    """
    Configure structlog on top of the standard library logger.

    Console output in development; JSON lines in production or when
    LOG_FORMAT is "json".
    """
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _renderer(),
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name, logger_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(logger_level)


def _renderer():
    if settings.ENVIRONMENT == "production" or settings.LOG_FORMAT == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)


# Specialized logging functions for diamond operations


def log_deployment_event(
    event: str,
    diamond_name: str,
    network_name: str,
    diamond_address: Optional[str] = None,
    status: Optional[str] = None,
    **kwargs
) -> None:
    """
    Log diamond lifecycle events.

    Args:
        event: Event type (deploy_started, diamond_deployed, upgrade_completed, ...)
        diamond_name: Diamond name
        network_name: Network name
        diamond_address: Diamond proxy address
        status: Deployment status at the time of the event
        **kwargs: Additional context
    """
    logger = get_logger("diamond.deployment")
    logger.info(
        "Deployment event",
        event=event,
        diamond_name=diamond_name,
        network_name=network_name,
        diamond_address=diamond_address,
        status=status,
        **kwargs
    )


def log_cut_operation(
    action: str,
    facet_address: str,
    selectors: List[str],
    facet_name: Optional[str] = None,
    **kwargs
) -> None:
    """
    Log a single diamond cut operation.

    Args:
        action: Cut action (add, replace, remove)
        facet_address: Facet address (zero address for removals)
        selectors: Selectors affected by the operation
        facet_name: Facet name, when known
        **kwargs: Additional context
    """
    logger = get_logger("diamond.cut")
    logger.info(
        "Cut operation",
        action=action,
        facet_name=facet_name,
        facet_address=facet_address,
        selector_count=len(selectors),
        selectors=selectors,
        **kwargs
    )


def log_blockchain_transaction(
    tx_hash: str,
    chain_id: Optional[int] = None,
    contract_address: Optional[str] = None,
    method: Optional[str] = None,
    **kwargs
) -> None:
    """
    Log blockchain transaction details.

    Args:
        tx_hash: Transaction hash
        chain_id: Blockchain chain ID
        contract_address: Smart contract address
        method: Contract method called
        **kwargs: Additional transaction context
    """
    logger = get_logger("blockchain.transaction")
    logger.info(
        "Blockchain transaction",
        tx_hash=tx_hash,
        chain_id=chain_id,
        contract_address=contract_address,
        method=method,
        **kwargs
    )


def log_rpc_retry(
    operation: str,
    attempt: int,
    max_retries: int,
    error: Exception,
    delay_seconds: float,
) -> None:
    """Log a retriable RPC failure before the next attempt."""
    logger = get_logger("blockchain.rpc")
    logger.warning(
        "Retriable RPC failure",
        operation=operation,
        attempt=attempt,
        max_retries=max_retries,
        error=str(error),
        error_type=type(error).__name__,
        delay_seconds=delay_seconds,
    )


def log_error(error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
    """
    Log an error with context.

    Args:
        error: Exception instance
        context: Additional context information
    """
    logger = get_logger("diamond.error")
    logger.error(
        "Operation failed",
        error=getattr(error, "message", str(error)),
        error_type=type(error).__name__,
        error_code=getattr(error, "error_code", None),
        details=getattr(error, "details", None),
        context=context or {},
        exc_info=True,
    )
