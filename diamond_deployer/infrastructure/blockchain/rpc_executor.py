"""
RPC executor.

Wraps every on-chain read and write with bounded retries, a fixed (or
caller-chosen) delay between attempts and gas-limit headroom for writes.
Only transient failures are retried; fatal ones propagate on first sight.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, Type

import requests
from pydantic import BaseModel, Field
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from diamond_deployer.core.exceptions import (
    DiamondDeployerException,
    FatalTransactionError,
    NetworkError,
    RetriableTransactionError,
)
from diamond_deployer.core.logging import get_logger, log_blockchain_transaction, log_rpc_retry

logger = get_logger(__name__)

# Substrings of node error messages, lowercase
RETRIABLE_ERROR_MARKERS = (
    "nonce too low",
    "nonce too high",
    "replacement transaction underpriced",
    "transaction underpriced",
    "max fee per gas less than block base fee",
    "already known",
    "timeout",
    "timed out",
    "rate limit",
    "too many requests",
    "header not found",
    "connection reset",
    "connection refused",
    "temporarily unavailable",
    "service unavailable",
    "bad gateway",
)

FATAL_ERROR_MARKERS = (
    "insufficient funds",
    "execution reverted",
    "reverted",
    "invalid opcode",
    "invalid argument",
    "invalid sender",
    "malformed",
    "gas required exceeds allowance",
    "intrinsic gas too low",
)

# Node refusals of a signed transaction that a fresh nonce or gas price can fix
REJECTION_MARKERS = (
    "nonce too low",
    "nonce too high",
    "underpriced",
    "max fee per gas less than block base fee",
)

# Transport failures where the request may simply be repeated
TRANSIENT_ERROR_TYPES = (
    TimeExhausted,
    TransactionNotFound,
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    requests.ConnectionError,
    requests.Timeout,
)


def classify_error(error: BaseException) -> bool:
    """
    Decide whether an RPC failure is worth retrying.

    Args:
        error: Exception raised by web3 or the transport

    Returns:
        True for transient failures, False for fatal ones (unknown errors are fatal)
    """
    if isinstance(error, ContractLogicError):
        return False
    if isinstance(error, TRANSIENT_ERROR_TYPES):
        return True

    message = str(error).lower()
    if any(marker in message for marker in FATAL_ERROR_MARKERS):
        return False
    return any(marker in message for marker in RETRIABLE_ERROR_MARKERS)


def to_hex(value: Any) -> str:
    """Render a transaction hash as 0x-prefixed hex."""
    if isinstance(value, str):
        return value if value.startswith("0x") else "0x" + value
    rendered = bytes(value).hex()
    return rendered if rendered.startswith("0x") else "0x" + rendered


class RetryPolicy(BaseModel):
    """Retry and gas headroom settings for RPC calls."""

    max_retries: int = Field(3, ge=1, description="Attempts before giving up")
    retry_delay_ms: int = Field(2000, ge=0, description="Base delay between attempts")
    backoff: Literal["fixed", "linear", "exponential"] = Field(
        "fixed", description="How the delay grows between attempts"
    )
    gas_limit_multiplier: float = Field(1.2, ge=1.0, description="Headroom over gas estimates")
    receipt_timeout_seconds: int = Field(120, ge=1, description="Wait for a receipt per attempt")

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds after the given (1-based) failed attempt."""
        base = self.retry_delay_ms / 1000
        if self.backoff == "linear":
            return base * attempt
        if self.backoff == "exponential":
            return base * 2 ** (attempt - 1)
        return base


class _PendingTransaction:
    """Signed transaction of one `transact` call, shared across its attempts."""

    def __init__(self) -> None:
        self.signed: Any = None
        self.tx_hash: Any = None
        self.maybe_sent = False
        self.broadcast = False


class RpcExecutor:
    """Executes RPC reads and transactions under a retry policy."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def call(self, fn: Callable[[], Any], operation: str) -> Any:
        """
        Run a read-only RPC call with retries.

        Args:
            fn: Zero-argument callable performing the call (may return an awaitable)
            operation: Operation name for logs and errors

        Returns:
            The call result

        Raises:
            NetworkError: the call kept failing transiently
            FatalTransactionError: the call failed in a way retrying cannot fix
        """
        return await self._run(fn, operation, NetworkError)

    async def transact(
        self,
        w3: Any,
        account: Any,
        contract_fn: Any,
        operation: str,
        value: int = 0,
    ) -> Dict[str, Any]:
        """
        Build, sign and send a transaction, then wait for its receipt.

        Args:
            w3: Web3 instance
            account: Local signing account
            contract_fn: Contract function or constructor call (estimate_gas/build_transaction)
            operation: Operation name for logs and errors
            value: Wei sent along with the call

        Returns:
            Transaction receipt of a successful transaction

        Raises:
            RetriableTransactionError: transient failures outlasted the retries
            FatalTransactionError: rejected, malformed or reverted transaction
        """
        pending = _PendingTransaction()

        def attempt() -> Dict[str, Any]:
            # Signed once; retries re-broadcast the same bytes under the same hash
            if pending.signed is None:
                self._sign(w3, account, contract_fn, operation, value, pending)
            if not pending.broadcast:
                self._broadcast(w3, operation, pending)
            return w3.eth.wait_for_transaction_receipt(
                pending.tx_hash, timeout=self.policy.receipt_timeout_seconds
            )

        receipt = await self._run(attempt, operation, RetriableTransactionError)
        tx_hash = to_hex(pending.tx_hash)

        if receipt["status"] != 1:
            raise FatalTransactionError(
                f"{operation} reverted: {tx_hash}",
                details={
                    "operation": operation,
                    "tx_hash": tx_hash,
                    "block_number": receipt.get("blockNumber"),
                },
            )

        logger.info(
            f"Transaction confirmed: {operation}",
            tx_hash=tx_hash,
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )
        return dict(receipt)

    def _sign(
        self,
        w3: Any,
        account: Any,
        contract_fn: Any,
        operation: str,
        value: int,
        pending: "_PendingTransaction",
    ) -> None:
        sender = account.address
        nonce = w3.eth.get_transaction_count(sender, "pending")

        estimate = contract_fn.estimate_gas({"from": sender, "value": value})
        gas_limit = int(estimate * self.policy.gas_limit_multiplier)

        transaction = contract_fn.build_transaction(
            {
                "from": sender,
                "nonce": nonce,
                "gas": gas_limit,
                "gasPrice": w3.eth.gas_price,
                "value": value,
            }
        )
        pending.signed = account.sign_transaction(transaction)
        pending.tx_hash = pending.signed.hash
        pending.maybe_sent = False
        pending.broadcast = False

        log_blockchain_transaction(
            tx_hash=to_hex(pending.tx_hash),
            method=operation,
            nonce=nonce,
            gas_estimate=estimate,
            gas_limit=gas_limit,
        )

    def _broadcast(self, w3: Any, operation: str, pending: "_PendingTransaction") -> None:
        try:
            tx_hash = w3.eth.send_raw_transaction(pending.signed.raw_transaction)
        except Exception as e:
            message = str(e).lower()
            if "already known" in message:
                pending.broadcast = True
                return
            if "nonce too low" in message and pending.maybe_sent:
                # An earlier broadcast of these bytes took the nonce
                logger.info(
                    f"Re-broadcast of {operation} reports its nonce used",
                    tx_hash=to_hex(pending.tx_hash),
                )
                pending.broadcast = True
                return
            if not pending.maybe_sent and any(marker in message for marker in REJECTION_MARKERS):
                # Refused and never possibly accepted: the next attempt signs afresh
                pending.signed = None
            else:
                pending.maybe_sent = True
            raise

        pending.tx_hash = tx_hash
        pending.broadcast = True

    async def _run(
        self,
        fn: Callable[[], Any],
        operation: str,
        exhausted: Type[RetriableTransactionError],
    ) -> Any:
        max_retries = self.policy.max_retries
        last_error: Optional[BaseException] = None

        for attempt in range(1, max_retries + 1):
            try:
                if inspect.iscoroutinefunction(fn):
                    return await fn()
                # Blocking Web3 calls run off the event loop
                result = await asyncio.to_thread(fn)
                if inspect.isawaitable(result):
                    result = await result
                return result
            except DiamondDeployerException:
                raise
            except Exception as e:
                if not classify_error(e):
                    logger.error(f"Fatal RPC failure: {operation}: {e}")
                    raise FatalTransactionError(
                        f"{operation} failed: {e}",
                        details={"operation": operation, "attempt": attempt},
                    ) from e

                last_error = e
                if attempt < max_retries:
                    delay = self.policy.delay_for(attempt)
                    log_rpc_retry(operation, attempt, max_retries, e, delay)
                    await self._sleep(delay)

        raise exhausted(
            f"{operation} failed after {max_retries} attempts: {last_error}",
            details={
                "operation": operation,
                "attempts": max_retries,
                "last_error": str(last_error),
            },
        ) from last_error
