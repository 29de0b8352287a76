"""
Diamond client for on-chain interactions.
Handles contract deployment, loupe queries and diamond cuts through the RPC executor.
"""

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field
from web3 import Web3

from diamond_deployer.core.config import settings
from diamond_deployer.core.exceptions import ConfigurationError
from diamond_deployer.core.logging import get_logger, log_cut_operation
from diamond_deployer.domain.models.deployment import CutOperation
from diamond_deployer.domain.models.facet import ZERO_ADDRESS
from diamond_deployer.domain.models.selector import normalize_selector
from diamond_deployer.infrastructure.blockchain.abis import DIAMOND_CUT_ABI, DIAMOND_LOUPE_ABI
from diamond_deployer.infrastructure.blockchain.rpc_executor import (
    RetryPolicy,
    RpcExecutor,
    to_hex,
)

logger = get_logger(__name__)


class NetworkInfo(BaseModel):
    """Network and account context of a deployment."""

    chain_id: int = Field(..., description="Chain ID")
    deployer_address: str = Field(..., description="Signing account address")
    balance_wei: int = Field(..., description="Signing account balance")
    gas_price_wei: int = Field(..., description="Current gas price")
    block_number: int = Field(..., description="Latest block number")


class DiamondClient:
    """Client for deploying and cutting diamonds."""

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        executor: Optional[RpcExecutor] = None,
        w3: Optional[Web3] = None,
    ):
        """
        Initialize diamond client.

        Args:
            rpc_url: JSON-RPC endpoint
            private_key: Signing key of the deployer account
            executor: RPC executor (default retry policy when omitted)
            w3: Preconfigured Web3 instance
        """
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url))
        self.account = self.w3.eth.account.from_key(private_key)
        self.executor = executor or RpcExecutor()
        logger.info(f"Diamond client initialized for {rpc_url} as {self.account.address}")

    @classmethod
    def from_settings(cls, network_name: str) -> "DiamondClient":
        """Build a client for a network from the application settings."""
        problems = []
        rpc_url = settings.get_rpc_url(network_name)
        if not rpc_url:
            problems.append(f"No RPC URL configured for network {network_name} (RPC_URL or NETWORK_RPC_URLS)")
        if not settings.PRIVATE_KEY:
            problems.append("PRIVATE_KEY not configured")
        if problems:
            raise ConfigurationError(problems)

        policy = RetryPolicy(**settings.get_retry_policy_kwargs())
        return cls(rpc_url, settings.PRIVATE_KEY, executor=RpcExecutor(policy))

    @property
    def deployer_address(self) -> str:
        return self.account.address

    async def get_network_info(self) -> NetworkInfo:
        """Query chain id, balance, gas price and block number."""
        eth = self.w3.eth
        address = self.account.address
        return NetworkInfo(
            chain_id=await self.executor.call(lambda: eth.chain_id, "eth_chainId"),
            deployer_address=address,
            balance_wei=await self.executor.call(lambda: eth.get_balance(address), "eth_getBalance"),
            gas_price_wei=await self.executor.call(lambda: eth.gas_price, "eth_gasPrice"),
            block_number=await self.executor.call(lambda: eth.block_number, "eth_blockNumber"),
        )

    async def get_code(self, address: str) -> bytes:
        checksum = Web3.to_checksum_address(address)
        code = await self.executor.call(lambda: self.w3.eth.get_code(checksum), "eth_getCode")
        return bytes(code)

    async def facets(self, diamond_address: str) -> Dict[str, List[str]]:
        """
        Read the diamond's facets through the loupe.

        Args:
            diamond_address: Diamond proxy address

        Returns:
            Facet address -> selectors
        """
        loupe = self.w3.eth.contract(
            address=Web3.to_checksum_address(diamond_address), abi=DIAMOND_LOUPE_ABI
        )
        raw = await self.executor.call(lambda: loupe.functions.facets().call(), "facets")
        return {
            Web3.to_checksum_address(facet_address): [
                normalize_selector(bytes(selector)) for selector in selectors
            ]
            for facet_address, selectors in raw
        }

    async def facet_address(self, diamond_address: str, selector: str) -> Optional[str]:
        loupe = self.w3.eth.contract(
            address=Web3.to_checksum_address(diamond_address), abi=DIAMOND_LOUPE_ABI
        )
        selector_bytes = bytes.fromhex(normalize_selector(selector)[2:])
        address = await self.executor.call(
            lambda: loupe.functions.facetAddress(selector_bytes).call(), "facetAddress"
        )
        return None if int(address, 16) == 0 else Web3.to_checksum_address(address)

    async def deploy_contract(
        self,
        name: str,
        abi: List[Dict[str, Any]],
        bytecode: str,
        args: Optional[List[Any]] = None,
    ) -> Tuple[str, str]:
        """
        Deploy a contract and wait for it to be mined.

        Returns:
            Tuple of (contract address, transaction hash)
        """
        factory = self.w3.eth.contract(abi=abi, bytecode=bytecode)
        receipt = await self.executor.transact(
            self.w3,
            self.account,
            factory.constructor(*(args or [])),
            operation=f"deploy {name}",
        )
        address = Web3.to_checksum_address(receipt["contractAddress"])
        logger.info(f"Deployed {name} at {address}")
        return address, to_hex(receipt["transactionHash"])

    async def diamond_cut(
        self,
        diamond_address: str,
        operations: List[CutOperation],
        init_address: Optional[str] = None,
        init_calldata: str = "0x",
    ) -> Dict[str, Any]:
        """
        Submit one diamondCut transaction carrying all given operations.

        Returns:
            Transaction receipt
        """
        diamond = self.w3.eth.contract(
            address=Web3.to_checksum_address(diamond_address), abi=DIAMOND_CUT_ABI
        )
        for operation in operations:
            log_cut_operation(
                operation.action.value,
                operation.facet_address,
                operation.selectors,
                facet_name=operation.facet_name,
                diamond_address=diamond_address,
            )

        cut_fn = diamond.functions.diamondCut(
            [operation.to_facet_cut() for operation in operations],
            Web3.to_checksum_address(init_address or ZERO_ADDRESS),
            bytes.fromhex(init_calldata[2:] if init_calldata.startswith("0x") else init_calldata),
        )
        return await self.executor.transact(self.w3, self.account, cut_fn, operation="diamondCut")
