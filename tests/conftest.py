import os
import sys
from typing import Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from asgi_lifespan import LifespanManager
from web3 import Web3

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)
os.environ.setdefault("ANYIO_BACKEND", "asyncio")

from diamond_deployer.main import app  # noqa: E402
from diamond_deployer.core.exceptions import FatalTransactionError  # noqa: E402
from diamond_deployer.domain.models.deployment import DeploymentRecord, simulate_cut  # noqa: E402
from diamond_deployer.domain.models.facet import DiamondConfig, FacetConfig  # noqa: E402
from diamond_deployer.domain.models.selector import DIAMOND_CUT_SELECTOR  # noqa: E402
from diamond_deployer.domain.repositories.deployment_repository import (  # noqa: E402
    DeploymentRepository,
)
from diamond_deployer.infrastructure.blockchain.diamond_client import NetworkInfo  # noqa: E402

DEPLOYER_ADDRESS = "0x9999999999999999999999999999999999999999"
LOUPE_SELECTORS = ["0x7a0ed627", "0xcdffacc6"]


def numbered_address(n: int) -> str:
    """Deterministic checksummed address made of decimal digits only."""
    return Web3.to_checksum_address("0x" + f"{n:040d}")


class FakeDiamondClient:
    """In-memory chain: deploys contracts and applies cuts to a simulated loupe."""

    def __init__(self, diamond_name: str = "TestDiamond", chain_id: int = 31337):
        self.diamond_name = diamond_name
        self.chain_id = chain_id
        self.balance_wei = 10**18
        self.deployer_address = DEPLOYER_ADDRESS
        self.contracts: Dict[str, str] = {}
        self.deployments: List[tuple] = []
        self.diamond_address: Optional[str] = None
        self.routes: Dict[str, str] = {}
        self.cuts: List[dict] = []
        self.fail_cut_at: Optional[int] = None
        self._counter = 0

    async def get_network_info(self) -> NetworkInfo:
        return NetworkInfo(
            chain_id=self.chain_id,
            deployer_address=self.deployer_address,
            balance_wei=self.balance_wei,
            gas_price_wei=10**9,
            block_number=100 + self._counter,
        )

    async def deploy_contract(self, name, abi, bytecode, args=None):
        self._counter += 1
        address = numbered_address(self._counter)
        self.contracts[address] = name
        self.deployments.append((name, list(args or [])))
        if name == self.diamond_name:
            # Standard proxy constructor: (owner, cut facet)
            self.diamond_address = address
            self.routes = {DIAMOND_CUT_SELECTOR: args[1]}
        return address, "0x" + f"{self._counter:064x}"

    async def diamond_cut(self, diamond_address, operations, init_address=None, init_calldata="0x"):
        if self.fail_cut_at is not None and len(self.cuts) == self.fail_cut_at:
            raise FatalTransactionError(
                "diamondCut reverted", details={"operation": "diamondCut"}
            )
        self.cuts.append(
            {
                "operations": list(operations),
                "init_address": init_address,
                "init_calldata": init_calldata,
            }
        )
        self.routes = simulate_cut(self.routes, operations)
        return {"transactionHash": "0x" + f"{1000 + len(self.cuts):064x}", "status": 1}

    async def facets(self, diamond_address):
        grouped: Dict[str, List[str]] = {}
        for selector, address in self.routes.items():
            grouped.setdefault(address, []).append(selector)
        return grouped

    async def get_code(self, address):
        if address in self.contracts:
            return b"\x60\x80"
        return b""


class InMemoryDeploymentRepository(DeploymentRepository):
    """Keeps every saved snapshot so tests can check commit points."""

    def __init__(self, record: Optional[DeploymentRecord] = None):
        self.record = record
        self.snapshots: List[DeploymentRecord] = []

    async def load(self, diamond_name, network_name, chain_id=None):
        return self.record.model_copy(deep=True) if self.record else None

    async def save(self, record):
        self.record = record.model_copy(deep=True)
        self.snapshots.append(self.record)


def make_facet(name: str, selectors: List[str], priority: int = 0, version: int = 0) -> FacetConfig:
    return FacetConfig(
        name=name,
        selectors=selectors,
        priority=priority,
        version=version,
        bytecode="0x6080",
    )


def make_config(facets: List[FacetConfig], protocol_version: int = 1) -> DiamondConfig:
    return DiamondConfig(
        diamond_name="TestDiamond",
        protocol_version=protocol_version,
        facets=facets,
        diamond_abi=[],
        diamond_bytecode="0x6080",
    )


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def facet_factory():
    return make_facet


@pytest.fixture
def config_factory():
    return make_config


@pytest.fixture
def standard_facets() -> List[FacetConfig]:
    """Cut, loupe and one application facet."""
    return [
        make_facet("DiamondCutFacet", [DIAMOND_CUT_SELECTOR], priority=100),
        make_facet("DiamondLoupeFacet", LOUPE_SELECTORS, priority=100),
        make_facet("TokenFacet", ["0x11111111", "0x22222222"], priority=10),
    ]


@pytest.fixture
def fake_client() -> FakeDiamondClient:
    return FakeDiamondClient()


@pytest.fixture
def memory_repository() -> InMemoryDeploymentRepository:
    return InMemoryDeploymentRepository()


@pytest.fixture
def address_factory():
    return numbered_address


@pytest.fixture
async def async_client():
    """Shared HTTPX async client with FastAPI lifespan handling."""
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
    app.dependency_overrides.clear()
