"""
Deployment Repository.
Persists deployment records in JSON files or in MongoDB.
"""

import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING

from diamond_deployer.core.config import settings
from diamond_deployer.core.logging import get_logger
from diamond_deployer.domain.models.deployment import DeploymentRecord

logger = get_logger(__name__)


class DeploymentRepository(ABC):
    """Interface of deployment record storage."""

    @abstractmethod
    async def load(
        self, diamond_name: str, network_name: str, chain_id: Optional[int] = None
    ) -> Optional[DeploymentRecord]:
        """
        Load the record of a diamond on a network.

        Args:
            diamond_name: Diamond name
            network_name: Network name
            chain_id: Chain ID (latest record of the network when omitted)

        Returns:
            Deployment record or None if never deployed
        """

    @abstractmethod
    async def save(self, record: DeploymentRecord) -> None:
        """Insert or overwrite a deployment record."""


class JsonDeploymentRepository(DeploymentRepository):
    """Stores each record as `<deployments_path>/<name>-<network>-<chainId>.json`."""

    def __init__(self, deployments_path: Optional[str] = None):
        self.base_path = Path(deployments_path or settings.DEPLOYMENTS_PATH)

    def record_path(self, diamond_name: str, network_name: str, chain_id: int) -> Path:
        return self.base_path / f"{diamond_name.lower()}-{network_name.lower()}-{chain_id}.json"

    async def load(
        self, diamond_name: str, network_name: str, chain_id: Optional[int] = None
    ) -> Optional[DeploymentRecord]:
        if chain_id is not None:
            path = self.record_path(diamond_name, network_name, chain_id)
        else:
            pattern = f"{diamond_name.lower()}-{network_name.lower()}-*.json"
            candidates = sorted(
                self.base_path.glob(pattern), key=lambda p: p.stat().st_mtime
            ) if self.base_path.is_dir() else []
            if not candidates:
                return None
            path = candidates[-1]

        if not path.is_file():
            return None

        with open(path, "r") as f:
            document = json.load(f)

        document.setdefault("DiamondName", diamond_name)
        document.setdefault("networkName", network_name)
        record = DeploymentRecord.model_validate(document)
        logger.debug(f"Loaded deployment record {path}")
        return record

    async def save(self, record: DeploymentRecord) -> None:
        self.base_path.mkdir(parents=True, exist_ok=True)
        path = self.record_path(record.diamond_name, record.network_name, record.chain_id)

        # Write then rename so a crash never leaves a truncated record
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(record.model_dump(mode="json", by_alias=True), f, indent=2)
        os.replace(tmp_path, path)

        logger.info(
            f"Saved deployment record {path}",
            diamond_address=record.diamond_address,
            facets=len(record.facets),
        )


class MongoDeploymentRepository(DeploymentRepository):
    """Stores records in the `diamond_deployments` collection."""

    def __init__(self, mongo_uri: Optional[str] = None, db_name: Optional[str] = None):
        """Initialize deployment repository."""
        self.mongo_uri = mongo_uri or settings.MONGO_URI
        self.db_name = db_name or settings.MONGO_DB_NAME
        self.client: Optional[AsyncIOMotorClient] = None
        self.db = None
        self.collection = None

    async def connect(self):
        """Connect to MongoDB."""
        if not self.client:
            self.client = AsyncIOMotorClient(self.mongo_uri)
            self.db = self.client[self.db_name]
            self.collection = self.db["diamond_deployments"]
            await self._create_indexes()
            logger.info("Connected to MongoDB diamond_deployments collection")

    async def _create_indexes(self):
        """One record per diamond, network and chain."""
        await self.collection.create_index(
            [("DiamondName", ASCENDING), ("networkName", ASCENDING), ("chainId", ASCENDING)],
            unique=True,
            name="diamond_network_chain_unique",
        )

    async def disconnect(self):
        """Disconnect from MongoDB."""
        if self.client:
            self.client.close()
            self.client = None
            logger.info("Disconnected from MongoDB")

    async def load(
        self, diamond_name: str, network_name: str, chain_id: Optional[int] = None
    ) -> Optional[DeploymentRecord]:
        await self.connect()

        query = {"DiamondName": diamond_name, "networkName": network_name}
        if chain_id is not None:
            query["chainId"] = chain_id

        document = await self.collection.find_one(query, sort=[("updated_at", DESCENDING)])
        if not document:
            return None

        document.pop("_id", None)
        return DeploymentRecord.model_validate(document)

    async def save(self, record: DeploymentRecord) -> None:
        await self.connect()

        document = record.model_dump(mode="json", by_alias=True)
        key = {
            "DiamondName": record.diamond_name,
            "networkName": record.network_name,
            "chainId": record.chain_id,
        }
        await self.collection.replace_one(key, document, upsert=True)

        logger.info(
            f"Saved deployment record for {record.diamond_name} on {record.network_name}",
            diamond_address=record.diamond_address,
            facets=len(record.facets),
        )


def get_deployment_repository() -> DeploymentRepository:
    """Build the repository selected by RECORD_BACKEND."""
    if settings.RECORD_BACKEND == "mongodb":
        return MongoDeploymentRepository()
    return JsonDeploymentRepository()
