"""
Diamond Deployer Service Layer.
Drives a diamond from its persisted state to the target configuration: fresh
deployment, facet deployment, reconciliation and diamond cuts.
"""

import asyncio
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from diamond_deployer.core.exceptions import (
    ConfigurationError,
    DiamondDeployerException,
    FatalTransactionError,
)
from diamond_deployer.core.logging import get_logger, log_deployment_event, log_error
from diamond_deployer.domain.models.deployment import (
    CutAction,
    CutOperation,
    DeploymentRecord,
    DeploymentStatus,
)
from diamond_deployer.domain.models.facet import DiamondConfig, FacetRecord
from diamond_deployer.domain.models.selector import DIAMOND_CUT_SELECTOR
from diamond_deployer.domain.reconciler import FacetReconciler, owners_from_facets
from diamond_deployer.domain.registry import RegistryEntry, SelectorRegistry
from diamond_deployer.domain.repositories.deployment_repository import DeploymentRepository
from diamond_deployer.domain.state_tracker import (
    DeploymentStateTracker,
    DriftItem,
    compute_status,
    detect_drift,
)
from diamond_deployer.infrastructure.blockchain.diamond_client import NetworkInfo
from diamond_deployer.infrastructure.blockchain.rpc_executor import to_hex

logger = get_logger(__name__)

MIN_BALANCE_WEI = 10**16  # 0.01 ETH


class DeploymentPlan(BaseModel):
    """Dry-run view of what a deployment would do."""

    diamond_name: str = Field(..., description="Diamond name")
    network_name: str = Field(..., description="Network name")
    status: DeploymentStatus = Field(..., description="Current deployment status")
    problems: List[str] = Field(default_factory=list, description="Configuration problems")
    drift: List[DriftItem] = Field(default_factory=list, description="Record vs target differences")
    facets_to_deploy: List[str] = Field(
        default_factory=list, description="Facets that would be (re)deployed"
    )
    operations: List[CutOperation] = Field(
        default_factory=list,
        description="Cut operations computable from already-deployed facet addresses",
    )
    operations_complete: bool = Field(
        True, description="False when pending facet deployments make the cut list partial"
    )
    registry: List[RegistryEntry] = Field(
        default_factory=list, description="Resolved selector owners and their pending actions"
    )


class DeploymentResult(BaseModel):
    """Outcome of a deploy or upgrade run."""

    diamond_name: str = Field(..., description="Diamond name")
    network_name: str = Field(..., description="Network name")
    status_before: DeploymentStatus = Field(..., description="Status when the run started")
    status_after: DeploymentStatus = Field(..., description="Status when the run ended")
    diamond_address: Optional[str] = Field(None, description="Diamond proxy address")
    deployed_facets: List[str] = Field(default_factory=list, description="Contracts deployed")
    operations: List[CutOperation] = Field(default_factory=list, description="Cut operations applied")
    tx_hashes: List[str] = Field(default_factory=list, description="Confirmed transaction hashes")
    record: Optional[DeploymentRecord] = Field(None, description="Persisted record after the run")


class VerificationReport(BaseModel):
    """Comparison of the persisted record against live chain state."""

    diamond_name: str = Field(..., description="Diamond name")
    network_name: str = Field(..., description="Network name")
    diamond_address: Optional[str] = Field(None, description="Diamond proxy address")
    on_chain_facet_count: int = Field(0, description="Facets reported by the loupe")
    recorded_facet_count: int = Field(0, description="Facets routing selectors in the record")
    errors: List[str] = Field(default_factory=list, description="Mismatches")
    warnings: List[str] = Field(default_factory=list, description="Suspicious differences")

    @property
    def ok(self) -> bool:
        return not self.errors


class DiamondDeployer:
    """Orchestrates the lifecycle of one diamond on one network.

    The chain client must provide `get_network_info`, `get_code`, `facets`,
    `deploy_contract` and `diamond_cut` (see DiamondClient).
    """

    def __init__(
        self,
        config: DiamondConfig,
        client: Any,
        repository: DeploymentRepository,
        tracker: DeploymentStateTracker,
        network_name: str,
        batch_cuts: bool = True,
        strict_priority_ties: bool = False,
        min_balance_wei: int = MIN_BALANCE_WEI,
    ):
        """
        Initialize the deployer.

        Args:
            config: Target diamond configuration
            client: Chain client (DiamondClient or compatible)
            repository: Deployment record storage
            tracker: Process-local in-progress tracker, shared by the caller
            network_name: Network name
            batch_cuts: Submit all cut operations in one transaction
            strict_priority_ties: Reject same-priority selector collisions
            min_balance_wei: Balance under which a warning is logged
        """
        self.config = config
        self.client = client
        self.repository = repository
        self.tracker = tracker
        self.network_name = network_name
        self.batch_cuts = batch_cuts
        self.strict_priority_ties = strict_priority_ties
        self.min_balance_wei = min_balance_wei
        self.reconciler = FacetReconciler(config, strict_priority_ties=strict_priority_ties)

    @property
    def diamond_name(self) -> str:
        return self.config.diamond_name

    # Validation

    def validate_configuration(self, record: Optional[DeploymentRecord] = None) -> List[str]:
        """
        Collect every problem with the target configuration.

        Args:
            record: Current deployment record, used for version and bytecode checks

        Returns:
            Problem descriptions; empty when the configuration is usable
        """
        config = self.config
        problems: List[str] = []

        if not config.facets:
            problems.append("No facets configured")

        seen = set()
        for name in config.facet_names:
            if name in seen:
                problems.append(f"Facet {name} is declared more than once")
            seen.add(name)

        for facet in config.facets:
            if not facet.selectors:
                problems.append(f"Facet {facet.name} has no selectors")

        deployed = record is not None and record.is_deployed
        cut_facet = config.cut_facet
        if cut_facet is None:
            problems.append(f"Cut facet {config.cut_facet_name} is not configured")
        elif DIAMOND_CUT_SELECTOR not in cut_facet.selectors:
            problems.append(f"Cut facet {cut_facet.name} does not expose diamondCut")

        if not deployed:
            if not config.diamond_bytecode:
                problems.append(f"No bytecode for diamond {config.diamond_name}")
            if cut_facet is not None and not cut_facet.bytecode:
                problems.append(f"No bytecode for cut facet {cut_facet.name}")

        registry = SelectorRegistry.from_config(config)
        if self.strict_priority_ties:
            for tie in registry.tie_collisions():
                problems.append(
                    f"Selector {tie.selector} claimed by {tie.loser} and {tie.winner} "
                    f"at equal priority {tie.priority}"
                )

        skip = {config.cut_facet_name} if not deployed else set()
        for name in self._facets_to_deploy(registry, record):
            facet = config.get_facet(name)
            if name not in skip and facet is not None and not facet.bytecode:
                problems.append(f"No bytecode for facet {name}")

        if deployed and config.protocol_version < record.protocol_version:
            problems.append(
                f"Protocol version {config.protocol_version} is below deployed "
                f"version {record.protocol_version}; downgrades are not supported"
            )

        return problems

    def ensure_valid(self, record: Optional[DeploymentRecord] = None) -> None:
        """Raise ConfigurationError listing every problem, if any."""
        problems = self.validate_configuration(record)
        if problems:
            raise ConfigurationError(problems, details={"diamond_name": self.diamond_name})

    # Read-only views

    async def get_network_info(self) -> NetworkInfo:
        """Query the network and warn when the deployer balance is low."""
        info = await self.client.get_network_info()
        if info.balance_wei < self.min_balance_wei:
            logger.warning(
                "Low deployer balance",
                deployer_address=info.deployer_address,
                balance_wei=info.balance_wei,
                min_balance_wei=self.min_balance_wei,
            )
        return info

    async def load_record(self, chain_id: Optional[int] = None) -> Optional[DeploymentRecord]:
        return await self.repository.load(self.diamond_name, self.network_name, chain_id)

    async def get_status(self) -> DeploymentStatus:
        record = await self.load_record()
        return self.tracker.status(record, self.config, self.network_name)

    async def plan(self) -> DeploymentPlan:
        """
        Dry run: report what a deployment would do without sending anything.

        Returns:
            DeploymentPlan
        """
        record = await self.load_record()
        plan = DeploymentPlan(
            diamond_name=self.diamond_name,
            network_name=self.network_name,
            status=self.tracker.status(record, self.config, self.network_name),
            problems=self.validate_configuration(record),
            drift=detect_drift(record, self.config),
        )
        if plan.problems:
            plan.operations_complete = False
            return plan

        registry = SelectorRegistry.from_config(self.config)
        plan.facets_to_deploy = self._facets_to_deploy(registry, record)
        if record is None or not record.is_deployed or plan.facets_to_deploy:
            # Facets without an address yet: preview actions from the record
            plan.operations_complete = False
            plan.registry = self._preview_actions(registry, record, plan.facets_to_deploy)
            return plan

        addresses = self._routed_addresses(registry, record, {})
        plan.operations = self.reconciler.reconcile(
            addresses,
            record.facets_by_address(),
            managed_addresses=record.managed_addresses(),
            diamond_address=record.diamond_address,
        )
        plan.registry = self.reconciler.registry.entries()
        return plan

    @staticmethod
    def _preview_actions(
        registry: SelectorRegistry,
        record: Optional[DeploymentRecord],
        pending: List[str],
    ) -> List[RegistryEntry]:
        recorded = record.selector_facet_names() if record else {}
        for entry in registry.entries():
            current = recorded.get(entry.selector)
            if current is None:
                action = CutAction.ADD
            elif current != entry.facet_name or entry.facet_name in pending:
                action = CutAction.REPLACE
            else:
                action = CutAction.NONE
            registry.set_action(entry.selector, action)
        return registry.entries()

    # Deployment

    async def deploy(self, force: bool = False) -> DeploymentResult:
        """
        Deploy the diamond or upgrade it to the target configuration.

        A diamond that is not deployed yet gets its cut facet and proxy first;
        the remaining facets then follow the upgrade path. The record is
        persisted after every confirmed transaction.

        Args:
            force: Reconcile against the loupe even when no drift is recorded

        Returns:
            DeploymentResult

        Raises:
            ConfigurationError: invalid target configuration (nothing is sent)
            StateInconsistencyError: on-chain state needs an operator
            TransactionError: a transaction failed; details carry the progress made
        """
        with self.tracker.in_progress(self.diamond_name, self.network_name):
            info = await self.get_network_info()
            record = await self.load_record(info.chain_id)
            status_before = compute_status(record, self.config)

            self.ensure_valid(record)

            result = DeploymentResult(
                diamond_name=self.diamond_name,
                network_name=self.network_name,
                status_before=status_before,
                status_after=status_before,
                diamond_address=record.diamond_address if record else None,
                record=record,
            )

            if status_before is DeploymentStatus.COMPLETED and not force:
                logger.info(f"{self.diamond_name} on {self.network_name} is up to date")
                return result

            log_deployment_event(
                "deploy_started",
                self.diamond_name,
                self.network_name,
                diamond_address=result.diamond_address,
                status=status_before.value,
                force=force,
            )

            try:
                fresh = record is None or not record.is_deployed
                if fresh:
                    record = await self._deploy_diamond(info, record, result)
                await self._upgrade(record, result, fresh)

                record.protocol_version = self.config.protocol_version
                record.touch()
                await self.repository.save(record)
            except DiamondDeployerException as e:
                e.details.setdefault("diamond_name", self.diamond_name)
                e.details.setdefault("network_name", self.network_name)
                e.details["diamond_address"] = result.diamond_address
                e.details["completed_tx_hashes"] = list(result.tx_hashes)
                e.details["deployed_facets"] = list(result.deployed_facets)
                log_error(e, {"diamond_name": self.diamond_name, "network_name": self.network_name})
                raise

            result.record = record
            result.status_after = compute_status(record, self.config)
            log_deployment_event(
                "deploy_completed",
                self.diamond_name,
                self.network_name,
                diamond_address=record.diamond_address,
                status=result.status_after.value,
                operations=len(result.operations),
                transactions=len(result.tx_hashes),
            )
            return result

    async def _deploy_diamond(
        self,
        info: NetworkInfo,
        record: Optional[DeploymentRecord],
        result: DeploymentResult,
    ) -> DeploymentRecord:
        config = self.config
        cut_facet = config.cut_facet

        cut_address, cut_tx = await self.client.deploy_contract(
            cut_facet.name, cut_facet.abi or [], cut_facet.bytecode, cut_facet.constructor_args
        )
        result.deployed_facets.append(cut_facet.name)
        result.tx_hashes.append(cut_tx)

        # The proxy constructor wires diamondCut to the cut facet
        args = config.diamond_constructor_args
        if args is None:
            args = [info.deployer_address, cut_address]
        diamond_address, diamond_tx = await self.client.deploy_contract(
            config.diamond_name, config.diamond_abi or [], config.diamond_bytecode, args
        )
        result.tx_hashes.append(diamond_tx)
        result.diamond_address = diamond_address

        record = DeploymentRecord(
            diamond_name=config.diamond_name,
            network_name=self.network_name,
            chain_id=info.chain_id,
            diamond_address=diamond_address,
            deployer_address=info.deployer_address,
            protocol_version=record.protocol_version if record else 0,
            facets={
                cut_facet.name: FacetRecord(
                    name=cut_facet.name,
                    address=cut_address,
                    selectors=[DIAMOND_CUT_SELECTOR],
                    priority=cut_facet.priority,
                    version=cut_facet.version,
                    tx_hash=cut_tx,
                )
            },
        )
        await self.repository.save(record)

        log_deployment_event(
            "diamond_deployed",
            self.diamond_name,
            self.network_name,
            diamond_address=diamond_address,
            cut_facet_address=cut_address,
            tx_hash=diamond_tx,
        )
        return record

    async def _upgrade(
        self, record: DeploymentRecord, result: DeploymentResult, fresh: bool
    ) -> None:
        registry = self.reconciler.build_registry()

        deployed: Dict[str, FacetRecord] = {}
        new_addresses: Dict[str, str] = {}
        for name in self._facets_to_deploy(registry, record):
            facet = self.config.get_facet(name)
            address, tx_hash = await self.client.deploy_contract(
                facet.name, facet.abi or [], facet.bytecode, facet.constructor_args
            )
            deployed[address] = FacetRecord(
                name=facet.name,
                address=address,
                priority=facet.priority,
                version=facet.version,
                tx_hash=tx_hash,
            )
            new_addresses[name] = address
            result.deployed_facets.append(name)
            result.tx_hashes.append(tx_hash)

        addresses = self._routed_addresses(registry, record, new_addresses)

        # A new proxy has no loupe until it is cut in
        if fresh:
            on_chain = record.facets_by_address()
        else:
            on_chain = await self.client.facets(record.diamond_address)

        operations = self.reconciler.reconcile(
            addresses,
            on_chain,
            managed_addresses=record.managed_addresses(),
            diamond_address=record.diamond_address,
        )
        if not operations:
            logger.info(f"{self.diamond_name} selectors already match the target")
            return

        batches = [operations] if self.batch_cuts else [[op] for op in operations]
        for index, batch in enumerate(batches):
            last = index == len(batches) - 1
            receipt = await self.client.diamond_cut(
                record.diamond_address,
                batch,
                init_address=self.config.init_address if last else None,
                init_calldata=self.config.init_calldata if last else "0x",
            )
            record.apply_cut(batch, deployed)
            await self.repository.save(record)

            result.operations.extend(batch)
            result.tx_hashes.append(to_hex(receipt["transactionHash"]))

    def _facets_to_deploy(
        self, registry: SelectorRegistry, record: Optional[DeploymentRecord]
    ) -> List[str]:
        """Routed facets missing from the record or with a bumped version, in config order."""
        routed = set(registry.mapping().values())
        names = []
        for facet in self.config.facets:
            if facet.name not in routed:
                continue
            current = record.facets.get(facet.name) if record else None
            if current is None or facet.version > current.version:
                names.append(facet.name)
        return names

    def _routed_addresses(
        self,
        registry: SelectorRegistry,
        record: DeploymentRecord,
        new_addresses: Dict[str, str],
    ) -> Dict[str, str]:
        addresses = dict(new_addresses)
        for name in set(registry.mapping().values()):
            if name not in addresses and name in record.facets:
                addresses[name] = record.facets[name].address
        return addresses

    # Verification

    async def verify_deployment(self) -> VerificationReport:
        """
        Compare the persisted record against live chain state.

        Returns:
            VerificationReport; mismatches are reported, not raised
        """
        info = await self.client.get_network_info()
        record = await self.load_record(info.chain_id)
        report = VerificationReport(diamond_name=self.diamond_name, network_name=self.network_name)

        if record is None or not record.is_deployed:
            report.errors.append(f"No deployment record for {self.diamond_name} on {self.network_name}")
            return report

        report.diamond_address = record.diamond_address
        report.recorded_facet_count = len(record.facets_by_address())

        keys = list(record.facets)
        codes = await asyncio.gather(
            self.client.get_code(record.diamond_address),
            *[self.client.get_code(record.facets[key].address) for key in keys],
        )
        if not codes[0]:
            report.errors.append(f"No contract code at diamond address {record.diamond_address}")
            return report
        for key, code in zip(keys, codes[1:]):
            if not code:
                report.errors.append(
                    f"No contract code for facet {key} at {record.facets[key].address}"
                )

        try:
            on_chain = await self.client.facets(record.diamond_address)
        except FatalTransactionError as e:
            report.errors.append(f"Diamond loupe query failed: {e.message}")
            return report

        report.on_chain_facet_count = len(on_chain)
        if report.on_chain_facet_count != report.recorded_facet_count:
            report.warnings.append(
                f"Facet count mismatch: {report.recorded_facet_count} recorded, "
                f"{report.on_chain_facet_count} on-chain"
            )

        managed = record.managed_addresses()
        for address in on_chain:
            if address not in managed and address != record.diamond_address:
                report.warnings.append(f"On-chain facet {address} is not in the deployment record")

        # Immutable functions live on the proxy and are never recorded
        live = {
            selector: address
            for selector, address in owners_from_facets(on_chain).items()
            if address != record.diamond_address
        }
        recorded = record.selector_owners()
        for selector in sorted(set(live) | set(recorded)):
            if live.get(selector) != recorded.get(selector):
                report.errors.append(
                    f"Selector {selector}: recorded at {recorded.get(selector)}, "
                    f"on-chain at {live.get(selector)}"
                )

        logger.info(
            f"Verified {self.diamond_name} on {self.network_name}",
            errors=len(report.errors),
            warnings=len(report.warnings),
        )
        return report
