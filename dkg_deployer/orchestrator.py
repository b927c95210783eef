"""
The upgrade orchestrator: one sequential run over a selection of modules.

For every step, in dependency order, the orchestrator reads the ledger,
runs the upgrade decision procedure and then either brings the module up
(deploy, bind, initialize, forward configuration, seed parameters) or
reconciles an already current module against the Hub and its configuration.
Hub writes are routed by current ownership; whatever the deployer may not
apply itself ends up in one governance batch finalized at the end of the run.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from loguru import logger

from .chain.base import ChainBackend
from .companion import SubstrateFunder, convert_evm_address
from .config import DeployerSettings
from .descriptors import (
    DescriptorTable,
    ForwardedConfig,
    ModuleDescriptor,
    resolve_forwarded_args,
    resolve_forwarded_check,
)
from .exceptions import ConfigurationError, DeployerError, ForwardCallError, TransactionRevertedError
from .governance import FinalizationResult, GovernanceBatch, GovernanceFinalizer
from .graph import DependencyGraph, ensure_eligible
from .ledger import DeploymentLedger, LedgerEntry, deprecated_name
from .parameters import ParametersConfig, ParameterSeeder
from .registry import HUB, HUB_CONTROLLER, CallRouter
from .types import (
    DEPRECATED_SUFFIX,
    ZERO_ADDRESS,
    CallRoute,
    ForwardCallInput,
    ModuleDecision,
    RegistrationPolicy,
    UpgradeAction,
    UpgradeState,
)
from .versioning import band_of, decide


@dataclass
class RunReport:
    """What one orchestrator run did."""
    network: str
    decisions: List[ModuleDecision] = field(default_factory=list)
    deployed: List[str] = field(default_factory=list)
    reconciled: List[str] = field(default_factory=list)
    transactions: int = 0
    batch: Dict[str, Any] = field(default_factory=dict)
    finalization: Optional[FinalizationResult] = None


class UpgradeOrchestrator:
    """
    Drives one run of the module table against one network.

    Args:
        settings: Network, secrets and paths of the run
        chain: Backend submitting transactions as the deployer
        table: Steps selected for this run
        ledger: Ledger of the network, loaded
        parameters: Parameter configuration (empty if omitted)
        funder: Companion-chain funder, required when the network funds
            companion accounts
    """

    def __init__(
        self,
        settings: DeployerSettings,
        chain: ChainBackend,
        table: DescriptorTable,
        ledger: DeploymentLedger,
        parameters: Optional[ParametersConfig] = None,
        funder: Optional[SubstrateFunder] = None,
    ):
        self.settings = settings
        self.network = settings.network
        self.chain = chain
        self.table = table
        self.ledger = ledger
        self.funder = funder

        self.batch = GovernanceBatch()
        self.router = CallRouter(chain, self.network, self.batch, ledger.address_of)
        self.seeder = ParameterSeeder(chain, parameters or ParametersConfig(), self.network)
        self.finalizer = GovernanceFinalizer(chain, settings)

    # -- planning -------------------------------------------------------------

    def order(self) -> List[ModuleDescriptor]:
        return DependencyGraph(self.table, self.ledger.in_ledger).order()

    def plan(self) -> List[ModuleDecision]:
        """
        Processing order and the decision for every step, without sending
        anything.

        Later steps for the same logical name are decided against the entry
        the earlier step would leave behind.

        Raises:
            ConfigurationError: Cycles, missing dependencies, unknown
                parameters or a step that would redeploy the Hub
            ArtifactNotFoundError: A step has no artifact
        """
        projected: Dict[str, Optional[LedgerEntry]] = {}
        decisions: List[ModuleDecision] = []

        for descriptor in self.order():
            name = descriptor.logical_name
            entry = projected[name] if name in projected else self.ledger.get(name)
            decision = decide(descriptor, entry)
            self._preflight(descriptor, decision, entry)
            decisions.append(decision)

            if decision.action != UpgradeAction.SKIP:
                projected[name] = LedgerEntry(
                    evm_address=ZERO_ADDRESS,
                    version=descriptor.version,
                    implementation_name=descriptor.implementation_name,
                )
        return decisions

    def _preflight(self, descriptor: ModuleDescriptor, decision: ModuleDecision, entry: Optional[LedgerEntry]) -> None:
        name = descriptor.logical_name
        if name == HUB and decision.action not in (UpgradeAction.DEPLOY, UpgradeAction.SKIP):
            raise ConfigurationError(
                "The Hub cannot be redeployed or replaced: every module holds its address"
            )

        if decision.action == UpgradeAction.SKIP:
            implementation = self._deployed_implementation(descriptor, entry)
        else:
            implementation = descriptor.implementation_name
            self.chain.artifacts.get(implementation)

        if self.seeder.has_parameters(name):
            if descriptor.registration == RegistrationPolicy.DO_NOT_REGISTER:
                raise ConfigurationError(f"Parameters are configured for {name}, which is not registered in the Hub")
            if decision.state != UpgradeState.DEPLOYED_NEWER:
                self.seeder.validate(name, implementation)

    # -- run ------------------------------------------------------------------

    def run(self) -> RunReport:
        """
        Execute the run.

        The ledger is saved after every module when the network asks for it,
        at the end of the run, and before any error propagates.
        """
        self.plan()
        capabilities = self.network.capabilities
        if capabilities.multisig_finalize:
            self.settings.require_multisig()
        if capabilities.fund_companion_accounts and self.funder is None:
            raise ConfigurationError(f"{self.network.name} funds companion accounts but no funder is configured")

        self.router.pending = self.finalizer.pending(self.ledger.address_of(HUB_CONTROLLER))
        report = RunReport(network=self.network.name)
        start = self.chain.transactions_sent
        processed: Set[str] = set()
        redeployed: Set[str] = set()

        logger.info(f"Deploying to {self.network.name} as {self.chain.deployer}")
        try:
            for descriptor in self.order():
                name = descriptor.logical_name
                previous = self.ledger.get(name)
                decision = decide(descriptor, previous)
                report.decisions.append(decision)
                self._log_decision(decision)

                ensure_eligible(descriptor, processed, self.ledger.in_ledger)
                if decision.action == UpgradeAction.SKIP:
                    if decision.state == UpgradeState.DEPLOYED_CURRENT and self._reconcile(descriptor, redeployed):
                        report.reconciled.append(name)
                else:
                    self._bring_up(descriptor, decision, previous)
                    redeployed.add(name)
                    report.deployed.append(name)
                processed.add(name)

                if name == HUB_CONTROLLER:
                    self._hand_over_hub(previous, decision)
                if self.network.capabilities.save_after_each_module:
                    self.ledger.save()

            report.batch = self.batch.summary()
            report.finalization = self.finalizer.finalize(self.batch, self.ledger.address_of(HUB_CONTROLLER))
        except DeployerError:
            logger.error("Run aborted; the ledger keeps every module completed so far")
            self.ledger.save()
            raise

        if report.deployed:
            self.ledger.deployed_timestamp = int(time.time() * 1000)
        self.ledger.save()

        report.transactions = self.chain.transactions_sent - start
        logger.success(
            f"Run finished on {self.network.name}: {len(report.deployed)} deployed, "
            f"{len(report.reconciled)} reconciled, {report.transactions} transaction(s)"
        )
        return report

    def _log_decision(self, decision: ModuleDecision) -> None:
        if decision.action == UpgradeAction.SKIP:
            logger.info(f"[{decision.logical_name}] {decision.state.value} -> skip ({decision.reason})")
        else:
            logger.info(
                f"[{decision.logical_name}] {decision.state.value} -> "
                f"{decision.action.value.replace('_', ' ')} with {decision.implementation_name}"
            )

    # -- bring-up -------------------------------------------------------------

    def _bring_up(self, descriptor: ModuleDescriptor, decision: ModuleDecision, previous: Optional[LedgerEntry]) -> None:
        name = descriptor.logical_name
        implementation = descriptor.implementation_name
        registered = descriptor.registration != RegistrationPolicy.DO_NOT_REGISTER

        args = descriptor.constructor_arguments(self.ledger.address_of(HUB), self.network.chain_family)
        receipt = self.chain.deploy(implementation, args)
        address = receipt.address
        logger.info(f"[{name}] {implementation} deployed at {address} (block {receipt.block_number}, tx {receipt.tx_hash})")

        version = self._read_version(descriptor, address)
        if registered:
            self.router.bind(name, address, descriptor.registration)

        if decision.action == UpgradeAction.REPLACE and previous is not None and descriptor.keep_deprecated:
            self.ledger.deprecate(name)
            if registered:
                self.router.bind(deprecated_name(name), previous.evm_address, descriptor.registration)

        secondary = None
        if self.network.capabilities.companion_chain:
            secondary = convert_evm_address(address, self.network.capabilities.ss58_prefix)
        funding = secondary is not None and self.network.capabilities.fund_companion_accounts
        entry = self.ledger.record(
            name,
            address,
            receipt.block_number,
            version=version,
            implementation_name=implementation,
            secondary_address=secondary,
            funded=False if funding else None,
        )

        if registered and self.chain.has_function(implementation, "initialize"):
            self._initialize(name, implementation, address)
        for config in descriptor.forwarded_configs:
            self._forward(descriptor, config, address)
        if registered:
            calls = self.seeder.build_batch(name, implementation)
            if calls is not None:
                self._apply_parameters(name, calls, address)
        if funding:
            self._fund(name, entry)

    def _read_version(self, descriptor: ModuleDescriptor, address: str) -> Optional[str]:
        """On-chain ``version()`` when the contract has one, else the targeted version."""
        implementation = descriptor.implementation_name
        if not self.chain.has_function(implementation, "version"):
            return descriptor.version

        version = self.chain.call(address, implementation, "version")
        if descriptor.version is not None and band_of(version) != descriptor.band:
            logger.warning(
                f"[{descriptor.logical_name}] {implementation} reports version {version}, "
                f"the step targets {descriptor.version}"
            )
        return version

    def _initialize(self, name: str, implementation: str, address: str, reissue: bool = False) -> CallRoute:
        try:
            return self.router.initialize(name, implementation, address, reissue=reissue)
        except TransactionRevertedError as e:
            raise ForwardCallError(name, e.reason) from e

    def _forward(
        self, descriptor: ModuleDescriptor, config: ForwardedConfig, self_address: str, reissue: bool = False
    ) -> CallRoute:
        target_address = self.ledger.address_of(config.target)
        if target_address is None:
            raise ConfigurationError(
                f"{descriptor.logical_name} forwards {config.function} to {config.target}, which is not deployed"
            )
        target_implementation = self._implementation_of(config.target)
        args = resolve_forwarded_args(config, self_address, self.ledger.address_of(HUB), self.network.chain_family)
        data = self.chain.encode(target_implementation, config.function, args)

        try:
            route = self.router.forward(
                config.target, target_address, data, config.governance_slot, self_address, reissue=reissue
            )
        except TransactionRevertedError as e:
            raise ForwardCallError(config.target, e.reason) from e
        logger.info(f"[{descriptor.logical_name}] {config.target}.{config.function}{tuple(args)} ({route.value})")
        return route

    def _apply_parameters(self, name: str, calls: ForwardCallInput, address: str, reissue: bool = False) -> CallRoute:
        try:
            route = self.router.apply_parameters(calls, address, reissue=reissue)
        except TransactionRevertedError as e:
            raise ForwardCallError(name, e.reason) from e
        logger.info(f"[{name}] {len(calls.encoded_data)} parameter call(s) applied ({route.value})")
        return route

    def _fund(self, name: str, entry: LedgerEntry) -> None:
        self.funder.fund(entry.secondary_address, self.network.capabilities.companion_funding_amount)
        entry.funded = True
        logger.info(f"[{name}] Companion account {entry.secondary_address} funded")

    # -- reconciliation -------------------------------------------------------

    def _reconcile(self, descriptor: ModuleDescriptor, redeployed: Set[str]) -> bool:
        """
        Bring a current module's surroundings back in line; reads only unless
        something disagrees. Returns True if anything was reissued; calls already
        waiting in an unconfirmed multisig proposal do not count.
        """
        name = descriptor.logical_name
        entry = self.ledger.get(name)
        address = entry.evm_address
        implementation = self._deployed_implementation(descriptor, entry)
        registered = descriptor.registration != RegistrationPolicy.DO_NOT_REGISTER

        routes: List[CallRoute] = []

        if registered:
            bound = self.router.hub().resolve(name, descriptor.registration)
            if bound != address:
                logger.warning(f"[{name}] Hub resolves {bound}, ledger has {address}; rebinding")
                routes.append(self.router.bind(name, address, descriptor.registration, reissue=True))

        for config in descriptor.forwarded_configs:
            if config.check_function is not None and not self._forward_applied(config, address):
                routes.append(self._forward(descriptor, config, address, reissue=True))

        if registered:
            if (
                redeployed.intersection(descriptor.dependencies)
                and self.chain.has_function(implementation, "initialize")
            ):
                logger.info(f"[{name}] A dependency was redeployed in this run; reinitializing")
                routes.append(self._initialize(name, implementation, address, reissue=True))

            calls = self.seeder.pending_batch(name, implementation, address)
            if calls is not None:
                routes.append(self._apply_parameters(name, calls, address, reissue=True))

        changed = any(route != CallRoute.PENDING for route in routes)
        if entry.funded is False and self.network.capabilities.fund_companion_accounts:
            logger.warning(f"[{name}] Companion account {entry.secondary_address} was never funded; retrying")
            self._fund(name, entry)
            changed = True
        return changed

    def _forward_applied(self, config: ForwardedConfig, self_address: str) -> bool:
        target_address = self.ledger.address_of(config.target)
        if target_address is None:
            return False
        args, expected = resolve_forwarded_check(
            config, self_address, self.ledger.address_of(HUB), self.network.chain_family
        )
        actual = self.chain.call(target_address, self._implementation_of(config.target), config.check_function, args)
        if actual != expected:
            logger.warning(f"{config.target}.{config.check_function}{tuple(args)} is {actual}, expected {expected}")
            return False
        return True

    def _hand_over_hub(self, previous: Optional[LedgerEntry], decision: ModuleDecision) -> None:
        """Bootstrap ownership: the Hub ends up owned by the current HubController."""
        hub = self.router.hub()
        controller = hub.controller_address
        owner = hub.owner()
        if owner == controller:
            return

        if previous is not None and decision.action != UpgradeAction.SKIP and owner == previous.evm_address:
            old_owner = self.chain.call(previous.evm_address, HUB_CONTROLLER, "owner")
            if old_owner != self.chain.deployer:
                logger.warning(
                    f"Hub is owned by the previous HubController {owner}; its owner {old_owner} "
                    f"must call transferHubOwnership({controller})"
                )
                return
            self.chain.transact(previous.evm_address, HUB_CONTROLLER, "transferHubOwnership", [controller])
            logger.success(f"Hub ownership moved from HubController {owner} to {controller}")
            return

        if owner == self.chain.deployer and self.network.capabilities.transfer_hub_ownership:
            hub.transfer_ownership(controller)
            logger.success(f"Hub ownership transferred to HubController {controller}")

    # -- helpers --------------------------------------------------------------

    def _deployed_implementation(self, descriptor: ModuleDescriptor, entry: Optional[LedgerEntry]) -> str:
        if entry is not None and entry.implementation_name:
            return entry.implementation_name
        return descriptor.implementation_name

    def _implementation_of(self, logical_name: str) -> str:
        entry = self.ledger.get(logical_name)
        if entry is not None and entry.implementation_name:
            return entry.implementation_name
        steps = self.table.steps_for(logical_name)
        if steps:
            return max(steps, key=lambda d: d.band).implementation_name
        return logical_name

    def verify_registry(self) -> List[str]:
        """
        Logical names whose Hub binding differs from the ledger.

        Deprecated aliases are checked in the namespace of their module.
        """
        policies: Dict[str, RegistrationPolicy] = {}
        for name, _ in self.ledger:
            base = name[: -len(DEPRECATED_SUFFIX)] if name.endswith(DEPRECATED_SUFFIX) else name
            steps = self.table.steps_for(base)
            if steps and steps[0].registration != RegistrationPolicy.DO_NOT_REGISTER:
                policies[name] = steps[0].registration

        mismatched = self.router.verify(policies)
        if mismatched:
            logger.warning(f"Hub and ledger disagree on: {', '.join(mismatched)}")
        else:
            logger.success(f"Hub matches the ledger for {len(policies)} module(s)")
        return mismatched
