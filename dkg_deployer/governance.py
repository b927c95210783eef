"""
Governance batch: Hub changes the deployer may not apply itself.

When the registry is governed, a run collects its bindings, function
registrations, reinitializations and parameter calls in one
GovernanceBatch. At the end of the run the batch becomes a single
``HubController.setAndReinitializeContracts`` call, submitted through the
network's MultiSigWallet (or sent directly while the deployer still owns
the HubController).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from .chain.base import ChainBackend
from .config import DeployerSettings
from .exceptions import ConfigurationError, NotOwnerError
from .types import ContractStruct, ForwardCallInput


HASH_FUNCTIONS = "hash_functions"
SCORE_FUNCTIONS = "score_functions"


@dataclass
class GovernanceBatch:
    """Arguments of one ``setAndReinitializeContracts`` call, built up over a run."""

    new_contracts: List[ContractStruct] = field(default_factory=list)
    new_asset_storages: List[ContractStruct] = field(default_factory=list)
    hash_functions: List[str] = field(default_factory=list)
    score_functions: List[str] = field(default_factory=list)
    contracts_to_reinitialize: List[str] = field(default_factory=list)
    forward_calls: List[ForwardCallInput] = field(default_factory=list)

    @staticmethod
    def _upsert(entries: List[ContractStruct], name: str, address: str) -> None:
        # a later binding for the same name in the same run wins
        entries[:] = [e for e in entries if e.name != name]
        entries.append(ContractStruct(name, address))

    def add_contract(self, name: str, address: str) -> None:
        self._upsert(self.new_contracts, name, address)

    def add_asset_storage(self, name: str, address: str) -> None:
        self._upsert(self.new_asset_storages, name, address)

    def add_function(self, slot: str, address: str) -> None:
        if slot == HASH_FUNCTIONS:
            target = self.hash_functions
        elif slot == SCORE_FUNCTIONS:
            target = self.score_functions
        else:
            raise ConfigurationError(f"Unknown governance slot: {slot}")
        if address not in target:
            target.append(address)

    def reinitialize(self, address: str) -> None:
        if address not in self.contracts_to_reinitialize:
            self.contracts_to_reinitialize.append(address)

    def add_forward_call(self, contract_name: str, data: bytes) -> None:
        self.add_forward_calls(ForwardCallInput(contract_name, [data]))

    def add_forward_calls(self, calls: ForwardCallInput) -> None:
        """Append encoded calls, merged with earlier calls for the same module."""
        for existing in self.forward_calls:
            if existing.contract_name == calls.contract_name:
                existing.encoded_data.extend(calls.encoded_data)
                return
        self.forward_calls.append(ForwardCallInput(calls.contract_name, list(calls.encoded_data)))

    @classmethod
    def from_args(cls, args: List[Any]) -> "GovernanceBatch":
        """Rebuild a batch from decoded ``setAndReinitializeContracts`` arguments."""
        contracts, asset_storages, hash_functions, score_functions, reinitialize, forward_calls = args
        return cls(
            new_contracts=[ContractStruct(name, addr) for name, addr in contracts],
            new_asset_storages=[ContractStruct(name, addr) for name, addr in asset_storages],
            hash_functions=list(hash_functions),
            score_functions=list(score_functions),
            contracts_to_reinitialize=list(reinitialize),
            forward_calls=[ForwardCallInput(name, [bytes(d) for d in data]) for name, data in forward_calls],
        )

    def merge(self, other: "GovernanceBatch") -> None:
        for c in other.new_contracts:
            self.add_contract(c.name, c.addr)
        for c in other.new_asset_storages:
            self.add_asset_storage(c.name, c.addr)
        for address in other.hash_functions:
            self.add_function(HASH_FUNCTIONS, address)
        for address in other.score_functions:
            self.add_function(SCORE_FUNCTIONS, address)
        for address in other.contracts_to_reinitialize:
            self.reinitialize(address)
        for calls in other.forward_calls:
            self.add_forward_calls(calls)

    def has_contract(self, name: str, address: str) -> bool:
        return any(c.name == name and c.addr == address for c in self.new_contracts)

    def has_asset_storage(self, name: str, address: str) -> bool:
        return any(c.name == name and c.addr == address for c in self.new_asset_storages)

    def has_function(self, slot: str, address: str) -> bool:
        return address in (self.hash_functions if slot == HASH_FUNCTIONS else self.score_functions)

    def has_reinitialization(self, address: str) -> bool:
        return address in self.contracts_to_reinitialize

    def has_forward_call(self, contract_name: str, data: bytes) -> bool:
        return any(
            f.contract_name == contract_name and data in f.encoded_data for f in self.forward_calls
        )

    def is_empty(self) -> bool:
        return not any([
            self.new_contracts,
            self.new_asset_storages,
            self.hash_functions,
            self.score_functions,
            self.contracts_to_reinitialize,
            self.forward_calls,
        ])

    def to_args(self) -> List[Any]:
        return [
            [c.to_tuple() for c in self.new_contracts],
            [c.to_tuple() for c in self.new_asset_storages],
            list(self.hash_functions),
            list(self.score_functions),
            list(self.contracts_to_reinitialize),
            [f.to_tuple() for f in self.forward_calls],
        ]

    def summary(self) -> Dict[str, Any]:
        return {
            "newContracts": [{"name": c.name, "addr": c.addr} for c in self.new_contracts],
            "newAssetStorageContracts": [{"name": c.name, "addr": c.addr} for c in self.new_asset_storages],
            "newHashFunctions": list(self.hash_functions),
            "newScoreFunctions": list(self.score_functions),
            "contractsForReinitialization": list(self.contracts_to_reinitialize),
            "setParametersEncodedData": [f.to_dict() for f in self.forward_calls],
        }

    def log_summary(self) -> None:
        summary = self.summary()
        logger.info(f"New or redeployed contracts: {summary['newContracts']}")
        logger.info(f"New or redeployed Asset Storage contracts: {summary['newAssetStorageContracts']}")
        logger.info(f"New or redeployed hash functions set in the proxy: {summary['newHashFunctions']}")
        logger.info(f"New or redeployed score functions set in the proxy: {summary['newScoreFunctions']}")
        logger.info(f"Contracts for reinitialization: {summary['contractsForReinitialization']}")
        logger.info(f"Encoded data for parameters settings: {summary['setParametersEncodedData']}")


@dataclass
class FinalizationResult:
    """How a non-empty batch was handed over."""
    route: str  # "multisig" or "controller"
    tx_hash: Optional[str]  # None when an identical proposal was already pending
    calldata: bytes
    transaction_id: Optional[int] = None


class GovernanceFinalizer:
    """Turns a GovernanceBatch into its single on-chain call."""

    def __init__(self, chain: ChainBackend, settings: DeployerSettings):
        self.chain = chain
        self.settings = settings

    def encode(self, batch: GovernanceBatch) -> bytes:
        return self.chain.encode("HubController", "setAndReinitializeContracts", batch.to_args())

    def pending_proposals(self, controller_address: Optional[str]) -> List[Tuple[int, bytes]]:
        """Unexecuted multisig transactions addressed to the HubController, as ``(id, calldata)``."""
        capabilities = self.settings.network.capabilities
        if not capabilities.multisig_finalize or not self.settings.multisig_address or controller_address is None:
            return []

        multisig = self.settings.multisig_address
        proposals = []
        for transaction_id in range(self.chain.call(multisig, "MultiSigWallet", "transactionCount")):
            destination, _, data, executed = self.chain.call(
                multisig, "MultiSigWallet", "transactions", [transaction_id]
            )
            if not executed and destination == controller_address:
                proposals.append((transaction_id, bytes(data)))
        return proposals

    def pending(self, controller_address: Optional[str]) -> GovernanceBatch:
        """
        Everything the unexecuted HubController proposals of the multisig
        would apply, merged into one batch.
        """
        controller = self.chain.artifacts.get("HubController")
        pending = GovernanceBatch()
        for transaction_id, data in self.pending_proposals(controller_address):
            try:
                entry, args = controller.decode_call(data)
            except ConfigurationError:
                logger.warning(f"[Multisig] Transaction {transaction_id} is not a HubController call; ignored")
                continue
            if entry["name"] != "setAndReinitializeContracts":
                continue
            logger.info(f"[Multisig] Transaction {transaction_id} awaits confirmation")
            pending.merge(GovernanceBatch.from_args(args))
        return pending

    def finalize(self, batch: GovernanceBatch, controller_address: Optional[str]) -> Optional[FinalizationResult]:
        """
        Submit the batch; an empty batch sends nothing.

        Raises:
            ConfigurationError: No HubController, or ``MULTISIG_<NET>`` missing
            NotOwnerError: Nobody this run can act for owns the HubController
        """
        if batch.is_empty():
            logger.info("No Hub changes to submit")
            return None
        if controller_address is None:
            raise ConfigurationError("Governance batch is not empty but no HubController is deployed")

        batch.log_summary()
        calldata = self.encode(batch)
        logger.info(f"HubController: {controller_address}")

        if self.settings.network.capabilities.multisig_finalize:
            multisig = self.settings.require_multisig()
            logger.info(f"MultiSigWallet: {multisig}")
            for transaction_id, data in self.pending_proposals(controller_address):
                if data == calldata:
                    logger.info(f"[Multisig] Identical transaction {transaction_id} already awaits confirmation")
                    return FinalizationResult("multisig", None, calldata, transaction_id)

            receipt = self.chain.transact(multisig, "MultiSigWallet", "submitTransaction", [controller_address, 0, calldata])

            transaction_id = next(
                (e.args.get("transactionId") for e in receipt.events if e.name == "Submission"), None
            )
            logger.success(
                f"[Multisig] HubController.setAndReinitializeContracts Transaction ID: {transaction_id}"
            )
            logger.info("Other multisig owners must confirm the transaction before it executes")
            return FinalizationResult("multisig", receipt.tx_hash, calldata, transaction_id)

        owner = self.chain.call(controller_address, "HubController", "owner")
        if owner != self.chain.deployer:
            logger.error(f"HubController calldata for its owner {owner}: 0x{calldata.hex()}")
            raise NotOwnerError(
                f"HubController at {controller_address} is owned by {owner}, not by the deployer "
                f"{self.chain.deployer}; submit the logged calldata from the owner account"
            )

        receipt = self.chain.send_raw(controller_address, calldata)
        logger.success(f"HubController.setAndReinitializeContracts applied in {receipt.tx_hash}")
        return FinalizationResult("controller", receipt.tx_hash, calldata)
