"""
In-process stand-in for an EVM chain running the DKG registry contracts.

SimulatedChain executes ABI-encoded calldata against Python models of the
contracts the orchestrator talks to:

- ``Hub``: owner-gated name -> address registry with separate general and
  asset-storage namespaces
- ``HubController``: owner proxy forwarding calls and batch updates into the Hub
- ``MultiSigWallet``: submit/confirm/execute with an owner threshold
- ``HashingProxy`` / ``ScoringProxy``: function-id -> implementation registries
- any other name: a generic hub-dependent module with ``set<X>``/``x()``
  storage, ``initialize()``, ``status()`` and ``version()``

Every transaction runs against a storage snapshot and is rolled back on
revert. One block is mined per transaction.
"""

import copy
import re
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from eth_utils import is_checksum_address, keccak, to_checksum_address
from loguru import logger

from ..descriptors import DescriptorTable
from ..encoding import ArtifactStore, ContractArtifact
from ..exceptions import ArtifactNotFoundError, ConfigurationError, TransactionRevertedError
from ..types import ZERO_ADDRESS, DeploymentReceipt, EventLog, TransactionReceipt
from .base import ChainBackend


# Default anvil/hardhat accounts
ANVIL_ACCOUNTS = [
    "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266",
    "0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
    "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC",
    "0x90F79bf6EB2c4f870365E785982E1f101E93b906",
]

FUNCTION_PROXIES = ("HashingProxy", "ScoringProxy", "ProximityScoringProxy")

# id() of the hash/score function implementations
FUNCTION_IDS = {"SHA256": 1, "Log2PLDSF": 1, "LinearSum": 2}

NOT_HUB_OWNER = "Fn can only be used by hub owner"
NOT_OWNER = "Ownable: caller is not the owner"


class Revert(Exception):
    """Raised inside contract models to revert the current call frame."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


def _require(condition: bool, reason: str) -> None:
    if not condition:
        raise Revert(reason)


# ---------------------------------------------------------------------------
# Contract models
# ---------------------------------------------------------------------------

class SimContract:
    """Base model: dispatches decoded calls to ``fn_<name>`` methods."""

    def __init__(self, chain: "SimulatedChain", address: str, artifact: ContractArtifact, creator: str):
        self.chain = chain
        self.address = address
        self.artifact = artifact
        self.storage: Dict[str, Any] = {"owner": creator}

    def construct(self, args: List[Any]) -> None:
        pass

    def execute(self, sender: str, entry: Dict[str, Any], args: List[Any]) -> Any:
        handler = getattr(self, f"fn_{entry['name']}", None)
        if handler is None:
            return self.fallback(sender, entry, args)
        return handler(sender, *args)

    def fallback(self, sender: str, entry: Dict[str, Any], args: List[Any]) -> Any:
        raise Revert(f"{self.artifact.name}: function {entry['name']} is not supported by the simulation")

    def emit(self, name: str, **args: Any) -> None:
        self.chain.record_event(EventLog(address=self.address, name=name, args=args))

    def only_owner(self, sender: str) -> None:
        _require(sender == self.storage["owner"], NOT_OWNER)

    def fn_owner(self, sender: str) -> str:
        return self.storage["owner"]

    def fn_transferOwnership(self, sender: str, new_owner: str) -> None:
        self.only_owner(sender)
        _require(new_owner != ZERO_ADDRESS, "Ownable: new owner is the zero address")
        previous = self.storage["owner"]
        self.storage["owner"] = new_owner
        self.emit("OwnershipTransferred", previousOwner=previous, newOwner=new_owner)

    def fn_name(self, sender: str) -> str:
        return self.artifact.name

    def fn_version(self, sender: str) -> str:
        return self.artifact.version or "1.0.0"


class SimHub(SimContract):
    """Registry semantics of the Hub contract."""

    def construct(self, args: List[Any]) -> None:
        self.storage["contracts"] = {}
        self.storage["asset_storages"] = {}

    def _set(self, namespace: str, name: str, address: str, new_event: str, changed_event: str) -> None:
        _require(name != "", "NamedContractSet: Name cannot be empty")
        _require(address != ZERO_ADDRESS, "NamedContractSet: Address cannot be 0x0")
        entries = self.storage[namespace]
        event = changed_event if name in entries else new_event
        entries[name] = address
        self.emit(event, contractName=name, newContractAddress=address)

    def fn_setContractAddress(self, sender: str, name: str, address: str) -> None:
        self.only_owner(sender)
        self._set("contracts", name, address, "NewContract", "ContractChanged")

    def fn_setAssetStorageAddress(self, sender: str, name: str, address: str) -> None:
        self.only_owner(sender)
        self._set("asset_storages", name, address, "NewAssetStorage", "AssetStorageChanged")

    def fn_getContractAddress(self, sender: str, name: str) -> str:
        return self.storage["contracts"].get(name, ZERO_ADDRESS)

    def fn_getAssetStorageAddress(self, sender: str, name: str) -> str:
        return self.storage["asset_storages"].get(name, ZERO_ADDRESS)

    @staticmethod
    def _exists(entries: Dict[str, str], key: str) -> bool:
        # overloaded by name and by address
        if is_checksum_address(key):
            return key in entries.values()
        return key in entries

    def fn_isContract(self, sender: str, key: str) -> bool:
        return self._exists(self.storage["contracts"], key)

    def fn_isAssetStorage(self, sender: str, key: str) -> bool:
        return self._exists(self.storage["asset_storages"], key)

    def fn_getAllContracts(self, sender: str) -> List[Tuple[str, str]]:
        return [(name, address) for name, address in self.storage["contracts"].items()]

    def fn_getAllAssetStorages(self, sender: str) -> List[Tuple[str, str]]:
        return [(name, address) for name, address in self.storage["asset_storages"].items()]

    def fn_forwardCall(self, sender: str, target: str, data: bytes) -> bytes:
        self.only_owner(sender)
        return self.chain.internal_call(self.address, target, data)


class SimHubController(SimContract):
    """Owner proxy in front of the Hub."""

    def construct(self, args: List[Any]) -> None:
        self.storage["hub"] = args[0]

    def _hub(self, function: str, *args: Any) -> Any:
        return self.chain.invoke(self.address, self.storage["hub"], function, args)

    def fn_hub(self, sender: str) -> str:
        return self.storage["hub"]

    def fn_transferHubOwnership(self, sender: str, new_owner: str) -> None:
        self.only_owner(sender)
        self._hub("transferOwnership", new_owner)

    def fn_forwardCall(self, sender: str, target: str, data: bytes) -> bytes:
        self.only_owner(sender)
        return self.chain.internal_call(self.address, target, data)

    def fn_setContractAddress(self, sender: str, name: str, address: str) -> None:
        self.only_owner(sender)
        self._hub("setContractAddress", name, address)

    def fn_setAssetStorageAddress(self, sender: str, name: str, address: str) -> None:
        self.only_owner(sender)
        self._hub("setAssetStorageAddress", name, address)

    def _register_functions(self, proxy_name: str, implementations: Sequence[str]) -> None:
        if not implementations:
            return
        proxy = self._hub("getContractAddress", proxy_name)
        _require(proxy != ZERO_ADDRESS, f"{proxy_name} is not registered in the Hub")
        for implementation in implementations:
            function_id = self.chain.invoke(self.address, implementation, "id", ())
            self.chain.invoke(self.address, proxy, "setContractAddress", (function_id, implementation))

    def fn_setAndReinitializeContracts(
        self,
        sender: str,
        new_contracts: Sequence[Tuple[str, str]],
        new_asset_storages: Sequence[Tuple[str, str]],
        new_hash_functions: Sequence[str],
        new_score_functions: Sequence[str],
        contracts_to_reinitialize: Sequence[str],
        forward_calls: Sequence[Tuple[str, Sequence[bytes]]],
    ) -> None:
        self.only_owner(sender)
        for name, address in new_contracts:
            self._hub("setContractAddress", name, address)
        for name, address in new_asset_storages:
            self._hub("setAssetStorageAddress", name, address)
        self._register_functions("HashingProxy", new_hash_functions)
        self._register_functions("ScoringProxy", new_score_functions)
        for address in contracts_to_reinitialize:
            self.chain.invoke(self.address, address, "initialize", ())
        for contract_name, encoded_data in forward_calls:
            if self._hub("isContract", contract_name):
                target = self._hub("getContractAddress", contract_name)
            else:
                target = self._hub("getAssetStorageAddress", contract_name)
            _require(target != ZERO_ADDRESS, f"HubController: {contract_name} is not in the Hub")
            for data in encoded_data:
                self.chain.internal_call(self.address, target, data)


class SimMultiSig(SimContract):
    """Submit/confirm/execute wallet; executes once ``required`` owners confirmed."""

    def construct(self, args: List[Any]) -> None:
        owners, required = args if args else ([self.storage["owner"]], 1)
        self.storage["owners"] = list(owners)
        self.storage["required"] = int(required)
        self.storage["transactions"] = []

    def fn_isOwner(self, sender: str, address: str) -> bool:
        return address in self.storage["owners"]

    def fn_getOwners(self, sender: str) -> List[str]:
        return list(self.storage["owners"])

    def fn_required(self, sender: str) -> int:
        return self.storage["required"]

    def fn_transactionCount(self, sender: str) -> int:
        return len(self.storage["transactions"])

    def fn_transactions(self, sender: str, transaction_id: int) -> Tuple[str, int, bytes, bool]:
        if transaction_id >= len(self.storage["transactions"]):
            return ZERO_ADDRESS, 0, b"", False
        transaction = self.storage["transactions"][transaction_id]
        return transaction["destination"], transaction["value"], transaction["data"], transaction["executed"]

    def fn_submitTransaction(self, sender: str, destination: str, value: int, data: bytes) -> int:
        _require(sender in self.storage["owners"], "MultiSigWallet: caller is not an owner")
        transaction_id = len(self.storage["transactions"])
        self.storage["transactions"].append({
            "destination": destination,
            "value": value,
            "data": bytes(data),
            "confirmations": [],
            "executed": False,
        })
        self.emit("Submission", transactionId=transaction_id)
        self.fn_confirmTransaction(sender, transaction_id)
        return transaction_id

    def fn_confirmTransaction(self, sender: str, transaction_id: int) -> None:
        _require(sender in self.storage["owners"], "MultiSigWallet: caller is not an owner")
        _require(transaction_id < len(self.storage["transactions"]), "MultiSigWallet: unknown transaction")
        transaction = self.storage["transactions"][transaction_id]
        _require(sender not in transaction["confirmations"], "MultiSigWallet: already confirmed")
        transaction["confirmations"].append(sender)
        self.emit("Confirmation", sender=sender, transactionId=transaction_id)

        if not transaction["executed"] and len(transaction["confirmations"]) >= self.storage["required"]:
            if self.chain.try_internal_call(self.address, transaction["destination"], transaction["data"]):
                transaction["executed"] = True
                self.emit("Execution", transactionId=transaction_id)
            else:
                self.emit("ExecutionFailure", transactionId=transaction_id)


class SimHubDependent(SimContract):
    """Base for contracts taking the Hub address as first constructor argument."""

    def construct(self, args: List[Any]) -> None:
        inputs = self.artifact.constructor_inputs()
        if inputs and inputs[0]["type"] == "address" and args:
            self.storage["hub"] = args[0]
        else:
            self.storage["hub"] = None
        self.storage["constructor_args"] = list(args)

    def only_hub_owner(self, sender: str) -> None:
        hub = self.storage["hub"]
        _require(hub is not None, NOT_HUB_OWNER)
        hub_owner = self.chain.invoke(self.address, hub, "owner", ())
        _require(sender in (hub_owner, hub), NOT_HUB_OWNER)

    def fn_hub(self, sender: str) -> str:
        return self.storage["hub"] or ZERO_ADDRESS


class SimFunctionProxy(SimHubDependent):
    """HashingProxy/ScoringProxy: function id -> implementation address."""

    def construct(self, args: List[Any]) -> None:
        super().construct(args)
        self.storage["functions"] = {}

    def fn_setContractAddress(self, sender: str, function_id: int, address: str) -> None:
        self.only_hub_owner(sender)
        _require(address != ZERO_ADDRESS, "Address cannot be 0x0")
        self.storage["functions"][function_id] = address
        self.emit("NewContract", contractName=str(function_id), newContractAddress=address)

    def fn_getContractAddress(self, sender: str, function_id: int) -> str:
        return self.storage["functions"].get(function_id, ZERO_ADDRESS)


class SimModule(SimHubDependent):
    """
    Generic hub-dependent module.

    ``setFoo(v)`` stores ``foo``; ``setFoo(k, v)`` stores ``foo(k)``. Setters
    and ``initialize()`` may only be called by the Hub owner or the Hub.
    """

    def construct(self, args: List[Any]) -> None:
        super().construct(args)
        self.storage["values"] = dict(self.chain.constants.get(self.artifact.name, {}))
        self.storage["initialized"] = False
        self.storage["initializations"] = 0

    def fn_initialize(self, sender: str) -> None:
        self.only_hub_owner(sender)
        self.storage["initialized"] = True
        self.storage["initializations"] += 1

    def fn_status(self, sender: str) -> bool:
        return self.storage["initialized"]

    def fallback(self, sender: str, entry: Dict[str, Any], args: List[Any]) -> Any:
        name = entry["name"]
        if name.startswith("set") and len(name) > 3 and args:
            self.only_hub_owner(sender)
            getter = name[3].lower() + name[4:]
            key = _storage_key(getter, args[:-1])
            self.storage["values"][key] = args[-1]
            return None

        key = _storage_key(name, args)
        if key in self.storage["values"]:
            return self.storage["values"][key]
        return _zero_value(entry.get("outputs", []))


def _storage_key(name: str, args: Sequence[Any]) -> str:
    if not args:
        return name
    return f"{name}({','.join(str(a) for a in args)})"


def _zero_value(outputs: List[Dict[str, Any]]) -> Any:
    def zero(abi_type: str) -> Any:
        if abi_type.endswith("]"):
            return []
        if abi_type == "address":
            return ZERO_ADDRESS
        if abi_type == "bool":
            return False
        if abi_type == "string":
            return ""
        if abi_type.startswith("bytes"):
            return b"" if abi_type == "bytes" else b"\x00" * int(abi_type[5:])
        return 0

    values = [zero(output["type"]) for output in outputs]
    if not values:
        return None
    return values[0] if len(values) == 1 else tuple(values)


MODELS: Dict[str, type] = {
    "Hub": SimHub,
    "HubController": SimHubController,
    "MultiSigWallet": SimMultiSig,
    "HashingProxy": SimFunctionProxy,
    "ScoringProxy": SimFunctionProxy,
    "ProximityScoringProxy": SimFunctionProxy,
}


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------

class SimulatedChain(ChainBackend):
    """Deterministic single-signer chain executing the contract models above."""

    def __init__(
        self,
        artifacts: ArtifactStore,
        deployer: str = ANVIL_ACCOUNTS[0],
        constants: Optional[Dict[str, Dict[str, Any]]] = None,
        start_block: int = 1,
    ):
        super().__init__(artifacts)
        self._sender = to_checksum_address(deployer)
        self._block = start_block
        self._nonces: Dict[str, int] = {}
        self.contracts: Dict[str, SimContract] = {}
        self.constants: Dict[str, Dict[str, Any]] = {
            name: {"id": function_id} for name, function_id in FUNCTION_IDS.items()
        }
        for name, values in (constants or {}).items():
            self.constants.setdefault(name, {}).update(values)
        self._events: List[EventLog] = []

    @property
    def deployer(self) -> str:
        return self._sender

    def block_number(self) -> int:
        return self._block

    def code_exists(self, address: str) -> bool:
        return to_checksum_address(address) in self.contracts

    def contract_at(self, address: str) -> SimContract:
        try:
            return self.contracts[to_checksum_address(address)]
        except KeyError:
            raise TransactionRevertedError(f"no contract at {address}") from None

    @contextmanager
    def impersonate(self, account: str) -> Iterator[None]:
        """Send transactions from another account inside the block."""
        previous = self._sender
        self._sender = to_checksum_address(account)
        try:
            yield
        finally:
            self._sender = previous

    def record_event(self, event: EventLog) -> None:
        self._events.append(event)

    # -- transactions -------------------------------------------------------

    def _next_nonce(self) -> int:
        nonce = self._nonces.get(self._sender, 0)
        self._nonces[self._sender] = nonce + 1
        return nonce

    def _tx_hash(self, nonce: int, payload: bytes) -> str:
        return "0x" + keccak(bytes.fromhex(self._sender[2:]) + nonce.to_bytes(8, "big") + payload).hex()

    def _snapshot(self) -> Tuple[Dict[str, Dict[str, Any]], int]:
        return {a: copy.deepcopy(c.storage) for a, c in self.contracts.items()}, len(self._events)

    def _restore(self, snapshot: Tuple[Dict[str, Dict[str, Any]], int]) -> None:
        storages, event_count = snapshot
        for address, storage in storages.items():
            self.contracts[address].storage = storage
        del self._events[event_count:]

    def deploy(self, implementation: str, args: Sequence[Any] = ()) -> DeploymentReceipt:
        artifact = self.artifacts.get(implementation)
        encoded_args = artifact.encode_constructor(args)
        decoded_args = artifact.decode_constructor(encoded_args)

        nonce = self._next_nonce()
        address = to_checksum_address(
            keccak(bytes.fromhex(self._sender[2:]) + nonce.to_bytes(8, "big"))[12:]
        )
        model = MODELS.get(implementation, SimModule)
        contract = model(self, address, artifact, self._sender)
        try:
            contract.construct(decoded_args)
        except Revert as e:
            raise TransactionRevertedError(e.reason) from None

        self.contracts[address] = contract
        self._block += 1
        self.transactions_sent += 1
        tx_hash = self._tx_hash(nonce, encoded_args)
        logger.debug(f"[sim] {implementation} deployed at {address} (block {self._block})")
        return DeploymentReceipt(address=address, block_number=self._block, tx_hash=tx_hash)

    def send_raw(self, address: str, data: bytes) -> TransactionReceipt:
        snapshot = self._snapshot()
        nonce = self._nonces.get(self._sender, 0)
        tx_hash = self._tx_hash(nonce, bytes(data))
        try:
            self.internal_call(self._sender, address, data)
        except Revert as e:
            self._restore(snapshot)
            raise TransactionRevertedError(e.reason, tx_hash) from None

        self._next_nonce()
        events = self._events[snapshot[1]:]
        self._events = []
        self._block += 1
        self.transactions_sent += 1
        return TransactionReceipt(tx_hash=tx_hash, block_number=self._block, status=1, events=events)

    def call_raw(self, address: str, data: bytes) -> bytes:
        snapshot = self._snapshot()
        try:
            return self.internal_call(self._sender, address, data)
        except Revert as e:
            raise TransactionRevertedError(e.reason) from None
        finally:
            self._restore(snapshot)

    # -- message calls --------------------------------------------------------

    def internal_call(self, sender: str, target: str, data: bytes) -> bytes:
        """Execute calldata against ``target`` with ``msg.sender == sender``."""
        contract = self.contracts.get(to_checksum_address(target))
        if contract is None:
            raise Revert(f"call to non-contract {target}")
        try:
            entry, args = contract.artifact.decode_call(bytes(data))
        except ConfigurationError:
            raise Revert(f"function selector was not recognized by {contract.artifact.name}") from None
        result = contract.execute(to_checksum_address(sender), entry, args)
        return contract.artifact.encode_result(entry, result)

    def try_internal_call(self, sender: str, target: str, data: bytes) -> bool:
        """Internal call whose revert only rolls back its own frame."""
        snapshot = self._snapshot()
        try:
            self.internal_call(sender, target, data)
        except Revert as e:
            logger.debug(f"[sim] inner call to {target} reverted: {e.reason}")
            self._restore(snapshot)
            return False
        return True

    def invoke(self, sender: str, target: str, function: str, args: Sequence[Any]) -> Any:
        """Encoded internal call by function name, returning the decoded result."""
        contract = self.contracts.get(to_checksum_address(target))
        if contract is None:
            raise Revert(f"call to non-contract {target}")
        artifact = contract.artifact
        entry = artifact.find_function(function, args)
        raw = self.internal_call(sender, target, artifact.encode_call(function, args))
        return artifact.decode_result(entry, raw)


# ---------------------------------------------------------------------------
# Artifacts for dry runs
# ---------------------------------------------------------------------------

def _param(abi_type: str, name: str = "") -> Dict[str, Any]:
    return {"internalType": abi_type, "name": name, "type": abi_type}


def _function(name: str, inputs: Iterable[str], outputs: Iterable[str], mutability: str) -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": [_param(t, f"arg{i}") for i, t in enumerate(inputs)],
        "outputs": [_param(t) for t in outputs],
        "stateMutability": mutability,
    }


def module_artifact(
    name: str,
    version: Optional[str] = None,
    constructor: Sequence[str] = ("address",),
    parameters: Optional[Dict[str, Tuple[Sequence[str], str]]] = None,
    initializable: bool = False,
    function_id: bool = False,
) -> ContractArtifact:
    """
    Build an artifact for a simulated module.

    Args:
        name: Implementation name
        version: Value returned by ``version()``; None leaves the function out
        constructor: Constructor input types (hub address first by convention)
        parameters: getter name -> (getter input types, value type); a
            ``set<Getter>`` setter taking the inputs plus the value is added
        initializable: Add ``initialize()`` and ``status()``
        function_id: Add ``id()`` (hash/score function implementations)
    """
    abi: List[Dict[str, Any]] = [{
        "type": "constructor",
        "inputs": [_param(t, f"arg{i}") for i, t in enumerate(constructor)],
        "stateMutability": "nonpayable",
    }]
    abi.append(_function("name", [], ["string"], "pure"))
    if version is not None:
        abi.append(_function("version", [], ["string"], "pure"))
    if constructor and constructor[0] == "address":
        abi.append(_function("hub", [], ["address"], "view"))
    if initializable:
        abi.append(_function("initialize", [], [], "nonpayable"))
        abi.append(_function("status", [], ["bool"], "view"))
    if function_id:
        abi.append(_function("id", [], ["uint8"], "pure"))
    if name in FUNCTION_PROXIES:
        abi.append(_function("setContractAddress", ["uint8", "address"], [], "nonpayable"))
        abi.append(_function("getContractAddress", ["uint8"], ["address"], "view"))
    for getter, (inputs, value_type) in (parameters or {}).items():
        abi.append(_function(getter, inputs, [value_type], "view"))
        setter = "set" + getter[0].upper() + getter[1:]
        abi.append(_function(setter, [*inputs, value_type], [], "nonpayable"))
    return ContractArtifact(name, abi, version=version)


def infer_abi_type(value: Any) -> str:
    """ABI type a configuration value would have on-chain."""
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "uint256"
    if isinstance(value, str):
        if is_checksum_address(value) or (value.startswith("0x") and len(value) == 42):
            return "address"
        if value.isdigit():
            return "uint256"
        if value.startswith("0x"):
            return "bytes"
    if isinstance(value, (list, tuple)):
        inner = infer_abi_type(value[0]) if value else "uint256"
        return f"{inner}[]"
    return "string"


_NOT_INITIALIZABLE_SUFFIXES = ("Storage", "Registry", "Proxy")
_NOT_INITIALIZABLE = ("Hub", "HubController", "Token", "MultiSigWallet", *FUNCTION_IDS)
_VERSION_SUFFIX = re.compile(r"V\d+(U\d+)?$")


def dry_run_synthesizer(
    table: DescriptorTable,
    parameter_specs: Optional[Dict[str, Dict[str, Tuple[Sequence[str], str]]]] = None,
) -> Callable[[str], ContractArtifact]:
    """
    Artifact factory for ``--simulate`` runs without compiled artifacts.

    Constructor types follow each descriptor's arguments; storages, registries
    and proxies are plain, other logic modules are initializable, matching the
    DKG contract layout.
    """
    by_implementation = {d.implementation_name: d for d in table}
    parameter_specs = parameter_specs or {}

    def synthesize(name: str) -> ContractArtifact:
        descriptor = by_implementation.get(name)
        if descriptor is None:
            raise ArtifactNotFoundError(name, "simulation table")

        constructor = [infer_abi_type(arg) for arg in descriptor.constructor_arguments(ZERO_ADDRESS, "sim")]
        parameters = dict(parameter_specs.get(descriptor.logical_name, {}))
        parameters.update(parameter_specs.get(name, {}))
        base_name = _VERSION_SUFFIX.sub("", name)
        initializable = not (base_name.endswith(_NOT_INITIALIZABLE_SUFFIXES) or base_name in _NOT_INITIALIZABLE)
        return module_artifact(
            name,
            version=descriptor.version or "1.0.0",
            constructor=constructor,
            parameters=parameters,
            initializable=initializable,
            function_id=name in FUNCTION_IDS,
        )

    return synthesize
