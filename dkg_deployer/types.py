"""Shared enums and plain records for the deployment orchestrator."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
DEPRECATED_SUFFIX = "Deprecated"


class Environment(str, Enum):
    """Deployment environment a network belongs to."""
    DEVELOPMENT = "development"
    DEVNET = "devnet"
    TESTNET = "testnet"
    MAINNET = "mainnet"


class RegistrationPolicy(str, Enum):
    """Where a freshly deployed module is bound in the Hub."""
    REGISTER_IN_HUB = "register_in_hub"
    REGISTER_AS_ASSET_STORAGE = "register_as_asset_storage"
    DO_NOT_REGISTER = "do_not_register"


class ConstructorPolicy(str, Enum):
    """What a module's constructor receives."""
    PASS_HUB_ADDRESS = "pass_hub_address"
    PASS_EXPLICIT_ARGS = "pass_explicit_args"
    PASS_NOTHING = "pass_nothing"


class UpgradeState(str, Enum):
    """Ledger state of a logical name relative to the band a step targets."""
    NOT_DEPLOYED = "NotDeployed"
    DEPLOYED_LEGACY = "DeployedLegacy"
    DEPLOYED_CURRENT = "DeployedCurrent"
    DEPLOYED_NEWER = "DeployedNewer"


class UpgradeAction(str, Enum):
    """What the orchestrator does for one module in one run."""
    DEPLOY = "deploy"
    SKIP = "skip"
    REDEPLOY_IN_PLACE = "redeploy_in_place"
    REPLACE = "replace"


class CallRoute(str, Enum):
    """How a mutating registry/configuration call reaches the chain."""
    DIRECT = "direct"                  # deployer owns the target (bootstrap)
    HUB_CONTROLLER = "hub_controller"  # deployer owns the HubController, call is forwarded
    QUEUED = "queued"                  # governed owner, call goes into the governance batch
    PENDING = "pending"                # already in an unconfirmed multisig proposal


@dataclass
class EventLog:
    """A decoded event emitted while executing a transaction."""
    address: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TransactionReceipt:
    """Receipt of a confirmed transaction."""
    tx_hash: str
    block_number: int
    status: int = 1
    events: List[EventLog] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass
class DeploymentReceipt:
    """Receipt of a confirmed contract creation."""
    address: str
    block_number: int
    tx_hash: str


@dataclass(frozen=True)
class ContractStruct:
    """`(name, addr)` pair as the Hub and HubController take it."""
    name: str
    addr: str

    def to_tuple(self) -> Tuple[str, str]:
        return (self.name, self.addr)


@dataclass
class ForwardCallInput:
    """Encoded setter calls destined for one module, keyed by its logical name."""
    contract_name: str
    encoded_data: List[bytes] = field(default_factory=list)

    def to_tuple(self) -> Tuple[str, List[bytes]]:
        return (self.contract_name, list(self.encoded_data))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contractName": self.contract_name,
            "encodedData": ["0x" + data.hex() for data in self.encoded_data],
        }


@dataclass
class ModuleDecision:
    """Outcome of the upgrade decision procedure for one module."""
    logical_name: str
    implementation_name: str
    state: UpgradeState
    action: UpgradeAction
    recorded_version: Optional[str] = None
    reason: str = ""
