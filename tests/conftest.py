"""
Test fixtures for the DKG deployer.

Everything runs against the in-process SimulatedChain with synthesized
artifacts, so no node or compiled contracts are needed:

    pytest tests/ -v
"""

from pathlib import Path
from typing import Callable, Dict, Optional

import pytest

from dkg_deployer.chain.simulated import ANVIL_ACCOUNTS, SimulatedChain, dry_run_synthesizer
from dkg_deployer.config import DeployerSettings, NetworkConfig, get_network
from dkg_deployer.descriptors import DescriptorTable, ForwardedConfig, ModuleDescriptor
from dkg_deployer.encoding import ArtifactStore
from dkg_deployer.exceptions import ChainError
from dkg_deployer.governance import HASH_FUNCTIONS
from dkg_deployer.ledger import DeploymentLedger
from dkg_deployer.orchestrator import UpgradeOrchestrator
from dkg_deployer.parameters import ParametersConfig
from dkg_deployer.types import ConstructorPolicy, RegistrationPolicy


DEPLOYER = ANVIL_ACCOUNTS[0]
SECOND_OWNER = ANVIL_ACCOUNTS[1]
OUTSIDER = ANVIL_ACCOUNTS[2]

RELEASE_EPOCH = 42

# getter -> (getter input types, value type) for synthesized artifacts
PARAMETER_SPECS = {
    "ParametersStorage": {"releaseEpoch": ([], "uint256")},
}

PARAMETERS = {
    "development": {"ParametersStorage": {"releaseEpoch": RELEASE_EPOCH}},
    "devnet": {"ParametersStorage": {"releaseEpoch": RELEASE_EPOCH}},
    "testnet": {"ParametersStorage": {"releaseEpoch": RELEASE_EPOCH}},
}


def step(logical_name: str, *dependencies: str, tags=("v1", "v2"), **kwargs) -> ModuleDescriptor:
    """Descriptor with Hub-address constructor and Hub registration by default."""
    return ModuleDescriptor(
        logical_name=logical_name,
        dependencies=dependencies if dependencies or logical_name == "Hub" else ("Hub",),
        tags=frozenset(tags) | {logical_name},
        **kwargs,
    )


HUB_STEP = step(
    "Hub",
    constructor=ConstructorPolicy.PASS_NOTHING,
    registration=RegistrationPolicy.DO_NOT_REGISTER,
)


# A small table covering every registration/constructor policy and both bands
MODULES = [
    HUB_STEP,
    step("HubController", registration=RegistrationPolicy.DO_NOT_REGISTER),
    step("ParametersStorage"),
    step("HashingProxy"),
    step(
        "SHA256",
        "HashingProxy",
        constructor=ConstructorPolicy.PASS_NOTHING,
        forwarded_configs=(
            ForwardedConfig(
                target="HashingProxy",
                function="setContractAddress",
                args=(1, "$self"),
                governance_slot=HASH_FUNCTIONS,
                check_function="getContractAddress",
                check_args=(1,),
            ),
        ),
    ),
    step("ContentAssetStorage", registration=RegistrationPolicy.REGISTER_AS_ASSET_STORAGE),
    step("Staking", "Hub", "ParametersStorage", tags=("v1",)),
    step("Staking", "Hub", "ParametersStorage", tags=("v2",), implementation_name="StakingV2", version="2.0.0"),
    step("Profile", "Hub", "Staking", "ParametersStorage"),
]


@pytest.fixture
def table() -> DescriptorTable:
    """The full test table, both bands."""
    return DescriptorTable(MODULES)


@pytest.fixture
def artifacts(table: DescriptorTable) -> ArtifactStore:
    """Package ABIs for the registry contracts, synthesized artifacts for the rest."""
    return ArtifactStore([], synthesize=dry_run_synthesizer(table, PARAMETER_SPECS))


@pytest.fixture
def chain(artifacts: ArtifactStore) -> SimulatedChain:
    return SimulatedChain(artifacts, deployer=DEPLOYER)


@pytest.fixture
def parameters() -> ParametersConfig:
    return ParametersConfig(PARAMETERS)


@pytest.fixture
def deployments_dir(tmp_path: Path) -> Path:
    path = tmp_path / "deployments"
    path.mkdir()
    return path


def make_settings(network_name: str, deployments_dir: Path, **overrides) -> DeployerSettings:
    """Settings for a built-in network with capability overrides applied."""
    network: NetworkConfig = get_network(network_name)
    capabilities = network.capabilities.model_copy(update=overrides)
    return DeployerSettings(
        network=network.model_copy(update={"capabilities": capabilities}),
        deployments_dir=deployments_dir,
    )


@pytest.fixture
def settings(deployments_dir: Path) -> DeployerSettings:
    """Development network, ledger saved after every module."""
    return make_settings("hardhat", deployments_dir, persist_ledger=True, save_after_each_module=True)


@pytest.fixture
def ledger(settings: DeployerSettings) -> DeploymentLedger:
    return DeploymentLedger.load(settings.network.name, settings.ledger_path)


@pytest.fixture
def make_orchestrator(
    chain: SimulatedChain,
    table: DescriptorTable,
    parameters: ParametersConfig,
) -> Callable[..., UpgradeOrchestrator]:
    """
    Build an orchestrator over the shared chain.

    Each call reloads the ledger from disk, like a fresh process would.
    """

    def factory(
        settings: DeployerSettings,
        tags: Optional[list] = None,
        only: Optional[list] = None,
        funder=None,
        run_table: Optional[DescriptorTable] = None,
    ) -> UpgradeOrchestrator:
        selected = run_table if run_table is not None else table.select(tags=tags, only=only)
        ledger = DeploymentLedger.load(settings.network.name, settings.ledger_path)
        return UpgradeOrchestrator(settings, chain, selected, ledger, parameters, funder=funder)

    return factory


class RecordingFunder:
    """Companion-chain funder double that remembers every transfer."""

    def __init__(self, failures: int = 0):
        self.transfers: Dict[str, float] = {}
        self.failures = failures

    def fund(self, secondary_address: str, amount: float) -> str:
        if self.failures > 0:
            self.failures -= 1
            raise ChainError(f"Transfer to {secondary_address} was not included")
        self.transfers[secondary_address] = amount
        return "0x" + "00" * 32
