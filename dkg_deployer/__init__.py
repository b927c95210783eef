"""DKG EVM deployment orchestrator."""

from .catalog import dkg_table
from .config import NETWORKS, DeployerSettings, NetworkCapabilities, NetworkConfig, get_network
from .descriptors import DescriptorTable, ForwardedConfig, ModuleDescriptor
from .exceptions import (
    ArtifactNotFoundError,
    ChainError,
    ConfigurationError,
    CyclicDependencyError,
    DeployerError,
    ForwardCallError,
    MissingDependencyError,
    NotOwnerError,
    TransactionRevertedError,
    UnknownParameterError,
)
from .ledger import DeploymentLedger, LedgerEntry
from .orchestrator import RunReport, UpgradeOrchestrator
from .parameters import ParametersConfig, ParameterSeeder

__version__ = "0.1.0"
__all__ = [
    "dkg_table",
    "NETWORKS",
    "DeployerSettings",
    "NetworkCapabilities",
    "NetworkConfig",
    "get_network",
    "DescriptorTable",
    "ForwardedConfig",
    "ModuleDescriptor",
    "ArtifactNotFoundError",
    "ChainError",
    "ConfigurationError",
    "CyclicDependencyError",
    "DeployerError",
    "ForwardCallError",
    "MissingDependencyError",
    "NotOwnerError",
    "TransactionRevertedError",
    "UnknownParameterError",
    "DeploymentLedger",
    "LedgerEntry",
    "RunReport",
    "UpgradeOrchestrator",
    "ParametersConfig",
    "ParameterSeeder",
]
