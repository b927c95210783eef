"""
Network and deployer configuration.

Network behaviour is driven by an explicit capability table instead of
matching on network-name prefixes. Secrets and endpoints are resolved from
the environment (optionally a `.env` file) using the per-network variable
names the deployment tooling has always used:

- ``RPC_<NETWORK>``
- ``PRIVATE_KEY_<NETWORK>`` or ``MNEMONIC_<NETWORK>`` (fallback ``MNEMONIC``)
- ``MULTISIG_<NETWORK>``
- ``ACCOUNT_WITH_NEURO_URI_<NETWORK>``
"""

import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ConfigurationError
from .types import Environment


DEVELOPMENT_MNEMONIC = "test test test test test test test test test test test junk"


class NetworkCapabilities(BaseModel):
    """Per-network feature switches consulted by the orchestrator."""

    model_config = ConfigDict(frozen=True)

    direct_hub_writes: bool = Field(
        default=False,
        description="Deployer applies Hub bindings, initialization and parameters itself"
    )
    persist_ledger: bool = Field(default=True, description="Write the ledger file")
    save_after_each_module: bool = Field(
        default=True,
        description="Persist the ledger after every successful module instead of at the end"
    )
    transfer_hub_ownership: bool = Field(
        default=True,
        description="Hand Hub ownership to the HubController during bootstrap"
    )
    multisig_finalize: bool = Field(
        default=False,
        description="Submit the governance batch through the network's MultiSigWallet"
    )
    companion_chain: bool = Field(
        default=False,
        description="Record the companion-chain (SS58) account of every new address"
    )
    fund_companion_accounts: bool = Field(
        default=False,
        description="Send companion-chain funds to newly deployed contract accounts"
    )
    ss58_prefix: int = Field(default=101, ge=0, lt=16384)
    companion_funding_amount: float = Field(default=2.0, gt=0)


class NetworkConfig(BaseModel):
    """Static description of one target network."""

    model_config = ConfigDict(frozen=True)

    name: str
    chain_id: int
    environment: Environment
    gas_limit: int = 10_000_000
    gas_price: Optional[int] = None
    capabilities: NetworkCapabilities = Field(default_factory=NetworkCapabilities)

    @property
    def chain_family(self) -> str:
        """Prefix shared by sibling networks (``otp`` for ``otp_testnet``)."""
        return self.name.split("_")[0]

    @property
    def env_suffix(self) -> str:
        return self.name.upper()

    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT


_DEVELOPMENT = NetworkCapabilities(
    direct_hub_writes=True,
    persist_ledger=False,
    save_after_each_module=False,
)
_DEVNET = NetworkCapabilities()
_GOVERNED = NetworkCapabilities(transfer_hub_ownership=False, multisig_finalize=True)


NETWORKS: Dict[str, NetworkConfig] = {
    "hardhat": NetworkConfig(
        name="hardhat", chain_id=31337, environment=Environment.DEVELOPMENT,
        gas_limit=6_000_000, capabilities=_DEVELOPMENT,
    ),
    "localhost": NetworkConfig(
        name="localhost", chain_id=31337, environment=Environment.DEVELOPMENT,
        gas_limit=6_000_000, capabilities=_DEVELOPMENT,
    ),
    "otp_devnet": NetworkConfig(
        name="otp_devnet", chain_id=2160, environment=Environment.DEVNET, gas_price=1_000_000,
        capabilities=_DEVNET.model_copy(update={"companion_chain": True, "fund_companion_accounts": True}),
    ),
    "otp_testnet": NetworkConfig(
        name="otp_testnet", chain_id=20430, environment=Environment.TESTNET, gas_price=20,
        capabilities=_GOVERNED.model_copy(update={"companion_chain": True}),
    ),
    "otp_mainnet": NetworkConfig(
        name="otp_mainnet", chain_id=2043, environment=Environment.MAINNET, gas_price=10,
        capabilities=_GOVERNED.model_copy(update={"companion_chain": True}),
    ),
    "neuroweb_testnet": NetworkConfig(
        name="neuroweb_testnet", chain_id=20430, environment=Environment.TESTNET, gas_price=20,
        capabilities=_GOVERNED.model_copy(update={"companion_chain": True, "fund_companion_accounts": True}),
    ),
    "neuroweb_mainnet": NetworkConfig(
        name="neuroweb_mainnet", chain_id=2043, environment=Environment.MAINNET, gas_price=10,
        capabilities=_GOVERNED.model_copy(update={"companion_chain": True}),
    ),
    "gnosis_chiado": NetworkConfig(
        name="gnosis_chiado", chain_id=10200, environment=Environment.TESTNET, capabilities=_GOVERNED,
    ),
    "gnosis_mainnet": NetworkConfig(
        name="gnosis_mainnet", chain_id=100, environment=Environment.MAINNET, capabilities=_GOVERNED,
    ),
    "base_sepolia": NetworkConfig(
        name="base_sepolia", chain_id=84532, environment=Environment.TESTNET, capabilities=_GOVERNED,
    ),
    "base_mainnet": NetworkConfig(
        name="base_mainnet", chain_id=8453, environment=Environment.MAINNET, capabilities=_GOVERNED,
    ),
}


def get_network(name: str) -> NetworkConfig:
    """Look up a built-in network by name."""
    try:
        return NETWORKS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown network '{name}'. Known networks: {', '.join(sorted(NETWORKS))}"
        ) from None


class DeployerSettings(BaseModel):
    """Everything one orchestrator run needs to know about its environment."""

    network: NetworkConfig
    rpc_url: Optional[str] = None
    private_key: Optional[str] = None
    mnemonic: Optional[str] = None
    multisig_address: Optional[str] = None
    companion_funding_uri: Optional[str] = None
    deployments_dir: Path = Path("deployments")
    artifacts_dir: Path = Path("abi")

    @classmethod
    def from_env(
        cls,
        network_name: str,
        deployments_dir: Optional[Path] = None,
        artifacts_dir: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[Path] = None,
    ) -> "DeployerSettings":
        """
        Resolve settings for a network from environment variables.

        Args:
            network_name: Built-in network name (e.g. ``otp_testnet``)
            deployments_dir: Directory holding ledgers and parameters.json
            artifacts_dir: Directory holding contract artifacts
            env: Mapping to read instead of ``os.environ`` (tests)
            dotenv_path: Optional .env file loaded before reading ``os.environ``

        Returns:
            DeployerSettings for the network
        """
        if env is None:
            load_dotenv(dotenv_path=dotenv_path)
            env = os.environ

        network = get_network(network_name)
        suffix = network.env_suffix

        def read(key: str) -> Optional[str]:
            value = env.get(key)
            return value if value else None

        rpc_url = read(f"RPC_{suffix}")
        if rpc_url is None and network_name == "localhost":
            rpc_url = "http://localhost:8545"

        mnemonic = read(f"MNEMONIC_{suffix}") or read("MNEMONIC")
        if mnemonic is None and network.is_development():
            mnemonic = DEVELOPMENT_MNEMONIC

        settings = cls(
            network=network,
            rpc_url=rpc_url,
            private_key=read(f"PRIVATE_KEY_{suffix}"),
            mnemonic=mnemonic,
            multisig_address=read(f"MULTISIG_{suffix}"),
            companion_funding_uri=read(f"ACCOUNT_WITH_NEURO_URI_{suffix}"),
            deployments_dir=deployments_dir or Path(env.get("DEPLOYMENTS_DIR", "deployments")),
            artifacts_dir=artifacts_dir or Path(env.get("ARTIFACTS_DIR", "abi")),
        )
        logger.debug(
            f"Loaded settings for {network.name} (chain {network.chain_id}, {network.environment.value})"
        )
        return settings

    def require_rpc(self) -> str:
        if not self.rpc_url:
            raise ConfigurationError(
                f"RPC_{self.network.env_suffix} should be defined in the environment "
                f"for the {self.network.name} blockchain!"
            )
        return self.rpc_url

    def require_signer(self) -> None:
        if not self.private_key and not self.mnemonic:
            raise ConfigurationError(
                f"PRIVATE_KEY_{self.network.env_suffix} or MNEMONIC_{self.network.env_suffix} "
                f"should be defined in the environment for the {self.network.name} blockchain!"
            )

    def require_multisig(self) -> str:
        if not self.multisig_address:
            raise ConfigurationError(
                f"MULTISIG_{self.network.env_suffix} should be defined in the environment "
                f"for the {self.network.name} blockchain!"
            )
        return self.multisig_address

    @property
    def ledger_path(self) -> Path:
        return self.deployments_dir / f"{self.network.name}_contracts.json"

    @property
    def parameters_path(self) -> Path:
        return self.deployments_dir / "parameters.json"
