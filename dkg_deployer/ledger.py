"""
Deployment ledger: what is deployed where, per network.

Persisted as ``<deployments_dir>/<network>_contracts.json``::

    {
        "contracts": {
            "Staking": {
                "evmAddress": "0x...",
                "substrateAddress": "5E...",
                "version": "2.0.0",
                "gitBranch": "main",
                "gitCommitHash": "4f1c...",
                "deploymentBlock": 1234,
                "deploymentTimestamp": 1700000000000,
                "deployed": true
            }
        }
    }

``blockNumber``/``secondaryAddress`` are accepted as aliases on read.
``funded`` is written on networks that fund companion accounts and stays
``false`` until the transfer went through.
Entries are never deleted: a replaced address is kept under
``<logicalName>Deprecated``.
"""

import json
import os
import subprocess
import tempfile
import time
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

from eth_utils import to_checksum_address
from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigurationError
from .types import DEPRECATED_SUFFIX


class LedgerEntry(BaseModel):
    """One logical module as last deployed on a network."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    evm_address: str = Field(..., alias="evmAddress")
    secondary_address: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("substrateAddress", "secondaryAddress", "secondary_address"),
        serialization_alias="substrateAddress",
    )
    version: Optional[str] = None
    git_branch: Optional[str] = Field(default=None, alias="gitBranch")
    git_commit_hash: Optional[str] = Field(default=None, alias="gitCommitHash")
    block_number: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("deploymentBlock", "blockNumber", "block_number"),
        serialization_alias="deploymentBlock",
    )
    deployment_timestamp: Optional[int] = Field(default=None, alias="deploymentTimestamp")
    deployed: bool = True
    implementation_name: Optional[str] = Field(default=None, alias="implementationName")
    funded: Optional[bool] = None

    @field_validator("evm_address")
    @classmethod
    def _checksum(cls, value: str) -> str:
        # hand-edited ledgers may hold lowercase addresses
        return to_checksum_address(value)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def deprecated_name(logical_name: str) -> str:
    return f"{logical_name}{DEPRECATED_SUFFIX}"


class DeploymentLedger:
    """
    In-memory view of a network's ledger file.

    Only one orchestrator run may use a given ledger file at a time.
    """

    def __init__(self, network_name: str, path: Optional[Path] = None, persist: bool = True):
        self.network_name = network_name
        self.path = Path(path) if path else None
        self.persist = persist and self.path is not None
        self.contracts: Dict[str, LedgerEntry] = {}
        self.deployed_timestamp: Optional[int] = None

    @classmethod
    def load(cls, network_name: str, path: Path, persist: bool = True) -> "DeploymentLedger":
        """Read the ledger file for a network, or start an empty ledger."""
        ledger = cls(network_name, path, persist=persist)
        if not ledger.path.exists():
            logger.info(f"No ledger at {ledger.path}, starting with an empty ledger")
            return ledger

        try:
            raw = json.loads(ledger.path.read_text())
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Ledger {ledger.path} is not valid JSON: {e}") from e

        try:
            for name, data in raw.get("contracts", {}).items():
                ledger.contracts[name] = LedgerEntry.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid ledger entry in {ledger.path}: {e}") from e

        ledger.deployed_timestamp = raw.get("deployedTimestamp")
        logger.debug(f"Loaded {len(ledger.contracts)} ledger entries from {ledger.path}")
        return ledger

    def __contains__(self, logical_name: str) -> bool:
        return logical_name in self.contracts

    def __iter__(self) -> Iterator[Tuple[str, LedgerEntry]]:
        return iter(self.contracts.items())

    def __len__(self) -> int:
        return len(self.contracts)

    def get(self, logical_name: str) -> Optional[LedgerEntry]:
        return self.contracts.get(logical_name)

    def in_ledger(self, logical_name: str) -> bool:
        return logical_name in self.contracts

    def is_deployed(self, logical_name: str) -> bool:
        entry = self.contracts.get(logical_name)
        return entry is not None and entry.deployed

    def address_of(self, logical_name: str) -> Optional[str]:
        entry = self.contracts.get(logical_name)
        return entry.evm_address if entry else None

    def record(
        self,
        logical_name: str,
        evm_address: str,
        block_number: Optional[int],
        version: Optional[str] = None,
        implementation_name: Optional[str] = None,
        secondary_address: Optional[str] = None,
        funded: Optional[bool] = None,
    ) -> LedgerEntry:
        """Create or overwrite the entry for a logical name after a deployment."""
        entry = LedgerEntry(
            evm_address=evm_address,
            secondary_address=secondary_address,
            version=version,
            git_branch=current_git_branch(),
            git_commit_hash=current_git_commit(),
            block_number=block_number,
            deployment_timestamp=int(time.time() * 1000),
            deployed=True,
            implementation_name=implementation_name,
            funded=funded,
        )
        self.contracts[logical_name] = entry
        logger.debug(f"Ledger: {logical_name} -> {evm_address} (block {block_number}, version {version})")
        return entry

    def deprecate(self, logical_name: str) -> Optional[LedgerEntry]:
        """Copy the current entry of a logical name to ``<logicalName>Deprecated``."""
        entry = self.contracts.get(logical_name)
        if entry is None:
            return None
        alias = deprecated_name(logical_name)
        self.contracts[alias] = entry.model_copy()
        logger.info(f"Ledger: {logical_name} at {entry.evm_address} kept as {alias}")
        return self.contracts[alias]

    def reset(self) -> None:
        self.contracts = {}

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {name: entry.to_json_dict() for name, entry in self.contracts.items()}

    def to_json_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"contracts": self.snapshot()}
        if self.deployed_timestamp is not None:
            data["deployedTimestamp"] = self.deployed_timestamp
        return data

    def save(self) -> None:
        """Rewrite the ledger file (no-op for non-persistent ledgers)."""
        if not self.persist:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        with os.fdopen(fd, "w") as handle:
            json.dump(self.to_json_dict(), handle, indent=4)
            handle.write("\n")
        os.replace(tmp_name, self.path)
        logger.debug(f"Ledger saved to {self.path}")


def _git(*args: str) -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", *args], capture_output=True, text=True, check=True, timeout=10
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"git {' '.join(args)} unavailable: {e}")
        return None
    return result.stdout.strip() or None


@lru_cache(maxsize=1)
def current_git_branch() -> Optional[str]:
    return _git("rev-parse", "--abbrev-ref", "HEAD")


@lru_cache(maxsize=1)
def current_git_commit() -> Optional[str]:
    return _git("rev-parse", "HEAD")
