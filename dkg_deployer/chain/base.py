"""Chain access interface shared by the web3 and simulated backends."""

from abc import ABC, abstractmethod
from typing import Any, Sequence

from ..encoding import ArtifactStore
from ..types import DeploymentReceipt, TransactionReceipt


class ChainBackend(ABC):
    """
    One signer on one chain, submitting one transaction at a time.

    Every mutating method blocks until the transaction is confirmed and
    raises TransactionRevertedError if it reverted. Reads never count
    towards ``transactions_sent``.
    """

    def __init__(self, artifacts: ArtifactStore):
        self.artifacts = artifacts
        self.transactions_sent = 0

    @property
    @abstractmethod
    def deployer(self) -> str:
        """Checksummed address of the signing account."""

    @abstractmethod
    def block_number(self) -> int:
        ...

    @abstractmethod
    def deploy(self, implementation: str, args: Sequence[Any] = ()) -> DeploymentReceipt:
        """Deploy ``implementation`` with constructor ``args`` and wait for the receipt."""

    @abstractmethod
    def call_raw(self, address: str, data: bytes) -> bytes:
        """Execute a read-only call and return the raw return data."""

    @abstractmethod
    def send_raw(self, address: str, data: bytes) -> TransactionReceipt:
        """Send a transaction carrying ``data`` to ``address`` and wait for the receipt."""

    @abstractmethod
    def code_exists(self, address: str) -> bool:
        ...

    def encode(self, implementation: str, function: str, args: Sequence[Any] = ()) -> bytes:
        return self.artifacts.encode_call(implementation, function, args)

    def has_function(self, implementation: str, function: str) -> bool:
        return self.artifacts.has_function(implementation, function)

    def call(self, address: str, implementation: str, function: str, args: Sequence[Any] = ()) -> Any:
        """Read ``function`` on a deployed contract and decode its result."""
        artifact = self.artifacts.get(implementation)
        entry = artifact.find_function(function, args)
        data = artifact.encode_call(function, args)
        return artifact.decode_result(entry, self.call_raw(address, data))

    def transact(
        self, address: str, implementation: str, function: str, args: Sequence[Any] = ()
    ) -> TransactionReceipt:
        """Send ``function(args)`` to a deployed contract."""
        return self.send_raw(address, self.encode(implementation, function, args))
