"""
web3.py backend: a single local signer talking to a JSON-RPC node.

Transactions are built, signed locally with eth_account and sent one at a
time; every send blocks on its receipt. A failing call is detected with a
gas estimate before the transaction is sent, so the revert reason reaches
the operator without spending gas.
"""

from typing import Any, Dict, Optional, Sequence

from eth_account import Account
from eth_utils import to_checksum_address
from loguru import logger
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from ..config import DeployerSettings
from ..encoding import ArtifactStore
from ..exceptions import ArtifactNotFoundError, ChainError, ConfigurationError, TransactionRevertedError
from ..types import DeploymentReceipt, EventLog, TransactionReceipt
from .base import ChainBackend


# No automatic timeout: a stalled transaction blocks the run
RECEIPT_TIMEOUT = 24 * 60 * 60


def load_account(settings: DeployerSettings):
    """Signer for a network, from ``PRIVATE_KEY_<NET>`` or the mnemonic."""
    settings.require_signer()
    if settings.private_key:
        key = settings.private_key
        if not key.startswith("0x"):
            key = "0x" + key
        return Account.from_key(key)

    Account.enable_unaudited_hdwallet_features()
    return Account.from_mnemonic(settings.mnemonic)


class Web3Backend(ChainBackend):
    """ChainBackend over a web3.py HTTP provider."""

    def __init__(
        self,
        settings: DeployerSettings,
        artifacts: ArtifactStore,
        web3: Optional[Web3] = None,
        receipt_timeout: float = RECEIPT_TIMEOUT,
        poll_latency: float = 1.0,
    ):
        super().__init__(artifacts)
        self.network = settings.network
        self.w3 = web3 or Web3(Web3.HTTPProvider(settings.require_rpc(), request_kwargs={"timeout": 60}))
        self.account = load_account(settings)
        self.receipt_timeout = receipt_timeout
        self.poll_latency = poll_latency

        # address -> implementation name, for decoding receipt logs
        self._known: Dict[str, str] = {}

        chain_id = self.w3.eth.chain_id
        if chain_id != self.network.chain_id:
            raise ConfigurationError(
                f"RPC endpoint for {self.network.name} reports chain id {chain_id}, "
                f"expected {self.network.chain_id}"
            )
        logger.info(f"Connected to {self.network.name} (chain {chain_id}) as {self.deployer}")

    @property
    def deployer(self) -> str:
        return self.account.address

    def block_number(self) -> int:
        return self.w3.eth.block_number

    def code_exists(self, address: str) -> bool:
        return len(self.w3.eth.get_code(to_checksum_address(address))) > 0

    def remember(self, address: str, implementation: str) -> None:
        self._known[to_checksum_address(address)] = implementation

    def deploy(self, implementation: str, args: Sequence[Any] = ()) -> DeploymentReceipt:
        artifact = self.artifacts.get(implementation)
        if not artifact.bytecode:
            raise ArtifactNotFoundError(implementation, "artifact has no bytecode")

        data = bytes.fromhex(artifact.bytecode.removeprefix("0x")) + artifact.encode_constructor(args)
        logger.info(f"Deploying {implementation}...")
        receipt = self._send(None, data)

        address = receipt["contractAddress"]
        if address is None:
            raise ChainError(f"Deployment of {implementation} returned no contract address")
        address = to_checksum_address(address)
        self.remember(address, implementation)
        logger.success(f"{implementation} deployed at {address} (block {receipt['blockNumber']})")
        return DeploymentReceipt(
            address=address,
            block_number=receipt["blockNumber"],
            tx_hash=receipt["transactionHash"].to_0x_hex(),
        )

    def call_raw(self, address: str, data: bytes) -> bytes:
        try:
            return bytes(self.w3.eth.call({"to": to_checksum_address(address), "data": data}))
        except ContractLogicError as e:
            raise TransactionRevertedError(e.message or str(e)) from e

    def transact(self, address: str, implementation: str, function: str, args: Sequence[Any] = ()) -> TransactionReceipt:
        self.remember(address, implementation)
        return super().transact(address, implementation, function, args)

    def send_raw(self, address: str, data: bytes) -> TransactionReceipt:
        receipt = self._send(to_checksum_address(address), data)
        return TransactionReceipt(
            tx_hash=receipt["transactionHash"].to_0x_hex(),
            block_number=receipt["blockNumber"],
            status=receipt["status"],
            events=self._decode_logs(receipt["logs"]),
        )

    def _send(self, to: Optional[str], data: bytes):
        tx: Dict[str, Any] = {
            "from": self.deployer,
            "data": data,
            "value": 0,
        }
        if to is not None:
            tx["to"] = to

        try:
            self.w3.eth.estimate_gas(tx)
        except ContractLogicError as e:
            raise TransactionRevertedError(e.message or str(e)) from e

        tx.update({
            "nonce": self.w3.eth.get_transaction_count(self.deployer, "pending"),
            "chainId": self.network.chain_id,
            "gas": self.network.gas_limit,
            "gasPrice": self.network.gas_price or self.w3.eth.gas_price,
        })

        signed = self.account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        self.transactions_sent += 1
        logger.info(f"Transaction sent: {tx_hash.to_0x_hex()}")

        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout, poll_latency=self.poll_latency
            )
        except TimeExhausted as e:
            raise ChainError(f"No receipt for {tx_hash.to_0x_hex()}: {e}") from e

        if receipt["status"] != 1:
            raise TransactionRevertedError("execution reverted", tx_hash.to_0x_hex())
        return receipt

    def _decode_logs(self, logs) -> list:
        events = []
        for log in logs:
            address = to_checksum_address(log["address"])
            implementation = self._known.get(address)
            if implementation is None:
                continue
            decoded = self.artifacts.get(implementation).decode_log(log["topics"], log["data"])
            if decoded:
                events.append(EventLog(address=address, name=decoded[0], args=decoded[1]))
        return events
