"""
Companion (Substrate) chain helpers for NeuroWeb/OriginTrail Parachain.

Contracts deployed on the EVM side of the parachain own a Substrate
account derived from their address. The deployer records that account in
the ledger and, where the network requires it, funds it with native
tokens so the contract can pay existential deposits.
"""

import hashlib

import base58
from eth_utils import to_bytes, to_checksum_address
from loguru import logger

from .config import DeployerSettings
from .exceptions import ChainError, ConfigurationError


NEUROWEB_SS58_PREFIX = 101
TOKEN_DECIMALS = 12


def ss58_encode(account_id: bytes, ss58_prefix: int = NEUROWEB_SS58_PREFIX) -> str:
    """SS58 address of a 32-byte account id."""
    if len(account_id) != 32:
        raise ValueError(f"Account id must be 32 bytes, got {len(account_id)}")
    if not 0 <= ss58_prefix < 16384 or ss58_prefix in (46, 47):
        raise ValueError(f"Invalid SS58 prefix: {ss58_prefix}")

    if ss58_prefix < 64:
        prefix = bytes([ss58_prefix])
    else:
        prefix = bytes([
            ((ss58_prefix & 0b1111_1100) >> 2) | 0b0100_0000,
            (ss58_prefix >> 8) | ((ss58_prefix & 0b11) << 6),
        ])

    payload = prefix + account_id
    checksum = hashlib.blake2b(b"SS58PRE" + payload, digest_size=64).digest()[:2]
    return base58.b58encode(payload + checksum).decode()


def convert_evm_address(evm_address: str, ss58_prefix: int = NEUROWEB_SS58_PREFIX) -> str:
    """
    Substrate account of an EVM address under the Frontier hashed mapping:
    ``blake2_256("evm:" + address)``, SS58-encoded.
    """
    address_bytes = to_bytes(hexstr=to_checksum_address(evm_address))
    account_id = hashlib.blake2b(b"evm:" + address_bytes, digest_size=32).digest()
    return ss58_encode(account_id, ss58_prefix)


class SubstrateFunder:
    """Sends native tokens to companion accounts with ``Balances.transfer_keep_alive``."""

    def __init__(self, settings: DeployerSettings):
        self.settings = settings
        if not settings.companion_funding_uri:
            raise ConfigurationError(
                f"ACCOUNT_WITH_NEURO_URI_{settings.network.env_suffix} should be defined in the "
                f"environment for the {settings.network.name} blockchain!"
            )
        self._substrate = None
        self._keypair = None

    def _connect(self):
        if self._substrate is None:
            try:
                from substrateinterface import Keypair, SubstrateInterface
            except ImportError:
                raise ConfigurationError(
                    "Funding companion accounts needs substrate-interface: "
                    "pip install 'dkg-evm-deployer[substrate]'"
                ) from None
            self._substrate = SubstrateInterface(
                url=self.settings.require_rpc(),
                ss58_format=self.settings.network.capabilities.ss58_prefix,
            )
            self._keypair = Keypair.create_from_uri(self.settings.companion_funding_uri)
        return self._substrate

    def fund(self, secondary_address: str, amount: float) -> str:
        """Transfer ``amount`` tokens and wait for inclusion; returns the extrinsic hash."""
        substrate = self._connect()
        call = substrate.compose_call(
            call_module="Balances",
            call_function="transfer_keep_alive",
            call_params={"dest": secondary_address, "value": int(amount * 10 ** TOKEN_DECIMALS)},
        )
        extrinsic = substrate.create_signed_extrinsic(call=call, keypair=self._keypair)
        receipt = substrate.submit_extrinsic(extrinsic, wait_for_inclusion=True)
        if not receipt.is_success:
            raise ChainError(f"Funding {secondary_address} failed: {receipt.error_message}")

        logger.info(f"{amount} Neuro sent to contract at address {secondary_address}. "
                    f"Transaction hash: {receipt.extrinsic_hash}")
        return receipt.extrinsic_hash
