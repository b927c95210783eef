"""
Hub registry access and routing of mutating registry calls.

Every mutating call made on behalf of the deployer goes through a
CallRouter, which looks up the current Hub owner first and then either
sends the call itself, wraps it in a HubController call, or queues it in
the governance batch.
"""

from typing import Callable, Dict, List, Optional

from loguru import logger

from .chain.base import ChainBackend
from .config import NetworkConfig
from .exceptions import ConfigurationError
from .governance import GovernanceBatch
from .types import ZERO_ADDRESS, CallRoute, ForwardCallInput, RegistrationPolicy, TransactionReceipt


HUB = "Hub"
HUB_CONTROLLER = "HubController"


class HubClient:
    """Typed view of one Hub (and its HubController, once deployed)."""

    def __init__(self, chain: ChainBackend, hub_address: str, controller_address: Optional[str] = None):
        self.chain = chain
        self.address = hub_address
        self.controller_address = controller_address

    def _call(self, function: str, *args):
        return self.chain.call(self.address, HUB, function, args)

    def owner(self) -> str:
        return self._call("owner")

    def controller_owner(self) -> Optional[str]:
        if not self.controller_address:
            return None
        return self.chain.call(self.controller_address, HUB_CONTROLLER, "owner")

    def get_contract_address(self, name: str) -> str:
        return self._call("getContractAddress", name)

    def get_asset_storage_address(self, name: str) -> str:
        return self._call("getAssetStorageAddress", name)

    def is_contract(self, name: str) -> bool:
        return self._call("isContract(string)", name)

    def is_asset_storage(self, name: str) -> bool:
        return self._call("isAssetStorage(string)", name)

    def get_all_contracts(self) -> Dict[str, str]:
        return {name: address for name, address in self._call("getAllContracts")}

    def get_all_asset_storages(self) -> Dict[str, str]:
        return {name: address for name, address in self._call("getAllAssetStorages")}

    def resolve(self, name: str, registration: RegistrationPolicy) -> Optional[str]:
        """Address bound to ``name`` in the namespace of ``registration``; None if unbound."""
        if registration == RegistrationPolicy.REGISTER_AS_ASSET_STORAGE:
            address = self.get_asset_storage_address(name)
        else:
            address = self.get_contract_address(name)
        return None if address == ZERO_ADDRESS else address

    def set_contract_address(self, name: str, address: str) -> TransactionReceipt:
        return self.chain.transact(self.address, HUB, "setContractAddress", [name, address])

    def set_asset_storage_contract_address(self, name: str, address: str) -> TransactionReceipt:
        return self.chain.transact(self.address, HUB, "setAssetStorageAddress", [name, address])

    def forward_call(self, target: str, data: bytes) -> TransactionReceipt:
        return self.chain.transact(self.address, HUB, "forwardCall", [target, data])

    def transfer_ownership(self, new_owner: str) -> TransactionReceipt:
        return self.chain.transact(self.address, HUB, "transferOwnership", [new_owner])


class CallRouter:
    """
    Chooses how each mutating call reaches the chain.

    - ``DIRECT``: the deployer owns the Hub and calls it itself
    - ``HUB_CONTROLLER``: the Hub belongs to a HubController the deployer
      owns, and the network allows the deployer to write directly
    - ``QUEUED``: everything else; the call is added to the governance batch
    - ``PENDING``: queued, but an unconfirmed multisig proposal already
      carries the same change, so nothing is added
    """

    def __init__(
        self,
        chain: ChainBackend,
        network: NetworkConfig,
        batch: GovernanceBatch,
        lookup: Callable[[str], Optional[str]],
    ):
        """
        Args:
            chain: Backend used to read ownership and send calls
            network: Network whose capabilities gate controller writes
            batch: Governance batch receiving queued calls
            lookup: Ledger lookup from logical name to address
        """
        self.chain = chain
        self.network = network
        self.batch = batch
        self.lookup = lookup
        self.pending = GovernanceBatch()

    def hub(self) -> HubClient:
        hub_address = self.lookup(HUB)
        if hub_address is None:
            raise ConfigurationError("Hub is not deployed on this network")
        return HubClient(self.chain, hub_address, self.lookup(HUB_CONTROLLER))

    def detect(self, hub: Optional[HubClient] = None) -> CallRoute:
        """Inspect current ownership; called before every mutating call."""
        hub = hub or self.hub()
        owner = hub.owner()
        deployer = self.chain.deployer

        if owner == deployer:
            route = CallRoute.DIRECT
        elif (
            hub.controller_address
            and owner == hub.controller_address
            and self.network.capabilities.direct_hub_writes
            and hub.controller_owner() == deployer
        ):
            route = CallRoute.HUB_CONTROLLER
        else:
            route = CallRoute.QUEUED
        logger.debug(f"Hub owner {owner}, deployer {deployer}: routing {route.value}")
        return route

    def _controller(self, hub: HubClient, function: str, args: list) -> TransactionReceipt:
        return self.chain.transact(hub.controller_address, HUB_CONTROLLER, function, args)

    def bind(self, name: str, address: str, registration: RegistrationPolicy, reissue: bool = False) -> CallRoute:
        """
        Bind ``name`` to ``address`` in the namespace ``registration`` selects.

        ``reissue`` marks drift repair: a change an unconfirmed proposal
        already carries is not queued again.
        """
        if registration == RegistrationPolicy.DO_NOT_REGISTER:
            raise ConfigurationError(f"{name} is not registered in the Hub")

        hub = self.hub()
        route = self.detect(hub)
        asset_storage = registration == RegistrationPolicy.REGISTER_AS_ASSET_STORAGE

        if route == CallRoute.DIRECT:
            if asset_storage:
                hub.set_asset_storage_contract_address(name, address)
            else:
                hub.set_contract_address(name, address)
        elif route == CallRoute.HUB_CONTROLLER:
            function = "setAssetStorageAddress" if asset_storage else "setContractAddress"
            self._controller(hub, function, [name, address])
        elif reissue and asset_storage and self.pending.has_asset_storage(name, address):
            route = CallRoute.PENDING
        elif asset_storage:
            self.batch.add_asset_storage(name, address)
        elif reissue and self.pending.has_contract(name, address):
            route = CallRoute.PENDING
        else:
            self.batch.add_contract(name, address)

        logger.info(f"[{name}] Bound to {address} in the Hub ({route.value})")
        return route

    def forward(
        self,
        target_name: str,
        target_address: str,
        data: bytes,
        governance_slot: Optional[str] = None,
        slot_address: Optional[str] = None,
        reissue: bool = False,
    ) -> CallRoute:
        """
        Execute ``data`` against a module under the Hub owner's identity.

        Queued calls either land in a dedicated batch slot (hash/score
        function registration takes the implementation address) or in the
        forwarded-call data of ``target_name``.
        """
        hub = self.hub()
        route = self.detect(hub)

        if route == CallRoute.DIRECT:
            hub.forward_call(target_address, data)
        elif route == CallRoute.HUB_CONTROLLER:
            self._controller(hub, "forwardCall", [target_address, data])
        elif governance_slot is not None:
            if reissue and self.pending.has_function(governance_slot, slot_address):
                route = CallRoute.PENDING
            else:
                self.batch.add_function(governance_slot, slot_address)
        elif reissue and self.pending.has_forward_call(target_name, data):
            route = CallRoute.PENDING
        else:
            self.batch.add_forward_call(target_name, data)
        return route

    def initialize(self, name: str, implementation: str, address: str, reissue: bool = False) -> CallRoute:
        """Run ``initialize()`` on a module, or queue it for reinitialization."""
        hub = self.hub()
        route = self.detect(hub)
        if route == CallRoute.QUEUED and reissue and self.pending.has_reinitialization(address):
            route = CallRoute.PENDING
        elif route == CallRoute.QUEUED:
            self.batch.reinitialize(address)
        else:
            data = self.chain.encode(implementation, "initialize")
            if route == CallRoute.DIRECT:
                hub.forward_call(address, data)
            else:
                self._controller(hub, "forwardCall", [address, data])
        applied = route in (CallRoute.DIRECT, CallRoute.HUB_CONTROLLER)
        logger.info(f"[{name}] Initialization {'done' if applied else 'queued'} ({route.value})")
        return route

    def apply_parameters(self, calls: ForwardCallInput, target_address: str, reissue: bool = False) -> CallRoute:
        """
        Apply one module's parameter batch.

        Through the HubController the whole batch is one transaction; with
        direct Hub ownership the calls are sent one by one in table order.
        """
        hub = self.hub()
        route = self.detect(hub)

        if route == CallRoute.DIRECT:
            for data in calls.encoded_data:
                hub.forward_call(target_address, data)
        elif route == CallRoute.HUB_CONTROLLER:
            self._controller(hub, "setAndReinitializeContracts", [[], [], [], [], [], [calls.to_tuple()]])
        else:
            missing = [
                data for data in calls.encoded_data
                if not (reissue and self.pending.has_forward_call(calls.contract_name, data))
            ]
            if missing:
                self.batch.add_forward_calls(ForwardCallInput(calls.contract_name, missing))
            else:
                route = CallRoute.PENDING
        return route

    def verify(self, names: Dict[str, RegistrationPolicy]) -> List[str]:
        """Names whose Hub binding differs from the ledger address."""
        if not names:
            return []
        hub = self.hub()
        mismatched = []
        for name, registration in names.items():
            expected = self.lookup(name)
            actual = hub.resolve(name, registration)
            if expected is None or actual != expected:
                logger.warning(f"[{name}] Hub resolves {actual}, ledger has {expected}")
                mismatched.append(name)
        return mismatched
