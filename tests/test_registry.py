"""Hub registry semantics and call routing."""

import pytest

from dkg_deployer.chain.simulated import SimulatedChain
from dkg_deployer.config import get_network
from dkg_deployer.exceptions import ConfigurationError, TransactionRevertedError
from dkg_deployer.governance import GovernanceBatch
from dkg_deployer.registry import CallRouter, HubClient
from dkg_deployer.types import ZERO_ADDRESS, CallRoute, RegistrationPolicy

from .conftest import DEPLOYER, OUTSIDER, SECOND_OWNER


@pytest.fixture
def hub(chain: SimulatedChain) -> HubClient:
    hub_address = chain.deploy("Hub").address
    controller_address = chain.deploy("HubController", [hub_address]).address
    return HubClient(chain, hub_address, controller_address)


def _router(chain: SimulatedChain, hub: HubClient, network: str = "hardhat", batch=None) -> CallRouter:
    addresses = {"Hub": hub.address, "HubController": hub.controller_address}
    return CallRouter(chain, get_network(network), batch or GovernanceBatch(), addresses.get)


class TestHub:
    """Name -> address registry."""

    def test_set_and_get(self, hub: HubClient):
        receipt = hub.set_contract_address("Staking", SECOND_OWNER)

        assert hub.get_contract_address("Staking") == SECOND_OWNER
        assert hub.is_contract("Staking")
        assert [e.name for e in receipt.events] == ["NewContract"]

    def test_rebinding_emits_contract_changed(self, hub: HubClient):
        hub.set_contract_address("Staking", SECOND_OWNER)
        receipt = hub.set_contract_address("Staking", OUTSIDER)

        assert receipt.events[0].name == "ContractChanged"
        assert receipt.events[0].args == {"contractName": "Staking", "newContractAddress": OUTSIDER}
        assert hub.get_all_contracts() == {"Staking": OUTSIDER}

    def test_asset_storages_are_a_separate_namespace(self, hub: HubClient):
        hub.set_asset_storage_contract_address("ContentAssetStorage", SECOND_OWNER)

        assert hub.is_asset_storage("ContentAssetStorage")
        assert not hub.is_contract("ContentAssetStorage")
        assert hub.resolve("ContentAssetStorage", RegistrationPolicy.REGISTER_AS_ASSET_STORAGE) == SECOND_OWNER
        assert hub.resolve("ContentAssetStorage", RegistrationPolicy.REGISTER_IN_HUB) is None

    def test_unbound_name_resolves_to_zero(self, hub: HubClient):
        assert hub.get_contract_address("Profile") == ZERO_ADDRESS
        assert hub.resolve("Profile", RegistrationPolicy.REGISTER_IN_HUB) is None

    def test_zero_address_reverts(self, hub: HubClient):
        with pytest.raises(TransactionRevertedError):
            hub.set_contract_address("Staking", ZERO_ADDRESS)

    def test_empty_name_reverts(self, hub: HubClient):
        with pytest.raises(TransactionRevertedError):
            hub.set_contract_address("", SECOND_OWNER)

    def test_only_owner_may_write(self, chain: SimulatedChain, hub: HubClient):
        with chain.impersonate(OUTSIDER):
            with pytest.raises(TransactionRevertedError) as exc_info:
                hub.set_contract_address("Staking", SECOND_OWNER)

        assert "not the owner" in exc_info.value.reason
        assert hub.get_contract_address("Staking") == ZERO_ADDRESS

    def test_reverted_transaction_is_not_counted(self, chain: SimulatedChain, hub: HubClient):
        sent = chain.transactions_sent
        with pytest.raises(TransactionRevertedError):
            hub.set_contract_address("Staking", ZERO_ADDRESS)

        assert chain.transactions_sent == sent


class TestCallRouter:
    """Route selection from current ownership."""

    def test_deployer_owns_the_hub(self, chain: SimulatedChain, hub: HubClient):
        assert _router(chain, hub).detect() == CallRoute.DIRECT

    def test_deployer_owns_the_controller(self, chain: SimulatedChain, hub: HubClient):
        hub.transfer_ownership(hub.controller_address)

        assert _router(chain, hub).detect() == CallRoute.HUB_CONTROLLER
        assert _router(chain, hub, network="otp_devnet").detect() == CallRoute.QUEUED

    def test_governed_controller(self, chain: SimulatedChain, hub: HubClient):
        hub.transfer_ownership(hub.controller_address)
        chain.transact(hub.controller_address, "HubController", "transferOwnership", [OUTSIDER])

        assert hub.controller_owner() == OUTSIDER
        assert _router(chain, hub).detect() == CallRoute.QUEUED

    def test_bind_through_the_controller(self, chain: SimulatedChain, hub: HubClient):
        hub.transfer_ownership(hub.controller_address)

        route = _router(chain, hub).bind("Staking", SECOND_OWNER, RegistrationPolicy.REGISTER_IN_HUB)

        assert route == CallRoute.HUB_CONTROLLER
        assert hub.get_contract_address("Staking") == SECOND_OWNER

    def test_queued_bind_goes_into_the_batch(self, chain: SimulatedChain, hub: HubClient):
        hub.transfer_ownership(hub.controller_address)
        batch = GovernanceBatch()
        router = _router(chain, hub, network="otp_testnet", batch=batch)

        router.bind("ContentAssetStorage", SECOND_OWNER, RegistrationPolicy.REGISTER_AS_ASSET_STORAGE)

        assert batch.new_asset_storages[0].to_tuple() == ("ContentAssetStorage", SECOND_OWNER)
        assert hub.resolve("ContentAssetStorage", RegistrationPolicy.REGISTER_AS_ASSET_STORAGE) is None

    def test_reissue_already_in_a_pending_proposal(self, chain: SimulatedChain, hub: HubClient):
        hub.transfer_ownership(hub.controller_address)
        batch = GovernanceBatch()
        router = _router(chain, hub, network="otp_testnet", batch=batch)
        router.pending.add_contract("Staking", SECOND_OWNER)

        assert router.bind("Staking", SECOND_OWNER, RegistrationPolicy.REGISTER_IN_HUB, reissue=True) == CallRoute.PENDING
        assert router.bind("Staking", SECOND_OWNER, RegistrationPolicy.REGISTER_IN_HUB) == CallRoute.QUEUED
        assert batch.new_contracts[0].to_tuple() == ("Staking", SECOND_OWNER)
        assert router.bind("Profile", DEPLOYER, RegistrationPolicy.REGISTER_IN_HUB, reissue=True) == CallRoute.QUEUED
        assert len(batch.new_contracts) == 2

    def test_unregistered_module_cannot_be_bound(self, chain: SimulatedChain, hub: HubClient):
        with pytest.raises(ConfigurationError):
            _router(chain, hub).bind("Hub", hub.address, RegistrationPolicy.DO_NOT_REGISTER)

    def test_missing_hub(self, chain: SimulatedChain):
        router = CallRouter(chain, get_network("hardhat"), GovernanceBatch(), {}.get)

        with pytest.raises(ConfigurationError):
            router.detect()

    def test_verify(self, chain: SimulatedChain, hub: HubClient):
        hub.set_contract_address("Staking", SECOND_OWNER)
        addresses = {"Hub": hub.address, "Staking": SECOND_OWNER, "Profile": DEPLOYER}
        router = CallRouter(chain, get_network("hardhat"), GovernanceBatch(), addresses.get)

        mismatched = router.verify({
            "Staking": RegistrationPolicy.REGISTER_IN_HUB,
            "Profile": RegistrationPolicy.REGISTER_IN_HUB,
        })

        assert mismatched == ["Profile"]
