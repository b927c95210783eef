"""
End-to-end runs of the upgrade orchestrator against the simulated chain.

Run with:
    pytest tests/test_orchestrator.py -v
"""

import json
from pathlib import Path

import pytest

from dkg_deployer.chain.simulated import SimulatedChain
from dkg_deployer.config import DeployerSettings
from dkg_deployer.descriptors import DescriptorTable
from dkg_deployer.exceptions import (
    ChainError,
    ConfigurationError,
    ForwardCallError,
    MissingDependencyError,
    NotOwnerError,
    UnknownParameterError,
)
from dkg_deployer.ledger import DeploymentLedger
from dkg_deployer.orchestrator import UpgradeOrchestrator
from dkg_deployer.parameters import ParametersConfig
from dkg_deployer.registry import HubClient
from dkg_deployer.types import RegistrationPolicy, UpgradeAction, UpgradeState

from .conftest import (
    DEPLOYER,
    OUTSIDER,
    RELEASE_EPOCH,
    SECOND_OWNER,
    RecordingFunder,
    make_settings,
)


def _ledger(settings: DeployerSettings) -> DeploymentLedger:
    return DeploymentLedger.load(settings.network.name, settings.ledger_path)


def _hub(chain: SimulatedChain, settings: DeployerSettings) -> HubClient:
    ledger = _ledger(settings)
    return HubClient(chain, ledger.address_of("Hub"), ledger.address_of("HubController"))


def _mark_stale(settings: DeployerSettings, logical_name: str) -> None:
    raw = json.loads(settings.ledger_path.read_text())
    raw["contracts"][logical_name]["deployed"] = False
    settings.ledger_path.write_text(json.dumps(raw, indent=4))


class TestFreshDeployment:
    """Bootstrap of an empty network."""

    def test_deploys_every_module_in_dependency_order(self, make_orchestrator, settings: DeployerSettings):
        report = make_orchestrator(settings, tags=["v1"]).run()

        assert report.deployed == [
            "Hub", "HubController", "ParametersStorage", "HashingProxy",
            "SHA256", "ContentAssetStorage", "Staking", "Profile",
        ]
        assert all(d.action == UpgradeAction.DEPLOY for d in report.decisions)

    def test_dependencies_are_deployed_in_earlier_blocks(
        self, make_orchestrator, settings: DeployerSettings, table: DescriptorTable
    ):
        make_orchestrator(settings, tags=["v1"]).run()
        ledger = _ledger(settings)

        for descriptor in table.select(tags=["v1"]):
            entry = ledger.get(descriptor.logical_name)
            for dep in descriptor.dependencies:
                assert ledger.get(dep).block_number < entry.block_number

    def test_hub_is_handed_to_the_controller(
        self, make_orchestrator, chain: SimulatedChain, settings: DeployerSettings
    ):
        make_orchestrator(settings, tags=["v1"]).run()
        hub = _hub(chain, settings)

        assert hub.owner() == hub.controller_address
        assert hub.controller_owner() == DEPLOYER

    def test_registry_matches_ledger(self, make_orchestrator, chain: SimulatedChain, settings: DeployerSettings):
        orchestrator = make_orchestrator(settings, tags=["v1"])
        orchestrator.run()
        hub = _hub(chain, settings)
        ledger = _ledger(settings)

        assert orchestrator.verify_registry() == []
        assert hub.get_contract_address("Staking") == ledger.address_of("Staking")
        assert hub.get_asset_storage_address("ContentAssetStorage") == ledger.address_of("ContentAssetStorage")
        assert hub.get_contract_address("ContentAssetStorage") == "0x" + "00" * 20
        assert not hub.is_contract("Hub")

    def test_modules_are_configured(self, make_orchestrator, chain: SimulatedChain, settings: DeployerSettings):
        make_orchestrator(settings, tags=["v1"]).run()
        ledger = _ledger(settings)

        assert chain.call(ledger.address_of("ParametersStorage"), "ParametersStorage", "releaseEpoch") == RELEASE_EPOCH
        assert chain.call(ledger.address_of("HashingProxy"), "HashingProxy", "getContractAddress", [1]) == \
            ledger.address_of("SHA256")
        assert chain.call(ledger.address_of("Staking"), "Staking", "status") is True

    def test_ledger_records_versions_and_implementations(self, make_orchestrator, settings: DeployerSettings):
        make_orchestrator(settings).run()
        staking = _ledger(settings).get("Staking")

        assert staking.version == "2.0.0"
        assert staking.implementation_name == "StakingV2"
        assert staking.deployed is True
        assert staking.secondary_address is None


class TestIdempotence:
    """A second run over an unchanged network."""

    def test_rerun_sends_nothing(self, make_orchestrator, settings: DeployerSettings):
        make_orchestrator(settings, tags=["v1"]).run()
        report = make_orchestrator(settings, tags=["v1"]).run()

        assert report.transactions == 0
        assert report.deployed == []
        assert report.reconciled == []
        assert report.finalization is None
        assert all(d.state == UpgradeState.DEPLOYED_CURRENT for d in report.decisions)

    def test_rerun_leaves_ledger_file_unchanged(self, make_orchestrator, settings: DeployerSettings):
        make_orchestrator(settings, tags=["v1"]).run()
        before = settings.ledger_path.read_bytes()

        make_orchestrator(settings, tags=["v1"]).run()

        assert settings.ledger_path.read_bytes() == before


class TestUpgrades:
    """Band upgrades, in-place redeploys and monotonicity."""

    def test_band_upgrade_replaces_and_keeps_deprecated(
        self, make_orchestrator, chain: SimulatedChain, settings: DeployerSettings
    ):
        make_orchestrator(settings, tags=["v1"]).run()
        old_address = _ledger(settings).address_of("Staking")

        orchestrator = make_orchestrator(settings, tags=["v2"])
        report = orchestrator.run()
        ledger = _ledger(settings)
        hub = _hub(chain, settings)

        staking = next(d for d in report.decisions if d.logical_name == "Staking")
        assert staking.action == UpgradeAction.REPLACE
        assert ledger.get("Staking").version == "2.0.0"
        assert ledger.address_of("StakingDeprecated") == old_address
        assert hub.get_contract_address("Staking") == ledger.address_of("Staking")
        assert hub.get_contract_address("StakingDeprecated") == old_address
        assert orchestrator.verify_registry() == []

    def test_band_upgrade_reinitializes_dependents(
        self, make_orchestrator, chain: SimulatedChain, settings: DeployerSettings
    ):
        make_orchestrator(settings, tags=["v1"]).run()
        report = make_orchestrator(settings, tags=["v2"]).run()
        profile = chain.contract_at(_ledger(settings).address_of("Profile"))

        assert report.reconciled == ["Profile"]
        assert profile.storage["initializations"] == 2

    def test_newer_band_is_never_downgraded(self, make_orchestrator, settings: DeployerSettings):
        make_orchestrator(settings, tags=["v2"]).run()
        address = _ledger(settings).address_of("Staking")

        report = make_orchestrator(settings, tags=["v1"]).run()
        staking = next(d for d in report.decisions if d.logical_name == "Staking")

        assert staking.state == UpgradeState.DEPLOYED_NEWER
        assert staking.action == UpgradeAction.SKIP
        assert report.transactions == 0
        assert _ledger(settings).address_of("Staking") == address

    def test_both_bands_in_one_run(self, make_orchestrator, settings: DeployerSettings):
        report = make_orchestrator(settings).run()
        actions = [d.action for d in report.decisions if d.logical_name == "Staking"]

        assert actions == [UpgradeAction.DEPLOY, UpgradeAction.REPLACE]
        assert _ledger(settings).get("StakingDeprecated").implementation_name == "Staking"

    def test_stale_entry_is_redeployed_in_place(
        self, make_orchestrator, chain: SimulatedChain, settings: DeployerSettings
    ):
        make_orchestrator(settings, tags=["v1"]).run()
        old_address = _ledger(settings).address_of("Staking")
        _mark_stale(settings, "Staking")

        report = make_orchestrator(settings, tags=["v1"]).run()
        ledger = _ledger(settings)
        staking = next(d for d in report.decisions if d.logical_name == "Staking")

        assert staking.action == UpgradeAction.REDEPLOY_IN_PLACE
        assert ledger.address_of("Staking") != old_address
        assert ledger.get("Staking").deployed is True
        assert "StakingDeprecated" not in ledger
        assert _hub(chain, settings).get_contract_address("Staking") == ledger.address_of("Staking")

    def test_hub_cannot_be_redeployed(self, make_orchestrator, settings: DeployerSettings):
        make_orchestrator(settings, tags=["v1"]).run()
        _mark_stale(settings, "Hub")

        with pytest.raises(ConfigurationError):
            make_orchestrator(settings, tags=["v1"]).plan()

    def test_redeployed_controller_takes_over_the_hub(
        self, make_orchestrator, chain: SimulatedChain, settings: DeployerSettings
    ):
        make_orchestrator(settings, tags=["v1"]).run()
        old_controller = _ledger(settings).address_of("HubController")
        _mark_stale(settings, "HubController")

        make_orchestrator(settings, tags=["v1"]).run()
        hub = _hub(chain, settings)

        assert hub.controller_address != old_controller
        assert hub.owner() == hub.controller_address


class TestReconciliation:
    """Current modules whose surroundings drifted."""

    def test_rebinds_a_drifted_hub_entry(self, make_orchestrator, chain: SimulatedChain, settings: DeployerSettings):
        make_orchestrator(settings, tags=["v1"]).run()
        hub = _hub(chain, settings)
        chain.transact(hub.controller_address, "HubController", "setContractAddress", ["ParametersStorage", OUTSIDER])

        orchestrator = make_orchestrator(settings, tags=["v1"])
        report = orchestrator.run()

        assert report.reconciled == ["ParametersStorage"]
        assert orchestrator.verify_registry() == []

    def test_restores_drifted_parameters(self, make_orchestrator, chain: SimulatedChain, settings: DeployerSettings):
        make_orchestrator(settings, tags=["v1"]).run()
        hub = _hub(chain, settings)
        storage = _ledger(settings).address_of("ParametersStorage")
        data = chain.encode("ParametersStorage", "setReleaseEpoch", [7])
        chain.transact(hub.controller_address, "HubController", "forwardCall", [storage, data])

        report = make_orchestrator(settings, tags=["v1"]).run()

        assert report.reconciled == ["ParametersStorage"]
        assert chain.call(storage, "ParametersStorage", "releaseEpoch") == RELEASE_EPOCH

    def test_reissues_a_drifted_function_registration(
        self, make_orchestrator, chain: SimulatedChain, settings: DeployerSettings
    ):
        make_orchestrator(settings, tags=["v1"]).run()
        hub = _hub(chain, settings)
        ledger = _ledger(settings)
        proxy = ledger.address_of("HashingProxy")
        data = chain.encode("HashingProxy", "setContractAddress", [1, OUTSIDER])
        chain.transact(hub.controller_address, "HubController", "forwardCall", [proxy, data])

        report = make_orchestrator(settings, tags=["v1"]).run()

        assert report.reconciled == ["SHA256"]
        assert chain.call(proxy, "HashingProxy", "getContractAddress", [1]) == ledger.address_of("SHA256")

    def test_failed_forward_keeps_the_new_module(
        self, make_orchestrator, chain: SimulatedChain, settings: DeployerSettings
    ):
        make_orchestrator(settings, only=["Hub", "HubController", "ParametersStorage", "HashingProxy"]).run()
        raw = json.loads(settings.ledger_path.read_text())
        proxy = raw["contracts"]["HashingProxy"]["evmAddress"]
        raw["contracts"]["HashingProxy"]["evmAddress"] = OUTSIDER
        settings.ledger_path.write_text(json.dumps(raw, indent=4))

        with pytest.raises(ForwardCallError):
            make_orchestrator(settings, only=["SHA256"]).run()

        sha256 = _ledger(settings).address_of("SHA256")
        assert sha256 is not None

        raw = json.loads(settings.ledger_path.read_text())
        raw["contracts"]["HashingProxy"]["evmAddress"] = proxy
        settings.ledger_path.write_text(json.dumps(raw, indent=4))

        report = make_orchestrator(settings, only=["SHA256"]).run()

        assert report.deployed == []
        assert report.reconciled == ["SHA256"]
        assert chain.call(proxy, "HashingProxy", "getContractAddress", [1]) == sha256

    def test_lowercase_ledger_addresses_match_the_hub(
        self, make_orchestrator, chain: SimulatedChain, settings: DeployerSettings
    ):
        make_orchestrator(settings, tags=["v1"]).run()
        raw = json.loads(settings.ledger_path.read_text())
        for entry in raw["contracts"].values():
            entry["evmAddress"] = entry["evmAddress"].lower()
        settings.ledger_path.write_text(json.dumps(raw, indent=4))

        orchestrator = make_orchestrator(settings, tags=["v1"])
        report = orchestrator.run()

        assert report.reconciled == []
        assert report.transactions == 0
        assert orchestrator.verify_registry() == []


class TestValidation:
    """Errors raised before any transaction is sent."""

    def test_missing_dependency(self, make_orchestrator, chain: SimulatedChain, settings: DeployerSettings):
        orchestrator = make_orchestrator(settings, only=["ParametersStorage"])

        with pytest.raises(MissingDependencyError) as exc_info:
            orchestrator.run()

        assert exc_info.value.missing == "Hub"
        assert chain.transactions_sent == 0

    def test_dependency_from_a_previous_run(self, make_orchestrator, chain: SimulatedChain, settings: DeployerSettings):
        make_orchestrator(settings, only=["Hub"]).run()
        report = make_orchestrator(settings, only=["ParametersStorage"]).run()
        ledger = _ledger(settings)

        assert report.deployed == ["ParametersStorage"]
        assert _hub(chain, settings).get_contract_address("ParametersStorage") == ledger.address_of("ParametersStorage")
        assert chain.call(ledger.address_of("ParametersStorage"), "ParametersStorage", "releaseEpoch") == RELEASE_EPOCH

    def test_unknown_parameter(
        self, chain: SimulatedChain, settings: DeployerSettings, table: DescriptorTable, ledger: DeploymentLedger
    ):
        parameters = ParametersConfig({"development": {"ParametersStorage": {"epochLength": 3600}}})
        orchestrator = UpgradeOrchestrator(settings, chain, table.select(tags=["v1"]), ledger, parameters)

        with pytest.raises(UnknownParameterError):
            orchestrator.run()
        assert chain.transactions_sent == 0

    def test_parameters_for_unregistered_module(
        self, chain: SimulatedChain, settings: DeployerSettings, table: DescriptorTable, ledger: DeploymentLedger
    ):
        parameters = ParametersConfig({"development": {"Hub": {"owner": DEPLOYER}}})
        orchestrator = UpgradeOrchestrator(settings, chain, table.select(tags=["v1"]), ledger, parameters)

        with pytest.raises(ConfigurationError):
            orchestrator.plan()

    def test_plan_projects_later_steps(self, make_orchestrator, chain: SimulatedChain, settings: DeployerSettings):
        decisions = make_orchestrator(settings).plan()
        staking = [d for d in decisions if d.logical_name == "Staking"]

        assert [d.implementation_name for d in staking] == ["Staking", "StakingV2"]
        assert [d.action for d in staking] == [UpgradeAction.DEPLOY, UpgradeAction.REPLACE]
        assert chain.transactions_sent == 0


class TestGovernedNetworks:
    """Runs where the deployer does not write to the Hub directly."""

    def test_devnet_batches_everything_into_one_controller_call(
        self, make_orchestrator, chain: SimulatedChain, deployments_dir: Path
    ):
        settings = make_settings("otp_devnet", deployments_dir)
        funder = RecordingFunder()

        orchestrator = make_orchestrator(settings, tags=["v1"], funder=funder)
        report = orchestrator.run()
        ledger = _ledger(settings)

        assert report.finalization.route == "controller"
        assert {c["name"] for c in report.batch["newContracts"]} == {
            "ParametersStorage", "HashingProxy", "SHA256", "Staking", "Profile",
        }
        assert report.batch["newHashFunctions"] == [ledger.address_of("SHA256")]
        assert orchestrator.verify_registry() == []
        assert chain.call(ledger.address_of("ParametersStorage"), "ParametersStorage", "releaseEpoch") == RELEASE_EPOCH
        assert chain.call(ledger.address_of("Staking"), "Staking", "status") is True

    def test_devnet_funds_companion_accounts(self, make_orchestrator, deployments_dir: Path):
        settings = make_settings("otp_devnet", deployments_dir)
        funder = RecordingFunder()

        make_orchestrator(settings, tags=["v1"], funder=funder).run()
        secondary = {entry.secondary_address for _, entry in _ledger(settings)}

        assert None not in secondary
        assert set(funder.transfers) == secondary
        assert set(funder.transfers.values()) == {2.0}

    def test_failed_funding_is_retried(self, make_orchestrator, chain: SimulatedChain, deployments_dir: Path):
        settings = make_settings("otp_devnet", deployments_dir)
        funder = RecordingFunder(failures=1)

        with pytest.raises(ChainError):
            make_orchestrator(settings, tags=["v1"], funder=funder).run()
        assert _ledger(settings).get("Hub").funded is False

        report = make_orchestrator(settings, tags=["v1"], funder=funder).run()
        ledger = _ledger(settings)

        assert report.reconciled == ["Hub"]
        assert all(entry.funded for _, entry in ledger)
        assert set(funder.transfers) == {entry.secondary_address for _, entry in ledger}

    def test_devnet_needs_a_funder(self, make_orchestrator, chain: SimulatedChain, deployments_dir: Path):
        settings = make_settings("otp_devnet", deployments_dir)

        with pytest.raises(ConfigurationError):
            make_orchestrator(settings, tags=["v1"]).run()
        assert chain.transactions_sent == 0

    def test_foreign_controller_owner_fails_after_saving(
        self, make_orchestrator, chain: SimulatedChain, deployments_dir: Path
    ):
        settings = make_settings("otp_devnet", deployments_dir)
        make_orchestrator(settings, tags=["v1"], funder=RecordingFunder()).run()
        hub = _hub(chain, settings)
        chain.transact(hub.controller_address, "HubController", "transferOwnership", [OUTSIDER])

        with pytest.raises(NotOwnerError):
            make_orchestrator(settings, tags=["v2"], funder=RecordingFunder()).run()

        ledger = _ledger(settings)
        assert ledger.get("Staking").implementation_name == "StakingV2"
        assert "StakingDeprecated" in ledger

    def test_multisig_submission_waits_for_confirmations(
        self, make_orchestrator, chain: SimulatedChain, deployments_dir: Path
    ):
        wallet = chain.deploy("MultiSigWallet", [[DEPLOYER, SECOND_OWNER], 2]).address
        settings = make_settings("otp_testnet", deployments_dir).model_copy(update={"multisig_address": wallet})

        bootstrap = make_orchestrator(settings, tags=["v1"]).run()
        assert bootstrap.finalization is None

        hub = _hub(chain, settings)
        assert hub.owner() == DEPLOYER
        chain.transact(hub.address, "Hub", "transferOwnership", [hub.controller_address])
        chain.transact(hub.controller_address, "HubController", "transferOwnership", [wallet])

        orchestrator = make_orchestrator(settings, tags=["v2"])
        report = orchestrator.run()

        assert report.finalization.route == "multisig"
        assert report.finalization.transaction_id == 0
        assert set(orchestrator.verify_registry()) == {"Staking", "StakingDeprecated"}

        with chain.impersonate(SECOND_OWNER):
            chain.transact(wallet, "MultiSigWallet", "confirmTransaction", [0])

        assert orchestrator.verify_registry() == []
        assert hub.resolve("Staking", RegistrationPolicy.REGISTER_IN_HUB) == _ledger(settings).address_of("Staking")

    def test_rerun_while_the_proposal_is_pending(
        self, make_orchestrator, chain: SimulatedChain, deployments_dir: Path
    ):
        wallet = chain.deploy("MultiSigWallet", [[DEPLOYER, SECOND_OWNER], 2]).address
        settings = make_settings("otp_testnet", deployments_dir).model_copy(update={"multisig_address": wallet})
        make_orchestrator(settings, tags=["v1"]).run()
        hub = _hub(chain, settings)
        chain.transact(hub.address, "Hub", "transferOwnership", [hub.controller_address])
        chain.transact(hub.controller_address, "HubController", "transferOwnership", [wallet])
        make_orchestrator(settings, tags=["v2"]).run()

        orchestrator = make_orchestrator(settings, tags=["v2"])
        second = orchestrator.run()

        assert second.transactions == 0
        assert second.reconciled == []
        assert second.finalization is None
        assert chain.call(wallet, "MultiSigWallet", "transactionCount") == 1

        with chain.impersonate(SECOND_OWNER):
            chain.transact(wallet, "MultiSigWallet", "confirmTransaction", [0])

        assert orchestrator.verify_registry() == []

    def test_multisig_address_is_required(self, make_orchestrator, chain: SimulatedChain, deployments_dir: Path):
        settings = make_settings("otp_testnet", deployments_dir)

        with pytest.raises(ConfigurationError):
            make_orchestrator(settings, tags=["v1"]).run()
        assert chain.transactions_sent == 0

    def test_companion_addresses_are_recorded(self, make_orchestrator, chain: SimulatedChain, deployments_dir: Path):
        wallet = chain.deploy("MultiSigWallet", [[DEPLOYER], 1]).address
        settings = make_settings("otp_testnet", deployments_dir).model_copy(update={"multisig_address": wallet})

        make_orchestrator(settings, tags=["v1"]).run()
        raw = json.loads(settings.ledger_path.read_text())

        assert all("substrateAddress" in entry for entry in raw["contracts"].values())
