"""The dkg-deploy command line."""

import json
from pathlib import Path

import pytest

from dkg_deployer import cli
from dkg_deployer.cli import build_parser, main, parameter_specs
from dkg_deployer.companion import convert_evm_address
from dkg_deployer.parameters import ParametersConfig

from .conftest import DEPLOYER, PARAMETERS


def _output(capsys) -> str:
    return "".join(capsys.readouterr().out.split())


@pytest.fixture
def wide_console(monkeypatch):
    """Rich tables wide enough that no cell wraps."""
    monkeypatch.setattr(cli.console, "width", 240)


class TestEncodingCommands:
    """Offline helpers."""

    def test_encode_selector(self, capsys):
        assert main(["encode-selector", "transfer(address,uint256)"]) == 0
        assert _output(capsys) == "0xa9059cbb"

    def test_encode_data(self, capsys, tmp_path: Path):
        code = main(["encode-data", "Hub", "setContractAddress", "Staking", DEPLOYER, "--artifacts-dir", str(tmp_path)])

        assert code == 0
        assert _output(capsys).startswith("0x")

    def test_convert_address(self, capsys):
        assert main(["convert-address", DEPLOYER, "--prefix", "42"]) == 0
        assert _output(capsys) == convert_evm_address(DEPLOYER, 42)


class TestRunCommands:
    """deploy/plan against the in-process chain."""

    def test_simulated_deploy_of_the_full_table(self, tmp_path: Path):
        code = main([
            "--log-level", "WARNING",
            "deploy", "--network", "hardhat", "--simulate",
            "--deployments-dir", str(tmp_path), "--artifacts-dir", str(tmp_path),
        ])

        assert code == 0
        assert not (tmp_path / "hardhat_contracts.json").exists()

    def test_simulated_governed_deploy(self, tmp_path: Path):
        code = main([
            "--log-level", "WARNING",
            "deploy", "--network", "otp_testnet", "--simulate", "--tags", "v1",
            "--deployments-dir", str(tmp_path), "--artifacts-dir", str(tmp_path),
        ])

        assert code == 0

    def test_plan_with_dependencies(self, capsys, tmp_path: Path, wide_console):
        code = main([
            "--log-level", "WARNING",
            "plan", "--network", "hardhat", "--simulate", "--tags", "v2", "--only", "Staking",
            "--with-dependencies", "--deployments-dir", str(tmp_path), "--artifacts-dir", str(tmp_path),
        ])

        assert code == 0
        out = capsys.readouterr().out
        assert "StakingV2" in out
        assert "would deploy" in out

    def test_empty_selection_fails(self, tmp_path: Path):
        code = main([
            "--log-level", "WARNING",
            "plan", "--network", "hardhat", "--simulate", "--only", "NoSuchModule",
            "--deployments-dir", str(tmp_path),
        ])

        assert code == 1

    def test_missing_rpc_fails(self, monkeypatch, tmp_path: Path):
        monkeypatch.delenv("RPC_OTP_TESTNET", raising=False)
        monkeypatch.setenv("MULTISIG_OTP_TESTNET", DEPLOYER)
        monkeypatch.setenv("PRIVATE_KEY_OTP_TESTNET", "0x" + "11" * 32)

        code = main([
            "--log-level", "WARNING", "--env-file", str(tmp_path / "missing.env"),
            "deploy", "--network", "otp_testnet", "--deployments-dir", str(tmp_path),
        ])

        assert code == 1


class TestLedgerCommand:
    """Printing a ledger file."""

    def test_prints_entries(self, capsys, tmp_path: Path, wide_console):
        (tmp_path / "otp_testnet_contracts.json").write_text(json.dumps({
            "contracts": {"Staking": {"evmAddress": DEPLOYER, "version": "2.0.0", "deploymentBlock": 5}},
        }))

        code = main(["ledger", "--network", "otp_testnet", "--deployments-dir", str(tmp_path)])

        assert code == 0
        assert "Staking" in capsys.readouterr().out


class TestParser:
    """Argument parsing."""

    def test_unknown_network(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["deploy", "--network", "ropsten"])

    def test_only_is_repeatable(self):
        args = build_parser().parse_args(["plan", "--network", "hardhat", "--only", "Hub", "--only", "Staking"])
        assert args.only == ["Hub", "Staking"]

    def test_parameter_specs(self):
        specs = parameter_specs(ParametersConfig(PARAMETERS), "development", "hardhat")
        assert specs == {"ParametersStorage": {"releaseEpoch": ([], "uint256")}}
