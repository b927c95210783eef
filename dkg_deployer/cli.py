"""
``dkg-deploy`` command line.

Examples::

    dkg-deploy deploy --network otp_testnet --tags v2
    dkg-deploy plan --network base_mainnet --only Staking
    dkg-deploy deploy --network hardhat --simulate
    dkg-deploy encode-selector "setReleaseEpoch(uint256)"
    dkg-deploy convert-address 0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266
"""

import argparse
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from eth_utils import to_bytes
from loguru import logger
from rich.console import Console
from rich.table import Table

from .catalog import dkg_table
from .chain.base import ChainBackend
from .chain.simulated import SimulatedChain, dry_run_synthesizer, infer_abi_type
from .chain.web3_backend import Web3Backend
from .companion import NEUROWEB_SS58_PREFIX, SubstrateFunder, convert_evm_address
from .config import NETWORKS, DeployerSettings
from .descriptors import DescriptorTable
from .encoding import ArtifactStore, function_selector
from .exceptions import ConfigurationError, DeployerError
from .ledger import DeploymentLedger
from .logs import configure_logging
from .orchestrator import RunReport, UpgradeOrchestrator
from .parameters import ParametersConfig
from .registry import HUB_CONTROLLER
from .types import ModuleDecision, UpgradeAction


console = Console()


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def _settings(args: argparse.Namespace) -> DeployerSettings:
    return DeployerSettings.from_env(
        args.network,
        deployments_dir=Path(args.deployments_dir) if args.deployments_dir else None,
        artifacts_dir=Path(args.artifacts_dir) if args.artifacts_dir else None,
        dotenv_path=Path(args.env_file) if args.env_file else None,
    )


def _full_table(args: argparse.Namespace) -> DescriptorTable:
    if args.modules:
        return DescriptorTable.from_json(Path(args.modules))
    return dkg_table()


def _run_table(args: argparse.Namespace, table: DescriptorTable) -> DescriptorTable:
    tags = [t.strip() for t in args.tags.split(",") if t.strip()] if args.tags else None
    selected = table.select(tags=tags, only=args.only, with_dependencies=args.with_dependencies)
    if not len(selected):
        raise ConfigurationError("No module matches the selected tags/names")
    return selected


def parameter_specs(
    parameters: ParametersConfig, environment: str, network_name: str
) -> Dict[str, Dict[str, Tuple[List[str], str]]]:
    """Getter signatures implied by the parameter table, for synthesized artifacts."""
    specs: Dict[str, Dict[str, Tuple[List[str], str]]] = {}
    for contract in parameters.contracts(environment, network_name):
        for call in parameters.calls_for(environment, network_name, contract):
            inputs = [infer_abi_type(a) for a in call.getter_args]
            specs.setdefault(contract, {})[call.getter] = (inputs, infer_abi_type(call.desired_value))
    return specs


def _artifacts(
    settings: DeployerSettings,
    simulate: bool,
    table: DescriptorTable,
    parameters: ParametersConfig,
) -> ArtifactStore:
    synthesize = None
    if simulate:
        specs = parameter_specs(parameters, settings.network.environment.value, settings.network.name)
        synthesize = dry_run_synthesizer(table, specs)
    return ArtifactStore([settings.artifacts_dir], synthesize=synthesize)


def _simulated_settings(settings: DeployerSettings, chain: SimulatedChain) -> DeployerSettings:
    # no companion funding in simulation; a fresh wallet stands in for the multisig
    capabilities = settings.network.capabilities.model_copy(update={"fund_companion_accounts": False})
    update = {"network": settings.network.model_copy(update={"capabilities": capabilities})}
    if capabilities.multisig_finalize:
        wallet = chain.deploy("MultiSigWallet", [[chain.deployer], 1])
        update["multisig_address"] = wallet.address
    return settings.model_copy(update=update)


def _orchestrator(args: argparse.Namespace, dry: bool = False, funded: bool = True) -> UpgradeOrchestrator:
    """
    Build an orchestrator for a command.

    ``--simulate`` runs against an in-process chain and an empty, unsaved
    ledger. ``dry`` (planning) reads the real ledger but never sends.
    """
    settings = _settings(args)
    capabilities = settings.network.capabilities
    table = _full_table(args)
    run_table = _run_table(args, table)
    parameters = ParametersConfig.load(settings.parameters_path)
    artifacts = _artifacts(settings, args.simulate, table, parameters)

    chain: ChainBackend
    funder = None
    if args.simulate:
        chain = SimulatedChain(artifacts)
        settings = _simulated_settings(settings, chain)
        ledger = DeploymentLedger(settings.network.name, settings.ledger_path, persist=False)
    elif dry:
        chain = SimulatedChain(artifacts)
        ledger = DeploymentLedger.load(settings.network.name, settings.ledger_path, persist=False)
    else:
        chain = Web3Backend(settings, artifacts)
        ledger = DeploymentLedger.load(settings.network.name, settings.ledger_path, persist=capabilities.persist_ledger)
        if funded and capabilities.fund_companion_accounts:
            funder = SubstrateFunder(settings)

    return UpgradeOrchestrator(settings, chain, run_table, ledger, parameters, funder=funder)


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

_ACTION_STYLE = {
    UpgradeAction.DEPLOY: "green",
    UpgradeAction.REPLACE: "magenta",
    UpgradeAction.REDEPLOY_IN_PLACE: "yellow",
    UpgradeAction.SKIP: "dim",
}


def _print_decisions(title: str, decisions: Sequence[ModuleDecision]) -> None:
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("Module")
    table.add_column("Implementation")
    table.add_column("Ledger version")
    table.add_column("State")
    table.add_column("Action")
    for index, decision in enumerate(decisions, start=1):
        style = _ACTION_STYLE[decision.action]
        table.add_row(
            str(index),
            decision.logical_name,
            decision.implementation_name,
            decision.recorded_version or "-",
            decision.state.value,
            f"[{style}]{decision.action.value}[/{style}]",
        )
    console.print(table)


def _print_report(report: RunReport) -> None:
    _print_decisions(f"Run on {report.network}", report.decisions)
    console.print(f"[bold]Deployed:[/bold] {', '.join(report.deployed) or '-'}")
    console.print(f"[bold]Reconciled:[/bold] {', '.join(report.reconciled) or '-'}")
    console.print(f"[bold]Transactions:[/bold] {report.transactions}")
    if report.finalization is not None:
        final = report.finalization
        if final.tx_hash is None:
            console.print(f"[bold]Governance batch:[/bold] already awaiting {final.route} confirmation")
        else:
            console.print(f"[bold]Governance batch:[/bold] {final.route} tx {final.tx_hash}")
        if final.transaction_id is not None:
            console.print(f"[bold]Multisig transaction id:[/bold] {final.transaction_id}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_deploy(args: argparse.Namespace) -> int:
    orchestrator = _orchestrator(args)
    report = orchestrator.run()
    _print_report(report)

    mismatched = orchestrator.verify_registry()
    if mismatched:
        console.print(f"[yellow]⚠️  Hub and ledger disagree on: {', '.join(mismatched)}[/yellow]")
    else:
        console.print("[green]✅ Hub matches the ledger[/green]")
    return 0


def cmd_plan(args: argparse.Namespace) -> int:
    orchestrator = _orchestrator(args, dry=True)
    decisions = orchestrator.plan()
    _print_decisions(f"Plan for {orchestrator.network.name}", decisions)
    pending = sum(1 for d in decisions if d.action != UpgradeAction.SKIP)
    console.print(f"{pending} of {len(decisions)} step(s) would deploy")
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    orchestrator = _orchestrator(args, funded=False)
    mismatched = orchestrator.verify_registry()
    for name in mismatched:
        console.print(f"[red]❌ {name}[/red]")
    return 1 if mismatched else 0


def cmd_ledger(args: argparse.Namespace) -> int:
    settings = _settings(args)
    ledger = DeploymentLedger.load(settings.network.name, settings.ledger_path, persist=False)

    table = Table(title=f"{settings.network.name} ({settings.ledger_path})")
    table.add_column("Module")
    table.add_column("Address")
    table.add_column("Version")
    table.add_column("Block", justify="right")
    table.add_column("Substrate")
    table.add_column("Deployed")
    for name, entry in ledger:
        table.add_row(
            name,
            entry.evm_address,
            entry.version or "-",
            str(entry.block_number) if entry.block_number is not None else "-",
            entry.secondary_address or "-",
            "yes" if entry.deployed else "[yellow]no[/yellow]",
        )
    console.print(table)
    return 0


def cmd_encode_selector(args: argparse.Namespace) -> int:
    console.print("0x" + function_selector(args.signature).hex(), soft_wrap=True)
    return 0


def cmd_encode_data(args: argparse.Namespace) -> int:
    artifacts_dir = Path(args.artifacts_dir) if args.artifacts_dir else Path("abi")
    data = ArtifactStore([artifacts_dir]).encode_call(args.contract, args.function, args.args)
    console.print("0x" + data.hex(), soft_wrap=True)
    return 0


def cmd_forward_call(args: argparse.Namespace) -> int:
    settings = _settings(args)
    ledger = DeploymentLedger.load(settings.network.name, settings.ledger_path, persist=False)
    controller = ledger.address_of(HUB_CONTROLLER)
    if controller is None:
        raise ConfigurationError(f"No HubController in the {settings.network.name} ledger")

    target = ledger.address_of(args.target) or args.target
    chain = Web3Backend(settings, ArtifactStore([settings.artifacts_dir]))
    receipt = chain.transact(controller, HUB_CONTROLLER, "forwardCall", [target, to_bytes(hexstr=args.data)])
    console.print(f"[green]✅ HubController.forwardCall({target}) sent[/green] tx {receipt.tx_hash}")
    return 0


def cmd_convert_address(args: argparse.Namespace) -> int:
    console.print(convert_evm_address(args.address, args.prefix), soft_wrap=True)
    return 0


def _network_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--network", required=True, choices=sorted(NETWORKS))
    parser.add_argument("--deployments-dir", default=None, help="Ledgers and parameters.json (default: deployments)")
    parser.add_argument("--artifacts-dir", default=None, help="Contract artifacts (default: abi)")


def _selection_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--tags", default=None, help="Comma separated step tags, e.g. v1,v2")
    parser.add_argument("--only", action="append", default=None, help="Logical or implementation name (repeatable)")
    parser.add_argument("--with-dependencies", action="store_true", help="Add the steps of every dependency")
    parser.add_argument("--modules", default=None, help="JSON module table replacing the built-in DKG table")
    parser.add_argument("--simulate", action="store_true",
                        help="Run against an in-process chain; artifacts missing on disk are synthesized")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dkg-deploy", description="Deploy and upgrade the DKG EVM contracts.")
    parser.add_argument("--log-level", default="INFO", help="DEBUG, INFO, SUCCESS, WARNING or ERROR")
    parser.add_argument("--json-logs", action="store_true", help="Serialize log records as JSON")
    parser.add_argument("--env-file", default=None, help=".env file to load (default: search upwards)")
    sub = parser.add_subparsers(dest="command", required=True)

    deploy = sub.add_parser("deploy", help="Run the orchestrator")
    _network_arguments(deploy)
    _selection_arguments(deploy)
    deploy.set_defaults(func=cmd_deploy)

    plan = sub.add_parser("plan", help="Show order and decisions without sending transactions")
    _network_arguments(plan)
    _selection_arguments(plan)
    plan.set_defaults(func=cmd_plan)

    verify = sub.add_parser("verify", help="Compare Hub bindings with the ledger")
    _network_arguments(verify)
    _selection_arguments(verify)
    verify.set_defaults(func=cmd_verify)

    ledger = sub.add_parser("ledger", help="Print the deployment ledger")
    _network_arguments(ledger)
    ledger.set_defaults(func=cmd_ledger)

    selector = sub.add_parser("encode-selector", help="4-byte selector of a function signature")
    selector.add_argument("signature", help='e.g. "setReleaseEpoch(uint256)"')
    selector.set_defaults(func=cmd_encode_selector)

    data = sub.add_parser("encode-data", help="Calldata for a HubController forward")
    data.add_argument("contract")
    data.add_argument("function")
    data.add_argument("args", nargs="*")
    data.add_argument("--artifacts-dir", default=None)
    data.set_defaults(func=cmd_encode_data)

    forward = sub.add_parser("forward-call", help="Send HubController.forwardCall as its owner")
    _network_arguments(forward)
    forward.add_argument("--target", required=True, help="Target address or logical name")
    forward.add_argument("--data", required=True, help="Hex calldata")
    forward.set_defaults(func=cmd_forward_call)

    convert = sub.add_parser("convert-address", help="Companion-chain (SS58) account of an EVM address")
    convert.add_argument("address")
    convert.add_argument("--prefix", type=int, default=NEUROWEB_SS58_PREFIX)
    convert.set_defaults(func=cmd_convert_address)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, json_logs=args.json_logs)
    try:
        return args.func(args)
    except DeployerError as e:
        logger.error(str(e))
        console.print(f"[red]❌ {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
