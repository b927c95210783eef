"""Error taxonomy for the DKG deployment orchestrator."""

from typing import List, Optional


class DeployerError(Exception):
    """Base class for every error raised by dkg_deployer."""


class ConfigurationError(DeployerError):
    """
    Invalid or missing configuration.

    Always raised before any transaction is submitted for the run.
    """


class CyclicDependencyError(ConfigurationError):
    """The module dependency graph contains a cycle."""

    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__(f"Cyclic dependency detected: {' -> '.join(cycle)}")


class MissingDependencyError(ConfigurationError):
    """A module depends on a logical name that is neither deployed nor part of this run."""

    def __init__(self, module: str, missing: str):
        self.module = module
        self.missing = missing
        super().__init__(
            f"Missing dependency '{missing}' for module '{module}': "
            f"not in the ledger and not deployable in this run"
        )


class UnknownParameterError(ConfigurationError):
    """A configured parameter has no matching getter or setter in the contract ABI."""


class ArtifactNotFoundError(DeployerError):
    """No ABI/bytecode artifact exists for a contract name."""

    def __init__(self, contract_name: str, path: Optional[str] = None):
        self.contract_name = contract_name
        where = f" at {path}" if path else ""
        super().__init__(f"Artifact for '{contract_name}' not found{where}")


class ChainError(DeployerError):
    """An on-chain operation failed."""


class TransactionRevertedError(ChainError):
    """A submitted transaction reverted."""

    def __init__(self, reason: str, tx_hash: Optional[str] = None):
        self.reason = reason
        self.tx_hash = tx_hash
        suffix = f" (tx {tx_hash})" if tx_hash else ""
        super().__init__(f"Transaction reverted: {reason}{suffix}")


class NotOwnerError(ChainError):
    """The deployer account cannot mutate the registry, directly or through the HubController."""


class ForwardCallError(ChainError):
    """
    A forwarded configuration call failed after the Hub binding succeeded.

    The Hub already points at the new address while the target module keeps
    stale state; rerunning the orchestrator reissues the call.
    """

    def __init__(self, target: str, reason: str):
        self.target = target
        self.reason = reason
        super().__init__(f"Forwarded call to {target} failed: {reason}")
