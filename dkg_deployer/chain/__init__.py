"""Chain backends: web3.py for real networks, an in-process simulation for dry runs."""

from .base import ChainBackend
from .simulated import SimulatedChain, dry_run_synthesizer, module_artifact
from .web3_backend import Web3Backend, load_account

__all__ = ["ChainBackend", "SimulatedChain", "Web3Backend", "dry_run_synthesizer", "load_account", "module_artifact"]
