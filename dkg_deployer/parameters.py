"""
Parameter seeding from ``deployments/parameters.json``.

Layout::

    {
        "<environment>": {
            "<Contract>": {
                "<getterName>": <value>,
                "<getterName>": {"getterArgs": [...], "desiredValue": ..., "setter": "...", "setterArgs": [...]},
                "<getterName>": [<value or object>, ...]
            },
            "overrides": {
                "<network>": {"<Contract>": {"<getterName>": <value>}}
            }
        }
    }

Each entry becomes a ``set<GetterName>`` call unless an explicit ``setter``
is given. Network overrides replace the base value of the same getter.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from .chain.base import ChainBackend
from .config import NetworkConfig
from .encoding import normalize_argument
from .exceptions import ConfigurationError, UnknownParameterError
from .types import ForwardCallInput


OVERRIDES = "overrides"


def setter_name(getter: str) -> str:
    return "set" + getter[0].upper() + getter[1:]


@dataclass
class ParameterCall:
    """One configured value and the setter call that establishes it."""
    getter: str
    desired_value: Any
    setter: str
    setter_args: List[Any]
    getter_args: List[Any] = field(default_factory=list)


def _parse_value(getter: str, value: Any) -> ParameterCall:
    if isinstance(value, dict):
        getter_args = list(value.get("getterArgs", []))
        setter_args = value.get("setterArgs")
        if setter_args is None:
            if "desiredValue" not in value:
                raise ConfigurationError(f"Parameter '{getter}' needs 'setterArgs' or 'desiredValue'")
            setter_args = [*getter_args, value["desiredValue"]]
        setter_args = list(setter_args)
        desired = setter_args[0] if len(setter_args) == 1 else value.get("desiredValue")
        return ParameterCall(
            getter=getter,
            desired_value=desired,
            setter=value.get("setter") or setter_name(getter),
            setter_args=setter_args,
            getter_args=getter_args,
        )
    return ParameterCall(getter=getter, desired_value=value, setter=setter_name(getter), setter_args=[value])


def _canonical(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    if isinstance(value, str):
        return value.lower()
    if isinstance(value, bytes):
        return "0x" + value.hex()
    return value


class ParametersConfig:
    """Parsed parameters.json."""

    def __init__(self, raw: Optional[Dict[str, Any]] = None):
        self.raw = raw or {}

    @classmethod
    def load(cls, path: Path) -> "ParametersConfig":
        path = Path(path)
        if not path.exists():
            logger.debug(f"No parameters file at {path}")
            return cls()
        try:
            raw = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Parameters file {path} is not valid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Parameters file {path} must hold a JSON object")
        return cls(raw)

    def values_for(self, environment: str, network_name: str, contract: str) -> Dict[str, Any]:
        """Merged getter -> value table of one contract on one network."""
        section = self.raw.get(environment, {})
        base = section.get(contract, {})
        override = section.get(OVERRIDES, {}).get(network_name, {}).get(contract, {})
        return {**base, **override}

    def calls_for(self, environment: str, network_name: str, contract: str) -> List[ParameterCall]:
        calls: List[ParameterCall] = []
        for getter, value in self.values_for(environment, network_name, contract).items():
            values = value if isinstance(value, list) else [value]
            calls.extend(_parse_value(getter, v) for v in values)
        return calls

    def contracts(self, environment: str, network_name: str) -> List[str]:
        section = self.raw.get(environment, {})
        names = [name for name in section if name != OVERRIDES]
        for name in section.get(OVERRIDES, {}).get(network_name, {}):
            if name not in names:
                names.append(name)
        return names


class ParameterSeeder:
    """Builds per-module setter batches for one network."""

    def __init__(self, chain: ChainBackend, config: ParametersConfig, network: NetworkConfig):
        self.chain = chain
        self.config = config
        self.network = network

    def calls_for(self, logical_name: str) -> List[ParameterCall]:
        return self.config.calls_for(self.network.environment.value, self.network.name, logical_name)

    def has_parameters(self, logical_name: str) -> bool:
        return bool(self.calls_for(logical_name))

    def validate(self, logical_name: str, implementation: str) -> None:
        """Fail if a configured getter or setter is missing from the ABI."""
        artifact = self.chain.artifacts.get(implementation)
        for call in self.calls_for(logical_name):
            if not artifact.has_function(call.getter):
                raise UnknownParameterError(
                    f"Parameter '{call.getter}' doesn't exist in the contract '{logical_name}'."
                )
            if not artifact.has_function(call.setter):
                raise UnknownParameterError(
                    f"Setter '{call.setter}' doesn't exist in the contract '{logical_name}'."
                )

    def _encode(self, implementation: str, call: ParameterCall) -> bytes:
        return self.chain.encode(implementation, call.setter, call.setter_args)

    def build_batch(self, logical_name: str, implementation: str) -> Optional[ForwardCallInput]:
        """
        Encoded setter calls for every configured value, in table order.

        Reads nothing from the chain: the same configuration always yields
        the same batch.
        """
        self.validate(logical_name, implementation)
        calls = self.calls_for(logical_name)
        if not calls:
            return None
        return ForwardCallInput(logical_name, [self._encode(implementation, c) for c in calls])

    def pending_batch(self, logical_name: str, implementation: str, address: str) -> Optional[ForwardCallInput]:
        """Setter calls for the values whose getter disagrees with the configuration."""
        self.validate(logical_name, implementation)
        artifact = self.chain.artifacts.get(implementation)
        encoded: List[bytes] = []

        for call in self.calls_for(logical_name):
            current = self.chain.call(address, implementation, call.getter, call.getter_args)
            entry = artifact.find_function(call.getter, call.getter_args)
            outputs = entry.get("outputs", [])
            desired = call.desired_value
            if len(outputs) == 1:
                desired = normalize_argument(outputs[0]["type"], desired)

            if _canonical(current) == _canonical(desired):
                continue
            logger.info(
                f"Parameter '{call.getter}' for {logical_name} in the contract isn't the same as defined "
                f"in config. Blockchain: {current}. Config: {call.desired_value}."
            )
            encoded.append(self._encode(implementation, call))

        if not encoded:
            return None
        return ForwardCallInput(logical_name, encoded)
