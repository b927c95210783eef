"""
Contract artifacts and ABI call encoding.

Artifacts are read from ``<dir>/<ContractName>.json`` in either layout the
Solidity toolchain produces: a bare ABI list (``hardhat-abi-exporter``) or an
object with ``abi`` and ``bytecode`` keys (hardhat/foundry artifacts). An
optional top-level ``version`` key is used by the simulated chain.
"""

import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from eth_abi import decode, encode, is_encodable
from eth_utils import function_signature_to_4byte_selector, to_bytes, to_checksum_address
from eth_utils.abi import collapse_if_tuple, event_abi_to_log_topic
from loguru import logger

from .exceptions import ArtifactNotFoundError, ConfigurationError


PACKAGE_ABI_DIR = Path(__file__).parent / "abi"


def function_signature(abi_entry: Dict[str, Any]) -> str:
    """Canonical ``name(type1,type2)`` signature of an ABI function entry."""
    types = ",".join(collapse_if_tuple(param) for param in abi_entry.get("inputs", []))
    return f"{abi_entry['name']}({types})"


def function_selector(signature: str) -> bytes:
    """4-byte selector (sighash) of a function or error signature."""
    return function_signature_to_4byte_selector(signature)


def _input_types(abi_entry: Dict[str, Any]) -> List[str]:
    return [collapse_if_tuple(param) for param in abi_entry.get("inputs", [])]


def _output_types(abi_entry: Dict[str, Any]) -> List[str]:
    return [collapse_if_tuple(param) for param in abi_entry.get("outputs", [])]


def _checksum_output(param: Dict[str, Any], value: Any) -> Any:
    # eth-abi decodes addresses lowercase
    abi_type = param["type"]
    if abi_type.endswith("]"):
        inner = dict(param, type=abi_type[: abi_type.rindex("[")])
        return [_checksum_output(inner, item) for item in value]
    if abi_type == "tuple":
        return tuple(_checksum_output(c, v) for c, v in zip(param.get("components", []), value))
    if abi_type == "address":
        return to_checksum_address(value)
    return value


def normalize_argument(abi_type: str, value: Any) -> Any:
    """
    Coerce CLI/JSON friendly values into what eth-abi expects.

    Hex strings become bytes for ``bytes``/``bytesN``, numeric strings become
    ints, ``"true"``/``"false"`` become bools and addresses are checksummed.
    """
    if abi_type.endswith("]"):
        inner = abi_type[: abi_type.rindex("[")]
        if isinstance(value, str):
            value = json.loads(value)
        return [normalize_argument(inner, item) for item in value]
    if abi_type == "address" and isinstance(value, str):
        return to_checksum_address(value)
    if abi_type.startswith("bytes") and isinstance(value, str):
        return to_bytes(hexstr=value)
    if abi_type.startswith(("uint", "int")) and isinstance(value, str):
        return int(value, 0)
    if abi_type == "bool" and isinstance(value, str):
        return value.lower() in ("true", "1", "yes")
    return value


class ContractArtifact:
    """ABI (and optionally bytecode) of one contract."""

    def __init__(
        self,
        name: str,
        abi: List[Dict[str, Any]],
        bytecode: Optional[str] = None,
        version: Optional[str] = None,
    ):
        self.name = name
        self.abi = abi
        self.bytecode = bytecode
        self.version = version

        self._functions: List[Dict[str, Any]] = [e for e in abi if e.get("type") == "function"]
        self._by_selector: Dict[bytes, Dict[str, Any]] = {
            function_selector(function_signature(entry)): entry for entry in self._functions
        }

    @classmethod
    def from_file(cls, name: str, path: Path) -> "ContractArtifact":
        try:
            raw = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Artifact {path} is not valid JSON: {e}") from e

        if isinstance(raw, list):
            return cls(name, raw)

        bytecode = raw.get("bytecode")
        if isinstance(bytecode, dict):
            # foundry layout: {"bytecode": {"object": "0x..."}}
            bytecode = bytecode.get("object")
        if bytecode in ("", "0x"):
            bytecode = None
        return cls(name, raw.get("abi", []), bytecode=bytecode, version=raw.get("version"))

    def has_function(self, name: str) -> bool:
        if "(" in name:
            return any(function_signature(e) == name for e in self._functions)
        return any(e["name"] == name for e in self._functions)

    def constructor_inputs(self) -> List[Dict[str, Any]]:
        for entry in self.abi:
            if entry.get("type") == "constructor":
                return entry.get("inputs", [])
        return []

    def encode_constructor(self, args: Sequence[Any]) -> bytes:
        inputs = self.constructor_inputs()
        if len(inputs) != len(args):
            raise ConfigurationError(
                f"Constructor of '{self.name}' takes {len(inputs)} argument(s), got {len(args)}"
            )
        types = [collapse_if_tuple(param) for param in inputs]
        return encode(types, [normalize_argument(t, a) for t, a in zip(types, args)])

    def decode_constructor(self, data: bytes) -> List[Any]:
        inputs = self.constructor_inputs()
        values = decode([collapse_if_tuple(param) for param in inputs], bytes(data))
        return [_checksum_output(p, v) for p, v in zip(inputs, values)]

    def decode_log(self, topics: Sequence[bytes], data: bytes) -> Optional[Tuple[str, Dict[str, Any]]]:
        """Decode an event log emitted by this contract, or None if the event is unknown."""
        if not topics:
            return None
        for entry in self.abi:
            if entry.get("type") != "event" or entry.get("anonymous"):
                continue
            if event_abi_to_log_topic(entry) != bytes(topics[0]):
                continue

            indexed = [p for p in entry["inputs"] if p.get("indexed")]
            plain = [p for p in entry["inputs"] if not p.get("indexed")]
            args: Dict[str, Any] = {}
            for param, topic in zip(indexed, topics[1:]):
                # dynamic indexed values are only available as their hash
                if param["type"] in ("string", "bytes") or param["type"].endswith("]"):
                    args[param["name"]] = bytes(topic)
                else:
                    args[param["name"]] = _checksum_output(param, decode([param["type"]], bytes(topic))[0])
            values = decode([collapse_if_tuple(p) for p in plain], bytes(data))
            for param, value in zip(plain, values):
                args[param["name"]] = _checksum_output(param, value)
            return entry["name"], args
        return None

    def find_function(self, name: str, args: Sequence[Any] = ()) -> Dict[str, Any]:
        """
        Resolve a function entry by name (or full signature) and arguments.

        Overloads are disambiguated by argument count, then by which
        candidate can actually encode the arguments.
        """
        if "(" in name:
            for entry in self._functions:
                if function_signature(entry) == name:
                    return entry
            raise ConfigurationError(f"Function '{name}' doesn't exist in the contract '{self.name}'.")

        candidates = [
            e for e in self._functions
            if e["name"] == name and len(e.get("inputs", [])) == len(args)
        ]
        if not candidates:
            raise ConfigurationError(
                f"Function '{name}' with {len(args)} argument(s) doesn't exist in the contract '{self.name}'."
            )
        if len(candidates) == 1:
            return candidates[0]

        # any value encodes as a string, so string overloads are tried last
        for entry in sorted(candidates, key=lambda e: _input_types(e).count("string")):
            try:
                normalized = [normalize_argument(t, a) for t, a in zip(_input_types(entry), args)]
            except (ValueError, TypeError):
                continue
            if all(is_encodable(t, a) for t, a in zip(_input_types(entry), normalized)):
                return entry
        raise ConfigurationError(f"Ambiguous call to overloaded '{name}' on '{self.name}'.")

    def encode_arguments(self, abi_entry: Dict[str, Any], args: Sequence[Any]) -> bytes:
        types = _input_types(abi_entry)
        normalized = [normalize_argument(t, a) for t, a in zip(types, args)]
        return encode(types, normalized)

    def encode_call(self, function: str, args: Sequence[Any] = ()) -> bytes:
        """Calldata (selector + encoded arguments) for a function call."""
        entry = self.find_function(function, args)
        return function_selector(function_signature(entry)) + self.encode_arguments(entry, args)

    def decode_call(self, data: bytes) -> Tuple[Dict[str, Any], List[Any]]:
        """Split calldata back into its ABI entry and decoded arguments."""
        selector = bytes(data[:4])
        entry = self._by_selector.get(selector)
        if entry is None:
            raise ConfigurationError(f"Unknown selector 0x{selector.hex()} for contract '{self.name}'")
        values = decode(_input_types(entry), bytes(data[4:]))
        params = entry.get("inputs", [])
        return entry, [_checksum_output(p, v) for p, v in zip(params, values)]

    def encode_result(self, abi_entry: Dict[str, Any], value: Any) -> bytes:
        """ABI-encode a function's return value (a tuple for multiple outputs)."""
        types = _output_types(abi_entry)
        if not types:
            return b""
        values = list(value) if len(types) > 1 else [value]
        return encode(types, [normalize_argument(t, v) for t, v in zip(types, values)])

    def decode_result(self, abi_entry: Dict[str, Any], data: bytes) -> Any:
        """
        Decode return data: None for no outputs, the bare value for one
        output and a tuple otherwise.
        """
        params = abi_entry.get("outputs", [])
        if not params:
            return None
        values = decode(_output_types(abi_entry), bytes(data))
        values = tuple(_checksum_output(p, v) for p, v in zip(params, values))
        return values[0] if len(values) == 1 else values


class ArtifactStore:
    """
    Lookup of contract artifacts across one or more directories.

    Directories are searched in order; the package's bundled ABIs for the
    registry contracts are always searched last.
    """

    def __init__(
        self,
        search_dirs: Sequence[Path] = (),
        synthesize: Optional[Callable[[str], ContractArtifact]] = None,
    ):
        self.search_dirs = [Path(d) for d in search_dirs] + [PACKAGE_ABI_DIR]
        self.synthesize = synthesize
        self._cache: Dict[str, ContractArtifact] = {}

    def register(self, artifact: ContractArtifact) -> None:
        self._cache[artifact.name] = artifact

    def get(self, name: str) -> ContractArtifact:
        if name in self._cache:
            return self._cache[name]

        for directory in self.search_dirs:
            path = directory / f"{name}.json"
            if path.exists():
                artifact = ContractArtifact.from_file(name, path)
                self._cache[name] = artifact
                logger.debug(f"Loaded artifact {name} from {path}")
                return artifact

        if self.synthesize is not None:
            artifact = self.synthesize(name)
            self._cache[name] = artifact
            logger.debug(f"Synthesized artifact for {name}")
            return artifact

        raise ArtifactNotFoundError(name, ", ".join(str(d) for d in self.search_dirs))

    def has_function(self, contract_name: str, function: str) -> bool:
        return self.get(contract_name).has_function(function)

    def encode_call(self, contract_name: str, function: str, args: Sequence[Any] = ()) -> bytes:
        return self.get(contract_name).encode_call(function, args)
