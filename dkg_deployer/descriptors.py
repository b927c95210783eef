"""
Module descriptors: the data-driven replacement for per-module deploy scripts.

A ModuleDescriptor says everything the orchestrator needs to bring one
logical module up: which implementation to deploy, which version band the
step targets, how the constructor is fed, how the result is bound in the
Hub and which logical names must be resolvable first.
"""

import json
import time
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigurationError
from .types import ConstructorPolicy, RegistrationPolicy
from .versioning import band_of


# Placeholders accepted in constructor args and forwarded-call args
SELF_ADDRESS = "$self"
HUB_ADDRESS = "$hub"
CHAIN_FAMILY = "$chainFamily"
# "$now" or "$now+<seconds>": unix time when the constructor args are resolved
NOW = "$now"


class ForwardedConfig(BaseModel):
    """
    A configuration call issued into another, already deployed module after
    this module is bound (e.g. registering a hash function in HashingProxy).
    """

    model_config = ConfigDict(frozen=True)

    target: str = Field(..., description="Logical name of the module receiving the call")
    function: str = Field(..., description="Function name on the target")
    args: Tuple[Any, ...] = Field(default_factory=tuple)
    governance_slot: Optional[str] = Field(
        default=None,
        description="Batch slot used when the call is queued for governance "
                    "('hash_functions' or 'score_functions'); None queues encoded data"
    )
    check_function: Optional[str] = Field(
        default=None,
        description="View on the target that returns `expected` once the call is applied"
    )
    check_args: Tuple[Any, ...] = Field(default_factory=tuple)
    expected: Any = SELF_ADDRESS

    @field_validator("governance_slot")
    @classmethod
    def _check_slot(cls, value: Optional[str]) -> Optional[str]:
        if value not in (None, "hash_functions", "score_functions"):
            raise ValueError(f"Unknown governance slot: {value}")
        return value


class ModuleDescriptor(BaseModel):
    """Immutable metadata about one deployable unit, as one step of a run."""

    model_config = ConfigDict(frozen=True)

    logical_name: str = Field(..., min_length=1, description="Stable Hub/ledger key")
    implementation_name: str = Field(default="", description="Concrete contract deployed")
    version: Optional[str] = Field(default=None, description="Targeted version; None is legacy/v1")
    registration: RegistrationPolicy = RegistrationPolicy.REGISTER_IN_HUB
    constructor: ConstructorPolicy = ConstructorPolicy.PASS_HUB_ADDRESS
    constructor_args: Tuple[Any, ...] = Field(
        default_factory=tuple,
        description="Explicit args, appended after the Hub address for PASS_HUB_ADDRESS"
    )
    dependencies: Tuple[str, ...] = Field(default_factory=tuple)
    tags: FrozenSet[str] = Field(default_factory=frozenset)
    forwarded_configs: Tuple[ForwardedConfig, ...] = Field(default_factory=tuple)
    keep_deprecated: bool = Field(
        default=True,
        description="Keep the replaced address reachable as '<logicalName>Deprecated'"
    )

    @model_validator(mode="before")
    @classmethod
    def _default_implementation(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("implementation_name"):
            data = dict(data)
            data["implementation_name"] = data.get("logical_name", "")
        return data

    @field_validator("dependencies", mode="before")
    @classmethod
    def _ordered_set(cls, value: Iterable[str]) -> Tuple[str, ...]:
        seen: List[str] = []
        for name in value or ():
            if name not in seen:
                seen.append(name)
        return tuple(seen)

    @model_validator(mode="after")
    def _check_consistency(self) -> "ModuleDescriptor":
        if self.logical_name in self.dependencies:
            raise ValueError(f"{self.logical_name} cannot depend on itself")
        if self.constructor == ConstructorPolicy.PASS_NOTHING and self.constructor_args:
            raise ValueError(f"{self.logical_name}: PASS_NOTHING takes no constructor args")
        band_of(self.version)
        return self

    @property
    def band(self) -> int:
        return band_of(self.version)

    @property
    def step_id(self) -> str:
        return f"{self.implementation_name}@{self.band}"

    @property
    def needs_hub(self) -> bool:
        return self.constructor == ConstructorPolicy.PASS_HUB_ADDRESS

    def constructor_arguments(self, hub_address: Optional[str], chain_family: str) -> List[Any]:
        """Resolve the constructor argument list for this module."""
        if self.constructor == ConstructorPolicy.PASS_NOTHING:
            return []

        args = [_resolve_placeholder(arg, None, hub_address, chain_family) for arg in self.constructor_args]
        if self.constructor == ConstructorPolicy.PASS_HUB_ADDRESS:
            if hub_address is None:
                raise ConfigurationError(
                    f"{self.logical_name} needs the Hub address but no Hub is deployed"
                )
            return [hub_address, *args]
        return args

    def has_tag(self, tags: Iterable[str]) -> bool:
        return bool(self.tags.intersection(tags))


def _resolve_placeholder(
    value: Any,
    self_address: Optional[str],
    hub_address: Optional[str],
    chain_family: str,
) -> Any:
    if value == SELF_ADDRESS:
        return self_address
    if value == HUB_ADDRESS:
        return hub_address
    if value == CHAIN_FAMILY:
        return chain_family
    if isinstance(value, str) and value.startswith(NOW):
        offset = value[len(NOW):]
        try:
            return int(time.time()) + (int(offset) if offset else 0)
        except ValueError:
            raise ConfigurationError(f"Invalid time placeholder: {value!r}") from None
    return value


def resolve_forwarded_args(
    config: ForwardedConfig,
    self_address: str,
    hub_address: Optional[str],
    chain_family: str,
) -> List[Any]:
    """Substitute address placeholders in a forwarded call's arguments."""
    return [_resolve_placeholder(arg, self_address, hub_address, chain_family) for arg in config.args]


def resolve_forwarded_check(
    config: ForwardedConfig,
    self_address: str,
    hub_address: Optional[str],
    chain_family: str,
) -> Tuple[List[Any], Any]:
    """Arguments and expected result of a forwarded call's check view."""
    args = [_resolve_placeholder(arg, self_address, hub_address, chain_family) for arg in config.check_args]
    return args, _resolve_placeholder(config.expected, self_address, hub_address, chain_family)


class DescriptorTable:
    """
    Ordered collection of module steps.

    The same logical name may appear in several steps (one per band); a
    (logical name, band) pair must be unique.
    """

    def __init__(self, descriptors: Sequence[ModuleDescriptor]):
        self._descriptors: List[ModuleDescriptor] = list(descriptors)
        seen: Dict[Tuple[str, int], ModuleDescriptor] = {}
        for descriptor in self._descriptors:
            key = (descriptor.logical_name, descriptor.band)
            if key in seen:
                raise ConfigurationError(
                    f"Duplicate step for '{descriptor.logical_name}' in band {descriptor.band}: "
                    f"{seen[key].implementation_name} and {descriptor.implementation_name}"
                )
            seen[key] = descriptor

    def __iter__(self):
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def logical_names(self) -> List[str]:
        names: List[str] = []
        for descriptor in self._descriptors:
            if descriptor.logical_name not in names:
                names.append(descriptor.logical_name)
        return names

    def steps_for(self, logical_name: str) -> List[ModuleDescriptor]:
        return [d for d in self._descriptors if d.logical_name == logical_name]

    def select(
        self,
        tags: Optional[Iterable[str]] = None,
        only: Optional[Iterable[str]] = None,
        with_dependencies: bool = False,
    ) -> "DescriptorTable":
        """
        Select the steps of one run.

        Args:
            tags: Keep steps carrying any of these tags (e.g. ``v1``, ``v2``)
            only: Keep steps whose logical or implementation name is listed
            with_dependencies: Also keep the steps of every transitive
                dependency (restricted to ``tags`` when given)
        """
        tag_set = set(tags or ())
        tagged = [d for d in self._descriptors if not tag_set or d.has_tag(tag_set)]
        selected = tagged
        if only:
            wanted = set(only)
            selected = [
                d for d in selected
                if d.logical_name in wanted or d.implementation_name in wanted
            ]

        if with_dependencies:
            names = {d.logical_name for d in selected}
            pending = [dep for d in selected for dep in d.dependencies]
            while pending:
                name = pending.pop()
                if name in names:
                    continue
                names.add(name)
                pending.extend(dep for d in tagged if d.logical_name == name for dep in d.dependencies)
            selected = [d for d in tagged if d.logical_name in names]

        return DescriptorTable(selected)

    @classmethod
    def from_json(cls, path: Path) -> "DescriptorTable":
        """Load a descriptor table from a JSON list of descriptor objects."""
        try:
            raw = json.loads(Path(path).read_text())
        except FileNotFoundError:
            raise ConfigurationError(f"Module table not found: {path}") from None
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Module table {path} is not valid JSON: {e}") from e

        if not isinstance(raw, list):
            raise ConfigurationError(f"Module table {path} must be a JSON list")

        try:
            descriptors = [ModuleDescriptor.model_validate(item) for item in raw]
        except ValidationError as e:
            raise ConfigurationError(f"Invalid module descriptor in {path}: {e}") from e

        logger.debug(f"Loaded {len(descriptors)} module descriptors from {path}")
        return cls(descriptors)
