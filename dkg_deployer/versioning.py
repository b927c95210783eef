"""
Version bands and the per-module upgrade decision procedure.

Only the major component of a version ("band") drives upgrade-vs-skip
decisions. Versions inside the same band are all treated as current, so a
ledger entry at ``2.3.0`` is not touched by a step targeting ``2.1``. A
missing version is the oldest band.

Decision table, for a step targeting band ``B``:

=====================  ==========================================  ===================
Ledger entry           State                                       Action
=====================  ==========================================  ===================
absent                 NotDeployed                                 deploy
band > B               DeployedNewer                               skip
band == B              DeployedCurrent                             skip
band == B, stale       DeployedLegacy                              redeploy in place
band < B               DeployedLegacy                              replace
=====================  ==========================================  ===================

An entry is stale when an operator marked it ``deployed: false`` to force a
bytecode refresh under the same logical name.
"""

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .exceptions import ConfigurationError
from .types import ModuleDecision, UpgradeAction, UpgradeState

if TYPE_CHECKING:
    from .descriptors import ModuleDescriptor
    from .ledger import LedgerEntry


LEGACY_BAND = 1

_VERSION_RE = re.compile(r"^v?(\d+)(?:\.(\d+|x))?(?:\.(\d+|x))?(?:[-+].*)?$")


@dataclass(frozen=True, order=True)
class Version:
    """Structured ``major.minor.patch`` version."""

    major: int
    minor: int = 0
    patch: int = 0

    @classmethod
    def parse(cls, value: str) -> "Version":
        """
        Parse ``"2"``, ``"2.x"``, ``"v1.0.3"`` or ``"1.0.0-rc1"``.

        Wildcard components (``x``) count as zero.
        """
        match = _VERSION_RE.match(value.strip())
        if not match:
            raise ConfigurationError(f"Unparsable version string: {value!r}")

        def component(text: Optional[str]) -> int:
            return int(text) if text and text != "x" else 0

        return cls(
            major=int(match.group(1)),
            minor=component(match.group(2)),
            patch=component(match.group(3)),
        )

    @property
    def band(self) -> int:
        return self.major

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def band_of(version: Optional[str]) -> int:
    """Major band of a recorded or targeted version; ``None`` is the legacy band."""
    if version is None or version == "":
        return LEGACY_BAND
    return Version.parse(version).band


def classify(entry: Optional["LedgerEntry"], target_band: int) -> UpgradeState:
    """Place a ledger entry relative to the band a step targets."""
    if entry is None:
        return UpgradeState.NOT_DEPLOYED

    recorded_band = band_of(entry.version)
    if recorded_band > target_band:
        return UpgradeState.DEPLOYED_NEWER
    if recorded_band < target_band:
        return UpgradeState.DEPLOYED_LEGACY
    if not entry.deployed:
        return UpgradeState.DEPLOYED_LEGACY
    return UpgradeState.DEPLOYED_CURRENT


def decide(descriptor: "ModuleDescriptor", entry: Optional["LedgerEntry"]) -> ModuleDecision:
    """
    Run the upgrade decision procedure for one module.

    Args:
        descriptor: Module the current step wants to bring up
        entry: Ledger entry recorded for the descriptor's logical name, if any

    Returns:
        ModuleDecision with the classified state and the action to take
    """
    target_band = descriptor.band
    state = classify(entry, target_band)
    recorded_version = entry.version if entry is not None else None

    if state == UpgradeState.NOT_DEPLOYED:
        action = UpgradeAction.DEPLOY
        reason = "not in ledger"
    elif state == UpgradeState.DEPLOYED_NEWER:
        action = UpgradeAction.SKIP
        reason = f"ledger band {band_of(recorded_version)} is ahead of step band {target_band}"
    elif state == UpgradeState.DEPLOYED_CURRENT:
        action = UpgradeAction.SKIP
        reason = f"already at band {target_band}"
    elif band_of(recorded_version) < target_band:
        action = UpgradeAction.REPLACE
        reason = f"upgrade band {band_of(recorded_version)} -> {target_band}"
    else:
        action = UpgradeAction.REDEPLOY_IN_PLACE
        reason = "entry marked for redeployment"

    return ModuleDecision(
        logical_name=descriptor.logical_name,
        implementation_name=descriptor.implementation_name,
        state=state,
        action=action,
        recorded_version=recorded_version,
        reason=reason,
    )
