"""
Built-in module table of the DKG EVM contracts.

Steps are tagged ``v1`` and/or ``v2``. Registry, storage and token modules
without a band-2 rewrite carry both tags; logic modules that were rewritten
have one step per band under the same logical name, so a ``v2`` run over a
``v1`` network replaces them and keeps the old address as
``<logicalName>Deprecated``.
"""

from typing import Any, Iterable, List

from .descriptors import CHAIN_FAMILY, NOW, SELF_ADDRESS, DescriptorTable, ForwardedConfig, ModuleDescriptor
from .governance import HASH_FUNCTIONS, SCORE_FUNCTIONS
from .types import ConstructorPolicy, RegistrationPolicy


V1 = frozenset({"v1"})
V2 = frozenset({"v2"})
BOTH = V1 | V2

BAND_2 = "2.0.0"


def _step(
    logical_name: str,
    dependencies: Iterable[str] = ("Hub",),
    tags: frozenset = BOTH,
    implementation_name: str = "",
    **kwargs: Any,
) -> ModuleDescriptor:
    return ModuleDescriptor(
        logical_name=logical_name,
        implementation_name=implementation_name or logical_name,
        dependencies=tuple(dependencies),
        tags=tags | {logical_name},
        **kwargs,
    )


def _register_function(proxy: str, function_id: int, slot: str) -> ForwardedConfig:
    return ForwardedConfig(
        target=proxy,
        function="setContractAddress",
        args=(function_id, SELF_ADDRESS),
        governance_slot=slot,
        check_function="getContractAddress",
        check_args=(function_id,),
    )


_SCORING_DEPENDENCIES = ("Hub", "HashingProxy", "SHA256", "ScoringProxy", "ParametersStorage")

_STAKING_DEPENDENCIES = (
    "Hub",
    "ShardingTable",
    "IdentityStorage",
    "ParametersStorage",
    "ProfileStorage",
    "ServiceAgreementStorageProxy",
    "ShardingTableStorage",
    "StakingStorage",
)

_COMMIT_DEPENDENCIES = (
    "Hub",
    "ScoringProxy",
    "ParametersStorage",
    "ProfileStorage",
    "ServiceAgreementStorageProxy",
    "HashingProxy",
    "Staking",
)

_SERVICE_AGREEMENT_DEPENDENCIES = (
    "Hub",
    "ScoringProxy",
    "HashingProxy",
    "ParametersStorage",
    "ServiceAgreementStorageProxy",
    "CommitManagerV1",
    "CommitManagerV1U1",
    "ProofManagerV1",
    "ProofManagerV1U1",
    "Token",
)

_CONTENT_ASSET_DEPENDENCIES = (
    "Hub",
    "AssertionStorage",
    "ContentAssetStorage",
    "ServiceAgreementV1",
    "HashingProxy",
    "ScoringProxy",
)


DKG_MODULES: List[ModuleDescriptor] = [
    _step("Hub", (), constructor=ConstructorPolicy.PASS_NOTHING,
          registration=RegistrationPolicy.DO_NOT_REGISTER),
    _step("HubController", registration=RegistrationPolicy.DO_NOT_REGISTER),
    _step("Token", constructor=ConstructorPolicy.PASS_EXPLICIT_ARGS, constructor_args=("TEST TOKEN", "TEST")),
    _step("ParametersStorage"),
    _step("WhitelistStorage"),

    _step("HashingProxy"),
    _step("SHA256", ("HashingProxy",), constructor=ConstructorPolicy.PASS_NOTHING,
          forwarded_configs=(_register_function("HashingProxy", 1, HASH_FUNCTIONS),)),
    _step("ScoringProxy", tags=V1),
    _step("ScoringProxy", tags=V2, implementation_name="ProximityScoringProxy", version=BAND_2),
    _step("Log2PLDSF", _SCORING_DEPENDENCIES,
          forwarded_configs=(_register_function("ScoringProxy", 1, SCORE_FUNCTIONS),)),
    _step("LinearSum", _SCORING_DEPENDENCIES, tags=V2,
          forwarded_configs=(_register_function("ScoringProxy", 2, SCORE_FUNCTIONS),)),

    _step("AssertionStorage"),
    _step("IdentityStorage", tags=V1),
    _step("IdentityStorage", tags=V2, implementation_name="IdentityStorageV2", version=BAND_2),
    _step("ShardingTableStorage", tags=V1),
    _step("ShardingTableStorage", tags=V2, implementation_name="ShardingTableStorageV2", version=BAND_2),
    _step("StakingStorage", ("Hub", "Token")),
    _step("ProfileStorage", ("Hub", "Token")),
    _step("ServiceAgreementStorageV1", ("Hub", "Token")),
    _step("ServiceAgreementStorageV1U1", ("Hub", "Token")),
    _step("ServiceAgreementStorageProxy",
          ("Hub", "Token", "ServiceAgreementStorageV1", "ServiceAgreementStorageV1U1")),
    _step("ContentAssetStorage", tags=V1, registration=RegistrationPolicy.REGISTER_AS_ASSET_STORAGE),
    _step("ContentAssetStorage", tags=V2, implementation_name="ContentAssetStorageV2", version=BAND_2,
          registration=RegistrationPolicy.REGISTER_AS_ASSET_STORAGE, constructor_args=(CHAIN_FAMILY,)),
    _step("UnfinalizedStateStorage"),

    _step("Assertion", ("Hub", "AssertionStorage")),
    _step("Identity", ("Hub", "IdentityStorage", "ParametersStorage", "ProfileStorage")),
    _step("ShardingTable", ("Hub", "ProfileStorage", "ShardingTableStorage", "StakingStorage"), tags=V1),
    _step("ShardingTable", ("Hub", "ProfileStorage", "ShardingTableStorage", "StakingStorage"), tags=V2,
          implementation_name="ShardingTableV2", version=BAND_2, constructor_args=(NOW,)),
    _step("NodeOperatorFeesStorage",
          ("Hub", "ContentAssetStorage", "StakingStorage", "ShardingTable", "IdentityStorage"),
          constructor_args=(f"{NOW}+86400",)),
    _step("Staking", _STAKING_DEPENDENCIES, tags=V1),
    _step("Staking", (*_STAKING_DEPENDENCIES, "NodeOperatorFeesStorage"), tags=V2,
          implementation_name="StakingV2", version=BAND_2),
    _step("Profile", ("Hub", "Identity", "ParametersStorage", "ProfileStorage", "HashingProxy",
                      "NodeOperatorFeesStorage", "Staking", "WhitelistStorage"), tags=V1),
    _step("Profile", ("Hub", "Identity", "ParametersStorage", "ProfileStorage", "HashingProxy",
                      "NodeOperatorFeesStorage", "Staking", "WhitelistStorage"), tags=V2,
          implementation_name="ProfileV2", version=BAND_2),

    _step("CommitManagerV1", _COMMIT_DEPENDENCIES, tags=V1),
    _step("CommitManagerV1", (*_COMMIT_DEPENDENCIES, "ShardingTable", "LinearSum"), tags=V2,
          implementation_name="CommitManagerV2", version=BAND_2),
    _step("CommitManagerV1U1", (*_COMMIT_DEPENDENCIES, "ContentAssetStorage"), tags=V1),
    _step("CommitManagerV1U1", (*_COMMIT_DEPENDENCIES, "ContentAssetStorage", "ShardingTable", "LinearSum"),
          tags=V2, implementation_name="CommitManagerV2U1", version=BAND_2),
    _step("ProofManagerV1", ("Hub", "AssertionStorage", "HashingProxy", "ParametersStorage", "Staking")),
    _step("ProofManagerV1U1", ("Hub", "AssertionStorage", "HashingProxy", "ParametersStorage", "Staking")),
    _step("ServiceAgreementV1", _SERVICE_AGREEMENT_DEPENDENCIES),
    _step("ContentAsset", _CONTENT_ASSET_DEPENDENCIES, tags=V1),
    _step("ContentAsset", _CONTENT_ASSET_DEPENDENCIES, tags=V2,
          implementation_name="ContentAssetV2", version=BAND_2),

    _step("ParanetsRegistry", tags=V2),
    _step("ParanetServicesRegistry", tags=V2),
    _step("ParanetKnowledgeAssetsRegistry", tags=V2),
    _step("ParanetKnowledgeMinersRegistry", ("Hub", "ParanetsRegistry"), tags=V2),
    _step("Paranet", ("Hub", "ContentAssetStorage", "ContentAsset", "HashingProxy", "ParanetsRegistry",
                      "ParanetServicesRegistry", "ParanetKnowledgeAssetsRegistry",
                      "ParanetKnowledgeMinersRegistry", "ServiceAgreementStorageProxy"), tags=V2),
]


def dkg_table() -> DescriptorTable:
    """The full DKG module table, both bands."""
    return DescriptorTable(DKG_MODULES)
