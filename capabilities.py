from dataclasses import dataclass
from enum import Enum
from typing import assert_never


ONCHAIN_DUST_SATS = 1000


class BackendVariant(str, Enum):
    LND = "LND"
    BREEZ = "BREEZ"
    GREENLIGHT = "GREENLIGHT"
    LDK = "LDK"
    PHOENIX = "PHOENIX"
    CASHU = "CASHU"


@dataclass(frozen=True)
class CapabilityFlags:
    has_mnemonic: bool
    has_channel_management: bool
    has_node_backup: bool


def capabilities_of(variant: BackendVariant) -> CapabilityFlags:
    match variant:
        case BackendVariant.LND:
            # channel management is planned but not exposed yet
            return CapabilityFlags(False, False, False)
        case BackendVariant.BREEZ:
            return CapabilityFlags(True, False, False)
        case BackendVariant.GREENLIGHT:
            return CapabilityFlags(True, True, False)
        case BackendVariant.LDK:
            return CapabilityFlags(True, True, True)
        case BackendVariant.PHOENIX:
            return CapabilityFlags(False, False, False)
        case BackendVariant.CASHU:
            return CapabilityFlags(False, False, False)
        case _:
            assert_never(variant)


def supports_node_control(variant: BackendVariant) -> bool:
    """Router reset and restart are only wired up on LDK."""
    if not capabilities_of(variant).has_channel_management:
        return False
    match variant:
        case BackendVariant.LDK:
            return True
        case (
            BackendVariant.LND
            | BackendVariant.BREEZ
            | BackendVariant.GREENLIGHT
            | BackendVariant.PHOENIX
            | BackendVariant.CASHU
        ):
            return False
        case _:
            assert_never(variant)


def supports_onchain_redeem(variant: BackendVariant) -> bool:
    match variant:
        case BackendVariant.LDK | BackendVariant.GREENLIGHT:
            return True
        case (
            BackendVariant.LND
            | BackendVariant.BREEZ
            | BackendVariant.PHOENIX
            | BackendVariant.CASHU
        ):
            return False
        case _:
            assert_never(variant)


def can_redeem_onchain_funds(variant: BackendVariant, spendable_sats: int) -> bool:
    return supports_onchain_redeem(variant) and spendable_sats > ONCHAIN_DUST_SATS


def should_prompt_mnemonic_backup(variant: BackendVariant) -> bool:
    return capabilities_of(variant).has_mnemonic


def supports_node_backup(variant: BackendVariant) -> bool:
    return capabilities_of(variant).has_node_backup
