"""
Instruction kinds a session authority may be allowed to sign.
"""

from enum import IntFlag
from typing import Iterable, Union


class SessionCapability(IntFlag):
    """Bit positions match the program's instruction allowlist."""

    NONE = 0
    BOOST_JOB = 1 << 0
    ABANDON_JOB = 1 << 1
    CLAIM_JOB_REWARD = 1 << 2
    EQUIP_ITEM = 1 << 3
    SET_PLAYER_SKIN = 1 << 4
    REMOVE_INVENTORY_ITEM = 1 << 5
    MOVE_PLAYER = 1 << 6
    JOIN_JOB = 1 << 7
    COMPLETE_JOB = 1 << 8
    CREATE_PLAYER_PROFILE = 1 << 9
    JOIN_BOSS_FIGHT = 1 << 10
    LOOT_CHEST = 1 << 11
    LOOT_BOSS = 1 << 12


# Everything gameplay needs except inventory removal, which stays wallet-signed.
DEFAULT_SESSION_CAPABILITIES = (
    SessionCapability.MOVE_PLAYER
    | SessionCapability.JOIN_JOB
    | SessionCapability.COMPLETE_JOB
    | SessionCapability.BOOST_JOB
    | SessionCapability.ABANDON_JOB
    | SessionCapability.CLAIM_JOB_REWARD
    | SessionCapability.EQUIP_ITEM
    | SessionCapability.SET_PLAYER_SKIN
    | SessionCapability.CREATE_PLAYER_PROFILE
    | SessionCapability.JOIN_BOSS_FIGHT
    | SessionCapability.LOOT_CHEST
    | SessionCapability.LOOT_BOSS
)

CapabilityInput = Union[int, SessionCapability, Iterable[SessionCapability], None]


def to_capability_mask(value: CapabilityInput) -> int:
    """Normalize an int, flag or collection of flags into a u64 allowlist mask."""
    if value is None:
        return 0
    if isinstance(value, int):
        mask = int(value)
    else:
        mask = 0
        for flag in value:
            mask |= int(flag)
    if mask < 0 or mask >= 1 << 64:
        raise ValueError(f"Capability mask out of range: {mask}")
    return mask


def allows(mask: int, capability: SessionCapability) -> bool:
    return capability != 0 and (mask & capability) == capability
