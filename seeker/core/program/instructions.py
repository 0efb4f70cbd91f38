"""
Instruction encoders and address derivation for the session protocol.

Only the two session instructions of the game program are encoded here,
plus the system and token-account instructions the session lifecycle needs.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer

SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")

PLAYER_SEED = b"player"
SESSION_SEED = b"session"

# Anchor discriminators (first 8 bytes of sha256("global:<name>")) as u64 LE
BEGIN_SESSION_DISCRIMINATOR = 15610960564545719996
END_SESSION_DISCRIMINATOR = 4760298022670038027

# create_idempotent: succeeds when the account already exists
_CREATE_ATA_IDEMPOTENT = bytes([1])

# Slot production rate used to convert session minutes into slots
SLOTS_PER_MINUTE = 150


@dataclass(frozen=True)
class ProgramAccounts:
    """Deployment addresses the session instructions reference."""

    program_id: Pubkey
    global_pda: Pubkey
    token_mint: Pubkey

    @classmethod
    def from_strings(cls, program_id: str, global_pda: str, token_mint: str) -> "ProgramAccounts":
        return cls(
            program_id=Pubkey.from_string(program_id),
            global_pda=Pubkey.from_string(global_pda),
            token_mint=Pubkey.from_string(token_mint),
        )

    def player_pda(self, player: Pubkey) -> Pubkey:
        return derive_player_pda(player, self.program_id)

    def session_authority_pda(self, player: Pubkey, session_key: Pubkey) -> Pubkey:
        return derive_session_authority_pda(player, session_key, self.program_id)

    def player_token_account(self, player: Pubkey) -> Pubkey:
        return derive_associated_token_account(player, self.token_mint)


def derive_player_pda(player: Pubkey, program_id: Pubkey) -> Pubkey:
    address, _bump = Pubkey.find_program_address([PLAYER_SEED, bytes(player)], program_id)
    return address


def derive_session_authority_pda(player: Pubkey, session_key: Pubkey, program_id: Pubkey) -> Pubkey:
    address, _bump = Pubkey.find_program_address(
        [SESSION_SEED, bytes(player), bytes(session_key)],
        program_id,
    )
    return address


def derive_associated_token_account(owner: Pubkey, mint: Pubkey) -> Pubkey:
    address, _bump = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


def build_begin_session(
    accounts: ProgramAccounts,
    player: Pubkey,
    session_key: Pubkey,
    expires_at_slot: int,
    expires_at_unix: int,
    instruction_allowlist: int,
    max_token_spend: int,
) -> Instruction:
    """
    Grant a session key the capabilities in instruction_allowlist.

    Both the player and the session key sign; the authority record at the
    session PDA is created by the program.
    """
    data = struct.pack(
        "<QQqQQ",
        BEGIN_SESSION_DISCRIMINATOR,
        expires_at_slot,
        expires_at_unix,
        instruction_allowlist,
        max_token_spend,
    )
    keys = [
        AccountMeta(player, is_signer=True, is_writable=True),
        AccountMeta(session_key, is_signer=True, is_writable=False),
        AccountMeta(accounts.player_pda(player), is_signer=False, is_writable=False),
        AccountMeta(accounts.global_pda, is_signer=False, is_writable=False),
        AccountMeta(accounts.player_token_account(player), is_signer=False, is_writable=True),
        AccountMeta(accounts.session_authority_pda(player, session_key), is_signer=False, is_writable=True),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(accounts.program_id, data, keys)


def build_end_session(
    accounts: ProgramAccounts,
    player: Pubkey,
    session_key: Pubkey,
) -> Instruction:
    """Revoke the authority record of session_key. Signed by the player only."""
    data = struct.pack("<Q", END_SESSION_DISCRIMINATOR)
    keys = [
        AccountMeta(player, is_signer=True, is_writable=False),
        AccountMeta(session_key, is_signer=False, is_writable=False),
        AccountMeta(accounts.session_authority_pda(player, session_key), is_signer=False, is_writable=True),
        AccountMeta(accounts.global_pda, is_signer=False, is_writable=False),
        AccountMeta(accounts.player_token_account(player), is_signer=False, is_writable=True),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(accounts.program_id, data, keys)


def build_create_token_account(payer: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    keys = [
        AccountMeta(payer, is_signer=True, is_writable=True),
        AccountMeta(derive_associated_token_account(owner, mint), is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=False, is_writable=False),
        AccountMeta(mint, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(ASSOCIATED_TOKEN_PROGRAM_ID, _CREATE_ATA_IDEMPOTENT, keys)


def build_transfer(source: Pubkey, destination: Pubkey, lamports: int) -> Instruction:
    return transfer(TransferParams(from_pubkey=source, to_pubkey=destination, lamports=lamports))


def session_expiry(current_slot: int, now_unix: int, duration_minutes: int) -> tuple[int, int]:
    """Expiry in both slot and wall-clock units for a session of duration_minutes."""
    return (
        current_slot + duration_minutes * SLOTS_PER_MINUTE,
        now_unix + duration_minutes * 60,
    )
