"""
Tests for the game program bindings

Tests for instruction encoding, address derivation and capability masks.
"""

import hashlib
import struct

import pytest
from solders.keypair import Keypair

from seeker.config import EngineOptions
from seeker.core.program import (
    DEFAULT_SESSION_CAPABILITIES,
    SLOTS_PER_MINUTE,
    ProgramAccounts,
    SessionCapability,
    allows,
    build_begin_session,
    build_create_token_account,
    build_end_session,
    session_expiry,
    to_capability_mask,
)
from seeker.core.program.instructions import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    BEGIN_SESSION_DISCRIMINATOR,
    END_SESSION_DISCRIMINATOR,
    TOKEN_PROGRAM_ID,
)


@pytest.fixture
def accounts():
    options = EngineOptions()
    return ProgramAccounts.from_strings(options.program_id, options.global_pda, options.token_mint)


def anchor_discriminator(name: str) -> int:
    return struct.unpack("<Q", hashlib.sha256(f"global:{name}".encode()).digest()[:8])[0]


class TestInstructions:
    """Tests for session instruction layout."""

    def test_discriminators_match_instruction_names(self):
        assert BEGIN_SESSION_DISCRIMINATOR == anchor_discriminator("begin_session")
        assert END_SESSION_DISCRIMINATOR == anchor_discriminator("end_session")

    def test_begin_session_accounts(self, accounts):
        player = Keypair().pubkey()
        session_key = Keypair().pubkey()

        ix = build_begin_session(accounts, player, session_key, 9_000, 1_700_000_600, 0b101, 77)

        assert ix.program_id == accounts.program_id
        assert len(bytes(ix.data)) == 40
        metas = ix.accounts
        assert metas[0].pubkey == player and metas[0].is_signer and metas[0].is_writable
        assert metas[1].pubkey == session_key and metas[1].is_signer and not metas[1].is_writable
        assert metas[5].pubkey == accounts.session_authority_pda(player, session_key)
        assert metas[6].pubkey == TOKEN_PROGRAM_ID

    def test_end_session_only_needs_player_signature(self, accounts):
        player = Keypair().pubkey()
        session_key = Keypair().pubkey()

        ix = build_end_session(accounts, player, session_key)

        assert bytes(ix.data) == struct.pack("<Q", END_SESSION_DISCRIMINATOR)
        assert [m.pubkey for m in ix.accounts if m.is_signer] == [player]

    def test_create_token_account_is_idempotent(self, accounts):
        player = Keypair().pubkey()

        ix = build_create_token_account(player, player, accounts.token_mint)

        assert ix.program_id == ASSOCIATED_TOKEN_PROGRAM_ID
        assert bytes(ix.data) == b"\x01"
        assert ix.accounts[1].pubkey == accounts.player_token_account(player)

    def test_session_pda_depends_on_session_key(self, accounts):
        player = Keypair().pubkey()
        a = accounts.session_authority_pda(player, Keypair().pubkey())
        b = accounts.session_authority_pda(player, Keypair().pubkey())

        assert a != b
        assert not a.is_on_curve()

    def test_session_expiry(self):
        assert session_expiry(100, 1_000, 60) == (100 + 60 * SLOTS_PER_MINUTE, 1_000 + 3_600)


class TestCapabilities:
    """Tests for capability masks."""

    def test_default_excludes_inventory_removal(self):
        assert not allows(DEFAULT_SESSION_CAPABILITIES, SessionCapability.REMOVE_INVENTORY_ITEM)
        assert allows(DEFAULT_SESSION_CAPABILITIES, SessionCapability.MOVE_PLAYER)
        assert allows(DEFAULT_SESSION_CAPABILITIES, SessionCapability.LOOT_BOSS)

    def test_to_capability_mask(self):
        assert to_capability_mask(None) == 0
        assert to_capability_mask(SessionCapability.JOIN_JOB) == 1 << 7
        assert to_capability_mask([SessionCapability.BOOST_JOB, SessionCapability.EQUIP_ITEM]) == 0b1001

    def test_mask_out_of_range(self):
        with pytest.raises(ValueError):
            to_capability_mask(1 << 64)
        with pytest.raises(ValueError):
            to_capability_mask(-1)

    def test_empty_capability_is_never_allowed(self):
        assert allows(0xFFFF, SessionCapability.NONE) is False
