"""
Game Program Bindings

The slice of the on-chain game program the session engine talks to:
- Session grant and revocation instructions
- Address derivation for player, session authority and token accounts
- Capability flags and program error codes
"""

from .capabilities import (
    DEFAULT_SESSION_CAPABILITIES,
    SessionCapability,
    allows,
    to_capability_mask,
)
from .errors import ProgramErrorCode, describe_program_error
from .instructions import (
    SLOTS_PER_MINUTE,
    ProgramAccounts,
    build_begin_session,
    build_create_token_account,
    build_end_session,
    build_transfer,
    derive_associated_token_account,
    derive_player_pda,
    derive_session_authority_pda,
    session_expiry,
)

__all__ = [
    "DEFAULT_SESSION_CAPABILITIES",
    "SessionCapability",
    "allows",
    "to_capability_mask",
    "ProgramErrorCode",
    "describe_program_error",
    "SLOTS_PER_MINUTE",
    "ProgramAccounts",
    "build_begin_session",
    "build_create_token_account",
    "build_end_session",
    "build_transfer",
    "derive_associated_token_account",
    "derive_player_pda",
    "derive_session_authority_pda",
    "session_expiry",
]
