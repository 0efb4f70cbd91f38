"""
Error codes surfaced by the game program and its framework.
"""

from enum import IntEnum
from typing import Dict, Optional


class ProgramErrorCode(IntEnum):
    """Session-related custom error codes of the game program."""

    INVALID_SESSION_EXPIRY = 6028
    INVALID_SESSION_ALLOWLIST = 6029
    SESSION_EXPIRED = 6030
    SESSION_INACTIVE = 6031
    SESSION_INSTRUCTION_NOT_ALLOWED = 6032
    SESSION_SPEND_CAP_EXCEEDED = 6033
    UNAUTHORIZED = 6035

    # Framework (Anchor) errors
    CONSTRAINT_SEEDS = 2006
    ACCOUNT_DISCRIMINATOR_ALREADY_SET = 3000
    ACCOUNT_DISCRIMINATOR_NOT_FOUND = 3001
    ACCOUNT_DISCRIMINATOR_MISMATCH = 3002
    ACCOUNT_DID_NOT_DESERIALIZE = 3003
    ACCOUNT_DID_NOT_SERIALIZE = 3004
    ACCOUNT_NOT_INITIALIZED = 3012


PROGRAM_ERROR_MESSAGES: Dict[int, str] = {
    ProgramErrorCode.INVALID_SESSION_EXPIRY: "Invalid session expiry values",
    ProgramErrorCode.INVALID_SESSION_ALLOWLIST: "Session instruction allowlist cannot be empty",
    ProgramErrorCode.SESSION_EXPIRED: "Session has expired",
    ProgramErrorCode.SESSION_INACTIVE: "Session is inactive",
    ProgramErrorCode.SESSION_INSTRUCTION_NOT_ALLOWED: "Instruction is not allowed by session policy",
    ProgramErrorCode.SESSION_SPEND_CAP_EXCEEDED: "Session spend cap exceeded",
    ProgramErrorCode.UNAUTHORIZED: "Unauthorized",
    ProgramErrorCode.CONSTRAINT_SEEDS: (
        "Constraint seeds mismatch (client/account context is stale vs expected PDA seeds)"
    ),
    ProgramErrorCode.ACCOUNT_DISCRIMINATOR_ALREADY_SET: "Account discriminator already set",
    ProgramErrorCode.ACCOUNT_DISCRIMINATOR_NOT_FOUND: "Account discriminator not found",
    ProgramErrorCode.ACCOUNT_DISCRIMINATOR_MISMATCH: "Account discriminator mismatch",
    ProgramErrorCode.ACCOUNT_DID_NOT_DESERIALIZE: (
        "Account did not deserialize (often stale account layout vs current program struct)"
    ),
    ProgramErrorCode.ACCOUNT_DID_NOT_SERIALIZE: "Account did not serialize",
    ProgramErrorCode.ACCOUNT_NOT_INITIALIZED: "Account not initialized",
}


def describe_program_error(code: Optional[int]) -> Optional[str]:
    """Human-readable description for a known program or framework error."""
    if code is None:
        return None
    message = PROGRAM_ERROR_MESSAGES.get(code)
    if message is None:
        return None
    return f"{message} ({code} / 0x{code:x})"
