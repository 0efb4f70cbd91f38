"""
Session authority and signing context models.

A session authority is an ephemeral key pair the player grants a bounded
set of gameplay capabilities, so routine actions are signed locally instead
of prompting the wallet every time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ..execution.tx_builder import LocalKeypairSigner, TransactionSigner
from ..recovery.errors import AuthorizationFailure, FailureClass


class SessionStatus(str, Enum):
    """Status of a session authority."""
    ACTIVE = "active"
    ENDED = "ended"              # Revoked by the player
    INVALIDATED = "invalidated"  # Rejected by the program; never reused


@dataclass
class SessionAuthority:
    """
    The single live session of a manager.

    Expiry is tracked in both slots (what the program checks) and unix
    seconds (what the client can check without a network call).
    """
    keypair: Keypair = field(repr=False)
    player: Pubkey
    authority_record: Pubkey
    capabilities: int
    spend_cap: int
    expires_at_slot: int
    expires_at_unix: int
    created_at: float
    funded: bool = False
    status: SessionStatus = SessionStatus.ACTIVE

    @property
    def session_key(self) -> Pubkey:
        return self.keypair.pubkey()

    @property
    def signer(self) -> LocalKeypairSigner:
        return LocalKeypairSigner(self.keypair)

    def seconds_until_expiry(self, now: float) -> float:
        return max(0.0, self.expires_at_unix - now)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at_unix

    def is_usable(self, now: float) -> bool:
        """Active, funded and not past its wall-clock expiry."""
        return self.status == SessionStatus.ACTIVE and self.funded and not self.is_expired(now)

    def snapshot(self) -> "SessionSnapshot":
        return SessionSnapshot(
            session_key=self.session_key,
            player=self.player,
            authority_record=self.authority_record,
            capabilities=self.capabilities,
            spend_cap=self.spend_cap,
            expires_at_slot=self.expires_at_slot,
            expires_at_unix=self.expires_at_unix,
            created_at=self.created_at,
            funded=self.funded,
            status=self.status,
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a session authority. Carries no secret key."""
    session_key: Pubkey
    player: Pubkey
    authority_record: Pubkey
    capabilities: int
    spend_cap: int
    expires_at_slot: int
    expires_at_unix: int
    created_at: float
    funded: bool
    status: SessionStatus

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionKey": str(self.session_key),
            "player": str(self.player),
            "authorityRecord": str(self.authority_record),
            "capabilities": self.capabilities,
            "spendCap": self.spend_cap,
            "expiresAtSlot": self.expires_at_slot,
            "expiresAtUnix": self.expires_at_unix,
            "createdAt": int(self.created_at),
            "funded": self.funded,
            "status": self.status.value,
        }


# =============================================================================
# Signing contexts
# =============================================================================

@dataclass(frozen=True)
class PrimaryWalletContext:
    """The player's wallet signs and pays; no session authority involved."""
    signer: TransactionSigner
    player: Pubkey

    @property
    def authority(self) -> Pubkey:
        return self.player

    @property
    def session_authority(self) -> Optional[Pubkey]:
        return None

    @property
    def uses_delegated_authority(self) -> bool:
        return False


@dataclass(frozen=True)
class DelegatedSessionContext:
    """The session key signs and pays on the player's behalf."""
    signer: TransactionSigner
    player: Pubkey
    session_authority: Pubkey

    @property
    def authority(self) -> Pubkey:
        return self.signer.pubkey

    @property
    def uses_delegated_authority(self) -> bool:
        return True


SigningContext = Union[PrimaryWalletContext, DelegatedSessionContext]


@dataclass
class ActionResult:
    """Outcome of one gameplay action routed through the signing router."""
    action: str
    signature: Optional[str] = None
    status: str = ""
    failure: Optional[str] = None
    failure_class: Optional[FailureClass] = None
    program_error_code: Optional[int] = None
    authorization_failure: Optional[AuthorizationFailure] = None
    used_session: bool = False
    retried: bool = False

    @property
    def succeeded(self) -> bool:
        return bool(self.signature)
